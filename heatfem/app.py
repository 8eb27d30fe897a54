"""解析アプリケーション（設定読込 → アセンブリ → 求解 → 出力）.

各段階の失敗は ExitCode に変換して返す。例外を終了コードへ変換するのはこの層のみ。
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import IntEnum
from pathlib import Path

from heatfem.assembly import GlobalMatrixBuilder, resolve_n_jobs
from heatfem.cache import DEFAULT_CACHE_ROOT, SystemCache
from heatfem.config import ProblemConfig, load_problem_config
from heatfem.core.model import ProblemType
from heatfem.core.results import GlobalMatrices
from heatfem.core.stats import AssemblyStats
from heatfem.element_builder import ElementMatrixBuilder
from heatfem.errors import (
    AssemblyError,
    ConfigLoaderError,
    ExportError,
    HeatFEMError,
    IntegrationError,
    MeshError,
    SolverError,
)
from heatfem.linear import LinearSolverType, solver_type_name
from heatfem.logging_config import setup_logging
from heatfem.mesh.gmsh_msh import read_gmsh_msh
from heatfem.mesh.model import Mesh
from heatfem.output.export_matrix import export_matrix_market
from heatfem.output.export_stats import FullMetrics, export_metrics
from heatfem.output.export_vtk import export_steady_vtk, export_transient_vtk
from heatfem.solver import FEMSolver, FEMSolverConfig, FEMSolverResult

logger = logging.getLogger(__name__)


class ExitCode(IntEnum):
    """プロセス終了コード."""

    SUCCESS = 0
    CLI_ERROR = 1
    CONFIG_ERROR = 2
    MESH_ERROR = 3
    DOMAIN_ERROR = 4
    SOLVER_ERROR = 5
    METRICS_EXPORT_ERROR = 6
    VTK_EXPORT_ERROR = 7


@dataclass
class ApplicationOptions:
    """アプリケーションの実行オプション.

    Attributes:
        config_path: 問題設定ファイル（JSON）
        log_level: ログレベル
        log_file: ログファイル（None はコンソールのみ）
        n_threads: アセンブリのワーカー数（None は全CPUコア）
        linear_solver: 線形ソルバーの種別
        use_cache: 全体行列キャッシュを使うか
        cache_root: キャッシュのルートディレクトリ
        export_mtx_dir: Matrix Market 出力先（None は出力しない）
        build_matrix_only: True の場合アセンブリ後に終了する
        metrics_path: メトリクス出力先（.csv / .json、None は出力しない）
        output_dir: VTK 出力ディレクトリ（None は出力しない）
        reuse_factorization: 非定常解析で分解を再利用するか
    """

    config_path: Path
    log_level: int = logging.INFO
    log_file: str | None = None
    n_threads: int | None = None
    linear_solver: LinearSolverType = LinearSolverType.CHOLESKY
    use_cache: bool = False
    cache_root: Path = Path(DEFAULT_CACHE_ROOT)
    export_mtx_dir: Path | None = None
    build_matrix_only: bool = False
    metrics_path: Path | None = None
    output_dir: Path | None = Path("output")
    reuse_factorization: bool = True

    def describe(self) -> str:
        return (
            f"config={self.config_path}, threads={self.n_threads or 'all'}, "
            f"solver={solver_type_name(self.linear_solver)}, cache={self.use_cache}, "
            f"reuse_factorization={self.reuse_factorization}, "
            f"build_matrix_only={self.build_matrix_only}, metrics={self.metrics_path}, "
            f"output_dir={self.output_dir}"
        )


class Application:
    """熱伝導解析の実行.

    Args:
        options: 実行オプション
    """

    def __init__(self, options: ApplicationOptions) -> None:
        self.options = options

    def run(self) -> ExitCode:
        """解析を実行して終了コードを返す."""
        opts = self.options
        setup_logging(opts.log_level, opts.log_file)
        logger.info("Application running...")
        logger.info("Options: %s", opts.describe())

        # --- 設定・メッシュ ---
        try:
            config = load_problem_config(opts.config_path)
        except ConfigLoaderError as exc:
            logger.error("%s", exc)
            return ExitCode.CONFIG_ERROR

        try:
            mesh = read_gmsh_msh(config.mesh_path)
        except MeshError as exc:
            logger.error("%s", exc)
            return ExitCode.MESH_ERROR

        transient = config.problem_type is ProblemType.TRANSIENT

        # --- 全体行列（キャッシュ or アセンブリ） ---
        cache = SystemCache(opts.cache_root) if opts.use_cache else None
        matrices: GlobalMatrices | None = None
        assembly_stats: AssemblyStats | None = None
        if cache is not None:
            matrices = cache.load(config.mesh_path, opts.config_path, require_capacity=transient)
        else:
            logger.info("Cache disabled")

        if matrices is None:
            try:
                matrices, assembly_stats = self._assemble(config, mesh, transient)
            except (IntegrationError, AssemblyError) as exc:
                logger.error("%s", exc)
                if exc.__cause__ is not None:
                    logger.debug("Caused by: %r", exc.__cause__)
                return ExitCode.DOMAIN_ERROR
            if cache is not None:
                try:
                    cache.save(matrices, config.mesh_path, opts.config_path)
                except OSError as exc:
                    logger.warning("Failed to save system to cache: %s", exc)

        if opts.export_mtx_dir is not None:
            try:
                export_matrix_market(opts.export_mtx_dir, *matrices)
            except ExportError as exc:
                logger.error("%s", exc)

        if opts.build_matrix_only:
            logger.info("Build matrix only mode - skipping solver")
            return ExitCode.SUCCESS

        # --- 求解 ---
        solver_config = FEMSolverConfig(
            problem_type=config.problem_type,
            linear_solver=opts.linear_solver,
            transient_config=config.transient_config,
            reuse_factorization=opts.reuse_factorization,
        )
        try:
            result = FEMSolver().solve(matrices.H, matrices.C, matrices.P, solver_config)
        except SolverError as exc:
            logger.error("%s", exc)
            return ExitCode.SOLVER_ERROR

        # --- 出力 ---
        if opts.metrics_path is not None:
            metrics = FullMetrics(
                solver_name=solver_type_name(opts.linear_solver),
                solver_stats=result.stats,
                assembly_stats=assembly_stats,
            )
            try:
                export_metrics(opts.metrics_path, metrics)
            except ExportError as exc:
                logger.error("%s", exc)
                return ExitCode.METRICS_EXPORT_ERROR

        if cache is not None:
            cache.log_info(config.mesh_path, opts.config_path)

        if opts.output_dir is not None:
            try:
                self._export_vtk(opts.output_dir, config, mesh, result)
            except ExportError as exc:
                logger.error("%s", exc)
                return ExitCode.VTK_EXPORT_ERROR

        logger.info("Application finished successfully")
        return ExitCode.SUCCESS

    def _assemble(
        self,
        config: ProblemConfig,
        mesh: Mesh,
        transient: bool,
    ) -> tuple[GlobalMatrices, AssemblyStats]:
        logger.info("Assembling system...")
        element_builder = ElementMatrixBuilder(config.material, config.boundary_condition)
        n_jobs = resolve_n_jobs(self.options.n_threads or -1)
        builder = GlobalMatrixBuilder(mesh, element_builder, n_jobs=n_jobs, build_capacity=transient)
        try:
            matrices, stats = builder.build()
        except HeatFEMError as exc:
            if isinstance(exc, AssemblyError):
                raise
            raise AssemblyError(str(exc)) from exc
        return matrices, stats

    def _export_vtk(
        self,
        output_dir: Path,
        config: ProblemConfig,
        mesh: Mesh,
        result: FEMSolverResult,
    ) -> None:
        if result.is_steady():
            export_steady_vtk(output_dir / "solution.vtu", mesh, result.final_solution)
            return
        tc = config.transient_config
        if tc is None or not tc.save_history:
            logger.info("History not saved; skipping VTK export")
            return
        transient = result.transient
        export_transient_vtk(output_dir, mesh, transient.temperatures, transient.time_steps)


__all__ = ["ExitCode", "ApplicationOptions", "Application"]
