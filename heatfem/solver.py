"""定常・非定常熱伝導の求解ドライバ.

定常:
  H T = P を1回解く。

非定常（陰的 Euler 法、固定時間刻み）:
  (H + C/dt) T_{n+1} = P + (C/dt) T_n

系行列 A = H + C/dt は時間不変なので一度だけ構築する。
reuse_factorization=True（デフォルト）では A の分解も一度だけ行い、
各ステップは右辺の更新と前進後退代入のみを行う。
False の場合は各ステップで solve(A, b) を呼ぶ（分解を毎回やり直す）。

入力検証はすべて最初の求解の前に行う。いずれかのステップで失敗した場合は
その SolverError をそのまま送出し、部分的な結果は返さない。
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass, field

import numpy as np
import scipy.sparse as sp

from heatfem.core.model import ProblemType, TransientConfig
from heatfem.core.results import LinearSolveResult
from heatfem.core.stats import FEMSolverStats
from heatfem.errors import SolverError, SolverErrorCode
from heatfem.linear import (
    LinearSolverProtocol,
    LinearSolverType,
    create_linear_solver,
    solver_type_name,
)
from heatfem.memory import MemoryMonitor

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FEMSolverConfig:
    """求解ドライバの設定.

    Attributes:
        problem_type: 定常 / 非定常
        linear_solver: 線形ソルバーの種別
        transient_config: 非定常解析の設定（TRANSIENT では必須）
        reuse_factorization: 非定常解析で系行列の分解を再利用するか
    """

    problem_type: ProblemType
    linear_solver: LinearSolverType = LinearSolverType.LU
    transient_config: TransientConfig | None = None
    reuse_factorization: bool = True


@dataclass
class SteadySolution:
    """定常解析の解."""

    solution: np.ndarray


@dataclass
class TransientSolution:
    """非定常解析の解.

    Attributes:
        final_solution: 最終時刻の温度
        temperatures: 保存した温度スナップショット（先頭は t=0 の初期状態）
        time_steps: temperatures に対応する時刻 [s]
        save_stride: 保存間隔（save_history=False の場合 None）
    """

    final_solution: np.ndarray
    temperatures: list[np.ndarray] = field(default_factory=list)
    time_steps: list[float] = field(default_factory=list)
    save_stride: int | None = None


@dataclass
class FEMSolverResult:
    """求解結果（SteadySolution / TransientSolution のいずれか）と統計."""

    payload: SteadySolution | TransientSolution
    stats: FEMSolverStats

    def is_steady(self) -> bool:
        return isinstance(self.payload, SteadySolution)

    def is_transient(self) -> bool:
        return isinstance(self.payload, TransientSolution)

    @property
    def final_solution(self) -> np.ndarray:
        if isinstance(self.payload, SteadySolution):
            return self.payload.solution
        return self.payload.final_solution

    @property
    def steady(self) -> SteadySolution:
        if not isinstance(self.payload, SteadySolution):
            raise ValueError("結果は定常解ではありません")
        return self.payload

    @property
    def transient(self) -> TransientSolution:
        if not isinstance(self.payload, TransientSolution):
            raise ValueError("結果は非定常解ではありません")
        return self.payload


# ---------------------------------------------------------------------------
# 入力検証
# ---------------------------------------------------------------------------


def _invalid(message: str) -> SolverError:
    return SolverError(SolverErrorCode.INVALID_INPUT, message)


def _check_square(name: str, M) -> None:
    if M is None:
        raise _invalid(f"{name} is None")
    if M.ndim != 2 or M.shape[0] != M.shape[1]:
        raise _invalid(f"{name} must be square: shape={M.shape}")


def _check_load(H, P) -> np.ndarray:
    P = np.asarray(P, dtype=np.float64)
    if P.ndim != 1 or P.shape[0] != H.shape[0]:
        raise _invalid(f"H rows ({H.shape[0]}) != P size ({P.shape})")
    return P


def _check_transient_config(tc: TransientConfig) -> None:
    if not (math.isfinite(tc.time_step) and tc.time_step > 0):
        raise _invalid(f"time_step must be > 0: {tc.time_step}")
    if not (math.isfinite(tc.total_time) and tc.total_time > 0):
        raise _invalid(f"total_time must be > 0: {tc.total_time}")
    if tc.save_history and (tc.save_stride is None or tc.save_stride <= 0):
        raise _invalid(f"save_stride must be > 0 when save_history is set: {tc.save_stride}")
    if tc.num_steps < 1:
        raise _invalid(
            f"total_time ({tc.total_time}) is shorter than one time_step ({tc.time_step})"
        )


# ---------------------------------------------------------------------------
# ドライバ
# ---------------------------------------------------------------------------


class FEMSolver:
    """定常・非定常熱伝導の求解ドライバ.

    Args:
        linear_solver_factory: LinearSolverType → 線形ソルバーの生成関数
    """

    def __init__(
        self,
        linear_solver_factory: Callable[
            [LinearSolverType], LinearSolverProtocol
        ] = create_linear_solver,
    ) -> None:
        self.linear_solver_factory = linear_solver_factory

    def solve(
        self,
        H: sp.spmatrix,
        C: sp.spmatrix | None,
        P: np.ndarray,
        config: FEMSolverConfig,
    ) -> FEMSolverResult:
        """問題種別に応じて定常/非定常解析を実行する.

        Raises:
            SolverError: 入力不正・特異行列・数値不安定
        """
        if config.problem_type is ProblemType.STEADY:
            return self.solve_steady(H, P, config.linear_solver)
        if config.transient_config is None:
            raise _invalid("transient problem requires a transient configuration")
        return self.solve_transient(
            H,
            C,
            P,
            config.transient_config,
            config.linear_solver,
            reuse_factorization=config.reuse_factorization,
        )

    def solve_steady(
        self,
        H: sp.spmatrix,
        P: np.ndarray,
        solver_type: LinearSolverType = LinearSolverType.LU,
    ) -> FEMSolverResult:
        """定常解析 H T = P.

        Args:
            H: (N, N) 熱伝導行列（境界寄与を含む）
            P: (N,) 荷重ベクトル
            solver_type: 線形ソルバーの種別

        Returns:
            FEMSolverResult（payload = SteadySolution）
        """
        t_start = time.perf_counter()
        _check_square("H", H)
        P = _check_load(H, P)

        solver = self.linear_solver_factory(solver_type)
        logger.info(
            "Solving steady system: n=%d, nnz=%d, solver=%s",
            H.shape[0],
            H.nnz,
            solver_type_name(solver_type),
        )
        result = solver.solve(H, P)

        total_ms = (time.perf_counter() - t_start) * 1000.0
        stats = FEMSolverStats.from_linear_stats(result.stats, total_ms)
        _record_solution_range(stats, result.solution)
        logger.info(
            "Steady solve finished in %.2f ms (factorize %.2f ms, solve %.2f ms, residual %.3e)",
            total_ms,
            stats.factorization_time_ms,
            stats.solve_time_ms,
            stats.residual_norm,
        )
        return FEMSolverResult(SteadySolution(result.solution), stats)

    def solve_transient(
        self,
        H: sp.spmatrix,
        C: sp.spmatrix | None,
        P: np.ndarray,
        transient_config: TransientConfig,
        solver_type: LinearSolverType = LinearSolverType.LU,
        *,
        reuse_factorization: bool = True,
    ) -> FEMSolverResult:
        """非定常解析（陰的 Euler 法）.

        Args:
            H: (N, N) 熱伝導行列
            C: (N, N) 熱容量行列
            P: (N,) 荷重ベクトル
            transient_config: 時間刻み・解析時間・履歴保存の設定
            solver_type: 線形ソルバーの種別
            reuse_factorization: True の場合 A を一度だけ分解する

        Returns:
            FEMSolverResult（payload = TransientSolution）

        Raises:
            SolverError: 入力不正（求解前に検出）、または任意ステップでの求解失敗
        """
        t_start = time.perf_counter()
        _check_square("H", H)
        _check_square("C", C)
        if C.shape != H.shape:
            raise _invalid(f"H shape {H.shape} != C shape {C.shape}")
        P = _check_load(H, P)
        _check_transient_config(transient_config)

        tc = transient_config
        dt = tc.time_step
        n_steps = tc.num_steps
        stride = tc.save_stride if tc.save_history else None

        monitor = MemoryMonitor().start()

        t0 = time.perf_counter()
        C_dt = sp.csr_matrix(C) / dt
        A = (sp.csr_matrix(H) + C_dt).tocsr()
        setup_ms = (time.perf_counter() - t0) * 1000.0

        solver = self.linear_solver_factory(solver_type)
        logger.info(
            "Solving transient system: n=%d, nnz=%d, steps=%d, dt=%g, solver=%s, reuse=%s",
            A.shape[0],
            A.nnz,
            n_steps,
            dt,
            solver_type_name(solver_type),
            reuse_factorization,
        )

        stats = FEMSolverStats(
            setup_time_ms=setup_ms,
            matrix_size=A.shape[0],
            matrix_nonzeros=int(A.nnz),
            linear_solve_count=0,
            num_time_steps=n_steps,
        )

        factorization = None
        if reuse_factorization:
            factorization = solver.factorize(A)
            stats.factorization_time_ms += factorization.factorization_time_ms
            stats.total_solver_time_ms += factorization.factorization_time_ms
            monitor.sample()

        T = np.full(A.shape[0], tc.initial_temperature, dtype=np.float64)
        temperatures: list[np.ndarray] = []
        time_steps: list[float] = []
        if stride is not None:
            temperatures.append(T.copy())
            time_steps.append(0.0)

        last_decile = 0
        for step in range(n_steps):
            b = P + C_dt @ T
            if factorization is not None:
                result: LinearSolveResult = factorization.solve(b)
            else:
                result = solver.solve(A, b)
            _accumulate(stats, result)
            monitor.sample()
            T = result.solution

            if stride is not None and (step % stride == 0 or step == n_steps - 1):
                temperatures.append(T.copy())
                time_steps.append((step + 1) * dt)

            decile = (step + 1) * 10 // n_steps
            if decile > last_decile:
                last_decile = decile
                logger.info(
                    "Time stepping progress: %d%% (step %d/%d, t=%g)",
                    decile * 10,
                    step + 1,
                    n_steps,
                    (step + 1) * dt,
                )

        monitor.stop()
        stats.total_time_ms = (time.perf_counter() - t_start) * 1000.0
        stats.overhead_ms = stats.total_time_ms - stats.total_solver_time_ms
        stats.memory_used_bytes = monitor.used_bytes
        stats.peak_memory_bytes = max(stats.peak_memory_bytes, monitor.peak_bytes)
        _record_solution_range(stats, T)

        logger.info(
            "Transient solve finished in %.2f ms: %d steps, avg solve %.3f ms, "
            "residual [%.3e, %.3e], T [%g, %g]",
            stats.total_time_ms,
            n_steps,
            stats.avg_solve_ms,
            stats.min_residual,
            stats.max_residual,
            stats.solution_min,
            stats.solution_max,
        )

        solution = TransientSolution(
            final_solution=T,
            temperatures=temperatures,
            time_steps=time_steps,
            save_stride=stride,
        )
        return FEMSolverResult(solution, stats)


def _accumulate(stats: FEMSolverStats, result: LinearSolveResult) -> None:
    s = result.stats
    stats.factorization_time_ms += s.factorization_time_ms
    stats.solve_time_ms += s.solve_time_ms
    stats.total_solver_time_ms += s.elapsed_time_ms
    stats.linear_solve_count += 1
    stats.residual_norm = s.residual_norm
    stats.min_residual = min(stats.min_residual, s.residual_norm)
    stats.max_residual = max(stats.max_residual, s.residual_norm)
    stats.peak_memory_bytes = max(stats.peak_memory_bytes, s.peak_memory_bytes)


def _record_solution_range(stats: FEMSolverStats, T: np.ndarray) -> None:
    if T.size:
        stats.solution_min = float(np.min(T))
        stats.solution_max = float(np.max(T))


__all__ = [
    "FEMSolverConfig",
    "SteadySolution",
    "TransientSolution",
    "FEMSolverResult",
    "FEMSolver",
]
