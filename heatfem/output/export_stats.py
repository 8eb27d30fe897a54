"""解析メトリクス（ソルバー統計 + アセンブリ統計）のエクスポート.

出力形式は拡張子で選択する:
    - .csv: ヘッダー行 + データ1行（ベンチマーク集計用）
    - .json: solver / assembly セクションの構造化 JSON（派生値を含む）
"""

from __future__ import annotations

import csv
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import numpy as np

from heatfem.core.stats import AssemblyStats, FEMSolverStats
from heatfem.errors import ExportError

logger = logging.getLogger(__name__)


@dataclass
class FullMetrics:
    """1回の解析のメトリクス.

    Attributes:
        solver_name: 線形ソルバー名
        solver_stats: 求解ドライバの統計
        assembly_stats: アセンブリ統計（キャッシュ読込時は None）
    """

    solver_name: str
    solver_stats: FEMSolverStats
    assembly_stats: AssemblyStats | None = None


class _NumpyEncoder(json.JSONEncoder):
    """NumPy スカラー・配列を JSON シリアライズ可能にするエンコーダー."""

    def default(self, obj: Any) -> Any:
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        return super().default(obj)


_SOLVER_COLUMNS = (
    "matrix_size",
    "matrix_nonzeros",
    "num_time_steps",
    "linear_solve_count",
    "avg_factorization_ms",
    "avg_solve_ms",
    "avg_per_step_ms",
    "setup_time_ms",
    "total_time_ms",
    "overhead_ms",
    "overhead_percent",
    "memory_used_mb",
    "peak_memory_mb",
    "residual_norm",
    "min_residual",
    "max_residual",
    "solution_min",
    "solution_max",
)

_ASSEMBLY_COLUMNS = (
    "element_count",
    "boundary_element_count",
    "n_workers",
    "element_assembly_time_ms",
    "merge_time_ms",
    "boundary_assembly_time_ms",
    "triplet_to_sparse_time_ms",
    "total_assembly_time_ms",
    "overhead_percent",
    "elements_per_second",
    "triplets_h_count",
    "triplets_c_count",
    "triplets_memory_mb",
    "sparse_matrix_memory_mb",
)


def _json_float(value: float) -> float | None:
    """inf/NaN は JSON で表現できないため None にする."""
    return float(value) if np.isfinite(value) else None


def solver_stats_dict(stats: FEMSolverStats) -> dict[str, Any]:
    """FEMSolverStats を派生値込みの辞書に変換する."""
    return {
        "matrix_size": stats.matrix_size,
        "matrix_nonzeros": stats.matrix_nonzeros,
        "num_time_steps": stats.num_time_steps,
        "linear_solve_count": stats.linear_solve_count,
        "factorization_time_ms": stats.factorization_time_ms,
        "solve_time_ms": stats.solve_time_ms,
        "total_solver_time_ms": stats.total_solver_time_ms,
        "avg_factorization_ms": stats.avg_factorization_ms,
        "avg_solve_ms": stats.avg_solve_ms,
        "avg_per_step_ms": stats.avg_per_step_ms,
        "setup_time_ms": stats.setup_time_ms,
        "total_time_ms": stats.total_time_ms,
        "overhead_ms": stats.overhead_ms,
        "overhead_percent": stats.overhead_percent,
        "memory_used_mb": stats.memory_used_mb,
        "peak_memory_mb": stats.peak_memory_mb,
        "residual_norm": _json_float(stats.residual_norm),
        "min_residual": _json_float(stats.min_residual),
        "max_residual": _json_float(stats.max_residual),
        "solution_min": stats.solution_min,
        "solution_max": stats.solution_max,
    }


def assembly_stats_dict(stats: AssemblyStats) -> dict[str, Any]:
    """AssemblyStats を派生値込みの辞書に変換する."""
    return {
        "element_count": stats.element_count,
        "boundary_element_count": stats.boundary_element_count,
        "n_workers": stats.n_workers,
        "worker_triplet_counts": list(stats.worker_triplet_counts),
        "element_assembly_time_ms": stats.element_assembly_time_ms,
        "merge_time_ms": stats.merge_time_ms,
        "boundary_assembly_time_ms": stats.boundary_assembly_time_ms,
        "triplet_to_sparse_time_ms": stats.triplet_to_sparse_time_ms,
        "total_assembly_time_ms": stats.total_assembly_time_ms,
        "computation_time_ms": stats.computation_time_ms,
        "overhead_ms": stats.overhead_ms,
        "overhead_percent": stats.overhead_percent,
        "elements_per_second": stats.elements_per_second,
        "boundary_elements_per_second": stats.boundary_elements_per_second,
        "triplets_h_count": stats.triplets_h_count,
        "triplets_c_count": stats.triplets_c_count,
        "triplets_memory_mb": stats.triplets_memory_mb,
        "sparse_matrix_memory_mb": stats.sparse_matrix_memory_mb,
    }


def export_metrics(filepath: str | Path, metrics: FullMetrics) -> str:
    """メトリクスをファイルに出力する（.csv / .json）.

    Args:
        filepath: 出力ファイルパス
        metrics: 出力するメトリクス

    Returns:
        生成されたファイルパス

    Raises:
        ExportError: 未対応の拡張子、または書き込み失敗
    """
    filepath = Path(filepath)
    suffix = filepath.suffix.lower()
    logger.info("Exporting metrics to %s", filepath)

    try:
        if filepath.parent != Path(""):
            filepath.parent.mkdir(parents=True, exist_ok=True)
        if suffix == ".csv":
            _export_csv(filepath, metrics)
        elif suffix == ".json":
            _export_json(filepath, metrics)
        else:
            raise ExportError(f"未対応のメトリクス形式: '{suffix}'（.csv / .json）")
    except OSError as exc:
        raise ExportError(f"メトリクスの書き込みに失敗: {filepath}: {exc}") from exc

    return str(filepath)


def _export_csv(filepath: Path, metrics: FullMetrics) -> None:
    solver = solver_stats_dict(metrics.solver_stats)
    header = ["solver"] + list(_SOLVER_COLUMNS)
    row: list[Any] = [metrics.solver_name] + [_fmt(solver[c]) for c in _SOLVER_COLUMNS]

    if metrics.assembly_stats is not None:
        assembly = assembly_stats_dict(metrics.assembly_stats)
        header += [f"assembly_{c}" for c in _ASSEMBLY_COLUMNS]
        row += [_fmt(assembly[c]) for c in _ASSEMBLY_COLUMNS]

    with open(filepath, "w", newline="", encoding="utf-8") as fh:
        writer = csv.writer(fh)
        writer.writerow(header)
        writer.writerow(row)


def _export_json(filepath: Path, metrics: FullMetrics) -> None:
    data: dict[str, Any] = {
        "solver_name": metrics.solver_name,
        "solver": solver_stats_dict(metrics.solver_stats),
    }
    if metrics.assembly_stats is not None:
        data["assembly"] = assembly_stats_dict(metrics.assembly_stats)

    with open(filepath, "w", encoding="utf-8") as fh:
        json.dump(data, fh, cls=_NumpyEncoder, indent=2, ensure_ascii=False)


def _fmt(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, float):
        return f"{value:.10g}"
    return str(value)


__all__ = [
    "FullMetrics",
    "export_metrics",
    "solver_stats_dict",
    "assembly_stats_dict",
]
