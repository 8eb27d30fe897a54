"""heatfem.output - 解析結果・メトリクス・行列のエクスポート."""

from heatfem.output.export_matrix import export_matrix_market
from heatfem.output.export_stats import (
    FullMetrics,
    assembly_stats_dict,
    export_metrics,
    solver_stats_dict,
)
from heatfem.output.export_vtk import VTK_QUAD, export_steady_vtk, export_transient_vtk

__all__ = [
    "FullMetrics",
    "export_metrics",
    "solver_stats_dict",
    "assembly_stats_dict",
    "export_steady_vtk",
    "export_transient_vtk",
    "VTK_QUAD",
    "export_matrix_market",
]
