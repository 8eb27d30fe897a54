"""heatfem.core - 物理モデル・戻り値型・統計量の定義."""

from heatfem.core.model import (
    BoundaryCondition,
    BoundaryConditionType,
    Material,
    ProblemType,
    TransientConfig,
    parse_boundary_condition_type,
    parse_problem_type,
)
from heatfem.core.results import (
    BoundaryMatrices,
    ElementMatrices,
    GlobalMatrices,
    GlobalMatrixBuildResult,
    LinearSolveResult,
)
from heatfem.core.stats import (
    AssemblyStats,
    FEMSolverStats,
    LinearSolverStats,
    bytes_to_mib,
)

__all__ = [
    "Material",
    "BoundaryConditionType",
    "BoundaryCondition",
    "ProblemType",
    "TransientConfig",
    "parse_boundary_condition_type",
    "parse_problem_type",
    "ElementMatrices",
    "BoundaryMatrices",
    "GlobalMatrices",
    "GlobalMatrixBuildResult",
    "LinearSolveResult",
    "AssemblyStats",
    "LinearSolverStats",
    "FEMSolverStats",
    "bytes_to_mib",
]
