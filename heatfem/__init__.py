"""heatfem - 2D 熱伝導有限要素ソルバー.

Q4 双線形四角形要素による定常・非定常（陰的 Euler 法）熱伝導解析。

パッケージ構成:
  - core: 材料・境界条件・問題設定・戻り値型・統計量
  - integration: Gauss-Legendre 積分テーブル
  - mesh: メッシュモデル・構造格子生成・Gmsh .msh 読込
  - element_builder: 要素行列（熱伝導・熱容量・境界寄与）
  - assembly: 全体行列の並列アセンブリ
  - linear: 直接法線形ソルバー（Cholesky / LU / QR）
  - solver: 定常・非定常求解ドライバ
  - config: JSON 問題設定の読込
  - output: VTK・メトリクス・Matrix Market 出力
  - cache: 全体行列のディスクキャッシュ
  - app / cli: アプリケーション・コマンドライン
"""

from heatfem.assembly import GlobalMatrixBuilder
from heatfem.core import (
    BoundaryCondition,
    BoundaryConditionType,
    Material,
    ProblemType,
    TransientConfig,
)
from heatfem.element_builder import ElementMatrixBuilder
from heatfem.errors import HeatFEMError, SolverError, SolverErrorCode
from heatfem.linear import LinearSolverType, create_linear_solver
from heatfem.mesh import Mesh, make_rect_mesh, read_gmsh_msh
from heatfem.solver import FEMSolver, FEMSolverConfig, FEMSolverResult

__version__ = "0.1.0"

__all__ = [
    "Material",
    "BoundaryCondition",
    "BoundaryConditionType",
    "ProblemType",
    "TransientConfig",
    "Mesh",
    "make_rect_mesh",
    "read_gmsh_msh",
    "ElementMatrixBuilder",
    "GlobalMatrixBuilder",
    "LinearSolverType",
    "create_linear_solver",
    "FEMSolver",
    "FEMSolverConfig",
    "FEMSolverResult",
    "HeatFEMError",
    "SolverError",
    "SolverErrorCode",
]
