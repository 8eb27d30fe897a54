"""要素レベル行列: Q4 双線形四角形要素と2節点境界線要素.

支配方程式（2D 非定常熱伝導）:
  ρc ∂T/∂t - ∇·(k ∇T) = 0

弱形式の離散化:
  H T + C dT/dt = P

ここで:
  H_e   = ∫∫ k ∇Nᵀ ∇N dA            （熱伝導）
  C_e   = ∫∫ ρc Nᵀ N dA             （熱容量）
  H_bc  = ∫ α Nᵀ N dS               （対流境界）
  P_bc  = ∫ α T_∞ Nᵀ dS             （対流荷重）
  P_q   = ∫ q Nᵀ dS                 （熱流束境界）
  H_pen = ∫ β Nᵀ N dS, P_pen = ∫ β T Nᵀ dS （温度規定、ペナルティ法）

積分は heatfem.integration のキャッシュ済みテーブルを使う。
ビルダーは構築後に不変で、複数スレッドから同時に呼び出してよい。
"""

from __future__ import annotations

import logging

import numpy as np

from heatfem.core.model import BoundaryCondition, BoundaryConditionType, Material
from heatfem.core.results import BoundaryMatrices, ElementMatrices
from heatfem.errors import ElementBuildError
from heatfem.integration import get_line_integration_data, get_quad_integration_data
from heatfem.mesh.model import Line, Mesh, Quad

logger = logging.getLogger(__name__)

# 温度規定境界のペナルティ係数 β [W/(m²·K)]
DIRICHLET_PENALTY = 1.0e10

DEFAULT_QUAD_SCHEMA = 3
DEFAULT_LINE_SCHEMA = 2


class ElementMatrixBuilder:
    """材料・境界条件を保持し、要素単位の行列を構築する.

    Args:
        material: 材料定数
        boundary_condition: 境界線要素に適用する境界条件
        quad_schema: Q4 要素の1方向積分点数（デフォルト 3）
        line_schema: 境界線要素の積分点数（デフォルト 2）

    Raises:
        IntegrationError: 積分点数が範囲外
    """

    def __init__(
        self,
        material: Material,
        boundary_condition: BoundaryCondition,
        quad_schema: int = DEFAULT_QUAD_SCHEMA,
        line_schema: int = DEFAULT_LINE_SCHEMA,
    ) -> None:
        self.material = material
        self.boundary_condition = boundary_condition
        self.quad_data = get_quad_integration_data(quad_schema)
        self.line_data = get_line_integration_data(line_schema)

    # ------------------------------------------------------------------
    # Q4 要素
    # ------------------------------------------------------------------

    def build_quad_matrices(self, mesh: Mesh, quad: Quad) -> ElementMatrices:
        """Q4 要素の熱伝導行列・熱容量行列.

        Args:
            mesh: 節点座標の参照元
            quad: 対象要素

        Returns:
            ElementMatrices: H (4,4), C (4,4), P (4,) = 0

        Raises:
            MeshError: 未知の節点 ID
            ElementBuildError: 積分点で det J ≤ 0（反転・退化要素）
        """
        node_xy = np.array([_xy(mesh, nid) for nid in quad.node_ids])
        x = node_xy[:, 0]
        y = node_xy[:, 1]

        data = self.quad_data
        k = self.material.conductivity
        rho_c = self.material.volumetric_heat_capacity

        He = np.zeros((4, 4))
        Ce = np.zeros((4, 4))
        for p in range(data.n_points):
            dN_dksi = data.dN_dksi[p]
            dN_deta = data.dN_deta[p]

            J00 = dN_dksi @ x
            J01 = dN_dksi @ y
            J10 = dN_deta @ x
            J11 = dN_deta @ y
            detJ = J00 * J11 - J01 * J10
            if not detJ > 0.0:
                raise ElementBuildError(
                    f"要素 {quad.id}: 積分点 {p} で det J = {detJ:.6e} ≤ 0（反転または退化した要素）"
                )

            inv00 = J11 / detJ
            inv01 = -J01 / detJ
            inv10 = -J10 / detJ
            inv11 = J00 / detJ
            dN_dx = inv00 * dN_dksi + inv01 * dN_deta
            dN_dy = inv10 * dN_dksi + inv11 * dN_deta

            dv = detJ * data.weights[p]
            He += k * (np.outer(dN_dx, dN_dx) + np.outer(dN_dy, dN_dy)) * dv
            Ce += rho_c * data.N_N_T[p] * dv

        return ElementMatrices(H=He, C=Ce, P=np.zeros(4))

    # ------------------------------------------------------------------
    # 境界線要素
    # ------------------------------------------------------------------

    def build_line_boundary_matrices(self, mesh: Mesh, line: Line) -> BoundaryMatrices:
        """2節点境界線要素の境界寄与.

        Args:
            mesh: 節点座標の参照元
            line: 対象の境界線要素

        Returns:
            BoundaryMatrices: H (2,2), P (2,)

        Raises:
            MeshError: 未知の節点 ID
            ElementBuildError: 長さゼロの辺、または境界条件のスカラー欠落
        """
        n1_xy = np.array(_xy(mesh, line.node_ids[0]))
        n2_xy = np.array(_xy(mesh, line.node_ids[1]))
        L = float(np.linalg.norm(n2_xy - n1_xy))
        if L <= 0.0:
            raise ElementBuildError(f"線要素 {line.id}: 長さゼロの辺")
        detJ = 0.5 * L

        bc = self.boundary_condition
        if bc.type is BoundaryConditionType.CONVECTION:
            alpha = _require(bc.alpha, "alpha", bc, line)
            T_inf = _require(bc.ambient_temperature, "ambient_temperature", bc, line)
            return self._robin(alpha, alpha * T_inf, detJ)
        if bc.type is BoundaryConditionType.FLUX:
            q = _require(bc.heat_flux, "heat_flux", bc, line)
            P = np.zeros(2)
            for p in range(self.line_data.n_points):
                P += q * self.line_data.N[p] * detJ * self.line_data.weights[p]
            return BoundaryMatrices(H=np.zeros((2, 2)), P=P)
        if bc.type is BoundaryConditionType.TEMPERATURE:
            T = _require(bc.temperature, "temperature", bc, line)
            return self._robin(DIRICHLET_PENALTY, DIRICHLET_PENALTY * T, detJ)
        raise ElementBuildError(f"未対応の境界条件種別: {bc.type}")

    def _robin(self, coeff: float, load: float, detJ: float) -> BoundaryMatrices:
        """H += coeff·NNᵀ detJ w, P += load·N detJ w."""
        data = self.line_data
        H = np.zeros((2, 2))
        P = np.zeros(2)
        for p in range(data.n_points):
            dv = detJ * data.weights[p]
            H += coeff * data.N_N_T[p] * dv
            P += load * data.N[p] * dv
        return BoundaryMatrices(H=H, P=P)


def _xy(mesh: Mesh, node_id: int) -> tuple[float, float]:
    node = mesh.get_node(node_id)
    return node.x, node.y


def _require(value: float | None, field_name: str, bc: BoundaryCondition, line: Line) -> float:
    if value is None:
        raise ElementBuildError(
            f"線要素 {line.id}: 境界条件 '{bc.physical_group_name}' ({bc.type.value}) に "
            f"{field_name} が指定されていません"
        )
    return float(value)


__all__ = [
    "ElementMatrixBuilder",
    "DIRICHLET_PENALTY",
    "DEFAULT_QUAD_SCHEMA",
    "DEFAULT_LINE_SCHEMA",
]
