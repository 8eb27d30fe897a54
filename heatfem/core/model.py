"""物理モデルのデータ定義.

材料・境界条件・問題種別・過渡解析設定を保持する。
単位はすべて SI（温度は K）。
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from enum import Enum


@dataclass(frozen=True)
class Material:
    """等方性熱伝導材料.

    Attributes:
        name: 材料名
        conductivity: 熱伝導率 k [W/(m·K)]
        density: 密度 ρ [kg/m³]
        specific_heat: 比熱 c [J/(kg·K)]
    """

    name: str
    conductivity: float
    density: float
    specific_heat: float

    def __post_init__(self) -> None:
        if self.conductivity <= 0:
            raise ValueError(f"conductivity は正値: {self.conductivity}")
        if self.density <= 0:
            raise ValueError(f"density は正値: {self.density}")
        if self.specific_heat <= 0:
            raise ValueError(f"specific_heat は正値: {self.specific_heat}")

    @property
    def volumetric_heat_capacity(self) -> float:
        """体積熱容量 ρc [J/(m³·K)]."""
        return self.density * self.specific_heat


class BoundaryConditionType(Enum):
    """境界条件の種別.

    TEMPERATURE: Dirichlet（T = 値）
    FLUX: Neumann（q = 値）
    CONVECTION: Robin（q = α(T∞ - T)）
    """

    TEMPERATURE = "temperature"
    FLUX = "flux"
    CONVECTION = "convection"


def parse_boundary_condition_type(text: str) -> BoundaryConditionType | None:
    """文字列から境界条件種別を解決する。未知の文字列は None."""
    try:
        return BoundaryConditionType(text)
    except ValueError:
        return None


@dataclass(frozen=True)
class BoundaryCondition:
    """物理グループに適用する境界条件.

    種別ごとに必要なスカラーが異なる。欠落の検出は境界行列の構築時に行う。

    Attributes:
        physical_group_name: 適用先の物理グループ名
        type: 境界条件の種別
        temperature: 規定温度 [K]（TEMPERATURE）
        heat_flux: 流入熱流束 [W/m²]（FLUX）
        alpha: 対流熱伝達率 [W/(m²·K)]（CONVECTION）
        ambient_temperature: 周囲温度 [K]（CONVECTION）
    """

    physical_group_name: str
    type: BoundaryConditionType
    temperature: float | None = None
    heat_flux: float | None = None
    alpha: float | None = None
    ambient_temperature: float | None = None


class ProblemType(Enum):
    """解析種別."""

    STEADY = "steady"
    TRANSIENT = "transient"


def parse_problem_type(text: str) -> ProblemType | None:
    """文字列から解析種別を解決する。未知の文字列は None."""
    try:
        return ProblemType(text)
    except ValueError:
        return None


@dataclass(frozen=True)
class TransientConfig:
    """過渡熱伝導解析（陰的 Euler 法）の設定.

    値の検証は時間積分ドライバと設定ローダが行う。

    Attributes:
        total_time: 解析時間 [s]
        time_step: 時間刻み dt [s]
        save_history: True の場合、温度履歴を save_stride ごとに保存
        save_stride: 履歴保存間隔（ステップ数）。save_history 時は必須
        initial_temperature: 一様初期温度 [K]
    """

    total_time: float
    time_step: float
    save_history: bool = False
    save_stride: int | None = None
    initial_temperature: float = 0.0

    @property
    def num_steps(self) -> int:
        """ステップ数 floor(total_time / time_step).

        比が整数と丸め誤差程度（相対 1e-12）しか違わない場合は、その整数とする
        （0.3 / 0.1 = 2.9999999999999996 → 3）。それ以外は切り捨て。
        """
        if self.time_step <= 0 or self.total_time <= 0:
            return 0
        ratio = self.total_time / self.time_step
        nearest = round(ratio)
        if math.isclose(ratio, nearest, rel_tol=1e-12):
            return int(nearest)
        return int(math.floor(ratio))


__all__ = [
    "Material",
    "BoundaryConditionType",
    "parse_boundary_condition_type",
    "BoundaryCondition",
    "ProblemType",
    "parse_problem_type",
    "TransientConfig",
]
