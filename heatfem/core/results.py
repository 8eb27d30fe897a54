"""メソッド戻り値の型定義.

要素行列・全体行列・線形ソルバーの戻り値を NamedTuple で定義する。
タプルアンパッキング（H, C, P = matrices）と名前付きアクセスの両方が使える。
"""

from __future__ import annotations

from typing import NamedTuple

import numpy as np
import scipy.sparse as sp

from heatfem.core.stats import AssemblyStats, LinearSolverStats


class ElementMatrices(NamedTuple):
    """Q4 要素の局所行列.

    Attributes:
        H: (4, 4) 熱伝導行列
        C: (4, 4) 熱容量行列
        P: (4,) 荷重ベクトル
    """

    H: np.ndarray
    C: np.ndarray
    P: np.ndarray


class BoundaryMatrices(NamedTuple):
    """2節点境界線要素の局所行列.

    Attributes:
        H: (2, 2) 境界寄与（対流・ペナルティ）
        P: (2,) 境界荷重
    """

    H: np.ndarray
    P: np.ndarray


class GlobalMatrices(NamedTuple):
    """全体系 H T + C dT/dt = P.

    Attributes:
        H: (N, N) CSR 熱伝導行列（境界寄与を含む）
        C: (N, N) CSR 熱容量行列。定常解析で構築しない場合は None
        P: (N,) 荷重ベクトル
    """

    H: sp.csr_matrix
    C: sp.csr_matrix | None
    P: np.ndarray


class GlobalMatrixBuildResult(NamedTuple):
    """GlobalMatrixBuilder.build() の結果."""

    matrices: GlobalMatrices
    stats: AssemblyStats


class LinearSolveResult(NamedTuple):
    """線形ソルバーの結果.

    Attributes:
        solution: (N,) 解ベクトル
        stats: 分解・求解時間、残差、メモリ
    """

    solution: np.ndarray
    stats: LinearSolverStats


__all__ = [
    "ElementMatrices",
    "BoundaryMatrices",
    "GlobalMatrices",
    "GlobalMatrixBuildResult",
    "LinearSolveResult",
]
