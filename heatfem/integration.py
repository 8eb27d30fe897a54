"""Gauss-Legendre 積分テーブル（Q4 要素・2節点線要素）.

各積分点について以下を事前計算する:
  - 参照座標 (ξ, η) と重み w
  - 形状関数 N とその参照座標微分 dN/dξ, dN/dη
  - 外積 N·Nᵀ（熱容量行列・境界行列のアセンブリで直接使用）

テーブルは次数 n の純関数で、get_*_integration_data() がプロセス全体で
一度だけ構築してキャッシュする。構築後は読み取り専用（numpy 配列は writeable=False）。

Q4 形状関数（反時計回り節点順）:
  N1 = (1-ξ)(1-η)/4, N2 = (1+ξ)(1-η)/4, N3 = (1+ξ)(1+η)/4, N4 = (1-ξ)(1+η)/4
2節点線形状関数:
  N1 = (1-ξ)/2, N2 = (1+ξ)/2
"""

from __future__ import annotations

import logging
import math
import numbers
import threading
from dataclasses import dataclass
from enum import IntEnum

import numpy as np

from heatfem.errors import IntegrationError

logger = logging.getLogger(__name__)


class IntegrationSchema(IntEnum):
    """1方向あたりの積分点数."""

    GAUSS1 = 1
    GAUSS2 = 2
    GAUSS3 = 3
    GAUSS4 = 4
    GAUSS5 = 5


def _legendre_table() -> tuple[tuple[tuple[float, ...], ...], tuple[tuple[float, ...], ...]]:
    """[-1, 1] 上の 1〜5 点 Gauss-Legendre 点と重み（閉形式）."""
    s = math.sqrt
    a4 = s(3.0 / 7.0 - 2.0 / 7.0 * s(6.0 / 5.0))
    b4 = s(3.0 / 7.0 + 2.0 / 7.0 * s(6.0 / 5.0))
    a5 = s(5.0 - 2.0 * s(10.0 / 7.0)) / 3.0
    b5 = s(5.0 + 2.0 * s(10.0 / 7.0)) / 3.0
    points = (
        (0.0,),
        (-s(1.0 / 3.0), s(1.0 / 3.0)),
        (-s(3.0 / 5.0), 0.0, s(3.0 / 5.0)),
        (-b4, -a4, a4, b4),
        (-b5, -a5, 0.0, a5, b5),
    )
    w4a = (18.0 + s(30.0)) / 36.0
    w4b = (18.0 - s(30.0)) / 36.0
    w5a = (322.0 + 13.0 * s(70.0)) / 900.0
    w5b = (322.0 - 13.0 * s(70.0)) / 900.0
    weights = (
        (2.0,),
        (1.0, 1.0),
        (5.0 / 9.0, 8.0 / 9.0, 5.0 / 9.0),
        (w4b, w4a, w4a, w4b),
        (w5b, w5a, 128.0 / 225.0, w5a, w5b),
    )
    return points, weights


LEGENDRE_POINTS, LEGENDRE_WEIGHTS = _legendre_table()


def _check_schema(schema: int) -> int:
    if isinstance(schema, bool) or not isinstance(schema, numbers.Integral):
        raise IntegrationError(f"Unsupported integration schema: {schema!r} (integer required)")
    n = int(schema)
    if n < 1 or n > len(LEGENDRE_POINTS):
        raise IntegrationError(f"Unsupported integration schema: {n}")
    return n


def _frozen(arr: np.ndarray) -> np.ndarray:
    arr.setflags(write=False)
    return arr


@dataclass(frozen=True)
class QuadIntegrationData:
    """Q4 要素の積分テーブル.

    Attributes:
        n_gauss: 1方向あたりの点数
        n_points: 積分点総数 (= n_gauss²)
        ksi, eta: (n_points,) 参照座標（ξ 外側・η 内側のループ順）
        weights: (n_points,) 重み w_i·w_j
        N: (n_points, 4) 形状関数値
        dN_dksi, dN_deta: (n_points, 4) 参照座標微分
        N_N_T: (n_points, 4, 4) 外積 N·Nᵀ
    """

    n_gauss: int
    n_points: int
    ksi: np.ndarray
    eta: np.ndarray
    weights: np.ndarray
    N: np.ndarray
    dN_dksi: np.ndarray
    dN_deta: np.ndarray
    N_N_T: np.ndarray


@dataclass(frozen=True)
class LineIntegrationData:
    """2節点線要素の積分テーブル.

    Attributes:
        n_points: 積分点数
        ksi: (n_points,) 参照座標
        weights: (n_points,) 重み
        N: (n_points, 2) 形状関数値
        dN_dksi: (n_points, 2) 参照座標微分（定数 ∓1/2）
        N_N_T: (n_points, 2, 2) 外積 N·Nᵀ
    """

    n_points: int
    ksi: np.ndarray
    weights: np.ndarray
    N: np.ndarray
    dN_dksi: np.ndarray
    N_N_T: np.ndarray


def build_quad_integration_data(schema: int) -> QuadIntegrationData:
    """Q4 要素の積分テーブルを構築する.

    Args:
        schema: 1方向あたりの積分点数（1〜5）

    Returns:
        QuadIntegrationData

    Raises:
        IntegrationError: schema が [1, 5] の範囲外
    """
    n = _check_schema(schema)
    pts = LEGENDRE_POINTS[n - 1]
    wts = LEGENDRE_WEIGHTS[n - 1]

    ksi = np.array([pts[i] for i in range(n) for _ in range(n)], dtype=np.float64)
    eta = np.array([pts[j] for _ in range(n) for j in range(n)], dtype=np.float64)
    weights = np.array([wts[i] * wts[j] for i in range(n) for j in range(n)], dtype=np.float64)

    N = 0.25 * np.column_stack(
        [
            (1.0 - ksi) * (1.0 - eta),
            (1.0 + ksi) * (1.0 - eta),
            (1.0 + ksi) * (1.0 + eta),
            (1.0 - ksi) * (1.0 + eta),
        ]
    )
    dN_dksi = 0.25 * np.column_stack([-(1.0 - eta), (1.0 - eta), (1.0 + eta), -(1.0 + eta)])
    dN_deta = 0.25 * np.column_stack([-(1.0 - ksi), -(1.0 + ksi), (1.0 + ksi), (1.0 - ksi)])
    N_N_T = np.einsum("pa,pb->pab", N, N)

    logger.debug("Quad integration data built: nGauss=%d, nPoints=%d", n, n * n)

    return QuadIntegrationData(
        n_gauss=n,
        n_points=n * n,
        ksi=_frozen(ksi),
        eta=_frozen(eta),
        weights=_frozen(weights),
        N=_frozen(N),
        dN_dksi=_frozen(dN_dksi),
        dN_deta=_frozen(dN_deta),
        N_N_T=_frozen(N_N_T),
    )


def build_line_integration_data(schema: int) -> LineIntegrationData:
    """2節点線要素の積分テーブルを構築する.

    Args:
        schema: 積分点数（1〜5）

    Returns:
        LineIntegrationData

    Raises:
        IntegrationError: schema が [1, 5] の範囲外
    """
    n = _check_schema(schema)
    ksi = np.array(LEGENDRE_POINTS[n - 1], dtype=np.float64)
    weights = np.array(LEGENDRE_WEIGHTS[n - 1], dtype=np.float64)

    N = np.column_stack([0.5 * (1.0 - ksi), 0.5 * (1.0 + ksi)])
    dN_dksi = np.tile(np.array([-0.5, 0.5]), (n, 1))
    N_N_T = np.einsum("pa,pb->pab", N, N)

    logger.debug("Line integration data built: nPoints=%d", n)

    return LineIntegrationData(
        n_points=n,
        ksi=_frozen(ksi),
        weights=_frozen(weights),
        N=_frozen(N),
        dN_dksi=_frozen(dN_dksi),
        N_N_T=_frozen(N_N_T),
    )


# ---------------------------------------------------------------------------
# プロセス全体キャッシュ（初回構築のみロック、以降は読み取りのみ）
# ---------------------------------------------------------------------------

_quad_cache: dict[int, QuadIntegrationData] = {}
_line_cache: dict[int, LineIntegrationData] = {}
_cache_lock = threading.Lock()


def get_quad_integration_data(schema: int) -> QuadIntegrationData:
    """キャッシュ済みの Q4 積分テーブルを返す（初回のみ構築）."""
    n = int(schema)
    data = _quad_cache.get(n)
    if data is not None:
        return data
    with _cache_lock:
        data = _quad_cache.get(n)
        if data is None:
            data = build_quad_integration_data(n)
            _quad_cache[n] = data
    return data


def get_line_integration_data(schema: int) -> LineIntegrationData:
    """キャッシュ済みの線要素積分テーブルを返す（初回のみ構築）."""
    n = int(schema)
    data = _line_cache.get(n)
    if data is not None:
        return data
    with _cache_lock:
        data = _line_cache.get(n)
        if data is None:
            data = build_line_integration_data(n)
            _line_cache[n] = data
    return data


__all__ = [
    "IntegrationSchema",
    "LEGENDRE_POINTS",
    "LEGENDRE_WEIGHTS",
    "QuadIntegrationData",
    "LineIntegrationData",
    "build_quad_integration_data",
    "build_line_integration_data",
    "get_quad_integration_data",
    "get_line_integration_data",
]
