"""線形ソルバー（直接法）.

  - CholeskySolver: SuperLU 対称モード（MMD_AT_PLUS_A 順序付け、対角ピボット）。SPD 系向け
  - SparseLUSolver: SuperLU（COLAMD 順序付け）。一般の非対称系向け
  - SparseQRSolver: 列ピボット付き Householder QR（密行列）。小規模・悪条件系向け

いずれも factorize(A) で分解を一度だけ行い、返された Factorization の
solve(b) で右辺を差し替えて前進後退代入できる。solve(A, b) は分解 + 求解の一括実行。

エラー:
  - 入力不正（非正方・次元不一致・非有限値） → SolverError(INVALID_INPUT)
  - 分解失敗（特異・ランク落ち・ゼロピボット） → SolverError(SINGULAR_MATRIX)
  - 解に NaN/inf                           → SolverError(NUMERICAL_INSTABILITY)
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import NamedTuple, Protocol, runtime_checkable

import numpy as np
import scipy.linalg as sla
import scipy.sparse as sp
import scipy.sparse.linalg as spla

from heatfem.core.results import LinearSolveResult
from heatfem.core.stats import LinearSolverStats
from heatfem.errors import SolverError, SolverErrorCode
from heatfem.memory import MemoryMonitor

logger = logging.getLogger(__name__)


class LinearSolverType(Enum):
    """線形ソルバーの種別."""

    CHOLESKY = "cholesky"
    LU = "lu"
    QR = "qr"


class LinearSolverInfo(NamedTuple):
    name: str
    description: str


LINEAR_SOLVERS: dict[LinearSolverType, LinearSolverInfo] = {
    LinearSolverType.CHOLESKY: LinearSolverInfo(
        "cholesky", "Symmetric SuperLU (LDLT-like) for symmetric positive definite systems"
    ),
    LinearSolverType.LU: LinearSolverInfo("lu", "Sparse LU (SuperLU, COLAMD) for general systems"),
    LinearSolverType.QR: LinearSolverInfo(
        "qr", "Column-pivoted Householder QR (dense) for small ill-conditioned systems"
    ),
}


def parse_solver_type(text: str) -> LinearSolverType | None:
    """ソルバー名（大文字小文字を区別しない）から種別を解決する。未知の名前は None."""
    key = text.strip().lower()
    for solver_type, info in LINEAR_SOLVERS.items():
        if info.name == key:
            return solver_type
    return None


def solver_type_name(solver_type: LinearSolverType) -> str:
    return LINEAR_SOLVERS[solver_type].name


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class FactorizationProtocol(Protocol):
    """分解済みの系. 右辺を差し替えて繰り返し解ける."""

    factorization_time_ms: float

    def solve(self, b: np.ndarray) -> LinearSolveResult: ...


@runtime_checkable
class LinearSolverProtocol(Protocol):
    """線形ソルバーの共通インタフェース."""

    name: str

    def factorize(self, A: sp.spmatrix) -> FactorizationProtocol: ...

    def solve(self, A: sp.spmatrix, b: np.ndarray) -> LinearSolveResult: ...


# ---------------------------------------------------------------------------
# 入力検証・残差
# ---------------------------------------------------------------------------


def _check_matrix(A) -> sp.csc_matrix:
    if A is None:
        raise SolverError(SolverErrorCode.INVALID_INPUT, "matrix is None")
    if A.ndim != 2 or A.shape[0] != A.shape[1]:
        raise SolverError(SolverErrorCode.INVALID_INPUT, f"matrix must be square: shape={A.shape}")
    if A.shape[0] == 0:
        raise SolverError(SolverErrorCode.INVALID_INPUT, "matrix is empty")
    A = sp.csc_matrix(A, dtype=np.float64)
    if not np.all(np.isfinite(A.data)):
        raise SolverError(SolverErrorCode.INVALID_INPUT, "matrix contains non-finite values")
    return A


def _check_rhs(b, n: int) -> np.ndarray:
    b = np.asarray(b, dtype=np.float64)
    if b.ndim != 1 or b.shape[0] != n:
        raise SolverError(
            SolverErrorCode.INVALID_INPUT,
            f"right-hand side size mismatch: expected ({n},), got {b.shape}",
        )
    if not np.all(np.isfinite(b)):
        raise SolverError(SolverErrorCode.INVALID_INPUT, "right-hand side contains non-finite values")
    return b


def _check_solution(x: np.ndarray) -> None:
    if not np.all(np.isfinite(x)):
        raise SolverError(SolverErrorCode.NUMERICAL_INSTABILITY, "solution contains NaN or inf")


# ---------------------------------------------------------------------------
# 分解オブジェクト
# ---------------------------------------------------------------------------


class _BaseFactorization:
    """分解済み行列を保持し solve(b) で前進後退代入する."""

    def __init__(self, A: sp.csc_matrix, factorization_time_ms: float, label: str) -> None:
        self.A = A
        self.factorization_time_ms = factorization_time_ms
        self.label = label

    def _backsolve(self, b: np.ndarray) -> np.ndarray:
        raise NotImplementedError

    def solve(self, b: np.ndarray) -> LinearSolveResult:
        """右辺 b について解く（分解は再利用、factorization_time_ms = 0）.

        Raises:
            SolverError: INVALID_INPUT（次元不一致）/ NUMERICAL_INSTABILITY
        """
        n = self.A.shape[0]
        b = _check_rhs(b, n)
        with MemoryMonitor() as mon:
            t0 = time.perf_counter()
            x = np.asarray(self._backsolve(b), dtype=np.float64).ravel()
            solve_ms = (time.perf_counter() - t0) * 1000.0
        _check_solution(x)
        residual = float(np.linalg.norm(self.A @ x - b))
        logger.debug("[%s] n=%d, solve=%.3f ms, res=%.3e", self.label, n, solve_ms, residual)
        stats = LinearSolverStats(
            elapsed_time_ms=solve_ms,
            factorization_time_ms=0.0,
            solve_time_ms=solve_ms,
            residual_norm=residual,
            memory_used_bytes=mon.used_bytes,
            peak_memory_bytes=mon.peak_bytes,
            matrix_size=n,
            matrix_nonzeros=int(self.A.nnz),
        )
        return LinearSolveResult(solution=x, stats=stats)


class _SuperLUFactorization(_BaseFactorization):
    def __init__(self, A: sp.csc_matrix, lu, factorization_time_ms: float, label: str) -> None:
        super().__init__(A, factorization_time_ms, label)
        self.lu = lu

    def _backsolve(self, b: np.ndarray) -> np.ndarray:
        return self.lu.solve(b)


class _QRFactorization(_BaseFactorization):
    def __init__(
        self,
        A: sp.csc_matrix,
        Q: np.ndarray,
        R: np.ndarray,
        perm: np.ndarray,
        factorization_time_ms: float,
    ) -> None:
        super().__init__(A, factorization_time_ms, "qr")
        self.Q = Q
        self.R = R
        self.perm = perm

    def _backsolve(self, b: np.ndarray) -> np.ndarray:
        # A P = Q R → x[P] = R⁻¹ Qᵀ b
        z = sla.solve_triangular(self.R, self.Q.T @ b, check_finite=False)
        x = np.empty_like(z)
        x[self.perm] = z
        return x


# ---------------------------------------------------------------------------
# ソルバー
# ---------------------------------------------------------------------------


@dataclass
class _DirectSolver:
    """factorize + Factorization.solve による一括求解の共通部分."""

    name: str = ""

    def factorize(self, A: sp.spmatrix) -> _BaseFactorization:
        raise NotImplementedError

    def solve(self, A: sp.spmatrix, b: np.ndarray) -> LinearSolveResult:
        """A x = b を解く（分解 + 求解）.

        Raises:
            SolverError: INVALID_INPUT / SINGULAR_MATRIX / NUMERICAL_INSTABILITY
        """
        n = A.shape[0] if A is not None and A.ndim == 2 else 0
        _check_rhs(b, n)
        t0 = time.perf_counter()
        with MemoryMonitor() as mon:
            fact = self.factorize(A)
            mon.sample()
            result = fact.solve(b)
        elapsed_ms = (time.perf_counter() - t0) * 1000.0

        s = result.stats
        stats = LinearSolverStats(
            elapsed_time_ms=elapsed_ms,
            factorization_time_ms=fact.factorization_time_ms,
            solve_time_ms=s.solve_time_ms,
            residual_norm=s.residual_norm,
            memory_used_bytes=mon.used_bytes,
            peak_memory_bytes=max(mon.peak_bytes, s.peak_memory_bytes),
            matrix_size=s.matrix_size,
            matrix_nonzeros=s.matrix_nonzeros,
        )
        logger.debug(
            "[%s] n=%d, nnz=%d, factorize=%.3f ms, solve=%.3f ms, res=%.3e",
            self.name,
            stats.matrix_size,
            stats.matrix_nonzeros,
            stats.factorization_time_ms,
            stats.solve_time_ms,
            stats.residual_norm,
        )
        return LinearSolveResult(solution=result.solution, stats=stats)


# |U_ii| がこの係数 × 対応する列の最大絶対値以下ならゼロピボットとみなす
PIVOT_RTOL = 1e-10


def _check_pivots(A: sp.csc_matrix, lu, label: str, pivot_rtol: float | None) -> None:
    """SuperLU の U 対角を列スケール基準で検査する.

    純 Neumann 問題のような特異行列でも、丸め誤差により U_nn が厳密な 0 に
    ならず splu が成功する場合がある。判定は Pr A Pc = L U の各列の最大絶対値に
    対する |U_ii| の比で行う。

    Raises:
        SolverError: SINGULAR_MATRIX
    """
    n = A.shape[0]
    rtol = pivot_rtol if pivot_rtol is not None else max(PIVOT_RTOL, n * np.finfo(np.float64).eps)
    Pr = sp.csc_matrix((np.ones(n), (lu.perm_r, np.arange(n))), shape=(n, n))
    Pc = sp.csc_matrix((np.ones(n), (np.arange(n), lu.perm_c)), shape=(n, n))
    B = (Pr @ A @ Pc).tocsc()
    col_scale = np.asarray(abs(B).max(axis=0).todense()).ravel()
    pivots = np.abs(lu.U.diagonal())
    bad = np.flatnonzero(pivots <= rtol * col_scale)
    if bad.size:
        i = int(bad[0])
        ratio = pivots[i] / col_scale[i] if col_scale[i] > 0.0 else 0.0
        raise SolverError(
            SolverErrorCode.SINGULAR_MATRIX,
            f"{label} factorization has a zero pivot at column {i} "
            f"(|U_ii|/max|A_:i| = {ratio:.3e}, {bad.size} pivot(s) below tolerance)",
        )


def _splu(
    A: sp.csc_matrix, label: str, pivot_rtol: float | None = None, **kwargs
) -> _SuperLUFactorization:
    t0 = time.perf_counter()
    try:
        lu = spla.splu(A, **kwargs)
    except RuntimeError as exc:
        raise SolverError(SolverErrorCode.SINGULAR_MATRIX, f"{label} factorization failed: {exc}") from exc
    elapsed_ms = (time.perf_counter() - t0) * 1000.0
    _check_pivots(A, lu, label, pivot_rtol)
    return _SuperLUFactorization(A, lu, elapsed_ms, label)


@dataclass
class CholeskySolver(_DirectSolver):
    """SPD 系向け: SuperLU 対称モード（非対角ピボットなし）."""

    name: str = "cholesky"
    pivot_rtol: float | None = None

    def factorize(self, A: sp.spmatrix) -> _SuperLUFactorization:
        A = _check_matrix(A)
        return _splu(
            A,
            self.name,
            self.pivot_rtol,
            permc_spec="MMD_AT_PLUS_A",
            diag_pivot_thresh=0.0,
            options=dict(SymmetricMode=True),
        )


@dataclass
class SparseLUSolver(_DirectSolver):
    """一般の疎行列向け: SuperLU + COLAMD."""

    name: str = "lu"
    pivot_rtol: float | None = None

    def factorize(self, A: sp.spmatrix) -> _SuperLUFactorization:
        A = _check_matrix(A)
        return _splu(A, self.name, self.pivot_rtol, permc_spec="COLAMD")


@dataclass
class SparseQRSolver(_DirectSolver):
    """列ピボット付き QR（密行列に展開するため小規模系のみ）.

    Attributes:
        rank_rtol: |R_ii| ≤ rank_rtol·|R_00| の列をランク落ちとみなす係数。
            None の場合 n·eps
    """

    name: str = "qr"
    rank_rtol: float | None = None

    def factorize(self, A: sp.spmatrix) -> _QRFactorization:
        A = _check_matrix(A)
        n = A.shape[0]
        t0 = time.perf_counter()
        Q, R, perm = sla.qr(A.toarray(), pivoting=True, mode="economic", check_finite=False)
        elapsed_ms = (time.perf_counter() - t0) * 1000.0

        diag = np.abs(np.diag(R))
        rtol = self.rank_rtol if self.rank_rtol is not None else n * np.finfo(np.float64).eps
        if diag.size == 0 or diag[0] == 0.0 or diag[-1] <= rtol * diag[0]:
            raise SolverError(
                SolverErrorCode.SINGULAR_MATRIX,
                f"qr factorization is rank deficient (|R_nn|/|R_00| = "
                f"{(diag[-1] / diag[0]) if diag.size and diag[0] else 0.0:.3e})",
            )
        return _QRFactorization(A, Q, R, perm, elapsed_ms)


_SOLVER_CLASSES: dict[LinearSolverType, type[_DirectSolver]] = {
    LinearSolverType.CHOLESKY: CholeskySolver,
    LinearSolverType.LU: SparseLUSolver,
    LinearSolverType.QR: SparseQRSolver,
}


def create_linear_solver(solver_type: LinearSolverType) -> LinearSolverProtocol:
    """種別に対応するソルバーを生成する."""
    try:
        cls = _SOLVER_CLASSES[solver_type]
    except KeyError:
        raise SolverError(
            SolverErrorCode.INVALID_INPUT, f"unknown linear solver type: {solver_type!r}"
        ) from None
    return cls()


__all__ = [
    "LinearSolverType",
    "LinearSolverInfo",
    "LINEAR_SOLVERS",
    "parse_solver_type",
    "solver_type_name",
    "FactorizationProtocol",
    "LinearSolverProtocol",
    "CholeskySolver",
    "SparseLUSolver",
    "SparseQRSolver",
    "create_linear_solver",
]
