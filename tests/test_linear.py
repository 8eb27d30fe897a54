"""線形ソルバー（Cholesky / LU / QR）のテスト."""

from __future__ import annotations

import numpy as np
import pytest
import scipy.sparse as sp

from heatfem.errors import SolverError, SolverErrorCode
from heatfem.linear import (
    LINEAR_SOLVERS,
    CholeskySolver,
    FactorizationProtocol,
    LinearSolverProtocol,
    LinearSolverType,
    SparseLUSolver,
    SparseQRSolver,
    create_linear_solver,
    parse_solver_type,
    solver_type_name,
)

ALL_TYPES = list(LinearSolverType)


def _spd_system(n: int = 12) -> tuple[sp.csr_matrix, np.ndarray]:
    """1D ラプラシアン + 単位行列（SPD）."""
    main = 3.0 * np.ones(n)
    off = -1.0 * np.ones(n - 1)
    A = sp.diags([off, main, off], [-1, 0, 1], format="csr")
    b = np.linspace(1.0, 2.0, n)
    return A, b


class TestSolveAccuracy:
    """SPD 系の求解精度."""

    @pytest.mark.parametrize("solver_type", ALL_TYPES)
    def test_matches_dense_solution(self, solver_type):
        A, b = _spd_system()
        result = create_linear_solver(solver_type).solve(A, b)
        np.testing.assert_allclose(result.solution, np.linalg.solve(A.toarray(), b), rtol=1e-10)
        assert result.stats.residual_norm < 1e-10
        assert result.stats.matrix_size == A.shape[0]
        assert result.stats.matrix_nonzeros == A.nnz
        assert result.stats.factorization_time_ms >= 0.0
        assert result.stats.elapsed_time_ms >= result.stats.solve_time_ms

    def test_lu_handles_unsymmetric(self):
        A = sp.csr_matrix(np.array([[4.0, 1.0, 0.0], [2.0, 5.0, 1.0], [0.0, 3.0, 6.0]]))
        b = np.array([1.0, 2.0, 3.0])
        x = SparseLUSolver().solve(A, b).solution
        np.testing.assert_allclose(A @ x, b, atol=1e-12)

    @pytest.mark.parametrize("solver_type", ALL_TYPES)
    def test_accepts_dense_like_sparse_formats(self, solver_type):
        A, b = _spd_system(6)
        x1 = create_linear_solver(solver_type).solve(A.tocoo(), b).solution
        x2 = create_linear_solver(solver_type).solve(A.tocsc(), b).solution
        np.testing.assert_allclose(x1, x2, rtol=1e-12)


class TestFactorizationReuse:
    """分解の再利用."""

    @pytest.mark.parametrize("solver_type", ALL_TYPES)
    def test_multiple_rhs(self, solver_type):
        A, b = _spd_system()
        solver = create_linear_solver(solver_type)
        fact = solver.factorize(A)
        assert isinstance(fact, FactorizationProtocol)
        assert fact.factorization_time_ms >= 0.0
        for scale in (1.0, -2.0, 10.0):
            res = fact.solve(scale * b)
            np.testing.assert_allclose(res.solution, solver.solve(A, scale * b).solution, rtol=1e-12)
            assert res.stats.factorization_time_ms == 0.0

    def test_rhs_size_mismatch(self):
        A, b = _spd_system(5)
        fact = SparseLUSolver().factorize(A)
        with pytest.raises(SolverError) as excinfo:
            fact.solve(np.ones(4))
        assert excinfo.value.code is SolverErrorCode.INVALID_INPUT


class TestSolverErrors:
    """エラーコード."""

    @pytest.mark.parametrize("solver_type", ALL_TYPES)
    def test_singular(self, solver_type):
        A = sp.csr_matrix(np.array([[1.0, 0.0], [0.0, 0.0]]))
        with pytest.raises(SolverError) as excinfo:
            create_linear_solver(solver_type).solve(A, np.array([1.0, 1.0]))
        assert excinfo.value.code is SolverErrorCode.SINGULAR_MATRIX

    @pytest.mark.parametrize("solver_type", ALL_TYPES)
    def test_neumann_laplacian_singular(self, solver_type):
        """行和ゼロの 2D ラプラシアン（定数ベクトルが零空間）."""
        n = 5
        T = sp.diags([-np.ones(n - 1), 2.0 * np.ones(n), -np.ones(n - 1)], [-1, 0, 1]).tolil()
        T[0, 0] = T[n - 1, n - 1] = 1.0
        eye = sp.identity(n)
        A = (sp.kron(T, eye) + sp.kron(eye, T)).tocsr() * 0.37
        b = np.zeros(n * n)
        b[0] = 1.0
        b[-1] = -1.0
        with pytest.raises(SolverError) as excinfo:
            create_linear_solver(solver_type).solve(A, b)
        assert excinfo.value.code is SolverErrorCode.SINGULAR_MATRIX

    @pytest.mark.parametrize("solver_type", [LinearSolverType.CHOLESKY, LinearSolverType.LU])
    def test_penalty_scaled_row_is_not_singular(self, solver_type):
        """ペナルティ 1e10 の行が混在しても通常のピボットはゼロ扱いされない."""
        A, b = _spd_system(8)
        A = A.tolil()
        A[0, 0] += 1e10
        A = A.tocsr()
        x = create_linear_solver(solver_type).solve(A, b).solution
        np.testing.assert_allclose(A @ x, b, rtol=1e-8, atol=1e-8)

    def test_pivot_tolerance_override(self):
        A = sp.csr_matrix(np.array([[1.0, 1.0], [1.0, 1.0 + 1e-6]]))
        SparseLUSolver().solve(A, np.ones(2))
        with pytest.raises(SolverError) as excinfo:
            SparseLUSolver(pivot_rtol=1e-3).solve(A, np.ones(2))
        assert excinfo.value.code is SolverErrorCode.SINGULAR_MATRIX

    @pytest.mark.parametrize("solver_type", ALL_TYPES)
    def test_non_square(self, solver_type):
        A = sp.csr_matrix(np.ones((2, 3)))
        with pytest.raises(SolverError) as excinfo:
            create_linear_solver(solver_type).solve(A, np.ones(2))
        assert excinfo.value.code is SolverErrorCode.INVALID_INPUT

    @pytest.mark.parametrize("solver_type", ALL_TYPES)
    def test_rhs_mismatch(self, solver_type):
        A, _ = _spd_system(4)
        with pytest.raises(SolverError) as excinfo:
            create_linear_solver(solver_type).solve(A, np.ones(5))
        assert excinfo.value.code is SolverErrorCode.INVALID_INPUT

    def test_non_finite_rhs(self):
        A, b = _spd_system(4)
        b[1] = np.nan
        with pytest.raises(SolverError) as excinfo:
            CholeskySolver().solve(A, b)
        assert excinfo.value.code is SolverErrorCode.INVALID_INPUT

    def test_non_finite_matrix(self):
        A = sp.csr_matrix(np.array([[1.0, np.inf], [0.0, 1.0]]))
        with pytest.raises(SolverError) as excinfo:
            SparseQRSolver().solve(A, np.ones(2))
        assert excinfo.value.code is SolverErrorCode.INVALID_INPUT

    def test_overflowing_solution(self):
        A = sp.diags(np.array([1e-300, 1e-300]), 0, format="csr")
        with pytest.raises(SolverError) as excinfo:
            SparseLUSolver().solve(A, np.array([1e300, 1e300]))
        assert excinfo.value.code is SolverErrorCode.NUMERICAL_INSTABILITY

    def test_error_string(self):
        err = SolverError(SolverErrorCode.SINGULAR_MATRIX, "pivot")
        assert str(err) == "SolverError: Singular matrix (pivot)"


class TestRegistry:
    """種別名の解決とファクトリ."""

    def test_parse(self):
        assert parse_solver_type("LU") is LinearSolverType.LU
        assert parse_solver_type(" Cholesky ") is LinearSolverType.CHOLESKY
        assert parse_solver_type("qr") is LinearSolverType.QR
        assert parse_solver_type("gmres") is None

    def test_names_round_trip(self):
        for solver_type in ALL_TYPES:
            assert parse_solver_type(solver_type_name(solver_type)) is solver_type
        assert set(LINEAR_SOLVERS) == set(ALL_TYPES)

    @pytest.mark.parametrize(
        ("solver_type", "cls"),
        [
            (LinearSolverType.CHOLESKY, CholeskySolver),
            (LinearSolverType.LU, SparseLUSolver),
            (LinearSolverType.QR, SparseQRSolver),
        ],
    )
    def test_factory(self, solver_type, cls):
        solver = create_linear_solver(solver_type)
        assert isinstance(solver, cls)
        assert isinstance(solver, LinearSolverProtocol)
        assert solver.name == solver_type_name(solver_type)
