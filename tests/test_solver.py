"""定常・非定常求解ドライバのテスト.

対流境界のみの平板は定常状態で一様に周囲温度となる。
非定常解析は初期温度から周囲温度へ減衰する。
"""

from __future__ import annotations

import logging

import numpy as np
import pytest

from heatfem.assembly import GlobalMatrixBuilder
from heatfem.core.model import (
    BoundaryCondition,
    BoundaryConditionType,
    Material,
    ProblemType,
    TransientConfig,
)
from heatfem.element_builder import ElementMatrixBuilder
from heatfem.errors import SolverError, SolverErrorCode
from heatfem.linear import LinearSolverType, create_linear_solver
from heatfem.mesh import PhysicalGroup, make_rect_mesh
from heatfem.solver import FEMSolver, FEMSolverConfig, SteadySolution, TransientSolution

STEEL = Material("steel", conductivity=25.0, density=7800.0, specific_heat=700.0)
# 拡散の速い仮想材料（時定数 ≪ 1 s）
FAST = Material("fast", conductivity=10.0, density=1.0, specific_heat=1.0)


def _system(material=STEEL, bc=None, nx=2, ny=2, Lx=2.0, Ly=2.0):
    mesh = make_rect_mesh(Lx, Ly, nx, ny)
    mesh.add_physical_group(
        PhysicalGroup(tag=10, dimension=1, name="outer", line_ids=[ln.id for ln in mesh.lines])
    )
    if bc is None:
        bc = BoundaryCondition(
            "left", BoundaryConditionType.CONVECTION, alpha=1200.0, ambient_temperature=300.0
        )
    builder = ElementMatrixBuilder(material, bc)
    (H, C, P), _ = GlobalMatrixBuilder(mesh, builder, n_jobs=1).build()
    return H, C, P


class _CountingSolver:
    """呼び出し回数を記録する線形ソルバーのラッパー."""

    def __init__(self, inner):
        self.inner = inner
        self.name = inner.name
        self.factorize_calls = 0
        self.solve_calls = 0

    def factorize(self, A):
        self.factorize_calls += 1
        return self.inner.factorize(A)

    def solve(self, A, b):
        self.solve_calls += 1
        return self.inner.solve(A, b)


class _SpyFactory:
    def __init__(self):
        self.requested: list[LinearSolverType] = []
        self.solvers: list[_CountingSolver] = []

    def __call__(self, solver_type):
        self.requested.append(solver_type)
        solver = _CountingSolver(create_linear_solver(solver_type))
        self.solvers.append(solver)
        return solver


class _FailingFactorization:
    factorization_time_ms = 0.0

    def __init__(self, fail_at: int):
        self.fail_at = fail_at
        self.calls = 0

    def solve(self, b):
        self.calls += 1
        if self.calls >= self.fail_at:
            raise SolverError(SolverErrorCode.NUMERICAL_INSTABILITY, f"step {self.calls}")
        raise AssertionError("unreachable in this test")


class _FailingSolver:
    name = "failing"

    def __init__(self, code=SolverErrorCode.SINGULAR_MATRIX):
        self.code = code

    def factorize(self, A):
        raise SolverError(self.code, "forced")

    def solve(self, A, b):
        raise SolverError(self.code, "forced")


# ====================================================================
# 定常解析
# ====================================================================


class TestSteady:
    """定常解析."""

    @pytest.mark.parametrize("solver_type", list(LinearSolverType))
    def test_convection_plate_reaches_ambient(self, solver_type):
        H, _, P = _system()
        result = FEMSolver().solve(H, None, P, FEMSolverConfig(ProblemType.STEADY, solver_type))
        T = result.final_solution
        assert result.is_steady()
        assert not np.any(np.isnan(T))
        np.testing.assert_allclose(T, 300.0, rtol=1e-8)

    def test_prescribed_temperature(self):
        bc = BoundaryCondition("left", BoundaryConditionType.TEMPERATURE, temperature=500.0)
        H, _, P = _system(bc=bc, nx=4, ny=2, Lx=2.0, Ly=1.0)
        T = FEMSolver().solve_steady(H, P).final_solution
        np.testing.assert_allclose(T, 500.0, rtol=1e-6)

    def test_stats(self):
        H, _, P = _system()
        stats = FEMSolver().solve_steady(H, P).stats
        assert stats.linear_solve_count == 1
        assert stats.num_time_steps == 0
        assert stats.matrix_size == H.shape[0]
        assert stats.solution_min == pytest.approx(300.0)
        assert stats.solution_max == pytest.approx(300.0)
        assert stats.min_residual == stats.max_residual == stats.residual_norm
        assert stats.total_time_ms >= stats.total_solver_time_ms

    def test_load_size_mismatch(self):
        H, _, P = _system()
        with pytest.raises(SolverError) as excinfo:
            FEMSolver().solve_steady(H, P[:-1])
        assert excinfo.value.code is SolverErrorCode.INVALID_INPUT

    @pytest.mark.parametrize("solver_type", list(LinearSolverType))
    def test_flux_only_system_is_singular(self, solver_type):
        """熱流束のみ（純 Neumann）の H は特異で、全ソルバーが SINGULAR_MATRIX を返す."""
        bc = BoundaryCondition("left", BoundaryConditionType.FLUX, heat_flux=100.0)
        H, _, P = _system(bc=bc, nx=4, ny=4, Lx=1.0, Ly=1.0)
        with pytest.raises(SolverError) as excinfo:
            FEMSolver().solve_steady(H, P, solver_type)
        assert excinfo.value.code is SolverErrorCode.SINGULAR_MATRIX

    def test_solver_error_propagates(self):
        H, _, P = _system()
        with pytest.raises(SolverError) as excinfo:
            FEMSolver(lambda _t: _FailingSolver()).solve_steady(H, P)
        assert excinfo.value.code is SolverErrorCode.SINGULAR_MATRIX


# ====================================================================
# 非定常解析
# ====================================================================


class TestTransientHistory:
    """時間積分と履歴保存."""

    def test_history_every_step(self):
        H, C, P = _system()
        tc = TransientConfig(
            total_time=1.0, time_step=0.1, save_history=True, save_stride=1, initial_temperature=293.15
        )
        result = FEMSolver().solve_transient(H, C, P, tc)
        sol = result.transient
        assert len(sol.temperatures) == 11
        np.testing.assert_allclose(sol.time_steps, np.linspace(0.0, 1.0, 11), atol=1e-12)
        np.testing.assert_allclose(sol.temperatures[0], 293.15)
        np.testing.assert_array_equal(sol.temperatures[-1], sol.final_solution)
        assert sol.save_stride == 1
        assert all(np.all(np.isfinite(T)) for T in sol.temperatures)

    def test_history_stride(self):
        H, C, P = _system()
        tc = TransientConfig(1.0, 0.1, save_history=True, save_stride=3, initial_temperature=293.15)
        sol = FEMSolver().solve_transient(H, C, P, tc).transient
        np.testing.assert_allclose(sol.time_steps, [0.0, 0.1, 0.4, 0.7, 1.0], atol=1e-12)
        assert len(sol.temperatures) == 5

    def test_no_history(self):
        H, C, P = _system()
        tc = TransientConfig(1.0, 0.25, initial_temperature=293.15)
        result = FEMSolver().solve_transient(H, C, P, tc)
        assert result.is_transient()
        assert result.transient.temperatures == []
        assert result.transient.time_steps == []
        assert result.transient.save_stride is None
        assert result.stats.num_time_steps == 4
        assert result.stats.linear_solve_count == 4

    def test_decays_to_ambient(self):
        bc = BoundaryCondition(
            "outer", BoundaryConditionType.CONVECTION, alpha=10.0, ambient_temperature=300.0
        )
        H, C, P = _system(material=FAST, bc=bc, Lx=1.0, Ly=1.0, nx=4, ny=4)
        tc = TransientConfig(5.0, 0.05, save_history=True, save_stride=10, initial_temperature=1000.0)
        sol = FEMSolver().solve_transient(H, C, P, tc).transient
        means = [float(np.mean(T)) for T in sol.temperatures]
        assert means[0] == pytest.approx(1000.0)
        assert means[1] < means[0]
        np.testing.assert_allclose(sol.final_solution, 300.0, atol=1e-6)

    def test_progress_logged_per_decile(self, caplog):
        H, C, P = _system()
        tc = TransientConfig(2.0, 0.1, initial_temperature=293.15)
        with caplog.at_level(logging.INFO, logger="heatfem.solver"):
            FEMSolver().solve_transient(H, C, P, tc)
        progress = [r for r in caplog.records if "Time stepping progress" in r.getMessage()]
        assert len(progress) == 10


class TestFactorizationReuse:
    """分解の再利用."""

    def test_reuse_factorizes_once(self):
        H, C, P = _system()
        spy = _SpyFactory()
        tc = TransientConfig(1.0, 0.1, initial_temperature=293.15)
        result = FEMSolver(spy).solve_transient(H, C, P, tc, reuse_factorization=True)
        solver = spy.solvers[0]
        assert solver.factorize_calls == 1
        assert solver.solve_calls == 0
        assert result.stats.linear_solve_count == 10

    def test_no_reuse_solves_every_step(self):
        H, C, P = _system()
        spy = _SpyFactory()
        tc = TransientConfig(1.0, 0.1, initial_temperature=293.15)
        FEMSolver(spy).solve_transient(H, C, P, tc, reuse_factorization=False)
        solver = spy.solvers[0]
        assert solver.factorize_calls == 0
        assert solver.solve_calls == 10

    @pytest.mark.parametrize("solver_type", list(LinearSolverType))
    def test_reuse_matches_refactorization(self, solver_type):
        H, C, P = _system()
        tc = TransientConfig(1.0, 0.1, save_history=True, save_stride=2, initial_temperature=293.15)
        a = FEMSolver().solve_transient(H, C, P, tc, solver_type, reuse_factorization=True)
        b = FEMSolver().solve_transient(H, C, P, tc, solver_type, reuse_factorization=False)
        np.testing.assert_allclose(a.final_solution, b.final_solution, rtol=1e-10)
        for Ta, Tb in zip(a.transient.temperatures, b.transient.temperatures, strict=True):
            np.testing.assert_allclose(Ta, Tb, rtol=1e-10)


class TestTransientValidation:
    """求解前の入力検証."""

    @pytest.mark.parametrize(
        "tc",
        [
            TransientConfig(1.0, 0.0),
            TransientConfig(1.0, -0.1),
            TransientConfig(0.0, 0.1),
            TransientConfig(0.05, 0.1),
            TransientConfig(1.0, 0.1, save_history=True, save_stride=None),
            TransientConfig(1.0, 0.1, save_history=True, save_stride=0),
        ],
    )
    def test_invalid_config_rejected_before_solve(self, tc):
        H, C, P = _system()
        spy = _SpyFactory()
        with pytest.raises(SolverError) as excinfo:
            FEMSolver(spy).solve_transient(H, C, P, tc)
        assert excinfo.value.code is SolverErrorCode.INVALID_INPUT
        assert spy.requested == []

    def test_missing_capacity(self):
        H, _, P = _system()
        with pytest.raises(SolverError) as excinfo:
            FEMSolver().solve_transient(H, None, P, TransientConfig(1.0, 0.1))
        assert excinfo.value.code is SolverErrorCode.INVALID_INPUT

    def test_capacity_shape_mismatch(self):
        H, C, P = _system()
        small = C[:-1, :-1]
        with pytest.raises(SolverError) as excinfo:
            FEMSolver().solve_transient(H, small, P, TransientConfig(1.0, 0.1))
        assert excinfo.value.code is SolverErrorCode.INVALID_INPUT

    def test_transient_requires_config(self):
        H, C, P = _system()
        with pytest.raises(SolverError) as excinfo:
            FEMSolver().solve(H, C, P, FEMSolverConfig(ProblemType.TRANSIENT))
        assert excinfo.value.code is SolverErrorCode.INVALID_INPUT

    def test_factorization_failure_propagates(self):
        H, C, P = _system()
        with pytest.raises(SolverError) as excinfo:
            FEMSolver(lambda _t: _FailingSolver()).solve_transient(H, C, P, TransientConfig(1.0, 0.1))
        assert excinfo.value.code is SolverErrorCode.SINGULAR_MATRIX

    def test_step_failure_propagates(self):
        H, C, P = _system()
        failing = _FailingFactorization(fail_at=1)

        class _Solver(_FailingSolver):
            def factorize(self, A):
                return failing

        with pytest.raises(SolverError) as excinfo:
            FEMSolver(lambda _t: _Solver()).solve_transient(H, C, P, TransientConfig(1.0, 0.1))
        assert excinfo.value.code is SolverErrorCode.NUMERICAL_INSTABILITY
        assert failing.calls == 1


class TestResultVariants:
    """FEMSolverResult のアクセサ."""

    def test_steady_payload(self):
        H, _, P = _system()
        result = FEMSolver().solve_steady(H, P)
        assert isinstance(result.steady, SteadySolution)
        with pytest.raises(ValueError):
            _ = result.transient

    def test_transient_payload(self):
        H, C, P = _system()
        result = FEMSolver().solve(
            H,
            C,
            P,
            FEMSolverConfig(
                ProblemType.TRANSIENT, transient_config=TransientConfig(0.2, 0.1, initial_temperature=1.0)
            ),
        )
        assert isinstance(result.transient, TransientSolution)
        with pytest.raises(ValueError):
            _ = result.steady
        np.testing.assert_array_equal(result.final_solution, result.transient.final_solution)
