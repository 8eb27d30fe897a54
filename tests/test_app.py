"""アプリケーション・CLI のエンドツーエンドテスト.

Gmsh メッシュと JSON 設定を一時ディレクトリに書き出し、
heatfem.cli.main() を通して終了コードと出力ファイルを検証する。
"""

from __future__ import annotations

import json
import logging
from xml.etree import ElementTree as ET

import numpy as np
import pytest

from heatfem.app import ExitCode
from heatfem.cli import main, parse_options
from heatfem.errors import SolverError, SolverErrorCode
from heatfem.linear import LinearSolverType
from heatfem.logging_config import PACKAGE_LOGGER
from heatfem.mesh import Mesh, Quad, make_rect_mesh, write_gmsh_msh
from heatfem.solver import FEMSolver

pytestmark = pytest.mark.slow


@pytest.fixture(autouse=True)
def _reset_logging():
    yield
    logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)


def _write_case(tmp_path, *, transient=False, save_history=True, mesh=None):
    mesh = mesh or make_rect_mesh(0.1, 0.1, 4, 4)
    write_gmsh_msh(tmp_path / "plate.msh", mesh)
    problem = {"type": "transient" if transient else "steady"}
    if transient:
        problem.update(
            {
                "total_time": 10.0,
                "time_step": 1.0,
                "save_history": save_history,
                "initial_conditions": {"uniform_temperature": 293.15},
            }
        )
        if save_history:
            problem["save_stride"] = 5
    doc = {
        "mesh_path": "plate.msh",
        "problem": problem,
        "material": {"name": "steel", "conductivity": 25.0, "density": 7800.0, "specific_heat": 700.0},
        "boundary_condition": {
            "physical_group_name": "left",
            "type": "convection",
            "alpha": 300.0,
            "ambient_temperature": 1200.0,
        },
    }
    config = tmp_path / "problem.json"
    config.write_text(json.dumps(doc))
    return config


def _read_temperature(vtu_path) -> np.ndarray:
    arr = ET.parse(vtu_path).getroot().find("UnstructuredGrid/Piece/PointData/DataArray")
    return np.array([float(v) for v in arr.text.split()])


# ====================================================================
# 正常系
# ====================================================================


class TestRun:
    """解析全体の実行."""

    def test_steady(self, tmp_path):
        config = _write_case(tmp_path)
        out = tmp_path / "out"
        metrics = tmp_path / "metrics.json"
        code = main([str(config), "--output-dir", str(out), "--metrics", str(metrics), "-j", "2"])
        assert code == ExitCode.SUCCESS
        T = _read_temperature(out / "solution.vtu")
        np.testing.assert_allclose(T, 1200.0, rtol=1e-6)
        data = json.loads(metrics.read_text())
        assert data["solver_name"] == "cholesky"
        assert data["assembly"]["n_workers"] == 2
        assert data["solver"]["num_time_steps"] == 0

    def test_transient_with_history(self, tmp_path):
        config = _write_case(tmp_path, transient=True)
        out = tmp_path / "out"
        code = main([str(config), "--output-dir", str(out), "--solver", "lu"])
        assert code == ExitCode.SUCCESS
        datasets = ET.parse(out / "solution.pvd").getroot().findall("Collection/DataSet")
        # 初期状態 + step 0, 5, 9
        assert [float(d.get("timestep")) for d in datasets] == [0.0, 1.0, 6.0, 10.0]
        first = _read_temperature(out / "solution_0000.vtu")
        last = _read_temperature(out / "solution_0003.vtu")
        np.testing.assert_allclose(first, 293.15)
        assert last.max() > 293.15

    def test_transient_without_history_skips_vtk(self, tmp_path):
        config = _write_case(tmp_path, transient=True, save_history=False)
        out = tmp_path / "out"
        metrics = tmp_path / "m.csv"
        code = main(
            [str(config), "--output-dir", str(out), "--metrics", str(metrics), "--no-reuse-factorization"]
        )
        assert code == ExitCode.SUCCESS
        assert not out.exists()
        assert metrics.read_text().startswith("solver,")

    def test_build_matrix_only(self, tmp_path):
        config = _write_case(tmp_path, transient=True)
        mtx = tmp_path / "mtx"
        out = tmp_path / "out"
        code = main([str(config), "--build-matrix-only", "--export-mtx", str(mtx), "--output-dir", str(out)])
        assert code == ExitCode.SUCCESS
        assert {p.name for p in mtx.iterdir()} == {"H.mtx", "C.mtx", "P.txt"}
        assert not out.exists()

    def test_cache_reused(self, tmp_path, caplog):
        config = _write_case(tmp_path)
        args = [str(config), "--cache", "--cache-dir", str(tmp_path / "cache"), "--no-vtk"]
        assert main(args) == ExitCode.SUCCESS
        caplog.clear()
        with caplog.at_level(logging.INFO, logger="heatfem.cache"):
            assert main(args) == ExitCode.SUCCESS
        assert any("loaded from cache" in r.getMessage() for r in caplog.records)

    def test_log_file(self, tmp_path):
        config = _write_case(tmp_path)
        log_file = tmp_path / "run.log"
        code = main([str(config), "--no-vtk", "--log-file", str(log_file), "--log-level", "debug"])
        assert code == ExitCode.SUCCESS
        assert "Application finished successfully" in log_file.read_text(encoding="utf-8")


# ====================================================================
# 終了コード
# ====================================================================


class TestExitCodes:
    """失敗段階ごとの終了コード."""

    def test_help(self):
        assert main(["--help"]) == ExitCode.SUCCESS

    @pytest.mark.parametrize(
        "argv",
        [[], ["p.json", "--solver", "gmres"], ["p.json", "--threads", "0"], ["p.json", "--bogus"]],
    )
    def test_cli_error(self, argv):
        assert main(argv) == ExitCode.CLI_ERROR

    def test_config_error(self, tmp_path):
        assert main([str(tmp_path / "missing.json")]) == ExitCode.CONFIG_ERROR

    def test_mesh_error(self, tmp_path):
        config = _write_case(tmp_path)
        (tmp_path / "plate.msh").unlink()
        assert main([str(config), "--no-vtk"]) == ExitCode.MESH_ERROR

    def test_domain_error(self, tmp_path):
        src = make_rect_mesh(1.0, 1.0, 1, 1)
        inverted = Mesh()
        for node in src.nodes:
            inverted.add_node(node)
        q = src.quads[0]
        inverted.add_quad(Quad(q.id, (q.node_ids[0], q.node_ids[3], q.node_ids[2], q.node_ids[1])))
        config = _write_case(tmp_path, mesh=inverted)
        assert main([str(config), "--no-vtk"]) == ExitCode.DOMAIN_ERROR

    def test_solver_error(self, tmp_path, monkeypatch):
        def _fail(self, H, C, P, config):
            raise SolverError(SolverErrorCode.SINGULAR_MATRIX, "forced")

        monkeypatch.setattr(FEMSolver, "solve", _fail)
        config = _write_case(tmp_path)
        assert main([str(config), "--no-vtk"]) == ExitCode.SOLVER_ERROR

    def test_metrics_export_error(self, tmp_path):
        config = _write_case(tmp_path)
        code = main([str(config), "--no-vtk", "--metrics", str(tmp_path / "metrics.txt")])
        assert code == ExitCode.METRICS_EXPORT_ERROR

    def test_vtk_export_error(self, tmp_path):
        config = _write_case(tmp_path)
        blocker = tmp_path / "blocker"
        blocker.write_text("x")
        assert main([str(config), "--output-dir", str(blocker)]) == ExitCode.VTK_EXPORT_ERROR


class TestOptions:
    """引数 → ApplicationOptions."""

    def test_defaults(self):
        opts = parse_options(["p.json"])
        assert opts.linear_solver is LinearSolverType.CHOLESKY
        assert opts.n_threads is None
        assert opts.use_cache is False
        assert opts.reuse_factorization is True
        assert opts.output_dir is not None
        assert opts.log_level == logging.INFO

    def test_flags(self, tmp_path):
        opts = parse_options(
            ["p.json", "-s", "qr", "-j", "3", "--no-vtk", "--no-reuse-factorization", "--log-level", "warning"]
        )
        assert opts.linear_solver is LinearSolverType.QR
        assert opts.n_threads == 3
        assert opts.output_dir is None
        assert opts.reuse_factorization is False
        assert opts.log_level == logging.WARNING
        assert "solver=qr" in opts.describe()
