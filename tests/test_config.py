"""問題設定ファイル（JSON）読込のテスト."""

from __future__ import annotations

import copy
import json
from pathlib import Path

import pytest

from heatfem.config import load_problem_config, parse_problem_config
from heatfem.core.model import BoundaryConditionType, ProblemType
from heatfem.errors import ConfigLoaderError, ConfigLoaderErrorCode

TRANSIENT = {
    "mesh_path": "plate.msh",
    "problem": {
        "type": "transient",
        "total_time": 100.0,
        "time_step": 1.0,
        "save_history": True,
        "save_stride": 10,
        "initial_conditions": {"uniform_temperature": 293.15},
    },
    "material": {"name": "steel", "conductivity": 25.0, "density": 7800.0, "specific_heat": 700.0},
    "boundary_condition": {
        "physical_group_name": "left",
        "type": "convection",
        "alpha": 300.0,
        "ambient_temperature": 1200.0,
    },
}


def _with(path: str, value):
    """TRANSIENT のコピーの path（ドット区切り）を value に置き換える（None は削除）."""
    doc = copy.deepcopy(TRANSIENT)
    *parents, key = path.split(".")
    node = doc
    for p in parents:
        node = node[p]
    if value is None:
        del node[key]
    else:
        node[key] = value
    return json.dumps(doc)


def _code(text: str) -> ConfigLoaderErrorCode:
    with pytest.raises(ConfigLoaderError) as excinfo:
        parse_problem_config(text)
    return excinfo.value.code


class TestValidConfig:
    """正常系."""

    def test_transient(self, tmp_path):
        cfg = parse_problem_config(json.dumps(TRANSIENT), base_dir=tmp_path)
        assert cfg.mesh_path == tmp_path / "plate.msh"
        assert cfg.problem_type is ProblemType.TRANSIENT
        tc = cfg.transient_config
        assert tc.total_time == 100.0
        assert tc.time_step == 1.0
        assert tc.save_history is True
        assert tc.save_stride == 10
        assert tc.initial_temperature == 293.15
        assert cfg.material.conductivity == 25.0
        bc = cfg.boundary_condition
        assert bc.type is BoundaryConditionType.CONVECTION
        assert bc.alpha == 300.0
        assert bc.ambient_temperature == 1200.0

    def test_steady_ignores_time_fields(self):
        doc = {
            "mesh_path": "/abs/plate.msh",
            "problem": {"type": "Steady"},
            "material": TRANSIENT["material"],
            "boundary_condition": {
                "physical_group_name": "top",
                "type": "temperature",
                "temperature": 400.0,
            },
        }
        cfg = parse_problem_config(json.dumps(doc), base_dir="/elsewhere")
        assert cfg.problem_type is ProblemType.STEADY
        assert cfg.transient_config is None
        assert cfg.mesh_path == Path("/abs/plate.msh")
        assert cfg.boundary_condition.temperature == 400.0

    def test_flux_boundary(self):
        text = _with(
            "boundary_condition",
            {"physical_group_name": "right", "type": "FLUX", "heat_flux": -50.0},
        )
        bc = parse_problem_config(text).boundary_condition
        assert bc.type is BoundaryConditionType.FLUX
        assert bc.heat_flux == -50.0

    def test_history_optional(self):
        doc = copy.deepcopy(TRANSIENT)
        del doc["problem"]["save_history"]
        del doc["problem"]["save_stride"]
        tc = parse_problem_config(json.dumps(doc)).transient_config
        assert tc.save_history is False
        assert tc.save_stride is None

    def test_load_from_file(self, tmp_path):
        path = tmp_path / "case" / "problem.json"
        path.parent.mkdir()
        path.write_text(json.dumps(TRANSIENT))
        cfg = load_problem_config(path)
        assert cfg.mesh_path == path.parent / "plate.msh"


class TestConfigErrors:
    """エラーコード."""

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigLoaderError) as excinfo:
            load_problem_config(tmp_path / "none.json")
        assert excinfo.value.code is ConfigLoaderErrorCode.FILE_ERROR

    @pytest.mark.parametrize("text", ["{", "[1, 2]", "not json"])
    def test_parser_error(self, text):
        assert _code(text) is ConfigLoaderErrorCode.PARSER_ERROR

    @pytest.mark.parametrize(
        "path",
        [
            "mesh_path",
            "problem",
            "problem.type",
            "problem.total_time",
            "problem.time_step",
            "problem.save_stride",
            "problem.initial_conditions",
            "material.conductivity",
            "boundary_condition.physical_group_name",
            "boundary_condition.alpha",
            "boundary_condition.ambient_temperature",
        ],
    )
    def test_missing_field(self, path):
        with pytest.raises(ConfigLoaderError) as excinfo:
            parse_problem_config(_with(path, None))
        assert excinfo.value.code is ConfigLoaderErrorCode.MISSING_FIELD
        assert path in str(excinfo.value)

    @pytest.mark.parametrize(
        ("path", "value"),
        [
            ("problem.type", "modal"),
            ("problem.time_step", 0.0),
            ("problem.total_time", -1.0),
            ("problem.save_history", "yes"),
            ("problem.save_stride", 2.5),
            ("problem.save_stride", 0),
            ("material.density", 0.0),
            ("material.specific_heat", "700"),
            ("boundary_condition.type", "radiation"),
            ("boundary_condition.alpha", -1.0),
            ("mesh_path", ""),
        ],
    )
    def test_invalid_value(self, path, value):
        assert _code(_with(path, value)) is ConfigLoaderErrorCode.INVALID_VALUE

    def test_temperature_boundary_requires_value(self):
        text = _with("boundary_condition", {"physical_group_name": "left", "type": "temperature"})
        assert _code(text) is ConfigLoaderErrorCode.MISSING_FIELD
