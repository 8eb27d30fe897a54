"""問題設定ファイル（JSON）の読込.

レイアウト:
  {
    "mesh_path": "plate.msh",
    "problem": {
      "type": "steady" | "transient",
      "total_time": 100.0, "time_step": 1.0,          # transient のみ
      "save_history": true, "save_stride": 10,        # 任意
      "initial_conditions": {"uniform_temperature": 293.15}
    },
    "material": {"name": "steel", "conductivity": 25.0,
                 "density": 7800.0, "specific_heat": 700.0},
    "boundary_condition": {"physical_group_name": "outer", "type": "convection",
                           "alpha": 300.0, "ambient_temperature": 1200.0}
  }

相対パスの mesh_path は設定ファイルのディレクトリ基準で解決する。
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from heatfem.core.model import (
    BoundaryCondition,
    BoundaryConditionType,
    Material,
    ProblemType,
    TransientConfig,
    parse_boundary_condition_type,
    parse_problem_type,
)
from heatfem.errors import ConfigLoaderError, ConfigLoaderErrorCode

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProblemConfig:
    """解析1件分の設定.

    Attributes:
        mesh_path: メッシュファイルのパス（解決済み）
        problem_type: 定常 / 非定常
        transient_config: 非定常解析の設定（定常では None）
        material: 材料定数
        boundary_condition: 境界条件
    """

    mesh_path: Path
    problem_type: ProblemType
    transient_config: TransientConfig | None
    material: Material
    boundary_condition: BoundaryCondition


def load_problem_config(filepath: str | Path) -> ProblemConfig:
    """JSON 設定ファイルを読み込む.

    Raises:
        ConfigLoaderError: FILE_ERROR / PARSER_ERROR / MISSING_FIELD / INVALID_VALUE
    """
    filepath = Path(filepath)
    logger.info("Loading configuration from: %s", filepath)
    try:
        text = filepath.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigLoaderError(
            ConfigLoaderErrorCode.FILE_ERROR, f"cannot read {filepath}: {exc}"
        ) from exc
    return parse_problem_config(text, base_dir=filepath.parent)


def parse_problem_config(text: str, base_dir: str | Path | None = None) -> ProblemConfig:
    """JSON 文字列から ProblemConfig を構築する.

    Args:
        text: JSON 文字列
        base_dir: 相対 mesh_path の基準ディレクトリ（None はカレント）
    """
    try:
        root = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ConfigLoaderError(ConfigLoaderErrorCode.PARSER_ERROR, str(exc)) from exc
    if not isinstance(root, dict):
        raise ConfigLoaderError(ConfigLoaderErrorCode.PARSER_ERROR, "top level must be an object")

    mesh_path = Path(_get_str(root, "mesh_path", "mesh_path"))
    if not mesh_path.is_absolute() and base_dir is not None:
        mesh_path = Path(base_dir) / mesh_path

    problem = _get_object(root, "problem", "problem")
    problem_type = _parse_enum(problem, "type", "problem.type", parse_problem_type)
    transient_config = None
    if problem_type is ProblemType.TRANSIENT:
        transient_config = _parse_transient(problem)

    material = _parse_material(_get_object(root, "material", "material"))
    boundary_condition = _parse_boundary_condition(
        _get_object(root, "boundary_condition", "boundary_condition")
    )

    logger.info(
        "Configuration loaded: mesh=%s, problem=%s, material=%s, bc=%s on '%s'",
        mesh_path,
        problem_type.value,
        material.name,
        boundary_condition.type.value,
        boundary_condition.physical_group_name,
    )
    return ProblemConfig(
        mesh_path=mesh_path,
        problem_type=problem_type,
        transient_config=transient_config,
        material=material,
        boundary_condition=boundary_condition,
    )


# ---------------------------------------------------------------------------
# セクション
# ---------------------------------------------------------------------------


def _parse_transient(problem: dict[str, Any]) -> TransientConfig:
    total_time = _get_number(problem, "total_time", "problem.total_time")
    time_step = _get_number(problem, "time_step", "problem.time_step")
    if total_time <= 0:
        _raise_invalid("problem.total_time", total_time, "must be > 0")
    if time_step <= 0:
        _raise_invalid("problem.time_step", time_step, "must be > 0")

    save_history = problem.get("save_history", False)
    if not isinstance(save_history, bool):
        _raise_invalid("problem.save_history", save_history, "must be a boolean")

    save_stride = None
    if save_history:
        stride = _get_number(problem, "save_stride", "problem.save_stride")
        if stride != int(stride) or stride <= 0:
            _raise_invalid("problem.save_stride", stride, "must be a positive integer")
        save_stride = int(stride)

    initial = _get_object(problem, "initial_conditions", "problem.initial_conditions")
    initial_temperature = _get_number(
        initial, "uniform_temperature", "problem.initial_conditions.uniform_temperature"
    )
    return TransientConfig(
        total_time=total_time,
        time_step=time_step,
        save_history=save_history,
        save_stride=save_stride,
        initial_temperature=initial_temperature,
    )


def _parse_material(obj: dict[str, Any]) -> Material:
    name = _get_str(obj, "name", "material.name")
    values = {}
    for key in ("conductivity", "density", "specific_heat"):
        value = _get_number(obj, key, f"material.{key}")
        if value <= 0:
            _raise_invalid(f"material.{key}", value, "must be > 0")
        values[key] = value
    return Material(name=name, **values)


def _parse_boundary_condition(obj: dict[str, Any]) -> BoundaryCondition:
    group = _get_str(obj, "physical_group_name", "boundary_condition.physical_group_name")
    bc_type = _parse_enum(obj, "type", "boundary_condition.type", parse_boundary_condition_type)

    kwargs: dict[str, float] = {}
    if bc_type is BoundaryConditionType.TEMPERATURE:
        kwargs["temperature"] = _get_number(obj, "temperature", "boundary_condition.temperature")
    elif bc_type is BoundaryConditionType.FLUX:
        kwargs["heat_flux"] = _get_number(obj, "heat_flux", "boundary_condition.heat_flux")
    else:
        alpha = _get_number(obj, "alpha", "boundary_condition.alpha")
        if alpha < 0:
            _raise_invalid("boundary_condition.alpha", alpha, "must be >= 0")
        kwargs["alpha"] = alpha
        kwargs["ambient_temperature"] = _get_number(
            obj, "ambient_temperature", "boundary_condition.ambient_temperature"
        )
    return BoundaryCondition(physical_group_name=group, type=bc_type, **kwargs)


# ---------------------------------------------------------------------------
# 値の取り出し
# ---------------------------------------------------------------------------


def _missing(path: str) -> ConfigLoaderError:
    return ConfigLoaderError(ConfigLoaderErrorCode.MISSING_FIELD, f"'{path}' is required")


def _raise_invalid(path: str, value: Any, reason: str) -> None:
    raise ConfigLoaderError(ConfigLoaderErrorCode.INVALID_VALUE, f"'{path}' {reason}: {value!r}")


def _get(obj: dict[str, Any], key: str, path: str) -> Any:
    if key not in obj or obj[key] is None:
        raise _missing(path)
    return obj[key]


def _get_object(obj: dict[str, Any], key: str, path: str) -> dict[str, Any]:
    value = _get(obj, key, path)
    if not isinstance(value, dict):
        _raise_invalid(path, value, "must be an object")
    return value


def _get_str(obj: dict[str, Any], key: str, path: str) -> str:
    value = _get(obj, key, path)
    if not isinstance(value, str) or not value:
        _raise_invalid(path, value, "must be a non-empty string")
    return value


def _get_number(obj: dict[str, Any], key: str, path: str) -> float:
    value = _get(obj, key, path)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        _raise_invalid(path, value, "must be a number")
    value = float(value)
    if not math.isfinite(value):
        _raise_invalid(path, value, "must be finite")
    return value


def _parse_enum(obj: dict[str, Any], key: str, path: str, parser):
    text = _get_str(obj, key, path)
    value = parser(text.lower())
    if value is None:
        _raise_invalid(path, text, "is not a recognised value")
    return value


__all__ = ["ProblemConfig", "load_problem_config", "parse_problem_config"]
