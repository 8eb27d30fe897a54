"""VTK/VTU エクスポート（ParaView 対応）.

温度場を VTK XML 形式でエクスポートする。
外部ライブラリに依存せず、VTK XML を直接生成する。

出力ファイル:
    - .vtu (VTK XML Unstructured Grid): 定常解 1 ファイル、または各スナップショットに 1 ファイル
    - .pvd (ParaView Data): 非定常解のタイムステップを束ねるインデックスファイル

出力形式:
    - ascii: テキスト形式（可読性と移植性を優先）
    - binary: Base64エンコード形式（ファイルサイズと読み込み速度を優先）
"""

from __future__ import annotations

import base64
import logging
from collections.abc import Sequence
from pathlib import Path
from xml.etree import ElementTree as ET

import numpy as np

from heatfem.errors import ExportError
from heatfem.mesh.model import Mesh

logger = logging.getLogger(__name__)

# VTK Cell Type ID
VTK_QUAD = 9

DEFAULT_FIELD_NAME = "Temperature"


def export_steady_vtk(
    filepath: str | Path,
    mesh: Mesh,
    temperature: np.ndarray,
    *,
    field_name: str = DEFAULT_FIELD_NAME,
    binary: bool = False,
) -> str:
    """定常解を .vtu ファイルに出力する.

    Args:
        filepath: 出力ファイルパス
        mesh: メッシュ
        temperature: (N,) 節点温度（内部インデックス順）
        field_name: PointData の配列名
        binary: True の場合 Base64 エンコードバイナリ形式

    Returns:
        生成されたファイルパス

    Raises:
        ExportError: 温度ベクトルの長さが節点数と一致しない、または書き込み失敗
    """
    filepath = Path(filepath)
    logger.info("Exporting steady-state solution to: %s", filepath)
    _check_size(mesh, temperature, "temperature")
    try:
        filepath.parent.mkdir(parents=True, exist_ok=True)
        _write_vtu(filepath, mesh, np.asarray(temperature), field_name, binary=binary)
    except OSError as exc:
        raise ExportError(f"VTK ファイルの書き込みに失敗: {filepath}: {exc}") from exc
    return str(filepath)


def export_transient_vtk(
    output_dir: str | Path,
    mesh: Mesh,
    temperatures: Sequence[np.ndarray],
    times: Sequence[float],
    *,
    prefix: str = "solution",
    field_name: str = DEFAULT_FIELD_NAME,
    binary: bool = False,
) -> str:
    """非定常解の各スナップショットを .vtu に出力し .pvd で束ねる.

    Args:
        output_dir: 出力ディレクトリ
        mesh: メッシュ
        temperatures: 温度スナップショットのリスト
        times: 各スナップショットの時刻 [s]
        prefix: ファイル名プレフィックス（{prefix}_{i:04d}.vtu, {prefix}.pvd）
        field_name: PointData の配列名
        binary: True の場合 Base64 エンコードバイナリ形式

    Returns:
        .pvd ファイルのパス

    Raises:
        ExportError: スナップショットが空・時刻数と不一致・長さ不一致、または書き込み失敗
    """
    out = Path(output_dir)
    logger.info("Exporting transient solution (%d time steps) to: %s", len(temperatures), out)
    if len(temperatures) == 0:
        raise ExportError("出力する温度スナップショットがありません")
    if len(temperatures) != len(times):
        raise ExportError(
            f"スナップショット数 ({len(temperatures)}) と時刻数 ({len(times)}) が一致しません"
        )
    for i, T in enumerate(temperatures):
        _check_size(mesh, T, f"temperatures[{i}]")

    pvd_entries: list[tuple[float, str]] = []
    try:
        out.mkdir(parents=True, exist_ok=True)
        for i, (T, t) in enumerate(zip(temperatures, times, strict=True)):
            vtu_name = f"{prefix}_{i:04d}.vtu"
            _write_vtu(out / vtu_name, mesh, np.asarray(T), field_name, binary=binary)
            pvd_entries.append((float(t), vtu_name))

        pvd_path = out / f"{prefix}.pvd"
        _write_pvd(pvd_path, pvd_entries)
    except OSError as exc:
        raise ExportError(f"VTK ファイルの書き込みに失敗: {out}: {exc}") from exc

    logger.info("VTK export completed: %d files + PVD", len(pvd_entries))
    return str(pvd_path)


def _check_size(mesh: Mesh, values: np.ndarray, name: str) -> None:
    size = np.asarray(values).size
    if size != mesh.node_count:
        raise ExportError(f"{name} の長さ ({size}) が節点数 ({mesh.node_count}) と一致しません")


def _write_vtu(
    filepath: Path,
    mesh: Mesh,
    values: np.ndarray,
    field_name: str,
    *,
    binary: bool = False,
) -> None:
    """1 つの温度場の VTU (VTK XML Unstructured Grid) ファイルを書き出す."""
    n_nodes = mesh.node_count
    n_cells = len(mesh.quads)

    # 座標を 3D に拡張（VTK は常に 3D）
    coords_3d = np.zeros((n_nodes, 3), dtype=np.float64)
    coords_3d[:, :2] = mesh.node_coords()

    add_array = _add_data_array_binary if binary else _add_data_array

    root = ET.Element("VTKFile")
    root.set("type", "UnstructuredGrid")
    root.set("version", "0.1")
    root.set("byte_order", "LittleEndian")

    ugrid = ET.SubElement(root, "UnstructuredGrid")
    piece = ET.SubElement(ugrid, "Piece")
    piece.set("NumberOfPoints", str(n_nodes))
    piece.set("NumberOfCells", str(n_cells))

    # --- Points ---
    points = ET.SubElement(piece, "Points")
    add_array(points, "Points", coords_3d.ravel(), n_components=3)

    # --- Cells ---
    cells_el = ET.SubElement(piece, "Cells")
    conn = mesh.quad_connectivity()
    offsets = np.arange(1, n_cells + 1, dtype=np.int32) * 4
    types = np.full(n_cells, VTK_QUAD, dtype=np.uint8)
    add_array(cells_el, "connectivity", conn.ravel(), dtype_str="Int32")
    add_array(cells_el, "offsets", offsets, dtype_str="Int32")
    add_array(cells_el, "types", types, dtype_str="UInt8")

    # --- PointData ---
    point_data = ET.SubElement(piece, "PointData")
    point_data.set("Scalars", field_name)
    add_array(point_data, field_name, np.asarray(values, dtype=np.float64).ravel())

    tree = ET.ElementTree(root)
    ET.indent(tree, space="  ")
    tree.write(filepath, encoding="unicode", xml_declaration=True)


def _write_pvd(
    filepath: Path,
    entries: list[tuple[float, str]],
) -> None:
    """.pvd (ParaView Data) ファイルを書き出す."""
    root = ET.Element("VTKFile")
    root.set("type", "Collection")
    root.set("version", "0.1")

    collection = ET.SubElement(root, "Collection")
    for time_val, vtu_name in entries:
        dataset = ET.SubElement(collection, "DataSet")
        dataset.set("timestep", f"{time_val:.10g}")
        dataset.set("file", vtu_name)

    tree = ET.ElementTree(root)
    ET.indent(tree, space="  ")
    tree.write(filepath, encoding="unicode", xml_declaration=True)


def _vtk_dtype(arr: np.ndarray, dtype_str: str | None) -> str:
    if dtype_str is not None:
        return dtype_str
    if arr.dtype.kind in ("i", "u"):
        return "Int32"
    return "Float64"


def _add_data_array(
    parent: ET.Element,
    name: str,
    data: np.ndarray,
    *,
    n_components: int = 1,
    dtype_str: str | None = None,
) -> None:
    """DataArray 要素を追加する（ASCII フォーマット）."""
    arr = np.asarray(data)
    dtype_str = _vtk_dtype(arr, dtype_str)

    da = ET.SubElement(parent, "DataArray")
    da.set("type", dtype_str)
    da.set("Name", name)
    da.set("NumberOfComponents", str(n_components))
    da.set("format", "ascii")

    if dtype_str in ("Int32", "Int64", "UInt8"):
        da.text = " ".join(str(int(v)) for v in arr.ravel())
    else:
        da.text = " ".join(f"{float(v):.10g}" for v in arr.ravel())


# VTK dtype 文字列と numpy dtype の対応
_VTK_DTYPE_MAP: dict[str, np.dtype] = {
    "Float64": np.dtype("<f8"),
    "Int32": np.dtype("<i4"),
    "UInt8": np.dtype("<u1"),
}


def _add_data_array_binary(
    parent: ET.Element,
    name: str,
    data: np.ndarray,
    *,
    n_components: int = 1,
    dtype_str: str | None = None,
) -> None:
    """DataArray 要素を追加する（Base64 バイナリフォーマット）.

    VTK XML の "binary" 形式: データは base64 エンコードされ、
    先頭に 4 バイト（UInt32）のデータ長ヘッダが付く。
    """
    arr = np.asarray(data)
    dtype_str = _vtk_dtype(arr, dtype_str)

    arr_typed = arr.ravel().astype(_VTK_DTYPE_MAP[dtype_str])
    raw_bytes = arr_typed.tobytes()
    header = np.array([len(raw_bytes)], dtype=np.dtype("<u4")).tobytes()
    encoded = base64.b64encode(header + raw_bytes).decode("ascii")

    da = ET.SubElement(parent, "DataArray")
    da.set("type", dtype_str)
    da.set("Name", name)
    da.set("NumberOfComponents", str(n_components))
    da.set("format", "binary")
    da.text = encoded


__all__ = [
    "export_steady_vtk",
    "export_transient_vtk",
    "VTK_QUAD",
    "DEFAULT_FIELD_NAME",
]
