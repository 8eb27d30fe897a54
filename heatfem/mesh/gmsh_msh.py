"""Gmsh .msh（ASCII）ファイルのパーサー.

以下のセクションを読み込む:
  - $MeshFormat: バージョン判定（2.2 / 4.1, ASCII のみ）
  - $PhysicalNames: 物理グループ名
  - $Entities: 曲線エンティティ → 物理タグ（4.1 のみ）
  - $Nodes: 節点座標（z は無視）
  - $Elements: 2節点線（type 1）と4節点四角形（type 3）

その他の要素タイプ（点・三角形等）は読み飛ばす。
物理グループは次元1（線）のみを Mesh に登録する。

制限事項:
  - バイナリ形式はサポートしない
  - 4.1 のパラメトリック節点座標は読み飛ばす
"""

from __future__ import annotations

import logging
from pathlib import Path

from heatfem.errors import MeshError
from heatfem.mesh.model import Line, Mesh, Node, PhysicalGroup, Quad

logger = logging.getLogger(__name__)

GMSH_LINE2 = 1
GMSH_QUAD4 = 3

# 要素タイプ → 節点数（読み飛ばし用）
_GMSH_NODES_PER_TYPE: dict[int, int] = {
    1: 2,
    2: 3,
    3: 4,
    4: 4,
    5: 8,
    6: 6,
    7: 5,
    8: 3,
    9: 6,
    10: 9,
    11: 10,
    15: 1,
    16: 8,
}


def read_gmsh_msh(filepath: str | Path) -> Mesh:
    """Gmsh .msh ファイルを読み込む.

    Args:
        filepath: .msh ファイルのパス

    Returns:
        Mesh オブジェクト

    Raises:
        MeshError: ファイルが存在しない、形式が未対応、または内容が不正
    """
    filepath = Path(filepath)
    if not filepath.exists():
        raise MeshError(f"メッシュファイルが見つかりません: {filepath}")

    logger.info("Loading mesh from: %s", filepath)

    with filepath.open("r", encoding="utf-8", errors="replace") as f:
        lines = [ln.strip() for ln in f]

    sections = _split_sections(lines)
    if "MeshFormat" not in sections:
        raise MeshError(f"$MeshFormat セクションがありません: {filepath}")

    header = sections["MeshFormat"][0].split()
    version = header[0]
    if len(header) > 1 and header[1] != "0":
        raise MeshError(f"バイナリ形式の .msh はサポートしない: {filepath}")

    try:
        if version.startswith("2."):
            mesh = _read_v2(sections)
        elif version.startswith("4."):
            mesh = _read_v4(sections)
        else:
            raise MeshError(f"未対応の MSH バージョン: {version}")
    except (IndexError, ValueError) as exc:
        raise MeshError(f"メッシュファイルの解析に失敗: {filepath}: {exc}") from exc

    mesh.validate()

    logger.info(
        "Mesh contains: %d nodes, %d quads, %d lines, %d line physical groups",
        mesh.node_count,
        len(mesh.quads),
        len(mesh.lines),
        len(mesh.physical_groups),
    )
    for group in mesh.physical_groups:
        logger.info("Physical group '%s' contains %d lines", group.name, len(group.line_ids))

    return mesh


def _split_sections(lines: list[str]) -> dict[str, list[str]]:
    """$Name ... $EndName のブロックを辞書に分割する."""
    sections: dict[str, list[str]] = {}
    idx = 0
    n_lines = len(lines)
    while idx < n_lines:
        line = lines[idx]
        if line.startswith("$") and not line.startswith("$End"):
            name = line[1:]
            end_tag = f"$End{name}"
            body: list[str] = []
            idx += 1
            while idx < n_lines and lines[idx] != end_tag:
                if lines[idx]:
                    body.append(lines[idx])
                idx += 1
            sections[name] = body
        idx += 1
    return sections


def _parse_physical_names(body: list[str]) -> dict[tuple[int, int], str]:
    """(dim, tag) → 名前."""
    names: dict[tuple[int, int], str] = {}
    if not body:
        return names
    count = int(body[0])
    for row in body[1 : 1 + count]:
        dim_s, tag_s, name = row.split(maxsplit=2)
        names[(int(dim_s), int(tag_s))] = name.strip().strip('"')
    return names


def _ensure_group(
    groups: dict[int, PhysicalGroup],
    names: dict[tuple[int, int], str],
    tag: int,
) -> PhysicalGroup:
    group = groups.get(tag)
    if group is None:
        group = PhysicalGroup(tag=tag, dimension=1, name=names.get((1, tag), str(tag)))
        groups[tag] = group
    return group


# ---------------------------------------------------------------------------
# MSH 2.2
# ---------------------------------------------------------------------------


def _read_v2(sections: dict[str, list[str]]) -> Mesh:
    names = _parse_physical_names(sections.get("PhysicalNames", []))
    mesh = Mesh()

    node_body = sections.get("Nodes", [])
    if not node_body:
        raise MeshError("$Nodes セクションがありません")
    n_nodes = int(node_body[0])
    for row in node_body[1 : 1 + n_nodes]:
        parts = row.split()
        mesh.add_node(Node(int(parts[0]), float(parts[1]), float(parts[2])))

    groups: dict[int, PhysicalGroup] = {}
    elem_body = sections.get("Elements", [])
    n_elems = int(elem_body[0]) if elem_body else 0
    for row in elem_body[1 : 1 + n_elems]:
        parts = [int(p) for p in row.split()]
        elem_id, elem_type, n_tags = parts[0], parts[1], parts[2]
        tags = parts[3 : 3 + n_tags]
        node_ids = parts[3 + n_tags :]
        if elem_type == GMSH_QUAD4:
            mesh.add_quad(Quad(elem_id, tuple(node_ids[:4])))
        elif elem_type == GMSH_LINE2:
            mesh.add_line(Line(elem_id, tuple(node_ids[:2])))
            if tags and tags[0] != 0:
                _ensure_group(groups, names, tags[0]).line_ids.append(elem_id)

    for tag in sorted(groups):
        mesh.add_physical_group(groups[tag])
    return mesh


# ---------------------------------------------------------------------------
# MSH 4.1
# ---------------------------------------------------------------------------


def _parse_curve_physicals(body: list[str]) -> dict[int, list[int]]:
    """$Entities から曲線タグ → 物理タグを取り出す."""
    curve_physicals: dict[int, list[int]] = {}
    if not body:
        return curve_physicals
    n_points, n_curves = (int(v) for v in body[0].split()[:2])
    for row in body[1 + n_points : 1 + n_points + n_curves]:
        parts = row.split()
        curve_tag = int(parts[0])
        n_phys = int(parts[7])
        curve_physicals[curve_tag] = [int(p) for p in parts[8 : 8 + n_phys]]
    return curve_physicals


def _read_v4(sections: dict[str, list[str]]) -> Mesh:
    names = _parse_physical_names(sections.get("PhysicalNames", []))
    curve_physicals = _parse_curve_physicals(sections.get("Entities", []))
    mesh = Mesh()

    node_body = sections.get("Nodes", [])
    if not node_body:
        raise MeshError("$Nodes セクションがありません")
    n_blocks = int(node_body[0].split()[0])
    idx = 1
    for _ in range(n_blocks):
        _dim, _tag, parametric, n_in_block = (int(v) for v in node_body[idx].split())
        idx += 1
        tags = [int(node_body[idx + k]) for k in range(n_in_block)]
        idx += n_in_block
        for k in range(n_in_block):
            xyz = node_body[idx + k].split()
            mesh.add_node(Node(tags[k], float(xyz[0]), float(xyz[1])))
        idx += n_in_block
        if parametric:
            logger.debug("Parametric node coordinates ignored for entity %d", _tag)

    groups: dict[int, PhysicalGroup] = {}
    elem_body = sections.get("Elements", [])
    n_blocks = int(elem_body[0].split()[0]) if elem_body else 0
    idx = 1
    for _ in range(n_blocks):
        entity_dim, entity_tag, elem_type, n_in_block = (int(v) for v in elem_body[idx].split())
        idx += 1
        rows = elem_body[idx : idx + n_in_block]
        idx += n_in_block
        if elem_type not in (GMSH_QUAD4, GMSH_LINE2):
            if elem_type not in _GMSH_NODES_PER_TYPE:
                logger.warning("Skipping unknown gmsh element type %d", elem_type)
            continue
        physicals = curve_physicals.get(entity_tag, []) if entity_dim == 1 else []
        for row in rows:
            parts = [int(p) for p in row.split()]
            if elem_type == GMSH_QUAD4:
                mesh.add_quad(Quad(parts[0], tuple(parts[1:5])))
            else:
                mesh.add_line(Line(parts[0], tuple(parts[1:3])))
                for ptag in physicals:
                    _ensure_group(groups, names, ptag).line_ids.append(parts[0])

    for tag in sorted(groups):
        mesh.add_physical_group(groups[tag])
    return mesh


# ---------------------------------------------------------------------------
# 書き出し（MSH 2.2 ASCII）
# ---------------------------------------------------------------------------


def write_gmsh_msh(filepath: str | Path, mesh: Mesh) -> str:
    """Mesh を Gmsh MSH 2.2 ASCII 形式で書き出す.

    線要素は所属する最初の物理グループのタグを physical タグとして持つ
    （所属しない線要素は 0）。四角形要素の physical タグは 0。

    Args:
        filepath: 出力ファイルパス
        mesh: 書き出すメッシュ

    Returns:
        生成されたファイルパス
    """
    filepath = Path(filepath)
    line_tag: dict[int, int] = {}
    for group in mesh.physical_groups:
        for line_id in group.line_ids:
            line_tag.setdefault(line_id, group.tag)

    out: list[str] = ["$MeshFormat", "2.2 0 8", "$EndMeshFormat"]
    if mesh.physical_groups:
        out.append("$PhysicalNames")
        out.append(str(len(mesh.physical_groups)))
        for group in mesh.physical_groups:
            out.append(f'{group.dimension} {group.tag} "{group.name}"')
        out.append("$EndPhysicalNames")

    out.append("$Nodes")
    out.append(str(mesh.node_count))
    for node in mesh.nodes:
        out.append(f"{node.id} {node.x:.17g} {node.y:.17g} 0")
    out.append("$EndNodes")

    out.append("$Elements")
    out.append(str(len(mesh.lines) + len(mesh.quads)))
    for line in mesh.lines:
        tag = line_tag.get(line.id, 0)
        out.append(f"{line.id} {GMSH_LINE2} 2 {tag} {tag} {line.node_ids[0]} {line.node_ids[1]}")
    for quad in mesh.quads:
        nodes = " ".join(str(n) for n in quad.node_ids)
        out.append(f"{quad.id} {GMSH_QUAD4} 2 0 1 {nodes}")
    out.append("$EndElements")

    filepath.parent.mkdir(parents=True, exist_ok=True)
    filepath.write_text("\n".join(out) + "\n", encoding="utf-8")
    return str(filepath)


__all__ = ["read_gmsh_msh", "write_gmsh_msh", "GMSH_LINE2", "GMSH_QUAD4"]
