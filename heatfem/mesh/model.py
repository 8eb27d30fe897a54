"""メッシュのデータモデル.

節点・Q4 要素・2節点境界線要素・物理グループを保持する。
外部メッシュ形式の節点 ID は連番・0始まりとは限らないため、
ID → 内部インデックス（節点の追加順）の対応表を持つ。
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np

from heatfem.errors import MeshError


@dataclass(frozen=True)
class Node:
    """節点（2D）."""

    id: int
    x: float
    y: float


@dataclass(frozen=True)
class Quad:
    """4節点四角形要素（反時計回り節点順）."""

    id: int
    node_ids: tuple[int, int, int, int]


@dataclass(frozen=True)
class Line:
    """2節点境界線要素."""

    id: int
    node_ids: tuple[int, int]


@dataclass
class PhysicalGroup:
    """線要素の物理グループ.

    Attributes:
        tag: 物理グループのタグ
        dimension: 次元（線 = 1）
        name: グループ名（境界条件の適用先として参照）
        line_ids: 所属する線要素 ID
    """

    tag: int
    dimension: int
    name: str
    line_ids: list[int] = field(default_factory=list)


class Mesh:
    """2D 熱伝導メッシュ.

    アセンブリからは読み取り専用で使用する。
    """

    def __init__(self) -> None:
        self._nodes: list[Node] = []
        self._quads: list[Quad] = []
        self._lines: list[Line] = []
        self._physical_groups: list[PhysicalGroup] = []
        self._node_index_by_id: dict[int, int] = {}
        self._line_by_id: dict[int, Line] = {}
        self._coords: np.ndarray | None = None

    # ------------------------------------------------------------------
    # 構築
    # ------------------------------------------------------------------

    def add_node(self, node: Node) -> None:
        if node.id in self._node_index_by_id:
            raise MeshError(f"節点 ID が重複しています: {node.id}")
        self._node_index_by_id[node.id] = len(self._nodes)
        self._nodes.append(node)
        self._coords = None

    def add_quad(self, quad: Quad) -> None:
        self._quads.append(quad)

    def add_line(self, line: Line) -> None:
        self._lines.append(line)
        self._line_by_id[line.id] = line

    def add_physical_group(self, group: PhysicalGroup) -> None:
        self._physical_groups.append(group)

    # ------------------------------------------------------------------
    # 参照
    # ------------------------------------------------------------------

    @property
    def nodes(self) -> list[Node]:
        return self._nodes

    @property
    def quads(self) -> list[Quad]:
        return self._quads

    @property
    def lines(self) -> list[Line]:
        return self._lines

    @property
    def physical_groups(self) -> list[PhysicalGroup]:
        return self._physical_groups

    @property
    def node_count(self) -> int:
        return len(self._nodes)

    def get_node_local_id(self, node_id: int) -> int:
        """外部節点 ID → 内部インデックス（0始まり、連番）.

        Raises:
            MeshError: 未知の節点 ID
        """
        try:
            return self._node_index_by_id[node_id]
        except KeyError:
            raise MeshError(f"未知の節点 ID です: {node_id}") from None

    def get_node(self, node_id: int) -> Node:
        return self._nodes[self.get_node_local_id(node_id)]

    def node_coords(self) -> np.ndarray:
        """(N, 2) 内部インデックス順の節点座標."""
        if self._coords is None:
            coords = np.array([(n.x, n.y) for n in self._nodes], dtype=np.float64)
            self._coords = coords.reshape(-1, 2)
        return self._coords

    def quad_connectivity(self) -> np.ndarray:
        """(Ne, 4) 内部インデックスの接続配列."""
        conn = [[self.get_node_local_id(i) for i in q.node_ids] for q in self._quads]
        return np.array(conn, dtype=np.int64).reshape(-1, 4)

    def get_physical_group(self, name: str) -> PhysicalGroup | None:
        for group in self._physical_groups:
            if group.name == name:
                return group
        return None

    def boundary_lines(self, group_name: str) -> list[Line]:
        """境界条件を適用する線要素.

        指定名の物理グループがあればその所属線要素、
        メッシュが該当グループを持たなければ全線要素を返す。
        """
        group = self.get_physical_group(group_name)
        if group is None:
            return list(self._lines)
        lines = []
        for line_id in group.line_ids:
            line = self._line_by_id.get(line_id)
            if line is None:
                raise MeshError(f"物理グループ '{group_name}' が未知の線要素を参照: {line_id}")
            lines.append(line)
        return lines

    def validate(self) -> None:
        """要素が参照する全節点 ID の存在を確認する.

        Raises:
            MeshError: 未知の節点 ID を参照する要素がある
        """
        for quad in self._quads:
            for nid in quad.node_ids:
                if nid not in self._node_index_by_id:
                    raise MeshError(f"要素 {quad.id} が未知の節点 {nid} を参照しています")
        for line in self._lines:
            for nid in line.node_ids:
                if nid not in self._node_index_by_id:
                    raise MeshError(f"線要素 {line.id} が未知の節点 {nid} を参照しています")

    def __repr__(self) -> str:
        return (
            f"Mesh(nodes={len(self._nodes)}, quads={len(self._quads)}, "
            f"lines={len(self._lines)}, groups={len(self._physical_groups)})"
        )


__all__ = ["Node", "Quad", "Line", "PhysicalGroup", "Mesh"]
