"""長方形構造格子メッシュの生成."""

from __future__ import annotations

import numpy as np

from heatfem.mesh.model import Line, Mesh, Node, PhysicalGroup, Quad

BOUNDARY_GROUPS = ("bottom", "right", "top", "left")


def make_rect_mesh(
    Lx: float,
    Ly: float,
    nx: int,
    ny: int,
    *,
    first_node_id: int = 1,
    first_element_id: int = 1,
) -> Mesh:
    """長方形均一メッシュの生成.

    節点・要素 ID は first_node_id / first_element_id から始まる連番
    （Gmsh と同様に 1 始まりがデフォルト）。

    Args:
        Lx, Ly: x方向/y方向の長さ [m]
        nx, ny: x方向/y方向の要素数
        first_node_id: 先頭節点 ID
        first_element_id: 先頭要素 ID（四角形 → 線要素の順に採番）

    Returns:
        Mesh: 物理グループ "bottom", "right", "top", "left" 付き
    """
    if nx < 1 or ny < 1:
        raise ValueError(f"nx, ny は1以上: nx={nx}, ny={ny}")

    x = np.linspace(0.0, Lx, nx + 1)
    y = np.linspace(0.0, Ly, ny + 1)

    def nid(i: int, j: int) -> int:
        return first_node_id + j * (nx + 1) + i

    mesh = Mesh()
    for j in range(ny + 1):
        for i in range(nx + 1):
            mesh.add_node(Node(nid(i, j), float(x[i]), float(y[j])))

    eid = first_element_id
    for j in range(ny):
        for i in range(nx):
            mesh.add_quad(Quad(eid, (nid(i, j), nid(i + 1, j), nid(i + 1, j + 1), nid(i, j + 1))))
            eid += 1

    # 境界辺（各辺とも反時計回りに一周する向き）
    edges: dict[str, list[tuple[int, int]]] = {
        "bottom": [(nid(i, 0), nid(i + 1, 0)) for i in range(nx)],
        "right": [(nid(nx, j), nid(nx, j + 1)) for j in range(ny)],
        "top": [(nid(i + 1, ny), nid(i, ny)) for i in reversed(range(nx))],
        "left": [(nid(0, j + 1), nid(0, j)) for j in reversed(range(ny))],
    }
    for tag, name in enumerate(BOUNDARY_GROUPS, start=1):
        group = PhysicalGroup(tag=tag, dimension=1, name=name)
        for n1, n2 in edges[name]:
            mesh.add_line(Line(eid, (n1, n2)))
            group.line_ids.append(eid)
            eid += 1
        mesh.add_physical_group(group)

    return mesh


__all__ = ["make_rect_mesh", "BOUNDARY_GROUPS"]
