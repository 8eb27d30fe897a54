"""heatfem.mesh - メッシュモデル・構造格子生成・Gmsh 読込."""

from heatfem.mesh.gmsh_msh import read_gmsh_msh, write_gmsh_msh
from heatfem.mesh.model import Line, Mesh, Node, PhysicalGroup, Quad
from heatfem.mesh.rect_mesh import BOUNDARY_GROUPS, make_rect_mesh

__all__ = [
    "Node",
    "Quad",
    "Line",
    "PhysicalGroup",
    "Mesh",
    "make_rect_mesh",
    "BOUNDARY_GROUPS",
    "read_gmsh_msh",
    "write_gmsh_msh",
]
