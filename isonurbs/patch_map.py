from typing import TYPE_CHECKING

from .knot_vector import KnotVector

if TYPE_CHECKING:
    from .nurbs_extension import NURBSExtension


def _region(n: int, N: int) -> int:
    # 0 on the low corner, 1 inside, 2 on the high corner
    if n < 0:
        return 0
    if n >= N:
        return 2
    return 1


def or_1d(n: int, N: int, orient: int) -> int:
    """
    Index of the `n`-th of `N` interior entries of an edge seen with
    orientation `orient`.
    """
    if orient >= 0:
        return n
    return N - 1 - n


def or_2d(n1: int, n2: int, N1: int, N2: int, orient: int) -> int:
    """
    Index of the entry `(n1, n2)` of an `N1 x N2` face interior stored with the
    quadrilateral orientation code `orient`.
    """
    if orient == 0:
        return n1 + n2 * N1
    if orient == 1:
        return n2 + n1 * N2
    if orient == 2:
        return n2 + (N1 - 1 - n1) * N2
    if orient == 3:
        return (N1 - 1 - n1) + n2 * N1
    if orient == 4:
        return (N1 - 1 - n1) + (N2 - 1 - n2) * N1
    if orient == 5:
        return (N2 - 1 - n2) + (N1 - 1 - n1) * N2
    if orient == 6:
        return (N2 - 1 - n2) + n1 * N2
    if orient == 7:
        return n1 + (N2 - 1 - n2) * N1
    raise ValueError(f"or_2d: invalid orientation {orient} !")


class NURBSPatchMap:
    """
    Translate tensor indices of a patch (or boundary patch) into global
    indices of either the vertex (element corner) numbering or the degree of
    freedom numbering.

    A setter is called first to load the vertices, edges and faces of the
    patch and their offsets. Calling the map with `(i, j, k)` in
    `[0, nx) x [0, ny) x [0, nz)` then returns the global index: the corners
    map to vertices, the rest of the patch border to edge or face interiors,
    read with their stored orientation, and the inside to the patch interior.

    Parameters
    ----------
    ext : NURBSExtension
        The extension providing the topology and the offsets.
    """

    def __init__(self, ext: "NURBSExtension"):
        self.ext = ext
        self.verts = []
        self.edges = []
        self.oedge = []
        self.faces = []
        self.oface = []
        self.I = self.J = self.K = 0
        self.p_offset = 0
        self.opatch = 0

    @property
    def nx(self) -> int:
        return self.I + 1

    @property
    def ny(self) -> int:
        return self.J + 1

    @property
    def nz(self) -> int:
        return self.K + 1

    def _interior_sizes(self, kvs: list[KnotVector], dof: bool):
        sizes = [kv.ncp - 2 if dof else kv.ne - 1 for kv in kvs]
        sizes += [0] * (3 - len(sizes))
        self.I, self.J, self.K = sizes

    def _load_patch(self, p: int, dof: bool):
        ext = self.ext
        topo = ext.patch_topo
        kvs = ext.get_patch_knot_vectors(p)
        self._interior_sizes(kvs, dof)
        self.verts = [int(v) for v in topo.get_element_vertices(p)]
        if ext.dim >= 2:
            edges, oedge = topo.get_element_edges(p)
            off = ext.e_space_offsets if dof else ext.e_mesh_offsets
            self.edges = [int(off[e]) for e in edges]
            self.oedge = [int(o) for o in oedge]
        if ext.dim == 3:
            faces, oface = topo.get_element_faces(p)
            off = ext.f_space_offsets if dof else ext.f_mesh_offsets
            self.faces = [int(off[f]) for f in faces]
            self.oface = [int(o) for o in oface]
        poff = ext.p_space_offsets if dof else ext.p_mesh_offsets
        self.p_offset = int(poff[p])
        self.opatch = 0
        return kvs

    def set_patch_vertex_map(self, p: int) -> list[KnotVector]:
        """
        Map the element corners of patch `p`, returns the patch knot vectors.
        """
        return self._load_patch(p, dof=False)

    def set_patch_dof_map(self, p: int) -> list[KnotVector]:
        """
        Map the control points of patch `p`, returns the patch knot vectors.
        """
        return self._load_patch(p, dof=True)

    def _load_bdr_patch(self, b: int, dof: bool):
        ext = self.ext
        topo = ext.patch_topo
        kvs, okv = ext.get_bdr_patch_knot_vectors(b)
        self._interior_sizes(kvs, dof)
        self.verts = [int(v) for v in topo.get_bdr_element_vertices(b)]
        if ext.dim == 1:
            self.p_offset = 0
            self.opatch = 0
        elif ext.dim == 2:
            edges, oedge = topo.get_bdr_element_edges(b)
            off = ext.e_space_offsets if dof else ext.e_mesh_offsets
            self.p_offset = int(off[edges[0]])
            self.opatch = int(oedge[0])
        else:
            edges, oedge = topo.get_bdr_element_edges(b)
            off = ext.e_space_offsets if dof else ext.e_mesh_offsets
            self.edges = [int(off[e]) for e in edges]
            self.oedge = [int(o) for o in oedge]
            f, of = topo.get_bdr_element_face(b)
            off = ext.f_space_offsets if dof else ext.f_mesh_offsets
            self.p_offset = int(off[f])
            self.opatch = of
        return kvs, okv

    def set_bdr_patch_vertex_map(self, b: int) -> tuple[list[KnotVector], list[int]]:
        """
        Map the element corners of boundary patch `b`, returns its knot vectors
        and their orientations relative to the boundary patch.
        """
        return self._load_bdr_patch(b, dof=False)

    def set_bdr_patch_dof_map(self, b: int) -> tuple[list[KnotVector], list[int]]:
        return self._load_bdr_patch(b, dof=True)

    def __call__(self, i: int, j: int = None, k: int = None) -> int:
        if j is None:
            return self._map_1d(i)
        if k is None:
            return self._map_2d(i, j)
        return self._map_3d(i, j, k)

    def _map_1d(self, i):
        i1 = i - 1
        r = _region(i1, self.I)
        if r == 0:
            return self.verts[0]
        if r == 1:
            return self.p_offset + or_1d(i1, self.I, self.opatch)
        return self.verts[1]

    def _map_2d(self, i, j):
        I, J = self.I, self.J
        i1, j1 = i - 1, j - 1
        case = 3 * _region(j1, J) + _region(i1, I)
        if case == 0:
            return self.verts[0]
        if case == 1:
            return self.edges[0] + or_1d(i1, I, self.oedge[0])
        if case == 2:
            return self.verts[1]
        if case == 3:
            return self.edges[3] + or_1d(j1, J, -self.oedge[3])
        if case == 4:
            return self.p_offset + or_2d(i1, j1, I, J, self.opatch)
        if case == 5:
            return self.edges[1] + or_1d(j1, J, self.oedge[1])
        if case == 6:
            return self.verts[3]
        if case == 7:
            return self.edges[2] + or_1d(i1, I, -self.oedge[2])
        return self.verts[2]

    def _map_3d(self, i, j, k):
        I, J, K = self.I, self.J, self.K
        i1, j1, k1 = i - 1, j - 1, k - 1
        case = 9 * _region(k1, K) + 3 * _region(j1, J) + _region(i1, I)
        e, oe, f, of = self.edges, self.oedge, self.faces, self.oface
        if case == 0:
            return self.verts[0]
        if case == 1:
            return e[0] + or_1d(i1, I, oe[0])
        if case == 2:
            return self.verts[1]
        if case == 3:
            return e[3] + or_1d(j1, J, oe[3])
        if case == 4:
            return f[0] + or_2d(i1, J - 1 - j1, I, J, of[0])
        if case == 5:
            return e[1] + or_1d(j1, J, oe[1])
        if case == 6:
            return self.verts[3]
        if case == 7:
            return e[2] + or_1d(i1, I, oe[2])
        if case == 8:
            return self.verts[2]
        if case == 9:
            return e[8] + or_1d(k1, K, oe[8])
        if case == 10:
            return f[1] + or_2d(i1, k1, I, K, of[1])
        if case == 11:
            return e[9] + or_1d(k1, K, oe[9])
        if case == 12:
            return f[4] + or_2d(J - 1 - j1, k1, J, K, of[4])
        if case == 13:
            return self.p_offset + I * (J * k1 + j1) + i1
        if case == 14:
            return f[2] + or_2d(j1, k1, J, K, of[2])
        if case == 15:
            return e[11] + or_1d(k1, K, oe[11])
        if case == 16:
            return f[3] + or_2d(I - 1 - i1, k1, I, K, of[3])
        if case == 17:
            return e[10] + or_1d(k1, K, oe[10])
        if case == 18:
            return self.verts[4]
        if case == 19:
            return e[4] + or_1d(i1, I, oe[4])
        if case == 20:
            return self.verts[5]
        if case == 21:
            return e[7] + or_1d(j1, J, oe[7])
        if case == 22:
            return f[5] + or_2d(i1, j1, I, J, of[5])
        if case == 23:
            return e[5] + or_1d(j1, J, oe[5])
        if case == 24:
            return self.verts[7]
        if case == 25:
            return e[6] + or_1d(i1, I, oe[6])
        return self.verts[6]

    def bdr(self, i: int, j: int = None) -> int:
        """
        Global index of the entry `(i, j)` of a boundary patch: a single index
        for a 1D boundary (the boundary point), `i` for a 2D boundary edge and
        `(i, j)` for a 3D boundary face.
        """
        if self.ext.dim == 1:
            return self.verts[0]
        if j is None:
            return self._map_1d(i)
        return self._map_2d(i, j)
