from typing import Iterable, TextIO, Union

import numpy as np

from .text_io import TokenStream


POINT = 0
SEGMENT = 1
SQUARE = 3
CUBE = 5

NUM_VERTICES = {POINT: 1, SEGMENT: 2, SQUARE: 4, CUBE: 8}
GEOMETRY_OF_DIM = {0: POINT, 1: SEGMENT, 2: SQUARE, 3: CUBE}

QUAD_EDGES = ((0, 1), (1, 2), (2, 3), (3, 0))
HEX_EDGES = (
    (0, 1), (1, 2), (3, 2), (0, 3),
    (4, 5), (5, 6), (7, 6), (4, 7),
    (0, 4), (1, 5), (2, 6), (3, 7),
)
HEX_FACES = (
    (3, 2, 1, 0),
    (0, 1, 5, 4),
    (1, 2, 6, 5),
    (2, 3, 7, 6),
    (3, 0, 4, 7),
    (4, 5, 6, 7),
)

# local edges sharing a parametric direction, as vertex pairs running along it
QUAD_DIRECTION_EDGES = (((0, 0, 1), (2, 3, 2)), ((1, 1, 2), (3, 0, 3)))
HEX_DIRECTION_EDGES = (
    ((0, 0, 1), (2, 3, 2), (4, 4, 5), (6, 7, 6)),
    ((1, 1, 2), (3, 0, 3), (5, 5, 6), (7, 4, 7)),
    ((8, 0, 4), (9, 1, 5), (10, 2, 6), (11, 3, 7)),
)


def get_quad_orientation(base: Iterable[int], test: Iterable[int]) -> int:
    """
    Orientation code in [0, 8) of the quadrilateral `test` relative to `base`.

    Even codes keep the vertex cycle direction, odd codes reverse it. The
    code is `2*i` (or `2*i + 1`) with `i` the position of `base[0]` in `test`.
    """
    base = list(base)
    test = list(test)
    for i in range(4):
        if test[i] == base[0]:
            break
    else:
        raise ValueError(f"get_quad_orientation: {test} is not a permutation of {base} !")
    if test[(i + 1) % 4] == base[1]:
        return 2 * i
    return 2 * i + 1


class PatchTopology:
    """
    Coarse mesh whose elements are the patches of a multi-patch NURBS mesh.

    Only the connectivity is stored: element and boundary vertices,
    attributes, and the edges and faces derived from them. Each edge carries
    the index of the knot vector shared by every patch side lying on it.

    Attributes
    ----------
    dim : int
        Parametric dimension of the patches, 1, 2 or 3.
    elements : np.ndarray[np.integer]
        Vertices of each patch, shape (NE, 2**dim).
    attributes : np.ndarray[np.integer]
        Attribute of each patch.
    boundary : np.ndarray[np.integer]
        Vertices of each boundary patch, shape (NBE, 2**(dim - 1)).
    bdr_attributes : np.ndarray[np.integer]
        Attribute of each boundary patch.
    nv : int
        Number of vertices.
    edges : np.ndarray[np.integer]
        Vertices of each edge in their stored order, shape (NEdges, 2). In 1D
        there is one edge per element, the element itself.
    edge_to_knot : np.ndarray[np.integer]
        Knot vector index of each edge, stored as `-1 - k` when the edge is
        stored from its higher to its lower vertex.
    faces : np.ndarray[np.integer]
        Vertices of each face in 3D, shape (NFaces, 4). The stored order is the
        one of the first element referencing the face.
    """

    def __init__(
        self,
        dim: int,
        elements: Iterable[Iterable[int]],
        boundary: Iterable[Iterable[int]],
        nv: Union[int, None] = None,
        attributes: Union[Iterable[int], None] = None,
        bdr_attributes: Union[Iterable[int], None] = None,
        edges: Union[Iterable[Iterable[int]], None] = None,
        edge_to_knot: Union[Iterable[int], None] = None,
    ):
        """
        Build the topology from the patch vertices.

        Parameters
        ----------
        dim : int
            Parametric dimension, 1, 2 or 3.
        elements : Iterable[Iterable[int]]
            Vertices of each patch in tensor order: (0, 1) for a segment,
            counterclockwise for a square, bottom then top square for a cube.
        boundary : Iterable[Iterable[int]]
            Vertices of each boundary patch.
        nv : Union[int, None], optional
            Number of vertices, deduced from the element vertices when `None`.
            By default, None.
        attributes : Union[Iterable[int], None], optional
            Patch attributes, all 1 when `None`. By default, None.
        bdr_attributes : Union[Iterable[int], None], optional
            Boundary attributes, numbered from 1 when `None`. By default, None.
        edges : Union[Iterable[Iterable[int]], None], optional
            Stored edges. When `None`, the edges are generated from the elements
            and oriented so that the edges sharing a parametric direction
            agree, then `edge_to_knot` is set from the unique knot vector
            classes. By default, None.
        edge_to_knot : Union[Iterable[int], None], optional
            Unsigned knot vector index of each stored edge, required with
            `edges`. By default, None.
        """
        if dim not in (1, 2, 3):
            raise ValueError(f"PatchTopology: dimension {dim} is not 1, 2 or 3 !")
        self.dim = dim
        self.elements = np.array(elements, dtype=int).reshape((-1, 2**dim))
        self.boundary = np.array(boundary, dtype=int).reshape((-1, 2 ** (dim - 1)))
        if nv is None:
            nv = int(self.elements.max()) + 1 if self.elements.size > 0 else 0
        self.nv = nv
        if attributes is None:
            attributes = np.ones(self.elements.shape[0], dtype=int)
        self.attributes = np.array(attributes, dtype=int)
        if bdr_attributes is None:
            bdr_attributes = np.arange(1, self.boundary.shape[0] + 1)
        self.bdr_attributes = np.array(bdr_attributes, dtype=int)
        if self.attributes.size != self.elements.shape[0] or self.bdr_attributes.size != self.boundary.shape[0]:
            raise ValueError("PatchTopology: attribute counts do not match the element counts !")
        if edges is None:
            self._generate_edges()
            self.edge_to_knot, _ = self.get_edge_to_unique_knot_vector()
        else:
            if edge_to_knot is None:
                raise ValueError("PatchTopology: stored edges require their knot vector indices !")
            self.edges = np.array(edges, dtype=int).reshape((-1, 2))
            knots = np.array(edge_to_knot, dtype=int)
            self.edge_to_knot = np.where(self.edges[:, 0] > self.edges[:, 1], -1 - knots, knots)
        self._build_connectivity()

    # %% construction

    def _direction_edges(self):
        if self.dim == 2:
            return QUAD_DIRECTION_EDGES
        return HEX_DIRECTION_EDGES

    def _local_edges(self):
        if self.dim == 2:
            return QUAD_EDGES
        return HEX_EDGES

    def _generate_edges(self):
        """
        Create one edge per distinct vertex pair and orient the edges so that
        all the edges of a parametric direction of a patch run the same way.
        """
        if self.dim == 1:
            self.edges = self.elements.copy()
            return
        index = {}
        for v in self.elements:
            for a, b in self._local_edges():
                key = (min(v[a], v[b]), max(v[a], v[b]))
                if key not in index:
                    index[key] = len(index)
        parent = np.arange(len(index))
        # parity of an edge relative to its root: 1 when stored in opposite ways
        parity = np.zeros(len(index), dtype=int)

        def find(e):
            path = []
            while parent[e] != e:
                path.append(e)
                e = parent[e]
            root = e
            acc = 0
            for node in reversed(path):
                acc ^= parity[node]
                parity[node] = acc
                parent[node] = root
            return root

        for v in self.elements:
            for group in self._direction_edges():
                first = None
                for _, a, b in group:
                    key = (min(v[a], v[b]), max(v[a], v[b]))
                    e = index[key]
                    flipped = int(v[a] > v[b])
                    if first is None:
                        first = (e, flipped)
                        continue
                    e0, f0 = first
                    r0, r = find(e0), find(e)
                    rel = f0 ^ flipped ^ parity[e0] ^ parity[e]
                    if r0 == r:
                        if rel != 0:
                            raise ValueError(
                                "PatchTopology: the patches can not be oriented consistently !"
                            )
                    else:
                        parent[r] = r0
                        parity[r] = rel
        edges = np.empty((len(index), 2), dtype=int)
        for (lo, hi), e in index.items():
            find(e)
            edges[e] = (hi, lo) if parity[e] else (lo, hi)
        self.edges = edges

    def _build_connectivity(self):
        ne = self.elements.shape[0]
        if self.dim == 1:
            if self.edges.shape[0] != ne:
                raise ValueError(
                    f"PatchTopology: a 1D topology needs one edge per element, got {self.edges.shape[0]} for {ne} !"
                )
            self.element_edges = np.arange(ne)[:, None]
            self.element_edge_orients = np.where(self.elements[:, 0] < self.elements[:, 1], 1, -1)[:, None]
            self.faces = np.empty((0, 4), dtype=int)
            self.bdr_edges = np.empty((self.boundary.shape[0], 0), dtype=int)
            self.bdr_edge_orients = np.empty((self.boundary.shape[0], 0), dtype=int)
            return
        self._edge_index = {}
        for e, (a, b) in enumerate(self.edges):
            self._edge_index[(min(a, b), max(a, b))] = e
        local_edges = self._local_edges()
        self.element_edges = np.empty((ne, len(local_edges)), dtype=int)
        self.element_edge_orients = np.empty((ne, len(local_edges)), dtype=int)
        for el, v in enumerate(self.elements):
            for j, (a, b) in enumerate(local_edges):
                self.element_edges[el, j] = self.find_edge(v[a], v[b])
                self.element_edge_orients[el, j] = 1 if v[a] < v[b] else -1
        # first element (and local index) adjacent to each edge
        self._edge_elem1 = {}
        for el in range(ne):
            for j, e in enumerate(self.element_edges[el]):
                self._edge_elem1.setdefault(int(e), (el, j))
        if self.dim == 3:
            face_index = {}
            faces = []
            self.element_faces = np.empty((ne, 6), dtype=int)
            self.element_face_orients = np.empty((ne, 6), dtype=int)
            self._face_elem1 = {}
            for el, v in enumerate(self.elements):
                for lf, fv in enumerate(HEX_FACES):
                    verts = [int(v[i]) for i in fv]
                    key = tuple(sorted(verts))
                    if key not in face_index:
                        face_index[key] = len(faces)
                        faces.append(verts)
                        self._face_elem1[face_index[key]] = (el, lf)
                    f = face_index[key]
                    self.element_faces[el, lf] = f
                    self.element_face_orients[el, lf] = get_quad_orientation(faces[f], verts)
            self._face_index = face_index
            self.faces = np.array(faces, dtype=int).reshape((-1, 4))
        else:
            self.faces = np.empty((0, 4), dtype=int)
        nbe = self.boundary.shape[0]
        if self.dim == 2:
            self.bdr_edges = np.empty((nbe, 1), dtype=int)
            self.bdr_edge_orients = np.empty((nbe, 1), dtype=int)
            for b, v in enumerate(self.boundary):
                self.bdr_edges[b, 0] = self.find_edge(v[0], v[1])
                self.bdr_edge_orients[b, 0] = 1 if v[0] < v[1] else -1
        else:
            self.bdr_edges = np.empty((nbe, 4), dtype=int)
            self.bdr_edge_orients = np.empty((nbe, 4), dtype=int)
            self.bdr_faces = np.empty(nbe, dtype=int)
            self.bdr_face_orients = np.empty(nbe, dtype=int)
            for b, v in enumerate(self.boundary):
                for j, (a, c) in enumerate(QUAD_EDGES):
                    self.bdr_edges[b, j] = self.find_edge(v[a], v[c])
                    self.bdr_edge_orients[b, j] = 1 if v[a] < v[c] else -1
                key = tuple(sorted(int(x) for x in v))
                if key not in self._face_index:
                    raise ValueError(f"PatchTopology: boundary patch {b} is not a face of any patch !")
                f = self._face_index[key]
                self.bdr_faces[b] = f
                self.bdr_face_orients[b] = get_quad_orientation(self.faces[f], v)

    def find_edge(self, v0: int, v1: int) -> int:
        key = (min(v0, v1), max(v0, v1))
        if key not in self._edge_index:
            raise ValueError(f"PatchTopology: no edge between vertices {v0} and {v1} !")
        return self._edge_index[key]

    def get_edge_to_unique_knot_vector(self) -> tuple[np.ndarray[np.integer], np.ndarray[np.integer]]:
        """
        Group the edges sharing a knot vector and number the groups.

        Two edges share a knot vector when they bound the same parametric
        direction of some patch. The groups are numbered in the order of their
        first appearance when walking the patches and their directions.

        Returns
        -------
        edge_to_knot : np.ndarray[np.integer]
            Signed knot vector index of each edge, `-1 - k` when the edge is
            stored from its higher to its lower vertex.
        ukv_to_rpkv : np.ndarray[np.integer]
            For each knot vector, `p * dim + d` for the first patch `p` and
            direction `d` using it.
        """
        ne = self.elements.shape[0]
        if self.dim == 1:
            knots = np.arange(ne)
            ukv_to_rpkv = np.arange(ne)
        else:
            edge_of = {}
            for e, (a, b) in enumerate(self.edges):
                edge_of[(min(a, b), max(a, b))] = e
            parent = np.arange(self.edges.shape[0])

            def find(e):
                while parent[e] != e:
                    parent[e] = parent[parent[e]]
                    e = parent[e]
                return e

            order = []
            for p, v in enumerate(self.elements):
                for d, group in enumerate(self._direction_edges()):
                    ids = [edge_of[(min(v[a], v[b]), max(v[a], v[b]))] for _, a, b in group]
                    for e in ids[1:]:
                        r0, r = find(ids[0]), find(e)
                        if r0 != r:
                            parent[r] = r0
                    order.append((p * self.dim + d, ids[0]))
            root_to_knot = {}
            ukv_to_rpkv = []
            for pkv, e in order:
                r = find(e)
                if r not in root_to_knot:
                    root_to_knot[r] = len(root_to_knot)
                    ukv_to_rpkv.append(pkv)
            knots = np.array([root_to_knot.get(find(e), -1) for e in range(self.edges.shape[0])], dtype=int)
            ukv_to_rpkv = np.array(ukv_to_rpkv, dtype=int)
        edge_to_knot = np.where(self.edges[:, 0] > self.edges[:, 1], -1 - knots, knots)
        return edge_to_knot, ukv_to_rpkv

    # %% queries

    def get_ne(self) -> int:
        return self.elements.shape[0]

    def get_nbe(self) -> int:
        return self.boundary.shape[0]

    def get_nv(self) -> int:
        return self.nv

    def get_nedges(self) -> int:
        return self.edges.shape[0]

    def get_nfaces(self) -> int:
        return self.faces.shape[0]

    def get_attribute(self, p: int) -> int:
        return int(self.attributes[p])

    def get_bdr_attribute(self, b: int) -> int:
        return int(self.bdr_attributes[b])

    def get_element_vertices(self, p: int) -> np.ndarray[np.integer]:
        return self.elements[p].copy()

    def get_bdr_element_vertices(self, b: int) -> np.ndarray[np.integer]:
        return self.boundary[b].copy()

    def get_edge_vertices(self, e: int) -> np.ndarray[np.integer]:
        return self.edges[e].copy()

    def get_element_edges(self, p: int) -> tuple[np.ndarray[np.integer], np.ndarray[np.integer]]:
        """
        Edges of patch `p` in local order with their orientations, +1 when the
        local edge runs from the lower to the higher global vertex.
        """
        return self.element_edges[p].copy(), self.element_edge_orients[p].copy()

    def get_element_faces(self, p: int) -> tuple[np.ndarray[np.integer], np.ndarray[np.integer]]:
        if self.dim != 3:
            raise ValueError("PatchTopology.get_element_faces: faces only exist in 3D !")
        return self.element_faces[p].copy(), self.element_face_orients[p].copy()

    def get_bdr_element_edges(self, b: int) -> tuple[np.ndarray[np.integer], np.ndarray[np.integer]]:
        return self.bdr_edges[b].copy(), self.bdr_edge_orients[b].copy()

    def get_bdr_element_face(self, b: int) -> tuple[int, int]:
        """
        Face of boundary patch `b` and the orientation code of the boundary
        patch relative to the face, in 3D.
        """
        if self.dim != 3:
            raise ValueError("PatchTopology.get_bdr_element_face: faces only exist in 3D !")
        return int(self.bdr_faces[b]), int(self.bdr_face_orients[b])

    def get_face_edges(self, f: int) -> tuple[np.ndarray[np.integer], np.ndarray[np.integer]]:
        fv = self.faces[f]
        edges = np.array([self.find_edge(fv[a], fv[b]) for a, b in QUAD_EDGES], dtype=int)
        orients = np.array([1 if fv[a] < fv[b] else -1 for a, b in QUAD_EDGES], dtype=int)
        return edges, orients

    def get_bdr_element_face_index(self, b: int) -> int:
        """
        Local index, in its first adjacent patch, of the edge (2D) or face (3D)
        that boundary patch `b` lies on.
        """
        if self.dim == 2:
            return self._edge_elem1[int(self.bdr_edges[b, 0])][1]
        if self.dim == 3:
            return self._face_elem1[int(self.bdr_faces[b])][1]
        return 0

    # %% input / output

    @classmethod
    def read(cls, tokens: TokenStream) -> tuple["PatchTopology", int]:
        """
        Read the header and the coarse topology sections.

        Returns
        -------
        topo : PatchTopology
            The topology.
        version : int
            10 for a `v1.0` file, 11 for a `v1.1` file, whose knot vectors
            carry a `spacing` section.
        """
        for word in ("MFEM", "NURBS", "mesh"):
            tokens.expect(word)
        version = {"v1.0": 10, "v1.1": 11}.get(tokens.next())
        if version is None:
            raise ValueError("PatchTopology.read: unknown NURBS mesh version !")
        tokens.expect("dimension")
        dim = tokens.next_int()
        tokens.expect("elements")
        attributes, elements = cls._read_cells(tokens, dim)
        tokens.expect("boundary")
        bdr_attributes, boundary = cls._read_cells(tokens, dim - 1)
        tokens.expect("edges")
        n = tokens.next_int()
        data = tokens.next_ints(3 * n).reshape((n, 3))
        tokens.expect("vertices")
        nv = tokens.next_int()
        topo = cls(
            dim, elements, boundary, nv, attributes, bdr_attributes,
            edges=data[:, 1:], edge_to_knot=data[:, 0],
        )
        return topo, version

    @staticmethod
    def _read_cells(tokens, dim):
        n = tokens.next_int()
        attributes = np.empty(n, dtype=int)
        cells = np.empty((n, 2**dim), dtype=int)
        for i in range(n):
            attributes[i] = tokens.next_int()
            geom = tokens.next_int()
            if geom != GEOMETRY_OF_DIM[dim]:
                raise ValueError(
                    f"PatchTopology.read: geometry {geom} does not match dimension {dim} !"
                )
            cells[i] = tokens.next_ints(NUM_VERTICES[geom])
        return attributes, cells

    def print(self, os: TextIO, version: int = 10, comments: str = ""):
        os.write(f"MFEM NURBS mesh v{version // 10}.{version % 10}\n")
        if comments:
            os.write("\n" + comments + "\n")
        os.write(
            "\n#\n# MFEM Geometry Types (see mesh/geom.hpp):\n#\n"
            "# SEGMENT     = 1\n# SQUARE      = 3\n# CUBE        = 5\n#\n"
        )
        os.write(f"\ndimension\n{self.dim}\n")
        os.write(f"\nelements\n{self.get_ne()}\n")
        geom = GEOMETRY_OF_DIM[self.dim]
        for attr, v in zip(self.attributes, self.elements):
            os.write(f"{attr} {geom} " + " ".join(str(x) for x in v) + "\n")
        os.write(f"\nboundary\n{self.get_nbe()}\n")
        geom = GEOMETRY_OF_DIM[self.dim - 1]
        for attr, v in zip(self.bdr_attributes, self.boundary):
            os.write(f"{attr} {geom} " + " ".join(str(x) for x in v) + "\n")
        os.write(f"\nedges\n{self.get_nedges()}\n")
        for k, (a, b) in zip(self.edge_to_knot, self.edges):
            os.write(f"{k if k >= 0 else -1 - k} {a} {b}\n")
        os.write(f"\nvertices\n{self.nv}\n")
