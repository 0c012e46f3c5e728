from enum import Enum
from itertools import product
from typing import Iterable, NamedTuple, TextIO, Union
import copy

import numpy as np
from tqdm import tqdm

from .knot_vector import KnotVector, KNOT_TOL
from .nurbs_patch import NURBSPatch, KnotRemovalResult
from .patch_map import NURBSPatchMap
from .patch_topology import PatchTopology
from .spacing import get_spacing_function
from .table import Table
from .text_io import TokenStream, fmt_real
from .parallel_utils import parallel_blocks
from .save_utils import save_patch_meshes


VARIABLE_ORDER = -1

# local edge of the patch carrying the knot vector of each parametric direction
DIRECTION_EDGES = {2: (0, 1), 3: (0, 3, 8)}
# local edge and its vertex pair running along each direction
ORIENTATION_EDGES = {2: ((0, 0, 1), (1, 1, 2)), 3: ((0, 0, 1), (1, 1, 2), (8, 0, 4))}
ELEMENT_CORNERS = {
    1: ((0,), (1,)),
    2: ((0, 0), (1, 0), (1, 1), (0, 1)),
    3: (
        (0, 0, 0), (1, 0, 0), (1, 1, 0), (0, 1, 0),
        (0, 0, 1), (1, 0, 1), (1, 1, 1), (0, 1, 1),
    ),
}


class Mode(Enum):
    """
    Kind of discrete space built on the mesh: it decides which boundary
    degrees of freedom are kept and which ones carry a sign flip.
    """

    H1 = 0
    H_DIV = 1
    H_CURL = 2


class InconsistentKnotVectorsError(ValueError):
    """
    Raised when patches sharing an edge disagree on its knot vector.

    Attributes
    ----------
    patch : Union[int, None]
        Index of the offending patch.
    direction : Union[int, None]
        Offending parametric direction of the patch, `None` when the whole
        patch is inconsistent with the topology.
    """

    def __init__(self, message: str, patch: Union[int, None] = None, direction: Union[int, None] = None):
        super().__init__(message)
        self.patch = patch
        self.direction = direction


class ElementData(NamedTuple):
    """
    What a finite element needs to evaluate its NURBS basis.
    """

    patch: int
    ijk: np.ndarray
    knot_vectors: list
    dofs: np.ndarray
    weights: np.ndarray


def _same_knot_vector(a: KnotVector, b: KnotVector) -> bool:
    if a.order != b.order or a.knot.size != b.knot.size:
        return False
    scale = max(1.0, float(np.abs(b.knot).max()))
    return bool(np.all(np.abs(a.knot - b.knot) <= KNOT_TOL * scale))


def _find(parent, i):
    root = i
    while parent[root] != root:
        root = parent[root]
    while parent[i] != root:
        parent[i], i = root, parent[i]
    return root


def _union(parent, a, b):
    ra = _find(parent, a)
    rb = _find(parent, b)
    if ra != rb:
        parent[ra] = rb


# %% patch tasks, module level so that worker processes can unpickle them


def _refine_patch(patch, rf):
    patch.uniform_refinement(rf)
    return patch


def _elevate_patch(patch, rel_degree, degree):
    for d in range(patch.NPa):
        oldd = patch.kv[d].order
        newd = min(oldd + rel_degree, degree)
        if newd > oldd:
            patch.degree_elevate(newd - oldd, d)
    return patch


def _coarsen_patch(patch, cf, tol, verbose):
    patch.coarsen(cf, tol, verbose)
    return patch


class NURBSExtension:
    """
    Multi-patch NURBS mesh: the coarse patch topology, the knot vectors
    shared by the patch edges, and the global numbering of vertices,
    elements and degrees of freedom derived from them.

    The knot vectors are kept in two sets. The unique set holds one knot
    vector per class of topology edges, oriented along the stored edge. The
    comprehensive set holds, for each patch `p` and direction `d`, the knot
    vector at index `dim * p + d`, oriented along the patch direction. Every
    operation editing the patches ends with `set_knots_from_patches`, which
    refreshes the unique set and checks that both sets agree.

    Attributes
    ----------
    patch_topo : PatchTopology
        Coarse topology, one element per patch.
    dim : int
        Parametric dimension.
    edge_to_knot : np.ndarray[np.integer]
        Signed unique knot vector index of each topology edge.
    knot_vectors : list[KnotVector]
        Unique knot vectors.
    knot_vectors_compr : list[KnotVector]
        Comprehensive knot vectors.
    orders : list[int]
        Order of each unique knot vector.
    order : int
        Common order, or `VARIABLE_ORDER` (-1) when the orders differ.
    mode : Mode
        Discrete space kind, drives the boundary dof table.
    patches : list[NURBSPatch]
        Control nets of the patches, empty when the geometry is held as a
        dof vector instead.
    weights : np.ndarray[np.floating]
        Weight of each active degree of freedom.
    master, slave : np.ndarray[np.integer]
        Paired boundary attributes identified periodically.
    el_dof, bel_dof : Table
        Active element and boundary element to active dof tables.
    """

    # %% construction

    def __init__(self, patch_topo: PatchTopology, patches: Iterable[NURBSPatch]):
        """
        Assemble a multi-patch mesh from its topology and one patch per
        topology element.

        The unique knot vector of each edge class is taken from the first
        patch using it, reoriented along the stored edge.

        Parameters
        ----------
        patch_topo : PatchTopology
            Coarse topology. Its `edge_to_knot` is replaced by the knot vector
            classes found from the element connectivity.
        patches : Iterable[NURBSPatch]
            Patches in topology element order, copied.
        """
        patches = [p.copy() for p in patches]
        if len(patches) != patch_topo.get_ne():
            raise ValueError(
                f"NURBSExtension: {len(patches)} patches for {patch_topo.get_ne()} topology elements !"
            )
        for p, patch in enumerate(patches):
            if patch.NPa != patch_topo.dim:
                raise ValueError(
                    f"NURBSExtension: patch {p} has {patch.NPa} directions, the topology has dimension {patch_topo.dim} !"
                )
        self._init_topology(patch_topo)
        self.patches = patches
        edge_to_knot, ukv_to_rpkv = patch_topo.get_edge_to_unique_knot_vector()
        self.edge_to_knot = edge_to_knot
        patch_topo.edge_to_knot = edge_to_knot
        self.check_patches()
        self.knot_vectors = []
        for rpkv in ukv_to_rpkv:
            p, d = divmod(int(rpkv), self.dim)
            kv = patches[p].kv[d].copy()
            if self.check_kv_direction(p)[d] == -1:
                kv.flip()
            self.knot_vectors.append(kv)
        self._finalize_knots("__init__")
        self._set_all_active()
        self._generate_tables()
        self.connect_boundaries()
        self.weights = self._weights_from_patches()

    def _init_topology(self, patch_topo):
        self.patch_topo = patch_topo
        self.dim = patch_topo.dim
        self.mode = Mode.H1
        self.patches = []
        self.master = np.empty(0, dtype=int)
        self.slave = np.empty(0, dtype=int)
        self.d_to_d = np.empty(0, dtype=int)

    def _finalize_knots(self, operation="read"):
        if self.patches:
            self.knot_vectors_compr = [kv.copy() for patch in self.patches for kv in patch.kv]
            self._raise_if_inconsistent(operation)
        else:
            self.create_comprehensive_kv()
        self.set_orders()
        self.generate_offsets()
        self.count_elements()
        self.count_bdr_elements()

    def _set_all_active(self):
        self.active_elem = np.ones(self.num_elements, dtype=bool)
        self.num_active_elems = self.num_elements

    def _generate_tables(self):
        self.generate_active_vertices()
        self.init_dof_map()
        self.generate_element_dof_table()
        self.generate_active_bdr_elems()
        self.generate_bdr_element_dof_table()

    @classmethod
    def read(cls, tokens: TokenStream) -> "NURBSExtension":
        """
        Read a NURBS mesh: the coarse topology, then either a `knotvectors`
        section (with an optional `spacing` section in a v1.1 file) or a
        `patches` section, then the optional `mesh_elements` and `periodic`
        sections and finally the weights.
        """
        topo, version = PatchTopology.read(tokens)
        this = cls.__new__(cls)
        this._init_topology(topo)
        this.edge_to_knot = topo.edge_to_knot.copy()
        this.check_patches()
        ident = tokens.expect("knotvectors", "patches")
        if ident == "knotvectors":
            nkv = tokens.next_int()
            this.knot_vectors = [KnotVector.read(tokens) for _ in range(nkv)]
            if version == 11 and tokens.peek() == "spacing":
                tokens.next()
                for _ in range(tokens.next_int()):
                    ki = tokens.next_int()
                    spacing_type = tokens.next_int()
                    ni = tokens.next_int()
                    nr = tokens.next_int()
                    ipar = tokens.next_ints(ni)
                    dpar = tokens.next_floats(nr)
                    this.knot_vectors[ki].spacing = get_spacing_function(spacing_type, ipar, dpar)
        else:
            this.patches = [NURBSPatch.read(tokens) for _ in range(topo.get_ne())]
            nkv = max(this.knot_ind(e) for e in range(len(this.edge_to_knot))) + 1
            this.knot_vectors = [None] * nkv
            for p, patch in enumerate(this.patches):
                if patch.NPa != this.dim:
                    raise ValueError(
                        f"NURBSExtension.read: patch {p} has {patch.NPa} directions instead of {this.dim} !"
                    )
                kvdir = this.check_kv_direction(p)
                for d, k in enumerate(this._direction_knot_indices(p)):
                    if this.knot_vectors[k] is None:
                        kv = patch.kv[d].copy()
                        if kvdir[d] == -1:
                            kv.flip()
                        this.knot_vectors[k] = kv
            if any(kv is None for kv in this.knot_vectors):
                raise ValueError("NURBSExtension.read: some knot vectors are used by no patch !")
        this._finalize_knots()
        this._set_all_active()
        if not this.patches and tokens.peek() == "mesh_elements":
            tokens.next()
            ids = tokens.next_ints(tokens.next_int())
            this.active_elem[:] = False
            this.active_elem[ids] = True
            this.num_active_elems = int(np.count_nonzero(this.active_elem))
        this._generate_tables()
        if tokens.peek() == "periodic":
            tokens.next()
            this.master = tokens.next_ints(tokens.next_int())
            this.slave = tokens.next_ints(tokens.next_int())
        this.connect_boundaries()
        if this.patches:
            this.weights = this._weights_from_patches()
        else:
            ident = tokens.expect("weights", "unitweights", "autoweights")
            if ident == "weights":
                this.weights = tokens.next_floats(this.get_ndof())
            else:
                this.weights = np.ones(this.get_ndof())
        return this

    @classmethod
    def load_file(cls, filepath: str) -> "NURBSExtension":
        with open(filepath, "r") as f:
            return cls.read(TokenStream(f))

    @classmethod
    def from_parent_orders(
        cls, parent: "NURBSExtension", new_orders: Iterable[int], mode: Mode = Mode.H1
    ) -> "NURBSExtension":
        """
        Extension on the same mesh whose unique knot vectors are raised to
        `new_orders`, one order per unique knot vector. Knot vectors whose
        new order is not higher are copied unchanged.
        """
        new_orders = list(new_orders)
        if len(new_orders) != parent.get_nkv():
            raise ValueError(
                f"NURBSExtension.from_parent_orders: {len(new_orders)} orders for {parent.get_nkv()} knot vectors !"
            )
        kvs = []
        for kv, new_order in zip(parent.knot_vectors, new_orders):
            if new_order > kv.order:
                kvs.append(kv.degree_elevate(new_order - kv.order))
            else:
                kvs.append(kv.copy())
        return cls._from_parent_knot_vectors(parent, kvs, mode)

    @classmethod
    def from_parent(cls, parent: "NURBSExtension", new_order: int) -> "NURBSExtension":
        """
        Extension on the same mesh with every knot vector of order lower than
        `new_order` elevated to it.
        """
        return cls.from_parent_orders(parent, [new_order] * parent.get_nkv(), parent.mode)

    @classmethod
    def _from_parent_knot_vectors(cls, parent, kvs, mode):
        this = cls.__new__(cls)
        this._init_topology(parent.patch_topo)
        this.mode = mode
        this.edge_to_knot = parent.edge_to_knot.copy()
        this.knot_vectors = kvs
        this.master = parent.master.copy()
        this.slave = parent.slave.copy()
        this._finalize_knots()
        # the element partition does not depend on the orders
        this.active_elem = parent.active_elem.copy()
        this.num_active_elems = parent.num_active_elems
        this.generate_active_vertices()
        this.init_dof_map()
        this.generate_element_dof_table()
        this.active_bdr_elem = parent.active_bdr_elem.copy()
        this.num_active_bdr_elems = parent.num_active_bdr_elems
        this.generate_bdr_element_dof_table()
        this.connect_boundaries()
        this.weights = np.ones(this.get_ndof())
        return this

    def copy(self) -> "NURBSExtension":
        return copy.deepcopy(self)

    # %% knot vector bookkeeping

    def knot_ind(self, edge: int) -> int:
        """
        Unsigned unique knot vector index of a topology edge. In 1D, `edge`
        is the patch index.
        """
        k = int(self.edge_to_knot[edge])
        return k if k >= 0 else -1 - k

    def knot_vec(self, edge: int) -> KnotVector:
        return self.knot_vectors[self.knot_ind(edge)]

    def knot_vec_oriented(self, edge: int, oedge: int) -> tuple[KnotVector, int]:
        """
        Knot vector of `edge` and its orientation relative to an entity that
        sees the edge with orientation `oedge`.
        """
        k = int(self.edge_to_knot[edge])
        if k >= 0:
            return self.knot_vectors[k], oedge
        return self.knot_vectors[-1 - k], -oedge

    def _direction_knot_indices(self, p):
        if self.dim == 1:
            return [self.knot_ind(p)]
        edges, _ = self.patch_topo.get_element_edges(p)
        return [self.knot_ind(edges[le]) for le in DIRECTION_EDGES[self.dim]]

    def check_patches(self):
        """
        Check that the edges sharing a parametric direction of a patch all
        reference the same knot vector, with a coherent orientation.
        """
        if self.dim == 1:
            return
        for p in range(self.patch_topo.get_ne()):
            edges, oedge = self.patch_topo.get_element_edges(p)
            signed = [
                int(self.edge_to_knot[e]) if o >= 0 else -1 - int(self.edge_to_knot[e])
                for e, o in zip(edges, oedge)
            ]
            if self.dim == 2:
                ok = signed[0] == -1 - signed[2] and signed[1] == -1 - signed[3]
            else:
                ok = (
                    signed[0] == signed[2] == signed[4] == signed[6]
                    and signed[1] == signed[3] == signed[5] == signed[7]
                    and signed[8] == signed[9] == signed[10] == signed[11]
                )
            if not ok:
                raise InconsistentKnotVectorsError(
                    f"NURBSExtension.check_patches: patch {p} has inconsistent edge knot vectors {signed} !",
                    patch=p,
                )

    def check_kv_direction(self, p: int) -> list[int]:
        """
        Orientation of each direction of patch `p` relative to the stored
        edge carrying its knot vector: +1 when they agree, -1 otherwise.
        """
        if self.dim == 1:
            return [1]
        verts = self.patch_topo.get_element_vertices(p)
        edges, _ = self.patch_topo.get_element_edges(p)
        kvdir = []
        for d, (le, a, b) in enumerate(ORIENTATION_EDGES[self.dim]):
            ev = self.patch_topo.get_edge_vertices(edges[le])
            if ev[0] == verts[a] and ev[1] == verts[b]:
                kvdir.append(1)
            elif ev[0] == verts[b] and ev[1] == verts[a]:
                kvdir.append(-1)
            else:
                raise ValueError(
                    f"NURBSExtension.check_kv_direction: can not orient direction {d} of patch {p} !"
                )
        return kvdir

    def create_comprehensive_kv(self):
        """
        Build the per patch and direction copies of the unique knot vectors,
        oriented along the patch directions.
        """
        compr = []
        if self.dim == 1:
            for p in range(self.patch_topo.get_ne()):
                compr.append(self.knot_vec(p).copy())
            self.knot_vectors_compr = compr
            return
        for p in range(self.patch_topo.get_ne()):
            edges, _ = self.patch_topo.get_element_edges(p)
            kvdir = self.check_kv_direction(p)
            for d, le in enumerate(DIRECTION_EDGES[self.dim]):
                kv = self.knot_vec(edges[le]).copy()
                if kvdir[d] == -1:
                    kv.flip()
                compr.append(kv)
        self.knot_vectors_compr = compr
        self._raise_if_inconsistent("create_comprehensive_kv")

    def update_unique_kv(self):
        """
        Copy the comprehensive knot vectors back into the unique set wherever
        they differ, then check the two sets agree.
        """
        if self.dim == 1:
            for p in range(self.patch_topo.get_ne()):
                self.knot_vectors[self.knot_ind(p)] = self.knot_vectors_compr[p].copy()
            return
        for p in range(self.patch_topo.get_ne()):
            kvdir = self.check_kv_direction(p)
            for d, k in enumerate(self._direction_knot_indices(p)):
                kv = self.knot_vectors_compr[self.dim * p + d].copy()
                if kvdir[d] == -1:
                    kv.flip()
                if not _same_knot_vector(kv, self.knot_vectors[k]):
                    self.knot_vectors[k] = kv
        self._raise_if_inconsistent("update_unique_kv")

    def _find_inconsistent_kv(self):
        if self.dim == 1:
            return None
        for p in range(self.patch_topo.get_ne()):
            kvdir = self.check_kv_direction(p)
            for d, k in enumerate(self._direction_knot_indices(p)):
                kv = self.knot_vectors_compr[self.dim * p + d].copy()
                if kv.order != self.knot_vectors[k].order:
                    return p, d, f"order {kv.order} differs from order {self.knot_vectors[k].order} of knot vector {k}"
                if kvdir[d] == -1:
                    kv.flip()
                if not _same_knot_vector(kv, self.knot_vectors[k]):
                    return p, d, f"knots differ from the knots of knot vector {k}"
        return None

    def consistent_kv_sets(self, verbose: bool = True) -> bool:
        """
        Whether every comprehensive knot vector matches, once reoriented, the
        unique knot vector of its edge.
        """
        bad = self._find_inconsistent_kv()
        if bad is not None and verbose:
            p, d, reason = bad
            print(f"Patch {p}, direction {d}: {reason}")
        return bad is None

    def _raise_if_inconsistent(self, operation):
        bad = self._find_inconsistent_kv()
        if bad is not None:
            p, d, reason = bad
            raise InconsistentKnotVectorsError(
                f"NURBSExtension.{operation}: patch {p}, direction {d}: {reason} !", patch=p, direction=d
            )

    def set_orders(self):
        self.orders = [kv.order for kv in self.knot_vectors]
        if all(o == self.orders[0] for o in self.orders):
            self.order = self.orders[0]
        else:
            self.order = VARIABLE_ORDER

    def get_order(self) -> int:
        if self.order == VARIABLE_ORDER:
            raise ValueError("NURBSExtension.get_order: the knot vectors have different orders !")
        return self.order

    def get_patch_knot_vectors(self, p: int) -> list[KnotVector]:
        return self.knot_vectors_compr[self.dim * p : self.dim * (p + 1)]

    def get_bdr_patch_knot_vectors(self, b: int) -> tuple[list[KnotVector], list[int]]:
        """
        Knot vectors of boundary patch `b` and their orientations relative to
        it. A 1D boundary is a point and has none.
        """
        if self.dim == 1:
            return [], []
        edges, oedge = self.patch_topo.get_bdr_element_edges(b)
        kvs, okv = [], []
        for j in range(self.dim - 1):
            kv, o = self.knot_vec_oriented(edges[j], oedge[j])
            kvs.append(kv)
            okv.append(o)
        return kvs, okv

    # %% numbering

    def generate_offsets(self):
        """
        Give each vertex, edge, face and patch a range of vertex indices and a
        range of dof indices for the entries inside it, in that order.
        """
        topo = self.patch_topo
        nv = topo.get_nv()
        self.v_mesh_offsets = np.arange(nv)
        self.v_space_offsets = np.arange(nv)
        mesh_counter = nv
        space_counter = nv
        nedges = topo.get_nedges() if self.dim >= 2 else 0
        self.e_mesh_offsets = np.zeros(nedges, dtype=int)
        self.e_space_offsets = np.zeros(nedges, dtype=int)
        for e in range(nedges):
            kv = self.knot_vec(e)
            self.e_mesh_offsets[e] = mesh_counter
            self.e_space_offsets[e] = space_counter
            mesh_counter += kv.ne - 1
            space_counter += kv.ncp - 2
        nfaces = topo.get_nfaces() if self.dim == 3 else 0
        self.f_mesh_offsets = np.zeros(nfaces, dtype=int)
        self.f_space_offsets = np.zeros(nfaces, dtype=int)
        for f in range(nfaces):
            fe, _ = topo.get_face_edges(f)
            kv0 = self.knot_vec(fe[0])
            kv1 = self.knot_vec(fe[1])
            self.f_mesh_offsets[f] = mesh_counter
            self.f_space_offsets[f] = space_counter
            mesh_counter += (kv0.ne - 1) * (kv1.ne - 1)
            space_counter += (kv0.ncp - 2) * (kv1.ncp - 2)
        npatch = topo.get_ne()
        self.p_mesh_offsets = np.zeros(npatch, dtype=int)
        self.p_space_offsets = np.zeros(npatch, dtype=int)
        for p in range(npatch):
            kvs = self.get_patch_knot_vectors(p)
            self.p_mesh_offsets[p] = mesh_counter
            self.p_space_offsets[p] = space_counter
            mesh_counter += int(np.prod([kv.ne - 1 for kv in kvs]))
            space_counter += int(np.prod([kv.ncp - 2 for kv in kvs]))
        self.num_vertices = mesh_counter
        self._num_space_dofs = space_counter
        self.num_dofs = space_counter

    def count_elements(self):
        self.num_elements = sum(
            int(np.prod([kv.ne for kv in self.get_patch_knot_vectors(p)]))
            for p in range(self.patch_topo.get_ne())
        )

    def count_bdr_elements(self):
        self.num_bdr_elements = sum(
            int(np.prod([kv.ne for kv in self.get_bdr_patch_knot_vectors(b)[0]]))
            for b in range(self.patch_topo.get_nbe())
        )

    def _element_spans(self, kvs):
        spans = [[i for i in range(kv.get_nks()) if kv.is_element(i)] for kv in kvs]
        for idx in product(*reversed(spans)):
            yield idx[::-1]

    def generate_active_vertices(self):
        """
        Mark the corners of the active elements and number them.
        """
        vert_active = np.zeros(self.num_vertices, dtype=bool)
        p2g = NURBSPatchMap(self)
        g_el = 0
        corners = ELEMENT_CORNERS[self.dim]
        for p in range(self.patch_topo.get_ne()):
            kvs = p2g.set_patch_vertex_map(p)
            for idx in product(*reversed([range(kv.ne) for kv in kvs])):
                ijk = idx[::-1]
                if self.active_elem[g_el]:
                    for c in corners:
                        vert_active[p2g(*[i + ci for i, ci in zip(ijk, c)])] = True
                g_el += 1
        self.active_vert = np.full(self.num_vertices, -1, dtype=int)
        self.num_active_vertices = int(np.count_nonzero(vert_active))
        self.active_vert[vert_active] = np.arange(self.num_active_vertices)

    def generate_active_bdr_elems(self):
        """
        All boundary elements are active when all elements are, none otherwise.
        A partial selection goes through `set_active`.
        """
        full = self.num_active_elems == self.num_elements
        self.active_bdr_elem = np.full(self.num_bdr_elements, full, dtype=bool)
        self.num_active_bdr_elems = self.num_bdr_elements if full else 0

    def init_dof_map(self):
        self.d_to_d = np.empty(0, dtype=int)

    def dof_map(self, i: int) -> int:
        """
        Dof index after the periodic identification of `connect_boundaries`.
        """
        if self.d_to_d.size > 0:
            return int(self.d_to_d[i])
        return i

    def generate_element_dof_table(self):
        """
        Build the table of the dofs of every active element.

        The dofs of an element are listed with the first direction running
        fastest, this order is the one of the element shape functions and is
        never sorted. Dofs touched by no active element are dropped and the
        others renumbered consecutively.
        """
        p2g = NURBSPatchMap(self)
        rows = []
        el_to_patch = []
        el_to_ijk = []
        g_el = 0
        for p in range(self.patch_topo.get_ne()):
            kvs = p2g.set_patch_dof_map(p)
            local = [idx[::-1] for idx in product(*reversed([range(kv.order + 1) for kv in kvs]))]
            for ijk in self._element_spans(kvs):
                if self.active_elem[g_el]:
                    rows.append(
                        [self.dof_map(p2g(*[i + li for i, li in zip(ijk, loc)])) for loc in local]
                    )
                    el_to_patch.append(p)
                    el_to_ijk.append(ijk)
                g_el += 1
        dof_active = np.zeros(self.num_dofs, dtype=bool)
        for row in rows:
            dof_active[row] = True
        self.active_dof = np.full(self.num_dofs, -1, dtype=int)
        self.num_active_dofs = int(np.count_nonzero(dof_active))
        self.active_dof[dof_active] = np.arange(self.num_active_dofs)
        self.el_dof = Table.from_rows([self.active_dof[row] for row in rows])
        self.el_to_patch = np.array(el_to_patch, dtype=int)
        self.el_to_ijk = np.array(el_to_ijk, dtype=int).reshape((len(el_to_ijk), self.dim))
        self.set_patch_to_elements()

    def generate_bdr_element_dof_table(self):
        """
        Build the table of the dofs of every active boundary element.

        In H(div) and H(curl) modes some boundaries carry no dof, and an
        entry stored as `-1 - dof` marks a dof whose contribution changes sign.
        """
        p2g = NURBSPatchMap(self)
        topo = self.patch_topo
        rows = []
        bel_to_patch = []
        bel_to_ijk = []
        max_order = max(self.orders)
        g_bel = 0
        for b in range(topo.get_nbe()):
            kvs, okv = p2g.set_bdr_patch_dof_map(b)
            if self.dim == 1:
                if self.active_bdr_elem[g_bel]:
                    rows.append([self.dof_map(p2g.bdr(0))])
                    bel_to_patch.append(b)
                    bel_to_ijk.append([])
                g_bel += 1
                continue
            orders = [kv.order for kv in kvs]
            add_dofs = True
            s = 1
            if self.mode == Mode.H_DIV:
                fn = topo.get_bdr_element_face_index(b)
                if self.dim == 2:
                    if orders[0] == max_order:
                        add_dofs = False
                    if fn in (0, 2):
                        s = -1
                else:
                    if orders[0] != orders[1]:
                        add_dofs = False
                    if fn in (4, 1, 0):
                        s = -1
            elif self.mode == Mode.H_CURL:
                if self.dim == 2:
                    if orders[0] == max_order:
                        add_dofs = False
                elif orders[0] == orders[1]:
                    add_dofs = False
            n = [p2g.nx, p2g.ny]
            for ij in self._element_spans(kvs):
                if self.active_bdr_elem[g_bel]:
                    dofs = []
                    if add_dofs:
                        local = product(*reversed([range(o + 1) for o in orders]))
                        for loc in local:
                            loc = loc[::-1]
                            idx = [
                                ij[d] + loc[d] if okv[d] >= 0 else n[d] - ij[d] - loc[d]
                                for d in range(self.dim - 1)
                            ]
                            dof = self.dof_map(p2g.bdr(*idx))
                            dofs.append(dof if s > 0 else -1 - dof)
                    rows.append(dofs)
                    bel_to_patch.append(b)
                    bel_to_ijk.append([ij[d] if okv[d] >= 0 else -1 - ij[d] for d in range(self.dim - 1)])
                g_bel += 1
        remapped = []
        for row in rows:
            row = np.array(row, dtype=int)
            neg = row < 0
            out = np.empty_like(row)
            out[~neg] = self.active_dof[row[~neg]]
            out[neg] = -1 - self.active_dof[-1 - row[neg]]
            remapped.append(out)
        self.bel_dof = Table.from_rows(remapped)
        self.bel_to_patch = np.array(bel_to_patch, dtype=int)
        self.bel_to_ijk = np.array(bel_to_ijk, dtype=int).reshape((len(bel_to_ijk), self.dim - 1))
        self.set_patch_to_bdr_elements()

    def set_patch_to_elements(self):
        self.patch_to_el = [[] for _ in range(self.patch_topo.get_ne())]
        for e, p in enumerate(self.el_to_patch):
            self.patch_to_el[p].append(e)

    def set_patch_to_bdr_elements(self):
        self.patch_to_bel = [[] for _ in range(self.patch_topo.get_nbe())]
        for e, b in enumerate(self.bel_to_patch):
            self.patch_to_bel[b].append(e)

    def get_patch_elements(self, p: int) -> list[int]:
        return self.patch_to_el[p]

    def get_patch_bdr_elements(self, b: int) -> list[int]:
        return self.patch_to_bel[b]

    def set_active(
        self,
        active_elements: Iterable[int],
        active_bdr_elements: Union[Iterable[int], None] = None,
    ):
        """
        Restrict the local numbering to a subset of the elements.

        Global counters and offsets are unchanged, only the active masks and
        the element and boundary tables are regenerated. The dof identification
        of `connect_boundaries` is kept.

        Parameters
        ----------
        active_elements : Iterable[int]
            Global indices of the owned elements.
        active_bdr_elements : Union[Iterable[int], None], optional
            Global indices of the owned boundary elements. When `None`, every
            boundary element is active if every element is, none otherwise.
            By default, None.
        """
        # weights of every dof, the inactive ones set to 1
        all_weights = np.ones(self.num_dofs)
        owned = self.active_dof >= 0
        all_weights[owned] = self.weights[self.active_dof[owned]]
        self.active_elem = np.zeros(self.num_elements, dtype=bool)
        self.active_elem[np.asarray(list(active_elements), dtype=int)] = True
        self.num_active_elems = int(np.count_nonzero(self.active_elem))
        self.generate_active_vertices()
        self.generate_element_dof_table()
        if active_bdr_elements is None:
            self.generate_active_bdr_elems()
        else:
            self.active_bdr_elem = np.zeros(self.num_bdr_elements, dtype=bool)
            self.active_bdr_elem[np.asarray(list(active_bdr_elements), dtype=int)] = True
            self.num_active_bdr_elems = int(np.count_nonzero(self.active_bdr_elem))
        self.generate_bdr_element_dof_table()
        owned = self.active_dof >= 0
        self.weights = np.empty(self.get_ndof())
        self.weights[self.active_dof[owned]] = all_weights[owned]

    # %% periodic boundaries

    def _find_bdr_patch(self, attr):
        found = -1
        for b in range(self.patch_topo.get_nbe()):
            if self.patch_topo.get_bdr_attribute(b) == attr:
                found = b
        if found == -1:
            raise ValueError(f"NURBSExtension.connect_boundaries: boundary attribute {attr} not found !")
        return found

    def connect_boundaries(
        self,
        masters: Union[Iterable[int], None] = None,
        slaves: Union[Iterable[int], None] = None,
    ):
        """
        Identify the dofs of paired boundaries, then renumber the dofs and
        regenerate the element and boundary tables.

        Parameters
        ----------
        masters, slaves : Union[Iterable[int], None], optional
            Boundary attributes to pair one to one. When `None`, the stored
            pairs are used. By default, None.
        """
        if masters is not None:
            self.master = np.array(list(masters), dtype=int)
        if slaves is not None:
            self.slave = np.array(list(slaves), dtype=int)
        if self.master.size != self.slave.size:
            raise ValueError(
                f"NURBSExtension.connect_boundaries: {self.master.size} master for {self.slave.size} slave boundaries !"
            )
        if self.master.size == 0:
            return
        parent = list(range(self._num_space_dofs))
        for m, s in zip(self.master, self.slave):
            bnd0 = self._find_bdr_patch(m)
            bnd1 = self._find_bdr_patch(s)
            self._connect_bdr_patches(bnd0, bnd1, parent)
        roots = np.array([_find(parent, i) for i in range(self._num_space_dofs)], dtype=int)
        used = np.zeros(self._num_space_dofs, dtype=bool)
        used[roots] = True
        new_index = np.cumsum(used) - 1
        self.d_to_d = new_index[roots]
        self.num_dofs = int(np.count_nonzero(used))
        self.generate_element_dof_table()
        self.generate_bdr_element_dof_table()

    def _connect_bdr_patches(self, bnd0, bnd1, parent):
        p2g0 = NURBSPatchMap(self)
        p2g1 = NURBSPatchMap(self)
        kv0, okv0 = p2g0.set_bdr_patch_dof_map(bnd0)
        kv1, okv1 = p2g1.set_bdr_patch_dof_map(bnd1)
        if self.dim == 1:
            _union(parent, p2g0.bdr(0), p2g1.bdr(0))
            return
        n0 = [p2g0.nx, p2g0.ny]
        n1 = [p2g1.nx, p2g1.ny]
        for d in range(self.dim - 1):
            if (
                n0[d] != n1[d]
                or kv0[d].get_nks() != kv1[d].get_nks()
                or kv0[d].order != kv1[d].order
            ):
                raise ValueError(
                    f"NURBSExtension.connect_boundaries: boundary patches {bnd0} and {bnd1} do not match in direction {d} !"
                )
            for i in range(kv0[d].get_nks()):
                if kv0[d].is_element(i) != kv1[d].is_element(i):
                    raise ValueError(
                        f"NURBSExtension.connect_boundaries: boundary patches {bnd0} and {bnd1} have different elements !"
                    )
        orders = [kv.order for kv in kv0]
        for ij in self._element_spans(kv0):
            for loc in product(*reversed([range(o + 1) for o in orders])):
                loc = loc[::-1]
                idx0 = [ij[d] + loc[d] if okv0[d] >= 0 else n0[d] - ij[d] - loc[d] for d in range(self.dim - 1)]
                idx1 = [ij[d] + loc[d] if okv1[d] >= 0 else n1[d] - ij[d] - loc[d] for d in range(self.dim - 1)]
                _union(parent, p2g0.bdr(*idx0), p2g1.bdr(*idx1))

    # %% sizes

    def get_nkv(self) -> int:
        return len(self.knot_vectors)

    def get_np(self) -> int:
        return self.patch_topo.get_ne()

    def get_nbp(self) -> int:
        return self.patch_topo.get_nbe()

    def get_gnv(self) -> int:
        return self.num_vertices

    def get_gne(self) -> int:
        return self.num_elements

    def get_gnbe(self) -> int:
        return self.num_bdr_elements

    def get_nv(self) -> int:
        return self.num_active_vertices

    def get_ne(self) -> int:
        return self.num_active_elems

    def get_nbe(self) -> int:
        return self.num_active_bdr_elems

    def get_ndof(self) -> int:
        return self.num_active_dofs

    # %% element information

    def get_element_topo(self) -> tuple[np.ndarray[np.integer], np.ndarray[np.integer]]:
        """
        Connectivity of the active elements.

        Returns
        -------
        elements : np.ndarray[np.integer]
            Active vertex indices of each active element corner, shape
            (NE, 2**dim), corners ordered as the patch corners.
        attributes : np.ndarray[np.integer]
            Attribute of each element, the one of its patch.
        """
        p2g = NURBSPatchMap(self)
        corners = ELEMENT_CORNERS[self.dim]
        elements = []
        attributes = []
        g_el = 0
        for p in range(self.patch_topo.get_ne()):
            kvs = p2g.set_patch_vertex_map(p)
            attr = self.patch_topo.get_attribute(p)
            for idx in product(*reversed([range(kv.ne) for kv in kvs])):
                ijk = idx[::-1]
                if self.active_elem[g_el]:
                    elements.append(
                        [self.active_vert[p2g(*[i + ci for i, ci in zip(ijk, c)])] for c in corners]
                    )
                    attributes.append(attr)
                g_el += 1
        return (
            np.array(elements, dtype=int).reshape((-1, len(corners))),
            np.array(attributes, dtype=int),
        )

    def get_bdr_element_topo(self) -> tuple[np.ndarray[np.integer], np.ndarray[np.integer]]:
        """
        Connectivity of the active boundary elements, with their attributes.
        """
        p2g = NURBSPatchMap(self)
        elements = []
        attributes = []
        g_bel = 0
        for b in range(self.patch_topo.get_nbe()):
            kvs, okv = p2g.set_bdr_patch_vertex_map(b)
            attr = self.patch_topo.get_bdr_attribute(b)
            if self.dim == 1:
                if self.active_bdr_elem[g_bel]:
                    elements.append([self.active_vert[p2g.bdr(0)]])
                    attributes.append(attr)
                g_bel += 1
                continue
            n = [p2g.nx, p2g.ny]
            for idx in product(*reversed([range(kv.ne) for kv in kvs])):
                ij = idx[::-1]
                if self.active_bdr_elem[g_bel]:
                    i0 = [ij[d] if okv[d] >= 0 else n[d] - ij[d] for d in range(self.dim - 1)]
                    if self.dim == 2:
                        corners = [(i0[0],), (i0[0] + okv[0],)]
                    else:
                        corners = [
                            (i0[0], i0[1]),
                            (i0[0] + okv[0], i0[1]),
                            (i0[0] + okv[0], i0[1] + okv[1]),
                            (i0[0], i0[1] + okv[1]),
                        ]
                    elements.append([self.active_vert[p2g.bdr(*c)] for c in corners])
                    attributes.append(attr)
                g_bel += 1
        return (
            np.array(elements, dtype=int).reshape((-1, 2 ** (self.dim - 1))),
            np.array(attributes, dtype=int),
        )

    def get_vertex_local_to_global(self) -> np.ndarray[np.integer]:
        l2g = np.empty(self.num_active_vertices, dtype=int)
        active = self.active_vert >= 0
        l2g[self.active_vert[active]] = np.flatnonzero(active)
        return l2g

    def get_element_local_to_global(self) -> np.ndarray[np.integer]:
        return np.flatnonzero(self.active_elem)

    def get_element_patch(self, i: int) -> int:
        return int(self.el_to_patch[i])

    def get_element_ijk(self, i: int) -> np.ndarray[np.integer]:
        return self.el_to_ijk[i].copy()

    def get_bdr_element_patch(self, i: int) -> int:
        return int(self.bel_to_patch[i])

    def get_bdr_element_ijk(self, i: int) -> np.ndarray[np.integer]:
        return self.bel_to_ijk[i].copy()

    def get_element_knot_vectors(self, i: int) -> ElementData:
        """
        Patch, knot span indices, knot vectors, dofs and weights of active
        element `i`.
        """
        p = int(self.el_to_patch[i])
        dofs = self.el_dof[i].copy()
        return ElementData(p, self.el_to_ijk[i].copy(), self.get_patch_knot_vectors(p), dofs, self.weights[dofs])

    def get_bdr_element_knot_vectors(self, i: int) -> ElementData:
        """
        Same as `get_element_knot_vectors` for active boundary element `i`.
        Negative span indices denote a boundary running against its knot
        vector, negative dofs a sign flip.
        """
        b = int(self.bel_to_patch[i])
        dofs = self.bel_dof[i].copy()
        kvs, _ = self.get_bdr_patch_knot_vectors(b)
        weights = self.weights[np.where(dofs < 0, -1 - dofs, dofs)]
        return ElementData(b, self.bel_to_ijk[i].copy(), kvs, dofs, weights)

    # %% patches and dof vectors

    def _patch_dof_indices(self, p):
        p2g = NURBSPatchMap(self)
        kvs = p2g.set_patch_dof_map(p)
        ncps = [kv.ncp for kv in kvs]
        idx = np.empty(ncps, dtype=int)
        for m in np.ndindex(*ncps):
            idx[m] = self.active_dof[self.dof_map(p2g(*m))]
        return idx

    def get_patch_dofs(self, p: int) -> np.ndarray[np.integer]:
        """
        Dofs of the control points of patch `p`, first direction running
        fastest.
        """
        return self._patch_dof_indices(p).ravel(order="F")

    def _require_patches(self, operation):
        if not self.patches:
            raise ValueError(
                f"NURBSExtension.{operation}: the mesh holds no patches, call convert_to_patches first !"
            )

    def _require_all_active(self, operation):
        if self.num_active_elems != self.num_elements:
            raise ValueError(f"NURBSExtension.{operation}: only supported when every element is active !")

    def _weights_from_patches(self):
        weights = np.zeros(self.get_ndof())
        for p, patch in enumerate(self.patches):
            weights[self._patch_dof_indices(p)] = patch.ctrl_pts[-1]
        return weights

    def get_patch_nets(self, coords: np.ndarray[np.floating], vdim: int) -> list[NURBSPatch]:
        """
        Build one patch per topology element from dof coordinates.

        Parameters
        ----------
        coords : np.ndarray[np.floating]
            Cartesian coordinates of the dofs, shape (`get_ndof()`, `vdim`).
        vdim : int
            Physical dimension.

        Returns
        -------
        list[NURBSPatch]
            Patches with homogeneous control points `(w * x, w)`.
        """
        self._require_all_active("get_patch_nets")
        coords = np.asarray(coords, dtype="float").reshape((self.get_ndof(), vdim))
        patches = []
        for p in range(self.patch_topo.get_ne()):
            idx = self._patch_dof_indices(p)
            w = self.weights[idx]
            ctrl_pts = np.empty((vdim + 1, *idx.shape))
            ctrl_pts[:vdim] = np.moveaxis(coords[idx], -1, 0) * w
            ctrl_pts[vdim] = w
            patches.append(NURBSPatch(self.get_patch_knot_vectors(p), vdim + 1, ctrl_pts))
        return patches

    def convert_to_patches(self, coords: np.ndarray[np.floating]):
        """
        Hold the geometry as patches built from dof coordinates of shape
        (`get_ndof()`, vdim). Does nothing if patches are already held.
        """
        if not self.patches:
            coords = np.asarray(coords, dtype="float")
            self.patches = self.get_patch_nets(coords, coords.shape[1])

    def set_solution_vector(self, vdim: int) -> np.ndarray[np.floating]:
        """
        Gather the Cartesian coordinates of the patch control points into a
        dof array of shape (`get_ndof()`, `vdim`) and store their weights in
        `weights`.
        """
        self._require_patches("set_solution_vector")
        coords = np.zeros((self.get_ndof(), vdim))
        weights = np.zeros(self.get_ndof())
        for p, patch in enumerate(self.patches):
            if patch.Dim != vdim + 1:
                raise ValueError(
                    f"NURBSExtension.set_solution_vector: patch {p} has dimension {patch.Dim - 1}, expected {vdim} !"
                )
            idx = self._patch_dof_indices(p)
            w = patch.ctrl_pts[-1]
            weights[idx] = w
            coords[idx] = np.moveaxis(patch.ctrl_pts[:vdim] / w, 0, -1)
        self.weights = weights
        return coords

    def set_coords_from_patches(self) -> np.ndarray[np.floating]:
        """
        Move the geometry from the patches to a dof coordinate array, the
        patches are released.
        """
        self._require_patches("set_coords_from_patches")
        coords = self.set_solution_vector(self.patches[0].NPh)
        self.patches = []
        return coords

    def set_knots_from_patches(self):
        """
        Rebuild the knot vectors and every numbering from the patches, after
        they were edited.
        """
        self._require_patches("set_knots_from_patches")
        compr = []
        for p, patch in enumerate(self.patches):
            if patch.NPa != self.dim:
                raise ValueError(
                    f"NURBSExtension.set_knots_from_patches: patch {p} has {patch.NPa} directions instead of {self.dim} !"
                )
            compr.extend(kv.copy() for kv in patch.kv)
        self.knot_vectors_compr = compr
        self.update_unique_kv()
        self.set_orders()
        self.generate_offsets()
        self.count_elements()
        self.count_bdr_elements()
        self._set_all_active()
        self._generate_tables()
        self.connect_boundaries()
        self.weights = self._weights_from_patches()

    def get_patches(self) -> list[NURBSPatch]:
        return [patch.copy() for patch in self.patches]

    # %% refinement

    def uniform_refinement(
        self,
        rf: Union[int, Iterable[int]] = 2,
        verbose: bool = False,
        disable_parallel: bool = True,
        num_blocks: Union[int, None] = None,
    ):
        """
        Refine every patch by the factor `rf`, per patch direction if an
        iterable is given.
        """
        self._require_patches("uniform_refinement")
        self.patches = parallel_blocks(
            _refine_patch, [(patch, rf) for patch in self.patches],
            num_blocks, verbose, "Refining patches", disable_parallel,
        )
        self.set_knots_from_patches()

    def degree_elevate(
        self,
        rel_degree: int,
        degree: int = 16,
        verbose: bool = False,
        disable_parallel: bool = True,
        num_blocks: Union[int, None] = None,
    ):
        """
        Raise every direction of every patch by `rel_degree`, without going
        above `degree`.
        """
        self._require_patches("degree_elevate")
        self.patches = parallel_blocks(
            _elevate_patch, [(patch, rel_degree, degree) for patch in self.patches],
            num_blocks, verbose, "Elevating patches", disable_parallel,
        )
        self.set_knots_from_patches()

    def coarsen(
        self,
        cf: Union[int, Iterable[int]] = 2,
        tol: float = 1e-12,
        verbose: bool = False,
        disable_parallel: bool = True,
        num_blocks: Union[int, None] = None,
    ):
        self._require_patches("coarsen")
        for patch in self.patches:
            patch.set_knot_vectors_coarse(False)
        self.patches = parallel_blocks(
            _coarsen_patch, [(patch, cf, tol, verbose) for patch in self.patches],
            num_blocks, verbose, "Coarsening patches", disable_parallel,
        )
        self.set_knots_from_patches()

    def get_coarsening_factors(self) -> list[int]:
        """
        Coarsening factor of each direction, merged over the patches. Two
        patches disagreeing on a factor other than 1 is an error.
        """
        self._require_patches("get_coarsening_factors")
        f = None
        for p, patch in enumerate(self.patches):
            pf = patch.get_coarsening_factors()
            if f is None:
                f = pf
                continue
            for i in range(len(f)):
                if f[i] != pf[i]:
                    if f[i] == 1:
                        f[i] = pf[i]
                    elif pf[i] != 1:
                        raise ValueError(
                            f"NURBSExtension.get_coarsening_factors: patch {p} has factor {pf[i]} in direction {i}, expected {f[i]} !"
                        )
        return f

    def _oriented_inputs(self, p, items):
        kvdir = self.check_kv_direction(p)
        out = []
        for d, k in enumerate(self._direction_knot_indices(p)):
            item = items[k]
            if isinstance(item, KnotVector):
                item = item.copy()
                if kvdir[d] == -1:
                    item.flip()
            else:
                item = np.asarray(item, dtype="float")
                if kvdir[d] == -1:
                    kv = self.knot_vectors_compr[self.dim * p + d]
                    apb = kv.knot[0] + kv.knot[-1]
                    item = (apb - item)[::-1]
            out.append(item)
        return out

    def knot_insert(self, new_knots: Iterable[Union[KnotVector, Iterable[float]]]):
        """
        Insert knots in every patch.

        Parameters
        ----------
        new_knots : Iterable[Union[KnotVector, Iterable[float]]]
            One entry per unique knot vector: a target knot vector or the
            knots to insert, given along the stored edge orientation.
        """
        self._require_patches("knot_insert")
        new_knots = list(new_knots)
        if len(new_knots) != self.get_nkv():
            raise ValueError(
                f"NURBSExtension.knot_insert: {len(new_knots)} entries for {self.get_nkv()} knot vectors !"
            )
        for p, patch in enumerate(self.patches):
            patch.knot_insert_all(self._oriented_inputs(p, new_knots))
        self.set_knots_from_patches()

    def knot_remove(
        self, knots: Iterable[Iterable[float]], tol: float = 1e-12, verbose: bool = True
    ) -> list[list[list[KnotRemovalResult]]]:
        """
        Remove knots from every patch, one array of knots per unique knot
        vector.

        Returns
        -------
        list[list[list[KnotRemovalResult]]]
            Outcome of each removal, per patch and direction.
        """
        self._require_patches("knot_remove")
        knots = list(knots)
        if len(knots) != self.get_nkv():
            raise ValueError(
                f"NURBSExtension.knot_remove: {len(knots)} entries for {self.get_nkv()} knot vectors !"
            )
        results = []
        for p, patch in enumerate(self.patches):
            oriented = self._oriented_inputs(p, knots)
            results.append([patch.remove_knots(d, oriented[d], tol, verbose) for d in range(self.dim)])
        self.set_knots_from_patches()
        return results

    def _direction_to_knot_index(self, component):
        if self.get_np() != 1:
            raise ValueError(
                f"NURBSExtension: H(div) and H(curl) extensions need a single patch, got {self.get_np()} !"
            )
        if component < 0 or component >= self.dim:
            raise IndexError(f"NURBSExtension: invalid component {component} for dimension {self.dim} !")
        return self._direction_knot_indices(0)

    def get_div_extension(self, component: int) -> "NURBSExtension":
        """
        H(div) extension of component `component`: its direction gets one
        order more.
        """
        kinds = self._direction_to_knot_index(component)
        new_orders = list(self.orders)
        new_orders[kinds[component]] += 1
        return NURBSExtension.from_parent_orders(self, new_orders, Mode.H_DIV)

    def get_curl_extension(self, component: int) -> "NURBSExtension":
        """
        H(curl) extension of component `component`: every other direction
        gets one order more.
        """
        kinds = self._direction_to_knot_index(component)
        new_orders = list(self.orders)
        for d, k in enumerate(kinds):
            if d != component:
                new_orders[k] = self.orders[k] + 1
        return NURBSExtension.from_parent_orders(self, new_orders, Mode.H_CURL)

    # %% output

    def print(self, os: TextIO, comments: str = ""):
        """
        Write the mesh in the grammar read by `read`.
        """
        has_spacing = any(kv.spacing is not None for kv in self.knot_vectors)
        version = 11 if has_spacing else 10
        self.patch_topo.edge_to_knot = self.edge_to_knot
        self.patch_topo.print(os, version, comments)
        if not self.patches:
            os.write(f"\nknotvectors\n{self.get_nkv()}\n")
            for kv in self.knot_vectors:
                kv.print(os)
            if has_spacing:
                spaced = [i for i, kv in enumerate(self.knot_vectors) if kv.spacing is not None]
                os.write(f"\nspacing\n{len(spaced)}\n")
                for i in spaced:
                    os.write(f"{i} ")
                    self.knot_vectors[i].spacing.print(os)
            if self.num_active_elems < self.num_elements:
                ids = self.get_element_local_to_global()
                os.write(f"\nmesh_elements\n{ids.size}\n")
                os.write("".join(f"{i}\n" for i in ids))
            self._print_periodic(os)
            os.write("\nweights\n")
            os.write("".join(fmt_real(w) + "\n" for w in self.weights))
        else:
            os.write("\npatches\n")
            for p, patch in enumerate(self.patches):
                os.write(f"\n# patch {p}\n\n")
                patch.print(os)
            self._print_periodic(os)

    def _print_periodic(self, os):
        if self.master.size == 0:
            return
        os.write("\nperiodic\n")
        for attrs in (self.master, self.slave):
            os.write(f"{attrs.size}\n" + " ".join(str(a) for a in attrs) + "\n")

    def save_file(self, filepath: str, comments: str = ""):
        with open(filepath, "w") as f:
            self.print(f, comments)

    def print_characteristics(self, os: TextIO):
        os.write(
            "NURBS Mesh entity sizes:\n"
            f"Dimension           = {self.dim}\n"
            f"Unique Orders       = {' '.join(str(o) for o in sorted(set(self.orders)))}\n"
            f"NumOfKnotVectors    = {self.get_nkv()}\n"
            f"NumOfPatches        = {self.get_np()}\n"
            f"NumOfBdrPatches     = {self.get_nbp()}\n"
            f"NumOfVertices       = {self.get_gnv()}\n"
            f"NumOfElements       = {self.get_gne()}\n"
            f"NumOfBdrElements    = {self.get_gnbe()}\n"
            f"NumOfDofs           = {self.num_dofs}\n"
            f"NumOfActiveVertices = {self.get_nv()}\n"
            f"NumOfActiveElems    = {self.get_ne()}\n"
            f"NumOfActiveBdrElems = {self.get_nbe()}\n"
            f"NumOfActiveDofs     = {self.get_ndof()}\n"
        )
        for i, kv in enumerate(self.knot_vectors):
            os.write(f" {i + 1}) ")
            kv.print(os)
        os.write("\n")

    def print_functions(self, basename: str, samples: int = 11):
        """
        Write the basis table of each unique knot vector to `basename_i.dat`.
        """
        for i, kv in enumerate(self.knot_vectors):
            with open(f"{basename}_{i}.dat", "w") as f:
                kv.print_functions(f, samples)

    def load_solution(self, tokens: TokenStream, vdim: int) -> np.ndarray[np.floating]:
        """
        Read a dof array of shape (`get_ndof()`, `vdim`) written patch by patch
        by `print_solution`.
        """
        sol = np.zeros((self.get_ndof(), vdim))
        p2g = NURBSPatchMap(self)
        for p in range(self.patch_topo.get_ne()):
            kvs = p2g.set_patch_dof_map(p)
            for idx in product(*reversed([range(kv.ncp) for kv in kvs])):
                l = self.active_dof[self.dof_map(p2g(*idx[::-1]))]
                sol[l] = tokens.next_floats(vdim)
        return sol

    def print_solution(self, sol: np.ndarray[np.floating], os: TextIO, vdim: int):
        sol = np.asarray(sol, dtype="float").reshape((self.get_ndof(), vdim))
        p2g = NURBSPatchMap(self)
        for p in range(self.patch_topo.get_ne()):
            os.write(f"\n# patch {p}\n\n")
            kvs = p2g.set_patch_dof_map(p)
            for idx in product(*reversed([range(kv.ncp) for kv in kvs])):
                l = self.active_dof[self.dof_map(p2g(*idx[::-1]))]
                os.write(" ".join(fmt_real(v) for v in sol[l]) + "\n")

    def save_paraview(
        self,
        path: str,
        name: str,
        n_eval_per_elem: Union[int, Iterable[int]] = 10,
        merged: bool = False,
        verbose: bool = True,
    ):
        """
        Sample every patch and write the meshes for Paraview.

        Parameters
        ----------
        path : str
            Output directory.
        name : str
            Base name of the `.vtu` files and of the `.pvd` collection.
        n_eval_per_elem : Union[int, Iterable[int]], optional
            Samples per element along each direction. By default, 10.
        merged : bool, optional
            If `True`, a single `.vtu` holds every patch. By default, False.
        verbose : bool, optional
            If `True`, shows progress. By default, True.
        """
        self._require_patches("save_paraview")
        meshes = [
            patch.make_mesh(n_eval_per_elem)
            for patch in tqdm(self.patches, desc="Sampling patches", disable=not verbose)
        ]
        save_patch_meshes(path, name, meshes, merged, verbose)
