import numpy as np
import pytest

from isonurbs.knot_vector import KnotVector
from isonurbs.nurbs_patch import NURBSPatch
from isonurbs.patch_topology import PatchTopology, HEX_FACES
from isonurbs.patch_map import NURBSPatchMap, or_1d, or_2d
from isonurbs.nurbs_extension import NURBSExtension


def unit_patch(orders, ncps, dim):
    kvs = []
    for p, n in zip(orders, ncps):
        inner = np.linspace(0, 1, n - p + 1)[1:-1]
        kvs.append(KnotVector(p, np.concatenate((np.zeros(p + 1), inner, np.ones(p + 1)))))
    ctrl_pts = np.ones((dim + 1, *ncps))
    return NURBSPatch(kvs, dim + 1, ctrl_pts)


def test_or_1d():
    """Test the reading of an edge interior in both ways."""
    assert [or_1d(n, 4, 1) for n in range(4)] == [0, 1, 2, 3]
    assert [or_1d(n, 4, -1) for n in range(4)] == [3, 2, 1, 0]


@pytest.mark.parametrize("orient", range(8))
def test_or_2d_is_a_permutation(orient):
    """Test that every orientation code reads each face entry once."""
    N1, N2 = 2, 3
    idx = [or_2d(n1, n2, N1, N2, orient) for n2 in range(N2) for n1 in range(N1)]
    assert sorted(idx) == list(range(N1 * N2))


def test_or_2d_invalid():
    with pytest.raises(ValueError):
        or_2d(0, 0, 2, 2, 8)


def test_square_dof_map():
    """Test that the dof map of a single square is a bijection."""
    topo = PatchTopology(2, [[0, 1, 3, 2]], [[0, 1], [1, 3], [3, 2], [2, 0]])
    ext = NURBSExtension(topo, [unit_patch([2, 3], [5, 6], 2)])
    p2g = NURBSPatchMap(ext)
    kvs = p2g.set_patch_dof_map(0)
    assert (p2g.nx, p2g.ny) == (4, 5)
    idx = [p2g(i, j) for j in range(kvs[1].ncp) for i in range(kvs[0].ncp)]
    assert sorted(idx) == list(range(ext.num_dofs))
    # corners first, as the vertices
    assert [p2g(0, 0), p2g(4, 0), p2g(4, 5), p2g(0, 5)] == [0, 1, 3, 2]


def test_square_vertex_map():
    """Test the element corner numbering of a single square."""
    topo = PatchTopology(2, [[0, 1, 3, 2]], [[0, 1], [1, 3], [3, 2], [2, 0]])
    ext = NURBSExtension(topo, [unit_patch([2, 2], [5, 4], 2)])
    p2g = NURBSPatchMap(ext)
    kvs = p2g.set_patch_vertex_map(0)
    assert [kv.ne for kv in kvs] == [3, 2]
    idx = [p2g(i, j) for j in range(kvs[1].ne + 1) for i in range(kvs[0].ne + 1)]
    assert sorted(idx) == list(range(ext.get_gnv()))


def test_cube_dof_map():
    """Test that the dof map of a single hexahedron is a bijection."""
    topo = PatchTopology(3, [list(range(8))], [list(f) for f in HEX_FACES])
    ext = NURBSExtension(topo, [unit_patch([1, 2, 2], [3, 4, 5], 3)])
    p2g = NURBSPatchMap(ext)
    kvs = p2g.set_patch_dof_map(0)
    ncps = [kv.ncp for kv in kvs]
    idx = [p2g(*m) for m in np.ndindex(*ncps)]
    assert sorted(idx) == list(range(ext.num_dofs))
    assert p2g(ncps[0] - 1, ncps[1] - 1, ncps[2] - 1) == 6


def test_bdr_map_on_square():
    """Test that a boundary patch maps onto the dofs of its side."""
    topo = PatchTopology(2, [[0, 1, 3, 2]], [[0, 1], [1, 3], [3, 2], [2, 0]])
    ext = NURBSExtension(topo, [unit_patch([2, 2], [4, 4], 2)])
    p2g = NURBSPatchMap(ext)
    p2g.set_patch_dof_map(0)
    top = {p2g(i, 3) for i in range(4)}
    kvs, okv = p2g.set_bdr_patch_dof_map(2)
    assert len(kvs) == 1
    assert okv == [-1]
    assert {p2g.bdr(i) for i in range(p2g.nx + 1)} == top
    # the boundary runs from vertex 3 to vertex 2
    assert p2g.bdr(0) == 3 and p2g.bdr(p2g.nx) == 2
