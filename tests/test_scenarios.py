import numpy as np
import pytest

from isonurbs.knot_vector import KnotVector
from isonurbs.nurbs_patch import NURBSPatch
from isonurbs.patch_topology import PatchTopology
from isonurbs.nurbs_extension import NURBSExtension


def bilinear_square(kv, x0):
    n = kv.ncp
    g = np.array([kv.knot[i + 1 : i + kv.order + 1].mean() for i in range(n)])
    X, Y = np.meshgrid(g + x0, g, indexing="ij")
    return NURBSPatch([kv, kv], 3, np.stack((X, Y, np.ones_like(X))))


def test_refined_patch_keeps_partition_of_unity():
    """Refining a single patch by 2 quadruples its elements."""
    kv = KnotVector(2, [0.0, 0.0, 0.0, 0.5, 1.0, 1.0, 1.0])
    topo = PatchTopology(2, [[0, 1, 3, 2]], [[0, 1], [1, 3], [3, 2], [2, 0]])
    ext = NURBSExtension(topo, [bilinear_square(kv, 0.0)])
    ne = ext.get_ne()
    ext.uniform_refinement(2)
    assert ext.get_ne() == 4 * ne
    XI = np.linspace(0, 1, 13)
    for rkv in ext.get_patch_knot_vectors(0):
        for i in range(rkv.get_nks()):
            if rkv.is_element(i):
                for xi in XI:
                    assert rkv.calc_shape(i, xi).sum() == pytest.approx(1.0)
        N = rkv.basis_matrix(XI)
        np.testing.assert_allclose(np.asarray(N.sum(axis=1)).ravel(), np.ones(XI.size))


def test_matched_insertion_on_two_patches():
    """Inserting the same knots on two neighbours keeps the knot sets consistent."""
    kv = KnotVector(2, [0.0, 0.0, 0.0, 1.0, 1.0, 1.0])
    topo = PatchTopology(
        2,
        [[0, 1, 4, 3], [1, 2, 5, 4]],
        [[0, 1], [1, 2], [2, 5], [5, 4], [4, 3], [3, 0]],
    )
    ext = NURBSExtension(topo, [bilinear_square(kv, 0.0), bilinear_square(kv, 1.0)])
    ext.knot_insert([[0.5], [0.5], [0.5]])
    assert ext.consistent_kv_sets(verbose=False)
    ncp = 4
    interior = 2 * (ncp - 2) ** 2
    edges_interior = 7 * (ncp - 2)
    assert ext.get_ndof() == interior + edges_interior + topo.get_nv()
    idx0 = ext.get_patch_dofs(0).reshape((ncp, ncp), order="F")
    idx1 = ext.get_patch_dofs(1).reshape((ncp, ncp), order="F")
    np.testing.assert_array_equal(idx0[-1, :], idx1[0, :])


def test_removal_beyond_multiplicity_is_rejected():
    """Removing a simple knot twice fails before any control point changes."""
    kv = KnotVector(2, [0.0, 0.0, 0.0, 0.5, 1.0, 1.0, 1.0])
    patch = bilinear_square(kv, 0.0)
    before = patch.ctrl_pts.copy()
    with pytest.raises(ValueError):
        patch.knot_remove(0, 0.5, ntimes=2)
    np.testing.assert_array_equal(patch.ctrl_pts, before)
    assert patch.kv[0].same_knots(kv)
