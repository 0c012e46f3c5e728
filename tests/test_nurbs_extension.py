import io
import os

import numpy as np
import pytest

from isonurbs.knot_vector import KnotVector
from isonurbs.nurbs_patch import NURBSPatch
from isonurbs.patch_topology import PatchTopology, HEX_FACES
from isonurbs.nurbs_extension import NURBSExtension, Mode, InconsistentKnotVectorsError
from isonurbs.text_io import TokenStream


def greville(kv):
    p = kv.order
    return np.array([kv.knot[i + 1 : i + p + 1].mean() for i in range(kv.ncp)])


def affine_patch(kvs, origin, axes):
    """Patch of the affine map `origin + sum_d u_d * axes[d]`."""
    origin = np.asarray(origin, dtype="float")
    g = np.meshgrid(*[greville(kv) for kv in kvs], indexing="ij")
    ctrl_pts = np.ones((origin.size + 1, *g[0].shape))
    for c in range(origin.size):
        ctrl_pts[c] = origin[c] + sum(axes[d][c] * g[d] for d in range(len(kvs)))
    return NURBSPatch(kvs, origin.size + 1, ctrl_pts)


def cartesian_net(patch):
    return (patch.ctrl_pts[:-1] / patch.ctrl_pts[-1]).reshape((patch.NPh, -1), order="F").T


def assert_patches_match_dofs(ext, coords):
    for p, patch in enumerate(ext.patches):
        np.testing.assert_allclose(coords[ext.get_patch_dofs(p)], cartesian_net(patch), atol=1e-12)


KV2 = KnotVector(2, [0.0, 0.0, 0.0, 0.5, 1.0, 1.0, 1.0])


@pytest.fixture
def square():
    # 2---3
    # |   |
    # 0---1
    topo = PatchTopology(2, [[0, 1, 3, 2]], [[0, 1], [1, 3], [3, 2], [2, 0]])
    patch = affine_patch([KV2, KV2], [0.0, 0.0], [[1.0, 0.0], [0.0, 1.0]])
    return NURBSExtension(topo, [patch])


@pytest.fixture
def rotated_pair():
    # 3---4---5    the right patch runs its first direction from 2 to 5
    # |   |   |
    # 0---1---2
    topo = PatchTopology(
        2,
        [[0, 1, 4, 3], [2, 5, 4, 1]],
        [[0, 1], [1, 2], [2, 5], [5, 4], [4, 3], [3, 0]],
    )
    kv = KnotVector(2, [0.0, 0.0, 0.0, 1.0, 1.0, 1.0])
    left = affine_patch([kv, kv], [0.0, 0.0], [[1.0, 0.0], [0.0, 1.0]])
    right = affine_patch([kv, kv], [2.0, 0.0], [[0.0, 1.0], [-1.0, 0.0]])
    return NURBSExtension(topo, [left, right])


def test_single_patch_sizes(square):
    """Test the counts of a single refined square."""
    assert square.get_nkv() == 2
    assert square.get_np() == 1
    assert square.get_nbp() == 4
    assert square.get_ne() == square.get_gne() == 4
    assert square.get_nbe() == square.get_gnbe() == 8
    assert square.get_nv() == square.get_gnv() == 9
    assert square.get_ndof() == 16
    assert square.get_order() == 2
    assert square.mode == Mode.H1
    np.testing.assert_allclose(square.weights, np.ones(16))


def test_offsets_tile_the_dofs(square):
    """Test that the dof ranges of the entities are disjoint and cover the dofs."""
    ext = square
    starts = np.concatenate((ext.e_space_offsets, ext.f_space_offsets, ext.p_space_offsets, [ext.num_dofs]))
    assert starts[0] == ext.patch_topo.get_nv()
    sizes = [ext.knot_vec(e).ncp - 2 for e in range(ext.patch_topo.get_nedges())]
    sizes += [int(np.prod([kv.ncp - 2 for kv in ext.get_patch_knot_vectors(0)]))]
    np.testing.assert_array_equal(np.diff(starts), sizes)


def test_element_dof_table(square):
    """Test that each element lists its control points, first direction fastest."""
    ext = square
    coords = ext.set_solution_vector(2)
    g = greville(KV2)
    assert ext.el_dof.size() == 4
    for e in range(ext.get_ne()):
        i, j = ext.get_element_ijk(e)
        expected = [[g[i + a], g[j + b]] for b in range(3) for a in range(3)]
        np.testing.assert_allclose(coords[ext.el_dof[e]], expected, atol=1e-12)
    used = np.unique(ext.el_dof.J)
    np.testing.assert_array_equal(used, np.arange(16))


def test_bdr_element_dof_table(square):
    """Test that boundary rows lie on their side and follow the knot vector."""
    ext = square
    coords = ext.set_solution_vector(2)
    sides = {1: (1, 0.0, 0), 2: (0, 1.0, 1), 3: (1, 1.0, 0), 4: (0, 0.0, 1)}
    for i in range(ext.get_nbe()):
        attr = ext.patch_topo.get_bdr_attribute(ext.get_bdr_element_patch(i))
        fixed, value, running = sides[attr]
        xy = coords[ext.bel_dof[i]]
        assert ext.bel_dof.row_size(i) == 3
        np.testing.assert_allclose(xy[:, fixed], value, atol=1e-12)
        assert np.all(np.diff(xy[:, running]) > 0)


def test_element_topology(square):
    """Test the element and boundary element connectivity."""
    elements, attributes = square.get_element_topo()
    assert elements.shape == (4, 4)
    np.testing.assert_array_equal(attributes, np.ones(4))
    np.testing.assert_array_equal(np.unique(elements), np.arange(9))
    bdr, bdr_attributes = square.get_bdr_element_topo()
    assert bdr.shape == (8, 2)
    np.testing.assert_array_equal(np.bincount(bdr_attributes), [0, 2, 2, 2, 2])
    # the boundary vertices are the 8 vertices outside the center
    assert np.unique(bdr).size == 8


def test_element_knot_vectors(square):
    """Test the data handed to a finite element."""
    data = square.get_element_knot_vectors(3)
    assert data.patch == 0
    np.testing.assert_array_equal(data.ijk, [1, 1])
    assert len(data.knot_vectors) == 2
    assert data.dofs.size == 9
    np.testing.assert_allclose(data.weights, np.ones(9))
    bdata = square.get_bdr_element_knot_vectors(0)
    assert bdata.dofs.size == 3
    assert len(bdata.knot_vectors) == 1


def test_uniform_refinement(square):
    """Test that a uniform refinement by 2 quadruples the elements."""
    square.uniform_refinement(2)
    assert square.get_ne() == 16
    assert square.get_ndof() == 36
    assert square.consistent_kv_sets(verbose=False)
    assert_patches_match_dofs(square, square.set_solution_vector(2))


def test_degree_elevate(square):
    """Test the elevation of every patch."""
    square.degree_elevate(1)
    assert square.get_order() == 3
    assert square.get_ndof() == 36
    square.degree_elevate(2, degree=4)
    assert square.get_order() == 4


def test_coarsen(square):
    """Test that coarsening undoes the refinement."""
    square.uniform_refinement(2)
    square.coarsen(2)
    assert square.get_ne() == 4
    assert square.get_ndof() == 16
    assert square.get_coarsening_factors() == [1, 1]


def test_knot_insert_and_remove(square):
    """Test inserting then removing knots through the shared knot vectors."""
    square.knot_insert([[0.25], KnotVector(2, [0, 0, 0, 0.5, 0.75, 1, 1, 1])])
    assert square.get_ne() == 9
    assert square.get_ndof() == 25
    results = square.knot_remove([[0.25], [0.75]], tol=1e-10, verbose=False)
    assert results[0][0][0].success and results[0][1][0].success
    assert square.get_ndof() == 16
    with pytest.raises(ValueError):
        square.knot_insert([[0.25]])


def test_patches_required(square):
    """Test that patch operations need the patches."""
    coords = square.set_coords_from_patches()
    assert coords.shape == (16, 2)
    assert square.patches == []
    with pytest.raises(ValueError):
        square.uniform_refinement(2)
    square.convert_to_patches(coords)
    square.uniform_refinement(2)
    assert square.get_ndof() == 36


def test_rotated_neighbour(rotated_pair):
    """Test that a neighbour with rotated directions shares its edge dofs."""
    ext = rotated_pair
    assert ext.check_kv_direction(0) == [1, 1]
    assert ext.check_kv_direction(1) == [1, -1]
    assert ext.get_ndof() == 15
    ext.knot_insert([[0.3], [0.3], [0.3]])
    assert ext.consistent_kv_sets(verbose=False)
    assert ext.get_ndof() == 28
    # the flipped direction received the knot at the mirrored parameter
    np.testing.assert_allclose(ext.patches[1].kv[1].knot, [0, 0, 0, 0.7, 1, 1, 1])
    assert_patches_match_dofs(ext, ext.set_solution_vector(2))


def test_inconsistent_patches():
    """Test that patches disagreeing on a shared edge are rejected."""
    topo = PatchTopology(
        2,
        [[0, 1, 4, 3], [1, 2, 5, 4]],
        [[0, 1], [1, 2], [2, 5], [5, 4], [4, 3], [3, 0]],
    )
    kv = KnotVector(2, [0.0, 0.0, 0.0, 1.0, 1.0, 1.0])
    left = affine_patch([kv, KV2], [0.0, 0.0], [[1.0, 0.0], [0.0, 1.0]])
    right = affine_patch([kv, kv], [1.0, 0.0], [[1.0, 0.0], [0.0, 1.0]])
    with pytest.raises(InconsistentKnotVectorsError) as excinfo:
        NURBSExtension(topo, [left, right])
    assert excinfo.value.patch == 1
    assert excinfo.value.direction == 1


def test_refining_one_patch_is_inconsistent(rotated_pair):
    """Test that editing a single patch is caught when the knots are rebuilt."""
    rotated_pair.patches[0].knot_insert(1, [0.5])
    with pytest.raises(InconsistentKnotVectorsError):
        rotated_pair.set_knots_from_patches()


def test_wrong_patch_count():
    """Test the rejection of a patch list not matching the topology."""
    topo = PatchTopology(2, [[0, 1, 3, 2]], [[0, 1], [1, 3], [3, 2], [2, 0]])
    patch = affine_patch([KV2, KV2], [0.0, 0.0], [[1.0, 0.0], [0.0, 1.0]])
    with pytest.raises(ValueError):
        NURBSExtension(topo, [patch, patch])
    with pytest.raises(ValueError):
        NURBSExtension(topo, [affine_patch([KV2], [0.0, 0.0], [[1.0, 0.0]])])


def test_segments():
    """Test a one dimensional mesh of two segments."""
    topo = PatchTopology(1, [[0, 1], [1, 2]], [[0], [2]])
    kv = KnotVector(2, [0.0, 0.0, 0.0, 1.0, 1.0, 1.0])
    p0 = affine_patch([kv], [0.0], [[1.0]])
    p1 = affine_patch([kv], [1.0], [[1.0]])
    ext = NURBSExtension(topo, [p0, p1])
    assert ext.get_ndof() == 5
    assert ext.get_ne() == 2
    assert ext.get_nbe() == 2
    coords = ext.set_solution_vector(1)
    np.testing.assert_allclose(np.sort(coords[:, 0]), [0.0, 0.5, 1.0, 1.5, 2.0])
    assert_patches_match_dofs(ext, coords)
    ext.uniform_refinement(2)
    assert ext.get_ne() == 4
    assert ext.get_ndof() == 7


def test_two_hexahedra():
    """Test the shared face of two hexahedra after refinement."""
    elements = [list(range(8)), [1, 8, 9, 2, 5, 10, 11, 6]]
    boundary = [[elements[0][i] for i in f] for f in HEX_FACES if f != (1, 2, 6, 5)]
    boundary += [[elements[1][i] for i in f] for f in HEX_FACES if f != (3, 0, 4, 7)]
    topo = PatchTopology(3, elements, boundary)
    kv = KnotVector(1, [0.0, 0.0, 1.0, 1.0])
    axes = [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]]
    left = affine_patch([kv, kv, kv], [0.0, 0.0, 0.0], axes)
    right = affine_patch([kv, kv, kv], [1.0, 0.0, 0.0], axes)
    ext = NURBSExtension(topo, [left, right])
    assert ext.get_ndof() == 12
    assert ext.get_nbe() == 10
    ext.degree_elevate(1)
    ext.uniform_refinement(2)
    # 7 x 4 x 4 control points, the shared face counted once
    assert ext.get_ndof() == 112
    assert ext.get_ne() == 16
    assert ext.get_nbe() == 40
    coords = ext.set_solution_vector(3)
    assert_patches_match_dofs(ext, coords)
    assert np.unique(np.round(coords, 12), axis=0).shape[0] == 112
    for i in range(ext.get_nbe()):
        assert ext.bel_dof.row_size(i) == 9


def test_rotated_hexahedra():
    """Test a shared face seen with different orientations by its two hexahedra."""
    # the second hexahedron runs u along y, v along z and w along x
    elements = [list(range(8)), [1, 2, 6, 5, 8, 9, 11, 10]]
    boundary = [[elements[0][i] for i in f] for f in HEX_FACES if f != (1, 2, 6, 5)]
    boundary += [[elements[1][i] for i in f] for f in HEX_FACES if f != (3, 2, 1, 0)]
    topo = PatchTopology(3, elements, boundary)
    faces, orients = topo.get_element_faces(1)
    assert orients[0] != 0
    kv = KnotVector(1, [0.0, 0.0, 1.0, 1.0])
    left = affine_patch([kv, kv, kv], [0.0, 0.0, 0.0], [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]])
    right = affine_patch([kv, kv, kv], [1.0, 0.0, 0.0], [[0.0, 1.0, 0.0], [0.0, 0.0, 1.0], [1.0, 0.0, 0.0]])
    ext = NURBSExtension(topo, [left, right])
    assert ext.get_ndof() == 12
    ext.degree_elevate(1)
    ext.uniform_refinement(2)
    assert ext.consistent_kv_sets(verbose=False)
    assert ext.get_ndof() == 112
    assert ext.get_nbe() == 40
    coords = ext.set_solution_vector(3)
    assert_patches_match_dofs(ext, coords)
    assert np.unique(np.round(coords, 12), axis=0).shape[0] == 112


def test_single_cube_sizes():
    """Test the counts of a refined single hexahedron."""
    topo = PatchTopology(3, [list(range(8))], [list(f) for f in HEX_FACES])
    kv = KnotVector(1, [0.0, 0.0, 1.0, 1.0])
    axes = [[1.0, 0.0, 0.0], [0.0, 1.0, 0.0], [0.0, 0.0, 1.0]]
    ext = NURBSExtension(topo, [affine_patch([kv, kv, kv], [0.0, 0.0, 0.0], axes)])
    ext.uniform_refinement(2)
    assert ext.get_ndof() == 27
    assert ext.get_ne() == 8
    assert ext.get_nbe() == 24
    assert ext.get_nv() == 27
    assert_patches_match_dofs(ext, ext.set_solution_vector(3))


def test_periodic(square):
    """Test the identification of the left and right sides."""
    ext = square
    ext.connect_boundaries([4], [2])
    assert ext.get_ndof() == 12
    assert ext.get_nv() == 9
    np.testing.assert_array_equal(np.unique(ext.el_dof.J), np.arange(12))
    left = set()
    right = set()
    for i in range(ext.get_nbe()):
        attr = ext.patch_topo.get_bdr_attribute(ext.get_bdr_element_patch(i))
        if attr == 4:
            left.update(ext.bel_dof[i].tolist())
        elif attr == 2:
            right.update(ext.bel_dof[i].tolist())
    assert left == right
    # the identification survives a refinement
    ext.uniform_refinement(2)
    assert ext.get_ndof() == 30
    with pytest.raises(ValueError):
        ext.connect_boundaries([4], [])
    with pytest.raises(ValueError):
        ext.connect_boundaries([9], [2])


def test_set_active(square):
    """Test restricting the numbering to some elements."""
    ext = square
    ext.set_active([0])
    assert ext.get_ne() == 1
    assert ext.get_nv() == 4
    assert ext.get_ndof() == 9
    assert ext.get_nbe() == 0
    assert ext.get_gne() == 4
    np.testing.assert_array_equal(ext.get_element_local_to_global(), [0])
    assert ext.get_vertex_local_to_global().size == 4
    np.testing.assert_allclose(ext.weights, np.ones(9))
    np.testing.assert_array_equal(np.sort(ext.el_dof[0]), np.arange(9))
    ext.set_active([0, 3], [0, 7])
    assert ext.get_ne() == 2
    assert ext.get_nbe() == 2
    # the two elements share a 2 x 2 block of control points
    assert ext.get_ndof() == 14


def test_div_extension(square):
    """Test the boundary dofs of an H(div) extension."""
    div = square.get_div_extension(0)
    assert div.mode == Mode.H_DIV
    assert div.orders == [3, 2]
    assert div.get_ndof() == 24
    for i in range(div.get_nbe()):
        attr = div.patch_topo.get_bdr_attribute(div.get_bdr_element_patch(i))
        if attr in (1, 3):
            assert div.bel_dof.row_size(i) == 0
        else:
            assert div.bel_dof.row_size(i) == 3
    with pytest.raises(IndexError):
        square.get_div_extension(2)


def test_curl_extension(square):
    """Test the boundary dofs of an H(curl) extension."""
    curl = square.get_curl_extension(0)
    assert curl.mode == Mode.H_CURL
    assert curl.orders == [2, 3]
    for i in range(curl.get_nbe()):
        attr = curl.patch_topo.get_bdr_attribute(curl.get_bdr_element_patch(i))
        expected = 3 if attr in (1, 3) else 0
        assert curl.bel_dof.row_size(i) == expected


def test_multi_patch_div_extension(rotated_pair):
    """Test that H(div) extensions need a single patch."""
    with pytest.raises(ValueError):
        rotated_pair.get_div_extension(0)


def test_from_parent(square):
    """Test a higher order extension on the same mesh."""
    child = NURBSExtension.from_parent(square, 3)
    assert child.get_order() == 3
    assert child.get_ne() == 4
    assert child.get_ndof() == 36
    assert child.patches == []
    np.testing.assert_allclose(child.weights, np.ones(36))
    with pytest.raises(ValueError):
        NURBSExtension.from_parent_orders(square, [3])


def test_print_read_patches(square, tmp_path):
    """Test writing and reading a mesh holding patches."""
    path = str(tmp_path / "square.mesh")
    square.save_file(path, comments="# unit square")
    back = NURBSExtension.load_file(path)
    assert back.get_ndof() == 16
    assert len(back.patches) == 1
    np.testing.assert_array_equal(back.patches[0].ctrl_pts, square.patches[0].ctrl_pts)


def test_print_read_knotvectors(square):
    """Test writing and reading a mesh holding dof coordinates."""
    patch = square.patches[0].copy()
    patch.ctrl_pts[:, 1, 1] *= 2.0
    square.patches = [patch]
    square.set_knots_from_patches()
    coords = square.set_coords_from_patches()
    out = io.StringIO()
    square.print(out)
    text = out.getvalue()
    assert "knotvectors" in text and "weights" in text
    back = NURBSExtension.read(TokenStream(text))
    assert back.patches == []
    assert all(a.same_knots(b) for a, b in zip(back.knot_vectors, square.knot_vectors))
    np.testing.assert_allclose(back.weights, square.weights)
    assert np.count_nonzero(back.weights == 2.0) == 1
    back.convert_to_patches(coords)
    np.testing.assert_allclose(back.patches[0].ctrl_pts, patch.ctrl_pts)


def test_print_read_periodic_and_active(square):
    """Test that periodic pairs and active elements are written."""
    square.connect_boundaries([4], [2])
    square.set_coords_from_patches()
    square.set_active([1, 2])
    out = io.StringIO()
    square.print(out)
    back = NURBSExtension.read(TokenStream(out.getvalue()))
    np.testing.assert_array_equal(back.master, [4])
    np.testing.assert_array_equal(back.slave, [2])
    assert back.get_ne() == 2
    assert back.get_ndof() == square.get_ndof()


def test_read_unit_weights():
    """Test reading a mesh with knot vectors and unit weights."""
    text = """MFEM NURBS mesh v1.0
dimension
2
elements
1
1 3 0 1 3 2
boundary
4
1 1 0 1
2 1 1 3
3 1 3 2
4 1 2 0
edges
4
0 0 1
0 2 3
1 0 2
1 1 3
vertices
4
knotvectors
2
2 3 0 0 0 1 1 1
1 2 0 0 1 1
unitweights
"""
    ext = NURBSExtension.read(TokenStream(text))
    assert ext.orders == [2, 1]
    assert ext.order == -1
    assert ext.get_ndof() == 6
    with pytest.raises(ValueError):
        ext.get_order()
    np.testing.assert_allclose(ext.weights, np.ones(6))


def test_read_spacing():
    """Test reading the spacing section of a v1.1 mesh."""
    text = """MFEM NURBS mesh v1.1
dimension
1
elements
1
1 1 0 1
boundary
2
1 0 0
2 0 1
edges
1
0 0 1
vertices
2
knotvectors
1
1 2 0 0 1 1
spacing
1
0 2 3 1 1 0 0 2.0
"""
    ext = NURBSExtension.read(TokenStream(text + "unitweights\n"))
    sp = ext.knot_vectors[0].spacing
    assert sp is not None and sp.r == 2.0
    out = io.StringIO()
    ext.print(out)
    assert out.getvalue().startswith("MFEM NURBS mesh v1.1")
    assert "spacing" in out.getvalue()


def test_solution_round_trip(square):
    """Test writing and reading a dof vector patch by patch."""
    sol = np.random.default_rng(0).random((16, 2))
    out = io.StringIO()
    square.print_solution(sol, out, 2)
    back = square.load_solution(TokenStream(out.getvalue()), 2)
    np.testing.assert_array_equal(back, sol)


def test_print_characteristics(square):
    """Test the summary of the mesh sizes."""
    out = io.StringIO()
    square.print_characteristics(out)
    text = out.getvalue()
    assert "NumOfActiveDofs     = 16" in text
    assert "NumOfKnotVectors    = 2" in text


def test_print_functions(square, tmp_path):
    """Test the basis tables written per knot vector."""
    base = str(tmp_path / "basis")
    square.print_functions(base, samples=3)
    for i in range(2):
        with open(f"{base}_{i}.dat") as f:
            assert len(f.read().splitlines()) == 6


def test_save_paraview(square, tmp_path):
    """Test the Paraview output of the patches."""
    square.save_paraview(str(tmp_path), "square", n_eval_per_elem=3, verbose=False)
    assert os.path.isfile(os.path.join(str(tmp_path), "square.pvd"))
    assert os.path.isfile(os.path.join(str(tmp_path), "square_patches_0_0.vtu"))


def test_copy_is_independent(square):
    """Test that a copy can be refined alone."""
    other = square.copy()
    other.uniform_refinement(2)
    assert square.get_ndof() == 16
    assert other.get_ndof() == 36
