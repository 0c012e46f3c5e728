import io

import numpy as np
import pytest

from isonurbs.knot_vector import KnotVector
from isonurbs.nurbs_patch import NURBSPatch, interpolate, revolve_3d
from isonurbs.text_io import TokenStream


def random_patch(kvs, phys_dim, seed=0):
    rng = np.random.default_rng(seed)
    shape = [kv.ncp for kv in kvs]
    ctrl_pts = np.empty((phys_dim + 1, *shape))
    w = rng.uniform(0.5, 1.5, shape)
    ctrl_pts[:phys_dim] = rng.random((phys_dim, *shape)) * w
    ctrl_pts[phys_dim] = w
    return NURBSPatch(kvs, phys_dim + 1, ctrl_pts)


@pytest.fixture
def patch():
    kv = KnotVector(2, [0.0, 0.0, 0.0, 0.5, 1.0, 1.0, 1.0])
    return random_patch([kv, kv], 2)


@pytest.fixture
def grid():
    return [np.linspace(0, 1, 9), np.linspace(0, 1, 7)]


def test_shape_checks():
    """Test the rejection of control points not matching the knot vectors."""
    kv = KnotVector(1, [0.0, 0.0, 1.0, 1.0])
    with pytest.raises(ValueError):
        NURBSPatch([kv, kv], 3, np.ones((3, 2, 3)))
    with pytest.raises(ValueError):
        NURBSPatch([kv] * 4, 3)
    p = NURBSPatch([kv], 3)
    assert p.ctrl_pts.shape == (3, 2)
    assert p.NPa == 1 and p.NPh == 2
    with pytest.raises(IndexError):
        p.get_kv(1)


def test_evaluate_corners(patch):
    """Test that an open patch interpolates its corner control points."""
    values = patch.evaluate([[0.0, 1.0], [0.0, 1.0]])
    cart = patch.ctrl_pts[:-1] / patch.ctrl_pts[-1]
    np.testing.assert_allclose(values[:, 0, 0], cart[:, 0, 0])
    np.testing.assert_allclose(values[:, 1, 1], cart[:, -1, -1])
    with pytest.raises(ValueError):
        patch.evaluate([[0.5]])


def test_knot_insert_keeps_geometry(patch, grid):
    """Test that knot insertion leaves the geometry unchanged."""
    before = patch.evaluate(grid)
    patch.knot_insert(0, [0.3, 0.5, 0.8])
    patch.knot_insert(1, [0.25])
    assert patch.get_ncps() == [7, 5]
    np.testing.assert_allclose(patch.kv[0].knot, [0, 0, 0, 0.3, 0.5, 0.5, 0.8, 1, 1, 1])
    np.testing.assert_allclose(patch.evaluate(grid), before, atol=1e-12)


def test_knot_insert_outside(patch):
    """Test that knots must lie strictly inside the domain."""
    with pytest.raises(ValueError):
        patch.knot_insert(0, [1.0])
    with pytest.raises(ValueError):
        patch.knot_insert(0, [-0.5])


def test_knot_insert_target(patch, grid):
    """Test the insertion toward a target knot vector of higher order."""
    before = patch.evaluate(grid)
    target = KnotVector(3, [0, 0, 0, 0, 0.25, 0.5, 0.5, 1, 1, 1, 1])
    patch.knot_insert(0, target)
    assert patch.kv[0].same_knots(target)
    np.testing.assert_allclose(patch.evaluate(grid), before, atol=1e-12)
    with pytest.raises(ValueError):
        patch.knot_insert(1, KnotVector(1, [0.0, 0.0, 1.0, 1.0]))


@pytest.mark.parametrize(
    "target",
    [
        KnotVector(2, [0.0, 0.0, 0.0, 0.3, 1.0, 1.0, 1.0]),
        KnotVector(2, [0.0, 0.0, 0.0, 0.3, 0.8, 1.0, 1.0, 1.0]),
        KnotVector(3, [0.0, 0.0, 0.0, 0.0, 1.0, 1.0, 1.0, 1.0]),
        KnotVector(3, [0.0, 0.0, 0.0, 0.0, 0.5, 0.7, 1.0, 1.0, 1.0, 1.0]),
    ],
)
def test_knot_insert_rejects_target_missing_knots(patch, target):
    """Test that a target lacking a current knot is rejected before any change."""
    original = patch.copy()
    with pytest.raises(ValueError):
        patch.knot_insert(0, target)
    assert patch.get_orders() == [2, 2]
    assert patch.kv[0].same_knots(original.kv[0])
    np.testing.assert_array_equal(patch.ctrl_pts, original.ctrl_pts)


def test_knot_insert_same_target(patch):
    """Test that inserting toward the current knot vector changes nothing."""
    original = patch.copy()
    patch.knot_insert(0, patch.kv[0].copy())
    assert patch.kv[0].same_knots(original.kv[0])
    np.testing.assert_array_equal(patch.ctrl_pts, original.ctrl_pts)


@pytest.mark.parametrize("order", [1, 2, 3, 4, 5])
def test_insert_remove_round_trip(order):
    """Test that removing an inserted knot restores the patch."""
    kv = KnotVector(order, np.concatenate((np.zeros(order + 1), [0.4], np.ones(order + 1))))
    patch = random_patch([kv], 3, seed=order)
    original = patch.copy()
    patch.knot_insert(0, [0.7])
    result = patch.knot_remove(0, 0.7, tol=1e-8, verbose=False)
    assert result.success
    assert result.removed == 1
    assert patch.kv[0].same_knots(original.kv[0])
    np.testing.assert_allclose(patch.ctrl_pts, original.ctrl_pts, atol=1e-10)


def test_remove_repeated_knot():
    """Test removing a knot several times at once."""
    kv = KnotVector(3, [0.0, 0.0, 0.0, 0.0, 0.5, 1.0, 1.0, 1.0, 1.0])
    curve = random_patch([kv], 2, seed=7)
    u = [np.linspace(0, 1, 13)]
    before = curve.evaluate(u)
    curve.knot_insert(0, [0.5, 0.5])
    result = curve.knot_remove(0, 0.5, ntimes=2, tol=1e-8, verbose=False)
    assert result == (2, 2)
    assert curve.get_ncps() == [5]
    np.testing.assert_allclose(curve.evaluate(u), before, atol=1e-10)


def test_partial_removal(patch, grid):
    """Test that the successful removals are kept when a later one fails."""
    before = patch.evaluate(grid)
    patch.knot_insert(1, [0.5])
    result = patch.knot_remove(1, 0.5, ntimes=2, tol=1e-8, verbose=False)
    assert result.removed == 1
    assert result.requested == 2
    assert not result.success
    assert patch.get_ncps() == [4, 4]
    np.testing.assert_allclose(patch.evaluate(grid), before, atol=1e-10)


def test_remove_too_many_times(patch):
    """Test that a removal beyond the multiplicity is rejected."""
    with pytest.raises(ValueError):
        patch.knot_remove(0, 0.5, ntimes=2)
    with pytest.raises(ValueError):
        patch.knot_remove(0, 0.0)
    with pytest.raises(ValueError):
        patch.knot_remove(0, 0.3)


def test_remove_needed_knot(patch):
    """Test that a failed removal leaves the patch untouched."""
    original = patch.copy()
    result = patch.knot_remove(0, 0.5, tol=1e-12, verbose=False)
    assert not result.success
    assert result.removed == 0
    assert patch.kv[0].same_knots(original.kv[0])
    np.testing.assert_array_equal(patch.ctrl_pts, original.ctrl_pts)


@pytest.mark.parametrize("t", [1, 2])
def test_degree_elevate_keeps_geometry(patch, grid, t):
    """Test that degree elevation leaves the geometry unchanged."""
    before = patch.evaluate(grid)
    patch.degree_elevate(t, 0)
    assert patch.get_orders() == [2 + t, 2]
    assert patch.get_ncps() == [4 + 2 * t, 4]
    np.testing.assert_allclose(patch.evaluate(grid), before, atol=1e-12)
    patch.degree_elevate(1)
    assert patch.get_orders() == [3 + t, 3]
    np.testing.assert_allclose(patch.evaluate(grid), before, atol=1e-12)


@pytest.mark.parametrize("t", [1, 2])
def test_degree_elevate_double_knot(grid, t):
    """Test degree elevation across an interior knot of multiplicity 2."""
    kv0 = KnotVector(3, [0.0, 0.0, 0.0, 0.0, 0.4, 0.4, 1.0, 1.0, 1.0, 1.0])
    kv1 = KnotVector(2, [0.0, 0.0, 0.0, 0.5, 0.5, 1.0, 1.0, 1.0])
    p = random_patch([kv0, kv1], 3, seed=3)
    before = p.evaluate(grid)
    p.degree_elevate(t)
    assert p.get_orders() == [3 + t, 2 + t]
    assert p.get_ncps() == [6 + 2 * t, 5 + 2 * t]
    np.testing.assert_allclose(p.kv[0].knot[3 + t + 1 : 3 + t + 3 + t], 0.4)
    np.testing.assert_allclose(p.evaluate(grid), before, atol=1e-11)


def test_make_uniform_degree(grid):
    """Test raising every direction to the largest degree."""
    p = random_patch(
        [KnotVector(1, [0.0, 0.0, 1.0, 1.0]), KnotVector(3, [0, 0, 0, 0, 1, 1, 1, 1])], 2
    )
    before = p.evaluate(grid)
    assert p.make_uniform_degree() == 3
    assert p.get_orders() == [3, 3]
    np.testing.assert_allclose(p.evaluate(grid), before, atol=1e-12)


def test_uniform_refinement_then_coarsen(patch, grid):
    """Test that coarsening undoes a uniform refinement."""
    before = patch.evaluate(grid)
    patch.uniform_refinement([2, 3])
    assert [kv.ne for kv in patch.kv] == [4, 6]
    np.testing.assert_allclose(patch.evaluate(grid), before, atol=1e-12)
    patch.coarsen([2, 3], verbose=False)
    assert [kv.ne for kv in patch.kv] == [2, 2]
    assert all(kv.coarse for kv in patch.kv)
    np.testing.assert_allclose(patch.evaluate(grid), before, atol=1e-10)


def test_flip_direction(patch):
    """Test that flipping reverses the parametrization."""
    u = np.linspace(0, 1, 5)
    v = np.linspace(0, 1, 4)
    before = patch.evaluate([u, v])
    patch.flip_direction(0)
    np.testing.assert_allclose(patch.evaluate([1 - u, v]), before, atol=1e-12)


def test_swap_directions(patch, grid):
    """Test that swapping transposes the parametrization."""
    before = patch.evaluate(grid)
    patch.swap_directions(0, 1)
    after = patch.evaluate(grid[::-1])
    np.testing.assert_allclose(np.swapaxes(after, 1, 2), before, atol=1e-12)
    kv = KnotVector(1, [0.0, 0.0, 1.0, 1.0])
    volume = NURBSPatch([kv, kv, kv], 4, np.ones((4, 2, 2, 2)))
    with pytest.raises(ValueError):
        volume.swap_directions(0, 2)


def test_rotations():
    """Test the planar and the spatial rotations."""
    kv = KnotVector(1, [0.0, 0.0, 1.0, 1.0])
    p = NURBSPatch([kv], 3, np.array([[1.0, 2.0], [0.0, 0.0], [1.0, 1.0]]))
    p.rotate(np.pi / 2)
    np.testing.assert_allclose(p.ctrl_pts[:2], [[0.0, 0.0], [1.0, 2.0]], atol=1e-15)
    T = NURBSPatch.get_3d_rotation_matrix([0.0, 0.0, 2.0], np.pi / 2)
    np.testing.assert_allclose(T, [[0, -1, 0], [1, 0, 0], [0, 0, 1]], atol=1e-15)
    T = NURBSPatch.get_3d_rotation_matrix([1.0, 1.0, 1.0], 0.7)
    np.testing.assert_allclose(T @ T.T, np.eye(3), atol=1e-12)
    np.testing.assert_allclose(T @ np.ones(3), np.ones(3), atol=1e-12)
    with pytest.raises(ValueError):
        NURBSPatch.get_3d_rotation_matrix([0.0, 0.0, 0.0], 0.5)
    q = NURBSPatch([kv], 4, np.array([[1.0, 2.0], [0.0, 0.0], [0.0, 0.0], [1.0, 1.0]]))
    with pytest.raises(ValueError):
        q.rotate(0.3)
    q.rotate(np.pi, [0.0, 0.0, 1.0])
    np.testing.assert_allclose(q.ctrl_pts[:3], [[-1.0, -2.0], [0.0, 0.0], [0.0, 0.0]], atol=1e-15)


def test_interpolate():
    """Test the ruled patch between two curves of different degrees."""
    p1 = NURBSPatch([KnotVector(1, [0.0, 0.0, 1.0, 1.0])], 3, np.array([[0.0, 1.0], [0.0, 0.0], [1.0, 1.0]]))
    kv2 = KnotVector(2, [0.0, 0.0, 0.0, 0.5, 1.0, 1.0, 1.0])
    p2 = random_patch([kv2], 2, seed=3)
    u = np.linspace(0, 1, 6)
    ruled = interpolate(p1, p2)
    assert ruled.NPa == 2
    assert ruled.get_orders() == [2, 1]
    values = ruled.evaluate([u, [0.0, 1.0]])
    np.testing.assert_allclose(values[:, :, 0], p1.evaluate([u]), atol=1e-12)
    np.testing.assert_allclose(values[:, :, 1], p2.evaluate([u]), atol=1e-12)
    assert p1.get_orders() == [1]


def test_revolve_3d():
    """Test that revolving a radial segment sweeps an exact annulus."""
    kv = KnotVector(1, [0.0, 0.0, 1.0, 1.0])
    segment = NURBSPatch([kv], 4, np.array([[1.0, 2.0], [0.0, 0.0], [0.0, 0.0], [1.0, 1.0]]))
    surface = revolve_3d(segment, [0.0, 0.0, 1.0], np.pi / 2, 2)
    assert surface.get_orders() == [1, 2]
    np.testing.assert_allclose(surface.kv[1].knot, [0, 0, 0, 1, 1, 2, 2, 2])
    u = np.linspace(0, 1, 5)
    v = np.linspace(0, 2, 9)
    values = surface.evaluate([u, v])
    radius = np.sqrt(values[0] ** 2 + values[1] ** 2)
    np.testing.assert_allclose(radius, np.broadcast_to((1 + u)[:, None], radius.shape), atol=1e-12)
    np.testing.assert_allclose(values[2], 0.0, atol=1e-15)
    np.testing.assert_allclose(values[:, :, -1], [-(1 + u), np.zeros(5), np.zeros(5)], atol=1e-12)


def test_read_print(patch):
    """Test the text form of a patch."""
    out = io.StringIO()
    patch.print(out)
    back = NURBSPatch.read(TokenStream(out.getvalue()))
    assert all(a.same_knots(b) for a, b in zip(back.kv, patch.kv))
    np.testing.assert_array_equal(back.ctrl_pts, patch.ctrl_pts)


def test_read_cartesian():
    """Test that Cartesian control points are weighted on reading."""
    text = (
        "knotvectors\n1\n1 2 0 0 1 1\n"
        "dimension\n2\n"
        "controlpoints_cartesian\n1 2 0.5\n3 4 2\n"
    )
    p = NURBSPatch.read(TokenStream(text))
    np.testing.assert_allclose(p.ctrl_pts, [[0.5, 6.0], [1.0, 8.0], [0.5, 2.0]])


def test_make_mesh(patch):
    """Test the sampled mesh of a patch."""
    mesh = patch.make_mesh(3)
    assert mesh.points.shape == (49, 3)
    assert mesh.cells_dict["quad"].shape == (36, 4)
    np.testing.assert_allclose(mesh.points[:, 2], 0.0)


@pytest.mark.parametrize("ext", ["json", "pkl"])
def test_save_load(patch, tmp_path, ext):
    """Test saving and loading a patch."""
    patch.kv[0].coarse = True
    path = str(tmp_path / f"patch.{ext}")
    patch.save(path)
    back = NURBSPatch.load(path)
    np.testing.assert_array_equal(back.ctrl_pts, patch.ctrl_pts)
    assert back.kv[0].coarse and not back.kv[1].coarse
