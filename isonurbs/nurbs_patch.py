from typing import Iterable, NamedTuple, TextIO, Union
import json, pickle

import numpy as np
import meshio as io
from scipy.special import comb

from .knot_vector import KnotVector
from .text_io import TokenStream, fmt_real


class KnotRemovalResult(NamedTuple):
    """
    Outcome of a knot removal: how many of the requested removals succeeded.
    """

    removed: int
    requested: int

    @property
    def success(self) -> bool:
        return self.removed == self.requested


class NURBSPatch:
    """
    Tensor product NURBS patch in 1, 2 or 3 parametric directions.

    The control net is stored in homogeneous coordinates: for a patch in a
    physical space of dimension `NPh`, each control point holds
    `(w*x, w*y, ..., w)`.

    Attributes
    ----------
    kv : list[KnotVector]
        One knot vector per parametric direction.
    ctrl_pts : np.ndarray[np.floating]
        Homogeneous control points of shape (`Dim`, n0, n1, ...) where
        `Dim = NPh + 1` and `nd` is the number of control points along
        direction `d`.

    Notes
    -----
    Every operation changing the size of the net (insertion, removal,
    elevation, direction swap) builds the new knot vector and the new net
    completely before installing them together, so a failed operation leaves
    the patch untouched.
    """

    kv: list[KnotVector]
    ctrl_pts: np.ndarray[np.floating]

    def __init__(
        self,
        kv: Iterable[KnotVector],
        Dim: int,
        ctrl_pts: Union[np.ndarray[np.floating], None] = None,
    ):
        """
        Create a patch from its knot vectors.

        Parameters
        ----------
        kv : Iterable[KnotVector]
            Knot vectors of the 1, 2 or 3 parametric directions. They are
            copied.
        Dim : int
            Size of a homogeneous control point, i.e. physical dimension + 1.
        ctrl_pts : Union[np.ndarray[np.floating], None], optional
            Homogeneous control points of shape (`Dim`, n0, n1, ...). Zeros
            when `None`. By default, None.
        """
        kv = [k.copy() for k in kv]
        if len(kv) not in (1, 2, 3):
            raise ValueError(
                f"NURBSPatch: wrong number of knot vectors ({len(kv)}), expected 1, 2 or 3 !"
            )
        if Dim < 2:
            raise ValueError(
                f"NURBSPatch: dimension including the weight must be greater than 1, got {Dim} !"
            )
        shape = (Dim, *[k.ncp for k in kv])
        if ctrl_pts is None:
            ctrl_pts = np.zeros(shape, dtype="float")
        else:
            ctrl_pts = np.array(ctrl_pts, dtype="float")
            if ctrl_pts.shape != shape:
                raise ValueError(
                    f"NURBSPatch: control points of shape {ctrl_pts.shape} do not match the knot vectors, expected {shape} !"
                )
        self.kv = kv
        self.ctrl_pts = ctrl_pts

    @property
    def NPa(self) -> int:
        return len(self.kv)

    @property
    def Dim(self) -> int:
        return self.ctrl_pts.shape[0]

    @property
    def NPh(self) -> int:
        return self.Dim - 1

    def get_nkv(self) -> int:
        return len(self.kv)

    def get_kv(self, dir: int) -> KnotVector:
        return self.kv[self._check_dir(dir, "get_kv")]

    def get_orders(self) -> list[int]:
        return [k.order for k in self.kv]

    def get_ncps(self) -> list[int]:
        return [k.ncp for k in self.kv]

    def copy(self) -> "NURBSPatch":
        return NURBSPatch(self.kv, self.Dim, self.ctrl_pts.copy())

    def _check_dir(self, dir, operation):
        if dir < 0 or dir >= len(self.kv):
            raise IndexError(
                f"NURBSPatch.{operation}: invalid direction {dir} for a patch with {len(self.kv)} directions !"
            )
        return dir

    # %% loop direction

    def set_loop_direction(self, dir: int) -> int:
        """
        Size of a slice transverse to direction `dir`: the number of reals of
        all the control points sharing one index along `dir`.
        """
        self._check_dir(dir, "set_loop_direction")
        return self.ctrl_pts.size // self.kv[dir].ncp

    def slices(self, dir: int) -> np.ndarray[np.floating]:
        """
        View the control net as a sequence of slices along direction `dir`.

        Returns
        -------
        P : np.ndarray[np.floating]
            Array of shape (`kv[dir].ncp`, `set_loop_direction(dir)`), row
            `k` gathering every control point whose index along `dir` is `k`.
        """
        ls = self.set_loop_direction(dir)
        return np.moveaxis(self.ctrl_pts, dir + 1, 0).reshape((self.kv[dir].ncp, ls))

    def _from_slices(self, dir, P):
        rest = np.moveaxis(self.ctrl_pts, dir + 1, 0).shape[1:]
        return np.moveaxis(P.reshape((P.shape[0], *rest)), 0, dir + 1)

    def _swap(self, dir, newkv, P):
        """
        Install a new knot vector along `dir` and the matching slices.
        """
        if newkv.ncp != P.shape[0]:
            raise ValueError(
                f"NURBSPatch: size mismatch, {P.shape[0]} slices for {newkv.ncp} control points !"
            )
        ctrl_pts = self._from_slices(dir, P)
        kv = list(self.kv)
        kv[dir] = newkv
        self.kv = kv
        self.ctrl_pts = np.ascontiguousarray(ctrl_pts)

    # %% refinement

    def uniform_refinement(self, rf: Union[int, Iterable[int]]):
        """
        Refine every element by the factor `rf`, per direction if an iterable
        is given. A factor of 1 leaves a direction untouched. Knot vectors
        carrying a spacing rule place the new knots according to it.
        """
        if np.isscalar(rf):
            rf = [rf] * len(self.kv)
        rf = list(rf)
        if len(rf) != len(self.kv):
            raise ValueError(
                f"NURBSPatch.uniform_refinement: {len(rf)} factors for {len(self.kv)} directions !"
            )
        for dir in range(len(self.kv)):
            if rf[dir] != 1:
                newknots = self.kv[dir].refinement(rf[dir])
                self.knot_insert(dir, newknots)

    def get_coarsening_factors(self) -> list[int]:
        return [k.get_coarsening_factor() for k in self.kv]

    def set_knot_vectors_coarse(self, c: bool):
        for k in self.kv:
            k.coarse = c

    def coarsen(self, cf: Union[int, Iterable[int]], tol: float = 1e-12, verbose: bool = True):
        """
        Undo a refinement by the factor `cf`, per direction if an iterable is
        given.

        Directions whose knot vector is already flagged `coarse` are skipped.
        The element count of each coarsened direction must be divisible by its
        factor.
        """
        if np.isscalar(cf):
            cf = [cf] * len(self.kv)
        cf = list(cf)
        for dir in range(len(self.kv)):
            if self.kv[dir].coarse:
                continue
            ne_fine = self.kv[dir].ne
            self.remove_knots(dir, self.kv[dir].get_fine_knots(cf[dir]), tol, verbose)
            kv = self.kv[dir]
            kv.coarse = True
            kv.get_elements()
            if ne_fine != cf[dir] * kv.ne:
                raise ValueError(
                    f"NURBSPatch.coarsen: direction {dir} went from {ne_fine} to {kv.ne} elements, not a factor {cf[dir]} !"
                )
            if kv.spacing is not None:
                kv.spacing.set_size(kv.ne)
                kv.spacing.scale_parameters(float(cf[dir]))

    def knot_insert(self, dir: int, knots: Union[KnotVector, Iterable[float]]):
        """
        Insert knots along direction `dir`.

        Parameters
        ----------
        dir : int
            Parametric direction.
        knots : Union[KnotVector, Iterable[float]]
            Either the knots to insert, or a target knot vector refining the
            current one. A target of higher order first elevates the degree;
            a target of lower order is an error. The knots to insert are then
            given by `KnotVector.difference`.

        Notes
        -----
        Algorithm A5.4 of "The NURBS Book" (Piegl and Tiller). Knots are
        processed from the largest to the smallest, a knot equal to an
        existing one copies the control point instead of blending.
        """
        self._check_dir(dir, "knot_insert")
        if isinstance(knots, KnotVector):
            t = knots.order - self.kv[dir].order
            if t < 0:
                raise ValueError(
                    f"NURBSPatch.knot_insert: target order {knots.order} is lower than the patch order {self.kv[dir].order} in direction {dir} !"
                )
            elevated = self.kv[dir].degree_elevate(t) if t > 0 else self.kv[dir]
            if not elevated.is_refined_by(knots):
                raise ValueError(
                    f"NURBSPatch.knot_insert: target knot vector does not contain the knots of direction {dir} !"
                )
            if t > 0:
                self.degree_elevate(t, dir)
            diff = self.kv[dir].difference(knots)
            if diff.size > 0:
                self._knot_insert(dir, diff)
        else:
            knots = np.sort(np.asarray(knots, dtype="float").ravel())
            if knots.size > 0:
                self._knot_insert(dir, knots)

    def knot_insert_all(self, newkv: Iterable[Union[KnotVector, Iterable[float]]]):
        """
        Apply `knot_insert` to every direction.
        """
        newkv = list(newkv)
        if len(newkv) != len(self.kv):
            raise ValueError(
                f"NURBSPatch.knot_insert_all: {len(newkv)} entries for {len(self.kv)} directions !"
            )
        for dir, knots in enumerate(newkv):
            self.knot_insert(dir, knots)

    def _knot_insert(self, dir, X):
        oldkv = self.kv[dir]
        p = oldkv.order
        U = oldkv.knot
        n = oldkv.ncp - 1
        m = n + p + 1
        if X[0] <= U[p] or X[-1] >= U[n + 1]:
            raise ValueError(
                f"NURBSPatch.knot_insert: knots must lie strictly inside ({U[p]}, {U[n + 1]}) in direction {dir} !"
            )
        r = X.size - 1
        P = self.slices(dir)
        Q = np.empty((n + r + 2, P.shape[1]))
        Ubar = np.empty(m + r + 2)
        a = oldkv.find_knot_span(X[0]) - 1
        b = oldkv.find_knot_span(X[r])
        Q[: a - p + 1] = P[: a - p + 1]
        Q[b + r : n + r + 2] = P[b - 1 : n + 1]
        Ubar[: a + 1] = U[: a + 1]
        Ubar[b + p + r + 1 :] = U[b + p :]
        i = b + p - 1
        k = b + p + r
        for j in range(r, -1, -1):
            while X[j] <= U[i] and i > a:
                Q[k - p - 1] = P[i - p - 1]
                Ubar[k] = U[i]
                k -= 1
                i -= 1
            Q[k - p - 1] = Q[k - p]
            for l in range(1, p + 1):
                ind = k - p + l
                alfa = Ubar[k + l] - X[j]
                if abs(alfa) == 0.0:
                    Q[ind - 1] = Q[ind]
                else:
                    alfa = alfa / (Ubar[k + l] - U[i - p + l])
                    Q[ind - 1] = alfa * Q[ind - 1] + (1.0 - alfa) * Q[ind]
            Ubar[k] = X[j]
            k -= 1
        newkv = KnotVector(p, Ubar)
        newkv.spacing = oldkv.spacing
        newkv.coarse = oldkv.coarse
        self._swap(dir, newkv, Q)

    def knot_remove(
        self, dir: int, knot: float, ntimes: int = 1, tol: float = 1e-12, verbose: bool = True
    ) -> KnotRemovalResult:
        """
        Remove an interior knot up to `ntimes` times along direction `dir`.

        Parameters
        ----------
        dir : int
            Parametric direction.
        knot : float
            Value of the knot to remove. It must be an interior knot of
            multiplicity at least `ntimes`.
        ntimes : int, optional
            Number of removals requested. By default, 1.
        tol : float, optional
            Maximum distance, in homogeneous coordinates, between the two
            candidate control points computed from both ends of the affected
            window. By default, 1e-12.
        verbose : bool, optional
            Print a message when fewer removals than requested succeed.
            By default, True.

        Returns
        -------
        KnotRemovalResult
            Number of removals performed, which is less than `ntimes` when a
            removal step exceeds `tol`. The successful removals are kept.

        Notes
        -----
        Algorithm A5.8 of "The NURBS Book" (Piegl and Tiller). The weights of
        the new control points are not checked and may be non-positive.
        """
        self._check_dir(dir, "knot_remove")
        oldkv = self.kv[dir]
        U = oldkv.knot
        p = oldkv.order
        n = oldkv.ncp - 1
        occurrences = np.flatnonzero(U == knot)
        s = occurrences.size
        r = occurrences[-1] if s > 0 else -1
        if not (p < r < n + 1) or ntimes > s or ntimes < 1:
            raise ValueError(
                f"NURBSPatch.knot_remove: only interior knots of sufficient multiplicity may be removed "
                f"(knot {knot}, multiplicity {s}, requested {ntimes}) in direction {dir} !"
            )
        Pw = self.slices(dir).copy()
        ordr = p + 1
        fout = (2 * r - s - p) // 2
        last = r - s
        first = r - p
        temp = np.empty((2 * p + 3, Pw.shape[1]))
        t = 0
        while t < ntimes:
            off = first - 1
            temp[0] = Pw[off]
            temp[last + 1 - off] = Pw[last + 1]
            i, j = first, last
            ii, jj = 1, last - off
            while j - i > t:
                alfi = (knot - U[i]) / (U[i + ordr + t] - U[i])
                alfj = (knot - U[j - t]) / (U[j + ordr] - U[j - t])
                temp[ii] = (Pw[i] - (1.0 - alfi) * temp[ii - 1]) / alfi
                temp[jj] = (Pw[j] - alfj * temp[jj + 1]) / (1.0 - alfj)
                i += 1
                ii += 1
                j -= 1
                jj -= 1
            if j - i < t:
                dist = np.linalg.norm(temp[ii - 1] - temp[jj + 1])
            else:
                alfi = (knot - U[i]) / (U[i + ordr + t] - U[i])
                dist = np.linalg.norm(Pw[i] - (alfi * temp[ii + t + 1] + (1.0 - alfi) * temp[ii - 1]))
            if dist > tol:
                break
            i, j = first, last
            while j - i > t:
                Pw[i] = temp[i - off]
                Pw[j] = temp[j - off]
                i += 1
                j -= 1
            first -= 1
            last += 1
            t += 1
        if t < ntimes and verbose:
            print(f"Knot removal failed after {t} successful removals")
        if t == 0:
            return KnotRemovalResult(0, ntimes)
        j = fout
        i = j
        for k in range(1, t):
            if k % 2 == 1:
                i += 1
            else:
                j -= 1
        Q = np.concatenate((Pw[:j], Pw[i + 1 :]), axis=0)
        newkv = KnotVector(p, np.delete(U, np.arange(r - t + 1, r + 1)))
        newkv.spacing = oldkv.spacing
        newkv.coarse = oldkv.coarse
        self._swap(dir, newkv, Q)
        return KnotRemovalResult(t, ntimes)

    def remove_knots(
        self, dir: int, knots: Iterable[float], tol: float = 1e-12, verbose: bool = True
    ) -> list[KnotRemovalResult]:
        """
        Remove each knot of `knots` once along direction `dir`.
        """
        return [self.knot_remove(dir, k, 1, tol, verbose) for k in np.asarray(knots, dtype="float").ravel()]

    def degree_elevate(self, t: int, dir: Union[int, None] = None):
        """
        Raise the degree by `t` along direction `dir`, or along every
        direction if `dir` is `None`.

        The geometry is unchanged. The multiplicity of every distinct knot
        grows by `t` so the continuity is preserved, and the number of control
        points along `dir` grows by `ne * t`.

        Notes
        -----
        Algorithm A5.9 of "The NURBS Book" (Piegl and Tiller): the curve is
        split into Bezier segments, each segment is elevated with the
        coefficients of `_bezier_alphas`, and the segments are linked back by
        removing the knots that the splitting introduced.
        """
        if dir is None:
            for d in range(len(self.kv)):
                self.degree_elevate(t, d)
            return
        self._check_dir(dir, "degree_elevate")
        if t < 0:
            raise ValueError(f"NURBSPatch.degree_elevate: can not decrease the degree (t={t}) !")
        if t == 0:
            return
        oldkv = self.kv[dir]
        oldkv.get_elements()
        Q, Uh = _degree_elevate_slices(self.slices(dir), oldkv.knot, oldkv.order, t, oldkv.ne)
        newkv = KnotVector(oldkv.order + t, Uh)
        newkv.spacing = oldkv.spacing
        newkv.coarse = oldkv.coarse
        self._swap(dir, newkv, Q)

    def make_uniform_degree(self, degree: int = -1) -> int:
        """
        Elevate every direction to `degree`, or to the largest degree of the
        patch when `degree` is -1.

        Returns
        -------
        int
            The common degree.
        """
        maxd = degree
        if maxd == -1:
            maxd = max(k.order for k in self.kv)
        for dir in range(len(self.kv)):
            if maxd > self.kv[dir].order:
                self.degree_elevate(maxd - self.kv[dir].order, dir)
        return maxd

    # %% rigid transforms

    def flip_direction(self, dir: int):
        """
        Reverse the parametrization along `dir`.
        """
        self._check_dir(dir, "flip_direction")
        newkv = self.kv[dir].copy()
        newkv.flip()
        self._swap(dir, newkv, self.slices(dir)[::-1].copy())

    def swap_directions(self, dir1: int, dir2: int):
        """
        Exchange the parametric directions `dir1` and `dir2`.

        Swapping the first and the third direction of a volume is not
        supported.
        """
        self._check_dir(dir1, "swap_directions")
        self._check_dir(dir2, "swap_directions")
        if abs(dir1 - dir2) == 2:
            raise ValueError("NURBSPatch.swap_directions: directions 0 and 2 are not supported !")
        kv = list(self.kv)
        kv[dir1], kv[dir2] = kv[dir2], kv[dir1]
        ctrl_pts = np.ascontiguousarray(np.swapaxes(self.ctrl_pts, dir1 + 1, dir2 + 1))
        self.kv = kv
        self.ctrl_pts = ctrl_pts

    @staticmethod
    def get_2d_rotation_matrix(angle: float) -> np.ndarray[np.floating]:
        s = np.sin(angle)
        c = np.cos(angle)
        return np.array([[c, -s], [s, c]])

    @staticmethod
    def get_3d_rotation_matrix(n: Iterable[float], angle: float, r: float = 1.0) -> np.ndarray[np.floating]:
        """
        Matrix of the rotation of `angle` around the axis `n`, scaled by `r`
        on the part orthogonal to the axis.

        Parameters
        ----------
        n : Iterable[float]
            Rotation axis, not necessarily normalized.
        angle : float
            Rotation angle in radians. The angles +-pi/2 and +-pi use exact
            sines and cosines.
        r : float, optional
            Scaling of the sine and cosine terms. By default, 1.

        Returns
        -------
        T : np.ndarray[np.floating]
            3x3 matrix.
        """
        n = np.asarray(n, dtype="float")
        l2 = n @ n
        if l2 <= 0.0:
            raise ValueError("NURBSPatch.get_3d_rotation_matrix: 3D rotation axis is undefined !")
        l = np.sqrt(l2)
        if abs(angle) == np.pi / 2:
            s = r * np.copysign(1.0, angle)
            c = 0.0
            c1 = -1.0
        elif abs(angle) == np.pi:
            s = 0.0
            c = -r
            c1 = c - 1.0
        else:
            s = r * np.sin(angle)
            c = r * np.cos(angle)
            c1 = c - 1.0
        n0, n1, n2 = n
        return np.array(
            [
                [(n0 * n0 + (n1 * n1 + n2 * n2) * c) / l2, -(n0 * n1 * c1) / l2 - (n2 * s) / l, -(n0 * n2 * c1) / l2 + (n1 * s) / l],
                [-(n0 * n1 * c1) / l2 + (n2 * s) / l, (n1 * n1 + (n0 * n0 + n2 * n2) * c) / l2, -(n1 * n2 * c1) / l2 - (n0 * s) / l],
                [-(n0 * n2 * c1) / l2 - (n1 * s) / l, -(n1 * n2 * c1) / l2 + (n0 * s) / l, (n2 * n2 + (n0 * n0 + n1 * n1) * c) / l2],
            ]
        )

    def rotate_2d(self, angle: float):
        if self.Dim != 3:
            raise ValueError("NURBSPatch.rotate_2d: not a NURBSPatch in 2D !")
        T = self.get_2d_rotation_matrix(angle)
        self.ctrl_pts[:2] = np.tensordot(T, self.ctrl_pts[:2], axes=1)

    def rotate_3d(self, n: Iterable[float], angle: float):
        if self.Dim != 4:
            raise ValueError("NURBSPatch.rotate_3d: not a NURBSPatch in 3D !")
        T = self.get_3d_rotation_matrix(n, angle)
        self.ctrl_pts[:3] = np.tensordot(T, self.ctrl_pts[:3], axes=1)

    def rotate(self, angle: float, n: Union[Iterable[float], None] = None):
        """
        Rotate a planar patch by `angle`, or a patch in 3D space by `angle`
        around the axis `n`.
        """
        if self.Dim == 3:
            self.rotate_2d(angle)
        else:
            if n is None:
                raise ValueError("NURBSPatch.rotate: specify an axis for a 3D rotation !")
            self.rotate_3d(n, angle)

    # %% evaluation

    def evaluate(self, XI: Iterable[Iterable[float]], k: Union[int, Iterable[int]] = 0) -> np.ndarray[np.floating]:
        """
        Evaluate the patch on a tensor grid of parameters.

        Parameters
        ----------
        XI : Iterable[Iterable[float]]
            One array of parameters per direction.
        k : Union[int, Iterable[int]], optional
            Derivative order per direction applied to the homogeneous
            coordinates before the projection. Only 0 gives the rational
            geometry. By default, 0.

        Returns
        -------
        values : np.ndarray[np.floating]
            Cartesian coordinates of shape (`NPh`, n_xi, n_eta, ...) when
            `k` is 0, homogeneous values of shape (`Dim`, ...) otherwise.
        """
        XI = [np.asarray(xi, dtype="float").ravel() for xi in XI]
        if len(XI) != len(self.kv):
            raise ValueError(
                f"NURBSPatch.evaluate: {len(XI)} parameter arrays for {len(self.kv)} directions !"
            )
        if np.isscalar(k):
            k = [k] * len(self.kv)
        values = self.ctrl_pts
        for dir, (xi, kd) in enumerate(zip(XI, k)):
            N = self.kv[dir].basis_matrix(xi, kd).toarray()
            values = np.moveaxis(np.tensordot(N, values, axes=([1], [dir + 1])), 0, dir + 1)
        if any(kd != 0 for kd in k):
            return values
        return values[:-1] / values[-1]

    def linspace(self, n_eval_per_elem: Union[int, Iterable[int]] = 10) -> tuple[np.ndarray[np.floating], ...]:
        if np.isscalar(n_eval_per_elem):
            n_eval_per_elem = [n_eval_per_elem] * len(self.kv)
        XI = []
        for kv, n in zip(self.kv, n_eval_per_elem):
            breakpoints = np.unique(kv.knot[kv.order : kv.ncp + 1])
            xi = [np.linspace(a, b, n, endpoint=False) for a, b in zip(breakpoints[:-1], breakpoints[1:])]
            XI.append(np.concatenate(xi + [breakpoints[-1:]]))
        return tuple(XI)

    def make_mesh(self, n_eval_per_elem: Union[int, Iterable[int]] = 10) -> io.Mesh:
        """
        Sample the patch into a meshio mesh of lines, quads or hexahedra.

        Parameters
        ----------
        n_eval_per_elem : Union[int, Iterable[int]], optional
            Number of samples per element along each direction. By default, 10.

        Returns
        -------
        io.Mesh
            Mesh of the sampled geometry.
        """
        XI = self.linspace(n_eval_per_elem)
        pts = self.evaluate(XI)
        shape = [xi.size for xi in XI]
        points = pts.reshape((self.NPh, -1), order="F").T
        if points.shape[1] < 3:
            points = np.hstack((points, np.zeros((points.shape[0], 3 - points.shape[1]))))
        inds = np.arange(np.prod(shape)).reshape(shape, order="F")
        if len(self.kv) == 1:
            cells = {"line": np.stack((inds[:-1], inds[1:]), axis=-1)}
        elif len(self.kv) == 2:
            quad = np.stack((inds[:-1, :-1], inds[1:, :-1], inds[1:, 1:], inds[:-1, 1:]), axis=-1)
            cells = {"quad": quad.reshape((-1, 4))}
        else:
            hexa = np.stack(
                (
                    inds[:-1, :-1, :-1], inds[1:, :-1, :-1], inds[1:, 1:, :-1], inds[:-1, 1:, :-1],
                    inds[:-1, :-1, 1:], inds[1:, :-1, 1:], inds[1:, 1:, 1:], inds[:-1, 1:, 1:],
                ),
                axis=-1,
            )
            cells = {"hexahedron": hexa.reshape((-1, 8))}
        return io.Mesh(points, cells)

    # %% input / output

    @classmethod
    def read(cls, tokens: TokenStream) -> "NURBSPatch":
        """
        Read a patch block: `knotvectors`, `dimension` then `controlpoints`,
        `controlpoints_homogeneous` or `controlpoints_cartesian`.
        """
        tokens.expect("knotvectors")
        pdim = tokens.next_int()
        kv = [KnotVector.read(tokens) for _ in range(pdim)]
        tokens.expect("dimension")
        dim = tokens.next_int()
        ident = tokens.expect("controlpoints", "controlpoints_homogeneous", "controlpoints_cartesian")
        size = int(np.prod([k.ncp for k in kv]))
        data = tokens.next_floats(size * (dim + 1)).reshape((size, dim + 1))
        if ident == "controlpoints_cartesian":
            data[:, :dim] *= data[:, dim : dim + 1]
        ctrl_pts = data.T.reshape((dim + 1, *[k.ncp for k in kv]), order="F")
        return cls(kv, dim + 1, ctrl_pts)

    def print(self, os: TextIO):
        os.write(f"knotvectors\n{len(self.kv)}\n")
        for k in self.kv:
            k.print(os)
        os.write(f"\ndimension\n{self.Dim - 1}\n\ncontrolpoints\n")
        for row in self.ctrl_pts.reshape((self.Dim, -1), order="F").T:
            os.write(" ".join(fmt_real(x) for x in row) + "\n")

    def to_dict(self) -> dict:
        """
        Returns a dictionary representation of the NURBSPatch object.
        """
        return {
            "kv": [k.to_dict() for k in self.kv],
            "Dim": self.Dim,
            "ctrl_pts": self.ctrl_pts.tolist(),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "NURBSPatch":
        """
        Creates a NURBSPatch object from a dictionary representation.
        """
        kv = [KnotVector.from_dict(k) for k in data["kv"]]
        this = cls(kv, data["Dim"], np.array(data["ctrl_pts"], dtype="float"))
        for k, d in zip(this.kv, data["kv"]):
            k.coarse = d.get("coarse", False)
        return this

    def save(self, filepath: str) -> None:
        """
        Save the NURBSPatch object to a file.
        Supported extensions: json, pkl
        """
        data = self.to_dict()
        ext = filepath.split(".")[-1]
        if ext == "json":
            with open(filepath, "w") as f:
                json.dump(data, f, indent=2)
        elif ext == "pkl":
            with open(filepath, "wb") as f:
                pickle.dump(data, f)
        else:
            raise ValueError(
                f"Unknown extension {ext}. Supported extensions: json, pkl."
            )

    @classmethod
    def load(cls, filepath: str) -> "NURBSPatch":
        """
        Load a NURBSPatch object from a file.
        Supported extensions: json, pkl
        """
        ext = filepath.split(".")[-1]
        if ext == "json":
            with open(filepath, "r") as f:
                data = json.load(f)
        elif ext == "pkl":
            with open(filepath, "rb") as f:
                data = pickle.load(f)
        else:
            raise ValueError(
                f"Unknown extension {ext}. Supported extensions: json, pkl."
            )
        return cls.from_dict(data)


def _bezier_alphas(p, t):
    """
    Coefficients elevating a Bezier segment of degree `p` to degree `p + t`.
    """
    ph = p + t
    bezalfs = np.zeros((ph + 1, p + 1))
    for i in range(ph + 1):
        inv = 1.0 / comb(ph, i, exact=True)
        for j in range(max(0, i - t), min(p, i) + 1):
            bezalfs[i, j] = inv * comb(p, j, exact=True) * comb(t, i - j, exact=True)
    return bezalfs


def _degree_elevate_slices(P, U, p, t, ne):
    """
    Degree elevation of the slices `P` of knot vector `U` by `t`.

    Returns
    -------
    Q : np.ndarray[np.floating]
        Elevated slices.
    Uh : np.ndarray[np.floating]
        Elevated knots.
    """
    ls = P.shape[1]
    n = P.shape[0] - 1
    m = n + p + 1
    ph = p + t
    nh = n + 1 + ne * t
    bezalfs = _bezier_alphas(p, t)
    Q = np.zeros((nh, ls))
    Uh = np.zeros(nh + ph + 1)
    bpts = P[: p + 1].copy()
    ebpts = np.zeros((ph + 1, ls))
    nextbpts = np.zeros((max(p - 1, 0), ls))
    alphas = np.zeros(max(p - 1, 0))
    kind = ph + 1
    r = -1
    a = p
    b = p + 1
    cind = 1
    ua = U[0]
    Q[0] = P[0]
    Uh[: ph + 1] = ua
    while b < m:
        i = b
        while b < m and U[b] == U[b + 1]:
            b += 1
        mul = b - i + 1
        ub = U[b]
        oldr = r
        r = p - mul
        lbz = (oldr + 2) // 2 if oldr > 0 else 1
        rbz = ph - (r + 1) // 2 if r > 0 else ph
        if r > 0:
            # insert ub r times to close the Bezier segment
            numer = ub - ua
            for k in range(p, mul, -1):
                alphas[k - mul - 1] = numer / (U[a + k] - ua)
            for j in range(1, r + 1):
                save = r - j
                s = mul + j
                for k in range(p, s - 1, -1):
                    bpts[k] = alphas[k - s] * bpts[k] + (1.0 - alphas[k - s]) * bpts[k - 1]
                nextbpts[save] = bpts[p]
        for i in range(lbz, ph + 1):
            ebpts[i] = 0.0
            for j in range(max(0, i - t), min(p, i) + 1):
                ebpts[i] += bezalfs[i, j] * bpts[j]
        if oldr > 1:
            # remove ua oldr times
            first = kind - 2
            last = kind
            den = ub - ua
            bet = (ub - Uh[kind - 1]) / den
            for tr in range(1, oldr):
                i = first
                j = last
                kj = j - kind + 1
                while j - i > tr:
                    if i < cind:
                        alf = (ub - Uh[i]) / (ua - Uh[i])
                        Q[i] = alf * Q[i] + (1.0 - alf) * Q[i - 1]
                    if j >= lbz:
                        if j - tr <= kind - ph + oldr:
                            gam = (ub - Uh[j - tr]) / den
                            ebpts[kj] = gam * ebpts[kj] + (1.0 - gam) * ebpts[kj + 1]
                        else:
                            ebpts[kj] = bet * ebpts[kj] + (1.0 - bet) * ebpts[kj + 1]
                    i += 1
                    j -= 1
                    kj -= 1
                first -= 1
                last += 1
        if a != p:
            for i in range(ph - oldr):
                Uh[kind] = ua
                kind += 1
        for j in range(lbz, rbz + 1):
            Q[cind] = ebpts[j]
            cind += 1
        if b < m:
            bpts[:r] = nextbpts[:r]
            bpts[r : p + 1] = P[b - p + r : b + 1]
            a = b
            b += 1
            ua = ub
        else:
            Uh[kind : kind + ph + 1] = ub
    return Q, Uh


def interpolate(p1: NURBSPatch, p2: NURBSPatch) -> NURBSPatch:
    """
    Patch of one more direction blending linearly `p1` into `p2`.

    Both patches are first brought to common degrees and knot vectors in
    every direction, on copies. The new last direction has the knot vector
    [0, 0, 1, 1]: its first layer of control points is `p1`, its second `p2`.

    Parameters
    ----------
    p1 : NURBSPatch
        Patch at parameter 0 of the new direction.
    p2 : NURBSPatch
        Patch at parameter 1 of the new direction.

    Returns
    -------
    NURBSPatch
        The blended patch.
    """
    if p1.NPa != p2.NPa or p1.Dim != p2.Dim:
        raise ValueError(
            f"interpolate: patches must share their number of directions and dimension "
            f"({p1.NPa}, {p1.Dim}) != ({p2.NPa}, {p2.Dim}) !"
        )
    if p1.NPa == 3:
        raise ValueError("interpolate: can not add a fourth direction to a volume patch !")
    p1 = p1.copy()
    p2 = p2.copy()
    for dir in range(p1.NPa):
        order = max(p1.kv[dir].order, p2.kv[dir].order)
        p1.degree_elevate(order - p1.kv[dir].order, dir)
        p2.degree_elevate(order - p2.kv[dir].order, dir)
        union = _knot_union(p1.kv[dir].knot, p2.kv[dir].knot)
        target = KnotVector(order, union)
        p1.knot_insert(dir, target)
        p2.knot_insert(dir, target)
    kv = p1.kv + [KnotVector(1, [0.0, 0.0, 1.0, 1.0])]
    ctrl_pts = np.stack((p1.ctrl_pts, p2.ctrl_pts), axis=-1)
    return NURBSPatch(kv, p1.Dim, ctrl_pts)


def _knot_union(k1, k2):
    values = np.union1d(k1, k2)
    counts = np.maximum(
        np.array([np.count_nonzero(k1 == v) for v in values]),
        np.array([np.count_nonzero(k2 == v) for v in values]),
    )
    return np.repeat(values, counts)


def revolve_3d(patch: NURBSPatch, n: Iterable[float], ang: float, times: int) -> NURBSPatch:
    """
    Sweep a patch in 3D space around the axis `n`.

    The sweep adds a last direction of degree 2 made of `times` rational
    circular arcs of angle `ang` each. Each arc has a middle control point
    rotated by `ang / 2`, pushed outward by `1 / cos(ang / 2)` and weighted by
    `cos(ang / 2)`, so the swept surface is exactly circular.

    Parameters
    ----------
    patch : NURBSPatch
        Patch to revolve, in 3D space.
    n : Iterable[float]
        Rotation axis through the origin.
    ang : float
        Angle of one arc, in radians, less than pi.
    times : int
        Number of arcs.

    Returns
    -------
    NURBSPatch
        The revolved patch.
    """
    if patch.Dim != 4:
        raise ValueError("revolve_3d: the patch must live in 3D space !")
    if patch.NPa == 3:
        raise ValueError("revolve_3d: can not revolve a volume patch !")
    if times < 1:
        raise ValueError(f"revolve_3d: at least one arc is needed, got {times} !")
    ns = 2 * times + 1
    lkv = np.empty(ns + 3)
    lkv[:3] = 0.0
    for i in range(1, times):
        lkv[2 * i + 1] = lkv[2 * i + 2] = i
    lkv[ns:] = times
    T = NURBSPatch.get_3d_rotation_matrix(n, ang, 1.0)
    c = np.cos(ang / 2)
    T2 = c * NURBSPatch.get_3d_rotation_matrix(n, ang / 2, 1.0 / c)
    layers = [patch.ctrl_pts]
    u = patch.ctrl_pts
    for _ in range(times):
        mid = np.empty_like(u)
        mid[:3] = np.tensordot(T2, u[:3], axes=1)
        mid[3] = c * u[3]
        nxt = np.empty_like(u)
        nxt[:3] = np.tensordot(T, u[:3], axes=1)
        nxt[3] = u[3]
        layers += [mid, nxt]
        u = nxt
    return NURBSPatch(patch.kv + [KnotVector(2, lkv)], 4, np.stack(layers, axis=-1))
