from typing import Iterable, TextIO, Union
import json, pickle
import numpy as np
import numba as nb
import scipy.sparse as sps
from scipy.linalg import lapack
import matplotlib.pyplot as plt

from .spacing import SpacingFunction, get_spacing_function
from .text_io import TokenStream, fmt_real


KNOT_TOL = 2 * np.finfo("float").eps


class KnotVector:
    """
    Open knot vector of a one-dimensional B-spline basis.

    The knot vector is the atomic unit of every B-spline computation of the
    package: it evaluates the `order + 1` non-zero basis functions on a knot
    span, counts the elements, and produces the knots to insert for a
    refinement or the new knot vector of a degree elevation.

    Attributes
    ----------
    order : int
        Polynomial degree of the basis.
    knot : np.ndarray[np.floating]
        Non-decreasing knots, of size `ncp + order + 1`.
    ncp : int
        Number of control points (basis functions).
    ne : int
        Number of elements, i.e. of non-degenerate knot spans.
    coarse : bool
        Marks a knot vector that has already been coarsened so that two patches
        sharing it do not coarsen it twice.
    spacing : Union[SpacingFunction, None]
        Optional rule used to place the knots of a refinement.

    Notes
    -----
    Knot spans are indexed from 0 to `ncp - order - 1`: span `i` is the
    interval [`knot[order + i]`, `knot[order + i + 1]`]. A span of zero length
    is not an element, see `is_element`.
    """

    MAX_ORDER = 10

    order: int
    knot: np.ndarray[np.floating]
    ncp: int
    ne: int
    coarse: bool
    spacing: Union[SpacingFunction, None]

    def __init__(self, order: int, knot: Iterable[float]):
        """
        Initialize a knot vector from its order and its knots.

        Parameters
        ----------
        order : int
            Polynomial degree of the basis.
        knot : Iterable[float]
            Non-decreasing sequence of knots. Its size must be at least
            `2*(order + 1)`.

        Examples
        --------
        >>> kv = KnotVector(2, [0., 0., 0., 0.5, 1., 1., 1.])
        >>> kv.ncp, kv.ne
        (4, 2)
        """
        if order < 0:
            raise ValueError(f"KnotVector: negative order {order} !")
        self.order = int(order)
        self.knot = np.array(knot, dtype="float")
        if self.knot.ndim != 1 or self.knot.size < self.order + 2:
            raise ValueError(
                f"KnotVector: {self.knot.size} knots are not enough for order {self.order} !"
            )
        if np.any(np.diff(self.knot) < 0):
            raise ValueError("KnotVector: knots must be non-decreasing !")
        self.ncp = self.knot.size - self.order - 1
        self.coarse = False
        self.spacing = None
        self._fact = None
        self.get_elements()

    @classmethod
    def empty(cls, order: int, ncp: int) -> "KnotVector":
        """
        Knot vector of the given size whose knots are all set to -1.
        """
        return cls(order, -np.ones(ncp + order + 1))

    @classmethod
    def from_continuity(
        cls, order: int, intervals: Iterable[float], continuity: Iterable[int]
    ) -> "KnotVector":
        """
        Build a knot vector from interval lengths and the continuity at each
        breakpoint.

        Parameters
        ----------
        order : int
            Polynomial degree of the basis.
        intervals : Iterable[float]
            Lengths of the successive intervals, the first breakpoint is 0.
        continuity : Iterable[int]
            Continuity at each of the `len(intervals) + 1` breakpoints. The
            multiplicity of a breakpoint is `order - continuity`, so -1 gives
            an open end.

        Returns
        -------
        KnotVector
            The knot vector.

        Examples
        --------
        >>> KnotVector.from_continuity(2, [0.5, 0.5], [-1, 1, -1]).knot
        array([0. , 0. , 0. , 0.5, 1. , 1. , 1. ])
        """
        intervals = np.asarray(intervals, dtype="float")
        continuity = np.asarray(continuity, dtype=int)
        if continuity.size != intervals.size + 1:
            raise ValueError(
                "KnotVector.from_continuity: incompatible sizes of continuity and intervals !"
            )
        multiplicity = order - continuity
        if np.any(multiplicity < 1) or np.any(multiplicity > order + 1):
            raise ValueError(
                f"KnotVector.from_continuity: invalid continuity {continuity.tolist()} for order {order} !"
            )
        breakpoints = np.concatenate(([0.0], np.cumsum(intervals)))
        return cls(order, np.repeat(breakpoints, multiplicity))

    def copy(self) -> "KnotVector":
        other = KnotVector(self.order, self.knot.copy())
        other.coarse = self.coarse
        if self.spacing is not None:
            other.spacing = self.spacing.copy()
        return other

    def __len__(self):
        return self.knot.size

    def __getitem__(self, i):
        return self.knot[i]

    def __repr__(self):
        return f"KnotVector({self.order}, {self.knot.tolist()})"

    def same_knots(self, other: "KnotVector") -> bool:
        """
        Whether `other` has the same order and exactly the same knots.
        """
        return (
            self.order == other.order
            and self.knot.size == other.knot.size
            and bool(np.all(self.knot == other.knot))
        )

    # %% elements

    def get_elements(self):
        """
        Count the elements and cache which knot intervals are degenerate.
        """
        self._elem_mask = self.knot[1:] != self.knot[:-1]
        self.ne = int(np.count_nonzero(self._elem_mask[self.order : self.ncp]))

    def get_nks(self) -> int:
        """
        Number of knot spans, degenerate ones included.
        """
        return self.ncp - self.order

    def is_element(self, i: int) -> bool:
        """
        Whether knot span `i` has a non-zero length.
        """
        k = self.order + i
        if k < 0 or k >= self._elem_mask.size:
            return False
        return bool(self._elem_mask[k])

    def get_knot_location(self, xi: float, ni: int) -> float:
        """
        Map the local coordinate `xi` in [0, 1] of the interval starting at
        knot index `ni` to the parametric space.
        """
        return (self.knot[ni + 1] - self.knot[ni]) * xi + self.knot[ni]

    def find_knot_span(self, u: float) -> int:
        """
        Binary search of the knot interval containing `u`.

        Parameters
        ----------
        u : float
            Parameter in [`knot[order]`, `knot[ncp]`].

        Returns
        -------
        m : int
            Index such that `knot[m - 1] <= u < knot[m]`. The right end of the
            parametric domain belongs to the last span, for which `m = ncp`.
        """
        return _find_knot_span(self.order, self.ncp, self.knot, float(u))

    # %% basis evaluation

    def _span_location(self, i, xi, flipped):
        if i < 0 or i >= self.get_nks():
            raise IndexError(
                f"KnotVector: span index {i} out of range [0, {self.get_nks()}) !"
            )
        if self.order > self.MAX_ORDER:
            raise ValueError(
                f"KnotVector: order {self.order} exceeds the maximum order {self.MAX_ORDER} !"
            )
        ip = i + self.order
        u = self.get_knot_location(1.0 - xi if flipped else xi, ip)
        h = self.knot[ip + 1] - self.knot[ip]
        return ip, u, (-h if flipped else h)

    def calc_shape(self, i: int, xi: float, flipped: bool = False) -> np.ndarray[np.floating]:
        """
        Evaluate the `order + 1` basis functions that do not vanish on a span.

        Parameters
        ----------
        i : int
            Knot span index.
        xi : float
            Local coordinate in [0, 1] on the span.
        flipped : bool, optional
            If `True`, the span is walked backwards: `xi` is replaced by
            `1 - xi`. This evaluates a flipped direction without building the
            flipped knot vector. By default, False.

        Returns
        -------
        shape : np.ndarray[np.floating]
            Values of the basis functions `i, ..., i + order`.

        Notes
        -----
        Algorithm A2.2 of "The NURBS Book" (Piegl and Tiller).

        Examples
        --------
        >>> kv = KnotVector(2, [0., 0., 0., 1., 1., 1.])
        >>> kv.calc_shape(0, 0.5)
        array([0.25, 0.5 , 0.25])
        """
        ip, u, _ = self._span_location(i, xi, flipped)
        return _calc_shape(self.order, self.knot, ip, u)

    def calc_dshape(self, i: int, xi: float, flipped: bool = False) -> np.ndarray[np.floating]:
        """
        First derivative of the basis functions of span `i` with respect to
        the local coordinate `xi`. See `calc_shape`.
        """
        return self.calc_dnshape(1, i, xi, flipped)

    def calc_d2shape(self, i: int, xi: float, flipped: bool = False) -> np.ndarray[np.floating]:
        return self.calc_dnshape(2, i, xi, flipped)

    def calc_dnshape(
        self, n: int, i: int, xi: float, flipped: bool = False
    ) -> np.ndarray[np.floating]:
        """
        `n`-th derivative of the basis functions of span `i` with respect to
        the local coordinate `xi`.

        Parameters
        ----------
        n : int
            Derivative order, non-negative.
        i : int
            Knot span index.
        xi : float
            Local coordinate in [0, 1] on the span.
        flipped : bool, optional
            Walk the span backwards, see `calc_shape`. By default, False.

        Returns
        -------
        gradn : np.ndarray[np.floating]
            Derivatives of the basis functions `i, ..., i + order`. Derivatives
            of order greater than `order` are zero.

        Notes
        -----
        Algorithm A2.3 of "The NURBS Book" (Piegl and Tiller), scaled by the
        span length to the power `n` since the derivative is taken with
        respect to the local coordinate.
        """
        if n < 0:
            raise ValueError(f"KnotVector.calc_dnshape: negative derivative order {n} !")
        ip, u, h = self._span_location(i, xi, flipped)
        if n == 0:
            return _calc_shape(self.order, self.knot, ip, u)
        if n > self.order:
            return np.zeros(self.order + 1)
        ders = _ders_basis_funs(self.order, self.knot, ip, u, n)
        return ders[n] * h**n

    def basis_matrix(self, XI: Iterable[float], k: int = 0) -> sps.coo_matrix:
        """
        Evaluate the `k`-th derivative of every basis function at the
        parameters `XI`, with respect to the parameter.

        Parameters
        ----------
        XI : Iterable[float]
            Parameters in [`knot[order]`, `knot[ncp]`].
        k : int, optional
            Derivative order. By default, 0.

        Returns
        -------
        DN : sps.coo_matrix
            Sparse matrix of shape (`len(XI)`, `ncp`).
        """
        XI = np.asarray(XI, dtype=np.float64).ravel()
        vals, row, col = _basis_matrix(self.order, self.ncp, self.knot, XI, k)
        return sps.coo_matrix((vals, (row, col)), shape=(XI.size, self.ncp))

    # %% refinement

    def degree_elevate(self, t: int) -> "KnotVector":
        """
        Knot vector of the basis elevated by `t` degrees.

        Every distinct knot value sees its multiplicity increased by `t`, so
        the end knots get multiplicity `order + t + 1` and the number of
        control points grows by `ne * t`. The continuity at interior knots is
        preserved.

        Parameters
        ----------
        t : int
            Degree increment, non-negative.

        Returns
        -------
        KnotVector
            The new knot vector, the instance is left untouched.
        """
        if t < 0:
            raise ValueError(
                f"KnotVector.degree_elevate: parent order {self.order} is higher than child order {self.order + t} !"
            )
        unique = np.unique(self.knot)
        newkv = KnotVector(self.order + t, np.sort(np.concatenate((self.knot, np.repeat(unique, t)))))
        if self.spacing is not None:
            newkv.spacing = self.spacing.copy()
        return newkv

    def uniform_refinement(self, rf: int) -> np.ndarray[np.floating]:
        """
        Knots dividing every element into `rf` equal parts.

        Returns
        -------
        newknots : np.ndarray[np.floating]
            The `ne * (rf - 1)` knots to insert, in ascending order.
        """
        if rf < 2:
            raise ValueError(f"KnotVector.uniform_refinement: refinement factor {rf} must be at least 2 !")
        h = 1.0 / rf
        m = np.arange(1, rf)
        a = self.knot[:-1][self._elem_mask]
        b = self.knot[1:][self._elem_mask]
        return ((1.0 - m * h)[None, :] * a[:, None] + (m * h)[None, :] * b[:, None]).ravel()

    def refinement(self, rf: int) -> np.ndarray[np.floating]:
        """
        Knots to insert for a refinement by the factor `rf`.

        Without a spacing rule this is `uniform_refinement`. With one, the rule
        is rescaled to `rf * ne` intervals and the new knots are placed by
        accumulating its fractions over the whole knot vector. The coarse knots
        are never moved.

        Returns
        -------
        newknots : np.ndarray[np.floating]
            The `ne * (rf - 1)` knots to insert.
        """
        if rf < 2:
            raise ValueError(f"KnotVector.refinement: refinement factor {rf} must be at least 2 !")
        if self.spacing is None:
            return self.uniform_refinement(rf)
        self.spacing.scale_parameters(1.0 / rf)
        self.spacing.set_size(rf * self.ne)
        s = self.spacing.eval_all()
        k0 = self.knot[0]
        k1 = self.knot[-1]
        newknots = np.empty((rf - 1) * self.ne)
        s0 = 0.0
        for i in range(self.ne):
            s0 += s[rf * i]
            for j in range(rf - 1):
                newknots[(rf - 1) * i + j] = (1.0 - s0) * k0 + s0 * k1
                s0 += s[rf * i + j + 1]
        return newknots

    def get_coarsening_factor(self) -> int:
        """
        Factor by which a non-nested spacing refined this knot vector, 1 when
        there is nothing to undo.
        """
        if self.spacing is None or self.spacing.nested():
            return 1
        return self.spacing.size()

    def get_fine_knots(self, cf: int) -> np.ndarray[np.floating]:
        """
        Knots that a coarsening by the factor `cf` removes.

        The elements are grouped by `cf` consecutive ones. Inside each group,
        the `cf - 1` interior breakpoints are returned.

        Parameters
        ----------
        cf : int
            Coarsening factor, `ne` must be a multiple of it.

        Returns
        -------
        fine : np.ndarray[np.floating]
            Knots to remove, empty when `cf < 2`.
        """
        if cf < 2:
            return np.empty(0)
        cne = self.ne // cf
        if cne <= 0 or cne * cf != self.ne:
            raise ValueError(
                f"KnotVector.get_fine_knots: invalid coarsening factor {cf} for {self.ne} elements !"
            )
        breakpoints = np.unique(self.knot[self.order : self.ncp + 1])
        return breakpoints[1:].reshape((cne, cf))[:, : cf - 1].ravel()

    def difference(self, kv: "KnotVector") -> np.ndarray[np.floating]:
        """
        Knots of the larger of the two knot vectors missing from the smaller.

        Parameters
        ----------
        kv : KnotVector
            Knot vector of the same order. The roles are swapped when it is the
            smaller one, so the result does not depend on the call order.

        Returns
        -------
        diff : np.ndarray[np.floating]
            Missing knots in ascending order. Two knots closer than
            `2 * machine epsilon` are considered equal.

        Examples
        --------
        >>> kv1 = KnotVector(1, [0., 0., 1., 1.])
        >>> kv2 = KnotVector(1, [0., 0., 0.5, 1., 1.])
        >>> kv1.difference(kv2)
        array([0.5])
        """
        if self.order != kv.order:
            raise ValueError(
                f"KnotVector.difference: can not compare knot vectors with different orders ({self.order} != {kv.order}) !"
            )
        small, large = (self.knot, kv.knot) if kv.knot.size >= self.knot.size else (kv.knot, self.knot)
        s = large.size - small.size
        if s == 0:
            return np.empty(0)
        diff = []
        i = 0
        for k in large:
            if i < small.size and abs(small[i] - k) < KNOT_TOL:
                i += 1
            else:
                diff.append(k)
        return np.array(diff, dtype="float")

    def is_refined_by(self, kv: "KnotVector") -> bool:
        """
        Whether every knot of this vector, counted with its multiplicity, is
        also a knot of `kv` (within `2 * machine epsilon`).
        """
        if self.order != kv.order or kv.knot.size < self.knot.size:
            return False
        i = 0
        for k in kv.knot:
            if i < self.knot.size and abs(self.knot[i] - k) < KNOT_TOL:
                i += 1
        return i == self.knot.size

    def flip(self):
        """
        Reverse the knot vector in place: `u -> (a + b) - u` with `a` and `b`
        the end knots.
        """
        apb = self.knot[0] + self.knot[-1]
        interior = self.knot[self.order + 1 : self.ncp].copy()
        self.knot[self.order + 1 : self.ncp] = apb - interior[::-1]
        if self.spacing is not None:
            self.spacing.reverse = not self.spacing.reverse
        self.get_elements()

    # %% interpolation

    def find_maxima(self) -> tuple[np.ndarray[np.integer], np.ndarray[np.floating], np.ndarray[np.floating]]:
        """
        Locate where every basis function reaches its maximum.

        Returns
        -------
        ks : np.ndarray[np.integer]
            Knot span of each maximum.
        xi : np.ndarray[np.floating]
            Local coordinate of each maximum on its span.
        u : np.ndarray[np.floating]
            Parameter of each maximum.

        Notes
        -----
        On each span of its support, the maximum of a basis function is
        bracketed by the span ends and the bracket is bisected toward the
        larger end value until the midpoint stops improving.
        """
        ks = np.zeros(self.ncp, dtype=int)
        xi = np.zeros(self.ncp)
        u = np.zeros(self.ncp)
        maxima = np.zeros(self.ncp)
        for j in range(self.ncp):
            for d in range(self.order + 1):
                i = j - d
                if not (0 <= i < self.get_nks() and self.is_element(i)):
                    continue
                ip = i + self.order
                arg1 = np.finfo("float").eps / 2
                max1 = _calc_shape(self.order, self.knot, ip, self.get_knot_location(arg1, ip))[d]
                arg2 = 1.0 - arg1
                max2 = _calc_shape(self.order, self.knot, ip, self.get_knot_location(arg2, ip))[d]
                arg = (arg1 + arg2) / 2
                fmax = _calc_shape(self.order, self.knot, ip, self.get_knot_location(arg, ip))[d]
                while fmax > max1 or fmax > max2:
                    if max1 < max2:
                        max1, arg1 = fmax, arg
                    else:
                        max2, arg2 = fmax, arg
                    arg = (arg1 + arg2) / 2
                    fmax = _calc_shape(self.order, self.knot, ip, self.get_knot_location(arg, ip))[d]
                if fmax > maxima[j]:
                    maxima[j] = fmax
                    ks[j] = i
                    xi[j] = arg
                    u[j] = self.get_knot_location(arg, ip)
        return ks, xi, u

    def find_interpolant(self, x: np.ndarray[np.floating], reuse_inverse: bool = False) -> np.ndarray[np.floating]:
        """
        Control values of the spline interpolating `x` at the maxima of the
        basis functions.

        Parameters
        ----------
        x : np.ndarray[np.floating]
            Values at the collocation points, of shape (`ncp`,) or
            (`ncp`, number of right hand sides).
        reuse_inverse : bool, optional
            Reuse the banded LU factorisation of the previous call on this knot
            vector. By default, False.

        Returns
        -------
        c : np.ndarray[np.floating]
            Control values, same shape as `x`.

        Notes
        -----
        Algorithm A9.1 of "The NURBS Book". The collocation matrix is stored
        in LAPACK band format, its bandwidth follows from the support of the
        basis functions.
        """
        x = np.asarray(x, dtype="float")
        if x.shape[0] != self.ncp:
            raise ValueError(
                f"KnotVector.find_interpolant: {x.shape[0]} values given for {self.ncp} control points !"
            )
        if not reuse_inverse or self._fact is None:
            ks, xi, _ = self.find_maxima()
            cols = ks[:, None] + np.arange(self.order + 1)[None, :]
            offsets = cols - np.arange(self.ncp)[:, None]
            kl = max(0, int(-offsets.min()))
            ku = max(0, int(offsets.max()))
            ab = np.zeros((2 * kl + ku + 1, self.ncp))
            for i in range(self.ncp):
                shape = self.calc_shape(ks[i], xi[i])
                for p in range(self.order + 1):
                    j = ks[i] + p
                    ab[kl + ku + i - j, j] = shape[p]
            lu, piv, info = lapack.dgbtrf(ab, kl, ku)
            if info != 0:
                raise ValueError(
                    f"KnotVector.find_interpolant: singular collocation matrix (info={info}) !"
                )
            self._fact = (lu, piv, kl, ku)
        lu, piv, kl, ku = self._fact
        b = x.reshape((self.ncp, -1))
        c, info = lapack.dgbtrs(lu, kl, ku, b, piv)
        if info != 0:
            raise ValueError(f"KnotVector.find_interpolant: banded solve failed (info={info}) !")
        return c.reshape(x.shape)

    # %% input / output

    @classmethod
    def read(cls, tokens: TokenStream) -> "KnotVector":
        """
        Read `<order> <ncp> <knot_0> ... <knot_{order + ncp}>`.
        """
        order = tokens.next_int()
        ncp = tokens.next_int()
        return cls(order, tokens.next_floats(ncp + order + 1))

    def print(self, os: TextIO):
        os.write(f"{self.order} {self.ncp} " + " ".join(fmt_real(k) for k in self.knot) + "\n")

    def print_functions(self, os: TextIO, samples: int = 11):
        """
        Write a table of the basis functions and their first two derivatives.

        Each line holds `x + e` for the local coordinate `x` on element `e`,
        then the values, the first and the second derivatives of the
        `order + 1` functions of that element.
        """
        dx = 1.0 / (samples - 1)
        e = 0
        for i in range(self.get_nks()):
            if not self.is_element(i):
                continue
            for j in range(samples):
                x = j * dx
                values = np.concatenate(
                    (self.calc_shape(i, x), self.calc_dshape(i, x), self.calc_d2shape(i, x))
                )
                os.write(fmt_real(x + e) + "".join("\t" + fmt_real(v) for v in values) + "\n")
            e += 1

    def to_dict(self) -> dict:
        """
        Returns a dictionary representation of the KnotVector object.
        """
        data = {"order": self.order, "knot": self.knot.tolist(), "coarse": self.coarse}
        if self.spacing is not None:
            data["spacing"] = {
                "type": self.spacing.type_code,
                "ipar": self.spacing.int_params(),
                "dpar": self.spacing.real_params(),
            }
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "KnotVector":
        """
        Creates a KnotVector object from a dictionary representation.
        """
        this = cls(data["order"], data["knot"])
        this.coarse = data.get("coarse", False)
        if "spacing" in data:
            sp = data["spacing"]
            this.spacing = get_spacing_function(sp["type"], sp["ipar"], sp["dpar"])
        return this

    def save(self, filepath: str) -> None:
        """
        Save the KnotVector object to a file.
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
    def load(cls, filepath: str) -> "KnotVector":
        """
        Load a KnotVector object from a file.
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

    def plot_functions(self, k: int = 0, show: bool = True):
        """
        Plot the basis functions, or their `k`-th derivative, with matplotlib.

        Parameters
        ----------
        k : int, optional
            Derivative order. By default, 0.
        show : bool, optional
            Whether to display the plot immediately. By default, True.
        """
        n_eval_per_elem = max(2, 500 // max(1, self.ne))
        a, b = self.knot[self.order], self.knot[self.ncp]
        breakpoints = np.unique(self.knot[self.order : self.ncp + 1])
        XI = np.concatenate(
            [np.linspace(l, r, n_eval_per_elem, endpoint=False) for l, r in zip(breakpoints[:-1], breakpoints[1:])]
            + [[b]]
        )
        DN = self.basis_matrix(XI, k).toarray()
        for idx in range(self.ncp):
            support = DN[:, idx] != 0
            label = "$N_{" + str(idx) + "}" + ("'" * k) + "(\\xi)$"
            plt.plot(XI[support], DN[support, idx], label=label)
        plt.xlim(a, b)
        plt.xlabel("$\\xi$")
        if self.ncp <= 10:
            plt.legend(loc="center left", bbox_to_anchor=(1, 0.5))
        if show:
            plt.show()


# %% fast functions for evaluation


@nb.njit(nb.int64(nb.int64, nb.int64, nb.float64[:], nb.float64), cache=True)
def _find_knot_span(p, ncp, knot, u):
    """
    Return `m` with `knot[m - 1] <= u < knot[m]`, `m = ncp` at the right end.
    """
    if u < knot[p] or u > knot[ncp]:
        raise ValueError("u is outside the definition interval of the knot vector !")
    if u >= knot[ncp]:
        return ncp
    low = p
    high = ncp
    mid = (low + high) // 2
    while u < knot[mid] or u >= knot[mid + 1]:
        if u < knot[mid]:
            high = mid
        else:
            low = mid
        mid = (low + high) // 2
    return mid + 1


@nb.njit(nb.float64[:](nb.int64, nb.float64[:], nb.int64, nb.float64), cache=True)
def _calc_shape(p, knot, ip, u):
    """
    Non-vanishing basis functions on [`knot[ip]`, `knot[ip + 1]`] at `u`.
    """
    shape = np.empty(p + 1)
    left = np.empty(p + 1)
    right = np.empty(p + 1)
    shape[0] = 1.0
    for j in range(1, p + 1):
        left[j] = u - knot[ip + 1 - j]
        right[j] = knot[ip + j] - u
        saved = 0.0
        for r in range(j):
            tmp = shape[r] / (right[r + 1] + left[j - r])
            shape[r] = saved + right[r + 1] * tmp
            saved = left[j - r] * tmp
        shape[j] = saved
    return shape


@nb.njit(nb.float64[:, :](nb.int64, nb.float64[:], nb.int64, nb.float64, nb.int64), cache=True)
def _ders_basis_funs(p, knot, ip, u, n):
    """
    Derivatives up to order `n <= p` of the non-vanishing basis functions on
    [`knot[ip]`, `knot[ip + 1]`] at `u`, with respect to `u`.
    """
    ndu = np.empty((p + 1, p + 1))
    left = np.empty(p + 1)
    right = np.empty(p + 1)
    ndu[0, 0] = 1.0
    for j in range(1, p + 1):
        left[j] = u - knot[ip + 1 - j]
        right[j] = knot[ip + j] - u
        saved = 0.0
        for r in range(j):
            ndu[j, r] = right[r + 1] + left[j - r]
            temp = ndu[r, j - 1] / ndu[j, r]
            ndu[r, j] = saved + right[r + 1] * temp
            saved = left[j - r] * temp
        ndu[j, j] = saved
    ders = np.zeros((n + 1, p + 1))
    for j in range(p + 1):
        ders[0, j] = ndu[j, p]
    a = np.empty((2, p + 1))
    for r in range(p + 1):
        s1 = 0
        s2 = 1
        a[0, 0] = 1.0
        for k in range(1, n + 1):
            d = 0.0
            rk = r - k
            pk = p - k
            if r >= k:
                a[s2, 0] = a[s1, 0] / ndu[pk + 1, rk]
                d = a[s2, 0] * ndu[rk, pk]
            j1 = 1 if rk >= -1 else -rk
            j2 = k - 1 if r - 1 <= pk else p - r
            for j in range(j1, j2 + 1):
                a[s2, j] = (a[s1, j] - a[s1, j - 1]) / ndu[pk + 1, rk + j]
                d += a[s2, j] * ndu[rk + j, pk]
            if r <= pk:
                a[s2, k] = -a[s1, k - 1] / ndu[pk + 1, r]
                d += a[s2, k] * ndu[r, pk]
            ders[k, r] = d
            s1, s2 = s2, s1
    fac = p
    for k in range(1, n + 1):
        for j in range(p + 1):
            ders[k, j] *= fac
        fac *= p - k
    return ders


@nb.njit(
    nb.types.UniTuple.from_types((nb.float64[:], nb.int64[:], nb.int64[:]))(
        nb.int64, nb.int64, nb.float64[:], nb.float64[:], nb.int64
    ),
    cache=True,
)
def _basis_matrix(p, ncp, knot, XI, k):
    """
    Sparse triplets of the `k`-th derivative of the basis at every `XI`.
    """
    nb_val = XI.size * (p + 1)
    vals = np.zeros(nb_val, dtype=np.float64)
    row = np.empty(nb_val, dtype=np.int64)
    col = np.empty(nb_val, dtype=np.int64)
    for ind in range(XI.size):
        xi = XI[ind]
        ip = _find_knot_span(p, ncp, knot, xi) - 1
        if k == 0:
            vals[ind * (p + 1) : (ind + 1) * (p + 1)] = _calc_shape(p, knot, ip, xi)
        elif k <= p:
            vals[ind * (p + 1) : (ind + 1) * (p + 1)] = _ders_basis_funs(p, knot, ip, xi, k)[k]
        for j in range(p + 1):
            row[ind * (p + 1) + j] = ind
            col[ind * (p + 1) + j] = ip - p + j
    return (vals, row, col)
