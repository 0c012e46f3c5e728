from typing import Iterable, TextIO
import copy

import numpy as np

from isonurbs.text_io import fmt_real


UNIFORM_SPACING = 0
LINEAR_SPACING = 1
GEOMETRIC_SPACING = 2


class SpacingFunction:
    """
    Rule distributing `n` intervals over the unit segment.

    Base class only: the subclasses implement `_intervals`, and
    `get_spacing_function` builds them from their type code.

    A spacing function is attached to a `KnotVector` to drive non-uniform
    refinement: the fractions returned by `eval_all` sum to one and give the
    relative lengths of the intervals between consecutive knots.

    Attributes
    ----------
    n : int
        Number of intervals.
    reverse : bool
        If `True`, the interval sequence is read backwards.
    scale : bool
        If `True`, `scale_parameters` rescales the shape parameter so that a
        refined spacing stays consistent with the coarse one.
    """

    type_code: int = -1
    n: int
    reverse: bool
    scale: bool

    def __init__(self, n: int, reverse: bool = False, scale: bool = False):
        if n < 1:
            raise ValueError(f"A spacing function needs at least one interval, got {n} !")
        self.n = int(n)
        self.reverse = bool(reverse)
        self.scale = bool(scale)

    def size(self) -> int:
        return self.n

    def set_size(self, n: int):
        if n < 1:
            raise ValueError(f"A spacing function needs at least one interval, got {n} !")
        self.n = int(n)

    def nested(self) -> bool:
        """
        Whether refining with this rule keeps the coarse knots at their place.
        """
        return False

    def scale_parameters(self, a: float):
        pass

    def _intervals(self) -> np.ndarray[np.floating]:
        raise NotImplementedError(f"{type(self).__name__} does not define its intervals !")

    def eval_all(self) -> np.ndarray[np.floating]:
        """
        Evaluate the fractions of every interval.

        Returns
        -------
        s : np.ndarray[np.floating]
            Array of size `n`, strictly positive, summing to one.
        """
        s = self._intervals()
        if np.any(s <= 0):
            raise ValueError(
                f"{type(self).__name__}: parameters produce non-positive intervals !"
            )
        s = s / s.sum()
        if self.reverse:
            s = s[::-1]
        return s

    def eval(self, i: int) -> float:
        return self.eval_all()[i]

    def int_params(self) -> list[int]:
        return [self.n, int(self.reverse)]

    def real_params(self) -> list[float]:
        return []

    def print(self, os: TextIO):
        ipar = self.int_params()
        dpar = self.real_params()
        words = [str(self.type_code), str(len(ipar)), str(len(dpar))]
        words += [str(i) for i in ipar] + [fmt_real(d) for d in dpar]
        os.write(" ".join(words) + "\n")

    def copy(self) -> "SpacingFunction":
        return copy.deepcopy(self)

    def __repr__(self):
        params = ", ".join(str(v) for v in self.int_params() + self.real_params())
        return f"{type(self).__name__}({params})"


class UniformSpacing(SpacingFunction):
    """
    Intervals of equal length. Refining keeps the coarse knots, hence nested.
    """

    type_code = UNIFORM_SPACING

    def nested(self) -> bool:
        return True

    def _intervals(self):
        return np.full(self.n, 1.0 / self.n)


class LinearSpacing(SpacingFunction):
    """
    Interval lengths in arithmetic progression.

    The first interval has length `s` and the common difference is chosen so
    that the `n` lengths sum to one.
    """

    type_code = LINEAR_SPACING
    s: float

    def __init__(self, n: int, reverse: bool, s: float, scale: bool = False):
        super().__init__(n, reverse, scale)
        self.s = float(s)

    def scale_parameters(self, a: float):
        if self.scale:
            self.s *= a

    def _intervals(self):
        if self.n == 1:
            return np.ones(1)
        d = 2.0 * (1.0 - self.n * self.s) / (self.n * (self.n - 1))
        return self.s + d * np.arange(self.n)

    def int_params(self):
        return [self.n, int(self.reverse), int(self.scale)]

    def real_params(self):
        return [self.s]


class GeometricSpacing(SpacingFunction):
    """
    Interval lengths in geometric progression of ratio `r`.
    """

    type_code = GEOMETRIC_SPACING
    r: float

    def __init__(self, n: int, reverse: bool, r: float, scale: bool = False):
        super().__init__(n, reverse, scale)
        if r <= 0:
            raise ValueError(f"GeometricSpacing: the ratio must be positive, got {r} !")
        self.r = float(r)

    def scale_parameters(self, a: float):
        # a fine interval sequence of the same growth spans 1/a coarse ones
        if self.scale:
            self.r = self.r**a

    def _intervals(self):
        return self.r ** np.arange(self.n)

    def int_params(self):
        return [self.n, int(self.reverse), int(self.scale)]

    def real_params(self):
        return [self.r]


def get_spacing_function(
    spacing_type: int, ipar: Iterable[int], dpar: Iterable[float]
) -> SpacingFunction:
    """
    Build a spacing function from its type code and parameter lists, as they
    appear in the `spacing` section of a mesh file.

    Parameters
    ----------
    spacing_type : int
        0 for uniform, 1 for linear, 2 for geometric.
    ipar : Iterable[int]
        Integer parameters: `n`, `reverse` and, except for uniform, `scale`.
    dpar : Iterable[float]
        Real parameters: none for uniform, `s` for linear, `r` for geometric.

    Returns
    -------
    SpacingFunction
        The spacing function instance.
    """
    ipar = [int(i) for i in ipar]
    dpar = [float(d) for d in dpar]
    if spacing_type == UNIFORM_SPACING:
        if len(ipar) != 2 or len(dpar) != 0:
            raise ValueError("UniformSpacing expects 2 integer and 0 real parameters !")
        return UniformSpacing(ipar[0], bool(ipar[1]))
    if spacing_type == LINEAR_SPACING:
        if len(ipar) != 3 or len(dpar) != 1:
            raise ValueError("LinearSpacing expects 3 integer and 1 real parameters !")
        return LinearSpacing(ipar[0], bool(ipar[1]), dpar[0], bool(ipar[2]))
    if spacing_type == GEOMETRIC_SPACING:
        if len(ipar) != 3 or len(dpar) != 1:
            raise ValueError("GeometricSpacing expects 3 integer and 1 real parameters !")
        return GeometricSpacing(ipar[0], bool(ipar[1]), dpar[0], bool(ipar[2]))
    raise ValueError(f"Unknown spacing type {spacing_type} !")
