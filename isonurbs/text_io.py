from typing import Iterable, TextIO, Union

import numpy as np


def fmt_real(x: float) -> str:
    """
    Shortest text form of a float that reads back to the same value.
    """
    return np.format_float_positional(float(x), trim="-")


class TokenStream:
    """
    Whitespace tokenizer over the NURBS mesh text grammar.

    Everything from a `#` to the end of its line is a comment and is dropped,
    so comment lines may appear anywhere between tokens.

    Parameters
    ----------
    source : Union[str, TextIO, Iterable[str]]
        Full text, an open text stream or an iterable of lines.
    """

    def __init__(self, source: Union[str, TextIO, Iterable[str]]):
        if isinstance(source, str):
            lines = source.splitlines()
        else:
            lines = source
        self._tokens = []
        for line in lines:
            line = line.split("#", 1)[0]
            self._tokens.extend(line.split())
        self._pos = 0

    def at_end(self) -> bool:
        return self._pos >= len(self._tokens)

    def peek(self) -> Union[str, None]:
        if self.at_end():
            return None
        return self._tokens[self._pos]

    def next(self) -> str:
        if self.at_end():
            raise ValueError("Unexpected end of NURBS text stream !")
        tok = self._tokens[self._pos]
        self._pos += 1
        return tok

    def next_int(self) -> int:
        tok = self.next()
        try:
            return int(tok)
        except ValueError:
            raise ValueError(f"Expected an integer, read '{tok}' !") from None

    def next_float(self) -> float:
        tok = self.next()
        try:
            return float(tok)
        except ValueError:
            raise ValueError(f"Expected a real number, read '{tok}' !") from None

    def next_ints(self, n: int) -> np.ndarray[np.integer]:
        return np.array([self.next_int() for _ in range(n)], dtype=int)

    def next_floats(self, n: int) -> np.ndarray[np.floating]:
        return np.array([self.next_float() for _ in range(n)], dtype=float)

    def expect(self, *idents: str) -> str:
        """
        Read the next token and check it is one of `idents`.
        """
        tok = self.next()
        if tok not in idents:
            raise ValueError(
                f"Invalid section '{tok}', expected {' or '.join(repr(i) for i in idents)} !"
            )
        return tok
