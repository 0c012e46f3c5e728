from typing import Iterable

import numpy as np
import scipy.sparse as sps


class Table:
    """
    Row-compressed connectivity: row `i` holds the entries `J[I[i]:I[i + 1]]`.

    Used for the element to degree of freedom tables, where rows may have
    different lengths (or be empty for boundary elements carrying no dof).
    """

    def __init__(self, I: np.ndarray[np.integer], J: np.ndarray[np.integer]):
        self.I = np.asarray(I, dtype=int)
        self.J = np.asarray(J, dtype=int)
        if self.I.ndim != 1 or self.I.size == 0 or self.I[0] != 0 or self.I[-1] != self.J.size:
            raise ValueError("Table: offsets do not match the entries !")

    @classmethod
    def from_rows(cls, rows: Iterable[Iterable[int]]) -> "Table":
        rows = [np.asarray(r, dtype=int) for r in rows]
        I = np.zeros(len(rows) + 1, dtype=int)
        I[1:] = np.cumsum([r.size for r in rows])
        J = np.concatenate(rows) if len(rows) > 0 else np.empty(0, dtype=int)
        return cls(I, J.astype(int))

    def size(self) -> int:
        return self.I.size - 1

    def size_of_connections(self) -> int:
        return self.J.size

    def row_size(self, i: int) -> int:
        return int(self.I[i + 1] - self.I[i])

    def get_row(self, i: int) -> np.ndarray[np.integer]:
        if i < 0 or i >= self.size():
            raise IndexError(f"Table: row {i} out of range [0, {self.size()}) !")
        return self.J[self.I[i] : self.I[i + 1]]

    def __getitem__(self, i: int) -> np.ndarray[np.integer]:
        return self.get_row(i)

    def __len__(self) -> int:
        return self.size()

    def width(self) -> int:
        """
        One past the largest entry, negative entries counting as `-1 - entry`.
        """
        if self.J.size == 0:
            return 0
        return int(np.max(np.where(self.J < 0, -1 - self.J, self.J))) + 1

    def to_csr(self, ncols: int = None) -> sps.csr_matrix:
        """
        Boolean incidence matrix of the table, signs dropped.
        """
        cols = np.where(self.J < 0, -1 - self.J, self.J)
        if ncols is None:
            ncols = self.width()
        data = np.ones(cols.size, dtype=bool)
        return sps.csr_matrix((data, cols, self.I.copy()), shape=(self.size(), ncols))

    def __repr__(self):
        return f"Table(rows={self.size()}, connections={self.size_of_connections()})"
