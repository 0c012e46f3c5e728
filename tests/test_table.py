import numpy as np
import pytest

from isonurbs.table import Table


@pytest.fixture
def table():
    return Table.from_rows([[0, 1], [], [2, -4, 4]])


def test_rows(table):
    """Test the row access of a table."""
    assert table.size() == len(table) == 3
    assert table.size_of_connections() == 5
    assert table.row_size(1) == 0
    np.testing.assert_array_equal(table[2], [2, -4, 4])
    with pytest.raises(IndexError):
        table.get_row(3)


def test_width(table):
    """Test that negative entries count as their decoded value."""
    assert table.width() == 5
    assert Table.from_rows([]).width() == 0


def test_to_csr(table):
    """Test the incidence matrix of a table."""
    A = table.to_csr()
    assert A.shape == (3, 5)
    np.testing.assert_array_equal(
        A.toarray().astype(int),
        [[1, 1, 0, 0, 0], [0, 0, 0, 0, 0], [0, 0, 1, 1, 1]],
    )
    assert table.to_csr(8).shape == (3, 8)


def test_bad_offsets():
    """Test the rejection of offsets not matching the entries."""
    with pytest.raises(ValueError):
        Table([0, 2], [1])
