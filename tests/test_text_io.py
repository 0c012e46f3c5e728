import io

import numpy as np
import pytest

from isonurbs.text_io import TokenStream, fmt_real


def test_comments_are_skipped():
    """Test that everything after a # is ignored."""
    tokens = TokenStream("# header\n1 2 # two numbers\n\n  3.5\n")
    assert tokens.next_int() == 1
    assert tokens.next_int() == 2
    assert tokens.next_float() == 3.5
    assert tokens.at_end()
    assert tokens.peek() is None


def test_stream_source():
    """Test reading from an open text stream."""
    tokens = TokenStream(io.StringIO("knotvectors\n2\n0 1\n"))
    assert tokens.expect("knotvectors", "patches") == "knotvectors"
    np.testing.assert_array_equal(tokens.next_ints(3), [2, 0, 1])


def test_errors():
    """Test the errors on bad tokens and premature end."""
    tokens = TokenStream("abc")
    with pytest.raises(ValueError):
        tokens.next_int()
    with pytest.raises(ValueError):
        tokens.next()
    with pytest.raises(ValueError):
        TokenStream("weights").expect("patches")


def test_fmt_real():
    """Test that printed reals read back exactly."""
    assert fmt_real(0.0) == "0"
    assert fmt_real(1.0) == "1"
    assert fmt_real(0.5) == "0.5"
    x = 1.0 / 3.0
    assert float(fmt_real(x)) == x
