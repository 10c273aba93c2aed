import math

import pytest

from geoload.stages.chunker import bisect, chunk


def test_chunk_keeps_order_and_sizes():
    items = list(range(10))
    for n in range(1, 12):
        parts = chunk(items, n)
        assert [x for p in parts for x in p] == items
        assert all(len(p) == n for p in parts[:-1])
        assert 1 <= len(parts[-1]) <= n


def test_chunk_empty_and_invalid_size():
    assert chunk([], 5) == []
    with pytest.raises(ValueError):
        chunk([1, 2], 0)


def test_bisect_splits_at_midpoint():
    first, second = bisect([1, 2, 3, 4, 5])
    assert first == [1, 2]
    assert second == [3, 4, 5]
    with pytest.raises(ValueError):
        bisect([1])


def _depth(n):
    if n < 2:
        return 0
    first, second = bisect(list(range(n)))
    return 1 + max(_depth(len(first)), _depth(len(second)))


def test_bisect_depth_is_logarithmic():
    for n in range(2, 65):
        assert _depth(n) <= math.ceil(math.log2(n))
