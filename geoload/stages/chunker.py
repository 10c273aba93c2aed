from __future__ import annotations

import typing as t

T = t.TypeVar("T")


def chunk(features: t.Sequence[T], size: int) -> t.List[t.List[T]]:
    """Split ``features`` into runs of at most ``size``, keeping order."""
    if size < 1:
        raise ValueError(f"chunk size must be >= 1, got {size}")
    return [list(features[i : i + size]) for i in range(0, len(features), size)]


def bisect(batch: t.Sequence[T]) -> t.Tuple[t.List[T], t.List[T]]:
    """Split an oversized batch at its midpoint.

    Only batches of two or more records can be split; a single record that
    is still too large has to be failed by the caller.
    """
    if len(batch) < 2:
        raise ValueError("cannot bisect a batch with fewer than 2 records")
    mid = len(batch) // 2
    return list(batch[:mid]), list(batch[mid:])
