"""Order-preserving parallel map over a thread pool.

Used where a handful of blocking network calls (the explorer feeds) should
overlap in time but results must come back in input order. The first
failure (by input position) is re-raised and work that has not started is
cancelled.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from concurrent.futures import ThreadPoolExecutor
from typing import TypeVar

InT = TypeVar("InT")
OutT = TypeVar("OutT")


def p_map(
    iterable: Iterable[InT],
    mapper: Callable[[InT], OutT],
    *,
    concurrency: int,
) -> list[OutT]:
    """Apply ``mapper`` to every item with at most ``concurrency`` workers."""

    if isinstance(concurrency, bool) or not isinstance(concurrency, int) or concurrency < 1:
        raise ValueError("concurrency must be a positive integer")

    items = list(iterable)
    if not items:
        return []

    with ThreadPoolExecutor(max_workers=min(concurrency, len(items))) as pool:
        futures = [pool.submit(mapper, item) for item in items]
        values: list[OutT] = []
        for fut in futures:
            try:
                values.append(fut.result())
            except Exception:
                for pending in futures:
                    pending.cancel()
                raise
    return values


__all__ = ["p_map"]
