"""Fixed-size worker pool shared by the per-window and per-replicate phases."""

from __future__ import annotations

import concurrent.futures
from typing import Callable, List, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


def parallel_map(fn: Callable[[T], R], items: Sequence[T], n_workers: int = 1) -> List[R]:
    """Apply *fn* to every item, returning results in input order.

    With ``n_workers <= 1`` the items are processed sequentially in the
    calling thread.  Otherwise a thread pool of *n_workers* runs the calls;
    numpy releases the GIL for the heavy array work.  Results are slotted by
    input position, so completion order never affects the output.
    """
    items = list(items)
    if n_workers <= 1 or len(items) <= 1:
        return [fn(item) for item in items]

    results: List[R] = [None] * len(items)  # type: ignore[list-item]
    with concurrent.futures.ThreadPoolExecutor(max_workers=n_workers) as executor:
        pool = {executor.submit(fn, item): i for i, item in enumerate(items)}
        for future in concurrent.futures.as_completed(pool):
            results[pool[future]] = future.result()
    return results
