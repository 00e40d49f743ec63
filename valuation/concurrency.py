"""
Bounded-concurrency waves.

Items are dispatched ``limit`` at a time; a wave finishes when every item in it
has resolved.  Results land in the slot of their source item, so output order
matches input order whatever order the calls complete in.
"""

import asyncio
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def run_in_waves(
    items: Sequence[T],
    worker: Callable[[int, T], Awaitable[R]],
    limit: int,
    on_item_done: Optional[Callable[[int, int], None]] = None,
) -> list[R]:
    """
    Run ``worker(index, item)`` for every item, ``limit`` at a time.

    *on_item_done* is called with ``(completed, total)`` after each item.
    Workers are expected to handle their own failures; an exception escaping a
    worker propagates once its wave has settled.
    """
    limit = max(1, limit)
    total = len(items)
    results: list = [None] * total
    completed = 0

    async def _run(index: int, item: T) -> None:
        nonlocal completed
        results[index] = await worker(index, item)
        completed += 1
        if on_item_done is not None:
            on_item_done(completed, total)

    for start in range(0, total, limit):
        wave = [_run(start + offset, item) for offset, item in enumerate(items[start : start + limit])]
        outcomes = await asyncio.gather(*wave, return_exceptions=True)
        for outcome in outcomes:
            if isinstance(outcome, BaseException):
                raise outcome

    return results
