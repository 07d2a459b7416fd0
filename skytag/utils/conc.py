"""Concurrent utilities - bounded worker pools for fan-out over nodes."""

from __future__ import annotations

import contextvars
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from skytag.constants import DEFAULT_MAX_WORKERS


def _workers(concurrency: int | None, n: int) -> int:
    return max(1, min(concurrency or DEFAULT_MAX_WORKERS, n))


def map_async[I, O](
    fn: Callable[[I], O],
    items: Iterable[I],
    concurrency: int | None = None,
) -> Iterator[O]:
    """Apply function to items concurrently, preserving order.

    Automatically propagates contextvars to worker threads.

    Args:
        fn: Function to apply to each item.
        items: Items to process.
        concurrency: Max concurrent workers. None = DEFAULT_MAX_WORKERS.

    Yields:
        Results in same order as input items.

    Example:
        >>> list(map_async(configure, nodes, concurrency=10))
        [outcome1, outcome2, ...]
    """
    items_list = list(items)
    if not items_list:
        return

    # Fresh context copy per task (ctx.run cannot be concurrent on same object)
    with ThreadPoolExecutor(max_workers=_workers(concurrency, len(items_list))) as executor:
        futures = [
            executor.submit(contextvars.copy_context().run, fn, item)
            for item in items_list
        ]
        for future in futures:
            yield future.result()


@dataclass(frozen=True, slots=True)
class Settled[I, O]:
    """Result of one task: ``value`` on success, ``error`` otherwise."""

    item: I
    value: O | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


def settle_all[I, O](
    fn: Callable[[I], O],
    items: Iterable[I],
    concurrency: int | None = None,
) -> list[Settled[I, O]]:
    """Run every task to completion, collecting failures instead of failing fast.

    The caller sees all outcomes only after the barrier, in input order.
    """
    items_list = list(items)
    if not items_list:
        return []

    with ThreadPoolExecutor(max_workers=_workers(concurrency, len(items_list))) as executor:
        futures = [
            executor.submit(contextvars.copy_context().run, fn, item)
            for item in items_list
        ]

    settled: list[Settled[I, O]] = []
    for item, future in zip(items_list, futures, strict=True):
        error = future.exception()
        settled.append(Settled(item, error=error) if error else Settled(item, value=future.result()))
    return settled


def raise_first(settled: Iterable[Settled]) -> None:
    """Re-raise the first failure among settled tasks, if any."""
    for s in settled:
        if s.error is not None:
            raise s.error
