# Copyright 2024-2025 Amiable Development
# SPDX-License-Identifier: Apache-2.0

"""Bounded top-k selection over streamed candidates.

Candidate sets are iterated, never materialized: TopK keeps at most
``limit`` items in a heap whose root is the current worst entry.
"""

import heapq
from typing import AsyncIterable, AsyncIterator, Callable, Generic, Iterable, TypeVar, Union

T = TypeVar("T")


class _Slot(Generic[T]):
    """Heap entry ordered so that the worst item sits at the root."""

    __slots__ = ("item", "_better")

    def __init__(self, item: T, better: Callable[[T, T], bool]):
        self.item = item
        self._better = better

    def __lt__(self, other: "_Slot[T]") -> bool:
        return self._better(other.item, self.item)


class TopK(Generic[T]):
    """Keep the best ``limit`` items under a strict ordering.

    Args:
        limit: Number of items to keep.
        better: Returns True if the first item ranks strictly above the
            second. Must be a strict total order for deterministic output.

    Example:
        >>> top = TopK(2, lambda a, b: a > b)
        >>> for n in [3, 1, 4, 1, 5]:
        ...     top.push(n)
        >>> top.results()
        [5, 4]
    """

    def __init__(self, limit: int, better: Callable[[T, T], bool]):
        self.limit = limit
        self._better = better
        self._heap: list[_Slot[T]] = []
        self.seen = 0

    def push(self, item: T) -> None:
        self.seen += 1
        if self.limit <= 0:
            return
        slot = _Slot(item, self._better)
        if len(self._heap) < self.limit:
            heapq.heappush(self._heap, slot)
        elif self._better(item, self._heap[0].item):
            heapq.heapreplace(self._heap, slot)

    def results(self) -> list[T]:
        """Return kept items, best first."""
        return [slot.item for slot in sorted(self._heap, reverse=True)]


async def stream(source: Union[Iterable[T], AsyncIterable[T]]) -> AsyncIterator[T]:
    """Iterate a sync or async iterable uniformly."""
    if hasattr(source, "__aiter__"):
        async for item in source:  # type: ignore[union-attr]
            yield item
    else:
        for item in source:  # type: ignore[union-attr]
            yield item
