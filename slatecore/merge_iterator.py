"""Iterators that merge sorted row iterators, earlier sources winning on equal keys."""

from __future__ import annotations

import heapq
from collections.abc import Iterable

from slatecore.iter import KeyValueIterator, RowEntry


class TwoMergeIterator(KeyValueIterator):
    """Merges two iterators; on equal keys the first iterator's row wins."""

    def __init__(self, iterator1: KeyValueIterator, iterator2: KeyValueIterator) -> None:
        self._iterator1 = iterator1
        self._iterator2 = iterator2
        self._next1 = iterator1.next_entry()
        self._next2 = iterator2.next_entry()

    def _advance1(self) -> RowEntry | None:
        current = self._next1
        if current is not None:
            self._next1 = self._iterator1.next_entry()
        return current

    def _advance2(self) -> RowEntry | None:
        current = self._next2
        if current is not None:
            self._next2 = self._iterator2.next_entry()
        return current

    def next_entry(self) -> RowEntry | None:
        if self._next1 is None:
            return self._advance2()
        if self._next2 is None:
            return self._advance1()
        if self._next1.key <= self._next2.key:
            if self._next1.key == self._next2.key:
                self._advance2()
            return self._advance1()
        return self._advance2()


class MergeIterator(KeyValueIterator):
    """Merges any number of iterators; on equal keys the earliest iterator's row wins."""

    def __init__(self, iterators: Iterable[KeyValueIterator]) -> None:
        self._heap: list[tuple[bytes, int, RowEntry, KeyValueIterator]] = []
        for index, iterator in enumerate(iterators):
            entry = iterator.next_entry()
            if entry is not None:
                self._heap.append((entry.key, index, entry, iterator))
        heapq.heapify(self._heap)

    def _advance(self) -> RowEntry | None:
        if not self._heap:
            return None
        _, index, entry, iterator = heapq.heappop(self._heap)
        following = iterator.next_entry()
        if following is not None:
            heapq.heappush(self._heap, (following.key, index, following, iterator))
        return entry

    def next_entry(self) -> RowEntry | None:
        entry = self._advance()
        if entry is None:
            return None
        while self._heap and self._heap[0][0] == entry.key:
            self._advance()
        return entry