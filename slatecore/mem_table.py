"""In-memory sorted tables backing the write-ahead log and the memtable."""

from __future__ import annotations

import threading
from collections.abc import Iterable
from dataclasses import dataclass

from sortedcontainers import SortedDict

from slatecore.iter import KeyValueIterator, RowAttributes, RowEntry, ValueDeletable


@dataclass(frozen=True)
class ValueWithAttributes:
    """A value or tombstone together with its row attributes."""

    value: ValueDeletable
    attrs: RowAttributes


def _sizeof_attributes(attrs: RowAttributes) -> int:
    return 8 if attrs.ts is not None else 0


class MemTableIterator(KeyValueIterator):
    """Iterates ``(key, ValueWithAttributes)`` pairs as rows, in the order given."""

    def __init__(self, entries: Iterable[tuple[bytes, ValueWithAttributes]]) -> None:
        self._entries = iter(entries)

    def next_entry(self) -> RowEntry | None:
        for key, item in self._entries:
            return RowEntry(
                key=key,
                value=item.value,
                seq=0,
                create_ts=item.attrs.ts,
                expire_ts=item.attrs.expire_ts,
            )
        return None


class KVTable:
    """A thread-safe sorted map of keys to values or tombstones, tracking its size."""

    def __init__(self) -> None:
        self._map: SortedDict = SortedDict()
        self._size = 0
        self._lock = threading.Lock()
        self._durable = threading.Event()

    def is_empty(self) -> bool:
        with self._lock:
            return not self._map

    def size(self) -> int:
        """Approximate size of the stored keys, values and timestamps in bytes."""
        with self._lock:
            return self._size

    def get(self, key: bytes) -> ValueWithAttributes | None:
        """The entry for ``key`` (possibly a tombstone), or None if the key is absent."""
        with self._lock:
            return self._map.get(bytes(key))

    def iter(self) -> MemTableIterator:
        """Iterate over all entries in key order."""
        with self._lock:
            snapshot = list(self._map.items())
        return MemTableIterator(snapshot)

    def range_from(self, start: bytes) -> MemTableIterator:
        """Iterate over entries with keys at or after ``start``, in key order."""
        start = bytes(start)
        with self._lock:
            snapshot = [(k, self._map[k]) for k in self._map.irange(minimum=start)]
        return MemTableIterator(snapshot)

    def _subtract_old(self, key: bytes) -> None:
        old = self._map.get(key)
        if old is None:
            return
        value_len = 0 if old.value.is_tombstone() else len(old.value.value)
        self._size -= len(key) + value_len + _sizeof_attributes(old.attrs)

    def put(self, key: bytes, value: bytes, attrs: RowAttributes) -> None:
        """Store ``value`` under ``key``, replacing any earlier entry."""
        key = bytes(key)
        value = bytes(value)
        with self._lock:
            self._subtract_old(key)
            self._size += len(key) + len(value) + _sizeof_attributes(attrs)
            self._map[key] = ValueWithAttributes(ValueDeletable(value), attrs)

    def delete(self, key: bytes, attrs: RowAttributes) -> None:
        """Record a tombstone for ``key``."""
        key = bytes(key)
        with self._lock:
            self._subtract_old(key)
            self._size += len(key)
            self._map[key] = ValueWithAttributes(ValueDeletable.tombstone(), attrs)

    def await_durable(self, timeout: float | None = None) -> bool:
        """Block until the table is durable; return False if the timeout passed first."""
        return self._durable.wait(timeout)

    def notify_durable(self) -> None:
        """Mark the table as durably stored, waking any waiters."""
        self._durable.set()


class WritableKVTable:
    """The mutable front of a :class:`KVTable`."""

    def __init__(self) -> None:
        self.table = KVTable()

    def put(self, key: bytes, value: bytes, attrs: RowAttributes) -> None:
        self.table.put(key, value, attrs)

    def delete(self, key: bytes, attrs: RowAttributes) -> None:
        self.table.delete(key, attrs)

    def size(self) -> int:
        return self.table.size()


class ImmutableMemtable:
    """A frozen memtable awaiting a flush to level 0."""

    def __init__(self, table: WritableKVTable, last_wal_id: int) -> None:
        self.table = table.table
        self.last_wal_id = last_wal_id
        self._flushed = threading.Event()

    def await_flush_to_l0(self, timeout: float | None = None) -> bool:
        """Block until flushed to level 0; return False if the timeout passed first."""
        return self._flushed.wait(timeout)

    def notify_flush_to_l0(self) -> None:
        self._flushed.set()


class ImmutableWal:
    """A frozen write-ahead log segment with its id."""

    def __init__(self, id: int, table: WritableKVTable) -> None:
        self.id = id
        self.table = table.table