"""Row types and the key-value iterator protocol."""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Iterator
from dataclasses import dataclass


@dataclass(frozen=True)
class ValueDeletable:
    """A stored value, or a tombstone when ``value`` is None."""

    value: bytes | None = None

    @classmethod
    def tombstone(cls) -> ValueDeletable:
        return cls(None)

    def is_tombstone(self) -> bool:
        return self.value is None


@dataclass(frozen=True)
class RowAttributes:
    """Creation and expiry timestamps of a row."""

    ts: int | None = None
    expire_ts: int | None = None


@dataclass(frozen=True)
class RowEntry:
    """A row as stored: a key with a value or tombstone, and its metadata."""

    key: bytes
    value: ValueDeletable
    seq: int = 0
    create_ts: int | None = None
    expire_ts: int | None = None


@dataclass(frozen=True)
class KeyValue:
    """A live key with its value."""

    key: bytes
    value: bytes


class KeyValueIterator(ABC):
    """Iterates rows in key order, tombstones included."""

    @abstractmethod
    def next_entry(self) -> RowEntry | None:
        """Return the next row, which may be a tombstone, or None when exhausted."""

    def next(self) -> KeyValue | None:
        """Return the next non-deleted key-value pair, or None when exhausted."""
        while (entry := self.next_entry()) is not None:
            if not entry.value.is_tombstone():
                return KeyValue(entry.key, entry.value.value)
        return None

    def __iter__(self) -> Iterator[KeyValue]:
        while (kv := self.next()) is not None:
            yield kv