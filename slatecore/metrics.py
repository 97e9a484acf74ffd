"""Thread-safe counters and gauges for database statistics."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any


class Counter:
    """A monotonically increasing counter."""

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def get(self) -> int:
        """Return the current value."""
        with self._lock:
            return self._value

    def inc(self) -> int:
        """Add one; return the value before the increment."""
        return self.add(1)

    def add(self, value: int) -> int:
        """Add ``value``; return the value before the addition."""
        with self._lock:
            previous = self._value
            self._value += value
            return previous

    def __repr__(self) -> str:
        return f"Counter({self.get()})"


class Gauge:
    """A value that can be set, or moved up and down."""

    def __init__(self, initial: Any = 0) -> None:
        self._value = initial
        self._lock = threading.Lock()

    def get(self) -> Any:
        """Return the current value."""
        with self._lock:
            return self._value

    def set(self, value: Any) -> Any:
        """Replace the value; return the previous one."""
        with self._lock:
            previous = self._value
            self._value = value
            return previous

    def add(self, value: int) -> int:
        """Add ``value``; return the value before the addition."""
        with self._lock:
            previous = self._value
            self._value = previous + value
            return previous

    def inc(self) -> int:
        """Add one; return the value before the increment."""
        return self.add(1)

    def sub(self, value: int) -> int:
        """Subtract ``value``; return the value before the subtraction."""
        return self.add(-value)

    def dec(self) -> int:
        """Subtract one; return the value before the decrement."""
        return self.sub(1)

    def __repr__(self) -> str:
        return f"Gauge({self.get()!r})"


@dataclass
class DbStats:
    """Statistics collected by a running database."""

    immutable_memtable_flushes: Counter = field(default_factory=Counter)
    last_compaction_ts: Gauge = field(default_factory=Gauge)
    gc_manifest_count: Counter = field(default_factory=Counter)
    gc_wal_count: Counter = field(default_factory=Counter)
    gc_compacted_count: Counter = field(default_factory=Counter)
    gc_count: Counter = field(default_factory=Counter)
    object_store_cache_part_hits: Counter = field(default_factory=Counter)
    object_store_cache_part_access: Counter = field(default_factory=Counter)
    object_store_cache_keys: Gauge = field(default_factory=Gauge)
    object_store_cache_bytes: Gauge = field(default_factory=Gauge)
    object_store_cache_evicted_keys: Counter = field(default_factory=Counter)
    object_store_cache_evicted_bytes: Counter = field(default_factory=Counter)
    running_compactions: Gauge = field(default_factory=Gauge)
    bytes_compacted: Counter = field(default_factory=Counter)