"""Database state recorded in a manifest: SSTable handles, sorted runs and checkpoints."""

from __future__ import annotations

import secrets
import threading
import time
import uuid
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime

_ULID_RANDOM_BITS = 80
_ULID_RANDOM_MASK = (1 << _ULID_RANDOM_BITS) - 1
_ulid_lock = threading.Lock()
_last_ulid = 0


def new_ulid() -> int:
    """Return a new 128-bit ULID: a millisecond timestamp followed by random bits.

    Successive values from one process always increase.
    """
    global _last_ulid
    millis = time.time_ns() // 1_000_000
    candidate = (millis << _ULID_RANDOM_BITS) | secrets.randbits(_ULID_RANDOM_BITS)
    with _ulid_lock:
        if candidate <= _last_ulid:
            candidate = _last_ulid + 1
        _last_ulid = candidate
    return candidate


@dataclass(frozen=True, order=True)
class SsTableId:
    """Identifies an SSTable: a WAL sequence number or a compacted table's ULID."""

    value: int
    is_wal: bool = False

    @classmethod
    def wal(cls, id: int) -> SsTableId:
        return cls(id, True)

    @classmethod
    def compacted(cls, ulid: int) -> SsTableId:
        return cls(ulid, False)

    def unwrap_wal_id(self) -> int:
        if not self.is_wal:
            raise ValueError("SSTable id is not a WAL id")
        return self.value

    def unwrap_compacted_id(self) -> int:
        if self.is_wal:
            raise ValueError("SSTable id is not a compacted id")
        return self.value


@dataclass(frozen=True)
class SsTableInfo:
    """Location of an SSTable's index and filter, and its compression."""

    first_key: bytes | None = None
    index_offset: int = 0
    index_len: int = 0
    filter_offset: int = 0
    filter_len: int = 0
    compression_codec: str | None = None


@dataclass(frozen=True)
class SsTableHandle:
    id: SsTableId
    info: SsTableInfo

    def estimate_size(self) -> int:
        """Approximate size in bytes; the index sits after all data blocks."""
        return self.info.index_offset


@dataclass
class SortedRun:
    """A run of SSTables with disjoint, ordered key ranges."""

    id: int
    ssts: list[SsTableHandle] = field(default_factory=list)

    def estimate_size(self) -> int:
        return sum(sst.estimate_size() for sst in self.ssts)


@dataclass(frozen=True)
class Checkpoint:
    """A pinned manifest version that must not be collected."""

    id: uuid.UUID
    manifest_id: int
    expire_time: datetime | None
    create_time: datetime


@dataclass
class CoreDbState:
    """The durable state of the database."""

    initialized: bool = True
    l0_last_compacted: int | None = None
    l0: deque[SsTableHandle] = field(default_factory=deque)
    compacted: list[SortedRun] = field(default_factory=list)
    next_wal_sst_id: int = 1
    last_compacted_wal_sst_id: int = 0
    last_clock_tick: int = 0
    checkpoints: list[Checkpoint] = field(default_factory=list)


@dataclass
class Manifest:
    """The database state together with writer and compactor fencing epochs."""

    core: CoreDbState
    writer_epoch: int = 0
    compactor_epoch: int = 0