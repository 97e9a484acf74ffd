"""Binary encoding of rows inside SSTable blocks (format v0).

Layout, all integers big-endian::

    u16 key_prefix_len | u16 key_suffix_len | key_suffix | u64 seq | u8 flags
    | i64 expire_ts (if HAS_EXPIRE_TS) | i64 create_ts (if HAS_CREATE_TS)
    | u32 value_len | value            (omitted for tombstones)
"""

from __future__ import annotations

import struct
from dataclasses import dataclass
from enum import IntFlag

from slatecore.iter import ValueDeletable

_U16 = struct.Struct(">H")
_U32 = struct.Struct(">I")
_U64 = struct.Struct(">Q")
_I64 = struct.Struct(">q")
_U8 = struct.Struct(">B")


class InvalidRowFlagsError(ValueError):
    """The flags byte of an encoded row holds unknown bits."""


class RowFlags(IntFlag):
    TOMBSTONE = 0b001
    HAS_EXPIRE_TS = 0b010
    HAS_CREATE_TS = 0b100


_ALL_FLAGS = RowFlags.TOMBSTONE | RowFlags.HAS_EXPIRE_TS | RowFlags.HAS_CREATE_TS


@dataclass(frozen=True)
class SstRowEntry:
    """A row as held in a block: the key is stored with a shared prefix stripped."""

    key_prefix_len: int
    key_suffix: bytes
    seq: int
    value: ValueDeletable
    create_ts: int | None = None
    expire_ts: int | None = None

    def flags(self) -> RowFlags:
        flags = RowFlags.TOMBSTONE if self.value.is_tombstone() else RowFlags(0)
        if self.expire_ts is not None:
            flags |= RowFlags.HAS_EXPIRE_TS
        if self.create_ts is not None:
            flags |= RowFlags.HAS_CREATE_TS
        return flags

    def size(self) -> int:
        """Encoded size of this entry in bytes."""
        size = 2 + 2 + len(self.key_suffix) + 8 + 1
        if self.expire_ts is not None:
            size += 8
        if self.create_ts is not None:
            size += 8
        if not self.value.is_tombstone():
            size += 4 + len(self.value.value)
        return size

    def restore_full_key(self, prefix: bytes) -> bytes:
        """Rebuild the full key by prepending the prefix to the key suffix."""
        return bytes(prefix[: self.key_prefix_len]) + bytes(self.key_suffix)


class _Reader:
    def __init__(self, data: bytes) -> None:
        self._data = memoryview(bytes(data))
        self._pos = 0

    def take(self, n: int) -> bytes:
        end = self._pos + n
        if end > len(self._data):
            raise ValueError("encoded row is truncated")
        chunk = self._data[self._pos:end].tobytes()
        self._pos = end
        return chunk

    def unpack(self, fmt: struct.Struct) -> int:
        return fmt.unpack(self.take(fmt.size))[0]


class SstRowCodecV0:
    """Encoder and decoder for the v0 row format."""

    def encode(self, row: SstRowEntry) -> bytes:
        flags = row.flags()
        parts = [
            _U16.pack(row.key_prefix_len),
            _U16.pack(len(row.key_suffix)),
            bytes(row.key_suffix),
            _U64.pack(row.seq),
            _U8.pack(int(flags)),
        ]
        if RowFlags.HAS_EXPIRE_TS in flags:
            parts.append(_I64.pack(row.expire_ts))
        if RowFlags.HAS_CREATE_TS in flags:
            parts.append(_I64.pack(row.create_ts))
        if RowFlags.TOMBSTONE not in flags:
            value = row.value.value
            parts.append(_U32.pack(len(value)))
            parts.append(bytes(value))
        return b"".join(parts)

    def decode(self, data: bytes) -> SstRowEntry:
        """Decode one row from the start of ``data``."""
        reader = _Reader(data)
        key_prefix_len = reader.unpack(_U16)
        key_suffix_len = reader.unpack(_U16)
        key_suffix = reader.take(key_suffix_len)
        seq = reader.unpack(_U64)
        raw_flags = reader.unpack(_U8)
        if raw_flags & ~int(_ALL_FLAGS):
            raise InvalidRowFlagsError(f"invalid row flags: {raw_flags:#04x}")
        flags = RowFlags(raw_flags)

        expire_ts = reader.unpack(_I64) if RowFlags.HAS_EXPIRE_TS in flags else None
        create_ts = reader.unpack(_I64) if RowFlags.HAS_CREATE_TS in flags else None

        if RowFlags.TOMBSTONE in flags:
            # An expiry makes no sense on a tombstone, so it is dropped.
            return SstRowEntry(
                key_prefix_len, key_suffix, seq, ValueDeletable.tombstone(), create_ts, None
            )

        value_len = reader.unpack(_U32)
        value = reader.take(value_len)
        return SstRowEntry(
            key_prefix_len, key_suffix, seq, ValueDeletable(value), create_ts, expire_ts
        )