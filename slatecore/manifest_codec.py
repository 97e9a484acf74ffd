"""Binary codecs for SSTable info blocks and manifests.

All integers are big-endian. Every encoded document starts with a four-byte
tag that names its type, so a buffer of the wrong kind is rejected on decode.
"""

from __future__ import annotations

import struct
import uuid
from collections import deque
from datetime import datetime, timezone
from enum import IntEnum

from slatecore.manifest import (
    Checkpoint,
    CoreDbState,
    Manifest,
    SortedRun,
    SsTableHandle,
    SsTableId,
    SsTableInfo,
)

_SST_INFO_TAG = b"SSTI"
_MANIFEST_TAG = b"MNF1"

_U8 = struct.Struct(">B")
_U32 = struct.Struct(">I")
_U64 = struct.Struct(">Q")
_I64 = struct.Struct(">q")

_MASK64 = (1 << 64) - 1
_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class CodecError(ValueError):
    """An object cannot be encoded, or a buffer cannot be decoded."""


class CompressionFormat(IntEnum):
    """Compression of an SSTable's blocks as recorded in its info."""

    NONE = 0
    SNAPPY = 1
    ZLIB = 2
    LZ4 = 3
    ZSTD = 4

    @classmethod
    def from_codec(cls, codec: str | None) -> CompressionFormat:
        """Map a codec name (or None for no compression) to its format."""
        if codec is None:
            return cls.NONE
        try:
            fmt = cls[codec.upper()]
        except KeyError:
            raise CodecError(f"unknown compression codec: {codec!r}") from None
        if fmt is cls.NONE:
            raise CodecError(f"unknown compression codec: {codec!r}")
        return fmt

    def to_codec(self) -> str | None:
        """The codec name of this format, or None for no compression."""
        return None if self is CompressionFormat.NONE else self.name.lower()


class _Writer:
    def __init__(self, tag: bytes) -> None:
        self._parts: list[bytes] = [tag]

    def _pack(self, fmt: struct.Struct, value: int) -> None:
        try:
            self._parts.append(fmt.pack(value))
        except struct.error as exc:
            raise CodecError(f"value {value!r} does not fit the encoding") from exc

    def u8(self, value: int) -> None:
        self._pack(_U8, value)

    def u32(self, value: int) -> None:
        self._pack(_U32, value)

    def u64(self, value: int) -> None:
        self._pack(_U64, value)

    def i64(self, value: int) -> None:
        self._pack(_I64, value)

    def blob(self, data: bytes) -> None:
        self.u32(len(data))
        self._parts.append(bytes(data))

    def getvalue(self) -> bytes:
        return b"".join(self._parts)


class _Reader:
    def __init__(self, data: bytes, tag: bytes) -> None:
        self._data = memoryview(bytes(data))
        self._pos = 0
        if self.take(len(tag)) != tag:
            raise CodecError("buffer does not hold the expected document type")

    def take(self, n: int) -> bytes:
        end = self._pos + n
        if end > len(self._data):
            raise CodecError("buffer is truncated")
        chunk = self._data[self._pos:end].tobytes()
        self._pos = end
        return chunk

    def _unpack(self, fmt: struct.Struct) -> int:
        return fmt.unpack(self.take(fmt.size))[0]

    def u8(self) -> int:
        return self._unpack(_U8)

    def u32(self) -> int:
        return self._unpack(_U32)

    def u64(self) -> int:
        return self._unpack(_U64)

    def i64(self) -> int:
        return self._unpack(_I64)

    def blob(self) -> bytes:
        return self.take(self.u32())

    def flag(self) -> bool:
        value = self.u8()
        if value not in (0, 1):
            raise CodecError(f"invalid boolean byte: {value}")
        return bool(value)

    def finish(self) -> None:
        if self._pos != len(self._data):
            raise CodecError("trailing bytes after document")


def _write_sst_info(w: _Writer, info: SsTableInfo) -> None:
    if info.first_key is None:
        w.u8(0)
    else:
        w.u8(1)
        w.blob(info.first_key)
    w.u64(info.index_offset)
    w.u64(info.index_len)
    w.u64(info.filter_offset)
    w.u64(info.filter_len)
    w.u8(CompressionFormat.from_codec(info.compression_codec))


def _read_sst_info(r: _Reader) -> SsTableInfo:
    first_key = r.blob() if r.flag() else None
    index_offset = r.u64()
    index_len = r.u64()
    filter_offset = r.u64()
    filter_len = r.u64()
    raw_format = r.u8()
    try:
        fmt = CompressionFormat(raw_format)
    except ValueError:
        raise CodecError(f"unknown compression format: {raw_format}") from None
    return SsTableInfo(
        first_key=first_key,
        index_offset=index_offset,
        index_len=index_len,
        filter_offset=filter_offset,
        filter_len=filter_len,
        compression_codec=fmt.to_codec(),
    )


def _write_ulid(w: _Writer, ulid: int) -> None:
    w.u64((ulid >> 64) & _MASK64)
    w.u64(ulid & _MASK64)


def _read_ulid(r: _Reader) -> int:
    high = r.u64()
    low = r.u64()
    return (high << 64) | low


def _write_compacted_sst(w: _Writer, handle: SsTableHandle) -> None:
    if handle.id.is_wal:
        raise CodecError("a WAL SSTable cannot be recorded as a compacted SSTable")
    _write_ulid(w, handle.id.value)
    _write_sst_info(w, handle.info)


def _read_compacted_sst(r: _Reader) -> SsTableHandle:
    sst_id = SsTableId.compacted(_read_ulid(r))
    return SsTableHandle(sst_id, _read_sst_info(r))


def _write_compacted_ssts(w: _Writer, handles) -> None:
    handles = list(handles)
    w.u32(len(handles))
    for handle in handles:
        _write_compacted_sst(w, handle)


def _read_compacted_ssts(r: _Reader) -> list[SsTableHandle]:
    return [_read_compacted_sst(r) for _ in range(r.u32())]


def _time_to_unix_ts(moment: datetime) -> int:
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    seconds = int((moment - _EPOCH).total_seconds())
    if seconds < 0:
        raise CodecError("checkpoint time cannot be earlier than the epoch")
    if seconds > 0xFFFFFFFF:
        raise CodecError("checkpoint time is too far in the future to encode")
    return seconds


def _unix_ts_to_time(seconds: int) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


def _write_checkpoint(w: _Writer, checkpoint: Checkpoint) -> None:
    w.u64(checkpoint.id.int >> 64)
    w.u64(checkpoint.id.int & _MASK64)
    w.u64(checkpoint.manifest_id)
    expire = 0 if checkpoint.expire_time is None else _time_to_unix_ts(checkpoint.expire_time)
    w.u32(expire)
    w.u32(_time_to_unix_ts(checkpoint.create_time))


def _read_checkpoint(r: _Reader) -> Checkpoint:
    high = r.u64()
    low = r.u64()
    manifest_id = r.u64()
    expire = r.u32()
    create = r.u32()
    return Checkpoint(
        id=uuid.UUID(int=(high << 64) | low),
        manifest_id=manifest_id,
        expire_time=None if expire == 0 else _unix_ts_to_time(expire),
        create_time=_unix_ts_to_time(create),
    )


class SsTableInfoCodec:
    """Encodes and decodes :class:`SsTableInfo` records."""

    def encode(self, info: SsTableInfo) -> bytes:
        w = _Writer(_SST_INFO_TAG)
        _write_sst_info(w, info)
        return w.getvalue()

    def decode(self, data: bytes) -> SsTableInfo:
        r = _Reader(data, _SST_INFO_TAG)
        info = _read_sst_info(r)
        r.finish()
        return info


class ManifestCodec:
    """Encodes and decodes :class:`Manifest` documents."""

    def encode(self, manifest: Manifest) -> bytes:
        core = manifest.core
        w = _Writer(_MANIFEST_TAG)
        w.u64(0)  # manifest id field, unused
        w.u8(1 if core.initialized else 0)
        w.u64(manifest.writer_epoch)
        w.u64(manifest.compactor_epoch)
        w.u64(core.last_compacted_wal_sst_id)
        w.u64(core.next_wal_sst_id - 1)
        if core.l0_last_compacted is None:
            w.u8(0)
        else:
            w.u8(1)
            _write_ulid(w, core.l0_last_compacted)
        _write_compacted_ssts(w, core.l0)
        w.u32(len(core.compacted))
        for run in core.compacted:
            w.u32(run.id)
            _write_compacted_ssts(w, run.ssts)
        w.i64(core.last_clock_tick)
        w.u32(len(core.checkpoints))
        for checkpoint in core.checkpoints:
            _write_checkpoint(w, checkpoint)
        return w.getvalue()

    def decode(self, data: bytes) -> Manifest:
        r = _Reader(data, _MANIFEST_TAG)
        r.u64()  # manifest id field, unused
        initialized = r.flag()
        writer_epoch = r.u64()
        compactor_epoch = r.u64()
        wal_id_last_compacted = r.u64()
        wal_id_last_seen = r.u64()
        l0_last_compacted = _read_ulid(r) if r.flag() else None
        l0 = deque(_read_compacted_ssts(r))
        compacted = []
        for _ in range(r.u32()):
            run_id = r.u32()
            compacted.append(SortedRun(run_id, _read_compacted_ssts(r)))
        last_clock_tick = r.i64()
        checkpoints = [_read_checkpoint(r) for _ in range(r.u32())]
        r.finish()
        core = CoreDbState(
            initialized=initialized,
            l0_last_compacted=l0_last_compacted,
            l0=l0,
            compacted=compacted,
            next_wal_sst_id=wal_id_last_seen + 1,
            last_compacted_wal_sst_id=wal_id_last_compacted,
            last_clock_tick=last_clock_tick,
            checkpoints=checkpoints,
        )
        return Manifest(core, writer_epoch=writer_epoch, compactor_epoch=compactor_epoch)