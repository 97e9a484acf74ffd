"""Bloom filters used to skip SSTables that cannot hold a key."""

from __future__ import annotations

import struct
from dataclasses import dataclass, field

_MASK64 = (1 << 64) - 1
_NUM_PROBES = struct.Struct(">H")


def _rotl(value: int, bits: int) -> int:
    return ((value << bits) | (value >> (64 - bits))) & _MASK64


def _sip_round(v0: int, v1: int, v2: int, v3: int) -> tuple[int, int, int, int]:
    v0 = (v0 + v1) & _MASK64
    v1 = _rotl(v1, 13) ^ v0
    v0 = _rotl(v0, 32)
    v2 = (v2 + v3) & _MASK64
    v3 = _rotl(v3, 16) ^ v2
    v0 = (v0 + v3) & _MASK64
    v3 = _rotl(v3, 21) ^ v0
    v2 = (v2 + v1) & _MASK64
    v1 = _rotl(v1, 17) ^ v2
    v2 = _rotl(v2, 32)
    return v0, v1, v2, v3


def _siphash13(data: bytes, k0: int = 0, k1: int = 0) -> int:
    """SipHash-1-3 of ``data`` under the 128-bit key (k0, k1)."""
    v0 = k0 ^ 0x736F6D6570736575
    v1 = k1 ^ 0x646F72616E646F6D
    v2 = k0 ^ 0x6C7967656E657261
    v3 = k1 ^ 0x7465646279746573

    length = len(data)
    tail_start = length - length % 8
    for (word,) in struct.iter_unpack("<Q", data[:tail_start]):
        v3 ^= word
        v0, v1, v2, v3 = _sip_round(v0, v1, v2, v3)
        v0 ^= word

    last = ((length & 0xFF) << 56) | int.from_bytes(data[tail_start:], "little")
    v3 ^= last
    v0, v1, v2, v3 = _sip_round(v0, v1, v2, v3)
    v0 ^= last

    v2 ^= 0xFF
    for _ in range(3):
        v0, v1, v2, v3 = _sip_round(v0, v1, v2, v3)
    return v0 ^ v1 ^ v2 ^ v3


def _f32(value: float) -> float:
    return struct.unpack("<f", struct.pack("<f", value))[0]


def filter_hash(key: bytes) -> int:
    """Return the 64-bit hash of a key used for filter probes (SipHash-1-3, zero key)."""
    return _siphash13(bytes(key))


def probes_for_key(key_hash: int, num_probes: int, filter_bits: int) -> list[int]:
    """Bit positions for a key hash, by enhanced double hashing."""
    h = (key_hash & 0xFFFFFFFF) % filter_bits
    delta = ((key_hash >> 32) & 0xFFFFFFFF) % filter_bits
    probes = []
    for i in range(num_probes):
        delta = (delta + i) % filter_bits
        probes.append(h)
        h = (h + delta) % filter_bits
    return probes


def check_bit(bit: int, buf: bytes | bytearray) -> bool:
    """Whether bit ``bit`` of ``buf`` is set (little-endian bit order in each byte)."""
    byte, bit_in_byte = divmod(bit, 8)
    return (buf[byte] & (1 << bit_in_byte)) != 0


def set_bit(bit: int, buf: bytearray) -> None:
    """Set bit ``bit`` of ``buf`` in place."""
    byte, bit_in_byte = divmod(bit, 8)
    buf[byte] |= 1 << bit_in_byte


def optimal_num_probes(bits_per_key: int) -> int:
    """Number of probes for the given bits per key: bits_per_key * ln(2), truncated."""
    return int(_f32(_f32(float(bits_per_key)) * _f32(0.69))) & 0xFFFF


@dataclass(frozen=True)
class BloomFilter:
    """An immutable bloom filter over key hashes."""

    num_probes: int
    buffer: bytes

    @classmethod
    def decode(cls, buf: bytes) -> BloomFilter:
        """Decode a filter from its encoded form."""
        if len(buf) < _NUM_PROBES.size:
            raise ValueError("encoded bloom filter is too short")
        (num_probes,) = _NUM_PROBES.unpack_from(buf)
        return cls(num_probes, bytes(buf[_NUM_PROBES.size:]))

    def encode(self) -> bytes:
        """Encode the filter: big-endian u16 probe count followed by the bit buffer."""
        return _NUM_PROBES.pack(self.num_probes) + self.buffer

    @property
    def _filter_bits(self) -> int:
        return len(self.buffer) * 8

    def might_contain(self, hash: int) -> bool:
        """False if the key with this hash is certainly absent."""
        return all(
            check_bit(p, self.buffer)
            for p in probes_for_key(hash, self.num_probes, self._filter_bits)
        )

    def size(self) -> int:
        """Size of the filter's bit buffer in bytes."""
        return len(self.buffer)


@dataclass
class BloomFilterBuilder:
    """Collects keys and builds a :class:`BloomFilter` over them."""

    bits_per_key: int
    _key_hashes: list[int] = field(default_factory=list, init=False, repr=False)

    def add_key(self, key: bytes) -> None:
        self._key_hashes.append(filter_hash(key))

    def _filter_size_bytes(self) -> int:
        filter_bits = len(self._key_hashes) * self.bits_per_key
        return (filter_bits + 7) // 8

    def build(self) -> BloomFilter:
        num_probes = optimal_num_probes(self.bits_per_key)
        filter_bytes = self._filter_size_bytes()
        filter_bits = filter_bytes * 8
        buffer = bytearray(filter_bytes)
        for key_hash in self._key_hashes:
            for probe in probes_for_key(key_hash, num_probes, filter_bits):
                set_bit(probe, buffer)
        return BloomFilter(num_probes, bytes(buffer))