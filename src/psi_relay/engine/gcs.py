"""Golomb-coded set used by the reference engine's server-setup message."""

from __future__ import annotations

import hashlib
import math
import struct
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Final

from psi_relay.engine.base import MessageFormatError

_HASH_DOMAIN: Final[bytes] = b"psi-relay/gcs/v1"
_HEADER: Final[struct.Struct] = struct.Struct(">QBQQ")
_MAX_RICE_BITS: Final[int] = 32


class _BitWriter:
    __slots__ = ("_buffer", "_current", "_filled")

    def __init__(self) -> None:
        self._buffer = bytearray()
        self._current = 0
        self._filled = 0

    def write_bit(self, bit: int) -> None:
        self._current = (self._current << 1) | (bit & 1)
        self._filled += 1
        if self._filled == 8:
            self._buffer.append(self._current)
            self._current = 0
            self._filled = 0

    def write_bits(self, value: int, width: int) -> None:
        for shift in range(width - 1, -1, -1):
            self.write_bit((value >> shift) & 1)

    def getvalue(self) -> bytes:
        if self._filled:
            return bytes(self._buffer) + bytes([self._current << (8 - self._filled)])
        return bytes(self._buffer)


class _BitReader:
    __slots__ = ("_data", "_position")

    def __init__(self, data: bytes) -> None:
        self._data = data
        self._position = 0

    def read_bit(self) -> int:
        byte_index = self._position >> 3
        if byte_index >= len(self._data):
            raise MessageFormatError("golomb-coded set payload is truncated")
        bit = (self._data[byte_index] >> (7 - (self._position & 7))) & 1
        self._position += 1
        return bit

    def read_bits(self, width: int) -> int:
        value = 0
        for _ in range(width):
            value = (value << 1) | self.read_bit()
        return value


@dataclass(frozen=True, slots=True)
class GolombCodedSet:
    """Rice-coded sorted hash deltas with a bounded false-positive rate.

    ``hash_range`` is ``num_elements * 2**rice_bits``; each member hashes into
    that range, so a non-member collides with probability about
    ``2**-rice_bits``.
    """

    num_elements: int
    rice_bits: int
    hash_range: int
    encoded_count: int
    payload: bytes

    @classmethod
    def build(cls, elements: Iterable[bytes], fpr: float) -> GolombCodedSet:
        if not 0.0 < fpr < 1.0:
            raise ValueError("fpr must be in (0, 1)")
        members = list(elements)
        rice_bits = min(_MAX_RICE_BITS, max(0, math.ceil(math.log2(1.0 / fpr))))
        hash_range = len(members) << rice_bits
        hashes = sorted({_hash_into(item, hash_range) for item in members})

        writer = _BitWriter()
        mask = (1 << rice_bits) - 1
        previous = 0
        for value in hashes:
            delta = value - previous
            previous = value
            for _ in range(delta >> rice_bits):
                writer.write_bit(1)
            writer.write_bit(0)
            writer.write_bits(delta & mask, rice_bits)

        return cls(
            num_elements=len(members),
            rice_bits=rice_bits,
            hash_range=hash_range,
            encoded_count=len(hashes),
            payload=writer.getvalue(),
        )

    def decode_hashes(self) -> frozenset[int]:
        reader = _BitReader(self.payload)
        values: set[int] = set()
        current = 0
        for _ in range(self.encoded_count):
            quotient = 0
            while reader.read_bit():
                quotient += 1
            current += (quotient << self.rice_bits) | reader.read_bits(self.rice_bits)
            if current >= self.hash_range:
                raise MessageFormatError("golomb-coded set value exceeds hash range")
            values.add(current)
        return frozenset(values)

    def match_indices(self, candidates: Sequence[bytes]) -> list[int]:
        """Return indices of ``candidates`` that test as members."""

        if self.hash_range == 0:
            return []
        members = self.decode_hashes()
        return [
            index
            for index, candidate in enumerate(candidates)
            if _hash_into(candidate, self.hash_range) in members
        ]

    def to_bytes(self) -> bytes:
        header = _HEADER.pack(
            self.num_elements, self.rice_bits, self.hash_range, self.encoded_count
        )
        return header + self.payload

    @classmethod
    def from_bytes(cls, data: bytes) -> GolombCodedSet:
        if len(data) < _HEADER.size:
            raise MessageFormatError("golomb-coded set header is truncated")
        num_elements, rice_bits, hash_range, encoded_count = _HEADER.unpack_from(data)
        if rice_bits > _MAX_RICE_BITS:
            raise MessageFormatError(f"golomb-coded set rice_bits out of range: {rice_bits}")
        if hash_range != num_elements << rice_bits:
            raise MessageFormatError("golomb-coded set hash range does not match its parameters")
        if encoded_count > num_elements:
            raise MessageFormatError("golomb-coded set encodes more values than elements")
        return cls(
            num_elements=num_elements,
            rice_bits=rice_bits,
            hash_range=hash_range,
            encoded_count=encoded_count,
            payload=bytes(data[_HEADER.size :]),
        )


def _hash_into(item: bytes, hash_range: int) -> int:
    digest = hashlib.sha256(_HASH_DOMAIN + item).digest()
    return int.from_bytes(digest[:16], "big") % hash_range


__all__ = ["GolombCodedSet"]
