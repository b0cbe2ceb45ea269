"""
psi-relay — pure-Python reference PSI engine.

File: src/psi_relay/engine/reference.py
Last updated: 2026-10-18

Purpose
- Provide a dependency-free engine backend with the same operation set as the
  OpenMined bindings, so the relay runs and is testable without native wheels.

Construction
- Group: quadratic residues modulo the RFC 3526 2048-bit safe prime ``P``;
  the subgroup has prime order ``Q = (P - 1) / 2``.
- Items hash to the subgroup via SHAKE-256 followed by squaring.
- A 32-byte key deterministically derives the secret exponent, so a client
  rebuilt from its exported key bytes recovers the same exponent.
- Client blinds ``H(x)^k``; server re-blinds ``H(x)^(k*s)``; client unblinds
  with ``k^-1 mod Q`` and tests ``H(x)^s`` against the server setup, which
  carries ``H(y)^s`` for every server item (raw or as a Golomb-coded set).

Wire format
- All three messages start with ``b"PSR1"`` and a kind byte. Requests and
  responses carry a flags byte, the element width and the element count,
  followed by fixed-width big-endian group elements.
"""

from __future__ import annotations

import asyncio
import hashlib
import math
import struct
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Final, TypeVar

from psi_relay.constants import KEY_SEED_BYTES
from psi_relay.engine.base import DataStructure, MessageFormatError, UnsupportedOperationError
from psi_relay.engine.gcs import GolombCodedSet

_T = TypeVar("_T")

# RFC 3526, 2048-bit MODP group (group 14).
P: Final[int] = int(
    "FFFFFFFFFFFFFFFFC90FDAA22168C234C4C6628B80DC1CD1"
    "29024E088A67CC74020BBEA63B139B22514A08798E3404DD"
    "EF9519B3CD3A431B302B0A6DF25F14374FE1356D6D51C245"
    "E485B576625E7EC6F44C42E9A637ED6B0BFF5CB6F406B7ED"
    "EE386BFB5A899FA5AE9F24117C4B1FE649286651ECE45B3D"
    "C2007CB8A163BF0598DA48361C55D39A69163FA8FD24CF5F"
    "83655D23DCA3AD961C62F356208552BB9ED529077096966D"
    "670C354E4ABC9804F1746C08CA18217C32905E462E36CE3B"
    "E39E772C180E86039B2783A2EC07A28FB5C55DF06F4C52C9"
    "DE2BCBF6955817183995497CEA956AE515D2261898FA0510"
    "15728E5A8AACAA68FFFFFFFFFFFFFFFF",
    16,
)
Q: Final[int] = (P - 1) // 2
ELEMENT_BYTES: Final[int] = (P.bit_length() + 7) // 8

_MAGIC: Final[bytes] = b"PSR1"
_KIND_REQUEST: Final[int] = 1
_KIND_RESPONSE: Final[int] = 2
_KIND_SETUP: Final[int] = 3
_FLAG_REVEAL: Final[int] = 0x01

_ELEMENTS_HEADER: Final[struct.Struct] = struct.Struct(">4sBBHI")
_SETUP_HEADER: Final[struct.Struct] = struct.Struct(">4sBBd")
_RAW_HEADER: Final[struct.Struct] = struct.Struct(">HI")

_STRUCTURE_CODES: Final[dict[DataStructure, int]] = {
    DataStructure.RAW: 0,
    DataStructure.GCS: 1,
}
_STRUCTURES_BY_CODE: Final[dict[int, DataStructure]] = {
    code: structure for structure, code in _STRUCTURE_CODES.items()
}

_HASH_TO_GROUP_DOMAIN: Final[bytes] = b"psi-relay/h2g/v1"
_KEY_DOMAIN: Final[bytes] = b"psi-relay/key/v1"
# 256 extra bits keep the reduction modulo P/Q statistically uniform.
_WIDE_BYTES: Final[int] = ELEMENT_BYTES + 32


@dataclass(frozen=True, slots=True)
class Request:
    encrypted_elements: tuple[bytes, ...]
    reveal_intersection: bool


@dataclass(frozen=True, slots=True)
class Response:
    encrypted_elements: tuple[bytes, ...]
    reveal_intersection: bool


@dataclass(frozen=True, slots=True)
class ServerSetup:
    data_structure: DataStructure
    fpr: float
    raw_elements: tuple[bytes, ...] = ()
    gcs: GolombCodedSet | None = None

    def match_indices(self, candidates: Sequence[bytes]) -> list[int]:
        if self.data_structure is DataStructure.GCS:
            if self.gcs is None:
                raise MessageFormatError("GCS setup is missing its set payload")
            return self.gcs.match_indices(candidates)
        members = frozenset(self.raw_elements)
        return [index for index, candidate in enumerate(candidates) if candidate in members]


class _KeyedInstance:
    __slots__ = ("_key", "_reveal_intersection", "_scalar")

    def __init__(self, key: bytes, reveal_intersection: bool) -> None:
        self._scalar: int | None = derive_scalar(key)
        self._key = bytes(key)
        self._reveal_intersection = reveal_intersection

    @property
    def released(self) -> bool:
        return self._scalar is None

    def release(self) -> None:
        self._scalar = None
        self._key = b""

    def _require_scalar(self) -> int:
        if self._scalar is None:
            raise RuntimeError("engine instance has been released")
        return self._scalar


class ReferenceClient(_KeyedInstance):
    """Client role: blinds items and unblinds the server response."""

    __slots__ = ()

    def create_request(self, items: Sequence[str]) -> Request:
        scalar = self._require_scalar()
        encrypted = tuple(_to_bytes(pow(hash_to_group(item), scalar, P)) for item in items)
        return Request(encrypted_elements=encrypted, reveal_intersection=self._reveal_intersection)

    def private_key_bytes(self) -> bytes:
        self._require_scalar()
        return self._key

    def get_intersection(self, setup: object, response: object) -> list[int]:
        if not self._reveal_intersection:
            raise UnsupportedOperationError(
                "client was created without reveal_intersection; only the size is available"
            )
        typed_response = _expect(response, Response, "response")
        if not typed_response.reveal_intersection:
            raise UnsupportedOperationError("server response does not reveal the intersection")
        return _expect(setup, ServerSetup, "setup").match_indices(self._unblind(typed_response))

    def get_intersection_size(self, setup: object, response: object) -> int:
        typed_response = _expect(response, Response, "response")
        matches = _expect(setup, ServerSetup, "setup").match_indices(self._unblind(typed_response))
        return len(matches)

    def _unblind(self, response: Response) -> list[bytes]:
        inverse = pow(self._require_scalar(), -1, Q)
        return [
            _to_bytes(pow(int.from_bytes(element, "big"), inverse, P))
            for element in response.encrypted_elements
        ]


class ReferenceServer(_KeyedInstance):
    """Server role: re-blinds the client request and encrypts its own set."""

    __slots__ = ()

    def process_request(self, request: object) -> Response:
        scalar = self._require_scalar()
        typed_request = _expect(request, Request, "request")
        if typed_request.reveal_intersection != self._reveal_intersection:
            raise UnsupportedOperationError(
                "client and server disagree on reveal_intersection"
            )
        encrypted = [
            _to_bytes(pow(int.from_bytes(element, "big"), scalar, P))
            for element in typed_request.encrypted_elements
        ]
        if not self._reveal_intersection:
            encrypted.sort()
        return Response(
            encrypted_elements=tuple(encrypted),
            reveal_intersection=self._reveal_intersection,
        )

    def create_setup_message(
        self,
        fpr: float,
        num_client_inputs: int,
        items: Sequence[str],
        data_structure: DataStructure,
    ) -> ServerSetup:
        scalar = self._require_scalar()
        if not math.isfinite(fpr) or not 0.0 < fpr < 1.0:
            raise ValueError(f"fpr must be in (0, 1), got {fpr!r}")
        if num_client_inputs < 0:
            raise ValueError("num_client_inputs must be >= 0")

        encrypted = [_to_bytes(pow(hash_to_group(item), scalar, P)) for item in items]
        if data_structure is DataStructure.RAW:
            return ServerSetup(
                data_structure=DataStructure.RAW,
                fpr=fpr,
                raw_elements=tuple(sorted(set(encrypted))),
            )
        if data_structure is DataStructure.GCS:
            # The total false-positive rate is spread across every client query.
            per_query_fpr = fpr / max(num_client_inputs, 1)
            return ServerSetup(
                data_structure=DataStructure.GCS,
                fpr=fpr,
                gcs=GolombCodedSet.build(encrypted, per_query_fpr),
            )
        raise UnsupportedOperationError(
            f"data structure {data_structure.value} is not supported by the reference engine"
        )


class ReferenceEngine:
    """Engine capability backed by modular exponentiation in pure Python."""

    name = "reference"

    def client_from_key(self, key: bytes, reveal_intersection: bool) -> ReferenceClient:
        return ReferenceClient(key, reveal_intersection)

    def server_from_key(self, key: bytes, reveal_intersection: bool) -> ReferenceServer:
        return ReferenceServer(key, reveal_intersection)

    def deserialize_request(self, data: bytes) -> Request:
        elements, reveal = _unpack_elements(data, _KIND_REQUEST, "request")
        return Request(encrypted_elements=elements, reveal_intersection=reveal)

    def deserialize_response(self, data: bytes) -> Response:
        elements, reveal = _unpack_elements(data, _KIND_RESPONSE, "response")
        return Response(encrypted_elements=elements, reveal_intersection=reveal)

    def deserialize_setup(self, data: bytes) -> ServerSetup:
        if len(data) < _SETUP_HEADER.size:
            raise MessageFormatError("server setup header is truncated")
        magic, kind, code, fpr = _SETUP_HEADER.unpack_from(data)
        _check_magic(magic, kind, _KIND_SETUP, "server setup")
        structure = _STRUCTURES_BY_CODE.get(code)
        if structure is None:
            raise MessageFormatError(f"unknown server setup structure code {code}")
        if not math.isfinite(fpr) or not 0.0 < fpr < 1.0:
            raise MessageFormatError("server setup false-positive rate is out of range")
        body = data[_SETUP_HEADER.size :]
        if structure is DataStructure.GCS:
            return ServerSetup(
                data_structure=structure, fpr=fpr, gcs=GolombCodedSet.from_bytes(body)
            )
        if len(body) < _RAW_HEADER.size:
            raise MessageFormatError("raw server setup header is truncated")
        width, count = _RAW_HEADER.unpack_from(body)
        elements = _split_elements(body[_RAW_HEADER.size :], width, count, "server setup")
        return ServerSetup(data_structure=structure, fpr=fpr, raw_elements=elements)

    def serialize(self, message: object) -> bytes:
        if isinstance(message, Request):
            return _pack_elements(
                _KIND_REQUEST, message.encrypted_elements, message.reveal_intersection
            )
        if isinstance(message, Response):
            return _pack_elements(
                _KIND_RESPONSE, message.encrypted_elements, message.reveal_intersection
            )
        if isinstance(message, ServerSetup):
            header = _SETUP_HEADER.pack(
                _MAGIC, _KIND_SETUP, _STRUCTURE_CODES[message.data_structure], message.fpr
            )
            if message.gcs is not None:
                return header + message.gcs.to_bytes()
            body = b"".join(message.raw_elements)
            return header + _RAW_HEADER.pack(ELEMENT_BYTES, len(message.raw_elements)) + body
        raise TypeError(f"cannot serialize {type(message).__name__}")

    def request_element_count(self, request: object) -> int:
        return len(_expect(request, Request, "request").encrypted_elements)

    def self_check(self) -> None:
        """Verify group parameters before the engine is declared ready."""

        if P.bit_length() != 2048 or (P - 1) != 2 * Q:
            raise RuntimeError("reference engine group parameters are inconsistent")
        if pow(4, Q, P) != 1:
            raise RuntimeError("reference engine subgroup order check failed")


async def create_engine() -> ReferenceEngine:
    engine = ReferenceEngine()
    await asyncio.to_thread(engine.self_check)
    return engine


def hash_to_group(item: str) -> int:
    """Map ``item`` to a non-identity element of the order-``Q`` subgroup."""

    data = item.encode("utf-8")
    counter = 0
    while True:
        material = hashlib.shake_256(
            _HASH_TO_GROUP_DOMAIN + counter.to_bytes(4, "big") + data
        ).digest(_WIDE_BYTES)
        element = pow(int.from_bytes(material, "big") % P, 2, P)
        if element > 1:
            return element
        counter += 1


def derive_scalar(key: bytes) -> int:
    """Derive the secret exponent in ``[1, Q - 1]`` from 32 key bytes."""

    if not isinstance(key, (bytes, bytearray)):
        raise TypeError(f"key must be bytes, got {type(key).__name__}")
    if len(key) != KEY_SEED_BYTES:
        raise ValueError(f"key must be {KEY_SEED_BYTES} bytes, got {len(key)}")
    material = hashlib.shake_256(_KEY_DOMAIN + bytes(key)).digest(_WIDE_BYTES)
    return int.from_bytes(material, "big") % (Q - 1) + 1


def _to_bytes(value: int) -> bytes:
    return value.to_bytes(ELEMENT_BYTES, "big")


def _expect(value: object, expected: type[_T], label: str) -> _T:
    if not isinstance(value, expected):
        raise TypeError(f"{label} must be {expected.__name__}, got {type(value).__name__}")
    return value


def _check_magic(magic: bytes, kind: int, expected_kind: int, label: str) -> None:
    if magic != _MAGIC:
        raise MessageFormatError(f"{label} has an unknown format marker")
    if kind != expected_kind:
        raise MessageFormatError(f"{label} has message kind {kind}, expected {expected_kind}")


def _pack_elements(kind: int, elements: Sequence[bytes], reveal: bool) -> bytes:
    flags = _FLAG_REVEAL if reveal else 0
    header = _ELEMENTS_HEADER.pack(_MAGIC, kind, flags, ELEMENT_BYTES, len(elements))
    return header + b"".join(elements)


def _unpack_elements(data: bytes, kind: int, label: str) -> tuple[tuple[bytes, ...], bool]:
    if len(data) < _ELEMENTS_HEADER.size:
        raise MessageFormatError(f"{label} header is truncated")
    magic, found_kind, flags, width, count = _ELEMENTS_HEADER.unpack_from(data)
    _check_magic(magic, found_kind, kind, label)
    if flags & ~_FLAG_REVEAL:
        raise MessageFormatError(f"{label} has unknown flags 0x{flags:02x}")
    elements = _split_elements(data[_ELEMENTS_HEADER.size :], width, count, label)
    return elements, bool(flags & _FLAG_REVEAL)


def _split_elements(body: bytes, width: int, count: int, label: str) -> tuple[bytes, ...]:
    if width != ELEMENT_BYTES:
        raise MessageFormatError(f"{label} element width {width} does not match the group")
    if len(body) != width * count:
        raise MessageFormatError(
            f"{label} body has {len(body)} bytes, expected {width * count} for {count} elements"
        )
    elements = tuple(body[offset : offset + width] for offset in range(0, len(body), width))
    for element in elements:
        value = int.from_bytes(element, "big")
        if not 1 < value < P:
            raise MessageFormatError(f"{label} contains an element outside the group")
    return elements


__all__ = [
    "ELEMENT_BYTES",
    "P",
    "Q",
    "ReferenceClient",
    "ReferenceEngine",
    "ReferenceServer",
    "Request",
    "Response",
    "ServerSetup",
    "create_engine",
    "derive_scalar",
    "hash_to_group",
]
