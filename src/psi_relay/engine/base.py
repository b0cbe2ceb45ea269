"""
psi-relay — PSI engine capability contract.

File: src/psi_relay/engine/base.py
Last updated: 2026-10-18

Purpose
- Define the narrow operation set the dispatcher consumes from a PSI engine
  backend: client/server instance construction from key bytes, request
  encryption, response processing, setup-message construction, intersection
  computation, and binary (de)serialization of the three message types.

Key interfaces / contracts
- Engine instances are transient and MUST be released exactly once. Use
  ``engine_instance`` to bind an instance's lifetime to a ``with`` block.
- Binary parse failures raise ``MessageFormatError`` so callers can tell them
  apart from engine-internal failures.
- ``load_engine`` is the only entry point that imports backend modules.
"""

from __future__ import annotations

import importlib
from collections.abc import Awaitable, Callable, Iterator, Sequence
from contextlib import contextmanager
from enum import StrEnum
from typing import Final, Protocol, TypeVar, runtime_checkable

from psi_relay.constants import ENGINE_BACKENDS


class DataStructure(StrEnum):
    """Server-setup membership structure selector."""

    RAW = "RAW"
    GCS = "GCS"
    BLOOM_FILTER = "BLOOM_FILTER"


class MessageFormatError(ValueError):
    """Raised when bytes do not decode into the expected PSI message type."""


class UnsupportedOperationError(RuntimeError):
    """Raised when a backend cannot honour the requested parameters."""


@runtime_checkable
class ClientInstance(Protocol):
    """Client-role engine instance bound to one private key."""

    def create_request(self, items: Sequence[str]) -> object: ...

    def private_key_bytes(self) -> bytes: ...

    def get_intersection(self, setup: object, response: object) -> list[int]: ...

    def release(self) -> None: ...


@runtime_checkable
class ServerInstance(Protocol):
    """Server-role engine instance bound to one private key."""

    def process_request(self, request: object) -> object: ...

    def create_setup_message(
        self,
        fpr: float,
        num_client_inputs: int,
        items: Sequence[str],
        data_structure: DataStructure,
    ) -> object: ...

    def release(self) -> None: ...


@runtime_checkable
class PsiEngine(Protocol):
    """Loaded engine capability; one per process, owned by the dispatcher."""

    name: str

    def client_from_key(self, key: bytes, reveal_intersection: bool) -> ClientInstance: ...

    def server_from_key(self, key: bytes, reveal_intersection: bool) -> ServerInstance: ...

    def deserialize_request(self, data: bytes) -> object: ...

    def deserialize_response(self, data: bytes) -> object: ...

    def deserialize_setup(self, data: bytes) -> object: ...

    def serialize(self, message: object) -> bytes: ...

    def request_element_count(self, request: object) -> int: ...


_InstanceT = TypeVar("_InstanceT", ClientInstance, ServerInstance)

EngineLoader = Callable[[], Awaitable["PsiEngine"]]

_BACKEND_MODULES: Final[dict[str, str]] = {
    "reference": "psi_relay.engine.reference",
    "openmined": "psi_relay.engine.openmined",
}


@contextmanager
def engine_instance(factory: Callable[[], _InstanceT]) -> Iterator[_InstanceT]:
    """Construct an engine instance and guarantee ``release`` on every exit path."""

    instance = factory()
    try:
        yield instance
    finally:
        instance.release()


async def load_engine(backend: str) -> PsiEngine:
    """Import and initialize the named backend."""

    normalized = backend.strip().lower()
    if normalized not in ENGINE_BACKENDS:
        expected = ", ".join(ENGINE_BACKENDS)
        raise ValueError(f"unknown engine backend {backend!r}; expected one of: {expected}")
    module = importlib.import_module(_BACKEND_MODULES[normalized])
    engine: PsiEngine = await module.create_engine()
    return engine


def engine_loader(backend: str) -> EngineLoader:
    """Bind ``backend`` into a zero-argument loader for the readiness gate."""

    async def _load() -> PsiEngine:
        return await load_engine(backend)

    return _load


__all__ = [
    "ClientInstance",
    "DataStructure",
    "EngineLoader",
    "MessageFormatError",
    "PsiEngine",
    "ServerInstance",
    "UnsupportedOperationError",
    "engine_instance",
    "engine_loader",
    "load_engine",
]
