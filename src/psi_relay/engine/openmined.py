"""Engine backend over the OpenMined ``private_set_intersection`` bindings.

Installed through the ``openmined`` extra (``openmined.psi`` on the index).
This module is only imported by ``load_engine`` so a missing distribution
surfaces as an engine initialization failure.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Any, TypeVar

import private_set_intersection.python as psi
from google.protobuf.message import DecodeError as ProtobufDecodeError
from google.protobuf.message import Message

from psi_relay.engine.base import DataStructure, MessageFormatError

logger = logging.getLogger(__name__)

_M = TypeVar("_M", bound=Message)

_DATA_STRUCTURES = {
    DataStructure.RAW: psi.DataStructure.RAW,
    DataStructure.GCS: psi.DataStructure.GCS,
    DataStructure.BLOOM_FILTER: psi.DataStructure.BLOOM_FILTER,
}


class OpenMinedClient:
    __slots__ = ("_handle",)

    def __init__(self, key: bytes, reveal_intersection: bool) -> None:
        self._handle = psi.client.CreateFromKey(bytes(key), reveal_intersection)

    def create_request(self, items: Sequence[str]) -> object:
        return self._require().CreateRequest(list(items))

    def private_key_bytes(self) -> bytes:
        return bytes(self._require().GetPrivateKeyBytes())

    def get_intersection(self, setup: object, response: object) -> list[int]:
        return list(self._require().GetIntersection(setup, response))

    def release(self) -> None:
        self._handle = None

    def _require(self) -> Any:
        if self._handle is None:
            raise RuntimeError("engine instance has been released")
        return self._handle


class OpenMinedServer:
    __slots__ = ("_handle",)

    def __init__(self, key: bytes, reveal_intersection: bool) -> None:
        self._handle = psi.server.CreateFromKey(bytes(key), reveal_intersection)

    def process_request(self, request: object) -> object:
        return self._require().ProcessRequest(request)

    def create_setup_message(
        self,
        fpr: float,
        num_client_inputs: int,
        items: Sequence[str],
        data_structure: DataStructure,
    ) -> object:
        return self._require().CreateSetupMessage(
            fpr, num_client_inputs, list(items), _DATA_STRUCTURES[data_structure]
        )

    def release(self) -> None:
        self._handle = None

    def _require(self) -> Any:
        if self._handle is None:
            raise RuntimeError("engine instance has been released")
        return self._handle


class OpenMinedEngine:
    name = "openmined"

    def client_from_key(self, key: bytes, reveal_intersection: bool) -> OpenMinedClient:
        return OpenMinedClient(key, reveal_intersection)

    def server_from_key(self, key: bytes, reveal_intersection: bool) -> OpenMinedServer:
        return OpenMinedServer(key, reveal_intersection)

    def deserialize_request(self, data: bytes) -> object:
        return _parse(psi.Request(), data, "request")

    def deserialize_response(self, data: bytes) -> object:
        return _parse(psi.Response(), data, "response")

    def deserialize_setup(self, data: bytes) -> object:
        return _parse(psi.ServerSetup(), data, "server setup")

    def serialize(self, message: object) -> bytes:
        serializer = getattr(message, "SerializeToString", None)
        if serializer is None:
            raise TypeError(f"cannot serialize {type(message).__name__}")
        return bytes(serializer())

    def request_element_count(self, request: Any) -> int:
        return len(request.encrypted_elements)


def _parse(message: _M, data: bytes, label: str) -> _M:
    try:
        message.ParseFromString(data)
    except ProtobufDecodeError as exc:
        raise MessageFormatError(f"{label} is not a valid protobuf message: {exc}") from exc
    return message


async def create_engine() -> OpenMinedEngine:
    version = getattr(psi, "__version__", "unknown")
    logger.info("OpenMined PSI bindings loaded (version=%s)", version)
    return OpenMinedEngine()


__all__ = ["OpenMinedClient", "OpenMinedEngine", "OpenMinedServer", "create_engine"]
