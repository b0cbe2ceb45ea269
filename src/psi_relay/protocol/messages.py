"""
psi-relay — command and response envelopes.

File: src/psi_relay/protocol/messages.py
Last updated: 2026-10-18

Purpose
- Parse inbound JSON command envelopes into typed, immutable commands.
- Build outbound success, error, readiness and diagnostic envelopes.

Key interfaces / contracts
- Inbound: ``{"id": str, "type": <MessageType>, "payload": {...}}``; ``id`` is
  optional only for ``INITIALIZED``.
- Outbound results use camelCase field names.
- ``parse_envelope`` raises ``EnvelopeParseError`` or ``UnknownCommandError``
  and always records the ``id`` when it could be extracted.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from dataclasses import dataclass
from enum import StrEnum
from typing import Any, TypeAlias

from psi_relay.protocol.errors import (
    EnvelopeParseError,
    ErrorKind,
    PsiRelayError,
    UnknownCommandError,
)

JSONDict: TypeAlias = dict[str, Any]


class MessageType(StrEnum):
    INITIALIZED = "INITIALIZED"
    CREATE_REQUEST = "CREATE_REQUEST"
    CREATE_RESPONSE = "CREATE_RESPONSE"
    COMPUTE_INTERSECTION = "COMPUTE_INTERSECTION"
    ERROR = "ERROR"


COMMAND_TYPES: frozenset[str] = frozenset(
    {
        MessageType.INITIALIZED.value,
        MessageType.CREATE_REQUEST.value,
        MessageType.CREATE_RESPONSE.value,
        MessageType.COMPUTE_INTERSECTION.value,
    }
)


# --------------------------------------------------------------------------------------
# Payloads
# --------------------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ClientRequestPayload:
    grid: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ServerResponsePayload:
    request: str
    grid: tuple[str, ...]


@dataclass(frozen=True, slots=True)
class ComputeIntersectionPayload:
    key: str
    response: str
    setup: str

    def __repr__(self) -> str:
        return (
            "ComputeIntersectionPayload(key=<redacted>, "
            f"response=<{len(self.response)} chars>, setup=<{len(self.setup)} chars>)"
        )


# --------------------------------------------------------------------------------------
# Results
# --------------------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class InitializedResult:
    initialized: bool = True

    def to_wire(self) -> JSONDict:
        return {"initialized": self.initialized}


@dataclass(frozen=True, slots=True)
class ClientRequestResult:
    context_id: str
    private_key: str
    client_request: str

    def to_wire(self) -> JSONDict:
        return {
            "contextId": self.context_id,
            "privateKey": self.private_key,
            "clientRequest": self.client_request,
        }

    def __repr__(self) -> str:
        return f"ClientRequestResult(context_id={self.context_id!r}, private_key=<redacted>)"


@dataclass(frozen=True, slots=True)
class ServerResponseResult:
    server_response: str
    server_setup: str

    def to_wire(self) -> JSONDict:
        return {"serverResponse": self.server_response, "serverSetup": self.server_setup}


@dataclass(frozen=True, slots=True)
class IntersectionResult:
    intersection: tuple[int, ...]

    def __post_init__(self) -> None:
        if any(b <= a for a, b in zip(self.intersection, self.intersection[1:])):
            raise ValueError("intersection indices must be strictly ascending")

    def to_wire(self) -> JSONDict:
        return {"intersection": list(self.intersection)}


Result: TypeAlias = (
    InitializedResult | ClientRequestResult | ServerResponseResult | IntersectionResult
)


# --------------------------------------------------------------------------------------
# Commands
# --------------------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class Initialized:
    command_id: str | None = None
    type: MessageType = MessageType.INITIALIZED


@dataclass(frozen=True, slots=True)
class CreateRequest:
    command_id: str
    payload: ClientRequestPayload
    type: MessageType = MessageType.CREATE_REQUEST


@dataclass(frozen=True, slots=True)
class CreateResponse:
    command_id: str
    payload: ServerResponsePayload
    type: MessageType = MessageType.CREATE_RESPONSE


@dataclass(frozen=True, slots=True)
class ComputeIntersection:
    command_id: str
    payload: ComputeIntersectionPayload
    type: MessageType = MessageType.COMPUTE_INTERSECTION


Command: TypeAlias = Initialized | CreateRequest | CreateResponse | ComputeIntersection


# --------------------------------------------------------------------------------------
# Parsing
# --------------------------------------------------------------------------------------


def load_envelope(raw: str | bytes | Mapping[str, Any]) -> JSONDict:
    """Return the envelope as a JSON object or raise ``EnvelopeParseError``."""

    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as exc:
            raise EnvelopeParseError(f"envelope is not valid UTF-8: {exc}") from exc
    if not isinstance(raw, str):
        raise EnvelopeParseError(f"envelope must be JSON text, got {type(raw).__name__}")
    try:
        loaded = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise EnvelopeParseError(f"envelope is not valid JSON: {exc.msg}") from exc
    if not isinstance(loaded, dict):
        raise EnvelopeParseError("envelope must be a JSON object")
    return loaded


def extract_command_id(envelope: Mapping[str, Any]) -> str | None:
    value = envelope.get("id")
    return value if isinstance(value, str) else None


def parse_envelope(raw: str | bytes | Mapping[str, Any]) -> Command:
    """Parse one inbound envelope into a typed command."""

    envelope = load_envelope(raw)
    command_id = extract_command_id(envelope)
    if "id" in envelope and envelope["id"] is not None and command_id is None:
        raise EnvelopeParseError("envelope field 'id' must be a string")

    raw_type = envelope.get("type")
    if raw_type is None:
        raise EnvelopeParseError("envelope is missing field 'type'", command_id=command_id)
    if not isinstance(raw_type, str) or raw_type not in COMMAND_TYPES:
        raise UnknownCommandError(
            f"unknown command type {raw_type!r}",
            command_id=command_id,
            command_type=raw_type,
        )
    message_type = MessageType(raw_type)

    if message_type is MessageType.INITIALIZED:
        return Initialized(command_id=command_id)

    if command_id is None:
        raise EnvelopeParseError(
            f"{message_type.value} requires a string 'id'", command_type=message_type.value
        )
    payload = envelope.get("payload")
    if not isinstance(payload, Mapping):
        raise EnvelopeParseError(
            "envelope field 'payload' must be an object",
            command_id=command_id,
            command_type=message_type.value,
        )

    fields = _PayloadFields(payload, command_id, message_type)
    if message_type is MessageType.CREATE_REQUEST:
        return CreateRequest(
            command_id=command_id,
            payload=ClientRequestPayload(grid=fields.string_list("grid")),
        )
    if message_type is MessageType.CREATE_RESPONSE:
        return CreateResponse(
            command_id=command_id,
            payload=ServerResponsePayload(
                request=fields.string("request"),
                grid=fields.string_list("grid"),
            ),
        )
    return ComputeIntersection(
        command_id=command_id,
        payload=ComputeIntersectionPayload(
            key=fields.string("key"),
            response=fields.string("response"),
            setup=fields.string("setup"),
        ),
    )


class _PayloadFields:
    __slots__ = ("_command_id", "_message_type", "_payload")

    def __init__(
        self, payload: Mapping[str, Any], command_id: str, message_type: MessageType
    ) -> None:
        self._payload = payload
        self._command_id = command_id
        self._message_type = message_type

    def string(self, name: str) -> str:
        value = self._payload.get(name)
        if not isinstance(value, str):
            raise self._error(f"payload field {name!r} must be a string")
        return value

    def string_list(self, name: str) -> tuple[str, ...]:
        value = self._payload.get(name)
        if not isinstance(value, list):
            raise self._error(f"payload field {name!r} must be a list of strings")
        for index, item in enumerate(value):
            if not isinstance(item, str):
                raise self._error(f"payload field {name}[{index}] must be a string")
        return tuple(value)

    def _error(self, message: str) -> EnvelopeParseError:
        return EnvelopeParseError(
            message, command_id=self._command_id, command_type=self._message_type.value
        )


# --------------------------------------------------------------------------------------
# Outbound envelopes
# --------------------------------------------------------------------------------------


def success_envelope(
    command_id: str | None, message_type: MessageType, result: Result
) -> JSONDict:
    envelope: JSONDict = {}
    if command_id is not None:
        envelope["id"] = command_id
    envelope["type"] = message_type.value
    envelope["payload"] = result.to_wire()
    return envelope


def initialized_envelope(command_id: str | None = None) -> JSONDict:
    return success_envelope(command_id, MessageType.INITIALIZED, InitializedResult())


def error_envelope(
    error: PsiRelayError,
    *,
    command_id: str | None = None,
    command_type: object = None,
    original: object = None,
) -> JSONDict:
    """Build the structured error reply for a failed command."""

    payload: JSONDict = {"error": error.kind.value, "message": error.message}
    if command_type is not None:
        payload["command"] = command_type
    if original is not None:
        payload["original"] = _jsonable_original(original)
    envelope: JSONDict = {}
    resolved_id = command_id if command_id is not None else error.command_id
    if resolved_id is not None:
        envelope["id"] = resolved_id
    envelope["type"] = MessageType.ERROR.value
    envelope["payload"] = payload
    return envelope


def diagnostic_envelope(message: str, exception_type: str) -> JSONDict:
    """Build the envelope forwarded for faults outside command handling."""

    return {
        "type": MessageType.ERROR.value,
        "payload": {
            "error": ErrorKind.RUNTIME_FAULT.value,
            "message": message,
            "exceptionType": exception_type,
        },
    }


def _jsonable_original(original: object) -> object:
    if isinstance(original, (bytes, bytearray)):
        return bytes(original).decode("utf-8", errors="replace")
    if isinstance(original, str):
        return original
    try:
        json.dumps(original)
    except (TypeError, ValueError):
        return repr(original)
    return original


__all__ = [
    "COMMAND_TYPES",
    "ClientRequestPayload",
    "ClientRequestResult",
    "Command",
    "ComputeIntersection",
    "ComputeIntersectionPayload",
    "CreateRequest",
    "CreateResponse",
    "Initialized",
    "InitializedResult",
    "IntersectionResult",
    "JSONDict",
    "MessageType",
    "Result",
    "ServerResponsePayload",
    "ServerResponseResult",
    "diagnostic_envelope",
    "error_envelope",
    "extract_command_id",
    "initialized_envelope",
    "load_envelope",
    "parse_envelope",
    "success_envelope",
]
