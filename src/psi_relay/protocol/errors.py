"""Error taxonomy for the relay protocol boundary.

Every error that may surface while handling a command maps to exactly one wire
``kind``. The dispatcher converts these into error envelopes; none of them is
allowed to escape the dispatcher boundary.
"""

from __future__ import annotations

from enum import StrEnum


class ErrorKind(StrEnum):
    """Wire markers carried in the ``error`` field of error envelopes."""

    NOT_READY = "NOT_READY"
    PROTOCOL_DECODE_ERROR = "PROTOCOL_DECODE_ERROR"
    ENGINE_ERROR = "ENGINE_ERROR"
    UNKNOWN_COMMAND = "UNKNOWN_COMMAND"
    ENVELOPE_PARSE_ERROR = "ENVELOPE_PARSE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"
    RUNTIME_FAULT = "RUNTIME_FAULT"
    QUEUE_FULL = "QUEUE_FULL"


class PsiRelayError(RuntimeError):
    """Base error for relay failures that map onto an error envelope."""

    kind: ErrorKind = ErrorKind.INTERNAL_ERROR

    def __init__(self, message: str, *, command_id: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.command_id = command_id


class NotReadyError(PsiRelayError):
    """Raised when a command would run before the engine finished loading."""

    kind = ErrorKind.NOT_READY


class ProtocolDecodeError(PsiRelayError):
    """Raised for malformed base64 text or malformed binary PSI messages."""

    kind = ErrorKind.PROTOCOL_DECODE_ERROR


class DecodeError(ProtocolDecodeError):
    """Raised by the base64 codec for non-canonical or invalid input."""


class EngineError(PsiRelayError):
    """Raised when the PSI engine rejects input or fails internally."""

    kind = ErrorKind.ENGINE_ERROR


class UnknownCommandError(PsiRelayError):
    """Raised for envelopes whose ``type`` is not a known command."""

    kind = ErrorKind.UNKNOWN_COMMAND

    def __init__(
        self,
        message: str,
        *,
        command_id: str | None = None,
        command_type: object = None,
    ) -> None:
        super().__init__(message, command_id=command_id)
        self.command_type = command_type


class EnvelopeParseError(PsiRelayError):
    """Raised when raw text is not a well-formed command envelope."""

    kind = ErrorKind.ENVELOPE_PARSE_ERROR

    def __init__(
        self,
        message: str,
        *,
        command_id: str | None = None,
        command_type: str | None = None,
    ) -> None:
        super().__init__(message, command_id=command_id)
        self.command_type = command_type


class QueueFullError(PsiRelayError):
    """Raised to a submitter when the bounded inbound queue is full."""

    kind = ErrorKind.QUEUE_FULL


__all__ = [
    "DecodeError",
    "EngineError",
    "EnvelopeParseError",
    "ErrorKind",
    "NotReadyError",
    "ProtocolDecodeError",
    "PsiRelayError",
    "QueueFullError",
    "UnknownCommandError",
]
