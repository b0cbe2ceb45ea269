"""
psi-relay — text protocol package.

File: src/psi_relay/protocol/__init__.py
Last updated: 2026-10-18

Purpose
- Group the wire-facing pieces: error taxonomy, base64 codec, and the command
  and response envelopes.
"""

from psi_relay.protocol.codec import MessageCodec, decode, encode
from psi_relay.protocol.errors import (
    DecodeError,
    EngineError,
    EnvelopeParseError,
    ErrorKind,
    NotReadyError,
    ProtocolDecodeError,
    PsiRelayError,
    QueueFullError,
    UnknownCommandError,
)
from psi_relay.protocol.messages import MessageType, parse_envelope

__all__ = [
    "DecodeError",
    "EngineError",
    "EnvelopeParseError",
    "ErrorKind",
    "MessageCodec",
    "MessageType",
    "NotReadyError",
    "ProtocolDecodeError",
    "PsiRelayError",
    "QueueFullError",
    "UnknownCommandError",
    "decode",
    "encode",
    "parse_envelope",
]
