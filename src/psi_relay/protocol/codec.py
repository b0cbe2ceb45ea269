"""
psi-relay — base64 codec for binary PSI messages.

File: src/psi_relay/protocol/codec.py
Last updated: 2026-10-18

Purpose
- Convert binary engine messages to and from standard base64 text so they can
  travel inside JSON envelopes.

Key interfaces / contracts
- ``decode`` accepts only canonical standard-alphabet base64 with ``=``
  padding; anything else raises ``DecodeError``.
- ``MessageCodec`` maps engine parse failures onto ``ProtocolDecodeError``.
"""

from __future__ import annotations

import base64
import binascii
from collections.abc import Callable

from psi_relay.engine.base import MessageFormatError, PsiEngine
from psi_relay.protocol.errors import DecodeError, ProtocolDecodeError


def encode(data: bytes) -> str:
    """Encode ``data`` as standard padded base64 text."""

    if not isinstance(data, (bytes, bytearray, memoryview)):
        raise TypeError(f"encode expects bytes, got {type(data).__name__}")
    return base64.b64encode(bytes(data)).decode("ascii")


def decode(text: object) -> bytes:
    """Decode canonical standard base64 ``text`` back into bytes."""

    if not isinstance(text, str):
        raise DecodeError(f"base64 value must be a string, got {type(text).__name__}")
    if not text.isascii():
        raise DecodeError("base64 value contains non-ASCII characters")
    try:
        data = base64.b64decode(text, validate=True)
    except binascii.Error as exc:
        raise DecodeError(f"invalid base64 value: {exc}") from exc
    if base64.b64encode(data).decode("ascii") != text:
        raise DecodeError("base64 value is not canonically encoded")
    return data


class MessageCodec:
    """Transcode PSI engine messages between engine objects and base64 text."""

    def __init__(self, engine: PsiEngine) -> None:
        self._engine = engine

    def decode_key(self, text: object) -> bytes:
        try:
            return decode(text)
        except DecodeError as exc:
            raise DecodeError(f"key: {exc.message}") from exc

    def decode_request(self, text: object) -> object:
        return self._decode(text, self._engine.deserialize_request, "request")

    def decode_response(self, text: object) -> object:
        return self._decode(text, self._engine.deserialize_response, "response")

    def decode_setup(self, text: object) -> object:
        return self._decode(text, self._engine.deserialize_setup, "setup")

    def encode_message(self, message: object) -> str:
        return encode(self._engine.serialize(message))

    @staticmethod
    def _decode(text: object, parse: Callable[[bytes], object], field: str) -> object:
        try:
            raw = decode(text)
        except DecodeError as exc:
            raise DecodeError(f"{field}: {exc.message}") from exc
        try:
            return parse(raw)
        except MessageFormatError as exc:
            raise ProtocolDecodeError(f"{field}: {exc}") from exc


__all__ = ["MessageCodec", "decode", "encode"]
