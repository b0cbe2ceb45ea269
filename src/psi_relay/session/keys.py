"""Correlation tokens and per-call key seeds drawn from an entropy provider."""

from __future__ import annotations

import asyncio
import secrets
from collections.abc import Callable
from typing import Protocol, runtime_checkable

from psi_relay.constants import DEFAULT_CONTEXT_ID_BYTES, KEY_SEED_BYTES, MIN_CONTEXT_ID_BYTES

_RandBytes = Callable[[int], bytes]


@runtime_checkable
class EntropyProvider(Protocol):
    def get_random_bytes(self, count: int) -> bytes: ...

    async def get_random_bytes_async(self, count: int) -> bytes: ...


class SystemEntropy:
    """Operating-system CSPRNG; the async path runs off the event loop."""

    def __init__(self, randbytes: _RandBytes | None = None) -> None:
        self._randbytes = secrets.token_bytes if randbytes is None else randbytes

    def get_random_bytes(self, count: int) -> bytes:
        return _checked(self._randbytes(count), count)

    async def get_random_bytes_async(self, count: int) -> bytes:
        raw = await asyncio.to_thread(self._randbytes, count)
        return _checked(raw, count)


class KeyManager:
    """Produces fresh randomness for each call and retains none of it."""

    def __init__(
        self,
        entropy: EntropyProvider | None = None,
        *,
        context_id_bytes: int = DEFAULT_CONTEXT_ID_BYTES,
    ) -> None:
        if context_id_bytes < MIN_CONTEXT_ID_BYTES:
            raise ValueError(
                f"context_id_bytes must be >= {MIN_CONTEXT_ID_BYTES}, got {context_id_bytes}"
            )
        self._entropy: EntropyProvider = SystemEntropy() if entropy is None else entropy
        self._context_id_bytes = context_id_bytes

    @property
    def context_id_bytes(self) -> int:
        return self._context_id_bytes

    def new_correlation_token(self) -> str:
        raw = self._entropy.get_random_bytes(self._context_id_bytes)
        return _checked(raw, self._context_id_bytes).hex()

    def new_key_seed(self) -> bytes:
        return _checked(self._entropy.get_random_bytes(KEY_SEED_BYTES), KEY_SEED_BYTES)

    async def new_correlation_token_async(self) -> str:
        raw = await self._entropy.get_random_bytes_async(self._context_id_bytes)
        return _checked(raw, self._context_id_bytes).hex()

    async def new_key_seed_async(self) -> bytes:
        raw = await self._entropy.get_random_bytes_async(KEY_SEED_BYTES)
        return _checked(raw, KEY_SEED_BYTES)


def _checked(raw: object, count: int) -> bytes:
    if not isinstance(raw, (bytes, bytearray, memoryview)):
        raise ValueError("entropy provider must return a bytes-like object")
    as_bytes = bytes(raw)
    if len(as_bytes) != count:
        raise ValueError(f"entropy provider must return exactly {count} bytes")
    return as_bytes


__all__ = ["EntropyProvider", "KeyManager", "SystemEntropy"]
