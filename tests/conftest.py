"""Shared fixtures: deterministic entropy and engine loaders for dispatcher tests."""

from __future__ import annotations

import hashlib
from collections.abc import Awaitable, Callable

import pytest

from psi_relay.engine.base import PsiEngine
from psi_relay.engine.reference import ReferenceEngine
from psi_relay.session.keys import KeyManager


class CountingEntropy:
    """Deterministic entropy: SHAKE-256 over a running counter."""

    def __init__(self, label: bytes = b"tests") -> None:
        self._label = label
        self.calls: list[int] = []

    def get_random_bytes(self, count: int) -> bytes:
        self.calls.append(count)
        material = self._label + len(self.calls).to_bytes(4, "big")
        return hashlib.shake_256(material).digest(count)

    async def get_random_bytes_async(self, count: int) -> bytes:
        return self.get_random_bytes(count)


@pytest.fixture
def entropy() -> CountingEntropy:
    return CountingEntropy()


@pytest.fixture
def keys(entropy: CountingEntropy) -> KeyManager:
    return KeyManager(entropy)


@pytest.fixture
def reference_loader() -> Callable[[], Awaitable[PsiEngine]]:
    async def _load() -> PsiEngine:
        return ReferenceEngine()

    return _load
