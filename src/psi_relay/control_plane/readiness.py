"""
psi-relay — engine readiness gate.

File: src/psi_relay/control_plane/readiness.py
Last updated: 2026-10-18

Purpose
- Load the PSI engine exactly once per process and announce readiness exactly
  once.

Key interfaces / contracts
- ``await_ready`` may be called any number of times from any number of tasks;
  all of them share one initialization task.
- Readiness is irreversible. A failed initialization leaves the gate
  ``UNINITIALIZED`` and re-raises the original failure to every awaiter.
- Cancelling one awaiter never cancels the shared initialization.
- A failing ``on_ready`` callback surfaces as ``ReadinessNotificationError``
  after the gate is already ``READY``; it is never mistaken for a load failure.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum

from psi_relay.engine.base import EngineLoader, PsiEngine
from psi_relay.protocol.errors import NotReadyError

logger = logging.getLogger(__name__)

ReadyCallback = Callable[[], Awaitable[None] | None]


class ReadinessNotificationError(RuntimeError):
    """The engine loaded but announcing readiness failed."""


class EngineReadiness(StrEnum):
    UNINITIALIZED = "UNINITIALIZED"
    READY = "READY"


class ReadinessGate:
    """One-shot asynchronous initialization barrier around an engine loader."""

    def __init__(self, loader: EngineLoader, *, on_ready: ReadyCallback | None = None) -> None:
        self._loader = loader
        self._on_ready = on_ready
        self._state = EngineReadiness.UNINITIALIZED
        self._engine: PsiEngine | None = None
        self._failure: BaseException | None = None
        self._task: asyncio.Task[PsiEngine] | None = None
        self._notified = False

    @property
    def state(self) -> EngineReadiness:
        return self._state

    @property
    def is_ready(self) -> bool:
        return self._state is EngineReadiness.READY

    @property
    def failure(self) -> BaseException | None:
        return self._failure

    @property
    def engine(self) -> PsiEngine:
        if self._engine is None:
            raise NotReadyError("PSI engine is not initialized")
        return self._engine

    async def await_ready(self) -> PsiEngine:
        """Start initialization on first call and wait for it to finish."""

        if self._engine is not None:
            return self._engine
        if self._task is None:
            self._task = asyncio.create_task(self._initialize(), name="psi-relay-engine-init")
        return await asyncio.shield(self._task)

    async def _initialize(self) -> PsiEngine:
        logger.info("initializing PSI engine")
        try:
            engine = await self._loader()
        except Exception as exc:
            self._failure = exc
            logger.error("PSI engine initialization failed: %s", exc, exc_info=True)
            raise
        self._engine = engine
        self._state = EngineReadiness.READY
        logger.info("PSI engine ready", extra={"engine": getattr(engine, "name", "unknown")})
        try:
            await self._notify()
        except Exception as exc:
            logger.error("readiness notification failed: %s", exc)
            raise ReadinessNotificationError(f"readiness notification failed: {exc}") from exc
        return engine

    async def _notify(self) -> None:
        if self._notified or self._on_ready is None:
            return
        self._notified = True
        outcome = self._on_ready()
        if inspect.isawaitable(outcome):
            await outcome


__all__ = ["EngineReadiness", "ReadinessGate", "ReadinessNotificationError", "ReadyCallback"]
