"""
psi-relay — protocol dispatcher.

File: src/psi_relay/control_plane/dispatcher.py
Last updated: 2026-10-18

Purpose
- Accept command envelopes, hold them until the engine is ready, run the
  three PSI handshake steps against the engine, and emit exactly one
  correlated reply per command in acceptance order.

Key interfaces / contracts
- ``submit`` enqueues without blocking; a bounded queue that is full raises
  ``QueueFullError`` to the submitter.
- ``handle`` is the synchronous per-command core. It never raises for
  command-level failures; every failure becomes an error envelope.
- Engine instances are scoped with ``engine_instance`` and released exactly
  once on every exit path.
- No key material is retained on the dispatcher after a command returns.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections.abc import Awaitable, Callable, Iterator, Mapping
from contextlib import contextmanager, suppress
from enum import StrEnum
from typing import Any, Final

from psi_relay.constants import FALSE_POSITIVE_RATE, REVEAL_INTERSECTION
from psi_relay.control_plane.readiness import ReadinessGate, ReadinessNotificationError
from psi_relay.engine.base import DataStructure, EngineLoader, PsiEngine, engine_instance
from psi_relay.observability.logging import correlation_scope, get_event_logger
from psi_relay.protocol.codec import MessageCodec, encode
from psi_relay.protocol.errors import (
    EngineError,
    EnvelopeParseError,
    NotReadyError,
    PsiRelayError,
    QueueFullError,
    UnknownCommandError,
)
from psi_relay.protocol.messages import (
    ClientRequestPayload,
    ClientRequestResult,
    Command,
    ComputeIntersection,
    ComputeIntersectionPayload,
    CreateRequest,
    CreateResponse,
    Initialized,
    InitializedResult,
    IntersectionResult,
    JSONDict,
    Result,
    ServerResponsePayload,
    ServerResponseResult,
    diagnostic_envelope,
    error_envelope,
    extract_command_id,
    initialized_envelope,
    load_envelope,
    parse_envelope,
    success_envelope,
)
from psi_relay.session.keys import KeyManager

logger = logging.getLogger(__name__)

Sender = Callable[[JSONDict], Awaitable[None] | None]
RawEnvelope = str | bytes | Mapping[str, Any]

_SETUP_DATA_STRUCTURE: Final[DataStructure] = DataStructure.GCS


class DispatcherState(StrEnum):
    WAITING_FOR_READINESS = "WAITING_FOR_READINESS"
    READY = "READY"


@contextmanager
def _engine_failures(operation: str) -> Iterator[None]:
    try:
        yield
    except PsiRelayError:
        raise
    except Exception as exc:
        raise EngineError(f"{operation} failed: {type(exc).__name__}: {exc}") from exc


class ProtocolDispatcher:
    """Single-worker command processor that owns the engine handle."""

    def __init__(
        self,
        engine_loader: EngineLoader,
        send: Sender,
        *,
        keys: KeyManager | None = None,
        queue_size: int = 0,
        events: Any | None = None,
    ) -> None:
        if queue_size < 0:
            raise ValueError("queue_size must be >= 0")
        self._send = send
        self._keys = KeyManager() if keys is None else keys
        self._gate = ReadinessGate(engine_loader, on_ready=self._announce_ready)
        self._queue: asyncio.Queue[RawEnvelope] = asyncio.Queue(maxsize=queue_size)
        self._worker: asyncio.Task[None] | None = None
        self._codec: MessageCodec | None = None
        self._settled = asyncio.Event()
        self._events = events if events is not None else get_event_logger(__name__)

    @property
    def state(self) -> DispatcherState:
        if self._gate.is_ready:
            return DispatcherState.READY
        return DispatcherState.WAITING_FOR_READINESS

    @property
    def gate(self) -> ReadinessGate:
        return self._gate

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    # ----------------------------------------------------------------------------------
    # Lifecycle
    # ----------------------------------------------------------------------------------

    async def start(self) -> None:
        """Begin engine initialization and start the worker task."""

        if self._worker is None:
            self._worker = asyncio.create_task(self.run(), name="psi-relay-dispatcher")

    async def drain(self) -> None:
        """Wait until readiness has settled and every accepted command is answered."""

        if self._worker is None:
            raise RuntimeError("dispatcher has not been started")
        joiner = asyncio.create_task(self._settle())
        try:
            await asyncio.wait({joiner, self._worker}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if not joiner.done():
                joiner.cancel()
                with suppress(asyncio.CancelledError):
                    await joiner
        if self._worker.done() and not self._worker.cancelled():
            failure = self._worker.exception()
            if failure is not None:
                raise failure

    async def _settle(self) -> None:
        await self._settled.wait()
        await self._queue.join()

    async def stop(self) -> None:
        if self._worker is None:
            return
        worker, self._worker = self._worker, None
        worker.cancel()
        with suppress(asyncio.CancelledError):
            await worker

    async def __aenter__(self) -> ProtocolDispatcher:
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.stop()

    def submit(self, raw: RawEnvelope) -> None:
        """Accept one inbound envelope for processing in arrival order."""

        try:
            self._queue.put_nowait(raw)
        except asyncio.QueueFull as exc:
            command_id = _peek_command_id(raw)
            logger.warning(
                "inbound queue full; rejecting command", extra={"maxsize": self._queue.maxsize}
            )
            raise QueueFullError(
                f"inbound queue is full ({self._queue.maxsize} pending)", command_id=command_id
            ) from exc

    async def run(self) -> None:
        """Worker loop: wait for readiness, then answer commands one at a time."""

        engine: PsiEngine | None = None
        try:
            engine = await self._gate.await_ready()
        except ReadinessNotificationError:
            raise
        except Exception as exc:
            await self._emit(
                diagnostic_envelope(
                    f"PSI engine initialization failed: {exc}", type(exc).__name__
                )
            )

        if engine is not None:
            self._codec = MessageCodec(engine)
        self._settled.set()

        while True:
            raw = await self._queue.get()
            try:
                envelope = self.handle(raw)
                await self._emit(envelope)
            finally:
                self._queue.task_done()

    # ----------------------------------------------------------------------------------
    # Command handling
    # ----------------------------------------------------------------------------------

    def handle(self, raw: RawEnvelope) -> JSONDict:
        """Process one envelope and return its reply envelope."""

        try:
            command = parse_envelope(raw)
        except UnknownCommandError as exc:
            logger.warning("rejected unknown command: %s", exc.message)
            return error_envelope(
                exc, command_id=exc.command_id, command_type=exc.command_type, original=raw
            )
        except EnvelopeParseError as exc:
            logger.warning("rejected malformed envelope: %s", exc.message)
            return error_envelope(
                exc, command_id=exc.command_id, command_type=exc.command_type, original=raw
            )

        command_type = command.type.value
        with correlation_scope(command_id=command.command_id or None, command_type=command_type):
            started = time.perf_counter()
            try:
                result = self._execute(command)
            except PsiRelayError as exc:
                logger.warning(
                    "command failed: %s", exc.message, extra={"error": exc.kind.value}
                )
                self._log_outcome(started, error=exc.kind.value)
                return error_envelope(
                    exc, command_id=command.command_id, command_type=command_type, original=raw
                )
            except Exception as exc:
                logger.exception("unexpected failure while handling command")
                internal = PsiRelayError(f"internal error: {type(exc).__name__}: {exc}")
                self._log_outcome(started, error=internal.kind.value)
                return error_envelope(
                    internal,
                    command_id=command.command_id,
                    command_type=command_type,
                    original=raw,
                )
            self._log_outcome(started)
            return success_envelope(command.command_id, command.type, result)

    def _log_outcome(self, started: float, *, error: str | None = None) -> None:
        self._events.info(
            "relay_command_outcome",
            outcome="ok" if error is None else "error",
            error=error,
            duration_ms=round((time.perf_counter() - started) * 1000, 3),
        )

    def _execute(self, command: Command) -> Result:
        if isinstance(command, Initialized):
            if not self._gate.is_ready:
                raise NotReadyError("PSI engine is not initialized")
            return InitializedResult()
        engine, codec = self._require_engine()
        if isinstance(command, CreateRequest):
            return self._create_request(engine, codec, command.payload)
        if isinstance(command, CreateResponse):
            return self._create_response(engine, codec, command.payload)
        if isinstance(command, ComputeIntersection):
            return self._compute_intersection(engine, codec, command.payload)
        raise TypeError(f"unhandled command {type(command).__name__}")

    def _require_engine(self) -> tuple[PsiEngine, MessageCodec]:
        if not self._gate.is_ready:
            raise NotReadyError("PSI engine is not initialized")
        engine = self._gate.engine
        if self._codec is None:
            self._codec = MessageCodec(engine)
        return engine, self._codec

    def _create_request(
        self, engine: PsiEngine, codec: MessageCodec, payload: ClientRequestPayload
    ) -> ClientRequestResult:
        context_id = self._keys.new_correlation_token()
        seed = self._keys.new_key_seed()
        with (
            _engine_failures("client request"),
            engine_instance(lambda: engine.client_from_key(seed, REVEAL_INTERSECTION)) as client,
        ):
            request = client.create_request(payload.grid)
            private_key = client.private_key_bytes()
            client_request = codec.encode_message(request)
        logger.debug(
            "client request created",
            extra={"context_id": context_id, "grid_size": len(payload.grid)},
        )
        return ClientRequestResult(
            context_id=context_id,
            private_key=encode(private_key),
            client_request=client_request,
        )

    def _create_response(
        self, engine: PsiEngine, codec: MessageCodec, payload: ServerResponsePayload
    ) -> ServerResponseResult:
        request = codec.decode_request(payload.request)
        with _engine_failures("request inspection"):
            num_client_inputs = engine.request_element_count(request)
        seed = self._keys.new_key_seed()
        with (
            _engine_failures("server response"),
            engine_instance(lambda: engine.server_from_key(seed, REVEAL_INTERSECTION)) as server,
        ):
            response = server.process_request(request)
            setup = server.create_setup_message(
                FALSE_POSITIVE_RATE, num_client_inputs, payload.grid, _SETUP_DATA_STRUCTURE
            )
            server_response = codec.encode_message(response)
            server_setup = codec.encode_message(setup)
        logger.debug(
            "server response created",
            extra={"client_inputs": num_client_inputs, "grid_size": len(payload.grid)},
        )
        return ServerResponseResult(server_response=server_response, server_setup=server_setup)

    def _compute_intersection(
        self, engine: PsiEngine, codec: MessageCodec, payload: ComputeIntersectionPayload
    ) -> IntersectionResult:
        key = codec.decode_key(payload.key)
        response = codec.decode_response(payload.response)
        setup = codec.decode_setup(payload.setup)
        with (
            _engine_failures("intersection"),
            engine_instance(lambda: engine.client_from_key(key, REVEAL_INTERSECTION)) as client,
        ):
            indices = client.get_intersection(setup, response)
        intersection = tuple(sorted(set(indices)))
        logger.debug("intersection computed", extra={"matches": len(intersection)})
        return IntersectionResult(intersection=intersection)

    # ----------------------------------------------------------------------------------
    # Outbound
    # ----------------------------------------------------------------------------------

    async def _announce_ready(self) -> None:
        await self._emit(initialized_envelope())

    async def _emit(self, envelope: JSONDict) -> None:
        outcome = self._send(envelope)
        if inspect.isawaitable(outcome):
            await outcome


def _peek_command_id(raw: RawEnvelope) -> str | None:
    try:
        return extract_command_id(load_envelope(raw))
    except EnvelopeParseError:
        return None


__all__ = ["DispatcherState", "ProtocolDispatcher", "RawEnvelope", "Sender"]
