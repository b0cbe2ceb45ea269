"""
psi-relay — line-delimited JSON bridge over stdio.

File: src/psi_relay/transport/stdio.py
Last updated: 2026-10-18

Purpose
- Let a host process drive the dispatcher by writing one JSON envelope per
  line to stdin and reading one JSON envelope per line from stdout.

Key interfaces / contracts
- stdout carries protocol envelopes only; logs go to stderr.
- Input is read as bytes whenever the stream exposes a binary buffer, so a
  line that is not UTF-8 becomes an ``ENVELOPE_PARSE_ERROR`` reply.
- Blank input lines are ignored. On EOF, or when reading input fails, every
  accepted command is answered before ``serve_stdio`` returns; a read failure
  is also reported as a ``RUNTIME_FAULT`` diagnostic.
- ``InMemoryChannel`` is the in-process sender used by tests and the local
  ``handshake`` command.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
import threading
from typing import BinaryIO, TextIO

from psi_relay.control_plane.dispatcher import ProtocolDispatcher
from psi_relay.engine.base import EngineLoader
from psi_relay.observability.faults import FaultForwarder, fault_forwarding
from psi_relay.protocol.errors import QueueFullError
from psi_relay.protocol.messages import JSONDict, error_envelope
from psi_relay.session.keys import KeyManager

logger = logging.getLogger(__name__)

InputStream = TextIO | BinaryIO


def dumps_envelope(envelope: JSONDict) -> str:
    return json.dumps(envelope, separators=(",", ":"), ensure_ascii=False)


class LineWriter:
    """Sender that writes each envelope as one flushed JSON line."""

    def __init__(self, stream: TextIO) -> None:
        self._stream = stream
        self._lock = threading.Lock()
        self.written = 0

    def __call__(self, envelope: JSONDict) -> None:
        line = dumps_envelope(envelope) + "\n"
        with self._lock:
            self._stream.write(line)
            self._stream.flush()
            self.written += 1


class InMemoryChannel:
    """Sender that keeps outbound envelopes for in-process consumers."""

    def __init__(self) -> None:
        self.sent: list[JSONDict] = []
        self._inbox: asyncio.Queue[JSONDict] = asyncio.Queue()

    def __call__(self, envelope: JSONDict) -> None:
        self.sent.append(envelope)
        self._inbox.put_nowait(envelope)

    async def receive(self, *, timeout: float | None = 5.0) -> JSONDict:
        return await asyncio.wait_for(self._inbox.get(), timeout)

    def replies_for(self, command_id: str) -> list[JSONDict]:
        return [envelope for envelope in self.sent if envelope.get("id") == command_id]


async def serve_stdio(
    engine_loader: EngineLoader,
    *,
    keys: KeyManager | None = None,
    queue_size: int = 0,
    input_stream: InputStream | None = None,
    output_stream: TextIO | None = None,
) -> int:
    """Run the bridge until EOF and return the number of envelopes accepted."""

    source = _line_source(sys.stdin if input_stream is None else input_stream)
    writer = LineWriter(sys.stdout if output_stream is None else output_stream)
    dispatcher = ProtocolDispatcher(engine_loader, writer, keys=keys, queue_size=queue_size)

    with fault_forwarding(writer, asyncio.get_running_loop()) as forwarder:
        accepted = await _pump(source, writer, dispatcher, forwarder)
    logger.info("stdio bridge stopped", extra={"accepted": accepted, "written": writer.written})
    return accepted


def _line_source(stream: InputStream) -> InputStream:
    buffer = getattr(stream, "buffer", None)
    return buffer if buffer is not None else stream


async def _pump(
    source: InputStream,
    writer: LineWriter,
    dispatcher: ProtocolDispatcher,
    forwarder: FaultForwarder,
) -> int:
    accepted = 0
    async with dispatcher:
        try:
            while True:
                line: str | bytes = await asyncio.to_thread(source.readline)
                if not line:
                    break
                text = line.strip()
                if not text:
                    continue
                try:
                    dispatcher.submit(text)
                except QueueFullError as exc:
                    writer(error_envelope(exc, original=text))
                    continue
                accepted += 1
        except Exception as exc:
            forwarder.forward(exc, message=f"stdio input failed: {exc}")
        logger.info("input closed; draining %d pending command(s)", dispatcher.pending)
        await dispatcher.drain()
    return accepted


__all__ = ["InMemoryChannel", "LineWriter", "dumps_envelope", "serve_stdio"]
