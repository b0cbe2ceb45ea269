"""Forward faults raised outside command handling to the caller as diagnostics.

File: src/psi_relay/observability/faults.py

Purpose
- Report exceptions that escape the event loop, the main thread or worker
  threads as ``RUNTIME_FAULT`` envelopes so the caller is never left waiting
  on a silent crash.

Security
- Envelopes carry the exception type and a truncated message only. Tracebacks
  go to the log, never to the protocol channel.
"""

from __future__ import annotations

import asyncio
import logging
import sys
import threading
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from types import TracebackType
from typing import Any

from psi_relay.protocol.messages import JSONDict, diagnostic_envelope

logger = logging.getLogger(__name__)

_MAX_MESSAGE_LEN = 500
_LOOP_FAULT_TYPE = "EventLoopError"

FaultSink = Callable[[JSONDict], object]


class FaultForwarder:
    """Turns uncaught exceptions into diagnostic envelopes."""

    def __init__(self, sink: FaultSink) -> None:
        self._sink = sink
        self._lock = threading.Lock()
        self.forwarded = 0

    def forward(self, exc: BaseException | None, *, message: str | None = None) -> JSONDict:
        text = message if message is not None else str(exc)
        if exc is not None and not text:
            text = type(exc).__qualname__
        exception_type = type(exc).__qualname__ if exc is not None else _LOOP_FAULT_TYPE
        envelope = diagnostic_envelope(text[:_MAX_MESSAGE_LEN], exception_type)

        if exc is not None:
            logger.error(
                "runtime fault: %s",
                text,
                exc_info=(type(exc), exc, exc.__traceback__),
            )
        else:
            logger.error("runtime fault: %s", text)

        with self._lock:
            self.forwarded += 1
            try:
                self._sink(envelope)
            except Exception:
                logger.exception("failed to forward runtime fault diagnostic")
        return envelope

    def handle_loop_exception(
        self, loop: asyncio.AbstractEventLoop, context: Mapping[str, Any]
    ) -> None:
        exc = context.get("exception")
        message = str(context.get("message") or "")
        if isinstance(exc, BaseException):
            detail = f"{message}: {exc}" if message and str(exc) else (message or str(exc))
            self.forward(exc, message=detail or None)
        else:
            self.forward(None, message=message or "unhandled event loop error")

    def handle_sys_exception(
        self,
        exc_type: type[BaseException],
        exc: BaseException,
        tb: TracebackType | None,
    ) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            sys.__excepthook__(exc_type, exc, tb)
            return
        self.forward(exc)

    def handle_thread_exception(self, args: threading.ExceptHookArgs) -> None:
        if args.exc_value is None or issubclass(args.exc_type, SystemExit):
            return
        thread_name = args.thread.name if args.thread is not None else "unknown"
        self.forward(args.exc_value, message=f"thread {thread_name}: {args.exc_value}")


@contextmanager
def fault_forwarding(
    sink: FaultSink, loop: asyncio.AbstractEventLoop | None = None
) -> Iterator[FaultForwarder]:
    """Install process-wide fault hooks for the lifetime of the ``with`` block."""

    forwarder = FaultForwarder(sink)
    previous_sys_hook = sys.excepthook
    previous_thread_hook = threading.excepthook
    previous_loop_handler = loop.get_exception_handler() if loop is not None else None

    sys.excepthook = forwarder.handle_sys_exception
    threading.excepthook = forwarder.handle_thread_exception
    if loop is not None:
        loop.set_exception_handler(forwarder.handle_loop_exception)
    try:
        yield forwarder
    finally:
        sys.excepthook = previous_sys_hook
        threading.excepthook = previous_thread_hook
        if loop is not None:
            loop.set_exception_handler(previous_loop_handler)


__all__ = ["FaultForwarder", "FaultSink", "fault_forwarding"]
