"""
psi-relay — structured logging for the relay process.

File: src/psi_relay/observability/logging.py
Last updated: 2026-10-18

Purpose
- Emit JSON-lines or text log records to stderr and an optional per-session
  file, with correlation fields and key-material redaction.

Key interfaces / contracts
- stdout carries the relay protocol; no sink configured here writes to it.
- Records pass through a bounded queue drained by a listener thread; when the
  queue is full a record is dropped and counted, never blocking the caller.
- ``correlation_scope`` binds ``command_id``/``command_type``/``context_id``
  for the current task; the fields are captured on the emitting thread.
- ``get_event_logger`` hands structlog events to the same stdlib pipeline.
"""

from __future__ import annotations

import contextvars
import json
import logging
import logging.handlers
import math
import queue
import re
import sys
import threading
from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Final, Literal, cast

import structlog

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]
LogRedactor = Callable[[JSONValue], JSONValue]
LogFormat = Literal["json", "text"]

LOG_FILENAME: Final[str] = "relay.jsonl"
_REDACTED: Final[str] = "***REDACTED***"
_LOG_FORMATS: Final[tuple[str, ...]] = ("json", "text")

_SENSITIVE_KEY_TERMS: Final[tuple[str, ...]] = ("key", "seed", "secret", "token", "password")
_SENSITIVE_ASSIGNMENT: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(private[_-]?key|key|seed|secret|token|password)\b\s*([:=])\s*([^\s,;]+)"
)

# Attributes every LogRecord carries; anything else came in through ``extra``.
_RECORD_ATTRIBUTES: Final[frozenset[str]] = frozenset(
    {*vars(logging.makeLogRecord({})), "message", "asctime", "taskName", "correlation"}
)

_CORRELATION: contextvars.ContextVar[tuple[tuple[str, str], ...]] = contextvars.ContextVar(
    "psi_relay_correlation", default=()
)

_ACTIVE_LOCK = threading.Lock()
_ACTIVE: StructuredLoggingHandle | None = None


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Settings for one relay process's log sinks.

    With ``log_dir`` set, records also go to ``<log_dir>/<session_id>/relay.jsonl``.
    """

    session_id: str
    log_dir: Path | str | None = None
    logger_name: str = "psi_relay"
    level: int | str = "INFO"
    log_format: LogFormat = "json"
    queue_size: int = 4096
    log_to_stderr: bool = True
    redact: bool = True


def setup_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    session_id: str,
    logger_name: str = "psi_relay",
) -> logging.Logger:
    """Configure logging from the ``[observability]`` table and return the logger."""

    cfg = dict(observability_config or {})
    log_dir = cfg.get("log_dir")
    handle = setup_structured_logging(
        LoggingConfig(
            session_id=session_id,
            log_dir=log_dir if isinstance(log_dir, (str, Path)) and str(log_dir) else None,
            logger_name=logger_name,
            level=cast("int | str", cfg.get("log_level", "INFO")),
            log_format=cast("LogFormat", cfg.get("log_format", "json")),
            log_to_stderr=bool(cfg.get("log_to_stderr", True)),
            redact=bool(cfg.get("redact_secrets", True)),
        )
    )
    return handle.logger


class _CorrelatingQueueHandler(logging.handlers.QueueHandler):
    def __init__(self, log_queue: queue.Queue[logging.LogRecord]) -> None:
        super().__init__(log_queue)
        self._drop_lock = threading.Lock()
        self.dropped = 0

    def prepare(self, record: logging.LogRecord) -> logging.LogRecord:
        record.correlation = dict(_CORRELATION.get())
        return cast("logging.LogRecord", super().prepare(record))

    def enqueue(self, record: logging.LogRecord) -> None:
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._drop_lock:
                self.dropped += 1


class _RelayFormatter(logging.Formatter):
    """Render a record as one JSON object or one human-readable line."""

    def __init__(self, *, log_format: str, session_id: str, redactor: LogRedactor) -> None:
        super().__init__()
        self._json = log_format == "json"
        self._session_id = session_id
        self._redactor = redactor

    def format(self, record: logging.LogRecord) -> str:
        message = self._scrub(record.getMessage())
        correlation = {"session_id": self._session_id, **getattr(record, "correlation", {})}
        fields = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRIBUTES and not key.startswith("_")
        }
        rendered_fields = self._redactor(_jsonable(fields)) if fields else None
        exception = self._scrub(self.formatException(record.exc_info)) if record.exc_info else None

        if self._json:
            event: dict[str, JSONValue] = {
                "timestamp": _timestamp(record.created),
                "level": record.levelname,
                "logger": record.name,
                "message": message,
                **correlation,
            }
            if rendered_fields is not None:
                event["fields"] = rendered_fields
            if exception is not None:
                event["exception"] = exception
            return json.dumps(event, sort_keys=True, separators=(",", ":"), ensure_ascii=False)

        context = " ".join(f"{key}={value}" for key, value in sorted(correlation.items()))
        line = f"{_timestamp(record.created)} {record.levelname:<7} {record.name}: {message}"
        line = f"{line} [{context}]"
        if rendered_fields is not None:
            line = f"{line} {json.dumps(rendered_fields, sort_keys=True, ensure_ascii=False)}"
        if exception is not None:
            line = f"{line}\n{exception}"
        return line

    def _scrub(self, text: str) -> str:
        scrubbed = self._redactor(text)
        return scrubbed if isinstance(scrubbed, str) else json.dumps(scrubbed)


class StructuredLoggingHandle:
    """The running sinks of one ``setup_structured_logging`` call."""

    def __init__(
        self,
        *,
        logger: logging.Logger,
        session_id: str,
        session_log_dir: Path | None,
        queue_handler: _CorrelatingQueueHandler,
        listener: logging.handlers.QueueListener,
        sinks: tuple[logging.Handler, ...],
    ) -> None:
        self.logger = logger
        self.session_id = session_id
        self.session_log_dir = session_log_dir
        self.log_path = session_log_dir / LOG_FILENAME if session_log_dir is not None else None
        self._queue_handler = queue_handler
        self._listener = listener
        self._sinks = sinks
        self._lock = threading.Lock()
        self._is_shutdown = False

    @property
    def dropped_records(self) -> int:
        return self._queue_handler.dropped

    @property
    def is_shutdown(self) -> bool:
        return self._is_shutdown

    def shutdown(self) -> None:
        """Drain queued records into the sinks, then close them."""
        with self._lock:
            if self._is_shutdown:
                return
            self.logger.removeHandler(self._queue_handler)
            self._listener.stop()
            self._queue_handler.close()
            for sink in self._sinks:
                sink.close()
            self._is_shutdown = True


def setup_structured_logging(config: LoggingConfig) -> StructuredLoggingHandle:
    """Replace any active logging setup with the sinks ``config`` describes."""
    session_id = config.session_id.strip()
    if not session_id or Path(session_id).name != session_id:
        raise ValueError("session_id must be a non-empty name without path separators")
    if config.queue_size <= 0:
        raise ValueError("queue_size must be > 0")
    if config.log_format not in _LOG_FORMATS:
        raise ValueError(f"log_format must be one of {', '.join(_LOG_FORMATS)}")
    level = _parse_level(config.level)

    shutdown_logging()

    formatter = _RelayFormatter(
        log_format=config.log_format,
        session_id=session_id,
        redactor=default_log_redactor if config.redact else _keep,
    )
    sinks: list[logging.Handler] = []
    session_log_dir: Path | None = None
    if config.log_dir is not None:
        session_log_dir = Path(config.log_dir) / session_id
        session_log_dir.mkdir(parents=True, exist_ok=True)
        sinks.append(logging.FileHandler(session_log_dir / LOG_FILENAME, encoding="utf-8"))
    if config.log_to_stderr:
        sinks.append(logging.StreamHandler(sys.stderr))
    if not sinks:
        sinks.append(logging.NullHandler())
    for sink in sinks:
        sink.setFormatter(formatter)

    logger = logging.getLogger(config.logger_name)
    logger.setLevel(level)
    logger.propagate = False
    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()

    queue_handler = _CorrelatingQueueHandler(queue.Queue(maxsize=config.queue_size))
    listener = logging.handlers.QueueListener(queue_handler.queue, *sinks)
    listener.start()
    logger.addHandler(queue_handler)

    handle = StructuredLoggingHandle(
        logger=logger,
        session_id=session_id,
        session_log_dir=session_log_dir,
        queue_handler=queue_handler,
        listener=listener,
        sinks=tuple(sinks),
    )
    global _ACTIVE
    with _ACTIVE_LOCK:
        _ACTIVE = handle
    return handle


def shutdown_logging(handle: StructuredLoggingHandle | None = None) -> None:
    """Shut down ``handle``, or the active setup when none is given."""
    global _ACTIVE
    with _ACTIVE_LOCK:
        resolved = handle if handle is not None else _ACTIVE
        if resolved is not None and resolved is _ACTIVE:
            _ACTIVE = None
    if resolved is not None:
        resolved.shutdown()


def get_active_logging_handle() -> StructuredLoggingHandle | None:
    with _ACTIVE_LOCK:
        return _ACTIVE


def get_correlation_context() -> dict[str, str]:
    return dict(_CORRELATION.get())


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Bind correlation fields for records logged in scope; ``None`` unbinds one."""
    state = get_correlation_context()
    for key, value in fields.items():
        if value is None or not value.strip():
            state.pop(key, None)
        else:
            state[key] = value.strip()
    token = _CORRELATION.set(tuple(state.items()))
    try:
        yield
    finally:
        _CORRELATION.reset(token)


def default_log_redactor(value: JSONValue) -> JSONValue:
    """Mask values under key-like names and ``key=...`` style assignments in text."""
    return _redact(value, key=None)


def get_event_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Return a structlog logger for machine-parseable decision events.

    Events are handed to the stdlib logger ``name`` as message plus ``extra`` so
    they share the queue, redaction and correlation fields configured above.
    """
    return cast(
        structlog.stdlib.BoundLogger,
        structlog.wrap_logger(
            logging.getLogger(name),
            processors=[
                structlog.stdlib.filter_by_level,
                structlog.stdlib.render_to_log_kwargs,
            ],
            wrapper_class=structlog.stdlib.BoundLogger,
        ),
    )


def _parse_level(value: int | str) -> int:
    if isinstance(value, int):
        return value
    parsed = logging.getLevelName(str(value).strip().upper())
    if isinstance(parsed, int):
        return parsed
    raise ValueError(f"unsupported logging level {value!r}")


def _timestamp(epoch_seconds: float) -> str:
    moment = datetime.fromtimestamp(epoch_seconds, tz=UTC)
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _jsonable(value: object) -> JSONValue:
    if value is None or isinstance(value, (str, bool, int)):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else str(value)
    if isinstance(value, (bytes, bytearray)):
        # Raw bytes here are key material or PSI messages.
        return f"<{len(value)} bytes>"
    if isinstance(value, Mapping):
        return {str(key): _jsonable(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(item) for item in value]
    if isinstance(value, Path):
        return value.as_posix()
    return repr(value)


def _keep(value: JSONValue) -> JSONValue:
    return value


def _redact(value: JSONValue, *, key: str | None) -> JSONValue:
    if key is not None and any(term in key.lower() for term in _SENSITIVE_KEY_TERMS):
        return _REDACTED
    if isinstance(value, str):
        return _SENSITIVE_ASSIGNMENT.sub(
            lambda match: f"{match.group(1)}{match.group(2)}{_REDACTED}", value
        )
    if isinstance(value, list):
        return [_redact(item, key=None) for item in value]
    if isinstance(value, dict):
        return {name: _redact(item, key=name) for name, item in value.items()}
    return value


__all__ = [
    "JSONValue",
    "LOG_FILENAME",
    "LogFormat",
    "LoggingConfig",
    "StructuredLoggingHandle",
    "correlation_scope",
    "default_log_redactor",
    "get_active_logging_handle",
    "get_correlation_context",
    "get_event_logger",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
