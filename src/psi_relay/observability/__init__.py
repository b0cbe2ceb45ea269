"""
psi-relay — observability package.

File: src/psi_relay/observability/__init__.py
Last updated: 2026-10-18

Purpose
- Structured logging with correlation fields and redaction, plus forwarding
  of faults raised outside command handling.
"""

from psi_relay.observability.faults import FaultForwarder, fault_forwarding
from psi_relay.observability.logging import (
    LoggingConfig,
    StructuredLoggingHandle,
    correlation_scope,
    default_log_redactor,
    get_event_logger,
    setup_logging,
    setup_structured_logging,
    shutdown_logging,
)

__all__ = [
    "FaultForwarder",
    "LoggingConfig",
    "StructuredLoggingHandle",
    "correlation_scope",
    "default_log_redactor",
    "fault_forwarding",
    "get_event_logger",
    "setup_logging",
    "setup_structured_logging",
    "shutdown_logging",
]
