"""
psi-relay — control plane package.

File: src/psi_relay/control_plane/__init__.py
Last updated: 2026-10-18

Purpose
- Readiness gating and command dispatch around the PSI engine.
"""

from psi_relay.control_plane.dispatcher import DispatcherState, ProtocolDispatcher
from psi_relay.control_plane.readiness import (
    EngineReadiness,
    ReadinessGate,
    ReadinessNotificationError,
)

__all__ = [
    "DispatcherState",
    "EngineReadiness",
    "ProtocolDispatcher",
    "ReadinessGate",
    "ReadinessNotificationError",
]
