"""
psi-relay — package root.

File: src/psi_relay/__init__.py
Last updated: 2026-10-18

Purpose
- Package root for the private-set-intersection relay: a dispatcher that drives a
  three-message PSI handshake over a text-only message channel.

Import boundary rules
- Must not have side effects at import time (no config loading, no logging init,
  no engine loading). Engine backends are imported when the readiness gate runs.
"""

__version__ = "0.4.0"

__all__ = ["__version__"]
