"""
psi-relay — PSI engine package.

File: src/psi_relay/engine/__init__.py
Last updated: 2026-10-18

Purpose
- Re-export the engine capability contract. Backend modules
  (``reference``, ``openmined``) are imported lazily by ``load_engine``.
"""

from psi_relay.engine.base import (
    ClientInstance,
    DataStructure,
    EngineLoader,
    MessageFormatError,
    PsiEngine,
    ServerInstance,
    UnsupportedOperationError,
    engine_instance,
    engine_loader,
    load_engine,
)

__all__ = [
    "ClientInstance",
    "DataStructure",
    "EngineLoader",
    "MessageFormatError",
    "PsiEngine",
    "ServerInstance",
    "UnsupportedOperationError",
    "engine_instance",
    "engine_loader",
    "load_engine",
]
