"""Stable protocol constants shared across the relay planes."""

from __future__ import annotations

from typing import Final

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1

# Handshake parameters. These are part of the wire contract with the peer and
# are not configurable.
FALSE_POSITIVE_RATE: Final[float] = 0.001
KEY_SEED_BYTES: Final[int] = 32
REVEAL_INTERSECTION: Final[bool] = True

# Correlation tokens carry at least 32 bits of entropy.
MIN_CONTEXT_ID_BYTES: Final[int] = 4
DEFAULT_CONTEXT_ID_BYTES: Final[int] = 4

ENGINE_BACKENDS: Final[tuple[str, ...]] = ("reference", "openmined")
DEFAULT_ENGINE_BACKEND: Final[str] = "reference"

__all__ = [
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_CONTEXT_ID_BYTES",
    "DEFAULT_ENGINE_BACKEND",
    "ENGINE_BACKENDS",
    "FALSE_POSITIVE_RATE",
    "KEY_SEED_BYTES",
    "MIN_CONTEXT_ID_BYTES",
    "REVEAL_INTERSECTION",
]
