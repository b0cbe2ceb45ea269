"""psi-relay transport package: stdio bridge and in-memory channel."""

from psi_relay.transport.stdio import InMemoryChannel, LineWriter, serve_stdio

__all__ = ["InMemoryChannel", "LineWriter", "serve_stdio"]
