"""Module entrypoint for ``python -m psi_relay``."""

from __future__ import annotations

from psi_relay.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
