"""psi-relay user-facing command-line surface."""

from psi_relay.ui.cli import CLIError, build_parser, run_cli

__all__ = ["CLIError", "build_parser", "run_cli"]
