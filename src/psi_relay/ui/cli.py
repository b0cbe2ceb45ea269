"""Command-line interface router for psi-relay."""

from __future__ import annotations

import argparse
import asyncio
import json
import secrets
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final

from psi_relay.config import (
    ConfigLoadError,
    ConfigValidationError,
    effective_config,
    load_config,
)
from psi_relay.constants import ENGINE_BACKENDS
from psi_relay.control_plane.dispatcher import ProtocolDispatcher
from psi_relay.engine.base import engine_loader
from psi_relay.observability.logging import setup_logging, shutdown_logging
from psi_relay.protocol.errors import ErrorKind
from psi_relay.protocol.messages import JSONDict, MessageType
from psi_relay.session.keys import KeyManager
from psi_relay.transport.stdio import InMemoryChannel, serve_stdio

_HANDSHAKE_IDS: Final[tuple[str, str, str]] = ("handshake-1", "handshake-2", "handshake-3")


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="psi-relay",
        description=(
            "psi-relay — private set intersection command relay.\n\n"
            "Common workflows:\n"
            "  psi-relay serve                         Relay JSON envelopes over stdio\n"
            "  psi-relay handshake --client a b --server b c\n"
            "                                          Run both roles locally\n"
            "  psi-relay config --json                 Show effective configuration\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to psi_relay TOML config (default: ./psi_relay.toml if present).",
    )
    common.add_argument(
        "--profile",
        default=None,
        help="Optional config profile overlay name.",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Log at DEBUG level.",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # serve ---------------------------------------------------------------
    serve_parser = subparsers.add_parser(
        "serve",
        parents=[common],
        help="Relay line-delimited JSON envelopes between stdin and stdout.",
    )
    _add_backend_option(serve_parser)
    serve_parser.add_argument(
        "--queue-size",
        type=int,
        default=None,
        help="Bound on pending commands (0 = unbounded).",
    )
    serve_parser.set_defaults(handler=_cmd_serve)

    # handshake -----------------------------------------------------------
    handshake_parser = subparsers.add_parser(
        "handshake",
        parents=[common],
        help="Run a full client/server handshake in-process and print the intersection.",
    )
    handshake_parser.add_argument(
        "--client", nargs="*", default=[], metavar="ITEM", help="Client set items."
    )
    handshake_parser.add_argument(
        "--server", nargs="*", default=[], metavar="ITEM", help="Server set items."
    )
    _add_backend_option(handshake_parser)
    handshake_parser.add_argument(
        "--json", action="store_true", default=False, help="Emit machine-readable JSON."
    )
    handshake_parser.set_defaults(handler=_cmd_handshake)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Print the redacted effective configuration.",
    )
    config_parser.add_argument(
        "--json", action="store_true", default=False, help="Emit machine-readable JSON."
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


def _add_backend_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--backend",
        choices=ENGINE_BACKENDS,
        default=None,
        help="PSI engine backend (overrides engine.backend).",
    )


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_serve(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    _start_logging(config)
    try:
        accepted = asyncio.run(
            serve_stdio(
                engine_loader(config["engine"]["backend"]),
                keys=_key_manager(config),
                queue_size=config["dispatcher"]["queue_size"],
            )
        )
    finally:
        shutdown_logging()
    if _flag(args, "verbose"):
        print(f"accepted {accepted} envelope(s)", file=sys.stderr)
    return 0


def _cmd_handshake(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    client_items = list(_string_sequence(getattr(args, "client", None)))
    server_items = list(_string_sequence(getattr(args, "server", None)))
    _start_logging(config)
    try:
        intersection = asyncio.run(
            _run_handshake(
                config["engine"]["backend"], _key_manager(config), client_items, server_items
            )
        )
    finally:
        shutdown_logging()

    matched = [client_items[index] for index in intersection]
    if _flag(args, "json"):
        _emit_json(
            {
                "command": "handshake",
                "backend": config["engine"]["backend"],
                "intersection": intersection,
                "items": matched,
            }
        )
        return 0

    print(f"backend: {config['engine']['backend']}")
    print(f"client items: {len(client_items)}")
    print(f"server items: {len(server_items)}")
    print(f"intersection: {len(intersection)}")
    for index, item in zip(intersection, matched):
        print(f"  [{index}] {item}")
    return 0


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    profile = _optional_str(getattr(args, "profile", None))
    redacted = effective_config(config)

    if _flag(args, "json"):
        _emit_json({"command": "config", "active_profile": profile, "config": redacted})
        return 0

    print(f"Active profile: {profile or '(default)'}")
    print(json.dumps(redacted, indent=2, sort_keys=True, ensure_ascii=False))
    return 0


# ---------------------------------------------------------------------------
# Handshake driver
# ---------------------------------------------------------------------------


async def _run_handshake(
    backend: str,
    keys: KeyManager,
    client_items: list[str],
    server_items: list[str],
) -> list[int]:
    channel = InMemoryChannel()
    dispatcher = ProtocolDispatcher(engine_loader(backend), channel, keys=keys)
    request_id, response_id, intersection_id = _HANDSHAKE_IDS

    async with dispatcher:
        _expect_reply(await channel.receive(timeout=None), MessageType.INITIALIZED)

        dispatcher.submit(
            {"id": request_id, "type": "CREATE_REQUEST", "payload": {"grid": client_items}}
        )
        client = _expect_reply(await channel.receive(timeout=None), MessageType.CREATE_REQUEST)

        dispatcher.submit(
            {
                "id": response_id,
                "type": "CREATE_RESPONSE",
                "payload": {"request": client["clientRequest"], "grid": server_items},
            }
        )
        server = _expect_reply(await channel.receive(timeout=None), MessageType.CREATE_RESPONSE)

        dispatcher.submit(
            {
                "id": intersection_id,
                "type": "COMPUTE_INTERSECTION",
                "payload": {
                    "key": client["privateKey"],
                    "response": server["serverResponse"],
                    "setup": server["serverSetup"],
                },
            }
        )
        result = _expect_reply(
            await channel.receive(timeout=None), MessageType.COMPUTE_INTERSECTION
        )
    return [int(index) for index in result["intersection"]]


def _expect_reply(envelope: JSONDict, expected: MessageType) -> dict[str, Any]:
    payload = envelope.get("payload")
    if not isinstance(payload, dict):
        raise CLIError(f"malformed reply envelope: {envelope!r}", exit_code=4)
    if envelope.get("type") == MessageType.ERROR.value:
        kind = payload.get("error")
        message = payload.get("message", "unknown failure")
        exit_code = 3 if kind in {ErrorKind.ENGINE_ERROR, ErrorKind.RUNTIME_FAULT} else 4
        raise CLIError(f"{kind}: {message}", exit_code=exit_code)
    if envelope.get("type") != expected.value:
        raise CLIError(
            f"expected {expected.value} reply, got {envelope.get('type')!r}", exit_code=4
        )
    return payload


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    config_path = _optional_str(getattr(args, "config_path", None))
    profile = _optional_str(getattr(args, "profile", None))
    overrides: dict[str, object] = {
        "engine.backend": getattr(args, "backend", None),
        "dispatcher.queue_size": getattr(args, "queue_size", None),
    }
    if _flag(args, "verbose"):
        overrides["observability.log_level"] = "DEBUG"

    try:
        return load_config(config_path, profile=profile, cli_overrides=overrides)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _start_logging(config: Mapping[str, Any]) -> None:
    setup_logging(config["observability"], session_id=f"relay-{secrets.token_hex(4)}")


def _key_manager(config: Mapping[str, Any]) -> KeyManager:
    return KeyManager(context_id_bytes=config["session"]["context_id_bytes"])


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _optional_str(value: object) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise CLIError("invalid optional string argument", exit_code=2)
    cleaned = value.strip()
    return cleaned or None


def _flag(args: argparse.Namespace, name: str) -> bool:
    value = getattr(args, name, False)
    return bool(value)


def _string_sequence(value: object) -> tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    if isinstance(value, Sequence):
        return tuple(str(item) for item in value)
    raise CLIError("invalid list argument", exit_code=2)


__all__ = ["CLIError", "build_parser", "run_cli"]
