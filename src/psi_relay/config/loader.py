"""
psi-relay — runtime config loader.

File: src/psi_relay/config/loader.py
Last updated: 2026-10-18

Purpose
- Build the relay's effective config from four layers: built-in defaults,
  ``psi_relay.toml``, ``PSI_RELAY_<SECTION>_<KEY>`` environment variables and
  ``section.key`` CLI overrides (later layers win).

Key interfaces / contracts
- Every setting lives exactly one level deep (``[dispatcher] queue_size``), so
  the environment names are derived from the default config and an env value
  is coerced to the type of the default it replaces.
- A profile (argument, CLI ``profile`` or ``PSI_RELAY_PROFILE``) is applied on
  top of the file and below the environment.
- ``observability.log_dir`` is resolved relative to the config file.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Final

from psi_relay.config.schema import (
    DEFAULT_CONFIG,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    dump_redacted,
    merge_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "psi_relay.toml"
ENV_PREFIX: Final[str] = "PSI_RELAY_"
PROFILE_ENV: Final[str] = f"{ENV_PREFIX}PROFILE"

_TRUE_WORDS: Final[frozenset[str]] = frozenset({"1", "true", "t", "yes", "y", "on"})
_FALSE_WORDS: Final[frozenset[str]] = frozenset({"0", "false", "f", "no", "n", "off"})

# Settings that may be overridden; "meta" and "profiles" are file-only.
_OVERRIDABLE: Final[dict[tuple[str, str], object]] = {
    (section, key): value
    for section, values in DEFAULT_CONFIG.items()
    if isinstance(values, dict) and section not in ("meta", "profiles")
    for key, value in values.items()
}


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load effective config with precedence CLI > env > profile > file > defaults."""

    env = os.environ if environ is None else environ
    cli = dict(cli_overrides or {})
    path = (
        Path.cwd() / DEFAULT_CONFIG_FILE if config_path is None else Path(config_path).expanduser()
    ).resolve()

    config = assert_valid_config(
        merge_config(default_config(), _read_toml(path, required=config_path is not None))
    )
    selected = _selected_profile(profile, cli, env)
    if selected is not None:
        config = apply_profile_overlay(config, selected)

    config = merge_config(config, _env_layer(env))
    config = merge_config(config, _cli_layer(cli))
    config = assert_valid_config(config, active_profile=selected)

    log_dir = config["observability"]["log_dir"]
    if log_dir:
        config["observability"]["log_dir"] = _resolve_dir(log_dir, path.parent)
    return config


def effective_config(config: Mapping[str, object]) -> dict[str, Any]:
    """Return a redacted effective config representation suitable for logging."""

    return dump_redacted(config)


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Return deterministic JSON dump of redacted effective config."""

    return json.dumps(
        effective_config(config), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def env_name(section: str, key: str) -> str:
    return f"{ENV_PREFIX}{section.upper()}_{key.upper()}"


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _selected_profile(
    profile: str | None, cli: Mapping[str, object], env: Mapping[str, str]
) -> str | None:
    if profile is None:
        candidate = cli.get("profile")
        if candidate is not None and not isinstance(candidate, str):
            raise ConfigLoadError("cli override 'profile' must be a string")
        profile = candidate if candidate is not None else env.get(PROFILE_ENV)
    if profile is None:
        return None
    return profile.strip() or None


def _env_layer(env: Mapping[str, str]) -> dict[str, dict[str, object]]:
    layer: dict[str, dict[str, object]] = {}
    for (section, key), default in sorted(_OVERRIDABLE.items()):
        name = env_name(section, key)
        raw = env.get(name)
        if raw is not None:
            layer.setdefault(section, {})[key] = _coerce(name, f"{section}.{key}", raw, default)
    return layer


def _coerce(name: str, field: str, raw: str, default: object) -> object:
    value = raw.strip()
    if isinstance(default, bool):
        lowered = value.lower()
        if lowered in _TRUE_WORDS:
            return True
        if lowered in _FALSE_WORDS:
            return False
        raise ConfigLoadError(
            f"{name} -> {field} must be a boolean (true/false/1/0/yes/no/on/off)"
        )
    if isinstance(default, int):
        try:
            return int(value)
        except ValueError as exc:
            raise ConfigLoadError(f"{name} -> {field} must be an integer") from exc
    return value


def _cli_layer(cli: Mapping[str, object]) -> dict[str, dict[str, object]]:
    layer: dict[str, dict[str, object]] = {}
    for dotted, value in sorted(cli.items()):
        if dotted == "profile" or value is None:
            continue
        section, _, key = dotted.partition(".")
        if (section, key) not in _OVERRIDABLE:
            raise ConfigLoadError(f"invalid CLI override key {dotted!r}")
        layer.setdefault(section, {})[key] = value
    return layer


def _resolve_dir(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "PROFILE_ENV",
    "dump_effective_config",
    "effective_config",
    "env_name",
    "load_config",
]
