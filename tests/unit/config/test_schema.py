"""
psi-relay — unit tests for config schema validation

File: tests/unit/config/test_schema.py
Last updated: 2026-10-18

Purpose
- Validate strict config schema behavior, structured errors, profile overlays, and redaction.
"""

from __future__ import annotations

import pytest

from psi_relay.config.schema import (
    ConfigSchemaVersion,
    ConfigValidationError,
    apply_profile_overlay,
    default_config,
    dump_redacted,
    merge_config,
    migration_guidance,
    validate_config,
)


def test_defaults_validate_successfully() -> None:
    result = validate_config(default_config())

    assert result.is_valid
    assert result.config is not None
    assert result.config["meta"]["schema_version"] == ConfigSchemaVersion
    assert set(result.config["profiles"]) == {"debug", "quiet"}


def test_default_config_is_a_fresh_copy() -> None:
    first = default_config()
    first["dispatcher"]["queue_size"] = 99

    assert default_config()["dispatcher"]["queue_size"] == 0


def test_unknown_key_rejection_is_explicit() -> None:
    config = merge_config(default_config(), {"engine": {"threads": 4}, "extras": {}})

    result = validate_config(config)

    assert not result.is_valid
    assert [(issue.path, issue.message) for issue in result.issues] == [
        ("extras", "unknown field"),
        ("engine.threads", "unknown field"),
    ]


def test_type_and_range_validation_reports_structured_paths() -> None:
    config = merge_config(
        default_config(),
        {
            "dispatcher": {"queue_size": -1},
            "session": {"context_id_bytes": True},
            "observability": {"log_level": "LOUD", "log_to_stderr": "yes"},
            "engine": {"backend": "quantum"},
        },
    )

    issues = {issue.path: issue.message for issue in validate_config(config).issues}

    assert issues["dispatcher.queue_size"] == "must be >= 0"
    assert issues["session.context_id_bytes"] == "expected integer, got bool"
    assert "expected one of: DEBUG, ERROR, INFO, WARNING" in issues["observability.log_level"]
    assert issues["observability.log_to_stderr"] == "expected boolean, got str"
    assert "openmined, reference" in issues["engine.backend"]


def test_missing_sections_and_fields_are_reported() -> None:
    config = default_config()
    del config["session"]  # type: ignore[misc]
    del config["observability"]["log_format"]  # type: ignore[misc]

    paths = [issue.path for issue in validate_config(config).issues]

    assert "session" in paths
    assert "observability.log_format" in paths


@pytest.mark.parametrize("field", ["privateKey", "key_seed", "api_token", "password"])
def test_embedded_secret_is_rejected(field: str) -> None:
    config = merge_config(default_config(), {"session": {field: "material"}})

    issues = validate_config(config).issues

    assert len(issues) == 1
    assert issues[0].path == f"session.{field}"
    assert "embedded secret values are forbidden" in issues[0].message


def test_schema_version_mismatch_carries_migration_guidance() -> None:
    config = merge_config(default_config(), {"meta": {"schema_version": 2}})

    issues = validate_config(config).issues

    assert issues[0].path == "meta.schema_version"
    assert "newer than supported" in issues[0].message
    assert "older than supported" in migration_guidance(0)
    assert migration_guidance(ConfigSchemaVersion) == "schema version is current"


def test_profile_overlay_deep_merges_known_sections_and_revalidates() -> None:
    config = merge_config(
        default_config(),
        {"profiles": {"bulk": {"dispatcher": {"queue_size": 128}}}},
    )

    overlaid = apply_profile_overlay(config, "bulk")

    assert overlaid["dispatcher"]["queue_size"] == 128
    assert overlaid["observability"]["log_level"] == "INFO"

    bad = merge_config(config, {"profiles": {"bad": {"dispatcher": {"queue_size": -5}}}})
    with pytest.raises(ConfigValidationError, match="dispatcher.queue_size"):
        apply_profile_overlay(bad, "bad")


def test_profile_names_and_overlay_sections_are_validated() -> None:
    config = merge_config(
        default_config(),
        {"profiles": {"Loud": {}, "meta-change": {"meta": {"schema_version": 1}}}},
    )

    paths = [issue.path for issue in validate_config(config).issues]

    assert "profiles.Loud" in paths
    assert "profiles.meta-change.meta" in paths


def test_blank_profile_is_a_no_op() -> None:
    config = default_config()
    assert apply_profile_overlay(config, "  ") == merge_config({}, config)
    assert apply_profile_overlay(config, None) == merge_config({}, config)


def test_dump_redacted_is_recursive_and_preserves_shape() -> None:
    payload = {
        "session": {"context_id_bytes": 4, "private_key": "c2VjcmV0"},
        "nested": [{"token": "abc", "name": "ok"}],
        "observability": {"redact_secrets": True},
    }

    redacted = dump_redacted(payload)

    assert redacted == {
        "nested": [{"name": "ok", "token": "<redacted>"}],
        "observability": {"redact_secrets": True},
        "session": {"context_id_bytes": 4, "private_key": "<redacted>"},
    }
    assert payload["session"]["private_key"] == "c2VjcmV0"
