from __future__ import annotations

import json

import pytest

from psi_relay.protocol.errors import (
    EnvelopeParseError,
    ErrorKind,
    NotReadyError,
    UnknownCommandError,
)
from psi_relay.protocol.messages import (
    ClientRequestResult,
    ComputeIntersection,
    ComputeIntersectionPayload,
    CreateRequest,
    CreateResponse,
    Initialized,
    IntersectionResult,
    MessageType,
    ServerResponseResult,
    diagnostic_envelope,
    error_envelope,
    initialized_envelope,
    parse_envelope,
    success_envelope,
)


def test_parse_create_request() -> None:
    command = parse_envelope(
        json.dumps({"id": "c-1", "type": "CREATE_REQUEST", "payload": {"grid": ["a", "b"]}})
    )

    assert isinstance(command, CreateRequest)
    assert command.command_id == "c-1"
    assert command.payload.grid == ("a", "b")


def test_parse_create_response_and_compute_intersection() -> None:
    response = parse_envelope(
        {"id": "r", "type": "CREATE_RESPONSE", "payload": {"request": "AA==", "grid": []}}
    )
    intersection = parse_envelope(
        b'{"id":"i","type":"COMPUTE_INTERSECTION",'
        b'"payload":{"key":"k","response":"r","setup":"s"}}'
    )

    assert isinstance(response, CreateResponse)
    assert response.payload.request == "AA=="
    assert isinstance(intersection, ComputeIntersection)
    assert intersection.payload.setup == "s"


def test_initialized_does_not_require_an_id() -> None:
    command = parse_envelope('{"type": "INITIALIZED"}')

    assert isinstance(command, Initialized)
    assert command.command_id is None


@pytest.mark.parametrize(
    "raw",
    ["not json", "[1, 2]", b"\xff\xfe", '{"id": 5, "type": "CREATE_REQUEST"}', 42],
)
def test_malformed_envelopes_raise_parse_error(raw: object) -> None:
    with pytest.raises(EnvelopeParseError) as excinfo:
        parse_envelope(raw)  # type: ignore[arg-type]
    assert excinfo.value.kind is ErrorKind.ENVELOPE_PARSE_ERROR


def test_missing_type_keeps_the_id() -> None:
    with pytest.raises(EnvelopeParseError) as excinfo:
        parse_envelope({"id": "no-type", "payload": {}})
    assert excinfo.value.command_id == "no-type"


def test_unknown_type_keeps_id_and_type() -> None:
    with pytest.raises(UnknownCommandError) as excinfo:
        parse_envelope({"id": "u-1", "type": "DELETE_EVERYTHING", "payload": {}})

    assert excinfo.value.command_id == "u-1"
    assert excinfo.value.command_type == "DELETE_EVERYTHING"
    assert excinfo.value.kind is ErrorKind.UNKNOWN_COMMAND


def test_reply_types_are_not_accepted_as_commands() -> None:
    with pytest.raises(UnknownCommandError):
        parse_envelope({"id": "e", "type": "ERROR", "payload": {}})


def test_commands_other_than_initialized_require_an_id() -> None:
    with pytest.raises(EnvelopeParseError, match="requires a string 'id'"):
        parse_envelope({"type": "CREATE_REQUEST", "payload": {"grid": []}})


@pytest.mark.parametrize(
    "payload",
    [
        None,
        {},
        {"grid": "mon-10"},
        {"grid": ["ok", 3]},
    ],
)
def test_bad_payload_fields_carry_the_id(payload: object) -> None:
    with pytest.raises(EnvelopeParseError) as excinfo:
        parse_envelope({"id": "p-1", "type": "CREATE_REQUEST", "payload": payload})

    assert excinfo.value.command_id == "p-1"
    assert excinfo.value.command_type == "CREATE_REQUEST"


def test_success_envelope_uses_camel_case_fields() -> None:
    result = ClientRequestResult(context_id="0a0b0c0d", private_key="S0VZ", client_request="UkVR")

    envelope = success_envelope("c-1", MessageType.CREATE_REQUEST, result)

    assert envelope == {
        "id": "c-1",
        "type": "CREATE_REQUEST",
        "payload": {"contextId": "0a0b0c0d", "privateKey": "S0VZ", "clientRequest": "UkVR"},
    }
    assert "S0VZ" not in repr(result)


def test_server_response_result_wire_shape() -> None:
    result = ServerResponseResult(server_response="cmVzcA==", server_setup="c2V0dXA=")
    assert result.to_wire() == {"serverResponse": "cmVzcA==", "serverSetup": "c2V0dXA="}


def test_intersection_result_must_be_strictly_ascending() -> None:
    assert IntersectionResult((0, 2, 5)).to_wire() == {"intersection": [0, 2, 5]}
    with pytest.raises(ValueError):
        IntersectionResult((2, 2))
    with pytest.raises(ValueError):
        IntersectionResult((3, 1))


def test_compute_payload_repr_hides_key() -> None:
    payload = ComputeIntersectionPayload(key="c2VjcmV0", response="cg==", setup="cw==")
    assert "c2VjcmV0" not in repr(payload)


def test_initialized_envelope_has_no_id() -> None:
    assert initialized_envelope() == {"type": "INITIALIZED", "payload": {"initialized": True}}


def test_error_envelope_shape() -> None:
    error = NotReadyError("PSI engine is not initialized")
    original = {"id": "x", "type": "CREATE_REQUEST", "payload": {"grid": []}}

    envelope = error_envelope(
        error, command_id="x", command_type="CREATE_REQUEST", original=original
    )

    assert envelope == {
        "id": "x",
        "type": "ERROR",
        "payload": {
            "error": "NOT_READY",
            "message": "PSI engine is not initialized",
            "command": "CREATE_REQUEST",
            "original": original,
        },
    }


def test_error_envelope_falls_back_to_error_id_and_stringifies_bytes() -> None:
    error = EnvelopeParseError("bad", command_id="from-error")

    envelope = error_envelope(error, original=b"raw bytes")

    assert envelope["id"] == "from-error"
    assert envelope["payload"]["original"] == "raw bytes"
    assert "command" not in envelope["payload"]


def test_diagnostic_envelope_shape() -> None:
    assert diagnostic_envelope("boom", "RuntimeError") == {
        "type": "ERROR",
        "payload": {"error": "RUNTIME_FAULT", "message": "boom", "exceptionType": "RuntimeError"},
    }
