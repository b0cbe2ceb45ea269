"""
psi-relay — reference engine unit tests

File: tests/unit/engine/test_reference_engine.py
Last updated: 2026-10-18

Purpose
- Verify the DH blind/re-blind/unblind handshake, setup structures, wire
  parsing strictness and key lifecycle of the pure-Python engine.
"""

from __future__ import annotations

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st

from psi_relay.engine.base import DataStructure, MessageFormatError, UnsupportedOperationError
from psi_relay.engine.reference import (
    ELEMENT_BYTES,
    P,
    Q,
    ReferenceEngine,
    Request,
    create_engine,
    derive_scalar,
    hash_to_group,
)

CLIENT_KEY = bytes(range(32))
SERVER_KEY = bytes(range(32, 64))


def _handshake(
    client_items: list[str],
    server_items: list[str],
    structure: DataStructure = DataStructure.RAW,
) -> list[int]:
    engine = ReferenceEngine()
    client = engine.client_from_key(CLIENT_KEY, True)
    server = engine.server_from_key(SERVER_KEY, True)
    request = engine.deserialize_request(engine.serialize(client.create_request(client_items)))
    response = engine.deserialize_response(engine.serialize(server.process_request(request)))
    setup_message = server.create_setup_message(0.001, len(client_items), server_items, structure)
    setup = engine.deserialize_setup(engine.serialize(setup_message))

    rebuilt = engine.client_from_key(client.private_key_bytes(), True)
    return rebuilt.get_intersection(setup, response)


def test_example_slot_lists_intersect_on_shared_slot() -> None:
    assert _handshake(["mon-10", "tue-14"], ["tue-14", "wed-09"]) == [1]


def test_gcs_setup_finds_shared_items() -> None:
    client_items = ["a", "b", "c", "d"]
    server_items = ["c", "a", "z"]

    indices = _handshake(client_items, server_items, DataStructure.GCS)

    assert {0, 2} <= set(indices)


def test_empty_sets_intersect_to_nothing() -> None:
    assert _handshake([], ["x"]) == []
    assert _handshake(["x"], []) == []
    assert _handshake([], [], DataStructure.GCS) == []


def test_duplicate_client_items_report_every_position() -> None:
    assert _handshake(["dup", "other", "dup"], ["dup"]) == [0, 2]


@settings(max_examples=25, deadline=None)
@given(
    st.lists(st.text(max_size=8), max_size=6),
    st.lists(st.text(max_size=8), max_size=6),
)
def test_raw_setup_intersection_matches_plain_set_logic(
    client_items: list[str], server_items: list[str]
) -> None:
    expected = [index for index, item in enumerate(client_items) if item in set(server_items)]
    assert _handshake(client_items, server_items) == expected


def test_same_key_gives_same_request() -> None:
    engine = ReferenceEngine()
    first = engine.client_from_key(CLIENT_KEY, True).create_request(["x"])
    second = engine.client_from_key(CLIENT_KEY, True).create_request(["x"])
    other = engine.client_from_key(SERVER_KEY, True).create_request(["x"])

    assert first == second
    assert first != other


def test_released_instance_refuses_further_use() -> None:
    engine = ReferenceEngine()
    client = engine.client_from_key(CLIENT_KEY, True)
    client.release()

    assert client.released
    with pytest.raises(RuntimeError, match="released"):
        client.create_request(["x"])
    with pytest.raises(RuntimeError, match="released"):
        client.private_key_bytes()


def test_reveal_mismatch_is_rejected() -> None:
    engine = ReferenceEngine()
    request = engine.client_from_key(CLIENT_KEY, False).create_request(["x"])
    server = engine.server_from_key(SERVER_KEY, True)

    with pytest.raises(UnsupportedOperationError):
        server.process_request(request)


def test_size_only_client_cannot_reveal_indices() -> None:
    engine = ReferenceEngine()
    client = engine.client_from_key(CLIENT_KEY, False)
    server = engine.server_from_key(SERVER_KEY, False)
    response = server.process_request(client.create_request(["a", "b"]))
    setup = server.create_setup_message(0.01, 2, ["b"], DataStructure.RAW)

    assert client.get_intersection_size(setup, response) == 1
    with pytest.raises(UnsupportedOperationError):
        client.get_intersection(setup, response)


@pytest.mark.parametrize("fpr", [0.0, 1.0, -0.5, float("nan")])
def test_setup_rejects_out_of_range_fpr(fpr: float) -> None:
    server = ReferenceEngine().server_from_key(SERVER_KEY, True)
    with pytest.raises(ValueError, match="fpr"):
        server.create_setup_message(fpr, 1, ["x"], DataStructure.RAW)


def test_bloom_filter_setup_is_unsupported() -> None:
    server = ReferenceEngine().server_from_key(SERVER_KEY, True)
    with pytest.raises(UnsupportedOperationError, match="BLOOM_FILTER"):
        server.create_setup_message(0.001, 1, ["x"], DataStructure.BLOOM_FILTER)


@pytest.mark.parametrize(
    "data",
    [
        b"",
        b"PSR1",
        b"XXXX" + bytes(8),
        b"PSR1\x02\x00" + ELEMENT_BYTES.to_bytes(2, "big") + (0).to_bytes(4, "big"),
        b"PSR1\x01\x80" + ELEMENT_BYTES.to_bytes(2, "big") + (0).to_bytes(4, "big"),
        b"PSR1\x01\x01" + (8).to_bytes(2, "big") + (0).to_bytes(4, "big"),
        b"PSR1\x01\x01" + ELEMENT_BYTES.to_bytes(2, "big") + (1).to_bytes(4, "big"),
    ],
)
def test_malformed_requests_raise_message_format_error(data: bytes) -> None:
    with pytest.raises(MessageFormatError):
        ReferenceEngine().deserialize_request(data)


def test_request_elements_outside_the_group_are_rejected() -> None:
    engine = ReferenceEngine()
    outside = P.to_bytes(ELEMENT_BYTES, "big")
    request = Request(encrypted_elements=(outside,), reveal_intersection=True)
    with pytest.raises(MessageFormatError, match="outside the group"):
        engine.deserialize_request(engine.serialize(request))


def test_setup_parser_rejects_truncated_and_unknown_structures() -> None:
    engine = ReferenceEngine()
    setup = engine.server_from_key(SERVER_KEY, True).create_setup_message(
        0.001, 1, ["x"], DataStructure.RAW
    )
    data = engine.serialize(setup)

    with pytest.raises(MessageFormatError):
        engine.deserialize_setup(data[:-1])
    with pytest.raises(MessageFormatError, match="structure code"):
        engine.deserialize_setup(data[:5] + b"\x09" + data[6:])


def test_request_element_count() -> None:
    engine = ReferenceEngine()
    request = engine.client_from_key(CLIENT_KEY, True).create_request(["a", "b", "c"])
    assert engine.request_element_count(request) == 3


def test_serialize_rejects_foreign_objects() -> None:
    with pytest.raises(TypeError):
        ReferenceEngine().serialize(object())


def test_hash_to_group_lands_in_the_prime_order_subgroup() -> None:
    for item in ["", "a", "tue-14", "é"]:
        element = hash_to_group(item)
        assert 1 < element < P
        assert pow(element, Q, P) == 1


def test_derive_scalar_validates_key_material() -> None:
    assert 1 <= derive_scalar(CLIENT_KEY) < Q
    with pytest.raises(ValueError):
        derive_scalar(b"short")
    with pytest.raises(TypeError):
        derive_scalar("not-bytes")  # type: ignore[arg-type]


async def test_create_engine_runs_self_check() -> None:
    engine = await create_engine()
    assert engine.name == "reference"
