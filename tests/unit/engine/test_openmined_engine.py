"""Adapter tests for the OpenMined bindings; skipped when the extra is absent."""

from __future__ import annotations

import pytest

pytest.importorskip("private_set_intersection.python")

from psi_relay.engine.base import DataStructure, MessageFormatError  # noqa: E402
from psi_relay.engine.openmined import create_engine  # noqa: E402

CLIENT_KEY = bytes(range(32))
SERVER_KEY = bytes(range(32, 64))


async def test_handshake_through_bindings() -> None:
    engine = await create_engine()
    client = engine.client_from_key(CLIENT_KEY, True)
    server = engine.server_from_key(SERVER_KEY, True)
    try:
        request = engine.deserialize_request(
            engine.serialize(client.create_request(["mon-10", "tue-14"]))
        )
        response = engine.deserialize_response(engine.serialize(server.process_request(request)))
        setup = engine.deserialize_setup(
            engine.serialize(
                server.create_setup_message(
                    0.001, engine.request_element_count(request), ["tue-14", "wed-09"],
                    DataStructure.GCS,
                )
            )
        )
        assert sorted(client.get_intersection(setup, response)) == [1]
    finally:
        client.release()
        server.release()


async def test_garbage_bytes_map_to_message_format_error() -> None:
    engine = await create_engine()
    with pytest.raises(MessageFormatError):
        engine.deserialize_request(b"\xff\x00garbage")
