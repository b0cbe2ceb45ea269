"""Property checks for full handshakes through the dispatcher and reference engine."""

from __future__ import annotations

import asyncio

from hypothesis import given, settings
from hypothesis import strategies as st

from psi_relay.control_plane.dispatcher import ProtocolDispatcher
from psi_relay.engine.base import engine_loader
from psi_relay.transport.stdio import InMemoryChannel

_ITEMS = st.lists(st.text(alphabet="abcdef-0123", min_size=1, max_size=4), max_size=5)


async def _handshake(client_items: list[str], server_items: list[str]) -> list[int]:
    channel = InMemoryChannel()
    dispatcher = ProtocolDispatcher(engine_loader("reference"), channel)
    async with dispatcher:
        assert (await channel.receive())["type"] == "INITIALIZED"

        client = dispatcher.handle(
            {"id": "p-1", "type": "CREATE_REQUEST", "payload": {"grid": client_items}}
        )["payload"]
        server = dispatcher.handle(
            {
                "id": "p-2",
                "type": "CREATE_RESPONSE",
                "payload": {"request": client["clientRequest"], "grid": server_items},
            }
        )["payload"]
        reply = dispatcher.handle(
            {
                "id": "p-3",
                "type": "COMPUTE_INTERSECTION",
                "payload": {
                    "key": client["privateKey"],
                    "response": server["serverResponse"],
                    "setup": server["serverSetup"],
                },
            }
        )
    assert reply["type"] == "COMPUTE_INTERSECTION", reply
    return reply["payload"]["intersection"]


@settings(max_examples=15, deadline=None)
@given(client_items=_ITEMS, server_items=_ITEMS)
def test_handshake_finds_every_shared_item(
    client_items: list[str], server_items: list[str]
) -> None:
    intersection = asyncio.run(_handshake(client_items, server_items))

    shared = set(server_items)
    expected = {index for index, item in enumerate(client_items) if item in shared}
    assert intersection == sorted(set(intersection))
    assert expected <= set(intersection)
    assert all(0 <= index < len(client_items) for index in intersection)
