from __future__ import annotations

import pytest

from psi_relay.constants import KEY_SEED_BYTES
from psi_relay.session.keys import EntropyProvider, KeyManager, SystemEntropy


def test_system_entropy_satisfies_provider_protocol() -> None:
    assert isinstance(SystemEntropy(), EntropyProvider)


def test_correlation_tokens_are_lowercase_hex_of_configured_width() -> None:
    keys = KeyManager(context_id_bytes=6)

    token = keys.new_correlation_token()

    assert len(token) == 12
    assert token == token.lower()
    int(token, 16)


def test_tokens_and_seeds_are_fresh_per_call() -> None:
    keys = KeyManager()

    tokens = {keys.new_correlation_token() for _ in range(32)}
    seeds = {keys.new_key_seed() for _ in range(8)}

    assert len(tokens) > 1
    assert len(seeds) == 8
    assert all(len(seed) == KEY_SEED_BYTES for seed in seeds)


def test_context_id_width_has_a_floor() -> None:
    with pytest.raises(ValueError, match="context_id_bytes"):
        KeyManager(context_id_bytes=3)


def test_injected_randbytes_is_used() -> None:
    keys = KeyManager(SystemEntropy(lambda count: b"\xab" * count))

    assert keys.new_correlation_token() == "abababab"
    assert keys.new_key_seed() == b"\xab" * KEY_SEED_BYTES


def test_short_entropy_output_is_rejected() -> None:
    keys = KeyManager(SystemEntropy(lambda count: b"\x00"))

    with pytest.raises(ValueError, match="exactly"):
        keys.new_key_seed()


async def test_async_variants_run_off_loop(entropy) -> None:  # type: ignore[no-untyped-def]
    keys = KeyManager(entropy)

    token = await keys.new_correlation_token_async()
    seed = await keys.new_key_seed_async()

    assert len(token) == 8
    assert len(seed) == KEY_SEED_BYTES
    assert entropy.calls == [4, KEY_SEED_BYTES]


async def test_system_entropy_async_path() -> None:
    data = await SystemEntropy().get_random_bytes_async(16)
    assert len(data) == 16
