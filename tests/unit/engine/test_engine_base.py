from __future__ import annotations

import pytest

from psi_relay.engine.base import (
    ClientInstance,
    PsiEngine,
    engine_instance,
    engine_loader,
    load_engine,
)


class _Instance:
    def __init__(self) -> None:
        self.releases = 0

    def release(self) -> None:
        self.releases += 1


def test_engine_instance_releases_once_on_success() -> None:
    instance = _Instance()
    with engine_instance(lambda: instance) as bound:
        assert bound is instance
    assert instance.releases == 1


def test_engine_instance_releases_once_on_failure() -> None:
    instance = _Instance()
    with pytest.raises(RuntimeError, match="boom"):
        with engine_instance(lambda: instance):
            raise RuntimeError("boom")
    assert instance.releases == 1


def test_factory_failure_releases_nothing() -> None:
    def _factory() -> _Instance:
        raise ValueError("bad key")

    with pytest.raises(ValueError, match="bad key"):
        with engine_instance(_factory):
            pytest.fail("body must not run")


async def test_load_engine_rejects_unknown_backend() -> None:
    with pytest.raises(ValueError, match="unknown engine backend"):
        await load_engine("nonesuch")


async def test_engine_loader_builds_reference_backend() -> None:
    engine = await engine_loader(" Reference ")()

    assert isinstance(engine, PsiEngine)
    assert engine.name == "reference"


class _RevealingClient(_Instance):
    def create_request(self, items: object) -> bytes:
        return b"request"

    def private_key_bytes(self) -> bytes:
        return b"\x00" * 32

    def get_intersection(self, setup: object, response: object) -> list[int]:
        return []


def test_client_contract_only_needs_the_revealing_operations() -> None:
    assert isinstance(_RevealingClient(), ClientInstance)
    assert not isinstance(_Instance(), ClientInstance)
