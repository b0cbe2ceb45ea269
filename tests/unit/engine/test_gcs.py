from __future__ import annotations

import hashlib

import pytest

from psi_relay.engine.base import MessageFormatError
from psi_relay.engine.gcs import GolombCodedSet


def _elements(count: int, label: str = "member") -> list[bytes]:
    return [hashlib.sha256(f"{label}-{index}".encode()).digest() for index in range(count)]


def test_members_always_match() -> None:
    members = _elements(50)
    gcs = GolombCodedSet.build(members, 0.001)

    assert gcs.match_indices(members) == list(range(50))


def test_serialized_set_matches_like_the_original() -> None:
    members = _elements(20)
    queries = members[:5] + _elements(5, "outsider")
    gcs = GolombCodedSet.build(members, 0.0001)

    restored = GolombCodedSet.from_bytes(gcs.to_bytes())

    assert restored == gcs
    assert restored.match_indices(queries) == gcs.match_indices(queries)


def test_false_positive_rate_stays_near_target() -> None:
    gcs = GolombCodedSet.build(_elements(200), 0.01)
    outsiders = _elements(2000, "outsider")

    false_positives = len(gcs.match_indices(outsiders))

    assert false_positives < 80


def test_empty_set_matches_nothing() -> None:
    gcs = GolombCodedSet.build([], 0.001)

    assert gcs.hash_range == 0
    assert gcs.match_indices(_elements(3)) == []
    assert GolombCodedSet.from_bytes(gcs.to_bytes()).match_indices(_elements(3)) == []


def test_build_rejects_invalid_fpr() -> None:
    with pytest.raises(ValueError):
        GolombCodedSet.build(_elements(2), 1.5)


def test_from_bytes_rejects_inconsistent_headers() -> None:
    gcs = GolombCodedSet.build(_elements(4), 0.01)
    data = gcs.to_bytes()

    with pytest.raises(MessageFormatError, match="truncated"):
        GolombCodedSet.from_bytes(data[:10])

    bad_rice = data[:8] + bytes([40]) + data[9:]
    with pytest.raises(MessageFormatError, match="rice_bits"):
        GolombCodedSet.from_bytes(bad_rice)

    bad_range = data[:9] + (1).to_bytes(8, "big") + data[17:]
    with pytest.raises(MessageFormatError, match="hash range"):
        GolombCodedSet.from_bytes(bad_range)


def test_truncated_payload_fails_on_decode() -> None:
    gcs = GolombCodedSet.build(_elements(10), 0.01)
    truncated = GolombCodedSet.from_bytes(gcs.to_bytes()[:-3])

    with pytest.raises(MessageFormatError):
        truncated.decode_hashes()
