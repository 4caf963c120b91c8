"""
Tests for canonical serialization and checksums.

Covers:
- Key order independence at every depth
- Compact UTF-8 output without ASCII escaping
- Pydantic models, datetimes and enums canonicalize like their JSON form
- Supported algorithms and the unsupported-algorithm paths
- Verification detects any change to the data
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

import pytest
from hypothesis import given
from hypothesis import strategies as st

from compliance_core.errors import UnsupportedChecksumAlgorithmError
from compliance_core.services.checksum import (
    DEFAULT_ALGORITHM,
    SUPPORTED_ALGORITHMS,
    canonicalize,
    generate_checksum,
    verify_checksum,
)
from tests.factories import make_draft

json_values = st.recursive(
    st.none() | st.booleans() | st.integers() | st.text(max_size=12),
    lambda children: st.lists(children, max_size=4)
    | st.dictionaries(st.text(max_size=8), children, max_size=4),
    max_leaves=20,
)


def reversed_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {key: reversed_keys(value[key]) for key in reversed(list(value))}
    if isinstance(value, list):
        return [reversed_keys(item) for item in value]
    return value


def test_canonical_form_is_compact_and_sorted() -> None:
    assert canonicalize({"b": 1, "a": {"d": [2, 1], "c": None}}) == (
        b'{"a":{"c":null,"d":[2,1]},"b":1}'
    )


def test_non_ascii_kept_as_utf8() -> None:
    assert canonicalize({"name": "Zoë"}) == '{"name":"Zoë"}'.encode()


@given(json_values)
def test_key_order_does_not_change_checksum(value: Any) -> None:
    assert canonicalize(value) == canonicalize(reversed_keys(value))
    assert generate_checksum(value) == generate_checksum(reversed_keys(value))


@given(json_values)
def test_canonical_bytes_round_trip_through_json(value: Any) -> None:
    assert json.loads(canonicalize(value)) == value


def test_model_and_its_json_form_agree() -> None:
    draft = make_draft()
    reloaded = json.loads(draft.model_dump_json(by_alias=True))

    assert canonicalize(draft) == canonicalize(reloaded)
    assert generate_checksum(draft) == generate_checksum(reloaded)


def test_default_is_sha256() -> None:
    data = {"incident": "x"}
    expected = hashlib.sha256(canonicalize(data)).hexdigest()

    assert DEFAULT_ALGORITHM == "sha256"
    assert generate_checksum(data) == expected
    assert len(expected) == 64


@pytest.mark.parametrize(("algorithm", "length"), [("sha384", 96), ("sha512", 128)])
def test_other_algorithms(algorithm: str, length: int) -> None:
    checksum = generate_checksum({"a": 1}, algorithm)
    assert len(checksum) == length
    assert verify_checksum({"a": 1}, checksum, algorithm)


def test_unsupported_algorithm() -> None:
    assert "md5" not in SUPPORTED_ALGORITHMS
    with pytest.raises(UnsupportedChecksumAlgorithmError):
        generate_checksum({"a": 1}, "md5")
    assert verify_checksum({"a": 1}, hashlib.md5(b"x").hexdigest(), "md5") is False


def test_verify_detects_change() -> None:
    draft = make_draft()
    checksum = generate_checksum(draft)

    assert verify_checksum(draft, checksum) is True
    changed = draft.model_copy(update={"location": "Hallway"})
    assert verify_checksum(changed, checksum) is False
    assert verify_checksum(draft, checksum.upper()) is False
