"""
Canonical serialization and checksums for finalized incident packets.

The canonical form is compact JSON with every mapping's keys sorted at every
depth, non-ASCII characters kept as-is, encoded as UTF-8. Pydantic models,
datetimes and enums are first converted to their JSON-mode values, with
models dumped by alias, so a draft and its stored-then-reloaded copy
canonicalize to the same bytes.
"""

import hashlib
import hmac
import json
from typing import Any, Final

from pydantic_core import to_jsonable_python

from compliance_core.errors import UnsupportedChecksumAlgorithmError

SUPPORTED_ALGORITHMS: Final = frozenset({"sha256", "sha384", "sha512"})
DEFAULT_ALGORITHM: Final = "sha256"


def canonicalize(value: Any) -> bytes:
    """Deterministic UTF-8 bytes for `value`, independent of key insertion order."""
    plain = to_jsonable_python(value, by_alias=True)
    text = json.dumps(plain, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    return text.encode("utf-8")


def generate_checksum(data: Any, algorithm: str = DEFAULT_ALGORITHM) -> str:
    """Hex digest of the canonical form of `data`."""
    if algorithm not in SUPPORTED_ALGORITHMS:
        raise UnsupportedChecksumAlgorithmError(algorithm)
    return hashlib.new(algorithm, canonicalize(data)).hexdigest()


def verify_checksum(data: Any, expected: str, algorithm: str = DEFAULT_ALGORITHM) -> bool:
    """Recompute and compare. An unknown algorithm verifies as False."""
    try:
        actual = generate_checksum(data, algorithm)
    except UnsupportedChecksumAlgorithmError:
        return False
    return hmac.compare_digest(actual, expected)
