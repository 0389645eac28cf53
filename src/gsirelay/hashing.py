"""Canonical JSON serialization and content fingerprints.

Fingerprints are used purely for change detection between consecutive
snapshots: two payloads that differ only in object key order hash the same,
anything else that survives JSON serialization (array order, number and
string text) is significant.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

from gsirelay.exceptions import FingerprintError

FINGERPRINT_SIZE = 32


def canonicalize(value: Any) -> Any:
    """Return a copy of *value* with every object's keys in lexicographic order.

    Arrays keep their element order (it is meaningful) but their elements
    are canonicalized recursively. Scalars are returned unchanged.
    """
    if isinstance(value, dict):
        return {key: canonicalize(value[key]) for key in sorted(value, key=str)}
    if isinstance(value, (list, tuple)):
        return [canonicalize(item) for item in value]
    return value


def canonical_json_bytes(value: Any) -> bytes:
    """Compact UTF-8 JSON of the canonical form of *value*.

    Raises
    ------
    FingerprintError
        If *value* contains non-finite floats or objects JSON cannot encode.
    """
    try:
        text = json.dumps(
            canonicalize(value),
            separators=(",", ":"),
            ensure_ascii=False,
            allow_nan=False,
        )
    except (TypeError, ValueError, RecursionError) as exc:
        raise FingerprintError(f"payload has no canonical JSON form: {exc}") from exc
    return text.encode("utf-8")


def fingerprint(value: Any) -> bytes:
    """SHA-256 digest of the canonical JSON bytes of *value*."""
    return hashlib.sha256(canonical_json_bytes(value)).digest()
