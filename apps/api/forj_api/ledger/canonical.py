"""Canonical encoding for hashing and signing.

Canonical JSON here means: object keys sorted by code point, compact
separators, UTF-8 without escaping, arrays in order. Metadata values are
additionally wrapped in explicit type tags so that ``1``, ``1.0``, ``"1"``
and ``True`` can never hash to the same bytes after a storage round trip.
"""

import hashlib
import json
import math
from datetime import date, datetime
from enum import Enum
from typing import Any


def canonicalize(obj: Any) -> bytes:
    """Encode a JSON-safe value as canonical UTF-8 bytes."""
    return json.dumps(
        obj,
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
        allow_nan=False,
    ).encode("utf-8")


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def normalize(value: Any) -> Any:
    """Convert a value to the JSON-safe form that is stored and hashed.

    Raises:
        TypeError: for values with no stable JSON representation
        ValueError: for non-finite floats
    """
    if value is None or isinstance(value, (bool, str)):
        return value
    if isinstance(value, Enum):
        return normalize(value.value)
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        if not math.isfinite(value):
            raise ValueError(f"Cannot canonicalize non-finite float: {value}")
        return value
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if isinstance(value, dict):
        normalized = {}
        for key, item in value.items():
            if not isinstance(key, str):
                raise TypeError(f"Metadata keys must be strings, got {type(key).__name__}")
            normalized[key] = normalize(item)
        return normalized
    if isinstance(value, (list, tuple)):
        return [normalize(item) for item in value]
    raise TypeError(f"Cannot canonicalize type: {type(value).__name__}")


def tagged(value: Any) -> Any:
    """Wrap a normalized value in explicit type tags."""
    if value is None:
        return ["null"]
    if isinstance(value, bool):
        return ["bool", value]
    if isinstance(value, int):
        return ["int", str(value)]
    if isinstance(value, float):
        return ["float", repr(value)]
    if isinstance(value, str):
        return ["str", value]
    if isinstance(value, list):
        return ["list", [tagged(item) for item in value]]
    if isinstance(value, dict):
        return ["map", [[key, tagged(value[key])] for key in sorted(value)]]
    raise TypeError(f"Cannot tag type: {type(value).__name__}")


def entry_hash(
    previous_hash: str,
    actor_id: str,
    action: str,
    entity_id: str,
    timestamp: datetime,
    metadata: dict,
) -> str:
    """Integrity hash of one audit entry, linked to its predecessor."""
    material = [
        previous_hash or "",
        actor_id,
        action,
        entity_id or "",
        timestamp.isoformat(timespec="microseconds"),
        tagged(metadata),
    ]
    return sha256_hex(canonicalize(material))
