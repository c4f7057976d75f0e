"""
Canonical JSON encoding and SHA-256 payload hashing.

The encoding is fixed so that a digest can be recomputed independently:

- keys sorted lexicographically at every depth
- separators ``,`` and ``:`` with no whitespace, ASCII-only output
- NaN and Infinity are rejected
- datetime -> ISO-8601 in UTC with microseconds and ``+00:00`` (naive = UTC)
- date -> ``YYYY-MM-DD``; Decimal -> normalized string; UUID -> canonical string
- floats with an integral value are emitted as integers (``5.0`` -> ``5``)
- other floats use the shortest round-trip ``repr`` (``0.1`` -> ``0.1``,
  ``1e-07`` -> ``1e-07``)
- enums -> their value; pydantic models -> their field dict
- the digest is lowercase hex SHA-256 over the UTF-8 bytes
"""
import enum
import hashlib
import json
import math
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any
from uuid import UUID

from pydantic import BaseModel


def _normalize(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return _normalize(value.model_dump(mode="python"))
    if isinstance(value, enum.Enum):
        return _normalize(value.value)
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    if isinstance(value, (set, frozenset)):
        return sorted(_normalize(v) for v in value)
    if isinstance(value, bool) or value is None or isinstance(value, (str, int)):
        return value
    if isinstance(value, float):
        if math.isnan(value) or math.isinf(value):
            raise ValueError("NaN and Infinity cannot be hashed")
        if value.is_integer():
            return int(value)
        return value
    if isinstance(value, Decimal):
        return str(value.normalize())
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat(timespec="microseconds")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, UUID):
        return str(value)
    raise TypeError(f"Object of type {type(value).__name__} is not hashable as canonical JSON")


def canonical_json(payload: Any) -> str:
    return json.dumps(
        _normalize(payload),
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=True,
        allow_nan=False,
    )


def hash_payload(payload: Any) -> str:
    """Hex SHA-256 of the canonical JSON encoding of ``payload``."""
    return hashlib.sha256(canonical_json(payload).encode("utf-8")).hexdigest()
