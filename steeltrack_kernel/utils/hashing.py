"""
Deterministic hashing utilities.

All hashing in the kernel must be deterministic and reproducible.
This module provides the canonical hashing functions for the activity log
hash chain.
"""

import hashlib
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


def _json_serializer(obj: Any) -> Any:
    """
    Custom JSON serializer for types not natively supported.

    Raises:
        TypeError: If object type is not supported.
    """
    if isinstance(obj, Decimal):
        # Normalize so 500 and 500.000 hash identically
        return format(obj.normalize(), "f")
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, UUID):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value

    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def canonicalize_json(data: dict | list | Any) -> str:
    """
    Convert data to canonical JSON string.

    Keys are sorted, no whitespace, and Decimal/datetime/UUID/enum values
    have one fixed representation.
    """
    return json.dumps(
        data,
        sort_keys=True,
        separators=(",", ":"),
        default=_json_serializer,
    )


def to_json_safe(data: Any) -> Any:
    """Round-trip through canonical JSON so the value can be stored in a JSON column."""
    return json.loads(canonicalize_json(data))


def hash_payload(payload: dict) -> str:
    """
    Compute SHA-256 hash of a payload.

    Returns:
        Hex-encoded SHA-256 hash (64 characters).
    """
    canonical = canonicalize_json(payload)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def hash_activity_entry(
    seq: int,
    subject_type: str,
    subject_id: str,
    transition_kind: str,
    actor_id: str,
    payload_hash: str,
    prev_hash: str | None,
) -> str:
    """
    Compute the chained hash of an activity log entry.

    hash = H(seq | subject_type | subject_id | kind | actor | payload_hash | prev_hash)
    """
    parts = [
        str(seq),
        subject_type,
        subject_id,
        transition_kind,
        actor_id,
        payload_hash,
        prev_hash or "GENESIS",
    ]
    combined = "|".join(parts)
    return hashlib.sha256(combined.encode("utf-8")).hexdigest()
