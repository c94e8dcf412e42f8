"""Utility modules for the steel tracking kernel."""

from steeltrack_kernel.utils.hashing import (
    canonicalize_json,
    hash_activity_entry,
    hash_payload,
    to_json_safe,
)

__all__ = [
    "hash_payload",
    "hash_activity_entry",
    "canonicalize_json",
    "to_json_safe",
]
