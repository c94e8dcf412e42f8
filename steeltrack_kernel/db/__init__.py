"""Database layer - engine handle, base classes, types, and immutability."""

from steeltrack_kernel.db.base import Base, TrackedBase, UUIDString
from steeltrack_kernel.db.engine import Database
from steeltrack_kernel.db.types import closed_set, round_weight

__all__ = [
    "Database",
    "Base",
    "TrackedBase",
    "UUIDString",
    "closed_set",
    "round_weight",
]
