"""
Closed-set value types for piece-mark tracking.

Responsibility:
    Declares every enumerated status, location, condition, role and
    activity kind used by the kernel, and the single boundary parser
    ``parse_enum`` that turns caller-supplied text into a member.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Imported by every other layer.

Invariants enforced:
    Enumerated values are closed sets validated at the boundary, never free
    text.  ``parse_enum`` raises InvalidValueError naming the field and the
    allowed values.
"""

from enum import Enum
from typing import TypeVar

from steeltrack_kernel.exceptions import InvalidValueError


class Role(str, Enum):
    """Actor role, one per authenticated actor."""

    ADMIN = "admin"
    PROJECT_MANAGER = "project_manager"
    SHOP = "shop"
    FIELD = "field"
    CLIENT = "client"


class PieceMarkStatus(str, Enum):
    """Fabrication/installation status, a total order (see STATUS_ORDER)."""

    NOT_STARTED = "not_started"
    FABRICATING = "fabricating"
    COMPLETED = "completed"
    SHIPPED = "shipped"
    INSTALLED = "installed"


STATUS_ORDER: tuple[PieceMarkStatus, ...] = (
    PieceMarkStatus.NOT_STARTED,
    PieceMarkStatus.FABRICATING,
    PieceMarkStatus.COMPLETED,
    PieceMarkStatus.SHIPPED,
    PieceMarkStatus.INSTALLED,
)


def status_rank(status: PieceMarkStatus) -> int:
    """Position of ``status`` in the fixed order (0 = not_started)."""
    return STATUS_ORDER.index(status)


class FieldLocation(str, Enum):
    """Physical zone of a piece mark once it has left the shop."""

    YARD = "yard"
    STAGING = "staging"
    CRANE_ZONE = "crane_zone"
    INSTALLED = "installed"
    UNKNOWN = "unknown"


class DeliveryStatus(str, Enum):
    PENDING = "pending"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    RECEIVED = "received"
    REJECTED = "rejected"


class ItemCondition(str, Enum):
    """Condition outcome recorded for a delivery item at receipt."""

    GOOD = "good"
    DAMAGED = "damaged"
    MISSING = "missing"


class CrewStatus(str, Enum):
    SCHEDULED = "scheduled"
    ACTIVE = "active"
    COMPLETED = "completed"


class CrewShift(str, Enum):
    DAY = "day"
    NIGHT = "night"
    WEEKEND = "weekend"


class SubjectType(str, Enum):
    """What an activity log entry is about."""

    PIECE_MARK = "piece_mark"
    DELIVERY = "delivery"
    CREW = "crew"


class TransitionKind(str, Enum):
    """Kind of change recorded by an activity log entry.

    Every member is produced by exactly one write path; adding a member
    means adding the service method that records it.
    """

    # Piece-mark registry
    PIECE_MARK_CREATED = "piece_mark_created"
    PIECE_MARK_UPDATED = "piece_mark_updated"
    PIECE_MARK_ARCHIVED = "piece_mark_archived"

    # State machine
    STATUS_ADVANCED = "status_advanced"
    STATUS_ROLLED_BACK = "status_rolled_back"
    LOCATION_UPDATED = "location_updated"

    # Deliveries
    DELIVERY_CREATED = "delivery_created"
    DELIVERY_ITEM_ADDED = "delivery_item_added"
    DELIVERY_STATUS_CHANGED = "delivery_status_changed"
    DELIVERY_REJECTED = "delivery_rejected"
    DELIVERY_RECEIVED = "delivery_received"
    PIECE_MARK_RECEIVED = "piece_mark_received"

    # Crew ledger
    CREW_ASSIGNED = "crew_assigned"
    CREW_PIECE_MARKS_UPDATED = "crew_piece_marks_updated"
    CREW_STATUS_CHANGED = "crew_status_changed"


E = TypeVar("E", bound=Enum)


def parse_enum(enum_cls: type[E], value: object, field: str) -> E:
    """
    Convert caller input to a member of ``enum_cls``.

    Accepts a member of the enum or its text value.  Anything else raises
    InvalidValueError; there is no case folding or fuzzy matching.
    """
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(m.value for m in enum_cls)
        raise InvalidValueError(field, value, f"one of {{{allowed}}}") from None
