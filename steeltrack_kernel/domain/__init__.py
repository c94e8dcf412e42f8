"""
Pure domain layer.

Value types, transition tables, the role policy and the reconciliation
planner, with NO dependencies on:
- ORM (SQLAlchemy)
- Database
- Wall-clock time (except SystemClock)
- I/O

All domain objects are immutable and deterministic.
"""

from steeltrack_kernel.domain.authorization import (
    Action,
    AuthorizationDecision,
    ResourceState,
    authorize,
    decide,
    is_allowed,
)
from steeltrack_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from steeltrack_kernel.domain.dtos import (
    ActivityEntryInfo,
    ChangeNotice,
    CrewAssignmentInfo,
    DeliveryInfo,
    DeliveryItemInfo,
    Discrepancy,
    PieceMarkInfo,
    ReceiptLine,
    ReconciliationResult,
)
from steeltrack_kernel.domain.identity import Actor, StaticRoleResolver, resolve_actor
from steeltrack_kernel.domain.lifecycle import StatusMove
from steeltrack_kernel.domain.values import (
    STATUS_ORDER,
    CrewShift,
    CrewStatus,
    DeliveryStatus,
    FieldLocation,
    ItemCondition,
    PieceMarkStatus,
    Role,
    SubjectType,
    TransitionKind,
    parse_enum,
)

__all__ = [
    # Identity
    "Actor",
    "StaticRoleResolver",
    "resolve_actor",
    # Values
    "Role",
    "PieceMarkStatus",
    "STATUS_ORDER",
    "FieldLocation",
    "DeliveryStatus",
    "ItemCondition",
    "CrewStatus",
    "CrewShift",
    "SubjectType",
    "TransitionKind",
    "parse_enum",
    # Lifecycle / policy
    "StatusMove",
    "Action",
    "AuthorizationDecision",
    "ResourceState",
    "authorize",
    "decide",
    "is_allowed",
    # Clock
    "Clock",
    "SystemClock",
    "DeterministicClock",
    # DTOs
    "PieceMarkInfo",
    "DeliveryInfo",
    "DeliveryItemInfo",
    "CrewAssignmentInfo",
    "ActivityEntryInfo",
    "ReceiptLine",
    "Discrepancy",
    "ReconciliationResult",
    "ChangeNotice",
]
