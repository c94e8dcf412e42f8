"""
DTOs -- immutable data transfer objects.

Responsibility:
    Frozen records that cross the kernel boundary: read models returned by
    selectors and services (PieceMarkInfo, DeliveryInfo, DeliveryItemInfo,
    CrewAssignmentInfo, ActivityEntryInfo), reconciliation input and output
    (ReceiptLine, Discrepancy, ReconciliationResult), and the ChangeNotice
    handed to broadcast subscribers.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  ``from_model()`` class methods are
    boundary converters invoked only from services and selectors; the ORM
    types are referenced for type checking only.

Invariants enforced:
    Domain logic accepts and returns DTOs, never ORM entities.  Snapshot
    payloads are deep-frozen so a subscriber cannot mutate what another
    subscriber sees.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from types import MappingProxyType
from typing import TYPE_CHECKING, Any
from uuid import UUID

from steeltrack_kernel.domain.values import (
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
from steeltrack_kernel.exceptions import InvalidValueError

if TYPE_CHECKING:
    from steeltrack_kernel.models.activity_log import ActivityLogEntry
    from steeltrack_kernel.models.crew_assignment import CrewAssignment
    from steeltrack_kernel.models.delivery import Delivery, DeliveryItem
    from steeltrack_kernel.models.piece_mark import PieceMark


def _deep_freeze(value: Any) -> Any:
    if isinstance(value, dict):
        return MappingProxyType({k: _deep_freeze(v) for k, v in value.items()})
    if isinstance(value, list):
        return tuple(_deep_freeze(v) for v in value)
    return value


def thaw(value: Any) -> Any:
    """Inverse of the deep freeze, for serialization."""
    if isinstance(value, MappingProxyType):
        return {k: thaw(v) for k, v in value.items()}
    if isinstance(value, tuple):
        return [thaw(v) for v in value]
    return value


# =============================================================================
# Piece marks
# =============================================================================


@dataclass(frozen=True)
class PieceMarkInfo:
    id: UUID
    project_id: UUID
    mark: str
    quantity: int
    weight_per_unit: Decimal
    total_weight: Decimal
    status: PieceMarkStatus
    location: FieldLocation | None
    version: int
    description: str | None = None
    material: str | None = None
    drawing_number: str | None = None
    sequence_number: str | None = None
    shop_assigned_to: UUID | None = None
    field_assigned_to: UUID | None = None
    status_changed_by_id: UUID | None = None
    archived_at: datetime | None = None

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    @classmethod
    def from_model(cls, model: PieceMark) -> PieceMarkInfo:
        return cls(
            id=model.id,
            project_id=model.project_id,
            mark=model.mark,
            quantity=model.quantity,
            weight_per_unit=model.weight_per_unit,
            total_weight=model.total_weight,
            status=model.status,
            location=model.location,
            version=model.version,
            description=model.description,
            material=model.material,
            drawing_number=model.drawing_number,
            sequence_number=model.sequence_number,
            shop_assigned_to=model.shop_assigned_to,
            field_assigned_to=model.field_assigned_to,
            status_changed_by_id=model.status_changed_by_id,
            archived_at=model.archived_at,
        )


# =============================================================================
# Deliveries
# =============================================================================


@dataclass(frozen=True)
class DeliveryItemInfo:
    id: UUID
    delivery_id: UUID
    piece_mark_id: UUID
    expected_quantity: int
    received_quantity: int | None = None
    condition: ItemCondition | None = None
    location: FieldLocation | None = None
    notes: str | None = None
    reconciled_at: datetime | None = None

    @property
    def is_reconciled(self) -> bool:
        return self.received_quantity is not None

    @classmethod
    def from_model(cls, model: DeliveryItem) -> DeliveryItemInfo:
        return cls(
            id=model.id,
            delivery_id=model.delivery_id,
            piece_mark_id=model.piece_mark_id,
            expected_quantity=model.expected_quantity,
            received_quantity=model.received_quantity,
            condition=model.condition,
            location=model.location,
            notes=model.notes,
            reconciled_at=model.reconciled_at,
        )


@dataclass(frozen=True)
class DeliveryInfo:
    id: UUID
    project_id: UUID
    delivery_number: str
    status: DeliveryStatus
    version: int
    scheduled_date: date | None = None
    arrived_at: datetime | None = None
    truck_number: str | None = None
    driver_name: str | None = None
    notes: str | None = None
    received_by_id: UUID | None = None
    received_at: datetime | None = None
    rejected_reason: str | None = None
    items: tuple[DeliveryItemInfo, ...] = ()

    @classmethod
    def from_model(cls, model: Delivery) -> DeliveryInfo:
        return cls(
            id=model.id,
            project_id=model.project_id,
            delivery_number=model.delivery_number,
            status=model.status,
            version=model.version,
            scheduled_date=model.scheduled_date,
            arrived_at=model.arrived_at,
            truck_number=model.truck_number,
            driver_name=model.driver_name,
            notes=model.notes,
            received_by_id=model.received_by_id,
            received_at=model.received_at,
            rejected_reason=model.rejected_reason,
            items=tuple(DeliveryItemInfo.from_model(item) for item in model.items),
        )


# =============================================================================
# Crew assignments
# =============================================================================


@dataclass(frozen=True)
class CrewAssignmentInfo:
    id: UUID
    project_id: UUID
    crew_name: str
    foreman_id: UUID
    crew_size: int
    shift: CrewShift
    work_date: date
    status: CrewStatus
    version: int
    zone: str | None = None
    piece_mark_ids: tuple[UUID, ...] = ()

    @classmethod
    def from_model(cls, model: CrewAssignment) -> CrewAssignmentInfo:
        return cls(
            id=model.id,
            project_id=model.project_id,
            crew_name=model.crew_name,
            foreman_id=model.foreman_id,
            crew_size=model.crew_size,
            shift=model.shift,
            work_date=model.work_date,
            status=model.status,
            version=model.version,
            zone=model.zone,
            piece_mark_ids=tuple(sorted((pm.id for pm in model.piece_marks), key=str)),
        )


# =============================================================================
# Activity log
# =============================================================================


@dataclass(frozen=True)
class ActivityEntryInfo:
    id: UUID
    seq: int
    occurred_at: datetime
    actor_id: UUID
    actor_role: Role
    project_id: UUID
    subject_type: SubjectType
    subject_id: UUID
    transition_kind: TransitionKind
    before_state: MappingProxyType | None
    after_state: MappingProxyType | None
    description: str | None
    payload_hash: str
    prev_hash: str | None
    hash: str
    delivery_id: UUID | None = None
    crew_assignment_id: UUID | None = None
    discrepancy: MappingProxyType | None = None

    @classmethod
    def from_model(cls, model: ActivityLogEntry) -> ActivityEntryInfo:
        return cls(
            id=model.id,
            seq=model.seq,
            occurred_at=model.occurred_at,
            actor_id=model.actor_id,
            actor_role=model.actor_role,
            project_id=model.project_id,
            subject_type=model.subject_type,
            subject_id=model.subject_id,
            transition_kind=model.transition_kind,
            before_state=_deep_freeze(model.before_state),
            after_state=_deep_freeze(model.after_state),
            description=model.description,
            payload_hash=model.payload_hash,
            prev_hash=model.prev_hash,
            hash=model.hash,
            delivery_id=model.delivery_id,
            crew_assignment_id=model.crew_assignment_id,
            discrepancy=_deep_freeze(model.discrepancy),
        )


# =============================================================================
# Reconciliation
# =============================================================================


@dataclass(frozen=True)
class ReceiptLine:
    """
    One receipt-time actual: what arrived for a single delivery item.

    Use ``ReceiptLine.create`` for caller input; it validates the closed
    sets and the quantity at the boundary.
    """

    item_id: UUID
    received_quantity: int
    condition: ItemCondition
    location: FieldLocation
    notes: str | None = None

    def __post_init__(self) -> None:
        if isinstance(self.received_quantity, bool) or not isinstance(
            self.received_quantity, int
        ):
            raise InvalidValueError(
                "received_quantity", self.received_quantity, "a non-negative integer"
            )
        if self.received_quantity < 0:
            raise InvalidValueError(
                "received_quantity", self.received_quantity, "a non-negative integer"
            )

    @classmethod
    def create(
        cls,
        item_id: UUID | str,
        received_quantity: int,
        condition: ItemCondition | str,
        location: FieldLocation | str,
        notes: str | None = None,
    ) -> ReceiptLine:
        if not isinstance(item_id, UUID):
            try:
                item_id = UUID(str(item_id))
            except ValueError:
                raise InvalidValueError("item_id", item_id, "a UUID") from None
        return cls(
            item_id=item_id,
            received_quantity=received_quantity,
            condition=parse_enum(ItemCondition, condition, "condition"),
            location=parse_enum(FieldLocation, location, "location"),
            notes=notes,
        )


@dataclass(frozen=True)
class Discrepancy:
    """A shortfall or condition issue detected during reconciliation."""

    delivery_item_id: UUID
    piece_mark_id: UUID
    expected_quantity: int
    received_quantity: int
    condition: ItemCondition

    @property
    def shortfall(self) -> int:
        return self.expected_quantity - self.received_quantity

    def to_dict(self) -> dict[str, Any]:
        return {
            "delivery_item_id": str(self.delivery_item_id),
            "piece_mark_id": str(self.piece_mark_id),
            "expected_quantity": self.expected_quantity,
            "received_quantity": self.received_quantity,
            "shortfall": self.shortfall,
            "condition": self.condition.value,
        }


@dataclass(frozen=True)
class ReconciliationResult:
    delivery: DeliveryInfo
    piece_marks: tuple[PieceMarkInfo, ...]
    discrepancies: tuple[Discrepancy, ...]

    @property
    def has_discrepancies(self) -> bool:
        return bool(self.discrepancies)


# =============================================================================
# Broadcast
# =============================================================================


@dataclass(frozen=True)
class ChangeNotice:
    """What subscribed viewers are told after a unit of work commits."""

    seq: int
    project_id: UUID
    subject_type: SubjectType
    subject_id: UUID
    transition_kind: TransitionKind
    actor_id: UUID
    occurred_at: datetime
    after_state: MappingProxyType | None = None

    @classmethod
    def from_entry(cls, entry: ActivityEntryInfo) -> ChangeNotice:
        return cls(
            seq=entry.seq,
            project_id=entry.project_id,
            subject_type=entry.subject_type,
            subject_id=entry.subject_id,
            transition_kind=entry.transition_kind,
            actor_id=entry.actor_id,
            occurred_at=entry.occurred_at,
            after_state=entry.after_state,
        )
