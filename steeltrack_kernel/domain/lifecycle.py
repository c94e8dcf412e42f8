"""
Lifecycle -- explicit transition tables.

Responsibility:
    The single enforcement point for which state changes exist at all:
    piece-mark status (single-step advance / rollback over a total order),
    piece-mark field location (unordered, only while shipped), delivery
    status and crew assignment status.  Also computes the location side
    effects of a status change.

Architecture position:
    Kernel > Domain -- pure, zero I/O.  Called by services before any write;
    whether the *actor* may make the change is the authorizer's concern,
    not this module's.

Invariants enforced:
    SINGLE_STEP_STATUS      -- new status is the immediate successor or
                               predecessor of the old one.
    LOCATION_WHILE_SHIPPED  -- location changes only while shipped; locked
                               once installed.

Failure modes:
    - InvalidTransitionError naming the rejected (from, to) pair.
    - LocationLockedAfterInstallError once a piece mark is installed.
"""

from __future__ import annotations

from enum import Enum

from steeltrack_kernel.domain.values import (
    STATUS_ORDER,
    CrewStatus,
    DeliveryStatus,
    FieldLocation,
    PieceMarkStatus,
    status_rank,
)
from steeltrack_kernel.exceptions import (
    InvalidTransitionError,
    LocationLockedAfterInstallError,
)


class StatusMove(str, Enum):
    ADVANCE = "advance"
    ROLLBACK = "rollback"


def _build_status_table() -> dict[tuple[PieceMarkStatus, PieceMarkStatus], StatusMove]:
    table: dict[tuple[PieceMarkStatus, PieceMarkStatus], StatusMove] = {}
    for lower, upper in zip(STATUS_ORDER, STATUS_ORDER[1:]):
        table[(lower, upper)] = StatusMove.ADVANCE
        table[(upper, lower)] = StatusMove.ROLLBACK
    return table


# (from, to) -> move.  Pairs absent from this table do not exist.
STATUS_TRANSITIONS: dict[tuple[PieceMarkStatus, PieceMarkStatus], StatusMove] = (
    _build_status_table()
)

DELIVERY_TRANSITIONS: dict[DeliveryStatus, frozenset[DeliveryStatus]] = {
    DeliveryStatus.PENDING: frozenset({DeliveryStatus.IN_TRANSIT}),
    DeliveryStatus.IN_TRANSIT: frozenset({DeliveryStatus.DELIVERED}),
    DeliveryStatus.DELIVERED: frozenset(),
    DeliveryStatus.RECEIVED: frozenset(),
    DeliveryStatus.REJECTED: frozenset(),
}

TERMINAL_DELIVERY_STATUSES = frozenset({DeliveryStatus.RECEIVED, DeliveryStatus.REJECTED})

CREW_TRANSITIONS: dict[CrewStatus, frozenset[CrewStatus]] = {
    CrewStatus.SCHEDULED: frozenset({CrewStatus.ACTIVE}),
    CrewStatus.ACTIVE: frozenset({CrewStatus.COMPLETED}),
    CrewStatus.COMPLETED: frozenset(),
}


# =============================================================================
# Piece-mark status
# =============================================================================


def classify_status_transition(
    current: PieceMarkStatus, target: PieceMarkStatus
) -> StatusMove | None:
    """Return ADVANCE, ROLLBACK, or None when the pair is not a legal move."""
    return STATUS_TRANSITIONS.get((current, target))


def validate_status_advance(current: PieceMarkStatus, target: PieceMarkStatus) -> None:
    """Raise InvalidTransitionError unless ``target`` is the immediate successor."""
    if classify_status_transition(current, target) is not StatusMove.ADVANCE:
        raise InvalidTransitionError(
            "piece_mark_status",
            current.value,
            target.value,
            reason=_status_reason(current, target, StatusMove.ADVANCE),
        )


def validate_status_rollback(current: PieceMarkStatus, target: PieceMarkStatus) -> None:
    """Raise InvalidTransitionError unless ``target`` is the immediate predecessor."""
    if classify_status_transition(current, target) is not StatusMove.ROLLBACK:
        raise InvalidTransitionError(
            "piece_mark_status",
            current.value,
            target.value,
            reason=_status_reason(current, target, StatusMove.ROLLBACK),
        )


def _status_reason(
    current: PieceMarkStatus, target: PieceMarkStatus, wanted: StatusMove
) -> str:
    if current == target:
        return "status unchanged"
    delta = status_rank(target) - status_rank(current)
    if wanted is StatusMove.ADVANCE:
        if delta < 0:
            return "advance must move forward; use rollback"
        return "advance may only move to the next status"
    if delta > 0:
        return "rollback must move backward; use advance"
    return "rollback may only move to the previous status"


def next_status(current: PieceMarkStatus) -> PieceMarkStatus | None:
    rank = status_rank(current)
    if rank + 1 < len(STATUS_ORDER):
        return STATUS_ORDER[rank + 1]
    return None


def previous_status(current: PieceMarkStatus) -> PieceMarkStatus | None:
    rank = status_rank(current)
    if rank > 0:
        return STATUS_ORDER[rank - 1]
    return None


def location_after_status_change(
    current_location: FieldLocation | None,
    current_status: PieceMarkStatus,
    target_status: PieceMarkStatus,
) -> FieldLocation | None:
    """
    Location that results from a legal status move.

    - reaching shipped from below: ``unknown`` unless a location is already set
    - leaving shipped downward: location cleared
    - reaching installed: forced to ``installed``
    - installed -> shipped: location kept (and unlocked again)
    """
    if target_status == PieceMarkStatus.INSTALLED:
        return FieldLocation.INSTALLED
    if target_status == PieceMarkStatus.SHIPPED:
        if current_status == PieceMarkStatus.INSTALLED:
            return current_location
        return current_location or FieldLocation.UNKNOWN
    if status_rank(target_status) < status_rank(PieceMarkStatus.SHIPPED):
        return None
    return current_location


# =============================================================================
# Field location
# =============================================================================


def check_location_lock(
    piece_mark_id: str,
    status: PieceMarkStatus,
    requested: FieldLocation,
) -> None:
    """Raise LocationLockedAfterInstallError if the piece mark is installed."""
    if status == PieceMarkStatus.INSTALLED:
        raise LocationLockedAfterInstallError(piece_mark_id, requested.value)


def validate_location_update(
    piece_mark_id: str,
    status: PieceMarkStatus,
    current: FieldLocation | None,
    requested: FieldLocation,
) -> None:
    """
    Location is unordered while shipped: any value to any other value.

    Raises:
        LocationLockedAfterInstallError: status is installed.
        InvalidTransitionError: status is below shipped, or the location
            would not change.
    """
    check_location_lock(piece_mark_id, status, requested)
    from_value = current.value if current is not None else None
    if status != PieceMarkStatus.SHIPPED:
        raise InvalidTransitionError(
            "piece_mark_location",
            from_value,
            requested.value,
            reason=f"location changes require status shipped (status is {status.value})",
        )
    if current == requested:
        raise InvalidTransitionError(
            "piece_mark_location", from_value, requested.value, reason="location unchanged"
        )


# =============================================================================
# Delivery
# =============================================================================


def validate_delivery_status_change(
    current: DeliveryStatus, target: DeliveryStatus
) -> None:
    """Manual progression: pending -> in_transit -> delivered."""
    if target in DELIVERY_TRANSITIONS[current]:
        return
    if target == DeliveryStatus.RECEIVED:
        reason = "received is reachable only through reconciliation"
    elif target == DeliveryStatus.REJECTED:
        reason = "use reject_delivery to reject"
    else:
        reason = "not a single forward step"
    raise InvalidTransitionError("delivery", current.value, target.value, reason=reason)


def validate_delivery_rejection(current: DeliveryStatus) -> None:
    if current in TERMINAL_DELIVERY_STATUSES:
        raise InvalidTransitionError(
            "delivery",
            current.value,
            DeliveryStatus.REJECTED.value,
            reason=f"delivery is already {current.value}",
        )


def validate_delivery_receipt(current: DeliveryStatus) -> None:
    if current != DeliveryStatus.DELIVERED:
        raise InvalidTransitionError(
            "delivery",
            current.value,
            DeliveryStatus.RECEIVED.value,
            reason="only a delivered delivery can be reconciled",
        )


def delivery_is_open(status: DeliveryStatus) -> bool:
    return status not in TERMINAL_DELIVERY_STATUSES


# =============================================================================
# Crew assignment
# =============================================================================


def validate_crew_status_change(current: CrewStatus, target: CrewStatus) -> None:
    if target not in CREW_TRANSITIONS[current]:
        raise InvalidTransitionError(
            "crew_assignment",
            current.value,
            target.value,
            reason="crew status moves scheduled -> active -> completed",
        )
