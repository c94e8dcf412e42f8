"""
Reconciliation planner -- expected vs. received, computed without I/O.

Responsibility:
    Given a delivery's items, the submitted receipt lines and the current
    accounting facts of every affected piece mark, validate the submission
    as a whole and compute every resulting state change.  The delivery
    service then applies the plan in one transaction; if planning raises,
    nothing has been written.

Architecture position:
    Kernel > Domain -- pure, zero I/O.

Invariants enforced:
    COMPLETE_RECONCILIATION -- every item needs exactly one line.
    NO_OVER_RECEIPT         -- a line never exceeds its item's expected
                               quantity, and cumulative receipts never exceed
                               the piece mark's quantity.

Algorithm (per item):
    1. cumulative = received before this delivery + received now.
    2. Status advances to shipped unless already shipped or installed.
       Installed piece marks are left untouched.
    3. The submitted location is applied on the piece mark's last
       necessary reconciling event: no other open delivery item is waiting
       for it, or the cumulative quantity has reached the full quantity.
       Otherwise the location stays as it was (``unknown`` if none).  A
       line that received nothing never applies its location.
    4. Shortfall > 0 or a condition other than good yields a Discrepancy.
       Discrepancies never block the items that reconciled cleanly.
"""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
from uuid import UUID

from steeltrack_kernel.domain.dtos import Discrepancy, ReceiptLine
from steeltrack_kernel.domain.lifecycle import validate_delivery_receipt
from steeltrack_kernel.domain.values import (
    DeliveryStatus,
    FieldLocation,
    ItemCondition,
    PieceMarkStatus,
    status_rank,
)
from steeltrack_kernel.exceptions import (
    DeliveryItemNotFoundError,
    IncompleteReconciliationError,
    InvalidValueError,
    OverReceiptError,
)


@dataclass(frozen=True)
class ItemFacts:
    """A delivery item as the planner needs to see it."""

    item_id: UUID
    piece_mark_id: UUID
    expected_quantity: int


@dataclass(frozen=True)
class PieceMarkFacts:
    """
    Accounting facts for one piece mark, excluding the delivery being
    reconciled.
    """

    piece_mark_id: UUID
    quantity: int
    status: PieceMarkStatus
    location: FieldLocation | None
    received_to_date: int
    other_open_items: int


@dataclass(frozen=True)
class ItemOutcome:
    item_id: UUID
    piece_mark_id: UUID
    expected_quantity: int
    received_quantity: int
    condition: ItemCondition
    location: FieldLocation
    notes: str | None
    # Piece-mark effect
    status_before: PieceMarkStatus
    status_after: PieceMarkStatus
    location_before: FieldLocation | None
    location_after: FieldLocation | None
    cumulative_received: int
    location_applied: bool
    discrepancy: Discrepancy | None

    @property
    def changes_piece_mark(self) -> bool:
        return (
            self.status_before != self.status_after
            or self.location_before != self.location_after
        )


@dataclass(frozen=True)
class ReconciliationPlan:
    delivery_id: UUID
    outcomes: tuple[ItemOutcome, ...]

    @property
    def discrepancies(self) -> tuple[Discrepancy, ...]:
        return tuple(o.discrepancy for o in self.outcomes if o.discrepancy is not None)


def plan_reconciliation(
    delivery_id: UUID,
    delivery_status: DeliveryStatus,
    items: list[ItemFacts],
    lines: list[ReceiptLine],
    piece_marks: dict[UUID, PieceMarkFacts],
) -> ReconciliationPlan:
    """
    Validate a full submission and compute its effects.

    Raises:
        InvalidTransitionError: delivery is not ``delivered``.
        InvalidValueError: two lines name the same item.
        DeliveryItemNotFoundError: a line names an item not in the delivery.
        IncompleteReconciliationError: an item has no line.
        OverReceiptError: a line or the cumulative total is over quantity.
    """
    validate_delivery_receipt(delivery_status)

    counts = Counter(line.item_id for line in lines)
    duplicated = sorted(str(item_id) for item_id, n in counts.items() if n > 1)
    if duplicated:
        raise InvalidValueError("lines", duplicated, "one line per delivery item")

    items_by_id = {item.item_id: item for item in items}
    for line in lines:
        if line.item_id not in items_by_id:
            raise DeliveryItemNotFoundError(str(line.item_id))

    unresolved = [str(item.item_id) for item in items if item.item_id not in counts]
    if unresolved:
        raise IncompleteReconciliationError(str(delivery_id), sorted(unresolved))

    lines_by_item = {line.item_id: line for line in lines}
    outcomes: list[ItemOutcome] = []
    for item in items:
        line = lines_by_item[item.item_id]
        facts = piece_marks[item.piece_mark_id]
        outcomes.append(_plan_item(item, line, facts))

    return ReconciliationPlan(delivery_id=delivery_id, outcomes=tuple(outcomes))


def _plan_item(item: ItemFacts, line: ReceiptLine, facts: PieceMarkFacts) -> ItemOutcome:
    if line.received_quantity > item.expected_quantity:
        raise OverReceiptError(
            str(item.piece_mark_id),
            expected=item.expected_quantity,
            cumulative=0,
            attempted=line.received_quantity,
            scope="delivery_item",
        )

    cumulative = facts.received_to_date + line.received_quantity
    if cumulative > facts.quantity:
        raise OverReceiptError(
            str(item.piece_mark_id),
            expected=facts.quantity,
            cumulative=facts.received_to_date,
            attempted=line.received_quantity,
            scope="piece_mark",
        )

    last_event = facts.other_open_items == 0 or cumulative >= facts.quantity

    if facts.status == PieceMarkStatus.INSTALLED:
        status_after = facts.status
        location_after = facts.location
        location_applied = False
    else:
        if status_rank(facts.status) < status_rank(PieceMarkStatus.SHIPPED):
            status_after = PieceMarkStatus.SHIPPED
        else:
            status_after = facts.status
        location_applied = last_event and line.received_quantity > 0
        if location_applied:
            location_after = line.location
        else:
            location_after = facts.location or FieldLocation.UNKNOWN

    discrepancy = None
    if line.received_quantity < item.expected_quantity or line.condition != ItemCondition.GOOD:
        discrepancy = Discrepancy(
            delivery_item_id=item.item_id,
            piece_mark_id=item.piece_mark_id,
            expected_quantity=item.expected_quantity,
            received_quantity=line.received_quantity,
            condition=line.condition,
        )

    return ItemOutcome(
        item_id=item.item_id,
        piece_mark_id=item.piece_mark_id,
        expected_quantity=item.expected_quantity,
        received_quantity=line.received_quantity,
        condition=line.condition,
        location=line.location,
        notes=line.notes,
        status_before=facts.status,
        status_after=status_after,
        location_before=facts.location,
        location_after=location_after,
        cumulative_received=cumulative,
        location_applied=location_applied,
        discrepancy=discrepancy,
    )
