"""
DeliveryService -- deliveries, their expected items, and reconciliation.

Responsibility:
    Creates deliveries, adds expected items while pending, moves deliveries
    pending -> in_transit -> delivered (or rejects them), and applies a
    complete reconciliation: every item's received quantity, condition and
    location, the resulting piece-mark states, and the activity entries.

Architecture position:
    Kernel > Services -- imperative shell around the pure reconciliation
    planner (domain/reconciliation.py).  The planner validates the whole
    submission before this service writes a single row.

Invariants enforced:
    COMPLETE_RECONCILIATION -- a partial submission raises
        IncompleteReconciliationError with nothing written; the delivery
        stays ``delivered``.
    NO_OVER_RECEIPT -- per item and cumulatively per piece mark.
        Affected piece marks are row-locked before the cumulative check and
        every receipt bumps their version.
    ONE_ENTRY_PER_MUTATION -- one entry per affected piece mark plus one
        for the delivery.

Failure modes:
    ForbiddenError, InvalidTransitionError, DeliveryNotFoundError,
    DeliveryItemNotFoundError, DeliveryItemsFrozenError,
    DuplicateDeliveryError, DuplicateDeliveryItemError,
    IncompleteReconciliationError, OverReceiptError, InvalidValueError,
    ConcurrentModificationError.
"""

from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified
from sqlalchemy.orm.exc import StaleDataError

from steeltrack_kernel.domain.authorization import Action, authorize
from steeltrack_kernel.domain.clock import Clock, SystemClock
from steeltrack_kernel.domain.dtos import (
    DeliveryInfo,
    DeliveryItemInfo,
    PieceMarkInfo,
    ReceiptLine,
    ReconciliationResult,
)
from steeltrack_kernel.domain.identity import Actor
from steeltrack_kernel.domain.lifecycle import (
    validate_delivery_receipt,
    validate_delivery_rejection,
    validate_delivery_status_change,
)
from steeltrack_kernel.domain.reconciliation import (
    ItemFacts,
    ItemOutcome,
    PieceMarkFacts,
    plan_reconciliation,
)
from steeltrack_kernel.domain.values import (
    DeliveryStatus,
    ItemCondition,
    SubjectType,
    TransitionKind,
    parse_enum,
)
from steeltrack_kernel.exceptions import (
    ConcurrentModificationError,
    DeliveryItemsFrozenError,
    DeliveryNotFoundError,
    DuplicateDeliveryError,
    DuplicateDeliveryItemError,
    IncompleteReconciliationError,
    InvalidTransitionError,
    InvalidValueError,
)
from steeltrack_kernel.logging_config import get_logger
from steeltrack_kernel.models.delivery import Delivery, DeliveryItem
from steeltrack_kernel.models.piece_mark import PieceMark
from steeltrack_kernel.services.activity_log_service import ActivityLogService
from steeltrack_kernel.services.base import BaseService
from steeltrack_kernel.services.piece_mark_service import (
    PieceMarkService,
    piece_mark_snapshot,
)

logger = get_logger("services.delivery")


def delivery_snapshot(delivery: Delivery) -> dict[str, Any]:
    return {
        "delivery_number": delivery.delivery_number,
        "status": delivery.status.value,
        "scheduled_date": delivery.scheduled_date,
        "arrived_at": delivery.arrived_at,
        "item_count": len(delivery.items),
        "received_by_id": delivery.received_by_id,
        "rejected_reason": delivery.rejected_reason,
        "version": delivery.version,
    }


def _item_snapshot(item: DeliveryItem) -> dict[str, Any]:
    return {
        "item_id": item.id,
        "line_no": item.line_no,
        "piece_mark_id": item.piece_mark_id,
        "expected_quantity": item.expected_quantity,
        "received_quantity": item.received_quantity,
        "condition": item.condition.value if item.condition else None,
        "location": item.location.value if item.location else None,
    }


def _receipt_description(outcome: ItemOutcome) -> str:
    text = (
        f"Received {outcome.received_quantity} of {outcome.expected_quantity} "
        f"({outcome.condition.value}) at {outcome.location.value}"
    )
    if not outcome.location_applied and outcome.location_after != outcome.location:
        text += "; location pending remaining deliveries"
    return text


class DeliveryService(BaseService[Delivery]):
    """
    Delivery lifecycle and the reconciliation engine.

    Non-goals:
        - Does NOT commit.  Does NOT publish change notices.
    """

    def __init__(
        self,
        session: Session,
        activity_log: ActivityLogService,
        piece_marks: PieceMarkService,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._activity_log = activity_log
        self._piece_marks = piece_marks
        self._clock = clock or SystemClock()

    def get_for_update(
        self, delivery_id: UUID, expected_version: int | None = None
    ) -> Delivery:
        delivery = self.session.get(Delivery, delivery_id)
        if delivery is None:
            raise DeliveryNotFoundError(str(delivery_id))
        if expected_version is not None and delivery.version != expected_version:
            raise ConcurrentModificationError(
                "Delivery", str(delivery_id), expected_version, delivery.version
            )
        return delivery

    def _flush(self, entity_type: str, entity_id: UUID) -> None:
        try:
            self.session.flush()
        except StaleDataError as exc:
            logger.warning(
                "delivery_concurrent_modification",
                extra={"entity_type": entity_type, "entity_id": str(entity_id)},
            )
            raise ConcurrentModificationError(entity_type, str(entity_id)) from exc

    def _record_delivery(
        self,
        actor: Actor,
        delivery: Delivery,
        kind: TransitionKind,
        before: dict[str, Any] | None,
        after: dict[str, Any],
        description: str | None = None,
        discrepancy: dict[str, Any] | None = None,
    ) -> None:
        self._activity_log.record(
            actor=actor,
            project_id=delivery.project_id,
            subject_type=SubjectType.DELIVERY,
            subject_id=delivery.id,
            transition_kind=kind,
            before_state=before,
            after_state=after,
            description=description,
            delivery_id=delivery.id,
            discrepancy=discrepancy,
        )

    # =========================================================================
    # Delivery lifecycle
    # =========================================================================

    def create_delivery(
        self,
        actor: Actor,
        project_id: UUID,
        delivery_number: str,
        scheduled_date: date | None = None,
        truck_number: str | None = None,
        driver_name: str | None = None,
        notes: str | None = None,
    ) -> DeliveryInfo:
        authorize(actor, Action.MANAGE_DELIVERIES)
        if not isinstance(delivery_number, str) or not delivery_number.strip():
            raise InvalidValueError("delivery_number", delivery_number, "a non-empty string")
        delivery_number = delivery_number.strip()

        existing = self.session.execute(
            select(Delivery.id).where(
                Delivery.project_id == project_id,
                Delivery.delivery_number == delivery_number,
            )
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateDeliveryError(str(project_id), delivery_number)

        delivery = Delivery(
            project_id=project_id,
            delivery_number=delivery_number,
            scheduled_date=scheduled_date,
            status=DeliveryStatus.PENDING,
            truck_number=truck_number,
            driver_name=driver_name,
            notes=notes,
            created_by_id=actor.actor_id,
        )
        self.session.add(delivery)
        self.session.flush()

        self._record_delivery(
            actor,
            delivery,
            TransitionKind.DELIVERY_CREATED,
            None,
            delivery_snapshot(delivery),
            description=f"Delivery {delivery_number} created",
        )
        logger.info(
            "delivery_created",
            extra={"delivery_id": str(delivery.id), "delivery_number": delivery_number},
        )
        return DeliveryInfo.from_model(delivery)

    def add_delivery_item(
        self,
        actor: Actor,
        delivery_id: UUID,
        piece_mark_id: UUID,
        expected_quantity: int,
        notes: str | None = None,
    ) -> DeliveryItemInfo:
        """
        Add an expected line to a pending delivery.

        Raises:
            DeliveryItemsFrozenError: delivery is past ``pending``.
            DuplicateDeliveryItemError: the piece mark is already on it.
            InvalidValueError: wrong project, or quantity outside
                1..piece_mark.quantity.
        """
        authorize(actor, Action.MANAGE_DELIVERIES)
        delivery = self.get_for_update(delivery_id)
        if delivery.status != DeliveryStatus.PENDING:
            raise DeliveryItemsFrozenError(str(delivery.id), delivery.status.value)

        pm = self._piece_marks.get_for_update(piece_mark_id)
        if pm.project_id != delivery.project_id:
            raise InvalidValueError(
                "piece_mark_id",
                str(piece_mark_id),
                f"a piece mark in project {delivery.project_id}",
            )
        if any(item.piece_mark_id == pm.id for item in delivery.items):
            raise DuplicateDeliveryItemError(str(delivery.id), str(pm.id))
        if (
            isinstance(expected_quantity, bool)
            or not isinstance(expected_quantity, int)
            or not 1 <= expected_quantity <= pm.quantity
        ):
            raise InvalidValueError(
                "expected_quantity", expected_quantity, f"an integer in 1..{pm.quantity}"
            )

        before = delivery_snapshot(delivery)
        item = DeliveryItem(
            piece_mark_id=pm.id,
            line_no=len(delivery.items) + 1,
            expected_quantity=expected_quantity,
            notes=notes,
            created_by_id=actor.actor_id,
        )
        delivery.items.append(item)
        delivery.updated_by_id = actor.actor_id
        self._flush("Delivery", delivery.id)

        after = delivery_snapshot(delivery)
        after["item"] = _item_snapshot(item)
        self._record_delivery(
            actor,
            delivery,
            TransitionKind.DELIVERY_ITEM_ADDED,
            before,
            after,
            description=f"{pm.mark} x{expected_quantity}",
        )
        logger.info(
            "delivery_item_added",
            extra={
                "delivery_id": str(delivery.id),
                "piece_mark_id": str(pm.id),
                "expected_quantity": expected_quantity,
            },
        )
        return DeliveryItemInfo.from_model(item)

    def update_delivery_status(
        self,
        actor: Actor,
        delivery_id: UUID,
        new_status: DeliveryStatus | str,
        note: str | None = None,
        expected_version: int | None = None,
    ) -> DeliveryInfo:
        """pending -> in_transit -> delivered.  Reaching delivered stamps arrived_at."""
        target = parse_enum(DeliveryStatus, new_status, "status")
        authorize(actor, Action.MANAGE_DELIVERIES)
        delivery = self.get_for_update(delivery_id, expected_version)

        validate_delivery_status_change(delivery.status, target)
        if delivery.status == DeliveryStatus.PENDING and not delivery.items:
            raise InvalidTransitionError(
                "delivery",
                delivery.status.value,
                target.value,
                reason="delivery has no items",
            )

        before = delivery_snapshot(delivery)
        from_status = delivery.status
        delivery.status = target
        if target == DeliveryStatus.DELIVERED:
            delivery.arrived_at = self._clock.now()
        delivery.updated_by_id = actor.actor_id
        self._flush("Delivery", delivery.id)

        self._record_delivery(
            actor,
            delivery,
            TransitionKind.DELIVERY_STATUS_CHANGED,
            before,
            delivery_snapshot(delivery),
            description=note,
        )
        logger.info(
            "delivery_status_changed",
            extra={
                "delivery_id": str(delivery.id),
                "from_status": from_status.value,
                "to_status": target.value,
            },
        )
        return DeliveryInfo.from_model(delivery)

    def reject_delivery(
        self,
        actor: Actor,
        delivery_id: UUID,
        reason: str,
        expected_version: int | None = None,
    ) -> DeliveryInfo:
        """Terminal side-state from any non-terminal state.  Items stay unreconciled."""
        authorize(actor, Action.MANAGE_DELIVERIES)
        if not isinstance(reason, str) or not reason.strip():
            raise InvalidValueError("reason", reason, "a non-empty rejection reason")
        delivery = self.get_for_update(delivery_id, expected_version)
        validate_delivery_rejection(delivery.status)

        before = delivery_snapshot(delivery)
        delivery.status = DeliveryStatus.REJECTED
        delivery.rejected_reason = reason.strip()
        delivery.updated_by_id = actor.actor_id
        self._flush("Delivery", delivery.id)

        self._record_delivery(
            actor,
            delivery,
            TransitionKind.DELIVERY_REJECTED,
            before,
            delivery_snapshot(delivery),
            description=delivery.rejected_reason,
        )
        logger.info(
            "delivery_rejected",
            extra={"delivery_id": str(delivery.id), "from_status": before["status"]},
        )
        return DeliveryInfo.from_model(delivery)

    # =========================================================================
    # Reconciliation
    # =========================================================================

    def reconcile_delivery(
        self,
        actor: Actor,
        delivery_id: UUID,
        lines: list[ReceiptLine],
        expected_version: int | None = None,
    ) -> ReconciliationResult:
        """
        All-or-nothing receipt of a delivered delivery.

        Every item needs exactly one line.  The whole submission is planned
        and validated first; only a valid, complete plan is written.
        """
        authorize(actor, Action.RECEIVE_DELIVERY)
        delivery = self.get_for_update(delivery_id, expected_version)
        validate_delivery_receipt(delivery.status)

        items = list(delivery.items)
        self._piece_marks.lock_for_receipt({item.piece_mark_id for item in items})
        piece_marks: dict[UUID, PieceMark] = {}
        facts: dict[UUID, PieceMarkFacts] = {}
        for item in items:
            pm = self._piece_marks.get_for_update(item.piece_mark_id)
            piece_marks[pm.id] = pm
            facts[pm.id] = PieceMarkFacts(
                piece_mark_id=pm.id,
                quantity=pm.quantity,
                status=pm.status,
                location=pm.location,
                received_to_date=self._piece_marks.received_to_date(pm.id, delivery.id),
                other_open_items=self._piece_marks.open_item_count(pm.id, delivery.id),
            )

        try:
            plan = plan_reconciliation(
                delivery.id,
                delivery.status,
                [ItemFacts(item.id, item.piece_mark_id, item.expected_quantity) for item in items],
                list(lines),
                facts,
            )
        except IncompleteReconciliationError as exc:
            logger.warning(
                "reconciliation_incomplete",
                extra={
                    "delivery_id": str(delivery.id),
                    "unresolved_item_ids": exc.unresolved_item_ids,
                },
            )
            raise

        now = self._clock.now()
        items_by_id = {item.id: item for item in items}
        before_pm = {pm_id: piece_mark_snapshot(pm) for pm_id, pm in piece_marks.items()}
        before_delivery = delivery_snapshot(delivery)

        for outcome in plan.outcomes:
            item = items_by_id[outcome.item_id]
            item.received_quantity = outcome.received_quantity
            item.condition = outcome.condition
            item.location = outcome.location
            item.reconciled_at = now
            item.updated_by_id = actor.actor_id
            if outcome.notes:
                item.notes = outcome.notes

            pm = piece_marks[outcome.piece_mark_id]
            if outcome.changes_piece_mark:
                if pm.status != outcome.status_after:
                    pm.status_changed_by_id = actor.actor_id
                pm.status = outcome.status_after
                pm.location = outcome.location_after
            # bump the version even when status and location stay put
            pm.updated_by_id = actor.actor_id
            flag_modified(pm, "updated_by_id")

        delivery.status = DeliveryStatus.RECEIVED
        delivery.received_by_id = actor.actor_id
        delivery.received_at = now
        delivery.updated_by_id = actor.actor_id
        self._flush("Delivery", delivery.id)

        for outcome in plan.outcomes:
            pm = piece_marks[outcome.piece_mark_id]
            self._activity_log.record(
                actor=actor,
                project_id=pm.project_id,
                subject_type=SubjectType.PIECE_MARK,
                subject_id=pm.id,
                transition_kind=TransitionKind.PIECE_MARK_RECEIVED,
                before_state=before_pm[pm.id],
                after_state={
                    **piece_mark_snapshot(pm),
                    "cumulative_received": outcome.cumulative_received,
                },
                description=_receipt_description(outcome),
                delivery_id=delivery.id,
                crew_assignment_id=self._piece_marks.attributed_crew_id(pm.id),
                discrepancy=outcome.discrepancy.to_dict() if outcome.discrepancy else None,
                occurred_at=now,
            )
            if outcome.discrepancy is not None:
                logger.warning(
                    "reconciliation_discrepancy",
                    extra={
                        "delivery_id": str(delivery.id),
                        "piece_mark_id": str(pm.id),
                        "shortfall": outcome.discrepancy.shortfall,
                        "condition": outcome.condition.value,
                    },
                )

        discrepancies = plan.discrepancies
        after_delivery = delivery_snapshot(delivery)
        after_delivery["items"] = [_item_snapshot(item) for item in items]
        summary = None
        if discrepancies:
            summary = {
                "count": len(discrepancies),
                "total_shortfall": sum(d.shortfall for d in discrepancies),
                "non_good_conditions": sum(
                    1 for d in discrepancies if d.condition != ItemCondition.GOOD
                ),
                "items": [d.to_dict() for d in discrepancies],
            }
        self._activity_log.record(
            actor=actor,
            project_id=delivery.project_id,
            subject_type=SubjectType.DELIVERY,
            subject_id=delivery.id,
            transition_kind=TransitionKind.DELIVERY_RECEIVED,
            before_state=before_delivery,
            after_state=after_delivery,
            description=f"Delivery {delivery.delivery_number} received",
            delivery_id=delivery.id,
            discrepancy=summary,
            occurred_at=now,
        )

        logger.info(
            "delivery_reconciled",
            extra={
                "delivery_id": str(delivery.id),
                "item_count": len(items),
                "discrepancy_count": len(discrepancies),
            },
        )
        return ReconciliationResult(
            delivery=DeliveryInfo.from_model(delivery),
            piece_marks=tuple(
                PieceMarkInfo.from_model(piece_marks[o.piece_mark_id]) for o in plan.outcomes
            ),
            discrepancies=discrepancies,
        )
