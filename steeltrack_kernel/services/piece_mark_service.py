"""
PieceMarkService -- registry operations and the status/location state machine.

Responsibility:
    Creates, edits and archives piece marks, and applies authorized status
    and location transitions.  Every successful call flushes the new state
    and exactly one activity entry into the caller's transaction.

Architecture position:
    Kernel > Services -- imperative shell around the pure lifecycle tables
    (domain/lifecycle.py) and role policy (domain/authorization.py).

Transition pipeline (status and location):
    1. load the piece mark; reject archived or version-mismatched rows
    2. location only: installed -> LocationLockedAfterInstallError
    3. authorize against the *current* persisted state
    4. validate the (from, to) pair against the transition table
    5. apply; flush (version_id_col turns a lost race into
       ConcurrentModificationError before anything else is written)
    6. append the activity entry

Invariants enforced:
    WEIGHT_CONSISTENCY, SINGLE_STEP_STATUS, LOCATION_WHILE_SHIPPED,
    ONE_ENTRY_PER_MUTATION, SERIALIZED_AGGREGATES.

Failure modes:
    ForbiddenError, InvalidTransitionError, LocationLockedAfterInstallError,
    ConcurrentModificationError, PieceMarkNotFoundError,
    PieceMarkArchivedError, DuplicatePieceMarkError, InvalidValueError,
    OverReceiptError (quantity edit below what was already received).
"""

from decimal import Decimal, InvalidOperation
from typing import Any
from uuid import UUID

from sqlalchemy import and_, func, select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from steeltrack_kernel.domain.authorization import Action, ResourceState, authorize
from steeltrack_kernel.domain.clock import Clock, SystemClock
from steeltrack_kernel.domain.dtos import PieceMarkInfo
from steeltrack_kernel.domain.identity import Actor
from steeltrack_kernel.domain.lifecycle import (
    check_location_lock,
    location_after_status_change,
    validate_location_update,
    validate_status_advance,
    validate_status_rollback,
)
from steeltrack_kernel.domain.values import (
    CrewStatus,
    DeliveryStatus,
    FieldLocation,
    PieceMarkStatus,
    SubjectType,
    TransitionKind,
    parse_enum,
)
from steeltrack_kernel.exceptions import (
    ConcurrentModificationError,
    DuplicatePieceMarkError,
    InvalidTransitionError,
    InvalidValueError,
    OverReceiptError,
    PieceMarkArchivedError,
    PieceMarkNotFoundError,
)
from steeltrack_kernel.logging_config import get_logger
from steeltrack_kernel.models.crew_assignment import CrewAssignment, crew_assignment_piece_marks
from steeltrack_kernel.models.delivery import Delivery, DeliveryItem
from steeltrack_kernel.models.piece_mark import PieceMark
from steeltrack_kernel.services.activity_log_service import ActivityLogService
from steeltrack_kernel.services.base import BaseService

logger = get_logger("services.piece_mark")

EDITABLE_FIELDS = frozenset(
    {
        "quantity",
        "weight_per_unit",
        "description",
        "material",
        "drawing_number",
        "sequence_number",
        "shop_assigned_to",
        "field_assigned_to",
    }
)


def piece_mark_snapshot(pm: PieceMark) -> dict[str, Any]:
    """State captured in before/after snapshots of the activity log."""
    return {
        "mark": pm.mark,
        "status": pm.status.value,
        "location": pm.location.value if pm.location else None,
        "quantity": pm.quantity,
        "weight_per_unit": pm.weight_per_unit,
        "total_weight": pm.total_weight,
        "description": pm.description,
        "material": pm.material,
        "drawing_number": pm.drawing_number,
        "sequence_number": pm.sequence_number,
        "shop_assigned_to": pm.shop_assigned_to,
        "field_assigned_to": pm.field_assigned_to,
        "archived": pm.archived_at is not None,
        "version": pm.version,
    }


def _validate_quantity(quantity: Any) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidValueError("quantity", quantity, "an integer >= 1")
    return quantity


def _validate_weight(weight_per_unit: Any) -> Decimal:
    if isinstance(weight_per_unit, (bool, float)):
        raise InvalidValueError("weight_per_unit", weight_per_unit, "a non-negative decimal")
    try:
        weight = Decimal(str(weight_per_unit))
    except (InvalidOperation, ValueError):
        raise InvalidValueError(
            "weight_per_unit", weight_per_unit, "a non-negative decimal"
        ) from None
    if not weight.is_finite() or weight < 0:
        raise InvalidValueError("weight_per_unit", weight_per_unit, "a non-negative decimal")
    return weight


def _validate_mark(mark: Any) -> str:
    if not isinstance(mark, str) or not mark.strip():
        raise InvalidValueError("mark", mark, "a non-empty mark code")
    return mark.strip()


class PieceMarkService(BaseService[PieceMark]):
    """
    Registry and state machine for piece marks.

    Non-goals:
        - Does NOT commit.  Does NOT publish change notices.
    """

    def __init__(
        self,
        session: Session,
        activity_log: ActivityLogService,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._activity_log = activity_log
        self._clock = clock or SystemClock()

    # =========================================================================
    # Loading and accounting helpers
    # =========================================================================

    def get_for_update(
        self,
        piece_mark_id: UUID,
        expected_version: int | None = None,
        allow_archived: bool = False,
    ) -> PieceMark:
        """
        Load a piece mark for mutation.

        Raises:
            PieceMarkNotFoundError, PieceMarkArchivedError,
            ConcurrentModificationError (expected_version mismatch).
        """
        pm = self.session.get(PieceMark, piece_mark_id)
        if pm is None:
            raise PieceMarkNotFoundError(str(piece_mark_id))
        if expected_version is not None and pm.version != expected_version:
            logger.warning(
                "piece_mark_version_mismatch",
                extra={
                    "piece_mark_id": str(piece_mark_id),
                    "expected_version": expected_version,
                    "actual_version": pm.version,
                },
            )
            raise ConcurrentModificationError(
                "PieceMark", str(piece_mark_id), expected_version, pm.version
            )
        if pm.is_archived and not allow_archived:
            raise PieceMarkArchivedError(str(piece_mark_id))
        return pm

    def lock_for_receipt(self, piece_mark_ids: set[UUID]) -> None:
        """
        Row-lock piece marks ahead of a cumulative receipt check.

        Locks are taken in id order and the rows are reloaded, so the
        caller plans against state no other receipt can change underneath.
        """
        if not piece_mark_ids:
            return
        self.session.execute(
            select(PieceMark)
            .where(PieceMark.id.in_(piece_mark_ids))
            .order_by(PieceMark.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()

    def received_to_date(
        self, piece_mark_id: UUID, exclude_delivery_id: UUID | None = None
    ) -> int:
        """Cumulative received quantity across all reconciled delivery items."""
        stmt = select(func.coalesce(func.sum(DeliveryItem.received_quantity), 0)).where(
            DeliveryItem.piece_mark_id == piece_mark_id,
            DeliveryItem.received_quantity.is_not(None),
        )
        if exclude_delivery_id is not None:
            stmt = stmt.where(DeliveryItem.delivery_id != exclude_delivery_id)
        return int(self.session.execute(stmt).scalar_one())

    def open_item_count(
        self, piece_mark_id: UUID, exclude_delivery_id: UUID | None = None
    ) -> int:
        """Unreconciled items for this piece mark on deliveries still in flight."""
        stmt = (
            select(func.count())
            .select_from(DeliveryItem)
            .join(Delivery, Delivery.id == DeliveryItem.delivery_id)
            .where(
                DeliveryItem.piece_mark_id == piece_mark_id,
                DeliveryItem.received_quantity.is_(None),
                Delivery.status.not_in([DeliveryStatus.RECEIVED, DeliveryStatus.REJECTED]),
            )
        )
        if exclude_delivery_id is not None:
            stmt = stmt.where(DeliveryItem.delivery_id != exclude_delivery_id)
        return int(self.session.execute(stmt).scalar_one())

    def attributed_crew_id(self, piece_mark_id: UUID) -> UUID | None:
        """
        Crew responsible for field activity on this piece mark.

        The most recent active assignment containing it; failing that, a
        scheduled assignment for today.
        """
        base = (
            select(CrewAssignment.id)
            .join(
                crew_assignment_piece_marks,
                crew_assignment_piece_marks.c.crew_assignment_id == CrewAssignment.id,
            )
            .where(crew_assignment_piece_marks.c.piece_mark_id == piece_mark_id)
        )
        active = self.session.execute(
            base.where(CrewAssignment.status == CrewStatus.ACTIVE)
            .order_by(CrewAssignment.work_date.desc(), CrewAssignment.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()
        if active is not None:
            return active
        return self.session.execute(
            base.where(
                and_(
                    CrewAssignment.status == CrewStatus.SCHEDULED,
                    CrewAssignment.work_date == self._clock.today(),
                )
            )
            .order_by(CrewAssignment.created_at.desc())
            .limit(1)
        ).scalar_one_or_none()

    def _flush(self, pm: PieceMark) -> None:
        # a failed flush leaves the session unusable; read the id first
        piece_mark_id = str(pm.id)
        try:
            self.session.flush()
        except StaleDataError as exc:
            logger.warning(
                "piece_mark_concurrent_modification",
                extra={"piece_mark_id": piece_mark_id},
            )
            raise ConcurrentModificationError("PieceMark", piece_mark_id) from exc

    # =========================================================================
    # Registry
    # =========================================================================

    def create_piece_mark(
        self,
        actor: Actor,
        project_id: UUID,
        mark: str,
        quantity: int,
        weight_per_unit: Decimal | str | int,
        description: str | None = None,
        material: str | None = None,
        drawing_number: str | None = None,
        sequence_number: str | None = None,
        shop_assigned_to: UUID | None = None,
        field_assigned_to: UUID | None = None,
    ) -> PieceMarkInfo:
        authorize(actor, Action.MANAGE_PIECE_MARKS)
        mark = _validate_mark(mark)
        quantity = _validate_quantity(quantity)
        weight = _validate_weight(weight_per_unit)

        existing = self.session.execute(
            select(PieceMark.id).where(PieceMark.project_id == project_id, PieceMark.mark == mark)
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicatePieceMarkError(str(project_id), mark)

        pm = PieceMark(
            project_id=project_id,
            mark=mark,
            quantity=quantity,
            weight_per_unit=weight,
            status=PieceMarkStatus.NOT_STARTED,
            location=None,
            description=description,
            material=material,
            drawing_number=drawing_number,
            sequence_number=sequence_number,
            shop_assigned_to=shop_assigned_to,
            field_assigned_to=field_assigned_to,
            created_by_id=actor.actor_id,
        )
        self.session.add(pm)
        self.session.flush()

        self._activity_log.record(
            actor=actor,
            project_id=project_id,
            subject_type=SubjectType.PIECE_MARK,
            subject_id=pm.id,
            transition_kind=TransitionKind.PIECE_MARK_CREATED,
            before_state=None,
            after_state=piece_mark_snapshot(pm),
            description=f"Piece mark {mark} created",
        )
        logger.info(
            "piece_mark_created",
            extra={"piece_mark_id": str(pm.id), "mark": mark, "project_id": str(project_id)},
        )
        return PieceMarkInfo.from_model(pm)

    def update_piece_mark_details(
        self,
        actor: Actor,
        piece_mark_id: UUID,
        expected_version: int | None = None,
        note: str | None = None,
        **changes: Any,
    ) -> PieceMarkInfo:
        """
        Edit registry attributes.  Status and location are not editable here.

        Raises:
            InvalidValueError: unknown field, or no field would change.
            OverReceiptError: quantity below what has already been received.
        """
        authorize(actor, Action.MANAGE_PIECE_MARKS)
        unknown = sorted(set(changes) - EDITABLE_FIELDS)
        if unknown:
            raise InvalidValueError("fields", unknown, f"a subset of {sorted(EDITABLE_FIELDS)}")

        pm = self.get_for_update(piece_mark_id, expected_version)

        if "quantity" in changes:
            changes["quantity"] = _validate_quantity(changes["quantity"])
            received = self.received_to_date(pm.id)
            if changes["quantity"] < received:
                raise OverReceiptError(
                    str(pm.id),
                    expected=changes["quantity"],
                    cumulative=received,
                    attempted=0,
                    scope="piece_mark",
                )
        if "weight_per_unit" in changes:
            changes["weight_per_unit"] = _validate_weight(changes["weight_per_unit"])

        effective = {k: v for k, v in changes.items() if getattr(pm, k) != v}
        if not effective:
            raise InvalidValueError("fields", sorted(changes), "at least one changed value")

        before = piece_mark_snapshot(pm)
        for field_name, value in effective.items():
            setattr(pm, field_name, value)
        pm.updated_by_id = actor.actor_id
        self._flush(pm)

        self._activity_log.record(
            actor=actor,
            project_id=pm.project_id,
            subject_type=SubjectType.PIECE_MARK,
            subject_id=pm.id,
            transition_kind=TransitionKind.PIECE_MARK_UPDATED,
            before_state=before,
            after_state=piece_mark_snapshot(pm),
            description=note or f"Updated {', '.join(sorted(effective))}",
        )
        logger.info(
            "piece_mark_updated",
            extra={"piece_mark_id": str(pm.id), "fields": sorted(effective)},
        )
        return PieceMarkInfo.from_model(pm)

    def archive_piece_mark(
        self,
        actor: Actor,
        piece_mark_id: UUID,
        reason: str | None = None,
        expected_version: int | None = None,
    ) -> PieceMarkInfo:
        """
        Soft delete.  Archived piece marks reject every further transition.

        Refused while the piece mark sits on a delivery that has not been
        received or rejected; that delivery could never be reconciled.
        """
        authorize(actor, Action.MANAGE_PIECE_MARKS)
        pm = self.get_for_update(piece_mark_id, expected_version)
        open_items = self.open_item_count(pm.id)
        if open_items:
            raise InvalidTransitionError(
                "piece_mark",
                "active",
                "archived",
                reason=f"{open_items} open delivery item(s) still expect it",
            )

        before = piece_mark_snapshot(pm)
        pm.archived_at = self._clock.now()
        pm.updated_by_id = actor.actor_id
        self._flush(pm)

        self._activity_log.record(
            actor=actor,
            project_id=pm.project_id,
            subject_type=SubjectType.PIECE_MARK,
            subject_id=pm.id,
            transition_kind=TransitionKind.PIECE_MARK_ARCHIVED,
            before_state=before,
            after_state=piece_mark_snapshot(pm),
            description=reason or f"Piece mark {pm.mark} archived",
        )
        logger.info("piece_mark_archived", extra={"piece_mark_id": str(pm.id)})
        return PieceMarkInfo.from_model(pm)

    # =========================================================================
    # State machine
    # =========================================================================

    def advance_status(
        self,
        actor: Actor,
        piece_mark_id: UUID,
        new_status: PieceMarkStatus | str,
        note: str | None = None,
        expected_version: int | None = None,
    ) -> PieceMarkInfo:
        """Move to the immediate successor status."""
        target = parse_enum(PieceMarkStatus, new_status, "status")
        pm = self.get_for_update(piece_mark_id, expected_version)

        authorize(
            actor,
            Action.ADVANCE_STATUS,
            ResourceState(status=pm.status, last_status_actor_id=pm.status_changed_by_id),
        )
        validate_status_advance(pm.status, target)
        return self._apply_status(actor, pm, target, TransitionKind.STATUS_ADVANCED, note)

    def rollback_status(
        self,
        actor: Actor,
        piece_mark_id: UUID,
        new_status: PieceMarkStatus | str,
        note: str | None = None,
        expected_version: int | None = None,
    ) -> PieceMarkInfo:
        """Correct a mistaken advance by moving to the immediate predecessor."""
        target = parse_enum(PieceMarkStatus, new_status, "status")
        pm = self.get_for_update(piece_mark_id, expected_version)

        authorize(
            actor,
            Action.ROLLBACK_STATUS,
            ResourceState(status=pm.status, last_status_actor_id=pm.status_changed_by_id),
        )
        validate_status_rollback(pm.status, target)
        return self._apply_status(actor, pm, target, TransitionKind.STATUS_ROLLED_BACK, note)

    def _apply_status(
        self,
        actor: Actor,
        pm: PieceMark,
        target: PieceMarkStatus,
        kind: TransitionKind,
        note: str | None,
    ) -> PieceMarkInfo:
        before = piece_mark_snapshot(pm)
        from_status = pm.status

        pm.location = location_after_status_change(pm.location, pm.status, target)
        pm.status = target
        pm.status_changed_by_id = actor.actor_id
        pm.updated_by_id = actor.actor_id
        self._flush(pm)

        self._activity_log.record(
            actor=actor,
            project_id=pm.project_id,
            subject_type=SubjectType.PIECE_MARK,
            subject_id=pm.id,
            transition_kind=kind,
            before_state=before,
            after_state=piece_mark_snapshot(pm),
            description=note,
            crew_assignment_id=self.attributed_crew_id(pm.id),
        )
        logger.info(
            "piece_mark_status_advanced"
            if kind == TransitionKind.STATUS_ADVANCED
            else "piece_mark_status_rolled_back",
            extra={
                "piece_mark_id": str(pm.id),
                "from_status": from_status.value,
                "to_status": target.value,
            },
        )
        return PieceMarkInfo.from_model(pm)

    def update_location(
        self,
        actor: Actor,
        piece_mark_id: UUID,
        new_location: FieldLocation | str,
        note: str | None = None,
        expected_version: int | None = None,
    ) -> PieceMarkInfo:
        """
        Move a shipped piece mark between field zones.

        The install lock is checked before authorization, so every role is
        told the piece mark is locked rather than forbidden.
        """
        target = parse_enum(FieldLocation, new_location, "location")
        pm = self.get_for_update(piece_mark_id, expected_version)

        check_location_lock(str(pm.id), pm.status, target)
        authorize(actor, Action.UPDATE_LOCATION, ResourceState(status=pm.status))
        validate_location_update(str(pm.id), pm.status, pm.location, target)

        before = piece_mark_snapshot(pm)
        from_location = pm.location
        pm.location = target
        pm.updated_by_id = actor.actor_id
        self._flush(pm)

        self._activity_log.record(
            actor=actor,
            project_id=pm.project_id,
            subject_type=SubjectType.PIECE_MARK,
            subject_id=pm.id,
            transition_kind=TransitionKind.LOCATION_UPDATED,
            before_state=before,
            after_state=piece_mark_snapshot(pm),
            description=note,
            crew_assignment_id=self.attributed_crew_id(pm.id),
        )
        logger.info(
            "piece_mark_location_updated",
            extra={
                "piece_mark_id": str(pm.id),
                "from_location": from_location.value if from_location else None,
                "to_location": target.value,
            },
        )
        return PieceMarkInfo.from_model(pm)
