"""
FieldTracker -- the request-scoped orchestration shell.

Responsibility:
    Exposes every mutation and query of the tracker as one call.  Each
    mutation runs in its own unit of work: one session, one transaction,
    committed only when the kernel services have flushed the state change
    and its activity entries.  Change notices are published only after the
    commit succeeds.

Architecture position:
    Services layer, above ``steeltrack_kernel``.  Owns transaction
    boundaries; the kernel services it drives are flush-only.

Invariants enforced:
    - Atomicity: state change and activity entries commit together or not
      at all.  Any exception (including cancellation) rolls back.
    - Broadcast after commit only; broadcast failure never affects the
      committed result.
    - The database handle is passed in; there is no module-level
      connection state.

Failure modes:
    Every kernel rejection propagates unchanged after rollback.  Rejections
    are logged at WARNING (``transition_forbidden`` for authorization,
    ``operation_rejected`` otherwise).
"""

from __future__ import annotations

import time
from collections.abc import Iterable, Iterator, Mapping
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy.orm import Session

from steeltrack_config import TrackerSettings, get_active_settings
from steeltrack_kernel.db.engine import Database
from steeltrack_kernel.db.immutability import register_immutability_listeners
from steeltrack_kernel.domain.clock import Clock, SystemClock
from steeltrack_kernel.domain.dtos import (
    ActivityEntryInfo,
    ChangeNotice,
    CrewAssignmentInfo,
    DeliveryInfo,
    DeliveryItemInfo,
    PieceMarkInfo,
    ReceiptLine,
    ReconciliationResult,
)
from steeltrack_kernel.domain.identity import Actor
from steeltrack_kernel.domain.values import (
    CrewShift,
    CrewStatus,
    DeliveryStatus,
    FieldLocation,
    PieceMarkStatus,
    SubjectType,
    parse_enum,
)
from steeltrack_kernel.exceptions import ForbiddenError, InvalidValueError, SteelTrackError
from steeltrack_kernel.logging_config import LogContext, configure_logging, get_logger
from steeltrack_kernel.selectors import (
    ActivitySelector,
    CrewSelector,
    DeliverySelector,
    PieceMarkSelector,
    StatusSummaryRow,
)
from steeltrack_kernel.services import (
    ActivityLogService,
    CrewService,
    DeliveryService,
    PieceMarkService,
)
from steeltrack_services.broadcaster import ChangeBroadcaster

logger = get_logger("field_tracker")


def _uuid(value: UUID | str, field: str) -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        raise InvalidValueError(field, value, "a UUID") from None


@dataclass
class UnitOfWork:
    """Kernel services bound to one session."""

    session: Session
    activity_log: ActivityLogService
    piece_marks: PieceMarkService
    deliveries: DeliveryService
    crews: CrewService

    @classmethod
    def open(cls, session: Session, clock: Clock) -> UnitOfWork:
        activity_log = ActivityLogService(session, clock)
        piece_marks = PieceMarkService(session, activity_log, clock)
        return cls(
            session=session,
            activity_log=activity_log,
            piece_marks=piece_marks,
            deliveries=DeliveryService(session, activity_log, piece_marks, clock),
            crews=CrewService(session, activity_log, piece_marks, clock),
        )


class FieldTracker:
    """
    Piece-mark lifecycle and field-reconciliation facade.

    Usage:
        tracker = FieldTracker.from_settings()
        actor = resolve_actor(actor_id, "field")
        tracker.update_piece_mark_location(actor, pm_id, "staging")
    """

    def __init__(
        self,
        database: Database,
        clock: Clock | None = None,
        broadcaster: ChangeBroadcaster | None = None,
    ):
        self._database = database
        self._clock = clock or SystemClock()
        self.broadcaster = broadcaster or ChangeBroadcaster()
        register_immutability_listeners()

    @classmethod
    def from_settings(
        cls,
        settings: TrackerSettings | None = None,
        clock: Clock | None = None,
    ) -> FieldTracker:
        """Composition root: settings -> logging, database handle, broadcaster."""
        settings = settings or get_active_settings()
        configure_logging(level=settings.log_level)
        database = Database(
            settings.database_url,
            echo=settings.echo,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_timeout=settings.pool_timeout,
            pool_recycle=settings.pool_recycle,
        )
        return cls(database, clock, ChangeBroadcaster(enabled=settings.broadcast_enabled))

    @property
    def database(self) -> Database:
        return self._database

    # =========================================================================
    # Unit of work
    # =========================================================================

    @contextmanager
    def _unit_of_work(
        self,
        operation: str,
        actor: Actor,
        subject_id: UUID | None = None,
    ) -> Iterator[UnitOfWork]:
        with LogContext.bind(
            correlation_id=str(uuid4()),
            actor_id=str(actor.actor_id),
            actor_role=actor.role.value,
            subject_id=str(subject_id) if subject_id else None,
        ):
            t0 = time.monotonic()
            try:
                with self._database.session_scope() as session:
                    uow = UnitOfWork.open(session, self._clock)
                    yield uow
            except ForbiddenError as exc:
                logger.warning(
                    "transition_forbidden",
                    extra={
                        "operation": operation,
                        "code": exc.code,
                        "action": exc.action,
                        "rule": exc.rule,
                    },
                )
                raise
            except SteelTrackError as exc:
                logger.warning(
                    "operation_rejected",
                    extra={"operation": operation, "code": exc.code, "error": str(exc)},
                )
                raise

            notices = [ChangeNotice.from_entry(e) for e in uow.activity_log.recorded]
            logger.info(
                "operation_committed",
                extra={
                    "operation": operation,
                    "entry_count": len(notices),
                    "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                },
            )
            self.broadcaster.publish(notices)

    @contextmanager
    def _read(self) -> Iterator[Session]:
        with self._database.session_scope() as session:
            yield session

    # =========================================================================
    # Piece-mark registry
    # =========================================================================

    def create_piece_mark(
        self,
        actor: Actor,
        project_id: UUID | str,
        mark: str,
        quantity: int,
        weight_per_unit: Decimal | str | int,
        **attributes: Any,
    ) -> PieceMarkInfo:
        with self._unit_of_work("create_piece_mark", actor) as uow:
            return uow.piece_marks.create_piece_mark(
                actor,
                _uuid(project_id, "project_id"),
                mark,
                quantity,
                weight_per_unit,
                **attributes,
            )

    def update_piece_mark_details(
        self,
        actor: Actor,
        piece_mark_id: UUID | str,
        expected_version: int | None = None,
        **changes: Any,
    ) -> PieceMarkInfo:
        pm_id = _uuid(piece_mark_id, "piece_mark_id")
        with self._unit_of_work("update_piece_mark_details", actor, pm_id) as uow:
            return uow.piece_marks.update_piece_mark_details(
                actor, pm_id, expected_version=expected_version, **changes
            )

    def archive_piece_mark(
        self,
        actor: Actor,
        piece_mark_id: UUID | str,
        reason: str | None = None,
        expected_version: int | None = None,
    ) -> PieceMarkInfo:
        pm_id = _uuid(piece_mark_id, "piece_mark_id")
        with self._unit_of_work("archive_piece_mark", actor, pm_id) as uow:
            return uow.piece_marks.archive_piece_mark(actor, pm_id, reason, expected_version)

    # =========================================================================
    # State machine
    # =========================================================================

    def advance_piece_mark_status(
        self,
        actor: Actor,
        piece_mark_id: UUID | str,
        new_status: PieceMarkStatus | str,
        note: str | None = None,
        expected_version: int | None = None,
    ) -> PieceMarkInfo:
        pm_id = _uuid(piece_mark_id, "piece_mark_id")
        with self._unit_of_work("advance_piece_mark_status", actor, pm_id) as uow:
            return uow.piece_marks.advance_status(
                actor, pm_id, new_status, note, expected_version
            )

    def rollback_piece_mark_status(
        self,
        actor: Actor,
        piece_mark_id: UUID | str,
        new_status: PieceMarkStatus | str,
        note: str | None = None,
        expected_version: int | None = None,
    ) -> PieceMarkInfo:
        pm_id = _uuid(piece_mark_id, "piece_mark_id")
        with self._unit_of_work("rollback_piece_mark_status", actor, pm_id) as uow:
            return uow.piece_marks.rollback_status(
                actor, pm_id, new_status, note, expected_version
            )

    def update_piece_mark_location(
        self,
        actor: Actor,
        piece_mark_id: UUID | str,
        new_location: FieldLocation | str,
        note: str | None = None,
        expected_version: int | None = None,
    ) -> PieceMarkInfo:
        pm_id = _uuid(piece_mark_id, "piece_mark_id")
        with self._unit_of_work("update_piece_mark_location", actor, pm_id) as uow:
            return uow.piece_marks.update_location(
                actor, pm_id, new_location, note, expected_version
            )

    # =========================================================================
    # Deliveries
    # =========================================================================

    def create_delivery(
        self,
        actor: Actor,
        project_id: UUID | str,
        delivery_number: str,
        scheduled_date: date | None = None,
        truck_number: str | None = None,
        driver_name: str | None = None,
        notes: str | None = None,
    ) -> DeliveryInfo:
        with self._unit_of_work("create_delivery", actor) as uow:
            return uow.deliveries.create_delivery(
                actor,
                _uuid(project_id, "project_id"),
                delivery_number,
                scheduled_date=scheduled_date,
                truck_number=truck_number,
                driver_name=driver_name,
                notes=notes,
            )

    def add_delivery_item(
        self,
        actor: Actor,
        delivery_id: UUID | str,
        piece_mark_id: UUID | str,
        expected_quantity: int,
        notes: str | None = None,
    ) -> DeliveryItemInfo:
        d_id = _uuid(delivery_id, "delivery_id")
        with self._unit_of_work("add_delivery_item", actor, d_id) as uow:
            return uow.deliveries.add_delivery_item(
                actor, d_id, _uuid(piece_mark_id, "piece_mark_id"), expected_quantity, notes
            )

    def update_delivery_status(
        self,
        actor: Actor,
        delivery_id: UUID | str,
        new_status: DeliveryStatus | str,
        note: str | None = None,
        expected_version: int | None = None,
    ) -> DeliveryInfo:
        d_id = _uuid(delivery_id, "delivery_id")
        with self._unit_of_work("update_delivery_status", actor, d_id) as uow:
            return uow.deliveries.update_delivery_status(
                actor, d_id, new_status, note, expected_version
            )

    def reject_delivery(
        self,
        actor: Actor,
        delivery_id: UUID | str,
        reason: str,
        expected_version: int | None = None,
    ) -> DeliveryInfo:
        d_id = _uuid(delivery_id, "delivery_id")
        with self._unit_of_work("reject_delivery", actor, d_id) as uow:
            return uow.deliveries.reject_delivery(actor, d_id, reason, expected_version)

    def reconcile_delivery(
        self,
        actor: Actor,
        delivery_id: UUID | str,
        lines: Iterable[ReceiptLine | Mapping[str, Any]],
        expected_version: int | None = None,
    ) -> ReconciliationResult:
        """
        Bulk, all-or-nothing receipt.

        ``lines`` may be ReceiptLine instances or mappings with keys
        item_id, received_quantity, condition, location and optional notes.
        """
        d_id = _uuid(delivery_id, "delivery_id")
        receipt_lines = [
            line if isinstance(line, ReceiptLine) else ReceiptLine.create(**line)
            for line in lines
        ]
        with self._unit_of_work("reconcile_delivery", actor, d_id) as uow:
            return uow.deliveries.reconcile_delivery(
                actor, d_id, receipt_lines, expected_version
            )

    # =========================================================================
    # Crews
    # =========================================================================

    def assign_crew(
        self,
        actor: Actor,
        project_id: UUID | str,
        crew_name: str,
        foreman_id: UUID | str,
        work_date: date,
        shift: CrewShift | str = CrewShift.DAY,
        crew_size: int = 1,
        zone: str | None = None,
        piece_mark_ids: Iterable[UUID | str] = (),
    ) -> CrewAssignmentInfo:
        with self._unit_of_work("assign_crew", actor) as uow:
            return uow.crews.assign_crew(
                actor,
                _uuid(project_id, "project_id"),
                crew_name,
                _uuid(foreman_id, "foreman_id"),
                work_date,
                shift=shift,
                crew_size=crew_size,
                zone=zone,
                piece_mark_ids=[_uuid(i, "piece_mark_ids") for i in piece_mark_ids],
            )

    def update_crew_piece_marks(
        self,
        actor: Actor,
        crew_assignment_id: UUID | str,
        piece_mark_ids: Iterable[UUID | str],
        expected_version: int | None = None,
    ) -> CrewAssignmentInfo:
        c_id = _uuid(crew_assignment_id, "crew_assignment_id")
        with self._unit_of_work("update_crew_piece_marks", actor, c_id) as uow:
            return uow.crews.update_crew_piece_marks(
                actor,
                c_id,
                [_uuid(i, "piece_mark_ids") for i in piece_mark_ids],
                expected_version,
            )

    def update_crew_status(
        self,
        actor: Actor,
        crew_assignment_id: UUID | str,
        new_status: CrewStatus | str,
        expected_version: int | None = None,
    ) -> CrewAssignmentInfo:
        c_id = _uuid(crew_assignment_id, "crew_assignment_id")
        with self._unit_of_work("update_crew_status", actor, c_id) as uow:
            return uow.crews.update_crew_status(actor, c_id, new_status, expected_version)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_piece_mark(self, piece_mark_id: UUID | str) -> PieceMarkInfo | None:
        with self._read() as session:
            return PieceMarkSelector(session).get(_uuid(piece_mark_id, "piece_mark_id"))

    def list_piece_marks(
        self,
        project_id: UUID | str,
        status: PieceMarkStatus | str | None = None,
        location: FieldLocation | str | None = None,
        include_archived: bool = False,
    ) -> list[PieceMarkInfo]:
        status = parse_enum(PieceMarkStatus, status, "status") if status is not None else None
        location = (
            parse_enum(FieldLocation, location, "location") if location is not None else None
        )
        with self._read() as session:
            return PieceMarkSelector(session).list_by_project(
                _uuid(project_id, "project_id"), status, location, include_archived
            )

    def piece_mark_status_summary(self, project_id: UUID | str) -> list[StatusSummaryRow]:
        with self._read() as session:
            return PieceMarkSelector(session).status_summary(_uuid(project_id, "project_id"))

    def get_delivery(self, delivery_id: UUID | str) -> DeliveryInfo | None:
        with self._read() as session:
            return DeliverySelector(session).get(_uuid(delivery_id, "delivery_id"))

    def list_deliveries(
        self,
        project_id: UUID | str,
        status: DeliveryStatus | str | None = None,
    ) -> list[DeliveryInfo]:
        status = parse_enum(DeliveryStatus, status, "status") if status is not None else None
        with self._read() as session:
            return DeliverySelector(session).list_by_project(
                _uuid(project_id, "project_id"), status
            )

    def list_crew_assignments(
        self,
        project_id: UUID | str,
        work_date: date | None = None,
        status: CrewStatus | str | None = None,
    ) -> list[CrewAssignmentInfo]:
        status = parse_enum(CrewStatus, status, "status") if status is not None else None
        with self._read() as session:
            return CrewSelector(session).list_by_project(
                _uuid(project_id, "project_id"), work_date, status
            )

    def get_activity_history(
        self,
        subject_type: SubjectType | str,
        subject_id: UUID | str,
    ) -> list[ActivityEntryInfo]:
        subject_type = parse_enum(SubjectType, subject_type, "subject_type")
        with self._read() as session:
            return ActivitySelector(session).by_subject(
                subject_type, _uuid(subject_id, "subject_id")
            )

    def piece_mark_history(self, piece_mark_id: UUID | str) -> list[ActivityEntryInfo]:
        with self._read() as session:
            return ActivitySelector(session).by_piece_mark(_uuid(piece_mark_id, "piece_mark_id"))

    def delivery_history(self, delivery_id: UUID | str) -> list[ActivityEntryInfo]:
        with self._read() as session:
            return ActivitySelector(session).by_delivery(_uuid(delivery_id, "delivery_id"))

    def actor_history(
        self, actor_id: UUID | str, limit: int | None = None
    ) -> list[ActivityEntryInfo]:
        with self._read() as session:
            return ActivitySelector(session).by_actor(_uuid(actor_id, "actor_id"), limit)

    def crew_history(self, crew_assignment_id: UUID | str) -> list[ActivityEntryInfo]:
        with self._read() as session:
            return ActivitySelector(session).by_crew_assignment(
                _uuid(crew_assignment_id, "crew_assignment_id")
            )

    def activity_between(
        self,
        start: datetime,
        end: datetime,
        project_id: UUID | str | None = None,
    ) -> list[ActivityEntryInfo]:
        if end <= start:
            raise InvalidValueError("end", end.isoformat(), "a time after start")
        with self._read() as session:
            return ActivitySelector(session).by_time_range(
                start,
                end,
                _uuid(project_id, "project_id") if project_id is not None else None,
            )

    def validate_activity_chain(self) -> bool:
        with self._read() as session:
            return ActivityLogService(session, self._clock).validate_chain()
