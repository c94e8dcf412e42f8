"""
CrewService -- the crew assignment ledger.

Responsibility:
    Assigns a crew to a (date, shift) window with a set of shipped piece
    marks, edits that set, and moves the assignment scheduled -> active ->
    completed.  The piece-mark service reads these rows to attribute field
    activity to a crew.

Architecture position:
    Kernel > Services -- imperative shell.

Failure modes:
    ForbiddenError (field users may only manage crews they lead),
    DuplicateCrewAssignmentError, CrewAssignmentNotFoundError,
    InvalidTransitionError, InvalidValueError, ConcurrentModificationError.
"""

from datetime import date
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from steeltrack_kernel.domain.authorization import Action, ResourceState, authorize
from steeltrack_kernel.domain.clock import Clock, SystemClock
from steeltrack_kernel.domain.dtos import CrewAssignmentInfo
from steeltrack_kernel.domain.identity import Actor
from steeltrack_kernel.domain.lifecycle import validate_crew_status_change
from steeltrack_kernel.domain.values import (
    CrewShift,
    CrewStatus,
    PieceMarkStatus,
    SubjectType,
    TransitionKind,
    parse_enum,
)
from steeltrack_kernel.exceptions import (
    ConcurrentModificationError,
    CrewAssignmentNotFoundError,
    DuplicateCrewAssignmentError,
    InvalidValueError,
)
from steeltrack_kernel.logging_config import get_logger
from steeltrack_kernel.models.crew_assignment import CrewAssignment
from steeltrack_kernel.models.piece_mark import PieceMark
from steeltrack_kernel.services.activity_log_service import ActivityLogService
from steeltrack_kernel.services.base import BaseService
from steeltrack_kernel.services.piece_mark_service import PieceMarkService

logger = get_logger("services.crew")


def crew_snapshot(crew: CrewAssignment) -> dict[str, Any]:
    return {
        "crew_name": crew.crew_name,
        "foreman_id": crew.foreman_id,
        "crew_size": crew.crew_size,
        "zone": crew.zone,
        "shift": crew.shift.value,
        "work_date": crew.work_date,
        "status": crew.status.value,
        "piece_mark_ids": sorted(str(pm.id) for pm in crew.piece_marks),
        "version": crew.version,
    }


class CrewService(BaseService[CrewAssignment]):
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
        self, crew_assignment_id: UUID, expected_version: int | None = None
    ) -> CrewAssignment:
        crew = self.session.get(CrewAssignment, crew_assignment_id)
        if crew is None:
            raise CrewAssignmentNotFoundError(str(crew_assignment_id))
        if expected_version is not None and crew.version != expected_version:
            raise ConcurrentModificationError(
                "CrewAssignment", str(crew_assignment_id), expected_version, crew.version
            )
        return crew

    def _assignable_piece_marks(
        self, project_id: UUID, piece_mark_ids: list[UUID]
    ) -> list[PieceMark]:
        """Every piece mark must be in the project, not archived, and shipped."""
        if len(set(piece_mark_ids)) != len(piece_mark_ids):
            raise InvalidValueError(
                "piece_mark_ids", [str(i) for i in piece_mark_ids], "distinct piece mark ids"
            )
        piece_marks = []
        for piece_mark_id in piece_mark_ids:
            pm = self._piece_marks.get_for_update(piece_mark_id)
            if pm.project_id != project_id:
                raise InvalidValueError(
                    "piece_mark_ids", str(pm.id), f"a piece mark in project {project_id}"
                )
            if pm.status != PieceMarkStatus.SHIPPED:
                raise InvalidValueError(
                    "piece_mark_ids",
                    str(pm.id),
                    f"a shipped piece mark (status is {pm.status.value})",
                )
            piece_marks.append(pm)
        return piece_marks

    def _flush(self, crew: CrewAssignment) -> None:
        crew_id = str(crew.id)
        try:
            self.session.flush()
        except StaleDataError as exc:
            raise ConcurrentModificationError("CrewAssignment", crew_id) from exc

    def _record(
        self,
        actor: Actor,
        crew: CrewAssignment,
        kind: TransitionKind,
        before: dict[str, Any] | None,
        description: str | None = None,
    ) -> None:
        self._activity_log.record(
            actor=actor,
            project_id=crew.project_id,
            subject_type=SubjectType.CREW,
            subject_id=crew.id,
            transition_kind=kind,
            before_state=before,
            after_state=crew_snapshot(crew),
            description=description,
            crew_assignment_id=crew.id,
        )

    def assign_crew(
        self,
        actor: Actor,
        project_id: UUID,
        crew_name: str,
        foreman_id: UUID,
        work_date: date,
        shift: CrewShift | str = CrewShift.DAY,
        crew_size: int = 1,
        zone: str | None = None,
        piece_mark_ids: list[UUID] | None = None,
    ) -> CrewAssignmentInfo:
        """
        Create an assignment for (project, crew_name, work_date, shift).

        A field user may only create an assignment they lead
        (foreman_id == their own id).
        """
        authorize(actor, Action.MANAGE_CREW, ResourceState(crew_foreman_id=foreman_id))
        shift = parse_enum(CrewShift, shift, "shift")
        if not isinstance(crew_name, str) or not crew_name.strip():
            raise InvalidValueError("crew_name", crew_name, "a non-empty string")
        crew_name = crew_name.strip()
        if isinstance(crew_size, bool) or not isinstance(crew_size, int) or crew_size < 1:
            raise InvalidValueError("crew_size", crew_size, "an integer >= 1")

        existing = self.session.execute(
            select(CrewAssignment.id).where(
                CrewAssignment.project_id == project_id,
                CrewAssignment.crew_name == crew_name,
                CrewAssignment.work_date == work_date,
                CrewAssignment.shift == shift,
            )
        ).scalar_one_or_none()
        if existing is not None:
            raise DuplicateCrewAssignmentError(crew_name, work_date.isoformat(), shift.value)

        piece_marks = self._assignable_piece_marks(project_id, list(piece_mark_ids or []))

        crew = CrewAssignment(
            project_id=project_id,
            crew_name=crew_name,
            foreman_id=foreman_id,
            crew_size=crew_size,
            zone=zone,
            shift=shift,
            work_date=work_date,
            status=CrewStatus.SCHEDULED,
            created_by_id=actor.actor_id,
        )
        crew.piece_marks = piece_marks
        self.session.add(crew)
        self.session.flush()

        self._record(
            actor,
            crew,
            TransitionKind.CREW_ASSIGNED,
            None,
            description=f"{crew_name} assigned {len(piece_marks)} piece marks",
        )
        logger.info(
            "crew_assigned",
            extra={
                "crew_assignment_id": str(crew.id),
                "crew_name": crew_name,
                "work_date": work_date.isoformat(),
                "shift": shift.value,
                "piece_mark_count": len(piece_marks),
            },
        )
        return CrewAssignmentInfo.from_model(crew)

    def update_crew_piece_marks(
        self,
        actor: Actor,
        crew_assignment_id: UUID,
        piece_mark_ids: list[UUID],
        expected_version: int | None = None,
    ) -> CrewAssignmentInfo:
        """Replace the assigned piece-mark set."""
        crew = self.get_for_update(crew_assignment_id, expected_version)
        authorize(actor, Action.MANAGE_CREW, ResourceState(crew_foreman_id=crew.foreman_id))
        if crew.status == CrewStatus.COMPLETED:
            raise InvalidValueError(
                "crew_assignment_id", str(crew.id), "a crew assignment that is not completed"
            )

        piece_marks = self._assignable_piece_marks(crew.project_id, list(piece_mark_ids))
        current = {pm.id for pm in crew.piece_marks}
        if current == {pm.id for pm in piece_marks}:
            raise InvalidValueError(
                "piece_mark_ids", sorted(str(i) for i in current), "a different piece mark set"
            )

        before = crew_snapshot(crew)
        crew.piece_marks = piece_marks
        crew.updated_by_id = actor.actor_id
        crew.updated_at = self._clock.now()
        self._flush(crew)

        self._record(actor, crew, TransitionKind.CREW_PIECE_MARKS_UPDATED, before)
        logger.info(
            "crew_piece_marks_updated",
            extra={"crew_assignment_id": str(crew.id), "piece_mark_count": len(piece_marks)},
        )
        return CrewAssignmentInfo.from_model(crew)

    def update_crew_status(
        self,
        actor: Actor,
        crew_assignment_id: UUID,
        new_status: CrewStatus | str,
        expected_version: int | None = None,
    ) -> CrewAssignmentInfo:
        """scheduled -> active -> completed."""
        target = parse_enum(CrewStatus, new_status, "status")
        crew = self.get_for_update(crew_assignment_id, expected_version)
        authorize(actor, Action.MANAGE_CREW, ResourceState(crew_foreman_id=crew.foreman_id))
        validate_crew_status_change(crew.status, target)

        before = crew_snapshot(crew)
        crew.status = target
        crew.updated_by_id = actor.actor_id
        self._flush(crew)

        self._record(actor, crew, TransitionKind.CREW_STATUS_CHANGED, before)
        logger.info(
            "crew_status_changed",
            extra={
                "crew_assignment_id": str(crew.id),
                "from_status": before["status"],
                "to_status": target.value,
            },
        )
        return CrewAssignmentInfo.from_model(crew)
