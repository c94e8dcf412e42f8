"""
CrewSelector -- read-only queries over crew assignments.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from steeltrack_kernel.domain.dtos import CrewAssignmentInfo
from steeltrack_kernel.domain.values import CrewStatus
from steeltrack_kernel.models.crew_assignment import CrewAssignment, crew_assignment_piece_marks
from steeltrack_kernel.selectors.base import BaseSelector


class CrewSelector(BaseSelector[CrewAssignment]):
    def __init__(self, session: Session):
        super().__init__(session)

    def get(self, crew_assignment_id: UUID) -> CrewAssignmentInfo | None:
        crew = self.session.get(CrewAssignment, crew_assignment_id)
        return CrewAssignmentInfo.from_model(crew) if crew is not None else None

    def list_by_project(
        self,
        project_id: UUID,
        work_date: date | None = None,
        status: CrewStatus | None = None,
    ) -> list[CrewAssignmentInfo]:
        stmt = select(CrewAssignment).where(CrewAssignment.project_id == project_id)
        if work_date is not None:
            stmt = stmt.where(CrewAssignment.work_date == work_date)
        if status is not None:
            stmt = stmt.where(CrewAssignment.status == status)
        rows = self.session.execute(
            stmt.order_by(CrewAssignment.work_date, CrewAssignment.shift, CrewAssignment.crew_name)
        ).scalars().all()
        return [CrewAssignmentInfo.from_model(c) for c in rows]

    def for_piece_mark(self, piece_mark_id: UUID) -> list[CrewAssignmentInfo]:
        """Every assignment that includes the piece mark, by work date."""
        rows = self.session.execute(
            select(CrewAssignment)
            .join(
                crew_assignment_piece_marks,
                crew_assignment_piece_marks.c.crew_assignment_id == CrewAssignment.id,
            )
            .where(crew_assignment_piece_marks.c.piece_mark_id == piece_mark_id)
            .order_by(CrewAssignment.work_date, CrewAssignment.crew_name)
        ).scalars().all()
        return [CrewAssignmentInfo.from_model(c) for c in rows]
