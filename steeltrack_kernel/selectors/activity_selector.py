"""
ActivitySelector -- the query surface of the activity log.

Every query returns entries in log order (ascending ``seq``), which is the
order the changes were committed in.  Time-range queries are half-open,
``start <= occurred_at < end``.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from steeltrack_kernel.domain.dtos import ActivityEntryInfo
from steeltrack_kernel.domain.values import SubjectType, TransitionKind
from steeltrack_kernel.models.activity_log import ActivityLogEntry
from steeltrack_kernel.selectors.base import BaseSelector


class ActivitySelector(BaseSelector[ActivityLogEntry]):
    def __init__(self, session: Session):
        super().__init__(session)

    def _run(self, stmt, limit: int | None = None) -> list[ActivityEntryInfo]:
        stmt = stmt.order_by(ActivityLogEntry.seq)
        if limit is not None:
            stmt = stmt.limit(limit)
        return [ActivityEntryInfo.from_model(e) for e in self.session.execute(stmt).scalars()]

    def by_subject(
        self, subject_type: SubjectType, subject_id: UUID
    ) -> list[ActivityEntryInfo]:
        return self._run(
            select(ActivityLogEntry).where(
                ActivityLogEntry.subject_type == subject_type,
                ActivityLogEntry.subject_id == subject_id,
            )
        )

    def by_piece_mark(self, piece_mark_id: UUID) -> list[ActivityEntryInfo]:
        """Full history of one piece mark, oldest first."""
        return self.by_subject(SubjectType.PIECE_MARK, piece_mark_id)

    def by_delivery(self, delivery_id: UUID) -> list[ActivityEntryInfo]:
        """Entries about the delivery plus the piece-mark receipts it produced."""
        return self._run(
            select(ActivityLogEntry).where(
                or_(
                    ActivityLogEntry.delivery_id == delivery_id,
                    (ActivityLogEntry.subject_type == SubjectType.DELIVERY)
                    & (ActivityLogEntry.subject_id == delivery_id),
                )
            )
        )

    def by_actor(self, actor_id: UUID, limit: int | None = None) -> list[ActivityEntryInfo]:
        return self._run(
            select(ActivityLogEntry).where(ActivityLogEntry.actor_id == actor_id), limit
        )

    def by_crew_assignment(self, crew_assignment_id: UUID) -> list[ActivityEntryInfo]:
        return self._run(
            select(ActivityLogEntry).where(
                ActivityLogEntry.crew_assignment_id == crew_assignment_id
            )
        )

    def by_time_range(
        self,
        start: datetime,
        end: datetime,
        project_id: UUID | None = None,
    ) -> list[ActivityEntryInfo]:
        stmt = select(ActivityLogEntry).where(
            ActivityLogEntry.occurred_at >= start,
            ActivityLogEntry.occurred_at < end,
        )
        if project_id is not None:
            stmt = stmt.where(ActivityLogEntry.project_id == project_id)
        return self._run(stmt)

    def by_kind(
        self, transition_kind: TransitionKind, project_id: UUID | None = None
    ) -> list[ActivityEntryInfo]:
        stmt = select(ActivityLogEntry).where(
            ActivityLogEntry.transition_kind == transition_kind
        )
        if project_id is not None:
            stmt = stmt.where(ActivityLogEntry.project_id == project_id)
        return self._run(stmt)

    def after_seq(self, seq: int, limit: int | None = None) -> list[ActivityEntryInfo]:
        """Entries written after ``seq``; the catch-up feed for reconnecting viewers."""
        return self._run(select(ActivityLogEntry).where(ActivityLogEntry.seq > seq), limit)

    def count(self) -> int:
        return self.session.execute(
            select(func.count()).select_from(ActivityLogEntry)
        ).scalar_one()
