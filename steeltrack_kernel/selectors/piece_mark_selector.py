"""
PieceMarkSelector -- read-only queries over piece marks.

Exposed to UI/reporting collaborators: get by id, get by mark code, list by
project filtered by status and/or location, and a per-status summary of
counts and total weight for project dashboards.
"""

from dataclasses import dataclass
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from steeltrack_kernel.db.types import round_weight
from steeltrack_kernel.domain.dtos import PieceMarkInfo
from steeltrack_kernel.domain.values import STATUS_ORDER, FieldLocation, PieceMarkStatus
from steeltrack_kernel.models.piece_mark import PieceMark
from steeltrack_kernel.selectors.base import BaseSelector


@dataclass(frozen=True)
class StatusSummaryRow:
    status: PieceMarkStatus
    piece_mark_count: int
    total_quantity: int
    total_weight: Decimal


class PieceMarkSelector(BaseSelector[PieceMark]):
    def __init__(self, session: Session):
        super().__init__(session)

    def get(self, piece_mark_id: UUID) -> PieceMarkInfo | None:
        pm = self.session.get(PieceMark, piece_mark_id)
        return PieceMarkInfo.from_model(pm) if pm is not None else None

    def get_by_mark(self, project_id: UUID, mark: str) -> PieceMarkInfo | None:
        pm = self.session.execute(
            select(PieceMark).where(PieceMark.project_id == project_id, PieceMark.mark == mark)
        ).scalar_one_or_none()
        return PieceMarkInfo.from_model(pm) if pm is not None else None

    def list_by_project(
        self,
        project_id: UUID,
        status: PieceMarkStatus | None = None,
        location: FieldLocation | None = None,
        include_archived: bool = False,
    ) -> list[PieceMarkInfo]:
        """Piece marks of a project ordered by mark code."""
        stmt = select(PieceMark).where(PieceMark.project_id == project_id)
        if status is not None:
            stmt = stmt.where(PieceMark.status == status)
        if location is not None:
            stmt = stmt.where(PieceMark.location == location)
        if not include_archived:
            stmt = stmt.where(PieceMark.archived_at.is_(None))
        rows = self.session.execute(stmt.order_by(PieceMark.mark)).scalars().all()
        return [PieceMarkInfo.from_model(pm) for pm in rows]

    def status_summary(self, project_id: UUID) -> list[StatusSummaryRow]:
        """
        Count, quantity and weight per status, in lifecycle order.

        Archived piece marks are excluded; statuses with no piece marks are
        reported with zeros.
        """
        rows = self.session.execute(
            select(
                PieceMark.status,
                func.count(PieceMark.id),
                func.coalesce(func.sum(PieceMark.quantity), 0),
                func.coalesce(func.sum(PieceMark._total_weight), 0),
            )
            .where(PieceMark.project_id == project_id, PieceMark.archived_at.is_(None))
            .group_by(PieceMark.status)
        ).all()
        by_status = {row[0]: row for row in rows}
        summary = []
        for status in STATUS_ORDER:
            row = by_status.get(status)
            if row is None:
                summary.append(StatusSummaryRow(status, 0, 0, round_weight(Decimal(0))))
            else:
                summary.append(
                    StatusSummaryRow(
                        status=status,
                        piece_mark_count=int(row[1]),
                        total_quantity=int(row[2]),
                        total_weight=round_weight(Decimal(str(row[3]))),
                    )
                )
        return summary
