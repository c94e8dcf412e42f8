"""
Module: steeltrack_kernel.models.crew_assignment
Responsibility: ORM persistence for the crew assignment ledger.
Architecture position: Kernel > Models.  May import from db/ and domain/values.

A crew assignment is an attribution reference: status and location
changes on an assigned piece mark record which crew was responsible.
Its own status moves scheduled -> active -> completed only.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Column,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    Table,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from steeltrack_kernel.db.base import Base, TrackedBase, UUIDString
from steeltrack_kernel.db.types import closed_set
from steeltrack_kernel.domain.values import CrewShift, CrewStatus
from steeltrack_kernel.models.piece_mark import PieceMark

crew_assignment_piece_marks = Table(
    "crew_assignment_piece_marks",
    Base.metadata,
    Column(
        "crew_assignment_id",
        UUIDString(),
        ForeignKey("crew_assignments.id"),
        primary_key=True,
    ),
    Column(
        "piece_mark_id",
        UUIDString(),
        ForeignKey("piece_marks.id"),
        primary_key=True,
    ),
    Index("idx_crew_piece_mark_piece_mark", "piece_mark_id"),
)


class CrewAssignment(TrackedBase):
    """
    A crew working a shift on a date, with the piece marks it handles.

    Guarantees:
        - (project_id, crew_name, work_date, shift) is unique.
        - crew_size >= 1.
    """

    __tablename__ = "crew_assignments"

    __table_args__ = (
        UniqueConstraint(
            "project_id",
            "crew_name",
            "work_date",
            "shift",
            name="uq_crew_assignment_window",
        ),
        CheckConstraint("crew_size >= 1", name="ck_crew_assignment_size_positive"),
        Index("idx_crew_assignment_project_date", "project_id", "work_date"),
        Index("idx_crew_assignment_foreman", "foreman_id"),
    )

    project_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    crew_name: Mapped[str] = mapped_column(String(100), nullable=False)

    foreman_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    crew_size: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    zone: Mapped[str | None] = mapped_column(String(100), nullable=True)

    shift: Mapped[CrewShift] = mapped_column(
        closed_set(CrewShift),
        nullable=False,
        default=CrewShift.DAY,
    )

    work_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[CrewStatus] = mapped_column(
        closed_set(CrewStatus),
        nullable=False,
        default=CrewStatus.SCHEDULED,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    piece_marks: Mapped[list[PieceMark]] = relationship(
        secondary=crew_assignment_piece_marks,
        order_by=PieceMark.mark,
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<CrewAssignment {self.crew_name} {self.work_date} {self.shift.value if self.shift else None}>"
