"""
Module: steeltrack_kernel.models.activity_log
Responsibility: ORM persistence for the append-only activity log.
Architecture position: Kernel > Models.  May import from db/ and domain/values.

Invariants enforced:
    APPEND_ONLY_LOG -- no UPDATE or DELETE (ORM listeners in
        db/immutability.py).
    Hash chain: hash = H(seq | subject_type | subject_id | kind | actor |
        payload_hash | prev_hash).  Validated by ActivityLogService.
    seq is unique and monotonically increasing, allocated by SequenceService.

Audit relevance:
    This table IS the history.  Every dashboard, dispute and replay is
    reconstructed from it; every successful mutation writes exactly one row
    per mutated record in the same transaction.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import JSON, BigInteger, DateTime, ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from steeltrack_kernel.db.base import Base, UUIDString
from steeltrack_kernel.db.types import closed_set
from steeltrack_kernel.domain.values import Role, SubjectType, TransitionKind


class ActivityLogEntry(Base):
    """
    One recorded change: who, when, what, before and after.

    Guarantees:
        - seq is globally unique and monotonic.
        - prev_hash is None only for the genesis entry.

    Non-goals:
        - The model does not compute hashes; ActivityLogService does.
    """

    __tablename__ = "activity_log"

    __table_args__ = (
        Index("idx_activity_subject", "subject_type", "subject_id", "seq"),
        Index("idx_activity_actor", "actor_id", "seq"),
        Index("idx_activity_occurred", "occurred_at"),
        Index("idx_activity_project", "project_id", "occurred_at"),
        Index("idx_activity_delivery", "delivery_id"),
        Index("idx_activity_crew", "crew_assignment_id"),
    )

    seq: Mapped[int] = mapped_column(BigInteger, nullable=False, unique=True)

    occurred_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    actor_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    actor_role: Mapped[Role] = mapped_column(closed_set(Role), nullable=False)

    project_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    subject_type: Mapped[SubjectType] = mapped_column(closed_set(SubjectType), nullable=False)

    # Polymorphic reference; no FK
    subject_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    transition_kind: Mapped[TransitionKind] = mapped_column(
        closed_set(TransitionKind),
        nullable=False,
    )

    before_state: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    after_state: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    description: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    delivery_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("deliveries.id"),
        nullable=True,
    )

    crew_assignment_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("crew_assignments.id"),
        nullable=True,
    )

    discrepancy: Mapped[dict | None] = mapped_column(JSON, nullable=True)

    payload_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    prev_hash: Mapped[str | None] = mapped_column(String(64), nullable=True)

    hash: Mapped[str] = mapped_column(String(64), nullable=False)

    @property
    def is_genesis(self) -> bool:
        return self.prev_hash is None

    def __repr__(self) -> str:
        return (
            f"<ActivityLogEntry #{self.seq} {self.transition_kind.value} "
            f"on {self.subject_type.value}:{self.subject_id}>"
        )
