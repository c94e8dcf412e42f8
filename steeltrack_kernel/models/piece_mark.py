"""
Module: steeltrack_kernel.models.piece_mark
Responsibility: ORM persistence for the canonical piece-mark record.
Architecture position: Kernel > Models.  May import from db/ and domain/values.

Invariants enforced:
    WEIGHT_CONSISTENCY -- total_weight is never set directly.  It is
        recomputed whenever quantity or weight_per_unit is assigned, so it
        equals quantity * weight_per_unit at read time.
    SERIALIZED_AGGREGATES -- ``version`` is the SQLAlchemy version_id_col;
        an UPDATE against a stale version matches zero rows and raises
        StaleDataError at flush.

Failure modes:
    - IntegrityError on duplicate (project_id, mark).
    - ImmutabilityViolationError when deleting a piece mark that the
      activity log references (see db/immutability.py).
"""

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, validates

from steeltrack_kernel.db.base import TrackedBase, UUIDString
from steeltrack_kernel.db.types import closed_set, round_weight
from steeltrack_kernel.domain.values import FieldLocation, PieceMarkStatus


class PieceMark(TrackedBase):
    """
    A fabricated steel component tracked as a unit.

    Contract:
        Mutated only through the piece-mark service (registry operations and
        the status/location state machine).  Never hard-deleted once
        referenced; ``archived_at`` is the soft delete.

    Guarantees:
        - (project_id, mark) is unique (uq_piece_mark_project_mark).
        - quantity >= 1 and weight_per_unit >= 0 (CHECK).
        - location is NULL until the piece mark first reaches shipped.
    """

    __tablename__ = "piece_marks"

    __table_args__ = (
        UniqueConstraint("project_id", "mark", name="uq_piece_mark_project_mark"),
        CheckConstraint("quantity >= 1", name="ck_piece_mark_quantity_positive"),
        CheckConstraint("weight_per_unit >= 0", name="ck_piece_mark_weight_non_negative"),
        Index("idx_piece_mark_project_status", "project_id", "status"),
        Index("idx_piece_mark_project_location", "project_id", "location"),
    )

    project_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    # Mark code as it appears on the erection drawings, e.g. "B-101"
    mark: Mapped[str] = mapped_column(String(100), nullable=False)

    description: Mapped[str | None] = mapped_column(String(4000), nullable=True)
    material: Mapped[str | None] = mapped_column(String(100), nullable=True)
    drawing_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    sequence_number: Mapped[str | None] = mapped_column(String(50), nullable=True)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    weight_per_unit: Mapped[Decimal] = mapped_column(Numeric(14, 3), nullable=False)

    # Derived; see _recompute_total_weight
    _total_weight: Mapped[Decimal] = mapped_column(
        "total_weight",
        Numeric(14, 3),
        nullable=False,
    )

    status: Mapped[PieceMarkStatus] = mapped_column(
        closed_set(PieceMarkStatus),
        nullable=False,
        default=PieceMarkStatus.NOT_STARTED,
    )

    location: Mapped[FieldLocation | None] = mapped_column(
        closed_set(FieldLocation),
        nullable=True,
    )

    shop_assigned_to: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    field_assigned_to: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    # Actor of the most recent status change (shop rollback rule)
    status_changed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    archived_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    @validates("quantity", "weight_per_unit")
    def _recompute_total_weight(self, key, value):
        quantity = value if key == "quantity" else self.quantity
        weight = value if key == "weight_per_unit" else self.weight_per_unit
        if quantity is not None and weight is not None:
            self._total_weight = round_weight(Decimal(quantity) * Decimal(weight))
        return value

    @property
    def total_weight(self) -> Decimal:
        return self._total_weight

    @property
    def is_archived(self) -> bool:
        return self.archived_at is not None

    def __repr__(self) -> str:
        return f"<PieceMark {self.mark} {self.status.value if self.status else None}>"
