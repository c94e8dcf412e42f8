"""
Module: steeltrack_kernel.models.delivery
Responsibility: ORM persistence for deliveries and their expected line items.
Architecture position: Kernel > Models.  May import from db/ and domain/values.

Invariants enforced:
    COMPLETE_RECONCILIATION -- a delivery reaches ``received`` only through
        the reconciliation service, which requires received_quantity on every
        item (checked in the domain planner before any write).
    One item per piece mark per delivery (uq_delivery_item_piece_mark).

Failure modes:
    - IntegrityError on duplicate (project_id, delivery_number) or duplicate
      (delivery_id, piece_mark_id).
    - StaleDataError at flush when ``version`` is stale.
"""

from datetime import date, datetime
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from steeltrack_kernel.db.base import TrackedBase, UUIDString
from steeltrack_kernel.db.types import closed_set
from steeltrack_kernel.domain.values import DeliveryStatus, FieldLocation, ItemCondition


class Delivery(TrackedBase):
    """
    A truckload of piece marks shipped from the shop to a project.

    Guarantees:
        - (project_id, delivery_number) is unique.
        - arrived_at is NULL until the delivery reaches ``delivered``.
        - received_at / received_by_id are set only by reconciliation.
    """

    __tablename__ = "deliveries"

    __table_args__ = (
        UniqueConstraint("project_id", "delivery_number", name="uq_delivery_project_number"),
        Index("idx_delivery_project_status", "project_id", "status"),
    )

    project_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    delivery_number: Mapped[str] = mapped_column(String(100), nullable=False)

    scheduled_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    arrived_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    status: Mapped[DeliveryStatus] = mapped_column(
        closed_set(DeliveryStatus),
        nullable=False,
        default=DeliveryStatus.PENDING,
    )

    # Carrier metadata (free text)
    truck_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    driver_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    received_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    received_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    rejected_reason: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    items: Mapped[list["DeliveryItem"]] = relationship(
        back_populates="delivery",
        order_by="DeliveryItem.line_no",
        cascade="all, delete-orphan",
    )

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return f"<Delivery {self.delivery_number} {self.status.value if self.status else None}>"


class DeliveryItem(TrackedBase):
    """
    One expected line on a delivery: a piece mark and how many of it.

    received_quantity, condition, location and reconciled_at stay NULL until
    the delivery is reconciled; they are written together or not at all.
    """

    __tablename__ = "delivery_items"

    __table_args__ = (
        UniqueConstraint("delivery_id", "piece_mark_id", name="uq_delivery_item_piece_mark"),
        CheckConstraint("expected_quantity >= 1", name="ck_delivery_item_expected_positive"),
        CheckConstraint(
            "received_quantity IS NULL OR received_quantity >= 0",
            name="ck_delivery_item_received_non_negative",
        ),
        Index("idx_delivery_item_piece_mark", "piece_mark_id"),
    )

    delivery_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("deliveries.id"),
        nullable=False,
    )

    piece_mark_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("piece_marks.id"),
        nullable=False,
    )

    # 1-based position within the delivery
    line_no: Mapped[int] = mapped_column(Integer, nullable=False)

    expected_quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    received_quantity: Mapped[int | None] = mapped_column(Integer, nullable=True)

    condition: Mapped[ItemCondition | None] = mapped_column(
        closed_set(ItemCondition),
        nullable=True,
    )

    location: Mapped[FieldLocation | None] = mapped_column(
        closed_set(FieldLocation),
        nullable=True,
    )

    notes: Mapped[str | None] = mapped_column(String(4000), nullable=True)

    reconciled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    delivery: Mapped[Delivery] = relationship(back_populates="items")

    @property
    def is_reconciled(self) -> bool:
        return self.received_quantity is not None

    def __repr__(self) -> str:
        return f"<DeliveryItem {self.line_no} pm={self.piece_mark_id} x{self.expected_quantity}>"
