"""
DeliverySelector -- read-only queries over deliveries and their items.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from steeltrack_kernel.domain.dtos import DeliveryInfo, DeliveryItemInfo
from steeltrack_kernel.domain.values import DeliveryStatus
from steeltrack_kernel.models.delivery import Delivery, DeliveryItem
from steeltrack_kernel.selectors.base import BaseSelector


class DeliverySelector(BaseSelector[Delivery]):
    def __init__(self, session: Session):
        super().__init__(session)

    def get(self, delivery_id: UUID) -> DeliveryInfo | None:
        delivery = self.session.get(Delivery, delivery_id)
        return DeliveryInfo.from_model(delivery) if delivery is not None else None

    def get_by_number(self, project_id: UUID, delivery_number: str) -> DeliveryInfo | None:
        delivery = self.session.execute(
            select(Delivery).where(
                Delivery.project_id == project_id,
                Delivery.delivery_number == delivery_number,
            )
        ).scalar_one_or_none()
        return DeliveryInfo.from_model(delivery) if delivery is not None else None

    def list_by_project(
        self,
        project_id: UUID,
        status: DeliveryStatus | None = None,
    ) -> list[DeliveryInfo]:
        """Deliveries ordered by scheduled date, then delivery number."""
        stmt = select(Delivery).where(Delivery.project_id == project_id)
        if status is not None:
            stmt = stmt.where(Delivery.status == status)
        rows = self.session.execute(
            stmt.order_by(Delivery.scheduled_date, Delivery.delivery_number)
        ).scalars().all()
        return [DeliveryInfo.from_model(d) for d in rows]

    def items_for_piece_mark(self, piece_mark_id: UUID) -> list[DeliveryItemInfo]:
        """Every delivery line that ever carried this piece mark, oldest first."""
        rows = self.session.execute(
            select(DeliveryItem)
            .where(DeliveryItem.piece_mark_id == piece_mark_id)
            .order_by(DeliveryItem.created_at, DeliveryItem.line_no)
        ).scalars().all()
        return [DeliveryItemInfo.from_model(item) for item in rows]
