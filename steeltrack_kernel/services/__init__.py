"""Services for the steel tracking kernel (write side)."""

from steeltrack_kernel.services.activity_log_service import ActivityLogService
from steeltrack_kernel.services.crew_service import CrewService
from steeltrack_kernel.services.delivery_service import DeliveryService
from steeltrack_kernel.services.piece_mark_service import PieceMarkService
from steeltrack_kernel.services.sequence_service import SequenceService

__all__ = [
    "ActivityLogService",
    "CrewService",
    "DeliveryService",
    "PieceMarkService",
    "SequenceService",
]
