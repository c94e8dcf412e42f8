"""ORM models for the steel tracking kernel."""

from steeltrack_kernel.models.activity_log import ActivityLogEntry
from steeltrack_kernel.models.crew_assignment import (
    CrewAssignment,
    crew_assignment_piece_marks,
)
from steeltrack_kernel.models.delivery import Delivery, DeliveryItem
from steeltrack_kernel.models.piece_mark import PieceMark
from steeltrack_kernel.models.sequence_counter import SequenceCounter

__all__ = [
    "PieceMark",
    "Delivery",
    "DeliveryItem",
    "CrewAssignment",
    "crew_assignment_piece_marks",
    "ActivityLogEntry",
    "SequenceCounter",
]
