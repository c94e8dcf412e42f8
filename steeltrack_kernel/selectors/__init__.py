"""Selectors for the steel tracking kernel (read side)."""

from steeltrack_kernel.selectors.activity_selector import ActivitySelector
from steeltrack_kernel.selectors.crew_selector import CrewSelector
from steeltrack_kernel.selectors.delivery_selector import DeliverySelector
from steeltrack_kernel.selectors.piece_mark_selector import PieceMarkSelector, StatusSummaryRow

__all__ = [
    "ActivitySelector",
    "CrewSelector",
    "DeliverySelector",
    "PieceMarkSelector",
    "StatusSummaryRow",
]
