"""
steeltrack_services -- orchestration above the kernel.

The FieldTracker facade owns transaction boundaries and publishes change
notices after commit through the ChangeBroadcaster.
"""

from steeltrack_services.broadcaster import ChangeBroadcaster
from steeltrack_services.field_tracker import FieldTracker, UnitOfWork

__all__ = ["ChangeBroadcaster", "FieldTracker", "UnitOfWork"]
