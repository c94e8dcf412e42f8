"""
Module: steeltrack_kernel.models.sequence_counter
Responsibility: Named counter rows locked by SequenceService.
Architecture position: Kernel > Models.  May import from db/base.py only.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from steeltrack_kernel.db.base import Base


class SequenceCounter(Base):
    """
    One row per named sequence holding its current value.

    Row-level locking (SELECT ... FOR UPDATE) on this row is the sole
    source of the next value; MAX(seq) + 1 is never used.
    """

    __tablename__ = "sequence_counters"

    # Sequence name (e.g. "activity_log")
    name: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
