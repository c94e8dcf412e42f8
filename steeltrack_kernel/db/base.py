"""
Module: steeltrack_kernel.db.base
Responsibility: Declarative bases for the tracking tables.  Every row gets a
    uuid4 primary key; piece marks, deliveries and crews also record who
    created and last touched them.
Architecture position: Kernel > DB.  Imported by every model; imports nothing
    from models/, services/, selectors/ or domain/.

Invariants enforced:
    - Identifiers are UUIDs on the Python side and 36-character strings in
      the database, so SQLite and PostgreSQL store them the same way.
    - Weights map to Numeric with the fixed scale of db/types.py; a float
      never reaches a weight column.
    - The activity log and the sequence counter derive from Base only: an
      append-only row has no "last updated by".
"""

from datetime import datetime
from decimal import Decimal
from typing import ClassVar
from uuid import UUID, uuid4

from sqlalchemy import BigInteger, DateTime, Numeric, String, func
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.types import TypeDecorator

from steeltrack_kernel.db.types import WEIGHT_DECIMAL_PLACES


class UUIDString(TypeDecorator):
    """UUID stored as String(36); read back as a UUID."""

    impl = String(36)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return None if value is None else str(value)

    def process_result_value(self, value, dialect):
        return None if value is None else UUID(value)


class Base(DeclarativeBase):
    type_annotation_map: ClassVar[dict] = {
        Decimal: Numeric(14, WEIGHT_DECIMAL_PLACES),
        datetime: DateTime(timezone=True),
        UUID: UUIDString(),
        int: BigInteger,
    }

    id: Mapped[UUID] = mapped_column(UUIDString(), primary_key=True, default=uuid4)


class TrackedBase(Base):
    """
    Mutable tracking rows: creation stamp, last-touch stamp and actors.

    ``updated_at`` is set by the database on every UPDATE; ``updated_by_id``
    is written by the service that made the change.
    """

    __abstract__ = True

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
    created_by_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    updated_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
