"""
Module: steeltrack_kernel.db.types
Responsibility: Column type helpers shared across models.
Architecture position: Kernel > DB.  May be imported by models/ and services/.
    MUST NOT import from any of those layers.

Invariants enforced:
    - No floats for weights.  Weight columns are Numeric with a fixed scale,
      and total weight is always derived with round_weight().
    - Enumerated columns are closed sets, checked by the database as well as
      at the boundary.
"""

from decimal import ROUND_HALF_UP, Decimal
from enum import Enum

from sqlalchemy import Enum as SAEnum

WEIGHT_DECIMAL_PLACES = 3


def round_weight(value: Decimal) -> Decimal:
    """
    Quantize a weight to the stored scale.

    This is the only sanctioned rounding function for weights, so that the
    derived total_weight always matches what the column can hold.
    """
    quantum = Decimal(1).scaleb(-WEIGHT_DECIMAL_PLACES)
    return value.quantize(quantum, rounding=ROUND_HALF_UP)


def closed_set(enum_cls: type[Enum]) -> SAEnum:
    """
    Column type for a closed-set enum stored as its text value.

    Values are validated on bind and a CHECK constraint is emitted, so the
    database rejects free text that bypassed the boundary validation.
    """
    return SAEnum(
        enum_cls,
        native_enum=False,
        create_constraint=True,
        length=32,
        validate_strings=True,
        values_callable=lambda members: [m.value for m in members],
        name=f"ck_{enum_cls.__name__.lower()}",
    )
