"""
Kernel Invariants Contract.

These invariants are structural law for piece-mark tracking. No settings
file, role, or caller flag may switch them off.

This module exists solely to declare these invariants explicitly. The
enforcement is distributed across the domain transition tables, the
authorizer, the write services, the ORM listeners in db/immutability.py and
the version columns on the mutable aggregates.
"""

from enum import Enum, unique


@unique
class KernelInvariant(str, Enum):
    """Non-configurable invariants enforced by the kernel."""

    WEIGHT_CONSISTENCY = "weight_consistency"
    """total_weight == quantity * weight_per_unit after every mutation.
    Enforced by PieceMark attribute validators; total_weight has no setter."""

    SINGLE_STEP_STATUS = "single_step_status"
    """Manual status changes move exactly one step forward or back.
    Enforced by domain.lifecycle.validate_status_advance and
    validate_status_rollback."""

    LOCATION_WHILE_SHIPPED = "location_while_shipped"
    """Location changes only while shipped; installed locks location.
    Enforced by domain.lifecycle.validate_location_update."""

    COMPLETE_RECONCILIATION = "complete_reconciliation"
    """A delivery reaches received only when every item has an outcome.
    Enforced by domain.reconciliation.plan_reconciliation."""

    NO_OVER_RECEIPT = "no_over_receipt"
    """Cumulative received quantity never exceeds the piece-mark quantity.
    Enforced by domain.reconciliation.plan_reconciliation."""

    ONE_ENTRY_PER_MUTATION = "one_entry_per_mutation"
    """Every mutated record produces exactly one activity entry in the same
    transaction; rejected calls produce none."""

    APPEND_ONLY_LOG = "append_only_log"
    """Activity entries are never updated or deleted. Enforced by ORM
    listeners (db.immutability)."""

    SERIALIZED_AGGREGATES = "serialized_aggregates"
    """Racing writers on one aggregate never both succeed. Enforced by
    version_id_col on PieceMark, Delivery and CrewAssignment."""


ALL_KERNEL_INVARIANTS: frozenset[KernelInvariant] = frozenset(KernelInvariant)

# The kernel package may not import from these packages.
# This is enforced by tests/architecture/test_kernel_boundary.py.
FORBIDDEN_KERNEL_IMPORTS: tuple[str, ...] = (
    "steeltrack_services",
    "steeltrack_config",
)
