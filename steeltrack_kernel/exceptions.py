"""
Typed Exception Hierarchy for the Steel Tracking Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Every rejection in the kernel must name the specific rule or invariant that
was violated.  The UI shows it to a foreman standing in the yard; tests
assert on it; the reporting collaborator groups by it.  A generic
ValueError with a sentence inside would force every one of those callers to
parse messages.

Rules:
  1. Every error has a TYPED exception class (catch by type, not message)
  2. Every exception has a CODE attribute (machine-readable, API-safe)
  3. Exceptions carry structured DATA (not just a message string)

Example - WRONG way to handle errors:
    try:
        tracker.advance_piece_mark_status(actor, pm_id, "installed")
    except Exception as e:
        if "skip" in str(e):  # FRAGILE
            ...

Example - RIGHT way:
    try:
        tracker.advance_piece_mark_status(actor, pm_id, "installed")
    except InvalidTransitionError as e:
        show(f"Cannot move {e.from_state} -> {e.to_state}")
    except ForbiddenError as e:
        show(f"Not allowed: {e.rule}")

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    SteelTrackError (base)
    |
    +-- InvalidTransitionError          state machine rule violated
    |   +-- LocationLockedAfterInstallError
    |
    +-- ForbiddenError                  authorization rule violated
    |
    +-- QuantityError
    |   +-- OverReceiptError            quantity accounting violated
    |
    +-- ConcurrencyError
    |   +-- ConcurrentModificationError optimistic lock lost
    |
    +-- ReconciliationError
    |   +-- IncompleteReconciliationError
    |   +-- DeliveryItemsFrozenError
    |
    +-- NotFoundError                   unknown identity referenced
    |   +-- PieceMarkNotFoundError
    |   +-- DeliveryNotFoundError
    |   +-- DeliveryItemNotFoundError
    |   +-- CrewAssignmentNotFoundError
    |   +-- ActorNotFoundError
    |
    +-- ValidationError
    |   +-- InvalidValueError           closed-set / range validation
    |   +-- DuplicatePieceMarkError
    |   +-- DuplicateDeliveryError
    |   +-- DuplicateDeliveryItemError
    |   +-- DuplicateCrewAssignmentError
    |   +-- PieceMarkArchivedError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- AuditError
        +-- AuditChainBrokenError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Code                          | When Raised
------------------------------|----------------------------------------------
INVALID_TRANSITION            | (from, to) pair not in the transition table
LOCATION_LOCKED_AFTER_INSTALL | Location change on an installed piece mark
FORBIDDEN                     | Role policy denies the action (names the rule)
OVER_RECEIPT                  | Received quantity exceeds what was expected
CONCURRENT_MODIFICATION       | Version check lost against another writer
INCOMPLETE_RECONCILIATION     | Reconciliation omitted one or more items
DELIVERY_ITEMS_FROZEN         | Items added to a delivery no longer pending
NOT_FOUND (+ subtypes)        | Unknown piece mark / delivery / item / crew
INVALID_VALUE                 | Value outside a closed set or allowed range
DUPLICATE_*                   | Project-scoped identity already taken
PIECE_MARK_ARCHIVED           | Transition on a soft-deleted piece mark
IMMUTABILITY_VIOLATION        | UPDATE/DELETE of an activity entry
AUDIT_CHAIN_BROKEN            | Activity log hash chain does not validate

===============================================================================
PROPAGATION
===============================================================================

Every error here is recoverable by the caller: retry against fresh state
(ConcurrentModificationError), correct the input, or surface it to the user.
None of them represent corrupted persistent state -- the unit of work that
raised it is rolled back by ``Database.session_scope()``.  Storage failures
(OperationalError etc.) are not wrapped; they propagate unchanged and are
fatal to the current request only.
"""


class SteelTrackError(Exception):
    """
    Base exception for all steel tracking kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "STEELTRACK_ERROR"


# State machine exceptions


class InvalidTransitionError(SteelTrackError):
    """A (from, to) transition is not allowed by the transition table."""

    code: str = "INVALID_TRANSITION"

    def __init__(
        self,
        subject_type: str,
        from_state: str | None,
        to_state: str | None,
        reason: str = "",
    ):
        self.subject_type = subject_type
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason
        message = f"Invalid {subject_type} transition: {from_state} -> {to_state}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class LocationLockedAfterInstallError(InvalidTransitionError):
    """Field location cannot change once a piece mark is installed."""

    code: str = "LOCATION_LOCKED_AFTER_INSTALL"

    def __init__(self, piece_mark_id: str, requested_location: str | None):
        self.piece_mark_id = piece_mark_id
        self.requested_location = requested_location
        super().__init__(
            "location",
            "installed",
            requested_location,
            reason=f"piece mark {piece_mark_id} is installed; location is locked",
        )


# Authorization


class ForbiddenError(SteelTrackError):
    """The actor's role is not permitted to perform the action."""

    code: str = "FORBIDDEN"

    def __init__(self, role: str, action: str, rule: str):
        self.role = role
        self.action = action
        self.rule = rule
        super().__init__(f"Forbidden: role '{role}' may not {action}: {rule}")


# Quantity accounting


class QuantityError(SteelTrackError):
    """Base exception for quantity accounting errors."""

    code: str = "QUANTITY_ERROR"


class OverReceiptError(QuantityError):
    """
    Received quantity would exceed the expected quantity.

    ``scope`` is ``"delivery_item"`` when a single line receives more than
    it expected, ``"piece_mark"`` when the cumulative receipts across all
    deliveries would exceed the piece mark's quantity.
    """

    code: str = "OVER_RECEIPT"

    def __init__(
        self,
        piece_mark_id: str,
        expected: int,
        cumulative: int,
        attempted: int,
        scope: str = "piece_mark",
    ):
        self.piece_mark_id = piece_mark_id
        self.expected = expected
        self.cumulative = cumulative
        self.attempted = attempted
        self.scope = scope
        super().__init__(
            f"Over receipt on piece mark {piece_mark_id} ({scope}): "
            f"expected {expected}, already received {cumulative}, "
            f"attempted {attempted}"
        )


# Concurrency


class ConcurrencyError(SteelTrackError):
    """Base exception for concurrency errors."""

    code: str = "CONCURRENCY_ERROR"


class ConcurrentModificationError(ConcurrencyError):
    """Optimistic version check lost; retry against fresh state."""

    code: str = "CONCURRENT_MODIFICATION"

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        expected_version: int | None = None,
        actual_version: int | None = None,
    ):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        detail = ""
        if expected_version is not None:
            detail = f" (expected version {expected_version}, found {actual_version})"
        super().__init__(
            f"Concurrent modification on {entity_type} {entity_id}: "
            f"entity was modified by another transaction{detail}"
        )


# Reconciliation


class ReconciliationError(SteelTrackError):
    """Base exception for delivery reconciliation errors."""

    code: str = "RECONCILIATION_ERROR"


class IncompleteReconciliationError(ReconciliationError):
    """A reconciliation left one or more delivery items unresolved."""

    code: str = "INCOMPLETE_RECONCILIATION"

    def __init__(self, delivery_id: str, unresolved_item_ids: list[str]):
        self.delivery_id = delivery_id
        self.unresolved_item_ids = unresolved_item_ids
        super().__init__(
            f"Delivery {delivery_id} cannot be received: "
            f"{len(unresolved_item_ids)} item(s) lack a reconciliation outcome"
        )


class DeliveryItemsFrozenError(ReconciliationError):
    """Items can only be added to a pending delivery."""

    code: str = "DELIVERY_ITEMS_FROZEN"

    def __init__(self, delivery_id: str, status: str):
        self.delivery_id = delivery_id
        self.status = status
        super().__init__(
            f"Delivery {delivery_id} is {status}; items can only be added while pending"
        )


# Not found


class NotFoundError(SteelTrackError):
    """An unknown identity was referenced."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


class PieceMarkNotFoundError(NotFoundError):
    code: str = "PIECE_MARK_NOT_FOUND"

    def __init__(self, piece_mark_id: str):
        self.piece_mark_id = piece_mark_id
        super().__init__("PieceMark", piece_mark_id)


class DeliveryNotFoundError(NotFoundError):
    code: str = "DELIVERY_NOT_FOUND"

    def __init__(self, delivery_id: str):
        self.delivery_id = delivery_id
        super().__init__("Delivery", delivery_id)


class DeliveryItemNotFoundError(NotFoundError):
    code: str = "DELIVERY_ITEM_NOT_FOUND"

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__("DeliveryItem", item_id)


class CrewAssignmentNotFoundError(NotFoundError):
    code: str = "CREW_ASSIGNMENT_NOT_FOUND"

    def __init__(self, crew_assignment_id: str):
        self.crew_assignment_id = crew_assignment_id
        super().__init__("CrewAssignment", crew_assignment_id)


class ActorNotFoundError(NotFoundError):
    code: str = "ACTOR_NOT_FOUND"

    def __init__(self, actor_id: str):
        self.actor_id = actor_id
        super().__init__("Actor", actor_id)


# Validation


class ValidationError(SteelTrackError):
    """Base exception for boundary validation errors."""

    code: str = "VALIDATION_ERROR"


class InvalidValueError(ValidationError):
    """A value is outside its closed set or allowed range."""

    code: str = "INVALID_VALUE"

    def __init__(self, field: str, value: object, allowed: str):
        self.field = field
        self.value = value
        self.allowed = allowed
        super().__init__(f"Invalid value {value!r} for {field}: expected {allowed}")


class DuplicatePieceMarkError(ValidationError):
    code: str = "DUPLICATE_PIECE_MARK"

    def __init__(self, project_id: str, mark: str):
        self.project_id = project_id
        self.mark = mark
        super().__init__(f"Piece mark '{mark}' already exists in project {project_id}")


class DuplicateDeliveryError(ValidationError):
    code: str = "DUPLICATE_DELIVERY"

    def __init__(self, project_id: str, delivery_number: str):
        self.project_id = project_id
        self.delivery_number = delivery_number
        super().__init__(
            f"Delivery '{delivery_number}' already exists in project {project_id}"
        )


class DuplicateDeliveryItemError(ValidationError):
    code: str = "DUPLICATE_DELIVERY_ITEM"

    def __init__(self, delivery_id: str, piece_mark_id: str):
        self.delivery_id = delivery_id
        self.piece_mark_id = piece_mark_id
        super().__init__(
            f"Piece mark {piece_mark_id} is already on delivery {delivery_id}"
        )


class DuplicateCrewAssignmentError(ValidationError):
    code: str = "DUPLICATE_CREW_ASSIGNMENT"

    def __init__(self, crew_name: str, work_date: str, shift: str):
        self.crew_name = crew_name
        self.work_date = work_date
        self.shift = shift
        super().__init__(
            f"Crew '{crew_name}' is already assigned for {work_date} ({shift} shift)"
        )


class PieceMarkArchivedError(ValidationError):
    """Archived piece marks accept no further transitions."""

    code: str = "PIECE_MARK_ARCHIVED"

    def __init__(self, piece_mark_id: str):
        self.piece_mark_id = piece_mark_id
        super().__init__(f"Piece mark {piece_mark_id} is archived")


# Immutability


class ImmutabilityError(SteelTrackError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Activity log entries are immutable from creation; piece marks that are
    referenced by the activity log may only be archived, never deleted.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Cannot modify immutable {entity_type} {entity_id}: {reason}"
        )


# Audit


class AuditError(SteelTrackError):
    """Base exception for audit-related errors."""

    code: str = "AUDIT_ERROR"


class AuditChainBrokenError(AuditError):
    """The activity log hash chain failed validation."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, entry_id: str, expected_hash: str, actual_hash: str):
        self.entry_id = entry_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Activity log chain broken at entry {entry_id}: "
            f"expected {expected_hash}, got {actual_hash}"
        )
