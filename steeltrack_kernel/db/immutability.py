"""
ORM-level immutability enforcement for the activity log.

===============================================================================
WHY THIS EXISTS
===============================================================================

The activity log is the sole source of truth for history and dispute
resolution.  A foreman disputing who moved a beam to the crane zone, or a
project manager reconstructing what arrived on truck 14, must be able to
trust that nothing written to it was changed afterwards.

SQLAlchemy fires events before UPDATE/DELETE operations reach the database.
We register listeners that intercept these events:

    session.flush()
         |
         v
    [before_flush]   --> _check_piece_mark_deletion_before_flush()
         |
    [before_update]  --> _check_activity_entry_immutability() --> ImmutabilityViolationError
         |
    [before_delete]  --> _check_activity_entry_delete() ---------^
         |
         v
    SQL sent to database (only if checks pass)

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity              | When Immutable                      | Instead
--------------------|-------------------------------------|-------------------------
ActivityLogEntry    | ALWAYS (from creation)              | append a new entry
PieceMark (delete)  | once any activity entry references  | archive (archived_at)

Bulk ``session.execute(update(...))`` statements bypass mapper events; the
kernel never issues them against these tables.

===============================================================================
USAGE
===============================================================================

    from steeltrack_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # Called once at startup; idempotent

Tests that must write a corrupted row to prove detection:

    unregister_immutability_listeners()
    ...
    register_immutability_listeners()
"""

from sqlalchemy import event, func, select
from sqlalchemy.orm import Session

from steeltrack_kernel.exceptions import ImmutabilityViolationError
from steeltrack_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _check_activity_entry_immutability(mapper, connection, target):
    """Activity log entries are never updated."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "invariant": "APPEND_ONLY_LOG",
            "entity_type": "ActivityLogEntry",
            "entity_id": str(target.id),
            "operation": "UPDATE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="ActivityLogEntry",
        entity_id=str(target.id),
        reason="Activity log entries are immutable and cannot be modified",
    )


def _check_activity_entry_delete(mapper, connection, target):
    """Activity log entries are never deleted."""
    logger.error(
        "immutability_violation_blocked",
        extra={
            "invariant": "APPEND_ONLY_LOG",
            "entity_type": "ActivityLogEntry",
            "entity_id": str(target.id),
            "operation": "DELETE",
        },
    )
    raise ImmutabilityViolationError(
        entity_type="ActivityLogEntry",
        entity_id=str(target.id),
        reason="Activity log entries cannot be deleted",
    )


def _piece_mark_has_history(session: Session, piece_mark_id) -> bool:
    from steeltrack_kernel.domain.values import SubjectType
    from steeltrack_kernel.models.activity_log import ActivityLogEntry

    count = session.execute(
        select(func.count())
        .select_from(ActivityLogEntry)
        .where(
            ActivityLogEntry.subject_type == SubjectType.PIECE_MARK,
            ActivityLogEntry.subject_id == piece_mark_id,
        )
    ).scalar_one()
    return count > 0


def _check_piece_mark_deletion_before_flush(session, flush_context, instances):
    """
    Block hard deletion of piece marks that the activity log references.

    Runs at before_flush, while the flush plan can still be abandoned.
    """
    from steeltrack_kernel.models.piece_mark import PieceMark

    for obj in session.deleted:
        if not isinstance(obj, PieceMark):
            continue
        with session.no_autoflush:
            referenced = _piece_mark_has_history(session, obj.id)
        if referenced:
            logger.error(
                "immutability_violation_blocked",
                extra={
                    "invariant": "APPEND_ONLY_LOG",
                    "entity_type": "PieceMark",
                    "entity_id": str(obj.id),
                    "operation": "DELETE",
                },
            )
            raise ImmutabilityViolationError(
                entity_type="PieceMark",
                entity_id=str(obj.id),
                reason="Piece marks referenced by the activity log can only be archived",
            )


def register_immutability_listeners():
    """
    Register the immutability event listeners.

    Safe to call more than once; a listener is only added if absent.
    """
    from steeltrack_kernel.models.activity_log import ActivityLogEntry

    _safe_add_listener(Session, "before_flush", _check_piece_mark_deletion_before_flush)
    _safe_add_listener(ActivityLogEntry, "before_update", _check_activity_entry_immutability)
    _safe_add_listener(ActivityLogEntry, "before_delete", _check_activity_entry_delete)


def _safe_add_listener(target, event_name, listener_fn):
    if not event.contains(target, event_name, listener_fn):
        event.listen(target, event_name, listener_fn)


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if not registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove the immutability event listeners.

    WARNING: Only use this in tests that intentionally corrupt the log to
    verify detection.
    """
    from steeltrack_kernel.models.activity_log import ActivityLogEntry

    _safe_remove_listener(Session, "before_flush", _check_piece_mark_deletion_before_flush)
    _safe_remove_listener(ActivityLogEntry, "before_update", _check_activity_entry_immutability)
    _safe_remove_listener(ActivityLogEntry, "before_delete", _check_activity_entry_delete)
