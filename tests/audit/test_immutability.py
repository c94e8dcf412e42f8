"""
Append-only guarantees enforced by the ORM listeners.
"""

import pytest
from sqlalchemy import select

from steeltrack_kernel.exceptions import ImmutabilityViolationError
from steeltrack_kernel.models.activity_log import ActivityLogEntry
from steeltrack_kernel.models.piece_mark import PieceMark


@pytest.fixture
def piece_mark(build):
    return build.piece_mark("B-1")


def _first_entry(session):
    return session.execute(
        select(ActivityLogEntry).order_by(ActivityLogEntry.seq).limit(1)
    ).scalar_one()


class TestActivityLogEntries:
    def test_update_blocked(self, session, piece_mark):
        entry = _first_entry(session)
        entry.description = "rewritten"
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "ActivityLogEntry"

    def test_delete_blocked(self, session, piece_mark):
        session.delete(_first_entry(session))
        with pytest.raises(ImmutabilityViolationError):
            session.flush()

    def test_violation_is_logged(self, session, piece_mark, captured_logs):
        _first_entry(session).description = "rewritten"
        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        blocked = [r for r in captured_logs() if r["message"] == "immutability_violation_blocked"]
        assert blocked[0]["operation"] == "UPDATE"


class TestPieceMarks:
    def test_delete_with_history_blocked(self, session, piece_mark):
        session.delete(session.get(PieceMark, piece_mark.id))
        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "PieceMark"

    def test_archive_is_the_removal_path(self, services, build, piece_mark):
        archived = services.piece_marks.archive_piece_mark(build.pm, piece_mark.id, "duplicate")
        assert archived.archived_at is not None
