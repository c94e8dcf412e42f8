"""
Read-side queries: piece-mark listing and summary, deliveries, crews and the
activity log query surface.
"""

from datetime import date, timedelta
from decimal import Decimal
from uuid import uuid4

import pytest

from steeltrack_kernel.domain.values import (
    DeliveryStatus,
    FieldLocation,
    PieceMarkStatus,
    SubjectType,
    TransitionKind,
)
from steeltrack_kernel.selectors import (
    ActivitySelector,
    CrewSelector,
    DeliverySelector,
    PieceMarkSelector,
)

S = PieceMarkStatus


@pytest.fixture
def populated(build, services, field):
    """Three piece marks at different points of the lifecycle, one archived."""
    beam = build.piece_mark("B-1", quantity=2, weight="100")
    column = build.piece_mark("C-1", quantity=1, weight="500")
    brace = build.piece_mark("X-1", quantity=3, weight="10")
    build.advance_to(column.id, S.SHIPPED)
    services.piece_marks.update_location(field, column.id, "staging")
    services.piece_marks.archive_piece_mark(build.pm, brace.id, reason="superseded")
    return beam, column, brace


class TestPieceMarkSelector:
    def test_list_filters(self, session, build, populated):
        beam, column, brace = populated
        selector = PieceMarkSelector(session)

        assert [p.mark for p in selector.list_by_project(build.project_id)] == ["B-1", "C-1"]
        assert len(selector.list_by_project(build.project_id, include_archived=True)) == 3
        shipped = selector.list_by_project(build.project_id, status=S.SHIPPED)
        assert [p.id for p in shipped] == [column.id]
        staged = selector.list_by_project(build.project_id, location=FieldLocation.STAGING)
        assert [p.id for p in staged] == [column.id]
        assert selector.list_by_project(uuid4()) == []

    def test_get_by_mark(self, session, build, populated):
        beam, _, _ = populated
        selector = PieceMarkSelector(session)
        assert selector.get_by_mark(build.project_id, "B-1").id == beam.id
        assert selector.get_by_mark(build.project_id, "Z-9") is None
        assert selector.get(uuid4()) is None

    def test_status_summary_in_lifecycle_order(self, session, build, populated):
        rows = PieceMarkSelector(session).status_summary(build.project_id)
        assert [r.status for r in rows] == [
            S.NOT_STARTED,
            S.FABRICATING,
            S.COMPLETED,
            S.SHIPPED,
            S.INSTALLED,
        ]
        by_status = {r.status: r for r in rows}
        assert by_status[S.NOT_STARTED].piece_mark_count == 1
        assert by_status[S.NOT_STARTED].total_quantity == 2
        assert by_status[S.NOT_STARTED].total_weight == Decimal("200")
        assert by_status[S.SHIPPED].total_weight == Decimal("500")
        assert by_status[S.INSTALLED].piece_mark_count == 0


class TestDeliverySelector:
    def test_list_ordered_by_schedule(self, session, build):
        pm = build.piece_mark("B-1", quantity=4)
        late = build.delivery("D-002", scheduled=date(2024, 3, 9), items=[(pm.id, 2)])
        early = build.delivery("D-001", scheduled=date(2024, 3, 5), items=[(pm.id, 2)])
        build.deliver(early.id)

        selector = DeliverySelector(session)
        listed = selector.list_by_project(build.project_id)
        assert [d.delivery_number for d in listed] == ["D-001", "D-002"]
        delivered = selector.list_by_project(build.project_id, DeliveryStatus.DELIVERED)
        assert [d.id for d in delivered] == [early.id]
        assert selector.get_by_number(build.project_id, "D-002").id == late.id
        assert len(selector.items_for_piece_mark(pm.id)) == 2


class TestCrewSelector:
    def test_list_and_lookup(self, session, services, build, field):
        pm = build.piece_mark("B-1")
        build.advance_to(pm.id, S.SHIPPED)
        first = services.crews.assign_crew(
            field, build.project_id, "Ironworkers A", field.actor_id, date(2024, 3, 4),
            piece_mark_ids=[pm.id],
        )
        services.crews.assign_crew(
            field, build.project_id, "Ironworkers A", field.actor_id, date(2024, 3, 5)
        )

        selector = CrewSelector(session)
        assert len(selector.list_by_project(build.project_id)) == 2
        on_day = selector.list_by_project(build.project_id, work_date=date(2024, 3, 4))
        assert [c.id for c in on_day] == [first.id]
        assert [c.id for c in selector.for_piece_mark(pm.id)] == [first.id]
        assert selector.get(first.id).crew_name == "Ironworkers A"


class TestActivitySelector:
    def test_by_actor_and_kind(self, session, build, field, populated):
        _, column, _ = populated
        selector = ActivitySelector(session)

        mine = selector.by_actor(field.actor_id)
        assert [e.transition_kind for e in mine] == [TransitionKind.LOCATION_UPDATED]
        assert len(selector.by_actor(build.pm.actor_id, limit=2)) == 2

        archived = selector.by_kind(TransitionKind.PIECE_MARK_ARCHIVED, build.project_id)
        assert len(archived) == 1
        assert selector.by_kind(TransitionKind.PIECE_MARK_ARCHIVED, uuid4()) == []

    def test_by_subject_and_seq(self, session, build, populated):
        _, column, _ = populated
        selector = ActivitySelector(session)
        history = selector.by_subject(SubjectType.PIECE_MARK, column.id)
        assert [e.seq for e in history] == sorted(e.seq for e in history)

        total = selector.count()
        assert total == len(selector.after_seq(0))
        later = [e.seq for e in selector.after_seq(history[-1].seq)]
        assert later == [e.seq for e in selector.after_seq(0) if e.seq > history[-1].seq]
        assert len(selector.after_seq(0, limit=3)) == 3

    def test_time_range_is_half_open(self, session, services, build, deterministic_clock):
        start = deterministic_clock.now()
        build.piece_mark("B-1")
        deterministic_clock.advance(60)
        build.piece_mark("B-2")
        deterministic_clock.advance(60)
        build.piece_mark("B-3")

        selector = ActivitySelector(session)
        window = selector.by_time_range(start, start + timedelta(seconds=60))
        assert [e.after_state["mark"] for e in window] == ["B-1"]
        window = selector.by_time_range(
            start, start + timedelta(seconds=121), project_id=build.project_id
        )
        assert len(window) == 3
        assert selector.by_time_range(start, start + timedelta(hours=1), uuid4()) == []
