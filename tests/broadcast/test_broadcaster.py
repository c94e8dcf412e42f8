"""
ChangeBroadcaster fan-out: ordering, project scoping, unsubscription and
failure isolation.
"""

from datetime import datetime, timezone
from uuid import uuid4

import pytest

from steeltrack_kernel.domain.dtos import ChangeNotice
from steeltrack_kernel.domain.values import SubjectType, TransitionKind
from steeltrack_services import ChangeBroadcaster


@pytest.fixture
def make_notice():
    def _notice(seq, project_id):
        return ChangeNotice(
            seq=seq,
            project_id=project_id,
            subject_type=SubjectType.PIECE_MARK,
            subject_id=uuid4(),
            transition_kind=TransitionKind.LOCATION_UPDATED,
            actor_id=uuid4(),
            occurred_at=datetime(2024, 3, 4, 7, 0, tzinfo=timezone.utc),
        )

    return _notice


class TestPublish:
    def test_in_order_to_every_subscriber(self, make_notice):
        broadcaster = ChangeBroadcaster()
        project = uuid4()
        first, second = [], []
        broadcaster.subscribe(first.append)
        broadcaster.subscribe(second.append)

        notices = [make_notice(1, project), make_notice(2, project)]
        assert broadcaster.publish(notices) == 4
        assert [n.seq for n in first] == [1, 2]
        assert [n.seq for n in second] == [1, 2]

    def test_project_scope(self, make_notice):
        broadcaster = ChangeBroadcaster()
        mine, other = uuid4(), uuid4()
        received = []
        broadcaster.subscribe(received.append, project_id=mine)

        broadcaster.publish([make_notice(1, other), make_notice(2, mine)])
        assert [n.seq for n in received] == [2]

    def test_unsubscribe(self, make_notice):
        broadcaster = ChangeBroadcaster()
        received = []
        unsubscribe = broadcaster.subscribe(received.append)
        assert broadcaster.subscriber_count == 1

        unsubscribe()
        unsubscribe()
        assert broadcaster.subscriber_count == 0
        broadcaster.publish([make_notice(1, uuid4())])
        assert received == []

    def test_disabled_publishes_nothing(self, make_notice):
        broadcaster = ChangeBroadcaster(enabled=False)
        received = []
        broadcaster.subscribe(received.append)
        assert broadcaster.publish([make_notice(1, uuid4())]) == 0
        assert received == []


class TestFailureIsolation:
    def test_failing_subscriber_is_skipped_and_logged(self, make_notice, captured_logs):
        broadcaster = ChangeBroadcaster()
        received = []

        def broken(notice):
            raise ConnectionError("socket closed")

        broadcaster.subscribe(broken)
        broadcaster.subscribe(received.append)

        assert broadcaster.publish([make_notice(7, uuid4())]) == 1
        assert [n.seq for n in received] == [7]
        failure = next(r for r in captured_logs() if r["message"] == "broadcast_failed")
        assert failure["level"] == "ERROR"
        assert failure["seq"] == 7
        assert failure["exc_type"] == "ConnectionError"
