"""
ChangeBroadcaster -- fire-and-forget fan-out of committed changes.

Responsibility:
    Holds in-process subscribers (the push transport adapters for dashboard
    viewers) and hands each of them every ChangeNotice published after a
    unit of work commits.

Invariants enforced:
    Broadcast is outside the write path.  A failing subscriber is logged as
    ``broadcast_failed`` and skipped; the exception never reaches the
    caller, so it can never roll back a committed state change.  Nothing is
    published for rolled-back work because the facade only publishes after
    commit.

Non-goals:
    Transport (websockets, SSE, database NOTIFY) is a subscriber concern.
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable
from uuid import UUID

from steeltrack_kernel.domain.dtos import ChangeNotice
from steeltrack_kernel.logging_config import get_logger

logger = get_logger("broadcast")

Subscriber = Callable[[ChangeNotice], None]


class ChangeBroadcaster:
    """
    Registry of subscribers, optionally scoped to one project.

    ``subscribe`` returns a callable that removes the subscription.
    """

    def __init__(self, enabled: bool = True):
        self.enabled = enabled
        self._lock = threading.Lock()
        self._subscribers: list[tuple[Subscriber, UUID | None]] = []

    def subscribe(
        self, subscriber: Subscriber, project_id: UUID | None = None
    ) -> Callable[[], None]:
        entry = (subscriber, project_id)
        with self._lock:
            self._subscribers.append(entry)

        def unsubscribe() -> None:
            with self._lock:
                if entry in self._subscribers:
                    self._subscribers.remove(entry)

        return unsubscribe

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, notices: Iterable[ChangeNotice]) -> int:
        """
        Deliver notices in order to every matching subscriber.

        Returns the number of successful deliveries.
        """
        if not self.enabled:
            return 0
        with self._lock:
            subscribers = list(self._subscribers)

        delivered = 0
        for notice in notices:
            for subscriber, project_id in subscribers:
                if project_id is not None and project_id != notice.project_id:
                    continue
                try:
                    subscriber(notice)
                    delivered += 1
                except Exception:
                    logger.error(
                        "broadcast_failed",
                        extra={
                            "seq": notice.seq,
                            "subject_id": str(notice.subject_id),
                            "transition_kind": notice.transition_kind.value,
                        },
                        exc_info=True,
                    )
        return delivered
