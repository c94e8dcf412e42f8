"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Provides strictly increasing sequence numbers for the activity log.
    Uses a dedicated counter table with row-level locking
    (``SELECT ... FOR UPDATE``) so concurrent writers are serialized on the
    counter row, which also serializes extension of the hash chain.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.
    Called by ActivityLogService.

Invariants enforced:
    The locked counter row is the sole source of the next value; MAX + 1 is
    never used.  The increment is only visible after the caller's
    transaction commits; rollback returns the value.

Failure modes:
    - ConcurrentModificationError when two transactions race to create the
      counter row on first use.  The caller retries.
"""

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from steeltrack_kernel.exceptions import ConcurrentModificationError
from steeltrack_kernel.logging_config import get_logger
from steeltrack_kernel.models.sequence_counter import SequenceCounter

logger = get_logger("services.sequence")


class SequenceService:
    """
    Service for generating transactional sequence numbers.

    Non-goals:
        - Does NOT call ``session.commit()`` -- caller controls boundaries.
    """

    # Well-known sequence names
    ACTIVITY_LOG = "activity_log"

    def __init__(self, session: Session):
        self._session = session

    def _lock_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def next_value(self, sequence_name: str) -> int:
        """
        Lock the counter row (creating it on first use), increment it and
        return the new value.

        Postconditions:
            - Returns an integer > 0 strictly greater than any value
              previously committed for this sequence name.
            - The counter row stays locked until the transaction completes.
        """
        counter = self._lock_counter(sequence_name)

        if counter is None:
            counter = SequenceCounter(name=sequence_name, current_value=1)
            self._session.add(counter)
            try:
                self._session.flush()
            except IntegrityError as exc:
                logger.warning(
                    "sequence_counter_race",
                    extra={"sequence_name": sequence_name},
                )
                raise ConcurrentModificationError("SequenceCounter", sequence_name) from exc
            logger.debug(
                "sequence_allocated",
                extra={"sequence_name": sequence_name, "value": 1},
            )
            return 1

        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int | None:
        """Current value without incrementing; None if never allocated."""
        return self._session.execute(
            select(SequenceCounter.current_value).where(SequenceCounter.name == sequence_name)
        ).scalar_one_or_none()
