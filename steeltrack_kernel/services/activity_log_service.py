"""
ActivityLogService -- append-only activity log with hash chain.

Responsibility:
    Writes one ActivityLogEntry per mutated record, inside the caller's
    transaction, linked into a tamper-evident hash chain; validates the
    chain on demand.

Architecture position:
    Kernel > Services -- imperative shell.  Every write service receives an
    ActivityLogService and calls ``record()`` after flushing its own change,
    so a lost optimistic-lock race surfaces before any entry is written.

Invariants enforced:
    ONE_ENTRY_PER_MUTATION -- callers record exactly one entry per mutated
        record; rejected calls never reach ``record()``.
    APPEND_ONLY_LOG -- entries are only ever inserted.
    Hash chain -- payload_hash covers every stored field except timestamps;
        hash = H(seq | subject_type | subject_id | kind | actor |
        payload_hash | prev_hash).

Failure modes:
    - AuditChainBrokenError from ``validate_chain()`` on any mismatch.
"""

from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from steeltrack_kernel.domain.clock import Clock, SystemClock
from steeltrack_kernel.domain.dtos import ActivityEntryInfo
from steeltrack_kernel.domain.identity import Actor
from steeltrack_kernel.domain.values import SubjectType, TransitionKind
from steeltrack_kernel.exceptions import AuditChainBrokenError
from steeltrack_kernel.logging_config import get_logger
from steeltrack_kernel.models.activity_log import ActivityLogEntry
from steeltrack_kernel.services.base import BaseService
from steeltrack_kernel.services.sequence_service import SequenceService
from steeltrack_kernel.utils.hashing import hash_activity_entry, hash_payload, to_json_safe

logger = get_logger("services.activity_log")


def _hashed_payload(entry_fields: dict[str, Any]) -> dict[str, Any]:
    return {
        "project_id": entry_fields["project_id"],
        "actor_role": entry_fields["actor_role"],
        "before": entry_fields["before_state"],
        "after": entry_fields["after_state"],
        "description": entry_fields["description"],
        "delivery_id": entry_fields["delivery_id"],
        "crew_assignment_id": entry_fields["crew_assignment_id"],
        "discrepancy": entry_fields["discrepancy"],
    }


def _entry_payload(entry: ActivityLogEntry) -> dict[str, Any]:
    return _hashed_payload(
        {
            "project_id": str(entry.project_id),
            "actor_role": entry.actor_role.value,
            "before_state": entry.before_state,
            "after_state": entry.after_state,
            "description": entry.description,
            "delivery_id": str(entry.delivery_id) if entry.delivery_id else None,
            "crew_assignment_id": (
                str(entry.crew_assignment_id) if entry.crew_assignment_id else None
            ),
            "discrepancy": entry.discrepancy,
        }
    )


class ActivityLogService(BaseService[ActivityLogEntry]):
    """
    Writer and validator for the activity log.

    ``recorded`` accumulates the entries written through this instance, so
    the caller can publish change notices once the transaction commits.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        sequence_service: SequenceService | None = None,
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._sequence_service = sequence_service or SequenceService(session)
        self.recorded: list[ActivityEntryInfo] = []

    def _get_last_hash(self) -> str | None:
        return self.session.execute(
            select(ActivityLogEntry.hash).order_by(ActivityLogEntry.seq.desc()).limit(1)
        ).scalar_one_or_none()

    def record(
        self,
        actor: Actor,
        project_id: UUID,
        subject_type: SubjectType,
        subject_id: UUID,
        transition_kind: TransitionKind,
        before_state: dict[str, Any] | None,
        after_state: dict[str, Any] | None,
        description: str | None = None,
        delivery_id: UUID | None = None,
        crew_assignment_id: UUID | None = None,
        discrepancy: dict[str, Any] | None = None,
        occurred_at: datetime | None = None,
    ) -> ActivityLogEntry:
        """
        Append one entry, linked to the current head of the chain.

        The counter row is locked before the chain head is read, so two
        concurrent writers can never link to the same predecessor.
        """
        seq = self._sequence_service.next_value(SequenceService.ACTIVITY_LOG)
        prev_hash = self._get_last_hash()

        fields = to_json_safe(
            {
                "project_id": project_id,
                "actor_role": actor.role,
                "before_state": before_state,
                "after_state": after_state,
                "description": description,
                "delivery_id": delivery_id,
                "crew_assignment_id": crew_assignment_id,
                "discrepancy": discrepancy,
            }
        )
        payload_hash = hash_payload(_hashed_payload(fields))
        entry_hash = hash_activity_entry(
            seq=seq,
            subject_type=subject_type.value,
            subject_id=str(subject_id),
            transition_kind=transition_kind.value,
            actor_id=str(actor.actor_id),
            payload_hash=payload_hash,
            prev_hash=prev_hash,
        )

        entry = ActivityLogEntry(
            seq=seq,
            occurred_at=occurred_at or self._clock.now(),
            actor_id=actor.actor_id,
            actor_role=actor.role,
            project_id=project_id,
            subject_type=subject_type,
            subject_id=subject_id,
            transition_kind=transition_kind,
            before_state=fields["before_state"],
            after_state=fields["after_state"],
            description=description,
            delivery_id=delivery_id,
            crew_assignment_id=crew_assignment_id,
            discrepancy=fields["discrepancy"],
            payload_hash=payload_hash,
            prev_hash=prev_hash,
            hash=entry_hash,
        )
        self.session.add(entry)
        self.session.flush()

        self.recorded.append(ActivityEntryInfo.from_model(entry))
        logger.info(
            "activity_entry_recorded",
            extra={
                "seq": seq,
                "subject_type": subject_type.value,
                "subject_id": str(subject_id),
                "transition_kind": transition_kind.value,
            },
        )
        return entry

    def validate_chain(self) -> bool:
        """
        Recompute every payload hash and chain link in seq order.

        Raises:
            AuditChainBrokenError: at the first entry that does not match.
        """
        entries = self.session.execute(
            select(ActivityLogEntry).order_by(ActivityLogEntry.seq)
        ).scalars().all()

        prev_hash: str | None = None
        for entry in entries:
            if entry.prev_hash != prev_hash:
                logger.critical(
                    "activity_chain_broken",
                    extra={"seq": entry.seq, "check": "link"},
                )
                raise AuditChainBrokenError(
                    str(entry.id), prev_hash or "GENESIS", entry.prev_hash or "GENESIS"
                )

            payload_hash = hash_payload(_entry_payload(entry))
            if payload_hash != entry.payload_hash:
                logger.critical(
                    "activity_chain_broken",
                    extra={"seq": entry.seq, "check": "payload"},
                )
                raise AuditChainBrokenError(str(entry.id), payload_hash, entry.payload_hash)

            expected_hash = hash_activity_entry(
                seq=entry.seq,
                subject_type=entry.subject_type.value,
                subject_id=str(entry.subject_id),
                transition_kind=entry.transition_kind.value,
                actor_id=str(entry.actor_id),
                payload_hash=entry.payload_hash,
                prev_hash=entry.prev_hash,
            )
            if expected_hash != entry.hash:
                logger.critical(
                    "activity_chain_broken",
                    extra={"seq": entry.seq, "check": "hash"},
                )
                raise AuditChainBrokenError(str(entry.id), expected_hash, entry.hash)

            prev_hash = entry.hash

        logger.info("activity_chain_valid", extra={"entry_count": len(entries)})
        return True
