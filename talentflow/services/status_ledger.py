"""Authoritative record of candidate status and its transition history."""
import logging
from datetime import datetime
from typing import List, Optional

from talentflow.errors import CandidateNotFoundError, InvalidTransitionError
from talentflow.models.status import CandidateStatus, StageDuration, StatusTransitionRecord
from talentflow.stores.base import StatusHistoryStore
from talentflow.utils.clock import Clock

logger = logging.getLogger(__name__)


class StatusLedger:
    """Single write path for candidate status.

    Every status write goes through `transition` (or `enroll` for the first
    record). The append is the atomicity boundary: the record is either
    stored and visible to every reader, or the call raises. The ledger never
    triggers automation itself; callers announce the returned record.
    """

    def __init__(self, store: StatusHistoryStore, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or Clock()

    async def enroll(
        self,
        candidate_id: str,
        changed_by: str,
        status: CandidateStatus = CandidateStatus.FOR_REVIEW,
        reason: Optional[str] = None,
    ) -> StatusTransitionRecord:
        """Open a candidate's history with its initial status."""
        if await self.store.latest(candidate_id) is not None:
            raise InvalidTransitionError(f"Candidate {candidate_id} is already enrolled")
        record = StatusTransitionRecord(
            candidate_id=candidate_id,
            sequence=1,
            from_status=None,
            to_status=status,
            changed_at=self.clock.now(),
            changed_by=changed_by,
            reason=reason,
            source="manual",
        )
        await self.store.append(record)
        logger.info("Candidate %s enrolled at %s by %s", candidate_id, status.value, changed_by)
        return record

    async def transition(
        self,
        candidate_id: str,
        to_status: CandidateStatus,
        source: str = "manual",
        changed_by: str = "system",
        reason: Optional[str] = None,
        automation_rule_id: Optional[str] = None,
    ) -> StatusTransitionRecord:
        """Move a candidate to `to_status` and return the appended record.

        Raises InvalidTransitionError for a transition to the current status
        or out of a terminal status, and CandidateNotFoundError when the
        candidate was never enrolled.
        """
        to_status = CandidateStatus(to_status)
        latest = await self.store.latest(candidate_id)
        if latest is None:
            raise CandidateNotFoundError(f"Candidate {candidate_id} has no recorded status")
        if latest.to_status == to_status:
            raise InvalidTransitionError(
                f"Candidate {candidate_id} is already in status {to_status.value}"
            )
        if latest.to_status.is_terminal:
            raise InvalidTransitionError(
                f"Candidate {candidate_id} is in terminal status {latest.to_status.value}"
            )

        record = StatusTransitionRecord(
            candidate_id=candidate_id,
            sequence=latest.sequence + 1,
            from_status=latest.to_status,
            to_status=to_status,
            changed_at=self.clock.now(),
            changed_by=changed_by,
            reason=reason,
            source=source,
            automation_rule_id=automation_rule_id,
        )
        await self.store.append(record)
        logger.info(
            "Candidate %s: %s -> %s (%s, by %s)",
            candidate_id, record.from_status.value, to_status.value, source, changed_by,
        )
        return record

    async def current_status(self, candidate_id: str) -> CandidateStatus:
        latest = await self.store.latest(candidate_id)
        if latest is None:
            raise CandidateNotFoundError(f"Candidate {candidate_id} has no recorded status")
        return latest.to_status

    async def last_change(self, candidate_id: str) -> Optional[StatusTransitionRecord]:
        return await self.store.latest(candidate_id)

    async def history_of(self, candidate_id: str) -> List[StatusTransitionRecord]:
        return await self.store.history(candidate_id)

    async def current_records(self) -> List[StatusTransitionRecord]:
        """Latest record of every enrolled candidate."""
        return await self.store.latest_all()

    async def durations(self, candidate_id: str, now: Optional[datetime] = None) -> List[StageDuration]:
        """Time spent in each recorded status; the latest one runs until now."""
        now = now or self.clock.now()
        history = await self.store.history(candidate_id)
        durations = []
        for i, record in enumerate(history):
            left_at = history[i + 1].changed_at if i + 1 < len(history) else None
            durations.append(StageDuration(
                status=record.to_status,
                entered_at=record.changed_at,
                left_at=left_at,
                duration_seconds=((left_at or now) - record.changed_at).total_seconds(),
                changed_by=record.changed_by,
                source=record.source,
            ))
        return durations
