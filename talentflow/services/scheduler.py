"""Durable timer queue for delayed actions, outbox deliveries and retries."""
import logging
from datetime import datetime, timedelta
from typing import List, Optional

from talentflow.models.event import ActionInvocation
from talentflow.models.job import ScheduledJob
from talentflow.models.status import CandidateStatus
from talentflow.stores.base import JobStore
from talentflow.utils.clock import Clock

logger = logging.getLogger(__name__)


class Scheduler:
    """Persisted due-time entries keyed by the invocation key.

    The store survives restarts. `tick` leases each due job for
    `lease_seconds`; the job stays stored until `complete` is called after
    it fired, so a job whose worker died is handed out again once the
    lease runs out.
    """

    def __init__(self, store: JobStore, clock: Optional[Clock] = None, lease_seconds: float = 300.0):
        self.store = store
        self.clock = clock or Clock()
        self.lease = timedelta(seconds=lease_seconds)

    async def schedule_at(
        self,
        due_at: datetime,
        invocation: ActionInvocation,
        guard_status: Optional[CandidateStatus] = None,
        kind: str = "delayed",
        attempt: int = 1,
        guard_sequence: Optional[int] = None,
    ) -> bool:
        """Persist a job; returns False if the same key is already pending."""
        job = ScheduledJob(
            key=invocation.key,
            candidate_id=invocation.candidate_id,
            due_at=due_at,
            invocation=invocation,
            guard_status=guard_status,
            guard_sequence=guard_sequence,
            attempt=attempt,
            kind=kind,
            created_at=self.clock.now(),
        )
        if attempt > 1:
            await self.store.put(job)
            added = True
        else:
            added = await self.store.add(job)
        if added:
            logger.info("Scheduled %s job %s (attempt %d) for %s",
                        kind, job.key, attempt, due_at.isoformat())
        else:
            logger.info("Job %s already scheduled", job.key)
        return added

    async def cancel(self, key: str) -> bool:
        removed = await self.store.remove(key)
        if removed:
            logger.info("Cancelled job %s", key)
        return removed

    async def tick(self, now: Optional[datetime] = None, limit: int = 100) -> List[ScheduledJob]:
        """Lease every job due at `now`."""
        now = now or self.clock.now()
        jobs = await self.store.claim_due(now, now + self.lease, limit=limit)
        if jobs:
            logger.debug("Claimed %d due jobs", len(jobs))
        return jobs

    async def complete(self, job: ScheduledJob) -> bool:
        """Drop a fired job. A retry scheduled under the same key survives."""
        return await self.store.complete(job)

    async def pending(self, candidate_id: Optional[str] = None) -> List[ScheduledJob]:
        return await self.store.pending(candidate_id)

    async def claim(self, marker: str, retention: Optional[timedelta] = None) -> bool:
        """Record a one-time execution marker, kept for `retention` if given."""
        now = self.clock.now()
        expires_at = now + retention if retention is not None else None
        return await self.store.claim_marker(marker, now, expires_at)
