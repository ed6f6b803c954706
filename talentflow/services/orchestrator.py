"""Event dispatch, cascades and the background evaluation loop."""
import asyncio
import logging
import time
from collections import OrderedDict, deque
from datetime import datetime
from itertools import groupby
from typing import Deque, Dict, List, Optional, Tuple

from talentflow.errors import OrchestrationError
from talentflow.models.approval import ApprovalRequest
from talentflow.models.event import (
    ActionInvocation,
    DispatchReport,
    ExecutionResult,
    TimeElapsedEvent,
    status_change_event,
)
from talentflow.models.job import FailedInvocation, ScheduledJob
from talentflow.models.rule import COLLABORATOR_ACTIONS, SendNotificationAction
from talentflow.models.status import CandidateStatus, StatusTransitionRecord
from talentflow.services.action_executor import ActionExecutor
from talentflow.services.approval_workflow import ApprovalResolution, ApprovalWorkflow, EscalationOutcome
from talentflow.services.collaborators import CandidateStore
from talentflow.services.rule_engine import RuleEngine, RuleRepository
from talentflow.services.scheduler import Scheduler
from talentflow.services.status_ledger import StatusLedger
from talentflow.stores.base import FailureLog
from talentflow.utils.clock import Clock
from talentflow.utils.locks import KeyedLocks

logger = logging.getLogger(__name__)


class PipelineOrchestrator:
    """Entry point for everything that can change a candidate's pipeline state.

    Work for one candidate is serialized by a per-candidate lock; asyncio
    locks wake waiters first-come first-served, so events for a candidate
    are processed in submission order. A cascade produced while handling an
    event is drained before the lock is released. Different candidates
    proceed independently.
    """

    def __init__(
        self,
        ledger: StatusLedger,
        rules: RuleRepository,
        engine: RuleEngine,
        scheduler: Scheduler,
        executor: ActionExecutor,
        approvals: ApprovalWorkflow,
        candidates: CandidateStore,
        failures: FailureLog,
        clock: Optional[Clock] = None,
        max_cascade_depth: int = 8,
        poll_seconds: float = 5.0,
        time_elapsed_scan_seconds: float = 300.0,
        escalation_scan_seconds: float = 300.0,
    ):
        self.ledger = ledger
        self.rules = rules
        self.engine = engine
        self.scheduler = scheduler
        self.executor = executor
        self.approvals = approvals
        self.candidates = candidates
        self.failures = failures
        self.clock = clock or Clock()
        self.max_cascade_depth = max_cascade_depth
        self.poll_seconds = poll_seconds
        self.time_elapsed_scan_seconds = time_elapsed_scan_seconds
        self.escalation_scan_seconds = escalation_scan_seconds

        self._locks = KeyedLocks()
        self._task: Optional[asyncio.Task] = None
        self._stopping = asyncio.Event()
        self._last_scan: Dict[str, float] = {}

    async def snapshot(self, candidate_id: str) -> dict:
        """Candidate record merged with the ledger's view of its status."""
        snapshot = await self.candidates.get_candidate_snapshot(candidate_id) or {}
        latest = await self.ledger.last_change(candidate_id)
        if latest is not None:
            snapshot["status"] = latest.to_status.value
            snapshot["status_changed_at"] = latest.changed_at
        snapshot["candidate_id"] = candidate_id
        return snapshot

    # -- dispatch ------------------------------------------------------------

    async def _drain(self, events: Deque, report: DispatchReport):
        """Evaluate queued events and their cascades. Caller holds the candidate lock."""
        while events:
            event = events.popleft()
            if event.cascade_depth > self.max_cascade_depth:
                report.truncated = True
                message = f"Cascade depth {event.cascade_depth} exceeds limit; {event.type} event dropped"
                report.errors.append(message)
                logger.warning("Candidate %s: %s", event.candidate_id, message)
                continue
            if isinstance(event, TimeElapsedEvent) and not await self._baseline_holds(event):
                logger.info("Candidate %s moved on before time_elapsed event for rule %s; dropped",
                            event.candidate_id, event.rule_id)
                continue

            report.events.append(event.event_id)
            invocations = self.engine.on_event(event, await self.snapshot(event.candidate_id))
            for rule_id, group in groupby(invocations, key=lambda inv: inv.rule_id):
                report.matched_rules.append(rule_id)
                for invocation in group:
                    result = await self.executor.submit(invocation)
                    report.results.append(result)
                    if result.cascade_event is not None:
                        events.append(result.cascade_event)
                    if result.status == "failed" and not result.retryable:
                        report.errors.append(f"Rule {rule_id}: {result.error}")
                        logger.warning("Rule %s stopped for candidate %s after non-retryable failure",
                                       rule_id, event.candidate_id)
                        break

    async def _baseline_holds(self, event: TimeElapsedEvent) -> bool:
        latest = await self.ledger.last_change(event.candidate_id)
        return latest is not None and latest.changed_at == event.since and latest.to_status == event.status

    async def submit_event(self, event) -> DispatchReport:
        """Evaluate an event for its candidate, cascades included."""
        report = DispatchReport(candidate_id=event.candidate_id)
        async with self._locks.hold(event.candidate_id):
            await self._dispatch(event, report)
        return report

    async def _dispatch(self, event, report: DispatchReport):
        """Drain an event, scoping failures to this candidate. Caller holds the lock."""
        try:
            await self._drain(deque([event]), report)
        except OrchestrationError as e:
            report.errors.append(str(e))
            logger.warning("Event %s for candidate %s failed: %s", event.type, event.candidate_id, e)

    async def enroll_candidate(
        self,
        candidate_id: str,
        changed_by: str,
        status: CandidateStatus = CandidateStatus.FOR_REVIEW,
        reason: Optional[str] = None,
    ) -> Tuple[StatusTransitionRecord, DispatchReport]:
        report = DispatchReport(candidate_id=candidate_id)
        async with self._locks.hold(candidate_id):
            record = await self.ledger.enroll(candidate_id, changed_by, status, reason)
            await self._dispatch(status_change_event(record), report)
        return record, report

    async def change_status(
        self,
        candidate_id: str,
        to_status: CandidateStatus,
        changed_by: str,
        reason: Optional[str] = None,
    ) -> Tuple[StatusTransitionRecord, DispatchReport]:
        """Manual transition; raises InvalidTransitionError / CandidateNotFoundError."""
        report = DispatchReport(candidate_id=candidate_id)
        async with self._locks.hold(candidate_id):
            record = await self.ledger.transition(
                candidate_id, to_status, source="manual", changed_by=changed_by, reason=reason,
            )
            await self._dispatch(status_change_event(record), report)
        return record, report

    # -- scheduled work ------------------------------------------------------

    async def _still_applicable(self, job: ScheduledJob) -> bool:
        """A guarded job applies only while the candidate has not moved since it was issued."""
        if job.guard_status is None and job.guard_sequence is None:
            return True
        latest = await self.ledger.last_change(job.candidate_id)
        if latest is None:
            return False
        if job.guard_sequence is not None:
            return latest.sequence == job.guard_sequence
        return latest.to_status == job.guard_status

    def _cancelled(self, job: ScheduledJob) -> ExecutionResult:
        logger.info("Job %s no longer applies (candidate %s moved on from %s); not executed",
                    job.key, job.candidate_id, job.guard_status.value if job.guard_status else None)
        return ExecutionResult(
            key=job.key,
            rule_id=job.invocation.rule_id,
            candidate_id=job.candidate_id,
            action_type=job.invocation.action.type,
            status="cancelled",
            attempt=job.attempt,
        )

    async def fire(self, job: ScheduledJob) -> ExecutionResult:
        """Run one claimed job after re-checking that it still applies."""
        invocation = job.invocation
        if isinstance(invocation.action, COLLABORATOR_ACTIONS):
            if not await self._still_applicable(job):
                return self._cancelled(job)
            return await self.executor.execute(
                invocation, attempt=job.attempt,
                guard_status=job.guard_status, guard_sequence=job.guard_sequence,
            )

        async with self._locks.hold(job.candidate_id):
            if not await self._still_applicable(job):
                return self._cancelled(job)
            result = await self.executor.execute(
                invocation, attempt=job.attempt,
                guard_status=job.guard_status, guard_sequence=job.guard_sequence,
            )
            if result.cascade_event is not None:
                report = DispatchReport(candidate_id=job.candidate_id)
                await self._dispatch(result.cascade_event, report)
                if report.errors:
                    logger.warning("Cascade from job %s reported: %s", job.key, "; ".join(report.errors))
        return result

    async def _fire_all(self, jobs: List[ScheduledJob]) -> List[ExecutionResult]:
        results = []
        for job in jobs:
            try:
                results.append(await self.fire(job))
            except Exception as e:
                logger.exception("Job %s for candidate %s crashed", job.key, job.candidate_id)
                await self.failures.record(FailedInvocation(
                    key=job.key,
                    rule_id=job.invocation.rule_id,
                    candidate_id=job.candidate_id,
                    action_type=job.invocation.action.type,
                    error=f"{type(e).__name__}: {e}",
                    retryable=False,
                    attempts=job.attempt,
                    failed_at=self.clock.now(),
                ))
            await self.scheduler.complete(job)
        return results

    async def run_due_jobs(self, now: Optional[datetime] = None) -> List[ExecutionResult]:
        """Fire every due job; candidates run in parallel, each in due order."""
        jobs = await self.scheduler.tick(now or self.clock.now())
        by_candidate: Dict[str, List[ScheduledJob]] = OrderedDict()
        for job in jobs:
            by_candidate.setdefault(job.candidate_id, []).append(job)
        batches = await asyncio.gather(*(self._fire_all(batch) for batch in by_candidate.values()))
        return [result for batch in batches for result in batch]

    async def scan_time_elapsed(self, now: Optional[datetime] = None) -> List[DispatchReport]:
        """Raise a time_elapsed event for each rule whose threshold a candidate
        crossed in its current status while its conditions hold. Fires once
        per rule per stay."""
        now = now or self.clock.now()
        rules = self.rules.active_for("time_elapsed")
        if not rules:
            return []
        reports = []
        for record in await self.ledger.current_records():
            if record.to_status.is_terminal:
                continue
            elapsed = now - record.changed_at
            for rule in rules:
                if elapsed < rule.trigger.threshold:
                    continue
                event = TimeElapsedEvent(
                    candidate_id=record.candidate_id,
                    occurred_at=now,
                    rule_id=rule.id,
                    status=record.to_status,
                    since=record.changed_at,
                    elapsed_seconds=elapsed.total_seconds(),
                )
                async with self._locks.hold(record.candidate_id):
                    # Conditions not met yet leave the stay unmarked for a later scan
                    snapshot = await self.snapshot(record.candidate_id)
                    if all(r.id != rule.id for r in self.engine.matching_rules(event, snapshot)):
                        continue
                    marker = f"elapsed:{rule.id}:{record.candidate_id}:{record.changed_at.isoformat()}"
                    if not await self.scheduler.claim(marker):
                        continue
                    report = DispatchReport(candidate_id=record.candidate_id)
                    await self._dispatch(event, report)
                reports.append(report)
        return reports

    async def scan_escalations(self, now: Optional[datetime] = None) -> List[EscalationOutcome]:
        now = now or self.clock.now()
        outcomes = await self.approvals.escalate_overdue(now)
        for outcome in outcomes:
            if outcome.notify_recipients:
                await self.executor.submit(ActionInvocation(
                    rule_id=f"approval:{outcome.request_id}",
                    rule_name="Approval escalation",
                    candidate_id=outcome.candidate_id,
                    triggered_at=now,
                    action_index=0,
                    action=SendNotificationAction(
                        template="approval_escalated",
                        recipients=outcome.notify_recipients,
                    ),
                ))
            if outcome.terminal_event is not None:
                await self.submit_event(outcome.terminal_event)
        return outcomes

    # -- approvals -----------------------------------------------------------

    async def create_approval(self, **fields) -> ApprovalRequest:
        return await self.approvals.create_request(**fields)

    async def resolve_approval_step(
        self,
        request_id: str,
        step_id: str,
        decision: str,
        approver_id: str,
        approver_role: Optional[str] = None,
        comments: Optional[str] = None,
    ) -> Tuple[ApprovalResolution, Optional[DispatchReport]]:
        """Resolve a step; a terminal outcome re-enters rule evaluation."""
        resolution = await self.approvals.resolve_step(
            request_id, step_id, decision, approver_id, approver_role, comments,
        )
        report = None
        if resolution.terminal_event is not None:
            report = await self.submit_event(resolution.terminal_event)
        return resolution, report

    async def cancel_approval(self, request_id: str, user_id: str, reason: Optional[str] = None):
        resolution = await self.approvals.cancel(request_id, user_id, reason)
        report = await self.submit_event(resolution.terminal_event)
        return resolution, report

    # -- background loop -----------------------------------------------------

    def _scan_due(self, name: str, interval: float) -> bool:
        now = time.monotonic()
        last = self._last_scan.get(name)
        if last is not None and now - last < interval:
            return False
        self._last_scan[name] = now
        return True

    async def run_once(self):
        """One pass of the background loop."""
        await self.run_due_jobs()
        if self._scan_due("time_elapsed", self.time_elapsed_scan_seconds):
            await self.scan_time_elapsed()
        if self._scan_due("escalation", self.escalation_scan_seconds):
            await self.scan_escalations()

    async def _loop(self):
        logger.info("Background evaluation loop started (poll every %ss)", self.poll_seconds)
        while not self._stopping.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.exception("Background evaluation pass failed")
            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self.poll_seconds)
            except asyncio.TimeoutError:
                pass
        logger.info("Background evaluation loop stopped")

    def start(self):
        if self._task is None:
            self._stopping.clear()
            self._task = asyncio.create_task(self._loop())

    async def stop(self):
        if self._task is not None:
            self._stopping.set()
            await self._task
            self._task = None
