"""Dispatches rule actions to the ledger, the approval workflow and collaborators."""
import asyncio
import logging
from datetime import timedelta
from typing import Callable, Dict, Optional

from talentflow.errors import (
    ActionExecutionError,
    ApprovalError,
    CandidateNotFoundError,
    FlowNotFoundError,
    InvalidTransitionError,
)
from talentflow.models.event import ActionInvocation, ExecutionResult, status_change_event
from talentflow.models.job import FailedInvocation
from talentflow.models.rule import (
    COLLABORATOR_ACTIONS,
    Action,
    AddNoteAction,
    AssignJobAction,
    ChangeStatusAction,
    RequestApprovalAction,
    ScheduleInterviewAction,
    SendNotificationAction,
    variant_types,
)
from talentflow.models.status import CandidateStatus
from talentflow.services.approval_workflow import ApprovalWorkflow
from talentflow.services.collaborators import CandidateStore, InterviewScheduler, NotificationService
from talentflow.services.scheduler import Scheduler
from talentflow.services.status_ledger import StatusLedger
from talentflow.stores.base import FailureLog
from talentflow.utils.clock import Clock

logger = logging.getLogger(__name__)


class ActionExecutor:
    """Runs one invocation at a time and owns the retry policy.

    Status changes and approval requests run inline. Collaborator actions
    are validated inline but delivered later from the Scheduler, so a slow
    collaborator never holds up the candidate being processed. Transient
    collaborator failures are retried with exponential backoff up to
    `max_attempts`; anything that will not be retried lands in the failure log.
    """

    def __init__(
        self,
        ledger: StatusLedger,
        approvals: ApprovalWorkflow,
        candidates: CandidateStore,
        notifications: NotificationService,
        interviews: InterviewScheduler,
        scheduler: Scheduler,
        failures: FailureLog,
        clock: Optional[Clock] = None,
        max_attempts: int = 5,
        retry_base_seconds: float = 30.0,
        retry_max_seconds: float = 3600.0,
        timeout_seconds: float = 10.0,
        claim_retention_hours: float = 168.0,
    ):
        self.ledger = ledger
        self.approvals = approvals
        self.candidates = candidates
        self.notifications = notifications
        self.interviews = interviews
        self.scheduler = scheduler
        self.failures = failures
        self.clock = clock or Clock()
        self.max_attempts = max_attempts
        self.retry_base_seconds = retry_base_seconds
        self.retry_max_seconds = retry_max_seconds
        self.timeout_seconds = timeout_seconds
        self.claim_retention = timedelta(hours=claim_retention_hours)

        self._handlers: Dict[type, Callable] = {
            ChangeStatusAction: self._change_status,
            SendNotificationAction: self._send_notification,
            ScheduleInterviewAction: self._schedule_interview,
            AddNoteAction: self._add_note,
            AssignJobAction: self._assign_job,
            RequestApprovalAction: self._request_approval,
        }
        unhandled = set(variant_types(Action)) - set(self._handlers)
        if unhandled:
            raise TypeError(f"No handler for action types: {sorted(t.__name__ for t in unhandled)}")

    def _result(self, invocation: ActionInvocation, status: str, attempt: int = 1, **fields) -> ExecutionResult:
        return ExecutionResult(
            key=invocation.key,
            rule_id=invocation.rule_id,
            candidate_id=invocation.candidate_id,
            action_type=invocation.action.type,
            status=status,
            attempt=attempt,
            **fields,
        )

    def backoff(self, attempt: int) -> timedelta:
        """Delay before the attempt following `attempt`."""
        seconds = self.retry_base_seconds * (2 ** (attempt - 1))
        return timedelta(seconds=min(seconds, self.retry_max_seconds))

    # -- issuing -------------------------------------------------------------

    def validate(self, invocation: ActionInvocation):
        """Reject malformed payloads before anything is issued."""
        action = invocation.action
        if isinstance(action, SendNotificationAction):
            if not action.template.strip():
                raise ActionExecutionError("Notification has no template", retryable=False)
            if not action.recipients:
                raise ActionExecutionError("Notification has no recipients", retryable=False)
        elif isinstance(action, AddNoteAction) and not action.text.strip():
            raise ActionExecutionError("Note text is empty", retryable=False)
        elif isinstance(action, AssignJobAction) and not action.job_id.strip():
            raise ActionExecutionError("Job assignment has no job id", retryable=False)
        elif isinstance(action, RequestApprovalAction) and not (action.flow_id or action.steps):
            raise ActionExecutionError("Approval request names neither a flow nor steps", retryable=False)

    async def submit(self, invocation: ActionInvocation) -> ExecutionResult:
        """Issue an invocation: schedule it if delayed, queue it if it goes to a
        collaborator, otherwise execute it now."""
        try:
            self.validate(invocation)
        except ActionExecutionError as e:
            return await self._fail(invocation, 1, e)

        delay = invocation.action.delay_delta
        if delay is not None:
            latest = await self.ledger.last_change(invocation.candidate_id)
            await self.scheduler.schedule_at(
                invocation.triggered_at + delay, invocation, kind="delayed",
                guard_status=latest.to_status if latest else None,
                guard_sequence=latest.sequence if latest else None,
            )
            return self._result(invocation, "scheduled")

        if isinstance(invocation.action, COLLABORATOR_ACTIONS):
            await self.scheduler.schedule_at(self.clock.now(), invocation, kind="outbox")
            return self._result(invocation, "scheduled")

        return await self.execute(invocation)

    # -- execution -----------------------------------------------------------

    async def execute(
        self,
        invocation: ActionInvocation,
        attempt: int = 1,
        guard_status: Optional[CandidateStatus] = None,
        guard_sequence: Optional[int] = None,
    ) -> ExecutionResult:
        """Run an invocation now. Each invocation key executes at most once."""
        if attempt == 1 and not await self.scheduler.claim(f"exec:{invocation.key}", self.claim_retention):
            logger.info("Invocation %s already executed; skipping", invocation.key)
            return self._result(invocation, "skipped", attempt, error="duplicate delivery")

        handler = self._handlers[type(invocation.action)]
        try:
            result = await handler(invocation)
        except ActionExecutionError as e:
            return await self._fail(invocation, attempt, e, guard_status, guard_sequence)
        except (InvalidTransitionError, CandidateNotFoundError, ApprovalError, FlowNotFoundError) as e:
            return await self._fail(invocation, attempt, ActionExecutionError(str(e), retryable=False),
                                    guard_status, guard_sequence)
        result.attempt = attempt
        logger.info("Executed %s for candidate %s (rule %s, attempt %d)",
                    invocation.action.type, invocation.candidate_id, invocation.rule_id, attempt)
        return result

    async def _fail(
        self,
        invocation: ActionInvocation,
        attempt: int,
        error: ActionExecutionError,
        guard_status: Optional[CandidateStatus] = None,
        guard_sequence: Optional[int] = None,
    ) -> ExecutionResult:
        if error.retryable and attempt < self.max_attempts:
            due_at = self.clock.now() + self.backoff(attempt)
            await self.scheduler.schedule_at(
                due_at, invocation, guard_status=guard_status, kind="retry", attempt=attempt + 1,
                guard_sequence=guard_sequence,
            )
            logger.warning("%s for candidate %s failed (attempt %d/%d), retrying at %s: %s",
                           invocation.action.type, invocation.candidate_id, attempt,
                           self.max_attempts, due_at.isoformat(), error)
            return self._result(invocation, "deferred", attempt, error=str(error), retryable=True)

        await self.failures.record(FailedInvocation(
            key=invocation.key,
            rule_id=invocation.rule_id,
            candidate_id=invocation.candidate_id,
            action_type=invocation.action.type,
            error=str(error),
            retryable=error.retryable,
            attempts=attempt,
            failed_at=self.clock.now(),
        ))
        logger.error("%s for candidate %s failed permanently after %d attempt(s): %s",
                     invocation.action.type, invocation.candidate_id, attempt, error)
        return self._result(invocation, "failed", attempt, error=str(error), retryable=error.retryable)

    async def _call(self, coro):
        try:
            return await asyncio.wait_for(coro, timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            raise ActionExecutionError(f"Collaborator call timed out after {self.timeout_seconds}s", retryable=True)

    def _context(self, invocation: ActionInvocation) -> dict:
        return {
            "candidate_id": invocation.candidate_id,
            "rule_id": invocation.rule_id,
            "rule_name": invocation.rule_name,
            "triggered_at": invocation.triggered_at.isoformat(),
        }

    # -- handlers ------------------------------------------------------------

    async def _change_status(self, invocation: ActionInvocation) -> ExecutionResult:
        action: ChangeStatusAction = invocation.action
        record = await self.ledger.transition(
            invocation.candidate_id,
            action.target,
            source="automated",
            changed_by=f"rule:{invocation.rule_id}",
            reason=f"Automation rule '{invocation.rule_name}'",
            automation_rule_id=invocation.rule_id,
        )
        return self._result(
            invocation, "succeeded",
            record=record,
            cascade_event=status_change_event(record, cascade_depth=invocation.cascade_depth + 1),
        )

    async def _request_approval(self, invocation: ActionInvocation) -> ExecutionResult:
        request = await self.approvals.create_from_action(invocation)
        return self._result(invocation, "succeeded", approval_request_id=request.id)

    async def _send_notification(self, invocation: ActionInvocation) -> ExecutionResult:
        action: SendNotificationAction = invocation.action
        await self._call(self.notifications.dispatch_notification(
            action.template, action.recipients, self._context(invocation),
        ))
        return self._result(invocation, "succeeded")

    async def _schedule_interview(self, invocation: ActionInvocation) -> ExecutionResult:
        action: ScheduleInterviewAction = invocation.action
        await self._call(self.interviews.schedule_interview(invocation.candidate_id, {
            "interview_type": action.interview_type,
            "interviewers": action.interviewers,
            "duration_minutes": action.duration_minutes,
            "location": action.location,
            "context": self._context(invocation),
        }))
        return self._result(invocation, "succeeded")

    async def _add_note(self, invocation: ActionInvocation) -> ExecutionResult:
        action: AddNoteAction = invocation.action
        await self._call(self.candidates.add_note(
            invocation.candidate_id, action.text, f"rule:{invocation.rule_id}",
        ))
        return self._result(invocation, "succeeded")

    async def _assign_job(self, invocation: ActionInvocation) -> ExecutionResult:
        action: AssignJobAction = invocation.action
        await self._call(self.candidates.assign_job(invocation.candidate_id, action.job_id))
        return self._result(invocation, "succeeded")
