"""Ordered, role-based approval requests with escalation on timeout."""
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from talentflow.errors import (
    ApprovalClosedError,
    ApprovalError,
    ApprovalNotFoundError,
    ApprovalOrderingError,
    ApproverNotAuthorizedError,
    FlowNotFoundError,
)
from talentflow.models.approval import (
    ApprovalComment,
    ApprovalFlow,
    ApprovalRequest,
    ApprovalStep,
    EscalationRule,
)
from talentflow.models.event import ActionInvocation, ApprovalResolvedEvent
from talentflow.models.rule import ApprovalStepTemplate, RequestApprovalAction
from talentflow.stores.base import ApprovalStore
from talentflow.utils.clock import Clock
from talentflow.utils.locks import KeyedLocks

logger = logging.getLogger(__name__)

SYSTEM_APPROVER = "system:escalation"


class ApprovalResolution(BaseModel):
    """A request after a state change, with its terminal event if it closed."""
    request: ApprovalRequest
    terminal_event: Optional[ApprovalResolvedEvent] = None


class EscalationOutcome(BaseModel):
    request_id: str
    candidate_id: str
    step_id: str
    action: str
    message: str
    notify_recipients: List[str] = Field(default_factory=list)
    terminal_event: Optional[ApprovalResolvedEvent] = None


class ApprovalWorkflow:
    """State machine per request: pending -> approved | rejected | cancelled.

    Steps resolve strictly in ascending `order`. Each mutation runs under a
    per-request lock and is saved compare-and-set on the request version.
    """

    def __init__(
        self,
        store: ApprovalStore,
        clock: Optional[Clock] = None,
        default_manager_role: str = "hiring_manager",
        admin_recipients: Optional[List[str]] = None,
    ):
        self.store = store
        self.clock = clock or Clock()
        self.default_manager_role = default_manager_role
        self.admin_recipients = admin_recipients or ["admin"]
        self._locks = KeyedLocks()

    # -- flows ---------------------------------------------------------------

    async def create_flow(self, flow: ApprovalFlow) -> ApprovalFlow:
        await self.store.save_flow(flow)
        logger.info("Approval flow %s (%s) saved", flow.id, flow.name)
        return flow

    async def get_flow(self, flow_id: str) -> ApprovalFlow:
        flow = await self.store.get_flow(flow_id)
        if flow is None:
            raise FlowNotFoundError(f"Approval flow {flow_id} not found")
        return flow

    async def list_flows(self) -> List[ApprovalFlow]:
        return await self.store.list_flows()

    async def delete_flow(self, flow_id: str):
        if not await self.store.delete_flow(flow_id):
            raise FlowNotFoundError(f"Approval flow {flow_id} not found")

    # -- requests ------------------------------------------------------------

    async def create_request(
        self,
        candidate_id: str,
        request_type: str,
        requested_value: str,
        requested_by: str,
        steps: Optional[List[ApprovalStepTemplate]] = None,
        flow_id: Optional[str] = None,
        priority: str = "medium",
        reason: str = "",
        justification: Optional[str] = None,
        current_value: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        rule_id: Optional[str] = None,
    ) -> ApprovalRequest:
        """Open a request from inline steps or from a flow definition."""
        escalation_rules: List[EscalationRule] = []
        if flow_id:
            flow = await self.get_flow(flow_id)
            if not flow.is_active:
                raise FlowNotFoundError(f"Approval flow {flow_id} is inactive")
            steps = steps or flow.steps
            escalation_rules = list(flow.escalation_rules)
        if not steps:
            raise ApprovalOrderingError("An approval request needs at least one step")

        now = self.clock.now()
        ordered = sorted(steps, key=lambda s: s.order)
        request = ApprovalRequest(
            candidate_id=candidate_id,
            request_type=request_type,
            current_value=current_value,
            requested_value=requested_value,
            requested_by=requested_by,
            requested_at=now,
            priority=priority,
            reason=reason,
            justification=justification,
            flow_id=flow_id,
            rule_id=rule_id,
            steps=[
                ApprovalStep(
                    approver_type=s.approver_type,
                    approver_ref=list(s.approver_ref),
                    order=s.order,
                    is_required=s.is_required,
                )
                for s in ordered
            ],
            escalation_rules=escalation_rules,
            metadata=metadata or {},
        )
        request.steps[0].entered_at = now
        await self.store.insert(request)
        logger.info("Approval request %s (%s) opened for candidate %s with %d steps",
                    request.id, request_type, candidate_id, len(request.steps))
        return request

    async def create_from_action(self, invocation: ActionInvocation) -> ApprovalRequest:
        action: RequestApprovalAction = invocation.action
        return await self.create_request(
            candidate_id=invocation.candidate_id,
            request_type=action.request_type,
            requested_value=action.requested_value,
            requested_by=f"rule:{invocation.rule_id}",
            steps=action.steps or None,
            flow_id=action.flow_id,
            priority=action.priority,
            reason=action.reason or f"Requested by automation rule '{invocation.rule_name}'",
            rule_id=invocation.rule_id,
        )

    async def get(self, request_id: str) -> ApprovalRequest:
        request = await self.store.get(request_id)
        if request is None:
            raise ApprovalNotFoundError(f"Approval request {request_id} not found")
        return request

    async def list_requests(self, status: Optional[str] = None, candidate_id: Optional[str] = None) -> List[ApprovalRequest]:
        return await self.store.list(status=status, candidate_id=candidate_id)

    async def list_pending_for(self, user_id: str, role: Optional[str]) -> List[ApprovalRequest]:
        """Pending requests whose current step this user may act on."""
        return [
            request for request in await self.store.list(status="pending")
            if request.current_step is not None and request.current_step.accepts(user_id, role)
        ]

    async def _save(self, request: ApprovalRequest):
        if not await self.store.save(request):
            raise ApprovalOrderingError(f"Approval request {request.id} was modified concurrently")

    def _close(self, request: ApprovalRequest, outcome: str, now: datetime) -> ApprovalResolvedEvent:
        request.status = outcome
        request.resolved_at = now
        for step in request.steps:
            if step.status == "pending":
                step.status = "skipped"
        logger.info("Approval request %s %s", request.id, outcome)
        return ApprovalResolvedEvent(
            candidate_id=request.candidate_id,
            occurred_at=now,
            request_id=request.id,
            request_type=request.request_type,
            outcome=outcome,
        )

    def _advance(self, request: ApprovalRequest, now: datetime) -> Optional[ApprovalResolvedEvent]:
        """Move past the current step, approving once no required step remains."""
        remaining = request.steps[request.current_step_index + 1:]
        if not any(step.is_required for step in remaining):
            return self._close(request, "approved", now)
        request.current_step_index += 1
        request.steps[request.current_step_index].entered_at = now
        return None

    def _decide(self, request, step, decision, actor, comments, now) -> Optional[ApprovalResolvedEvent]:
        step.status = decision
        step.approved_by = actor
        step.approved_at = now
        step.comments = comments
        if decision == "rejected" and step.is_required:
            return self._close(request, "rejected", now)
        return self._advance(request, now)

    async def resolve_step(
        self,
        request_id: str,
        step_id: str,
        decision: str,
        approver_id: str,
        approver_role: Optional[str] = None,
        comments: Optional[str] = None,
    ) -> ApprovalResolution:
        """Approve or reject the current step of a request."""
        if decision not in ("approved", "rejected"):
            raise ApprovalOrderingError(f"Unknown decision '{decision}'")
        async with self._locks.hold(request_id):
            request = await self.get(request_id)
            if request.is_terminal:
                raise ApprovalClosedError(f"Approval request {request_id} is already {request.status}")
            step = request.current_step
            if step is None or step.id != step_id:
                raise ApprovalOrderingError(
                    f"Step {step_id} is not the current step of request {request_id}"
                )
            if not step.accepts(approver_id, approver_role):
                raise ApproverNotAuthorizedError(
                    f"User {approver_id} ({approver_role}) may not resolve step {step_id}"
                )

            now = self.clock.now()
            request.comments.append(ApprovalComment(
                user_id=approver_id,
                user_role=approver_role,
                comment=comments or decision.capitalize(),
                type="approval" if decision == "approved" else "rejection",
                created_at=now,
            ))
            event = self._decide(request, step, decision, approver_id, comments, now)
            await self._save(request)

        logger.info("Step %s of request %s %s by %s", step_id, request_id, decision, approver_id)
        return ApprovalResolution(request=request, terminal_event=event)

    async def cancel(self, request_id: str, user_id: str, reason: Optional[str] = None) -> ApprovalResolution:
        async with self._locks.hold(request_id):
            request = await self.get(request_id)
            if request.is_terminal:
                raise ApprovalClosedError(f"Approval request {request_id} is already {request.status}")
            now = self.clock.now()
            request.comments.append(ApprovalComment(
                user_id=user_id, comment=reason or "Request cancelled", created_at=now,
            ))
            event = self._close(request, "cancelled", now)
            await self._save(request)
        return ApprovalResolution(request=request, terminal_event=event)

    async def add_comment(
        self,
        request_id: str,
        user_id: str,
        comment: str,
        user_role: Optional[str] = None,
        type: str = "comment",
    ) -> ApprovalComment:
        async with self._locks.hold(request_id):
            request = await self.get(request_id)
            entry = ApprovalComment(
                user_id=user_id, user_role=user_role, comment=comment, type=type,
                created_at=self.clock.now(),
            )
            request.comments.append(entry)
            await self._save(request)
        return entry

    # -- escalation ----------------------------------------------------------

    async def escalate_overdue(self, now: Optional[datetime] = None) -> List[EscalationOutcome]:
        """Apply the next due escalation rule to every stalled pending request."""
        now = now or self.clock.now()
        outcomes = []
        for pending in await self.store.list(status="pending"):
            if not pending.escalation_rules:
                continue
            try:
                async with self._locks.hold(pending.id):
                    request = await self.get(pending.id)
                    outcome = self._escalate(request, now)
                    if outcome is None:
                        continue
                    await self._save(request)
            except ApprovalError as e:
                logger.warning("Escalation of request %s skipped this pass: %s", pending.id, e)
                continue
            logger.warning("Escalation on request %s: %s", request.id, outcome.message)
            outcomes.append(outcome)
        return outcomes

    def _escalate(self, request: ApprovalRequest, now: datetime) -> Optional[EscalationOutcome]:
        step = request.current_step
        if step is None or step.entered_at is None:
            return None
        rules = sorted(request.escalation_rules, key=lambda r: r.timeout_hours)
        if step.escalation_level >= len(rules):
            return None
        rule = rules[step.escalation_level]
        if now - step.entered_at < timedelta(hours=rule.timeout_hours):
            return None

        outcome = EscalationOutcome(
            request_id=request.id,
            candidate_id=request.candidate_id,
            step_id=step.id,
            action=rule.action,
            message="",
        )
        if rule.action == "auto_approve":
            outcome.message = f"Step {step.id} auto-approved after {rule.timeout_hours}h"
            outcome.terminal_event = self._decide(request, step, "approved", SYSTEM_APPROVER, outcome.message, now)
        elif rule.action == "reject":
            outcome.message = f"Request rejected: step {step.id} pending over {rule.timeout_hours}h"
            step.status = "rejected"
            step.approved_by = SYSTEM_APPROVER
            step.approved_at = now
            step.comments = outcome.message
            outcome.terminal_event = self._close(request, "rejected", now)
        elif rule.action == "escalate_to_manager":
            role = rule.escalate_to_role or self.default_manager_role
            step.approver_type = "role"
            step.approver_ref = [role]
            step.entered_at = now
            step.escalation_level += 1
            outcome.message = f"Step {step.id} reassigned to role {role} after {rule.timeout_hours}h"
            outcome.notify_recipients = [role]
        else:
            step.escalation_level += 1
            outcome.message = f"Step {step.id} pending over {rule.timeout_hours}h"
            outcome.notify_recipients = list(self.admin_recipients)

        request.comments.append(ApprovalComment(
            user_id=SYSTEM_APPROVER, comment=outcome.message, type="escalation", created_at=now,
        ))
        return outcome
