"""Approval workflow tests."""
import pytest

from talentflow.errors import (
    ApprovalClosedError,
    ApprovalOrderingError,
    ApproverNotAuthorizedError,
    FlowNotFoundError,
)
from talentflow.models.approval import ApprovalFlow, EscalationRule
from talentflow.models.rule import ApprovalStepTemplate
from talentflow.services.approval_workflow import SYSTEM_APPROVER, ApprovalWorkflow
from talentflow.stores.memory import MemoryApprovalStore


@pytest.fixture
def workflow(clock):
    return ApprovalWorkflow(MemoryApprovalStore(), clock, admin_recipients=["admin"])


def step(order, ref, required=True, approver_type="role"):
    return ApprovalStepTemplate(approver_type=approver_type, approver_ref=ref, order=order, is_required=required)


async def open_request(workflow, *steps, **fields):
    return await workflow.create_request(
        candidate_id="cand-1",
        request_type=fields.pop("request_type", "hire_approval"),
        requested_value="hired",
        requested_by="recruiter-1",
        steps=list(steps),
        **fields,
    )


async def test_steps_resolve_in_order(workflow):
    request = await open_request(workflow, step(1, "hr_manager"), step(2, "director"))
    step_a, step_b = request.steps

    with pytest.raises(ApprovalOrderingError):
        await workflow.resolve_step(request.id, step_b.id, "approved", "u2", "director")
    unchanged = await workflow.get(request.id)
    assert unchanged.current_step_index == 0
    assert unchanged.steps[1].status == "pending"

    first = await workflow.resolve_step(request.id, step_a.id, "approved", "u1", "hr_manager")
    assert first.terminal_event is None
    assert first.request.current_step_index == 1

    second = await workflow.resolve_step(request.id, step_b.id, "approved", "u2", "director")
    assert second.request.status == "approved"
    assert second.terminal_event.outcome == "approved"
    assert second.terminal_event.request_id == request.id


async def test_rejecting_last_required_step_rejects_request(workflow):
    request = await open_request(workflow, step(1, "hr_manager"), step(2, "director"))
    step_a, step_b = request.steps
    await workflow.resolve_step(request.id, step_a.id, "approved", "u1", "hr_manager")
    result = await workflow.resolve_step(request.id, step_b.id, "rejected", "u2", "director", "Budget")

    assert result.request.status == "rejected"
    assert result.request.steps[1].status == "rejected"
    assert result.request.steps[1].comments == "Budget"
    assert result.terminal_event.outcome == "rejected"


async def test_required_rejection_skips_remaining_steps(workflow):
    request = await open_request(workflow, step(1, "hr_manager"), step(2, "director"), step(3, "ceo"))
    result = await workflow.resolve_step(request.id, request.steps[0].id, "rejected", "u1", "hr_manager")
    assert result.request.status == "rejected"
    assert [s.status for s in result.request.steps] == ["rejected", "skipped", "skipped"]


async def test_non_required_rejection_advances(workflow):
    request = await open_request(workflow, step(1, "peer", required=False), step(2, "hr_manager"))
    result = await workflow.resolve_step(request.id, request.steps[0].id, "rejected", "u1", "peer")

    assert result.request.status == "pending"
    assert result.request.current_step_index == 1
    assert result.terminal_event is None


async def test_remaining_optional_steps_do_not_block_approval(workflow):
    request = await open_request(workflow, step(1, "hr_manager"), step(2, "peer", required=False))
    result = await workflow.resolve_step(request.id, request.steps[0].id, "approved", "u1", "hr_manager")
    assert result.request.status == "approved"
    assert result.request.steps[1].status == "skipped"


async def test_steps_are_sorted_by_order(workflow):
    request = await open_request(workflow, step(2, "director"), step(1, "hr_manager"))
    assert [s.order for s in request.steps] == [1, 2]
    assert request.steps[0].entered_at is not None
    assert request.steps[1].entered_at is None


@pytest.mark.parametrize("approver_type,ref,user,role,allowed", [
    ("user", ["u1"], "u1", None, True),
    ("user", ["u1"], "u2", "u1", False),
    ("role", ["hr_manager"], "u9", "hr_manager", True),
    ("role", ["hr_manager"], "hr_manager", None, False),
    ("any_of", ["u1", "director"], "u1", None, True),
    ("any_of", ["u1", "director"], "u5", "director", True),
    ("any_of", ["u1", "director"], "u5", "recruiter", False),
])
async def test_approver_resolution(workflow, approver_type, ref, user, role, allowed):
    request = await open_request(workflow, step(1, ref, approver_type=approver_type))
    if allowed:
        result = await workflow.resolve_step(request.id, request.steps[0].id, "approved", user, role)
        assert result.request.status == "approved"
    else:
        with pytest.raises(ApproverNotAuthorizedError):
            await workflow.resolve_step(request.id, request.steps[0].id, "approved", user, role)
        assert (await workflow.get(request.id)).status == "pending"


async def test_closed_request_rejects_further_decisions(workflow):
    request = await open_request(workflow, step(1, "hr_manager"))
    await workflow.resolve_step(request.id, request.steps[0].id, "approved", "u1", "hr_manager")
    with pytest.raises(ApprovalClosedError):
        await workflow.resolve_step(request.id, request.steps[0].id, "approved", "u1", "hr_manager")


async def test_cancel_and_comments(workflow):
    request = await open_request(workflow, step(1, "hr_manager"))
    await workflow.add_comment(request.id, "recruiter-1", "Candidate has a competing offer")
    result = await workflow.cancel(request.id, "recruiter-1", "Candidate withdrew")

    assert result.request.status == "cancelled"
    assert result.terminal_event.outcome == "cancelled"
    assert [c.comment for c in result.request.comments] == [
        "Candidate has a competing offer", "Candidate withdrew",
    ]
    with pytest.raises(ApprovalClosedError):
        await workflow.cancel(request.id, "recruiter-1")


async def test_request_needs_steps(workflow):
    with pytest.raises(ApprovalOrderingError):
        await open_request(workflow)


async def test_flow_supplies_steps_and_escalation(workflow):
    flow = await workflow.create_flow(ApprovalFlow(
        name="Hiring sign-off",
        request_type="hire_approval",
        steps=[step(1, "hr_manager"), step(2, "director")],
        escalation_rules=[EscalationRule(timeout_hours=24, action="auto_approve")],
    ))
    request = await workflow.create_request(
        candidate_id="cand-1", request_type="hire_approval", requested_value="hired",
        requested_by="recruiter-1", flow_id=flow.id,
    )
    assert [s.approver_ref for s in request.steps] == [["hr_manager"], ["director"]]
    assert request.escalation_rules[0].action == "auto_approve"

    await workflow.delete_flow(flow.id)
    with pytest.raises(FlowNotFoundError):
        await workflow.get_flow(flow.id)


async def test_pending_for_user(workflow):
    request = await open_request(workflow, step(1, "hr_manager"))
    await open_request(workflow, step(1, "director"))
    pending = await workflow.list_pending_for("u1", "hr_manager")
    assert [r.id for r in pending] == [request.id]


async def test_auto_approve_after_timeout(workflow, clock):
    flow = await workflow.create_flow(ApprovalFlow(
        name="Two step", request_type="hire_approval",
        steps=[step(1, "hr_manager"), step(2, "director")],
        escalation_rules=[EscalationRule(timeout_hours=24, action="auto_approve")],
    ))
    request = await workflow.create_request(
        candidate_id="cand-1", request_type="hire_approval", requested_value="hired",
        requested_by="recruiter-1", flow_id=flow.id,
    )

    clock.advance(hours=23)
    assert await workflow.escalate_overdue() == []

    clock.advance(hours=2)
    [outcome] = await workflow.escalate_overdue()
    assert outcome.action == "auto_approve"
    assert outcome.terminal_event is None

    current = await workflow.get(request.id)
    assert current.steps[0].status == "approved"
    assert current.steps[0].approved_by == SYSTEM_APPROVER
    assert current.current_step_index == 1
    assert current.steps[1].entered_at == clock.now()
    assert current.comments[-1].type == "escalation"


async def escalating_request(workflow, action, **rule_fields):
    flow = await workflow.create_flow(ApprovalFlow(
        name=action, request_type="salary_offer",
        steps=[step(1, "hr_manager", required=False), step(2, "director")],
        escalation_rules=[EscalationRule(timeout_hours=24, action=action, **rule_fields)],
    ))
    return await workflow.create_request(
        candidate_id="cand-1", request_type="salary_offer", requested_value="95000",
        requested_by="recruiter-1", flow_id=flow.id,
    )


async def test_reject_escalation_closes_request(workflow, clock):
    request = await escalating_request(workflow, "reject")
    clock.advance(hours=25)
    [outcome] = await workflow.escalate_overdue()

    assert outcome.terminal_event.outcome == "rejected"
    current = await workflow.get(request.id)
    assert current.status == "rejected"
    assert [s.status for s in current.steps] == ["rejected", "skipped"]


async def test_escalate_to_manager_reassigns_step(workflow, clock):
    request = await escalating_request(workflow, "escalate_to_manager", escalate_to_role="vp_talent")
    clock.advance(hours=25)
    [outcome] = await workflow.escalate_overdue()
    assert outcome.notify_recipients == ["vp_talent"]

    current = await workflow.get(request.id)
    assert current.status == "pending"
    assert current.steps[0].approver_ref == ["vp_talent"]
    assert current.steps[0].entered_at == clock.now()

    # each rule applies once per step
    clock.advance(hours=48)
    assert await workflow.escalate_overdue() == []
    result = await workflow.resolve_step(request.id, current.steps[0].id, "approved", "u7", "vp_talent")
    assert result.request.current_step_index == 1


async def test_notify_admin_keeps_request_pending(workflow, clock):
    request = await escalating_request(workflow, "notify_admin")
    clock.advance(hours=25)
    [outcome] = await workflow.escalate_overdue()
    assert outcome.notify_recipients == ["admin"]
    assert (await workflow.get(request.id)).status == "pending"


class ContendedApprovalStore(MemoryApprovalStore):
    """Loses every save of the listed requests to another writer."""

    def __init__(self):
        super().__init__()
        self.contended = set()

    async def save(self, request):
        if request.id in self.contended:
            return False
        return await super().save(request)


async def test_conflicting_escalation_does_not_stop_the_pass(clock):
    store = ContendedApprovalStore()
    workflow = ApprovalWorkflow(store, clock, admin_recipients=["admin"])
    first = await escalating_request(workflow, "notify_admin")
    second = await escalating_request(workflow, "notify_admin")
    store.contended.add(first.id)

    clock.advance(hours=25)
    [outcome] = await workflow.escalate_overdue()
    assert outcome.request_id == second.id
    assert (await workflow.get(first.id)).steps[0].escalation_level == 0

    store.contended.clear()
    [retried] = await workflow.escalate_overdue()
    assert retried.request_id == first.id
    assert len(workflow._locks) == 0
