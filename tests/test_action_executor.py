"""Action executor and collaborator client tests."""
import asyncio
from datetime import timedelta

import httpx
import pytest

from talentflow.errors import ActionExecutionError
from talentflow.models.event import ActionInvocation
from talentflow.models.rule import (
    AddNoteAction,
    AssignJobAction,
    ChangeStatusAction,
    RequestApprovalAction,
    SendNotificationAction,
)
from talentflow.models.status import CandidateStatus
from talentflow.services.collaborators import NotificationService, WebhookClient

from tests.conftest import transient


def invoke(clock, action, candidate_id="cand-1", index=0, depth=0):
    return ActionInvocation(
        rule_id="rule-1", rule_name="Test rule", candidate_id=candidate_id,
        triggered_at=clock.now(), action_index=index, action=action, cascade_depth=depth,
    )


@pytest.fixture
def executor(orchestrator):
    return orchestrator.executor


def test_backoff_doubles_up_to_the_cap(executor):
    assert executor.backoff(1) == timedelta(seconds=60)
    assert executor.backoff(2) == timedelta(seconds=120)
    assert executor.backoff(3) == timedelta(seconds=240)
    assert executor.backoff(5) == timedelta(seconds=600)


async def test_change_status_produces_cascade_event(orchestrator, executor, clock):
    await orchestrator.ledger.enroll("cand-1", changed_by="recruiter")
    result = await executor.execute(invoke(clock, ChangeStatusAction(target=CandidateStatus.EXAM), depth=2))

    assert result.status == "succeeded"
    assert result.record.source == "automated"
    assert result.record.automation_rule_id == "rule-1"
    assert result.cascade_event.to_status == CandidateStatus.EXAM
    assert result.cascade_event.cascade_depth == 3


async def test_same_invocation_executes_once(orchestrator, executor, clock, notifications):
    inv = invoke(clock, SendNotificationAction(template="t", recipients=["candidate"]))
    first = await executor.execute(inv)
    second = await executor.execute(inv)
    assert first.status == "succeeded"
    assert second.status == "skipped"
    assert len(notifications.sent) == 1


async def test_invalid_transition_is_not_retried(orchestrator, executor, clock):
    await orchestrator.ledger.enroll("cand-1", changed_by="recruiter")
    result = await executor.execute(invoke(clock, ChangeStatusAction(target=CandidateStatus.FOR_REVIEW)))

    assert result.status == "failed"
    assert result.retryable is False
    assert await orchestrator.scheduler.pending("cand-1") == []
    failures = await orchestrator.failures.list()
    assert [f.action_type for f in failures] == ["change_status"]


async def test_collaborator_actions_go_to_the_outbox(orchestrator, executor, clock, notifications):
    inv = invoke(clock, SendNotificationAction(template="welcome", recipients=["candidate"]))
    result = await executor.submit(inv)

    assert result.status == "scheduled"
    assert notifications.sent == []
    [job] = await orchestrator.scheduler.pending("cand-1")
    assert job.kind == "outbox"
    assert job.due_at == clock.now()


async def test_delayed_action_is_guarded_by_current_status(orchestrator, executor, clock):
    await orchestrator.ledger.enroll("cand-1", changed_by="recruiter")
    inv = invoke(clock, ChangeStatusAction(target=CandidateStatus.EXAM, delay=2, delay_unit="days"))
    result = await executor.submit(inv)

    assert result.status == "scheduled"
    [job] = await orchestrator.scheduler.pending("cand-1")
    assert job.kind == "delayed"
    assert job.due_at == clock.now() + timedelta(days=2)
    assert job.guard_status == CandidateStatus.FOR_REVIEW
    assert job.guard_sequence == 1


@pytest.mark.parametrize("action", [
    SendNotificationAction(template="", recipients=["candidate"]),
    SendNotificationAction(template="welcome", recipients=[]),
    AddNoteAction(text="   "),
    AssignJobAction(job_id=""),
    RequestApprovalAction(requested_value="hired"),
])
async def test_malformed_payload_fails_without_retry(orchestrator, executor, clock, action):
    result = await executor.submit(invoke(clock, action))
    assert result.status == "failed"
    assert result.retryable is False
    assert await orchestrator.scheduler.pending() == []
    assert len(await orchestrator.failures.list()) == 1


async def test_transient_failure_is_retried_with_backoff(orchestrator, executor, clock, notifications):
    notifications.errors.append(transient())
    inv = invoke(clock, SendNotificationAction(template="t", recipients=["candidate"]))
    result = await executor.execute(inv)

    assert result.status == "deferred"
    [job] = await orchestrator.scheduler.pending("cand-1")
    assert job.kind == "retry"
    assert job.attempt == 2
    assert job.due_at == clock.now() + timedelta(seconds=60)

    retried = await executor.execute(inv, attempt=2)
    assert retried.status == "succeeded"
    assert len(notifications.sent) == 1


async def test_retries_stop_at_max_attempts(orchestrator, executor, clock, notifications):
    notifications.errors.append(transient())
    inv = invoke(clock, SendNotificationAction(template="t", recipients=["candidate"]))
    result = await executor.execute(inv, attempt=3)

    assert result.status == "failed"
    assert result.retryable is True
    [failure] = await orchestrator.failures.list()
    assert failure.attempts == 3
    assert failure.key == inv.key


async def test_slow_collaborator_times_out_as_retryable(orchestrator, executor, clock, notifications):
    async def slow(*args):
        await asyncio.sleep(1)

    notifications.dispatch_notification = slow
    executor.timeout_seconds = 0.01
    result = await executor.execute(invoke(clock, SendNotificationAction(template="t", recipients=["x"])))
    assert result.status == "deferred"
    assert "timed out" in result.error


async def test_add_note_and_assign_job_write_candidate(orchestrator, executor, clock, candidates):
    await executor.execute(invoke(clock, AddNoteAction(text="Strong exam"), index=0))
    await executor.execute(invoke(clock, AssignJobAction(job_id="job-42"), index=1))
    candidate = candidates.candidates["cand-1"]
    assert candidate["notes"][0]["text"] == "Strong exam"
    assert candidate["notes"][0]["author"] == "rule:rule-1"
    assert candidate["job_id"] == "job-42"


async def test_request_approval_opens_request(orchestrator, executor, clock):
    action = RequestApprovalAction(
        requested_value="hired",
        steps=[{"approver_type": "role", "approver_ref": "hr_manager", "order": 1}],
    )
    result = await executor.execute(invoke(clock, action))
    request = await orchestrator.approvals.get(result.approval_request_id)
    assert request.requested_by == "rule:rule-1"
    assert request.steps[0].approver_ref == ["hr_manager"]


def client_for(status_code, body=None):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(status_code, json=body)
    return WebhookClient("http://delivery.test/notify", transport=httpx.MockTransport(handler))


async def test_webhook_success_returns_body():
    assert await client_for(200, {"delivery_id": "d-1"}).post({"template": "t"}) == {"delivery_id": "d-1"}


@pytest.mark.parametrize("status_code,retryable", [(503, True), (429, True), (400, False), (404, False)])
async def test_webhook_errors_are_classified(status_code, retryable):
    with pytest.raises(ActionExecutionError) as exc_info:
        await client_for(status_code, {"detail": "nope"}).post({})
    assert exc_info.value.retryable is retryable


async def test_webhook_unreachable_is_retryable():
    def handler(request):
        raise httpx.ConnectError("connection refused")
    client = WebhookClient("http://delivery.test/notify", transport=httpx.MockTransport(handler))
    with pytest.raises(ActionExecutionError) as exc_info:
        await client.post({})
    assert exc_info.value.retryable is True


async def test_notification_service_posts_payload():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(202, json={"delivery_id": "d-7"})

    service = NotificationService("http://delivery.test/notify")
    service.webhook = WebhookClient("http://delivery.test/notify", transport=httpx.MockTransport(handler))
    delivery_id = await service.dispatch_notification("offer", ["candidate"], {"candidate_id": "c1"})
    assert delivery_id == "d-7"
    assert seen[0].method == "POST"


async def test_notification_service_without_webhook_only_logs():
    assert await NotificationService("").dispatch_notification("offer", ["candidate"], {}) is None
