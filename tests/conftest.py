"""Shared fixtures: a manual clock and a memory-backed orchestrator."""
import pytest
from datetime import datetime, timedelta

from talentflow.config import Settings
from talentflow.errors import ActionExecutionError
from talentflow.models.rule import AutomationRule
from talentflow.services.bootstrap import build_orchestrator
from talentflow.services.collaborators import InterviewScheduler, MemoryCandidateStore, NotificationService
from talentflow.utils.clock import Clock


class ManualClock(Clock):
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = datetime(2024, 1, 15, 9, 0)):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, **kwargs):
        self.current += timedelta(**kwargs)


class RecordingNotifications(NotificationService):
    """Records notifications; queued errors are raised by the next calls."""

    def __init__(self):
        super().__init__("")
        self.sent = []
        self.errors = []

    async def dispatch_notification(self, template, recipients, context):
        if self.errors:
            raise self.errors.pop(0)
        self.sent.append({"template": template, "recipients": recipients, "context": context})
        return f"delivery-{len(self.sent)}"


class RecordingInterviews(InterviewScheduler):

    def __init__(self):
        super().__init__("")
        self.booked = []

    async def schedule_interview(self, candidate_id, details):
        self.booked.append((candidate_id, details))
        return f"interview-{len(self.booked)}"


def transient(message="delivery service unavailable"):
    return ActionExecutionError(message, retryable=True)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def notifications():
    return RecordingNotifications()


@pytest.fixture
def interviews():
    return RecordingInterviews()


@pytest.fixture
def candidates():
    store = MemoryCandidateStore()
    store.put("cand-1", name="John Doe", scores={"overall": 82, "technical": 90}, skills=["Python", "SQL"])
    store.put("cand-2", name="Alice Johnson", scores={"overall": 55}, skills=[])
    return store


@pytest.fixture
def test_settings():
    return Settings(
        storage_backend="memory",
        scheduler_enabled=False,
        max_action_attempts=3,
        retry_base_seconds=60,
        retry_max_seconds=600,
        collaborator_timeout_seconds=1,
        max_cascade_depth=4,
        default_manager_role="hiring_manager",
        admin_recipients="admin,hr_ops",
    )


@pytest.fixture
async def orchestrator(test_settings, clock, candidates, notifications, interviews):
    return await build_orchestrator(
        test_settings,
        clock=clock,
        candidates=candidates,
        notifications=notifications,
        interviews=interviews,
    )


@pytest.fixture
def make_rule():
    def _make(**fields):
        fields.setdefault("name", "Test rule")
        return AutomationRule(**fields)
    return _make
