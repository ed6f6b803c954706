"""Rule repository and matching tests."""
import pytest

from talentflow.errors import InvalidRuleError, RuleNotFoundError
from talentflow.models.event import (
    ApprovalResolvedEvent,
    ResumeUploadedEvent,
    ScoreUpdatedEvent,
    StatusChangeEvent,
    TimeElapsedEvent,
)
from talentflow.models.rule import (
    AddNoteAction,
    ApprovalResolvedTrigger,
    ChangeStatusAction,
    Condition,
    ResumeUploadedTrigger,
    ScoreThresholdTrigger,
    SendNotificationAction,
    StatusChangeTrigger,
    TimeElapsedTrigger,
)
from talentflow.models.status import CandidateStatus
from talentflow.services.rule_engine import RuleEngine, RuleRepository
from talentflow.stores.memory import MemoryRuleStore


@pytest.fixture
async def repository():
    repo = RuleRepository(MemoryRuleStore())
    await repo.load()
    return repo


@pytest.fixture
def engine(repository):
    return RuleEngine(repository)


def to_exam(clock, candidate_id="c1"):
    return StatusChangeEvent(
        candidate_id=candidate_id,
        occurred_at=clock.now(),
        from_status=CandidateStatus.PAPER_SCREENING,
        to_status=CandidateStatus.EXAM,
    )


async def test_status_change_rule_emits_actions_in_order(repository, engine, make_rule, clock):
    rule = await repository.create(make_rule(
        trigger=StatusChangeTrigger(to_status=CandidateStatus.EXAM),
        actions=[
            SendNotificationAction(template="exam_invite", recipients=["candidate"]),
            AddNoteAction(text="Exam sent"),
        ],
    ))
    invocations = engine.on_event(to_exam(clock), {"status": "exam"})

    assert [inv.action.type for inv in invocations] == ["send_notification", "add_note"]
    assert [inv.action_index for inv in invocations] == [0, 1]
    assert all(inv.rule_id == rule.id for inv in invocations)
    assert invocations[0].triggered_at == clock.now()
    assert invocations[0].key != invocations[1].key


async def test_from_status_must_match(repository, engine, make_rule, clock):
    await repository.create(make_rule(
        trigger=StatusChangeTrigger(from_status=CandidateStatus.HR_INTERVIEW, to_status=CandidateStatus.EXAM),
        actions=[AddNoteAction(text="x")],
    ))
    assert engine.on_event(to_exam(clock), {}) == []


async def test_inactive_rule_never_matches(repository, engine, make_rule, clock):
    rule = await repository.create(make_rule(
        trigger=StatusChangeTrigger(to_status=CandidateStatus.EXAM),
        actions=[AddNoteAction(text="x")],
    ))
    await repository.toggle(rule.id, False)
    assert engine.on_event(to_exam(clock), {}) == []

    await repository.toggle(rule.id, True)
    assert len(engine.on_event(to_exam(clock), {})) == 1


async def test_rules_matched_in_creation_order(repository, engine, make_rule, clock):
    first = await repository.create(make_rule(
        name="first", trigger=StatusChangeTrigger(to_status=CandidateStatus.EXAM),
        actions=[AddNoteAction(text="a")],
    ))
    second = await repository.create(make_rule(
        name="second", trigger=StatusChangeTrigger(), actions=[AddNoteAction(text="b")],
    ))
    invocations = engine.on_event(to_exam(clock), {})
    assert [inv.rule_id for inv in invocations] == [first.id, second.id]


async def test_conditions_gate_the_rule(repository, engine, make_rule, clock):
    await repository.create(make_rule(
        trigger=StatusChangeTrigger(to_status=CandidateStatus.EXAM),
        conditions=[Condition(field="score", operator="greater_than", value=70)],
        actions=[AddNoteAction(text="strong")],
    ))
    assert len(engine.on_event(to_exam(clock), {"scores": {"overall": 82}})) == 1
    assert engine.on_event(to_exam(clock), {"scores": {"overall": 60}}) == []


async def test_unevaluable_condition_skips_only_that_rule(repository, engine, make_rule, clock):
    await repository.create(make_rule(
        name="broken", trigger=StatusChangeTrigger(),
        conditions=[Condition(field="missing_field", operator="greater_than", value=1)],
        actions=[AddNoteAction(text="never")],
    ))
    healthy = await repository.create(make_rule(
        name="healthy", trigger=StatusChangeTrigger(), actions=[AddNoteAction(text="ok")],
    ))
    invocations = engine.on_event(to_exam(clock), {})
    assert [inv.rule_id for inv in invocations] == [healthy.id]


async def test_score_threshold_trigger(repository, engine, make_rule, clock):
    await repository.create(make_rule(
        trigger=ScoreThresholdTrigger(score_type="technical", operator="greater_than", threshold=85),
        actions=[ChangeStatusAction(target=CandidateStatus.TECHNICAL_INTERVIEW)],
    ))
    high = ScoreUpdatedEvent(candidate_id="c1", score_type="technical", value=91)
    low = ScoreUpdatedEvent(candidate_id="c1", score_type="technical", value=70)
    other = ScoreUpdatedEvent(candidate_id="c1", score_type="overall", value=99)
    assert len(engine.on_event(high, {})) == 1
    assert engine.on_event(low, {}) == []
    assert engine.on_event(other, {}) == []


async def test_time_elapsed_event_targets_one_rule(repository, engine, make_rule, clock):
    slow = await repository.create(make_rule(
        trigger=TimeElapsedTrigger(value=7, unit="days"), actions=[AddNoteAction(text="stale")],
    ))
    other = await repository.create(make_rule(
        trigger=TimeElapsedTrigger(value=1, unit="days"), actions=[AddNoteAction(text="nudge")],
    ))
    event = TimeElapsedEvent(
        candidate_id="c1", rule_id=slow.id, status=CandidateStatus.EXAM,
        since=clock.now(), elapsed_seconds=8 * 86400,
    )
    assert [inv.rule_id for inv in engine.on_event(event, {})] == [slow.id]
    assert other.id != slow.id


async def test_approval_resolved_trigger_filters_outcome(repository, engine, make_rule):
    await repository.create(make_rule(
        trigger=ApprovalResolvedTrigger(request_type="hire_approval", outcome="approved"),
        actions=[ChangeStatusAction(target=CandidateStatus.HIRED)],
    ))
    approved = ApprovalResolvedEvent(candidate_id="c1", request_id="r1",
                                     request_type="hire_approval", outcome="approved")
    rejected = ApprovalResolvedEvent(candidate_id="c1", request_id="r1",
                                     request_type="hire_approval", outcome="rejected")
    assert len(engine.on_event(approved, {})) == 1
    assert engine.on_event(rejected, {}) == []


async def test_rules_only_see_their_own_event_type(repository, engine, make_rule):
    await repository.create(make_rule(trigger=ResumeUploadedTrigger(), actions=[AddNoteAction(text="cv")]))
    assert len(engine.on_event(ResumeUploadedEvent(candidate_id="c1"), {})) == 1
    assert engine.on_event(ScoreUpdatedEvent(candidate_id="c1", value=50), {}) == []


async def test_update_and_delete(repository, make_rule):
    rule = await repository.create(make_rule(trigger=StatusChangeTrigger()))
    updated = await repository.update(rule.id, {"name": "Renamed"})
    assert updated.name == "Renamed"
    assert updated.created_at == rule.created_at
    assert repository.get(rule.id).name == "Renamed"

    await repository.delete(rule.id)
    with pytest.raises(RuleNotFoundError):
        repository.get(rule.id)
    with pytest.raises(RuleNotFoundError):
        await repository.delete(rule.id)


@pytest.mark.parametrize("changes", [
    {"name": None},
    {"trigger": {"type": "no_such_trigger"}},
])
async def test_invalid_update_leaves_rule_unchanged(repository, make_rule, changes):
    rule = await repository.create(make_rule(name="Original", trigger=StatusChangeTrigger()))
    with pytest.raises(InvalidRuleError):
        await repository.update(rule.id, changes)
    assert repository.get(rule.id).name == "Original"


async def test_rules_survive_reload(make_rule):
    store = MemoryRuleStore()
    first = RuleRepository(store)
    await first.load()
    rule = await first.create(make_rule(trigger=StatusChangeTrigger()))

    second = RuleRepository(store)
    await second.load()
    assert [r.id for r in second.list()] == [rule.id]
    assert second.active_for("status_change")[0].id == rule.id
