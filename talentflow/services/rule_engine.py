"""Rule repository and event-to-action matching."""
import asyncio
import copy
import logging
from datetime import datetime
from typing import Callable, Dict, List, Mapping, Optional

from pydantic import ValidationError

from talentflow.errors import ConditionEvaluationError, InvalidRuleError, RuleNotFoundError
from talentflow.models.event import ActionInvocation
from talentflow.models.rule import (
    ApprovalResolvedTrigger,
    AutomationRule,
    InterviewCompletedTrigger,
    ResumeUploadedTrigger,
    ScoreThresholdTrigger,
    StatusChangeTrigger,
    TimeElapsedTrigger,
    Trigger,
    variant_types,
)
from talentflow.services.condition_evaluator import check, compare
from talentflow.stores.base import RuleStore

logger = logging.getLogger(__name__)


# Event type each trigger kind listens to
TRIGGER_EVENT_TYPES = {
    StatusChangeTrigger: "status_change",
    TimeElapsedTrigger: "time_elapsed",
    ScoreThresholdTrigger: "score_updated",
    InterviewCompletedTrigger: "interview_completed",
    ResumeUploadedTrigger: "resume_uploaded",
    ApprovalResolvedTrigger: "approval_resolved",
}


class RuleRepository:
    """The organization's rule set, indexed by the event type each rule listens to.

    Rules are held in memory and written through to the store on every
    mutation. Evaluation only ever reads the index, so an update applies to
    events dispatched after it.
    """

    def __init__(self, store: RuleStore):
        self.store = store
        self._rules: Dict[str, AutomationRule] = {}
        self._index: Dict[str, tuple] = {}
        self._lock = asyncio.Lock()

    async def load(self):
        rules = await self.store.load_all()
        self._rules = {rule.id: rule for rule in rules}
        self._reindex()
        logger.info("Loaded %d automation rules", len(self._rules))

    def _reindex(self):
        index: Dict[str, list] = {}
        for rule in self._rules.values():
            if rule.is_active:
                index.setdefault(TRIGGER_EVENT_TYPES[type(rule.trigger)], []).append(rule)
        self._index = {event_type: tuple(rules) for event_type, rules in index.items()}

    def get(self, rule_id: str) -> AutomationRule:
        rule = self._rules.get(rule_id)
        if rule is None:
            raise RuleNotFoundError(f"Rule {rule_id} not found")
        return rule

    def list(self) -> List[AutomationRule]:
        return list(self._rules.values())

    def active_for(self, event_type: str) -> tuple:
        """Active rules whose trigger listens to `event_type`, in creation order."""
        return self._index.get(event_type, ())

    async def create(self, rule: AutomationRule) -> AutomationRule:
        async with self._lock:
            await self.store.save(rule)
            self._rules[rule.id] = rule
            self._reindex()
        logger.info("Rule %s (%s) created", rule.id, rule.name)
        return rule

    async def update(self, rule_id: str, changes: dict) -> AutomationRule:
        async with self._lock:
            current = self.get(rule_id)
            data = current.model_dump()
            data.update(changes)
            data["id"] = rule_id
            data["created_at"] = current.created_at
            data["updated_at"] = datetime.utcnow()
            try:
                rule = AutomationRule(**data)
            except ValidationError as e:
                raise InvalidRuleError(f"Rule {rule_id} update rejected: {e}")
            await self.store.save(rule)
            self._rules[rule_id] = rule
            self._reindex()
        logger.info("Rule %s (%s) updated", rule_id, rule.name)
        return rule

    async def toggle(self, rule_id: str, is_active: bool) -> AutomationRule:
        rule = await self.update(rule_id, {"is_active": is_active})
        logger.info("Rule %s %s", rule_id, "activated" if is_active else "deactivated")
        return rule

    async def delete(self, rule_id: str):
        async with self._lock:
            self.get(rule_id)
            await self.store.delete(rule_id)
            del self._rules[rule_id]
            self._reindex()
        logger.info("Rule %s deleted", rule_id)


def _match_status_change(rule, trigger: StatusChangeTrigger, event) -> bool:
    return (
        (trigger.from_status is None or trigger.from_status == event.from_status)
        and (trigger.to_status is None or trigger.to_status == event.to_status)
    )


def _match_time_elapsed(rule, trigger: TimeElapsedTrigger, event) -> bool:
    if event.rule_id is not None and event.rule_id != rule.id:
        return False
    return event.elapsed_seconds >= trigger.threshold.total_seconds()


def _match_score_threshold(rule, trigger: ScoreThresholdTrigger, event) -> bool:
    if trigger.score_type != event.score_type:
        return False
    try:
        return compare(event.value, trigger.operator, trigger.threshold)
    except ConditionEvaluationError:
        return False


def _match_always(rule, trigger, event) -> bool:
    return True


def _match_approval_resolved(rule, trigger: ApprovalResolvedTrigger, event) -> bool:
    return (
        (trigger.request_type is None or trigger.request_type == event.request_type)
        and (trigger.outcome is None or trigger.outcome == event.outcome)
    )


_MATCHERS: Dict[type, Callable] = {
    StatusChangeTrigger: _match_status_change,
    TimeElapsedTrigger: _match_time_elapsed,
    ScoreThresholdTrigger: _match_score_threshold,
    InterviewCompletedTrigger: _match_always,
    ResumeUploadedTrigger: _match_always,
    ApprovalResolvedTrigger: _match_approval_resolved,
}

_unhandled = set(variant_types(Trigger)) - set(_MATCHERS)
if _unhandled:
    raise TypeError(f"No matcher for trigger types: {sorted(t.__name__ for t in _unhandled)}")


class RuleEngine:
    """Matches events against active rules and emits their actions."""

    def __init__(self, repository: RuleRepository):
        self.repository = repository

    def matching_rules(self, event, snapshot: Mapping) -> List[AutomationRule]:
        """Active rules whose trigger and conditions hold for this event."""
        matched = []
        for rule in self.repository.active_for(event.type):
            if not _MATCHERS[type(rule.trigger)](rule, rule.trigger, event):
                continue
            # Each rule sees its own copy, so no rule can observe another's edits
            if self._conditions_hold(rule, event.candidate_id, copy.deepcopy(dict(snapshot))):
                matched.append(rule)
        return matched

    def _conditions_hold(self, rule: AutomationRule, candidate_id: str, snapshot: dict) -> bool:
        for condition in rule.conditions:
            try:
                if not check(condition, snapshot):
                    logger.debug("Rule %s: condition on '%s' not met for candidate %s",
                                 rule.id, condition.field, candidate_id)
                    return False
            except ConditionEvaluationError as e:
                logger.warning("Rule %s skipped for candidate %s: %s", rule.id, candidate_id, e)
                return False
        return True

    def on_event(self, event, snapshot: Mapping, triggered_at: Optional[datetime] = None) -> List[ActionInvocation]:
        """Actions of every matching rule, rule by rule in declaration order."""
        triggered_at = triggered_at or event.occurred_at
        invocations = []
        for rule in self.matching_rules(event, snapshot):
            logger.info("Rule %s (%s) matched %s for candidate %s",
                        rule.id, rule.name, event.type, event.candidate_id)
            for index, action in enumerate(rule.actions):
                invocations.append(ActionInvocation(
                    rule_id=rule.id,
                    rule_name=rule.name,
                    candidate_id=event.candidate_id,
                    triggered_at=triggered_at,
                    action_index=index,
                    action=action,
                    event_id=event.event_id,
                    cascade_depth=event.cascade_depth,
                ))
        return invocations
