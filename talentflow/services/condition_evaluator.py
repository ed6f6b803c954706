"""Pure evaluation of rule conditions against a candidate snapshot."""
from typing import Any, Mapping

from talentflow.errors import ConditionEvaluationError
from talentflow.models.rule import Condition


# Short names used by rule authors
FIELD_ALIASES = {
    "score": "scores.overall",
    "technical_score": "scores.technical",
    "communication_score": "scores.communication",
}

_MISSING = object()


def _derived(snapshot: Mapping, field: str) -> Any:
    if field == "skill_count" and isinstance(snapshot.get("skills"), list):
        return len(snapshot["skills"])
    return _MISSING


def resolve_field(snapshot: Mapping, field: str) -> Any:
    """Look up a (possibly dotted) field, raising if it is absent."""
    path = FIELD_ALIASES.get(field, field)
    value: Any = snapshot
    for part in path.split("."):
        if isinstance(value, Mapping) and part in value:
            value = value[part]
        else:
            value = _MISSING
            break
    if value is _MISSING:
        value = _derived(snapshot, field)
    if value is _MISSING:
        raise ConditionEvaluationError(f"Unknown field '{field}'")
    return value


def _as_number(value: Any) -> float:
    if isinstance(value, bool):
        raise ConditionEvaluationError(f"Expected a number, got boolean {value!r}")
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value)
        except ValueError:
            pass
    raise ConditionEvaluationError(f"Expected a number, got {value!r}")


def _text(value: Any) -> str:
    if hasattr(value, "value"):       # enums
        value = value.value
    return str(value).strip().lower()


def compare(actual: Any, operator: str, expected: Any) -> bool:
    """Apply a comparison operator, raising ConditionEvaluationError on type mismatch."""
    if operator == "greater_than":
        return _as_number(actual) > _as_number(expected)
    if operator == "less_than":
        return _as_number(actual) < _as_number(expected)
    if operator == "equals":
        if isinstance(actual, (int, float)) and not isinstance(actual, bool):
            return float(actual) == _as_number(expected)
        return _text(actual) == _text(expected)
    if operator == "contains":
        needle = _text(expected)
        if isinstance(actual, str):
            return needle in actual.lower()
        if isinstance(actual, (list, tuple, set)):
            for item in actual:
                if isinstance(item, Mapping):
                    item = item.get("name", item.get("skill_name", ""))
                if _text(item) == needle:
                    return True
            return False
        raise ConditionEvaluationError(f"Cannot test membership in {type(actual).__name__}")
    raise ConditionEvaluationError(f"Unknown operator '{operator}'")


def check(condition: Condition, snapshot: Mapping) -> bool:
    """Evaluate a condition, raising ConditionEvaluationError on mismatch."""
    return compare(resolve_field(snapshot, condition.field), condition.operator, condition.value)


def evaluate(condition: Condition, snapshot: Mapping) -> bool:
    """Total form of `check`: any evaluation error reads as False."""
    try:
        return check(condition, snapshot)
    except ConditionEvaluationError:
        return False
