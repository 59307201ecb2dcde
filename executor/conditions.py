import logging
from typing import Any, Dict, Iterable, Optional

from models.workflow import ConditionOperator, TriggerCondition

logger = logging.getLogger("automation_service")

_MISSING = object()


def lookup(context: Dict[str, Any], path: str) -> Any:
    """Follows a dotted path (`job.status`) through nested dicts."""
    current: Any = context
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return _MISSING
    return current


def _as_text(value: Any) -> str:
    return str(value).strip().lower()


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _compare(actual: Any, operator: str, expected: Any) -> bool:
    if operator == ConditionOperator.EQUALS.value:
        return _as_text(actual) == _as_text(expected)
    if operator == ConditionOperator.NOT_EQUALS.value:
        return _as_text(actual) != _as_text(expected)
    if operator == ConditionOperator.CONTAINS.value:
        return _as_text(expected) in _as_text(actual)
    if operator in (ConditionOperator.GREATER_THAN.value, ConditionOperator.LESS_THAN.value):
        left, right = _as_number(actual), _as_number(expected)
        if left is None or right is None:
            return False
        return left > right if operator == ConditionOperator.GREATER_THAN.value else left < right
    if operator == ConditionOperator.IN.value:
        options = expected.split(",") if isinstance(expected, str) else (expected or [])
        return _as_text(actual) in {_as_text(o) for o in options}
    logger.warning(f"Unknown condition operator '{operator}', treating as no match")
    return False


def condition_matches(condition: TriggerCondition, context: Dict[str, Any]) -> bool:
    actual = lookup(context, condition.field)
    if actual is _MISSING or actual is None:
        # Absent fields only satisfy "not equal to something".
        return condition.operator == ConditionOperator.NOT_EQUALS.value and condition.value is not None
    return _compare(actual, condition.operator, condition.value)


def evaluate_conditions(conditions: Iterable[TriggerCondition], context: Dict[str, Any]) -> bool:
    """AND of every condition. An empty list always matches."""
    return all(condition_matches(c, context) for c in conditions)
