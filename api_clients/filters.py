from enum import Enum
from typing import Any, Dict, Iterable, List, Tuple

# (column, operator, value)
Filter = Tuple[str, str, Any]

OPERATORS = ("eq", "neq", "lt", "lte", "gt", "gte", "in", "is")


def _plain(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return value


def _compare(actual: Any, op: str, expected: Any) -> bool:
    if op == "is":
        return actual is None if expected is None else actual == expected
    if op == "in":
        return actual in [_plain(v) for v in expected]
    if op == "eq":
        return actual == expected
    if op == "neq":
        return actual != expected
    # Range operators never match NULL, same as SQL.
    if actual is None or expected is None:
        return False
    if op == "lt":
        return actual < expected
    if op == "lte":
        return actual <= expected
    if op == "gt":
        return actual > expected
    if op == "gte":
        return actual >= expected
    raise ValueError(f"Unsupported filter operator: {op}")


def row_matches(row: Dict[str, Any], filters: Iterable[Filter]) -> bool:
    for column, op, value in filters or []:
        if not _compare(_plain(row.get(column)), op, _plain(value)):
            return False
    return True


def validate_filters(filters: Iterable[Filter]) -> List[Filter]:
    checked = []
    for column, op, value in filters or []:
        if op not in OPERATORS:
            raise ValueError(f"Unsupported filter operator: {op}")
        if op == "in" and not isinstance(value, (list, tuple, set)):
            raise ValueError(f"Filter '{column}=in' needs a list value")
        checked.append((column, op, _plain(value)))
    return checked
