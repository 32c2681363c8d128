from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from core.criteria import Condition, Group, Node, parse_criteria
from core.fields import FieldDefinition, definition_for
from core.models import MediaItem
from core.utils import parse_datetime, to_float, utcnow


class _Missing:
    def __repr__(self) -> str:
        return 'MISSING'


# Field could not be resolved: namespace absent (integration unconfigured or no match) or key unknown
MISSING = _Missing()

_DAY = 86400.0
_TIME_UNIT_SECONDS = {
    'hours': 3600.0,
    'days': _DAY,
    'weeks': 7 * _DAY,
    'months': 30 * _DAY,
    'years': 365 * _DAY,
}
_SIZE_UNIT_BYTES = {'MB': 1024 ** 2, 'GB': 1024 ** 3, 'TB': 1024 ** 4}


@dataclass
class ConditionResult:
    condition_id: str
    field: str
    operator: str
    expected: Any
    actual: Any
    matched: bool

    def to_dict(self) -> Dict[str, Any]:
        actual = None if self.actual is MISSING else self.actual
        if isinstance(actual, datetime):
            actual = actual.isoformat()
        return {
            'conditionId': self.condition_id,
            'field': self.field,
            'operator': self.operator,
            'expected': self.expected,
            'actual': actual,
            'matched': self.matched,
        }


@dataclass
class EvaluationTrace:
    matches: bool
    condition_results: List[ConditionResult] = field(default_factory=list)


def _days_since(value: Any, now: datetime) -> Optional[int]:
    dt = parse_datetime(value)
    if dt is None:
        return None
    return int((now - dt).total_seconds() // _DAY)


_COMPUTED: Dict[str, Callable[[MediaItem, datetime], Any]] = {
    'neverWatched': lambda item, now: int(item.play_count or 0) == 0,
    'daysSinceAdded': lambda item, now: _days_since(item.added_at, now),
    'daysSinceWatched': lambda item, now: _days_since(item.last_watched_at, now),
}


def resolve_field(item: MediaItem, fdef: FieldDefinition, now: datetime) -> Any:
    if fdef.computed:
        resolver = _COMPUTED.get(fdef.key)
        return resolver(item, now) if resolver else MISSING
    if fdef.namespace is not None:
        ns = getattr(item, fdef.namespace, None)
        if not isinstance(ns, dict) or fdef.attr not in ns:
            return MISSING
        return ns[fdef.attr]
    return getattr(item, fdef.attr, MISSING)


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ('true', '1', 'yes')
    return bool(value)


def _compare_string(value: Any, op: str, expected: Any) -> bool:
    text = str(value)
    if op == 'equals':
        return text == str(expected)
    if op == 'notEquals':
        return text != str(expected)
    if op in ('in', 'notIn'):
        members = [str(e) for e in (expected or [])]
        return (text in members) if op == 'in' else (text not in members)
    if op == 'regex':
        try:
            return re.search(str(expected), text, re.IGNORECASE) is not None
        except re.error:
            return False
    lowered = text.lower()
    needle = str(expected).lower()
    if op == 'contains':
        return needle in lowered
    if op == 'notContains':
        return needle not in lowered
    if op == 'startsWith':
        return lowered.startswith(needle)
    if op == 'endsWith':
        return lowered.endswith(needle)
    return False


def _scaled(expected: Any, unit: Optional[str]) -> Optional[float]:
    num = to_float(expected)
    if num is None:
        return None
    return num * _SIZE_UNIT_BYTES.get(unit or '', 1)


def _compare_number(value: Any, op: str, expected: Any, unit: Optional[str]) -> bool:
    num = to_float(value)
    if num is None:
        return False
    if op in ('in', 'notIn'):
        members = [_scaled(e, unit) for e in (expected or [])]
        return (num in members) if op == 'in' else (num not in members)
    if op == 'between':
        lo, hi = (_scaled(v, unit) for v in expected)
        if lo is None or hi is None:
            return False
        return lo <= num <= hi
    target = _scaled(expected, unit)
    if target is None:
        return False
    if op == 'equals':
        return num == target
    if op == 'notEquals':
        return num != target
    if op == 'greaterThan':
        return num > target
    if op == 'greaterThanOrEqual':
        return num >= target
    if op == 'lessThan':
        return num < target
    if op == 'lessThanOrEqual':
        return num <= target
    return False


def _threshold(amount: Any, unit: Optional[str], now: datetime) -> Optional[datetime]:
    seconds = _TIME_UNIT_SECONDS.get(unit or 'days')
    num = to_float(amount)
    if seconds is None or num is None or math.isnan(num):
        return None
    return now - timedelta(seconds=num * seconds)


def _compare_date(value: Any, op: str, expected: Any, unit: Optional[str], now: datetime) -> bool:
    dt = parse_datetime(value)
    if dt is None:
        return False
    if op in ('olderThan', 'newerThan'):
        limit = _threshold(expected, unit, now)
        if limit is None:
            return False
        return dt < limit if op == 'olderThan' else dt > limit
    if op == 'between':
        start, end = (parse_datetime(v) for v in expected)
        if start is None or end is None:
            return False
        return start <= dt <= end
    other = parse_datetime(expected)
    if other is None:
        return False
    if op == 'before':
        return dt < other
    if op == 'after':
        return dt > other
    return False


def _compare_array(value: Any, op: str, expected: Any) -> bool:
    if not isinstance(value, (list, tuple, set)):
        return False
    if op == 'isEmpty':
        return len(value) == 0
    if op == 'isNotEmpty':
        return len(value) > 0
    if op == 'contains':
        return expected in value
    if op == 'notContains':
        return expected not in value
    wanted = expected if isinstance(expected, (list, tuple, set)) else [expected]
    if op == 'containsAny':
        return any(w in value for w in wanted)
    if op == 'containsAll':
        return all(w in value for w in wanted)
    return False


def _apply(fdef: FieldDefinition, cond: Condition, value: Any, now: datetime) -> bool:
    op = cond.operator
    if op == 'null':
        return value is MISSING or value is None
    if op == 'notNull':
        return value is not MISSING and value is not None
    if value is MISSING:
        return False
    if value is None:
        # A present-but-empty date counts as infinitely old
        return fdef.type == 'date' and op == 'olderThan'
    try:
        if fdef.type in ('string', 'enum'):
            return _compare_string(value, op, cond.value)
        if fdef.type == 'number':
            return _compare_number(value, op, cond.value, cond.value_unit)
        if fdef.type == 'date':
            return _compare_date(value, op, cond.value, cond.value_unit, now)
        if fdef.type == 'boolean':
            if op == 'equals':
                return bool(value) == _as_bool(cond.value)
            if op == 'notEquals':
                return bool(value) != _as_bool(cond.value)
            return False
        if fdef.type == 'array':
            return _compare_array(value, op, cond.value)
    except Exception:
        return False
    return False


def evaluate_condition(item: MediaItem, cond: Condition, now: datetime) -> ConditionResult:
    fdef = definition_for(cond.field)
    if fdef is None:
        return ConditionResult(cond.id, cond.field, cond.operator, cond.value, MISSING, False)
    value = resolve_field(item, fdef, now)
    matched = _apply(fdef, cond, value, now)
    return ConditionResult(cond.id, cond.field, cond.operator, cond.value, value, matched)


def _coerce_criteria(criteria: Any) -> Node:
    if isinstance(criteria, (Group, Condition)):
        return criteria
    return parse_criteria(criteria)


def _evaluate_node(item: MediaItem, node: Node, now: datetime) -> bool:
    if isinstance(node, Condition):
        return evaluate_condition(item, node, now).matched
    if not node.conditions:
        return False
    if node.operator == 'OR':
        return any(_evaluate_node(item, c, now) for c in node.conditions)
    return all(_evaluate_node(item, c, now) for c in node.conditions)


def evaluate(item: MediaItem, criteria: Any, now: Optional[datetime] = None) -> bool:
    return _evaluate_node(item, _coerce_criteria(criteria), now or utcnow())


def evaluate_with_trace(item: MediaItem, criteria: Any, now: Optional[datetime] = None) -> EvaluationTrace:
    """Evaluates every condition, without short-circuiting, so the trace holds one result per leaf."""
    now = now or utcnow()
    results: List[ConditionResult] = []

    def _walk(node: Node) -> bool:
        if isinstance(node, Condition):
            res = evaluate_condition(item, node, now)
            results.append(res)
            return res.matched
        outcomes = [_walk(c) for c in node.conditions]
        if not outcomes:
            return False
        return any(outcomes) if node.operator == 'OR' else all(outcomes)

    matches = _walk(_coerce_criteria(criteria))
    return EvaluationTrace(matches=matches, condition_results=results)
