from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterator, List, Optional, Union

from core.fields import definition_for
from core.models import MediaType
from core.utils import new_id


TIME_UNITS = ('hours', 'days', 'weeks', 'months', 'years')
SIZE_UNITS = ('MB', 'GB', 'TB')
GROUP_OPERATORS = ('AND', 'OR')

# Ascending order used when migrating a legacy "maxQuality" cap
RESOLUTION_ORDER = ('sd', '720', '1080', '4k')

_LIST_OPERATORS = ('in', 'notIn', 'containsAny', 'containsAll')
_NO_VALUE_OPERATORS = ('null', 'notNull', 'isEmpty', 'isNotEmpty')


@dataclass
class Condition:
    field: str
    operator: str
    value: Any = None
    value_unit: Optional[str] = None
    id: str = field(default_factory=new_id)


@dataclass
class Group:
    operator: str = 'AND'
    conditions: List['Node'] = field(default_factory=list)
    id: str = field(default_factory=new_id)


Node = Union[Condition, Group]


def parse_criteria(data: Any) -> Group:
    """Builds a criteria tree from its persisted dict form.

    Flat legacy criteria (no ``type`` discriminator) are migrated first. A bare
    condition at the root is wrapped in an AND group.
    """
    if isinstance(data, (Group, Condition)):
        node = data
    elif not isinstance(data, dict):
        raise ValueError(f'criteria must be an object, got {type(data).__name__}')
    elif 'type' not in data:
        return migrate_legacy_criteria(data)
    else:
        node = _parse_node(data, 'root')
    if isinstance(node, Condition):
        return Group(operator='AND', conditions=[node])
    return node


def _parse_node(data: Any, path: str) -> Node:
    if not isinstance(data, dict):
        raise ValueError(f'{path}: expected an object')
    kind = data.get('type')
    if kind == 'condition':
        if not data.get('field') or not data.get('operator'):
            raise ValueError(f'{path}: condition requires field and operator')
        return Condition(
            id=str(data.get('id') or new_id()),
            field=str(data['field']),
            operator=str(data['operator']),
            value=data.get('value'),
            value_unit=data.get('valueUnit'),
        )
    if kind == 'group':
        op = str(data.get('operator') or 'AND').upper()
        if op not in GROUP_OPERATORS:
            raise ValueError(f'{path}: unknown group operator {op}')
        children = data.get('conditions') or []
        if not isinstance(children, list):
            raise ValueError(f'{path}: conditions must be a list')
        return Group(
            id=str(data.get('id') or new_id()),
            operator=op,
            conditions=[_parse_node(c, f'{path}.conditions[{i}]') for i, c in enumerate(children)],
        )
    raise ValueError(f'{path}: unknown node type {kind!r}')


def criteria_to_dict(node: Node) -> Dict[str, Any]:
    if isinstance(node, Condition):
        out: Dict[str, Any] = {
            'type': 'condition',
            'id': node.id,
            'field': node.field,
            'operator': node.operator,
            'value': node.value,
        }
        if node.value_unit:
            out['valueUnit'] = node.value_unit
        return out
    return {
        'type': 'group',
        'id': node.id,
        'operator': node.operator,
        'conditions': [criteria_to_dict(c) for c in node.conditions],
    }


def iter_conditions(node: Node) -> Iterator[Condition]:
    if isinstance(node, Condition):
        yield node
        return
    for child in node.conditions:
        yield from iter_conditions(child)


def _size_to_bytes(value: Any, unit: Optional[str]) -> Any:
    scale = {'MB': 1024 ** 2, 'GB': 1024 ** 3, 'TB': 1024 ** 4}.get(unit or 'MB', 1024 ** 2)
    try:
        return int(float(value) * scale)
    except (TypeError, ValueError, OverflowError):
        return value


def migrate_legacy_criteria(legacy: Dict[str, Any]) -> Group:
    conditions: List[Node] = []
    if legacy.get('neverWatched') is not None:
        conditions.append(Condition('neverWatched', 'equals', bool(legacy['neverWatched'])))
    lwb = legacy.get('lastWatchedBefore')
    if isinstance(lwb, dict) and lwb.get('value') is not None:
        conditions.append(Condition('lastWatchedAt', 'olderThan', lwb['value'], lwb.get('unit') or 'days'))
    if legacy.get('maxPlayCount') is not None:
        conditions.append(Condition('playCount', 'lessThanOrEqual', legacy['maxPlayCount']))
    ab = legacy.get('addedBefore')
    if isinstance(ab, dict) and ab.get('value') is not None:
        conditions.append(Condition('addedAt', 'olderThan', ab['value'], ab.get('unit') or 'days'))
    mfs = legacy.get('minFileSize')
    if isinstance(mfs, dict) and mfs.get('value') is not None:
        conditions.append(Condition('fileSize', 'greaterThanOrEqual', _size_to_bytes(mfs['value'], mfs.get('unit'))))
    max_quality = str(legacy.get('maxQuality') or '').lower()
    if max_quality in RESOLUTION_ORDER:
        allowed = list(RESOLUTION_ORDER[: RESOLUTION_ORDER.index(max_quality) + 1])
        conditions.append(Condition('resolution', 'in', allowed))
    if legacy.get('maxRating') is not None:
        conditions.append(Condition('rating', 'lessThanOrEqual', legacy['maxRating']))
    if legacy.get('libraryIds'):
        conditions.append(Condition('libraryId', 'in', [str(x) for x in legacy['libraryIds']]))
    if legacy.get('tags'):
        conditions.append(Condition('labels', 'containsAny', list(legacy['tags'])))
    if not conditions:
        conditions.append(Condition('neverWatched', 'equals', True))
    op = str(legacy.get('operator') or 'AND').upper()
    return Group(operator=op if op in GROUP_OPERATORS else 'AND', conditions=conditions)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def validate_criteria(criteria: Node, media_type: MediaType) -> List[str]:
    errors: List[str] = []

    def _check_value(c: Condition, ftype: str, path: str) -> None:
        op = c.operator
        if op in _NO_VALUE_OPERATORS:
            return
        value = c.value
        if value is None:
            errors.append(f'{path}: Operator "{op}" requires a value')
            return
        if op in _LIST_OPERATORS:
            if not isinstance(value, list) or not value:
                errors.append(f'{path}: Operator "{op}" expects a non-empty list value')
            return
        if op == 'between':
            if not isinstance(value, list) or len(value) != 2:
                errors.append(f'{path}: Operator "between" expects a [min, max] pair')
            return
        if op in ('olderThan', 'newerThan'):
            if not _is_number(value):
                errors.append(f'{path}: Operator "{op}" expects a numeric duration')
            if c.value_unit is not None and c.value_unit not in TIME_UNITS:
                errors.append(f'{path}: Unit "{c.value_unit}" is not a time unit')
            return
        if op == 'regex':
            try:
                re.compile(str(value))
            except re.error as e:
                errors.append(f'{path}: Invalid regex: {e}')
            return
        if ftype == 'number' and not _is_number(value):
            errors.append(f'{path}: Field "{c.field}" expects a number value')
        elif ftype == 'boolean' and not isinstance(value, bool):
            errors.append(f'{path}: Field "{c.field}" expects a boolean value')
        elif ftype == 'number' and c.value_unit is not None and c.value_unit not in SIZE_UNITS:
            errors.append(f'{path}: Unit "{c.value_unit}" is not a size unit')

    def _walk(node: Node, path: str) -> None:
        if isinstance(node, Condition):
            fdef = definition_for(node.field)
            if fdef is None:
                errors.append(f'{path}: Unknown field "{node.field}"')
                return
            if media_type not in fdef.media_types:
                errors.append(f'{path}: Field "{node.field}" not available for media type {media_type.value}')
            if node.operator not in fdef.allowed_operators:
                errors.append(f'{path}: Operator "{node.operator}" not allowed for field "{node.field}"')
                return
            _check_value(node, fdef.type, path)
            return
        if node.operator not in GROUP_OPERATORS:
            errors.append(f'{path}: Unknown group operator "{node.operator}"')
        if not node.conditions:
            errors.append(f'{path}: Condition group must have at least one condition')
        for i, child in enumerate(node.conditions):
            _walk(child, f'{path}.conditions[{i}]')

    _walk(criteria, 'root')
    return errors


def calculate_complexity(criteria: Node) -> Dict[str, Any]:
    counts = {'conditions': 0, 'groups': 0, 'depth': 0}

    def _walk(node: Node, depth: int) -> None:
        counts['depth'] = max(counts['depth'], depth)
        if isinstance(node, Condition):
            counts['conditions'] += 1
            return
        counts['groups'] += 1
        for child in node.conditions:
            _walk(child, depth + 1)

    _walk(criteria, 0)
    complexity = 'simple'
    if counts['conditions'] > 5 or counts['depth'] > 2:
        complexity = 'moderate'
    if counts['conditions'] > 10 or counts['depth'] > 3:
        complexity = 'complex'
    return {
        'condition_count': counts['conditions'],
        'group_count': counts['groups'],
        'max_depth': counts['depth'],
        'complexity': complexity,
    }
