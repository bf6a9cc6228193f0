from __future__ import annotations
import logging
import operator
from typing import Any, Callable, Dict, Final, Iterable, List, Mapping, Optional

from domain.protocol.schema import (
    ConditionKind,
    ConditionOperator,
    ProtocolCondition,
    ProtocolContext,
    now_ms,
)

logger: Final = logging.getLogger(__name__)

__all__: list[str] = ['ConditionEvaluator', 'conditions_met', 'evaluate_condition']

_MISSING: Final = object()

Clock = Callable[[], int]
_Resolver = Callable[[ProtocolCondition, ProtocolContext, Clock], Any]
_Comparator = Callable[[Any, Any], bool]


def _is_number(v: Any) -> bool:
    return isinstance(v, (int, float)) and not isinstance(v, bool)


def _walk(obj: Any, path: str) -> Any:
    for part in path.split('.'):
        if isinstance(obj, Mapping) and part in obj:
            obj = obj[part]
        elif isinstance(obj, (list, tuple)) and part.isdigit() and int(part) < len(obj):
            obj = obj[int(part)]
        else:
            return _MISSING
    return obj


def _submap(attr: str) -> _Resolver:
    def _resolve(condition: ProtocolCondition, context: ProtocolContext, _clock: Clock) -> Any:
        section = getattr(context, attr, None)
        if section is None:
            return _MISSING
        return _walk(section, condition.key) if condition.key else section
    return _resolve


def _now(_condition: ProtocolCondition, _context: ProtocolContext, clock: Clock) -> Any:
    return clock()


def _numeric(op: Callable[[Any, Any], bool]) -> _Comparator:
    def _compare(actual: Any, expected: Any) -> bool:
        if not _is_number(expected):
            return False
        if isinstance(actual, Mapping):
            # a whole sub-map matches when any of its numeric readings does
            return any(_is_number(v) and op(v, expected) for v in actual.values())
        return _is_number(actual) and op(actual, expected)
    return _compare


def _equals(actual: Any, expected: Any) -> bool:
    return bool(actual == expected)


def _contains(actual: Any, expected: Any) -> bool:
    return isinstance(actual, (list, tuple)) and expected in actual


_RESOLVERS: Final[Dict[ConditionKind, _Resolver]] = {
    ConditionKind.ENVIRONMENTAL: _submap('environmental'),
    ConditionKind.TACTICAL: _submap('tactical'),
    ConditionKind.TEMPORAL: _now,
}

_OPERATORS: Final[Dict[ConditionOperator, _Comparator]] = {
    ConditionOperator.EQUALS: _equals,
    ConditionOperator.GREATER: _numeric(operator.gt),
    ConditionOperator.LESS: _numeric(operator.lt),
    ConditionOperator.CONTAINS: _contains,
}


class ConditionEvaluator:
    """
    Pure ``(condition, context) -> bool`` evaluation.

    Never raises: absent values, type mismatches and comparison errors all
    evaluate to ``False``. ``clock`` supplies "now" for temporal conditions
    (epoch milliseconds) and exists so tests can pin time.

    Without a ``key``, ``greater`` and ``less`` compare every numeric value of
    the sub-map and hold when any one of them does, so a mixed map such as
    ``{threat: 9, count: 1}`` satisfies both ``greater 5`` and ``less 5``.
    """
    __slots__ = ('_clock',)
    _RESOLVERS = _RESOLVERS
    _OPERATORS = _OPERATORS

    def __init__(self, clock: Optional[Clock] = None) -> None:
        self._clock: Clock = clock or now_ms

    def resolve(self, condition: ProtocolCondition, context: ProtocolContext) -> Any:
        value = self._RESOLVERS[condition.kind](condition, context, self._clock)
        return None if value is _MISSING else value

    def evaluate(self, condition: ProtocolCondition, context: ProtocolContext) -> bool:
        actual = self._RESOLVERS[condition.kind](condition, context, self._clock)
        if actual is _MISSING:
            return False
        try:
            return self._OPERATORS[condition.operator](actual, condition.value)
        except Exception as exc:
            logger.debug('Condition %s/%s raised during comparison: %s', condition.kind.value, condition.operator.value, exc)
            return False

    def failed(self, conditions: Iterable[ProtocolCondition], context: ProtocolContext) -> List[ProtocolCondition]:
        return [c for c in conditions if not self.evaluate(c, context)]

    def all_met(self, conditions: Optional[Iterable[ProtocolCondition]], context: ProtocolContext) -> bool:
        return not self.failed(conditions or (), context)


_DEFAULT = ConditionEvaluator()


def evaluate_condition(condition: ProtocolCondition, context: ProtocolContext) -> bool:
    return _DEFAULT.evaluate(condition, context)


def conditions_met(conditions: Optional[Iterable[ProtocolCondition]], context: ProtocolContext) -> bool:
    return _DEFAULT.all_met(conditions, context)
