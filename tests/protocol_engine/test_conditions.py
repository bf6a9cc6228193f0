import pytest

from domain.protocol.schema import ProtocolCondition, ProtocolContext
from protocol_engine.expressions import ConditionEvaluator, conditions_met, evaluate_condition


def cond(kind, operator, value, key=None):
    return ProtocolCondition(kind=kind, operator=operator, value=value, key=key)


THREAT_ABOVE_5 = cond('tactical', 'greater', 5)


@pytest.mark.parametrize('context, expected', [
    ({'tactical': {'threat': 3}}, False),
    ({'tactical': {'threat': 9}}, True),
    ({}, False),
])
def test_tactical_greater_against_submap(context, expected):
    assert evaluate_condition(THREAT_ABOVE_5, ProtocolContext.model_validate(context)) is expected


def test_keyless_ordering_holds_when_any_reading_matches():
    ctx = ProtocolContext(tactical={'threat': 9, 'count': 1, 'status': 'contested'})

    assert evaluate_condition(cond('tactical', 'greater', 5), ctx)
    assert evaluate_condition(cond('tactical', 'less', 5), ctx)
    assert not evaluate_condition(cond('tactical', 'greater', 10), ctx)
    assert not evaluate_condition(cond('tactical', 'less', 1), ctx)


def test_key_path_selects_nested_value():
    ctx = ProtocolContext(environmental={'weather': {'visibility_km': 2.5}})
    assert evaluate_condition(cond('environmental', 'less', 3, key='weather.visibility_km'), ctx)
    assert not evaluate_condition(cond('environmental', 'greater', 3, key='weather.visibility_km'), ctx)
    assert not evaluate_condition(cond('environmental', 'less', 3, key='weather.wind'), ctx)


def test_key_path_indexes_into_lists():
    ctx = ProtocolContext(tactical={'sectors': [{'threat': 1}, {'threat': 7}]})
    assert evaluate_condition(cond('tactical', 'equals', 7, key='sectors.1.threat'), ctx)
    assert not evaluate_condition(cond('tactical', 'equals', 7, key='sectors.5.threat'), ctx)


def test_equals_is_structural():
    ctx = ProtocolContext(environmental={'status': {'level': 'red', 'zones': [1, 2]}})
    assert evaluate_condition(cond('environmental', 'equals', {'level': 'red', 'zones': [1, 2]}, key='status'), ctx)
    assert not evaluate_condition(cond('environmental', 'equals', {'level': 'red'}, key='status'), ctx)


def test_equals_with_absent_value_is_false():
    assert not evaluate_condition(cond('tactical', 'equals', None, key='missing'), ProtocolContext(tactical={}))
    assert not evaluate_condition(cond('tactical', 'equals', None), ProtocolContext())


def test_contains_requires_a_sequence():
    ctx = ProtocolContext(tactical={'units': ['alpha', 'bravo'], 'callsign': 'alpha-1'})
    assert evaluate_condition(cond('tactical', 'contains', 'bravo', key='units'), ctx)
    assert not evaluate_condition(cond('tactical', 'contains', 'charlie', key='units'), ctx)
    # substring membership on a string does not count
    assert not evaluate_condition(cond('tactical', 'contains', 'alpha', key='callsign'), ctx)


def test_numeric_operators_reject_non_numbers_without_raising():
    ctx = ProtocolContext(tactical={'threat': 'high', 'armed': True, 'count': 4})
    assert not evaluate_condition(cond('tactical', 'greater', 1, key='threat'), ctx)
    assert not evaluate_condition(cond('tactical', 'greater', 0, key='armed'), ctx)
    assert not evaluate_condition(cond('tactical', 'less', 'ten', key='count'), ctx)
    assert evaluate_condition(cond('tactical', 'less', 10, key='count'), ctx)


def test_temporal_uses_clock_and_ignores_context():
    evaluator = ConditionEvaluator(clock=lambda: 10_000)
    ctx = ProtocolContext(environmental={'now': 0})
    assert evaluator.evaluate(cond('temporal', 'greater', 5_000), ctx)
    assert not evaluator.evaluate(cond('temporal', 'less', 5_000), ctx)
    assert evaluator.resolve(cond('temporal', 'equals', 0), ProtocolContext()) == 10_000


def test_default_clock_is_epoch_milliseconds():
    # any date after 2001 is > 1e12 ms
    assert evaluate_condition(cond('temporal', 'greater', 1_000_000_000_000), ProtocolContext())


def test_resolve_returns_none_for_missing_values():
    evaluator = ConditionEvaluator()
    assert evaluator.resolve(cond('environmental', 'equals', 1, key='x'), ProtocolContext()) is None


def test_condition_sets_are_conjunctive():
    ctx = ProtocolContext(tactical={'threat': 9}, environmental={'visibility': 1})
    ok = cond('tactical', 'greater', 5)
    bad = cond('environmental', 'greater', 5)
    evaluator = ConditionEvaluator()

    assert conditions_met([], ctx)
    assert conditions_met(None, ctx)
    assert conditions_met([ok], ctx)
    assert not conditions_met([ok, bad], ctx)
    assert evaluator.failed([ok, bad], ctx) == [bad]


def test_condition_accepts_type_as_kind_alias():
    c = ProtocolCondition.model_validate({'type': 'tactical', 'operator': 'equals', 'value': 1})
    assert c.kind.value == 'tactical'
