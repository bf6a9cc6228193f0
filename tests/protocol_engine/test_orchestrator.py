import asyncio
import logging
from unittest.mock import AsyncMock

import pytest

from domain.ports import ProtocolEnginePort
from protocol_engine.actions import ActionDispatcher
from protocol_engine.config import EngineConfig
from protocol_engine.engine import ProtocolOrchestrator
from protocol_engine.errors import (
    ConditionsNotMetError,
    CyclicProtocolError,
    DanglingStepReferenceError,
    EmptyProtocolError,
    ProtocolNotFoundError,
    StructuralError,
)


def mark(sid, *next_steps, **parameters):
    return {'id': sid, 'action': 'mark_location', 'parameters': parameters, 'nextSteps': list(next_steps)}


def situation_mock():
    mock = AsyncMock()
    mock.add_element.return_value = 'tac-x'
    mock.recompute_situation.return_value = {}
    return mock


def layers_marked(situation):
    return sorted(call.args[0] for call in situation.add_element.await_args_list)


# --------------------------------------------------------------------------- #
# Loading
# --------------------------------------------------------------------------- #
@pytest.mark.asyncio
async def test_empty_protocol_is_not_stored(orchestrator):
    with pytest.raises(EmptyProtocolError):
        await orchestrator.load_protocol({'id': 'empty', 'steps': []})
    assert orchestrator.get_protocol('empty') is None
    assert orchestrator.list_protocols() == []


@pytest.mark.asyncio
async def test_dangling_reference_is_not_stored(orchestrator):
    with pytest.raises(DanglingStepReferenceError):
        await orchestrator.load_protocol({'id': 'bad', 'steps': [mark('a', 'nope')]})
    assert orchestrator.get_protocol('bad') is None
    with pytest.raises(ProtocolNotFoundError):
        await orchestrator.activate_protocol('bad')


@pytest.mark.asyncio
async def test_load_notifies_and_reload_overwrites(orchestrator, bus, p1):
    await orchestrator.load_protocol(p1)
    await orchestrator.load_protocol({**p1, 'name': 'Renamed'})

    assert orchestrator.list_protocols() == ['p1']
    assert orchestrator.get_protocol('p1').display_name == 'Renamed'
    loaded = bus.history('ProtocolLoadedSignal')
    assert [e.payload.protocol_name for e in loaded] == ['p1', 'Renamed']
    assert loaded[0].payload.step_count == 2


@pytest.mark.asyncio
async def test_cycles_follow_configuration(store):
    cyclic = {'id': 'loop', 'steps': [mark('a', 'b'), mark('b', 'a')]}

    lenient = ProtocolOrchestrator(store)
    await lenient.load_protocol(cyclic)
    assert lenient.get_protocol('loop') is not None

    strict = ProtocolOrchestrator(store, config=EngineConfig(reject_cyclic_protocols=True))
    with pytest.raises(CyclicProtocolError):
        await strict.load_protocol(cyclic)
    assert strict.get_protocol('loop') is None


@pytest.mark.asyncio
async def test_load_protocols_from_directory_skips_invalid(orchestrator, tmp_path):
    (tmp_path / 'ops.yaml').write_text(
        'version: "1.0"\n'
        'protocols:\n'
        '  - id: good\n'
        '    steps:\n'
        '      - {id: a, action: mark_location}\n'
        '  - id: dangling\n'
        '    steps:\n'
        '      - {id: a, action: mark_location, nextSteps: [z]}\n',
        encoding='utf-8',
    )

    assert await orchestrator.load_protocols_from_directory(tmp_path) == ['good']
    assert orchestrator.list_protocols() == ['good']


# --------------------------------------------------------------------------- #
# Activation
# --------------------------------------------------------------------------- #
@pytest.mark.asyncio
async def test_activate_unknown_protocol(orchestrator):
    with pytest.raises(ProtocolNotFoundError):
        await orchestrator.activate_protocol('ghost', {})


@pytest.mark.asyncio
async def test_activation_refused_when_conditions_fail(orchestrator, store):
    await orchestrator.load_protocol({
        'id': 'threat',
        'steps': [mark('s1')],
        'conditions': [{'kind': 'tactical', 'operator': 'greater', 'value': 5}],
    })

    with pytest.raises(ConditionsNotMetError) as exc_info:
        await orchestrator.activate_protocol('threat', {'tactical': {'threat': 3}})

    assert len(exc_info.value.failed_conditions) == 1
    assert not orchestrator.is_active('threat')
    assert orchestrator.get_active_steps('threat') is None
    assert store.list_elements() == []


@pytest.mark.asyncio
async def test_active_set_is_first_step_before_side_effects():
    situation = situation_mock()
    orchestrator = ProtocolOrchestrator(situation)
    seen = []

    async def add_element(layer_id, element):
        seen.append(orchestrator.get_active_steps('first'))
        return 'tac-1'

    situation.add_element.side_effect = add_element
    await orchestrator.load_protocol({'id': 'first', 'steps': [mark('a', 'b'), mark('b')]})
    await orchestrator.activate_protocol('first')

    assert seen[0] == frozenset({'a'})


@pytest.mark.asyncio
async def test_p1_runs_to_an_idle_active_entry(orchestrator, store, bus, p1):
    await orchestrator.load_protocol(p1)
    await orchestrator.activate_protocol('p1', {})
    await bus.flush()

    assert orchestrator.is_active('p1')
    assert orchestrator.get_active_steps('p1') == frozenset()
    [element] = store.list_elements('operations')
    assert element['metadata']['timestamp'] == 1_700_000_000_000

    executed = [(e.payload.step_id, e.payload.complete) for e in bus.history('StepExecutedSignal')]
    assert executed == [('s1', True), ('s2', True)]
    assert len(bus.history('SituationUpdatedSignal')) == 1
    [activated] = bus.history('ProtocolActivatedSignal')
    assert activated.payload.initial_step == 's1'


@pytest.mark.asyncio
async def test_successors_dispatched_once_and_concurrently():
    situation = situation_mock()
    arrived = []
    both_in = asyncio.Event()

    async def rendezvous(parameters, ctx):
        arrived.append(ctx.step_id)
        if len(arrived) == 2:
            both_in.set()
        # a sequential fan-out would never see the sibling arrive
        await asyncio.wait_for(both_in.wait(), timeout=1.0)

    dispatcher = ActionDispatcher(situation, handlers={'rendezvous': rendezvous})
    orchestrator = ProtocolOrchestrator(situation, dispatcher=dispatcher)
    await orchestrator.load_protocol({'id': 'fan', 'steps': [
        mark('root', 'a', 'b', 'a'),
        {'id': 'a', 'action': 'rendezvous'},
        {'id': 'b', 'action': 'rendezvous'},
    ]})

    await orchestrator.activate_protocol('fan')

    assert sorted(arrived) == ['a', 'b']
    assert orchestrator.get_active_steps('fan') == frozenset()


@pytest.mark.asyncio
async def test_join_step_is_dispatched_per_parent_but_active_once():
    situation = situation_mock()
    orchestrator = ProtocolOrchestrator(situation)
    await orchestrator.load_protocol({'id': 'diamond', 'steps': [
        mark('root', 'l', 'r', layer_id='root'),
        mark('l', 'join', layer_id='l'),
        mark('r', 'join', layer_id='r'),
        {**mark('join', 'done', layer_id='join'), 'completionCriteria': [
            {'kind': 'tactical', 'key': 'joined', 'operator': 'equals', 'value': True},
        ]},
        mark('done', layer_id='done'),
    ]})

    await orchestrator.activate_protocol('diamond')

    assert layers_marked(situation) == ['join', 'join', 'l', 'r', 'root']
    assert orchestrator.get_active_steps('diamond') == frozenset({'join'})

    await orchestrator.reevaluate({'tactical': {'joined': True}})

    assert layers_marked(situation) == ['done', 'join', 'join', 'join', 'l', 'r', 'root']
    assert orchestrator.get_active_steps('diamond') == frozenset()


@pytest.mark.asyncio
async def test_step_error_is_local(orchestrator, store, bus):
    await orchestrator.load_protocol({'id': 'mixed', 'steps': [
        mark('root', 'bad', 'good'),
        {'id': 'bad', 'action': 'teleport'},
        mark('good'),
    ]})

    await orchestrator.activate_protocol('mixed')
    await orchestrator.reevaluate({})

    assert orchestrator.get_active_steps('mixed') == frozenset({'bad'})
    assert len(store.list_elements()) == 2
    errors = bus.history('StepErrorSignal')
    assert [e.payload.error_code for e in errors] == ['PRO_020', 'PRO_020']
    assert all(e.payload.step_id == 'bad' for e in errors)


# --------------------------------------------------------------------------- #
# Re-evaluation
# --------------------------------------------------------------------------- #
@pytest.mark.asyncio
async def test_reevaluation_reruns_active_steps_until_complete():
    situation = situation_mock()
    orchestrator = ProtocolOrchestrator(situation)
    await orchestrator.load_protocol({'id': 'watch', 'steps': [
        {**mark('hold', 'after', layer_id='hold'), 'completionCriteria': [
            {'kind': 'environmental', 'key': 'visibility', 'operator': 'greater', 'value': 5},
        ]},
        mark('after', layer_id='after'),
    ]})

    await orchestrator.activate_protocol('watch')
    assert orchestrator.get_active_steps('watch') == frozenset({'hold'})

    await orchestrator.reevaluate({'environmental': {'visibility': 3}})
    assert orchestrator.get_active_steps('watch') == frozenset({'hold'})

    await orchestrator.reevaluate({'environmental': {'visibility': 8}})
    assert orchestrator.get_active_steps('watch') == frozenset()
    assert layers_marked(situation) == ['after', 'hold', 'hold', 'hold']


@pytest.mark.asyncio
async def test_reevaluation_deactivates_when_conditions_fail(orchestrator, bus):
    await orchestrator.load_protocol({
        'id': 'threat',
        'steps': [{**mark('hold'), 'completionCriteria': [
            {'kind': 'tactical', 'key': 'cleared', 'operator': 'equals', 'value': True},
        ]}],
        'conditions': [{'kind': 'tactical', 'operator': 'greater', 'value': 5}],
    })
    await orchestrator.activate_protocol('threat', {'tactical': {'threat': 9}})

    await orchestrator.reevaluate({'tactical': {'threat': 3}})

    assert not orchestrator.is_active('threat')
    [event] = bus.history('ProtocolDeactivatedSignal')
    assert event.payload.reason == 'conditions_not_met'
    assert event.payload.remaining_steps == ['hold']


@pytest.mark.asyncio
async def test_reevaluation_folds_raw_snapshot_keys():
    situation = situation_mock()
    orchestrator = ProtocolOrchestrator(situation)
    await orchestrator.load_protocol({
        'id': 'weather',
        'steps': [{**mark('hold'), 'completionCriteria': [
            {'kind': 'environmental', 'key': 'weather.conditions.visibility', 'operator': 'less', 'value': 1},
        ]}],
    })
    await orchestrator.activate_protocol('weather')

    await orchestrator.reevaluate({'timestamp': 1, 'weather': {'conditions': {'visibility': 0.5}}, 'traffic': {}})

    assert orchestrator.get_active_steps('weather') == frozenset()


@pytest.mark.asyncio
async def test_situation_updates_flow_through_the_bus(orchestrator, store, bus):
    await orchestrator.load_protocol({
        'id': 'storm',
        'steps': [{**mark('hold'), 'completionCriteria': [
            {'kind': 'environmental', 'key': 'visibility_km', 'operator': 'greater', 'value': 5},
        ]}],
        'conditions': [{'kind': 'environmental', 'key': 'alert_level', 'operator': 'greater', 'value': 2}],
    })
    await orchestrator.start()
    try:
        await orchestrator.activate_protocol('storm', {'environmental': {'alert_level': 3}})

        store.observe('environmental', 'alert_level', 4)
        await store.recompute_situation([0, 0], 100)
        await bus.flush()
        await orchestrator.drain()
        assert orchestrator.get_active_steps('storm') == frozenset({'hold'})
        assert len(store.list_elements()) == 2

        store.observe('environmental', 'alert_level', 1)
        await store.recompute_situation([0, 0], 100)
        await bus.flush()
        await orchestrator.drain()
        assert not orchestrator.is_active('storm')
    finally:
        await orchestrator.stop()
    assert not orchestrator.running


@pytest.mark.asyncio
async def test_submit_update_requires_started_channel(orchestrator, caplog):
    with caplog.at_level(logging.WARNING):
        assert orchestrator.submit_update({}) is False
    assert 'not started' in caplog.text


@pytest.mark.asyncio
async def test_bounded_update_queue_drops_overflow(store):
    orchestrator = ProtocolOrchestrator(store, config=EngineConfig(update_queue_maxsize=1))
    await orchestrator.start()
    try:
        # the consumer cannot run until we yield, so the second put overflows
        assert orchestrator.submit_update({}) is True
        assert orchestrator.submit_update({}) is False
        await orchestrator.drain()
    finally:
        await orchestrator.stop()


# --------------------------------------------------------------------------- #
# Deactivation & episodes
# --------------------------------------------------------------------------- #
@pytest.mark.asyncio
async def test_deactivation_is_idempotent(orchestrator, bus, p1):
    await orchestrator.load_protocol(p1)
    await orchestrator.activate_protocol('p1')

    assert await orchestrator.deactivate_protocol('p1') is True
    assert await orchestrator.deactivate_protocol('p1') is False

    assert not orchestrator.is_active('p1')
    assert orchestrator.active_protocols() == {}
    [event] = bus.history('ProtocolDeactivatedSignal')
    assert event.payload.reason == 'explicit'


@pytest.mark.asyncio
async def test_deactivate_unknown_protocol(orchestrator):
    with pytest.raises(ProtocolNotFoundError):
        await orchestrator.deactivate_protocol('ghost')


@pytest.mark.asyncio
async def test_completion_after_deactivation_is_dropped():
    situation = situation_mock()
    entered, release = asyncio.Event(), asyncio.Event()

    async def slow(parameters, ctx):
        entered.set()
        await release.wait()

    dispatcher = ActionDispatcher(situation, handlers={'slow': slow})
    orchestrator = ProtocolOrchestrator(situation, dispatcher=dispatcher)
    await orchestrator.load_protocol({'id': 'slow', 'steps': [{'id': 'a', 'action': 'slow', 'nextSteps': ['b']}, mark('b')]})

    activation = asyncio.create_task(orchestrator.activate_protocol('slow'))
    await entered.wait()
    assert await orchestrator.deactivate_protocol('slow') is True
    release.set()
    await activation

    situation.add_element.assert_not_awaited()
    assert orchestrator.get_active_steps('slow') is None


@pytest.mark.asyncio
async def test_overlapping_completions_progress_once():
    situation = situation_mock()
    dispatched, release = [], asyncio.Event()

    async def slow(parameters, ctx):
        dispatched.append('a')
        await release.wait()

    async def until_dispatched(count):
        while len(dispatched) < count:
            await asyncio.sleep(0)

    dispatcher = ActionDispatcher(situation, handlers={'slow': slow})
    orchestrator = ProtocolOrchestrator(situation, dispatcher=dispatcher)
    await orchestrator.load_protocol({'id': 'race', 'steps': [
        {'id': 'a', 'action': 'slow', 'nextSteps': ['b']},
        {**mark('b'), 'completionCriteria': [{'kind': 'tactical', 'key': 'done', 'operator': 'equals', 'value': True}]},
    ]})

    activation = asyncio.create_task(orchestrator.activate_protocol('race'))
    await until_dispatched(1)
    passes = [asyncio.create_task(orchestrator.reevaluate({})) for _ in range(2)]
    await until_dispatched(3)
    release.set()
    await asyncio.gather(activation, *passes)

    assert dispatched == ['a', 'a', 'a']
    situation.add_element.assert_awaited_once()
    assert orchestrator.get_active_steps('race') == frozenset({'b'})


@pytest.mark.asyncio
async def test_reactivation_supersedes_previous_episode(orchestrator, bus):
    await orchestrator.load_protocol({'id': 'hold', 'steps': [{**mark('h'), 'completionCriteria': [
        {'kind': 'tactical', 'key': 'done', 'operator': 'equals', 'value': True},
    ]}]})

    await orchestrator.activate_protocol('hold')
    await orchestrator.activate_protocol('hold')

    assert orchestrator.get_active_steps('hold') == frozenset({'h'})
    [event] = bus.history('ProtocolDeactivatedSignal')
    assert event.payload.reason == 'superseded'
    episodes = {e.payload.episode_id for e in bus.history('ProtocolActivatedSignal')}
    assert len(episodes) == 2


@pytest.mark.asyncio
async def test_failed_reload_keeps_previous_definition(orchestrator):
    await orchestrator.load_protocol({'id': 'keep', 'steps': [mark('x')]})

    with pytest.raises(StructuralError):
        await orchestrator.load_protocol({'id': 'keep', 'steps': []})

    assert orchestrator.get_protocol('keep').steps[0].id == 'x'


@pytest.mark.asyncio
async def test_returned_definitions_do_not_alias_the_registry():
    situation = situation_mock()
    orchestrator = ProtocolOrchestrator(situation)
    stored = await orchestrator.load_protocol({'id': 'p', 'steps': [mark('a', layer_id='operations')]})

    stored.steps[0].parameters['layer_id'] = 'tampered'
    orchestrator.get_protocol('p').steps.clear()

    kept = orchestrator.get_protocol('p')
    assert [s.id for s in kept.steps] == ['a']
    assert kept.steps[0].parameters == {'layer_id': 'operations'}
    await orchestrator.activate_protocol('p')
    assert layers_marked(situation) == ['operations']


@pytest.mark.asyncio
async def test_introspection_returns_snapshots(orchestrator):
    await orchestrator.load_protocol({'id': 'other', 'steps': [{**mark('x'), 'completionCriteria': [
        {'kind': 'tactical', 'key': 'never', 'operator': 'equals', 'value': 1},
    ]}]})
    await orchestrator.activate_protocol('other')

    snapshot = orchestrator.active_protocols()
    assert snapshot == {'other': frozenset({'x'})}
    snapshot.clear()

    assert orchestrator.is_active('other')
    assert orchestrator.get_active_steps('other') == frozenset({'x'})


def test_orchestrator_satisfies_engine_port(orchestrator):
    assert isinstance(orchestrator, ProtocolEnginePort)
