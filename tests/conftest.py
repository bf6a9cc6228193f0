import pytest

from infrastructure.event_bus.memory_event_bus import MemoryEventBus
from infrastructure.situation.memory_situation_store import InMemorySituationStore
from protocol_engine.engine.main import ProtocolOrchestrator

FIXED_NOW_MS = 1_700_000_000_000


@pytest.fixture
def bus():
    return MemoryEventBus(component_id='test_bus', max_history=500)


@pytest.fixture
def store(bus):
    return InMemorySituationStore(bus, clock=lambda: FIXED_NOW_MS)


@pytest.fixture
def orchestrator(store, bus):
    return ProtocolOrchestrator(store, event_bus=bus)


@pytest.fixture
def p1():
    """Two-step mark-then-refresh protocol with no conditions."""
    return {
        'id': 'p1',
        'steps': [
            {'id': 's1', 'action': 'mark_location', 'nextSteps': ['s2']},
            {'id': 's2', 'action': 'update_situation', 'nextSteps': []},
        ],
        'conditions': [],
    }
