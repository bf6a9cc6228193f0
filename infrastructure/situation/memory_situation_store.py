# infrastructure/situation/memory_situation_store.py
from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import shortuuid

from domain.ports.event_bus_port import EventBusPort
from domain.ports.situation_port import LayerNotFoundError, SituationPort
from domain.protocol.schema import now_ms
from signals.core import ElementAddedSignal, LayerCreatedSignal, SituationUpdatedSignal

logger = logging.getLogger(__name__)

DEFAULT_LAYERS: Tuple[Tuple[str, str], ...] = (
    ('operations', 'Operations'),
    ('intel', 'Intelligence'),
    ('assets', 'Assets'),
)
_OBSERVATION_KINDS = ('environmental', 'tactical')


@dataclass(slots=True)
class _Layer:
    id: str
    name: str
    elements: Dict[str, Dict[str, Any]] = field(default_factory=dict)
    visible: bool = True

    def describe(self) -> Dict[str, Any]:
        return {'id': self.id, 'name': self.name, 'visible': self.visible, 'element_count': len(self.elements)}


class InMemorySituationStore(SituationPort):
    """
    Process-local situational picture: named layers of tactical elements plus
    staged feed observations that are correlated into a snapshot on demand.

    Every mutation is broadcast on the event bus; ``recompute_situation``
    publishes the ``SituationUpdatedSignal`` that drives protocol re-evaluation.
    """

    def __init__(
        self,
        event_bus: Optional[EventBusPort] = None,
        *,
        initial_layers: Optional[Iterable[str]] = None,
        component_id: str = 'situation_store',
        default_center: Sequence[float] = (0.0, 0.0),
        default_radius: float = 1000.0,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.event_bus = event_bus
        self.component_id = component_id
        self.clock = clock
        self.default_center: List[float] = list(default_center)
        self.default_radius = float(default_radius)
        self._layers: Dict[str, _Layer] = {}
        self._observations: Dict[str, Dict[str, Any]] = {kind: {} for kind in _OBSERVATION_KINDS}

        names = dict(DEFAULT_LAYERS)
        layer_ids = list(initial_layers) if initial_layers is not None else list(names)
        for layer_id in layer_ids:
            self._layers[layer_id] = _Layer(layer_id, names.get(layer_id, layer_id))
        logger.info('[%s] initialised with layers %s', self.component_id, layer_ids)

    # ------------------------------------------------------------------ #
    # Layers & elements
    # ------------------------------------------------------------------ #
    async def create_layer(self, layer_id: str, name: Optional[str] = None) -> Dict[str, Any]:
        layer = _Layer(layer_id, name or layer_id)
        if layer_id in self._layers:
            logger.warning('[%s] layer %s replaced', self.component_id, layer_id)
        self._layers[layer_id] = layer
        self._publish(LayerCreatedSignal(source_node_id=self.component_id, layer_id=layer.id, name=layer.name))
        return layer.describe()

    async def add_element(self, layer_id: str, element: Dict[str, Any]) -> str:
        layer = self._layers.get(layer_id)
        if layer is None:
            raise LayerNotFoundError(layer_id)

        element_id = f'tac-{shortuuid.uuid()[:12]}'
        stored = {
            **copy.deepcopy(dict(element)),
            'id': element_id,
            'metadata': {**dict(element.get('metadata') or {}), 'timestamp': self.clock()},
        }
        layer.elements[element_id] = stored
        logger.debug('[%s] element %s added to %s', self.component_id, element_id, layer_id)
        self._publish(ElementAddedSignal(source_node_id=self.component_id, layer_id=layer_id, element=copy.deepcopy(stored)))
        return element_id

    def get_layer(self, layer_id: str) -> Dict[str, Any]:
        layer = self._layers.get(layer_id)
        if layer is None:
            raise LayerNotFoundError(layer_id)
        return layer.describe()

    def list_layers(self) -> List[str]:
        return list(self._layers)

    def list_elements(self, layer_id: Optional[str] = None) -> List[Dict[str, Any]]:
        if layer_id is not None:
            layers = [self._layers[layer_id]] if layer_id in self._layers else []
            if not layers:
                raise LayerNotFoundError(layer_id)
        else:
            layers = list(self._layers.values())
        return [copy.deepcopy(e) for layer in layers for e in layer.elements.values()]

    # ------------------------------------------------------------------ #
    # Feeds & snapshots
    # ------------------------------------------------------------------ #
    def observe(self, kind: str, key: str, value: Any) -> None:
        """Stage an observation that the next snapshot will carry under ``kind``."""
        if kind not in self._observations:
            raise ValueError(f"Unknown observation kind '{kind}', expected one of {_OBSERVATION_KINDS}")
        self._observations[kind][key] = value

    def clear_observations(self, kind: Optional[str] = None) -> None:
        for k in ([kind] if kind else _OBSERVATION_KINDS):
            self._observations[k].clear()

    async def recompute_situation(
        self, center: Optional[Sequence[float]] = None, radius: Optional[float] = None
    ) -> Dict[str, Any]:
        center = list(center) if center is not None else list(self.default_center)
        radius = float(radius) if radius is not None else self.default_radius

        weather, traffic, alerts = await asyncio.gather(
            self._fetch_weather(center),
            self._fetch_traffic(center, radius),
            self._fetch_alerts(center),
        )
        snapshot = self._correlate(weather, traffic, alerts)
        snapshot.update(center=center, radius=radius)
        logger.info('[%s] situation recomputed around %s r=%.1f (%d element(s))',
                    self.component_id, center, radius, len(snapshot['tactical']['elements']))

        self._publish(SituationUpdatedSignal(
            source_node_id=self.component_id,
            environmental=snapshot['environmental'],
            tactical=snapshot['tactical'],
            center=center,
            radius=radius,
            snapshot_ts=snapshot['timestamp'],
        ))
        return snapshot

    async def _fetch_weather(self, center: Sequence[float]) -> Dict[str, Any]:
        return {'conditions': dict(self._observations['environmental'].get('conditions') or {}), 'alerts': []}

    async def _fetch_traffic(self, center: Sequence[float], radius: float) -> Dict[str, Any]:
        staged = self._observations['tactical']
        return {'incidents': list(staged.get('incidents') or []), 'congestion': dict(staged.get('congestion') or {})}

    async def _fetch_alerts(self, center: Sequence[float]) -> Dict[str, Any]:
        return {'features': list(self._observations['environmental'].get('alerts') or [])}

    def _correlate(self, weather: Dict[str, Any], traffic: Dict[str, Any], alerts: Dict[str, Any]) -> Dict[str, Any]:
        environmental = {k: copy.deepcopy(v) for k, v in self._observations['environmental'].items()}
        environmental.update(
            weather={'conditions': weather.get('conditions') or {}, 'alerts': weather.get('alerts') or []},
            alerts=alerts.get('features') or [],
        )
        tactical = {k: copy.deepcopy(v) for k, v in self._observations['tactical'].items()}
        tactical.update(
            traffic={'incidents': traffic.get('incidents') or [], 'congestion': traffic.get('congestion') or {}},
            elements=self.list_elements(),
        )
        return {'timestamp': self.clock(), 'environmental': environmental, 'tactical': tactical}

    def _publish(self, signal: Any) -> None:
        if self.event_bus is None:
            return
        try:
            self.event_bus.publish(signal.signal_type, signal)
        except Exception:
            logger.exception('[%s] failed to publish %s', self.component_id, signal.signal_type)
