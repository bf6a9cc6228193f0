import logging
from typing import Iterable, Optional

from domain.ports.event_bus_port import EventBusPort
from signals.base import TacticalSignal
from signals.core import (
    ProtocolActivatedSignal,
    ProtocolDeactivatedSignal,
    ProtocolLoadedSignal,
    StepErrorSignal,
    StepExecutedSignal,
)

logger = logging.getLogger(__name__)


class ProtocolEventHelper:
    """Builds the engine's notification signals and puts them on the bus."""

    def __init__(self, event_bus: Optional[EventBusPort], component_id: str = 'protocol_engine'):
        self.event_bus = event_bus
        self.component_id = component_id
        if event_bus is None:
            logger.warning('[%s] No EventBusPort supplied - notifications will only be logged.', component_id)

    def publish(self, signal: TacticalSignal) -> None:
        if self.event_bus is None:
            logger.debug('[%s] Event bus unavailable - %s not broadcast', self.component_id, signal.signal_type)
            return
        try:
            self.event_bus.publish(signal.signal_type, signal)
        except Exception as e:
            logger.error("[%s] Failed to publish '%s': %s", self.component_id, signal.signal_type, e, exc_info=True)

    def protocol_loaded(self, protocol_id: str, name: str, step_count: int) -> None:
        self.publish(ProtocolLoadedSignal(
            source_node_id=self.component_id, protocol_id=protocol_id, protocol_name=name, step_count=step_count,
        ))

    def protocol_activated(self, protocol_id: str, initial_step: str, episode_id: Optional[str] = None) -> None:
        self.publish(ProtocolActivatedSignal(
            source_node_id=self.component_id, protocol_id=protocol_id, initial_step=initial_step, episode_id=episode_id,
        ))

    def protocol_deactivated(self, protocol_id: str, reason: str, remaining_steps: Iterable[str] = ()) -> None:
        self.publish(ProtocolDeactivatedSignal(
            source_node_id=self.component_id, protocol_id=protocol_id, reason=reason,
            remaining_steps=sorted(remaining_steps),
        ))

    def step_executed(self, protocol_id: str, step_id: str, action: str, complete: bool) -> None:
        self.publish(StepExecutedSignal(
            source_node_id=self.component_id, protocol_id=protocol_id, step_id=step_id, action=action, complete=complete,
        ))

    def step_error(self, protocol_id: str, step_id: str, action: str, error: BaseException, error_code: str) -> None:
        self.publish(StepErrorSignal(
            source_node_id=self.component_id, protocol_id=protocol_id, step_id=step_id, action=action,
            error_type=type(error).__name__, error_code=error_code, error_message=str(error),
        ))
