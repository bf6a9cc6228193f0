from __future__ import annotations
from typing import Any, Dict, List, Literal, Optional
from pydantic import Field
from .base import TacticalSignal


class ProtocolLoadedSignal(TacticalSignal):
    signal_type: Literal['ProtocolLoadedSignal'] = 'ProtocolLoadedSignal'
    protocol_id: str = Field(..., description='ID of the protocol that was stored in the registry.')
    protocol_name: str = Field('', description='Display name of the protocol.')
    step_count: int = Field(0, ge=0)


class ProtocolActivatedSignal(TacticalSignal):
    signal_type: Literal['ProtocolActivatedSignal'] = 'ProtocolActivatedSignal'
    protocol_id: str
    initial_step: str = Field(..., description='The first declared step that seeded the activation.')
    episode_id: Optional[str] = None


class ProtocolDeactivatedSignal(TacticalSignal):
    signal_type: Literal['ProtocolDeactivatedSignal'] = 'ProtocolDeactivatedSignal'
    protocol_id: str
    reason: str = Field('explicit', description="Why the activation ended ('explicit' or 'conditions_not_met').")
    remaining_steps: List[str] = Field(default_factory=list)


class StepExecutedSignal(TacticalSignal):
    signal_type: Literal['StepExecutedSignal'] = 'StepExecutedSignal'
    protocol_id: str
    step_id: str
    action: str = ''
    complete: bool


class StepErrorSignal(TacticalSignal):
    signal_type: Literal['StepErrorSignal'] = 'StepErrorSignal'
    protocol_id: str
    step_id: str
    action: str = ''
    error_type: str = Field(..., description='Exception class name raised during dispatch.')
    error_code: str = Field(..., description='Stable error code, see ProtocolErrorCode.')
    error_message: str


class SituationUpdatedSignal(TacticalSignal):
    signal_type: Literal['SituationUpdatedSignal'] = 'SituationUpdatedSignal'
    environmental: Dict[str, Any] = Field(default_factory=dict, description='Weather, alerts and other ambient observations.')
    tactical: Dict[str, Any] = Field(default_factory=dict, description='Elements, incidents and other tactical observations.')
    center: Optional[List[float]] = None
    radius: Optional[float] = None
    snapshot_ts: int = Field(..., description='Epoch milliseconds at which the snapshot was correlated.')


class LayerCreatedSignal(TacticalSignal):
    signal_type: Literal['LayerCreatedSignal'] = 'LayerCreatedSignal'
    layer_id: str
    name: str


class ElementAddedSignal(TacticalSignal):
    signal_type: Literal['ElementAddedSignal'] = 'ElementAddedSignal'
    layer_id: str
    element: Dict[str, Any]
