# protocol_engine/models.py
from __future__ import annotations

from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from domain.protocol.schema import ProtocolContext, now_ms


class ActionContext(BaseModel):
    """Everything an action handler may touch while a step is dispatched."""
    situation: Any = Field(..., description='The SituationPort implementation.')
    context: ProtocolContext = Field(default_factory=ProtocolContext)
    default_layer: str = 'operations'
    protocol_id: Optional[str] = None
    step_id: Optional[str] = None
    clock: Callable[[], int] = now_ms

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)


class MarkLocationParams(BaseModel):
    position: Optional[List[float]] = Field(None, min_length=2, max_length=3)
    metadata: Dict[str, Any] = Field(default_factory=dict)
    layer_id: Optional[str] = Field(None, description='Target layer; the configured default layer when omitted.')
    element_type: str = 'marker'

    model_config = ConfigDict(extra="ignore")


class UpdateSituationParams(BaseModel):
    center: Optional[List[float]] = Field(None, min_length=2, max_length=2)
    radius: Optional[float] = Field(None, ge=0.0)

    model_config = ConfigDict(extra="ignore")


class CreateLayerParams(BaseModel):
    layer_id: str = Field(..., min_length=1)
    name: Optional[str] = None

    model_config = ConfigDict(extra="ignore")


class StepOutcome(BaseModel):
    protocol_id: str
    step_id: str
    complete: bool = False
    result: Any = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    @property
    def failed(self) -> bool:
        return self.error is not None
