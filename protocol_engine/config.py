from __future__ import annotations
import logging
import re
from typing import List, Sequence
from pydantic import BaseModel, ConfigDict, Field, field_validator

__all__: Sequence[str] = ('EngineConfig',)

_LOG_LEVELS = ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL')


class EngineConfig(BaseModel):
    model_config = ConfigDict(extra='forbid')

    component_id: str = Field(default='protocol_engine', description='Source id stamped on every notification signal.')
    default_layer: str = Field(default='operations', description='Layer that mark_location writes to when a step names none.')
    initial_layers: List[str] = Field(
        default_factory=lambda: ['operations', 'intel', 'assets'],
        description='Layers the in-memory situational store creates on startup.',
    )
    reject_cyclic_protocols: bool = Field(default=False, description='Reject protocols whose step graph contains a cycle.')
    update_queue_maxsize: int = Field(default=0, ge=0, description='Bound on queued situation updates (0 = unbounded).')
    event_history_size: int = Field(default=1000, ge=1, description='Events kept by the in-memory event bus.')
    protocol_dirs: List[str] = Field(default_factory=lambda: ['configs/protocols'], description='Directories scanned for protocol YAML files.')
    log_level: str = Field(default='INFO')

    @field_validator('default_layer', 'component_id')
    @classmethod
    def _validate_identifier(cls, v: str) -> str:
        if not re.match(r'^[A-Za-z0-9_.-]+$', v or ''):
            raise ValueError(f"Invalid identifier '{v}': use letters, digits, '.', '_' or '-'.")
        return v

    @field_validator('log_level')
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        level = str(v).upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level must be one of {_LOG_LEVELS}, got '{v}'")
        return level

    @property
    def numeric_log_level(self) -> int:
        return getattr(logging, self.log_level)
