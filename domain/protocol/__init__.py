"""Protocol definitions: schema, structural validation and load-time errors."""
from __future__ import annotations

from .errors import (
    CyclicProtocolError,
    DanglingStepReferenceError,
    EmptyProtocolError,
    ProtocolEngineError,
    ProtocolErrorCode,
    StructuralError,
)
from .schema import (
    ConditionKind,
    ConditionOperator,
    ProtocolCondition,
    ProtocolContext,
    ProtocolDefinition,
    ProtocolKind,
    ProtocolStep,
)
from .validation import validate_protocol

__all__ = [
    "ConditionKind", "ConditionOperator", "CyclicProtocolError", "DanglingStepReferenceError",
    "EmptyProtocolError", "ProtocolCondition", "ProtocolContext", "ProtocolDefinition",
    "ProtocolEngineError", "ProtocolErrorCode", "ProtocolKind", "ProtocolStep",
    "StructuralError", "validate_protocol",
]
