# protocol_engine/errors.py
"""
Error taxonomy of the protocol engine.

Load-time structural errors live with the protocol schema in
``domain.protocol.errors`` and are re-exported here, so callers can do::

    from protocol_engine.errors import StructuralError, ConditionsNotMetError
"""
from __future__ import annotations
from typing import List, Sequence, TYPE_CHECKING

from domain.protocol.errors import (
    CyclicProtocolError,
    DanglingStepReferenceError,
    EmptyProtocolError,
    ProtocolEngineError,
    ProtocolErrorCode,
    StructuralError,
    error_code_for,
)

if TYPE_CHECKING:
    from domain.protocol.schema import ProtocolCondition

__all__ = [
    'ConditionsNotMetError', 'CyclicProtocolError', 'DanglingStepReferenceError',
    'DispatchFailureError', 'EmptyProtocolError', 'ProtocolEngineError',
    'ProtocolErrorCode', 'ProtocolNotFoundError', 'StepExecutionError',
    'StructuralError', 'UnknownActionError', 'error_code_for',
]


class ProtocolNotFoundError(ProtocolEngineError):
    code = ProtocolErrorCode.PROTOCOL_NOT_FOUND

    def __init__(self, protocol_id: str) -> None:
        super().__init__(f'Protocol {protocol_id} not found')
        self.protocol_id = protocol_id


class ConditionsNotMetError(ProtocolEngineError):
    code = ProtocolErrorCode.CONDITIONS_NOT_MET

    def __init__(self, protocol_id: str, failed: Sequence['ProtocolCondition'] = ()) -> None:
        super().__init__(f'Conditions not met for protocol {protocol_id}')
        self.protocol_id = protocol_id
        self.failed_conditions: List['ProtocolCondition'] = list(failed)


class StepExecutionError(ProtocolEngineError):
    """Step-local failure. Reported through ``StepErrorSignal``, never raised to callers."""


class UnknownActionError(StepExecutionError):
    code = ProtocolErrorCode.UNKNOWN_ACTION

    def __init__(self, action: str) -> None:
        super().__init__(f'Unknown action type: {action}')
        self.action = action


class DispatchFailureError(StepExecutionError):
    code = ProtocolErrorCode.DISPATCH_FAILURE

    def __init__(self, action: str, cause: BaseException) -> None:
        super().__init__(f"Action '{action}' failed: {cause}")
        self.action = action
        self.cause = cause
