# domain/protocol/errors.py
from __future__ import annotations
from enum import Enum
from typing import List, Optional, Sequence


class ProtocolErrorCode(Enum):
    UNKNOWN_ERROR = "PRO_000"
    EMPTY_PROTOCOL = "PRO_001"
    DANGLING_STEP_REFERENCE = "PRO_002"
    CYCLIC_PROTOCOL = "PRO_003"
    PROTOCOL_NOT_FOUND = "PRO_010"
    CONDITIONS_NOT_MET = "PRO_011"
    UNKNOWN_ACTION = "PRO_020"
    DISPATCH_FAILURE = "PRO_021"
    STEP_PROCESSING_ERROR = "PRO_999"

    def __str__(self):
        return self.value


class ProtocolEngineError(Exception):
    code: ProtocolErrorCode = ProtocolErrorCode.UNKNOWN_ERROR


class StructuralError(ProtocolEngineError):
    """A protocol definition was rejected at load time."""

    def __init__(self, protocol_id: str, message: str) -> None:
        super().__init__(message)
        self.protocol_id = protocol_id


class EmptyProtocolError(StructuralError):
    code = ProtocolErrorCode.EMPTY_PROTOCOL

    def __init__(self, protocol_id: str) -> None:
        super().__init__(protocol_id, f'Protocol {protocol_id} must have at least one step')


class DanglingStepReferenceError(StructuralError):
    code = ProtocolErrorCode.DANGLING_STEP_REFERENCE

    def __init__(self, protocol_id: str, step_id: str, bad_ref: str) -> None:
        super().__init__(
            protocol_id,
            f'Invalid step reference {bad_ref} from step {step_id} in protocol {protocol_id}',
        )
        self.step_id = step_id
        self.bad_ref = bad_ref


class CyclicProtocolError(StructuralError):
    code = ProtocolErrorCode.CYCLIC_PROTOCOL

    def __init__(self, protocol_id: str, cycle: Sequence[str]) -> None:
        self.cycle: List[str] = list(cycle)
        super().__init__(protocol_id, f"Step cycle {' -> '.join(self.cycle)} in protocol {protocol_id}")


def error_code_for(exc: BaseException) -> ProtocolErrorCode:
    code: Optional[ProtocolErrorCode] = getattr(exc, 'code', None)
    return code if isinstance(code, ProtocolErrorCode) else ProtocolErrorCode.STEP_PROCESSING_ERROR
