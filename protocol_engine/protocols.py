# protocol_engine/protocols.py
from __future__ import annotations

from typing import Any, Iterable, Mapping, Optional, Protocol, TYPE_CHECKING, runtime_checkable

if TYPE_CHECKING:
    from domain.protocol.schema import ProtocolCondition, ProtocolContext
    from .models import ActionContext


@runtime_checkable
class ActionHandler(Protocol):
    async def __call__(self, parameters: Mapping[str, Any], ctx: "ActionContext") -> Any: ...


@runtime_checkable
class ConditionChecker(Protocol):
    def evaluate(self, condition: "ProtocolCondition", context: "ProtocolContext") -> bool: ...

    def all_met(
        self, conditions: Optional[Iterable["ProtocolCondition"]], context: "ProtocolContext"
    ) -> bool: ...
