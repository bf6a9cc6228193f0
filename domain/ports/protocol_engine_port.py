# domain/ports/protocol_engine_port.py
"""
Domain-layer interface for the protocol engine.

Why a separate port?
--------------------
* The agent-coordination layer that decides *which* protocols to load only
  needs these three calls; it should not import the concrete orchestrator.
* Test doubles can satisfy the protocol structurally.

Notifications are not part of this contract; they are published on the
event bus as ``signals.core`` models.
"""

from __future__ import annotations

import typing as _t
from typing import Protocol, runtime_checkable

if _t.TYPE_CHECKING:  # pragma: no cover
    from domain.protocol.schema import ProtocolContext, ProtocolDefinition


@runtime_checkable
class ProtocolEnginePort(Protocol):
    """
    Thin facade over the orchestrator.

    ``protocol_engine.engine.main.ProtocolOrchestrator`` satisfies this
    protocol automatically.
    """

    async def load_protocol(self, protocol: "ProtocolDefinition | _t.Mapping[str, _t.Any]") -> "ProtocolDefinition":
        """
        Validate and store a protocol definition.

        Raises ``StructuralError`` when the step graph is malformed.
        """
        ...

    async def activate_protocol(
        self,
        protocol_id: str,
        context: "ProtocolContext | _t.Mapping[str, _t.Any] | None" = None,
    ) -> None:
        """
        Start an activation episode.

        Raises ``ProtocolNotFoundError`` or ``ConditionsNotMetError``.
        """
        ...

    async def deactivate_protocol(self, protocol_id: str) -> bool:
        """End the activation episode, if any. Idempotent."""
        ...
