# domain/ports/situation_port.py
"""
Domain-layer interface for the situational-data collaborator.

The protocol engine never owns situational state. It reads situation
updates from the event bus (``SituationUpdatedSignal``) and writes back
through this port when a step's action asks for it.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol, Sequence, runtime_checkable


class LayerNotFoundError(KeyError):
    """Raised by :meth:`SituationPort.add_element` for an unknown layer id."""

    def __init__(self, layer_id: str) -> None:
        super().__init__(layer_id)
        self.layer_id = layer_id

    def __str__(self) -> str:
        return f'Layer {self.layer_id} not found'


@runtime_checkable
class SituationPort(Protocol):

    async def create_layer(self, layer_id: str, name: Optional[str] = None) -> Dict[str, Any]:
        """Create (or replace) a layer and return its description."""
        ...

    async def add_element(self, layer_id: str, element: Dict[str, Any]) -> str:
        """
        Add a tactical element to ``layer_id`` and return the new element id.

        Raises:
            LayerNotFoundError: the layer does not exist.
        """
        ...

    async def recompute_situation(self, center: Sequence[float], radius: float) -> Dict[str, Any]:
        """
        Rebuild the situational snapshot around ``center`` and return it.

        Implementations are expected to broadcast the snapshot as a
        ``SituationUpdatedSignal`` as well.
        """
        ...
