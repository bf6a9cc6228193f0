# protocol_engine/actions/dispatcher.py
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, FrozenSet, Mapping, Optional

from domain.ports.situation_port import SituationPort
from domain.protocol.schema import ProtocolContext, now_ms

from ..errors import DispatchFailureError, StepExecutionError, UnknownActionError
from ..models import ActionContext
from ..protocols import ActionHandler
from .builtin import BUILTIN_ACTIONS

logger = logging.getLogger(__name__)


class ActionDispatcher:
    """Maps a step's action name to a call against the situational collaborator."""

    def __init__(
        self,
        situation: SituationPort,
        *,
        default_layer: str = 'operations',
        handlers: Optional[Mapping[str, ActionHandler]] = None,
        clock: Optional[Callable[[], int]] = None,
    ) -> None:
        self.situation = situation
        self.default_layer = default_layer
        self._clock = clock or now_ms
        self._handlers: Dict[str, ActionHandler] = dict(BUILTIN_ACTIONS)
        if handlers:
            self._handlers.update(handlers)
        logger.debug('ActionDispatcher ready with actions %s (default layer %s)', sorted(self._handlers), default_layer)

    @property
    def actions(self) -> FrozenSet[str]:
        return frozenset(self._handlers)

    def register(self, name: str, handler: ActionHandler) -> None:
        if name in self._handlers:
            logger.warning("Action '%s' re-registered - previous handler replaced", name)
        self._handlers[name] = handler

    async def execute(
        self,
        action: str,
        parameters: Mapping[str, Any],
        context: ProtocolContext,
        *,
        protocol_id: Optional[str] = None,
        step_id: Optional[str] = None,
    ) -> Any:
        """
        Run ``action`` and return whatever its handler returns.

        Raises:
            UnknownActionError: ``action`` is not in the table.
            DispatchFailureError: the handler or the collaborator failed,
                including malformed parameters.
        """
        handler = self._handlers.get(action)
        if handler is None:
            raise UnknownActionError(action)

        ctx = ActionContext(
            situation=self.situation,
            context=context,
            default_layer=self.default_layer,
            protocol_id=protocol_id,
            step_id=step_id,
            clock=self._clock,
        )
        try:
            return await handler(parameters or {}, ctx)
        except StepExecutionError:
            raise
        except Exception as exc:
            raise DispatchFailureError(action, exc) from exc
