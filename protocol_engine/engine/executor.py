from __future__ import annotations
import logging
from typing import Optional

from domain.protocol.schema import ProtocolContext, ProtocolDefinition, ProtocolStep

from ..actions.dispatcher import ActionDispatcher
from ..errors import StepExecutionError, error_code_for
from ..expressions.conditions import ConditionEvaluator
from ..models import StepOutcome
from ..protocols import ConditionChecker
from .event_helper import ProtocolEventHelper

logger = logging.getLogger(__name__)


class StepExecutor:
    """
    Runs one step: dispatch its action, then evaluate its completion criteria.

    Dispatch failures stop here. They are reported as ``StepErrorSignal`` and
    returned as a failed, incomplete outcome; the step stays active so the
    next re-evaluation pass retries it.
    """

    def __init__(
        self,
        dispatcher: ActionDispatcher,
        events: ProtocolEventHelper,
        *,
        evaluator: Optional[ConditionChecker] = None,
    ) -> None:
        self.dispatcher = dispatcher
        self.events = events
        self.evaluator: ConditionChecker = evaluator or ConditionEvaluator()

    async def execute_step(
        self, protocol: ProtocolDefinition, step: ProtocolStep, context: ProtocolContext
    ) -> StepOutcome:
        logger.debug('[%s] executing step %s (%s)', protocol.id, step.id, step.action)
        try:
            result = await self.dispatcher.execute(
                step.action, step.parameters, context, protocol_id=protocol.id, step_id=step.id,
            )
        except StepExecutionError as exc:
            code = str(error_code_for(exc))
            logger.warning('[%s] step %s failed (%s): %s', protocol.id, step.id, code, exc)
            self.events.step_error(protocol.id, step.id, step.action, exc, code)
            return StepOutcome(protocol_id=protocol.id, step_id=step.id, complete=False, error=str(exc), error_code=code)

        complete = self.evaluator.all_met(step.completion_criteria, context)
        logger.info('[%s] step %s executed, complete=%s', protocol.id, step.id, complete)
        self.events.step_executed(protocol.id, step.id, step.action, complete)
        return StepOutcome(protocol_id=protocol.id, step_id=step.id, complete=complete, result=result)
