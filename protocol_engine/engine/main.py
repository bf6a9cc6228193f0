from __future__ import annotations
import asyncio
import contextlib
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, FrozenSet, List, Mapping, Optional, Sequence, Set

import shortuuid

from domain.ports.event_bus_port import EventBusPort
from domain.ports.situation_port import SituationPort
from domain.protocol.schema import ProtocolContext, ProtocolDefinition, ProtocolStep, coerce_context
from domain.protocol.validation import validate_protocol
from signals.core import SituationUpdatedSignal

from ..actions.dispatcher import ActionDispatcher
from ..config import EngineConfig
from ..errors import ConditionsNotMetError, ProtocolNotFoundError, StructuralError
from ..expressions.conditions import ConditionEvaluator
from ..loader import ProtocolLoader
from ..models import StepOutcome
from .event_helper import ProtocolEventHelper
from .executor import StepExecutor

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _Activation:
    """One activation episode: the protocol as activated plus its active-step set."""
    protocol: ProtocolDefinition
    steps: Set[str]
    episode_id: str = field(default_factory=lambda: shortuuid.uuid()[:8])
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @property
    def protocol_id(self) -> str:
        return self.protocol.id


class ProtocolOrchestrator:
    """
    Owns the protocol registry and every activation episode.

    Serialization: each episode's active-step set is only read-modified-written
    under the episode's ``asyncio.Lock``; action dispatch happens outside it.
    A completion only progresses if its step is still active in the *same*
    episode, so completions from ended episodes or from a step already
    progressed by an overlapping pass are dropped.

    Situation updates are queued by the event-bus handler and drained by a
    single consumer task (see :meth:`start`), one re-evaluation pass at a time.
    """

    def __init__(
        self,
        situation: SituationPort,
        *,
        event_bus: Optional[EventBusPort] = None,
        config: Optional[EngineConfig] = None,
        dispatcher: Optional[ActionDispatcher] = None,
        evaluator: Optional[ConditionEvaluator] = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.component_id = self.config.component_id
        self.situation = situation
        self.event_bus = event_bus
        self.events = ProtocolEventHelper(event_bus, self.component_id)
        self.evaluator = evaluator or ConditionEvaluator()
        self.dispatcher = dispatcher or ActionDispatcher(situation, default_layer=self.config.default_layer)
        self.executor = StepExecutor(self.dispatcher, self.events, evaluator=self.evaluator)

        self._protocols: Dict[str, ProtocolDefinition] = {}
        self._active: Dict[str, _Activation] = {}
        self._updates: Optional[asyncio.Queue[Any]] = None
        self._consumer: Optional[asyncio.Task[None]] = None
        logger.info('[%s] ProtocolOrchestrator ready (reject_cycles=%s, default_layer=%s)',
                    self.component_id, self.config.reject_cyclic_protocols, self.config.default_layer)

    # ------------------------------------------------------------------ #
    # Registry
    # ------------------------------------------------------------------ #
    async def load_protocol(self, protocol: ProtocolDefinition | Mapping[str, Any]) -> ProtocolDefinition:
        definition = protocol if isinstance(protocol, ProtocolDefinition) else ProtocolDefinition.model_validate(dict(protocol))
        try:
            validate_protocol(definition, reject_cycles=self.config.reject_cyclic_protocols)
        except StructuralError as exc:
            logger.error('[%s] protocol %s rejected: %s', self.component_id, definition.id, exc)
            raise

        if definition.id in self._protocols:
            logger.info("Protocol '%s' re-loaded - previous definition replaced", definition.id)
        stored = definition.model_copy(deep=True)
        self._protocols[stored.id] = stored
        logger.info("Protocol '%s' (%s, %d step(s)) loaded", stored.id, stored.kind.value, len(stored.steps))
        self.events.protocol_loaded(stored.id, stored.display_name, len(stored.steps))
        return stored.model_copy(deep=True)

    async def load_protocols_from_directory(self, directory: Path | str) -> List[str]:
        loaded: List[str] = []
        for definition in ProtocolLoader().load_definitions_from_directory(Path(directory)):
            try:
                await self.load_protocol(definition)
            except StructuralError:
                continue
            loaded.append(definition.id)
        return loaded

    def get_protocol(self, protocol_id: str) -> Optional[ProtocolDefinition]:
        stored = self._protocols.get(protocol_id)
        return stored.model_copy(deep=True) if stored is not None else None

    def list_protocols(self) -> List[str]:
        return sorted(self._protocols)

    def is_active(self, protocol_id: str) -> bool:
        return protocol_id in self._active

    def get_active_steps(self, protocol_id: str) -> Optional[FrozenSet[str]]:
        activation = self._active.get(protocol_id)
        return frozenset(activation.steps) if activation else None

    def active_protocols(self) -> Dict[str, FrozenSet[str]]:
        return {pid: frozenset(a.steps) for pid, a in self._active.items()}

    # ------------------------------------------------------------------ #
    # Activation lifecycle
    # ------------------------------------------------------------------ #
    async def activate_protocol(
        self,
        protocol_id: str,
        context: ProtocolContext | Mapping[str, Any] | None = None,
    ) -> None:
        protocol = self._protocols.get(protocol_id)
        if protocol is None:
            raise ProtocolNotFoundError(protocol_id)

        ctx = coerce_context(context)
        failed = self.evaluator.failed(protocol.conditions, ctx)
        if failed:
            logger.info("Protocol '%s' not activated: %d condition(s) failed", protocol_id, len(failed))
            raise ConditionsNotMetError(protocol_id, failed)

        first = protocol.first_step
        if first is None:  # unreachable for validated protocols
            raise ProtocolNotFoundError(protocol_id)

        previous = self._active.get(protocol_id)
        if previous is not None:
            logger.warning("Protocol '%s' re-activated - episode %s superseded", protocol_id, previous.episode_id)
            self._end(previous, reason='superseded')

        activation = _Activation(protocol=protocol, steps={first.id})
        self._active[protocol_id] = activation
        logger.info("Protocol '%s' activated (episode %s), first step %s", protocol_id, activation.episode_id, first.id)

        await self._run_step(activation, first, ctx.with_active_steps(activation.steps))
        self.events.protocol_activated(protocol_id, first.id, activation.episode_id)

    async def deactivate_protocol(self, protocol_id: str) -> bool:
        if protocol_id not in self._protocols:
            raise ProtocolNotFoundError(protocol_id)
        activation = self._active.get(protocol_id)
        if activation is None:
            logger.debug("Protocol '%s' already inactive", protocol_id)
            return False
        self._end(activation, reason='explicit')
        return True

    def _end(self, activation: _Activation, *, reason: str) -> None:
        if self._active.get(activation.protocol_id) is not activation:
            return
        del self._active[activation.protocol_id]
        logger.info("Protocol '%s' deactivated (%s), episode %s", activation.protocol_id, reason, activation.episode_id)
        self.events.protocol_deactivated(activation.protocol_id, reason, activation.steps)

    # ------------------------------------------------------------------ #
    # Step execution & progression
    # ------------------------------------------------------------------ #
    async def _run_step(self, activation: _Activation, step: ProtocolStep, context: ProtocolContext) -> StepOutcome:
        outcome = await self.executor.execute_step(activation.protocol, step, context)
        if outcome.complete:
            await self._progress(activation, step, context)
        return outcome

    async def _progress(self, activation: _Activation, step: ProtocolStep, context: ProtocolContext) -> None:
        async with activation.lock:
            if self._active.get(activation.protocol_id) is not activation:
                logger.debug("[%s] episode %s ended before step %s completed - progression dropped",
                             activation.protocol_id, activation.episode_id, step.id)
                return
            if step.id not in activation.steps:
                logger.debug("[%s] step %s already progressed - duplicate completion ignored",
                             activation.protocol_id, step.id)
                return
            successors = list(dict.fromkeys(step.next_steps))
            activation.steps.discard(step.id)
            activation.steps.update(successors)
            frontier = frozenset(activation.steps)

        if not successors:
            logger.info('[%s] step %s finished with no successors, %d step(s) still active',
                        activation.protocol_id, step.id, len(frontier))
            return

        logger.info('[%s] step %s -> %s', activation.protocol_id, step.id, successors)
        next_steps: List[ProtocolStep] = []
        for next_id in successors:
            next_step = activation.protocol.get_step(next_id)
            if next_step is None:
                logger.warning('[%s] successor %s of %s does not exist - skipped', activation.protocol_id, next_id, step.id)
                continue
            next_steps.append(next_step)
        await self._run_concurrently(activation, next_steps, context.with_active_steps(frontier))

    async def _run_concurrently(
        self, activation: _Activation, steps: Sequence[ProtocolStep], context: ProtocolContext
    ) -> None:
        if not steps:
            return
        results = await asyncio.gather(
            *(self._run_step(activation, s, context) for s in steps),
            return_exceptions=True,
        )
        for step, res in zip(steps, results):
            if isinstance(res, Exception):
                logger.error('[%s] step %s escaped the executor boundary: %s',
                             activation.protocol_id, step.id, res, exc_info=res)

    # ------------------------------------------------------------------ #
    # Re-evaluation
    # ------------------------------------------------------------------ #
    async def reevaluate(self, update: Any) -> None:
        """Run one re-evaluation pass over every active protocol."""
        episodes = list(self._active.values())
        if not episodes:
            logger.debug('Situation update received, no active protocols')
            return
        logger.info('Re-evaluating %d active protocol(s)', len(episodes))
        results = await asyncio.gather(
            *(self._reevaluate_episode(a, update) for a in episodes),
            return_exceptions=True,
        )
        for activation, res in zip(episodes, results):
            if isinstance(res, Exception):
                logger.error("Re-evaluation of '%s' failed: %s", activation.protocol_id, res, exc_info=res)

    async def _reevaluate_episode(self, activation: _Activation, update: Any) -> None:
        if self._active.get(activation.protocol_id) is not activation:
            return
        async with activation.lock:
            steps = frozenset(activation.steps)

        context = ProtocolContext.from_situation_update(update, steps)
        if not self.evaluator.all_met(activation.protocol.conditions, context):
            self._end(activation, reason='conditions_not_met')
            return

        to_run = [s for s in (activation.protocol.get_step(sid) for sid in sorted(steps)) if s is not None]
        if not to_run:
            logger.debug("[%s] idle - no active steps to re-run", activation.protocol_id)
            return
        await self._run_concurrently(activation, to_run, context)

    # ------------------------------------------------------------------ #
    # Situation-update channel
    # ------------------------------------------------------------------ #
    @property
    def running(self) -> bool:
        return self._consumer is not None and not self._consumer.done()

    async def start(self) -> None:
        if self.running:
            return
        self._updates = asyncio.Queue(maxsize=self.config.update_queue_maxsize)
        if self.event_bus is not None:
            self.event_bus.subscribe(SituationUpdatedSignal.__name__, self._on_situation_updated)
        else:
            logger.warning('[%s] started without an event bus - use submit_update() to feed updates', self.component_id)
        self._consumer = asyncio.create_task(self._consume_updates(), name=f'{self.component_id}-updates')
        logger.info('[%s] listening for situation updates', self.component_id)

    async def stop(self, *, drain: bool = True) -> None:
        if self.event_bus is not None:
            self.event_bus.unsubscribe(SituationUpdatedSignal.__name__, self._on_situation_updated)
        if drain:
            await self.drain()
        if self._consumer is not None:
            self._consumer.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._consumer
        self._consumer = None
        self._updates = None
        logger.info('[%s] stopped', self.component_id)

    async def drain(self) -> None:
        """Wait until every queued situation update has been re-evaluated."""
        if self._updates is not None and self.running:
            await self._updates.join()

    def submit_update(self, update: Any) -> bool:
        if self._updates is None:
            logger.warning('[%s] not started - situation update dropped', self.component_id)
            return False
        try:
            self._updates.put_nowait(update)
        except asyncio.QueueFull:
            logger.warning('[%s] update queue full (%d) - situation update dropped',
                           self.component_id, self._updates.maxsize)
            return False
        return True

    def _on_situation_updated(self, signal: Any) -> None:
        self.submit_update(signal)

    async def _consume_updates(self) -> None:
        assert self._updates is not None
        queue = self._updates
        while True:
            update = await queue.get()
            try:
                await self.reevaluate(update)
            except Exception:
                logger.exception('[%s] re-evaluation pass failed', self.component_id)
            finally:
                queue.task_done()
