# infrastructure/event_bus/memory_event_bus.py
from __future__ import annotations

import asyncio
import inspect
import logging
import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any, Callable, Coroutine, Deque, Dict, List, Optional, Sequence, Set

from domain.ports.event_bus_port import EventBusPort

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class _RecordedEvent:
    ts: float
    signal_name: str
    payload: Any


class MemoryEventBus(EventBusPort):
    """
    In-process pub/sub used by the engine and the situational store.

    Publishing from inside a running loop schedules dispatch as a task and
    returns immediately; :meth:`flush` waits for every scheduled dispatch.
    Handler failures are logged and never reach the publisher.
    """

    def __init__(self, component_id: str = "event_bus_memory", max_history: int = 1000) -> None:
        self.component_id = component_id
        self._subs: Dict[str, List[Callable[[Any], Any | Coroutine]]] = defaultdict(list)
        self._history: Deque[_RecordedEvent] = deque(maxlen=max_history)
        self._pending: Set[asyncio.Task[None]] = set()
        self._published = 0
        self._handler_errors = 0
        logger.info("[%s] constructed (max_history=%s)", self.component_id, max_history)

    def subscribe(self, signal_name: str, handler: Callable[[Any], Any]) -> None:
        self._subs[signal_name].append(handler)
        logger.debug('[%s] subscribed to "%s" (%d subscriber(s))',
                     self.component_id, signal_name, len(self._subs[signal_name]))

    def unsubscribe(self, signal_name: str, handler: Callable[[Any], Any]) -> None:
        try:
            self._subs[signal_name].remove(handler)
            logger.debug("[%s] unsubscribed %s -> %s", self.component_id, signal_name, handler)
        except (KeyError, ValueError):
            pass

    def publish(self, signal_name: str, payload: Any | None = None) -> None:
        self._record(signal_name, payload)
        self._published += 1
        handlers = tuple(self._subs.get(signal_name, ()))
        logger.debug('[%s] publishing "%s" to %d subscriber(s)', self.component_id, signal_name, len(handlers))
        if not handlers:
            return

        if self._inside_running_loop():
            task = asyncio.create_task(self._dispatch(signal_name, payload, handlers))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        else:
            asyncio.run(self._dispatch(signal_name, payload, handlers))

    async def flush(self) -> None:
        """Wait until every dispatch scheduled so far (and any it schedules) has finished."""
        while self._pending:
            await asyncio.gather(*tuple(self._pending), return_exceptions=True)

    async def _dispatch(self, signal_name: str, payload: Any, handlers: Sequence[Callable[[Any], Any | Coroutine]]) -> None:
        coros = []
        for handler in handlers:
            try:
                if inspect.iscoroutinefunction(handler):
                    coros.append(handler(payload))
                else:
                    handler(payload)
            except Exception as exc:
                self._handler_errors += 1
                logger.exception("[%s] Error in handler for signal %s: %s", self.component_id, signal_name, exc)

        if coros:
            results = await asyncio.gather(*coros, return_exceptions=True)
            for res in results:
                if isinstance(res, Exception):
                    self._handler_errors += 1
                    logger.error("[%s] Async handler for %s failed: %s", self.component_id, signal_name, res, exc_info=res)

    def _record(self, signal_name: str, payload: Any) -> None:
        self._history.append(_RecordedEvent(time.time(), signal_name, payload))

    def history(self, signal_name: Optional[str] = None) -> List[_RecordedEvent]:
        if signal_name is None:
            return list(self._history)
        return [e for e in self._history if e.signal_name == signal_name]

    def get_stats(self) -> Dict[str, Any]:
        return {
            'subscribers': {k: len(v) for k, v in self._subs.items()},
            'history_size': len(self._history),
            'published': self._published,
            'handler_errors': self._handler_errors,
            'pending_dispatches': len(self._pending),
        }

    @staticmethod
    def _inside_running_loop() -> bool:
        try:
            asyncio.get_running_loop()
            return True
        except RuntimeError:
            return False
