# domain/ports/event_bus_port.py

"""Event bus interface shared by the engine and the situational store."""

from typing import Any, Callable, Protocol, runtime_checkable


@runtime_checkable
class EventBusPort(Protocol):
    """Interface for event publishing and subscription."""

    def publish(self, event_type: str, payload: Any) -> None:
        """
        Publish an event to subscribers.

        Args:
            event_type: Type of event, by convention the signal class name
            payload: Event data, usually a ``TacticalSignal``
        """
        ...

    def subscribe(self, event_type: str, handler: Callable[[Any], Any]) -> None:
        """
        Subscribe to an event type.

        Args:
            event_type: Type of event
            handler: Sync function or coroutine function called with the payload
        """
        ...

    def unsubscribe(self, event_type: str, handler: Callable[[Any], Any]) -> None:
        """Remove a handler previously passed to :meth:`subscribe`."""
        ...
