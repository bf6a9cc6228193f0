from .memory_event_bus import MemoryEventBus

__all__ = ['MemoryEventBus']
