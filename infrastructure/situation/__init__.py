from .memory_situation_store import DEFAULT_LAYERS, InMemorySituationStore

__all__ = ['DEFAULT_LAYERS', 'InMemorySituationStore']
