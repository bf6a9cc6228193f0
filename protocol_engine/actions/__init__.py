"""Action table for protocol steps.

Built-in actions live in :mod:`protocol_engine.actions.builtin`; extra
handlers can be passed to :class:`ActionDispatcher` or registered on it at
runtime without touching the engine.
"""
from __future__ import annotations

from .builtin import BUILTIN_ACTIONS
from .dispatcher import ActionDispatcher

__all__: list[str] = ["ActionDispatcher", "BUILTIN_ACTIONS"]
