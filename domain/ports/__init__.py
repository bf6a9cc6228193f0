"""Interfaces the protocol engine depends on or exposes."""
from __future__ import annotations

from .event_bus_port import EventBusPort
from .protocol_engine_port import ProtocolEnginePort
from .situation_port import LayerNotFoundError, SituationPort

__all__ = ["EventBusPort", "LayerNotFoundError", "ProtocolEnginePort", "SituationPort"]
