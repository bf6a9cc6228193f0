# signals/__init__.py
from __future__ import annotations
import inspect
from typing import Dict, Type, List

from .base import TacticalSignal
from .core import (
    ProtocolLoadedSignal, ProtocolActivatedSignal, ProtocolDeactivatedSignal,
    StepExecutedSignal, StepErrorSignal, SituationUpdatedSignal,
    LayerCreatedSignal, ElementAddedSignal,
)

def get_all_subclasses(cls: Type) -> List[Type]:
    all_subclasses = []
    for subclass in cls.__subclasses__():
        all_subclasses.append(subclass)
        all_subclasses.extend(get_all_subclasses(subclass))
    return all_subclasses

_signal_class_map: Dict[str, Type[TacticalSignal]] = {
    cls.__name__: cls for cls in get_all_subclasses(TacticalSignal)
    if not inspect.isabstract(cls)
}
_signal_class_map['TacticalSignal'] = TacticalSignal

# Signals the protocol engine itself emits.
NOTIFICATION_SIGNALS: tuple[Type[TacticalSignal], ...] = (
    ProtocolLoadedSignal,
    ProtocolActivatedSignal,
    ProtocolDeactivatedSignal,
    StepExecutedSignal,
    StepErrorSignal,
)

__all__ = [
    'TacticalSignal', 'ProtocolLoadedSignal', 'ProtocolActivatedSignal',
    'ProtocolDeactivatedSignal', 'StepExecutedSignal', 'StepErrorSignal',
    'SituationUpdatedSignal', 'LayerCreatedSignal', 'ElementAddedSignal',
    'NOTIFICATION_SIGNALS', '_signal_class_map',
]

signal_class_map = _signal_class_map
