from .event_helper import ProtocolEventHelper
from .executor import StepExecutor
from .main import ProtocolOrchestrator

__all__ = ['ProtocolEventHelper', 'ProtocolOrchestrator', 'StepExecutor']
