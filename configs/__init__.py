from .config_loader import ConfigLoader, DEFAULT_CONFIG
from .config_utils import ConfigMerger

__all__ = ['ConfigLoader', 'ConfigMerger', 'DEFAULT_CONFIG']
