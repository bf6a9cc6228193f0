from __future__ import annotations
import copy
import json
import logging
import os
import re
from pathlib import Path
from typing import Any, Dict, Final, Mapping, Optional, Sequence
import yaml
from pydantic import ValidationError

from configs.config_utils import ConfigMerger
from protocol_engine.config import EngineConfig

__all__: Sequence[str] = ('ConfigLoader', 'DEFAULT_CONFIG')
logger = logging.getLogger(__name__)

_ENV_DEFAULT: Final[str] = 'default'
_ENGINE_CONFIG_FILE: Final[str] = 'engine_config.yaml'
_ENGINE_SECTION: Final[str] = 'engine'

DEFAULT_CONFIG: Dict[str, Any] = {
    'env': _ENV_DEFAULT,
    _ENGINE_SECTION: EngineConfig().model_dump(),
}

# ${VAR:-default}, ${VAR-default} and ${VAR:default}
_RE_ENV_DEFAULT: Final[re.Pattern[str]] = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)(?::-|:|-)(.*?)\}')


def _interpolate_env(value: str) -> str:
    if not isinstance(value, str):
        return value

    def _repl(match: re.Match[str]) -> str:
        var, default = (match.group(1), match.group(2))
        return os.getenv(var, default)

    before = value
    value = _RE_ENV_DEFAULT.sub(_repl, value)
    value = os.path.expandvars(value)

    if before != value:
        logger.debug("Env expand: '%s' -> '%s'", before, value)
    elif '${' in before:
        logger.warning("Unresolved env var in '%s'", before)
    return value


def _expand_tree(node: Any) -> Any:
    if isinstance(node, dict):
        return {k: _expand_tree(v) for k, v in node.items()}
    if isinstance(node, list):
        return [_expand_tree(v) for v in node]
    if isinstance(node, str):
        return _interpolate_env(node)
    return node


def _load_yaml(path: Path) -> Dict[str, Any]:
    try:
        text = path.read_text(encoding='utf-8')
        if path.suffix.lower() == '.json':
            data = json.loads(text) or {}
        else:
            data = yaml.safe_load(text) or {}
    except FileNotFoundError:
        logger.debug('Config file not found: %s', path)
        return {}
    except (OSError, ValueError, yaml.YAMLError) as exc:
        logger.error('Failed to read %s: %s', path, exc, exc_info=True)
        return {}

    if not isinstance(data, dict):
        logger.warning('%s does not contain a top-level mapping - ignored', path)
        return {}
    return data


class ConfigLoader:
    """
    Layered engine configuration.

    ``configs/default/engine_config.yaml`` is merged over the built-in
    defaults, then ``configs/<env>/engine_config.yaml`` over that; string
    values may reference environment variables as ``${VAR:-default}``.
    """

    def __init__(self, package_root: Optional[Path] = None) -> None:
        self._package_root: Path = package_root if package_root is not None else Path(__file__).resolve().parents[1]

    @property
    def package_root(self) -> Path:
        return self._package_root

    async def load_global_config(self, env: Optional[str] = None, provided_config: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        if provided_config is not None:
            logger.info('Using provided global configuration object.')
            cfg = ConfigMerger.merge(copy.deepcopy(DEFAULT_CONFIG), provided_config, 'provided_config')
            return _expand_tree(cfg)

        env = env or _ENV_DEFAULT
        logger.info('Loading engine configuration for env=%s', env)
        cfg: Dict[str, Any] = copy.deepcopy(DEFAULT_CONFIG)
        cfg['env'] = env

        layers = [('DEFAULT_ENGINE_CONFIG', self._config_path(_ENV_DEFAULT))]
        if env != _ENV_DEFAULT:
            layers.append((f'ENV_ENGINE_CONFIG ({env})', self._config_path(env)))

        for label, path in layers:
            data = _load_yaml(path)
            if data:
                cfg = ConfigMerger.merge(cfg, data, label)
                logger.info('Merged %s: %s', label, path)
            elif label.startswith('ENV_'):
                logger.warning('%s not found: %s', label, path)

        cfg = _expand_tree(cfg)
        logger.debug('Resolved config keys: %s', list(cfg))
        return cfg

    async def load_engine_config(
        self, env: Optional[str] = None, provided_config: Optional[Dict[str, Any]] = None
    ) -> EngineConfig:
        cfg = await self.load_global_config(env, provided_config)
        section = cfg.get(_ENGINE_SECTION) or {}
        if not isinstance(section, Mapping):
            raise ValueError(f"'{_ENGINE_SECTION}' section must be a mapping, got {type(section).__name__}")
        try:
            engine_cfg = EngineConfig.model_validate(dict(section))
        except ValidationError as exc:
            logger.error("Invalid engine configuration for env='%s': %s", cfg.get('env'), exc)
            raise
        logger.info("Engine configuration loaded for env='%s'", cfg.get('env'))
        return engine_cfg

    def resolve_protocol_dirs(self, config: EngineConfig) -> list[Path]:
        """Relative protocol directories are resolved against the package root."""
        dirs = []
        for entry in config.protocol_dirs:
            path = Path(entry)
            dirs.append(path if path.is_absolute() else self._package_root / path)
        return dirs

    def _config_path(self, env: str) -> Path:
        return self._package_root / 'configs' / env / _ENGINE_CONFIG_FILE
