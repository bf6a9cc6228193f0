# protocol_engine/loader.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError

from domain.protocol.schema import ProtocolDefinition

logger = logging.getLogger(__name__)

SUPPORTED_VERSION = "1.0"


class ProtocolLoader:
    """Parse YAML protocol files from a directory tree.

    Parsing only: structural validation happens when the definitions are
    handed to ``ProtocolOrchestrator.load_protocol``.
    """

    def __init__(self) -> None:
        self.loaded_definitions: List[ProtocolDefinition] = []

    # ------------------------------------------------------------------ #
    def load_definitions_from_directory(self, directory_path: Path) -> List[ProtocolDefinition]:
        directory_path = Path(directory_path)
        if not directory_path.is_dir():
            logger.warning("Protocol directory not found: %s", directory_path)
            return []

        logger.info("Loading protocol definitions from %s", directory_path)
        for fp in sorted(directory_path.rglob("*")):
            if fp.suffix.lower() not in (".yml", ".yaml"):
                continue
            self.load_definitions_from_file(fp)

        logger.info("%d protocol definition(s) parsed", len(self.loaded_definitions))
        return self.loaded_definitions

    # ------------------------------------------------------------------ #
    def load_definitions_from_file(self, filepath: Path) -> List[ProtocolDefinition]:
        file_defs: List[ProtocolDefinition] = []
        try:
            data = yaml.safe_load(Path(filepath).read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            logger.error("Could not read %s: %s", filepath, exc)
            return file_defs

        if not isinstance(data, dict) or "protocols" not in data:
            logger.debug("No 'protocols' key in %s - skipped", Path(filepath).name)
            return file_defs
        if (ver := str(data.get("version", SUPPORTED_VERSION))) != SUPPORTED_VERSION:
            logger.warning("Unexpected version '%s' in %s", ver, Path(filepath).name)

        for cfg in data["protocols"] or []:
            if not isinstance(cfg, dict):
                logger.error("Protocol entry in %s is not a mapping: %r", Path(filepath).name, cfg)
                continue
            if not cfg.get("enabled", True):
                logger.debug("Protocol %s disabled - skipping", cfg.get("id", "unknown"))
                continue
            definition = self._create_definition(cfg, filepath)
            if definition is None:
                continue
            if any(d.id == definition.id for d in self.loaded_definitions):
                logger.warning("DUPLICATE PROTOCOL ID '%s' from %s - later definition wins on load",
                               definition.id, Path(filepath).name)
            self.loaded_definitions.append(definition)
            file_defs.append(definition)

        logger.info("Parsed %d protocol(s) from %s: %s", len(file_defs), Path(filepath).name, [d.id for d in file_defs])
        return file_defs

    # ------------------------------------------------------------------ #
    @staticmethod
    def _create_definition(cfg: Dict[str, Any], filepath: Path) -> Optional[ProtocolDefinition]:
        body = {k: v for k, v in cfg.items() if k != "enabled"}
        try:
            return ProtocolDefinition.model_validate(body)
        except ValidationError as exc:
            logger.error("Protocol %s in %s failed schema validation: %s", cfg.get("id", "unknown"), Path(filepath).name, exc)
            return None
