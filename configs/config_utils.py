import copy
import logging
from typing import Any, Dict

logger = logging.getLogger(__name__)


class ConfigMerger:
    @staticmethod
    def merge(
        base: Dict[str, Any],
        override: Dict[str, Any],
        context_description: str = "ConfigMerge",
        strict_keys: bool = False,
    ) -> Dict[str, Any]:
        """
        Merge ``override`` into a copy of ``base``.

        Nested dictionaries merge recursively; any other override value
        (lists included) replaces the base value. With ``strict_keys`` an
        override key absent from ``base`` raises ``ValueError``.
        """
        if not isinstance(base, dict):
            logger.error("[%s] Base for merge is not a dictionary (type: %s)", context_description, type(base))
            return copy.deepcopy(override) if isinstance(override, dict) else {}
        if not isinstance(override, dict):
            logger.warning("[%s] Override for merge is not a dictionary (type: %s) - ignored",
                           context_description, type(override))
            return copy.deepcopy(base)

        merged = copy.deepcopy(base)
        for key, override_value in override.items():
            if key not in merged:
                if strict_keys:
                    raise ValueError(f"[{context_description}] Unknown key '{key}' in override.")
                merged[key] = copy.deepcopy(override_value)
                logger.debug("[%s] Added key '%s'", context_description, key)
            elif isinstance(merged[key], dict) and isinstance(override_value, dict):
                merged[key] = ConfigMerger.merge(
                    merged[key], override_value, f"{context_description} -> {key}", strict_keys=strict_keys,
                )
            elif merged[key] != override_value:
                logger.debug("[%s] Overridden key '%s': %r -> %r", context_description, key, merged[key], override_value)
                merged[key] = copy.deepcopy(override_value)
        return merged
