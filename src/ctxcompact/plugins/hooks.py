"""Hook execution wrapping pluggy with error handling."""

from __future__ import annotations

import logging
from typing import Any

import pluggy

from ctxcompact.core.digest import DigestRegistry

logger = logging.getLogger(__name__)


class HookRunner:
    """Runs plugin hooks so that a broken plugin cannot abort a compaction."""

    def __init__(self, plugin_manager: pluggy.PluginManager) -> None:
        self._pm = plugin_manager

    def collect_digesters(self, registry: DigestRegistry) -> DigestRegistry:
        """Add every plugin-provided digest formatter to *registry*.

        Plugins registered later win on name clashes.
        """
        try:
            results: list[Any] = self._pm.hook.register_digesters()
        except Exception:
            logger.exception("Error running register_digesters hooks")
            return registry

        # pluggy returns results in LIFO registration order
        for result in reversed(results):
            if not isinstance(result, dict):
                logger.warning("Ignoring digesters of type %s", type(result).__name__)
                continue
            for tool_name, formatter in result.items():
                if callable(formatter):
                    registry.register(tool_name, formatter)
        return registry

    def run_post_compaction(self, result: object) -> None:
        """Run post_compaction hooks."""
        try:
            self._pm.hook.post_compaction(result=result)
        except Exception:
            logger.exception("Error running post_compaction hooks")
