"""Plugin manager - discovers, loads, and manages ctxcompact plugins."""

from __future__ import annotations

import importlib.util
import inspect
import logging
import sys
from pathlib import Path
from types import ModuleType
from typing import Any

import pluggy

from ctxcompact.core.digest import DigestRegistry
from ctxcompact.plugins.base import BasePlugin, CompactorHookSpec
from ctxcompact.plugins.hooks import HookRunner

logger = logging.getLogger(__name__)

_MODULE_PREFIX = "ctxcompact_plugin_"


def _import_plugin_module(file_path: Path) -> ModuleType | None:
    """Import *file_path* as a standalone module, or return None if it can't be."""
    module_name = _MODULE_PREFIX + file_path.stem
    spec = importlib.util.spec_from_file_location(module_name, file_path)
    if spec is None or spec.loader is None:
        logger.warning("Could not create module spec for %s", file_path)
        return None

    module = importlib.util.module_from_spec(spec)
    sys.modules[module_name] = module
    try:
        spec.loader.exec_module(module)
    except Exception:
        del sys.modules[module_name]
        raise
    return module


def _plugin_classes(module: ModuleType) -> list[type[BasePlugin]]:
    return [
        cls
        for _, cls in inspect.getmembers(module, inspect.isclass)
        if issubclass(cls, BasePlugin) and cls is not BasePlugin
    ]


class PluginManager:
    """Discovers, loads, and manages ctxcompact plugins.

    Example::

        pm = PluginManager()
        pm.load_from_directory(Path("./plugins"))
        registry = pm.build_digest_registry()
        result = compact(messages, tags, budget, digesters=registry)
        pm.hooks.run_post_compaction(result)
    """

    def __init__(self) -> None:
        self._pm = pluggy.PluginManager("ctxcompact")
        self._pm.add_hookspecs(CompactorHookSpec)
        self._hooks = HookRunner(self._pm)
        self._plugins: dict[str, BasePlugin] = {}

    def load_from_directory(self, directory: Path) -> int:
        """Load every public ``*.py`` file in *directory*.

        A file that fails to import is logged and skipped.

        Returns:
            Number of plugins successfully loaded.
        """
        if not directory.is_dir():
            logger.warning("Plugin directory does not exist: %s", directory)
            return 0

        before = len(self._plugins)
        for py_file in sorted(directory.glob("*.py")):
            if py_file.name.startswith("_"):
                continue
            try:
                module = _import_plugin_module(py_file)
            except Exception:
                logger.exception("Failed to import plugin file: %s", py_file)
                continue
            if module is not None:
                self._register_classes(module, py_file)

        loaded = len(self._plugins) - before
        logger.info("Loaded %d plugin(s) from %s", loaded, directory)
        return loaded

    def _register_classes(self, module: ModuleType, source: Path) -> None:
        for cls in _plugin_classes(module):
            try:
                plugin = cls()
                self.load_plugin(plugin)
            except Exception:
                logger.exception("Could not load plugin class %s from %s", cls.__name__, source)
                continue
            logger.info("Loaded plugin %s v%s from %s", plugin.name, plugin.version, source.name)

    def load_plugin(self, plugin: BasePlugin) -> None:
        """Register a single plugin instance.

        Raises:
            TypeError: If the plugin is not a BasePlugin instance.
            ValueError: If a plugin with the same name is already loaded.
        """
        if not isinstance(plugin, BasePlugin):
            raise TypeError(f"Expected BasePlugin instance, got {type(plugin).__name__}")
        if plugin.name in self._plugins:
            raise ValueError(
                f"Plugin '{plugin.name}' is already loaded. "
                "Unload it first or use a different name."
            )

        self._pm.register(plugin, name=plugin.name)
        self._plugins[plugin.name] = plugin

    def unload_plugin(self, name: str) -> bool:
        """Unregister a plugin by name. Returns True if it was loaded."""
        plugin = self._plugins.pop(name, None)
        if plugin is None:
            return False
        self._pm.unregister(plugin, name=name)
        logger.info("Unloaded plugin: %s", name)
        return True

    def list_plugins(self) -> list[dict[str, Any]]:
        """Metadata for every loaded plugin, in load order."""
        return [
            {"name": p.name, "version": p.version, "description": p.description}
            for p in self._plugins.values()
        ]

    def build_digest_registry(self) -> DigestRegistry:
        """Default digest formatters plus those contributed by plugins."""
        return self._hooks.collect_digesters(DigestRegistry.create_default_registry())

    @property
    def hooks(self) -> HookRunner:
        return self._hooks

    @property
    def plugin_count(self) -> int:
        return len(self._plugins)
