"""ctxcompact plugin system powered by pluggy."""

from ctxcompact.plugins.base import BasePlugin, CompactorHookSpec, hookimpl, hookspec
from ctxcompact.plugins.hooks import HookRunner
from ctxcompact.plugins.manager import PluginManager

__all__ = [
    "BasePlugin",
    "CompactorHookSpec",
    "HookRunner",
    "PluginManager",
    "hookimpl",
    "hookspec",
]
