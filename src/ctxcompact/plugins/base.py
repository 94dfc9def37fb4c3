"""Plugin interface and hook specifications using pluggy."""

from __future__ import annotations

import pluggy

hookspec = pluggy.HookspecMarker("ctxcompact")
hookimpl = pluggy.HookimplMarker("ctxcompact")


class CompactorHookSpec:
    """Hook specifications for ctxcompact plugins.

    Plugins only need to implement the hooks they care about.
    """

    @hookspec
    def register_digesters(self) -> dict:
        """Register digest formatters for additional tools.

        Returns:
            Mapping of tool name to a callable taking the tool call's
            input dict and returning a one-line description.
        """

    @hookspec
    def post_compaction(self, result: object) -> None:
        """Called after a conversation has been compacted.

        Args:
            result: The CompactionResult that was produced.
        """


class BasePlugin:
    """Base class for ctxcompact plugins.

    Example::

        from ctxcompact.plugins.base import BasePlugin, hookimpl

        class DeployPlugin(BasePlugin):
            name = "deploy"

            @hookimpl
            def register_digesters(self):
                return {"deploy": lambda inp: f"Deployed: {inp.get('env')}"}
    """

    name: str = "unnamed"
    version: str = "0.0.0"
    description: str = ""
