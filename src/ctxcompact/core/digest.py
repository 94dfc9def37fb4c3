"""Per-tool digest formatters used when summarizing a conversation.

Each formatter turns a tool call's input into a short human-readable
line. Unknown tools fall back to ``Used tool: <name>``.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Callable

from ctxcompact.core.truncation import truncate_head

logger = logging.getLogger(__name__)

DigestFormatter = Callable[[dict[str, Any]], str]

_PROMPT_CHARS = 1000
_PARAMS_CHARS = 1000
_COMMAND_CHARS = 50
_QUESTION_CHARS = 200


class DigestRegistry:
    """Registry mapping tool names to digest formatters."""

    def __init__(self) -> None:
        self._formatters: dict[str, DigestFormatter] = {}

    def register(self, tool_name: str, formatter: DigestFormatter) -> None:
        """Register (or replace) the formatter for a tool."""
        self._formatters[tool_name] = formatter

    def get(self, tool_name: str) -> DigestFormatter | None:
        return self._formatters.get(tool_name)

    def list_names(self) -> list[str]:
        return list(self._formatters.keys())

    def format(self, tool_name: str, tool_input: dict[str, Any] | None) -> str:
        """Describe a tool call in one line (or a few for list-style tools)."""
        formatter = self._formatters.get(tool_name)
        if formatter is None:
            return f"Used tool: {tool_name}"
        try:
            return formatter(tool_input if isinstance(tool_input, dict) else {})
        except (AttributeError, TypeError, ValueError) as e:
            logger.debug("Digest formatter for %s failed: %s", tool_name, e)
            return f"Used tool: {tool_name}"

    @staticmethod
    def create_default_registry() -> DigestRegistry:
        """Create a registry with formatters for the built-in agent tools."""
        registry = DigestRegistry()
        for name, formatter in _BUILTIN_FORMATTERS.items():
            registry.register(name, formatter)
        return registry


def _paths(label: str, fallback: str) -> DigestFormatter:
    def fmt(tool_input: dict[str, Any]) -> str:
        paths = tool_input.get("paths")
        if paths:
            return f"{label}: {', '.join(str(p) for p in paths)}"
        return fallback

    return fmt


def _path(label: str, fallback: str) -> DigestFormatter:
    def fmt(tool_input: dict[str, Any]) -> str:
        path = tool_input.get("path")
        return f"{label}: {path}" if path else fallback

    return fmt


def _query(label: str) -> DigestFormatter:
    def fmt(tool_input: dict[str, Any]) -> str:
        query = tool_input.get("query")
        return f'{label}: "{query}"' if query else label

    return fmt


def _fixed(text: str) -> DigestFormatter:
    return lambda tool_input: text


def _code_search(tool_input: dict[str, Any]) -> str:
    pattern = tool_input.get("pattern")
    flags = tool_input.get("flags")
    if pattern and flags:
        return f'Code search: "{pattern}" ({flags})'
    return f'Code search: "{pattern}"' if pattern else "Code search"


def _glob(tool_input: dict[str, Any]) -> str:
    patterns = tool_input.get("patterns") or []
    names = [p.get("pattern", "") if isinstance(p, dict) else str(p) for p in patterns]
    return f"Glob: {', '.join(names)}" if names else "Glob search"


def _list_directory(tool_input: dict[str, Any]) -> str:
    directories = tool_input.get("directories") or []
    names = [d.get("path", "") if isinstance(d, dict) else str(d) for d in directories]
    return f"Listed dirs: {', '.join(names)}" if names else "Listed directory"


def _find_files(tool_input: dict[str, Any]) -> str:
    pattern = tool_input.get("pattern")
    return f'Find files: "{pattern}"' if pattern else "Find files"


def _run_terminal_command(tool_input: dict[str, Any]) -> str:
    command = tool_input.get("command")
    if command:
        return f"Ran command: {truncate_head(str(command), _COMMAND_CHARS)}"
    return "Ran terminal command"


def _agent_extras(prompt: Any, params: Any) -> list[str]:
    extras: list[str] = []
    if prompt:
        extras.append(f'prompt: "{truncate_head(str(prompt), _PROMPT_CHARS)}"')
    if params:
        extras.append(f"params: {truncate_head(json.dumps(params, default=str), _PARAMS_CHARS)}")
    return extras


def _spawn_agents(tool_input: dict[str, Any]) -> str:
    agents = tool_input.get("agents")
    if agents:
        details = []
        for agent in agents:
            detail = str(agent.get("agent_type", "unknown"))
            extras = _agent_extras(agent.get("prompt"), agent.get("params"))
            if extras:
                detail += f" ({', '.join(extras)})"
            details.append(f"- {detail}")
        return "Spawned agents:\n" + "\n".join(details)

    agent_type = tool_input.get("agent_type")
    if agent_type:
        extras = _agent_extras(tool_input.get("prompt"), tool_input.get("params"))
        if extras:
            return f"Spawned agent: {agent_type} ({', '.join(extras)})"
        return f"Spawned agent: {agent_type}"
    return "Spawned agent(s)"


def _write_todos(tool_input: dict[str, Any]) -> str:
    todos = tool_input.get("todos")
    if todos is None:
        return "Updated todos"
    completed = sum(1 for t in todos if t.get("completed"))
    remaining = [t for t in todos if not t.get("completed")]
    if not remaining:
        return f"Todos: {completed}/{len(todos)} complete (all done!)"
    tasks = "\n".join(f"- {t.get('task', '')}" for t in remaining)
    return f"Todos: {completed}/{len(todos)} complete. Remaining:\n{tasks}"


def _ask_user(tool_input: dict[str, Any]) -> str:
    questions = tool_input.get("questions")
    if questions:
        text = "; ".join(str(q.get("question", "")) for q in questions)
        return f"Asked user: {truncate_head(text, _QUESTION_CHARS)}"
    return "Asked user question"


_BUILTIN_FORMATTERS: dict[str, DigestFormatter] = {
    "read_files": _paths("Read files", "Read files"),
    "write_file": _path("Wrote file", "Wrote file"),
    "str_replace": _path("Edited file", "Edited file"),
    "propose_write_file": _path("Proposed write to", "Proposed file write"),
    "propose_str_replace": _path("Proposed edit to", "Proposed file edit"),
    "read_subtree": _paths("Read subtree", "Read subtree"),
    "code_search": _code_search,
    "glob": _glob,
    "list_directory": _list_directory,
    "find_files": _find_files,
    "run_terminal_command": _run_terminal_command,
    "spawn_agents": _spawn_agents,
    "spawn_agent_inline": _spawn_agents,
    "write_todos": _write_todos,
    "ask_user": _ask_user,
    "suggest_followups": _fixed("Suggested followups"),
    "web_search": _query("Web search"),
    "read_docs": _query("Read docs"),
    "set_output": _fixed("Set output"),
    "set_messages": _fixed("Set messages"),
}
