"""Tool-call / tool-result pairing repair."""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Sequence

from ctxcompact.core.messages import Message, ToolCallPart, ToolResultPart

logger = logging.getLogger(__name__)


def call_ids(messages: Sequence[Message]) -> set[str]:
    """Ids of every tool call made by an assistant message."""
    return {
        call.tool_call_id
        for m in messages
        if m.role == "assistant"
        for call in m.tool_calls
    }


def result_ids(messages: Sequence[Message]) -> set[str]:
    """Ids answered by ``tool`` messages."""
    return {
        result.tool_call_id
        for m in messages
        if m.role == "tool"
        for result in m.tool_results
    }


def remove_orphan_results(messages: Sequence[Message]) -> tuple[Message, ...]:
    """Strip tool results whose call is no longer in the log.

    A tool message left with no results is dropped entirely.
    """
    calls = call_ids(messages)
    kept: list[Message] = []
    for msg in messages:
        if msg.role != "tool":
            kept.append(msg)
            continue

        content = tuple(
            p
            for p in msg.content
            if not (isinstance(p, ToolResultPart) and p.tool_call_id not in calls)
        )
        if len(content) == len(msg.content) and msg.tool_results:
            kept.append(msg)
            continue

        logger.debug(
            "Stripped %d orphaned tool result(s) from tool message",
            len(msg.content) - len(content),
        )
        if any(isinstance(p, ToolResultPart) for p in content):
            kept.append(replace(msg, content=content))
    return tuple(kept)


def remove_orphan_calls(messages: Sequence[Message]) -> tuple[Message, ...]:
    """Strip tool-call parts whose result is gone.

    An assistant message left with no content is dropped entirely.
    """
    results = result_ids(messages)
    kept: list[Message] = []
    for msg in messages:
        if msg.role != "assistant" or not msg.tool_calls:
            kept.append(msg)
            continue

        content = tuple(
            p
            for p in msg.content
            if not (isinstance(p, ToolCallPart) and p.tool_call_id not in results)
        )
        if len(content) == len(msg.content):
            kept.append(msg)
            continue

        logger.debug(
            "Stripped %d orphaned tool call(s) from assistant message",
            len(msg.content) - len(content),
        )
        if content:
            kept.append(replace(msg, content=content))
    return tuple(kept)


def resolve_orphans(messages: Sequence[Message]) -> tuple[Message, ...]:
    """Restore the one-to-one pairing between tool calls and results.

    Running it on its own output returns the same sequence.
    """
    return remove_orphan_calls(remove_orphan_results(messages))
