"""Staged, lossy eviction of conversation history.

Shrinks the log in increasingly aggressive passes until it fits the
budget:

0. Drop the caller's per-invocation marker messages (always).
1. Redact old shell command output, keeping the command line (always).
2. Replace any oversized tool result with a size stub.
3. Evict whole messages oldest-first, coalescing each evicted run into a
   single placeholder. Pinned messages, the latest bearer of every
   keep-last tag, and tool-call/tool-result pairs touching them are
   protected; other pairs are evicted as a unit.
4. Repair tool-call/tool-result pairing.

Returns new tuples; input messages are never modified.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from typing import Any, Sequence

from ctxcompact.core.config import EvictionConfig, TagConfig
from ctxcompact.core.messages import PLACEHOLDER_TAG, Message, TextPart, ToolResultPart
from ctxcompact.core.orphans import resolve_orphans
from ctxcompact.core.token_estimation import (
    DEFAULT_MEDIA_PART_TOKENS,
    estimate_conversation_tokens,
    estimate_message_tokens,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvictionResult:
    """Outcome of a staged eviction run."""

    messages: tuple[Message, ...]
    tokens: int
    required_tokens: int
    passes: tuple[str, ...]
    evicted: int = 0
    over_budget: bool = False


def make_placeholder(text: str) -> Message:
    """Synthetic message standing in for a run of evicted messages."""
    return Message(
        role="user",
        content=(TextPart(text=text),),
        tags=frozenset({PLACEHOLDER_TAG}),
    )


def _last_index_with_tag(messages: Sequence[Message], tag: str) -> int:
    for i in range(len(messages) - 1, -1, -1):
        if messages[i].has_tag(tag):
            return i
    return -1


def drop_fresh_markers(messages: Sequence[Message], tags: TagConfig) -> tuple[Message, ...]:
    """Drop the latest fresh-instructions and fresh-sub-spawn messages.

    The caller re-inserts both on every invocation, so the latest copies
    are this invocation's and must not pile up in history.
    """
    result = list(messages)
    for tag in (tags.instructions_prompt, tags.subagent_spawn):
        index = _last_index_with_tag(result, tag)
        if index != -1:
            del result[index]
    return tuple(result)


def _is_stub(output: Any) -> bool:
    return isinstance(output, dict) and output.get("omitted") is True


def _output_size(output: Any) -> int:
    try:
        return len(json.dumps(output, ensure_ascii=False))
    except (TypeError, ValueError):
        return len(str(output))


def _with_outputs(msg: Message, stub_for: Any) -> Message:
    """Copy *msg* with each tool result output replaced by ``stub_for(part)``."""
    content = tuple(
        replace(part, output=stub_for(part)) if isinstance(part, ToolResultPart) else part
        for part in msg.content
    )
    return replace(msg, content=content)


def redact_shell_results(
    messages: Sequence[Message],
    config: EvictionConfig,
) -> tuple[Message, ...]:
    """Keep the newest shell results in full; reduce older ones to their command."""
    shell_tools = set(config.shell_tool_names)
    call_inputs = {
        call.tool_call_id: call.input
        for m in messages
        if m.role == "assistant"
        for call in m.tool_calls
    }

    def stub(part: ToolResultPart) -> Any:
        if _is_stub(part.output):
            return part.output
        command = None
        if isinstance(part.output, dict):
            command = part.output.get("command")
        if command is None:
            command = call_inputs.get(part.tool_call_id, {}).get("command")
        redacted: dict[str, Any] = {"command": command} if command is not None else {}
        redacted["omitted"] = True
        return redacted

    result = list(messages)
    seen = 0
    for i in range(len(result) - 1, -1, -1):
        msg = result[i]
        if msg.role != "tool" or msg.tool_name not in shell_tools:
            continue
        seen += 1
        if seen > config.recent_shell_results:
            result[i] = _with_outputs(msg, stub)
    return tuple(result)


def redact_large_results(
    messages: Sequence[Message],
    config: EvictionConfig,
) -> tuple[Message, ...]:
    """Replace tool result outputs over the size threshold with a size stub."""

    def stub(part: ToolResultPart) -> Any:
        if _is_stub(part.output):
            return part.output
        size = _output_size(part.output)
        if size <= config.large_result_chars:
            return part.output
        return {"omitted": True, "originalSize": size}

    result: list[Message] = []
    for msg in messages:
        if msg.role == "tool" and any(
            not _is_stub(p.output) and _output_size(p.output) > config.large_result_chars
            for p in msg.tool_results
        ):
            result.append(_with_outputs(msg, stub))
        else:
            result.append(msg)
    return tuple(result)


def _eviction_units(messages: Sequence[Message]) -> list[list[int]]:
    """Group message indices into units that must be evicted together.

    An assistant message and every tool message answering one of its
    calls form one unit; any other message is a unit on its own.
    """
    parent = list(range(len(messages)))

    def find(i: int) -> int:
        while parent[i] != i:
            parent[i] = parent[parent[i]]
            i = parent[i]
        return i

    call_owner: dict[str, int] = {}
    for i, msg in enumerate(messages):
        if msg.role == "assistant":
            for call in msg.tool_calls:
                call_owner[call.tool_call_id] = i

    for i, msg in enumerate(messages):
        if msg.role != "tool":
            continue
        for result in msg.tool_results:
            owner = call_owner.get(result.tool_call_id)
            if owner is not None:
                parent[find(i)] = find(owner)

    groups: dict[int, list[int]] = {}
    for i in range(len(messages)):
        groups.setdefault(find(i), []).append(i)
    return [members for members in groups.values()]


def protected_indices(messages: Sequence[Message]) -> tuple[list[bool], list[list[int]]]:
    """Return per-message protection flags and the eviction units."""
    protected = [m.pinned for m in messages]

    keep_tags: set[str] = set()
    for msg in messages:
        keep_tags.update(msg.keep_last_tags)
    for tag in keep_tags:
        index = _last_index_with_tag(messages, tag)
        if index != -1:
            protected[index] = True

    units = _eviction_units(messages)
    for members in units:
        if any(protected[j] for j in members):
            for j in members:
                protected[j] = True
    return protected, units


def _count_runs(marked: Sequence[bool]) -> int:
    return sum(1 for i, m in enumerate(marked) if m and (i == 0 or not marked[i - 1]))


def _restore_cheap_runs(
    marked: list[bool],
    costs: Sequence[int],
    unit_of: dict[int, list[int]],
    placeholder_cost: int,
) -> int:
    """Unmark evicted runs that cost less than the placeholder replacing them.

    A run is only restored when every unit it touches lies wholly inside it.
    Returns the tokens saved by restoring.
    """
    n = len(marked)
    restored = 0
    i = 0
    while i < n:
        if not marked[i]:
            i += 1
            continue
        start = i
        while i < n and marked[i]:
            i += 1
        run = range(start, i)
        cost = sum(costs[j] for j in run)
        if cost >= placeholder_cost:
            continue
        if any(not start <= k < i for j in run for k in unit_of[j]):
            continue
        for j in run:
            marked[j] = False
        restored += placeholder_cost - cost
    return restored


def evict_messages(
    messages: Sequence[Message],
    budget_tokens: int,
    config: EvictionConfig,
    media_tokens: int = DEFAULT_MEDIA_PART_TOKENS,
) -> tuple[tuple[Message, ...], int, int]:
    """Evict unprotected messages oldest-first until the savings target is met.

    Evictable content is cut down to ``(budget - required) * (1 - shortened_factor)``
    tokens, leaving headroom for placeholders and estimation error.

    Returns ``(messages, required_tokens, evicted_count)``.
    """
    n = len(messages)
    costs = [estimate_message_tokens(m, media_tokens) for m in messages]
    protected, units = protected_indices(messages)
    unit_of: dict[int, list[int]] = {j: members for members in units for j in members}

    required = sum(c for c, p in zip(costs, protected) if p)
    evictable = sum(costs) - required
    allowance = max(0, budget_tokens - required) * (1 - config.shortened_factor)
    target = evictable - allowance
    if target <= 0:
        return tuple(messages), required, 0

    placeholder = make_placeholder(config.placeholder_text)
    placeholder_cost = estimate_message_tokens(placeholder, media_tokens)

    marked = [False] * n
    saved = 0.0
    runs = 0
    for i in range(n):
        if saved >= target:
            break
        if protected[i] or marked[i]:
            continue
        members = unit_of[i]
        for j in members:
            marked[j] = True
        # A new run costs a placeholder; bridging two runs frees one.
        new_runs = _count_runs(marked)
        saved += sum(costs[j] for j in members) - (new_runs - runs) * placeholder_cost
        runs = new_runs
    saved += _restore_cheap_runs(marked, costs, unit_of, placeholder_cost)

    result: list[Message] = []
    for i, msg in enumerate(messages):
        if not marked[i]:
            result.append(msg)
        elif i == 0 or not marked[i - 1]:
            result.append(placeholder)

    evicted = sum(marked)
    logger.debug(
        "Evicted %d message(s), target %.0f tokens, saved %.0f, %d tokens protected",
        evicted,
        target,
        saved,
        required,
    )
    return tuple(result), required, evicted


def evict(
    messages: Sequence[Message],
    tags: TagConfig,
    budget_tokens: int,
    config: EvictionConfig | None = None,
    *,
    media_tokens: int = DEFAULT_MEDIA_PART_TOKENS,
    tag_hygiene: bool = True,
) -> EvictionResult:
    """Run the eviction passes, stopping once the log fits *budget_tokens*."""
    config = config or EvictionConfig()
    passes: list[str] = []
    current = tuple(messages)

    if tag_hygiene:
        current = drop_fresh_markers(current, tags)
        passes.append("tag_hygiene")

    current = redact_shell_results(current, config)
    passes.append("shell_redaction")
    tokens = estimate_conversation_tokens(current, media_tokens)

    required = 0
    evicted = 0
    if tokens > budget_tokens:
        current = redact_large_results(current, config)
        passes.append("large_result_redaction")
        tokens = estimate_conversation_tokens(current, media_tokens)
        logger.debug("After large result redaction: %d/%d tokens", tokens, budget_tokens)

    if tokens > budget_tokens:
        current, required, evicted = evict_messages(current, budget_tokens, config, media_tokens)
        passes.append("message_eviction")

    current = resolve_orphans(current)
    passes.append("orphan_resolution")
    tokens = estimate_conversation_tokens(current, media_tokens)

    over_budget = tokens > budget_tokens
    if over_budget:
        logger.debug(
            "Eviction finished over budget: %d/%d tokens (%d protected)",
            tokens,
            budget_tokens,
            required,
        )

    return EvictionResult(
        messages=current,
        tokens=tokens,
        required_tokens=required,
        passes=tuple(passes),
        evicted=evicted,
        over_budget=over_budget,
    )
