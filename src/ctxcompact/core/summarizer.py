"""Fold a whole conversation into a single narrative summary message.

Unlike staged eviction this loses per-message structure, but compresses
much harder. Summaries chain: a summary produced by an earlier run is
carried forward as flat prose rather than nested inside the new one.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, replace
from typing import Any, Sequence

from ctxcompact.core.config import SummaryConfig, TagConfig
from ctxcompact.core.digest import DigestRegistry
from ctxcompact.core.eviction import protected_indices
from ctxcompact.core.messages import MediaPart, Message, TextPart, ToolCallPart
from ctxcompact.core.token_estimation import estimate_text_tokens
from ctxcompact.core.truncation import truncate_head, truncate_middle

logger = logging.getLogger(__name__)

SUMMARY_OPEN = "<conversation_summary>"
SUMMARY_CLOSE = "</conversation_summary>"
SUMMARY_HEADER = (
    "This is a summary of the conversation so far. "
    "The original messages have been condensed to save context space."
)
PREVIOUS_SUMMARY_PREFIX = "[PREVIOUS SUMMARY]"
RESUME_INSTRUCTION = (
    "Please continue the conversation from here. In particular, try to address "
    "the user's latest request detailed in the summary above. You may need to "
    "re-gather context (e.g. read some files) to get up to speed and then tackle "
    "the user's request."
)
SEPARATOR = "\n\n---\n\n"
TRUNCATION_NOTICE = "[CONVERSATION TRUNCATED - Earlier messages omitted due to length]\n\n"
OMITTED_NOTICE = "[Summary too large - content omitted]"

_SUMMARY_RE = re.compile(
    re.escape(SUMMARY_OPEN) + r"(.*?)" + re.escape(SUMMARY_CLOSE), re.DOTALL
)
_THINK_RE = re.compile(r"<think>.*?</think>", re.DOTALL)
_CHARS_PER_TOKEN = 3


@dataclass(frozen=True)
class SummaryResult:
    messages: tuple[Message, ...]
    summary_text: str
    truncated: bool = False


def is_summary_message(msg: Message) -> bool:
    return msg.role == "user" and any(
        isinstance(p, TextPart) and SUMMARY_OPEN in p.text for p in msg.content
    )


def extract_previous_summary(messages: Sequence[Message]) -> str:
    """Return the body of the latest earlier summary, without boilerplate."""
    previous = ""
    for msg in messages:
        if msg.role != "user":
            continue
        for part in msg.content:
            if not isinstance(part, TextPart):
                continue
            match = _SUMMARY_RE.search(part.text)
            if not match:
                continue
            body = match.group(1).strip()
            if body.startswith(SUMMARY_HEADER):
                body = body[len(SUMMARY_HEADER):].strip()
            if body.startswith(PREVIOUS_SUMMARY_PREFIX):
                body = body[len(PREVIOUS_SUMMARY_PREFIX):].strip()
            previous = body
    return previous


def _digest_user(msg: Message, config: SummaryConfig) -> list[str]:
    text = msg.text().strip()
    if not text:
        return []
    text = truncate_middle(text, config.user_message_limit)
    image_note = " [with image(s)]" if any(isinstance(p, MediaPart) for p in msg.content) else ""
    return [f"[USER]{image_note}\n{text}"]


def _digest_assistant(
    msg: Message,
    config: SummaryConfig,
    digesters: DigestRegistry,
) -> list[str]:
    texts: list[str] = []
    tools: list[str] = []
    for part in msg.content:
        if isinstance(part, TextPart):
            text = _THINK_RE.sub("", part.text).strip()
            if text:
                texts.append(text)
        elif isinstance(part, ToolCallPart):
            tools.append(digesters.format(part.tool_name, part.input))

    lines: list[str] = []
    if texts:
        lines.append(truncate_middle("\n".join(texts), config.assistant_message_limit))
    if tools:
        lines.append(f"Tools: {'; '.join(tools)}")
    if not lines:
        return []
    return ["[ASSISTANT]\n" + "\n".join(lines)]


def _answer_text(answer: Any) -> str:
    if not isinstance(answer, dict):
        return str(answer)
    if answer.get("otherText"):
        return str(answer["otherText"])
    if answer.get("selectedOptions"):
        return ", ".join(str(o) for o in answer["selectedOptions"])
    if answer.get("selectedOption"):
        return str(answer["selectedOption"])
    return "(no answer)"


def _digest_tool(msg: Message, config: SummaryConfig) -> list[str]:
    """Only failures and user answers are worth keeping from tool output."""
    lines: list[str] = []
    shell_tools = set(config.shell_tool_names)
    for result in msg.tool_results:
        value = result.output
        if not isinstance(value, dict):
            continue

        error = value.get("errorMessage") or value.get("error")
        if error:
            lines.append(
                f"[TOOL ERROR: {result.tool_name}] {truncate_head(str(error), config.error_chars)}"
            )

        if result.tool_name in shell_tools and "exitCode" in value:
            exit_code = value["exitCode"]
            if exit_code != 0:
                lines.append(f"[COMMAND FAILED] Exit code: {exit_code}")

        if result.tool_name == "ask_user":
            if value.get("skipped"):
                lines.append("[USER SKIPPED QUESTION]")
            elif value.get("answers"):
                answers = "; ".join(_answer_text(a) for a in value["answers"])
                lines.append(f"[USER ANSWERED] {truncate_head(answers, config.answer_chars)}")
    return lines


def digest_message(
    msg: Message,
    config: SummaryConfig,
    digesters: DigestRegistry,
) -> list[str]:
    """Turn one message into zero or more digest entries."""
    if msg.role == "user":
        return _digest_user(msg, config)
    if msg.role == "assistant":
        return _digest_assistant(msg, config, digesters)
    if msg.role == "tool":
        return _digest_tool(msg, config)
    return []


def _cut_oldest(text: str, keep_chars: int) -> str:
    """Keep the last *keep_chars* of *text*, starting at a clean separator."""
    tail = text[-keep_chars:]
    index = tail.find(SEPARATOR)
    if index != -1 and index < len(tail) / 2:
        tail = tail[index + len(SEPARATOR):]
    return TRUNCATION_NOTICE + tail


def fit_summary(text: str, target_tokens: float) -> tuple[str, bool]:
    """Trim *text* from its oldest end until it fits *target_tokens*.

    Returns the (possibly trimmed) text and whether it was trimmed.
    """
    tokens = estimate_text_tokens(text)
    if tokens <= target_tokens:
        return text, False

    available = target_tokens - estimate_text_tokens(TRUNCATION_NOTICE)
    keep = min(int(available * _CHARS_PER_TOKEN), len(text) - 1)
    while 0 < keep < len(text):
        candidate = _cut_oldest(text, keep)
        candidate_tokens = estimate_text_tokens(candidate)
        if candidate_tokens <= target_tokens:
            return candidate, True
        # JSON escaping made the cut too generous; shrink proportionally.
        keep = min(keep - 1, int(keep * target_tokens / candidate_tokens))

    return TRUNCATION_NOTICE + OMITTED_NOTICE, True


def _wrap_summary(summary_text: str) -> str:
    return (
        f"{SUMMARY_OPEN}\n{SUMMARY_HEADER}\n\n{summary_text}\n{SUMMARY_CLOSE}"
        f"\n\n{RESUME_INSTRUCTION}"
    )


def summarize(
    messages: Sequence[Message],
    tags: TagConfig,
    budget_tokens: int,
    config: SummaryConfig | None = None,
    *,
    digesters: DigestRegistry | None = None,
    now: int,
) -> SummaryResult:
    """Replace the conversation with one summary message.

    Protected messages (pinned ones, the latest bearer of each keep-last
    tag, and whole tool-call/tool-result units touching either) are
    carried over verbatim in their original order. The summary takes the
    place of the first message it replaces. The latest fresh-instructions
    message, if any, goes last with its timestamp reset to *now*.
    """
    config = config or SummaryConfig()
    digesters = digesters or DigestRegistry.create_default_registry()
    current = list(messages)

    instructions: Message | None = None
    for i in range(len(current) - 1, -1, -1):
        if current[i].has_tag(tags.instructions_prompt):
            instructions = current.pop(i)
            break

    protected, _ = protected_indices(current)
    previous_summary = extract_previous_summary(
        [m for m, keep in zip(current, protected) if not keep]
    )
    marker_tags = {tags.instructions_prompt, tags.step_prompt, tags.subagent_spawn}

    kept: list[Message] = []
    summary_at: int | None = None
    parts: list[str] = [previous_summary] if previous_summary else []
    for msg, keep in zip(current, protected):
        if keep:
            kept.append(msg)
            continue
        if summary_at is None:
            summary_at = len(kept)
        if msg.tags & marker_tags or is_summary_message(msg) or msg.is_placeholder:
            continue
        parts.extend(digest_message(msg, config, digesters))
    if summary_at is None:
        summary_at = len(kept)

    summary_text, truncated = fit_summary(
        SEPARATOR.join(parts), budget_tokens * config.summary_fraction
    )
    if truncated:
        logger.debug("Summary trimmed to fit %.0f tokens", budget_tokens * config.summary_fraction)

    summary = Message(
        role="user",
        content=(TextPart(text=_wrap_summary(summary_text)),),
        sent_at=now,
    )

    result: list[Message] = [*kept[:summary_at], summary, *kept[summary_at:]]
    if instructions is not None:
        result.append(replace(instructions, sent_at=now))

    logger.debug(
        "Summarized %d message(s) into %d digest entries", len(messages), len(parts)
    )
    return SummaryResult(messages=tuple(result), summary_text=summary_text, truncated=truncated)
