"""Prompt-cache expiry detection."""

from __future__ import annotations

import logging
from typing import Sequence

from ctxcompact.core.messages import Message

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_MS = 5 * 60 * 1000


def _last_index_with_tag(messages: Sequence[Message], tag: str) -> int:
    for i in range(len(messages) - 1, -1, -1):
        if messages[i].has_tag(tag):
            return i
    return -1


def cache_will_miss(
    messages: Sequence[Message],
    user_prompt_tag: str,
    ttl_ms: int = DEFAULT_CACHE_TTL_MS,
) -> bool:
    """Return True if the provider's prompt cache has likely expired.

    Compares the live user prompt's timestamp with the nearest assistant
    message before it. Tool messages usually carry no timestamp, so only
    assistant turns are considered.
    """
    prompt_index = _last_index_with_tag(messages, user_prompt_tag)
    if prompt_index <= 0:
        return False

    prompt = messages[prompt_index]
    previous_assistant = next(
        (m for m in reversed(messages[:prompt_index]) if m.role == "assistant"),
        None,
    )
    if previous_assistant is None:
        return False
    if prompt.sent_at is None or previous_assistant.sent_at is None:
        return False

    gap = prompt.sent_at - previous_assistant.sent_at
    if gap > ttl_ms:
        logger.debug("Prompt cache gap %d ms exceeds ttl %d ms", gap, ttl_ms)
        return True
    return False
