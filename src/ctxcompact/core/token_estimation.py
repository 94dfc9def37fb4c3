"""Lightweight token estimation without external dependencies.

Uses a ~3 bytes per token heuristic over the JSON wire form, which is
conservative for English / code / JSON mixes and accurate enough for
deciding when and how much to compact.

Media attachments are priced at a flat rate and never serialized: encoded
payloads are large, and their byte length says little about what the
provider actually bills after resizing.
"""

from __future__ import annotations

import json
import logging
import math
from typing import TYPE_CHECKING, Any, Iterable

from ctxcompact.core.messages import MediaPart, part_to_dict

if TYPE_CHECKING:
    from ctxcompact.core.messages import ContentPart, Message

logger = logging.getLogger(__name__)

_BYTES_PER_TOKEN = 3

DEFAULT_MEDIA_PART_TOKENS = 1000

# Charged for a part that cannot be serialized.
UNSERIALIZABLE_PART_TOKENS = 10_000


def _json_tokens(value: Any) -> int:
    encoded = json.dumps(value, ensure_ascii=False).encode("utf-8")
    return math.ceil(len(encoded) / _BYTES_PER_TOKEN)


def estimate_text_tokens(text: str) -> int:
    """Estimate tokens for a bare string as it would appear on the wire."""
    if not text:
        return 0
    return _json_tokens(text)


def estimate_part_tokens(
    part: ContentPart,
    media_tokens: int = DEFAULT_MEDIA_PART_TOKENS,
) -> int:
    """Estimate tokens for a single content part."""
    if isinstance(part, MediaPart):
        return media_tokens
    try:
        return _json_tokens(part_to_dict(part))
    except (TypeError, ValueError) as e:
        logger.debug("Cannot serialize %s for costing: %s", type(part).__name__, e)
        return UNSERIALIZABLE_PART_TOKENS


def estimate_message_tokens(
    message: Message,
    media_tokens: int = DEFAULT_MEDIA_PART_TOKENS,
) -> int:
    """Estimate tokens for a single conversation message.

    Messages carrying media are costed part by part, with the envelope
    (role, tags, timestamps) costed on its own.
    """
    if not message.has_media:
        try:
            return _json_tokens(message.to_dict())
        except (TypeError, ValueError) as e:
            logger.debug("Falling back to per-part costing for %s message: %s", message.role, e)

    envelope = _json_tokens(message.to_dict(include_content=False))
    return envelope + sum(estimate_part_tokens(p, media_tokens) for p in message.content)


def estimate_conversation_tokens(
    messages: Iterable[Message],
    media_tokens: int = DEFAULT_MEDIA_PART_TOKENS,
) -> int:
    """Estimate total tokens for an entire conversation."""
    return sum(estimate_message_tokens(m, media_tokens) for m in messages)
