"""Tests for token estimation."""

import json
import math

from ctxcompact.core.messages import MediaPart, Message, TextPart, ToolCallPart
from ctxcompact.core.token_estimation import (
    UNSERIALIZABLE_PART_TOKENS,
    estimate_conversation_tokens,
    estimate_message_tokens,
    estimate_part_tokens,
    estimate_text_tokens,
)


def _expected(value) -> int:
    return math.ceil(len(json.dumps(value, ensure_ascii=False).encode("utf-8")) / 3)


class TestEstimateTextTokens:
    def test_empty(self):
        assert estimate_text_tokens("") == 0

    def test_counts_quotes(self):
        # 30 chars + 2 quotes = 32 bytes -> 11 tokens
        assert estimate_text_tokens("a" * 30) == 11

    def test_multibyte_counts_bytes(self):
        assert estimate_text_tokens("é" * 3) == math.ceil((6 + 2) / 3)


class TestEstimatePartTokens:
    def test_text_part(self):
        part = TextPart("hello world" * 20)
        assert estimate_part_tokens(part) == _expected({"type": "text", "text": part.text})

    def test_media_part_is_flat(self):
        small = MediaPart("image/png", "A" * 10)
        huge = MediaPart("image/png", "A" * 1_000_000)
        assert estimate_part_tokens(small) == 1000
        assert estimate_part_tokens(huge) == 1000

    def test_media_part_custom_rate(self):
        assert estimate_part_tokens(MediaPart("image/png", "A"), media_tokens=85) == 85

    def test_unserializable_part_fails_soft(self):
        part = ToolCallPart("c1", "custom", {"obj": object()})
        assert estimate_part_tokens(part) == UNSERIALIZABLE_PART_TOKENS


class TestEstimateMessageTokens:
    def test_plain_message_serialized_once(self):
        msg = Message(role="user", content=(TextPart("x" * 300),), sent_at=1)
        assert estimate_message_tokens(msg) == _expected(msg.to_dict())

    def test_media_message_independent_of_payload(self):
        small = Message(role="user", content=(TextPart("see"), MediaPart("image/png", "A" * 10)))
        huge = Message(role="user", content=(TextPart("see"), MediaPart("image/png", "A" * 2_000_000)))
        assert estimate_message_tokens(small) == estimate_message_tokens(huge)
        assert estimate_message_tokens(huge) < 1100

    def test_media_message_sums_envelope_and_parts(self):
        msg = Message(
            role="user",
            content=(TextPart("see"), MediaPart("image/png", "A")),
            tags=frozenset({"T"}),
        )
        envelope = _expected(msg.to_dict(include_content=False))
        text = _expected({"type": "text", "text": "see"})
        assert estimate_message_tokens(msg) == envelope + text + 1000

    def test_unserializable_message_fails_soft(self):
        msg = Message(role="assistant", content=(ToolCallPart("c1", "custom", {"obj": object()}),))
        assert estimate_message_tokens(msg) >= UNSERIALIZABLE_PART_TOKENS


class TestEstimateConversationTokens:
    def test_empty(self):
        assert estimate_conversation_tokens([]) == 0

    def test_sum_of_messages(self):
        messages = [
            Message(role="user", content=(TextPart("a" * 100),)),
            Message(role="assistant", content=(TextPart("b" * 200),)),
        ]
        assert estimate_conversation_tokens(messages) == sum(
            estimate_message_tokens(m) for m in messages
        )
