"""Tests for the compaction entry point."""

import random

import pytest

from ctxcompact.core.compaction import CompactionResult, compact
from ctxcompact.core.config import BudgetConfig, CompactionStrategy, TagConfig
from ctxcompact.core.messages import Message, TextPart, ToolCallPart, ToolResultPart
from ctxcompact.core.orphans import call_ids, result_ids
from ctxcompact.core.summarizer import SUMMARY_OPEN
from ctxcompact.core.token_estimation import estimate_conversation_tokens

STRATEGIES = [CompactionStrategy.EVICT, CompactionStrategy.SUMMARIZE]


def _user(text: str, **kwargs) -> Message:
    return Message(role="user", content=(TextPart(text),), **kwargs)


def _assistant(text: str, **kwargs) -> Message:
    return Message(role="assistant", content=(TextPart(text),), **kwargs)


def _budget(max_tokens: int, **kwargs) -> BudgetConfig:
    return BudgetConfig(max_context_tokens=max_tokens, **kwargs)


def _random_log(seed: int) -> list[Message]:
    rng = random.Random(seed)
    messages = [Message(role="system", content=(TextPart("Be concise."),), pinned=True)]
    for step in range(30):
        roll = rng.random()
        size = rng.randint(20, 3000)
        if roll < 0.3:
            messages.append(_user("u" * size))
        elif roll < 0.5:
            messages.append(_assistant("a" * size))
        else:
            call_id = f"call_{step}"
            tool = rng.choice(["read_files", "run_terminal_command", "glob"])
            messages.append(
                Message(role="assistant", content=(ToolCallPart(call_id, tool, {"command": "ls"}),))
            )
            if rng.random() < 0.9:
                messages.append(
                    Message(role="tool", content=(ToolResultPart(call_id, tool, {"stdout": "o" * size}),))
                )
        if rng.random() < 0.1:
            # stray result whose call never existed
            messages.append(
                Message(role="tool", content=(ToolResultPart(f"ghost_{step}", "glob", {"files": []}),))
            )
    return messages


class TestFastPath:
    def test_small_log_unchanged(self):
        messages = [_user("hi"), _assistant("hello")]
        result = compact(messages)

        assert isinstance(result, CompactionResult)
        assert result.changed is False
        assert result.strategy is None
        assert result.messages == tuple(messages)
        assert result.passes == ("tag_hygiene",)
        assert result.final_tokens == result.original_tokens

    def test_fresh_markers_dropped(self):
        messages = [
            _user("hi"),
            _user("rules", tags=frozenset({"INSTRUCTIONS_PROMPT"})),
        ]
        result = compact(messages)

        assert result.changed is True
        assert result.strategy is None
        assert [m.text() for m in result.messages] == ["hi"]

    def test_custom_tag_names(self):
        tags = TagConfig(instructions_prompt="SYS_RULES")
        messages = [
            _user("hi"),
            _user("rules", tags=frozenset({"SYS_RULES"})),
            _user("kept", tags=frozenset({"INSTRUCTIONS_PROMPT"})),
        ]
        result = compact(messages, tags)
        assert [m.text() for m in result.messages] == ["hi", "kept"]


class TestBudget:
    def test_effective_budget_subtracts_overhead(self):
        budget = _budget(
            1000,
            system_prompt_tokens=200,
            tool_definition_tokens=400,
            tool_definition_weight=0.5,
        )
        result = compact([_user("hi")], budget=budget)
        assert result.budget_tokens == 600

    @pytest.mark.parametrize("strategy", STRATEGIES)
    def test_over_budget_log_is_compacted(self, strategy):
        messages = [_user("x" * 3000) for _ in range(20)]
        result = compact(messages, budget=_budget(5000), strategy=strategy)

        assert result.changed is True
        assert result.strategy == strategy
        assert result.final_tokens <= 5000
        assert result.final_tokens == estimate_conversation_tokens(result.messages)
        assert result.original_tokens > 5000
        assert result.over_budget is False

    def test_strategy_accepts_string(self):
        messages = [_user("x" * 3000) for _ in range(20)]
        result = compact(messages, budget=_budget(5000), strategy="summarize")
        assert result.strategy == CompactionStrategy.SUMMARIZE

    def test_clock_stamps_summary(self):
        messages = [_user("x" * 3000) for _ in range(20)]
        result = compact(
            messages,
            budget=_budget(5000),
            strategy=CompactionStrategy.SUMMARIZE,
            clock=lambda: 42,
        )
        assert result.messages[0].sent_at == 42

    def test_single_huge_user_message_summarized(self):
        result = compact(
            [_user("z" * 50_000)],
            budget=_budget(10_000),
            strategy=CompactionStrategy.SUMMARIZE,
        )
        assert len(result.messages) == 1
        assert SUMMARY_OPEN in result.messages[0].text()
        assert result.final_tokens <= 10_000

    @pytest.mark.parametrize("strategy", STRATEGIES)
    def test_pinned_over_budget_is_best_effort(self, strategy):
        warnings: list[str] = []
        system = Message(role="system", content=(TextPart("s" * 6000),), pinned=True)
        messages = [system, _user("x" * 3000), _assistant("y" * 3000)]

        result = compact(
            messages,
            budget=_budget(500),
            strategy=strategy,
            warning_callback=warnings.append,
        )

        assert result.over_budget is True
        assert result.messages[0] is system
        assert len(warnings) == 1
        assert "over budget" in warnings[0]
        assert call_ids(result.messages) == result_ids(result.messages)

    def test_summary_keeps_latest_keep_last_bearer(self):
        system = Message(role="system", content=(TextPart("Be concise."),), pinned=True)
        live = _user(
            "latest live prompt",
            tags=frozenset({"LIVE_PROMPT"}),
            keep_last_tags=frozenset({"LIVE_PROMPT"}),
        )
        messages = [system, *(_user("x" * 3000) for _ in range(10)), live]

        result = compact(messages, budget=_budget(5000), strategy=CompactionStrategy.SUMMARIZE)

        assert result.messages[0] is system
        assert SUMMARY_OPEN in result.messages[1].text()
        assert result.messages[-1] is live
        assert result.final_tokens <= 5000

    def test_summary_keeps_pinned_call_with_its_result(self):
        call = Message(
            role="assistant",
            content=(TextPart("reading"), ToolCallPart("c1", "read_files", {"paths": ["a.py"]})),
            pinned=True,
        )
        res = Message(role="tool", content=(ToolResultPart("c1", "read_files", {"content": "print()"}),))
        messages = [call, res, *(_user("x" * 3000) for _ in range(10))]

        result = compact(messages, budget=_budget(5000), strategy=CompactionStrategy.SUMMARIZE)

        assert result.messages[0] is call
        assert result.messages[1] is res
        assert SUMMARY_OPEN in result.messages[2].text()
        assert call_ids(result.messages) == result_ids(result.messages) == {"c1"}


class TestCacheMiss:
    def _stale_log(self) -> list[Message]:
        return [
            _user("first", tags=frozenset({"USER_PROMPT"}), sent_at=0),
            _assistant("answer", sent_at=1_000),
            _user("back again", tags=frozenset({"USER_PROMPT"}), sent_at=1_000 + 10 * 60 * 1000),
        ]

    def test_expired_cache_forces_summary(self):
        result = compact(self._stale_log(), strategy=CompactionStrategy.SUMMARIZE, clock=lambda: 7)

        assert result.cache_miss is True
        assert result.strategy == CompactionStrategy.SUMMARIZE
        assert result.changed is True
        assert len(result.messages) == 1
        assert "back again" in result.messages[0].text()

    def test_expired_cache_with_nothing_to_evict(self):
        messages = self._stale_log()
        result = compact(messages)

        assert result.cache_miss is True
        assert result.strategy == CompactionStrategy.EVICT
        assert result.changed is False
        assert result.messages == tuple(messages)

    def test_fresh_cache_uses_fast_path(self):
        messages = self._stale_log()
        messages[-1] = _user("back again", tags=frozenset({"USER_PROMPT"}), sent_at=2_000)
        result = compact(messages)
        assert result.cache_miss is False
        assert result.strategy is None

    def test_ttl_is_configurable(self):
        result = compact(self._stale_log(), budget=_budget(200_000, cache_ttl_ms=60 * 60 * 1000))
        assert result.cache_miss is False


class TestInvariants:
    @pytest.mark.parametrize("strategy", STRATEGIES)
    def test_pairing_bijection(self, strategy):
        for seed in range(8):
            result = compact(_random_log(seed), budget=_budget(4000), strategy=strategy)
            assert call_ids(result.messages) == result_ids(result.messages), seed
            assert result.final_tokens <= 4000, seed

    @pytest.mark.parametrize("strategy", STRATEGIES)
    def test_idempotent(self, strategy):
        for seed in range(5):
            first = compact(_random_log(seed), budget=_budget(4000), strategy=strategy)
            second = compact(first.messages, budget=_budget(4000), strategy=strategy)
            assert second.changed is False, seed
            assert second.messages == first.messages

    @pytest.mark.parametrize("strategy", STRATEGIES)
    def test_input_not_mutated(self, strategy):
        messages = _random_log(1)
        snapshot = list(messages)
        compact(messages, budget=_budget(2000), strategy=strategy)
        assert messages == snapshot
        assert all(a is b for a, b in zip(messages, snapshot))

    def test_pinned_messages_survive_eviction(self):
        messages = _random_log(2)
        result = compact(messages, budget=_budget(2000))
        assert messages[0] in result.messages
