"""Tests for text truncation helpers."""

from ctxcompact.core.truncation import truncate_head, truncate_middle


class TestTruncateMiddle:
    def test_short_text_unchanged(self):
        assert truncate_middle("hello", 100) == "hello"

    def test_text_at_limit_unchanged(self):
        text = "x" * 100
        assert truncate_middle(text, 100) == text

    def test_long_user_message(self):
        text = "P" * 40_000 + "S" * 10_000
        result = truncate_middle(text, 15_000)

        assert len(result) <= 15_000
        assert result.startswith("P" * 11_960 + "\n\n[...truncated")
        assert result.endswith("]\n\n" + "S" * 2_990)
        assert "[...truncated 35050 chars...]" in result

    def test_keeps_head_and_tail(self):
        text = "START" + "-" * 1000 + "END"
        result = truncate_middle(text, 200)
        assert result.startswith("START")
        assert result.endswith("END")

    def test_non_positive_budget_collapses_to_marker(self):
        assert truncate_middle("x" * 500, 40) == "[...truncated 500 chars...]"
        assert truncate_middle("x" * 500, 0) == "[...truncated 500 chars...]"


class TestTruncateHead:
    def test_short(self):
        assert truncate_head("abc", 10) == "abc"

    def test_long(self):
        assert truncate_head("abcdef", 3) == "abc..."
