"""Tests for tool-call / tool-result pairing repair."""

from ctxcompact.core.messages import Message, TextPart, ToolCallPart, ToolResultPart
from ctxcompact.core.orphans import call_ids, remove_orphan_results, resolve_orphans, result_ids


def _call(*ids: str, text: str = "") -> Message:
    parts = [TextPart(text)] if text else []
    parts.extend(ToolCallPart(i, "glob", {"patterns": []}) for i in ids)
    return Message(role="assistant", content=tuple(parts))


def _result(call_id: str) -> Message:
    return Message(role="tool", content=(ToolResultPart(call_id, "glob", {"files": []}),))


class TestResolveOrphans:
    def test_well_formed_log_unchanged(self):
        messages = (Message(role="user", content=(TextPart("go"),)), _call("a"), _result("a"))
        assert resolve_orphans(messages) == messages

    def test_drops_result_without_call(self):
        messages = (_call("a"), _result("a"), _result("ghost"))
        assert resolve_orphans(messages) == (_call("a"), _result("a"))

    def test_strips_call_without_result(self):
        messages = (_call("a", "b", text="doing things"), _result("a"))
        resolved = resolve_orphans(messages)
        assert [c.tool_call_id for c in resolved[0].tool_calls] == ["a"]
        assert resolved[0].text() == "doing things"

    def test_drops_contentless_assistant(self):
        messages = (Message(role="user", content=(TextPart("go"),)), _call("b"))
        assert resolve_orphans(messages) == (Message(role="user", content=(TextPart("go"),)),)

    def test_bijection(self):
        messages = (_call("a", "b"), _result("b"), _result("c"), _call("d"), _result("a"))
        resolved = resolve_orphans(messages)
        assert call_ids(resolved) == result_ids(resolved) == {"a", "b"}

    def test_idempotent(self):
        messages = (_call("a", "b"), _result("b"), _result("c"), _call("d"), _result("a"))
        once = resolve_orphans(messages)
        assert resolve_orphans(once) == once

    def test_does_not_mutate_input(self):
        original = _call("a", "b")
        messages = [original, _result("a")]
        resolve_orphans(messages)
        assert len(messages) == 2
        assert len(original.tool_calls) == 2

    def test_tool_message_without_result_part(self):
        messages = (Message(role="tool", content=()),)
        assert remove_orphan_results(messages) == ()

    def test_strips_orphaned_result_from_multi_result_message(self):
        messages = (
            _call("a"),
            Message(
                role="tool",
                content=(
                    ToolResultPart("a", "glob", {"files": []}),
                    ToolResultPart("b", "glob", {"files": []}),
                ),
            ),
        )
        resolved = resolve_orphans(messages)
        assert [r.tool_call_id for r in resolved[1].tool_results] == ["a"]
        assert call_ids(resolved) == result_ids(resolved) == {"a"}

    def test_drops_tool_message_with_only_orphaned_results(self):
        messages = (
            _call("a"),
            _result("a"),
            Message(
                role="tool",
                content=(
                    ToolResultPart("x", "glob", {"files": []}),
                    ToolResultPart("y", "glob", {"files": []}),
                ),
            ),
        )
        assert resolve_orphans(messages) == (_call("a"), _result("a"))
