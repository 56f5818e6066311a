"""Unit tests for ctxkeep.memory.history module."""

from ctxkeep.memory.history import (
    count_messages_by_role,
    extract_tool_results,
    find_last_user_message,
)
from ctxkeep.types.types import (
    Message,
    assistant_message,
    tool_call_message,
    tool_result_message,
    user_message,
)


class TestExtractToolResults:
    """Tests for extract_tool_results."""

    def test_empty(self):
        assert extract_tool_results([]) == []

    def test_finds_results_with_indices(self):
        messages = [
            user_message("search"),
            tool_call_message("c1", "search", {"q": "x"}),
            tool_result_message("c1", ["hit"], tool_name="search"),
            assistant_message("found it"),
        ]
        results = extract_tool_results(messages)
        assert len(results) == 1
        assert results[0].tool_call_id == "c1"
        assert results[0].tool_name == "search"
        assert results[0].output == ["hit"]
        assert results[0].message_index == 2

    def test_unknown_tool_name(self):
        results = extract_tool_results([tool_result_message("c2", "ok")])
        assert results[0].tool_name == "unknown"

    def test_result_blocks_inside_user_message(self):
        msg = Message(
            role="user",
            content=[
                {"type": "tool_result", "tool_call_id": "a", "output": 1, "tool_name": "f"},
                {"type": "tool_result", "tool_call_id": "b", "output": 2},
            ],
        )
        results = extract_tool_results([msg])
        assert [r.tool_call_id for r in results] == ["a", "b"]
        assert results[0].tool_name == "f"


class TestFindLastUserMessage:
    """Tests for find_last_user_message."""

    def test_none_when_no_user(self):
        assert find_last_user_message([assistant_message("hi")]) is None

    def test_returns_most_recent(self):
        messages = [user_message("first"), assistant_message("a"), user_message("second")]
        assert find_last_user_message(messages) == "second"

    def test_block_content(self):
        msg = Message(role="user", content=[{"type": "text", "text": "from blocks"}])
        assert find_last_user_message([msg, assistant_message("reply")]) == "from blocks"


class TestCountMessagesByRole:
    """Tests for count_messages_by_role."""

    def test_counts(self):
        messages = [
            user_message("a"),
            assistant_message("b"),
            user_message("c"),
            tool_result_message("x", 1),
        ]
        assert count_messages_by_role(messages) == {"user": 2, "assistant": 1, "tool": 1}

    def test_empty(self):
        assert count_messages_by_role([]) == {}
