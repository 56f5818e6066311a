"""Unit tests for ctxkeep.types.types module."""

import pytest
from pydantic import ValidationError

from ctxkeep.types import (
    Message,
    Usage,
    assistant_message,
    tool_call_message,
    tool_result_message,
    user_message,
)


class TestUsage:
    """Tests for Usage."""

    def test_addition(self):
        total = Usage(input_tokens=3, output_tokens=1, total_tokens=4) + Usage(
            input_tokens=7, output_tokens=2, total_tokens=9
        )
        assert total == Usage(input_tokens=10, output_tokens=3, total_tokens=13)
        assert total.cache_read_input_tokens is None
        assert total.cache_creation_input_tokens is None

    def test_addition_sums_cache_tokens(self):
        first = Usage(input_tokens=10, total_tokens=10, cache_read_input_tokens=6)
        second = Usage(
            input_tokens=12,
            total_tokens=12,
            cache_read_input_tokens=8,
            cache_creation_input_tokens=4,
        )

        total = first + second + Usage(input_tokens=1, total_tokens=1)

        assert total.cache_read_input_tokens == 14
        assert total.cache_creation_input_tokens == 4
        assert total.total_tokens == 23


class TestMessage:
    """Tests for Message helpers."""

    def test_frozen(self):
        with pytest.raises(ValidationError):
            user_message("hi").content = "changed"

    def test_unknown_role_rejected(self):
        with pytest.raises(ValidationError):
            Message(role="narrator", content="once upon a time")

    def test_text_from_blocks(self):
        msg = Message(
            role="assistant",
            content=[
                {"type": "text", "text": "first"},
                {"type": "tool_call", "tool_call_id": "c", "tool_name": "f"},
                {"type": "text", "text": "second"},
            ],
        )
        assert msg.text() == "first\nsecond"

    def test_blocks_for_plain_text(self):
        assert assistant_message("hi").blocks() == [{"type": "text", "text": "hi"}]
        assert assistant_message("").blocks() == []

    def test_tool_call_ids(self):
        msg = tool_call_message("c1", "search", {"q": "x"}, text="searching")
        assert msg.role == "assistant"
        assert msg.tool_call_ids() == ["c1"]
        assert msg.tool_result_ids() == []
        assert msg.is_tool_result is False

    def test_tool_result_ids(self):
        msg = tool_result_message("c1", "found")
        assert msg.tool_result_ids() == ["c1"]
        assert msg.is_tool_result is True

    def test_tool_role_without_blocks(self):
        msg = Message(role="tool", content="raw output", tool_call_id="c7")
        assert msg.tool_result_ids() == ["c7"]
        assert msg.is_tool_result is True
