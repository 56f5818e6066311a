"""Read-only helpers for inspecting a message history."""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel

from ..types.types import Message


class ToolResultRef(BaseModel):
    """A tool result found in a history, with the index of its message."""

    tool_call_id: str | None = None
    tool_name: str = "unknown"
    output: Any = None
    message_index: int


def extract_tool_results(messages: Sequence[Message]) -> list[ToolResultRef]:
    results = []
    for index, message in enumerate(messages):
        for block in message.blocks():
            if block.get("type") != "tool_result":
                continue
            results.append(
                ToolResultRef(
                    tool_call_id=block.get("tool_call_id"),
                    tool_name=block.get("tool_name") or message.name or "unknown",
                    output=block.get("output"),
                    message_index=index,
                )
            )
    return results


def find_last_user_message(messages: Sequence[Message]) -> str | None:
    """Return the text of the most recent user message, if any."""
    for message in reversed(messages):
        if message.role != "user":
            continue
        if isinstance(message.content, str):
            return message.content
        for block in message.content:
            if block.get("type") == "text":
                return block.get("text", "")
    return None


def count_messages_by_role(messages: Sequence[Message]) -> dict[str, int]:
    return dict(Counter(message.role for message in messages))
