"""Type definitions for conversation messages and token usage."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

Role = Literal["user", "assistant", "tool", "system"]


def _add_optional(a: int | None, b: int | None) -> int | None:
    if a is None and b is None:
        return None
    return (a or 0) + (b or 0)


class Usage(BaseModel):
    """Token usage information from LLM calls."""

    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0
    cache_read_input_tokens: int | None = None
    cache_creation_input_tokens: int | None = None

    def __add__(self, other: "Usage") -> "Usage":
        return Usage(
            input_tokens=self.input_tokens + other.input_tokens,
            output_tokens=self.output_tokens + other.output_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
            cache_read_input_tokens=_add_optional(
                self.cache_read_input_tokens, other.cache_read_input_tokens
            ),
            cache_creation_input_tokens=_add_optional(
                self.cache_creation_input_tokens, other.cache_creation_input_tokens
            ),
        )


class Message(BaseModel):
    """A single conversation turn.

    ``content`` is either plain text or a list of content blocks. Blocks are dicts
    with a ``type`` key:

    - ``{"type": "text", "text": ...}``
    - ``{"type": "tool_call", "tool_call_id": ..., "tool_name": ..., "arguments": {...}}``
    - ``{"type": "tool_result", "tool_call_id": ..., "output": ...}``
    - ``{"type": "image", "image": ...}`` / ``{"type": "file", "data": ..., "mime_type": ...}``

    Messages are frozen; compaction builds new sequences instead of editing them.
    """

    model_config = ConfigDict(frozen=True)

    role: Role
    content: str | list[dict[str, Any]] = ""
    tool_call_id: str | None = None
    name: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def blocks(self) -> list[dict[str, Any]]:
        """Return content as a list of blocks (plain text becomes one text block)."""
        if isinstance(self.content, str):
            return [{"type": "text", "text": self.content}] if self.content else []
        return list(self.content)

    def text(self) -> str:
        """Concatenate the text blocks of this message."""
        if isinstance(self.content, str):
            return self.content
        return "\n".join(
            block.get("text", "") for block in self.content if block.get("type") == "text"
        )

    def tool_call_ids(self) -> list[str]:
        """IDs of the tool calls issued by this message."""
        return [
            block["tool_call_id"]
            for block in self.blocks()
            if block.get("type") == "tool_call" and block.get("tool_call_id")
        ]

    def tool_result_ids(self) -> list[str]:
        """IDs of the tool calls this message answers."""
        ids = [
            block["tool_call_id"]
            for block in self.blocks()
            if block.get("type") == "tool_result" and block.get("tool_call_id")
        ]
        if self.role == "tool" and self.tool_call_id and self.tool_call_id not in ids:
            ids.append(self.tool_call_id)
        return ids

    @property
    def is_tool_result(self) -> bool:
        if self.role == "tool":
            return True
        return any(block.get("type") == "tool_result" for block in self.blocks())


def user_message(text: str, **kwargs: Any) -> Message:
    return Message(role="user", content=text, **kwargs)


def system_message(text: str, **kwargs: Any) -> Message:
    return Message(role="system", content=text, **kwargs)


def assistant_message(text: str, **kwargs: Any) -> Message:
    return Message(role="assistant", content=text, **kwargs)


def tool_call_message(
    tool_call_id: str, tool_name: str, arguments: dict[str, Any] | None = None, text: str = ""
) -> Message:
    """Build an assistant message that issues a single tool call."""
    blocks: list[dict[str, Any]] = []
    if text:
        blocks.append({"type": "text", "text": text})
    blocks.append(
        {
            "type": "tool_call",
            "tool_call_id": tool_call_id,
            "tool_name": tool_name,
            "arguments": arguments or {},
        }
    )
    return Message(role="assistant", content=blocks)


def tool_result_message(tool_call_id: str, output: Any, tool_name: str | None = None) -> Message:
    """Build a tool-role message carrying the result of a tool call."""
    return Message(
        role="tool",
        content=[{"type": "tool_result", "tool_call_id": tool_call_id, "output": output}],
        tool_call_id=tool_call_id,
        name=tool_name,
    )
