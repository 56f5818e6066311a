"""Model invocation used by the summarizer and the conversation runner."""

from __future__ import annotations

import inspect
import json
import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from typing import Any

from pydantic import BaseModel, Field

from ..errors import ContextLengthExceededError
from ..types.types import Message, Usage

logger = logging.getLogger(__name__)


class ModelResponse(BaseModel):
    """Response from a model invocation."""

    text: str = ""
    usage: Usage = Field(default_factory=Usage)
    stop_reason: str | None = None
    model: str | None = None


class ModelInvoker(ABC):
    """Something that can turn a list of messages into a completion."""

    @abstractmethod
    async def invoke(
        self,
        messages: list[Message],
        instruction: str | None = None,
        max_tokens: int | None = None,
    ) -> ModelResponse:
        """
        Invoke the model.

        Args:
            messages: Conversation messages, oldest first
            instruction: Optional system instruction placed before the messages
            max_tokens: Optional cap on the completion length

        Returns:
            ModelResponse with text, usage and stop_reason

        Raises:
            ContextLengthExceededError: if the prompt does not fit the model window
        """
        pass


InvokeFn = Callable[..., "ModelResponse | str | Awaitable[ModelResponse | str]"]


class FunctionInvoker(ModelInvoker):
    """Adapts a plain (sync or async) function into a ``ModelInvoker``.

    The function receives ``(messages, instruction, max_tokens)`` and may return
    a ``ModelResponse`` or just the completion text.
    """

    def __init__(self, fn: InvokeFn):
        self.fn = fn

    async def invoke(
        self,
        messages: list[Message],
        instruction: str | None = None,
        max_tokens: int | None = None,
    ) -> ModelResponse:
        result = self.fn(messages, instruction, max_tokens)
        if inspect.isawaitable(result):
            result = await result
        if isinstance(result, ModelResponse):
            return result
        return ModelResponse(text=str(result), stop_reason="stop")


def _content_to_text(message: Message) -> str:
    parts: list[str] = []
    for block in message.blocks():
        block_type = block.get("type")
        if block_type == "text":
            parts.append(block.get("text", ""))
        elif block_type == "tool_result":
            output = block.get("output", "")
            parts.append(output if isinstance(output, str) else json.dumps(output, default=str))
    return "\n".join(parts)


def to_chat_messages(messages: list[Message], instruction: str | None = None) -> list[dict]:
    """Convert messages to OpenAI-style chat dicts (the format LiteLLM accepts)."""
    chat: list[dict[str, Any]] = []
    if instruction:
        chat.append({"role": "system", "content": instruction})

    for message in messages:
        if message.role == "tool":
            chat.append(
                {
                    "role": "tool",
                    "tool_call_id": message.tool_call_id or "",
                    "content": _content_to_text(message),
                }
            )
            continue

        entry: dict[str, Any] = {"role": message.role, "content": _content_to_text(message)}
        tool_calls = [
            {
                "id": block.get("tool_call_id", ""),
                "type": "function",
                "function": {
                    "name": block.get("tool_name", ""),
                    "arguments": json.dumps(block.get("arguments", {})),
                },
            }
            for block in message.blocks()
            if block.get("type") == "tool_call"
        ]
        if tool_calls:
            entry["tool_calls"] = tool_calls
        chat.append(entry)
    return chat


class LiteLLMInvoker(ModelInvoker):
    """Invoker backed by ``litellm.acompletion``.

    Model strings follow LiteLLM conventions, e.g. "openai/gpt-4o-mini" or
    "anthropic/claude-3-5-haiku-latest".
    """

    def __init__(
        self,
        model: str,
        api_key: str | None = None,
        api_base: str | None = None,
        temperature: float | None = None,
        **kwargs,
    ):
        try:
            import litellm
        except ImportError:
            raise ImportError(
                "LiteLLM not installed. Install it with: pip install ctxkeep[litellm]"
            ) from None

        self.model = model
        self.api_key = api_key
        self.api_base = api_base
        self.temperature = temperature
        self.extra_kwargs = kwargs

        litellm.telemetry = False

    async def invoke(
        self,
        messages: list[Message],
        instruction: str | None = None,
        max_tokens: int | None = None,
    ) -> ModelResponse:
        import litellm

        call_kwargs: dict[str, Any] = {
            "model": self.model,
            "messages": to_chat_messages(messages, instruction),
        }
        if max_tokens is not None:
            call_kwargs["max_tokens"] = max_tokens
        if self.temperature is not None:
            call_kwargs["temperature"] = self.temperature
        if self.api_key:
            call_kwargs["api_key"] = self.api_key
        if self.api_base:
            call_kwargs["api_base"] = self.api_base
        call_kwargs.update(self.extra_kwargs)

        try:
            response = await litellm.acompletion(**call_kwargs)
        except litellm.ContextWindowExceededError as err:
            raise ContextLengthExceededError(str(err)) from err

        return self._parse_response(response)

    def _parse_response(self, response) -> ModelResponse:
        """Parse a LiteLLM response into a ModelResponse."""
        choice = response.choices[0] if response.choices else None
        message = choice.message if choice else None

        usage = Usage()
        if response.usage:
            usage = Usage(
                input_tokens=response.usage.prompt_tokens or 0,
                output_tokens=response.usage.completion_tokens or 0,
                total_tokens=response.usage.total_tokens or 0,
            )

        return ModelResponse(
            text=(message.content or "") if message else "",
            usage=usage,
            stop_reason=choice.finish_reason if choice else None,
            model=response.model or self.model,
        )
