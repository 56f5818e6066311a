"""Model invocation adapters."""

from .invoker import (
    FunctionInvoker,
    LiteLLMInvoker,
    ModelInvoker,
    ModelResponse,
    to_chat_messages,
)

__all__ = [
    "FunctionInvoker",
    "LiteLLMInvoker",
    "ModelInvoker",
    "ModelResponse",
    "to_chat_messages",
]
