"""Shared pytest configuration and fixtures."""

from unittest.mock import AsyncMock, MagicMock

import pytest

from ctxkeep.llm.invoker import ModelInvoker, ModelResponse
from ctxkeep.types.types import Message, Usage, assistant_message, user_message


def content_of_tokens(tokens: int) -> str:
    """Text that estimates to ``tokens`` tokens (ceil(len / 4))."""
    return "x" * (tokens * 4)


def make_history(count: int, tokens_each: int = 10) -> list[Message]:
    """Alternating user/assistant messages, each with a distinct prefix."""
    history = []
    for i in range(count):
        text = f"{i:04d}" + content_of_tokens(tokens_each - 1)
        factory = user_message if i % 2 == 0 else assistant_message
        history.append(factory(text))
    return history


@pytest.fixture
def history_factory():
    return make_history


@pytest.fixture
def mock_invoker():
    """ModelInvoker whose ``invoke`` is an AsyncMock returning a fixed summary."""
    invoker = MagicMock(spec=ModelInvoker)
    invoker.invoke = AsyncMock(
        return_value=ModelResponse(
            text="- user wants a retry policy",
            usage=Usage(input_tokens=100, output_tokens=20, total_tokens=120),
            stop_reason="stop",
        )
    )
    return invoker


@pytest.fixture
def failing_invoker():
    invoker = MagicMock(spec=ModelInvoker)
    invoker.invoke = AsyncMock(side_effect=RuntimeError("model unavailable"))
    return invoker


@pytest.fixture
def mock_http_client():
    """Mock httpx.AsyncClient for API calls."""
    client = AsyncMock()
    client.get = AsyncMock()
    client.post = AsyncMock()
    client.put = AsyncMock()
    client.delete = AsyncMock()
    return client


@pytest.fixture
def mock_tracer():
    """Mock OpenTelemetry tracer."""
    tracer = MagicMock()
    span = MagicMock()
    span.__enter__ = MagicMock(return_value=span)
    span.__exit__ = MagicMock(return_value=False)
    tracer.start_as_current_span = MagicMock(return_value=span)
    return tracer
