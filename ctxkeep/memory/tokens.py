"""Token estimation utilities for context budgeting.

Uses a simple heuristic: ~4 characters per token, plus a fixed per-message
overhead for role and formatting tokens. Estimates are deterministic so that
compaction decisions are reproducible.
"""

from __future__ import annotations

import hashlib
import json
import math
from collections import OrderedDict
from collections.abc import Callable, Iterable
from typing import Any

from ..types.types import Message

CHARS_PER_TOKEN = 4
MESSAGE_OVERHEAD_TOKENS = 4
IMAGE_TOKENS = 1000
FILE_TOKENS = 500
DEFAULT_CACHE_SIZE = 2048


def estimate_tokens(text: str) -> int:
    """Estimate token count for a string using the ~4 chars/token heuristic."""
    return math.ceil(len(text) / CHARS_PER_TOKEN)


def _dump(value: Any) -> str:
    if isinstance(value, str):
        return value
    try:
        return json.dumps(value, sort_keys=True, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(value)


def _content_of(message: Message | dict) -> tuple[str, Any]:
    if isinstance(message, Message):
        return message.role, message.content
    return message.get("role", ""), message.get("content")


def _count_content(content: Any, count_fn: Callable[[str], int]) -> int:
    if content is None:
        return 0
    if isinstance(content, str):
        return count_fn(content)
    if not isinstance(content, list):
        return count_fn(_dump(content))

    total = 0
    for block in content:
        if not isinstance(block, dict):
            total += count_fn(_dump(block))
            continue
        block_type = block.get("type")
        if block_type == "text":
            total += count_fn(block.get("text", ""))
        elif block_type == "tool_call":
            total += count_fn(block.get("tool_name", ""))
            total += count_fn(_dump(block.get("arguments", {})))
        elif block_type == "tool_result":
            total += count_fn(_dump(block.get("output", "")))
        elif block_type == "image":
            total += IMAGE_TOKENS
        elif block_type == "file":
            total += FILE_TOKENS
        else:
            total += count_fn(_dump(block))
    return total


def estimate_message_tokens(message: Message | dict) -> int:
    """Estimate token count for a single conversation message.

    Accepts a ``Message`` or a plain ``{"role": ..., "content": ...}`` dict.
    """
    _, content = _content_of(message)
    return MESSAGE_OVERHEAD_TOKENS + _count_content(content, estimate_tokens)


def estimate_messages_tokens(messages: Iterable[Message | dict]) -> int:
    """Estimate total token count for a sequence of conversation messages."""
    total = 0
    for msg in messages:
        total += estimate_message_tokens(msg)
    return total


def _message_key(message: Message | dict) -> str:
    role, content = _content_of(message)
    digest = hashlib.sha1(_dump(content).encode("utf-8")).hexdigest()
    return f"{role}:{digest}"


class TokenCounter:
    """Message token counter with a bounded per-message cache.

    By default it uses the chars/4 heuristic. Pass ``count_fn`` to plug in a
    model-specific tokenizer, e.g. ``lambda text: len(encoder.encode(text))``.
    The cache keeps the ``cache_size`` most recently counted messages; 0
    disables it.
    """

    def __init__(
        self,
        count_fn: Callable[[str], int] | None = None,
        message_overhead: int = MESSAGE_OVERHEAD_TOKENS,
        cache_size: int = DEFAULT_CACHE_SIZE,
    ):
        if cache_size < 0:
            raise ValueError("cache_size must be >= 0")
        self._count_fn = count_fn or estimate_tokens
        self.message_overhead = message_overhead
        self.cache_size = cache_size
        self._cache: OrderedDict[str, int] = OrderedDict()

    def count(self, text: str) -> int:
        return self._count_fn(text)

    def count_message(self, message: Message | dict) -> int:
        _, content = _content_of(message)
        if not self.cache_size:
            return self.message_overhead + _count_content(content, self._count_fn)

        key = _message_key(message)
        cached = self._cache.get(key)
        if cached is not None:
            self._cache.move_to_end(key)
            return cached

        total = self.message_overhead + _count_content(content, self._count_fn)
        self._cache[key] = total
        if len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)
        return total

    def count_messages(self, messages: Iterable[Message | dict]) -> int:
        return sum(self.count_message(m) for m in messages)

    def invalidate_cache(self) -> None:
        self._cache.clear()
