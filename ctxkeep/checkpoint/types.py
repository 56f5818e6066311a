"""Checkpoint types."""

from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from ..types.types import Message, Usage


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Checkpoint(BaseModel):
    """Snapshot of one conversation thread after a unit of work.

    Checkpoints are immutable once stored. Two checkpoints with the same
    ``thread_id``, ``step``, ``history`` and ``metadata`` are the same snapshot;
    ``created_at`` is informational only.
    """

    model_config = ConfigDict(frozen=True)

    thread_id: str = Field(min_length=1)
    step: int = Field(ge=0)
    history: list[Message] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)

    def same_content(self, other: "Checkpoint") -> bool:
        return (
            self.thread_id == other.thread_id
            and self.step == other.step
            and self.history == other.history
            and self.metadata == other.metadata
        )

    @property
    def usage(self) -> Usage:
        """Token usage accumulated up to this checkpoint, if the runner recorded it."""
        return Usage.model_validate(self.metadata.get("usage") or {})


OutOfOrderPolicy = Literal["ignore", "reject"]

# (thread_id, stored steps ascending) -> steps to delete
RetentionHook = Callable[[str, list[int]], list[int]]


def keep_last(n: int) -> RetentionHook:
    """Retention hook that keeps only the ``n`` most recent steps of each thread."""
    if n < 1:
        raise ValueError("keep_last needs n >= 1")

    def hook(thread_id: str, steps: list[int]) -> list[int]:
        return steps[:-n]

    return hook
