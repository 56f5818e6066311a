"""Types for the context budget and compaction system.

Two-tier history after compaction:
- Tier 1: a single summary message standing in for the folded prefix
- Tier 2: recent raw messages kept verbatim
"""

from __future__ import annotations

from collections.abc import Callable
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..types.types import Message, Usage


class CompactionTrigger(str, Enum):
    """Why a compaction ran (or ``NONE`` when it should not)."""

    TOKEN_THRESHOLD = "token_threshold"
    HARD_CAP = "hard_cap"
    GROWTH_RATE = "growth_rate"
    ERROR_FALLBACK = "error_fallback"
    NONE = "none"


class TokenBudget(BaseModel):
    """Token budget snapshot for a message history.

    ``is_actual`` is set when ``current_tokens`` starts from a count the model
    reported rather than from the estimator.
    """

    max_tokens: int = Field(gt=0)
    current_tokens: int = Field(ge=0)
    is_actual: bool = False

    @property
    def usage(self) -> float:
        """Usage ratio (0-1, may exceed 1 when over budget)."""
        return self.current_tokens / self.max_tokens

    @property
    def remaining(self) -> int:
        return max(0, self.max_tokens - self.current_tokens)


class CompactionDecision(BaseModel):
    """Outcome of a should-compact evaluation."""

    model_config = ConfigDict(frozen=True)

    trigger: bool
    reason: CompactionTrigger = CompactionTrigger.NONE


NO_COMPACTION = CompactionDecision(trigger=False, reason=CompactionTrigger.NONE)

ShouldCompactFn = Callable[[TokenBudget, list[Message]], CompactionDecision]


class CompactionPolicyConfig(BaseModel):
    """User-facing policy configuration. ``None`` means "use the default"."""

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    enabled: bool | None = None
    token_threshold: float | None = None
    hard_cap_threshold: float | None = None
    enable_growth_rate_prediction: bool | None = None
    enable_error_fallback: bool | None = None
    should_compact: ShouldCompactFn | None = None


class CompactionPolicy(BaseModel):
    """Internal - all fields resolved to concrete values."""

    model_config = ConfigDict(extra="forbid", frozen=True, arbitrary_types_allowed=True)

    enabled: bool = True
    token_threshold: float = 0.8
    hard_cap_threshold: float = 0.95
    enable_growth_rate_prediction: bool = False
    enable_error_fallback: bool = True
    should_compact: ShouldCompactFn | None = None

    @model_validator(mode="after")
    def _check_ratios(self) -> CompactionPolicy:
        for name in ("token_threshold", "hard_cap_threshold"):
            value = getattr(self, name)
            if not 0 < value <= 1.0:
                raise ValueError(f"{name} must be in (0, 1], got {value}")
        return self


DEFAULT_COMPACTION_POLICY = CompactionPolicy()


class StructuredSummary(BaseModel):
    """Sectioned summary produced by the ``structured`` strategy."""

    decisions: list[str] = Field(default_factory=list)
    preferences: list[str] = Field(default_factory=list)
    current_state: list[str] = Field(default_factory=list)
    open_questions: list[str] = Field(default_factory=list)
    references: list[str] = Field(default_factory=list)


CompactionStrategy = Literal["rollup", "structured"]


class SummarizationConfig(BaseModel):
    """How much history survives compaction and how the rest is summarized."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    keep_message_count: int = Field(default=10, ge=0)
    keep_tool_result_count: int = Field(default=5, ge=0)
    summary_prompt: str | None = None
    strategy: CompactionStrategy = "rollup"
    max_summary_tokens: int = Field(default=1000, gt=0)


DEFAULT_SUMMARIZATION_CONFIG = SummarizationConfig()


class CompactionResult(BaseModel):
    """Result from a compaction run.

    ``messages`` is the history to use from now on: ``[summary_message] +
    surviving_messages`` when something was folded, or the input unchanged.
    ``usage`` is what the summarization call cost.
    """

    trigger: CompactionTrigger
    compacted: bool
    messages_before: int
    messages_after: int
    tokens_before: int
    tokens_after: int
    messages: list[Message]
    summary_message: Message | None = None
    surviving_messages: list[Message] = Field(default_factory=list)
    compacted_messages: list[Message] = Field(default_factory=list)
    summary: str = ""
    strategy: CompactionStrategy = "rollup"
    structured_summary: StructuredSummary | None = None
    fallback: bool = False
    usage: Usage = Field(default_factory=Usage)


class ProcessResult(BaseModel):
    """History to send next, plus the compaction behind it (if any).

    ``usage`` is the summarization cost taken into account on this call. It
    also covers a finished background compaction that was discarded as stale.
    """

    messages: list[Message]
    compaction: CompactionResult | None = None
    usage: Usage = Field(default_factory=Usage)
