"""Compaction policy evaluation.

Decides whether a history must be compacted, and why. Rules are evaluated in a
fixed order and the first match wins:

1. disabled policy -> never compact
2. custom ``should_compact`` override -> its answer, verbatim
3. usage >= hard cap -> ``hard_cap``
4. usage >= token threshold -> ``token_threshold``
5. growth prediction: usage plus one more message the size of the last one
   would reach the token threshold -> ``growth_rate``
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

from pydantic import BaseModel, ValidationError

from ..errors import PolicyMisconfigurationError
from ..types.types import Message
from .tokens import TokenCounter
from .types import (
    NO_COMPACTION,
    CompactionDecision,
    CompactionPolicy,
    CompactionPolicyConfig,
    CompactionTrigger,
    ShouldCompactFn,
    SummarizationConfig,
    TokenBudget,
)

logger = logging.getLogger(__name__)

_default_counter = TokenCounter()


def _validation_message(err: ValidationError) -> tuple[str, str | None]:
    first = err.errors()[0]
    field = ".".join(str(part) for part in first.get("loc", ())) or None
    return first.get("msg", str(err)), field


def resolve_policy(
    config: CompactionPolicy | CompactionPolicyConfig | dict[str, Any] | None = None,
) -> CompactionPolicy:
    """Merge a partial policy with the defaults.

    Omitted (or ``None``) fields take the default, provided fields override, and
    unknown fields are rejected.

    Raises:
        PolicyMisconfigurationError: unknown fields or ratios outside (0, 1]
    """
    if isinstance(config, CompactionPolicy):
        policy = config
    else:
        if config is None:
            overrides: dict[str, Any] = {}
        elif isinstance(config, BaseModel):
            overrides = config.model_dump(exclude_none=True)
        else:
            overrides = {k: v for k, v in config.items() if v is not None}
        try:
            policy = CompactionPolicy(**overrides)
        except ValidationError as err:
            reason, field = _validation_message(err)
            raise PolicyMisconfigurationError(reason, field) from err

    if policy.token_threshold > policy.hard_cap_threshold:
        # Allowed: the hard cap is still evaluated first.
        logger.warning(
            "token_threshold %.2f is above hard_cap_threshold %.2f; hard cap takes precedence",
            policy.token_threshold,
            policy.hard_cap_threshold,
        )
    return policy


def resolve_summarization(
    config: SummarizationConfig | dict[str, Any] | None = None,
) -> SummarizationConfig:
    """Merge a partial summarization config with the defaults."""
    if isinstance(config, SummarizationConfig):
        return config
    overrides = {k: v for k, v in (config or {}).items() if v is not None}
    try:
        return SummarizationConfig(**overrides)
    except ValidationError as err:
        reason, field = _validation_message(err)
        raise PolicyMisconfigurationError(reason, field) from err


class PolicyEvaluator(ABC):
    """Strategy that turns a budget and a history into a decision."""

    @abstractmethod
    def evaluate(
        self,
        policy: CompactionPolicy,
        budget: TokenBudget,
        history: Sequence[Message],
    ) -> CompactionDecision:
        pass


class BuiltInEvaluator(PolicyEvaluator):
    """Threshold, hard-cap and growth-rate rules."""

    def __init__(self, token_counter: TokenCounter | None = None):
        self.token_counter = token_counter or _default_counter

    def evaluate(
        self,
        policy: CompactionPolicy,
        budget: TokenBudget,
        history: Sequence[Message],
    ) -> CompactionDecision:
        usage = budget.usage

        if usage >= policy.hard_cap_threshold:
            return CompactionDecision(trigger=True, reason=CompactionTrigger.HARD_CAP)

        if usage >= policy.token_threshold:
            return CompactionDecision(trigger=True, reason=CompactionTrigger.TOKEN_THRESHOLD)

        if policy.enable_growth_rate_prediction and history:
            # The last message is the growth sample for the next turn.
            last_tokens = self.token_counter.count_message(history[-1])
            predicted_usage = (budget.current_tokens + last_tokens) / budget.max_tokens
            if predicted_usage >= policy.token_threshold:
                return CompactionDecision(trigger=True, reason=CompactionTrigger.GROWTH_RATE)

        return NO_COMPACTION


class CustomEvaluator(PolicyEvaluator):
    """Delegates the whole decision to a user-supplied function."""

    def __init__(self, fn: ShouldCompactFn):
        self.fn = fn

    def evaluate(
        self,
        policy: CompactionPolicy,
        budget: TokenBudget,
        history: Sequence[Message],
    ) -> CompactionDecision:
        result = self.fn(budget, list(history))
        if isinstance(result, CompactionDecision):
            return result
        if isinstance(result, dict):
            return CompactionDecision.model_validate(result)
        raise TypeError(
            f"should_compact must return a CompactionDecision or dict, got {type(result).__name__}"
        )


def select_evaluator(
    policy: CompactionPolicy, token_counter: TokenCounter | None = None
) -> PolicyEvaluator:
    """Pick the evaluator once, at configuration time."""
    if policy.should_compact is not None:
        return CustomEvaluator(policy.should_compact)
    return BuiltInEvaluator(token_counter)


def create_token_budget(
    max_tokens: int,
    history: Sequence[Message],
    token_counter: TokenCounter | None = None,
) -> TokenBudget:
    counter = token_counter or _default_counter
    return TokenBudget(max_tokens=max_tokens, current_tokens=counter.count_messages(history))


def decide(
    policy: CompactionPolicy,
    budget: TokenBudget,
    history: Sequence[Message],
    evaluator: PolicyEvaluator | None = None,
) -> CompactionDecision:
    """Decide whether ``history`` needs compaction under ``policy``.

    Args:
        policy: Resolved compaction policy
        budget: Token budget computed for ``history``
        history: Current message history (oldest first)
        evaluator: Pre-selected evaluator; chosen from ``policy`` when omitted

    Returns:
        CompactionDecision with ``trigger`` and ``reason``
    """
    if not policy.enabled:
        return NO_COMPACTION

    if evaluator is None:
        evaluator = select_evaluator(policy)
    return evaluator.evaluate(policy, budget, history)
