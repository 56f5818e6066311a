"""Context manager - ties the policy evaluator and the summarizer together."""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import Any, Literal

from ..errors import ConcurrentCompactionError, PolicyMisconfigurationError
from ..features.tracing import traced_span
from ..llm.invoker import ModelInvoker
from ..types.types import Message, Usage
from ..utils.locks import KeyedLocks
from .compaction import compact_history
from .policy import decide, resolve_policy, resolve_summarization, select_evaluator
from .scheduler import CompactionScheduler, TaskCallback
from .tokens import TokenCounter
from .types import (
    CompactionDecision,
    CompactionPolicy,
    CompactionPolicyConfig,
    CompactionResult,
    CompactionTrigger,
    ProcessResult,
    SummarizationConfig,
    TokenBudget,
)

logger = logging.getLogger(__name__)

ConflictMode = Literal["wait", "reject"]

_DEFAULT_THREAD = "__default__"


class ContextManager:
    """Keeps one or more conversations within a fixed token budget.

    ``should_compact`` is a pure decision. ``compact`` always compacts and is
    serialized per thread: with ``on_conflict="wait"`` a second caller queues
    behind the first, with ``"reject"`` it gets ``ConcurrentCompactionError``.

    Example:
        manager = ContextManager(max_tokens=100_000, policy={"token_threshold": 0.75})
        history = await manager.process(history, invoker, thread_id="t-1")
    """

    def __init__(
        self,
        max_tokens: int,
        policy: CompactionPolicy | CompactionPolicyConfig | dict[str, Any] | None = None,
        summarization: SummarizationConfig | dict[str, Any] | None = None,
        token_counter: TokenCounter | None = None,
        on_budget_update: Callable[[TokenBudget], None] | None = None,
        on_compact: Callable[[CompactionResult], None] | None = None,
        on_conflict: ConflictMode = "wait",
    ):
        if not isinstance(max_tokens, int) or max_tokens <= 0:
            raise PolicyMisconfigurationError(
                f"max_tokens must be a positive integer, got {max_tokens!r}", "max_tokens"
            )
        if on_conflict not in ("wait", "reject"):
            raise PolicyMisconfigurationError(
                f"on_conflict must be 'wait' or 'reject', got {on_conflict!r}", "on_conflict"
            )

        self.max_tokens = max_tokens
        self._policy = resolve_policy(policy)
        self._summarization = resolve_summarization(summarization)
        self.token_counter = token_counter or TokenCounter()
        self._evaluator = select_evaluator(self._policy, self.token_counter)
        self.on_budget_update = on_budget_update
        self.on_compact = on_compact
        self.on_conflict = on_conflict
        self.scheduler: CompactionScheduler | None = None
        self._locks = KeyedLocks()
        # thread -> (history the count covers, reported total tokens)
        self._actual_usage: dict[str, tuple[list[Message], int]] = {}

    @property
    def policy(self) -> CompactionPolicy:
        """The resolved policy in effect."""
        return self._policy

    @property
    def summarization(self) -> SummarizationConfig:
        return self._summarization

    def enable_background_compaction(
        self,
        debounce_delay: float = 5.0,
        max_pending_tasks: int = 3,
        on_task_complete: TaskCallback | None = None,
        on_task_error: TaskCallback | None = None,
    ) -> CompactionScheduler:
        """Attach a scheduler so ``process`` compacts in the background."""
        self.scheduler = CompactionScheduler(
            self,
            debounce_delay=debounce_delay,
            max_pending_tasks=max_pending_tasks,
            on_task_complete=on_task_complete,
            on_task_error=on_task_error,
        )
        return self.scheduler

    def update_usage(
        self,
        usage: Usage,
        history: Sequence[Message],
        thread_id: str | None = None,
    ) -> None:
        """Record the token count the model reported for ``history``.

        ``history`` is what the count covers: the messages sent plus the reply.
        While a thread's history still extends it, budgets start from the
        reported count and only estimate the messages added since. A zero
        ``total_tokens`` means the model reported nothing and is ignored.
        """
        if usage.total_tokens <= 0:
            return
        self._actual_usage[thread_id or _DEFAULT_THREAD] = (list(history), usage.total_tokens)

    def reset_usage(self, thread_id: str | None = None) -> None:
        """Forget the reported count of a thread; budgets go back to estimates."""
        self._actual_usage.pop(thread_id or _DEFAULT_THREAD, None)

    def _budget(self, history: Sequence[Message], thread_id: str | None = None) -> TokenBudget:
        recorded = self._actual_usage.get(thread_id or _DEFAULT_THREAD)
        if recorded is not None:
            covered, reported = recorded
            if list(history[: len(covered)]) == covered:
                added = self.token_counter.count_messages(history[len(covered) :])
                return TokenBudget(
                    max_tokens=self.max_tokens, current_tokens=reported + added, is_actual=True
                )
        return TokenBudget(
            max_tokens=self.max_tokens,
            current_tokens=self.token_counter.count_messages(history),
        )

    def get_budget(
        self, history: Sequence[Message], thread_id: str | None = None
    ) -> TokenBudget:
        """Compute the token budget for ``history`` and notify ``on_budget_update``."""
        budget = self._budget(history, thread_id)
        if self.on_budget_update:
            self.on_budget_update(budget)
        return budget

    def should_compact(
        self, history: Sequence[Message], thread_id: str | None = None
    ) -> CompactionDecision:
        """Decide whether ``history`` needs compaction. Has no side effects."""
        return decide(self._policy, self._budget(history, thread_id), history, self._evaluator)

    def is_compacting(self, thread_id: str | None = None) -> bool:
        return self._locks.locked(thread_id or _DEFAULT_THREAD)

    async def compact(
        self,
        history: Sequence[Message],
        invoker: ModelInvoker,
        reason: CompactionTrigger | str | None = None,
        *,
        thread_id: str | None = None,
    ) -> CompactionResult:
        """Compact ``history`` unconditionally.

        Args:
            history: Conversation to compact (left untouched)
            invoker: Model used to write the summary
            reason: Trigger recorded on the result; defaults to ``token_threshold``
            thread_id: Conversation the history belongs to

        Returns:
            CompactionResult whose ``messages`` replace the history

        Raises:
            ConcurrentCompactionError: another compaction is running for the thread
                and ``on_conflict`` is ``"reject"``
            SummarizationError: the model failed and error fallback is disabled
        """
        trigger = CompactionTrigger(reason) if reason else CompactionTrigger.TOKEN_THRESHOLD
        key = thread_id or _DEFAULT_THREAD
        if self.on_conflict == "reject" and self._locks.locked(key):
            raise ConcurrentCompactionError(thread_id)

        async with self._locks.hold(key):
            attributes = {
                "context.thread_id": thread_id or "",
                "context.trigger": trigger.value,
                "context.messages_before": len(history),
            }
            with traced_span("context.compact", attributes) as span:
                logger.info(
                    "Compacting %d messages for thread %s (trigger=%s)",
                    len(history),
                    thread_id,
                    trigger.value,
                )
                result = await compact_history(
                    history,
                    invoker,
                    self._summarization,
                    trigger,
                    enable_error_fallback=self._policy.enable_error_fallback,
                    token_counter=self.token_counter,
                )
                span.set_attribute("context.messages_after", result.messages_after)
                span.set_attribute("context.fallback", result.fallback)

        if self.on_compact and result.compacted:
            self.on_compact(result)
        return result

    async def process(
        self,
        history: Sequence[Message],
        invoker: ModelInvoker,
        thread_id: str | None = None,
    ) -> list[Message]:
        """Return the history to send to the model next, compacting when needed.

        With a scheduler attached, a triggered compaction is queued in the
        background and the latest finished one is applied on a later call, as
        long as the history it compacted is still a prefix of ``history``.
        """
        return (await self.process_with_result(history, invoker, thread_id)).messages

    async def process_with_result(
        self,
        history: Sequence[Message],
        invoker: ModelInvoker,
        thread_id: str | None = None,
    ) -> ProcessResult:
        """Like ``process``, but also report the compaction applied and its token cost."""
        history = list(history)
        budget = self.get_budget(history, thread_id)
        decision = decide(self._policy, budget, history, self._evaluator)
        if not decision.trigger:
            return ProcessResult(messages=history)

        if self.scheduler is not None:
            usage = Usage()
            task = self.scheduler.get_latest_task(thread_id)
            if task is not None and task.result is not None:
                self.scheduler.cleanup(thread_id)
                usage = task.result.usage
                base = task.messages
                if history[: len(base)] == base:
                    return ProcessResult(
                        messages=task.result.messages + history[len(base) :],
                        compaction=task.result,
                        usage=usage,
                    )
                logger.info("Discarding stale background compaction for thread %s", thread_id)
            self.scheduler.schedule(history, invoker, decision.reason, thread_id=thread_id)
            return ProcessResult(messages=history, usage=usage)

        result = await self.compact(history, invoker, decision.reason, thread_id=thread_id)
        return ProcessResult(messages=result.messages, compaction=result, usage=result.usage)
