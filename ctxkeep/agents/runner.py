"""Reference conversation loop: compaction before every model call, checkpoints after."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from pydantic import BaseModel

from ..checkpoint.base import BaseCheckpointStore
from ..checkpoint.types import Checkpoint
from ..errors import CheckpointWriteError, ContextLengthExceededError
from ..llm.invoker import ModelInvoker, ModelResponse
from ..memory.context_manager import ContextManager
from ..memory.types import CompactionTrigger
from ..types.types import Message, Usage, assistant_message, user_message
from ..utils.retry import retry_with_backoff

logger = logging.getLogger(__name__)


class StepResult(BaseModel):
    """Outcome of one ``run_step`` call."""

    step: int
    response: ModelResponse
    history: list[Message]
    compacted: bool = False
    checkpointed: bool = False


class ConversationRunner:
    """Drives one conversation thread.

    Each step appends the new input, lets the context manager shrink the
    history if needed, calls the model, and appends the reply. Checkpoints are
    written after every step (``checkpoint_after_step=True``) or once in
    ``finish``. Token usage, summarization calls included, is carried in
    checkpoint metadata so a resumed run keeps counting from where it stopped.
    The usage each reply reports is handed to the context manager, so budgets
    start from real counts instead of estimates.

    Example:
        runner = ConversationRunner("thread-1", manager, invoker, store=store)
        await runner.resume()
        result = await runner.run_step("What did we decide about retries?")
        await runner.finish()
    """

    def __init__(
        self,
        thread_id: str,
        context_manager: ContextManager,
        invoker: ModelInvoker,
        store: BaseCheckpointStore | None = None,
        checkpoint_after_step: bool = False,
        save_retries: int = 2,
        retry_base_delay: float = 1.0,
        instruction: str | None = None,
    ):
        self.thread_id = thread_id
        self.context_manager = context_manager
        self.invoker = invoker
        self.store = store
        self.checkpoint_after_step = checkpoint_after_step
        self.save_retries = save_retries
        self.retry_base_delay = retry_base_delay
        self.instruction = instruction

        self.history: list[Message] = []
        self.usage = Usage()
        self.next_step = 0

    async def resume(self) -> bool:
        """Restore history, step counter and usage from the latest checkpoint.

        Returns:
            True if a checkpoint was found
        """
        if self.store is None:
            return False
        checkpoint = await self.store.load(self.thread_id)
        if checkpoint is None:
            logger.debug("No checkpoint for thread %s, starting fresh", self.thread_id)
            return False

        self.history = list(checkpoint.history)
        self.usage = checkpoint.usage
        self.next_step = checkpoint.step + 1
        logger.info(
            "Resumed thread %s at step %d (%d messages)",
            self.thread_id,
            checkpoint.step,
            len(self.history),
        )
        return True

    async def run_step(self, new_messages: str | Message | Sequence[Message]) -> StepResult:
        if isinstance(new_messages, str):
            incoming = [user_message(new_messages)]
        elif isinstance(new_messages, Message):
            incoming = [new_messages]
        else:
            incoming = list(new_messages)

        combined = [*self.history, *incoming]
        processed = await self.context_manager.process_with_result(
            combined, self.invoker, self.thread_id
        )
        history = processed.messages
        compaction_usage = processed.usage
        compacted = history != combined

        try:
            response = await self.invoker.invoke(history, instruction=self.instruction)
        except ContextLengthExceededError as err:
            if not self.context_manager.policy.enable_error_fallback:
                raise
            logger.warning(
                "Model rejected %d messages for thread %s (%s); compacting and retrying",
                len(history),
                self.thread_id,
                err,
            )
            result = await self.context_manager.compact(
                history,
                self.invoker,
                CompactionTrigger.ERROR_FALLBACK,
                thread_id=self.thread_id,
            )
            history = result.messages
            compaction_usage = compaction_usage + result.usage
            compacted = compacted or result.compacted
            response = await self.invoker.invoke(history, instruction=self.instruction)

        self.history = [*history, assistant_message(response.text)]
        self.context_manager.update_usage(response.usage, self.history, self.thread_id)
        self.usage = self.usage + compaction_usage + response.usage
        step = self.next_step
        self.next_step += 1

        checkpointed = False
        if self.checkpoint_after_step and self.store is not None:
            checkpointed = await self._save(step)

        return StepResult(
            step=step,
            response=response,
            history=list(self.history),
            compacted=compacted,
            checkpointed=checkpointed,
        )

    async def finish(self) -> bool:
        """Write the end-of-run checkpoint when per-step checkpointing is off."""
        self.context_manager.reset_usage(self.thread_id)
        if self.store is None or self.checkpoint_after_step or self.next_step == 0:
            return False
        return await self._save(self.next_step - 1)

    def snapshot(self, step: int) -> Checkpoint:
        return Checkpoint(
            thread_id=self.thread_id,
            step=step,
            history=list(self.history),
            metadata={"usage": self.usage.model_dump()},
        )

    async def _save(self, step: int) -> bool:
        return await retry_with_backoff(
            self.store.save,
            self.save_retries,
            self.retry_base_delay,
            10.0,
            self.snapshot(step),
            retry_on=(CheckpointWriteError,),
        )
