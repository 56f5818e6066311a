"""Background compaction scheduling.

Lets an orchestrator keep talking to the model while a compaction runs in the
background; the finished result is applied on a later turn.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections.abc import Callable
from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, ConfigDict

from ..llm.invoker import ModelInvoker
from ..types.types import Message
from .types import CompactionResult, CompactionTrigger

if TYPE_CHECKING:
    from .context_manager import ContextManager

logger = logging.getLogger(__name__)

TaskStatus = Literal["pending", "running", "completed", "failed"]


class CompactionTask(BaseModel):
    """A queued or finished background compaction."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str
    thread_id: str | None = None
    status: TaskStatus = "pending"
    messages: list[Message]
    trigger: CompactionTrigger
    created_at: float
    started_at: float | None = None
    completed_at: float | None = None
    result: CompactionResult | None = None
    error: Exception | None = None


TaskCallback = Callable[[CompactionTask], None]


class SchedulerShutdownError(RuntimeError):
    """Raised when scheduling on a scheduler that has been shut down."""


class CompactionScheduler:
    """Debounced queue of background compactions.

    Tasks run one at a time through ``ContextManager.compact``, so the manager's
    per-thread mutual exclusion still applies.

    Args:
        manager: Context manager that performs the compactions
        debounce_delay: Seconds to wait after the last ``schedule`` call before running
        max_pending_tasks: Queue depth; the oldest pending task is dropped beyond it
        on_task_complete: Called with each completed task
        on_task_error: Called with each failed task
    """

    def __init__(
        self,
        manager: ContextManager,
        debounce_delay: float = 5.0,
        max_pending_tasks: int = 3,
        on_task_complete: TaskCallback | None = None,
        on_task_error: TaskCallback | None = None,
    ):
        if max_pending_tasks < 1:
            raise ValueError("max_pending_tasks must be at least 1")
        self.manager = manager
        self.debounce_delay = debounce_delay
        self.max_pending_tasks = max_pending_tasks
        self.on_task_complete = on_task_complete
        self.on_task_error = on_task_error

        self._tasks: dict[str, CompactionTask] = {}
        self._invokers: dict[str, ModelInvoker] = {}
        self._latest: dict[str | None, str] = {}
        self._ids = itertools.count(1)
        self._runner: asyncio.Task | None = None
        self._executing = False
        self._shutdown = False

    def schedule(
        self,
        messages: list[Message],
        invoker: ModelInvoker,
        trigger: CompactionTrigger,
        thread_id: str | None = None,
    ) -> str:
        """Queue a compaction of ``messages`` and return its task id.

        Must be called from a running event loop.
        """
        if self._shutdown:
            raise SchedulerShutdownError("Scheduler has been shut down")

        task = CompactionTask(
            id=f"task-{next(self._ids)}",
            thread_id=thread_id,
            messages=list(messages),
            trigger=CompactionTrigger(trigger),
            created_at=time.time(),
        )

        pending = self.get_pending_tasks()
        if len(pending) >= self.max_pending_tasks:
            dropped = pending[0]
            logger.debug("Dropping oldest pending compaction %s", dropped.id)
            self._forget(dropped.id)

        self._tasks[task.id] = task
        self._invokers[task.id] = invoker

        # Restart the debounce window unless a compaction is mid-flight; the
        # running loop picks up new tasks when it finishes.
        if self._runner is not None and not self._runner.done() and not self._executing:
            self._runner.cancel()
            self._runner = None
        if self._runner is None or self._runner.done():
            self._runner = asyncio.get_running_loop().create_task(self._run())
        return task.id

    def get_task(self, task_id: str) -> CompactionTask | None:
        return self._tasks.get(task_id)

    def get_pending_tasks(self) -> list[CompactionTask]:
        return [t for t in self._tasks.values() if t.status == "pending"]

    def get_latest_task(self, thread_id: str | None = None) -> CompactionTask | None:
        """Most recently completed task for ``thread_id``, if still tracked."""
        task_id = self._latest.get(thread_id)
        return self._tasks.get(task_id) if task_id else None

    def get_latest_result(self, thread_id: str | None = None) -> CompactionResult | None:
        task = self.get_latest_task(thread_id)
        return task.result if task else None

    def cancel(self, task_id: str) -> bool:
        """Cancel a pending task. Running or finished tasks cannot be cancelled."""
        task = self._tasks.get(task_id)
        if task is None or task.status != "pending":
            return False
        self._forget(task_id)
        return True

    def cleanup(self, thread_id: str | None = None) -> None:
        """Forget completed and failed tasks (for one thread, or all when omitted)."""
        for task_id, task in list(self._tasks.items()):
            if task.status not in ("completed", "failed"):
                continue
            if thread_id is not None and task.thread_id != thread_id:
                continue
            self._forget(task_id)
        self._latest = {k: v for k, v in self._latest.items() if v in self._tasks}

    def shutdown(self) -> None:
        """Stop scheduling and fail every pending task.

        A compaction already running is allowed to finish.
        """
        self._shutdown = True
        if self._runner is not None and not self._executing:
            self._runner.cancel()
        for task in self.get_pending_tasks():
            task.status = "failed"
            task.error = SchedulerShutdownError("Scheduler shut down")
            task.completed_at = time.time()
            self._invokers.pop(task.id, None)

    async def join(self) -> None:
        """Wait until the queue is drained."""
        while self._runner is not None and not self._runner.done():
            await asyncio.wait({self._runner})

    def _forget(self, task_id: str) -> None:
        self._tasks.pop(task_id, None)
        self._invokers.pop(task_id, None)

    async def _run(self) -> None:
        if self.debounce_delay > 0:
            await asyncio.sleep(self.debounce_delay)
        while not self._shutdown:
            pending = self.get_pending_tasks()
            if not pending:
                return
            await self._execute(pending[0])
            if self.debounce_delay > 0 and self.get_pending_tasks():
                await asyncio.sleep(self.debounce_delay)

    async def _execute(self, task: CompactionTask) -> None:
        invoker = self._invokers.pop(task.id)
        task.status = "running"
        task.started_at = time.time()
        self._executing = True
        try:
            result = await self.manager.compact(
                task.messages, invoker, task.trigger, thread_id=task.thread_id
            )
        except Exception as err:
            task.status = "failed"
            task.error = err
            task.completed_at = time.time()
            logger.warning("Background compaction %s failed: %s", task.id, err)
            if self.on_task_error:
                self.on_task_error(task)
        else:
            task.status = "completed"
            task.result = result
            task.completed_at = time.time()
            self._latest[task.thread_id] = task.id
            if self.on_task_complete:
                self.on_task_complete(task)
        finally:
            self._executing = False
