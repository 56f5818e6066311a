"""Base class for checkpoint stores."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from ..errors import (
    CheckpointConflictError,
    CheckpointWriteError,
    OutOfOrderCheckpointError,
)
from ..features.tracing import traced_span
from ..utils.locks import KeyedLocks
from .types import Checkpoint, OutOfOrderPolicy, RetentionHook

logger = logging.getLogger(__name__)


class BaseCheckpointStore(ABC):
    """Thread-scoped, step-ordered checkpoint storage.

    Subclasses implement the storage primitives (``_read``, ``_write``, ...);
    this class owns the rules every backend must follow:

    - ``(thread_id, step)`` is unique. Re-saving identical content is a no-op,
      different content raises ``CheckpointConflictError``.
    - The latest pointer only moves forward. A save below the latest step is
      logged and skipped (``out_of_order="ignore"``) or rejected with
      ``OutOfOrderCheckpointError`` (``out_of_order="reject"``).
    - Backend write errors listed in ``write_errors`` surface as
      ``CheckpointWriteError``.
    - After each acknowledged save, ``retention_hook`` may prune older steps.
      The latest step is never pruned.

    Saves for one thread are serialized within the process.
    """

    write_errors: tuple[type[Exception], ...] = ()

    def __init__(
        self,
        out_of_order: OutOfOrderPolicy = "ignore",
        retention_hook: RetentionHook | None = None,
    ):
        if out_of_order not in ("ignore", "reject"):
            raise ValueError(f"out_of_order must be 'ignore' or 'reject', got {out_of_order!r}")
        self.out_of_order = out_of_order
        self.retention_hook = retention_hook
        self._locks = KeyedLocks()

    # -- Storage primitives ---------------------------------------------------

    @abstractmethod
    async def _read(self, thread_id: str, step: int) -> Checkpoint | None:
        pass

    @abstractmethod
    async def _read_latest_step(self, thread_id: str) -> int | None:
        pass

    @abstractmethod
    async def _write(self, checkpoint: Checkpoint) -> None:
        """Store ``checkpoint`` and point the thread's latest at its step."""
        pass

    @abstractmethod
    async def _list(self, thread_id: str) -> list[Checkpoint]:
        """All checkpoints of a thread, ascending by step."""
        pass

    @abstractmethod
    async def _threads(self) -> list[str]:
        pass

    @abstractmethod
    async def _delete_thread(self, thread_id: str) -> bool:
        pass

    @abstractmethod
    async def _delete_steps(self, thread_id: str, steps: list[int]) -> None:
        pass

    async def _write_latest(self, thread_id: str, step: int) -> None:
        """Point the thread's latest at an already stored ``step``.

        Only needed by backends whose ``_write`` can store the step without
        moving the pointer; the others never reach it.
        """

    async def _steps(self, thread_id: str) -> list[int]:
        return [checkpoint.step for checkpoint in await self._list(thread_id)]

    # -- Public API -----------------------------------------------------------

    async def save(self, checkpoint: Checkpoint) -> bool:
        """Durably record ``checkpoint``.

        Returns:
            True if the checkpoint was written (or a stranded step was made latest),
            False if the save was a no-op
            (identical retry, or an ignored out-of-order step)

        Raises:
            CheckpointConflictError: different content already stored at this step
            OutOfOrderCheckpointError: step below latest with ``out_of_order="reject"``
            CheckpointWriteError: the backend failed to write
        """
        thread_id, step = checkpoint.thread_id, checkpoint.step
        async with self._locks.hold(thread_id):
            attributes = {
                "checkpoint.thread_id": thread_id,
                "checkpoint.step": step,
                "checkpoint.messages": len(checkpoint.history),
            }
            with traced_span("checkpoint.save", attributes) as span:
                try:
                    written = await self._save_locked(checkpoint)
                except self.write_errors as e:
                    logger.error("Checkpoint write failed for %s/%d: %s", thread_id, step, e)
                    raise CheckpointWriteError(
                        f"Checkpoint write failed: {e}", thread_id, step
                    ) from e
                span.set_attribute("checkpoint.written", written)

            if written and self.retention_hook is not None:
                await self._apply_retention(thread_id)
        return written

    async def _save_locked(self, checkpoint: Checkpoint) -> bool:
        thread_id, step = checkpoint.thread_id, checkpoint.step

        existing = await self._read(thread_id, step)
        if existing is not None:
            if existing.same_content(checkpoint):
                latest = await self._read_latest_step(thread_id)
                if latest is None or latest < step:
                    # An earlier save stored the step but failed before moving latest.
                    await self._write_latest(thread_id, step)
                    logger.info("Repaired latest pointer of %s to step %d", thread_id, step)
                    return True
                logger.debug("Checkpoint %s/%d already stored", thread_id, step)
                return False
            raise CheckpointConflictError(
                "A different checkpoint is already stored at this step", thread_id, step
            )

        latest = await self._read_latest_step(thread_id)
        if latest is not None and step < latest:
            if self.out_of_order == "reject":
                raise OutOfOrderCheckpointError(
                    f"Step {step} is older than latest step {latest}", thread_id, step
                )
            logger.warning(
                "Ignoring out-of-order checkpoint %s/%d (latest is %d)", thread_id, step, latest
            )
            return False

        await self._write(checkpoint)
        logger.debug("Saved checkpoint %s/%d", thread_id, step)
        return True

    async def _apply_retention(self, thread_id: str) -> None:
        steps = await self._steps(thread_id)
        if not steps:
            return
        latest = steps[-1]
        doomed = sorted({s for s in self.retention_hook(thread_id, list(steps)) if s != latest})
        if doomed:
            await self._delete_steps(thread_id, doomed)
            logger.debug("Pruned %d checkpoints of thread %s", len(doomed), thread_id)

    async def load(self, thread_id: str, step: int | None = None) -> Checkpoint | None:
        """Load a checkpoint; the latest one when ``step`` is omitted.

        Returns None when nothing is stored.
        """
        if step is None:
            step = await self._read_latest_step(thread_id)
            if step is None:
                return None
        return await self._read(thread_id, step)

    async def list(self, thread_id: str) -> list[Checkpoint]:
        """All stored checkpoints of a thread, ascending by step."""
        return await self._list(thread_id)

    async def latest_step(self, thread_id: str) -> int | None:
        return await self._read_latest_step(thread_id)

    async def list_threads(self) -> list[str]:
        return sorted(await self._threads())

    async def exists(self, thread_id: str) -> bool:
        return await self._read_latest_step(thread_id) is not None

    async def delete(self, thread_id: str) -> bool:
        """Delete every checkpoint of a thread. Returns False if there were none."""
        async with self._locks.hold(thread_id):
            return await self._delete_thread(thread_id)

    async def prune(self, thread_id: str, keep_last: int) -> int:
        """Delete all but the ``keep_last`` most recent steps; returns how many were removed."""
        if keep_last < 1:
            raise ValueError("keep_last must be at least 1")
        async with self._locks.hold(thread_id):
            steps = await self._steps(thread_id)
            doomed = steps[:-keep_last]
            if doomed:
                await self._delete_steps(thread_id, doomed)
            return len(doomed)

    async def close(self) -> None:
        """Release backend resources."""
