"""In-process checkpoint store."""

from __future__ import annotations

from collections.abc import Iterable

from .base import BaseCheckpointStore
from .types import Checkpoint, OutOfOrderPolicy, RetentionHook


class MemoryCheckpointStore(BaseCheckpointStore):
    """Keeps checkpoints in a dict. Useful for tests and single-process runs.

    Checkpoints are deep-copied on the way in and out, so callers can never
    alter what is stored. ``namespace`` isolates tenants sharing one store.
    """

    def __init__(
        self,
        namespace: str | None = None,
        initial_checkpoints: Iterable[Checkpoint] | None = None,
        out_of_order: OutOfOrderPolicy = "ignore",
        retention_hook: RetentionHook | None = None,
    ):
        super().__init__(out_of_order=out_of_order, retention_hook=retention_hook)
        self.namespace = namespace
        self._data: dict[str, dict[int, Checkpoint]] = {}
        self._latest: dict[str, int] = {}
        for checkpoint in initial_checkpoints or ():
            self._store(checkpoint)

    def _key(self, thread_id: str) -> str:
        return f"{self.namespace}:{thread_id}" if self.namespace else thread_id

    def _store(self, checkpoint: Checkpoint) -> None:
        key = self._key(checkpoint.thread_id)
        self._data.setdefault(key, {})[checkpoint.step] = checkpoint.model_copy(deep=True)
        if checkpoint.step > self._latest.get(key, -1):
            self._latest[key] = checkpoint.step

    async def _read(self, thread_id: str, step: int) -> Checkpoint | None:
        checkpoint = self._data.get(self._key(thread_id), {}).get(step)
        return checkpoint.model_copy(deep=True) if checkpoint else None

    async def _read_latest_step(self, thread_id: str) -> int | None:
        return self._latest.get(self._key(thread_id))

    async def _write(self, checkpoint: Checkpoint) -> None:
        self._store(checkpoint)

    async def _list(self, thread_id: str) -> list[Checkpoint]:
        steps = self._data.get(self._key(thread_id), {})
        return [steps[s].model_copy(deep=True) for s in sorted(steps)]

    async def _threads(self) -> list[str]:
        if not self.namespace:
            return list(self._data)
        prefix = f"{self.namespace}:"
        return [key[len(prefix) :] for key in self._data if key.startswith(prefix)]

    async def _delete_thread(self, thread_id: str) -> bool:
        key = self._key(thread_id)
        self._latest.pop(key, None)
        return self._data.pop(key, None) is not None

    async def _delete_steps(self, thread_id: str, steps: list[int]) -> None:
        stored = self._data.get(self._key(thread_id), {})
        for step in steps:
            stored.pop(step, None)

    def count(self) -> int:
        """Number of threads with checkpoints (within the namespace, if any)."""
        if not self.namespace:
            return len(self._data)
        prefix = f"{self.namespace}:"
        return sum(1 for key in self._data if key.startswith(prefix))

    def clear(self) -> None:
        """Drop every checkpoint (within the namespace, if any)."""
        if not self.namespace:
            self._data.clear()
            self._latest.clear()
            return
        prefix = f"{self.namespace}:"
        for key in [k for k in self._data if k.startswith(prefix)]:
            self._data.pop(key, None)
            self._latest.pop(key, None)
