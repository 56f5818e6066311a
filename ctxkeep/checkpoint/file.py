"""Filesystem checkpoint store."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import tempfile
from pathlib import Path
from urllib.parse import quote, unquote

from ..utils.serializer import deserialize, json_serialize
from .base import BaseCheckpointStore
from .types import Checkpoint, OutOfOrderPolicy, RetentionHook

logger = logging.getLogger(__name__)

LATEST_FILE = "LATEST"


def _atomic_write(path: Path, text: str) -> None:
    """Write ``text`` to ``path`` via a fsynced temp file and an atomic rename."""
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class FileCheckpointStore(BaseCheckpointStore):
    """Stores each checkpoint as ``<root>/<thread>/<step>.json``.

    A ``LATEST`` file per thread holds the highest saved step. Both are
    replaced atomically, so a crash mid-save leaves the previous state intact.
    """

    write_errors = (OSError,)

    def __init__(
        self,
        root: str | Path,
        out_of_order: OutOfOrderPolicy = "ignore",
        retention_hook: RetentionHook | None = None,
    ):
        super().__init__(out_of_order=out_of_order, retention_hook=retention_hook)
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _thread_dir(self, thread_id: str) -> Path:
        return self.root / quote(thread_id, safe="")

    def _step_path(self, thread_id: str, step: int) -> Path:
        return self._thread_dir(thread_id) / f"{step:012d}.json"

    # -- Blocking helpers (run in a worker thread) ---------------------------

    def _read_sync(self, thread_id: str, step: int) -> Checkpoint | None:
        path = self._step_path(thread_id, step)
        try:
            data = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        return deserialize(data, Checkpoint)

    def _read_latest_sync(self, thread_id: str) -> int | None:
        try:
            return int((self._thread_dir(thread_id) / LATEST_FILE).read_text().strip())
        except FileNotFoundError:
            return None

    def _write_sync(self, checkpoint: Checkpoint) -> None:
        thread_dir = self._thread_dir(checkpoint.thread_id)
        thread_dir.mkdir(parents=True, exist_ok=True)
        _atomic_write(
            self._step_path(checkpoint.thread_id, checkpoint.step), json_serialize(checkpoint)
        )
        # Step files land before the pointer that names them.
        self._write_latest_sync(checkpoint.thread_id, checkpoint.step)

    def _write_latest_sync(self, thread_id: str, step: int) -> None:
        _atomic_write(self._thread_dir(thread_id) / LATEST_FILE, str(step))

    def _stored_steps_sync(self, thread_id: str) -> list[int]:
        thread_dir = self._thread_dir(thread_id)
        if not thread_dir.is_dir():
            return []
        return sorted(int(p.stem) for p in thread_dir.glob("*.json") if p.stem.isdigit())

    def _list_sync(self, thread_id: str) -> list[Checkpoint]:
        checkpoints = []
        for step in self._stored_steps_sync(thread_id):
            checkpoint = self._read_sync(thread_id, step)
            if checkpoint is not None:
                checkpoints.append(checkpoint)
        return checkpoints

    def _threads_sync(self) -> list[str]:
        return [
            unquote(p.name)
            for p in self.root.iterdir()
            if p.is_dir() and (p / LATEST_FILE).exists()
        ]

    def _delete_thread_sync(self, thread_id: str) -> bool:
        thread_dir = self._thread_dir(thread_id)
        if not thread_dir.is_dir():
            return False
        shutil.rmtree(thread_dir)
        return True

    def _delete_steps_sync(self, thread_id: str, steps: list[int]) -> None:
        for step in steps:
            self._step_path(thread_id, step).unlink(missing_ok=True)

    # -- Storage primitives ---------------------------------------------------

    async def _read(self, thread_id: str, step: int) -> Checkpoint | None:
        return await asyncio.to_thread(self._read_sync, thread_id, step)

    async def _read_latest_step(self, thread_id: str) -> int | None:
        return await asyncio.to_thread(self._read_latest_sync, thread_id)

    async def _write(self, checkpoint: Checkpoint) -> None:
        await asyncio.to_thread(self._write_sync, checkpoint)

    async def _write_latest(self, thread_id: str, step: int) -> None:
        await asyncio.to_thread(self._write_latest_sync, thread_id, step)

    async def _list(self, thread_id: str) -> list[Checkpoint]:
        return await asyncio.to_thread(self._list_sync, thread_id)

    async def _steps(self, thread_id: str) -> list[int]:
        return await asyncio.to_thread(self._stored_steps_sync, thread_id)

    async def _threads(self) -> list[str]:
        return await asyncio.to_thread(self._threads_sync)

    async def _delete_thread(self, thread_id: str) -> bool:
        return await asyncio.to_thread(self._delete_thread_sync, thread_id)

    async def _delete_steps(self, thread_id: str, steps: list[int]) -> None:
        await asyncio.to_thread(self._delete_steps_sync, thread_id, steps)
