"""SQLite checkpoint store."""

from __future__ import annotations

import asyncio
import sqlite3
import threading
from pathlib import Path

from ..utils.serializer import deserialize, json_serialize
from .base import BaseCheckpointStore
from .types import Checkpoint, OutOfOrderPolicy, RetentionHook


class SqliteCheckpointStore(BaseCheckpointStore):
    """SQLite-backed checkpoint storage.

    One row per ``(thread_id, step)`` in ``checkpoints`` and one row per thread
    in ``latest``; both are written in the same transaction.
    """

    write_errors = (sqlite3.Error,)

    def __init__(
        self,
        db_path: Path | str,
        out_of_order: OutOfOrderPolicy = "ignore",
        retention_hook: RetentionHook | None = None,
    ) -> None:
        super().__init__(out_of_order=out_of_order, retention_hook=retention_hook)
        self._db_path = str(db_path)
        self._conn = sqlite3.connect(self._db_path, check_same_thread=False)
        self._db_lock = threading.Lock()
        with self._conn:
            self._conn.execute(
                """CREATE TABLE IF NOT EXISTS checkpoints (
                    thread_id TEXT NOT NULL,
                    step INTEGER NOT NULL,
                    payload TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    PRIMARY KEY (thread_id, step)
                )"""
            )
            self._conn.execute(
                """CREATE TABLE IF NOT EXISTS latest (
                    thread_id TEXT PRIMARY KEY,
                    step INTEGER NOT NULL
                )"""
            )

    async def _run(self, fn, *args):
        def locked():
            with self._db_lock:
                return fn(*args)

        return await asyncio.to_thread(locked)

    # -- Blocking helpers -----------------------------------------------------

    def _read_sync(self, thread_id: str, step: int) -> Checkpoint | None:
        row = self._conn.execute(
            "SELECT payload FROM checkpoints WHERE thread_id = ? AND step = ?", (thread_id, step)
        ).fetchone()
        return deserialize(row[0], Checkpoint) if row else None

    def _read_latest_sync(self, thread_id: str) -> int | None:
        row = self._conn.execute(
            "SELECT step FROM latest WHERE thread_id = ?", (thread_id,)
        ).fetchone()
        return row[0] if row else None

    def _write_sync(self, checkpoint: Checkpoint) -> None:
        with self._conn:
            self._conn.execute(
                "INSERT INTO checkpoints (thread_id, step, payload, created_at)"
                " VALUES (?, ?, ?, ?)",
                (
                    checkpoint.thread_id,
                    checkpoint.step,
                    json_serialize(checkpoint),
                    checkpoint.created_at.isoformat(),
                ),
            )
            self._conn.execute(
                "INSERT INTO latest (thread_id, step) VALUES (?, ?)"
                " ON CONFLICT(thread_id) DO UPDATE SET step = excluded.step"
                " WHERE excluded.step > latest.step",
                (checkpoint.thread_id, checkpoint.step),
            )

    def _list_sync(self, thread_id: str) -> list[Checkpoint]:
        rows = self._conn.execute(
            "SELECT payload FROM checkpoints WHERE thread_id = ? ORDER BY step", (thread_id,)
        ).fetchall()
        return [deserialize(r[0], Checkpoint) for r in rows]

    def _steps_sync(self, thread_id: str) -> list[int]:
        rows = self._conn.execute(
            "SELECT step FROM checkpoints WHERE thread_id = ? ORDER BY step", (thread_id,)
        ).fetchall()
        return [r[0] for r in rows]

    def _threads_sync(self) -> list[str]:
        return [r[0] for r in self._conn.execute("SELECT thread_id FROM latest").fetchall()]

    def _delete_thread_sync(self, thread_id: str) -> bool:
        with self._conn:
            cur = self._conn.execute("DELETE FROM checkpoints WHERE thread_id = ?", (thread_id,))
            self._conn.execute("DELETE FROM latest WHERE thread_id = ?", (thread_id,))
        return cur.rowcount > 0

    def _delete_steps_sync(self, thread_id: str, steps: list[int]) -> None:
        with self._conn:
            self._conn.executemany(
                "DELETE FROM checkpoints WHERE thread_id = ? AND step = ?",
                [(thread_id, step) for step in steps],
            )

    # -- Storage primitives ---------------------------------------------------

    async def _read(self, thread_id: str, step: int) -> Checkpoint | None:
        return await self._run(self._read_sync, thread_id, step)

    async def _read_latest_step(self, thread_id: str) -> int | None:
        return await self._run(self._read_latest_sync, thread_id)

    async def _write(self, checkpoint: Checkpoint) -> None:
        await self._run(self._write_sync, checkpoint)

    async def _list(self, thread_id: str) -> list[Checkpoint]:
        return await self._run(self._list_sync, thread_id)

    async def _steps(self, thread_id: str) -> list[int]:
        return await self._run(self._steps_sync, thread_id)

    async def _threads(self) -> list[str]:
        return await self._run(self._threads_sync)

    async def _delete_thread(self, thread_id: str) -> bool:
        return await self._run(self._delete_thread_sync, thread_id)

    async def _delete_steps(self, thread_id: str, steps: list[int]) -> None:
        await self._run(self._delete_steps_sync, thread_id, steps)

    async def close(self) -> None:
        """Close the underlying database connection."""
        await self._run(self._conn.close)
