"""Unit tests for ctxkeep.checkpoint.sqlite module."""

import sqlite3

import pytest

from ctxkeep.checkpoint import Checkpoint, SqliteCheckpointStore
from ctxkeep.errors import CheckpointWriteError
from ctxkeep.types.types import user_message


def make_checkpoint(step=0):
    return Checkpoint(thread_id="t", step=step, history=[user_message(f"step {step}")])


class TestSqliteCheckpointStore:
    """Tests for SqliteCheckpointStore."""

    @pytest.mark.asyncio
    async def test_schema_and_rows(self, tmp_path):
        db_path = tmp_path / "ckpt.db"
        store = SqliteCheckpointStore(db_path)
        await store.save(make_checkpoint(0))
        await store.save(make_checkpoint(1))
        await store.close()

        conn = sqlite3.connect(db_path)
        try:
            rows = conn.execute("SELECT thread_id, step FROM checkpoints ORDER BY step").fetchall()
            latest = conn.execute("SELECT thread_id, step FROM latest").fetchall()
        finally:
            conn.close()
        assert rows == [("t", 0), ("t", 1)]
        assert latest == [("t", 1)]

    @pytest.mark.asyncio
    async def test_survives_reopen(self, tmp_path):
        db_path = tmp_path / "ckpt.db"
        first = SqliteCheckpointStore(db_path)
        await first.save(make_checkpoint(3))
        await first.close()

        second = SqliteCheckpointStore(db_path)
        try:
            assert await second.latest_step("t") == 3
            assert (await second.load("t")).history[0].content == "step 3"
        finally:
            await second.close()

    @pytest.mark.asyncio
    async def test_database_error_wrapped(self, tmp_path):
        store = SqliteCheckpointStore(tmp_path / "ckpt.db")
        await store.close()

        with pytest.raises(CheckpointWriteError) as exc_info:
            await store.save(make_checkpoint(0))
        assert isinstance(exc_info.value.__cause__, sqlite3.Error)

    @pytest.mark.asyncio
    async def test_latest_never_moves_backwards_in_sql(self, tmp_path):
        store = SqliteCheckpointStore(tmp_path / "ckpt.db")
        try:
            await store.save(make_checkpoint(5))
            # Bypass the ordering check to exercise the upsert guard directly
            await store._write(make_checkpoint(2))
            assert await store.latest_step("t") == 5
            assert [c.step for c in await store.list("t")] == [2, 5]
        finally:
            await store.close()
