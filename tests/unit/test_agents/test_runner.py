"""Unit tests for ctxkeep.agents.runner module."""

from unittest.mock import AsyncMock

import pytest

from ctxkeep.agents.runner import ConversationRunner
from ctxkeep.checkpoint import Checkpoint, MemoryCheckpointStore
from ctxkeep.errors import CheckpointWriteError, ContextLengthExceededError
from ctxkeep.llm.invoker import ModelInvoker, ModelResponse
from ctxkeep.memory.compaction import DEFAULT_SUMMARY_PROMPT, is_summary_message
from ctxkeep.memory.context_manager import ContextManager
from ctxkeep.types.types import Usage, assistant_message, user_message

STEP_USAGE = Usage(input_tokens=10, output_tokens=2, total_tokens=12)
TOTAL_USAGE = Usage(input_tokens=100, output_tokens=20, total_tokens=120)


class ScriptedInvoker(ModelInvoker):
    """Answers conversation calls from a script; summary requests get a fixed summary."""

    def __init__(self, replies, usage=STEP_USAGE, summary_usage=None):
        self.replies = list(replies)
        self.usage = usage
        self.summary_usage = summary_usage or Usage()
        self.conversation_calls = []
        self.summary_calls = 0

    async def invoke(self, messages, instruction=None, max_tokens=None):
        if instruction == DEFAULT_SUMMARY_PROMPT:
            self.summary_calls += 1
            return ModelResponse(text="summary of earlier turns", usage=self.summary_usage)
        self.conversation_calls.append(list(messages))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return ModelResponse(text=reply, usage=self.usage, stop_reason="stop")


@pytest.fixture
def manager():
    return ContextManager(max_tokens=100_000)


@pytest.fixture
def store():
    return MemoryCheckpointStore()


class TestRunStep:
    """Tests for ConversationRunner.run_step."""

    @pytest.mark.asyncio
    async def test_appends_input_and_reply(self, manager):
        invoker = ScriptedInvoker(["hello!", "sure"])
        runner = ConversationRunner("t", manager, invoker)

        first = await runner.run_step("hi")
        second = await runner.run_step(user_message("can you help?"))

        assert first.step == 0 and second.step == 1
        assert [m.content for m in runner.history] == ["hi", "hello!", "can you help?", "sure"]
        assert second.history == runner.history
        assert first.compacted is False
        assert runner.usage == STEP_USAGE + STEP_USAGE
        assert invoker.conversation_calls[1] == runner.history[:3]

    @pytest.mark.asyncio
    async def test_accepts_message_sequences(self, manager):
        runner = ConversationRunner("t", manager, ScriptedInvoker(["ok"]))
        await runner.run_step([user_message("a"), user_message("b")])
        assert [m.content for m in runner.history] == ["a", "b", "ok"]

    @pytest.mark.asyncio
    async def test_compacts_before_model_call(self):
        manager = ContextManager(max_tokens=100, summarization={"keep_message_count": 2})
        # The model reports 49 tokens for the first exchange
        usage = Usage(input_tokens=44, output_tokens=5, total_tokens=49)
        invoker = ScriptedInvoker(["ok", "ok"], usage=usage)
        runner = ConversationRunner("t", manager, invoker)

        await runner.run_step("x" * 160)
        result = await runner.run_step("y" * 160)  # 49 reported + 44 estimated of 100

        assert result.compacted is True
        assert invoker.summary_calls == 1
        sent = invoker.conversation_calls[1]
        assert is_summary_message(sent[0])
        assert [m.content for m in sent[1:]] == ["ok", "y" * 160]
        assert is_summary_message(runner.history[0])

    @pytest.mark.asyncio
    async def test_summarization_usage_counted(self):
        manager = ContextManager(max_tokens=100, summarization={"keep_message_count": 2})
        call_usage = Usage(input_tokens=100, output_tokens=10, total_tokens=110)
        invoker = ScriptedInvoker(["ok", "ok"], usage=call_usage, summary_usage=call_usage)
        runner = ConversationRunner("t", manager, invoker)

        await runner.run_step("x" * 160)
        assert runner.usage.total_tokens == 110

        result = await runner.run_step("y" * 160)

        assert result.compacted is True
        assert invoker.summary_calls == 1
        assert runner.usage == call_usage + call_usage + call_usage

    @pytest.mark.asyncio
    async def test_reported_usage_drives_budget(self, manager):
        invoker = ScriptedInvoker(
            ["hello"], usage=Usage(input_tokens=480, output_tokens=20, total_tokens=500)
        )
        runner = ConversationRunner("t", manager, invoker)

        await runner.run_step("hi")

        budget = manager.get_budget(runner.history, "t")
        assert budget.is_actual is True
        assert budget.current_tokens == 500

        extended = manager.get_budget([*runner.history, user_message("abcd")], "t")
        assert extended.current_tokens == 505

        # Other threads still use estimates
        assert manager.get_budget(runner.history, "u").is_actual is False

        await runner.finish()
        assert manager.get_budget(runner.history, "t").is_actual is False

    @pytest.mark.asyncio
    async def test_context_length_error_compacts_and_retries(self):
        summary_usage = Usage(input_tokens=40, output_tokens=8, total_tokens=48)
        invoker = ScriptedInvoker(
            [ContextLengthExceededError("too long"), "recovered"], summary_usage=summary_usage
        )
        manager = ContextManager(max_tokens=100_000, summarization={"keep_message_count": 2})
        runner = ConversationRunner("t", manager, invoker)
        runner.history = [
            user_message(f"q{i}") if i % 2 == 0 else assistant_message(f"a{i}") for i in range(8)
        ]

        result = await runner.run_step("latest question")

        assert result.response.text == "recovered"
        assert result.compacted is True
        assert invoker.summary_calls == 1
        retried = invoker.conversation_calls[1]
        assert is_summary_message(retried[0])
        assert retried[0].metadata["trigger"] == "error_fallback"
        assert retried[-1].content == "latest question"
        assert runner.usage == summary_usage + STEP_USAGE

    @pytest.mark.asyncio
    async def test_context_length_error_without_fallback(self):
        manager = ContextManager(max_tokens=100_000, policy={"enable_error_fallback": False})
        invoker = ScriptedInvoker([ContextLengthExceededError("too long")])
        runner = ConversationRunner("t", manager, invoker)

        with pytest.raises(ContextLengthExceededError):
            await runner.run_step("hi")
        assert runner.history == []
        assert runner.next_step == 0


class TestCheckpointing:
    """Per-step and end-of-run checkpoints."""

    @pytest.mark.asyncio
    async def test_checkpoint_after_every_step(self, manager, store):
        runner = ConversationRunner(
            "t", manager, ScriptedInvoker(["one", "two"]), store=store, checkpoint_after_step=True
        )
        first = await runner.run_step("a")
        await runner.run_step("b")

        assert first.checkpointed is True
        assert [c.step for c in await store.list("t")] == [0, 1]
        latest = await store.load("t")
        assert latest.history == runner.history
        assert latest.usage == runner.usage

    @pytest.mark.asyncio
    async def test_checkpoint_on_finish(self, manager, store):
        runner = ConversationRunner("t", manager, ScriptedInvoker(["one", "two"]), store=store)
        await runner.run_step("a")
        result = await runner.run_step("b")

        assert result.checkpointed is False
        assert await store.list("t") == []

        assert await runner.finish() is True
        assert await store.latest_step("t") == 1
        # Retrying the same final checkpoint is a no-op
        assert await runner.finish() is False

    @pytest.mark.asyncio
    async def test_finish_without_steps(self, manager, store):
        runner = ConversationRunner("t", manager, ScriptedInvoker([]), store=store)
        assert await runner.finish() is False

    @pytest.mark.asyncio
    async def test_finish_without_store(self, manager):
        runner = ConversationRunner("t", manager, ScriptedInvoker(["x"]))
        await runner.run_step("a")
        assert await runner.finish() is False

    @pytest.mark.asyncio
    async def test_write_error_retried(self, manager, store):
        store.save = AsyncMock(side_effect=[CheckpointWriteError("disk full"), True])
        runner = ConversationRunner(
            "t",
            manager,
            ScriptedInvoker(["x"]),
            store=store,
            checkpoint_after_step=True,
            retry_base_delay=0,
        )

        result = await runner.run_step("a")

        assert result.checkpointed is True
        assert store.save.await_count == 2
        saved = store.save.call_args.args[0]
        assert saved.step == 0

    @pytest.mark.asyncio
    async def test_write_error_after_retries(self, manager, store):
        store.save = AsyncMock(side_effect=CheckpointWriteError("disk full"))
        runner = ConversationRunner(
            "t",
            manager,
            ScriptedInvoker(["x"]),
            store=store,
            checkpoint_after_step=True,
            save_retries=1,
            retry_base_delay=0,
        )

        with pytest.raises(CheckpointWriteError):
            await runner.run_step("a")
        assert store.save.await_count == 2


class TestResume:
    """Restoring a thread from its latest checkpoint."""

    @pytest.mark.asyncio
    async def test_resume_restores_state(self, manager):
        store = MemoryCheckpointStore(
            initial_checkpoints=[
                Checkpoint(
                    thread_id="t",
                    step=4,
                    history=[user_message("earlier"), assistant_message("reply")],
                    metadata={"usage": TOTAL_USAGE.model_dump()},
                )
            ]
        )
        invoker = ScriptedInvoker(["continued"])
        runner = ConversationRunner("t", manager, invoker, store=store, checkpoint_after_step=True)

        assert await runner.resume() is True
        assert runner.next_step == 5

        result = await runner.run_step("next")

        assert result.step == 5
        assert invoker.conversation_calls[0][0].content == "earlier"
        assert runner.usage.total_tokens == 132
        assert (await store.load("t")).usage.total_tokens == 132

    @pytest.mark.asyncio
    async def test_resume_fresh_thread(self, manager, store):
        runner = ConversationRunner("new", manager, ScriptedInvoker([]), store=store)
        assert await runner.resume() is False
        assert runner.history == []
        assert runner.next_step == 0

    @pytest.mark.asyncio
    async def test_resume_without_store(self, manager):
        runner = ConversationRunner("t", manager, ScriptedInvoker([]))
        assert await runner.resume() is False
