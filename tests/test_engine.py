"""
Tests for the orchestration loop shared by mages and the agent.
"""

import asyncio
import json

import httpx
import pytest

from magekit.client import LLMClient
from magekit.config import RetryConfig
from magekit.engine import EngineState, MageEngine, ResultAccumulator
from magekit.exceptions import (
    ContentNotStringError,
    ExecutionError,
    MageBusyError,
    ToolLoopExceededError,
)
from magekit.models import Role
from magekit.tools import ToolKit, define_tool

from conftest import completion_body


@define_tool(
    description="Search.",
    parameters={"type": "object", "properties": {"q": {"type": "string"}}, "required": ["q"]},
)
def search(q: str) -> str:
    return f"results for {q}"


@define_tool(description="Fails.")
def explode() -> str:
    raise RuntimeError("kaboom")


def make_kit() -> ToolKit:
    return ToolKit("test").with_tool(search).with_tool(explode)


def unanswered_calls(messages: list[dict]) -> set[str]:
    requested = {c["id"] for m in messages for c in m.get("tool_calls", [])}
    return requested - {m["tool_call_id"] for m in messages if m["role"] == "tool"}


# ---------------------------------------------------------------------------
# Loop
# ---------------------------------------------------------------------------


class TestExecute:
    @pytest.mark.asyncio
    async def test_plain_answer(self, llm):
        llm.reply("42")
        engine = MageEngine(llm.client(), "m", kit=make_kit())

        assert await engine.execute("question") == "42"
        assert engine.state == EngineState.DONE
        roles = [m.role for m in engine.conversation.messages]
        assert roles == [Role.USER, Role.ASSISTANT]

    @pytest.mark.asyncio
    async def test_two_tool_rounds_then_text(self, llm):
        llm.reply(tool_calls=[("c1", "search", '{"q": "cats"}')])
        llm.reply(tool_calls=[("c2", "search", '{"q": "dogs"}')])
        llm.reply("done")
        engine = MageEngine(llm.client(), "m", kit=make_kit())

        assert await engine.execute("look things up") == "done"
        assert len(llm.requests) == 3

        messages = engine.conversation.messages
        assert [m.role for m in messages] == [
            Role.USER,
            Role.ASSISTANT,
            Role.TOOL,
            Role.ASSISTANT,
            Role.TOOL,
            Role.ASSISTANT,
        ]
        assert messages[2].tool_call_id == "c1"
        assert messages[2].content == "results for cats"
        assert messages[4].tool_call_id == "c2"

        # tool results are sent back without a new user message
        last_body = llm.bodies[2]
        assert [m["role"] for m in last_body["messages"]].count("user") == 1
        assert last_body["tools"] == make_kit().get_tools()
        assert last_body["tool_choice"] == "auto"

    @pytest.mark.asyncio
    async def test_tool_failure_is_fed_back(self, llm):
        llm.reply(tool_calls=[("c1", "explode", "{}"), ("c2", "missing", "{}")])
        llm.reply("recovered")
        engine = MageEngine(llm.client(), "m", kit=make_kit())

        assert await engine.execute("try it") == "recovered"
        tool_messages = [m for m in engine.conversation.messages if m.role == Role.TOOL]
        assert tool_messages[0].content == "Error: kaboom"
        assert tool_messages[1].content == "Error: Tool 'missing' not found in toolkit"

    @pytest.mark.asyncio
    async def test_accumulator_collects_tool_output(self, llm):
        llm.reply(tool_calls=[("c1", "search", '{"q": "a"}'), ("c2", "explode", "{}")])
        llm.reply("final")
        engine = MageEngine(
            llm.client(),
            "m",
            kit=make_kit(),
            accumulator=ResultAccumulator(include_tool_output=True, include_tool_errors=True, separator="\n"),
        )

        assert await engine.execute("go") == "results for a\nError: kaboom\nfinal"

    @pytest.mark.asyncio
    async def test_result_buffer_resets_each_execute(self, llm):
        llm.reply("one").reply("two")
        engine = MageEngine(llm.client(), "m")
        assert await engine.execute("first") == "one"
        assert await engine.execute("second") == "two"

    @pytest.mark.asyncio
    async def test_non_string_content(self, llm):
        llm.reply(None)
        engine = MageEngine(llm.client(), "m", kit=make_kit())
        with pytest.raises(ContentNotStringError, match="response content is not a string"):
            await engine.execute("x")

    @pytest.mark.asyncio
    async def test_transport_failure(self, llm):
        llm.then(httpx.Response(503, text="unavailable"))
        engine = MageEngine(llm.client(), "m")

        with pytest.raises(ExecutionError, match="failed to get response") as exc_info:
            await engine.execute("x")
        assert exc_info.value.__cause__.status_code == 503
        assert engine.state == EngineState.IDLE

    @pytest.mark.asyncio
    async def test_tool_round_cap(self, llm):
        llm.reply(tool_calls=[("c1", "search", '{"q": "a"}')])
        llm.reply(tool_calls=[("c2", "search", '{"q": "b"}')])
        engine = MageEngine(llm.client(), "m", kit=make_kit(), max_tool_rounds=1)

        with pytest.raises(ToolLoopExceededError):
            await engine.execute("loop forever")
        assert len(llm.requests) == 2

    @pytest.mark.asyncio
    async def test_capped_round_leaves_history_consistent(self, llm):
        llm.reply(tool_calls=[("a", "search", '{"q": "a"}')])
        llm.reply(tool_calls=[("b", "search", '{"q": "b"}')])
        llm.reply("fresh start")
        engine = MageEngine(llm.client(), "m", kit=make_kit(), max_tool_rounds=1)

        with pytest.raises(ToolLoopExceededError):
            await engine.execute("loop forever")
        assert await engine.execute("next") == "fresh start"

        messages = llm.bodies[2]["messages"]
        assert unanswered_calls(messages) == set()
        assert {"role": "tool", "content": "Error: tool round limit exceeded", "tool_call_id": "b"} in messages

    @pytest.mark.asyncio
    async def test_outcome_hook(self, llm):
        seen = []
        llm.reply(tool_calls=[("c1", "search", '{"q": "a"}')]).reply("ok")
        engine = MageEngine(llm.client(), "m", kit=make_kit(), on_tool_outcome=seen.append)

        await engine.execute("x")
        assert [o.call_id for o in seen] == ["c1"]


# ---------------------------------------------------------------------------
# Context and reset
# ---------------------------------------------------------------------------


class TestContext:
    @pytest.mark.asyncio
    async def test_context_messages_precede_command(self, llm):
        llm.reply("ok").reply("ok")
        engine = MageEngine(
            llm.client(),
            "m",
            system_prompt="base prompt",
            context_builder=lambda: ["bounds advisory"],
        )
        engine.add_to_context("role prompt")

        await engine.execute("do it")
        sent = llm.bodies[0]["messages"]
        assert [(m["role"], m["content"]) for m in sent] == [
            ("system", "base prompt"),
            ("system", "bounds advisory"),
            ("system", "role prompt"),
            ("user", "do it"),
        ]

        # queued context is consumed by the first execute
        await engine.execute("again")
        second = llm.bodies[1]["messages"]
        assert [m["content"] for m in second if m["role"] == "system"].count("role prompt") == 1

    @pytest.mark.asyncio
    async def test_reset_restores_initial_state(self, llm):
        llm.reply(tool_calls=[("c1", "search", '{"q": "a"}')]).reply("done")
        engine = MageEngine(
            llm.client(),
            "m",
            kit=make_kit(),
            system_prompt="base",
            accumulator=ResultAccumulator(include_tool_output=True),
        )
        engine.add_to_context("pending")
        await engine.execute("x")

        engine.add_to_context("queued")
        engine.reset()

        assert [m.content for m in engine.conversation.messages] == ["base"]
        assert engine.result == ""
        assert engine.state == EngineState.IDLE

        llm.reply("fresh")
        await engine.execute("y")
        contents = [m["content"] for m in llm.bodies[-1]["messages"]]
        assert contents == ["base", "y"]


# ---------------------------------------------------------------------------
# Concurrency
# ---------------------------------------------------------------------------


def blocking_client(release: asyncio.Event, started: asyncio.Event) -> LLMClient:
    async def handler(request: httpx.Request) -> httpx.Response:
        started.set()
        await release.wait()
        return httpx.Response(200, json=completion_body("late"))

    return LLMClient(
        "key",
        "https://api.example.com",
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        retry_config=RetryConfig(max_retries=0),
    )


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_busy_engine_rejects_execute_and_reset(self):
        release, started = asyncio.Event(), asyncio.Event()
        engine = MageEngine(blocking_client(release, started), "m")

        task = asyncio.create_task(engine.execute("slow"))
        await started.wait()

        assert engine.busy
        with pytest.raises(MageBusyError):
            await engine.execute("second")
        with pytest.raises(MageBusyError):
            engine.reset()

        release.set()
        assert await task == "late"
        assert not engine.busy

    @pytest.mark.asyncio
    async def test_cancellation_propagates_and_engine_recovers(self):
        release, started = asyncio.Event(), asyncio.Event()
        engine = MageEngine(blocking_client(release, started), "m")

        task = asyncio.create_task(engine.execute("slow"))
        await started.wait()
        task.cancel()

        with pytest.raises(asyncio.CancelledError):
            await task
        assert engine.state == EngineState.IDLE

        release.set()
        assert await engine.execute("again") == "late"

    @pytest.mark.asyncio
    async def test_cancellation_during_dispatch_answers_tool_calls(self, llm):
        started = asyncio.Event()

        @define_tool(description="Slow.")
        async def slow() -> str:
            started.set()
            await asyncio.sleep(30)
            return "never"

        llm.reply(tool_calls=[("fast", "search", '{"q": "x"}'), ("tc1", "slow", "{}")])
        llm.reply("recovered")
        engine = MageEngine(llm.client(), "m", kit=make_kit().with_tool(slow))

        task = asyncio.create_task(engine.execute("go"))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert await engine.execute("next") == "recovered"
        messages = llm.bodies[1]["messages"]
        assert unanswered_calls(messages) == set()
        assert {"role": "tool", "content": "Error: cancelled", "tool_call_id": "tc1"} in messages
        assert messages[-1] == {"role": "user", "content": "next"}


# ---------------------------------------------------------------------------
# Streaming
# ---------------------------------------------------------------------------


class TestStreamingExecute:
    @pytest.mark.asyncio
    async def test_chunks_reach_handler(self, llm):
        events = [
            {"choices": [{"delta": {"content": "Hel"}}]},
            {"choices": [{"delta": {"content": "lo"}}]},
        ]
        body = "".join(f"data: {json.dumps(e)}\n\n" for e in events) + "data: [DONE]\n\n"
        llm.then(httpx.Response(200, content=body.encode()))
        chunks = []
        engine = MageEngine(llm.client(), "m")

        result = await engine.execute("hi", on_chunk=chunks.append)

        assert result == "Hello"
        assert [c.content for c in chunks if c.content] == ["Hel", "lo"]
        assert chunks[-1].done

    @pytest.mark.asyncio
    async def test_async_chunk_handler(self, llm):
        body = 'data: {"choices":[{"delta":{"content":"x"}}]}\n\ndata: [DONE]\n\n'
        llm.then(httpx.Response(200, content=body.encode()))
        seen = []

        async def handler(chunk):
            seen.append(chunk)

        await MageEngine(llm.client(), "m").execute("hi", on_chunk=handler)
        assert seen[0].content == "x"
