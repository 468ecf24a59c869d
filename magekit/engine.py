"""
magekit - Orchestration engine.

MageEngine drives the tool-calling loop shared by every mage and by the
top-level agent: send the conversation, run any requested tools, feed their
results back, and repeat until the model answers in plain text. Variants
differ only in the kit, the context they inject and how results accumulate.
"""

import asyncio
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Sequence, Union

from .client import LLMClient
from .config import DEFAULT_MAX_TOKENS, DEFAULT_MAX_TOOL_ROUNDS, DEFAULT_TEMPERATURE
from .conversation import Conversation, RequestOptions
from .exceptions import (
    ContentNotStringError,
    ExecutionError,
    MageBusyError,
    ToolLoopExceededError,
    TransportError,
)
from .models import Message
from .streaming import StreamChannel, StreamChunk
from .tools import ToolKit, ToolOutcome

logger = logging.getLogger("magekit.engine")

ContextBuilder = Callable[[], list[str]]
ChunkHandler = Callable[[StreamChunk], Union[None, Awaitable[None]]]
OutcomeHandler = Callable[[ToolOutcome], None]


class EngineState(str, Enum):
    IDLE = "idle"
    SENDING = "sending"
    TOOL_CALLS_PENDING = "tool_calls_pending"
    EXECUTING = "executing"
    DONE = "done"


_BUSY_STATES = {EngineState.SENDING, EngineState.TOOL_CALLS_PENDING, EngineState.EXECUTING}


@dataclass(frozen=True)
class ResultAccumulator:
    """How an execution's result text is built.

    The final answer is always included. Tool output and tool errors are
    added as they arrive when the matching flag is set.
    """

    include_tool_output: bool = False
    include_tool_errors: bool = False
    separator: str = ""

    def accepts(self, outcome: ToolOutcome) -> bool:
        return self.include_tool_errors if outcome.is_error else self.include_tool_output


class MageEngine:
    """
    The single send / dispatch / repeat state machine.

    Example:
        ```python
        engine = MageEngine(client, "gpt-4o", kit=my_kit)
        answer = await engine.execute("List the files in /tmp")
        ```
    """

    def __init__(
        self,
        client: LLMClient,
        model: str,
        kit: Optional[ToolKit] = None,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        system_prompt: Optional[str] = None,
        context_builder: Optional[ContextBuilder] = None,
        accumulator: Optional[ResultAccumulator] = None,
        max_tool_rounds: Optional[int] = DEFAULT_MAX_TOOL_ROUNDS,
        tool_choice: Any = "auto",
        on_tool_outcome: Optional[OutcomeHandler] = None,
        name: str = "mage",
        extra_clients: Sequence[LLMClient] = (),
    ):
        self.client = client
        self.model = model
        self.kit = kit
        self.temperature = temperature
        self.max_tokens = max_tokens
        self.system_prompt = system_prompt
        self.context_builder = context_builder
        self.accumulator = accumulator or ResultAccumulator()
        self.max_tool_rounds = max_tool_rounds
        self.tool_choice = tool_choice
        self.on_tool_outcome = on_tool_outcome
        self.name = name
        self._extra_clients = tuple(extra_clients)

        self._lock = threading.Lock()
        self._state = EngineState.IDLE
        self._context: list[str] = []
        self._results: list[str] = []
        self.conversation = self._new_conversation()

    # ==================== State ====================

    @property
    def state(self) -> EngineState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._state in _BUSY_STATES

    @property
    def result(self) -> str:
        return self.accumulator.separator.join(self._results)

    def _new_conversation(self) -> Conversation:
        options = RequestOptions()
        if self.kit is not None and self.kit.get_tools():
            options.tools = self.kit.get_tools()
            options.tool_choice = self.tool_choice
        conversation = Conversation(self.client, self.model, options)
        if self.system_prompt:
            conversation.add_system_message(self.system_prompt)
        return conversation

    def reset(self) -> None:
        """Start over from the fixed configuration."""
        with self._lock:
            if self.busy:
                raise MageBusyError()
            self.conversation = self._new_conversation()
            self._results = []
            self._context = []
            self._state = EngineState.IDLE

    def add_to_context(self, text: str) -> "MageEngine":
        """Queue a system message for the next execution."""
        self._context.append(text)
        return self

    async def aclose(self) -> None:
        await self.client.aclose()
        for client in self._extra_clients:
            await client.aclose()

    # ==================== Execution ====================

    async def execute(self, command: str, on_chunk: Optional[ChunkHandler] = None) -> str:
        """
        Run the tool loop for one command and return the accumulated result.

        Cancellation of the calling task propagates as CancelledError.
        Transport failures surface as ExecutionError; protocol failures
        propagate unchanged.
        """
        with self._lock:
            if self.busy:
                raise MageBusyError()
            self._state = EngineState.SENDING

        try:
            return await self._run(command, on_chunk)
        finally:
            with self._lock:
                if self._state != EngineState.DONE:
                    self._state = EngineState.IDLE

    async def _run(self, command: str, on_chunk: Optional[ChunkHandler]) -> str:
        self._results = []
        if self.context_builder is not None:
            for text in self.context_builder():
                self.conversation.add_system_message(text)
        for text in self._context:
            self.conversation.add_system_message(text)
        self._context = []
        self.conversation.add_user_message(command)

        rounds = 0
        while True:
            self._check_cancelled()
            self._state = EngineState.SENDING
            reply = await self._send_turn(on_chunk)

            if not reply.tool_calls:
                if not isinstance(reply.content, str):
                    raise ContentNotStringError()
                self._results.append(reply.content)
                self._state = EngineState.DONE
                return self.result

            self._state = EngineState.TOOL_CALLS_PENDING
            rounds += 1
            if self.max_tool_rounds is not None and rounds > self.max_tool_rounds:
                self._answer_pending(reply, set(), "Error: tool round limit exceeded")
                raise ToolLoopExceededError(self.max_tool_rounds)
            if self.kit is None:
                self._answer_pending(reply, set(), "Error: no tools available")
                raise ExecutionError(f"{self.name}: model requested tools but no kit is set")

            self._state = EngineState.EXECUTING
            logger.debug(
                "%s: round %d, %d tool call(s)", self.name, rounds, len(reply.tool_calls)
            )
            answered: set[str] = set()
            try:
                for outcome in await self.kit.dispatch(reply):
                    self.conversation.add_tool_result(outcome.call_id, outcome.content)
                    answered.add(outcome.call_id)
                    if self.accumulator.accepts(outcome):
                        self._results.append(outcome.content)
                    if self.on_tool_outcome is not None:
                        self.on_tool_outcome(outcome)
            except BaseException as e:
                reason = "cancelled" if isinstance(e, asyncio.CancelledError) else str(e)
                self._answer_pending(reply, answered, f"Error: {reason}")
                raise

    def _answer_pending(self, reply: Message, answered: set[str], content: str) -> None:
        # every tool call in the log needs a result before the next send
        for call in reply.tool_calls:
            if call.id not in answered:
                self.conversation.add_tool_result(call.id, content)

    def _check_cancelled(self) -> None:
        if _cancelling():
            raise asyncio.CancelledError("execution cancelled")

    async def _send_turn(self, on_chunk: Optional[ChunkHandler]) -> Message:
        if on_chunk is None:
            return await self._send(None)

        channel = StreamChannel()
        pump = asyncio.create_task(_pump(channel, on_chunk))
        try:
            return await self._send(RequestOptions(stream=channel))
        finally:
            if not channel.closed:
                channel.close()
            await pump

    async def _send(self, options: Optional[RequestOptions]) -> Message:
        try:
            return await self.conversation.send(
                temperature=self.temperature,
                max_tokens=self.max_tokens,
                options=options,
            )
        except TransportError as e:
            if _cancelling():
                raise asyncio.CancelledError("execution cancelled") from e
            raise ExecutionError(f"failed to get response: {e}") from e


def _cancelling() -> bool:
    task = asyncio.current_task()
    return task is not None and task.cancelling() > 0


async def _pump(channel: StreamChannel, on_chunk: ChunkHandler) -> None:
    async for chunk in channel:
        maybe = on_chunk(chunk)
        if asyncio.iscoroutine(maybe):
            await maybe
