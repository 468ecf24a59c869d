"""
magekit - Top-level agent.

The agent owns a conversation with the delegation kit attached, runs each
user message as a background task, streams the model's output to an observer
and supports interrupting the in-flight request without tearing the session
down.

Usage:
    ```python
    class Printer:
        def on_chunk(self, chunk): print(chunk.content, end="", flush=True)
        def on_error(self, error): print(f"error: {error}")
        def on_complete(self, message): print()
        def on_usage(self, stats): pass

    agent = Agent(AgentConfig.from_env(), observer=Printer())
    await agent.start()
    agent.send_message("What is in /home/me/project?")
    await agent.wait()
    ```
"""

import asyncio
import json
import logging
import threading
from dataclasses import dataclass
from typing import Optional, Protocol, Sequence

import httpx

from .client import LLMClient
from .config import AgentConfig
from .engine import MageEngine
from .exceptions import AgentAlreadyRunningError, AgentNotStartedError, RequestInProgressError
from .mages import Portal, build_unified_mage_kit
from .models import Message
from .prompts import agent_system_prompt
from .streaming import StreamChunk
from .tools import ToolOutcome

logger = logging.getLogger("magekit.agent")

JSON_OVERHEAD = 1.2
CHARS_PER_TOKEN = 4


class Observer(Protocol):
    def on_chunk(self, chunk: StreamChunk) -> None: ...

    def on_error(self, error: BaseException) -> None: ...

    def on_complete(self, message: Message) -> None: ...

    def on_usage(self, stats: "UsageStats") -> None: ...


@dataclass
class UsageStats:
    """Size and token figures for one completed request."""

    message_size_bytes: int
    model: str
    tokens_used: int
    prompt_tokens: int = 0
    completion_tokens: int = 0


def calculate_message_size(messages: Sequence[Message]) -> int:
    """Approximate payload size of a history, with 20% added for JSON structure."""
    total = 0
    for msg in messages:
        if isinstance(msg.content, str):
            total += len(msg.content)
        elif isinstance(msg.content, list):
            total += len(json.dumps([item.to_dict() for item in msg.content]))
        total += len(msg.role.value)
        total += len(msg.name or "")
        total += len(msg.tool_call_id or "")
        for tc in msg.tool_calls:
            total += len(tc.id) + len(tc.type) + len(tc.function.name) + len(tc.function.arguments)
    return int(total * JSON_OVERHEAD)


def estimate_tokens(size: int) -> int:
    return size // CHARS_PER_TOKEN


class Agent:
    """Conversation front end that delegates work to mages."""

    def __init__(
        self,
        config: AgentConfig,
        observer: Optional[Observer] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.config = config
        self.observer = observer
        self.portal = Portal(config.portal_config(), http_client=http_client)
        self.kit = build_unified_mage_kit(self.portal)
        self.client = LLMClient(
            config.api_key,
            config.base_url,
            http_client=http_client,
            retry_config=config.retry_config,
        )
        self.engine = MageEngine(
            self.client,
            config.model,
            kit=self.kit,
            temperature=config.temperature,
            max_tokens=config.max_tokens,
            system_prompt=agent_system_prompt(config.prompt_refinements),
            max_tool_rounds=config.max_tool_rounds,
            on_tool_outcome=self._on_tool_outcome,
            name="agent",
        )
        logger.debug("Registered %d tool(s): %s", len(self.kit.get_tools()), self.kit.tool_names)

        self._lock = threading.Lock()
        self._running = False
        self._active: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def busy(self) -> bool:
        return self._active is not None and not self._active.done()

    # ==================== Lifecycle ====================

    async def start(self) -> None:
        with self._lock:
            if self._running:
                raise AgentAlreadyRunningError()
            self._running = True
        logger.info("Agent started")

    async def stop(self) -> None:
        """Cancel any request in flight, stop accepting messages and close HTTP clients."""
        self.interrupt_current_request()
        await self.wait()
        with self._lock:
            self._running = False
        await self.client.aclose()
        logger.info("Agent stopped")

    async def wait(self) -> None:
        """Wait until the active request, if any, has finished."""
        task = self._active
        if task is not None:
            await asyncio.wait({task})

    # ==================== Requests ====================

    def send_message(self, text: str) -> asyncio.Task:
        """
        Start processing a user message in the background and return its task.

        Raises:
            AgentNotStartedError: start() was not called
            RequestInProgressError: another message is still being processed
        """
        with self._lock:
            if not self._running:
                raise AgentNotStartedError()
            if self.busy:
                raise RequestInProgressError()
            task = asyncio.get_running_loop().create_task(self._process(text))
            self._active = task
        task.add_done_callback(self._release)
        return task

    def interrupt_current_request(self) -> None:
        """Cancel only the request in flight. The session stays usable."""
        with self._lock:
            task = self._active
        if task is not None and not task.done():
            logger.info("Interrupting current request")
            task.cancel()

    async def reset_conversation(self) -> None:
        """Cancel any active request and start a fresh conversation."""
        self.interrupt_current_request()
        await self.wait()
        self.engine.reset()
        logger.info("Conversation reset")

    def _release(self, task: asyncio.Task) -> None:
        with self._lock:
            if self._active is task:
                self._active = None

    async def _process(self, text: str) -> None:
        logger.info("Sending message: %s", text)
        try:
            await self.engine.execute(text, on_chunk=self._forward_chunk)
        except asyncio.CancelledError:
            logger.info("Request cancelled")
            raise
        except Exception as e:
            logger.error("Failed to process message: %s", e)
            if self.observer is not None:
                self.observer.on_error(e)
            return

        if self.observer is None:
            return
        messages = self.engine.conversation.messages
        self.observer.on_complete(messages[-1])
        self.observer.on_usage(self.usage_stats(messages))

    def usage_stats(self, messages: Optional[Sequence[Message]] = None) -> UsageStats:
        if messages is None:
            messages = self.engine.conversation.messages
        size = calculate_message_size(messages)
        usage = self.engine.conversation.last_usage
        return UsageStats(
            message_size_bytes=size,
            model=self.config.model,
            tokens_used=usage.total_tokens if usage and usage.total_tokens else estimate_tokens(size),
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
        )

    def _forward_chunk(self, chunk: StreamChunk) -> None:
        # errors are reported once, from the exception that ends the turn
        if self.observer is None or chunk.error is not None or chunk.done:
            return
        self.observer.on_chunk(chunk)

    def _on_tool_outcome(self, outcome: ToolOutcome) -> None:
        logger.info("Tool callback (id=%s, error=%s)", outcome.call_id, outcome.is_error)
