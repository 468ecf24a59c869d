"""
magekit - Streaming support

Server-sent chat-completion deltas are forwarded to a StreamChannel as they
arrive and reassembled into a regular ChatCompletionResponse once the stream
ends.
"""

import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

from .models import ChatCompletionResponse, Choice, Message, Role, ToolCall, ToolFunction, Usage

logger = logging.getLogger("magekit.streaming")

DATA_PREFIX = "data: "
DONE_MARKER = "[DONE]"


@dataclass
class StreamChunk:
    """One item delivered to a stream sink: text, an error, or the end marker."""

    content: str = ""
    error: Optional[BaseException] = None
    done: bool = False

    @classmethod
    def text(cls, content: str) -> "StreamChunk":
        return cls(content=content)

    @classmethod
    def failure(cls, error: BaseException) -> "StreamChunk":
        return cls(error=error)

    @classmethod
    def finished(cls) -> "StreamChunk":
        return cls(done=True)


_CLOSED = object()


class StreamChannel:
    """
    Single-producer, single-consumer sink for stream chunks.

    The producer calls send() any number of times and close() exactly once.
    The consumer iterates with ``async for`` until the channel is closed.

    Usage:
        ```python
        channel = StreamChannel()
        await conversation.send(options=RequestOptions(stream=channel))
        async for chunk in channel:
            print(chunk.content, end="")
        ```
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def send(self, chunk: StreamChunk) -> None:
        if self._closed:
            raise RuntimeError("send on closed stream channel")
        self._queue.put_nowait(chunk)

    def close(self) -> None:
        if self._closed:
            raise RuntimeError("stream channel already closed")
        self._closed = True
        self._queue.put_nowait(_CLOSED)

    def __aiter__(self) -> AsyncIterator[StreamChunk]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[StreamChunk]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item


class StreamAssembler:
    """
    Reassembles SSE ``data:`` lines into a complete assistant message.

    Text deltas are forwarded to the channel immediately. Tool-call fragments
    that carry an id start a new call; fragments without an id extend the
    most recent call.
    """

    def __init__(self, channel: Optional[StreamChannel] = None) -> None:
        self.channel = channel
        self.done = False
        self._content: list[str] = []
        self._tool_calls: list[ToolCall] = []
        self._id = ""
        self._model = ""
        self._created = 0
        self._finish_reason: Optional[str] = None
        self._usage = Usage()

    @property
    def content(self) -> str:
        return "".join(self._content)

    @property
    def tool_calls(self) -> list[ToolCall]:
        return list(self._tool_calls)

    def feed(self, line: str) -> bool:
        """Consume one raw line. Returns True once the end marker was seen."""
        line = line.strip()
        if line.startswith(DATA_PREFIX):
            line = line[len(DATA_PREFIX):]
        elif line.startswith("data:"):
            line = line[len("data:"):].lstrip()
        if not line:
            return False

        if line == DONE_MARKER:
            self.done = True
            return True

        try:
            event = json.loads(line)
        except json.JSONDecodeError as e:
            logger.debug("Skipping unparseable stream line: %s (%s)", line, e)
            return False
        if not isinstance(event, dict):
            logger.debug("Skipping non-object stream line: %s", line)
            return False

        self._id = event.get("id") or self._id
        self._model = event.get("model") or self._model
        self._created = event.get("created") or self._created
        if event.get("usage"):
            self._usage = Usage.from_dict(event["usage"])

        choices = event.get("choices") or []
        if not choices:
            return False
        choice = choices[0] if isinstance(choices, list) else None
        if not isinstance(choice, dict):
            logger.debug("Skipping stream line with malformed choices: %s", line)
            return False
        if choice.get("finish_reason"):
            self._finish_reason = choice["finish_reason"]

        delta = choice.get("delta") or {}
        if not isinstance(delta, dict):
            logger.debug("Skipping stream line with malformed delta: %s", line)
            return False
        content = delta.get("content")
        if content and isinstance(content, str):
            self._content.append(content)
            if self.channel is not None:
                self.channel.send(StreamChunk.text(content))

        fragments = delta.get("tool_calls") or []
        for fragment in fragments if isinstance(fragments, list) else []:
            if isinstance(fragment, dict):
                self._apply_tool_fragment(fragment)
        return False

    def _apply_tool_fragment(self, fragment: dict[str, Any]) -> None:
        function = fragment.get("function")
        if not isinstance(function, dict):
            function = {}
        if fragment.get("id"):
            self._tool_calls.append(
                ToolCall(
                    id=fragment["id"],
                    type=fragment.get("type") or "function",
                    function=ToolFunction(
                        name=function.get("name") or "",
                        arguments=function.get("arguments") or "",
                    ),
                )
            )
            return
        if not self._tool_calls:
            logger.debug("Dropping tool-call fragment with no preceding call: %s", fragment)
            return
        current = self._tool_calls[-1]
        if function.get("name"):
            current.function.name = function["name"]
        if function.get("arguments"):
            current.function.arguments += function["arguments"]

    def to_response(self) -> ChatCompletionResponse:
        message = Message(
            role=Role.ASSISTANT,
            content=self.content,
            tool_calls=self.tool_calls,
        )
        finish_reason = self._finish_reason
        if finish_reason is None:
            finish_reason = "tool_calls" if self._tool_calls else "stop"
        return ChatCompletionResponse(
            id=self._id,
            object="chat.completion",
            created=self._created,
            model=self._model,
            choices=[Choice(index=0, message=message, finish_reason=finish_reason)],
            usage=self._usage,
        )
