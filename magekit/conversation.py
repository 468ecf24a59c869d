"""
magekit - Conversation: an append-only message log bound to a model.
"""

import logging
from dataclasses import dataclass, fields
from typing import TYPE_CHECKING, Any, Optional, Sequence

from .exceptions import NoResponseChoicesError
from .models import ContentItem, Message, Role, Usage
from .streaming import StreamChannel

if TYPE_CHECKING:
    from .client import LLMClient

logger = logging.getLogger("magekit.conversation")


@dataclass
class RequestOptions:
    """Per-request settings. None means "not set"."""

    temperature: Optional[float] = None
    max_tokens: Optional[int] = None
    tools: Optional[list[dict[str, Any]]] = None
    tool_choice: Any = None
    stream: Optional[StreamChannel] = None

    def merged(self, other: Optional["RequestOptions"]) -> "RequestOptions":
        """Return a copy with every field set on ``other`` taking precedence."""
        if other is None:
            return RequestOptions(**{f.name: getattr(self, f.name) for f in fields(self)})
        values = {}
        for f in fields(self):
            value = getattr(other, f.name)
            values[f.name] = value if value is not None else getattr(self, f.name)
        return RequestOptions(**values)


class Conversation:
    """
    Ordered message history plus the model and fixed options used to
    continue it.

    Example:
        ```python
        conversation = client.new_conversation("gpt-4o")
        conversation.add_system_message("Be brief.").add_user_message("Hi")
        reply = await conversation.send(temperature=0.2)
        ```
    """

    def __init__(
        self,
        client: "LLMClient",
        model: str,
        options: Optional[RequestOptions] = None,
    ):
        self.client = client
        self.model = model
        self.options = options or RequestOptions()
        self._messages: list[Message] = []
        self.last_usage: Optional[Usage] = None

    @property
    def messages(self) -> list[Message]:
        return list(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def add_message(self, message: Message) -> "Conversation":
        self._messages.append(message)
        return self

    def add_system_message(self, content: str) -> "Conversation":
        return self.add_message(Message(role=Role.SYSTEM, content=content))

    def add_user_message(self, content: str) -> "Conversation":
        return self.add_message(Message(role=Role.USER, content=content))

    def add_assistant_message(self, content: str) -> "Conversation":
        return self.add_message(Message(role=Role.ASSISTANT, content=content))

    def add_complex_user_message(self, items: Sequence[ContentItem]) -> "Conversation":
        return self.add_message(Message(role=Role.USER, content=list(items)))

    def add_tool_result(self, tool_call_id: str, content: str) -> "Conversation":
        return self.add_message(
            Message(role=Role.TOOL, content=content, tool_call_id=tool_call_id)
        )

    async def send(
        self,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        options: Optional[RequestOptions] = None,
    ) -> Message:
        """
        Send the full history and append the model's reply.

        Fixed conversation options are overlaid by per-call options.
        Exactly one message is appended on success, none on failure.
        """
        request_options = self.options.merged(options)
        response = await self.client.send(
            self._messages,
            self.model,
            temperature=temperature,
            max_tokens=max_tokens,
            options=request_options,
        )
        if not response.choices:
            raise NoResponseChoicesError()

        choice = response.choices[0]
        if choice.finish_reason in ("length", "max_tokens"):
            logger.warning(
                "Reply truncated (finish_reason=%s, model=%s)", choice.finish_reason, self.model
            )
        self.last_usage = response.usage
        self._messages.append(choice.message)
        return choice.message
