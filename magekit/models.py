"""
magekit - Chat-completion data models and their wire representation.
"""

import base64
import mimetypes
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Optional, Union


class Role(str, Enum):
    """Author of a conversation message."""

    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


class ContentType(str, Enum):
    """Kinds of content items a message can carry."""

    TEXT = "text"
    IMAGE_URL = "image_url"
    TOOL_CALL = "tool_call"
    TOOL_RESULT = "tool_result"


# ---------------------------------------------------------------------------
# Tool calls
# ---------------------------------------------------------------------------


@dataclass
class ToolFunction:
    """Name of the requested tool plus its raw JSON argument string."""

    name: str = ""
    arguments: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {"name": self.name, "arguments": self.arguments}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolFunction":
        arguments = data.get("arguments") or ""
        return cls(name=data.get("name") or "", arguments=arguments)


@dataclass
class ToolCall:
    """A request from the model to invoke one tool."""

    id: str
    function: ToolFunction = field(default_factory=ToolFunction)
    type: str = "function"

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "type": self.type, "function": self.function.to_dict()}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolCall":
        return cls(
            id=data.get("id", ""),
            type=data.get("type") or "function",
            function=ToolFunction.from_dict(data.get("function") or {}),
        )


# ---------------------------------------------------------------------------
# Content items
# ---------------------------------------------------------------------------


@dataclass
class ImageURL:
    url: str
    detail: str = "auto"

    def to_dict(self) -> dict[str, Any]:
        return {"url": self.url, "detail": self.detail}


@dataclass
class ToolResultItem:
    tool_call_id: str
    content: str

    def to_dict(self) -> dict[str, Any]:
        return {"tool_call_id": self.tool_call_id, "content": self.content}


@dataclass
class ContentItem:
    """One typed element of a multi-part message."""

    type: ContentType
    text: Optional[str] = None
    image_url: Optional[ImageURL] = None
    tool_call: Optional[ToolCall] = None
    tool_result: Optional[ToolResultItem] = None

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"type": self.type.value}
        if self.text is not None:
            result["text"] = self.text
        if self.image_url is not None:
            result["image_url"] = self.image_url.to_dict()
        if self.tool_call is not None:
            result["tool_call"] = self.tool_call.to_dict()
        if self.tool_result is not None:
            result["tool_result"] = self.tool_result.to_dict()
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ContentItem":
        image = data.get("image_url")
        tool_call = data.get("tool_call")
        tool_result = data.get("tool_result")
        return cls(
            type=ContentType(data.get("type", "text")),
            text=data.get("text"),
            image_url=ImageURL(image["url"], image.get("detail", "auto")) if image else None,
            tool_call=ToolCall.from_dict(tool_call) if tool_call else None,
            tool_result=ToolResultItem(**tool_result) if tool_result else None,
        )


def text_item(text: str) -> ContentItem:
    return ContentItem(type=ContentType.TEXT, text=text)


def image_url_item(url: str, detail: str = "") -> ContentItem:
    return ContentItem(type=ContentType.IMAGE_URL, image_url=ImageURL(url, detail or "auto"))


def image_base64_item(data: str, mime_type: str, detail: str = "") -> ContentItem:
    """Wrap base64 image data in a data URL content item."""
    url = data if data.startswith("data:") else f"data:{mime_type};base64,{data}"
    return image_url_item(url, detail)


def tool_call_item(call: ToolCall) -> ContentItem:
    return ContentItem(type=ContentType.TOOL_CALL, tool_call=call)


def tool_result_item(tool_call_id: str, content: str) -> ContentItem:
    return ContentItem(
        type=ContentType.TOOL_RESULT,
        tool_result=ToolResultItem(tool_call_id=tool_call_id, content=content),
    )


def read_image_file(path: Union[str, Path]) -> tuple[str, str]:
    """Read an image from disk and return (base64 data, mime type)."""
    path = Path(path)
    data = path.read_bytes()
    mime_type, _ = mimetypes.guess_type(path.name)
    if not mime_type or not mime_type.startswith("image/"):
        mime_type = "image/png" if data.startswith(b"\x89PNG") else "image/jpeg"
    return base64.b64encode(data).decode("ascii"), mime_type


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------

MessageContent = Union[str, list[ContentItem], None]


@dataclass
class Message:
    """A single conversation entry."""

    role: Role
    content: MessageContent = None
    name: Optional[str] = None
    tool_calls: list[ToolCall] = field(default_factory=list)
    tool_call_id: Optional[str] = None

    @property
    def text(self) -> str:
        """Text content, joining text items of a multi-part message."""
        if isinstance(self.content, str):
            return self.content
        if isinstance(self.content, list):
            return "".join(item.text or "" for item in self.content if item.type == ContentType.TEXT)
        return ""

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {"role": self.role.value}
        if isinstance(self.content, list):
            result["content"] = [item.to_dict() for item in self.content]
        else:
            result["content"] = self.content
        if self.name:
            result["name"] = self.name
        if self.tool_calls:
            result["tool_calls"] = [tc.to_dict() for tc in self.tool_calls]
        if self.tool_call_id:
            result["tool_call_id"] = self.tool_call_id
        return result

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Message":
        content = data.get("content")
        if isinstance(content, list):
            content = [ContentItem.from_dict(item) for item in content]
        return cls(
            role=Role(data.get("role", "assistant")),
            content=content,
            name=data.get("name"),
            tool_calls=[ToolCall.from_dict(tc) for tc in data.get("tool_calls") or []],
            tool_call_id=data.get("tool_call_id"),
        )


# ---------------------------------------------------------------------------
# Responses
# ---------------------------------------------------------------------------


@dataclass
class Usage:
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "prompt_tokens": self.prompt_tokens,
            "completion_tokens": self.completion_tokens,
            "total_tokens": self.total_tokens,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Usage":
        return cls(
            prompt_tokens=data.get("prompt_tokens") or 0,
            completion_tokens=data.get("completion_tokens") or 0,
            total_tokens=data.get("total_tokens") or 0,
        )


@dataclass
class Choice:
    index: int
    message: Message
    finish_reason: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "index": self.index,
            "message": self.message.to_dict(),
            "finish_reason": self.finish_reason,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Choice":
        return cls(
            index=data.get("index", 0),
            message=Message.from_dict(data.get("message") or {}),
            finish_reason=data.get("finish_reason"),
        )


@dataclass
class ChatCompletionResponse:
    """Parsed body of a chat-completion response."""

    id: str = ""
    object: str = "chat.completion"
    created: int = 0
    model: str = ""
    choices: list[Choice] = field(default_factory=list)
    usage: Usage = field(default_factory=Usage)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "object": self.object,
            "created": self.created,
            "model": self.model,
            "choices": [c.to_dict() for c in self.choices],
            "usage": self.usage.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ChatCompletionResponse":
        return cls(
            id=data.get("id", ""),
            object=data.get("object", "chat.completion"),
            created=data.get("created", 0),
            model=data.get("model", ""),
            choices=[Choice.from_dict(c) for c in data.get("choices") or []],
            usage=Usage.from_dict(data.get("usage") or {}),
        )
