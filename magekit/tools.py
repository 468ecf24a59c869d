"""
magekit - Tool registry.

A ToolKit holds named tools, produces their declarations for the model and
dispatches the tool calls of an assistant message to their executors.

Usage:
    ```python
    from magekit import ToolKit, define_tool

    @define_tool(description="Add two numbers.", parameters={
        "type": "object",
        "properties": {"a": {"type": "number"}, "b": {"type": "number"}},
        "required": ["a", "b"],
    })
    def add(a: float, b: float) -> float:
        return a + b

    kit = ToolKit("math").with_tool(add)
    ```
"""

import asyncio
import functools
import inspect
import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from .exceptions import ToolArgumentError, ToolKitError, ToolNotFoundError
from .models import Message, ToolCall

logger = logging.getLogger("magekit.tools")

Executor = Callable[[bytes], Union[Any, Awaitable[Any]]]
ToolCallback = Callable[[bool, str, Any], Union[None, Awaitable[None]]]
Formatter = Callable[[Any], str]


def _default_parameters() -> dict:
    return {"type": "object", "properties": {}}


@dataclass
class ToolDef:
    """A tool the model can call.

    ``executor`` receives the raw JSON argument bytes exactly as the model
    produced them. It may be a plain function or a coroutine function, and
    signals failure by raising.
    """

    name: str
    description: str
    parameters: dict = field(default_factory=_default_parameters)
    executor: Optional[Executor] = None

    def to_declaration(self) -> dict[str, Any]:
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


def decode_arguments(raw: bytes) -> dict[str, Any]:
    """Decode a tool argument payload into a dict. Empty input means no arguments."""
    if not raw or not raw.strip():
        return {}
    try:
        value = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise ToolArgumentError(f"invalid tool arguments: {e}") from e
    if not isinstance(value, dict):
        raise ToolArgumentError("tool arguments must be a JSON object")
    return value


def define_tool(
    name: Optional[str] = None,
    description: str = "",
    parameters: Optional[dict] = None,
) -> Callable[[Callable[..., Any]], ToolDef]:
    """Decorator that turns a keyword-argument function into a :class:`ToolDef`.

    The JSON arguments are decoded and passed as keyword arguments. Unknown
    or missing arguments raise ToolArgumentError.
    """

    def decorator(func: Callable[..., Any]) -> ToolDef:
        tool_name = name or func.__name__

        if asyncio.iscoroutinefunction(func):

            @functools.wraps(func)
            async def executor(raw: bytes) -> Any:
                return await func(**_bind_arguments(func, raw, tool_name))

        else:

            @functools.wraps(func)
            def executor(raw: bytes) -> Any:
                return func(**_bind_arguments(func, raw, tool_name))

        return ToolDef(
            name=tool_name,
            description=description or (func.__doc__ or "").strip() or f"Tool: {tool_name}",
            parameters=parameters or _default_parameters(),
            executor=executor,
        )

    return decorator


def _bind_arguments(func: Callable[..., Any], raw: bytes, tool_name: str) -> dict[str, Any]:
    kwargs = decode_arguments(raw)
    try:
        inspect.signature(func).bind(**kwargs)
    except TypeError as e:
        raise ToolArgumentError(f"{tool_name}: {e}") from e
    return kwargs


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class ResultKind(str, Enum):
    TEXT = "text"
    BYTES = "bytes"
    STRUCTURED = "structured"


@dataclass
class ToolResult:
    """Tagged value returned by a tool executor."""

    kind: ResultKind
    value: Any
    formatter: Optional[Formatter] = None

    @classmethod
    def from_value(cls, value: Any, formatter: Optional[Formatter] = None) -> "ToolResult":
        if isinstance(value, ToolResult):
            return value
        if isinstance(value, str):
            return cls(ResultKind.TEXT, value)
        if isinstance(value, (bytes, bytearray)):
            return cls(ResultKind.BYTES, bytes(value))
        return cls(ResultKind.STRUCTURED, value, formatter)

    def render(self) -> str:
        if self.kind == ResultKind.TEXT:
            return self.value
        if self.kind == ResultKind.BYTES:
            return self.value.decode("utf-8", errors="replace")
        if self.formatter is not None:
            return self.formatter(self.value)
        return json.dumps(self.value, default=str)


@dataclass
class ToolOutcome:
    """What happened to one tool call."""

    call_id: str
    tool_name: str
    result: Optional[ToolResult] = None
    error: Optional[BaseException] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None

    @property
    def content(self) -> str:
        """Text fed back to the model for this call."""
        if self.error is not None:
            return f"Error: {self.error}"
        return self.result.render() if self.result is not None else ""


# ---------------------------------------------------------------------------
# ToolKit
# ---------------------------------------------------------------------------


class ToolKit:
    """Named collection of tools plus an optional per-call callback."""

    def __init__(self, name: str, formatter: Optional[Formatter] = None):
        self.name = name
        self.formatter = formatter
        self._tools: list[ToolDef] = []
        self._callback: Optional[ToolCallback] = None
        self._declarations: Optional[list[dict[str, Any]]] = None

    def with_tool(self, tool: ToolDef) -> "ToolKit":
        self._tools.append(tool)
        self._declarations = None
        return self

    def with_callback(self, callback: ToolCallback) -> "ToolKit":
        self._callback = callback
        return self

    @property
    def tool_names(self) -> list[str]:
        return [t.name for t in self._tools]

    def get_tools(self) -> list[dict[str, Any]]:
        """Tool declarations for the request body. Computed once and cached."""
        if self._declarations is None:
            self._declarations = [t.to_declaration() for t in self._tools]
        return self._declarations

    def _find(self, name: str) -> Optional[ToolDef]:
        for tool in self._tools:
            if tool.name == name:
                return tool
        return None

    async def _run(self, call: ToolCall) -> ToolOutcome:
        name = call.function.name
        tool = self._find(name)
        if tool is None or tool.executor is None:
            logger.warning("Tool call %s requested unknown tool %s", call.id, name)
            return ToolOutcome(call.id, name, error=ToolNotFoundError(name))

        logger.info("Executing tool %s (call %s) from kit %s", name, call.id, self.name)
        try:
            raw = tool.executor(call.function.arguments.encode("utf-8"))
            if asyncio.iscoroutine(raw) or isinstance(raw, asyncio.Future):
                raw = await raw
        except Exception as e:
            logger.warning("Tool %s failed: %s", name, e)
            return ToolOutcome(call.id, name, error=e)
        return ToolOutcome(call.id, name, result=ToolResult.from_value(raw, self.formatter))

    async def dispatch(self, message: Message) -> list[ToolOutcome]:
        """
        Execute every tool call of an assistant message, in order.

        Failures are isolated per call: an error in one call becomes an error
        outcome and the remaining calls still run. The callback, when set,
        sees each outcome before the next call starts.
        """
        outcomes: list[ToolOutcome] = []
        for call in message.tool_calls:
            outcome = await self._run(call)
            if self._callback is not None:
                payload = outcome.error if outcome.is_error else outcome.result
                maybe = self._callback(outcome.is_error, outcome.call_id, payload)
                if asyncio.iscoroutine(maybe):
                    await maybe
            outcomes.append(outcome)
        return outcomes

    async def handle_response_calls(self, message: Message) -> list[ToolOutcome]:
        """Like dispatch, but requires a registered callback."""
        if self._callback is None:
            raise ToolKitError("no callback set")
        return await self.dispatch(message)
