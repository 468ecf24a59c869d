"""
Shared fixtures: a scripted chat-completion endpoint behind httpx.MockTransport.
"""

import json
from typing import Any, Callable, Optional, Union
from unittest.mock import patch

import httpx
import pytest

from magekit.client import LLMClient
from magekit.config import RetryConfig

BASE_URL = "https://api.example.com"


def completion_body(
    content: Optional[str] = None,
    tool_calls: Optional[list[tuple[str, str, str]]] = None,
    finish_reason: Optional[str] = None,
    usage: Optional[dict[str, int]] = None,
) -> dict[str, Any]:
    message: dict[str, Any] = {"role": "assistant", "content": content}
    if tool_calls:
        message["tool_calls"] = [
            {"id": call_id, "type": "function", "function": {"name": name, "arguments": args}}
            for call_id, name, args in tool_calls
        ]
    return {
        "id": "chatcmpl-test",
        "object": "chat.completion",
        "created": 1700000000,
        "model": "test-model",
        "choices": [
            {
                "index": 0,
                "message": message,
                "finish_reason": finish_reason or ("tool_calls" if tool_calls else "stop"),
            }
        ],
        "usage": usage or {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
    }


def _delta(delta: dict[str, Any]) -> dict[str, Any]:
    return {"id": "chatcmpl-stream", "model": "test-model", "choices": [{"index": 0, "delta": delta}]}


Scripted = Union[httpx.Response, Exception, Callable[[httpx.Request], httpx.Response]]


class ScriptedLLM:
    """Answers chat-completion requests from a queue, recording every request."""

    def __init__(self) -> None:
        self.script: list[Scripted] = []
        self.requests: list[httpx.Request] = []

    def reply(self, content: Optional[str] = None, tool_calls=None, **kwargs: Any) -> "ScriptedLLM":
        self.script.append(httpx.Response(200, json=completion_body(content, tool_calls, **kwargs)))
        return self

    def stream(self, *parts: str, tool_calls=None) -> "ScriptedLLM":
        """Queue an SSE response that streams ``parts`` and then the tool calls."""
        events = [_delta({"content": part}) for part in parts]
        for index, (call_id, name, args) in enumerate(tool_calls or []):
            events.append(
                _delta(
                    {
                        "tool_calls": [
                            {
                                "index": index,
                                "id": call_id,
                                "type": "function",
                                "function": {"name": name, "arguments": args},
                            }
                        ]
                    }
                )
            )
        payload = "".join(f"data: {json.dumps(e)}\n\n" for e in events) + "data: [DONE]\n\n"
        self.script.append(
            httpx.Response(200, content=payload.encode(), headers={"Content-Type": "text/event-stream"})
        )
        return self

    def then(self, item: Scripted) -> "ScriptedLLM":
        self.script.append(item)
        return self

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.script:
            raise AssertionError(f"unexpected request #{len(self.requests)}")
        item = self.script.pop(0)
        if isinstance(item, Exception):
            raise item
        if isinstance(item, httpx.Response):
            return item
        return item(request)

    @property
    def bodies(self) -> list[dict[str, Any]]:
        return [json.loads(r.content) for r in self.requests]

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handle))

    def client(
        self, retry_config: Optional[RetryConfig] = None, base_url: str = BASE_URL
    ) -> LLMClient:
        return LLMClient(
            "test-key",
            base_url,
            http_client=self.http_client(),
            retry_config=retry_config or RetryConfig(max_retries=0),
        )


@pytest.fixture
def llm() -> ScriptedLLM:
    return ScriptedLLM()


@pytest.fixture
def sleeps():
    """Record backoff sleeps instead of waiting them out."""
    recorded: list[float] = []

    async def fake_sleep(delay: float) -> None:
        recorded.append(delay)

    with patch("magekit.client.asyncio.sleep", new=fake_sleep):
        yield recorded
