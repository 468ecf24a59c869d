"""
magekit - HTTP client for OpenAI-compatible chat-completion APIs.

Handles authentication headers, retry with exponential backoff on transport
failures and rate limiting, and the streaming response path.
"""

import asyncio
import json
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any, Optional, Sequence

import httpx

from .config import DEFAULT_RATE_LIMIT_DURATION, DEFAULT_TIMEOUT, RetryConfig
from .exceptions import (
    MaxRetriesExceededError,
    MissingAPIKeyError,
    MissingBaseURLError,
    NoResponseChoicesError,
    RateLimitError,
    ReadStreamError,
    RequestBuildError,
    UnexpectedStatusError,
    UnmarshalResponseError,
)
from .models import ChatCompletionResponse, Message
from .streaming import StreamAssembler, StreamChannel, StreamChunk

if TYPE_CHECKING:
    from .conversation import Conversation, RequestOptions

logger = logging.getLogger("magekit.client")

COMPLETIONS_PATH = "/v1/chat/completions"
ANTHROPIC_VERSION = "2023-06-01"


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """
    Interpret a Retry-After header.

    Returns the wait in seconds, the default rate-limit duration when the
    header is present but unparseable, or None when it is absent.
    """
    if value is None or not value.strip():
        return None
    value = value.strip()
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return DEFAULT_RATE_LIMIT_DURATION
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


class LLMClient:
    """
    Async client for a chat-completion endpoint.

    Example:
        ```python
        async with LLMClient(api_key="sk-...", base_url="https://api.openai.com") as client:
            response = await client.send(
                [Message(role=Role.USER, content="Hello")],
                model="gpt-4o",
                temperature=0.7,
                max_tokens=1024,
            )
            print(response.choices[0].message.content)
        ```
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        http_client: Optional[httpx.AsyncClient] = None,
        retry_config: Optional[RetryConfig] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ):
        if not api_key:
            raise MissingAPIKeyError()
        if not base_url:
            raise MissingBaseURLError()
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.retry_config = retry_config or RetryConfig()
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    # ==================== Configuration ====================

    def with_base_url(self, base_url: str) -> "LLMClient":
        if not base_url:
            raise MissingBaseURLError()
        self.base_url = base_url.rstrip("/")
        return self

    def with_retry_config(self, retry_config: RetryConfig) -> "LLMClient":
        self.retry_config = retry_config
        return self

    def with_http_client(self, http_client: httpx.AsyncClient) -> "LLMClient":
        self._http = http_client
        self._owns_http = False
        return self

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}{COMPLETIONS_PATH}"

    def _headers(self) -> dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if "anthropic.com" in self.base_url:
            headers["x-api-key"] = self.api_key
            headers["anthropic-version"] = ANTHROPIC_VERSION
        else:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    def new_conversation(
        self, model: str, options: Optional["RequestOptions"] = None
    ) -> "Conversation":
        from .conversation import Conversation

        return Conversation(self, model, options)

    # ==================== Requests ====================

    async def send(
        self,
        messages: Sequence[Message],
        model: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        options: Optional["RequestOptions"] = None,
    ) -> ChatCompletionResponse:
        """
        Perform one chat-completion call.

        Options override the positional temperature and max tokens. When the
        options carry a stream channel the streaming path is used and the
        channel is closed before this method returns or raises.
        """
        stream: Optional[StreamChannel] = options.stream if options else None
        body = self._build_body(messages, model, temperature, max_tokens, options)

        if stream is not None:
            return await self._send_streaming(body, stream)

        response = await self._request_with_retry(body)
        if response.status_code != 200:
            raise UnexpectedStatusError(response.status_code, response.text)
        try:
            data = response.json()
        except ValueError as e:
            raise UnmarshalResponseError(f"failed to unmarshal response: {e}") from e
        if not isinstance(data, dict):
            raise UnmarshalResponseError("failed to unmarshal response: expected a JSON object")

        result = ChatCompletionResponse.from_dict(data)
        if not result.choices:
            raise NoResponseChoicesError()
        if result.choices[0].finish_reason == "length":
            logger.warning("Response truncated by max_tokens limit (model=%s)", model)
        return result

    def _build_body(
        self,
        messages: Sequence[Message],
        model: str,
        temperature: Optional[float],
        max_tokens: Optional[int],
        options: Optional["RequestOptions"],
    ) -> bytes:
        if options is not None:
            if options.temperature is not None:
                temperature = options.temperature
            if options.max_tokens is not None:
                max_tokens = options.max_tokens

        payload: dict[str, Any] = {
            "model": model,
            "messages": [m.to_dict() for m in messages],
        }
        if max_tokens:
            payload["max_tokens"] = max_tokens
        if temperature:
            payload["temperature"] = temperature
        if options is not None and options.stream is not None:
            payload["stream"] = True
        if options is not None and options.tools:
            payload["tools"] = options.tools
        if options is not None and options.tool_choice is not None:
            payload["tool_choice"] = options.tool_choice

        try:
            return json.dumps(payload, default=str).encode("utf-8")
        except (TypeError, ValueError) as e:
            raise RequestBuildError(f"failed to encode request: {e}") from e

    async def _request_with_retry(self, body: bytes, stream: bool = False) -> httpx.Response:
        """
        POST the body, retrying transport errors and rate limits.

        A fresh request carrying the same buffered bytes is built for every
        attempt. Sleeps go through asyncio.sleep so task cancellation ends
        the wait immediately.
        """
        config = self.retry_config
        delay = config.initial_delay
        last_error: Optional[BaseException] = None

        for attempt in range(config.max_retries + 1):
            request = self._http.build_request(
                "POST", self.endpoint, headers=self._headers(), content=body
            )
            logger.debug("POST %s (attempt %d/%d)", self.endpoint, attempt + 1, config.max_retries + 1)
            try:
                response = await self._http.send(request, stream=stream)
            except httpx.TransportError as e:
                last_error = e
                if attempt >= config.max_retries:
                    break
                logger.warning(
                    "Request failed (attempt %d/%d): %s, retrying in %.1fs",
                    attempt + 1,
                    config.max_retries + 1,
                    e,
                    delay,
                )
                await asyncio.sleep(delay)
                delay = config.next_delay(delay)
                continue

            if response.status_code == 429 and config.enabled and attempt < config.max_retries:
                await response.aread()
                text = response.text
                await response.aclose()
                retry_after = parse_retry_after(response.headers.get("Retry-After"))
                if retry_after is None:
                    retry_after = delay
                delay = min(max(delay, retry_after), config.max_delay)
                last_error = RateLimitError(delay, text)
                logger.warning(
                    "Rate limited (attempt %d/%d), retrying in %.1fs",
                    attempt + 1,
                    config.max_retries + 1,
                    delay,
                )
                await asyncio.sleep(delay)
                delay = config.next_delay(delay)
                continue

            return response

        raise MaxRetriesExceededError(
            f"max retries exceeded: {last_error}", last_error=last_error
        ) from last_error

    async def _send_streaming(self, body: bytes, channel: StreamChannel) -> ChatCompletionResponse:
        assembler = StreamAssembler(channel)
        try:
            try:
                response = await self._request_with_retry(body, stream=True)
            except Exception as e:
                channel.send(StreamChunk.failure(e))
                raise
            try:
                if response.status_code != 200:
                    await response.aread()
                    error = UnexpectedStatusError(response.status_code, response.text)
                    channel.send(StreamChunk.failure(error))
                    raise error
                await self._read_stream(response, assembler, channel)
            finally:
                await response.aclose()
        finally:
            channel.close()
        return assembler.to_response()

    async def _read_stream(
        self,
        response: httpx.Response,
        assembler: StreamAssembler,
        channel: StreamChannel,
    ) -> None:
        try:
            async for line in response.aiter_lines():
                if assembler.feed(line):
                    break
        except asyncio.CancelledError:
            channel.send(StreamChunk.failure(asyncio.CancelledError("stream cancelled")))
            raise
        except httpx.HTTPError as e:
            error = ReadStreamError(f"error reading stream: {e}")
            channel.send(StreamChunk.failure(error))
            raise error from e
        if not assembler.done:
            logger.debug("Stream ended without a [DONE] marker")
        channel.send(StreamChunk.finished())

    # ==================== Lifecycle ====================

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "LLMClient":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.aclose()
