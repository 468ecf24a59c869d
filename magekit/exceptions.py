"""
magekit - Custom exceptions for error handling.
"""

from typing import Any, Optional


class MagekitError(Exception):
    """Base exception for all magekit errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response: Optional[dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response = response


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class ConfigurationError(MagekitError):
    """Raised when a client, mage or agent is built from invalid settings."""

    pass


class MissingAPIKeyError(ConfigurationError):
    """Raised when no API key was supplied."""

    def __init__(self, message: str = "API key is required", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class MissingBaseURLError(ConfigurationError):
    """Raised when no base URL was supplied."""

    def __init__(self, message: str = "base URL is required", **kwargs: Any) -> None:
        super().__init__(message, **kwargs)


class UnknownVariantError(ConfigurationError):
    """Raised when the portal is asked to summon a mage it does not know."""

    def __init__(self, variant: Any) -> None:
        super().__init__(f"unknown mage variant: {variant}")
        self.variant = variant


# ---------------------------------------------------------------------------
# Transport
# ---------------------------------------------------------------------------


class TransportError(MagekitError):
    """Raised when talking to the chat-completion endpoint fails."""

    pass


class RequestBuildError(TransportError):
    """Raised when the request body cannot be encoded."""

    pass


class MaxRetriesExceededError(TransportError):
    """Raised when every attempt of a request failed at the transport level."""

    def __init__(self, message: str, last_error: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.last_error = last_error


class UnexpectedStatusError(TransportError):
    """Raised when the API answers with a non-200 status."""

    def __init__(self, status_code: int, body: str = "") -> None:
        super().__init__(
            f"unexpected status code: {status_code}, body: {body}",
            status_code=status_code,
        )
        self.body = body


class RateLimitError(UnexpectedStatusError):
    """Raised (or recorded) when the API rate limits a request."""

    def __init__(self, retry_after: float, body: str = "") -> None:
        super().__init__(429, body)
        self.message = f"rate limit exceeded, retry after {retry_after:.1f}s"
        self.args = (self.message,)
        self.retry_after = retry_after


class ReadStreamError(TransportError):
    """Raised when a streaming response body cannot be read to the end."""

    pass


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


class ProtocolError(MagekitError):
    """Raised when the API answer does not have the expected shape."""

    pass


class NoResponseChoicesError(ProtocolError):
    """Raised when a response carries zero choices."""

    def __init__(self, message: str = "no response choices returned") -> None:
        super().__init__(message)


class UnmarshalResponseError(ProtocolError):
    """Raised when the response body is not valid JSON."""

    pass


class ContentNotStringError(ProtocolError):
    """Raised when a final assistant reply has non-text content."""

    def __init__(self, message: str = "response content is not a string") -> None:
        super().__init__(message)


# ---------------------------------------------------------------------------
# Tools
# ---------------------------------------------------------------------------


class ToolError(MagekitError):
    """Base class for tool registry errors."""

    pass


class ToolNotFoundError(ToolError):
    """Raised when a tool call names a tool the kit does not hold."""

    def __init__(self, tool_name: str) -> None:
        super().__init__(f"Tool '{tool_name}' not found in toolkit")
        self.tool_name = tool_name


class ToolArgumentError(ToolError):
    """Raised when tool arguments cannot be decoded or are invalid."""

    pass


class ToolKitError(ToolError):
    """Raised when a kit is used in a state that does not allow it."""

    pass


# ---------------------------------------------------------------------------
# Execution
# ---------------------------------------------------------------------------


class ExecutionError(MagekitError):
    """Raised when a mage execution stops on an infrastructure failure."""

    pass


class ToolLoopExceededError(ExecutionError):
    """Raised when the model keeps requesting tools beyond the round limit."""

    def __init__(self, max_rounds: int) -> None:
        super().__init__(f"exceeded maximum tool rounds ({max_rounds})")
        self.max_rounds = max_rounds


class MageBusyError(ExecutionError):
    """Raised when an engine is asked to work while a send is in flight."""

    def __init__(self, message: str = "mage is busy with another request") -> None:
        super().__init__(message)


# ---------------------------------------------------------------------------
# Agent
# ---------------------------------------------------------------------------


class AgentError(MagekitError):
    """Base class for top-level agent lifecycle errors."""

    pass


class AgentNotStartedError(AgentError):
    def __init__(self, message: str = "agent not started") -> None:
        super().__init__(message)


class AgentAlreadyRunningError(AgentError):
    def __init__(self, message: str = "agent already running") -> None:
        super().__init__(message)


class RequestInProgressError(AgentError):
    def __init__(self, message: str = "request already in progress") -> None:
        super().__init__(message)


# ---------------------------------------------------------------------------
# Paths
# ---------------------------------------------------------------------------


class PathValidationError(MagekitError):
    """Raised when a path is relative or falls outside the project bounds."""

    def __init__(self, message: str, path: str = "") -> None:
        super().__init__(message)
        self.path = path
