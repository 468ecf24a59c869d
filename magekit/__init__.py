"""
magekit - Async client for LLM chat-completion APIs with a tool-calling
orchestration loop and mages (sub-agents) exposed as tools.
"""

from .agent import Agent, Observer, UsageStats
from .client import LLMClient
from .config import (
    AgentConfig,
    PortalConfig,
    ProjectBounds,
    RetryConfig,
)
from .conversation import Conversation, RequestOptions
from .engine import EngineState, MageEngine, ResultAccumulator
from .exceptions import (
    AgentAlreadyRunningError,
    AgentNotStartedError,
    ConfigurationError,
    ContentNotStringError,
    ExecutionError,
    MageBusyError,
    MagekitError,
    MaxRetriesExceededError,
    MissingAPIKeyError,
    MissingBaseURLError,
    NoResponseChoicesError,
    PathValidationError,
    ProtocolError,
    RateLimitError,
    ReadStreamError,
    RequestInProgressError,
    ToolError,
    ToolKitError,
    ToolLoopExceededError,
    ToolNotFoundError,
    TransportError,
    UnexpectedStatusError,
    UnknownVariantError,
    UnmarshalResponseError,
)
from .mages import Mage, MageVariant, Portal, build_mage_kit, build_unified_mage_kit
from .models import (
    ChatCompletionResponse,
    ContentItem,
    Message,
    Role,
    ToolCall,
    ToolFunction,
    image_base64_item,
    image_url_item,
    read_image_file,
    text_item,
)
from .pathutil import validate_path
from .streaming import StreamChannel, StreamChunk
from .tools import ToolDef, ToolKit, ToolOutcome, ToolResult, define_tool

__version__ = "0.1.0"
__all__ = [
    # Agent
    "Agent",
    "Observer",
    "UsageStats",
    # Transport
    "LLMClient",
    "Conversation",
    "RequestOptions",
    "StreamChannel",
    "StreamChunk",
    # Config
    "AgentConfig",
    "PortalConfig",
    "ProjectBounds",
    "RetryConfig",
    # Orchestration
    "EngineState",
    "MageEngine",
    "ResultAccumulator",
    "Mage",
    "MageVariant",
    "Portal",
    "build_mage_kit",
    "build_unified_mage_kit",
    # Tools
    "ToolDef",
    "ToolKit",
    "ToolOutcome",
    "ToolResult",
    "define_tool",
    "validate_path",
    # Models
    "ChatCompletionResponse",
    "ContentItem",
    "Message",
    "Role",
    "ToolCall",
    "ToolFunction",
    "image_base64_item",
    "image_url_item",
    "read_image_file",
    "text_item",
    # Exceptions
    "MagekitError",
    "ConfigurationError",
    "MissingAPIKeyError",
    "MissingBaseURLError",
    "UnknownVariantError",
    "TransportError",
    "MaxRetriesExceededError",
    "UnexpectedStatusError",
    "RateLimitError",
    "ReadStreamError",
    "ProtocolError",
    "NoResponseChoicesError",
    "UnmarshalResponseError",
    "ContentNotStringError",
    "ToolError",
    "ToolNotFoundError",
    "ToolKitError",
    "ExecutionError",
    "ToolLoopExceededError",
    "MageBusyError",
    "AgentNotStartedError",
    "AgentAlreadyRunningError",
    "RequestInProgressError",
    "PathValidationError",
]
