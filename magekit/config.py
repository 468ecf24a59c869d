"""
magekit - Configuration: defaults, retry policy, provider presets and the
portal/agent settings objects.
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Optional

import yaml

from .exceptions import ConfigurationError

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 8192
DEFAULT_TIMEOUT = 600.0
DEFAULT_RATE_LIMIT_DURATION = 30.0
DEFAULT_MAX_TOOL_ROUNDS = 25


@dataclass(frozen=True)
class RetryConfig:
    """Retry policy for the transport. Delays are in seconds."""

    max_retries: int = 3
    initial_delay: float = 1.0
    max_delay: float = 32.0
    backoff_factor: float = 2.0
    enabled: bool = True

    def next_delay(self, delay: float) -> float:
        return min(delay * self.backoff_factor, self.max_delay)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "RetryConfig":
        defaults = cls()
        return cls(
            max_retries=int(data.get("max_retries", defaults.max_retries)),
            initial_delay=float(data.get("initial_delay", defaults.initial_delay)),
            max_delay=float(data.get("max_delay", defaults.max_delay)),
            backoff_factor=float(data.get("backoff_factor", defaults.backoff_factor)),
            enabled=bool(data.get("enabled", defaults.enabled)),
        )


@dataclass(frozen=True)
class ProjectBounds:
    """A directory the mages are allowed to touch."""

    name: str
    description: str
    abs_path: str

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ProjectBounds":
        path = data.get("path") or data.get("abs_path")
        if not path:
            raise ConfigurationError("project bounds entry requires a path")
        return cls(
            name=data.get("name") or Path(path).name,
            description=data.get("description", ""),
            abs_path=os.path.abspath(os.path.expanduser(path)),
        )

    @classmethod
    def for_directory(cls, path: str) -> "ProjectBounds":
        abs_path = os.path.abspath(os.path.expanduser(path))
        return cls(name=Path(abs_path).name or abs_path, description="", abs_path=abs_path)


# ---------------------------------------------------------------------------
# Providers
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ProviderPreset:
    name: str
    base_url: str
    model: str
    api_key_env: str


PROVIDERS: dict[str, ProviderPreset] = {
    "openai": ProviderPreset("openai", "https://api.openai.com", "gpt-4o", "OPENAI_API_KEY"),
    "anthropic": ProviderPreset(
        "anthropic",
        "https://api.anthropic.com",
        "claude-3-5-sonnet-20240620",
        "ANTHROPIC_API_KEY",
    ),
    "xai": ProviderPreset("xai", "https://api.x.ai", "grok-4", "XAI_API_KEY"),
}

DEFAULT_PROVIDER = "xai"


def get_provider(name: str) -> ProviderPreset:
    try:
        return PROVIDERS[name.lower()]
    except KeyError:
        raise ConfigurationError(
            f"unknown provider '{name}', expected one of: {', '.join(sorted(PROVIDERS))}"
        ) from None


# ---------------------------------------------------------------------------
# Portal / agent settings
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PortalConfig:
    """Settings shared by every mage a portal summons.

    Zero values are replaced with defaults once, at construction.
    """

    api_key: str
    base_url: str
    primary_model: str
    image_model: str = ""
    mini_model: str = ""
    max_tokens: int = 0
    temperature: float = 0.0
    retry_config: RetryConfig = field(default_factory=RetryConfig)
    project_bounds: tuple[ProjectBounds, ...] = ()
    max_tool_rounds: Optional[int] = DEFAULT_MAX_TOOL_ROUNDS

    def __post_init__(self) -> None:
        if not self.image_model:
            object.__setattr__(self, "image_model", self.primary_model)
        if not self.mini_model:
            object.__setattr__(self, "mini_model", self.primary_model)
        if self.max_tokens <= 0:
            object.__setattr__(self, "max_tokens", DEFAULT_MAX_TOKENS)
        if self.temperature == 0:
            object.__setattr__(self, "temperature", DEFAULT_TEMPERATURE)
        object.__setattr__(self, "project_bounds", tuple(self.project_bounds))


@dataclass(frozen=True)
class AgentConfig:
    """Settings for the top-level agent."""

    api_key: str
    base_url: str
    model: str
    image_model: str = ""
    max_tokens: int = 0
    temperature: float = 0.0
    retry_config: RetryConfig = field(default_factory=RetryConfig)
    project_bounds: tuple[ProjectBounds, ...] = ()
    prompt_refinements: tuple[str, ...] = ()
    max_tool_rounds: Optional[int] = DEFAULT_MAX_TOOL_ROUNDS

    def __post_init__(self) -> None:
        if not self.image_model:
            object.__setattr__(self, "image_model", self.model)
        if self.max_tokens <= 0:
            object.__setattr__(self, "max_tokens", DEFAULT_MAX_TOKENS)
        if self.temperature == 0:
            object.__setattr__(self, "temperature", DEFAULT_TEMPERATURE)
        object.__setattr__(self, "project_bounds", tuple(self.project_bounds))
        object.__setattr__(self, "prompt_refinements", tuple(self.prompt_refinements))

    def portal_config(self) -> PortalConfig:
        return PortalConfig(
            api_key=self.api_key,
            base_url=self.base_url,
            primary_model=self.model,
            image_model=self.image_model,
            max_tokens=self.max_tokens,
            temperature=self.temperature,
            retry_config=self.retry_config,
            project_bounds=self.project_bounds,
            max_tool_rounds=self.max_tool_rounds,
        )

    def with_overrides(self, **changes: Any) -> "AgentConfig":
        """Return a copy with the non-None keyword values applied."""
        return replace(self, **{k: v for k, v in changes.items() if v is not None})

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AgentConfig":
        preset = get_provider(data.get("provider", DEFAULT_PROVIDER))
        api_key = data.get("api_key") or os.environ.get(preset.api_key_env, "")
        bounds = tuple(ProjectBounds.from_dict(b) for b in data.get("project_bounds", []))
        max_rounds = data.get("max_tool_rounds", DEFAULT_MAX_TOOL_ROUNDS)
        refinements = data.get("prompt_refinements") or ()
        if isinstance(refinements, str):
            refinements = (refinements,)
        return cls(
            api_key=api_key,
            base_url=data.get("base_url") or preset.base_url,
            model=data.get("model") or preset.model,
            image_model=data.get("image_model", ""),
            max_tokens=int(data.get("max_tokens", 0)),
            temperature=float(data.get("temperature", 0.0)),
            retry_config=RetryConfig.from_dict(data.get("retry") or {}),
            project_bounds=bounds,
            prompt_refinements=tuple(refinements),
            max_tool_rounds=None if max_rounds is None else int(max_rounds),
        )

    @classmethod
    def from_env(cls, provider: Optional[str] = None) -> "AgentConfig":
        """Create configuration from environment variables."""
        data: dict[str, Any] = {
            "provider": provider or os.environ.get("MAGEKIT_PROVIDER", DEFAULT_PROVIDER),
        }
        if os.environ.get("MAGEKIT_MODEL"):
            data["model"] = os.environ["MAGEKIT_MODEL"]
        if os.environ.get("MAGEKIT_BASE_URL"):
            data["base_url"] = os.environ["MAGEKIT_BASE_URL"]
        if os.environ.get("MAGEKIT_TEMPERATURE"):
            data["temperature"] = os.environ["MAGEKIT_TEMPERATURE"]
        if os.environ.get("MAGEKIT_MAX_TOKENS"):
            data["max_tokens"] = os.environ["MAGEKIT_MAX_TOKENS"]
        return cls.from_dict(data)

    @classmethod
    def from_yaml(cls, path: str | Path) -> "AgentConfig":
        """
        Load agent settings from a YAML file.

        Args:
            path: Path to the YAML file

        Raises:
            ConfigurationError: File missing or not a mapping
        """
        path = Path(path)
        if not path.exists():
            raise ConfigurationError(f"config file not found: {path}")
        try:
            with open(path) as f:
                data = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise ConfigurationError(f"invalid YAML in {path}: {e}") from e
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigurationError(f"{path} must contain a mapping at the top level")
        return cls.from_dict(data)
