"""
magekit - Mages: specialised engines summoned from a portal, and the kits
that let a parent model delegate work to them.

Usage:
    ```python
    portal = Portal(PortalConfig(api_key=key, base_url=url, primary_model="gpt-4o",
                                 project_bounds=(ProjectBounds.for_directory("."),)))
    fs = portal.summon(MageVariant.FS)
    print(await fs.execute("List the files in the project"))
    ```
"""

import asyncio
import logging
from enum import Enum
from typing import Optional, Protocol

import httpx

from .client import LLMClient
from .config import PortalConfig
from .engine import MageEngine, ResultAccumulator
from .exceptions import ExecutionError, UnknownVariantError
from .prompts import (
    FS_MAGE_CONTEXT,
    IMAGE_MAGE_CONTEXT,
    SHELL_MAGE_CONTEXT,
    bounds_advisory,
    platform_context,
)
from .toolkits import build_fs_kit, build_image_kit, build_shell_kit
from .toolkits.image import VISION_RETRY_CONFIG
from .tools import ToolKit, ToolOutcome, define_tool

logger = logging.getLogger("magekit.mages")

MAGE_KIT_TIMEOUT = 30.0
UNIFIED_KIT_TIMEOUT = 60.0
DEFAULT_IMAGE_QUERY = "describe what you see in detail"


class Mage(Protocol):
    def reset(self) -> None: ...

    def add_to_context(self, text: str) -> object: ...

    async def execute(self, command: str) -> str: ...


class MageVariant(str, Enum):
    FS = "mage_fs"
    IMAGE = "mage_im"
    SHELL = "mage_shell"


def _log_outcome(outcome: ToolOutcome) -> None:
    if outcome.is_error:
        logger.error("Tool execution error (id=%s): %s", outcome.call_id, outcome.error)
    else:
        logger.info("Tool execution result (id=%s, tool=%s)", outcome.call_id, outcome.tool_name)


class Portal:
    """Summons mages that share one PortalConfig."""

    def __init__(self, config: PortalConfig, http_client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self.http_client = http_client

    def _client(self, retry_config=None) -> LLMClient:
        return LLMClient(
            self.config.api_key,
            self.config.base_url,
            http_client=self.http_client,
            retry_config=retry_config or self.config.retry_config,
        )

    def summon(self, variant: MageVariant) -> MageEngine:
        try:
            variant = MageVariant(variant)
        except ValueError:
            raise UnknownVariantError(variant) from None

        if variant == MageVariant.FS:
            return self._summon_fs()
        if variant == MageVariant.IMAGE:
            return self._summon_image()
        return self._summon_shell()

    def _engine(
        self, model: str, kit: ToolKit, context_builder, accumulator, name, extra_clients=()
    ) -> MageEngine:
        return MageEngine(
            self._client(),
            model,
            kit=kit,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            context_builder=context_builder,
            accumulator=accumulator,
            max_tool_rounds=self.config.max_tool_rounds,
            on_tool_outcome=_log_outcome,
            name=name,
            extra_clients=extra_clients,
        )

    def _summon_fs(self) -> MageEngine:
        bounds = self.config.project_bounds
        advisory = bounds_advisory(bounds)
        return self._engine(
            self.config.primary_model,
            build_fs_kit(bounds),
            lambda: [advisory] if advisory else [],
            ResultAccumulator(include_tool_output=True),
            "fs_mage",
        )

    def _summon_image(self) -> MageEngine:
        bounds = self.config.project_bounds
        advisory = bounds_advisory(bounds, "image files")
        vision_client = self._client(VISION_RETRY_CONFIG)
        kit = build_image_kit(vision_client, self.config.image_model, bounds)
        return self._engine(
            self.config.image_model,
            kit,
            lambda: [advisory] if advisory else [],
            ResultAccumulator(include_tool_output=True),
            "image_mage",
            extra_clients=(vision_client,),
        )

    def _summon_shell(self) -> MageEngine:
        bounds = self.config.project_bounds
        return self._engine(
            self.config.primary_model,
            build_shell_kit(bounds),
            lambda: [platform_context(bounds)],
            ResultAccumulator(include_tool_output=True, include_tool_errors=True, separator="\n"),
            "shell_mage",
        )


# ---------------------------------------------------------------------------
# Delegation kits
# ---------------------------------------------------------------------------


async def _run_mage(mage: Mage, command: str, timeout: float, label: str) -> str:
    try:
        async with asyncio.timeout(timeout):
            return await mage.execute(command)
    except TimeoutError as e:
        raise ExecutionError(f"{label} execution cancelled: timed out after {timeout:g}s") from e


def build_mage_kit(
    image_mage: Optional[Mage] = None,
    fs_mage: Optional[Mage] = None,
    timeout: float = MAGE_KIT_TIMEOUT,
) -> ToolKit:
    """Kit exposing an image mage and a filesystem mage as two tools."""

    @define_tool(
        description="Use the image mage to analyze an image and answer questions about it",
        parameters={
            "type": "object",
            "properties": {
                "image_path": {"type": "string", "description": "Path to the image file to analyze"},
                "query": {
                    "type": "string",
                    "description": "Specific question or instruction about the image (e.g., 'describe what you see', 'identify the objects')",
                },
            },
            "required": ["image_path", "query"],
        },
    )
    async def analyze_image_with_mage(image_path: str = "", query: str = "") -> str:
        if image_mage is None:
            raise ExecutionError("image mage not available")
        if not image_path:
            raise ValueError("image_path is required")
        command = f"Please analyze the image at path '{image_path}' and {query or DEFAULT_IMAGE_QUERY}"
        return await _run_mage(image_mage, command, timeout, "image mage")

    @define_tool(
        description=(
            "Use the filesystem mage to perform file operations like reading, writing, "
            "listing directories, or analyzing files. The mage will handle large files "
            "appropriately by chunking or summarizing."
        ),
        parameters={
            "type": "object",
            "properties": {
                "command": {
                    "type": "string",
                    "description": "The filesystem operation to perform (e.g., 'list files in /home/user/project')",
                },
            },
            "required": ["command"],
        },
    )
    async def execute_filesystem_operation(command: str = "") -> str:
        if fs_mage is None:
            raise ExecutionError("filesystem mage not available")
        if not command:
            raise ValueError("command is required")
        return await _run_mage(fs_mage, command, timeout, "filesystem mage")

    return (
        ToolKit("Mage Kit")
        .with_tool(analyze_image_with_mage)
        .with_tool(execute_filesystem_operation)
    )


MAGE_TYPES = {
    "image": MageVariant.IMAGE,
    "vision": MageVariant.IMAGE,
    "filesystem": MageVariant.FS,
    "fs": MageVariant.FS,
    "file": MageVariant.FS,
    "shell": MageVariant.SHELL,
}

ROLE_CONTEXT = {
    MageVariant.IMAGE: IMAGE_MAGE_CONTEXT,
    MageVariant.FS: FS_MAGE_CONTEXT,
    MageVariant.SHELL: SHELL_MAGE_CONTEXT,
}


def build_unified_mage_kit(portal: Portal, timeout: float = UNIFIED_KIT_TIMEOUT) -> ToolKit:
    """Kit with a single task_mage tool that summons a fresh mage per task."""

    @define_tool(
        description=(
            "Task a specialized mage to perform operations. Available mages: 'image' for "
            "image analysis, 'filesystem' for file operations, 'shell' for shell commands."
        ),
        parameters={
            "type": "object",
            "properties": {
                "mage_type": {
                    "type": "string",
                    "description": "The type of mage to use: 'image', 'filesystem', 'shell'",
                    "enum": ["image", "filesystem", "shell"],
                },
                "command": {
                    "type": "string",
                    "description": (
                        "The command or task for the mage to execute. Examples: Image: "
                        "'analyze /abs/path/image.png', Filesystem: 'analyze and summarize "
                        "/abs/path/large.log'."
                    ),
                },
            },
            "required": ["mage_type", "command"],
        },
    )
    async def task_mage(mage_type: str, command: str) -> str:
        variant = MAGE_TYPES.get(mage_type.lower())
        if variant is None:
            raise ValueError(
                f"unknown mage type: {mage_type}. Available types: 'image', 'filesystem', 'shell'"
            )
        mage = portal.summon(variant)
        mage.add_to_context(ROLE_CONTEXT[variant])
        logger.info("Executing mage task (type=%s): %s", mage_type, command)
        try:
            return await _run_mage(mage, command, timeout, "mage")
        except ExecutionError:
            raise
        except Exception as e:
            raise ExecutionError(f"mage execution failed: {e}") from e
        finally:
            await mage.aclose()

    return ToolKit("Unified Mage Kit").with_tool(task_mage)
