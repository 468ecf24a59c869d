"""
magekit.toolkits.image - Image analysis through a vision model.
"""

import logging
from typing import Optional, Sequence

from ..client import LLMClient
from ..config import DEFAULT_MAX_TOKENS, DEFAULT_TEMPERATURE, ProjectBounds, RetryConfig
from ..exceptions import ContentNotStringError
from ..models import image_base64_item, read_image_file, text_item
from ..pathutil import validate_path
from ..prompts import VISION_SYSTEM_PROMPT
from ..tools import ToolKit, define_tool

logger = logging.getLogger("magekit.toolkits.image")

VISION_RETRY_CONFIG = RetryConfig(max_retries=5, initial_delay=2.0, max_delay=60.0)


def detect_raw_mime_type(data: str) -> str:
    if data.startswith("data:image/p"):
        return "image/png"
    return "image/jpeg"


def build_image_kit(
    client: LLMClient,
    model: str,
    bounds: Sequence[ProjectBounds],
    name: str = "Image Kit",
) -> ToolKit:
    """Build the image kit. Each analysis runs a one-off vision conversation."""
    bounds = tuple(bounds)

    @define_tool(
        description="Analyze an image using a vision model and get a detailed description",
        parameters={
            "type": "object",
            "properties": {
                "variant": {
                    "type": "string",
                    "enum": ["file", "raw"],
                    "description": "The type of image input - 'file' for file path or 'raw' for base64 encoded image data",
                },
                "target": {
                    "type": "string",
                    "description": "Either a file path (when variant='file') or base64 encoded image data (when variant='raw')",
                },
                "query": {
                    "type": "string",
                    "description": "Specific question or instruction about the image",
                },
                "temperature": {
                    "type": "number",
                    "description": f"Temperature for the vision model. Default is {DEFAULT_TEMPERATURE}.",
                },
                "max_tokens": {
                    "type": "integer",
                    "description": "Maximum number of tokens to generate.",
                },
            },
            "required": ["variant", "target", "query"],
        },
    )
    async def analyze_image(
        variant: str,
        target: str,
        query: str,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> str:
        if variant == "file":
            path = validate_path(bounds, target)
            data, mime_type = read_image_file(path)
        elif variant == "raw":
            data, mime_type = target, detect_raw_mime_type(target)
        else:
            raise ValueError(f"invalid variant: {variant}")

        temperature = temperature if temperature and temperature > 0 else DEFAULT_TEMPERATURE
        max_tokens = max_tokens if max_tokens and max_tokens > 0 else DEFAULT_MAX_TOKENS

        vision = client.new_conversation(model)
        vision.add_system_message(VISION_SYSTEM_PROMPT)
        vision.add_complex_user_message(
            [text_item(query), image_base64_item(data, mime_type, "high")]
        )
        reply = await vision.send(temperature=temperature, max_tokens=max_tokens)
        if not isinstance(reply.content, str):
            raise ContentNotStringError()
        logger.debug("Vision reply for %s: %d characters", variant, len(reply.content))
        return reply.content

    return ToolKit(name).with_tool(analyze_image)
