#!/usr/bin/env python3
"""
magekit - Shell Mage Example

Summons a shell mage confined to the current directory and streams each
tool outcome as it happens.

Usage:
    export XAI_API_KEY=xai-...
    python shell_mage.py "how many python files are in this directory?"
"""

import asyncio
import sys

from magekit import AgentConfig, MageVariant, Portal, ProjectBounds


async def main(task: str):
    config = AgentConfig.from_env().with_overrides(
        project_bounds=(ProjectBounds.for_directory("."),)
    )
    mage = Portal(config.portal_config()).summon(MageVariant.SHELL)
    mage.on_tool_outcome = lambda outcome: print(
        f"[{outcome.tool_name}] {'failed' if outcome.is_error else 'ok'}"
    )
    try:
        print(await mage.execute(task))
    finally:
        await mage.aclose()


if __name__ == "__main__":
    asyncio.run(main(" ".join(sys.argv[1:]) or "show the working directory"))
