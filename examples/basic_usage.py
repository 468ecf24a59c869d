#!/usr/bin/env python3
"""
magekit - Basic Usage Example

Sends a conversation, registers a tool and runs the tool loop by hand.

Prerequisites:
    pip install magekit

Usage:
    export OPENAI_API_KEY=sk-...
    python basic_usage.py
"""

import asyncio
import os
from datetime import datetime

from magekit import LLMClient, MageEngine, ToolKit, define_tool


@define_tool(
    description="Get the current local time",
    parameters={"type": "object", "properties": {}},
)
def current_time() -> str:
    return datetime.now().strftime("%H:%M:%S")


async def main():
    api_key = os.getenv("OPENAI_API_KEY", "")
    model = os.getenv("MAGEKIT_MODEL", "gpt-4o-mini")

    async with LLMClient(api_key, "https://api.openai.com") as client:
        # 1. A plain conversation
        print("1. Plain conversation...")
        conversation = client.new_conversation(model)
        conversation.add_system_message("You answer in one sentence.")
        conversation.add_user_message("What is a wizard's apprentice called?")
        reply = await conversation.send()
        print(f"   {reply.content}")

        # 2. The tool loop
        print("\n2. Tool loop...")
        kit = ToolKit("Clock").with_tool(current_time)
        engine = MageEngine(client, model, kit=kit)
        print(f"   {await engine.execute('What time is it?')}")

    print("\nDone!")


if __name__ == "__main__":
    asyncio.run(main())
