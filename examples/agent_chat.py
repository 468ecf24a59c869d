#!/usr/bin/env python3
"""
magekit - Agent Chat Example

A minimal observer-driven chat loop. The agent delegates file, image and
shell work to mages and streams its answer token by token. Press Ctrl+C
during a reply to interrupt it.

Usage:
    export ANTHROPIC_API_KEY=...
    python agent_chat.py
"""

import asyncio
import signal

from magekit import Agent, AgentConfig, ProjectBounds


class PrintingObserver:
    def on_chunk(self, chunk):
        print(chunk.content, end="", flush=True)

    def on_error(self, error):
        print(f"\n[error] {error}")

    def on_complete(self, message):
        print()

    def on_usage(self, stats):
        print(f"[{stats.tokens_used} tokens]")


async def main():
    config = AgentConfig.from_env("anthropic").with_overrides(
        project_bounds=(ProjectBounds.for_directory("."),),
        prompt_refinements=("Keep answers short.",),
    )
    agent = Agent(config, observer=PrintingObserver())
    await agent.start()

    loop = asyncio.get_running_loop()
    loop.add_signal_handler(signal.SIGINT, agent.interrupt_current_request)
    try:
        while True:
            line = await loop.run_in_executor(None, input, "you> ")
            if line.strip() in ("", "quit"):
                break
            agent.send_message(line)
            await agent.wait()
    finally:
        await agent.stop()


if __name__ == "__main__":
    asyncio.run(main())
