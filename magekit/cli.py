"""
magekit CLI - Command-line interface for the agent and individual mages.

Commands:
    magekit chat                         Interactive session with the agent
    magekit mage fs "list the files"     Run one command through a single mage
"""

import argparse
import asyncio
import contextlib
import logging
import signal
import sys
from typing import Optional

from .agent import Agent, UsageStats
from .config import PROVIDERS, AgentConfig, ProjectBounds
from .exceptions import MagekitError
from .mages import MageVariant, Portal
from .models import Message
from .streaming import StreamChunk

MAGE_CHOICES = {"fs": MageVariant.FS, "image": MageVariant.IMAGE, "shell": MageVariant.SHELL}


class ConsoleObserver:
    """Prints streamed output to the terminal."""

    def __init__(self, show_usage: bool = False):
        self.show_usage = show_usage

    def on_chunk(self, chunk: StreamChunk) -> None:
        print(chunk.content, end="", flush=True)

    def on_error(self, error: BaseException) -> None:
        print(f"\nError: {error}", file=sys.stderr)

    def on_complete(self, message: Message) -> None:
        print()

    def on_usage(self, stats: UsageStats) -> None:
        if self.show_usage:
            print(
                f"[{stats.model}] ~{stats.tokens_used} tokens, "
                f"{stats.message_size_bytes} bytes of history",
                file=sys.stderr,
            )


def load_config(args: argparse.Namespace) -> AgentConfig:
    if args.config:
        config = AgentConfig.from_yaml(args.config)
    else:
        config = AgentConfig.from_env(args.provider)
    bounds = config.project_bounds
    if args.dir:
        bounds = tuple(ProjectBounds.for_directory(d) for d in args.dir)
    return config.with_overrides(
        model=args.model,
        temperature=args.temp,
        max_tokens=args.max_tokens,
        project_bounds=bounds,
    )


def configure_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


async def _chat(config: AgentConfig, show_usage: bool) -> None:
    agent = Agent(config, observer=ConsoleObserver(show_usage))
    await agent.start()
    loop = asyncio.get_running_loop()
    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGINT, agent.interrupt_current_request)

    print(f"magekit chat ({config.model}). /reset clears the conversation, /quit exits.")
    try:
        while True:
            try:
                line = await loop.run_in_executor(None, input, "> ")
            except EOFError:
                break
            line = line.strip()
            if not line:
                continue
            if line in ("/quit", "/exit"):
                break
            if line == "/reset":
                await agent.reset_conversation()
                print("Conversation reset.")
                continue
            agent.send_message(line)
            await agent.wait()
    finally:
        with contextlib.suppress(NotImplementedError):
            loop.remove_signal_handler(signal.SIGINT)
        await agent.stop()


def cmd_chat(args: argparse.Namespace) -> None:
    """Run an interactive agent session."""
    configure_logging(args.debug)
    try:
        config = load_config(args)
        asyncio.run(_chat(config, args.usage))
    except MagekitError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


async def _run_mage(config: AgentConfig, variant: MageVariant, command: str) -> str:
    mage = Portal(config.portal_config()).summon(variant)
    try:
        return await mage.execute(command)
    finally:
        await mage.aclose()


def cmd_mage(args: argparse.Namespace) -> None:
    """Run one command through a single mage and print the result."""
    configure_logging(args.debug)
    try:
        config = load_config(args)
        result = asyncio.run(_run_mage(config, MAGE_CHOICES[args.variant], args.task))
    except MagekitError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    print(result)


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--provider",
        "-p",
        choices=sorted(PROVIDERS),
        default=None,
        help="API provider (default: $MAGEKIT_PROVIDER or xai)",
    )
    parser.add_argument(
        "--dir",
        "-d",
        action="append",
        help="Project directory the mages may access (repeatable)",
    )
    parser.add_argument("--model", "-m", help="Model name (default: provider preset)")
    parser.add_argument("--temp", type=float, default=None, help="Sampling temperature")
    parser.add_argument("--max-tokens", type=int, default=None, help="Maximum tokens per reply")
    parser.add_argument("--config", "-c", help="Load settings from a YAML file")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")


def main(argv: Optional[list[str]] = None) -> None:
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        prog="magekit",
        description="magekit CLI - Chat with an LLM agent that delegates work to mages",
    )
    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 0.1.0",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    chat_parser = subparsers.add_parser("chat", help="Interactive session with the agent")
    _add_common_arguments(chat_parser)
    chat_parser.add_argument(
        "--usage", action="store_true", help="Print usage estimates after each reply"
    )
    chat_parser.set_defaults(func=cmd_chat)

    mage_parser = subparsers.add_parser("mage", help="Run one command through a single mage")
    mage_parser.add_argument("variant", choices=sorted(MAGE_CHOICES), help="Mage to summon")
    mage_parser.add_argument("task", help="Command for the mage")
    _add_common_arguments(mage_parser)
    mage_parser.set_defaults(func=cmd_mage)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    args.func(args)


if __name__ == "__main__":
    main()
