"""
magekit.toolkits.shell - Shell command execution inside the project bounds.
"""

import asyncio
import contextlib
import os
import time
from typing import Any, Optional, Sequence

from ..config import ProjectBounds
from ..pathutil import validate_path
from ..prompts import shell_name
from ..tools import ToolKit, define_tool

DEFAULT_COMMAND_TIMEOUT = 30
MAX_COMMAND_TIMEOUT = 300


def format_command_result(result: Any) -> str:
    """Render an execute_command result as stdout, stderr and exit code."""
    if not isinstance(result, dict):
        return str(result)
    if "stdout" in result or "exit_code" in result:
        output = result.get("stdout", "")
        if result.get("stderr"):
            output += f"\nStderr: {result['stderr']}"
        exit_code = result.get("exit_code", 0)
        if exit_code != 0:
            output += f"\nExit code: {exit_code}"
        return output
    return "\n".join(f"{k}: {v}" for k, v in result.items())


async def run_command(
    command: str,
    working_dir: Optional[str] = None,
    timeout: float = DEFAULT_COMMAND_TIMEOUT,
    env_vars: Optional[dict[str, str]] = None,
) -> dict[str, Any]:
    env = dict(os.environ)
    if env_vars:
        env.update({str(k): str(v) for k, v in env_vars.items()})

    start = time.monotonic()
    process = await asyncio.create_subprocess_shell(
        command,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=working_dir or None,
        env=env,
    )
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(), timeout=timeout)
        exit_code = process.returncode if process.returncode is not None else -1
    except asyncio.TimeoutError:
        process.kill()
        stdout, stderr = await process.communicate()
        stderr += f"\ncommand timed out after {timeout:g}s".encode()
        exit_code = -1
    except BaseException:
        if process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                process.kill()
            await asyncio.shield(process.wait())
        raise

    return {
        "command": command,
        "stdout": stdout.decode("utf-8", errors="replace"),
        "stderr": stderr.decode("utf-8", errors="replace"),
        "exit_code": exit_code,
        "duration_ms": int((time.monotonic() - start) * 1000),
    }


def build_shell_kit(bounds: Sequence[ProjectBounds], name: str = "Shell Kit") -> ToolKit:
    bounds = tuple(bounds)
    shell = shell_name()

    @define_tool(
        description=f"Execute a shell command using {shell}. Commands run with a timeout for safety.",
        parameters={
            "type": "object",
            "properties": {
                "command": {"type": "string", "description": f"The command to execute. Use {shell} syntax."},
                "working_dir": {
                    "type": "string",
                    "description": "Working directory for the command (optional, must be within project bounds)",
                },
                "timeout_seconds": {
                    "type": "integer",
                    "description": f"Command timeout in seconds. Default: {DEFAULT_COMMAND_TIMEOUT}, max: {MAX_COMMAND_TIMEOUT}",
                },
                "env_vars": {
                    "type": "object",
                    "description": "Additional environment variables as key-value pairs",
                },
            },
            "required": ["command"],
        },
    )
    async def execute_command(
        command: str,
        working_dir: str = "",
        timeout_seconds: int = 0,
        env_vars: Optional[dict[str, str]] = None,
    ) -> dict[str, Any]:
        if not command.strip():
            raise ValueError("command is required")
        timeout = timeout_seconds if timeout_seconds > 0 else DEFAULT_COMMAND_TIMEOUT
        timeout = min(timeout, MAX_COMMAND_TIMEOUT)
        cwd = None
        if working_dir:
            cwd = validate_path(bounds, working_dir)
        elif bounds:
            cwd = bounds[0].abs_path
        return await run_command(command, cwd, timeout, env_vars)

    @define_tool(
        description="Get the project working directory and list its contents",
        parameters={"type": "object", "properties": {}},
    )
    def get_working_directory() -> dict[str, Any]:
        cwd = bounds[0].abs_path if bounds else os.getcwd()
        return {"working_directory": cwd, "contents": ", ".join(sorted(os.listdir(cwd)))}

    return (
        ToolKit(name, formatter=format_command_result)
        .with_tool(execute_command)
        .with_tool(get_working_directory)
    )
