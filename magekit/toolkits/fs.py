"""
magekit.toolkits.fs - Filesystem tools confined to the project bounds.
"""

import os
import re
from datetime import datetime
from typing import Any, Optional, Sequence

from ..config import ProjectBounds
from ..exceptions import PathValidationError
from ..pathutil import validate_path
from ..tools import ToolKit, define_tool

MAX_READ_SIZE = 400 * 1024
SUMMARY_CHUNK_SIZE = 10 * 1024
DEFAULT_CHUNK_LINES = 1000
LINE_COUNT_LIMIT = 10 * 1024 * 1024
DEFAULT_MAX_MATCHES = 100


def format_file_size(size: int) -> str:
    kb = 1024
    mb = kb * 1024
    gb = mb * 1024
    if size >= gb:
        return f"{size / gb:.2f} GB"
    if size >= mb:
        return f"{size / mb:.2f} MB"
    if size >= kb:
        return f"{size / kb:.2f} KB"
    return f"{size} bytes"


def _modified(stat: os.stat_result) -> str:
    return datetime.fromtimestamp(stat.st_mtime).strftime("%Y-%m-%d %H:%M:%S")


def _require_file(path: str) -> os.stat_result:
    stat = os.stat(path)
    if os.path.isdir(path):
        raise IsADirectoryError(f"path '{path}' is a directory, not a file")
    return stat


def _summarize_large_file(path: str, size: int) -> str:
    with open(path, "rb") as f:
        head = f.read(SUMMARY_CHUNK_SIZE)
        f.seek(max(size - SUMMARY_CHUNK_SIZE, 0))
        tail = f.read(SUMMARY_CHUNK_SIZE)
        f.seek(0)
        line_count = sum(1 for _ in f)

    omitted = size - len(head) - len(tail)
    return (
        f"File: {path}\n"
        f"Size: {size} bytes ({size / (1024 * 1024):.2f} MB)\n"
        f"Lines: {line_count}\n\n"
        f"WARNING: This file is too large to read entirely (exceeds {MAX_READ_SIZE} bytes). "
        "Showing beginning and end portions only.\n"
        "Use 'read_file_chunk' to read specific line ranges.\n\n"
        f"========== BEGINNING OF FILE (first {len(head)} bytes) ==========\n"
        f"{head.decode('utf-8', errors='replace')}\n\n"
        f"========== [TRUNCATED - {omitted} bytes omitted] ==========\n\n"
        f"========== END OF FILE (last {len(tail)} bytes) ==========\n"
        f"{tail.decode('utf-8', errors='replace')}\n"
        "========== END OF FILE =========="
    )


def _compile(pattern: str, use_regex: bool, ignore_case: bool) -> "re.Pattern[str]":
    flags = re.IGNORECASE if ignore_case else 0
    try:
        return re.compile(pattern if use_regex else re.escape(pattern), flags)
    except re.error as e:
        raise ValueError(f"invalid regex pattern: {e}") from e


def _free_backup_path(path: str) -> str:
    candidate = path + ".bak"
    n = 1
    while os.path.exists(candidate):
        candidate = f"{path}.bak{n}"
        n += 1
    return candidate


def build_fs_kit(bounds: Sequence[ProjectBounds], name: str = "Filesystem Kit") -> ToolKit:
    """Build the filesystem kit. Every path argument goes through validate_path."""
    bounds = tuple(bounds)
    example = bounds[0].abs_path if bounds else "/home/user/project"
    listing = "List contents of a directory within the project."
    if bounds:
        listing += " Available directories: " + ", ".join(
            f"{b.abs_path} ({b.name})" for b in bounds
        )

    @define_tool(
        description=listing,
        parameters={
            "type": "object",
            "properties": {
                "directory_path": {
                    "type": "string",
                    "description": f"Absolute path to directory (e.g., {example})",
                },
            },
            "required": ["directory_path"],
        },
    )
    def list_directory(directory_path: str = "") -> dict[str, Any]:
        path = validate_path(bounds, directory_path)
        files: list[dict[str, Any]] = []
        directories: list[dict[str, Any]] = []
        with os.scandir(path) as entries:
            for entry in sorted(entries, key=lambda e: e.name):
                try:
                    stat = entry.stat()
                except OSError:
                    continue
                item = {"name": entry.name, "size_bytes": stat.st_size, "modified": _modified(stat)}
                (directories if entry.is_dir() else files).append(item)
        return {"path": path, "directories": directories, "files": files}

    @define_tool(
        description="Analyze a file to get size, modification time, line count, and recommendations for reading",
        parameters={
            "type": "object",
            "properties": {
                "file_path": {"type": "string", "description": "Absolute path to the file"},
            },
            "required": ["file_path"],
        },
    )
    def analyze_file(file_path: str) -> dict[str, Any]:
        path = validate_path(bounds, file_path)
        stat = _require_file(path)
        result: dict[str, Any] = {
            "file_path": path,
            "size_bytes": stat.st_size,
            "size_human": format_file_size(stat.st_size),
            "modified": _modified(stat),
        }
        if stat.st_size < LINE_COUNT_LIMIT:
            with open(path, "rb") as f:
                result["line_count"] = f.read().count(b"\n") + 1
        if stat.st_size > MAX_READ_SIZE:
            result["warning"] = (
                f"This file is too large to read entirely ({stat.st_size / (1024 * 1024):.2f} MB). "
                "Use 'read_file_chunk' to read specific portions."
            )
            result["recommendation"] = (
                "Use 'read_file_chunk' with start_line and end_line parameters to read specific sections"
            )
        else:
            result["can_read_fully"] = True
        return result

    @define_tool(
        description=(
            "Read the entire content of a file within the project directories. "
            "For large files, provides a summary with beginning and end content."
        ),
        parameters={
            "type": "object",
            "properties": {
                "file_path": {"type": "string", "description": "Absolute path to the file"},
            },
            "required": ["file_path"],
        },
    )
    def read_file(file_path: str) -> str:
        path = validate_path(bounds, file_path)
        stat = _require_file(path)
        if stat.st_size <= MAX_READ_SIZE:
            with open(path, encoding="utf-8", errors="replace") as f:
                return f.read()
        return _summarize_large_file(path, stat.st_size)

    @define_tool(
        description=(
            "Read a specific portion of a file by line numbers. "
            "Useful for reading large files in manageable chunks."
        ),
        parameters={
            "type": "object",
            "properties": {
                "file_path": {"type": "string", "description": "Absolute path to the file"},
                "start_line": {
                    "type": "integer",
                    "description": "Starting line number (1-based). Default: 1",
                },
                "end_line": {
                    "type": "integer",
                    "description": "Ending line number (inclusive). If not specified, reads 1000 lines from start_line.",
                },
            },
            "required": ["file_path"],
        },
    )
    def read_file_chunk(
        file_path: str, start_line: Optional[int] = None, end_line: Optional[int] = None
    ) -> str:
        start = start_line if start_line and start_line > 0 else 1
        end = end_line if end_line and end_line > 0 else start + DEFAULT_CHUNK_LINES - 1
        if end < start:
            raise ValueError("end_line must be greater than or equal to start_line")

        path = validate_path(bounds, file_path)
        with open(path, encoding="utf-8", errors="replace") as f:
            all_lines = f.read().splitlines()
        total = len(all_lines)
        lines = all_lines[start - 1:end]
        if not lines:
            raise ValueError(f"no lines found in the specified range (file has {total} lines)")

        actual_end = start + len(lines) - 1
        text = f"File: {path}\nLines {start}-{actual_end} of {total}:\n" + "\n".join(lines)
        if actual_end < total:
            text += f"\n\n[{total - actual_end} more lines remaining]"
        return text

    @define_tool(
        description="Write content to a file within the project directories",
        parameters={
            "type": "object",
            "properties": {
                "file_path": {"type": "string", "description": "Absolute path to the file"},
                "content": {"type": "string", "description": "Content to write"},
            },
            "required": ["file_path", "content"],
        },
    )
    def write_file(file_path: str, content: str) -> str:
        path = validate_path(bounds, file_path)
        parent = os.path.dirname(path)
        if parent:
            os.makedirs(parent, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            f.write(content)
        return f"Successfully wrote {len(content.encode('utf-8'))} bytes to {path}"

    @define_tool(
        description="Rename or move a file within the project directories",
        parameters={
            "type": "object",
            "properties": {
                "old_path": {
                    "type": "string",
                    "description": f"Current absolute path of the file (e.g., {example}/old.txt)",
                },
                "new_path": {
                    "type": "string",
                    "description": f"New absolute path for the file (e.g., {example}/new.txt)",
                },
            },
            "required": ["old_path", "new_path"],
        },
    )
    def rename_file(old_path: str, new_path: str) -> str:
        try:
            source = validate_path(bounds, old_path)
        except PathValidationError as e:
            raise PathValidationError(f"old path validation failed: {e}", old_path) from e
        try:
            destination = validate_path(bounds, new_path)
        except PathValidationError as e:
            raise PathValidationError(f"new path validation failed: {e}", new_path) from e

        if not os.path.exists(source):
            raise FileNotFoundError(f"source file '{source}' does not exist")
        if os.path.exists(destination):
            raise FileExistsError(f"destination file '{destination}' already exists")
        parent = os.path.dirname(destination)
        if parent:
            os.makedirs(parent, exist_ok=True)
        os.rename(source, destination)
        return f"Successfully renamed file from '{source}' to '{destination}'"

    @define_tool(
        description="Search for lines matching a pattern in a file. Returns matching lines with line numbers.",
        parameters={
            "type": "object",
            "properties": {
                "file_path": {"type": "string", "description": "Absolute path to the file to search"},
                "pattern": {
                    "type": "string",
                    "description": "Pattern to search for (plain substring, or a regex when use_regex is set)",
                },
                "use_regex": {"type": "boolean", "description": "Whether to use regex matching (default: false)"},
                "ignore_case": {"type": "boolean", "description": "Whether to ignore case when matching (default: false)"},
                "context_lines": {
                    "type": "integer",
                    "description": "Number of context lines to show before and after matches (default: 0)",
                },
                "max_matches": {
                    "type": "integer",
                    "description": f"Maximum number of matches to return (default: {DEFAULT_MAX_MATCHES})",
                },
            },
            "required": ["file_path", "pattern"],
        },
    )
    def grep_file(
        file_path: str,
        pattern: str,
        use_regex: bool = False,
        ignore_case: bool = False,
        context_lines: int = 0,
        max_matches: int = 0,
    ) -> dict[str, Any]:
        limit = max_matches if max_matches and max_matches > 0 else DEFAULT_MAX_MATCHES
        context = max(context_lines or 0, 0)
        path = validate_path(bounds, file_path)
        regex = _compile(pattern, use_regex, ignore_case)

        with open(path, encoding="utf-8", errors="replace") as f:
            lines = f.read().splitlines()

        matches: list[dict[str, Any]] = []
        for index, text in enumerate(lines):
            if len(matches) >= limit:
                break
            if not regex.search(text):
                continue
            match: dict[str, Any] = {"line_number": index + 1, "line": text}
            if context:
                match["context_before"] = [
                    f"{i + 1}: {lines[i]}" for i in range(max(index - context, 0), index)
                ]
                match["context_after"] = [
                    f"{i + 1}: {lines[i]}" for i in range(index + 1, min(index + 1 + context, len(lines)))
                ]
            matches.append(match)

        if not matches:
            return {"file_path": path, "pattern": pattern, "matches": [], "message": "No matches found"}
        result: dict[str, Any] = {
            "file_path": path,
            "pattern": pattern,
            "total_matches": len(matches),
            "matches": matches,
        }
        if len(matches) == limit:
            result["warning"] = f"Results limited to {limit} matches"
        return result

    @define_tool(
        description="Replace all occurrences of a pattern in a file. Creates a backup before making changes.",
        parameters={
            "type": "object",
            "properties": {
                "file_path": {"type": "string", "description": "Absolute path to the file to modify"},
                "pattern": {
                    "type": "string",
                    "description": "Pattern to search for (plain substring, or a regex when use_regex is set)",
                },
                "replacement": {"type": "string", "description": "String to replace matches with"},
                "use_regex": {"type": "boolean", "description": "Whether to use regex matching (default: false)"},
                "ignore_case": {"type": "boolean", "description": "Whether to ignore case when matching (default: false)"},
                "create_backup": {
                    "type": "boolean",
                    "description": "Whether to create a backup file before replacing (default: true)",
                },
                "dry_run": {
                    "type": "boolean",
                    "description": "If true, only show what would be replaced without making changes (default: false)",
                },
            },
            "required": ["file_path", "pattern", "replacement"],
        },
    )
    def replace_in_file(
        file_path: str,
        pattern: str,
        replacement: str,
        use_regex: bool = False,
        ignore_case: bool = False,
        create_backup: Optional[bool] = None,
        dry_run: bool = False,
    ) -> dict[str, Any]:
        backup = create_backup is not False
        path = validate_path(bounds, file_path)
        regex = _compile(pattern, use_regex, ignore_case)
        with open(path, encoding="utf-8", newline="") as f:
            original = f.read()

        if use_regex:
            replaced, count = regex.subn(replacement, original)
        else:
            replaced, count = regex.subn(lambda _: replacement, original)

        summary: dict[str, Any] = {"file_path": path, "pattern": pattern, "replacement": replacement}
        if dry_run:
            return {
                **summary,
                "matches_found": count,
                "dry_run": True,
                "would_backup": backup,
                "size_before": len(original),
                "size_after": len(replaced),
                "size_difference": len(replaced) - len(original),
            }
        if count == 0:
            return {**summary, "matches_found": 0, "message": "No matches found, file unchanged"}

        backup_path = ""
        if backup:
            backup_path = _free_backup_path(path)
            with open(backup_path, "w", encoding="utf-8", newline="") as f:
                f.write(original)
        with open(path, "w", encoding="utf-8", newline="") as f:
            f.write(replaced)

        result = {
            **summary,
            "replacements": count,
            "size_before": len(original),
            "size_after": len(replaced),
            "size_difference": len(replaced) - len(original),
        }
        if backup_path:
            result["backup_path"] = backup_path
        return result

    return (
        ToolKit(name)
        .with_tool(list_directory)
        .with_tool(analyze_file)
        .with_tool(read_file)
        .with_tool(read_file_chunk)
        .with_tool(write_file)
        .with_tool(rename_file)
        .with_tool(grep_file)
        .with_tool(replace_in_file)
    )
