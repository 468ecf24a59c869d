"""
Tests for the built-in filesystem, shell and image kits.
"""

import asyncio
import base64
import json
import os

import httpx
import pytest

from magekit.config import ProjectBounds
from magekit.exceptions import PathValidationError
from magekit.models import Message, Role, ToolCall, ToolFunction
from magekit.toolkits import build_fs_kit, build_image_kit, build_shell_kit
from magekit.toolkits.fs import MAX_READ_SIZE, format_file_size
from magekit.toolkits.image import detect_raw_mime_type
from magekit.toolkits.shell import format_command_result, run_command

from conftest import completion_body


async def call_tool(kit, name, **arguments):
    message = Message(
        role=Role.ASSISTANT,
        tool_calls=[ToolCall(id="call-1", function=ToolFunction(name, json.dumps(arguments)))],
    )
    (outcome,) = await kit.dispatch(message)
    return outcome


@pytest.fixture
def project(tmp_path):
    root = tmp_path / "project"
    root.mkdir()
    (root / "notes.txt").write_text("one\ntwo\nthree\n")
    (root / "docs").mkdir()
    return root


@pytest.fixture
def bounds(project):
    return [ProjectBounds("proj", "test project", str(project))]


# ---------------------------------------------------------------------------
# Filesystem kit
# ---------------------------------------------------------------------------


class TestFsKit:
    def test_tool_names(self, bounds):
        assert build_fs_kit(bounds).tool_names == [
            "list_directory",
            "analyze_file",
            "read_file",
            "read_file_chunk",
            "write_file",
            "rename_file",
            "grep_file",
            "replace_in_file",
        ]

    def test_listing_description_names_roots(self, bounds, project):
        description = build_fs_kit(bounds).get_tools()[0]["function"]["description"]
        assert f"{project} (proj)" in description

    @pytest.mark.asyncio
    async def test_list_directory(self, bounds, project):
        outcome = await call_tool(build_fs_kit(bounds), "list_directory", directory_path=str(project))
        listing = json.loads(outcome.content)
        assert [d["name"] for d in listing["directories"]] == ["docs"]
        assert [f["name"] for f in listing["files"]] == ["notes.txt"]

    @pytest.mark.asyncio
    async def test_read_file(self, bounds, project):
        outcome = await call_tool(build_fs_kit(bounds), "read_file", file_path=str(project / "notes.txt"))
        assert outcome.content == "one\ntwo\nthree\n"

    @pytest.mark.asyncio
    async def test_read_large_file_is_summarised(self, bounds, project):
        big = project / "big.log"
        big.write_text("line of text\n" * (MAX_READ_SIZE // 13 + 100))
        outcome = await call_tool(build_fs_kit(bounds), "read_file", file_path=str(big))
        assert "too large to read entirely" in outcome.content
        assert "BEGINNING OF FILE" in outcome.content
        assert "read_file_chunk" in outcome.content

    @pytest.mark.asyncio
    async def test_read_file_chunk(self, bounds, project):
        outcome = await call_tool(
            build_fs_kit(bounds), "read_file_chunk", file_path=str(project / "notes.txt"), start_line=2, end_line=2
        )
        assert outcome.content == f"File: {project / 'notes.txt'}\nLines 2-2 of 3:\ntwo\n\n[1 more lines remaining]"

    @pytest.mark.asyncio
    async def test_read_file_chunk_bad_range(self, bounds, project):
        outcome = await call_tool(
            build_fs_kit(bounds), "read_file_chunk", file_path=str(project / "notes.txt"), start_line=5, end_line=2
        )
        assert outcome.is_error

    @pytest.mark.asyncio
    async def test_analyze_file(self, bounds, project):
        outcome = await call_tool(build_fs_kit(bounds), "analyze_file", file_path=str(project / "notes.txt"))
        info = json.loads(outcome.content)
        assert info["size_bytes"] == 14
        assert info["line_count"] == 4
        assert info["can_read_fully"] is True

    @pytest.mark.asyncio
    async def test_write_file_creates_directories(self, bounds, project):
        target = project / "out" / "result.txt"
        outcome = await call_tool(build_fs_kit(bounds), "write_file", file_path=str(target), content="héllo")
        assert outcome.content == f"Successfully wrote 6 bytes to {target}"
        assert target.read_text(encoding="utf-8") == "héllo"

    @pytest.mark.asyncio
    async def test_rename_file_into_new_directory(self, bounds, project):
        source, target = project / "notes.txt", project / "archive" / "notes-old.txt"
        outcome = await call_tool(build_fs_kit(bounds), "rename_file", old_path=str(source), new_path=str(target))
        assert outcome.content == f"Successfully renamed file from '{source}' to '{target}'"
        assert not source.exists()
        assert target.read_text() == "one\ntwo\nthree\n"

    @pytest.mark.asyncio
    async def test_rename_file_refuses_existing_destination(self, bounds, project):
        (project / "other.txt").write_text("keep me")
        outcome = await call_tool(
            build_fs_kit(bounds), "rename_file", old_path=str(project / "notes.txt"), new_path=str(project / "other.txt")
        )
        assert "already exists" in outcome.content
        assert (project / "other.txt").read_text() == "keep me"

    @pytest.mark.asyncio
    async def test_rename_file_outside_bounds(self, bounds, project, tmp_path):
        outcome = await call_tool(
            build_fs_kit(bounds), "rename_file", old_path=str(project / "notes.txt"), new_path=str(tmp_path / "x.txt")
        )
        assert outcome.content.startswith("Error: new path validation failed")

    @pytest.mark.asyncio
    async def test_grep_file(self, bounds, project):
        outcome = await call_tool(
            build_fs_kit(bounds), "grep_file", file_path=str(project / "notes.txt"), pattern="TWO", ignore_case=True,
            context_lines=1,
        )
        result = json.loads(outcome.content)
        assert result["total_matches"] == 1
        assert result["matches"] == [
            {"line_number": 2, "line": "two", "context_before": ["1: one"], "context_after": ["3: three"]}
        ]

    @pytest.mark.asyncio
    async def test_grep_file_regex_and_limit(self, bounds, project):
        outcome = await call_tool(
            build_fs_kit(bounds), "grep_file", file_path=str(project / "notes.txt"), pattern="^t", use_regex=True,
            max_matches=1,
        )
        result = json.loads(outcome.content)
        assert [m["line"] for m in result["matches"]] == ["two"]
        assert result["warning"] == "Results limited to 1 matches"

    @pytest.mark.asyncio
    async def test_grep_file_no_match_and_bad_regex(self, bounds, project):
        kit = build_fs_kit(bounds)
        path = str(project / "notes.txt")
        none = json.loads((await call_tool(kit, "grep_file", file_path=path, pattern="zzz")).content)
        assert none["message"] == "No matches found"
        bad = await call_tool(kit, "grep_file", file_path=path, pattern="(", use_regex=True)
        assert "invalid regex pattern" in bad.content

    @pytest.mark.asyncio
    async def test_replace_in_file_with_backup(self, bounds, project):
        path = project / "notes.txt"
        outcome = await call_tool(build_fs_kit(bounds), "replace_in_file", file_path=str(path), pattern="t", replacement="T")
        result = json.loads(outcome.content)
        assert result["replacements"] == 2
        assert result["backup_path"] == f"{path}.bak"
        assert path.read_text() == "one\nTwo\nThree\n"
        assert (project / "notes.txt.bak").read_text() == "one\ntwo\nthree\n"

    @pytest.mark.asyncio
    async def test_replace_in_file_ignore_case_is_literal(self, bounds, project):
        path = project / "notes.txt"
        path.write_text("a.b A.B axb\n")
        outcome = await call_tool(
            build_fs_kit(bounds), "replace_in_file", file_path=str(path), pattern="a.b", replacement=r"\1",
            ignore_case=True, create_backup=False,
        )
        assert json.loads(outcome.content)["replacements"] == 2
        assert path.read_text() == "\\1 \\1 axb\n"
        assert not (project / "notes.txt.bak").exists()

    @pytest.mark.asyncio
    async def test_replace_in_file_regex_and_dry_run(self, bounds, project):
        path = project / "notes.txt"
        kit = build_fs_kit(bounds)
        dry = json.loads(
            (await call_tool(kit, "replace_in_file", file_path=str(path), pattern=r"(\w+)e\b", replacement=r"\1E",
                             use_regex=True, dry_run=True)).content
        )
        assert dry["matches_found"] == 2
        assert dry["dry_run"] is True
        assert path.read_text() == "one\ntwo\nthree\n"

        await call_tool(kit, "replace_in_file", file_path=str(path), pattern=r"(\w+)e\b", replacement=r"\1E",
                        use_regex=True, create_backup=False)
        assert path.read_text() == "onE\ntwo\nthreE\n"

    @pytest.mark.asyncio
    async def test_replace_in_file_second_backup_gets_suffix(self, bounds, project):
        path = project / "notes.txt"
        (project / "notes.txt.bak").write_text("older")
        outcome = await call_tool(build_fs_kit(bounds), "replace_in_file", file_path=str(path), pattern="one", replacement="1")
        assert json.loads(outcome.content)["backup_path"] == f"{path}.bak1"

    @pytest.mark.asyncio
    async def test_paths_outside_bounds_fail(self, bounds, tmp_path):
        outcome = await call_tool(build_fs_kit(bounds), "read_file", file_path=str(tmp_path / "x.txt"))
        assert isinstance(outcome.error, PathValidationError)
        assert outcome.content.startswith("Error: ")

    @pytest.mark.parametrize(
        "size,expected",
        [(512, "512 bytes"), (2048, "2.00 KB"), (3 * 1024 * 1024, "3.00 MB"), (1024**3, "1.00 GB")],
    )
    def test_format_file_size(self, size, expected):
        assert format_file_size(size) == expected


# ---------------------------------------------------------------------------
# Shell kit
# ---------------------------------------------------------------------------


class TestFormatCommandResult:
    def test_success(self):
        assert format_command_result({"stdout": "hi\n", "stderr": "", "exit_code": 0}) == "hi\n"

    def test_failure(self):
        text = format_command_result({"stdout": "", "stderr": "boom", "exit_code": 2})
        assert text == "\nStderr: boom\nExit code: 2"

    def test_other_mapping(self):
        assert format_command_result({"working_directory": "/p", "contents": "a"}) == "working_directory: /p\ncontents: a"


class TestShellKit:
    @pytest.mark.asyncio
    async def test_run_command(self, tmp_path):
        result = await run_command("echo hello", str(tmp_path))
        assert result["stdout"] == "hello\n"
        assert result["exit_code"] == 0
        assert result["command"] == "echo hello"

    @pytest.mark.asyncio
    async def test_run_command_env_and_exit_code(self):
        result = await run_command('echo "$MAGE_VAR"; exit 3', env_vars={"MAGE_VAR": "set"})
        assert result["stdout"] == "set\n"
        assert result["exit_code"] == 3

    @pytest.mark.asyncio
    async def test_run_command_timeout(self):
        result = await run_command("sleep 5", timeout=0.2)
        assert result["exit_code"] == -1
        assert "timed out" in result["stderr"]

    @pytest.mark.asyncio
    async def test_cancel_kills_process(self, tmp_path):
        pid_file = tmp_path / "pid"
        task = asyncio.create_task(run_command(f"echo $$ > {pid_file}; exec sleep 30"))
        for _ in range(100):
            if pid_file.exists() and pid_file.read_text().strip():
                break
            await asyncio.sleep(0.05)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        with pytest.raises(ProcessLookupError):
            os.kill(int(pid_file.read_text()), 0)

    @pytest.mark.asyncio
    async def test_execute_command_defaults_to_first_bound(self, bounds, project):
        outcome = await call_tool(build_shell_kit(bounds), "execute_command", command="pwd")
        assert outcome.content.strip() == str(project)

    @pytest.mark.asyncio
    async def test_execute_command_rejects_outside_working_dir(self, bounds, tmp_path):
        outcome = await call_tool(
            build_shell_kit(bounds), "execute_command", command="ls", working_dir=str(tmp_path)
        )
        assert isinstance(outcome.error, PathValidationError)

    @pytest.mark.asyncio
    async def test_get_working_directory(self, bounds, project):
        outcome = await call_tool(build_shell_kit(bounds), "get_working_directory")
        assert outcome.content == f"working_directory: {project}\ncontents: docs, notes.txt"


# ---------------------------------------------------------------------------
# Image kit
# ---------------------------------------------------------------------------


class TestImageKit:
    def test_detect_raw_mime_type(self):
        assert detect_raw_mime_type("data:image/png;base64,AAA") == "image/png"
        assert detect_raw_mime_type("AAAA") == "image/jpeg"

    @pytest.mark.asyncio
    async def test_analyze_file(self, llm, bounds, project):
        image = project / "cat.png"
        image.write_bytes(b"\x89PNG\r\n\x1a\nfake")
        llm.reply("A cat.")
        kit = build_image_kit(llm.client(), "vision-model", bounds)

        outcome = await call_tool(kit, "analyze_image", variant="file", target=str(image), query="What is it?")

        assert outcome.content == "A cat."
        body = llm.bodies[0]
        assert body["model"] == "vision-model"
        assert body["messages"][0]["role"] == "system"
        text, picture = body["messages"][1]["content"]
        assert text == {"type": "text", "text": "What is it?"}
        encoded = base64.b64encode(image.read_bytes()).decode()
        assert picture["image_url"] == {"url": f"data:image/png;base64,{encoded}", "detail": "high"}

    @pytest.mark.asyncio
    async def test_analyze_raw(self, llm):
        llm.reply("Noise.")
        kit = build_image_kit(llm.client(), "vision-model", [])
        outcome = await call_tool(kit, "analyze_image", variant="raw", target="QUJD", query="describe", max_tokens=99)
        assert outcome.content == "Noise."
        body = llm.bodies[0]
        assert body["max_tokens"] == 99
        assert body["messages"][1]["content"][1]["image_url"]["url"] == "data:image/jpeg;base64,QUJD"

    @pytest.mark.asyncio
    @pytest.mark.parametrize("target", ["~/pic.png", "pic.png", "./pic.png"])
    async def test_file_without_bounds_still_requires_absolute_path(self, llm, target):
        kit = build_image_kit(llm.client(), "vision-model", [])
        outcome = await call_tool(kit, "analyze_image", variant="file", target=target, query="q")
        assert isinstance(outcome.error, PathValidationError)
        assert llm.requests == []

    @pytest.mark.asyncio
    async def test_invalid_variant(self, llm):
        kit = build_image_kit(llm.client(), "vision-model", [])
        outcome = await call_tool(kit, "analyze_image", variant="url", target="x", query="q")
        assert outcome.is_error
        assert "invalid variant" in outcome.content
        assert llm.requests == []

    @pytest.mark.asyncio
    async def test_vision_failure_becomes_error_outcome(self, llm):
        llm.then(httpx.Response(500, text="down"))
        kit = build_image_kit(llm.client(), "vision-model", [])
        outcome = await call_tool(kit, "analyze_image", variant="raw", target="QUJD", query="q")
        assert outcome.is_error
