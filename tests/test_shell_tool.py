"""Shell tool tests. Real subprocesses through /bin/sh."""

import subprocess
from unittest.mock import patch

import pytest

from aether.policy import BINARY_OUTPUT_ERROR
from aether.tools.shell import ShellCommandTool, normalize_command


class TestNormalizeCommand:
    def test_plain_command(self):
        assert normalize_command("  ls -la ") == "ls -la"

    def test_strips_fences(self):
        assert normalize_command("```bash\nls -F /tmp\n```") == "ls -F /tmp"
        assert normalize_command("```\necho hi\n```") == "echo hi"

    def test_unwraps_json_command(self):
        assert normalize_command('{"command": "ls /tmp"}') == "ls /tmp"

    def test_keeps_brace_commands(self):
        assert normalize_command("{ echo a; echo b; }") == "{ echo a; echo b; }"


@pytest.fixture
def shell_tool():
    return ShellCommandTool(shell="/bin/sh", timeout_seconds=10, output_limit=1000)


@pytest.mark.asyncio
async def test_success_returns_stdout(shell_tool):
    outcome = await shell_tool.execute({"command": "printf 'a.txt\\nb.txt'"})
    assert outcome.success
    assert outcome.data == "a.txt\nb.txt"


@pytest.mark.asyncio
async def test_nonzero_exit_reports_stderr(shell_tool):
    outcome = await shell_tool.execute({"command": "echo broken >&2; exit 3"})
    assert not outcome.success
    assert outcome.error == "Exit Code 3: broken\n"


@pytest.mark.asyncio
async def test_nonzero_exit_falls_back_to_stdout(shell_tool):
    outcome = await shell_tool.execute({"command": "echo only-stdout; exit 1"})
    assert outcome.error == "Exit Code 1: only-stdout\n"


@pytest.mark.asyncio
async def test_cwd_is_honored(shell_tool, tmp_path):
    (tmp_path / "marker.txt").write_text("x")
    outcome = await shell_tool.execute({"command": "ls", "cwd": str(tmp_path)})
    assert outcome.success
    assert "marker.txt" in outcome.data


@pytest.mark.asyncio
async def test_missing_cwd_fails(shell_tool, tmp_path):
    outcome = await shell_tool.execute({"command": "ls", "cwd": str(tmp_path / "nope")})
    assert not outcome.success
    assert "does not exist" in outcome.error


@pytest.mark.asyncio
async def test_empty_command(shell_tool):
    outcome = await shell_tool.execute({"command": "   "})
    assert outcome.error == "No command provided."


@pytest.mark.asyncio
async def test_fenced_command_is_normalized(shell_tool):
    outcome = await shell_tool.execute({"command": "```sh\necho fenced\n```"})
    assert outcome.data == "fenced\n"


@pytest.mark.asyncio
async def test_output_is_truncated():
    tool = ShellCommandTool(shell="/bin/sh", output_limit=10)
    outcome = await tool.execute({"command": "printf '%0100d' 0"})
    assert outcome.data.startswith("0" * 10)
    assert "[...Output Truncated. Total length: 100 chars...]" in outcome.data


@pytest.mark.asyncio
async def test_binary_output_is_rejected(shell_tool):
    outcome = await shell_tool.execute({"command": "printf 'a\\000b'"})
    assert not outcome.success
    assert outcome.error == BINARY_OUTPUT_ERROR


@pytest.mark.asyncio
async def test_timeout_is_a_failure(shell_tool):
    with patch("aether.tools.shell.subprocess.run", side_effect=subprocess.TimeoutExpired("sleep", 10)):
        outcome = await shell_tool.execute({"command": "sleep 100"})
    assert not outcome.success
    assert "timed out" in outcome.error


@pytest.mark.asyncio
async def test_missing_shell_raises():
    tool = ShellCommandTool(shell="/nonexistent/shell")
    with pytest.raises(OSError):
        await tool.execute({"command": "ls"})
