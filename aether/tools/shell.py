"""
Shell Command Tool ("execute_bash")

Runs one shell command string through `<shell> -c` and reports the result.

Input normalization (model output is noisy):
- Markdown code fences are stripped (```bash ... ```)
- A command accidentally wrapped in a JSON object ({"command": "..."})
  is unwrapped

Result mapping:
- exit code 0      -> success, stdout as data (truncated at output_limit)
- exit code != 0   -> failure, "Exit Code N: <stderr or stdout>"
- undecodable/binary output -> failure with an actionable message
- timeout          -> failure
- spawn failure (missing shell, permission) -> OSError propagates
"""

import asyncio
import json
import logging
import os
import re
import subprocess
from typing import Any, Dict, Optional

from aether.config import default_shell
from aether.instrumentation import log_event
from aether.policy import (
    BINARY_OUTPUT_ERROR,
    TOOL_OUTPUT_LIMIT,
    TOOL_TIMEOUT_SECONDS,
    TOOL_WATCHDOG_SECONDS,
)
from aether.tools.base import FieldSpec, Tool, ToolOutcome
from aether.watchdog import Watchdog

logger = logging.getLogger(__name__)

_FENCE_OPEN = re.compile(r"^```[\w-]*[ \t]*\n?")
_FENCE_CLOSE = re.compile(r"\n?```\s*$")
_JSON_COMMAND_KEY = re.compile(r'"command"\s*:')


def normalize_command(raw: str) -> str:
    """
    Strip code fences and unwrap a JSON-wrapped command.

    Examples:
        "```bash\\nls -F\\n```"          -> "ls -F"
        '{"command": "ls /tmp"}'         -> "ls /tmp"
        "ls -la"                         -> "ls -la"
    """
    command = raw.strip()
    command = _FENCE_OPEN.sub("", command)
    command = _FENCE_CLOSE.sub("", command)
    command = command.strip()

    if command.startswith("{") and _JSON_COMMAND_KEY.search(command):
        try:
            parsed = json.loads(command)
        except json.JSONDecodeError:
            return command
        if isinstance(parsed, dict):
            inner = parsed.get("command")
            if isinstance(inner, str) and inner.strip():
                return inner.strip()
    return command


def _decode(data: bytes) -> str:
    if b"\x00" in data:
        index = data.index(b"\x00")
        raise UnicodeDecodeError("utf-8", data, index, index + 1, "NUL byte in output")
    return data.decode("utf-8")


class ShellCommandTool(Tool):
    name = "execute_bash"
    description = (
        "Executes a bash command or script. Use for file operations, searching, "
        "and system tasks."
    )
    input_shape = (
        FieldSpec("command", "string", "The bash command or script to execute."),
        FieldSpec(
            "cwd",
            "string",
            "The working directory for execution. Defaults to workspace root.",
            required=False,
        ),
    )

    def __init__(
        self,
        shell: Optional[str] = None,
        timeout_seconds: float = TOOL_TIMEOUT_SECONDS,
        output_limit: int = TOOL_OUTPUT_LIMIT,
        default_cwd: Optional[str] = None,
        preferred_model: Optional[str] = None,
    ):
        self.shell = shell or default_shell()
        self.timeout_seconds = timeout_seconds
        self.output_limit = max(1, int(output_limit))
        self.default_cwd = default_cwd
        self.preferred_model = preferred_model

    async def execute(self, tool_input: Dict[str, Any]) -> ToolOutcome:
        command = tool_input.get("command")
        if not isinstance(command, str) or not command.strip():
            return ToolOutcome.failed("No command provided.")

        clean_command = normalize_command(command)
        if not clean_command:
            return ToolOutcome.failed("No command provided.")

        cwd = tool_input.get("cwd") or self.default_cwd
        if cwd:
            cwd = os.path.expanduser(str(cwd))
            if not os.path.isdir(cwd):
                return ToolOutcome.failed(f"Working directory does not exist: {cwd}")

        logger.info(f"[ShellTool] Executing: {clean_command} in {cwd or 'default'}")
        log_event("TOOL_EXEC_START", stage="tool")

        loop = asyncio.get_running_loop()
        with Watchdog("TOOL execute_bash", TOOL_WATCHDOG_SECONDS, stage="tool"):
            try:
                completed = await loop.run_in_executor(None, self._run, clean_command, cwd)
            except subprocess.TimeoutExpired:
                logger.warning(f"[ShellTool] Timed out after {self.timeout_seconds}s: {clean_command}")
                return ToolOutcome.failed(
                    f"Execution failed: command timed out after {self.timeout_seconds}s"
                )

        log_event(f"TOOL_EXEC_DONE rc={completed.returncode}", stage="tool")

        try:
            stdout = _decode(completed.stdout)
            stderr = _decode(completed.stderr)
        except UnicodeDecodeError:
            logger.warning(f"[ShellTool] Undecodable output from: {clean_command}")
            return ToolOutcome.failed(BINARY_OUTPUT_ERROR)

        if completed.returncode == 0:
            return ToolOutcome.ok(self._truncate(stdout))

        detail = stderr if stderr.strip() else stdout
        return ToolOutcome.failed(f"Exit Code {completed.returncode}: {self._truncate(detail)}")

    def _run(self, command: str, cwd: Optional[str]) -> subprocess.CompletedProcess:
        # OSError (missing shell) propagates to the orchestrator
        return subprocess.run(
            [self.shell, "-c", command],
            cwd=cwd,
            stdin=subprocess.DEVNULL,
            capture_output=True,
            timeout=self.timeout_seconds,
        )

    def _truncate(self, text: str) -> str:
        if len(text) <= self.output_limit:
            return text
        return (
            text[: self.output_limit]
            + f"\n\n[...Output Truncated. Total length: {len(text)} chars...]"
        )
