"""
Tool Registry

Holds the capability providers available to the orchestrator.
Absence = denial: a tool that is not registered cannot be invoked.

describe_all() renders the catalog used verbatim inside routing prompts:

    - Name: execute_bash
      Description: Executes a bash command or script. ...
      Schema: {"command": {"type": "string", "description": "..."}}
"""

import json
import logging
from typing import Dict, List, Optional

from aether.tools.base import Tool

logger = logging.getLogger(__name__)


class ToolRegistry:
    """Name -> Tool map. Registration overwrites by name."""

    def __init__(self, tools: Optional[List[Tool]] = None):
        self._tools: Dict[str, Tool] = {}
        for tool in tools or []:
            self.register(tool)

    def register(self, tool: Tool) -> None:
        if not tool.name:
            raise ValueError("Tool must declare a name")
        if tool.name in self._tools:
            logger.info(f"[Registry] Replacing tool: {tool.name}")
        self._tools[tool.name] = tool

    def resolve(self, name: Optional[str]) -> Optional[Tool]:
        if not name:
            return None
        return self._tools.get(name)

    def names(self) -> List[str]:
        return list(self._tools.keys())

    def describe_all(self) -> str:
        """Render name, description and schema for every registered tool."""
        blocks = []
        for tool in self._tools.values():
            descriptor = tool.descriptor
            schema = descriptor.schema() or "object"
            blocks.append(
                f"- Name: {descriptor.name}\n"
                f"  Description: {descriptor.description}\n"
                f"  Schema: {json.dumps(schema)}"
            )
        return "\n\n".join(blocks)


def build_default_registry(shell: Optional[str] = None, **shell_options) -> ToolRegistry:
    """Registry with the built-in tools (currently the shell tool)."""
    from aether.tools.shell import ShellCommandTool

    return ToolRegistry([ShellCommandTool(shell=shell, **shell_options)])
