"""Capability providers available to the orchestration loop."""

from aether.tools.base import FieldSpec, Tool, ToolDescriptor, ToolOutcome
from aether.tools.registry import ToolRegistry, build_default_registry
from aether.tools.shell import ShellCommandTool, normalize_command

__all__ = [
    "FieldSpec",
    "Tool",
    "ToolDescriptor",
    "ToolOutcome",
    "ToolRegistry",
    "build_default_registry",
    "ShellCommandTool",
    "normalize_command",
]
