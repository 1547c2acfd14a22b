"""
Tool Abstraction

A tool is a named unit of executable behavior with a declared input shape.
The orchestrator picks tools by name, asks a model to produce their input,
and reads back a ToolOutcome. Tools know nothing about the orchestrator.

Contract:
- execute() never raises for expected failures (non-zero exit, bad input);
  those come back as ToolOutcome(success=False, error=...)
- only truly exceptional conditions (the process cannot be spawned) raise
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class FieldSpec:
    """One field of a tool's input shape."""
    name: str
    type: str
    description: str
    required: bool = True

    def to_dict(self) -> Dict[str, Any]:
        rendered = {"type": self.type, "description": self.description}
        if not self.required:
            rendered["required"] = False
        return rendered


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str
    input_shape: Tuple[FieldSpec, ...] = ()
    preferred_model: Optional[str] = None

    def schema(self) -> Dict[str, Dict[str, Any]]:
        return {spec.name: spec.to_dict() for spec in self.input_shape}


@dataclass
class ToolOutcome:
    success: bool
    data: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def ok(cls, data: str) -> "ToolOutcome":
        return cls(success=True, data=data)

    @classmethod
    def failed(cls, error: str) -> "ToolOutcome":
        return cls(success=False, error=error)


class Tool(ABC):
    """Base class for capability providers."""

    name: str = ""
    description: str = ""
    input_shape: Tuple[FieldSpec, ...] = ()
    preferred_model: Optional[str] = None

    @property
    def descriptor(self) -> ToolDescriptor:
        return ToolDescriptor(
            name=self.name,
            description=self.description,
            input_shape=tuple(self.input_shape),
            preferred_model=self.preferred_model,
        )

    @abstractmethod
    async def execute(self, tool_input: Dict[str, Any]) -> ToolOutcome:
        """
        Run the tool.

        Args:
            tool_input: Parsed input matching input_shape

        Returns:
            ToolOutcome describing success or an expected failure

        Raises:
            OSError: If the underlying process cannot be spawned
        """
        pass
