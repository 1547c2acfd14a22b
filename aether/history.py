"""
Orchestration History

Each tool invocation appends one entry rendered as

    Action: <tool> <canonical json input>
    Observation: Success. Output: <data>
or
    Action: <tool> <canonical json input>
    Observation: Failed. Error: <error>

Loop/recovery notes are single lines:

    System: <message>

The rendered text is both the model's grounding for the next iteration and
the source of loop detection: an action whose signature matches a recorded
entry has already run.
"""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from aether.policy import HISTORY_ENTRY_LIMIT, HISTORY_TRUNCATION_MARKER

OBSERVATION_PREFIX = "Observation: "
SUCCESS_OUTPUT_PREFIX = "Output: "


def action_signature(tool_name: str, tool_input: Dict[str, Any]) -> str:
    """Canonical, exact-match signature of a proposed action."""
    return f"Action: {tool_name} {json.dumps(tool_input, sort_keys=True, ensure_ascii=False)}"


def truncate_entry(text: str, limit: int = HISTORY_ENTRY_LIMIT) -> str:
    """
    Cap an entry at `limit` characters plus the truncation marker.

    Idempotent: truncate_entry(truncate_entry(t)) == truncate_entry(t), since
    the first `limit` characters of a truncated entry are the original prefix.
    """
    if len(text) <= limit:
        return text
    return text[:limit] + HISTORY_TRUNCATION_MARKER


@dataclass(frozen=True)
class HistoryEntry:
    signature: Optional[str]
    observation: str
    success: bool = False

    @classmethod
    def from_outcome(cls, tool_name: str, tool_input: Dict[str, Any], outcome) -> "HistoryEntry":
        if outcome.success:
            observation = f"Success. {SUCCESS_OUTPUT_PREFIX}{outcome.data or ''}"
        else:
            observation = f"Failed. Error: {outcome.error or 'unknown error'}"
        return cls(
            signature=action_signature(tool_name, tool_input),
            observation=observation,
            success=outcome.success,
        )

    @classmethod
    def from_exception(cls, tool_name: str, tool_input: Dict[str, Any], error: str) -> "HistoryEntry":
        return cls(
            signature=action_signature(tool_name, tool_input),
            observation=f"Failed. Error: {error}",
            success=False,
        )

    @classmethod
    def system(cls, message: str) -> "HistoryEntry":
        return cls(signature=None, observation=message, success=False)

    @property
    def output(self) -> Optional[str]:
        """Tool output of a successful entry."""
        if not self.success:
            return None
        _, _, output = self.observation.partition(SUCCESS_OUTPUT_PREFIX)
        return output

    def render(self) -> str:
        if self.signature is None:
            return f"System: {self.observation}"
        return f"{self.signature}\n{OBSERVATION_PREFIX}{self.observation}"


def render_history(entries: List[HistoryEntry], limit: int = HISTORY_ENTRY_LIMIT) -> List[str]:
    """Rendered entries, each truncated independently."""
    return [truncate_entry(entry.render(), limit) for entry in entries]


def find_previous_action(entries: List[HistoryEntry], signature: str) -> Optional[HistoryEntry]:
    for entry in entries:
        if entry.signature == signature:
            return entry
    return None


def last_successful_output(entries: List[HistoryEntry]) -> Optional[str]:
    for entry in reversed(entries):
        if entry.success:
            return entry.output
    return None
