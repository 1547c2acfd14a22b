"""
RAM-only chat history for the gateway's chat turns.

Contract:
- No disk writes.
- Fixed-size ring buffer; oldest turns are evicted first.
- Sent as chat context to the language model only (not facts).
- Cleared on session activation.
"""

from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, List
import logging

logger = logging.getLogger(__name__)


@dataclass
class ChatTurn:
    role: str
    content: str


class ConversationBuffer:
    """
    Bounded chat continuity.

    This is NOT memory. This is ephemeral context for follow-up questions.
    """

    def __init__(self, max_turns: int = 12):
        self.max_turns = max(1, int(max_turns))
        self._turns: Deque[ChatTurn] = deque(maxlen=self.max_turns)

    def clear(self, reason: str = "unspecified") -> None:
        if self._turns:
            logger.info(f"[Chat] History cleared: {reason}")
        self._turns.clear()

    def add(self, role: str, content: str) -> None:
        """Add a turn; empty content is skipped."""
        if not content:
            return
        self._turns.append(ChatTurn(role=role, content=content))

    def as_messages(self) -> List[Dict[str, str]]:
        """Turns in chat-API message form (role/content), oldest first."""
        return [{"role": turn.role, "content": turn.content} for turn in self._turns]
