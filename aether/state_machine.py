"""
STATE MACHINE FOR THE CONVERSATION SESSION

Control flow: IDLE → LISTENING → THINKING → SPEAKING → IDLE

States:
- IDLE: Waiting for the wake phrase (or a typed command)
- LISTENING: Collecting the spoken command
- THINKING: Orchestrator or chat reply in progress
- SPEAKING: Synthesizing the reply

Allowed Transitions (ONLY THESE):
- IDLE → LISTENING        (wake phrase / explicit activation)
- IDLE → THINKING         (typed command, text-only flow)
- LISTENING → THINKING    (silence timer fired with a long enough command)
- LISTENING → IDLE        (inactivity, too-short command, stop listening)
- THINKING → SPEAKING     (spoken reply starts)
- THINKING → IDLE         (text-only delivery)
- THINKING → LISTENING    (text-only delivery, continue listening)
- SPEAKING → IDLE         (reply finished)
- SPEAKING → LISTENING    (reply finished, continue listening)

Core principles:
- One state at a time
- All state changes logged
- Invalid transitions are fatal (RuntimeError), never silently ignored
"""

import logging
from enum import Enum
from typing import Callable, Dict, Optional, Set

from aether.instrumentation import log_event

logger = logging.getLogger(__name__)


class ConversationState(Enum):
    IDLE = "IDLE"
    LISTENING = "LISTENING"
    THINKING = "THINKING"
    SPEAKING = "SPEAKING"


_VALID_TRANSITIONS: Dict[ConversationState, Set[ConversationState]] = {
    ConversationState.IDLE: {ConversationState.LISTENING, ConversationState.THINKING},
    ConversationState.LISTENING: {ConversationState.THINKING, ConversationState.IDLE},
    ConversationState.THINKING: {
        ConversationState.SPEAKING,
        ConversationState.IDLE,
        ConversationState.LISTENING,
    },
    ConversationState.SPEAKING: {ConversationState.IDLE, ConversationState.LISTENING},
}

StateChangeCallback = Callable[[ConversationState, ConversationState], None]


class StateMachine:
    """
    Deterministic state holder for the conversation session.

    The session decides *when* to move; this class only validates and
    records the move and notifies the listener.
    """

    def __init__(self, on_state_change: Optional[StateChangeCallback] = None):
        self._current_state = ConversationState.IDLE
        self._on_state_change = on_state_change
        logger.info(f"StateMachine initialized: {self._current_state.value}")

    @property
    def current_state(self) -> ConversationState:
        return self._current_state

    def transition(self, new_state: ConversationState) -> None:
        """
        Move to new_state.

        Raises:
            RuntimeError: Transition not in the allowed table
        """
        if not self.is_valid_transition(self._current_state, new_state):
            error_msg = f"Invalid transition: {self._current_state.value} -> {new_state.value}"
            logger.error(error_msg)
            raise RuntimeError(error_msg)

        old_state = self._current_state
        self._current_state = new_state
        log_event(f"STATE {old_state.value}->{new_state.value}", stage="session")

        if self._on_state_change:
            self._on_state_change(old_state, new_state)

    @staticmethod
    def is_valid_transition(old: ConversationState, new: ConversationState) -> bool:
        return new in _VALID_TRANSITIONS.get(old, set())

    # ========================================================================
    # STATE PREDICATES
    # ========================================================================

    @property
    def is_idle(self) -> bool:
        return self._current_state == ConversationState.IDLE

    @property
    def is_listening(self) -> bool:
        return self._current_state == ConversationState.LISTENING

    @property
    def is_thinking(self) -> bool:
        return self._current_state == ConversationState.THINKING

    @property
    def is_speaking(self) -> bool:
        return self._current_state == ConversationState.SPEAKING

    def __repr__(self) -> str:
        return f"StateMachine(state={self._current_state.value})"
