"""
Conversation Session

Gates voice and text input in front of the orchestrator.

Flow:
    IDLE --wake phrase--> LISTENING --silence timer--> THINKING --> SPEAKING --> IDLE
                              |                            |
                              +--inactivity / too short----+--> IDLE (text-only)

Guards:
- busy flag: while set, every speech event is dropped (thinking, speaking,
  acknowledging, echo cool-off). This is what keeps the assistant from
  transcribing its own voice.
- timers: one TimerTable slot per window; each transition cancels the
  windows it invalidates.
- failures inside the thinking phase never leave the session in THINKING.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from typing import Callable, Deque, List, Optional, Tuple

from aether import prompts
from aether.config import Config, get_model
from aether.instrumentation import log_event
from aether.orchestrator import AgentAlreadyRunningError, Step
from aether.policy import (
    BUSY_REPLY,
    ECHO_COOLOFF_SECONDS,
    ERROR_REPLY,
    INACTIVITY_TIMEOUT_SECONDS,
    MIN_COMMAND_LENGTH,
    SILENCE_TIMEOUT_SECONDS,
    SYNTHESIS_WATCHDOG_SECONDS,
)
from aether.speech import SilentSynthesizer, SpeechEvent, SpeechInput, SpeechSynthesizer
from aether.state_machine import ConversationState, StateMachine
from aether.timers import TimerPurpose, TimerTable

logger = logging.getLogger(__name__)

ROUTE_TASK = "TASK"
ROUTE_CHAT = "CHAT"
_WAKE_SEPARATORS = " ,.!?;:-"


def _normalize_for_wake(text: str) -> Tuple[str, List[int]]:
    """Lower-case text with separator runs collapsed to one space, plus each char's index in text."""
    chars: List[str] = []
    offsets: List[int] = []
    for index, char in enumerate(text):
        if char in _WAKE_SEPARATORS or char.isspace():
            if chars and chars[-1] != " ":
                chars.append(" ")
                offsets.append(index)
            continue
        for lowered in char.lower():
            chars.append(lowered)
            offsets.append(index)
    if chars and chars[-1] == " ":
        chars.pop()
        offsets.pop()
    return "".join(chars), offsets


@dataclass
class SessionSettings:
    wake_phrases: List[str] = field(default_factory=lambda: ["hey sam"])
    inactivity_timeout_seconds: float = INACTIVITY_TIMEOUT_SECONDS
    silence_timeout_seconds: float = SILENCE_TIMEOUT_SECONDS
    echo_cooloff_seconds: float = ECHO_COOLOFF_SECONDS
    synthesis_watchdog_seconds: float = SYNTHESIS_WATCHDOG_SECONDS
    min_command_length: int = MIN_COMMAND_LENGTH
    acknowledgment: str = "Yes?"
    greeting: str = ""
    route_mode: str = "auto"
    continue_listening: bool = False
    message_window: int = 50

    @classmethod
    def from_config(cls, config: Config) -> "SessionSettings":
        defaults = cls()
        return cls(
            wake_phrases=list(config.get("session.wake_phrases", defaults.wake_phrases)),
            inactivity_timeout_seconds=float(
                config.get("session.inactivity_timeout_seconds", defaults.inactivity_timeout_seconds)
            ),
            silence_timeout_seconds=float(
                config.get("session.silence_timeout_seconds", defaults.silence_timeout_seconds)
            ),
            echo_cooloff_seconds=float(
                config.get("session.echo_cooloff_seconds", defaults.echo_cooloff_seconds)
            ),
            synthesis_watchdog_seconds=float(
                config.get("session.synthesis_watchdog_seconds", defaults.synthesis_watchdog_seconds)
            ),
            min_command_length=int(config.get("session.min_command_length", defaults.min_command_length)),
            acknowledgment=config.get("session.acknowledgment", defaults.acknowledgment) or "",
            greeting=config.get("session.greeting", defaults.greeting) or "",
            route_mode=str(config.get("session.route_mode", defaults.route_mode)).lower(),
            continue_listening=bool(config.get("session.continue_listening", defaults.continue_listening)),
            message_window=int(config.get("session.message_window", defaults.message_window)),
        )


@dataclass
class Message:
    role: str
    content: str


class ConversationSession:
    def __init__(
        self,
        orchestrator,
        gateway,
        synthesizer: Optional[SpeechSynthesizer] = None,
        speech_input: Optional[SpeechInput] = None,
        settings: Optional[SessionSettings] = None,
        config: Optional[Config] = None,
        on_step: Optional[Callable[[Step], None]] = None,
        on_status: Optional[Callable[[str], None]] = None,
        timers: Optional[TimerTable] = None,
    ):
        self.orchestrator = orchestrator
        self.gateway = gateway
        self.synthesizer = synthesizer or SilentSynthesizer()
        self.speech_input = speech_input
        self.settings = settings or SessionSettings()
        self.config = config
        self.on_step = on_step
        self.on_status = on_status
        self.timers = timers or TimerTable()
        self.state_machine = StateMachine(on_state_change=self._on_state_change)

        self._busy = False
        self._processing = False
        self._held_closed = False
        self._ready_seen = False
        self._buffer = ""
        self._messages: Deque[Message] = deque(maxlen=max(1, self.settings.message_window))
        self._tasks = set()
        self.status = "Ready"

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConversationState:
        return self.state_machine.current_state

    @property
    def busy(self) -> bool:
        return self._busy

    @property
    def buffer(self) -> str:
        return self._buffer

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    # ------------------------------------------------------------------
    # Speech events
    # ------------------------------------------------------------------

    def dispatch(self, event: SpeechEvent) -> None:
        """Listener entry point for a SpeechInput: handles the event as a tracked task."""
        self._spawn(self.handle_event(event))

    async def handle_event(self, event: SpeechEvent) -> None:
        if event.event == "ready":
            if not self._ready_seen:
                self._ready_seen = True
                self._set_status("Ready")
                if self.settings.greeting:
                    await self._greet()
            return

        if self._busy:
            logger.debug(f"[Session] Dropped {event.event} (busy, state={self.state.value})")
            return

        if event.event == "voice_start":
            if self.state_machine.is_listening:
                self._set_status("Hearing you...")
            return
        if event.event == "voice_end":
            if self.state_machine.is_listening:
                self._set_status("Listening...")
            return
        if event.event == "processing":
            if self.state_machine.is_listening:
                self._set_status("Transcribing...")
            return
        if event.event != "transcription":
            return

        text = (event.text or "").strip()
        if not text:
            return

        if self.state_machine.is_idle:
            matched, remainder = self.match_wake_phrase(text)
            if not matched:
                logger.debug(f"[Session] Ignored in IDLE (no wake phrase): {text!r}")
                return
            await self.activate(seed=remainder)
        elif self.state_machine.is_listening:
            self._append_fragment(text)

    def match_wake_phrase(self, text: str) -> Tuple[bool, str]:
        """
        Return (matched, command remainder with the wake phrase stripped).

        Case and separator runs are ignored inside the phrase too, so a
        transcribed "Hey, Sam." matches "hey sam".
        """
        normalized, offsets = _normalize_for_wake(text)
        for phrase in self.settings.wake_phrases:
            phrase, _ = _normalize_for_wake(phrase)
            if not phrase or not normalized.startswith(phrase):
                continue
            rest = normalized[len(phrase):]
            if rest and rest[0].isalnum():
                continue
            end = offsets[len(phrase) - 1] + 1
            remainder = text[end:].lstrip(_WAKE_SEPARATORS).strip()
            return True, remainder
        return False, ""

    # ------------------------------------------------------------------
    # Activation / deactivation
    # ------------------------------------------------------------------

    async def activate(self, seed: str = "") -> bool:
        """
        IDLE -> LISTENING. Clears transcript and chat history.

        With a seed command the silence window starts right away; otherwise
        the acknowledgment is spoken and the inactivity window starts.
        """
        if self._busy or not self.state_machine.is_idle:
            return False

        self._held_closed = False
        self._buffer = ""
        self._messages.clear()
        self.gateway.clear_history()
        self.state_machine.transition(ConversationState.LISTENING)
        self._set_status("Listening...")
        await self._set_input_muted(False)

        if seed:
            self._append_fragment(seed)
            return True

        if self.settings.acknowledgment:
            self._busy = True
            await self._set_input_muted(True)
            try:
                await self._speak(self.settings.acknowledgment)
            except Exception:
                logger.exception("[Session] Acknowledgment failed")
            self._start_echo_cooloff()
        else:
            self._arm_inactivity()
        return True

    async def stop_listening(self) -> None:
        """Cancel every window, drop the buffer, cut off an acknowledgment in progress and go IDLE."""
        acknowledging = self._busy and not self._processing and self.state_machine.is_listening
        self.timers.cancel_all()
        self._buffer = ""
        self._held_closed = True
        self._busy = True
        if self.state_machine.is_listening:
            self.state_machine.transition(ConversationState.IDLE)
            if acknowledging:
                await self.synthesizer.cancel()
        elif self.state_machine.is_speaking:
            await self.synthesizer.cancel()
        self._set_status("Standby")
        try:
            await self._set_input_muted(True)
        finally:
            if not self._processing:
                self._busy = False

    # ------------------------------------------------------------------
    # Text input
    # ------------------------------------------------------------------

    async def handle_text(self, text: str) -> Optional[str]:
        """
        Typed command, text-only delivery (no speech).

        Returns the reply, or None when the input is empty or the session
        is busy (rejected, not queued). A partial voice command is dropped.
        """
        if not text.strip():
            return None
        if self._busy:
            logger.info("[Session] Text input rejected: busy")
            return None
        if self._buffer and self._messages and self._messages[-1].role == "user":
            self._messages.pop()
        self._add_message("user", text.strip())
        return await self._process(text.strip(), speak=False)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _append_fragment(self, text: str) -> None:
        self.timers.cancel(TimerPurpose.INACTIVITY)
        is_new_command = self._buffer == ""
        self._buffer = text if is_new_command else f"{self._buffer} {text}"
        if is_new_command:
            self._add_message("user", self._buffer)
            self._set_status("Capturing...")
        else:
            self._replace_last_message(self._buffer)
        self.timers.arm(TimerPurpose.SILENCE, self.settings.silence_timeout_seconds, self._on_silence)

    def _arm_inactivity(self) -> None:
        self.timers.arm(
            TimerPurpose.INACTIVITY, self.settings.inactivity_timeout_seconds, self._on_inactivity
        )

    def _on_inactivity(self) -> None:
        if self._busy or not self.state_machine.is_listening or self._buffer:
            return
        logger.info("[Session] Inactivity timeout, returning to IDLE")
        self.timers.cancel(TimerPurpose.SILENCE)
        self.state_machine.transition(ConversationState.IDLE)
        self._set_status("Standby")

    async def _on_silence(self) -> None:
        if self._busy or not self.state_machine.is_listening:
            return
        command = self._buffer.strip()
        self._buffer = ""
        if len(command) < self.settings.min_command_length:
            logger.info(f"[Session] Discarded short command: {command!r}")
            if self._messages and self._messages[-1].role == "user":
                self._messages.pop()
            self.timers.cancel(TimerPurpose.INACTIVITY)
            self.state_machine.transition(ConversationState.IDLE)
            self._set_status("Standby")
            return
        await self._process(command, speak=True)

    async def _process(self, text: str, speak: bool) -> str:
        self._busy = True
        self._processing = True
        self.timers.cancel(TimerPurpose.SILENCE)
        self.timers.cancel(TimerPurpose.INACTIVITY)
        self._buffer = ""
        log_event(f"COMMAND {text!r}", stage="session")

        reply = ERROR_REPLY
        try:
            self.state_machine.transition(ConversationState.THINKING)
            self._set_status("Thinking...")
            if speak:
                await self._set_input_muted(True)
            self._add_message("assistant", "")

            route, objective = await self._route(text)
            logger.info(f"[Session] Route: {route}")
            if route == ROUTE_TASK:
                reply = await self._run_agent(objective)
            else:
                reply = await self._run_chat(text)
            self._replace_last_message(reply)

            if speak and reply:
                self.state_machine.transition(ConversationState.SPEAKING)
                self._set_status("Speaking...")
                await self._speak(reply)
        except Exception:
            logger.exception("[Session] Thinking phase failed")
            reply = ERROR_REPLY
            self._replace_last_message(reply)
            self._set_status("Error")
        finally:
            self._processing = False
            self._finish(voice=speak)
        return reply

    async def _route(self, text: str) -> Tuple[str, str]:
        mode = self.settings.route_mode
        if text.startswith("/"):
            return ROUTE_TASK, text[1:].strip() or text
        if mode == "task":
            return ROUTE_TASK, text
        if mode == "chat":
            return ROUTE_CHAT, text
        verdict = await self.gateway.generate(
            prompts.ROUTE_CLASSIFIER_PROMPT.format(text=text),
            model=get_model("classifier", self.config),
            system=prompts.ROUTE_CLASSIFIER,
        )
        return (ROUTE_TASK if ROUTE_TASK in verdict.upper() else ROUTE_CHAT), text

    async def _run_agent(self, objective: str) -> str:
        activity = ["Agent activated..."]
        self._replace_last_message(activity[0])

        def relay(step: Step) -> None:
            activity.append(f"[{step.kind.value}] {step.content}")
            self._replace_last_message("\n".join(activity))
            if self.on_step is not None:
                self.on_step(step)

        try:
            return await self.orchestrator.execute(objective, relay)
        except AgentAlreadyRunningError:
            return BUSY_REPLY

    async def _run_chat(self, text: str) -> str:
        parts: List[str] = []

        def on_token(token: str) -> None:
            parts.append(token)
            self._replace_last_message("".join(parts))

        return await self.gateway.chat(text, on_token)

    def _finish(self, voice: bool) -> None:
        """Leave THINKING/SPEAKING. Voice flows keep the input closed through the echo cool-off."""
        if not voice:
            if not self.state_machine.is_idle:
                self.state_machine.transition(ConversationState.IDLE)
            self._busy = False
            self._set_status("Standby")
            return

        target = ConversationState.LISTENING if self.settings.continue_listening else ConversationState.IDLE
        if self.state != target:
            self.state_machine.transition(target)
        self._set_status("Resetting...")
        self._start_echo_cooloff()

    def _start_echo_cooloff(self) -> None:
        self._busy = True
        self.timers.arm(TimerPurpose.ECHO_COOLOFF, self.settings.echo_cooloff_seconds, self._reopen_input)

    async def _reopen_input(self) -> None:
        try:
            if not self._held_closed:
                await self._set_input_muted(False)
        except Exception:
            logger.exception("[Session] Failed to reopen input")
        finally:
            self._busy = False
        if self.state_machine.is_listening:
            self._set_status("Listening...")
            self._arm_inactivity()
        else:
            self._set_status("Standby")

    async def _greet(self) -> None:
        self._busy = True
        await self._set_input_muted(True)
        try:
            await self._speak(self.settings.greeting)
        except Exception:
            logger.exception("[Session] Greeting failed")
        self._start_echo_cooloff()

    async def _speak(self, text: str) -> None:
        """Speak under the synthesis watchdog; a stuck synthesizer is cancelled."""
        self.timers.arm(
            TimerPurpose.SYNTHESIS_WATCHDOG,
            self.settings.synthesis_watchdog_seconds,
            self._on_synthesis_timeout,
        )
        try:
            await self.synthesizer.speak(text)
        finally:
            self.timers.cancel(TimerPurpose.SYNTHESIS_WATCHDOG)

    async def _on_synthesis_timeout(self) -> None:
        logger.warning(
            f"[Session] Speech synthesis exceeded {self.settings.synthesis_watchdog_seconds}s, cancelling"
        )
        await self.synthesizer.cancel()

    async def _set_input_muted(self, muted: bool) -> None:
        if self.speech_input is not None:
            await self.speech_input.set_muted(muted)

    def _add_message(self, role: str, content: str) -> None:
        self._messages.append(Message(role=role, content=content))

    def _replace_last_message(self, content: str) -> None:
        if self._messages:
            self._messages[-1].content = content

    def _set_status(self, status: str) -> None:
        self.status = status
        if self.on_status is not None:
            self.on_status(status)

    def _on_state_change(self, old: ConversationState, new: ConversationState) -> None:
        logger.info(f"[Session] {old.value} -> {new.value}")

    def _spawn(self, coro) -> asyncio.Task:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def settle(self) -> None:
        """Wait for dispatched events and fired timer work to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.timers.settle()
