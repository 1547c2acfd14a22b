"""
SPEECH COLLABORATORS

Input side:
- SpeechEvent: one discrete event from the speech-to-text stream
  (ready, voice_start, voice_end, transcription{text}, processing, ...)
- SpeechInput: the event source (mute/unmute + listener registration)

Output side:
- SpeechSynthesizer: speak(text) completes when audio is done; cancel() stops it
- SilentSynthesizer: no-audio default
- CommandSynthesizer: external TTS command (say / espeak) as a subprocess

Hard stops:
- cancel() must be idempotent and never raise
- speak() must not block the event loop
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

logger = logging.getLogger(__name__)

# Sidecar event names mapped to the names the session understands
_EVENT_ALIASES = {
    "voice_activity": "voice_start",
    "speech_end": "voice_end",
}


@dataclass(frozen=True)
class SpeechEvent:
    event: str
    text: Optional[str] = None
    state: Optional[str] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "SpeechEvent":
        """
        Build from a decoded sidecar line.

        Accepts "status" in place of "event" and maps sidecar aliases.

        Raises:
            ValueError: No event name present
        """
        name = raw.get("event") or raw.get("status")
        if not isinstance(name, str) or not name:
            raise ValueError(f"speech event without a name: {raw!r}")
        name = _EVENT_ALIASES.get(name, name)
        text = raw.get("text")
        state = raw.get("state")
        extra = {k: v for k, v in raw.items() if k not in ("event", "status", "text", "state")}
        return cls(
            event=name,
            text=text if isinstance(text, str) else None,
            state=state if isinstance(state, str) else None,
            extra=extra,
        )


SpeechListener = Callable[[SpeechEvent], None]


class SpeechInput(ABC):
    """Source of SpeechEvents."""

    @abstractmethod
    def on_event(self, listener: SpeechListener) -> Callable[[], None]:
        """Register a listener; returns an unsubscribe function."""

    @abstractmethod
    async def set_muted(self, muted: bool) -> None:
        """Close (True) or reopen (False) the input channel."""


class SpeechSynthesizer(ABC):
    """
    Speech output.

    Implementations must provide:
    - speak(text) → returns when the utterance has finished (or was cancelled)
    - cancel() → halt any active utterance (idempotent, never raises)
    """

    @abstractmethod
    async def speak(self, text: str) -> None:
        pass

    @abstractmethod
    async def cancel(self) -> None:
        pass


class SilentSynthesizer(SpeechSynthesizer):
    """Default: text is discarded, nothing is played."""

    async def speak(self, text: str) -> None:
        pass

    async def cancel(self) -> None:
        pass


class CommandSynthesizer(SpeechSynthesizer):
    """
    Speaks through an external TTS command.

    The text is appended as the last argument: ["say"] -> say "<text>".
    """

    def __init__(self, command: Sequence[str]):
        if not command:
            raise ValueError("TTS command must not be empty")
        self.command: List[str] = list(command)
        self._process: Optional[asyncio.subprocess.Process] = None

    @property
    def is_speaking(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def speak(self, text: str) -> None:
        if not text.strip():
            return
        await self.cancel()
        try:
            process = await asyncio.create_subprocess_exec(
                *self.command,
                text,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error(f"[TTS] Failed to start {self.command[0]}: {e}")
            return

        self._process = process
        _, stderr = await process.communicate()
        if process.returncode not in (0, None) and self._process is process:
            logger.warning(
                f"[TTS] {self.command[0]} exited with {process.returncode}: "
                f"{stderr.decode(errors='replace').strip()}"
            )
        if self._process is process:
            self._process = None

    async def cancel(self) -> None:
        process = self._process
        self._process = None
        if process is None or process.returncode is not None:
            return
        try:
            process.terminate()
        except ProcessLookupError:
            return
        try:
            await asyncio.wait_for(process.wait(), timeout=2.0)
        except asyncio.TimeoutError:
            process.kill()
            await process.wait()
        logger.info("[TTS] Speech cancelled")
