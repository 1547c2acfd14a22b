"""
Speech-to-text sidecar client.

Spawns the external speech binary:

    <sidecar> --wake-word "<phrase>" --model <model path>

and turns each NDJSON stdout line into a SpeechEvent for registered
listeners. Control messages go the other way as NDJSON on stdin:

    {"command": "mute"}   /   {"command": "unmute"}

stderr is logged, minus the speech engine's initialization chatter.
"""

import asyncio
import json
import logging
from typing import Callable, List, Optional

from aether.speech import SpeechEvent, SpeechInput, SpeechListener

logger = logging.getLogger(__name__)

_STDERR_NOISE = (
    "whisper_",
    "n_vocab",
    "n_audio_",
    "n_text_",
    "compute buffer",
    "loading model",
)
_STDERR_NOISE_LOWER = ("using blas", "core ml")


def is_stderr_noise(line: str) -> bool:
    lower = line.lower()
    return any(marker in line for marker in _STDERR_NOISE) or any(
        marker in lower for marker in _STDERR_NOISE_LOWER
    )


class SpeechSidecar(SpeechInput):
    def __init__(self, executable: str, wake_word: str, model_path: str):
        self.executable = executable
        self.wake_word = wake_word
        self.model_path = model_path
        self._process: Optional[asyncio.subprocess.Process] = None
        self._listeners: List[SpeechListener] = []
        self._readers: List[asyncio.Task] = []

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    async def start(self) -> None:
        """Spawn the sidecar. No-op when already running; OSError propagates."""
        if self.is_running:
            return
        logger.info(f"[Sidecar] Starting {self.executable}")
        self._process = await asyncio.create_subprocess_exec(
            self.executable,
            "--wake-word",
            self.wake_word,
            "--model",
            self.model_path,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        self._readers = [
            asyncio.ensure_future(self._read_stdout(self._process.stdout)),
            asyncio.ensure_future(self._read_stderr(self._process.stderr)),
        ]

    async def stop(self) -> None:
        process = self._process
        self._process = None
        if process is not None and process.returncode is None:
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await process.wait()
            logger.info(f"[Sidecar] Stopped (code {process.returncode})")
        for reader in self._readers:
            reader.cancel()
        await asyncio.gather(*self._readers, return_exceptions=True)
        self._readers = []

    async def wait_closed(self) -> Optional[int]:
        """Wait for the sidecar to exit on its own; returns its exit code."""
        process = self._process
        if process is None:
            return None
        code = await process.wait()
        await asyncio.gather(*self._readers, return_exceptions=True)
        return code

    async def set_muted(self, muted: bool) -> None:
        process = self._process
        if process is None or process.stdin is None or process.returncode is not None:
            return
        message = json.dumps({"command": "mute" if muted else "unmute"}) + "\n"
        try:
            process.stdin.write(message.encode("utf-8"))
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            logger.warning(f"[Sidecar] Failed to send {'mute' if muted else 'unmute'}: {e}")

    def on_event(self, listener: SpeechListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def dispatch_line(self, line: str) -> None:
        """Decode one stdout line and notify listeners. Non-JSON lines are ignored."""
        line = line.strip()
        if not line:
            return
        try:
            raw = json.loads(line)
            event = SpeechEvent.from_dict(raw)
        except (ValueError, AttributeError):
            logger.debug(f"[Sidecar] Raw: {line}")
            return
        for listener in list(self._listeners):
            listener(event)

    async def _read_stdout(self, stream: asyncio.StreamReader) -> None:
        while True:
            line = await stream.readline()
            if not line:
                break
            self.dispatch_line(line.decode("utf-8", errors="replace"))

    async def _read_stderr(self, stream: asyncio.StreamReader) -> None:
        while True:
            line = await stream.readline()
            if not line:
                break
            text = line.decode("utf-8", errors="replace").rstrip()
            if text and not is_stderr_noise(text):
                logger.error(f"[Sidecar] {text}")
