"""
Watchdog Utility

Times an LLM request or a tool run and reports the duration on the event
timeline. It never interrupts the block: overruns are only logged, and
cancellation stays cooperative at orchestration step boundaries.
"""

import logging
import time
from typing import Optional

from aether.instrumentation import log_event

logger = logging.getLogger(__name__)


class Watchdog:
    """Context manager: `[EVT] <block> elapsed_ms=...` on exit, warning past the threshold."""

    def __init__(self, block: str, threshold_seconds: Optional[float], stage: str = "watchdog"):
        self.block = block
        self.threshold_seconds = threshold_seconds
        self.stage = stage
        self._start = 0.0
        self.elapsed_seconds = 0.0
        self.triggered = False

    def __enter__(self):
        self._start = time.monotonic()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.elapsed_seconds = time.monotonic() - self._start
        self.triggered = self.threshold_seconds is not None and self.elapsed_seconds > self.threshold_seconds
        outcome = "error" if exc_type is not None else "ok"
        log_event(
            f"{self.block} elapsed_ms={int(self.elapsed_seconds * 1000)} outcome={outcome}",
            stage=self.stage,
        )
        if self.triggered:
            logger.warning(
                f"[Watchdog] {self.block} took {self.elapsed_seconds:.2f}s "
                f"(budget {self.threshold_seconds:.2f}s)"
            )
        return False
