"""
Timer table for the conversation session.

One slot per purpose (inactivity, silence, echo cool-off, synthesis
watchdog). Arming a purpose replaces whatever was armed for it, so a
transition that invalidates a window only has to cancel that purpose.

Built on loop.call_later. Coroutine callbacks run as tracked tasks;
settle() awaits them.
"""

import asyncio
import inspect
import logging
from enum import Enum
from typing import Callable, Dict, Optional, Set

logger = logging.getLogger(__name__)


class TimerPurpose(Enum):
    INACTIVITY = "inactivity"
    SILENCE = "silence"
    ECHO_COOLOFF = "echo_cooloff"
    SYNTHESIS_WATCHDOG = "synthesis_watchdog"


class TimerTable:
    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._handles: Dict[TimerPurpose, asyncio.TimerHandle] = {}
        self._tasks: Set[asyncio.Task] = set()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def arm(self, purpose: TimerPurpose, delay: float, callback: Callable[[], object]) -> None:
        """Schedule callback after delay seconds, replacing any timer armed for purpose."""
        self.cancel(purpose)
        handle = self.loop.call_later(max(0.0, delay), self._fire, purpose, callback)
        self._handles[purpose] = handle
        logger.debug(f"[Timers] Armed {purpose.value} ({delay:.2f}s)")

    def cancel(self, purpose: TimerPurpose) -> bool:
        handle = self._handles.pop(purpose, None)
        if handle is None:
            return False
        handle.cancel()
        logger.debug(f"[Timers] Cancelled {purpose.value}")
        return True

    def cancel_all(self) -> None:
        for purpose in list(self._handles):
            self.cancel(purpose)

    def is_armed(self, purpose: TimerPurpose) -> bool:
        return purpose in self._handles

    def armed(self) -> Set[TimerPurpose]:
        return set(self._handles)

    async def settle(self) -> None:
        """Wait for every task started by a fired timer (including ones they start)."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def _fire(self, purpose: TimerPurpose, callback: Callable[[], object]) -> None:
        self._handles.pop(purpose, None)
        logger.debug(f"[Timers] Fired {purpose.value}")
        result = callback()
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._tasks.add(task)
            task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error(f"[Timers] Timer task failed: {task.exception()!r}")
