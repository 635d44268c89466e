"""
Recurring timers used by the payment session (status poll + countdown).

`AsyncioRecurringTimer` runs the callback every `interval` seconds on the
running event loop until cancelled. The session only depends on the
`RecurringTimer` interface, so tests can substitute timers they fire by hand.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

TimerCallback = Callable[[], Awaitable[None]]
TimerFactory = Callable[[float, TimerCallback, str], "RecurringTimer"]


class RecurringTimer(ABC):
    @abstractmethod
    def start(self) -> None:
        """Begin firing the callback."""

    @abstractmethod
    def cancel(self) -> None:
        """Stop firing. Safe to call more than once and from inside the callback."""

    @property
    @abstractmethod
    def active(self) -> bool:
        """True while the timer may still fire."""


class AsyncioRecurringTimer(RecurringTimer):
    def __init__(self, interval: float, callback: TimerCallback, name: str = "timer") -> None:
        if interval <= 0:
            raise ValueError("interval must be positive")
        self.interval = interval
        self.name = name
        self._callback = callback
        self._task: Optional[asyncio.Task] = None
        self._stopped = False

    @property
    def active(self) -> bool:
        return self._task is not None and not self._stopped and not self._task.done()

    def start(self) -> None:
        if self._task is not None:
            raise RuntimeError(f"Timer {self.name} already started")
        self._task = asyncio.get_running_loop().create_task(self._run(), name=self.name)

    def cancel(self) -> None:
        self._stopped = True
        task = self._task
        if task is None or task.done():
            return
        # A callback cancelling its own timer finishes its current run instead of being interrupted.
        if task is _current_task():
            return
        task.cancel()

    async def _run(self) -> None:
        while not self._stopped:
            await asyncio.sleep(self.interval)
            if self._stopped:
                break
            try:
                await self._callback()
            except Exception:
                logger.exception("Timer %s callback failed", self.name)


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None


def asyncio_timer_factory(interval: float, callback: TimerCallback, name: str) -> RecurringTimer:
    return AsyncioRecurringTimer(interval, callback, name)
