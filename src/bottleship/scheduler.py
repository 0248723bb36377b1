"""Deferred callbacks for AI "thinking" delays and snapshot delivery.

Everything runs on one thread: a callback is always run to completion before
the next one starts. ``ManualScheduler`` drives time explicitly so tests can
step through delay-dependent sequences deterministically.
"""

from __future__ import annotations

import asyncio
import heapq
import itertools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

Callback = Callable[[], None]


class Handle(ABC):
    @abstractmethod
    def cancel(self) -> None:
        ...

    @property
    @abstractmethod
    def cancelled(self) -> bool:
        ...


class Scheduler(ABC):
    @abstractmethod
    def call_later(self, delay: float, callback: Callback) -> Handle:
        """Run ``callback`` once, no earlier than ``delay`` seconds from now."""


# ---------- Fake clock ----------


@dataclass(order=True)
class _Timer(Handle):
    due: float
    seq: int
    callback: Callback = field(compare=False)
    _cancelled: bool = field(default=False, compare=False)

    def cancel(self) -> None:
        self._cancelled = True

    @property
    def cancelled(self) -> bool:
        return self._cancelled


class ManualScheduler(Scheduler):
    """Scheduler whose clock only moves when ``advance`` is called."""

    def __init__(self) -> None:
        self.now = 0.0
        self._queue: List[_Timer] = []
        self._seq = itertools.count()

    def call_later(self, delay: float, callback: Callback) -> Handle:
        timer = _Timer(self.now + max(0.0, delay), next(self._seq), callback)
        heapq.heappush(self._queue, timer)
        return timer

    @property
    def pending(self) -> int:
        return sum(1 for t in self._queue if not t.cancelled)

    def advance(self, seconds: float) -> int:
        """Move the clock forward, running every callback that falls due."""

        deadline = self.now + seconds
        ran = 0
        while self._queue and self._queue[0].due <= deadline:
            timer = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            self.now = max(self.now, timer.due)
            timer.callback()
            ran += 1
        self.now = deadline
        return ran

    def run_until_idle(self, limit: int = 1000) -> int:
        """Run queued callbacks (including ones they schedule) until none remain."""

        ran = 0
        while self._queue:
            if ran >= limit:
                raise RuntimeError("Scheduler did not go idle")
            timer = heapq.heappop(self._queue)
            if timer.cancelled:
                continue
            self.now = max(self.now, timer.due)
            timer.callback()
            ran += 1
        return ran


# ---------- asyncio ----------


class _AsyncioHandle(Handle):
    def __init__(self, handle: asyncio.TimerHandle) -> None:
        self._handle = handle

    def cancel(self) -> None:
        self._handle.cancel()

    @property
    def cancelled(self) -> bool:
        return self._handle.cancelled()


class AsyncioScheduler(Scheduler):
    """Schedules onto the event loop that is running when ``call_later`` is used."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        self._loop = loop

    def call_later(self, delay: float, callback: Callback) -> Handle:
        loop = self._loop or asyncio.get_running_loop()
        return _AsyncioHandle(loop.call_later(max(0.0, delay), self._run, callback))

    @staticmethod
    def _run(callback: Callback) -> None:
        try:
            callback()
        except Exception:
            logger.exception("Scheduled callback %r failed", callback)
