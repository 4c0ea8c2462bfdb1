"""
Virtual-clock scheduler for deterministic timing tests.
"""

import asyncio
import heapq
import itertools
from typing import Any, Callable, List, Tuple

from voice_chat.core.scheduler import Scheduler


class ManualHandle:
    """Timer handle of ManualScheduler."""

    def __init__(self, when: float, callback: Callable[..., Any], args: tuple):
        self.when = when
        self.callback = callback
        self.args = args
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler(Scheduler):
    """
    Scheduler whose clock only moves when ``advance()`` is called.

    Timers fire in deadline order, ties in the order they were scheduled.
    Tasks still run on the real event loop; ``settle()`` lets them progress.
    """

    def __init__(self, start: float = 0.0):
        super().__init__()
        self._now = start
        self._timers: List[Tuple[float, int, ManualHandle]] = []
        self._sequence = itertools.count()

    def time(self) -> float:
        return self._now

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> ManualHandle:
        handle = ManualHandle(self._now + max(delay, 0.0), callback, args)
        heapq.heappush(self._timers, (handle.when, next(self._sequence), handle))
        return handle

    def advance(self, seconds: float) -> None:
        """Move the clock forward, firing every timer that falls due on the way."""
        target = self._now + seconds
        while self._timers and self._timers[0][0] <= target:
            when, _, handle = heapq.heappop(self._timers)
            if handle.cancelled:
                continue
            self._now = when
            handle.callback(*handle.args)
        self._now = target

    def advance_ms(self, milliseconds: float) -> None:
        self.advance(milliseconds / 1000)

    async def settle(self, rounds: int = 10) -> None:
        """Give spawned tasks a chance to run to completion."""
        for _ in range(rounds):
            await asyncio.sleep(0)

    @property
    def pending_timers(self) -> int:
        return sum(1 for _, _, handle in self._timers if not handle.cancelled)
