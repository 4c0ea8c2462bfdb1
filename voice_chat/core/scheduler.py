"""Timer and task scheduling on the asyncio event loop."""

import asyncio
from typing import Any, Callable, Coroutine, Optional, Protocol, Set
import structlog


logger = structlog.get_logger()


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class RepeatingTimer:
    """Fires a callback every ``interval`` seconds until cancelled."""

    def __init__(
        self,
        scheduler: "Scheduler",
        interval: float,
        callback: Callable[[], None],
        initial_delay: Optional[float] = None,
    ):
        self._scheduler = scheduler
        self._interval = interval
        self._callback = callback
        self._cancelled = False
        first = interval if initial_delay is None else initial_delay
        self._handle: Optional[TimerHandle] = scheduler.call_later(first, self._tick)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def _tick(self) -> None:
        if self._cancelled:
            return
        # Re-arm before running so the callback can cancel us
        self._handle = self._scheduler.call_later(self._interval, self._tick)
        self._callback()

    def cancel(self) -> None:
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class Scheduler:
    """
    Single point through which every component waits.

    Nothing in the core blocks: a delay is a ``call_later`` handle and
    background work is a task spawned on the same loop.
    """

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        self._loop = loop
        self._tasks: Set[asyncio.Task] = set()

    @property
    def loop(self) -> asyncio.AbstractEventLoop:
        if self._loop is None:
            self._loop = asyncio.get_running_loop()
        return self._loop

    def time(self) -> float:
        """Monotonic seconds."""
        return self.loop.time()

    def call_later(self, delay: float, callback: Callable[..., Any], *args: Any) -> TimerHandle:
        return self.loop.call_later(delay, callback, *args)

    def call_every(
        self,
        interval: float,
        callback: Callable[[], None],
        initial_delay: Optional[float] = None,
    ) -> RepeatingTimer:
        return RepeatingTimer(self, interval, callback, initial_delay)

    def spawn(self, coro: Coroutine[Any, Any, Any], name: Optional[str] = None) -> asyncio.Task:
        """Run a coroutine in the background, keeping a reference until it finishes."""
        task = self.loop.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(
                "Background task failed",
                task=task.get_name(),
                error=str(error),
                exc_info=error,
            )

    def cancel_tasks(self) -> None:
        for task in list(self._tasks):
            task.cancel()
