"""Periodic check that an engine agrees with the state we think it is in."""

from typing import Callable, Optional
import structlog

from .scheduler import RepeatingTimer, Scheduler


logger = structlog.get_logger()


class Watchdog:
    """
    Watches one engine at a time.

    If the engine reports idle while we still expect it to be busy on
    ``strikes`` consecutive ticks, the completion event was missed and
    ``on_mismatch`` is called once. A single idle reading is not enough: the
    engine can go idle a moment before its end event reaches the loop.
    """

    def __init__(self, scheduler: Scheduler, interval_ms: int = 1000, strikes: int = 2):
        self.scheduler = scheduler
        self.interval = interval_ms / 1000
        self.strikes = max(1, strikes)

        self._timer: Optional[RepeatingTimer] = None
        self._target: Optional[str] = None
        self._engine_busy: Optional[Callable[[], bool]] = None
        self._expected_busy: Optional[Callable[[], bool]] = None
        self._on_mismatch: Optional[Callable[[], None]] = None
        self._misses = 0

    @property
    def target(self) -> Optional[str]:
        return self._target

    @property
    def is_running(self) -> bool:
        return self._timer is not None

    def watch(
        self,
        target: str,
        engine_busy: Callable[[], bool],
        expected_busy: Callable[[], bool],
        on_mismatch: Callable[[], None],
    ) -> None:
        self.clear()
        self._target = target
        self._engine_busy = engine_busy
        self._expected_busy = expected_busy
        self._on_mismatch = on_mismatch
        self._timer = self.scheduler.call_every(self.interval, self._check)
        logger.debug("Watchdog started", target=target, interval_s=self.interval)

    def _check(self) -> None:
        if self._timer is None:
            return
        if not self._expected_busy() or self._engine_busy():
            self._misses = 0
            return

        self._misses += 1
        if self._misses < self.strikes:
            logger.debug("Engine idle while expected busy", target=self._target, misses=self._misses)
            return

        on_mismatch = self._on_mismatch
        logger.warning("Engine idle while still expected busy", target=self._target, misses=self._misses)
        self.clear()
        on_mismatch()

    def clear(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
            logger.debug("Watchdog cleared", target=self._target)
        self._target = None
        self._engine_busy = None
        self._expected_busy = None
        self._on_mismatch = None
        self._misses = 0

    def get_status(self) -> dict:
        return {"running": self.is_running, "target": self._target, "misses": self._misses}
