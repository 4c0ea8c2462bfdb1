"""End-of-utterance detection by polling time since the last detected speech."""

from typing import Callable, Optional
import structlog

from .scheduler import RepeatingTimer, Scheduler, TimerHandle
from .transcript import TranscriptAccumulator


logger = structlog.get_logger()


class SilenceMonitor:
    """
    Requests a capture stop once the user has gone quiet with text pending.

    An empty buffer never triggers a stop, so the first utterance can take
    as long as it likes to arrive.
    """

    def __init__(
        self,
        scheduler: Scheduler,
        accumulator: TranscriptAccumulator,
        last_speech: Callable[[], Optional[float]],
        on_silence: Callable[[], None],
        threshold_ms: int = 2000,
        interval_ms: int = 200,
        grace_ms: int = 100,
    ):
        self.scheduler = scheduler
        self.accumulator = accumulator
        self._last_speech = last_speech
        self._on_silence = on_silence
        self.threshold = threshold_ms / 1000
        self.interval = interval_ms / 1000
        self.grace = grace_ms / 1000

        self._grace_handle: Optional[TimerHandle] = None
        self._timer: Optional[RepeatingTimer] = None
        self._armed_at: Optional[float] = None

    @property
    def is_running(self) -> bool:
        return self._grace_handle is not None or self._timer is not None

    def start(self) -> None:
        """Arm after the grace delay. Called when the engine reports audio input."""
        if self.is_running:
            return
        self._grace_handle = self.scheduler.call_later(self.grace, self._arm)

    def _arm(self) -> None:
        self._grace_handle = None
        self._armed_at = self.scheduler.time()
        self._timer = self.scheduler.call_every(self.interval, self._tick)
        logger.debug("Silence monitor armed", threshold_s=self.threshold, interval_s=self.interval)

    def elapsed(self) -> float:
        """Seconds since the last detected speech, or since arming if none was seen."""
        now = self.scheduler.time()
        reference = self._last_speech()
        if reference is None:
            reference = self._armed_at if self._armed_at is not None else now
        return now - reference

    def _tick(self) -> None:
        if self._timer is None:
            return
        if self.accumulator.is_empty():
            return
        elapsed = self.elapsed()
        if elapsed > self.threshold:
            logger.info(
                "Silence detected with pending input",
                silence_ms=round(elapsed * 1000),
                pending_length=len(self.accumulator),
            )
            self.stop()
            self._on_silence()

    def stop(self) -> None:
        if self._grace_handle is not None:
            self._grace_handle.cancel()
            self._grace_handle = None
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._armed_at = None

    def get_status(self) -> dict:
        return {
            "running": self.is_running,
            "threshold_ms": round(self.threshold * 1000),
            "interval_ms": round(self.interval * 1000),
        }
