"""One continuous speech-recognition run at a time, guarded by generation."""

from typing import Callable, Optional
import structlog

from ..config.settings import TimingSettings
from ..providers.recognition.base import (
    RecognitionEngine,
    RecognitionErrorKind,
    RecognitionEvent,
    RecognitionEventType,
)
from .models import (
    CaptureEnded,
    CaptureStarted,
    CaptureStatus,
    EndReason,
    GenerationCounter,
    RecognitionSession,
)
from .scheduler import Scheduler
from .silence import SilenceMonitor
from .transcript import TranscriptAccumulator


logger = structlog.get_logger()


class CaptureSession:
    """
    Wraps the recognition engine.

    Every engine callback is tagged with the generation of the run that
    registered it and is dropped on arrival if that run is no longer the
    current one.
    """

    def __init__(
        self,
        engine: RecognitionEngine,
        accumulator: TranscriptAccumulator,
        scheduler: Scheduler,
        generations: GenerationCounter,
        dispatch: Callable[[object], None],
        submit: Callable[[str, int], bool],
        is_speaking: Callable[[], bool],
        timing: Optional[TimingSettings] = None,
    ):
        timing = timing or TimingSettings()
        self.engine = engine
        self.accumulator = accumulator
        self.scheduler = scheduler
        self._generations = generations
        self._dispatch = dispatch
        self._submit = submit
        self._is_speaking = is_speaking

        self.silence_monitor = SilenceMonitor(
            scheduler,
            accumulator,
            last_speech=self._last_speech,
            on_silence=self.finish_utterance,
            threshold_ms=timing.silence_threshold_ms,
            interval_ms=timing.silence_poll_interval_ms,
            grace_ms=timing.silence_grace_ms,
        )

        self._session: Optional[RecognitionSession] = None
        self.interim = ""

    @property
    def is_active(self) -> bool:
        return self._session is not None

    @property
    def status(self) -> CaptureStatus:
        return self._session.status if self._session else CaptureStatus.IDLE

    @property
    def generation(self) -> Optional[int]:
        return self._session.generation if self._session else None

    def _last_speech(self) -> Optional[float]:
        return self._session.last_speech_timestamp if self._session else None

    def start(self) -> bool:
        """Open a new recognition run. Refused while the assistant is speaking."""
        if self._session is not None:
            logger.debug("Capture already active", generation=self._session.generation)
            return True
        if self._is_speaking():
            logger.info("Refusing to start capture while speaking")
            return False

        generation = self._generations.next()
        self._session = RecognitionSession(
            generation=generation,
            last_speech_timestamp=self.scheduler.time(),
        )
        self.interim = ""

        def on_event(event: RecognitionEvent, generation: int = generation) -> None:
            self.handle_event(generation, event)

        logger.info("Starting capture", generation=generation)
        try:
            self.engine.start(on_event)
        except (RuntimeError, OSError) as e:
            logger.error("Recognition engine failed to start", error=str(e), generation=generation)
            self._teardown()
            self._dispatch(CaptureEnded(generation, EndReason.ERROR, RecognitionErrorKind.NOT_SUPPORTED))
            return False

        self._dispatch(CaptureStarted(generation))
        return True

    def handle_event(self, generation: int, event: RecognitionEvent) -> None:
        """Single entry point for every engine event."""
        session = self._session
        if session is None or session.generation != generation:
            logger.debug(
                "Ignoring stale recognition event",
                event_type=event.type.value,
                generation=generation,
                current=session.generation if session else None,
            )
            return

        if event.type == RecognitionEventType.STARTED:
            if session.status == CaptureStatus.STARTING:
                session.status = CaptureStatus.LISTENING
            logger.debug("Recognition started", generation=generation)
        elif event.type == RecognitionEventType.AUDIO_STARTED:
            session.audio_started = True
            self.silence_monitor.start()
        elif event.type == RecognitionEventType.SPEECH_STARTED:
            session.last_speech_timestamp = self.scheduler.time()
            logger.debug("Speech detected", generation=generation)
        elif event.type == RecognitionEventType.PARTIAL:
            self.on_partial_result(event.text)
        elif event.type == RecognitionEventType.FINAL:
            self.on_final_result(event.text)
        elif event.type == RecognitionEventType.ERROR:
            self.on_error(event.error or RecognitionErrorKind.NETWORK, event.message)
        elif event.type == RecognitionEventType.ENDED:
            self.on_end()

    def on_partial_result(self, text: str) -> None:
        """Interim text is display-only."""
        self.interim = text.strip()
        if self._session:
            self._session.last_speech_timestamp = self.scheduler.time()

    def on_final_result(self, text: str) -> None:
        fragment = text.strip()
        self.interim = ""
        if not fragment:
            return
        self.accumulator.append(fragment)
        if self._session:
            self._session.last_speech_timestamp = self.scheduler.time()
        logger.info("Final transcript", text=fragment[:50])

    def on_error(self, kind: RecognitionErrorKind, message: str = "") -> None:
        session = self._teardown()
        if session is None:
            return
        log = logger.debug if kind.is_transient else logger.warning
        log("Recognition error", error=kind.value, message=message, generation=session.generation)
        self._safe_engine_call(self.engine.abort)
        self._dispatch(CaptureEnded(session.generation, EndReason.ERROR, kind))

    def on_end(self) -> None:
        session = self._teardown()
        if session is None:
            return

        submitted = False
        if not session.manual_stop_requested:
            pending = self.accumulator.read().strip()
            if pending:
                submitted = self._submit(pending, session.generation)
        logger.info("Capture ended", generation=session.generation, submitted=submitted)
        self._dispatch(CaptureEnded(session.generation, EndReason.NATURAL, submitted=submitted))

    def finish_utterance(self) -> None:
        """Ask the engine to stop so that the end of the run submits the buffer."""
        session = self._session
        if session is None or session.status == CaptureStatus.STOPPING:
            return
        session.status = CaptureStatus.STOPPING
        self.silence_monitor.stop()
        logger.debug("Requesting end of utterance", generation=session.generation)
        if not self._safe_engine_call(self.engine.stop):
            self.on_end()

    def stop(self, reason: EndReason = EndReason.MANUAL) -> bool:
        """
        Stop immediately. Nothing is submitted and any late engine event
        from this run is discarded.
        """
        session = self._session
        if session is None:
            return False
        session.manual_stop_requested = True
        session.status = CaptureStatus.STOPPING
        self._teardown()
        logger.info("Capture stopped", generation=session.generation, reason=reason.value)
        self._safe_engine_call(self.engine.abort)
        self._dispatch(CaptureEnded(session.generation, reason))
        return True

    def _teardown(self) -> Optional[RecognitionSession]:
        session = self._session
        if session is None:
            return None
        self._session = None
        self.silence_monitor.stop()
        self.interim = ""
        self._generations.next()
        return session

    def _safe_engine_call(self, method: Callable[[], None]) -> bool:
        try:
            method()
            return True
        except (RuntimeError, OSError) as e:
            logger.warning("Recognition engine call failed", call=method.__name__, error=str(e))
            return False

    def get_status(self) -> dict:
        return {
            "status": self.status.value,
            "generation": self.generation,
            "interim": self.interim,
            "silence_monitor": self.silence_monitor.get_status(),
            "engine": self.engine.get_status(),
        }
