"""
Turn coordination between listening and speaking.

The coordinator owns every piece of session state. Sessions report
lifecycle changes as typed messages through ``dispatch``, and only the
coordinator changes the turn mode.
"""

from typing import Callable, Dict, List, Optional
import structlog

from ..config.settings import Settings, settings as default_settings
from ..providers.conversation.base import AssistantTurn, ConversationService
from ..providers.recognition.base import RecognitionEngine, RecognitionErrorKind
from ..providers.synthesis.base import SynthesisEngine
from ..utils.text import join_with_space
from .capture import CaptureSession
from .models import (
    CaptureEnded,
    CaptureStarted,
    EndReason,
    GenerationCounter,
    Notice,
    PlaybackFinished,
    PlaybackStarted,
    SubmissionCompleted,
    SubmissionOutcome,
    TurnMode,
)
from .playback import PlaybackSession
from .scheduler import Scheduler, TimerHandle
from .submission import SubmissionGate
from .transcript import TranscriptAccumulator
from .watchdog import Watchdog


logger = structlog.get_logger()


CAPTURE_ERROR_MESSAGES: Dict[RecognitionErrorKind, str] = {
    RecognitionErrorKind.AUDIO_CAPTURE: "No microphone was found or it could not be opened.",
    RecognitionErrorKind.NETWORK: "Speech recognition failed because of a network problem.",
    RecognitionErrorKind.NOT_ALLOWED: "Microphone access was denied.",
    RecognitionErrorKind.SERVICE_NOT_ALLOWED: "The speech recognition service is not allowed.",
    RecognitionErrorKind.NOT_SUPPORTED: "Speech recognition is not available on this system.",
    RecognitionErrorKind.LANGUAGE_NOT_SUPPORTED: "The selected recognition language is not supported.",
}


class TurnCoordinator:
    """
    Arbiter between the recognition and synthesis engines.

    At most one of them runs at a time. Capture is restarted automatically
    after each turn while voice mode is on; a manual stop turns voice mode
    off until the user asks to listen again.
    """

    def __init__(
        self,
        recognition_engine: RecognitionEngine,
        synthesis_engine: SynthesisEngine,
        conversation_service: ConversationService,
        scheduler: Optional[Scheduler] = None,
        config: Optional[Settings] = None,
    ):
        config = config or default_settings
        self.scheduler = scheduler or Scheduler()
        self.timing = config.timing
        self.auto_speak_replies = config.speech.auto_speak_replies

        self.generations = GenerationCounter()
        self.accumulator = TranscriptAccumulator()
        self.conversation_service = conversation_service

        self.capture = CaptureSession(
            recognition_engine,
            self.accumulator,
            self.scheduler,
            self.generations,
            dispatch=self.dispatch,
            submit=self._submit_from_voice,
            is_speaking=lambda: self.is_speaking,
            timing=self.timing,
        )
        self.playback = PlaybackSession(
            synthesis_engine,
            self.generations,
            dispatch=self.dispatch,
            notify=self.notify,
            voice=config.speech.voice,
            max_chunk_length=config.speech.max_chunk_length,
        )
        self.submission = SubmissionGate(
            self.accumulator,
            conversation_service,
            self.scheduler,
            speaker=self,
            dispatch=self.dispatch,
            notify=self.notify,
            commands=config.commands,
            timing=self.timing,
        )
        self.watchdog = Watchdog(self.scheduler, self.timing.watchdog_interval_ms)

        self._mode = TurnMode.IDLE
        self._voice_enabled = False
        self._closed = False
        self._restart_handle: Optional[TimerHandle] = None

        self._notice_listeners: List[Callable[[Notice], None]] = []
        self._mode_listeners: List[Callable[[TurnMode], None]] = []
        self._reply_listeners: List[Callable[[AssistantTurn], None]] = []

    # State

    @property
    def mode(self) -> TurnMode:
        return self._mode

    @property
    def is_listening(self) -> bool:
        return self._mode == TurnMode.LISTENING

    @property
    def is_speaking(self) -> bool:
        return self._mode == TurnMode.SPEAKING or self.playback.is_active

    @property
    def voice_enabled(self) -> bool:
        return self._voice_enabled

    @property
    def restart_pending(self) -> bool:
        return self._restart_handle is not None

    def _set_mode(self, mode: TurnMode) -> None:
        if mode == self._mode:
            return
        previous = self._mode
        self._mode = mode
        logger.info("Turn mode changed", previous=previous.value, mode=mode.value)
        for listener in list(self._mode_listeners):
            listener(mode)

    def add_notice_listener(self, listener: Callable[[Notice], None]) -> None:
        self._notice_listeners.append(listener)

    def add_mode_listener(self, listener: Callable[[TurnMode], None]) -> None:
        self._mode_listeners.append(listener)

    def add_reply_listener(self, listener: Callable[[AssistantTurn], None]) -> None:
        self._reply_listeners.append(listener)

    def notify(self, notice: Notice) -> None:
        log = logger.error if notice.level == "error" else logger.info
        log("User notice", level=notice.level, message=notice.message, code=notice.code)
        for listener in list(self._notice_listeners):
            listener(notice)

    # Reducer

    def dispatch(self, message: object) -> None:
        """Apply one session message. Every mode change goes through here."""
        logger.debug("Dispatch", message=type(message).__name__, mode=self._mode.value)

        if isinstance(message, CaptureStarted):
            self._on_capture_started(message)
        elif isinstance(message, CaptureEnded):
            self._on_capture_ended(message)
        elif isinstance(message, PlaybackStarted):
            self._on_playback_started(message)
        elif isinstance(message, PlaybackFinished):
            self._on_playback_finished(message)
        elif isinstance(message, SubmissionCompleted):
            self._on_submission_completed(message)
        else:
            raise TypeError(f"Unknown message: {message!r}")

    def _on_capture_started(self, message: CaptureStarted) -> None:
        if self.playback.is_active:
            # Never listen over our own voice
            logger.warning("Capture started during playback; stopping it", generation=message.generation)
            self.capture.stop(EndReason.FORCED)
            return
        self._set_mode(TurnMode.LISTENING)

    def _on_capture_ended(self, message: CaptureEnded) -> None:
        if self._mode == TurnMode.LISTENING:
            self._set_mode(TurnMode.IDLE)

        if message.reason in (EndReason.MANUAL, EndReason.FORCED):
            return
        if message.reason == EndReason.ERROR:
            self._on_capture_error(message.error or RecognitionErrorKind.NETWORK)
            return
        if message.submitted:
            # Restart follows the submission result instead
            return
        self._schedule_restart(self.timing.restart_delay_ms)

    def _on_capture_error(self, kind: RecognitionErrorKind) -> None:
        if kind.is_transient:
            self._schedule_restart(self.timing.error_retry_delay_ms)
            return

        message = CAPTURE_ERROR_MESSAGES.get(kind, f"Speech recognition error: {kind.value}")
        self.notify(Notice("error", message, code=kind.value))
        if kind.is_fatal:
            self._voice_enabled = False
            return
        self._schedule_restart(self.timing.error_retry_delay_ms)

    def _on_playback_started(self, message: PlaybackStarted) -> None:
        self._cancel_restart()
        if self.capture.is_active:
            self.capture.stop(EndReason.FORCED)
        self._set_mode(TurnMode.SPEAKING)

        engine = self.playback.engine
        self.watchdog.watch(
            "synthesis",
            engine_busy=lambda: engine.speaking or engine.pending,
            expected_busy=lambda: self.playback.is_speaking,
            on_mismatch=self.playback.force_finalize,
        )

    def _on_playback_finished(self, message: PlaybackFinished) -> None:
        self.watchdog.clear()
        if self._mode == TurnMode.SPEAKING:
            self._set_mode(TurnMode.IDLE)
        self._schedule_restart(self.timing.restart_delay_ms)

    def _on_submission_completed(self, message: SubmissionCompleted) -> None:
        if message.outcome == SubmissionOutcome.SENT and message.reply is not None:
            for listener in list(self._reply_listeners):
                listener(message.reply)

        if (
            message.outcome == SubmissionOutcome.SENT
            and message.reply is not None
            and message.from_voice
            and self.auto_speak_replies
        ):
            self.request_speak(message.reply.content)
            return
        if message.outcome == SubmissionOutcome.READ_ALOUD:
            return
        if self._mode == TurnMode.IDLE:
            self._schedule_restart(self.timing.restart_delay_ms)

    # Restart policy

    def _schedule_restart(self, delay_ms: int) -> None:
        if self._closed or not self._voice_enabled:
            return
        self._cancel_restart()
        generation = self.generations.current
        self._restart_handle = self.scheduler.call_later(delay_ms / 1000, self._restart, generation)
        logger.debug("Restart scheduled", delay_ms=delay_ms, generation=generation)

    def _cancel_restart(self) -> None:
        if self._restart_handle is not None:
            self._restart_handle.cancel()
            self._restart_handle = None

    def _restart(self, generation: int) -> None:
        self._restart_handle = None
        if not self.generations.is_current(generation):
            logger.debug("Ignoring stale restart", generation=generation, current=self.generations.current)
            return
        if self._mode != TurnMode.IDLE or not self._voice_enabled:
            logger.debug("Skipping restart", mode=self._mode.value, voice_enabled=self._voice_enabled)
            return
        self.request_listen()

    # Requests

    def request_listen(self) -> bool:
        if self._closed:
            return False
        if self.is_speaking:
            logger.info("Listen request refused while speaking")
            return False
        self._cancel_restart()
        self._voice_enabled = True
        return self.capture.start()

    def request_speak(self, text: str) -> bool:
        if self._closed:
            return False
        self._cancel_restart()
        if self.capture.is_active:
            self.capture.stop(EndReason.FORCED)
        started = self.playback.speak(text)
        if not started:
            self._schedule_restart(self.timing.restart_delay_ms)
        return started

    def cancel_speech(self) -> bool:
        return self.playback.cancel()

    def manual_toggle_mic(self) -> bool:
        """Returns True when the toggle was accepted."""
        if self.is_speaking:
            self.notify(Notice("warning", "Can't listen while the assistant is speaking.", code="speaking"))
            return False
        if self.is_listening:
            self._voice_enabled = False
            self._cancel_restart()
            self.capture.stop(EndReason.MANUAL)
            return True
        return self.request_listen()

    # Input

    def display_text(self) -> str:
        """Pending input followed by the live interim transcript."""
        return join_with_space(self.accumulator.read(), self.capture.interim)

    def set_input(self, text: str) -> None:
        self.accumulator.set(text)

    def submit_input(self) -> bool:
        return self.submission.request_submit(self.accumulator.read())

    def _submit_from_voice(self, text: str, generation: int) -> bool:
        return self.submission.request_submit(text, generation=generation, from_voice=True)

    # Lifecycle

    def shutdown(self) -> None:
        """Release every session and timer. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        self._voice_enabled = False
        self._cancel_restart()
        self.watchdog.clear()
        self.capture.stop(EndReason.FORCED)
        self.playback.cancel()
        self.submission.shutdown()
        self.scheduler.cancel_tasks()
        self._set_mode(TurnMode.IDLE)
        logger.info("Turn coordinator shut down")

    def get_status(self) -> dict:
        return {
            "mode": self._mode.value,
            "voice_enabled": self._voice_enabled,
            "restart_pending": self.restart_pending,
            "generation": self.generations.current,
            "pending_input": self.accumulator.read(),
            "capture": self.capture.get_status(),
            "playback": self.playback.get_status(),
            "submission": self.submission.get_status(),
            "watchdog": self.watchdog.get_status(),
        }
