"""Interprets pending input: commands are handled locally, everything else is sent."""

from typing import Callable, List, Optional, Protocol, Tuple
import structlog

from ..config.settings import CommandSettings, TimingSettings
from ..providers.conversation.base import AssistantTurn, ConversationService, ModelInfo
from .models import Notice, SubmissionCompleted, SubmissionOutcome
from .scheduler import Scheduler, TimerHandle
from .transcript import TranscriptAccumulator


logger = structlog.get_logger()


class Speaker(Protocol):
    """What the gate needs from whoever owns playback."""

    @property
    def is_speaking(self) -> bool: ...

    def request_speak(self, text: str) -> bool: ...

    def cancel_speech(self) -> bool: ...


class SubmissionGate:
    """
    Allows at most one submission in flight.

    A capture generation can submit only once; the busy flag is released
    a short delay after the submission completes.
    """

    def __init__(
        self,
        accumulator: TranscriptAccumulator,
        service: ConversationService,
        scheduler: Scheduler,
        speaker: Speaker,
        dispatch: Callable[[object], None],
        notify: Callable[[Notice], None],
        commands: Optional[CommandSettings] = None,
        timing: Optional[TimingSettings] = None,
    ):
        self.accumulator = accumulator
        self.service = service
        self.scheduler = scheduler
        self._speaker = speaker
        self._dispatch = dispatch
        self._notify = notify
        self.commands = commands or CommandSettings()
        self.reset_delay = (timing or TimingSettings()).submit_reset_delay_ms / 1000

        self.models: List[ModelInfo] = []
        self.selected_model: Optional[str] = None

        self._in_flight = False
        self._last_generation: Optional[int] = None
        self._release_handle: Optional[TimerHandle] = None

    @property
    def in_flight(self) -> bool:
        return self._in_flight

    async def load_models(self) -> List[ModelInfo]:
        """Fetch the model list and select the first model if none is selected."""
        try:
            models = await self.service.list_models()
        except Exception as e:
            logger.error("Failed to load models", error=str(e))
            self._notify(Notice("error", f"Failed to load models: {e}", code="models_failed"))
            return []

        self.models = list(models)
        ids = [model.id for model in self.models]
        if self.models and self.selected_model not in ids:
            self.selected_model = self.models[0].id
        logger.info("Models loaded", count=len(self.models), selected=self.selected_model)
        return self.models

    def select_model(self, model_id: str) -> bool:
        if self.models and model_id not in [model.id for model in self.models]:
            logger.warning("Unknown model", model_id=model_id)
            return False
        self.selected_model = model_id
        logger.info("Model selected", model_id=model_id)
        return True

    def request_submit(self, raw_text: str, generation: Optional[int] = None, from_voice: bool = False) -> bool:
        """Start a submission in the background. Returns False when it was not accepted."""
        text = raw_text.strip()
        if not text:
            logger.debug("Ignoring empty submission")
            return False
        if not self._acquire(generation):
            return False
        self.scheduler.spawn(self._complete(text, from_voice), name="submission")
        return True

    async def submit(self, raw_text: str, from_voice: bool = False) -> SubmissionOutcome:
        """Submit and wait for the outcome."""
        text = raw_text.strip()
        if not text:
            return SubmissionOutcome.EMPTY
        if not self._acquire(None):
            return SubmissionOutcome.BUSY
        return await self._complete(text, from_voice)

    def _acquire(self, generation: Optional[int]) -> bool:
        if self._in_flight:
            logger.info("Submission already in flight")
            return False
        if generation is not None and generation == self._last_generation:
            logger.info("Generation already submitted", generation=generation)
            return False
        self._in_flight = True
        if generation is not None:
            self._last_generation = generation
        return True

    async def _complete(self, text: str, from_voice: bool) -> SubmissionOutcome:
        try:
            outcome, reply = await self._handle(text)
        finally:
            self._release_later()
        logger.info("Submission completed", outcome=outcome.value, from_voice=from_voice)
        self._dispatch(SubmissionCompleted(outcome, reply, from_voice))
        return outcome

    async def _handle(self, text: str) -> Tuple[SubmissionOutcome, Optional[AssistantTurn]]:
        if text == self.commands.clear.strip():
            self.service.clear_history()
            self.accumulator.clear()
            logger.info("Conversation cleared")
            return SubmissionOutcome.CLEARED, None

        if text == self.commands.read_last_response.strip():
            self.accumulator.clear()
            if self._speaker.is_speaking:
                self._speaker.cancel_speech()
                return SubmissionOutcome.READ_CANCELLED, None
            last = self.service.last_assistant_turn()
            if last is None:
                self._notify(Notice("info", "There is no response to read yet.", code="nothing_to_read"))
                return SubmissionOutcome.NOTHING_TO_READ, None
            self._speaker.request_speak(last.content)
            return SubmissionOutcome.READ_ALOUD, last

        if not self.selected_model:
            self._notify(Notice("warning", "Please select a model first.", code="no_model"))
            return SubmissionOutcome.NO_MODEL, None

        logger.info("Sending message", model_id=self.selected_model, length=len(text))
        try:
            reply = await self.service.send_message(text, self.selected_model)
        except Exception as e:
            logger.error("Failed to send message", error=str(e), error_type=type(e).__name__)
            self._notify(Notice("error", f"Failed to send message: {e}", code="submission_failed"))
            return SubmissionOutcome.FAILED, None

        # Input may have grown while waiting; keep only what came after the sent text
        current = self.accumulator.read().strip()
        if current.startswith(text):
            self.accumulator.set(current[len(text):].strip())
        else:
            self.accumulator.clear()
        return SubmissionOutcome.SENT, reply

    def _release_later(self) -> None:
        if self._release_handle is not None:
            self._release_handle.cancel()
        self._release_handle = self.scheduler.call_later(self.reset_delay, self._release)

    def _release(self) -> None:
        self._release_handle = None
        self._in_flight = False

    def shutdown(self) -> None:
        if self._release_handle is not None:
            self._release_handle.cancel()
            self._release_handle = None
        self._in_flight = False

    def get_status(self) -> dict:
        return {
            "in_flight": self._in_flight,
            "selected_model": self.selected_model,
            "models": [model.id for model in self.models],
        }
