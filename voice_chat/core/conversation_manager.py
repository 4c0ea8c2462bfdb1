"""
Core conversation management: builds the engines and runs the turn coordinator.
"""

import asyncio
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional
import structlog

from ..config.settings import Settings, settings
from ..providers.conversation.base import ConversationService
from ..providers.recognition.base import RecognitionEngine
from ..providers.registry import registry
from ..providers.synthesis.base import SynthesisEngine
from .coordinator import TurnCoordinator
from .models import Notice, TurnMode
from .scheduler import Scheduler


logger = structlog.get_logger()


@dataclass
class ConversationConfig:
    """Configuration for the conversation system."""

    recognition_provider: str = "whisperkit"
    synthesis_provider: str = "elevenlabs"
    conversation_provider: str = "gemini"
    model_id: Optional[str] = None
    auto_speak_replies: bool = True
    listen_on_start: bool = True
    debug_mode: bool = False
    mock_mode: bool = False


class ConversationManager:
    """
    Owns the engines and the coordinator for one voice chat session.

    Everything runs on the calling event loop; ``start`` and ``stop`` must
    be called from inside it.
    """

    def __init__(
        self,
        config: ConversationConfig,
        scheduler: Optional[Scheduler] = None,
        app_settings: Optional[Settings] = None,
    ):
        self.config = config
        self.settings = app_settings or settings
        self.scheduler = scheduler or Scheduler()

        self.recognition_engine = self._initialize_recognition_engine()
        self.synthesis_engine = self._initialize_synthesis_engine()
        self.conversation_service = self._initialize_conversation_service()

        self.coordinator = TurnCoordinator(
            self.recognition_engine,
            self.synthesis_engine,
            self.conversation_service,
            scheduler=self.scheduler,
            config=self.settings,
        )
        self.coordinator.auto_speak_replies = config.auto_speak_replies
        self.is_running = False

    def _initialize_recognition_engine(self) -> RecognitionEngine:
        """Initialize the recognition engine based on configuration."""
        name = "mock" if self.config.mock_mode else self.config.recognition_provider
        return registry.get_recognition_engine(name)

    def _initialize_synthesis_engine(self) -> SynthesisEngine:
        """Initialize the synthesis engine based on configuration."""
        name = "mock" if self.config.mock_mode else self.config.synthesis_provider
        return registry.get_synthesis_engine(name)

    def _initialize_conversation_service(self) -> ConversationService:
        """Initialize the conversation service based on configuration."""
        name = "mock" if self.config.mock_mode else self.config.conversation_provider
        return registry.get_conversation_service(name)

    async def start(self) -> None:
        """Initialize providers, pick a model and optionally start listening."""
        logger.info(
            "Starting voice chat",
            recognition=self.config.recognition_provider,
            synthesis=self.config.synthesis_provider,
            conversation=self.config.conversation_provider,
            mock_mode=self.config.mock_mode,
        )

        try:
            self.recognition_engine.initialize()
            self.synthesis_engine.initialize()
            self.conversation_service.initialize()
        except Exception as e:
            logger.error("Failed to initialize providers", error=str(e))
            raise

        submission = self.coordinator.submission
        await submission.load_models()
        if self.config.model_id and not submission.select_model(self.config.model_id):
            self.coordinator.notify(
                Notice("warning", f"Unknown model {self.config.model_id}, using {submission.selected_model}.", code="unknown_model")
            )

        self.is_running = True
        if self.config.listen_on_start:
            self.coordinator.request_listen()

        logger.info("Voice chat started", model=submission.selected_model)

    def stop(self) -> None:
        """Stop the coordinator and every provider."""
        logger.info("Stopping voice chat")
        self.is_running = False
        self.coordinator.shutdown()

        for name, stop in (
            ("recognition", self.recognition_engine.abort),
            ("synthesis", self.synthesis_engine.stop),
            ("conversation", self.conversation_service.stop),
        ):
            try:
                stop()
            except Exception as e:
                logger.warning("Error stopping provider", provider=name, error=str(e))

        logger.info("Voice chat stopped")

    def add_notice_listener(self, listener: Callable[[Notice], None]) -> None:
        self.coordinator.add_notice_listener(listener)

    def toggle_mic(self) -> bool:
        return self.coordinator.manual_toggle_mic()

    def submit_text(self, text: str) -> bool:
        """Typed input: replace the pending buffer and submit it."""
        self.coordinator.set_input(text)
        return self.coordinator.submit_input()

    def speak(self, text: str) -> bool:
        return self.coordinator.request_speak(text)

    def is_idle(self, include_capture: bool = True) -> bool:
        coordinator = self.coordinator
        if coordinator.playback.is_active or coordinator.submission.in_flight:
            return False
        if not include_capture:
            return True
        return coordinator.mode == TurnMode.IDLE and not coordinator.restart_pending

    async def wait_until_idle(
        self,
        timeout: Optional[float] = None,
        include_capture: bool = True,
        poll_interval: float = 0.05,
    ) -> bool:
        """Wait until nothing is being submitted or spoken (and, optionally, heard)."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout if timeout is not None else None
        while not self.is_idle(include_capture):
            if deadline is not None and loop.time() >= deadline:
                return False
            await asyncio.sleep(poll_interval)
        return True

    def get_status(self) -> Dict[str, Any]:
        """Get current system status."""
        return {
            "is_running": self.is_running,
            "recognition_provider": self.config.recognition_provider,
            "synthesis_provider": self.config.synthesis_provider,
            "conversation_provider": self.config.conversation_provider,
            "mock_mode": self.config.mock_mode,
            "coordinator": self.coordinator.get_status(),
            "providers_status": {
                "recognition": self.recognition_engine.get_status(),
                "synthesis": self.synthesis_engine.get_status(),
                "conversation": self.conversation_service.get_status(),
            },
        }
