"""Base interface for speech recognition engines."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional


class RecognitionEventType(str, Enum):
    STARTED = "started"
    AUDIO_STARTED = "audio_started"
    SPEECH_STARTED = "speech_started"
    PARTIAL = "partial"
    FINAL = "final"
    ERROR = "error"
    ENDED = "ended"


class RecognitionErrorKind(str, Enum):
    NO_SPEECH = "no-speech"
    ABORTED = "aborted"
    AUDIO_CAPTURE = "audio-capture"
    NETWORK = "network"
    NOT_ALLOWED = "not-allowed"
    SERVICE_NOT_ALLOWED = "service-not-allowed"
    NOT_SUPPORTED = "not-supported"
    LANGUAGE_NOT_SUPPORTED = "language-not-supported"

    @property
    def is_transient(self) -> bool:
        """Silent errors that are simply retried."""
        return self in (RecognitionErrorKind.NO_SPEECH, RecognitionErrorKind.ABORTED)

    @property
    def is_fatal(self) -> bool:
        """Errors a retry loop cannot fix without user action."""
        return self in (
            RecognitionErrorKind.NOT_ALLOWED,
            RecognitionErrorKind.SERVICE_NOT_ALLOWED,
            RecognitionErrorKind.NOT_SUPPORTED,
            RecognitionErrorKind.LANGUAGE_NOT_SUPPORTED,
        )


@dataclass(frozen=True)
class RecognitionEvent:
    """One event emitted by a recognition engine run."""

    type: RecognitionEventType
    text: str = ""
    error: Optional[RecognitionErrorKind] = None
    message: str = ""


RecognitionHandler = Callable[[RecognitionEvent], None]


class RecognitionEngine(ABC):
    """
    Abstract base class for continuous recognition engines.

    An engine runs at most one session at a time. Events must be delivered
    on the event loop thread; an engine that captures audio on another
    thread marshals them with ``loop.call_soon_threadsafe``.
    """

    @abstractmethod
    def initialize(self) -> None:
        """Prepare the engine (check binaries, devices)."""
        pass

    @abstractmethod
    def start(self, on_event: RecognitionHandler) -> None:
        """
        Begin a continuous recognition run.

        Args:
            on_event: Receives every event of this run, ending with ``ENDED``.

        Raises:
            RuntimeError: When the engine cannot run at all.
        """
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop listening, flush the pending utterance, then emit ``ENDED``."""
        pass

    @abstractmethod
    def abort(self) -> None:
        """Stop listening immediately, discarding any pending audio."""
        pass

    @abstractmethod
    def get_status(self) -> dict:
        """Get current status of the engine."""
        pass
