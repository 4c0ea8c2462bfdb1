"""Base interface for speech synthesis engines."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional


class SynthesisEventType(str, Enum):
    STARTED = "started"
    ENDED = "ended"
    ERROR = "error"


class SynthesisErrorKind(str, Enum):
    INTERRUPTED = "interrupted"
    CANCELED = "canceled"
    AUDIO_BUSY = "audio-busy"
    NETWORK = "network"
    SYNTHESIS_FAILED = "synthesis-failed"
    VOICE_UNAVAILABLE = "voice-unavailable"

    @property
    def is_self_inflicted(self) -> bool:
        """Errors caused by our own cancel() call."""
        return self in (SynthesisErrorKind.INTERRUPTED, SynthesisErrorKind.CANCELED)


@dataclass(frozen=True)
class SynthesisEvent:
    """One event emitted for a single utterance."""

    type: SynthesisEventType
    error: Optional[SynthesisErrorKind] = None
    message: str = ""


SynthesisHandler = Callable[[SynthesisEvent], None]


class SynthesisEngine(ABC):
    """Abstract base class for text-to-speech engines."""

    @abstractmethod
    def initialize(self) -> None:
        """Initialize the engine."""
        pass

    @abstractmethod
    def speak(self, text: str, voice: Optional[str], on_event: SynthesisHandler) -> None:
        """
        Queue one utterance.

        Args:
            text: Plain text to speak
            voice: Engine-specific voice id, or None for the default
            on_event: Receives ``STARTED`` then ``ENDED`` or ``ERROR``
        """
        pass

    @abstractmethod
    def cancel(self) -> None:
        """Stop the current utterance and drop queued ones."""
        pass

    @property
    @abstractmethod
    def speaking(self) -> bool:
        """True while audio is being played."""
        pass

    @property
    @abstractmethod
    def pending(self) -> bool:
        """True while utterances are queued or being synthesized."""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop the engine and clean up resources."""
        pass

    @abstractmethod
    def get_status(self) -> dict:
        """Get current status of the engine."""
        pass
