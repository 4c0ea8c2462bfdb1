"""Shared state types and coordinator messages."""

from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

from ..providers.conversation.base import AssistantTurn
from ..providers.recognition.base import RecognitionErrorKind


class TurnMode(str, Enum):
    """Which engine currently owns the turn."""

    IDLE = "idle"
    LISTENING = "listening"
    SPEAKING = "speaking"


class CaptureStatus(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    LISTENING = "listening"
    STOPPING = "stopping"


class PlaybackStatus(str, Enum):
    IDLE = "idle"
    SPEAKING = "speaking"


class EndReason(str, Enum):
    """Why a capture session ended."""

    NATURAL = "natural"
    MANUAL = "manual"
    FORCED = "forced"
    ERROR = "error"


class SubmissionOutcome(str, Enum):
    EMPTY = "empty"
    BUSY = "busy"
    CLEARED = "cleared"
    READ_ALOUD = "read_aloud"
    READ_CANCELLED = "read_cancelled"
    NOTHING_TO_READ = "nothing_to_read"
    NO_MODEL = "no_model"
    SENT = "sent"
    FAILED = "failed"


class GenerationCounter:
    """Monotonic validity token shared by every session the coordinator owns."""

    def __init__(self) -> None:
        self._value = 0

    @property
    def current(self) -> int:
        return self._value

    def next(self) -> int:
        self._value += 1
        return self._value

    def is_current(self, generation: int) -> bool:
        return generation == self._value


@dataclass
class RecognitionSession:
    """State of one recognition engine run."""

    generation: int
    last_speech_timestamp: float
    status: CaptureStatus = CaptureStatus.STARTING
    manual_stop_requested: bool = False
    audio_started: bool = False


@dataclass(frozen=True)
class SpeechChunk:
    """One bounded piece of text handed to the synthesis engine."""

    text: str
    index: int
    total: int

    @property
    def is_last(self) -> bool:
        return self.index == self.total - 1


@dataclass
class PlaybackState:
    """State of one speak request."""

    generation: int
    chunks: List[SpeechChunk]
    status: PlaybackStatus = PlaybackStatus.IDLE
    current_chunk_index: int = 0

    @property
    def current_chunk(self) -> Optional[SpeechChunk]:
        if 0 <= self.current_chunk_index < len(self.chunks):
            return self.chunks[self.current_chunk_index]
        return None


@dataclass(frozen=True)
class Notice:
    """A message meant for the user rather than the log."""

    level: str
    message: str
    code: str = ""


# Messages dispatched to TurnCoordinator


@dataclass(frozen=True)
class CaptureStarted:
    generation: int


@dataclass(frozen=True)
class CaptureEnded:
    generation: int
    reason: EndReason
    error: Optional[RecognitionErrorKind] = None
    submitted: bool = False


@dataclass(frozen=True)
class PlaybackStarted:
    generation: int


@dataclass(frozen=True)
class PlaybackFinished:
    generation: int
    cancelled: bool = False


@dataclass(frozen=True)
class SubmissionCompleted:
    outcome: SubmissionOutcome
    reply: Optional[AssistantTurn] = None
    from_voice: bool = False
