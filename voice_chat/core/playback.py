"""Sequential, cancellable playback of assistant text in bounded chunks."""

from typing import Callable, List, Optional
import structlog

from ..providers.synthesis.base import (
    SynthesisEngine,
    SynthesisErrorKind,
    SynthesisEvent,
    SynthesisEventType,
)
from ..utils.text import join_with_space, split_sentences, strip_markdown
from .models import (
    GenerationCounter,
    Notice,
    PlaybackFinished,
    PlaybackStarted,
    PlaybackState,
    PlaybackStatus,
    SpeechChunk,
)


logger = structlog.get_logger()


def chunk_text(text: str, max_length: int = 180) -> List[SpeechChunk]:
    """
    Split plain text into numbered chunks no longer than ``max_length``.

    Sentences are packed together while they fit; a sentence that is
    longer than the limit on its own is cut at fixed-width boundaries.
    """
    if max_length <= 0:
        raise ValueError("max_length must be positive")

    pieces: List[str] = []
    current = ""
    for sentence in split_sentences(text):
        if len(sentence) > max_length:
            if current:
                pieces.append(current)
            cuts = [sentence[i:i + max_length].strip() for i in range(0, len(sentence), max_length)]
            cuts = [cut for cut in cuts if cut]
            pieces.extend(cuts[:-1])
            current = cuts[-1] if cuts else ""
            continue

        candidate = join_with_space(current, sentence)
        if len(candidate) <= max_length:
            current = candidate
        else:
            pieces.append(current)
            current = sentence

    if current:
        pieces.append(current)

    total = len(pieces)
    return [SpeechChunk(text=piece, index=i, total=total) for i, piece in enumerate(pieces)]


class PlaybackSession:
    """
    Speaks one request at a time; a new request replaces the old one.

    Chunk i+1 is handed to the engine only after chunk i reports that it
    ended, so utterances never overlap.
    """

    def __init__(
        self,
        engine: SynthesisEngine,
        generations: GenerationCounter,
        dispatch: Callable[[object], None],
        notify: Callable[[Notice], None],
        voice: Optional[str] = None,
        max_chunk_length: int = 180,
    ):
        self.engine = engine
        self._generations = generations
        self._dispatch = dispatch
        self._notify = notify
        self.voice = voice
        self.max_chunk_length = max_chunk_length

        self._state: Optional[PlaybackState] = None

    @property
    def state(self) -> Optional[PlaybackState]:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is not None

    @property
    def is_speaking(self) -> bool:
        return self._state is not None and self._state.status == PlaybackStatus.SPEAKING

    def speak(self, raw_text: str) -> bool:
        """
        Play ``raw_text`` stripped of markdown, replacing whatever is playing.

        A replaced request ends without ``PlaybackFinished``; the new
        request's ``PlaybackStarted`` follows directly.
        """
        chunks = chunk_text(strip_markdown(raw_text), self.max_chunk_length)
        if not chunks:
            logger.debug("Nothing to speak after stripping formatting")
            self.cancel()
            return False

        self._stop(replaced=True)

        state = PlaybackState(generation=self._generations.next(), chunks=chunks)
        self._state = state
        logger.info("Starting playback", generation=state.generation, chunks=len(chunks))
        self._start_chunk(state)
        return True

    def _start_chunk(self, state: PlaybackState) -> None:
        chunk = state.current_chunk
        if chunk is None:
            self._finish()
            return

        def on_event(
            event: SynthesisEvent,
            generation: int = state.generation,
            index: int = chunk.index,
        ) -> None:
            self.handle_event(generation, index, event)

        first = state.status == PlaybackStatus.IDLE
        state.status = PlaybackStatus.SPEAKING
        if first:
            self._dispatch(PlaybackStarted(state.generation))
            # The dispatch may have replaced or cancelled this request
            if self._state is not state:
                return

        logger.debug("Speaking chunk", index=chunk.index, total=chunk.total, length=len(chunk.text))
        try:
            self.engine.speak(chunk.text, self.voice, on_event)
        except (RuntimeError, OSError) as e:
            self.on_chunk_error(SynthesisErrorKind.SYNTHESIS_FAILED, str(e))

    def handle_event(self, generation: int, index: int, event: SynthesisEvent) -> None:
        """Single entry point for every engine event."""
        state = self._state
        if state is None or state.generation != generation or state.current_chunk_index != index:
            logger.debug(
                "Ignoring stale synthesis event",
                event_type=event.type.value,
                generation=generation,
                index=index,
            )
            return

        if event.type == SynthesisEventType.STARTED:
            logger.debug("Chunk audio started", index=index)
        elif event.type == SynthesisEventType.ENDED:
            chunk = state.current_chunk
            if chunk is None or chunk.is_last:
                self._finish()
            else:
                state.current_chunk_index += 1
                self._start_chunk(state)
        elif event.type == SynthesisEventType.ERROR:
            self.on_chunk_error(event.error or SynthesisErrorKind.SYNTHESIS_FAILED, event.message)

    def on_chunk_error(self, kind: SynthesisErrorKind, message: str = "") -> None:
        if kind.is_self_inflicted:
            logger.debug("Playback interrupted", error=kind.value)
        else:
            logger.error("Playback failed", error=kind.value, message=message)
            detail = message or kind.value
            self._notify(Notice("error", f"Speech playback failed: {detail}", code=kind.value))
        self._finish(cancelled=kind.is_self_inflicted)

    def force_finalize(self) -> None:
        """Treat the request as complete; used when a completion event went missing."""
        if self._state is None:
            return
        logger.warning("Finalizing playback without completion event", generation=self._state.generation)
        self._finish()

    def cancel(self) -> bool:
        return self._stop()

    def _stop(self, replaced: bool = False) -> bool:
        state = self._state
        if state is None:
            return False
        self._state = None
        self._generations.next()
        logger.info(
            "Playback cancelled",
            generation=state.generation,
            chunk=state.current_chunk_index,
            replaced=replaced,
        )
        try:
            self.engine.cancel()
        except (RuntimeError, OSError) as e:
            logger.warning("Synthesis engine cancel failed", error=str(e))
        if not replaced:
            self._dispatch(PlaybackFinished(state.generation, cancelled=True))
        return True

    def _finish(self, cancelled: bool = False) -> None:
        state = self._state
        if state is None:
            return
        self._state = None
        self._generations.next()
        logger.info("Playback finished", generation=state.generation, cancelled=cancelled)
        self._dispatch(PlaybackFinished(state.generation, cancelled=cancelled))

    def get_status(self) -> dict:
        state = self._state
        return {
            "status": state.status.value if state else PlaybackStatus.IDLE.value,
            "generation": state.generation if state else None,
            "chunk": state.current_chunk_index if state else None,
            "chunks": len(state.chunks) if state else 0,
            "engine": self.engine.get_status(),
        }
