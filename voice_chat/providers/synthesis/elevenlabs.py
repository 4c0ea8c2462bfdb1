"""ElevenLabs synthesis engine with pygame playback."""

import asyncio
import os
import queue
import threading
import time
from dataclasses import dataclass
from io import BytesIO
from typing import Callable, Optional
import pygame
from elevenlabs import VoiceSettings
from elevenlabs.client import ElevenLabs
from elevenlabs.core.api_error import ApiError
import structlog

from ...exceptions import ProviderError
from .base import (
    SynthesisEngine,
    SynthesisErrorKind,
    SynthesisEvent,
    SynthesisEventType,
    SynthesisHandler,
)


logger = structlog.get_logger()


@dataclass
class _Utterance:
    text: str
    voice_id: str
    handler: SynthesisHandler
    loop: asyncio.AbstractEventLoop
    epoch: int
    on_settled: Callable[[], None]
    settled: bool = False

    def emit(self, event_type: SynthesisEventType, error: Optional[SynthesisErrorKind] = None, message: str = "") -> None:
        event = SynthesisEvent(event_type, error, message)
        terminal = event_type != SynthesisEventType.STARTED
        if terminal:
            self.settled = True
        if self.loop.is_closed():
            if terminal:
                self.on_settled()
            return
        self.loop.call_soon_threadsafe(self._deliver, event, terminal)

    def _deliver(self, event: SynthesisEvent, terminal: bool) -> None:
        # The engine stays busy until its terminal event reaches the loop
        if terminal:
            self.on_settled()
        self.handler(event)


class ElevenLabsSynthesisEngine(SynthesisEngine):
    """
    Speaks utterances one after another on a worker thread.

    ``cancel()`` bumps an epoch: every utterance queued or playing under an
    older epoch is dropped and reported as interrupted or canceled.
    """

    def __init__(
        self,
        voice_id: str = "pNInz6obpgDQGcFmaJgB",  # Adam voice
        model_id: str = "eleven_flash_v2_5",
        output_format: str = "mp3_22050_32",
        stability: float = 0.5,
        similarity_boost: float = 0.8,
        style: float = 0.0,
        speed: float = 1.0,
        use_speaker_boost: bool = True,
    ):
        self.voice_id = voice_id
        self.model_id = model_id
        self.output_format = output_format

        self.voice_settings = VoiceSettings(
            stability=stability,
            similarity_boost=similarity_boost,
            style=style,
            use_speaker_boost=use_speaker_boost,
            speed=speed,
        )

        self.client: Optional[ElevenLabs] = None
        self.is_playing = False
        self.should_stop = False
        self.utterance_queue: queue.Queue = queue.Queue()
        self.playback_thread: Optional[threading.Thread] = None

        self._lock = threading.Lock()
        self._epoch = 0
        self._pending = 0

    @property
    def speaking(self) -> bool:
        return self.is_playing

    @property
    def pending(self) -> bool:
        with self._lock:
            return self._pending > 0

    def initialize(self) -> None:
        """Initialize ElevenLabs client and pygame mixer."""
        logger.info("Initializing ElevenLabs engine", voice_id=self.voice_id)

        api_key = os.getenv("ELEVENLABS_API_KEY")
        if not api_key:
            raise ProviderError("elevenlabs", "ELEVENLABS_API_KEY environment variable not set")

        self.client = ElevenLabs(api_key=api_key)

        try:
            pygame.mixer.pre_init(frequency=22050, size=-16, channels=2, buffer=1024)
            pygame.mixer.init()
        except pygame.error as e:
            raise ProviderError("elevenlabs", f"Audio output unavailable: {e}")

        self.should_stop = False
        self.playback_thread = threading.Thread(target=self._playback_worker, daemon=True)
        self.playback_thread.start()

        logger.info("ElevenLabs engine initialized")

    def speak(self, text: str, voice: Optional[str], on_event: SynthesisHandler) -> None:
        if not self.client:
            raise RuntimeError("ElevenLabs not initialized")

        with self._lock:
            utterance = _Utterance(
                text=text,
                voice_id=voice or self.voice_id,
                handler=on_event,
                loop=asyncio.get_running_loop(),
                epoch=self._epoch,
                on_settled=self._settle,
            )
            self._pending += 1
        self.utterance_queue.put(utterance)
        logger.debug("Utterance queued", text_length=len(text))

    def _playback_worker(self) -> None:
        while not self.should_stop:
            try:
                utterance = self.utterance_queue.get(timeout=0.1)
            except queue.Empty:
                continue
            try:
                self._play(utterance)
            except Exception as e:
                logger.error("Speech worker failed", error=str(e), error_type=type(e).__name__)
            finally:
                self.is_playing = False
                if not utterance.settled:
                    utterance.emit(SynthesisEventType.ERROR, SynthesisErrorKind.SYNTHESIS_FAILED)
                self.utterance_queue.task_done()

    def _settle(self) -> None:
        with self._lock:
            self._pending -= 1

    def _is_current(self, utterance: _Utterance) -> bool:
        return utterance.epoch == self._epoch and not self.should_stop

    def _play(self, utterance: _Utterance) -> None:
        if not self._is_current(utterance):
            utterance.emit(SynthesisEventType.ERROR, SynthesisErrorKind.CANCELED)
            return

        try:
            audio_data = self._synthesize(utterance)
        except ApiError as e:
            kind = SynthesisErrorKind.VOICE_UNAVAILABLE if e.status_code == 404 else SynthesisErrorKind.SYNTHESIS_FAILED
            logger.error("ElevenLabs request failed", status_code=e.status_code, error=str(e.body))
            utterance.emit(SynthesisEventType.ERROR, kind, str(e.body))
            return
        except Exception as e:
            logger.error("Error generating speech audio", error=str(e))
            utterance.emit(SynthesisEventType.ERROR, SynthesisErrorKind.NETWORK, str(e))
            return

        if not self._is_current(utterance):
            utterance.emit(SynthesisEventType.ERROR, SynthesisErrorKind.INTERRUPTED)
            return

        try:
            pygame.mixer.music.load(BytesIO(audio_data))
            pygame.mixer.music.play()
        except pygame.error as e:
            logger.error("Audio playback failed", error=str(e))
            utterance.emit(SynthesisEventType.ERROR, SynthesisErrorKind.AUDIO_BUSY, str(e))
            return

        self.is_playing = True
        utterance.emit(SynthesisEventType.STARTED)

        while pygame.mixer.music.get_busy() and self._is_current(utterance):
            time.sleep(0.01)
        self.is_playing = False

        if self._is_current(utterance):
            utterance.emit(SynthesisEventType.ENDED)
            logger.debug("Utterance played", text_length=len(utterance.text))
        else:
            utterance.emit(SynthesisEventType.ERROR, SynthesisErrorKind.INTERRUPTED)

    def _synthesize(self, utterance: _Utterance) -> bytes:
        audio = self.client.text_to_speech.convert(
            voice_id=utterance.voice_id,
            text=utterance.text,
            model_id=self.model_id,
            output_format=self.output_format,
            voice_settings=self.voice_settings,
        )

        # Convert to bytes if needed
        if hasattr(audio, "content"):
            return audio.content  # type: ignore[attr-defined]
        if isinstance(audio, (bytes, bytearray)):
            return bytes(audio)
        return b"".join(audio)

    def cancel(self) -> None:
        """Stop the current utterance and drop queued ones."""
        with self._lock:
            self._epoch += 1
        if pygame.mixer.get_init():
            pygame.mixer.music.stop()
        logger.debug("Speech cancelled", epoch=self._epoch)

    def stop(self) -> None:
        """Stop ElevenLabs engine."""
        logger.info("Stopping ElevenLabs engine")

        self.cancel()
        self.should_stop = True

        if self.playback_thread and self.playback_thread.is_alive():
            self.playback_thread.join(timeout=2.0)

        pygame.mixer.quit()
        self.client = None

    def get_status(self) -> dict:
        """Get ElevenLabs engine status."""
        return {
            "provider": "elevenlabs",
            "voice_id": self.voice_id,
            "model_id": self.model_id,
            "speaking": self.speaking,
            "pending": self.pending,
            "queue_size": self.utterance_queue.qsize(),
            "playback_thread_alive": self.playback_thread.is_alive()
            if self.playback_thread
            else False,
            "initialized": self.client is not None,
            "mixer_initialized": pygame.mixer.get_init() is not None,
        }
