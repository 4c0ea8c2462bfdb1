"""WhisperKit recognition engine: microphone capture, VAD segmentation and CLI transcription."""

import asyncio
import collections
import os
import queue
import subprocess
import tempfile
import threading
import time
from typing import Deque, List, Optional
import numpy as np
import soundfile as sf
import structlog

from ...exceptions import ProviderError
from ...utils.vad import VoiceActivityDetector
from .base import (
    RecognitionEngine,
    RecognitionErrorKind,
    RecognitionEvent,
    RecognitionEventType,
    RecognitionHandler,
)


logger = structlog.get_logger()


class _CaptureRun:
    """Resources of one recognition run. Events go to this run's handler only."""

    def __init__(self, handler: RecognitionHandler, loop: asyncio.AbstractEventLoop, detector: VoiceActivityDetector):
        self.handler = handler
        self.loop = loop
        self.detector = detector
        self.audio_queue: queue.Queue = queue.Queue(maxsize=100)
        self.stop_requested = threading.Event()
        self.abort_requested = threading.Event()
        self.stream = None
        self.thread: Optional[threading.Thread] = None
        self._lock = threading.Lock()

    def emit(self, event_type: RecognitionEventType, **kwargs) -> None:
        if self.loop.is_closed():
            return
        self.loop.call_soon_threadsafe(self.handler, RecognitionEvent(event_type, **kwargs))

    def close_stream(self) -> None:
        with self._lock:
            stream, self.stream = self.stream, None
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except Exception as e:
            logger.error("Error stopping audio stream", error=str(e))


class WhisperKitRecognitionEngine(RecognitionEngine):
    """
    Continuous recognition on top of the ``whisperkit-cli`` binary.

    Microphone blocks are segmented into utterances with voice activity
    detection; each utterance is written to a WAV file and transcribed,
    producing one ``FINAL`` event.
    """

    def __init__(
        self,
        model: str = "large-v3_turbo",
        compute_units: str = "cpuAndNeuralEngine",
        whisperkit_path: str = "/opt/homebrew/bin/whisperkit-cli",
        language: str = "en-US",
        sample_rate: int = 16000,
        channels: int = 1,
        frame_duration_ms: int = 30,
        vad_aggressiveness: int = 2,
        utterance_silence_ms: int = 700,
        no_speech_timeout_ms: int = 8000,
        block_duration: float = 0.1,
        transcribe_timeout: float = 60.0,
    ):
        self.model = model
        self.compute_units = compute_units
        self.whisperkit_path = whisperkit_path
        self.language = language
        self.sample_rate = sample_rate
        self.channels = channels
        self.frame_duration_ms = frame_duration_ms
        self.vad_aggressiveness = vad_aggressiveness
        self.utterance_silence_ms = utterance_silence_ms
        self.no_speech_timeout = no_speech_timeout_ms / 1000
        self.block_size = int(sample_rate * block_duration)
        self.transcribe_timeout = transcribe_timeout

        self.is_initialized = False
        self._run: Optional[_CaptureRun] = None

        self.audio_callback_count = 0
        self.utterance_count = 0
        self.last_latency_ms: Optional[float] = None

    @property
    def is_running(self) -> bool:
        return self._run is not None

    def initialize(self) -> None:
        """Check that the WhisperKit CLI is available."""
        logger.info("Initializing WhisperKit engine", model=self.model, path=self.whisperkit_path)
        try:
            result = subprocess.run(
                [self.whisperkit_path, "--help"],
                capture_output=True,
                text=True,
                timeout=10,
            )
        except FileNotFoundError:
            raise ProviderError("whisperkit", f"CLI not found at {self.whisperkit_path}")
        except subprocess.TimeoutExpired:
            raise ProviderError("whisperkit", "CLI check timed out")
        if result.returncode != 0:
            raise ProviderError("whisperkit", f"CLI not working: {result.stderr}")

        self.is_initialized = True
        logger.info("WhisperKit engine initialized")

    def start(self, on_event: RecognitionHandler) -> None:
        if self._run is not None:
            raise RuntimeError("Recognition already running")

        try:
            # PortAudio is loaded on import and may be missing entirely
            import sounddevice as sd
        except OSError as e:
            raise RuntimeError(f"Audio input unavailable: {e}") from e

        detector = VoiceActivityDetector(
            sample_rate=self.sample_rate,
            frame_duration_ms=self.frame_duration_ms,
            aggressiveness=self.vad_aggressiveness,
        )
        run = _CaptureRun(on_event, asyncio.get_running_loop(), detector)

        def audio_callback(indata: np.ndarray, frames: int, time_info, status) -> None:
            if status:
                logger.warning("Audio callback status", status=str(status))
            audio = np.mean(indata, axis=1) if indata.shape[1] > 1 else indata.flatten()
            self.audio_callback_count += 1
            try:
                run.audio_queue.put_nowait(audio.copy())
            except queue.Full:
                logger.warning("Audio queue full, dropping block")

        try:
            run.stream = sd.InputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype=np.float32,
                blocksize=self.block_size,
                callback=audio_callback,
                latency="low",
            )
            run.stream.start()
        except sd.PortAudioError as e:
            run.close_stream()
            raise RuntimeError(f"Could not open microphone: {e}") from e

        self._run = run
        run.thread = threading.Thread(target=self._capture_loop, args=(run,), daemon=True)
        run.thread.start()
        run.emit(RecognitionEventType.STARTED)
        logger.info("Microphone capture started", sample_rate=self.sample_rate, block_size=self.block_size)

    def _capture_loop(self, run: _CaptureRun) -> None:
        detector = run.detector
        preroll: Deque[np.ndarray] = collections.deque(maxlen=detector.voice_frames.maxlen + 5)
        silence_limit = max(1, self.utterance_silence_ms // self.frame_duration_ms)
        started_at = time.monotonic()
        audio_announced = False
        heard_speech = False
        utterance: List[np.ndarray] = []
        silent_frames = 0

        try:
            while not run.abort_requested.is_set():
                if run.stop_requested.is_set() and run.audio_queue.empty():
                    break
                try:
                    block = run.audio_queue.get(timeout=0.1)
                except queue.Empty:
                    block = None

                if block is not None:
                    if not audio_announced:
                        audio_announced = True
                        run.emit(RecognitionEventType.AUDIO_STARTED)

                    for frame in detector.frames(block):
                        change = detector.process_frame(frame)
                        if change is True:
                            heard_speech = True
                            run.emit(RecognitionEventType.SPEECH_STARTED)
                            # Keep the start of the word that triggered detection
                            utterance.extend(preroll)
                            preroll.clear()

                        if utterance or detector.is_voice_active:
                            utterance.append(frame)
                            silent_frames = 0 if detector.is_voice_active else silent_frames + 1
                            if silent_frames >= silence_limit:
                                if not self._transcribe(run, utterance):
                                    return
                                utterance = []
                                silent_frames = 0
                        else:
                            preroll.append(frame)

                waited = time.monotonic() - started_at
                if not heard_speech and not run.stop_requested.is_set() and waited > self.no_speech_timeout:
                    logger.debug("No speech before timeout", timeout_s=self.no_speech_timeout)
                    run.emit(RecognitionEventType.ERROR, error=RecognitionErrorKind.NO_SPEECH)
                    return

            if run.abort_requested.is_set():
                return
            if utterance and not self._transcribe(run, utterance):
                return
            run.emit(RecognitionEventType.ENDED)

        except Exception as e:
            logger.error("Audio processing error", error=str(e))
            run.emit(RecognitionEventType.ERROR, error=RecognitionErrorKind.AUDIO_CAPTURE, message=str(e))
        finally:
            run.close_stream()
            if self._run is run:
                self._run = None

    def _transcribe(self, run: _CaptureRun, frames: List[np.ndarray]) -> bool:
        """Transcribe one utterance. Returns False when the run has to end."""
        if run.abort_requested.is_set():
            return False

        audio = np.concatenate(frames)
        with tempfile.NamedTemporaryFile(suffix=".wav", delete=False) as temp_file:
            temp_filename = temp_file.name

        start_time = time.monotonic()
        try:
            sf.write(temp_filename, audio, self.sample_rate)
            text = self._run_cli(temp_filename)
        except FileNotFoundError as e:
            logger.error("WhisperKit CLI not found", path=self.whisperkit_path)
            run.emit(RecognitionEventType.ERROR, error=RecognitionErrorKind.NOT_SUPPORTED, message=str(e))
            return False
        except (OSError, RuntimeError, subprocess.SubprocessError) as e:
            logger.error("Transcription failed", error=str(e))
            run.emit(RecognitionEventType.ERROR, error=RecognitionErrorKind.NETWORK, message=str(e))
            return False
        finally:
            try:
                os.unlink(temp_filename)
            except OSError:
                pass

        self.utterance_count += 1
        self.last_latency_ms = (time.monotonic() - start_time) * 1000
        logger.debug(
            "Utterance transcribed",
            seconds=round(len(audio) / self.sample_rate, 2),
            latency_ms=round(self.last_latency_ms),
            text_length=len(text),
        )
        if text and not run.abort_requested.is_set():
            run.emit(RecognitionEventType.FINAL, text=text)
        return True

    def _run_cli(self, audio_path: str) -> str:
        cmd = [
            self.whisperkit_path,
            "transcribe",
            "--audio-path",
            audio_path,
            "--model",
            self.model,
            "--audio-encoder-compute-units",
            self.compute_units,
            "--text-decoder-compute-units",
            self.compute_units,
        ]
        if self.language:
            cmd.extend(["--language", self.language.split("-")[0]])

        result = subprocess.run(cmd, capture_output=True, text=True, timeout=self.transcribe_timeout)
        if result.returncode != 0:
            raise RuntimeError(f"WhisperKit failed with code {result.returncode}: {result.stderr}")
        return " ".join(line.strip() for line in result.stdout.splitlines() if line.strip())

    def stop(self) -> None:
        """Stop the microphone; the pending utterance is still transcribed."""
        run, self._run = self._run, None
        if run is None:
            return
        logger.info("Stopping microphone capture")
        run.stop_requested.set()
        run.close_stream()

    def abort(self) -> None:
        run, self._run = self._run, None
        if run is None:
            return
        logger.info("Aborting microphone capture")
        run.abort_requested.set()
        run.close_stream()

    def get_status(self) -> dict:
        run = self._run
        return {
            "provider": "whisperkit",
            "model": self.model,
            "language": self.language,
            "initialized": self.is_initialized,
            "is_running": run is not None,
            "audio_queue_size": run.audio_queue.qsize() if run else 0,
            "audio_callback_count": self.audio_callback_count,
            "utterance_count": self.utterance_count,
            "last_latency_ms": self.last_latency_ms,
            "vad_stats": run.detector.get_stats() if run else None,
        }
