"""Voice activity detection over raw microphone blocks."""

import collections
from typing import Deque, Iterator, Optional
import numpy as np
import webrtcvad
import structlog


logger = structlog.get_logger()


class VoiceActivityDetector:
    """
    Frame-level voice detection with a level gate and hysteresis.

    webrtcvad decides per frame; a frame only counts as voice when its RMS
    level is also above a threshold that follows the noise floor. Voice is
    "active" while enough of the recent frames are voice.
    """

    def __init__(
        self,
        sample_rate: int = 16000,
        frame_duration_ms: int = 30,
        aggressiveness: int = 2,
        voice_ratio: float = 0.6,
        window: int = 10,
        min_level: float = 0.01,
    ):
        self.sample_rate = sample_rate
        self.frame_duration_ms = frame_duration_ms
        self.frame_size = int(sample_rate * frame_duration_ms / 1000)
        self.voice_ratio = voice_ratio
        self.min_level = min_level

        self.vad = webrtcvad.Vad(aggressiveness)

        self.voice_frames: Deque[bool] = collections.deque(maxlen=window)
        self.is_voice_active = False

        self.audio_levels: Deque[float] = collections.deque(maxlen=50)
        self.noise_floor = 0.0
        self.dynamic_threshold = min_level
        self._frames_seen = 0
        self._remainder = np.array([], dtype=np.float32)

    def frames(self, block: np.ndarray) -> Iterator[np.ndarray]:
        """Cut a mono float block into VAD-sized frames, carrying leftovers over."""
        audio = np.concatenate([self._remainder, block.astype(np.float32).flatten()])
        usable = len(audio) - len(audio) % self.frame_size
        for start in range(0, usable, self.frame_size):
            yield audio[start:start + self.frame_size]
        self._remainder = audio[usable:]

    def process_frame(self, frame: np.ndarray) -> Optional[bool]:
        """
        Classify one frame.

        Returns True at voice onset, False at voice offset and None when
        the state did not change.
        """
        level = float(np.sqrt(np.mean(frame.astype(np.float32) ** 2)))
        self.audio_levels.append(level)

        self._frames_seen += 1
        if self._frames_seen % 20 == 0:
            self._update_dynamic_threshold()

        pcm = (np.clip(frame, -1.0, 1.0) * 32767).astype(np.int16).tobytes()
        is_speech = self.vad.is_speech(pcm, self.sample_rate)
        self.voice_frames.append(is_speech and level > self.dynamic_threshold)

        if len(self.voice_frames) < self.voice_frames.maxlen:
            return None

        was_active = self.is_voice_active
        ratio = sum(self.voice_frames) / len(self.voice_frames)
        self.is_voice_active = ratio >= self.voice_ratio

        if self.is_voice_active and not was_active:
            logger.debug("Voice activity started", ratio=ratio, level=level)
            return True
        if was_active and not self.is_voice_active:
            logger.debug("Voice activity stopped", ratio=ratio, level=level)
            return False
        return None

    def _update_dynamic_threshold(self) -> None:
        if len(self.audio_levels) < 10:
            return
        levels = sorted(self.audio_levels)
        # Bottom quarter approximates the noise floor
        self.noise_floor = float(np.mean(levels[: len(levels) // 4]))
        self.dynamic_threshold = max(self.noise_floor * 3.0, self.min_level)

    def reset(self) -> None:
        self.voice_frames.clear()
        self.audio_levels.clear()
        self.is_voice_active = False
        self.noise_floor = 0.0
        self.dynamic_threshold = self.min_level
        self._frames_seen = 0
        self._remainder = np.array([], dtype=np.float32)

    def get_stats(self) -> dict:
        return {
            "is_voice_active": self.is_voice_active,
            "noise_floor": self.noise_floor,
            "dynamic_threshold": self.dynamic_threshold,
            "recent_voice_ratio": sum(self.voice_frames) / len(self.voice_frames)
            if self.voice_frames
            else 0,
        }
