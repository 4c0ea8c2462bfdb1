"""Configuration settings for the voice chat system."""

import os
from pathlib import Path
from typing import Optional, Dict, Any, Union
from dataclasses import dataclass, asdict, fields
import json
import structlog
from dotenv import load_dotenv
import threading


logger = structlog.get_logger()


@dataclass
class SystemPrompts:
    """System prompts for conversation services."""
    default: str = "You are a friendly assistant in a spoken conversation. Keep answers short and easy to listen to."


@dataclass
class TimingSettings:
    """Timer delays and thresholds, all in milliseconds."""
    silence_threshold_ms: int = 2000
    silence_poll_interval_ms: int = 200
    silence_grace_ms: int = 100
    restart_delay_ms: int = 500
    error_retry_delay_ms: int = 1000
    submit_reset_delay_ms: int = 500
    watchdog_interval_ms: int = 1000


@dataclass
class SpeechSettings:
    """Recognition and playback settings."""
    language: str = "en-US"
    voice: Optional[str] = None
    max_chunk_length: int = 180
    auto_speak_replies: bool = True


@dataclass
class CommandSettings:
    """Spoken or typed command tokens, matched against the whole trimmed input."""
    clear: str = "clear"
    read_last_response: str = "read last response"


@dataclass
class AudioSettings:
    """Microphone capture settings."""
    sample_rate: int = 16000
    channels: int = 1
    frame_duration_ms: int = 30
    vad_aggressiveness: int = 2
    utterance_silence_ms: int = 700
    no_speech_timeout_ms: int = 8000


@dataclass
class ProviderSettings:
    """Provider-specific settings."""
    # WhisperKit
    whisperkit_model: str = "large-v3_turbo"
    whisperkit_compute_units: str = "cpuAndNeuralEngine"
    whisperkit_path: str = "/opt/homebrew/bin/whisperkit-cli"

    # Gemini
    gemini_model: str = ""
    gemini_temperature: float = 0.7
    gemini_max_tokens: int = 2048

    # ElevenLabs
    elevenlabs_voice_id: str = "pNInz6obpgDQGcFmaJgB"  # Adam voice
    elevenlabs_model_id: str = "eleven_flash_v2_5"
    elevenlabs_output_format: str = "mp3_22050_32"
    elevenlabs_stability: float = 0.5
    elevenlabs_similarity_boost: float = 0.8
    elevenlabs_style: float = 0.0
    elevenlabs_speed: float = 1.0
    elevenlabs_use_speaker_boost: bool = True


@dataclass
class LoggingSettings:
    """Logging configuration settings."""
    level: str = "INFO"
    format: str = "dev"
    file_enabled: bool = False
    file_rotation_mb: int = 10
    file_backup_count: int = 7


# Environment variable -> (section, attribute)
ENV_OVERRIDES = {
    "SYSTEM_PROMPT_DEFAULT": ("system_prompts", "default"),
    "SILENCE_THRESHOLD_MS": ("timing", "silence_threshold_ms"),
    "SILENCE_POLL_INTERVAL_MS": ("timing", "silence_poll_interval_ms"),
    "SILENCE_GRACE_MS": ("timing", "silence_grace_ms"),
    "RESTART_DELAY_MS": ("timing", "restart_delay_ms"),
    "ERROR_RETRY_DELAY_MS": ("timing", "error_retry_delay_ms"),
    "SUBMIT_RESET_DELAY_MS": ("timing", "submit_reset_delay_ms"),
    "WATCHDOG_INTERVAL_MS": ("timing", "watchdog_interval_ms"),
    "SPEECH_LANGUAGE": ("speech", "language"),
    "SPEECH_VOICE": ("speech", "voice"),
    "MAX_CHUNK_LENGTH": ("speech", "max_chunk_length"),
    "AUTO_SPEAK_REPLIES": ("speech", "auto_speak_replies"),
    "COMMAND_CLEAR": ("commands", "clear"),
    "COMMAND_READ_LAST_RESPONSE": ("commands", "read_last_response"),
    "AUDIO_SAMPLE_RATE": ("audio", "sample_rate"),
    "AUDIO_CHANNELS": ("audio", "channels"),
    "VAD_AGGRESSIVENESS": ("audio", "vad_aggressiveness"),
    "NO_SPEECH_TIMEOUT_MS": ("audio", "no_speech_timeout_ms"),
    "WHISPERKIT_MODEL": ("providers", "whisperkit_model"),
    "WHISPERKIT_COMPUTE_UNITS": ("providers", "whisperkit_compute_units"),
    "WHISPERKIT_PATH": ("providers", "whisperkit_path"),
    "GEMINI_MODEL": ("providers", "gemini_model"),
    "GEMINI_TEMPERATURE": ("providers", "gemini_temperature"),
    "GEMINI_MAX_TOKENS": ("providers", "gemini_max_tokens"),
    "ELEVENLABS_VOICE_ID": ("providers", "elevenlabs_voice_id"),
    "ELEVENLABS_MODEL_ID": ("providers", "elevenlabs_model_id"),
    "ELEVENLABS_OUTPUT_FORMAT": ("providers", "elevenlabs_output_format"),
    "LOG_LEVEL": ("logging", "level"),
    "LOG_FORMAT": ("logging", "format"),
    "LOG_FILE_ENABLED": ("logging", "file_enabled"),
}

SECTIONS = (
    "system_prompts",
    "timing",
    "speech",
    "commands",
    "audio",
    "providers",
    "logging",
)


def _coerce(current: Any, raw: str) -> Any:
    """Convert an environment string to the type of the current value."""
    if isinstance(current, bool):
        return raw.lower() == "true"
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    return raw


class Settings:
    """Main settings class for the voice chat system."""

    def __init__(self, config_file: Optional[Union[str, Path]] = None):
        self.config_file = Path(config_file) if config_file else None
        self._lock = threading.RLock()
        self._env_loaded = False

        # Initialize sub-settings
        self.system_prompts = SystemPrompts()
        self.timing = TimingSettings()
        self.speech = SpeechSettings()
        self.commands = CommandSettings()
        self.audio = AudioSettings()
        self.providers = ProviderSettings()
        self.logging = LoggingSettings()

        self.recognition_provider = "whisperkit"
        self.synthesis_provider = "elevenlabs"
        self.conversation_provider = "gemini"

        # Load .env file first
        self._load_env_file()

        # Load from file if provided
        if self.config_file and self.config_file.exists():
            self.load_from_file()

        # Override with environment variables
        self.load_from_env()

    def _load_env_file(self) -> None:
        """Load environment variables from .env file."""
        if not self._env_loaded:
            # Look for .env in current directory and parent directories
            current_dir = Path.cwd()
            for parent in [current_dir] + list(current_dir.parents):
                env_file = parent / ".env"
                if env_file.exists():
                    load_dotenv(env_file)
                    logger.debug("Loaded .env file", path=str(env_file))
                    break
            self._env_loaded = True

    def load_from_file(self) -> None:
        """Load settings from configuration file."""
        if not self.config_file or not self.config_file.exists():
            return

        try:
            with self._lock:
                with open(self.config_file, "r") as f:
                    config = json.load(f)

                for section_name in SECTIONS:
                    if section_name not in config:
                        continue
                    section = getattr(self, section_name)
                    for key, value in config[section_name].items():
                        if hasattr(section, key):
                            setattr(section, key, value)
                        else:
                            logger.warning(
                                "Unknown setting in config file",
                                section=section_name,
                                key=key,
                            )

                for key in ("recognition_provider", "synthesis_provider", "conversation_provider"):
                    if key in config:
                        setattr(self, key, config[key])

                logger.info("Loaded settings from file", file=str(self.config_file))

        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to load settings from file",
                         file=str(self.config_file),
                         error=str(e))

    def load_from_env(self) -> None:
        """Load settings from environment variables."""
        with self._lock:
            self.recognition_provider = os.getenv("RECOGNITION_PROVIDER", self.recognition_provider)
            self.synthesis_provider = os.getenv("SYNTHESIS_PROVIDER", self.synthesis_provider)
            self.conversation_provider = os.getenv("CONVERSATION_PROVIDER", self.conversation_provider)

            for env_name, (section_name, attr) in ENV_OVERRIDES.items():
                raw = os.getenv(env_name)
                if not raw:
                    continue
                section = getattr(self, section_name)
                try:
                    setattr(section, attr, _coerce(getattr(section, attr), raw))
                except ValueError:
                    logger.warning("Ignoring invalid environment override",
                                   variable=env_name, value=raw)

    def save_to_file(self, file_path: Optional[Union[str, Path]] = None) -> None:
        """Save current settings to file."""
        save_path = Path(file_path) if file_path else self.config_file
        if not save_path:
            raise ValueError("No file path provided")

        try:
            with self._lock:
                save_path.parent.mkdir(parents=True, exist_ok=True)
                with open(save_path, "w") as f:
                    json.dump(self.to_dict(), f, indent=2, ensure_ascii=False)

                logger.info("Saved settings to file", file=str(save_path))

        except OSError as e:
            logger.error("Failed to save settings to file",
                         file=str(save_path), error=str(e))
            raise

    def get_provider_config(self, provider_type: str) -> Dict[str, Any]:
        """Get configuration for a specific provider."""
        if provider_type == "whisperkit":
            return {
                "model": self.providers.whisperkit_model,
                "compute_units": self.providers.whisperkit_compute_units,
                "whisperkit_path": self.providers.whisperkit_path,
                "language": self.speech.language,
                "sample_rate": self.audio.sample_rate,
                "channels": self.audio.channels,
                "frame_duration_ms": self.audio.frame_duration_ms,
                "vad_aggressiveness": self.audio.vad_aggressiveness,
                "utterance_silence_ms": self.audio.utterance_silence_ms,
                "no_speech_timeout_ms": self.audio.no_speech_timeout_ms,
            }
        elif provider_type == "gemini":
            return {
                "temperature": self.providers.gemini_temperature,
                "max_tokens": self.providers.gemini_max_tokens,
                "system_prompt": self.system_prompts.default,
            }
        elif provider_type == "elevenlabs":
            return {
                "voice_id": self.providers.elevenlabs_voice_id,
                "model_id": self.providers.elevenlabs_model_id,
                "output_format": self.providers.elevenlabs_output_format,
                "stability": self.providers.elevenlabs_stability,
                "similarity_boost": self.providers.elevenlabs_similarity_boost,
                "style": self.providers.elevenlabs_style,
                "speed": self.providers.elevenlabs_speed,
                "use_speaker_boost": self.providers.elevenlabs_use_speaker_boost,
            }
        else:
            raise ValueError(f"Unknown provider type: {provider_type}")

    def reload(self) -> None:
        """Reload settings from file and environment."""
        with self._lock:
            if self.config_file and self.config_file.exists():
                self.load_from_file()
            self.load_from_env()
            logger.info("Settings reloaded")

    def validate(self) -> list[str]:
        """Validate current settings and return list of issues."""
        issues = []

        for field in fields(self.timing):
            value = getattr(self.timing, field.name)
            if value <= 0:
                issues.append(f"Invalid {field.name}: {value}")

        if self.speech.max_chunk_length <= 0:
            issues.append(f"Invalid max chunk length: {self.speech.max_chunk_length}")

        if not self.commands.clear.strip():
            issues.append("Clear command token is empty")
        if not self.commands.read_last_response.strip():
            issues.append("Read-last-response command token is empty")
        if self.commands.clear.strip() == self.commands.read_last_response.strip():
            issues.append("Command tokens must differ")

        if self.audio.sample_rate not in [8000, 16000, 32000, 48000]:
            issues.append(f"Invalid sample rate: {self.audio.sample_rate}")
        if self.audio.channels not in [1, 2]:
            issues.append(f"Invalid channels: {self.audio.channels}")
        if self.audio.frame_duration_ms not in [10, 20, 30]:
            issues.append(f"Invalid frame duration: {self.audio.frame_duration_ms}")
        if not 0 <= self.audio.vad_aggressiveness <= 3:
            issues.append(f"Invalid VAD aggressiveness: {self.audio.vad_aggressiveness}")

        return issues

    def to_dict(self) -> Dict[str, Any]:
        """Convert settings to dictionary for serialization."""
        data: Dict[str, Any] = {
            "recognition_provider": self.recognition_provider,
            "synthesis_provider": self.synthesis_provider,
            "conversation_provider": self.conversation_provider,
        }
        for section_name in SECTIONS:
            data[section_name] = asdict(getattr(self, section_name))
        return data


# Global settings instance
settings = Settings()
