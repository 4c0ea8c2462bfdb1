"""Speech recognition engines."""


def register_providers():
    """Register all recognition engines."""
    # Import at function level to avoid circular imports
    from ..registry import registry
    from ...config.settings import settings

    def get_whisperkit_config():
        return settings.get_provider_config("whisperkit")

    registry.register_recognition_engine(
        "whisperkit",
        "voice_chat.providers.recognition.whisperkit:WhisperKitRecognitionEngine",
        get_whisperkit_config,
    )
    registry.register_recognition_engine(
        "mock", "mocks.providers:ScriptedRecognitionEngine"
    )
