"""Speech synthesis engines."""


def register_providers():
    """Register all synthesis engines."""
    # Import at function level to avoid circular imports
    from ..registry import registry
    from ...config.settings import settings

    def get_elevenlabs_config():
        return settings.get_provider_config("elevenlabs")

    registry.register_synthesis_engine(
        "elevenlabs",
        "voice_chat.providers.synthesis.elevenlabs:ElevenLabsSynthesisEngine",
        get_elevenlabs_config,
    )
    registry.register_synthesis_engine(
        "mock", "mocks.providers:ScriptedSynthesisEngine"
    )
