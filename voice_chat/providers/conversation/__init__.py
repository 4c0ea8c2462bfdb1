"""Conversation services."""


def register_providers():
    """Register all conversation services."""
    # Import at function level to avoid circular imports
    from ..registry import registry
    from ...config.settings import settings

    def get_gemini_config():
        config = settings.get_provider_config("gemini")
        return {
            "system_prompt": config.get("system_prompt", settings.system_prompts.default),
            "temperature": config["temperature"],
            "max_tokens": config["max_tokens"],
        }

    registry.register_conversation_service(
        "gemini",
        "voice_chat.providers.conversation.gemini:GeminiConversationService",
        get_gemini_config,
    )
    registry.register_conversation_service(
        "mock", "mocks.providers:MockConversationService"
    )
