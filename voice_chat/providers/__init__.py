"""Provider interfaces and implementations for recognition, synthesis and conversation."""

from .registry import registry

# Defer provider registration to avoid circular imports
def _register_all_providers():
    """Register all provider types."""
    from . import recognition, synthesis, conversation
    recognition.register_providers()
    synthesis.register_providers()
    conversation.register_providers()

# Register providers after module initialization
_register_all_providers()

__all__ = ['registry']
