"""Base interface for conversation services."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass(frozen=True)
class ModelInfo:
    """A model the user can pick."""

    id: str
    name: str


@dataclass(frozen=True)
class AssistantTurn:
    """A completed assistant reply."""

    content: str
    model_id: str = ""
    metadata: dict = field(default_factory=dict, compare=False)


class ConversationService(ABC):
    """Abstract base class for conversation services."""

    def __init__(self, system_prompt: str = ""):
        self.system_prompt = system_prompt
        self.conversation_history: List[dict] = []

    @abstractmethod
    def initialize(self) -> None:
        """Initialize the service."""
        pass

    @abstractmethod
    async def send_message(self, content: str, model_id: str) -> AssistantTurn:
        """
        Send a user message and wait for the complete assistant reply.

        Args:
            content: The user's text
            model_id: Id of the model to answer with

        Returns:
            The assistant turn, already appended to the history
        """
        pass

    @abstractmethod
    async def list_models(self) -> List[ModelInfo]:
        """List models that can answer messages."""
        pass

    @abstractmethod
    def stop(self) -> None:
        """Stop the service and clean up resources."""
        pass

    @abstractmethod
    def get_status(self) -> dict:
        """Get current status of the service."""
        pass

    @property
    def history(self) -> List[dict]:
        """Copy of the conversation so far, oldest first."""
        return list(self.conversation_history)

    def add_to_history(self, role: str, content: str, model_id: str = "") -> None:
        """Add a message to conversation history."""
        message = {"role": role, "content": content}
        if model_id:
            message["model_id"] = model_id
        self.conversation_history.append(message)

    def last_assistant_turn(self) -> Optional[AssistantTurn]:
        """Most recent assistant message, if any."""
        for message in reversed(self.conversation_history):
            if message["role"] == "assistant":
                return AssistantTurn(content=message["content"], model_id=message.get("model_id", ""))
        return None

    def clear_history(self) -> None:
        """Clear conversation history."""
        self.conversation_history.clear()
