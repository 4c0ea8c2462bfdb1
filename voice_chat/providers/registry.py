"""Provider registry for dynamic provider loading."""

import importlib
from typing import Any, Callable, Dict, Optional, Union
import structlog

from .recognition.base import RecognitionEngine
from .synthesis.base import SynthesisEngine
from .conversation.base import ConversationService


logger = structlog.get_logger()


# A provider is registered either as a class or as a "package.module:ClassName"
# path that is imported on first use, so hardware libraries stay unloaded
# until the provider is actually created.
ProviderTarget = Union[type, str]

KINDS = ("recognition", "synthesis", "conversation")


def _resolve(target: ProviderTarget) -> type:
    if isinstance(target, type):
        return target
    module_name, _, class_name = target.partition(":")
    module = importlib.import_module(module_name)
    return getattr(module, class_name)


class ProviderRegistry:
    """Registry for managing provider implementations."""

    def __init__(self):
        self._providers: Dict[str, Dict[str, ProviderTarget]] = {kind: {} for kind in KINDS}
        self._provider_configs: Dict[str, Callable[[], Dict[str, Any]]] = {}

    def register(
        self,
        kind: str,
        name: str,
        provider: ProviderTarget,
        config_getter: Optional[Callable[[], Dict[str, Any]]] = None,
    ) -> None:
        """Register a provider of the given kind."""
        if kind not in self._providers:
            raise ValueError(f"Unknown provider kind: {kind}")
        self._providers[kind][name] = provider
        if config_getter:
            self._provider_configs[f"{kind}:{name}"] = config_getter
        logger.debug("Registered provider", kind=kind, name=name)

    def register_recognition_engine(self, name, provider, config_getter=None) -> None:
        self.register("recognition", name, provider, config_getter)

    def register_synthesis_engine(self, name, provider, config_getter=None) -> None:
        self.register("synthesis", name, provider, config_getter)

    def register_conversation_service(self, name, provider, config_getter=None) -> None:
        self.register("conversation", name, provider, config_getter)

    def create(self, kind: str, name: str, **kwargs) -> Any:
        """Create a provider instance, merging its registered configuration."""
        providers = self._providers.get(kind)
        if providers is None:
            raise ValueError(f"Unknown provider kind: {kind}")
        if name not in providers:
            raise ValueError(f"Unknown {kind} provider: {name}")

        provider_class = _resolve(providers[name])
        config_key = f"{kind}:{name}"

        # Explicit keyword arguments win over registered configuration
        if config_key in self._provider_configs:
            config = self._provider_configs[config_key]()
            config.update(kwargs)
            kwargs = config

        return provider_class(**kwargs)

    def get_recognition_engine(self, name: str, **kwargs) -> RecognitionEngine:
        return self.create("recognition", name, **kwargs)

    def get_synthesis_engine(self, name: str, **kwargs) -> SynthesisEngine:
        return self.create("synthesis", name, **kwargs)

    def get_conversation_service(self, name: str, **kwargs) -> ConversationService:
        return self.create("conversation", name, **kwargs)

    def list_providers(self, kind: str) -> list[str]:
        return list(self._providers.get(kind, {}).keys())

    def clear(self) -> None:
        """Clear all registered providers."""
        for providers in self._providers.values():
            providers.clear()
        self._provider_configs.clear()


# Global registry instance
registry = ProviderRegistry()
