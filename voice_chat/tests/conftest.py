"""Shared fixtures: a virtual clock, hand-driven engines and a wired coordinator."""

from typing import List

import pytest

from mocks.providers import MockConversationService, MockRecognitionEngine, MockSynthesisEngine
from mocks.scheduler import ManualScheduler

from ..config.settings import CommandSettings, Settings, SpeechSettings, TimingSettings
from ..core.coordinator import TurnCoordinator
from ..core.models import Notice


@pytest.fixture
def app_settings():
    """Default settings, ignoring whatever the environment or a .env file says."""
    config = Settings()
    config.timing = TimingSettings()
    config.speech = SpeechSettings()
    config.commands = CommandSettings()
    return config


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def recognizer():
    return MockRecognitionEngine()


@pytest.fixture
def synthesizer():
    return MockSynthesisEngine()


@pytest.fixture
def service():
    return MockConversationService()


@pytest.fixture
def coordinator(recognizer, synthesizer, service, scheduler, app_settings):
    coordinator = TurnCoordinator(
        recognizer,
        synthesizer,
        service,
        scheduler=scheduler,
        config=app_settings,
    )
    coordinator.submission.select_model("mock-fast")
    yield coordinator
    coordinator.shutdown()


@pytest.fixture
def notices(coordinator) -> List[Notice]:
    received: List[Notice] = []
    coordinator.add_notice_listener(received.append)
    return received
