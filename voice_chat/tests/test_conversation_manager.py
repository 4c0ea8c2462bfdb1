"""Tests for ConversationManager in mock mode."""

import pytest

from mocks.providers import MockConversationService, ScriptedRecognitionEngine, ScriptedSynthesisEngine

from ..core.conversation_manager import ConversationConfig, ConversationManager
from ..core.models import TurnMode


def make_manager(app_settings, **overrides):
    config = ConversationConfig(mock_mode=True, listen_on_start=False, **overrides)
    return ConversationManager(config, app_settings=app_settings)


class TestConversationManager:
    """Test cases for ConversationManager."""

    def test_mock_mode_uses_mock_providers(self, app_settings):
        manager = make_manager(app_settings)

        assert isinstance(manager.recognition_engine, ScriptedRecognitionEngine)
        assert isinstance(manager.synthesis_engine, ScriptedSynthesisEngine)
        assert isinstance(manager.conversation_service, MockConversationService)

    @pytest.mark.asyncio
    async def test_start_selects_first_model(self, app_settings):
        manager = make_manager(app_settings)

        await manager.start()
        try:
            assert manager.is_running
            assert manager.coordinator.submission.selected_model == "mock-fast"
            assert manager.coordinator.mode == TurnMode.IDLE
        finally:
            manager.stop()

        assert not manager.is_running

    @pytest.mark.asyncio
    async def test_unknown_model_falls_back(self, app_settings):
        manager = make_manager(app_settings, model_id="missing")
        notices = []
        manager.add_notice_listener(notices.append)

        await manager.start()
        manager.stop()

        assert [n.code for n in notices] == ["unknown_model"]
        assert manager.coordinator.submission.selected_model == "mock-fast"

    @pytest.mark.asyncio
    async def test_requested_model_selected(self, app_settings):
        manager = make_manager(app_settings, model_id="mock-smart")

        await manager.start()
        manager.stop()

        assert manager.coordinator.submission.selected_model == "mock-smart"

    @pytest.mark.asyncio
    async def test_speak_until_idle(self, app_settings):
        manager = make_manager(app_settings)
        await manager.start()
        try:
            assert manager.speak("Hello there.")
            assert not manager.is_idle()

            assert await manager.wait_until_idle(timeout=5)
            assert manager.synthesis_engine.spoken == ["Hello there."]
        finally:
            manager.stop()

    @pytest.mark.asyncio
    async def test_typed_text_round_trip(self, app_settings):
        manager = make_manager(app_settings)
        replies = []
        manager.coordinator.add_reply_listener(replies.append)
        await manager.start()
        try:
            assert manager.submit_text("what is new")
            assert await manager.wait_until_idle(timeout=5, include_capture=False)
        finally:
            manager.stop()

        assert [r.content for r in replies] == ["You said: what is new"]

    @pytest.mark.asyncio
    async def test_listen_on_start(self, app_settings):
        config = ConversationConfig(mock_mode=True, listen_on_start=True)
        manager = ConversationManager(config, app_settings=app_settings)

        await manager.start()
        try:
            assert manager.coordinator.is_listening
            assert manager.toggle_mic()
            assert manager.coordinator.mode == TurnMode.IDLE
        finally:
            manager.stop()

    @pytest.mark.asyncio
    async def test_status(self, app_settings):
        manager = make_manager(app_settings)
        await manager.start()
        try:
            status = manager.get_status()
        finally:
            manager.stop()

        assert status["mock_mode"]
        assert status["coordinator"]["mode"] == "idle"
        assert status["providers_status"]["conversation"]["provider"] == "mock_conversation"

    @pytest.mark.asyncio
    async def test_stop_twice(self, app_settings):
        manager = make_manager(app_settings)
        await manager.start()

        manager.stop()
        manager.stop()

        assert manager.coordinator.mode == TurnMode.IDLE
