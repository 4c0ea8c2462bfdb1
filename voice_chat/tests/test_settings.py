"""Tests for settings loading and validation."""

import json

from ..config.settings import Settings, TimingSettings


class TestSettings:
    """Test cases for Settings."""

    def test_defaults(self, app_settings):
        assert app_settings.timing.silence_threshold_ms == 2000
        assert app_settings.timing.silence_poll_interval_ms == 200
        assert app_settings.timing.restart_delay_ms == 500
        assert app_settings.timing.error_retry_delay_ms == 1000
        assert app_settings.timing.watchdog_interval_ms == 1000
        assert app_settings.speech.max_chunk_length == 180
        assert app_settings.commands.clear == "clear"
        assert app_settings.commands.read_last_response == "read last response"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("SILENCE_THRESHOLD_MS", "3000")
        monkeypatch.setenv("AUTO_SPEAK_REPLIES", "false")
        monkeypatch.setenv("GEMINI_TEMPERATURE", "0.2")
        monkeypatch.setenv("CONVERSATION_PROVIDER", "mock")

        config = Settings()

        assert config.timing.silence_threshold_ms == 3000
        assert config.speech.auto_speak_replies is False
        assert config.providers.gemini_temperature == 0.2
        assert config.conversation_provider == "mock"

    def test_invalid_override_ignored(self, monkeypatch):
        monkeypatch.setenv("MAX_CHUNK_LENGTH", "lots")

        config = Settings()

        assert config.speech.max_chunk_length == 180

    def test_validate_defaults(self, app_settings):
        assert app_settings.validate() == []

    def test_validate_reports_problems(self, app_settings):
        app_settings.timing = TimingSettings(silence_threshold_ms=0)
        app_settings.speech.max_chunk_length = -1
        app_settings.commands.read_last_response = "clear"
        app_settings.audio.sample_rate = 44100

        issues = app_settings.validate()

        assert "Invalid silence_threshold_ms: 0" in issues
        assert "Invalid max chunk length: -1" in issues
        assert "Command tokens must differ" in issues
        assert "Invalid sample rate: 44100" in issues

    def test_file_round_trip(self, app_settings, tmp_path):
        path = tmp_path / "config.json"
        app_settings.timing.silence_threshold_ms = 2500
        app_settings.speech.voice = "custom-voice"
        app_settings.save_to_file(path)

        loaded = json.loads(path.read_text())
        assert loaded["timing"]["silence_threshold_ms"] == 2500

        fresh = Settings(config_file=path)
        fresh.timing = TimingSettings()
        fresh.load_from_file()
        assert fresh.timing.silence_threshold_ms == 2500
        assert fresh.speech.voice == "custom-voice"

    def test_provider_config(self, app_settings):
        assert app_settings.get_provider_config("whisperkit")["language"] == app_settings.speech.language
        assert "system_prompt" in app_settings.get_provider_config("gemini")
        assert "voice_id" in app_settings.get_provider_config("elevenlabs")
