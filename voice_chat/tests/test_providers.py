"""Tests for the provider registry and the concrete engines."""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, Mock, patch

import numpy as np
import pytest
from elevenlabs.core.api_error import ApiError

from mocks.providers import MockConversationService, MockSynthesisEngine, ScriptedRecognitionEngine

from ..exceptions import ProviderError, SubmissionError
from ..providers import registry
from ..providers.conversation.gemini import GeminiConversationService
from ..providers.recognition.base import RecognitionErrorKind, RecognitionEventType
from ..providers.recognition.whisperkit import WhisperKitRecognitionEngine
from ..providers.registry import ProviderRegistry
from ..providers.synthesis.base import SynthesisErrorKind, SynthesisEventType
from ..providers.synthesis.elevenlabs import ElevenLabsSynthesisEngine


class TestProviderRegistry:
    """Test cases for provider registration and creation."""

    def setup_method(self):
        self.registry = ProviderRegistry()

    def test_builtin_providers_registered(self):
        assert registry.list_providers("recognition") == ["whisperkit", "mock"]
        assert registry.list_providers("synthesis") == ["elevenlabs", "mock"]
        assert registry.list_providers("conversation") == ["gemini", "mock"]

    def test_register_class_and_create(self):
        self.registry.register_synthesis_engine("test", MockSynthesisEngine)

        engine = self.registry.get_synthesis_engine("test")

        assert isinstance(engine, MockSynthesisEngine)

    def test_lazy_import_path(self):
        self.registry.register_conversation_service("test", "mocks.providers:MockConversationService")

        service = self.registry.get_conversation_service("test")

        assert isinstance(service, MockConversationService)

    def test_registered_config_merged_and_overridden(self):
        self.registry.register_recognition_engine(
            "scripted",
            ScriptedRecognitionEngine,
            lambda: {"speech_delay": 1.0, "no_speech_timeout": 3.0},
        )

        engine = self.registry.get_recognition_engine("scripted", speech_delay=0.2)

        assert engine.speech_delay == 0.2
        assert engine.no_speech_timeout == 3.0

    def test_gemini_created_from_settings(self):
        service = registry.get_conversation_service("gemini", temperature=0.1)

        assert isinstance(service, GeminiConversationService)
        assert service.temperature == 0.1
        assert not service.is_initialized

    def test_unknown_provider(self):
        with pytest.raises(ValueError, match="Unknown synthesis provider"):
            self.registry.get_synthesis_engine("nope")

    def test_unknown_kind(self):
        with pytest.raises(ValueError):
            self.registry.register("video", "x", MockSynthesisEngine)
        with pytest.raises(ValueError):
            self.registry.create("video", "x")

    def test_clear(self):
        self.registry.register_synthesis_engine("test", MockSynthesisEngine)
        self.registry.clear()

        assert self.registry.list_providers("synthesis") == []


class TestGeminiConversationService:
    """Test cases for the Gemini conversation service."""

    def setup_method(self):
        self.service = GeminiConversationService(system_prompt="Be brief.", max_retries=1)
        self.service.is_initialized = True

    def test_initialize_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("GOOGLE_API_KEY", raising=False)
        service = GeminiConversationService()

        with pytest.raises(ProviderError):
            service.initialize()

    def test_initialize_configures_client(self, monkeypatch):
        monkeypatch.setenv("GOOGLE_API_KEY", "test-key")
        service = GeminiConversationService()

        with patch("voice_chat.providers.conversation.gemini.genai") as mock_genai:
            service.initialize()

        mock_genai.configure.assert_called_once_with(api_key="test-key")
        assert service.is_initialized

    @pytest.mark.asyncio
    async def test_send_message_keeps_history(self):
        with patch("voice_chat.providers.conversation.gemini.genai") as mock_genai:
            model = mock_genai.GenerativeModel.return_value
            model.generate_content_async = AsyncMock(side_effect=[
                SimpleNamespace(text="Hi there!"),
                SimpleNamespace(text="Still here."),
            ])

            first = await self.service.send_message("hello", "models/gemini-test")
            second = await self.service.send_message("are you there", "models/gemini-test")

        assert first.content == "Hi there!"
        assert first.model_id == "models/gemini-test"
        assert second.content == "Still here."
        assert [m["role"] for m in self.service.history] == ["user", "assistant", "user", "assistant"]

        contents = model.generate_content_async.call_args_list[1][0][0]
        assert [c["role"] for c in contents] == ["user", "model", "user"]
        assert contents[-1]["parts"] == ["are you there"]
        mock_genai.GenerativeModel.assert_called_once_with(
            model_name="models/gemini-test",
            system_instruction="Be brief.",
        )

    @pytest.mark.asyncio
    async def test_failure_raises_and_leaves_history(self):
        with patch("voice_chat.providers.conversation.gemini.genai") as mock_genai:
            model = mock_genai.GenerativeModel.return_value
            model.generate_content_async = AsyncMock(side_effect=RuntimeError("quota"))

            with pytest.raises(SubmissionError, match="quota"):
                await self.service.send_message("hello", "models/gemini-test")

        assert self.service.conversation_history == []

    @pytest.mark.asyncio
    async def test_send_before_initialize(self):
        service = GeminiConversationService()

        with pytest.raises(RuntimeError):
            await service.send_message("hello", "models/gemini-test")

    @pytest.mark.asyncio
    async def test_list_models_filters_generate_content(self):
        with patch("voice_chat.providers.conversation.gemini.genai") as mock_genai:
            mock_genai.list_models.return_value = [
                SimpleNamespace(name="models/chat", display_name="Chat", supported_generation_methods=["generateContent"]),
                SimpleNamespace(name="models/embed", display_name="Embed", supported_generation_methods=["embedContent"]),
            ]

            models = await self.service.list_models()

        assert [(m.id, m.name) for m in models] == [("models/chat", "Chat")]

    def test_stop(self):
        self.service.stop()

        assert not self.service.is_initialized
        assert self.service.get_status()["provider"] == "gemini"


class TestElevenLabsSynthesisEngine:
    """Test cases for the ElevenLabs engine's playback worker."""

    def setup_method(self):
        self.engine = ElevenLabsSynthesisEngine(voice_id="voice-1")
        self.engine.client = Mock()
        self.utterance = Mock(text="Hello.", voice_id="voice-1", epoch=0)

    def test_initialize_requires_api_key(self, monkeypatch):
        monkeypatch.delenv("ELEVENLABS_API_KEY", raising=False)
        engine = ElevenLabsSynthesisEngine()

        with pytest.raises(ProviderError):
            engine.initialize()

    def test_speak_before_initialize(self):
        engine = ElevenLabsSynthesisEngine()

        with pytest.raises(RuntimeError):
            engine.speak("Hello.", None, Mock())

    @pytest.mark.asyncio
    async def test_speak_queues_and_marks_pending(self):
        handler = Mock()

        self.engine.speak("Hello.", None, handler)

        assert self.engine.pending
        queued = self.engine.utterance_queue.get_nowait()
        assert queued.voice_id == "voice-1"
        assert queued.handler is handler

    @pytest.mark.asyncio
    async def test_pending_until_end_event_delivered(self):
        handler = Mock()
        self.engine.client.text_to_speech.convert.return_value = b"mp3-bytes"
        self.engine.speak("Hello.", None, handler)
        utterance = self.engine.utterance_queue.get_nowait()

        with patch("voice_chat.providers.synthesis.elevenlabs.pygame") as mock_pygame:
            mock_pygame.mixer.music.get_busy.return_value = False
            self.engine._play(utterance)

        assert not self.engine.speaking
        assert self.engine.pending
        handler.assert_not_called()

        await asyncio.sleep(0)

        assert [c.args[0].type for c in handler.call_args_list] == [
            SynthesisEventType.STARTED,
            SynthesisEventType.ENDED,
        ]
        assert not self.engine.pending

    def test_plays_and_reports_end(self):
        self.engine.client.text_to_speech.convert.return_value = b"mp3-bytes"

        with patch("voice_chat.providers.synthesis.elevenlabs.pygame") as mock_pygame:
            mock_pygame.mixer.music.get_busy.return_value = False
            self.engine._play(self.utterance)

        mock_pygame.mixer.music.play.assert_called_once()
        emitted = [c.args[0] for c in self.utterance.emit.call_args_list]
        assert emitted == [SynthesisEventType.STARTED, SynthesisEventType.ENDED]
        assert not self.engine.speaking

    def test_missing_voice_reported(self):
        self.engine.client.text_to_speech.convert.side_effect = ApiError(status_code=404, body="voice not found")

        self.engine._play(self.utterance)

        self.utterance.emit.assert_called_once_with(
            SynthesisEventType.ERROR, SynthesisErrorKind.VOICE_UNAVAILABLE, "voice not found"
        )

    def test_connection_error_reported(self):
        self.engine.client.text_to_speech.convert.side_effect = ConnectionError("offline")

        self.engine._play(self.utterance)

        self.utterance.emit.assert_called_once_with(SynthesisEventType.ERROR, SynthesisErrorKind.NETWORK, "offline")

    def test_cancelled_before_synthesis(self):
        self.engine._epoch = 1

        self.engine._play(self.utterance)

        self.engine.client.text_to_speech.convert.assert_not_called()
        self.utterance.emit.assert_called_once_with(SynthesisEventType.ERROR, SynthesisErrorKind.CANCELED)

    def test_cancel_bumps_epoch(self):
        with patch("voice_chat.providers.synthesis.elevenlabs.pygame") as mock_pygame:
            mock_pygame.mixer.get_init.return_value = (22050, -16, 2)
            self.engine.cancel()

        assert self.engine._epoch == 1
        mock_pygame.mixer.music.stop.assert_called_once()


class TestWhisperKitRecognitionEngine:
    """Test cases for the WhisperKit engine's CLI handling."""

    def setup_method(self):
        self.engine = WhisperKitRecognitionEngine(whisperkit_path="/usr/local/bin/whisperkit-cli", language="en-US")

    def test_initialize_missing_cli(self):
        with patch("subprocess.run", side_effect=FileNotFoundError()):
            with pytest.raises(ProviderError, match="CLI not found"):
                self.engine.initialize()

    def test_initialize(self):
        with patch("subprocess.run", return_value=Mock(returncode=0, stdout="usage", stderr="")):
            self.engine.initialize()

        assert self.engine.is_initialized

    def test_transcription_command(self):
        result = Mock(returncode=0, stdout="Hello\n  world  \n\n", stderr="")
        with patch("subprocess.run", return_value=result) as mock_run:
            text = self.engine._run_cli("/tmp/utterance.wav")

        assert text == "Hello world"
        cmd = mock_run.call_args[0][0]
        assert cmd[:4] == ["/usr/local/bin/whisperkit-cli", "transcribe", "--audio-path", "/tmp/utterance.wav"]
        assert cmd[-2:] == ["--language", "en"]

    def test_transcription_failure(self):
        with patch("subprocess.run", return_value=Mock(returncode=1, stdout="", stderr="bad model")):
            with pytest.raises(RuntimeError, match="bad model"):
                self.engine._run_cli("/tmp/utterance.wav")

    def test_transcribe_emits_final(self):
        run = Mock()
        run.abort_requested.is_set.return_value = False

        with patch("voice_chat.providers.recognition.whisperkit.sf.write"), \
                patch.object(self.engine, "_run_cli", return_value="hello there"):
            assert self.engine._transcribe(run, [np.zeros(480, dtype=np.float32)])

        run.emit.assert_called_once_with(RecognitionEventType.FINAL, text="hello there")
        assert self.engine.utterance_count == 1

    def test_transcribe_without_cli_is_not_supported(self):
        run = Mock()
        run.abort_requested.is_set.return_value = False

        with patch("voice_chat.providers.recognition.whisperkit.sf.write"), \
                patch.object(self.engine, "_run_cli", side_effect=FileNotFoundError("whisperkit-cli")):
            assert not self.engine._transcribe(run, [np.zeros(480, dtype=np.float32)])

        run.emit.assert_called_once_with(
            RecognitionEventType.ERROR, error=RecognitionErrorKind.NOT_SUPPORTED, message="whisperkit-cli"
        )

    def test_stop_and_abort_when_idle(self):
        self.engine.stop()
        self.engine.abort()

        status = self.engine.get_status()
        assert not status["is_running"]
        assert status["vad_stats"] is None
