"""
Mock engine and service implementations for testing the voice chat system.

The ``Mock*`` engines are driven by hand from tests. The ``Scripted*``
engines play a short script on the event loop and back ``--mock`` runs.
"""

import asyncio
from typing import List, Optional, Tuple

from voice_chat.exceptions import SubmissionError
from voice_chat.providers.conversation.base import AssistantTurn, ConversationService, ModelInfo
from voice_chat.providers.recognition.base import (
    RecognitionEngine,
    RecognitionErrorKind,
    RecognitionEvent,
    RecognitionEventType,
    RecognitionHandler,
)
from voice_chat.providers.synthesis.base import (
    SynthesisEngine,
    SynthesisErrorKind,
    SynthesisEvent,
    SynthesisEventType,
    SynthesisHandler,
)


class MockRecognitionEngine(RecognitionEngine):
    """Recognition engine whose events are emitted by the test."""

    def __init__(self, end_on_stop: bool = True, fail_start: bool = False):
        self.end_on_stop = end_on_stop
        self.fail_start = fail_start
        self.handlers: List[RecognitionHandler] = []
        self.is_running = False
        self.start_count = 0
        self.stop_count = 0
        self.abort_count = 0

    def initialize(self) -> None:
        pass

    @property
    def handler(self) -> RecognitionHandler:
        return self.handlers[-1]

    def start(self, on_event: RecognitionHandler) -> None:
        if self.fail_start:
            raise RuntimeError("Recognition is not supported here")
        self.start_count += 1
        self.handlers.append(on_event)
        self.is_running = True

    def emit(self, event_type: RecognitionEventType, handler: Optional[RecognitionHandler] = None, **kwargs) -> None:
        (handler or self.handler)(RecognitionEvent(event_type, **kwargs))

    def begin(self) -> None:
        """Report start and first audio, as a real engine does after start()."""
        self.emit(RecognitionEventType.STARTED)
        self.emit(RecognitionEventType.AUDIO_STARTED)

    def speech(self) -> None:
        self.emit(RecognitionEventType.SPEECH_STARTED)

    def partial(self, text: str) -> None:
        self.emit(RecognitionEventType.PARTIAL, text=text)

    def final(self, text: str) -> None:
        self.emit(RecognitionEventType.FINAL, text=text)

    def error(self, kind: RecognitionErrorKind, message: str = "") -> None:
        self.emit(RecognitionEventType.ERROR, error=kind, message=message)

    def end(self) -> None:
        self.emit(RecognitionEventType.ENDED)

    def stop(self) -> None:
        self.stop_count += 1
        was_running, self.is_running = self.is_running, False
        if was_running and self.end_on_stop:
            self.end()

    def abort(self) -> None:
        self.abort_count += 1
        self.is_running = False

    def get_status(self) -> dict:
        return {
            "provider": "mock_recognition",
            "is_running": self.is_running,
            "starts": self.start_count,
        }


class MockSynthesisEngine(SynthesisEngine):
    """Synthesis engine that records utterances and completes them on request."""

    def __init__(self):
        self.spoken: List[str] = []
        self.voices: List[Optional[str]] = []
        self.handlers: List[SynthesisHandler] = []
        self.cancel_count = 0
        self._current: Optional[SynthesisHandler] = None
        self._started = False

    def initialize(self) -> None:
        pass

    @property
    def speaking(self) -> bool:
        return self._current is not None and self._started

    @property
    def pending(self) -> bool:
        return self._current is not None

    def speak(self, text: str, voice: Optional[str], on_event: SynthesisHandler) -> None:
        self.spoken.append(text)
        self.voices.append(voice)
        self.handlers.append(on_event)
        self._current = on_event
        self._started = False

    def _take(self) -> SynthesisHandler:
        if self._current is None:
            raise AssertionError("Nothing is being spoken")
        handler, self._current = self._current, None
        self._started = False
        return handler

    def begin(self) -> None:
        if self._current is None:
            raise AssertionError("Nothing is being spoken")
        self._started = True
        self._current(SynthesisEvent(SynthesisEventType.STARTED))

    def complete(self) -> None:
        """Finish the current utterance normally."""
        self._take()(SynthesisEvent(SynthesisEventType.ENDED))

    def fail(self, kind: SynthesisErrorKind, message: str = "") -> None:
        self._take()(SynthesisEvent(SynthesisEventType.ERROR, kind, message))

    def drop_completion(self) -> None:
        """Go idle without reporting the end, as a flaky engine does."""
        self._take()

    def cancel(self) -> None:
        self.cancel_count += 1
        if self._current is not None:
            self._take()(SynthesisEvent(SynthesisEventType.ERROR, SynthesisErrorKind.INTERRUPTED))

    def stop(self) -> None:
        self.cancel()

    def get_status(self) -> dict:
        return {
            "provider": "mock_synthesis",
            "speaking": self.speaking,
            "utterances": len(self.spoken),
        }


class ScriptedRecognitionEngine(RecognitionEngine):
    """Hears one scripted phrase per run, with loop-timed events."""

    def __init__(self, phrases: Optional[List[str]] = None, speech_delay: float = 0.5, no_speech_timeout: float = 8.0):
        self.phrases = list(phrases) if phrases is not None else [
            "Hello, how are you today?",
            "Tell me a joke.",
            "read last response",
        ]
        self.speech_delay = speech_delay
        self.no_speech_timeout = no_speech_timeout
        self.phrase_index = 0
        self._handles: List[asyncio.TimerHandle] = []
        self._handler: Optional[RecognitionHandler] = None

    def initialize(self) -> None:
        pass

    def _later(self, delay: float, event: RecognitionEvent) -> None:
        handler = self._handler
        loop = asyncio.get_running_loop()
        self._handles.append(loop.call_later(delay, handler, event))

    def start(self, on_event: RecognitionHandler) -> None:
        if self._handler is not None:
            raise RuntimeError("Recognition already running")
        self._handler = on_event
        self._later(0.01, RecognitionEvent(RecognitionEventType.STARTED))
        self._later(0.05, RecognitionEvent(RecognitionEventType.AUDIO_STARTED))

        if self.phrase_index >= len(self.phrases):
            self._later(
                self.no_speech_timeout,
                RecognitionEvent(RecognitionEventType.ERROR, error=RecognitionErrorKind.NO_SPEECH),
            )
            return

        phrase = self.phrases[self.phrase_index]
        self.phrase_index += 1
        self._later(self.speech_delay, RecognitionEvent(RecognitionEventType.SPEECH_STARTED))
        self._later(self.speech_delay + 0.3, RecognitionEvent(RecognitionEventType.PARTIAL, text=phrase.split(" ")[0]))
        self._later(self.speech_delay + 0.8, RecognitionEvent(RecognitionEventType.FINAL, text=phrase))

    def _cancel_pending(self) -> Optional[RecognitionHandler]:
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()
        handler, self._handler = self._handler, None
        return handler

    def stop(self) -> None:
        handler = self._cancel_pending()
        if handler is not None:
            asyncio.get_running_loop().call_soon(handler, RecognitionEvent(RecognitionEventType.ENDED))

    def abort(self) -> None:
        self._cancel_pending()

    def get_status(self) -> dict:
        return {
            "provider": "scripted_recognition",
            "is_running": self._handler is not None,
            "phrases_heard": self.phrase_index,
        }


class ScriptedSynthesisEngine(SynthesisEngine):
    """Pretends to speak: each utterance lasts a few milliseconds per character."""

    def __init__(self, seconds_per_char: float = 0.02, max_seconds: float = 3.0):
        self.seconds_per_char = seconds_per_char
        self.max_seconds = max_seconds
        self.spoken: List[str] = []
        self._handles: List[asyncio.TimerHandle] = []
        self._current: Optional[SynthesisHandler] = None
        self._started = False

    def initialize(self) -> None:
        pass

    @property
    def speaking(self) -> bool:
        return self._started

    @property
    def pending(self) -> bool:
        return self._current is not None

    def speak(self, text: str, voice: Optional[str], on_event: SynthesisHandler) -> None:
        loop = asyncio.get_running_loop()
        self.spoken.append(text)
        self._current = on_event
        duration = min(len(text) * self.seconds_per_char, self.max_seconds)
        self._handles = [
            loop.call_later(0.01, self._begin, on_event),
            loop.call_later(0.01 + duration, self._finish, on_event),
        ]

    def _begin(self, handler: SynthesisHandler) -> None:
        self._started = True
        handler(SynthesisEvent(SynthesisEventType.STARTED))

    def _finish(self, handler: SynthesisHandler) -> None:
        self._current = None
        self._started = False
        handler(SynthesisEvent(SynthesisEventType.ENDED))

    def cancel(self) -> None:
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()
        handler, self._current = self._current, None
        self._started = False
        if handler is not None:
            asyncio.get_running_loop().call_soon(
                handler, SynthesisEvent(SynthesisEventType.ERROR, SynthesisErrorKind.INTERRUPTED)
            )

    def stop(self) -> None:
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()
        self._current = None
        self._started = False

    def get_status(self) -> dict:
        return {
            "provider": "scripted_synthesis",
            "speaking": self.speaking,
            "utterances": len(self.spoken),
        }


class MockConversationService(ConversationService):
    """Conversation service that echoes, or replays scripted replies."""

    def __init__(self, system_prompt: str = "", replies: Optional[List[str]] = None, models: Optional[List[ModelInfo]] = None):
        super().__init__(system_prompt)
        self.replies = list(replies or [])
        self.models = list(models) if models is not None else [
            ModelInfo(id="mock-fast", name="Mock Fast"),
            ModelInfo(id="mock-smart", name="Mock Smart"),
        ]
        self.sent: List[Tuple[str, str]] = []
        self.fail_next: Optional[str] = None
        self.list_models_error: Optional[str] = None
        self.delay = 0.0

    def initialize(self) -> None:
        pass

    async def send_message(self, content: str, model_id: str) -> AssistantTurn:
        self.sent.append((content, model_id))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail_next is not None:
            message, self.fail_next = self.fail_next, None
            raise SubmissionError(message)

        reply = self.replies.pop(0) if self.replies else f"You said: {content}"
        self.add_to_history("user", content)
        self.add_to_history("assistant", reply, model_id)
        return AssistantTurn(content=reply, model_id=model_id)

    async def list_models(self) -> List[ModelInfo]:
        if self.list_models_error is not None:
            raise SubmissionError(self.list_models_error)
        return list(self.models)

    def stop(self) -> None:
        pass

    def get_status(self) -> dict:
        return {
            "provider": "mock_conversation",
            "messages_sent": len(self.sent),
            "history_length": len(self.conversation_history),
        }
