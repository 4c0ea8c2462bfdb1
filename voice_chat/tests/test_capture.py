"""Tests for capture sessions and silence detection."""

from unittest.mock import Mock

import pytest

from mocks.scheduler import ManualScheduler

from ..core.models import CaptureStatus, TurnMode
from ..core.silence import SilenceMonitor
from ..core.transcript import TranscriptAccumulator
from ..providers.recognition.base import RecognitionEventType


class TestSilenceMonitor:
    """Test cases for end-of-utterance detection."""

    def setup_method(self):
        self.scheduler = ManualScheduler()
        self.accumulator = TranscriptAccumulator()
        self.last_speech = 0.0
        self.on_silence = Mock()
        self.monitor = SilenceMonitor(
            self.scheduler,
            self.accumulator,
            last_speech=lambda: self.last_speech,
            on_silence=self.on_silence,
        )

    def test_empty_buffer_never_fires(self):
        self.monitor.start()
        self.scheduler.advance(60)

        self.on_silence.assert_not_called()
        assert self.monitor.is_running

    def test_fires_once_after_threshold(self):
        self.accumulator.append("hello")
        self.monitor.start()

        self.scheduler.advance(1.95)
        self.on_silence.assert_not_called()

        self.scheduler.advance(0.3)
        self.on_silence.assert_called_once()
        assert not self.monitor.is_running

        self.scheduler.advance(10)
        self.on_silence.assert_called_once()

    def test_new_speech_postpones(self):
        self.accumulator.append("hello")
        self.monitor.start()

        self.scheduler.advance(1.5)
        self.last_speech = 1.5
        self.scheduler.advance(1.9)
        self.on_silence.assert_not_called()

        self.scheduler.advance(0.6)
        self.on_silence.assert_called_once()

    def test_not_armed_before_grace(self):
        self.monitor.start()
        assert self.monitor.is_running
        assert self.scheduler.pending_timers == 1

        self.monitor.stop()
        assert not self.monitor.is_running
        assert self.scheduler.pending_timers == 0

    def test_start_twice_keeps_one_timer(self):
        self.monitor.start()
        self.monitor.start()

        assert self.scheduler.pending_timers == 1


class TestCaptureSession:
    """Test cases for capture through the coordinator."""

    def test_start_enters_listening(self, coordinator, recognizer):
        assert coordinator.request_listen()

        assert coordinator.mode == TurnMode.LISTENING
        assert coordinator.capture.status == CaptureStatus.STARTING
        assert recognizer.start_count == 1

        recognizer.begin()
        assert coordinator.capture.status == CaptureStatus.LISTENING

    def test_start_while_active_is_noop(self, coordinator, recognizer):
        coordinator.request_listen()
        coordinator.request_listen()

        assert recognizer.start_count == 1

    def test_partial_results_are_display_only(self, coordinator, recognizer):
        coordinator.request_listen()
        recognizer.begin()

        recognizer.partial("hel")
        assert coordinator.display_text() == "hel"
        assert coordinator.accumulator.read() == ""

        recognizer.final("hello")
        assert coordinator.accumulator.read() == "hello"
        assert coordinator.capture.interim == ""

        recognizer.partial("wor")
        assert coordinator.display_text() == "hello wor"

    def test_final_results_accumulate(self, coordinator, recognizer):
        coordinator.request_listen()
        recognizer.begin()

        recognizer.final("hello")
        recognizer.final(" there ")
        recognizer.final("")

        assert coordinator.accumulator.read() == "hello there"

    def test_events_from_old_run_ignored(self, coordinator, recognizer):
        coordinator.request_listen()
        old_handler = recognizer.handler
        coordinator.manual_toggle_mic()

        recognizer.emit(RecognitionEventType.FINAL, handler=old_handler, text="late")
        recognizer.emit(RecognitionEventType.ENDED, handler=old_handler)

        assert coordinator.accumulator.read() == ""
        assert coordinator.mode == TurnMode.IDLE

    def test_manual_stop_keeps_text_and_does_not_restart(self, coordinator, recognizer, scheduler):
        coordinator.request_listen()
        recognizer.begin()
        recognizer.final("hello")

        assert coordinator.manual_toggle_mic()
        scheduler.advance(10)

        assert coordinator.accumulator.read() == "hello"
        assert not coordinator.voice_enabled
        assert recognizer.start_count == 1
        assert recognizer.abort_count == 1
        assert not coordinator.submission.in_flight

    def test_empty_buffer_keeps_listening(self, coordinator, recognizer, scheduler):
        coordinator.request_listen()
        recognizer.begin()

        scheduler.advance(30)

        assert recognizer.stop_count == 0
        assert coordinator.is_listening

    def test_natural_end_without_text_restarts(self, coordinator, recognizer, scheduler):
        coordinator.request_listen()
        recognizer.begin()
        recognizer.end()

        assert coordinator.mode == TurnMode.IDLE
        assert coordinator.restart_pending

        scheduler.advance(0.4)
        assert recognizer.start_count == 1

        scheduler.advance(0.2)
        assert recognizer.start_count == 2
        assert coordinator.is_listening

    @pytest.mark.asyncio
    async def test_silence_submits_pending_text(self, coordinator, recognizer, synthesizer, service, scheduler):
        coordinator.request_listen()
        recognizer.begin()
        recognizer.final("hello")

        scheduler.advance(2.2)

        assert recognizer.stop_count == 1
        assert coordinator.submission.in_flight
        assert coordinator.mode == TurnMode.IDLE

        await scheduler.settle()

        assert service.sent == [("hello", "mock-fast")]
        assert coordinator.accumulator.read() == ""
        assert synthesizer.spoken == ["You said: hello"]
        assert coordinator.mode == TurnMode.SPEAKING

    @pytest.mark.asyncio
    async def test_listening_resumes_after_reply(self, coordinator, recognizer, synthesizer, scheduler):
        coordinator.request_listen()
        recognizer.begin()
        recognizer.final("hello")
        scheduler.advance(2.2)
        await scheduler.settle()

        synthesizer.begin()
        synthesizer.complete()
        assert coordinator.mode == TurnMode.IDLE

        scheduler.advance(0.5)

        assert recognizer.start_count == 2
        assert coordinator.is_listening
        assert not coordinator.submission.in_flight
