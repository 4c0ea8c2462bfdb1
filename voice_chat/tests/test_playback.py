"""Tests for chunked playback."""

from unittest.mock import Mock

import pytest

from mocks.providers import MockSynthesisEngine

from ..core.models import GenerationCounter, PlaybackFinished, PlaybackStarted, TurnMode
from ..core.playback import PlaybackSession, chunk_text
from ..providers.synthesis.base import SynthesisErrorKind, SynthesisEvent, SynthesisEventType


LONG_SENTENCES = " ".join(f"Sentence number {i} is here to fill up the playback buffer a little." for i in range(8))


class TestChunkText:
    """Test cases for splitting text into bounded chunks."""

    def test_short_sentences_share_one_chunk(self):
        chunks = chunk_text("A. B. C.")

        assert [c.text for c in chunks] == ["A. B. C."]
        assert chunks[0].total == 1
        assert chunks[0].is_last

    def test_long_unbroken_text_is_cut(self):
        chunks = chunk_text("x" * 500)

        assert len(chunks) == 3
        assert [len(c.text) for c in chunks] == [180, 180, 140]
        assert [c.index for c in chunks] == [0, 1, 2]
        assert all(c.total == 3 for c in chunks)

    def test_chunks_respect_limit(self):
        chunks = chunk_text(LONG_SENTENCES, max_length=100)

        assert len(chunks) > 1
        assert all(len(c.text) <= 100 for c in chunks)
        assert " ".join(c.text for c in chunks) == LONG_SENTENCES

    def test_sentence_is_not_split_when_it_fits(self):
        chunks = chunk_text("Short one. " + "y" * 20 + ".", max_length=15)

        assert chunks[0].text == "Short one."

    def test_empty_text(self):
        assert chunk_text("") == []
        assert chunk_text("   \n ") == []

    def test_invalid_limit(self):
        with pytest.raises(ValueError):
            chunk_text("hello", max_length=0)


class TestPlaybackSession:
    """Test cases for PlaybackSession on its own."""

    def setup_method(self):
        self.engine = MockSynthesisEngine()
        self.generations = GenerationCounter()
        self.messages = []
        self.notify = Mock()
        self.session = PlaybackSession(
            self.engine,
            self.generations,
            dispatch=self.messages.append,
            notify=self.notify,
            max_chunk_length=100,
        )

    def test_chunks_played_in_order(self):
        assert self.session.speak(LONG_SENTENCES)
        total = self.session.state.chunks[0].total

        for _ in range(total):
            self.engine.begin()
            self.engine.complete()

        assert len(self.engine.spoken) == total
        assert " ".join(self.engine.spoken) == LONG_SENTENCES
        assert not self.session.is_active
        assert isinstance(self.messages[0], PlaybackStarted)
        assert self.messages[-1] == PlaybackFinished(self.messages[0].generation, cancelled=False)

    def test_next_chunk_waits_for_end(self):
        self.session.speak(LONG_SENTENCES)
        self.engine.begin()

        assert len(self.engine.spoken) == 1

    def test_markdown_is_stripped(self):
        self.session.speak("**Hello** [there](https://example.com).")

        assert self.engine.spoken == ["Hello there."]

    def test_nothing_to_speak(self):
        assert not self.session.speak("   ")
        assert self.messages == []
        assert self.engine.spoken == []

    def test_stale_end_event_ignored(self):
        self.session.speak("First request.")
        stale = self.engine.handlers[0]
        self.session.speak("Second request.")

        stale(SynthesisEvent(SynthesisEventType.ENDED))

        assert self.session.is_active
        assert self.engine.spoken == ["First request.", "Second request."]

    def test_replacement_does_not_report_finish(self):
        self.session.speak("First request.")
        first = self.messages[0].generation
        self.session.speak("Second request.")

        assert [type(m) for m in self.messages] == [PlaybackStarted, PlaybackStarted]
        assert self.messages[1].generation != first
        assert self.engine.cancel_count == 1

    def test_engine_error_reports_and_finishes(self):
        self.session.speak("Hello.")
        self.engine.fail(SynthesisErrorKind.NETWORK, "offline")

        self.notify.assert_called_once()
        notice = self.notify.call_args[0][0]
        assert notice.level == "error"
        assert notice.code == "network"
        assert "offline" in notice.message
        assert not self.session.is_active

    def test_interruption_is_silent(self):
        self.session.speak("Hello.")
        self.engine.fail(SynthesisErrorKind.INTERRUPTED)

        self.notify.assert_not_called()
        assert self.messages[-1].cancelled

    def test_engine_raising_on_speak(self):
        self.engine.speak = Mock(side_effect=RuntimeError("no audio device"))

        self.session.speak("Hello.")

        assert not self.session.is_active
        assert self.notify.call_args[0][0].code == "synthesis-failed"

    def test_cancel(self):
        self.session.speak("Hello.")
        generation = self.session.state.generation

        assert self.session.cancel()
        assert not self.session.is_active
        assert self.engine.cancel_count == 1
        assert self.messages[-1] == PlaybackFinished(generation, cancelled=True)
        assert not self.session.cancel()

    def test_force_finalize(self):
        self.session.speak("Hello.")
        self.engine.drop_completion()

        self.session.force_finalize()

        assert not self.session.is_active
        assert isinstance(self.messages[-1], PlaybackFinished)


class TestPlaybackThroughCoordinator:
    """Test cases for playback and the turn mode."""

    def test_speaking_mode_set_synchronously(self, coordinator):
        assert coordinator.request_speak("Hello there.")

        assert coordinator.mode == TurnMode.SPEAKING
        assert coordinator.is_speaking

    def test_cancel_mid_playback(self, coordinator, synthesizer, scheduler):
        coordinator.request_speak(LONG_SENTENCES)
        total = coordinator.playback.state.chunks[0].total
        assert total >= 3

        synthesizer.begin()
        synthesizer.complete()
        synthesizer.begin()
        assert len(synthesizer.spoken) == 2

        assert coordinator.cancel_speech()

        assert coordinator.playback.state is None
        assert coordinator.mode == TurnMode.IDLE
        scheduler.advance(5)
        assert len(synthesizer.spoken) == 2

    def test_speak_cancel_speak(self, coordinator, synthesizer):
        coordinator.request_speak("First reply.")
        coordinator.cancel_speech()
        coordinator.request_speak("Second reply.")

        synthesizer.handlers[0](SynthesisEvent(SynthesisEventType.ENDED))

        assert synthesizer.spoken == ["First reply.", "Second reply."]
        assert coordinator.is_speaking

        synthesizer.begin()
        synthesizer.complete()
        assert coordinator.mode == TurnMode.IDLE

    def test_speaking_stops_capture(self, coordinator, recognizer):
        coordinator.request_listen()
        recognizer.begin()

        coordinator.request_speak("Hello.")

        assert not coordinator.capture.is_active
        assert recognizer.abort_count == 1
        assert coordinator.mode == TurnMode.SPEAKING

    def test_listen_refused_while_speaking(self, coordinator, recognizer, notices):
        coordinator.request_speak("Hello.")

        assert not coordinator.manual_toggle_mic()
        assert not coordinator.request_listen()

        assert recognizer.start_count == 0
        assert coordinator.is_speaking
        assert [n.code for n in notices] == ["speaking"]

    def test_restart_after_playback_when_voice_enabled(self, coordinator, recognizer, synthesizer, scheduler):
        coordinator.request_listen()
        coordinator.request_speak("Hello.")
        synthesizer.begin()
        synthesizer.complete()

        scheduler.advance(0.5)

        assert recognizer.start_count == 2
        assert coordinator.is_listening

    def test_no_restart_after_playback_when_voice_off(self, coordinator, recognizer, synthesizer, scheduler):
        coordinator.request_speak("Hello.")
        synthesizer.begin()
        synthesizer.complete()

        scheduler.advance(5)

        assert recognizer.start_count == 0
