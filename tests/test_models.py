"""Tests for the shared listening data types."""

import numpy as np
import pytest

from fakes import make_frame
from voicegate.models import (
    AudioFrame,
    SessionState,
    StateChange,
    TranscriptEvent,
    TranscriptLog,
)


class TestAudioFrame:

    def test_silence_has_zero_level(self):
        assert make_frame(0).level() == 0.0

    def test_level_is_normalized(self):
        assert make_frame(0, value=16384).level() == pytest.approx(0.5)
        assert make_frame(0, value=-32768).level() == 1.0

    def test_empty_frame(self):
        frame = AudioFrame(data=b"", sequence=0, timestamp=0.0)
        assert frame.level() == 0.0
        assert frame.duration == 0.0

    def test_duration(self):
        assert make_frame(0, samples=4000).duration == pytest.approx(0.25)

    def test_samples_are_read_only(self):
        samples = make_frame(0, value=3).samples()
        with pytest.raises(ValueError):
            samples[0] = 1

    def test_stereo_samples_are_mixed(self):
        pcm = np.array([100, 300, -50, 50], dtype=np.int16)
        frame = AudioFrame(data=pcm.tobytes(), sequence=0, timestamp=0.0, channels=2)
        assert frame.samples().tolist() == [200, 0]


class TestSessionState:

    def test_listening_states(self):
        assert SessionState.ARMED.is_listening is True
        assert SessionState.ACTIVE.is_listening is True
        assert SessionState.STOPPED.is_listening is False
        assert SessionState.INITIALIZING.is_listening is False

    def test_state_change_flags(self):
        change = StateChange.for_state(SessionState.ACTIVE)
        assert change.is_listening is True
        assert change.is_active is True
        assert StateChange.for_state(SessionState.ARMED).is_active is False


class TestTranscriptLog:
    """Tests for the finalized/interim transcript view."""

    def test_interim_replaced_then_finalized(self):
        log = TranscriptLog()
        log.apply(TranscriptEvent("hel", False))
        log.apply(TranscriptEvent("hello wor", False))
        assert log.interim == "hello wor"
        assert len(log) == 0
        log.apply(TranscriptEvent("hello world", True))
        assert log.segments == ["hello world"]
        assert log.interim == ""

    def test_text_joins_segments(self):
        log = TranscriptLog()
        log.apply(TranscriptEvent("first part.", True))
        log.apply(TranscriptEvent(" second part ", True))
        assert log.text == "first part. second part"

    def test_blank_final_closes_interim_without_segment(self):
        log = TranscriptLog()
        log.apply(TranscriptEvent("um", False))
        log.apply(TranscriptEvent("  ", True))
        assert log.segments == []
        assert log.interim == ""

    def test_reset(self):
        log = TranscriptLog()
        log.apply(TranscriptEvent("x", True))
        log.reset()
        assert log.text == ""
        assert len(log) == 0
