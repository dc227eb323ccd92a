"""
Tests for the listening session state manager.

These tests verify the allowed state transitions and how the transcript log
follows them.
"""

import threading
import pytest

from voicegate.debug import DebugLogger
from voicegate.listening.state_manager import StateManager
from voicegate.models import SessionState, TranscriptEvent


def make_manager(state=None):
    sm = StateManager(logger=DebugLogger(enabled=False))
    path = {
        SessionState.INITIALIZING: [SessionState.INITIALIZING],
        SessionState.ARMED: [SessionState.INITIALIZING, SessionState.ARMED],
        SessionState.ACTIVE: [SessionState.INITIALIZING, SessionState.ARMED, SessionState.ACTIVE],
    }
    for step in path.get(state, []):
        sm.transition(step)
    return sm


class TestStateTransitions:
    """Tests for basic state transitions."""

    def test_initial_state_is_stopped(self):
        """State manager starts in STOPPED state."""
        sm = make_manager()
        assert sm.get_state() == SessionState.STOPPED
        assert sm.is_active() is False
        assert sm.is_armed() is False

    def test_full_cycle(self):
        """STOPPED -> INITIALIZING -> ARMED -> ACTIVE -> ARMED -> STOPPED."""
        sm = make_manager()
        for state in (SessionState.INITIALIZING, SessionState.ARMED, SessionState.ACTIVE,
                      SessionState.ARMED, SessionState.STOPPED):
            assert sm.transition(state) is True
            assert sm.get_state() == state

    @pytest.mark.parametrize("start", [SessionState.INITIALIZING, SessionState.ARMED, SessionState.ACTIVE])
    def test_any_state_can_stop(self, start):
        sm = make_manager(start)
        assert sm.transition(SessionState.STOPPED) is True

    @pytest.mark.parametrize("start,target", [
        (SessionState.STOPPED, SessionState.ARMED),
        (SessionState.STOPPED, SessionState.ACTIVE),
        (SessionState.INITIALIZING, SessionState.ACTIVE),
        (SessionState.ACTIVE, SessionState.INITIALIZING),
    ])
    def test_invalid_transitions_raise(self, start, target):
        sm = make_manager(start)
        with pytest.raises(RuntimeError):
            sm.transition(target)
        assert sm.get_state() == start

    def test_same_state_is_noop(self):
        sm = make_manager(SessionState.ARMED)
        assert sm.transition(SessionState.ARMED) is False

    def test_expected_state_guard(self):
        """Guarded transitions only happen from the expected state."""
        sm = make_manager(SessionState.INITIALIZING)
        assert sm.transition(SessionState.STOPPED, expected=SessionState.ARMED) is False
        assert sm.get_state() == SessionState.INITIALIZING

    def test_activate_and_deactivate_helpers(self):
        sm = make_manager(SessionState.ARMED)
        assert sm.deactivate() is False
        assert sm.activate() is True
        assert sm.is_active() is True
        assert sm.activate() is False
        assert sm.deactivate() is True
        assert sm.is_armed() is True


class TestTranscriptLog:
    """Tests for transcript recording across transitions."""

    def test_record_only_while_active(self):
        sm = make_manager(SessionState.ARMED)
        assert sm.record(TranscriptEvent("ignored", True)) is False
        sm.activate()
        assert sm.record(TranscriptEvent("kept", True)) is True
        assert sm.transcript.segments == ["kept"]

    def test_wake_clears_previous_transcript(self):
        """A fresh ARMED -> ACTIVE transition starts an empty log."""
        sm = make_manager(SessionState.ACTIVE)
        sm.record(TranscriptEvent("first session", True))
        sm.deactivate()
        assert sm.transcript.segments == ["first session"]
        sm.activate()
        assert sm.transcript.segments == []

    def test_concurrent_activation_happens_once(self):
        """Only one of many racing threads wins the ARMED -> ACTIVE flip."""
        sm = make_manager(SessionState.ARMED)
        results = []
        barrier = threading.Barrier(8)

        def worker():
            barrier.wait()
            results.append(sm.activate())

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert results.count(True) == 1
