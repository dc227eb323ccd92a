"""State management for a listening session (stopped, armed, active)."""

import threading
from typing import Optional

from ..debug import DebugLogger, default_logger
from ..models import SessionState, TranscriptEvent, TranscriptLog


# Transitions allowed besides "any -> STOPPED"
_ALLOWED = {
    SessionState.STOPPED: {SessionState.INITIALIZING},
    SessionState.INITIALIZING: {SessionState.ARMED},
    SessionState.ARMED: {SessionState.ACTIVE},
    SessionState.ACTIVE: {SessionState.ARMED},
}


class StateManager:
    """Owns the session state and the transcript log.

    Every read-modify-write on the state happens under one lock, so a wake
    check and the flip to ACTIVE cannot interleave with a sleep or stop.
    """

    def __init__(self, logger: Optional[DebugLogger] = None):
        self._state = SessionState.STOPPED
        self._state_lock = threading.Lock()
        self._log = logger or default_logger
        self.transcript = TranscriptLog()

    def get_state(self) -> SessionState:
        """Get current session state."""
        with self._state_lock:
            return self._state

    def is_active(self) -> bool:
        return self.get_state() == SessionState.ACTIVE

    def is_armed(self) -> bool:
        return self.get_state() == SessionState.ARMED

    def transition(self, new_state: SessionState, expected: Optional[SessionState] = None) -> bool:
        """
        Move to a new state.

        Args:
            new_state: Target state
            expected: If given, only transition when currently in this state

        Returns:
            True if the state changed
        """
        with self._state_lock:
            current = self._state
            if expected is not None and current != expected:
                return False
            if current == new_state:
                return False
            if new_state != SessionState.STOPPED and new_state not in _ALLOWED[current]:
                raise RuntimeError(f"invalid transition {current.value} -> {new_state.value}")
            self._state = new_state
            if current == SessionState.ARMED and new_state == SessionState.ACTIVE:
                # Fresh wake: start a new transcript
                self.transcript.reset()

        self._log.debug(f"state {current.value} -> {new_state.value}", "state")
        return True

    def activate(self) -> bool:
        """ARMED -> ACTIVE, clearing the transcript. False if not armed."""
        return self.transition(SessionState.ACTIVE, expected=SessionState.ARMED)

    def deactivate(self) -> bool:
        """ACTIVE -> ARMED, keeping the transcript. False if not active."""
        return self.transition(SessionState.ARMED, expected=SessionState.ACTIVE)

    def record(self, event: TranscriptEvent) -> bool:
        """Apply a transcript event to the log, only while ACTIVE."""
        with self._state_lock:
            if self._state != SessionState.ACTIVE:
                return False
            self.transcript.apply(event)
            return True
