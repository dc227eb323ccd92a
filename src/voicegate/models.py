"""Data types passed between the listening components."""

from __future__ import annotations

import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

import numpy as np


@dataclass(frozen=True)
class AudioFrame:
    """One fixed-interval block of 16-bit PCM audio.

    Frames are shared by reference between subscribers and must not be mutated.
    """
    data: bytes
    sequence: int
    timestamp: float
    sample_rate: int = 16000
    channels: int = 1

    def samples(self) -> np.ndarray:
        """Return the frame as a read-only int16 array (mono-mixed)."""
        pcm = np.frombuffer(self.data, dtype=np.int16)
        if self.channels > 1:
            pcm = pcm.reshape(-1, self.channels).mean(axis=1).astype(np.int16)
        pcm.flags.writeable = False
        return pcm

    def level(self) -> float:
        """RMS level of the frame normalized to 0.0-1.0."""
        pcm = self.samples()
        if pcm.size == 0:
            return 0.0
        rms = float(np.sqrt(np.mean(np.square(pcm.astype(np.float64)))))
        return min(1.0, rms / 32768.0)

    @property
    def duration(self) -> float:
        """Frame duration in seconds."""
        bytes_per_second = self.sample_rate * self.channels * 2
        return len(self.data) / bytes_per_second if bytes_per_second else 0.0


@dataclass(frozen=True)
class TranscriptEvent:
    """Incremental transcription result."""
    text: str
    is_final: bool
    timestamp: float = field(default_factory=time.time)


@dataclass(frozen=True)
class WakeWordConfig:
    """Wake/sleep triggers. A missing word disables that trigger."""
    wake_word: Optional[str] = None
    sleep_word: Optional[str] = None
    sensitivity: float = 0.5


class SessionState(str, Enum):
    """Lifecycle states of a listening session."""
    STOPPED = "stopped"
    INITIALIZING = "initializing"
    ARMED = "armed"          # Listening, waiting for the wake word
    ACTIVE = "active"        # Surfacing transcripts until the sleep word

    @property
    def is_listening(self) -> bool:
        return self in (SessionState.ARMED, SessionState.ACTIVE)


@dataclass(frozen=True)
class StateChange:
    """Outward notification for a session state transition."""
    state: SessionState
    is_listening: bool
    is_active: bool

    @classmethod
    def for_state(cls, state: SessionState) -> "StateChange":
        return cls(
            state=state,
            is_listening=state.is_listening,
            is_active=state is SessionState.ACTIVE,
        )


@dataclass(frozen=True)
class SessionWarning:
    """Non-fatal condition reported to observers."""
    reason: str
    message: str


class TranscriptLog:
    """Finalized transcript segments plus the interim view of the open utterance."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._segments: List[str] = []
        self._interim: str = ""

    def apply(self, event: TranscriptEvent) -> None:
        """Record an event: interim text replaces the open view, final text closes it."""
        with self._lock:
            if event.is_final:
                text = event.text.strip()
                if text:
                    self._segments.append(text)
                self._interim = ""
            else:
                self._interim = event.text.strip()

    def reset(self) -> None:
        with self._lock:
            self._segments = []
            self._interim = ""

    @property
    def segments(self) -> List[str]:
        with self._lock:
            return list(self._segments)

    @property
    def interim(self) -> str:
        with self._lock:
            return self._interim

    @property
    def text(self) -> str:
        """Finalized segments joined for display."""
        with self._lock:
            return " ".join(self._segments)

    def __len__(self) -> int:
        with self._lock:
            return len(self._segments)
