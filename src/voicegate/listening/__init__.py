"""Listening module - wake-gated streaming transcription."""

from .audio_source import AudioSource
from .keyword_spotter import KeywordSpotter
from .orchestrator import Orchestrator
from .state_manager import StateManager
from .transcription_client import TranscriptionClient
from .wake_detection import TextMatcher, is_phrase_detected, normalize_text

__all__ = [
    "AudioSource",
    "KeywordSpotter",
    "Orchestrator",
    "StateManager",
    "TextMatcher",
    "TranscriptionClient",
    "is_phrase_detected",
    "normalize_text",
]
