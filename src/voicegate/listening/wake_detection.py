"""Text-based wake and sleep word detection."""

from __future__ import annotations

import re
from typing import Iterable, List, Optional

from rapidfuzz import fuzz

from ..debug import DebugLogger, default_logger
from ..models import TranscriptEvent

# Characters removed before matching
PUNCTUATION = ".,!?;:()[]{}\"'`-_/"
_PUNCT_TABLE = str.maketrans({ch: " " for ch in PUNCTUATION})


def normalize_text(text: Optional[str]) -> str:
    """Lower-case, strip punctuation and collapse whitespace."""
    if not text:
        return ""
    return " ".join(text.lower().translate(_PUNCT_TABLE).split())


def _compact(text: str) -> str:
    return "".join(text.split())


def is_phrase_detected(
    text: Optional[str],
    phrase: Optional[str],
    aliases: Iterable[str] = (),
    substring_fallback: bool = True,
    fuzzy_ratio: Optional[float] = None,
) -> bool:
    """
    Check if text contains a trigger phrase.

    Whole-word matches win. When they fail, the phrase may still match as a
    contained substring with whitespace ignored, and finally through fuzzy
    token comparison when a ratio is given.

    Args:
        text: Transcript text to check
        phrase: Primary trigger phrase; None or empty never matches
        aliases: Alternative spellings of the phrase
        substring_fallback: Allow contained-substring matches
        fuzzy_ratio: Threshold for fuzzy matching (0.0-1.0), None disables it

    Returns:
        True if the phrase was detected
    """
    normalized_phrase = normalize_text(phrase)
    if not normalized_phrase:
        return False
    normalized = normalize_text(text)
    if not normalized:
        return False

    candidates: List[str] = [normalized_phrase]
    for alias in aliases:
        alias_norm = normalize_text(alias)
        if alias_norm and alias_norm not in candidates:
            candidates.append(alias_norm)

    for candidate in candidates:
        if re.search(rf"\b{re.escape(candidate)}\b", normalized):
            return True

    if substring_fallback:
        compact_text = _compact(normalized)
        for candidate in candidates:
            if _compact(candidate) in compact_text:
                return True

    if fuzzy_ratio is not None:
        tokens = normalized.split()
        for candidate in candidates:
            width = len(candidate.split())
            for i in range(len(tokens) - width + 1):
                window = " ".join(tokens[i:i + width])
                if fuzz.ratio(candidate, window) >= fuzzy_ratio * 100:
                    return True

    return False


class TextMatcher:
    """Wake/sleep detection over transcript text.

    A missing wake or sleep word disables that trigger: the check returns
    False instead of raising.
    """

    kind = "text"

    def __init__(
        self,
        wake_word: Optional[str],
        sleep_word: Optional[str],
        *,
        wake_aliases: Iterable[str] = (),
        sleep_aliases: Iterable[str] = (),
        substring_fallback: bool = True,
        fuzzy_ratio: Optional[float] = None,
        logger: Optional[DebugLogger] = None,
    ):
        self.wake_word = normalize_text(wake_word) or None
        self.sleep_word = normalize_text(sleep_word) or None
        self.wake_aliases = [a for a in (normalize_text(a) for a in wake_aliases) if a]
        self.sleep_aliases = [a for a in (normalize_text(a) for a in sleep_aliases) if a]
        self.substring_fallback = substring_fallback
        self.fuzzy_ratio = fuzzy_ratio
        self._log = logger or default_logger

    def detect_wake(self, text) -> bool:
        if isinstance(text, TranscriptEvent):
            text = text.text
        if not isinstance(text, str):
            return False
        detected = is_phrase_detected(
            text, self.wake_word, self.wake_aliases, self.substring_fallback, self.fuzzy_ratio
        )
        if detected:
            self._log.debug(f"wake word detected in '{text}'", "wake", wake_word=self.wake_word)
        return detected

    def detect_sleep(self, text) -> bool:
        if isinstance(text, TranscriptEvent):
            text = text.text
        if not isinstance(text, str):
            return False
        detected = is_phrase_detected(
            text, self.sleep_word, self.sleep_aliases, self.substring_fallback, self.fuzzy_ratio
        )
        if detected:
            self._log.debug(f"sleep word detected in '{text}'", "wake", sleep_word=self.sleep_word)
        return detected

    def without_wake(self) -> "TextMatcher":
        """Copy that only detects the sleep word."""
        return TextMatcher(
            None,
            self.sleep_word,
            sleep_aliases=self.sleep_aliases,
            substring_fallback=self.substring_fallback,
            fuzzy_ratio=self.fuzzy_ratio,
            logger=self._log,
        )
