"""Tests for text-based wake and sleep word detection."""

import pytest

from voicegate.debug import DebugLogger
from voicegate.listening.wake_detection import TextMatcher, is_phrase_detected, normalize_text
from voicegate.models import TranscriptEvent


QUIET = DebugLogger(enabled=False)


class TestNormalizeText:

    def test_lowercases_and_strips_punctuation(self):
        assert normalize_text("  Hello, World!  ") == "hello world"

    def test_empty_values(self):
        assert normalize_text(None) == ""
        assert normalize_text("") == ""
        assert normalize_text("?!") == ""


class TestIsPhraseDetected:
    """Tests for is_phrase_detected function."""

    def test_exact_word_match(self):
        assert is_phrase_detected("hello there", "hello") is True

    def test_case_and_punctuation_insensitive(self):
        assert is_phrase_detected("OK. Hey, Siri!", "hey siri") is True

    def test_multi_word_phrase_in_middle(self):
        assert is_phrase_detected("well hey siri what's up", "hey siri") is True

    def test_no_match(self):
        assert is_phrase_detected("good morning", "hello") is False

    def test_substring_fallback(self):
        """Contained substrings match unless the fallback is disabled."""
        assert is_phrase_detected("it stopped", "stop") is True
        assert is_phrase_detected("it stopped", "stop", substring_fallback=False) is False

    def test_substring_ignores_whitespace(self):
        assert is_phrase_detected("hey siri", "heysiri") is True

    def test_alias_match(self):
        assert is_phrase_detected("hey seri", "hey siri", aliases=["hey seri"]) is True

    def test_fuzzy_match(self):
        assert is_phrase_detected("hey sirri please", "hey siri", substring_fallback=False) is False
        assert is_phrase_detected("hey sirri please", "hey siri", substring_fallback=False,
                                  fuzzy_ratio=0.8) is True

    @pytest.mark.parametrize("text,phrase", [
        (None, "hello"),
        ("", "hello"),
        ("hello", None),
        ("hello", ""),
        ("hello", "!!"),
    ])
    def test_missing_values_never_match(self, text, phrase):
        assert is_phrase_detected(text, phrase) is False


class TestTextMatcher:
    """Tests for the TextMatcher wake engine."""

    def test_detect_wake_and_sleep(self):
        matcher = TextMatcher("Hello", "Bye", logger=QUIET)
        assert matcher.wake_word == "hello"
        assert matcher.detect_wake("hello there") is True
        assert matcher.detect_wake("bye now") is False
        assert matcher.detect_sleep("bye now") is True
        assert matcher.detect_sleep("hello there") is False

    def test_accepts_transcript_events(self):
        matcher = TextMatcher("hello", "bye", logger=QUIET)
        assert matcher.detect_wake(TranscriptEvent("Hello!", is_final=False)) is True

    def test_missing_words_disable_triggers(self):
        """A null wake or sleep word returns False instead of raising."""
        matcher = TextMatcher(None, "", logger=QUIET)
        assert matcher.wake_word is None
        assert matcher.sleep_word is None
        assert matcher.detect_wake("anything at all") is False
        assert matcher.detect_sleep("anything at all") is False

    def test_non_string_input(self):
        matcher = TextMatcher("hello", "bye", logger=QUIET)
        assert matcher.detect_wake(None) is False
        assert matcher.detect_sleep(42) is False

    def test_without_wake_keeps_sleep_options(self):
        matcher = TextMatcher("hello", "bye", sleep_aliases=["goodbye"], substring_fallback=False, logger=QUIET)
        sleep_only = matcher.without_wake()
        assert sleep_only.wake_word is None
        assert sleep_only.detect_wake("hello") is False
        assert sleep_only.detect_sleep("ok goodbye") is True
        assert sleep_only.detect_sleep("byebye") is False
        assert sleep_only.kind == "text"
