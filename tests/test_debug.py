"""Tests for debug logging."""

import io

from voicegate.debug import DebugLogger


def test_debug_lines_gated_by_flag():
    stream = io.StringIO()
    DebugLogger(enabled=False, stream=stream).debug("hidden", "audio")
    assert stream.getvalue() == ""

    DebugLogger(enabled=True, stream=stream).debug("shown", "audio")
    assert stream.getvalue() == "[  audio   ] shown\n"


def test_env_toggle(monkeypatch):
    import voicegate.debug as debug_module

    monkeypatch.setenv("VOICEGATE_DEBUG", "1")
    monkeypatch.setattr(debug_module, "_cached_voice_debug", None)
    stream = io.StringIO()
    DebugLogger(stream=stream).debug("on", "stt")
    assert "on" in stream.getvalue()


def test_warnings_and_errors_always_written_with_fields():
    stream = io.StringIO()
    logger = DebugLogger(enabled=False, stream=stream)
    logger.warning("slow", "stt", code=1011)
    logger.error("failed", "session", reason="auth")
    lines = stream.getvalue().splitlines()
    assert lines[0].endswith("WARNING: slow code=1011")
    assert lines[1].endswith("ERROR: failed reason='auth'")
