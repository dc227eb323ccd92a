"""Debug logging utilities for VoiceGate."""
import os
import sys
import time
from typing import Any, Optional, TextIO


_last_check_time: float = 0.0
_cached_voice_debug: Optional[bool] = None
_CACHE_TTL_SECONDS: float = 2.0

_LEVELS = ("debug", "info", "warning", "error")


def _is_debug_enabled() -> bool:
    global _last_check_time, _cached_voice_debug
    now = time.time()
    if _cached_voice_debug is None or (now - _last_check_time) > _CACHE_TTL_SECONDS:
        _cached_voice_debug = os.environ.get("VOICEGATE_DEBUG", "0") == "1"
        _last_check_time = now
    return bool(_cached_voice_debug)


def _format_fields(fields: dict[str, Any]) -> str:
    if not fields:
        return ""
    return " " + " ".join(f"{key}={value!r}" for key, value in fields.items())


class DebugLogger:
    """Category-tagged logger writing one line per record.

    Debug records are only written when debugging is enabled, either explicitly
    or through the VOICEGATE_DEBUG environment toggle. Keyword arguments are
    rendered as structured ``key=value`` fields after the message.
    """

    def __init__(self, enabled: Optional[bool] = None, stream: Optional[TextIO] = None):
        self._enabled = enabled
        self._stream = stream

    @property
    def debug_enabled(self) -> bool:
        if self._enabled is not None:
            return self._enabled
        return _is_debug_enabled()

    def log(self, level: str, message: str, category: str = "debug", **fields: Any) -> None:
        if level not in _LEVELS:
            raise ValueError(f"unknown log level: {level}")
        if level == "debug" and not self.debug_enabled:
            return
        prefix = "" if level in ("debug", "info") else f"{level.upper()}: "
        stream = self._stream or sys.stderr
        try:
            print(f"[{category:^10}] {prefix}{message}{_format_fields(fields)}", file=stream)
        except Exception:
            pass

    def debug(self, message: str, category: str = "debug", **fields: Any) -> None:
        self.log("debug", message, category, **fields)

    def info(self, message: str, category: str = "debug", **fields: Any) -> None:
        self.log("info", message, category, **fields)

    def warning(self, message: str, category: str = "debug", **fields: Any) -> None:
        self.log("warning", message, category, **fields)

    def error(self, message: str, category: str = "debug", **fields: Any) -> None:
        self.log("error", message, category, **fields)


default_logger = DebugLogger()


def debug_log(message: str, category: str = "debug", **fields: Any) -> None:
    """Unified debug logging function for VoiceGate.

    Args:
        message: The debug message to log
        category: The log category (e.g., "audio", "wake", "stt", "session")
    """
    default_logger.debug(message, category, **fields)
