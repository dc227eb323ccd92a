"""Error taxonomy shared by the listening components.

Every error carries a stable ``reason`` code so consumers can branch on it
without inspecting the underlying exception.
"""

from typing import ClassVar, Tuple


class VoiceGateError(Exception):
    """Base class for all VoiceGate errors."""

    REASONS: ClassVar[Tuple[str, ...]] = ()

    def __init__(self, reason: str, message: str = ""):
        if self.REASONS and reason not in self.REASONS:
            raise ValueError(f"{type(self).__name__}: unknown reason {reason!r}")
        self.reason = reason
        self.message = message or reason
        super().__init__(f"{reason}: {self.message}" if message else reason)


class ConfigError(VoiceGateError, ValueError):
    """Invalid configuration value."""

    def __init__(self, message: str):
        super().__init__("invalid_config", message)


class DeviceError(VoiceGateError):
    """Microphone could not be acquired."""

    REASONS = ("permission_denied", "no_device", "unavailable")


class TranscriptionConnectionError(VoiceGateError):
    """Transcription session could not be established."""

    REASONS = ("auth", "timeout", "network", "protocol")


class EngineInitError(VoiceGateError):
    """Keyword spotting engine could not be initialized or started."""

    REASONS = ("model_missing", "credential", "incompatible_model", "unavailable", "start_failed")


class ProtocolError(VoiceGateError):
    """Inbound transcription message did not have the expected shape."""

    REASONS = ("malformed",)

    def __init__(self, message: str = ""):
        super().__init__("malformed", message)


class SessionEndedError(VoiceGateError):
    """Transcription session closed without being asked to."""

    REASONS = ("closed", "auth", "protocol")

    def __init__(self, reason: str = "closed", message: str = "", code: int | None = None):
        super().__init__(reason, message)
        self.code = code
