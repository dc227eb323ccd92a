"""
VoiceGate

Streams microphone audio to a live transcription service and surfaces the
transcript only between a spoken wake word and a sleep word.
"""

from .config import load_settings

def main() -> None:
    """Lazy entrypoint to avoid importing audio and network modules at package import time."""
    from .daemon import main as _main
    _main()

__all__ = ["main", "load_settings"]
