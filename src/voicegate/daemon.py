"""
VoiceGate Daemon

Console runner: starts a listening session and prints the transcript while
the session is active.
"""

from __future__ import annotations
import asyncio
import signal
import sys

from .config import load_settings
from .debug import debug_log
from .errors import VoiceGateError
from .listening.orchestrator import Orchestrator
from .models import SessionWarning, StateChange


def _print_state(change: StateChange) -> None:
    if change.is_active:
        print("🎤 Transcription ACTIVE", flush=True)
    elif change.is_listening:
        print("💤 Waiting for wake word", flush=True)


def _print_transcript(text: str, is_final: bool) -> None:
    if is_final:
        print(f"📝 {text}", flush=True)


def _print_warning(warning: SessionWarning) -> None:
    print(f"⚠️  {warning.message}", file=sys.stderr, flush=True)


def _print_error(error: VoiceGateError) -> None:
    print(f"❌ {type(error).__name__} ({error.reason}): {error.message}", file=sys.stderr, flush=True)


async def run() -> int:
    cfg = load_settings()
    session = Orchestrator.from_settings(
        cfg,
        on_state_change=_print_state,
        on_transcript_update=_print_transcript,
        on_warning=_print_warning,
        on_error=_print_error,
    )

    stopped = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig_name in ("SIGINT", "SIGTERM"):
        sig = getattr(signal, sig_name, None)
        if sig is not None:
            try:
                loop.add_signal_handler(sig, stopped.set)
            except NotImplementedError:
                # Windows event loops lack signal handlers; Ctrl+C raises instead
                pass

    failures: list[VoiceGateError] = []

    def _on_failure(error: VoiceGateError) -> None:
        failures.append(error)
        stopped.set()

    session.subscribe(on_error=_on_failure)

    debug_log("daemon started", "voicegate")
    try:
        await session.start()
    except VoiceGateError:
        return 1

    wake = cfg.wake_word or "(audio wake engine)"
    print(f"🎙️  Listening for '{wake}' - say '{cfg.sleep_word}' to pause. Ctrl+C to quit.", flush=True)
    try:
        await stopped.wait()
    finally:
        await session.stop()
        print("✅ Stopped", flush=True)
    return 1 if failures else 0


def main() -> None:
    """Main daemon entry point."""
    try:
        code = asyncio.run(run())
    except KeyboardInterrupt:
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    main()
