"""
Listening session orchestrator.

Fans microphone frames out to the transcription client (and to the keyword
spotter when audio wake detection is in use), and gates transcript delivery
on wake and sleep triggers:

- STOPPED: nothing acquired
- INITIALIZING: acquiring microphone, wake engine and transcription session
- ARMED: transcripts are consumed but only checked for the wake word
- ACTIVE: transcripts reach observers until the sleep word is heard
"""

from __future__ import annotations

import asyncio
import inspect
from typing import Any, Awaitable, Callable, List, Optional, Tuple, Union

from ..config import Settings
from ..debug import DebugLogger, default_logger
from ..errors import (
    DeviceError,
    EngineInitError,
    SessionEndedError,
    TranscriptionConnectionError,
    VoiceGateError,
)
from ..models import (
    SessionState,
    SessionWarning,
    StateChange,
    TranscriptEvent,
    TranscriptLog,
)
from .audio_source import AudioSource
from .keyword_spotter import KeywordSpotter
from .state_manager import StateManager
from .transcription_client import TranscriptionClient
from .wake_detection import TextMatcher


StateObserver = Callable[[StateChange], None]
TranscriptObserver = Callable[[str, bool], None]
ErrorObserver = Callable[[VoiceGateError], None]
WarningObserver = Callable[[SessionWarning], None]
Release = Callable[[], Union[None, Awaitable[None]]]


class Orchestrator:
    """
    State machine binding the audio source, wake engine and transcription client.

    Observers are called on the event loop thread, once per state change or
    delivered transcript, in registration order.
    """

    def __init__(
        self,
        audio_source: AudioSource,
        transcription_client: TranscriptionClient,
        text_matcher: TextMatcher,
        *,
        keyword_spotter_factory: Optional[Callable[[], KeywordSpotter]] = None,
        logger: Optional[DebugLogger] = None,
        on_state_change: Optional[StateObserver] = None,
        on_transcript_update: Optional[TranscriptObserver] = None,
        on_error: Optional[ErrorObserver] = None,
        on_warning: Optional[WarningObserver] = None,
        level_log_interval: int = 20,
    ):
        """
        Args:
            audio_source: Microphone frame producer
            transcription_client: Streaming transcription session
            text_matcher: Text wake/sleep matcher; always used for sleep detection
            keyword_spotter_factory: Builds a fresh KeywordSpotter per session;
                when given, wake detection is audio-native
            logger: Logger for all session diagnostics
            level_log_interval: Log frame count and level every N frames
        """
        self._audio = audio_source
        self._client = transcription_client
        self._matcher = text_matcher
        self._spotter_factory = keyword_spotter_factory
        self._log = logger or default_logger
        self._level_log_interval = max(1, level_log_interval)

        self._state = StateManager(logger=self._log)
        self._engine: Union[TextMatcher, KeywordSpotter] = text_matcher
        self._spotter: Optional[KeywordSpotter] = None

        self._state_observers: List[StateObserver] = []
        self._transcript_observers: List[TranscriptObserver] = []
        self._error_observers: List[ErrorObserver] = []
        self._warning_observers: List[WarningObserver] = []
        self.subscribe(
            on_state_change=on_state_change,
            on_transcript_update=on_transcript_update,
            on_error=on_error,
            on_warning=on_warning,
        )

        self._resources: List[Tuple[str, Release]] = []
        self._release_lock = asyncio.Lock()
        self._start_task: Optional[asyncio.Task] = None
        self._pump_task: Optional[asyncio.Task] = None
        self._teardown_task: Optional[asyncio.Task] = None
        self._init_failure: Optional[VoiceGateError] = None
        self._stop_requested = False
        self._generation = 0

        self._client.add_transcript_listener(self._on_transcript)
        self._client.add_session_ended_listener(self._on_session_ended)

    @classmethod
    def from_settings(cls, settings: Settings, *, logger: Optional[DebugLogger] = None,
                      **observers: Any) -> "Orchestrator":
        """Build an orchestrator with the real microphone, service client and engines."""
        if logger is None:
            logger = DebugLogger(enabled=True) if settings.voice_debug else default_logger
        matcher = TextMatcher(
            settings.wake_word,
            settings.sleep_word,
            wake_aliases=settings.wake_aliases,
            sleep_aliases=settings.sleep_aliases,
            substring_fallback=settings.substring_fallback,
            fuzzy_ratio=settings.wake_fuzzy_ratio,
            logger=logger,
        )
        spotter_factory = None
        if settings.use_audio_wake_engine:
            spotter_config = settings.keyword_spotter_config()

            def spotter_factory() -> KeywordSpotter:
                return KeywordSpotter(spotter_config, matcher.without_wake(), logger=logger)

        return cls(
            AudioSource(settings.audio_config(), logger=logger),
            TranscriptionClient(settings.transcription_config(), logger=logger),
            matcher,
            keyword_spotter_factory=spotter_factory,
            logger=logger,
            **observers,
        )

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(
        self,
        on_state_change: Optional[StateObserver] = None,
        on_transcript_update: Optional[TranscriptObserver] = None,
        on_error: Optional[ErrorObserver] = None,
        on_warning: Optional[WarningObserver] = None,
    ) -> Callable[[], None]:
        """Register observers. Returns a callable that removes all of them."""
        added = []
        for observers, observer in (
            (self._state_observers, on_state_change),
            (self._transcript_observers, on_transcript_update),
            (self._error_observers, on_error),
            (self._warning_observers, on_warning),
        ):
            if observer is not None:
                observers.append(observer)
                added.append((observers, observer))

        def _unsubscribe() -> None:
            for observers, observer in added:
                if observer in observers:
                    observers.remove(observer)

        return _unsubscribe

    def _notify(self, observers: list, *args: Any) -> None:
        for observer in list(observers):
            try:
                observer(*args)
            except Exception as e:
                self._log.error(f"observer failed: {e}", "session")

    def _set_state(self, new_state: SessionState, expected: Optional[SessionState] = None) -> bool:
        if not self._state.transition(new_state, expected=expected):
            return False
        self._announce(new_state)
        return True

    def _announce(self, state: SessionState) -> None:
        self._notify(self._state_observers, StateChange.for_state(state))

    def _report_error(self, error: VoiceGateError) -> None:
        self._log.error(f"session error: {error.message}", "session",
                        error=type(error).__name__, reason=error.reason)
        self._notify(self._error_observers, error)

    def _report_warning(self, warning: SessionWarning) -> None:
        self._log.warning(warning.message, "session", reason=warning.reason)
        self._notify(self._warning_observers, warning)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state.get_state()

    @property
    def is_listening(self) -> bool:
        return self.state.is_listening

    @property
    def is_active(self) -> bool:
        return self._state.is_active()

    @property
    def transcript(self) -> TranscriptLog:
        return self._state.transcript

    @property
    def wake_engine(self) -> Union[TextMatcher, KeywordSpotter]:
        """Wake engine variant of the current (or last) session."""
        return self._engine

    @property
    def uses_keyword_spotter(self) -> bool:
        return self._engine.kind == "keyword"

    async def probe_connection(self) -> bool:
        """Check that the transcription service accepts our credentials."""
        return await self._client.probe()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """
        Acquire all collaborators and arm the session.

        Raises:
            DeviceError: microphone unavailable
            TranscriptionConnectionError: session could not be opened
            SessionEndedError: session closed before the start completed
        """
        if self.state != SessionState.STOPPED:
            self._log.warning("start() ignored: session already running", "session",
                              state=self.state.value)
            return

        # A session that ended on its own may still be releasing
        teardown_task, self._teardown_task = self._teardown_task, None
        if teardown_task is not None:
            await teardown_task
        if self.state != SessionState.STOPPED:
            return

        self._stop_requested = False
        self._init_failure = None
        self._generation += 1
        self._set_state(SessionState.INITIALIZING)
        self._start_task = asyncio.ensure_future(self._initialize(self._generation))
        try:
            await self._start_task
        except asyncio.CancelledError:
            if self._stop_requested:
                self._log.info("start() aborted by stop()", "session")
                return
            await asyncio.shield(self._teardown())
            self._set_state(SessionState.STOPPED)
            raise
        except VoiceGateError as e:
            self._set_state(SessionState.STOPPED)
            self._report_error(e)
            raise
        finally:
            self._start_task = None

    async def _initialize(self, generation: int) -> None:
        # Releases are pushed before each acquisition so a cancelled
        # acquisition is still released by stop()
        stage = "audio"
        try:
            self._push("audio source", self._audio.release)
            await self._audio.acquire()

            self._engine = self._matcher
            self._spotter = None
            if self._spotter_factory is not None:
                await self._init_keyword_spotter(generation)

            stage = "transcription"
            self._push("transcription client", self._client.disconnect)
            await self._client.connect()

            if self._init_failure is not None:
                raise self._init_failure
        except VoiceGateError:
            await self._teardown()
            raise
        except Exception as e:
            await self._teardown()
            raise _start_failure(stage, e) from e

        pump = asyncio.create_task(self._pump_frames(generation))
        self._pump_task = pump
        self._push("frame pump", lambda: self._stop_pump(pump))
        self._set_state(SessionState.ARMED, expected=SessionState.INITIALIZING)
        self._log.info(
            "🎙️  listening for wake word", "session",
            wake_word=self._matcher.wake_word, engine=self._engine.kind,
        )

    async def _init_keyword_spotter(self, generation: int) -> None:
        spotter: Optional[KeywordSpotter] = None
        entry = None
        try:
            spotter = self._spotter_factory()
            entry = self._push("keyword spotter", lambda: asyncio.to_thread(spotter.release))
            await asyncio.to_thread(spotter.initialize)
            spotter.start()
        except Exception as e:
            error = e if isinstance(e, EngineInitError) else EngineInitError(
                "unavailable", f"{type(e).__name__}: {e}"
            )
            # Degrade to text matching for the rest of this session
            if entry is not None:
                self._resources.remove(entry)
                try:
                    await asyncio.to_thread(spotter.release)
                except Exception as release_error:
                    self._log.error(f"failed to release keyword spotter: {release_error}", "session")
            self._report_warning(SessionWarning(
                "keyword_spotter_unavailable",
                f"keyword spotter unavailable ({error.reason}: {error.message}); using text wake word",
            ))
            return

        loop = asyncio.get_running_loop()

        def _on_wake(timestamp: float) -> None:
            # Called on the spotter's worker thread
            try:
                loop.call_soon_threadsafe(self._handle_spotter_wake, generation)
            except RuntimeError:
                pass

        spotter.add_wake_listener(_on_wake)
        self._spotter = spotter
        self._engine = spotter

    def _push(self, name: str, release: Release) -> Tuple[str, Release]:
        entry = (name, release)
        self._resources.append(entry)
        return entry

    async def _teardown(self, resources: Optional[List[Tuple[str, Release]]] = None) -> None:
        """Release acquired collaborators in reverse acquisition order."""
        if resources is None:
            resources = self._resources
        async with self._release_lock:
            while resources:
                name, release = resources.pop()
                try:
                    result = release()
                    if inspect.isawaitable(result):
                        await result
                except Exception as e:
                    self._log.error(f"failed to release {name}: {e}", "session")
                else:
                    self._log.debug(f"released {name}", "session")

    async def stop(self) -> None:
        """Stop the session and release everything. Idempotent and safe during start()."""
        self._stop_requested = True
        self._generation += 1

        task = self._start_task
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except (asyncio.CancelledError, VoiceGateError):
                pass

        await self._teardown()
        teardown_task, self._teardown_task = self._teardown_task, None
        if teardown_task is not None and teardown_task is not asyncio.current_task():
            await teardown_task
        self._set_state(SessionState.STOPPED)

    # ------------------------------------------------------------------
    # Event handling
    # ------------------------------------------------------------------

    async def _pump_frames(self, generation: int) -> None:
        """Fan microphone frames out to the transcription client and spotter."""
        spotter = self._spotter
        count = 0
        try:
            async for frame in self._audio.frames():
                await self._client.send_frame(frame)
                if spotter is not None:
                    spotter.submit(frame)
                count += 1
                if count % self._level_log_interval == 0:
                    self._log.debug(f"📤 sent {count} audio frames", "audio", level=round(frame.level(), 3))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._log.error(f"audio pump stopped: {e}", "audio")

    async def _stop_pump(self, task: asyncio.Task) -> None:
        if self._pump_task is task:
            self._pump_task = None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _handle_spotter_wake(self, generation: int) -> None:
        if generation != self._generation:
            # Detection from a session that has since stopped
            return
        if self._state.activate():
            self._announce(SessionState.ACTIVE)
            self._log.info("🎤 wake word detected by keyword spotter", "session")

    def _on_transcript(self, event: TranscriptEvent) -> None:
        if not self.state.is_listening:
            return

        if self._state.is_armed():
            if self._engine.kind == "keyword":
                return
            if not self._engine.detect_wake(event.text):
                return
            if not self._state.activate():
                return
            self._announce(SessionState.ACTIVE)
            self._log.info("🎤 wake word detected, transcription active", "session")
        elif self._engine.detect_sleep(event.text):
            if self._state.deactivate():
                self._announce(SessionState.ARMED)
                self._log.info("😴 sleep word detected, transcription paused", "session")
            return

        if self._state.record(event):
            self._notify(self._transcript_observers, event.text, event.is_final)

    def _on_session_ended(self, error: SessionEndedError) -> None:
        state = self.state
        if state == SessionState.STOPPED:
            return
        if state == SessionState.INITIALIZING:
            # start() raises it once the connect step returns
            self._init_failure = error
            return
        self._generation += 1
        self._set_state(SessionState.STOPPED)
        # The ended session releases its own resources; a restart gets a fresh stack
        resources, self._resources = self._resources, []
        self._teardown_task = asyncio.ensure_future(self._teardown(resources))
        self._report_error(error)


def _start_failure(stage: str, error: Exception) -> VoiceGateError:
    """Type an unexpected start failure by the collaborator that raised it."""
    message = f"{type(error).__name__}: {error}"
    if stage == "audio":
        return DeviceError("unavailable", message)
    return TranscriptionConnectionError("protocol", message)
