"""Audio-level wake word detection with a keyword spotting engine.

The spotter feeds raw microphone frames to an external engine (Picovoice
Porcupine or openWakeWord) on a worker thread and reports matches through
registered wake listeners. Sleep detection is never done on audio: the
engines are provisioned with a single wake phrase, so ``detect_sleep``
always goes through a TextMatcher over transcript text.
"""

from __future__ import annotations

import queue
import threading
import time
from dataclasses import replace
from pathlib import Path
from typing import Callable, List, Optional, Protocol

import numpy as np

from ..config import KeywordSpotterConfig
from ..debug import DebugLogger, default_logger
from ..errors import EngineInitError
from ..models import AudioFrame
from .wake_detection import TextMatcher


class KeywordEngine(Protocol):
    """Minimal surface of an external keyword spotting engine."""

    sample_rate: int
    frame_length: int

    def process(self, pcm: np.ndarray) -> bool:
        """Return True when the wake keyword matched in this engine frame."""
        ...

    def delete(self) -> None:
        ...


class PorcupineEngine:
    """Picovoice Porcupine with a single custom keyword file."""

    WAKE_KEYWORD_INDEX = 0

    def __init__(self, config: KeywordSpotterConfig):
        try:
            import pvporcupine
        except ImportError as e:
            raise EngineInitError("unavailable", "pvporcupine is not installed") from e

        if not config.access_key:
            raise EngineInitError("credential", "Picovoice access key is not configured")

        try:
            self._handle = pvporcupine.create(
                access_key=config.access_key,
                keyword_paths=[config.model_path],
                sensitivities=[config.sensitivity],
            )
        except pvporcupine.PorcupineActivationError as e:
            raise EngineInitError("credential", str(e)) from e
        except pvporcupine.PorcupineIOError as e:
            raise EngineInitError("model_missing", str(e)) from e
        except pvporcupine.PorcupineInvalidArgumentError as e:
            raise EngineInitError("incompatible_model", str(e)) from e
        except pvporcupine.PorcupineError as e:
            raise EngineInitError("unavailable", str(e)) from e

        self.sample_rate = self._handle.sample_rate
        self.frame_length = self._handle.frame_length

    def process(self, pcm: np.ndarray) -> bool:
        # Only one keyword is configured; any other index is not the wake word
        return self._handle.process(pcm) == self.WAKE_KEYWORD_INDEX

    def delete(self) -> None:
        self._handle.delete()


class OpenWakeWordEngine:
    """openWakeWord with a single custom model file."""

    FRAME_LENGTH = 1280  # 80 ms at 16 kHz

    def __init__(self, config: KeywordSpotterConfig):
        try:
            from openwakeword.model import Model as OWWModel
        except ImportError as e:
            raise EngineInitError("unavailable", "openwakeword is not installed") from e

        model_path = Path(config.model_path or "")
        framework = "tflite" if model_path.suffix == ".tflite" else "onnx"
        try:
            self._model = OWWModel(
                wakeword_models=[str(model_path)],
                inference_framework=framework,
            )
        except (ValueError, RuntimeError) as e:
            raise EngineInitError("incompatible_model", str(e)) from e

        self._model_name = model_path.stem
        # Higher sensitivity means a lower score threshold
        self.threshold = 1.0 - config.sensitivity
        self.sample_rate = 16000
        self.frame_length = self.FRAME_LENGTH

    def process(self, pcm: np.ndarray) -> bool:
        prediction = self._model.predict(pcm)
        return prediction.get(self._model_name, 0.0) >= self.threshold

    def delete(self) -> None:
        self._model.reset()


ENGINES = {
    "porcupine": PorcupineEngine,
    "openwakeword": OpenWakeWordEngine,
}


class KeywordSpotter:
    """Wake word detection on raw audio frames.

    Attributes:
        config: Engine options (model file, sensitivity, credential)
        is_listening: Whether the worker thread is consuming frames
    """

    kind = "keyword"

    def __init__(
        self,
        config: KeywordSpotterConfig,
        sleep_matcher: TextMatcher,
        *,
        engine_factory: Optional[Callable[[KeywordSpotterConfig], KeywordEngine]] = None,
        logger: Optional[DebugLogger] = None,
        max_pending_frames: int = 64,
    ):
        self.config = config
        self._sleep_matcher = sleep_matcher
        self._engine_factory = engine_factory or ENGINES[config.engine]
        self._log = logger or default_logger

        self._engine: Optional[KeywordEngine] = None
        self._released = False
        self._lifecycle_lock = threading.Lock()
        self._listeners: List[Callable[[float], None]] = []
        self._listeners_lock = threading.Lock()

        self._frames: "queue.Queue[Optional[AudioFrame]]" = queue.Queue(maxsize=max_pending_frames)
        self._worker: Optional[threading.Thread] = None
        self._buffer = np.array([], dtype=np.int16)
        self._last_detection_time: float = 0.0

    @property
    def is_listening(self) -> bool:
        return self._worker is not None and self._worker.is_alive()

    @property
    def initialized(self) -> bool:
        return self._engine is not None

    def add_wake_listener(self, listener: Callable[[float], None]) -> Callable[[], None]:
        """Register a callback receiving the detection timestamp. Returns an unsubscribe callable."""
        with self._listeners_lock:
            self._listeners.append(listener)

        def _remove() -> None:
            with self._listeners_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return _remove

    def initialize(self) -> None:
        """Acquire the external engine.

        Raises:
            EngineInitError: model file missing, invalid credential,
                incompatible model or engine not installed
        """
        # release() waits for a load in progress
        with self._lifecycle_lock:
            if self._released:
                raise EngineInitError("unavailable", "keyword spotter was released")
            if self._engine is not None:
                return

            model_path = self.config.model_path
            if not model_path or not Path(model_path).expanduser().is_file():
                raise EngineInitError("model_missing", f"keyword model not found: {model_path}")
            model_path = str(Path(model_path).expanduser())

            engine = self._engine_factory(replace(self.config, model_path=model_path))
            if engine.sample_rate != self.config.sample_rate:
                engine.delete()
                raise EngineInitError(
                    "incompatible_model",
                    f"engine expects {engine.sample_rate} Hz audio, capture is {self.config.sample_rate} Hz",
                )
            self._engine = engine
        self._log.debug(
            f"keyword spotter: loaded '{Path(model_path).name}'", "wake",
            engine=self.config.engine, sensitivity=self.config.sensitivity,
        )

    def start(self) -> None:
        """Begin consuming frames. Calling it while already listening is a no-op."""
        if self.is_listening:
            self._log.warning("keyword spotter is already listening", "wake")
            return
        if self._engine is None:
            raise EngineInitError("start_failed", "keyword spotter is not initialized")

        self._drain()
        worker = threading.Thread(target=self._run, name="keyword-spotter", daemon=True)
        try:
            worker.start()
        except RuntimeError as e:
            raise EngineInitError("start_failed", str(e)) from e
        self._worker = worker
        self._log.debug("keyword spotter listening", "wake")

    def submit(self, frame: AudioFrame) -> bool:
        """Queue a frame for asynchronous detection. Returns False if not listening."""
        if not self.is_listening:
            return False
        try:
            self._frames.put_nowait(frame)
        except queue.Full:
            # Keep the newest audio
            try:
                self._frames.get_nowait()
            except queue.Empty:
                pass
            self._frames.put_nowait(frame)
        return True

    def detect_wake(self, frame: AudioFrame) -> bool:
        """Run the engine over a frame, notifying wake listeners on a match."""
        engine = self._engine
        if engine is None or not isinstance(frame, AudioFrame):
            return False

        self._buffer = np.concatenate([self._buffer, frame.samples()])
        matched = False
        while len(self._buffer) >= engine.frame_length:
            chunk = self._buffer[:engine.frame_length]
            self._buffer = self._buffer[engine.frame_length:]
            if engine.process(chunk):
                matched = True

        if not matched:
            return False

        now = time.time()
        # Apply cooldown to prevent multiple detections of one utterance
        if now - self._last_detection_time < self.config.cooldown_sec:
            return False
        self._last_detection_time = now
        self._log.debug("keyword spotter: wake word detected", "wake", sequence=frame.sequence)

        with self._listeners_lock:
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(now)
            except Exception as e:
                self._log.error(f"wake listener failed: {e}", "wake")
        return True

    def detect_sleep(self, text) -> bool:
        return self._sleep_matcher.detect_sleep(text)

    def stop(self) -> None:
        """Stop listening. Safe to call when never started."""
        worker = self._worker
        if worker is None:
            return
        self._worker = None
        self._drain()
        self._frames.put(None)
        worker.join(timeout=2.0)
        self._buffer = np.array([], dtype=np.int16)
        self._log.debug("keyword spotter stopped", "wake")

    def release(self) -> None:
        """Stop and free the engine permanently. Safe to call repeatedly."""
        self.stop()
        with self._lifecycle_lock:
            if self._released:
                return
            self._released = True
            engine, self._engine = self._engine, None
        if engine is not None:
            engine.delete()
            self._log.debug("keyword spotter released", "wake")

    def _drain(self) -> None:
        while True:
            try:
                self._frames.get_nowait()
            except queue.Empty:
                return

    def _run(self) -> None:
        while True:
            frame = self._frames.get()
            if frame is None:
                break
            try:
                self.detect_wake(frame)
            except Exception as e:
                self._log.error(f"keyword spotter prediction error: {e}", "wake")
