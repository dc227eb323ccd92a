"""Microphone capture producing fixed-interval audio frames."""

from __future__ import annotations

import asyncio
import time
from typing import Any, AsyncIterator, Callable, Dict, Optional

from ..config import AudioConfig
from ..debug import DebugLogger, default_logger
from ..errors import DeviceError
from ..models import AudioFrame


StreamFactory = Callable[[AudioConfig, Callable[..., None]], Any]


def _classify_device_error(error: Exception) -> DeviceError:
    message = str(error)
    lowered = message.lower()
    if "permission" in lowered or "denied" in lowered or "not authorized" in lowered:
        return DeviceError("permission_denied", message)
    if "invalid device" in lowered or "no default input" in lowered or "no device" in lowered:
        return DeviceError("no_device", message)
    return DeviceError("unavailable", message)


def open_input_stream(config: AudioConfig, callback: Callable[..., None]):
    """Open a PortAudio input stream delivering int16 blocks of one frame each."""
    try:
        import sounddevice as sd
    except OSError as e:
        # PortAudio library missing
        raise DeviceError("unavailable", str(e)) from e

    try:
        sd.query_devices(config.device, kind="input")
    except ValueError as e:
        raise DeviceError("no_device", str(e)) from e

    try:
        return sd.InputStream(
            samplerate=config.sample_rate,
            channels=config.channels,
            dtype="int16",
            blocksize=config.blocksize,
            device=config.device,
            callback=callback,
        )
    except sd.PortAudioError as e:
        raise _classify_device_error(e) from e


class AudioSource:
    """Microphone audio source.

    Once acquired, ``frames()`` yields AudioFrames at the configured cadence
    until ``release()`` is called. The sequence cannot be restarted; acquire
    again for a new one.
    """

    def __init__(self, config: Optional[AudioConfig] = None, *,
                 stream_factory: Optional[StreamFactory] = None,
                 logger: Optional[DebugLogger] = None):
        self.config = config or AudioConfig()
        self._stream_factory = stream_factory or open_input_stream
        self._log = logger or default_logger

        self._stream: Any = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._queue: Optional[asyncio.Queue] = None
        self._sequence = 0
        self._consumed = False
        self._closed = True

    @property
    def acquired(self) -> bool:
        return self._stream is not None

    def settings(self) -> Dict[str, Any]:
        """Effective capture settings of this source."""
        return {
            "sample_rate": self.config.sample_rate,
            "channels": self.config.channels,
            "frame_ms": self.config.frame_ms,
            "blocksize": self.config.blocksize,
            "echo_cancellation": self.config.echo_cancellation,
            "noise_suppression": self.config.noise_suppression,
            "device": self.config.device,
        }

    async def acquire(self) -> "AudioSource":
        """Open the microphone.

        Raises:
            DeviceError: permission denied, no input device, or audio backend unavailable
            RuntimeError: if the source is already acquired
        """
        if self._stream is not None:
            raise RuntimeError("Audio source already acquired")

        self._loop = asyncio.get_running_loop()
        self._queue = asyncio.Queue()
        self._sequence = 0
        self._consumed = False
        self._closed = False

        try:
            stream = self._stream_factory(self.config, self._callback)
            stream.start()
        except DeviceError:
            self._closed = True
            raise
        except Exception as e:
            self._closed = True
            raise _classify_device_error(e) from e

        self._stream = stream
        if self.config.echo_cancellation or self.config.noise_suppression:
            self._log.debug(
                "capture processing requested; applied by the host audio stack when supported",
                "audio",
                echo_cancellation=self.config.echo_cancellation,
                noise_suppression=self.config.noise_suppression,
            )
        self._log.debug("🎤 microphone acquired", "audio", **self.settings())
        return self

    def _callback(self, indata, frames, time_info, status) -> None:  # type: ignore
        if status:
            self._log.debug(f"audio status: {status}", "audio")
        if self._closed or self._loop is None or self._queue is None:
            return
        frame = AudioFrame(
            data=indata.tobytes(),
            sequence=self._sequence,
            timestamp=time.time(),
            sample_rate=self.config.sample_rate,
            channels=self.config.channels,
        )
        self._sequence += 1
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, frame)
        except RuntimeError:
            # Event loop already closed
            pass

    async def frames(self) -> AsyncIterator[AudioFrame]:
        """Yield captured frames until the source is released."""
        if self._queue is None:
            raise RuntimeError("Audio source not acquired")
        if self._consumed:
            raise RuntimeError("Frame sequence already consumed; acquire again")
        self._consumed = True
        frame_queue = self._queue
        while True:
            frame = await frame_queue.get()
            if frame is None:
                return
            yield frame

    def release(self) -> None:
        """Close the microphone. Idempotent, safe before acquire."""
        self._closed = True
        stream, self._stream = self._stream, None
        if stream is not None:
            try:
                stream.stop()
            finally:
                stream.close()
            self._log.debug("🛑 microphone released", "audio")
        if self._queue is not None:
            self._queue.put_nowait(None)
            self._queue = None
