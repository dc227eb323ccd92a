"""
Streaming transcription client for the Deepgram live API.

Holds one duplex websocket session: audio frames go out as binary messages,
transcript results come back as JSON and are handed to registered listeners
in arrival order.
"""

from __future__ import annotations

import asyncio
import json
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional
from urllib.parse import urlencode

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake, InvalidStatus, InvalidURI

from ..config import TranscriptionConfig
from ..debug import DebugLogger, default_logger
from ..errors import ProtocolError, SessionEndedError, TranscriptionConnectionError
from ..models import AudioFrame, TranscriptEvent


# Close codes the service uses for credential and framing problems
_CLOSE_CODE_REASONS = {
    1008: "auth",       # policy violation: invalid or expired key
    1002: "protocol",
}


def decode_message(message: Any) -> Dict[str, Any]:
    """Decode an inbound websocket message into a JSON object.

    Raises:
        ProtocolError: binary payload, invalid JSON or a non-object document
    """
    if isinstance(message, (bytes, bytearray)):
        raise ProtocolError("unexpected binary message")
    try:
        data = json.loads(message)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise ProtocolError(f"expected a JSON object, got {type(data).__name__}")
    return data


def parse_transcript(data: Dict[str, Any], timestamp: Optional[float] = None) -> Optional[TranscriptEvent]:
    """
    Extract a transcript event from a decoded message.

    Returns None when the message does not have the
    ``{channel: {alternatives: [{transcript}]}, is_final}`` shape.
    """
    channel = data.get("channel")
    if not isinstance(channel, dict):
        return None
    alternatives = channel.get("alternatives")
    if not isinstance(alternatives, list) or not alternatives:
        return None
    first = alternatives[0]
    if not isinstance(first, dict) or not isinstance(first.get("transcript"), str):
        return None
    return TranscriptEvent(
        text=first["transcript"],
        is_final=bool(data.get("is_final", False)),
        timestamp=time.time() if timestamp is None else timestamp,
    )


class TranscriptionClient:
    """
    Duplex streaming session with the transcription service.

    Frames sent while no session is open are dropped, or with the "buffer"
    pre-connect policy held (bounded, oldest first out) until the next
    connect flushes them.
    """

    def __init__(self, config: Optional[TranscriptionConfig] = None, *,
                 connect_factory: Optional[Callable[..., Any]] = None,
                 logger: Optional[DebugLogger] = None):
        self.config = config or TranscriptionConfig()
        self._connect_factory = connect_factory or ws_connect
        self._log = logger or default_logger

        self._ws: Any = None
        self._receive_task: Optional[asyncio.Task] = None
        self._closing = False
        self._accept_pending = True
        self._pending: Deque[AudioFrame] = deque(maxlen=max(1, self.config.pre_connect_buffer_frames))

        self._transcript_listeners: List[Callable[[TranscriptEvent], None]] = []
        self._session_ended_listeners: List[Callable[[SessionEndedError], None]] = []

        self.dropped_frames = 0
        self.sent_frames = 0

    @property
    def url(self) -> str:
        return f"{self.config.url}?{urlencode(self.config.query_params())}"

    @property
    def is_connected(self) -> bool:
        return self._ws is not None

    @property
    def pending_frames(self) -> int:
        return len(self._pending)

    def add_transcript_listener(self, listener: Callable[[TranscriptEvent], None]) -> Callable[[], None]:
        self._transcript_listeners.append(listener)
        return lambda: self._remove(self._transcript_listeners, listener)

    def add_session_ended_listener(self, listener: Callable[[SessionEndedError], None]) -> Callable[[], None]:
        self._session_ended_listeners.append(listener)
        return lambda: self._remove(self._session_ended_listeners, listener)

    @staticmethod
    def _remove(listeners: list, listener) -> None:
        if listener in listeners:
            listeners.remove(listener)

    async def connect(self) -> None:
        """Open the session. Authentication rides on the handshake headers.

        Raises:
            TranscriptionConnectionError: reason auth, timeout, network or protocol
        """
        if self._ws is not None:
            return
        if not self.config.api_key:
            raise TranscriptionConnectionError("auth", "transcription API key is not configured")

        self._closing = False
        self._accept_pending = True
        headers = {"Authorization": f"Token {self.config.api_key}"}
        self._log.debug("🔌 connecting to transcription service", "stt",
                        url=self.config.url, **self.config.query_params())
        try:
            ws = await asyncio.wait_for(
                self._connect_factory(self.url, additional_headers=headers),
                timeout=self.config.connect_timeout_sec,
            )
        except asyncio.TimeoutError as e:
            raise TranscriptionConnectionError(
                "timeout", f"no response within {self.config.connect_timeout_sec}s"
            ) from e
        except InvalidStatus as e:
            status = e.response.status_code
            reason = "auth" if status in (401, 403) else "protocol"
            raise TranscriptionConnectionError(reason, f"handshake rejected with HTTP {status}") from e
        except (InvalidHandshake, InvalidURI) as e:
            raise TranscriptionConnectionError("protocol", str(e)) from e
        except OSError as e:
            raise TranscriptionConnectionError("network", str(e)) from e

        self._ws = ws
        self._receive_task = asyncio.create_task(self._receive_loop(ws))
        self._log.debug("✅ transcription service connected", "stt")
        await self._flush_pending()

    async def _flush_pending(self) -> None:
        while self._pending and self._ws is not None:
            frame = self._pending.popleft()
            await self.send_frame(frame)

    async def send_frame(self, frame: AudioFrame) -> bool:
        """Send one frame. Returns False when the frame was dropped or held back."""
        ws = self._ws
        if ws is None:
            if self.config.pre_connect_policy == "buffer" and self._accept_pending:
                if len(self._pending) == self._pending.maxlen:
                    self.dropped_frames += 1
                self._pending.append(frame)
            else:
                self.dropped_frames += 1
            return False
        try:
            await ws.send(frame.data)
        except ConnectionClosed:
            self.dropped_frames += 1
            return False
        self.sent_frames += 1
        return True

    async def _receive_loop(self, ws) -> None:
        """Consume inbound messages until the socket closes."""
        code: Optional[int] = None
        try:
            async for message in ws:
                self._handle_message(message)
            code = getattr(ws, "close_code", None)
        except ConnectionClosed as e:
            code = e.rcvd.code if e.rcvd is not None else None
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._log.error(f"transcription receive error: {e}", "stt")

        if self._closing or self._ws is not ws:
            return
        self._ws = None
        self._accept_pending = False
        reason = _CLOSE_CODE_REASONS.get(code, "closed")
        error = SessionEndedError(reason, f"transcription session closed unexpectedly (code {code})", code=code)
        self._log.warning("🔌 transcription session ended", "stt", code=code, reason=reason)
        for listener in list(self._session_ended_listeners):
            try:
                listener(error)
            except Exception as e:
                self._log.error(f"session-ended listener failed: {e}", "stt")

    def _handle_message(self, message: Any) -> None:
        try:
            data = decode_message(message)
        except ProtocolError as e:
            self._log.warning(f"skipping malformed message: {e.message}", "stt")
            return

        if data.get("type") == "Error":
            self._log.error("transcription service error", "stt",
                            description=data.get("description") or data.get("message"))
            return

        event = parse_transcript(data)
        if event is None:
            self._log.debug("ignoring non-transcript message", "stt", type=data.get("type"))
            return
        if not event.text.strip():
            return

        status_emoji = "✅" if event.is_final else "⏳"
        self._log.debug(f"{status_emoji} transcript: '{event.text}'", "stt")
        for listener in list(self._transcript_listeners):
            try:
                listener(event)
            except Exception as e:
                self._log.error(f"transcript listener failed: {e}", "stt")

    async def disconnect(self) -> None:
        """Close the session. Idempotent."""
        self._closing = True
        self._accept_pending = False
        self._pending.clear()
        ws, self._ws = self._ws, None
        task, self._receive_task = self._receive_task, None

        if ws is not None:
            try:
                await ws.send(json.dumps({"type": "CloseStream"}))
            except ConnectionClosed:
                pass
            await ws.close()
            self._log.debug("🛑 transcription service disconnected", "stt")

        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def probe(self) -> bool:
        """Check that a session can be opened with the current config."""
        probe = TranscriptionClient(self.config, connect_factory=self._connect_factory, logger=self._log)
        try:
            await probe.connect()
        except TranscriptionConnectionError as e:
            self._log.warning(f"transcription probe failed: {e}", "stt", reason=e.reason)
            return False
        finally:
            await probe.disconnect()
        return True
