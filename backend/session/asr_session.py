"""
Streaming ASR session.

One StreamingAsrSession.execute() call streams one audio file:

    IDLE -> CONNECTING -> HANDSHAKING -> STREAMING -> DRAINING -> CLOSED

    Any failure before CLOSED goes through FAILED, then CLOSED.

Core model:
- The connection is SESSION-owned: opened in CONNECTING, closed in every
  exit path.
- STREAMING runs two tasks on the same connection:
    send task    writes one audio segment per tick (segment_duration_ms)
    receive task reads, decodes and forwards responses to the sink
  Only the send task writes and only the receive task reads.
- The receive task raises the stop signal whenever it exits; the send task
  observes it at its next tick and sends nothing more.
- First failure wins. A failing send task cancels the receive task, since
  the receive task only wakes up on reads.
- The sink holds one response at a time; the receive task waits for the
  consumer before reading the next frame.
- The sink is closed exactly once, after both tasks are gone.

Sequencing:
- sequence is reset to 1 once connected. The handshake frame carries 1,
  audio segments carry 2, 3, ... and the terminal segment carries the
  negative of the value it would otherwise have had.
"""

from __future__ import annotations

import asyncio
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Iterator, Optional
from uuid import uuid4

from audio.segmenter import compute_segment_size, split_into_segments
from audio.wav import read_audio_data, read_wav_info
from config import AsrConfig
from errors import (
    AsrSessionError,
    ConfigurationError,
    ServerReportedError,
    TransportError,
)
from observability.logger import log_event
from observability.metrics import timed
from orchestrator.cancellation import StopSignal
from orchestrator.enums.stage import Stage
from orchestrator.enums.state import SessionState
from protocol.binary import (
    build_audio_segment_request,
    build_handshake_request,
    decode_response,
)
from protocol.messages import AsrResponse
from session.auth import build_auth_headers
from session.connection import (
    NETWORK_ERRORS,
    Connection,
    Dialer,
    connect,
    dial_websocket,
)
from session.response_channel import ResponseChannel
from spec import CONNECT_BACKOFF_UNIT_S, CONNECT_MAX_ATTEMPTS, SEQUENCE_START


AudioReader = Callable[[str], bytes]


@contextmanager
def _stage(stage: Stage) -> Iterator[None]:
    """
    Tag session errors raised inside the block with `stage` (innermost tag wins).

    Any other Exception is wrapped in an AsrSessionError, chained to the
    original, so every failure reaching the caller carries a stage.
    """
    try:
        yield
    except AsrSessionError as e:
        if e.stage is None:
            e.stage = stage
        raise
    except Exception as e:
        wrapped = AsrSessionError(f"{type(e).__name__}: {e}")
        wrapped.stage = stage
        raise wrapped from e


class StreamingAsrSession:
    """
    Bidirectional streaming client for one audio file at a time.

    A session may be reused for several files sequentially; concurrent
    execute() calls on the same instance are rejected. Use one instance
    per concurrent stream.
    """

    def __init__(
        self,
        config: AsrConfig,
        *,
        dial: Dialer = dial_websocket,
        read_audio: AudioReader = read_audio_data,
        backoff_unit_s: float = CONNECT_BACKOFF_UNIT_S,
        max_connect_attempts: int = CONNECT_MAX_ATTEMPTS,
        session_id: Optional[str] = None,
    ) -> None:
        self._config = config
        self._dial = dial
        self._read_audio = read_audio
        self._backoff_unit_s = backoff_unit_s
        self._max_connect_attempts = max_connect_attempts

        self.session_id = session_id or uuid4().hex[:12]

        self._state = SessionState.IDLE
        self._sequence = SEQUENCE_START
        self._conn: Optional[Connection] = None
        self._error: Optional[AsrSessionError] = None
        self._segments_sent = 0

    # -------------------------------------------------------------------------
    # Introspection
    # -------------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def sequence(self) -> int:
        return self._sequence

    @property
    def error(self) -> Optional[AsrSessionError]:
        """Terminal error of the last execute() call, if it failed."""
        return self._error

    @property
    def segments_sent(self) -> int:
        return self._segments_sent

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def execute(
        self,
        audio_path: str | Path,
        sink: ResponseChannel,
        *,
        cancel: Optional[asyncio.Event] = None,
    ) -> None:
        """
        Stream `audio_path` and deliver every decoded response to `sink`.

        Returns once the server sent its last package and both tasks have
        exited. `sink` is closed on every exit path, including a call
        rejected because the session is already running.

        `cancel` aborts connection setup (dialing and backoff waits) with
        CancellationError.

        Raises:
            AsrSessionError (or a subclass), tagged with the failing Stage.
            Unexpected exceptions are wrapped and chained as __cause__.
            RuntimeError if the session is already running.
        """
        if self._state not in (SessionState.IDLE, SessionState.CLOSED):
            sink.close()
            raise RuntimeError(
                f"session {self.session_id} is already running ({self._state.value})"
            )
        self._state = SessionState.IDLE
        self._error = None
        self._segments_sent = 0

        try:
            with timed("asr_session", session_id=self.session_id) as info:
                await self._run(str(audio_path) if audio_path else "", sink, cancel)
                info["segments_sent"] = self._segments_sent
        except AsrSessionError as e:
            self._error = e
            self._transition(SessionState.FAILED, stage=e.stage, error=str(e))
            raise
        except asyncio.CancelledError:
            self._transition(SessionState.FAILED, error="cancelled")
            raise
        finally:
            await self._release_connection()
            sink.close()
            self._transition(SessionState.CLOSED)

    # -------------------------------------------------------------------------
    # Stages
    # -------------------------------------------------------------------------

    async def _run(
        self,
        audio_path: str,
        sink: ResponseChannel,
        cancel: Optional[asyncio.Event],
    ) -> None:
        with _stage(Stage.VALIDATE):
            if not audio_path:
                raise ConfigurationError("file path is empty")
            self._config.validate()

        self._transition(SessionState.CONNECTING, audio=audio_path)

        with _stage(Stage.AUDIO):
            content = await asyncio.to_thread(self._read_audio, audio_path)

        with _stage(Stage.SEGMENT):
            segments = self._segment(content)

        with _stage(Stage.CONNECT):
            with timed("asr_connect", session_id=self.session_id):
                self._conn = await connect(
                    self._config.url,
                    header_factory=lambda: build_auth_headers(self._config),
                    dial=self._dial,
                    cancel=cancel,
                    max_attempts=self._max_connect_attempts,
                    backoff_unit_s=self._backoff_unit_s,
                    session_id=self.session_id,
                )

        self._sequence = SEQUENCE_START
        self._transition(SessionState.HANDSHAKING)
        with _stage(Stage.HANDSHAKE):
            await self._handshake(self._conn)

        self._transition(SessionState.STREAMING, segments=len(segments))
        with _stage(Stage.STREAM):
            await self._stream(self._conn, segments, sink)

        self._transition(SessionState.DRAINING)

    def _segment(self, content: bytes) -> list[bytes]:
        info = read_wav_info(content)
        segment_size = compute_segment_size(
            info.channels,
            info.sample_width_bytes,
            info.frame_rate,
            self._config.segment_duration_ms,
        )
        segments = split_into_segments(content, segment_size)
        if not segments:
            raise ConfigurationError("audio produced no segments")

        log_event({
            "event_type": "ASR_AUDIO_SEGMENTED",
            "session_id": self.session_id,
            "bytes": len(content),
            "segment_size": segment_size,
            "segments": len(segments),
            "channels": info.channels,
            "sample_width": info.sample_width_bytes,
            "frame_rate": info.frame_rate,
        })
        return segments

    async def _handshake(self, conn: Connection) -> AsrResponse:
        frame = build_handshake_request(
            self._config.context,
            options=self._config.request_options(),
            sequence=self._sequence,
        )
        try:
            await conn.send(frame)
        except NETWORK_ERRORS as e:
            raise TransportError(f"full client message write err: {e!r}") from e
        self._sequence += 1

        try:
            message = await conn.recv()
        except NETWORK_ERRORS as e:
            raise TransportError(f"full client message read err: {e!r}") from e

        response = decode_response(message)
        log_event({
            "event_type": "ASR_HANDSHAKE_RESPONSE",
            "session_id": self.session_id,
            "code": response.code,
            "seq": response.payload_sequence,
            "error": response.error or None,
        })
        if response.code != 0:
            raise ServerReportedError(response.code, response.error)
        return response

    # -------------------------------------------------------------------------
    # Streaming
    # -------------------------------------------------------------------------

    async def _stream(
        self,
        conn: Connection,
        segments: list[bytes],
        sink: ResponseChannel,
    ) -> None:
        stop = StopSignal()
        send_task = asyncio.create_task(
            self._send_segments(conn, segments, stop),
            name=f"asr-send-{self.session_id}",
        )
        recv_task = asyncio.create_task(
            self._receive_responses(conn, sink, stop),
            name=f"asr-recv-{self.session_id}",
        )

        failure: Optional[BaseException] = None
        pending: set[asyncio.Task[None]] = {send_task, recv_task}
        try:
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    if task.cancelled():
                        continue
                    exc = task.exception()
                    if exc is None or failure is not None:
                        continue
                    failure = exc
                    stop.set(f"{task.get_name()} failed")
                    if task is send_task and not recv_task.done():
                        recv_task.cancel()
        finally:
            for task in (send_task, recv_task):
                if not task.done():
                    task.cancel()
            await asyncio.gather(send_task, recv_task, return_exceptions=True)

        if failure is not None:
            raise failure

    async def _send_segments(
        self,
        conn: Connection,
        segments: list[bytes],
        stop: StopSignal,
    ) -> None:
        """
        Paced writer: one segment per tick, first tick one interval after start.
        """
        loop = asyncio.get_running_loop()
        interval_s = self._config.segment_duration_ms / 1000.0
        total = len(segments)

        log_event({
            "event_type": "ASR_SEND_START",
            "session_id": self.session_id,
            "segments": total,
            "interval_ms": self._config.segment_duration_ms,
        })

        next_tick = loop.time()
        for index, segment in enumerate(segments):
            next_tick += interval_s
            if await stop.wait_until(next_tick):
                log_event({
                    "event_type": "ASR_SEND_STOPPED",
                    "session_id": self.session_id,
                    "reason": stop.reason,
                    "sent": index,
                    "segments": total,
                })
                return

            if index == total - 1:
                self._sequence = -self._sequence

            frame = build_audio_segment_request(self._sequence, segment)
            try:
                await conn.send(frame)
            except NETWORK_ERRORS as e:
                raise TransportError(f"write audio segment seq={self._sequence} err: {e!r}") from e
            self._segments_sent += 1

            log_event({
                "event_type": "ASR_SEGMENT_SENT",
                "session_id": self.session_id,
                "seq": self._sequence,
                "segments": total,
                "bytes": len(segment),
            })

            if self._sequence > 0:
                self._sequence += 1

        log_event({
            "event_type": "ASR_SEND_DONE",
            "session_id": self.session_id,
            "sent": self._segments_sent,
        })

    async def _receive_responses(
        self,
        conn: Connection,
        sink: ResponseChannel,
        stop: StopSignal,
    ) -> None:
        """
        Read frames until the last package, a server error, or a read/decode failure.
        """
        try:
            while True:
                try:
                    message = await conn.recv()
                except NETWORK_ERRORS as e:
                    raise TransportError(f"read message err: {e!r}") from e

                response = decode_response(message)
                log_event({
                    "event_type": "ASR_RESPONSE",
                    "session_id": self.session_id,
                    "seq": response.payload_sequence,
                    "code": response.code,
                    "text_len": len(response.text),
                    "is_last": response.is_last_package,
                })
                await sink.put(response)

                if response.code != 0:
                    stop.set("server_error")
                    raise ServerReportedError(response.code, response.error)
                if response.is_last_package:
                    return
        finally:
            stop.set("receive_finished")

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _release_connection(self) -> None:
        conn = self._conn
        self._conn = None
        if conn is None:
            return
        try:
            await conn.close()
        except NETWORK_ERRORS as e:
            log_event({
                "event_type": "ASR_CLOSE_FAILED",
                "session_id": self.session_id,
                "error": repr(e),
            })

    def _transition(self, new_state: SessionState, **details: object) -> None:
        old_state = self._state
        self._state = new_state
        log_event({
            "event_type": "ASR_SESSION_STATE",
            "session_id": self.session_id,
            "from": old_state.value,
            "to": new_state.value,
            **details,
        })
