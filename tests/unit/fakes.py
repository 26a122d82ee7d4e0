# pylint: disable=missing-module-docstring,missing-function-docstring
"""
In-memory stand-ins for the ASR service used by unit tests.
"""

from __future__ import annotations

import asyncio
import gzip
import io
import json
import struct
import wave
from dataclasses import dataclass
from types import SimpleNamespace
from typing import Any, Callable, Optional

from websockets.exceptions import ConnectionClosedError, ConnectionClosedOK

from config import AsrConfig, Credentials
from protocol.binary import (
    CompressionType,
    FrameHeader,
    MessageFlags,
    MessageType,
    SerializationType,
    decode_header,
    encode_header,
)


# ---------------------------------------------------------------------
# Config / audio
# ---------------------------------------------------------------------

def make_config(**overrides: Any) -> AsrConfig:
    values: dict[str, Any] = {
        "url": "wss://asr.test/api/v3/sauc/bigmodel_nostream",
        "credentials": Credentials(app_key="app-key", access_key="access-key"),
        "segment_duration_ms": 50,
    }
    values.update(overrides)
    return AsrConfig(**values)


def make_wav(*, total_bytes: int, frame_rate: int = 8000, channels: int = 1, sample_width: int = 2) -> bytes:
    """
    Silent PCM WAV whose complete file size (header included) is `total_bytes`.
    """
    data_len = total_bytes - 44
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wf:
        wf.setnchannels(channels)
        wf.setsampwidth(sample_width)
        wf.setframerate(frame_rate)
        wf.writeframes(b"\x00" * data_len)
    content = buf.getvalue()
    assert len(content) == total_bytes
    return content


# ---------------------------------------------------------------------
# Server frames
# ---------------------------------------------------------------------

def server_response(
    text: str = "",
    *,
    sequence: int,
    last: bool = False,
    utterances: Optional[list[dict[str, Any]]] = None,
    compression: CompressionType = CompressionType.GZIP,
) -> bytes:
    body: dict[str, Any] = {"result": {"text": text}, "audio_info": {"duration": 1000}}
    if utterances is not None:
        body["result"]["utterances"] = utterances
    payload = json.dumps(body).encode("utf-8")
    if compression is CompressionType.GZIP:
        payload = gzip.compress(payload)

    flags = MessageFlags.NEG_WITH_SEQUENCE if last else MessageFlags.POS_SEQUENCE
    header = encode_header(MessageType.SERVER_FULL_RESPONSE, flags, SerializationType.JSON, compression)
    return header + struct.pack(">i", sequence) + struct.pack(">I", len(payload)) + payload


def server_error(code: int, message: str = "bad request") -> bytes:
    payload = message.encode("utf-8")
    header = encode_header(
        MessageType.SERVER_ERROR_RESPONSE,
        MessageFlags.NO_SEQUENCE,
        SerializationType.JSON,
        CompressionType.NONE,
    )
    return header + struct.pack(">I", code) + struct.pack(">I", len(payload)) + payload


# ---------------------------------------------------------------------
# Client frames
# ---------------------------------------------------------------------

@dataclass(frozen=True)
class ClientFrame:
    header: FrameHeader
    sequence: int
    payload: bytes

    @property
    def is_handshake(self) -> bool:
        return self.header.message_type is MessageType.CLIENT_FULL_REQUEST

    def json(self) -> dict[str, Any]:
        return json.loads(self.payload.decode("utf-8"))


def parse_client_frame(frame: bytes) -> ClientFrame:
    header = decode_header(frame)
    offset = header.header_size
    sequence = 0
    if header.has_sequence:
        sequence = struct.unpack_from(">i", frame, offset)[0]
        offset += 4
    size = struct.unpack_from(">I", frame, offset)[0]
    offset += 4
    payload = frame[offset:offset + size]
    assert len(payload) == size
    if header.compression is CompressionType.GZIP:
        payload = gzip.decompress(payload)
    return ClientFrame(header=header, sequence=sequence, payload=payload)


# ---------------------------------------------------------------------
# Fake connection
# ---------------------------------------------------------------------

Handler = Callable[[ClientFrame], list[Any]]


class FakeConnection:
    """
    Scripted server side of one websocket.

    Each client frame is passed to `handler`; whatever it returns (frames or
    exceptions) is queued for recv() in order.
    """

    def __init__(self, handler: Handler, *, fail_send_on: Optional[Callable[[ClientFrame], bool]] = None) -> None:
        self._handler = handler
        self._fail_send_on = fail_send_on
        self._inbox: asyncio.Queue[Any] = asyncio.Queue()
        self.frames: list[ClientFrame] = []
        self.closed = False
        self.response = SimpleNamespace(headers={"X-Tt-Logid": "log-123"})

    @property
    def audio_frames(self) -> list[ClientFrame]:
        return [f for f in self.frames if not f.is_handshake]

    async def send(self, message: bytes) -> None:
        if self.closed:
            raise ConnectionClosedError(None, None)
        frame = parse_client_frame(message)
        if self._fail_send_on is not None and self._fail_send_on(frame):
            raise ConnectionClosedError(None, None)
        self.frames.append(frame)
        for reply in self._handler(frame):
            self._inbox.put_nowait(reply)

    async def recv(self) -> bytes:
        item = await self._inbox.get()
        if isinstance(item, BaseException):
            raise item
        return item

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._inbox.put_nowait(ConnectionClosedOK(None, None))


class FakeDialer:
    """
    Dialer that fails `failures` times with OSError, then returns `connection`.
    """

    def __init__(self, connection: Any = None, *, failures: int = 0) -> None:
        self.connection = connection
        self.failures = failures
        self.calls: list[dict[str, str]] = []
        self.call_times: list[float] = []

    async def __call__(self, url: str, headers: Any) -> Any:
        self.calls.append(dict(headers))
        self.call_times.append(asyncio.get_running_loop().time())
        if len(self.calls) <= self.failures:
            raise OSError(f"connect refused #{len(self.calls)}")
        return self.connection


def echo_server(frame: ClientFrame) -> list[Any]:
    """
    Well-behaved server: ack the handshake, one partial per segment, and a
    final response after the terminal segment.
    """
    if frame.is_handshake:
        return [server_response("", sequence=frame.sequence)]
    replies: list[Any] = [server_response(f"partial {abs(frame.sequence)}", sequence=abs(frame.sequence))]
    if frame.sequence < 0:
        replies.append(server_response("final text", sequence=frame.sequence, last=True))
    return replies
