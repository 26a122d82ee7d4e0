# backend/protocol/binary.py
"""
Binary framing for the vendor ASR websocket protocol.

Header (4 bytes, one "word"):
    byte 0   protocol_version << 4 | header_size_in_words
    byte 1   message_type << 4     | message_type_specific_flags
    byte 2   serialization << 4    | compression
    byte 3   reserved

Body, in order:
    4 bytes  sequence (i32, big-endian)      only if flags & 0b0001
    4 bytes  event    (i32, big-endian)      server only, if flags & 0b0100
    4 bytes  error code (u32, big-endian)    SERVER_ERROR_RESPONSE only
    4 bytes  payload length (u32, big-endian)
    N bytes  payload (gzip / JSON per header)

Usage example:

    frame = build_audio_segment_request(sequence=-7, segment=last_chunk)
    await ws.send(frame)

    response = decode_response(await ws.recv())
    if response.code != 0:
        ...
"""

from __future__ import annotations

import gzip
import json
import struct
import zlib
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Optional

from errors import AsrSessionError
from protocol.messages import (
    AsrResponse,
    RequestOptions,
    build_request_payload,
    parse_result_payload,
)
from spec import (
    DEFAULT_HEADER_WORDS,
    DEFAULT_RESERVED,
    FIELD_BYTES,
    FLAG_BIT_EVENT,
    FLAG_BIT_LAST,
    FLAG_BIT_SEQUENCE,
    HEADER_WORD_BYTES,
    NIBBLE_MAX,
    PROTOCOL_VERSION,
    SEQUENCE_START,
)


# -------------------------
# Header field enums
# -------------------------

class MessageType(IntEnum):
    """Upper nibble of header byte 1."""
    CLIENT_FULL_REQUEST = 0b0001
    CLIENT_AUDIO_ONLY_REQUEST = 0b0010
    SERVER_FULL_RESPONSE = 0b1001
    SERVER_ACK = 0b1011
    SERVER_ERROR_RESPONSE = 0b1111


class MessageFlags(IntEnum):
    """
    Lower nibble of header byte 1.

    Bit 0b0001 means a sequence field follows the header; bit 0b0010 marks
    the terminal frame. Server frames may also set FLAG_BIT_EVENT.
    """
    NO_SEQUENCE = 0b0000
    POS_SEQUENCE = 0b0001
    NEG_SEQUENCE = 0b0010
    NEG_WITH_SEQUENCE = 0b0011


class SerializationType(IntEnum):
    NONE = 0b0000
    JSON = 0b0001
    THRIFT = 0b0011
    CUSTOM = 0b1111


class CompressionType(IntEnum):
    NONE = 0b0000
    GZIP = 0b0001
    CUSTOM = 0b1111


# -------------------------
# Exceptions
# -------------------------

class BinaryProtocolError(Exception):
    """Base class for binary protocol errors."""


class FrameEncodeError(BinaryProtocolError):
    """
    Raised when a frame cannot be encoded.

    Indicates a programming error on our side (unknown enum value, header
    that is not a whole number of words, oversized field).
    """


class ProtocolDecodeError(BinaryProtocolError, AsrSessionError):
    """
    Raised when an inbound frame is malformed.

    Short reads, unknown header values, declared lengths that overrun the
    frame, broken gzip or JSON. Terminal for the session that received it.
    """


# -------------------------
# Low-level helpers
# -------------------------

def _i32_be(value: int) -> bytes:
    try:
        return struct.pack(">i", value)
    except struct.error as e:
        raise FrameEncodeError(f"Value {value} does not fit in i32") from e


def _u32_be(value: int) -> bytes:
    try:
        return struct.pack(">I", value)
    except struct.error as e:
        raise FrameEncodeError(f"Value {value} does not fit in u32") from e


def _read_i32_be(buf: bytes, offset: int, field: str) -> int:
    if len(buf) < offset + FIELD_BYTES:
        raise ProtocolDecodeError(
            f"Frame too short for {field}: need {offset + FIELD_BYTES} bytes, have {len(buf)}"
        )
    return struct.unpack_from(">i", buf, offset)[0]


def _read_u32_be(buf: bytes, offset: int, field: str) -> int:
    if len(buf) < offset + FIELD_BYTES:
        raise ProtocolDecodeError(
            f"Frame too short for {field}: need {offset + FIELD_BYTES} bytes, have {len(buf)}"
        )
    return struct.unpack_from(">I", buf, offset)[0]


def _member(enum_cls: type[IntEnum], value: Any, field: str) -> IntEnum:
    """Coerce `value` into `enum_cls` or raise FrameEncodeError."""
    try:
        return enum_cls(value)
    except ValueError as e:
        raise FrameEncodeError(f"Invalid {field}: {value!r}") from e


# -------------------------
# Header
# -------------------------

@dataclass(frozen=True)
class FrameHeader:
    """
    Parsed frame header.

    flags is kept as the raw nibble because server frames may combine
    FLAG_BIT_EVENT with the MessageFlags values.
    """
    message_type: MessageType
    flags: int
    serialization: SerializationType
    compression: CompressionType
    protocol_version: int = PROTOCOL_VERSION
    header_size: int = DEFAULT_HEADER_WORDS * HEADER_WORD_BYTES
    reserved: bytes = DEFAULT_RESERVED

    @property
    def has_sequence(self) -> bool:
        return bool(self.flags & FLAG_BIT_SEQUENCE)

    @property
    def is_last(self) -> bool:
        return bool(self.flags & FLAG_BIT_LAST)

    @property
    def has_event(self) -> bool:
        return bool(self.flags & FLAG_BIT_EVENT)


def encode_header(
    message_type: MessageType,
    flags: MessageFlags,
    serialization: SerializationType,
    compression: CompressionType,
    reserved: bytes = DEFAULT_RESERVED,
) -> bytes:
    """
    Pack the header fields into bytes.

    Pure function. Raises FrameEncodeError on values outside the enums or a
    header whose total length is not a whole number of 4-byte words.
    """
    mt = _member(MessageType, message_type, "message_type")
    fl = _member(MessageFlags, flags, "message_type_specific_flags")
    st = _member(SerializationType, serialization, "serialization_type")
    ct = _member(CompressionType, compression, "compression_type")

    total = 3 + len(reserved)
    if total % HEADER_WORD_BYTES != 0:
        raise FrameEncodeError(
            f"Header length {total} is not a multiple of {HEADER_WORD_BYTES}"
        )
    words = total // HEADER_WORD_BYTES
    if words > NIBBLE_MAX:
        raise FrameEncodeError(f"Header too long: {words} words")

    return bytes(
        (
            (PROTOCOL_VERSION << 4) | words,
            (int(mt) << 4) | int(fl),
            (int(st) << 4) | int(ct),
        )
    ) + bytes(reserved)


def decode_header(frame: bytes) -> FrameHeader:
    """
    Parse the header at the start of `frame`.

    Raises ProtocolDecodeError on short input or unknown enum values.
    """
    if len(frame) < HEADER_WORD_BYTES:
        raise ProtocolDecodeError(f"Frame too short for header: {len(frame)} bytes")

    header_size = (frame[0] & 0x0F) * HEADER_WORD_BYTES
    if header_size < HEADER_WORD_BYTES or len(frame) < header_size:
        raise ProtocolDecodeError(
            f"Invalid header size {header_size} for frame of {len(frame)} bytes"
        )

    try:
        message_type = MessageType(frame[1] >> 4)
        serialization = SerializationType(frame[2] >> 4)
        compression = CompressionType(frame[2] & 0x0F)
    except ValueError as e:
        raise ProtocolDecodeError(f"Unknown header field: {e}") from e

    return FrameHeader(
        message_type=message_type,
        flags=frame[1] & 0x0F,
        serialization=serialization,
        compression=compression,
        protocol_version=frame[0] >> 4,
        header_size=header_size,
        reserved=bytes(frame[3:header_size]),
    )


# -------------------------
# Client -> Server
# -------------------------

def _compress(payload: bytes, compression: CompressionType) -> bytes:
    if compression is CompressionType.GZIP:
        return gzip.compress(payload)
    if compression is CompressionType.NONE:
        return payload
    raise FrameEncodeError(f"Unsupported outbound compression: {compression!r}")


def build_handshake_request(
    context_text: str = "",
    *,
    options: Optional[RequestOptions] = None,
    sequence: int = SEQUENCE_START,
    compression: CompressionType = CompressionType.GZIP,
) -> bytes:
    """
    Encode the full client request that opens a recognition session.
    """
    payload = json.dumps(
        build_request_payload(context_text, options or RequestOptions()),
        ensure_ascii=False,
    ).encode("utf-8")
    payload = _compress(payload, compression)

    header = encode_header(
        MessageType.CLIENT_FULL_REQUEST,
        MessageFlags.POS_SEQUENCE,
        SerializationType.JSON,
        compression,
    )
    return header + _i32_be(sequence) + _u32_be(len(payload)) + payload


def build_audio_segment_request(
    sequence: int,
    segment: bytes,
    *,
    compression: CompressionType = CompressionType.GZIP,
) -> bytes:
    """
    Encode one audio-only request.

    A negative `sequence` marks the terminal segment.
    """
    if sequence == 0:
        raise FrameEncodeError("Audio sequence must be non-zero")

    flags = MessageFlags.NEG_WITH_SEQUENCE if sequence < 0 else MessageFlags.POS_SEQUENCE
    payload = _compress(bytes(segment), compression)

    # The service expects the JSON serialization nibble on audio frames too
    header = encode_header(
        MessageType.CLIENT_AUDIO_ONLY_REQUEST,
        flags,
        SerializationType.JSON,
        compression,
    )
    return header + _i32_be(sequence) + _u32_be(len(payload)) + payload


# -------------------------
# Server -> Client
# -------------------------

def _decompress(payload: bytes, compression: CompressionType) -> bytes:
    if compression is CompressionType.NONE:
        return payload
    if compression is CompressionType.GZIP:
        try:
            return gzip.decompress(payload)
        except (OSError, EOFError, zlib.error) as e:
            raise ProtocolDecodeError(f"gzip payload is corrupt: {e}") from e
    raise ProtocolDecodeError(f"Unsupported inbound compression: {compression!r}")


def _deserialize(payload: bytes, serialization: SerializationType) -> Optional[dict[str, Any]]:
    if serialization is not SerializationType.JSON or not payload:
        return None
    try:
        decoded = json.loads(payload.decode("utf-8"))
    except (UnicodeDecodeError, ValueError) as e:
        raise ProtocolDecodeError(f"JSON payload is invalid: {e}") from e
    if not isinstance(decoded, dict):
        raise ProtocolDecodeError(f"JSON payload is {type(decoded).__name__}, expected object")
    return decoded


def decode_response(frame: bytes) -> AsrResponse:
    """
    Decode one server frame into an AsrResponse.

    Error frames are NOT raised: their status code is returned in
    AsrResponse.code so the caller can tell "server rejected" from
    "could not parse". Malformed frames raise ProtocolDecodeError.
    """
    if isinstance(frame, str):
        raise ProtocolDecodeError("Expected a binary frame, got text")
    frame = bytes(frame)

    header = decode_header(frame)
    offset = header.header_size

    sequence = 0
    if header.has_sequence:
        sequence = _read_i32_be(frame, offset, "sequence")
        offset += FIELD_BYTES

    event = 0
    if header.has_event:
        event = _read_i32_be(frame, offset, "event")
        offset += FIELD_BYTES

    code = 0
    if header.message_type is MessageType.SERVER_ERROR_RESPONSE:
        code = _read_u32_be(frame, offset, "error code")
        offset += FIELD_BYTES
    elif header.message_type not in (MessageType.SERVER_FULL_RESPONSE, MessageType.SERVER_ACK):
        raise ProtocolDecodeError(f"Unexpected message type from server: {header.message_type.name}")

    payload = b""
    payload_size = 0
    # ACK frames may end right after the sequence
    if not (header.message_type is MessageType.SERVER_ACK and len(frame) == offset):
        payload_size = _read_u32_be(frame, offset, "payload length")
        offset += FIELD_BYTES
        if len(frame) < offset + payload_size:
            raise ProtocolDecodeError(
                f"Declared payload length {payload_size} exceeds remaining {len(frame) - offset} bytes"
            )
        payload = frame[offset:offset + payload_size]

    payload = _decompress(payload, header.compression)

    if header.message_type is MessageType.SERVER_ERROR_RESPONSE:
        return AsrResponse(
            message_type=int(header.message_type),
            code=code,
            event=event,
            is_last_package=header.is_last,
            payload_sequence=sequence,
            payload_size=payload_size,
            error=payload.decode("utf-8", errors="replace"),
            payload=payload,
        )

    body = _deserialize(payload, header.serialization)
    return parse_result_payload(
        body,
        message_type=int(header.message_type),
        event=event,
        is_last_package=header.is_last,
        payload_sequence=sequence,
        payload_size=payload_size,
        payload=payload,
    )
