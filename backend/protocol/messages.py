"""
JSON payload shapes exchanged with the ASR service.

Responsibilities:
- Build the handshake request body (user / audio / request sections)
- Turn a decoded response body into typed result records

Non-responsibilities:
- No byte framing (protocol.binary)
- No I/O
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional

from spec import (
    AUDIO_CODEC,
    AUDIO_FORMAT,
    DEFAULT_USER_ID,
    MODEL_NAME,
    RESULT_TYPE_FULL,
    TARGET_CHANNELS,
    TARGET_SAMPLE_RATE_HZ,
    TARGET_SAMPLE_WIDTH_BYTES,
)


# -------------------------
# Request
# -------------------------

@dataclass(frozen=True)
class RequestOptions:
    """
    Recognition switches sent once in the handshake.

    enable_nonstream / result_type select between realtime ("single",
    incremental utterances) and whole-file ("full", cumulative text).
    """
    user_id: str = DEFAULT_USER_ID
    audio_format: str = AUDIO_FORMAT
    audio_codec: str = AUDIO_CODEC
    sample_rate_hz: int = TARGET_SAMPLE_RATE_HZ
    bits: int = TARGET_SAMPLE_WIDTH_BYTES * 8
    channels: int = TARGET_CHANNELS
    model_name: str = MODEL_NAME
    enable_itn: bool = True
    enable_punc: bool = True
    enable_ddc: bool = True
    show_utterances: bool = True
    enable_nonstream: bool = False
    result_type: str = RESULT_TYPE_FULL


def build_request_payload(context_text: str, options: RequestOptions) -> dict[str, Any]:
    """
    Handshake body. context_text is passed through untouched as corpus.context.
    """
    request: dict[str, Any] = {
        "model_name": options.model_name,
        "enable_itn": options.enable_itn,
        "enable_punc": options.enable_punc,
        "enable_ddc": options.enable_ddc,
        "show_utterances": options.show_utterances,
        "enable_nonstream": options.enable_nonstream,
        "result_type": options.result_type,
    }
    if context_text:
        request["corpus"] = {"context": context_text}

    return {
        "user": {"uid": options.user_id},
        "audio": {
            "format": options.audio_format,
            "codec": options.audio_codec,
            "rate": options.sample_rate_hz,
            "bits": options.bits,
            "channel": options.channels,
        },
        "request": request,
    }


# -------------------------
# Response
# -------------------------

@dataclass(frozen=True)
class Word:
    text: str
    start_time: int = 0
    end_time: int = 0
    blank_duration: int = 0


@dataclass(frozen=True)
class Utterance:
    """
    One recognized utterance.

    definite is True once the server will no longer revise this text.
    """
    text: str
    start_time: int = 0
    end_time: int = 0
    definite: bool = False
    words: tuple[Word, ...] = ()


@dataclass(frozen=True)
class AsrResult:
    text: str = ""
    utterances: tuple[Utterance, ...] = ()


@dataclass(frozen=True)
class AsrResponse:
    """
    One decoded server frame.

    payload_sequence:
        Signed; negative on the server's terminal frame.
    code:
        0 on success, the server status code for error frames.
    payload:
        Decompressed payload bytes, kept for non-JSON responses and debugging.
    """
    message_type: int
    code: int = 0
    event: int = 0
    is_last_package: bool = False
    payload_sequence: int = 0
    payload_size: int = 0
    result: AsrResult = field(default_factory=AsrResult)
    error: str = ""
    audio_duration_ms: Optional[int] = None
    payload: bytes = b""

    @property
    def text(self) -> str:
        return self.result.text


def _as_int(value: Any) -> int:
    if isinstance(value, bool):
        return int(value)
    if isinstance(value, (int, float)):
        return int(value)
    return 0


def _parse_word(raw: dict[str, Any]) -> Word:
    return Word(
        text=str(raw.get("text", "")),
        start_time=_as_int(raw.get("start_time")),
        end_time=_as_int(raw.get("end_time")),
        blank_duration=_as_int(raw.get("blank_duration")),
    )


def _parse_utterance(raw: dict[str, Any]) -> Utterance:
    words = raw.get("words") or []
    return Utterance(
        text=str(raw.get("text", "")),
        start_time=_as_int(raw.get("start_time")),
        end_time=_as_int(raw.get("end_time")),
        definite=bool(raw.get("definite", False)),
        words=tuple(_parse_word(w) for w in words if isinstance(w, dict)),
    )


def _parse_result(raw: Any) -> AsrResult:
    # Some model versions send a list of n-best results; the first one wins.
    if isinstance(raw, list):
        raw = raw[0] if raw else {}
    if not isinstance(raw, dict):
        return AsrResult()
    utterances = raw.get("utterances") or []
    return AsrResult(
        text=str(raw.get("text", "")),
        utterances=tuple(_parse_utterance(u) for u in utterances if isinstance(u, dict)),
    )


def parse_result_payload(
    body: Optional[dict[str, Any]],
    *,
    message_type: int,
    event: int,
    is_last_package: bool,
    payload_sequence: int,
    payload_size: int,
    payload: bytes,
) -> AsrResponse:
    """
    Build an AsrResponse from a deserialized (or absent) JSON body.
    """
    if body is None:
        return AsrResponse(
            message_type=message_type,
            event=event,
            is_last_package=is_last_package,
            payload_sequence=payload_sequence,
            payload_size=payload_size,
            payload=payload,
        )

    audio_info = body.get("audio_info")
    duration = None
    if isinstance(audio_info, dict) and "duration" in audio_info:
        duration = _as_int(audio_info["duration"])

    return AsrResponse(
        message_type=message_type,
        event=event,
        is_last_package=is_last_package,
        payload_sequence=payload_sequence,
        payload_size=payload_size,
        result=_parse_result(body.get("result")),
        error=str(body.get("error", "")),
        audio_duration_ms=duration,
        payload=payload,
    )
