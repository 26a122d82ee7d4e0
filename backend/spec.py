"""
SPEC-AS-CONSTANTS
-----------------
Single source of truth for wire-protocol and session constants.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- No magic numbers elsewhere in the codebase.
- Other modules MUST import from this file.
"""

from __future__ import annotations

from typing import Final, Mapping, Tuple

# =============================================================================
# Binary frame header
# =============================================================================

PROTOCOL_VERSION: Final[int] = 0b0001
HEADER_WORD_BYTES: Final[int] = 4
DEFAULT_HEADER_WORDS: Final[int] = 1
DEFAULT_RESERVED: Final[bytes] = b"\x00"

# Every nibble-packed header field is 4 bits wide
NIBBLE_MAX: Final[int] = 0x0F

# Sequence, event, error code and payload length fields are all 4 bytes, big-endian
FIELD_BYTES: Final[int] = 4

# Flag bits carried in the message-type-specific nibble
FLAG_BIT_SEQUENCE: Final[int] = 0b0001
FLAG_BIT_LAST: Final[int] = 0b0010
FLAG_BIT_EVENT: Final[int] = 0b0100

# =============================================================================
# Session sequencing
# =============================================================================

SEQUENCE_START: Final[int] = 1

# =============================================================================
# Audio
# =============================================================================

DEFAULT_SEGMENT_DURATION_MS: Final[int] = 200
TARGET_SAMPLE_RATE_HZ: Final[int] = 16_000
TARGET_CHANNELS: Final[int] = 1
TARGET_SAMPLE_WIDTH_BYTES: Final[int] = 2  # PCM16

AUDIO_FORMAT: Final[str] = "wav"
AUDIO_CODEC: Final[str] = "raw"

# =============================================================================
# Connection establishment
# =============================================================================

CONNECT_MAX_ATTEMPTS: Final[int] = 3
CONNECT_BACKOFF_UNIT_S: Final[float] = 1.0
CONNECT_OPEN_TIMEOUT_S: Final[float] = 10.0
MAX_FRAME_BYTES: Final[int] = 2**24

HEADER_RESOURCE_ID: Final[str] = "X-Api-Resource-Id"
HEADER_CONNECT_ID: Final[str] = "X-Api-Connect-Id"
HEADER_ACCESS_KEY: Final[str] = "X-Api-Access-Key"
HEADER_APP_KEY: Final[str] = "X-Api-App-Key"
HEADER_LOG_ID: Final[str] = "X-Tt-Logid"

# =============================================================================
# Endpoints and models
# =============================================================================

URL_REALTIME: Final[str] = "wss://openspeech.bytedance.com/api/v3/sauc/bigmodel_async"
URL_NOSTREAM: Final[str] = "wss://openspeech.bytedance.com/api/v3/sauc/bigmodel_nostream"

MODEL_V1: Final[str] = "v1"
MODEL_V2: Final[str] = "v2"
DEFAULT_MODEL_VERSION: Final[str] = MODEL_V2

MODEL_RESOURCE_IDS: Final[Mapping[str, str]] = {
    MODEL_V1: "volc.bigasr.sauc.duration",
    MODEL_V2: "volc.seedasr.sauc.duration",
}

MODEL_NAME: Final[str] = "bigmodel"
RESULT_TYPE_FULL: Final[str] = "full"
RESULT_TYPE_SINGLE: Final[str] = "single"
RESULT_TYPES: Final[Tuple[str, ...]] = (RESULT_TYPE_FULL, RESULT_TYPE_SINGLE)

DEFAULT_USER_ID: Final[str] = "asr-eval"

# =============================================================================
# Batch processing
# =============================================================================

BATCH_MAX_CONCURRENCY: Final[int] = 50
BATCH_DEFAULT_CONCURRENCY: Final[int] = 10
BATCH_SOURCE_SUFFIX: Final[str] = ".flac"
BATCH_DEFAULT_OUTPUT_EXT: Final[str] = ".volc2"
STREAM_FILE_SUFFIX: Final[str] = ".stream.json"

# =============================================================================
# Response delivery
# =============================================================================

# Responses buffered between the receive task and the consumer
RESPONSE_CHANNEL_DEPTH: Final[int] = 1
