"""
Audio segmentation utilities (pure).

Purpose:
- Turn WAV format metadata into a byte size per fixed-duration segment
- Slice an audio buffer into ordered segments for paced transmission

Design:
- Pure functions only (no sockets, no timing, no IO).
- The final segment keeps the remainder (no padding, no dropping).
"""

from __future__ import annotations

from errors import ConfigurationError


def compute_segment_size(
    channels: int,
    sample_width_bytes: int,
    frame_rate: int,
    segment_duration_ms: int,
) -> int:
    """
    Number of audio bytes covering `segment_duration_ms`.

        bytes_per_second = channels * sample_width_bytes * frame_rate
        segment_size     = bytes_per_second * segment_duration_ms // 1000

    Raises:
        ConfigurationError if any input is non-positive or the result is 0.
    """
    if channels <= 0:
        raise ConfigurationError(f"channels must be > 0, got {channels}")
    if sample_width_bytes <= 0:
        raise ConfigurationError(f"sample_width_bytes must be > 0, got {sample_width_bytes}")
    if frame_rate <= 0:
        raise ConfigurationError(f"frame_rate must be > 0, got {frame_rate}")
    if segment_duration_ms <= 0:
        raise ConfigurationError(f"segment_duration_ms must be > 0, got {segment_duration_ms}")

    bytes_per_second = channels * sample_width_bytes * frame_rate
    segment_size = bytes_per_second * segment_duration_ms // 1000
    if segment_size <= 0:
        raise ConfigurationError(
            f"segment of {segment_duration_ms}ms at {bytes_per_second} B/s is empty"
        )
    return segment_size


def split_into_segments(data: bytes, segment_size: int) -> list[bytes]:
    """
    Split `data` into contiguous chunks of `segment_size` bytes.

    The last chunk holds the remainder (1..segment_size bytes).

    A non-positive `segment_size` returns an empty list instead of raising;
    callers must refuse to stream zero segments.
    """
    # TODO: raise ConfigurationError here once no caller relies on the empty-list result
    if segment_size <= 0:
        return []

    return [
        data[offset : offset + segment_size]
        for offset in range(0, len(data), segment_size)
    ]


def segment_count(num_bytes: int, segment_size: int) -> int:
    """
    Number of segments split_into_segments would produce (ceiling division).
    """
    if num_bytes <= 0 or segment_size <= 0:
        return 0
    return -(-num_bytes // segment_size)
