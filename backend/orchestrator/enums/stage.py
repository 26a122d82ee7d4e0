"""
Session stages used to tag errors with where they happened.
"""

from __future__ import annotations

from enum import Enum


class Stage(str, Enum):
    """Pipeline step a session error originated from."""

    VALIDATE = "validate"
    AUDIO = "read_audio"
    SEGMENT = "segment_size"
    CONNECT = "connect"
    HANDSHAKE = "handshake"
    STREAM = "stream"
