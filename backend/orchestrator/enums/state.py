"""
Streaming session lifecycle states.

Rules:
- This enum defines ONLY the lifecycle states.
- No behavior, no helper methods, no side effects.
- Transitions are driven exclusively by the session orchestrator.
"""

from __future__ import annotations

from enum import Enum


class SessionState(str, Enum):
    """
    Lifecycle of one streaming session (one audio file).

    IDLE -> CONNECTING -> HANDSHAKING -> STREAMING -> DRAINING -> CLOSED

    FAILED is reachable from any non-terminal state and is always
    followed by CLOSED once held resources are released.
    """

    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    HANDSHAKING = "HANDSHAKING"
    STREAMING = "STREAMING"
    DRAINING = "DRAINING"
    CLOSED = "CLOSED"
    FAILED = "FAILED"
