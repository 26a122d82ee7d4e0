"""
Session error taxonomy.

Every failure that ends a streaming session is an AsrSessionError. The
orchestrator tags each error with the Stage it came from before it reaches
the caller, so "which step broke" is always answerable from the exception
alone.

Distinctions callers rely on:
- ConfigurationError: bad inputs, never retried
- AsrConnectionError: connection retries exhausted (aggregate)
- CancellationError: caller cancelled while dialing or during connection backoff
- ServerReportedError: the server answered with a non-zero status code
- ProtocolDecodeError (protocol.binary): we could not parse the server
- TransportError: socket read/write failed after connecting
- AsrSessionError itself: any other failure, with the original chained as __cause__
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from orchestrator.enums.stage import Stage


class AsrSessionError(Exception):
    """Base class for every terminal session error."""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message
        self.stage: Stage | None = None

    def __str__(self) -> str:
        if self.stage is None:
            return self.message
        return f"{self.stage.value}: {self.message}"


class ConfigurationError(AsrSessionError, ValueError):
    """Empty endpoint/path, invalid segment parameters, unknown model version."""


class AudioSourceError(AsrSessionError):
    """Audio could not be read, inspected or transcoded."""


class AsrConnectionError(AsrSessionError):
    """
    Raised once all connection attempts are exhausted.

    last_error is the final underlying failure (also chained as __cause__).
    """

    def __init__(self, message: str, *, attempts: int, last_error: BaseException | None) -> None:
        super().__init__(message)
        self.attempts = attempts
        self.last_error = last_error


class CancellationError(AsrSessionError):
    """Caller-supplied cancellation fired during connection setup."""


class TransportError(AsrSessionError):
    """Reading from or writing to an established connection failed."""


class ServerReportedError(AsrSessionError):
    """The server returned a frame with a non-zero status code."""

    def __init__(self, code: int, message: str = "") -> None:
        text = f"server reported error code {code}"
        if message:
            text = f"{text}: {message}"
        super().__init__(text)
        self.code = code
        self.server_message = message
