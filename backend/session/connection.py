"""
Websocket connection establishment with bounded retries.

Responsibilities:
- Dial the ASR endpoint, attaching freshly generated auth headers per attempt
- Retry with exponential backoff (orchestrator.retry)
- Honor caller cancellation while dialing and during backoff waits
- Log the server-assigned log id of the accepted connection

Non-responsibilities:
- No framing, no handshake (session.asr_session)
- No retry once a connection is handed to the session
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Mapping, Optional, Protocol, runtime_checkable

from websockets.asyncio.client import connect as ws_connect
from websockets.exceptions import WebSocketException

from errors import AsrConnectionError, CancellationError
from observability.logger import log_event
from orchestrator.cancellation import wait_or_cancelled
from orchestrator.retry import (
    RetryAttempt,
    get_backoff_delay_s,
    next_attempt,
    reset_attempt,
    should_retry,
)
from spec import (
    CONNECT_BACKOFF_UNIT_S,
    CONNECT_MAX_ATTEMPTS,
    CONNECT_OPEN_TIMEOUT_S,
    HEADER_CONNECT_ID,
    HEADER_LOG_ID,
    MAX_FRAME_BYTES,
)


# ---------------------------------------------------------------------
# Types
# ---------------------------------------------------------------------

@runtime_checkable
class Connection(Protocol):
    """
    The subset of a websocket client connection a session uses.

    Writes come only from the send task and reads only from the receive
    task, so no locking is needed on top of this.
    """
    async def send(self, message: bytes) -> None: ...
    async def recv(self) -> bytes | str: ...
    async def close(self) -> None: ...


HeaderFactory = Callable[[], Mapping[str, str]]
Dialer = Callable[[str, Mapping[str, str]], Awaitable[Connection]]

# Network failures: retried while connecting, terminal once streaming.
# Anything else is a bug and propagates.
NETWORK_ERRORS: tuple[type[BaseException], ...] = (
    OSError,
    asyncio.TimeoutError,
    WebSocketException,
)


async def dial_websocket(url: str, headers: Mapping[str, str]) -> Connection:
    """Default dialer: one websocket handshake, no keepalive pings."""
    return await ws_connect(
        url,
        additional_headers=dict(headers),
        max_size=MAX_FRAME_BYTES,
        ping_interval=None,
        open_timeout=CONNECT_OPEN_TIMEOUT_S,
    )


def response_log_id(conn: Any) -> Optional[str]:
    """
    Server log id from the upgrade response headers, if the connection exposes them.
    """
    response = getattr(conn, "response", None)
    headers = getattr(response, "headers", None)
    if headers is None:
        return None
    return headers.get(HEADER_LOG_ID)


async def _close_quietly(conn: Connection, session_id: Optional[str]) -> None:
    try:
        await conn.close()
    except NETWORK_ERRORS as e:
        log_event({
            "event_type": "ASR_CLOSE_FAILED",
            "session_id": session_id,
            "error": repr(e),
        })


async def _dial_unless_cancelled(
    dial: Dialer,
    url: str,
    headers: Mapping[str, str],
    cancel: Optional[asyncio.Event],
    session_id: Optional[str],
) -> Connection:
    """
    Run one dial, aborting it as soon as `cancel` fires.

    A connection that completes after cancellation is closed, never returned.
    Dial errors propagate unchanged.
    """
    if cancel is None:
        return await dial(url, headers)

    dial_task = asyncio.ensure_future(dial(url, headers))
    cancel_task = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait({dial_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
    except asyncio.CancelledError:
        dial_task.cancel()
        raise
    finally:
        cancel_task.cancel()

    if not cancel.is_set():
        return dial_task.result()

    if not dial_task.done():
        dial_task.cancel()
        await asyncio.gather(dial_task, return_exceptions=True)
    elif not dial_task.cancelled() and dial_task.exception() is None:
        await _close_quietly(dial_task.result(), session_id)
    raise CancellationError("connection cancelled while dialing")


# ---------------------------------------------------------------------
# Connect
# ---------------------------------------------------------------------

async def connect(
    url: str,
    *,
    header_factory: HeaderFactory,
    dial: Dialer = dial_websocket,
    cancel: Optional[asyncio.Event] = None,
    max_attempts: int = CONNECT_MAX_ATTEMPTS,
    backoff_unit_s: float = CONNECT_BACKOFF_UNIT_S,
    session_id: Optional[str] = None,
) -> Connection:
    """
    Establish a connection, retrying up to `max_attempts` times.

    Between attempts waits backoff_unit_s * 2**(n-1) (1, 2, 4 ... units).

    Raises:
        CancellationError if `cancel` fires before an attempt, while dialing,
            or during a backoff wait.
        AsrConnectionError after the last attempt fails; the final
            underlying error is chained and kept on .last_error.
    """
    attempt: RetryAttempt = reset_attempt()
    last_error: Optional[BaseException] = None

    while True:
        if attempt.attempt > 0:
            delay_s = get_backoff_delay_s(attempt=attempt, unit_s=backoff_unit_s)
            log_event({
                "event_type": "ASR_CONNECT_BACKOFF",
                "session_id": session_id,
                "attempt": attempt.attempt,
                "delay_s": delay_s,
                "last_error": repr(last_error),
            })
            if await wait_or_cancelled(cancel, delay_s):
                raise CancellationError(
                    f"connection cancelled during backoff before attempt {attempt.attempt + 1}"
                )
        elif cancel is not None and cancel.is_set():
            raise CancellationError("connection cancelled before first attempt")

        headers = header_factory()
        try:
            conn = await _dial_unless_cancelled(dial, url, headers, cancel, session_id)
        except NETWORK_ERRORS as e:
            last_error = e
            log_event({
                "event_type": "ASR_CONNECT_FAILED",
                "session_id": session_id,
                "attempt": attempt.attempt + 1,
                "connect_id": headers.get(HEADER_CONNECT_ID),
                "error": repr(e),
            })
            if not should_retry(attempt=attempt, max_attempts=max_attempts):
                raise AsrConnectionError(
                    f"failed after {attempt.attempt + 1} attempts: {e}",
                    attempts=attempt.attempt + 1,
                    last_error=e,
                ) from e
            attempt = next_attempt(attempt)
            continue

        log_event({
            "event_type": "ASR_CONNECTED",
            "session_id": session_id,
            "attempt": attempt.attempt + 1,
            "connect_id": headers.get(HEADER_CONNECT_ID),
            "logid": response_log_id(conn),
        })
        return conn
