"""
Connection retry policy.

Purpose:
- Centralize the connect retry rules (bounded attempts, exponential backoff)
- Keep the connection manager free of arithmetic

This module contains NO timers, NO async, NO side effects.

Only connection establishment is retried. Once a session is streaming,
any transmission or decode failure is terminal.
"""
from __future__ import annotations

from dataclasses import dataclass

from spec import CONNECT_BACKOFF_UNIT_S, CONNECT_MAX_ATTEMPTS


# =============================================================================
# Retry State
# =============================================================================

@dataclass(frozen=True)
class RetryAttempt:
    """
    Immutable attempt counter.

    Semantics:
    - attempt == 0 is the initial connection attempt (no wait before it).
    - attempt >= 1 is the Nth retry.
    """
    attempt: int


def next_attempt(current: RetryAttempt) -> RetryAttempt:
    """Return a new RetryAttempt with attempt incremented by 1."""
    return RetryAttempt(attempt=current.attempt + 1)


def reset_attempt() -> RetryAttempt:
    """Returns a fresh retry attempt counter."""
    return RetryAttempt(attempt=0)


# =============================================================================
# Policy
# =============================================================================

def should_retry(
    *,
    attempt: RetryAttempt,
    max_attempts: int = CONNECT_MAX_ATTEMPTS,
) -> bool:
    """
    True if another attempt is allowed after `attempt` failed.

    max_attempts counts the initial attempt (3 => initial + 2 retries).
    """
    return attempt.attempt + 1 < max_attempts


def get_backoff_delay_s(
    *,
    attempt: RetryAttempt,
    unit_s: float = CONNECT_BACKOFF_UNIT_S,
) -> float:
    """
    Delay before `attempt`.

    Exponential: unit * 2**(attempt - 1), i.e. 1, 2, 4 ... units.
    The initial attempt (0) has no delay.
    """
    if attempt.attempt <= 0:
        return 0.0
    return unit_s * (2 ** (attempt.attempt - 1))
