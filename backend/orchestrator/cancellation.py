"""
Single-shot stop signal shared by a session's send and receive tasks.

Responsibilities:
- Broadcast "stop" once to every waiter
- Let the paced send loop sleep until its next tick OR the signal,
  whichever comes first

Non-responsibilities:
- NO task cancellation (cooperative only: waiters observe the signal at
  their next suspension point)
- NO decisions about why a session stops
"""

from __future__ import annotations

import asyncio
from typing import Optional


class StopSignal:
    """
    One-way, idempotent stop flag built on asyncio.Event.

    The first reason passed to set() is kept; later calls are no-ops.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: Optional[str] = None

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def is_set(self) -> bool:
        return self._event.is_set()

    def set(self, reason: str = "stop") -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    async def wait_until(self, deadline: float) -> bool:
        """
        Sleep until loop.time() reaches `deadline` or the signal fires.

        Returns True if the signal fired (caller must stop), False if the
        deadline was reached.
        """
        if self._event.is_set():
            return True
        timeout = deadline - asyncio.get_running_loop().time()
        if timeout <= 0:
            return False
        try:
            await asyncio.wait_for(self._event.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            return False
        return True


async def wait_or_cancelled(cancel: Optional[asyncio.Event], delay_s: float) -> bool:
    """
    Sleep `delay_s`, waking early if `cancel` is set.

    Returns True if cancelled, False if the full delay elapsed.
    """
    if cancel is None:
        await asyncio.sleep(delay_s)
        return False
    if cancel.is_set():
        return True
    try:
        await asyncio.wait_for(cancel.wait(), timeout=delay_s)
    except asyncio.TimeoutError:
        return False
    return True
