from __future__ import annotations

import asyncio


class CancelToken:
    """
    Cooperative stop signal for one run.

    Setting it is idempotent. Work checks ``cancelled`` right after each
    await; nothing in flight is interrupted.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def sleep(self, seconds: float) -> bool:
        """Pause up to ``seconds``; returns True if woken by cancellation."""
        if self._event.is_set():
            return True
        if seconds <= 0:
            await asyncio.sleep(0)
            return self._event.is_set()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True
