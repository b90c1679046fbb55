from __future__ import annotations

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional, Tuple, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
Task = Callable[[], Awaitable[Any]]


class FetchQueue:
    """
    Single-flight access to the upstream provider.

    Tasks run strictly in submission order, one at a time, with a fixed
    pause after each. A failing task fails only its own caller.
    """

    def __init__(self, delay_sec: float) -> None:
        if delay_sec < 0:
            raise ValueError("delay_sec must be >= 0")
        self._delay = delay_sec
        self._pending: Deque[Tuple[Task, asyncio.Future]] = deque()
        self._worker: Optional[asyncio.Task] = None

    async def submit(self, task: Callable[[], Awaitable[T]]) -> T:
        loop = asyncio.get_running_loop()
        fut: asyncio.Future = loop.create_future()
        self._pending.append((task, fut))
        if self._worker is None or self._worker.done():
            self._worker = loop.create_task(self._drain())
        return await fut

    async def _drain(self) -> None:
        while self._pending:
            task, fut = self._pending.popleft()
            if fut.cancelled():
                continue
            try:
                result = await task()
            except asyncio.CancelledError:
                fut.cancel()
            except Exception as e:
                if not fut.done():
                    fut.set_exception(e)
            else:
                if not fut.done():
                    fut.set_result(result)
            await asyncio.sleep(self._delay)
