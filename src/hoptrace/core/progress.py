from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, List, Optional

from hoptrace.config import settings
from hoptrace.core.enums import RunPhase

logger = logging.getLogger(__name__)

ProgressListener = Callable[[str, dict], None]


@dataclass(frozen=True)
class ProgressStatus:
    phase: RunPhase
    current_hop: int
    max_hop: int
    percentage: float
    logs: List[str]


class ProgressTracker:
    """
    Run status for observers: phase, hop counters, percentage and a
    newest-first log. Percentage stays below 100 until ``complete()``.
    """

    def __init__(self, log_limit: int = settings.STATUS_LOG_LIMIT, listener: Optional[ProgressListener] = None) -> None:
        self._logs: Deque[str] = deque(maxlen=log_limit)
        self._listener = listener
        self.phase = RunPhase.IDLE
        self.current_hop = 0
        self.max_hop = 0
        self.percentage = 0.0

    def begin(self, max_hops: int) -> None:
        self._logs.clear()
        self.phase = RunPhase.RUNNING
        self.current_hop = 0
        self.max_hop = max_hops
        self.percentage = 0.0
        self._emit("start", {"max_hop": max_hops})

    def hop_started(self, hop: int, frontier_size: int) -> None:
        self.current_hop = hop
        self._emit("hop", {"hop": hop, "max_hop": self.max_hop, "frontier": frontier_size})

    def batch_done(self, hop: int, batches_done: int, total_batches: int) -> None:
        if self.max_hop <= 0:
            return
        fraction = batches_done / total_batches if total_batches else 1.0
        pct = 100.0 * ((hop - 1) + fraction) / self.max_hop
        self.percentage = min(pct, 99.0)
        self._emit("batch", {"hop": hop, "batches_done": batches_done, "batches": total_batches, "percentage": self.percentage})

    def complete(self, hop: Optional[int] = None) -> None:
        if hop is not None:
            self.current_hop = hop
        self.phase = RunPhase.COMPLETED
        self.percentage = 100.0
        self._emit("done", {"hop": self.current_hop})

    def cancel(self) -> None:
        if self.phase is RunPhase.RUNNING:
            self.phase = RunPhase.CANCELLED
            self._emit("cancelled", {"hop": self.current_hop})

    def fail(self) -> None:
        if self.phase is RunPhase.RUNNING:
            self.phase = RunPhase.FAILED
            self._emit("failed", {"hop": self.current_hop})

    def log(self, message: str) -> None:
        self._logs.appendleft(message)
        logger.debug(message)
        self._emit("log", {"message": message})

    @property
    def logs(self) -> List[str]:
        return list(self._logs)

    def status(self) -> ProgressStatus:
        return ProgressStatus(
            phase=self.phase,
            current_hop=self.current_hop,
            max_hop=self.max_hop,
            percentage=self.percentage,
            logs=self.logs,
        )

    def _emit(self, event: str, data: dict) -> None:
        if self._listener is None:
            return
        try:
            self._listener(event, data)
        except Exception:
            logger.exception("progress listener failed on %s", event)
