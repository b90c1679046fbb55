from __future__ import annotations

import itertools
import threading
from typing import Iterable, Optional


class CredentialPool:
    """Round-robin API keys; an empty pool hands out None."""

    def __init__(self, keys: Iterable[str] = ()) -> None:
        self._keys = [k for k in keys if k]
        self._cycle = itertools.cycle(self._keys) if self._keys else None
        self._lock = threading.Lock()

    def next(self) -> Optional[str]:
        if self._cycle is None:
            return None
        with self._lock:
            return next(self._cycle)

    def __len__(self) -> int:
        return len(self._keys)
