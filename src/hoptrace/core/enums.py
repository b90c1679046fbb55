from __future__ import annotations

from enum import Enum
from typing import Optional


class NodeCategory(str, Enum):
    SAFE = "safe"
    EXCHANGE = "exchange"
    RISK = "risk"
    TARGET = "target"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: Optional[str]) -> "NodeCategory":
        """Lenient parse for stored graphs; unrecognised groups become UNKNOWN."""
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            return cls.UNKNOWN

    @classmethod
    def from_label_category(cls, raw: Optional[str]) -> "NodeCategory":
        """
        Map a free-form risk-label category onto the closed set.

        Any address present in the label source is a hit, so anything that
        is not clearly an exchange or a whitelisted address counts as risk.
        """
        key = (raw or "").strip().lower()
        if key in _EXCHANGE_WORDS:
            return cls.EXCHANGE
        if key in _SAFE_WORDS:
            return cls.SAFE
        return cls.RISK


_EXCHANGE_WORDS = frozenset({"exchange", "cex", "dex", "hot wallet", "deposit"})
_SAFE_WORDS = frozenset({"safe", "whitelist", "trusted"})


class TokenKind(str, Enum):
    TRX = "TRX"
    USDT = "USDT"


class TraceMode(str, Enum):
    RELATION = "relation"
    TIME_FLOW = "timeflow"


class RunPhase(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"
