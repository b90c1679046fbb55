from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from hoptrace.config import settings
from hoptrace.core.enums import NodeCategory, TokenKind, TraceMode


def now_ms() -> int:
    return int(time.time() * 1000)


def to_epoch_ms(value: datetime) -> int:
    # naive datetimes are taken as UTC
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp() * 1000)


def link_key(a: str, b: str) -> Tuple[str, str]:
    return (a, b) if a <= b else (b, a)



# Configuration model

@dataclass(frozen=True)
class TraceConfig:
    """
    User input for one trace session.
    """

    seed: str
    max_hops: int = 2
    per_address_limit: int = settings.TRACE_DEFAULT_TX_LIMIT
    mode: TraceMode = TraceMode.RELATION
    start_time: Optional[datetime] = None     # required in time-flow mode

    min_amount: Decimal = settings.MIN_TRANSFER_AMOUNT

    def initial_cursor(self) -> int:
        if self.mode is TraceMode.TIME_FLOW and self.start_time is not None:
            return to_epoch_ms(self.start_time)
        return 0



# Graph models

@dataclass(frozen=True)
class TxRecord:

    tx_id: str
    sender: str
    receiver: str
    amount: Decimal
    token: TokenKind
    timestamp: int               # ms, chain time

    def counterparty_of(self, address: str) -> str:
        return self.receiver if self.sender == address else self.sender


@dataclass(frozen=True)
class Node:

    id: str
    category: NodeCategory = NodeCategory.TARGET
    weight: int = 10
    label: Optional[str] = None
    is_terminal: bool = False
    is_start: bool = False
    created_at: int = 0          # ms, wall clock; monitor cursor

    # owned by the UI, preserved across merges
    memo: Optional[str] = None
    color: Optional[str] = None
    layout: Dict[str, Any] = field(default_factory=dict, compare=False)


@dataclass(frozen=True)
class Link:

    source: str
    target: str
    value: Decimal
    transactions: Tuple[TxRecord, ...] = ()

    @property
    def key(self) -> Tuple[str, str]:
        return link_key(self.source, self.target)

    @classmethod
    def from_tx(cls, tx: TxRecord) -> "Link":
        return cls(source=tx.sender, target=tx.receiver, value=tx.amount, transactions=(tx,))


@dataclass(frozen=True)
class GraphSnapshot:

    nodes: Tuple[Node, ...] = ()
    links: Tuple[Link, ...] = ()

    def node(self, node_id: str) -> Optional[Node]:
        for n in self.nodes:
            if n.id == node_id:
                return n
        return None

    def link(self, a: str, b: str) -> Optional[Link]:
        k = link_key(a, b)
        for l in self.links:
            if l.key == k:
                return l
        return None
