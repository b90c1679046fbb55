from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, Optional

from hoptrace.core.enums import NodeCategory
from hoptrace.core.errors import DataSourceError
from hoptrace.core.models import Node
from hoptrace.ports.risk_label_port import RiskLabelPort

logger = logging.getLogger(__name__)

DEFAULT_LABEL = "Detected Address"
SEED_WEIGHT = 20
NODE_WEIGHT = 10


@dataclass(frozen=True)
class RiskHit:
    address: str
    category: NodeCategory
    label: str


class RiskAnnotator:
    """
    Batch address -> risk hit lookup.

    This is the only place raw label categories are interpreted. A lookup
    failure is treated as "no matches".
    """

    def __init__(self, labels: RiskLabelPort) -> None:
        self._labels = labels

    async def annotate(self, addresses: Iterable[str]) -> Dict[str, RiskHit]:
        batch = sorted({a for a in addresses if a})
        if not batch:
            return {}
        try:
            found = await self._labels.lookup(batch)
        except DataSourceError as e:
            logger.warning("risk lookup failed for %d address(es): %s", len(batch), e)
            return {}

        hits: Dict[str, RiskHit] = {}
        for addr, row in found.items():
            hits[addr] = RiskHit(
                address=addr,
                category=NodeCategory.from_label_category(row.category),
                label=row.label or DEFAULT_LABEL,
            )
        return hits


def counterparty_node(address: str, hit: Optional[RiskHit], created_at: int) -> Node:
    """A newly discovered address; any label hit stops expansion there."""
    if hit is None:
        return Node(id=address, category=NodeCategory.TARGET, weight=NODE_WEIGHT, created_at=created_at)
    return Node(
        id=address,
        category=hit.category,
        weight=NODE_WEIGHT,
        label=hit.label,
        is_terminal=True,
        created_at=created_at,
    )


def seed_node(address: str, created_at: int) -> Node:
    return Node(
        id=address,
        category=NodeCategory.TARGET,
        weight=SEED_WEIGHT,
        is_start=True,
        created_at=created_at,
    )
