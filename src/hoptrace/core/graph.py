from __future__ import annotations

import logging
import threading
from dataclasses import replace
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Set, Tuple

from hoptrace.core.models import GraphSnapshot, Link, Node, link_key

logger = logging.getLogger(__name__)

_UNSET = object()


class GraphModel:
    """
    The shared investigation graph.

    Every mutation (engine merges, user edits, session restore) goes through
    this class and is applied under one lock, so a reader calling
    ``snapshot()`` sees either all of an operation or none of it. Nodes and
    links are immutable values; updates replace them by id.
    """

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._nodes: Dict[str, Node] = {}
        self._links: Dict[Tuple[str, str], Link] = {}

    # ---------- reads ----------

    def snapshot(self) -> GraphSnapshot:
        with self._lock:
            return GraphSnapshot(nodes=tuple(self._nodes.values()), links=tuple(self._links.values()))

    def get_node(self, node_id: str) -> Optional[Node]:
        with self._lock:
            return self._nodes.get(node_id)

    def has_node(self, node_id: str) -> bool:
        with self._lock:
            return node_id in self._nodes

    def active_nodes(self) -> List[Node]:
        """Nodes that may still be expanded (not risk-flagged)."""
        with self._lock:
            return [n for n in self._nodes.values() if not n.is_terminal]

    def transaction_ids(self) -> Set[str]:
        with self._lock:
            return {tx.tx_id for l in self._links.values() for tx in l.transactions}

    def __len__(self) -> int:
        with self._lock:
            return len(self._nodes)

    # ---------- merges ----------

    def reset(self) -> None:
        with self._lock:
            self._nodes.clear()
            self._links.clear()

    def merge_nodes(self, nodes: Iterable[Node]) -> None:
        with self._lock:
            for n in nodes:
                self._merge_node(n)

    def merge_links(self, links: Iterable[Link]) -> int:
        """Returns the number of transaction records actually added."""
        with self._lock:
            return sum(self._merge_link(l) for l in links)

    def merge(self, nodes: Iterable[Node], links: Iterable[Link]) -> int:
        """Node and link upsert as one operation."""
        with self._lock:
            self.merge_nodes(nodes)
            return self.merge_links(links)

    def _merge_node(self, incoming: Node) -> None:
        existing = self._nodes.get(incoming.id)
        if existing is None:
            self._nodes[incoming.id] = incoming
            return

        self._nodes[incoming.id] = replace(
            existing,
            category=incoming.category,
            weight=incoming.weight,
            label=incoming.label,
            is_terminal=incoming.is_terminal,
            is_start=existing.is_start or incoming.is_start,
            memo=existing.memo if existing.memo is not None else incoming.memo,
            color=existing.color if existing.color is not None else incoming.color,
            layout=existing.layout or incoming.layout,
        )

    def _merge_link(self, incoming: Link) -> int:
        if incoming.source not in self._nodes or incoming.target not in self._nodes:
            logger.debug("dropping link %s-%s: endpoint not in graph", incoming.source, incoming.target)
            return 0

        key = incoming.key
        existing = self._links.get(key)
        if existing is None:
            txs = _unique_by_id(incoming.transactions, set())
            value = sum((t.amount for t in txs), Decimal("0")) if incoming.transactions else incoming.value
            self._links[key] = replace(incoming, value=value, transactions=tuple(txs))
            return len(txs)

        known = {t.tx_id for t in existing.transactions}
        fresh = _unique_by_id(incoming.transactions, known)
        if incoming.transactions:
            added = sum((t.amount for t in fresh), Decimal("0"))
        else:
            added = incoming.value
        self._links[key] = replace(
            existing,
            value=existing.value + added,
            transactions=existing.transactions + tuple(fresh),
        )
        return len(fresh)

    # ---------- user edits ----------

    def update_node(self, node_id: str, memo=_UNSET, color=_UNSET, label=_UNSET) -> Optional[Node]:
        changes = {}
        if memo is not _UNSET:
            changes["memo"] = memo
        if color is not _UNSET:
            changes["color"] = color
        if label is not _UNSET:
            changes["label"] = label
        with self._lock:
            node = self._nodes.get(node_id)
            if node is None:
                return None
            node = replace(node, **changes)
            self._nodes[node_id] = node
            return node

    def update_layout(self, positions: Dict[str, Dict[str, object]]) -> None:
        """Store renderer-owned coordinates; opaque to the engines."""
        with self._lock:
            for node_id, layout in positions.items():
                node = self._nodes.get(node_id)
                if node is not None:
                    self._nodes[node_id] = replace(node, layout=dict(layout))

    def remove_node(self, node_id: str) -> bool:
        with self._lock:
            if self._nodes.pop(node_id, None) is None:
                return False
            for key in [k for k in self._links if node_id in k]:
                del self._links[key]
            return True

    # ---------- restore ----------

    def load(self, snapshot: GraphSnapshot) -> None:
        """Replace the whole graph; links with a missing endpoint are dropped."""
        nodes = {n.id: n for n in snapshot.nodes}
        links: Dict[Tuple[str, str], Link] = {}
        for l in snapshot.links:
            if l.source not in nodes or l.target not in nodes:
                continue
            key = link_key(l.source, l.target)
            if key in links:
                prev = links[key]
                links[key] = replace(prev, value=prev.value + l.value, transactions=prev.transactions + l.transactions)
            else:
                links[key] = l
        with self._lock:
            self._nodes = nodes
            self._links = links


def _unique_by_id(txs, known: Set[str]) -> list:
    out = []
    seen = set(known)
    for t in txs:
        if t.tx_id in seen:
            continue
        seen.add(t.tx_id)
        out.append(t)
    return out
