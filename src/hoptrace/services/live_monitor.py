from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Callable, Dict, List, Optional, Set, Tuple

from hoptrace.config import settings
from hoptrace.core.cancel import CancelToken
from hoptrace.core.errors import DataSourceError
from hoptrace.core.graph import GraphModel
from hoptrace.core.models import Link, Node, TxRecord, now_ms
from hoptrace.core.progress import ProgressTracker
from hoptrace.ports.chain_data_port import ChainDataPort
from hoptrace.services.risk_annotator import RiskAnnotator, counterparty_node
from hoptrace.services.trace_engine import short_addr

logger = logging.getLogger(__name__)


class LiveMonitor:
    """
    Periodic single-layer rescan of every non-terminal node.

    Addresses are polled one after another with a short pause so the
    fetch queue is never flooded. Transaction ids seen during the
    monitor's lifetime are never merged twice. The graph is never reset.
    """

    def __init__(
        self,
        chain: ChainDataPort,
        annotator: RiskAnnotator,
        graph: GraphModel,
        progress: Optional[ProgressTracker] = None,
        poll_sec: float = settings.MONITOR_POLL_SEC,
        address_pause_sec: float = settings.MONITOR_ADDRESS_PAUSE_SEC,
        tx_limit: int = settings.MONITOR_TX_LIMIT,
        min_amount=settings.MIN_TRANSFER_AMOUNT,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.chain = chain
        self.annotator = annotator
        self.graph = graph
        self.progress = progress or ProgressTracker()
        self._poll = poll_sec
        self._address_pause = address_pause_sec
        self._tx_limit = tx_limit
        self._min_amount = min_amount
        self._clock = clock

        self._processed: Set[str] = set()
        self._cancel: Optional[CancelToken] = None
        self._task: Optional[asyncio.Task] = None
        self.last_updated: Optional[datetime] = None
        self.is_refreshing = False
        self.cycles = 0

    @property
    def is_active(self) -> bool:
        # a stopped loop may still be finishing its last cycle
        return (
            self._task is not None
            and not self._task.done()
            and self._cancel is not None
            and not self._cancel.cancelled
        )

    def start(self) -> asyncio.Task:
        """Schedule the recurring cycle (first one runs immediately)."""
        if self.is_active:
            return self._task
        # transactions already in the graph count as processed
        self._processed |= self.graph.transaction_ids()
        self._cancel = CancelToken()
        self._task = asyncio.get_running_loop().create_task(self._loop(self._cancel))
        self.progress.log("Live monitoring started")
        return self._task

    def stop(self) -> None:
        if self._cancel is None or self._cancel.cancelled:
            return
        self._cancel.cancel()
        self.last_updated = None
        self.progress.log("Live monitoring stopped")

    async def wait_stopped(self) -> None:
        if self._task is not None:
            await self._task

    async def _loop(self, cancel: CancelToken) -> None:
        while not cancel.cancelled:
            try:
                await self.run_cycle(cancel)
            except Exception:
                logger.exception("monitor cycle failed")
            if await cancel.sleep(self._poll):
                break

    # -------------------------
    # One cycle
    # -------------------------

    async def run_cycle(self, cancel: Optional[CancelToken] = None) -> int:
        """Scan all tracked addresses once; returns transactions merged."""
        cancel = cancel or CancelToken()
        self.is_refreshing = True
        try:
            active = self.graph.active_nodes()
            found: List[Tuple[str, TxRecord]] = []
            for node in active:
                if await cancel.sleep(self._address_pause):
                    break
                found.extend((node.id, tx) for tx in await self._new_transactions(node))

            merged = 0
            if found:
                merged = await self._merge(found)
            self.cycles += 1
            return merged
        finally:
            if not cancel.cancelled:
                self.last_updated = datetime.now()
            self.is_refreshing = False

    async def _new_transactions(self, node: Node) -> List[TxRecord]:
        try:
            txs = await self.chain.fetch_transactions(node.id, node.created_at, self._tx_limit, self._min_amount)
        except DataSourceError as e:
            logger.warning("monitor fetch failed for %s: %s", node.id, e)
            return []

        out: List[TxRecord] = []
        for tx in txs:
            if tx.tx_id in self._processed:
                continue
            self._processed.add(tx.tx_id)
            out.append(tx)
        return out

    async def _merge(self, found: List[Tuple[str, TxRecord]]) -> int:
        counterparties = {tx.counterparty_of(addr) for addr, tx in found}
        unknown = {a for a in counterparties if not self.graph.has_node(a)}
        hits = await self.annotator.annotate(unknown)

        nodes: Dict[str, Node] = {}
        links: List[Link] = []
        for addr, tx in found:
            target = tx.counterparty_of(addr)
            if target in unknown and target not in nodes:
                hit = hits.get(target)
                nodes[target] = counterparty_node(target, hit, self._clock())
                if hit is not None:
                    self.progress.log(f"Hit: {hit.label}")
                else:
                    self.progress.log(f"Expanded: {short_addr(target)}")
            links.append(Link.from_tx(tx))

        return self.graph.merge(nodes.values(), links)
