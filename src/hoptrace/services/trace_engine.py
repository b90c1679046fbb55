from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

from hoptrace.config import settings
from hoptrace.core.cancel import CancelToken
from hoptrace.core.enums import RunPhase, TraceMode
from hoptrace.core.errors import DataSourceError, InvalidTraceParams
from hoptrace.core.graph import GraphModel
from hoptrace.core.models import Link, Node, TraceConfig, TxRecord, now_ms
from hoptrace.core.progress import ProgressTracker
from hoptrace.ports.chain_data_port import ChainDataPort
from hoptrace.services.risk_annotator import RiskAnnotator, RiskHit, counterparty_node, seed_node

logger = logging.getLogger(__name__)


def short_addr(addr: str) -> str:
    if len(addr) <= 12:
        return addr
    return f"{addr[:6]}...{addr[-4:]}"


@dataclass
class _TraceRun:
    """Everything one trace session reads and writes besides the graph."""

    cfg: TraceConfig
    cancel: CancelToken
    frontier: Dict[str, int] = field(default_factory=dict)
    visited: Set[str] = field(default_factory=set)
    seen_tx_ids: Set[str] = field(default_factory=set)
    stop_logged: bool = False


@dataclass(frozen=True)
class _AddressScan:
    address: str
    txs: List[TxRecord]


class TraceEngine:
    """
    Bounded breadth-first crawl from a seed address.

    - Traversal: hops, each hop scanned in fixed-size concurrent batches
    - Data: TRX + USDT transfers through the chain port
    - Stops at: risk-labelled addresses (never expanded), empty frontier,
      hop limit, or cancellation
    """

    def __init__(
        self,
        chain: ChainDataPort,
        annotator: RiskAnnotator,
        graph: GraphModel,
        progress: Optional[ProgressTracker] = None,
        batch_size: int = settings.TRACE_BATCH_SIZE,
        batch_pause_sec: float = settings.TRACE_BATCH_PAUSE_SEC,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        if batch_size <= 0:
            raise ValueError("batch_size must be > 0")
        self.chain = chain
        self.annotator = annotator
        self.graph = graph
        self.progress = progress or ProgressTracker()
        self._batch_size = batch_size
        self._batch_pause = batch_pause_sec
        self._clock = clock
        self._run: Optional[_TraceRun] = None

    @property
    def phase(self) -> RunPhase:
        return self.progress.phase

    @staticmethod
    def validate(cfg: TraceConfig) -> None:
        if not cfg.seed or not cfg.seed.strip():
            raise InvalidTraceParams("seed address is required")
        if cfg.max_hops < 1:
            raise InvalidTraceParams("max_hops must be >= 1")
        if cfg.per_address_limit < 1:
            raise InvalidTraceParams("per_address_limit must be >= 1")
        if cfg.mode is TraceMode.TIME_FLOW and cfg.start_time is None:
            raise InvalidTraceParams("time-flow mode requires a start time")

    def stop(self) -> None:
        run = self._run
        if run is None or run.cancel.cancelled:
            return
        run.cancel.cancel()
        run.stop_logged = True
        self.progress.log("Trace stopped by user.")
        self.progress.cancel()

    async def run(self, cfg: TraceConfig, cancel: Optional[CancelToken] = None) -> RunPhase:
        self.validate(cfg)
        run = _TraceRun(cfg=cfg, cancel=cancel or CancelToken())
        self._run = run
        try:
            self._begin(run)
            finished_at = await self._crawl(run)
        except Exception as e:
            logger.exception("trace %s failed", cfg.seed)
            self.progress.log(f"Trace failed: {e!r}")
            self.progress.fail()
            raise
        finally:
            self._run = None

        if run.cancel.cancelled:
            # stopped through the token before the run began
            if not run.stop_logged:
                self.progress.log("Trace stopped by user.")
            self.progress.cancel()
        else:
            self.progress.complete(finished_at)
            self.progress.log("Analysis complete!")

        snap = self.graph.snapshot()
        logger.info("trace %s: %s, %d nodes, %d links", cfg.seed, self.phase.value, len(snap.nodes), len(snap.links))
        return self.phase

    # -------------------------
    # Traversal
    # -------------------------

    def _begin(self, run: _TraceRun) -> None:
        cfg = run.cfg
        seed = cfg.seed.strip()
        mode_name = "Time-Flow" if cfg.mode is TraceMode.TIME_FLOW else "Relation"

        self.graph.reset()
        self.graph.merge_nodes([seed_node(seed, self._clock())])
        run.frontier = {seed: cfg.initial_cursor()}
        run.visited = {seed}

        self.progress.begin(cfg.max_hops)
        self.progress.log(f"Starting {mode_name} Trace: {seed}")

    async def _crawl(self, run: _TraceRun) -> int:
        """Returns the last hop actually processed."""
        max_hops = run.cfg.max_hops
        for hop in range(1, max_hops + 1):
            if run.cancel.cancelled:
                return hop - 1
            if not run.frontier:
                self.progress.log(f"Trace finished early at Hop {hop - 1}")
                return hop - 1

            self.progress.hop_started(hop, len(run.frontier))
            self.progress.log(f"Hop {hop}/{max_hops}: Scanning {len(run.frontier)} nodes...")
            run.frontier = await self._scan_hop(run, hop, last_hop=(hop == max_hops))
        return max_hops

    async def _scan_hop(self, run: _TraceRun, hop: int, last_hop: bool) -> Dict[str, int]:
        entries = list(run.frontier.items())
        batches = [entries[i:i + self._batch_size] for i in range(0, len(entries), self._batch_size)]
        next_frontier: Dict[str, int] = {}

        for idx, batch in enumerate(batches, start=1):
            if run.cancel.cancelled:
                break

            scans = await self._scan_batch(run, batch)

            fresh = {
                tx.counterparty_of(s.address)
                for s in scans
                for tx in s.txs
            } - run.visited
            hits = await self.annotator.annotate(fresh)

            self._merge_batch(run, scans, hits, next_frontier)
            self.progress.batch_done(hop, idx, len(batches))

            if last_hop and idx == len(batches):
                break
            if await run.cancel.sleep(self._batch_pause):
                break

        return next_frontier

    async def _scan_batch(self, run: _TraceRun, batch: Sequence[Tuple[str, int]]) -> List[_AddressScan]:
        results = await asyncio.gather(
            *(self._scan_address(run, addr, cursor) for addr, cursor in batch),
            return_exceptions=True,
        )
        scans: List[_AddressScan] = []
        for (addr, _), res in zip(batch, results):
            if isinstance(res, BaseException):
                logger.warning("scan of %s failed: %r", addr, res)
                continue
            scans.append(res)
        return scans

    async def _scan_address(self, run: _TraceRun, address: str, cursor: int) -> _AddressScan:
        if run.cancel.cancelled:
            return _AddressScan(address, [])

        cfg = run.cfg
        since = cursor if cfg.mode is TraceMode.TIME_FLOW else 0
        try:
            txs = await self.chain.fetch_transactions(address, since, cfg.per_address_limit, cfg.min_amount)
        except DataSourceError as e:
            logger.warning("fetch failed for %s: %s", address, e)
            self.progress.log(f"Fetch failed for {short_addr(address)}")
            return _AddressScan(address, [])

        return _AddressScan(address, list(txs))

    # -------------------------
    # Merge
    # -------------------------

    def _merge_batch(
        self,
        run: _TraceRun,
        scans: List[_AddressScan],
        hits: Dict[str, RiskHit],
        next_frontier: Dict[str, int],
    ) -> None:
        time_flow = run.cfg.mode is TraceMode.TIME_FLOW
        nodes: List[Node] = []
        links: List[Link] = []

        for scan in scans:
            for tx in scan.txs:
                if tx.tx_id in run.seen_tx_ids:
                    continue
                run.seen_tx_ids.add(tx.tx_id)
                links.append(Link.from_tx(tx))

                target = tx.counterparty_of(scan.address)
                if target not in run.visited:
                    hit = hits.get(target)
                    node = counterparty_node(target, hit, self._clock())
                    nodes.append(node)
                    run.visited.add(target)
                    if hit is not None:
                        self.progress.log(f"Hit: {hit.label} ({short_addr(target)})")
                    if not node.is_terminal:
                        next_frontier[target] = tx.timestamp if time_flow else 0
                elif time_flow and target in next_frontier:
                    next_frontier[target] = min(next_frontier[target], tx.timestamp)

        if nodes or links:
            self.graph.merge(nodes, links)
