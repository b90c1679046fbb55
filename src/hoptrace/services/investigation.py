from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from hoptrace.config import settings
from hoptrace.core.cancel import CancelToken
from hoptrace.core.dto import AccountDetail
from hoptrace.core.enums import RunPhase, TraceMode
from hoptrace.core.errors import EngineBusyError
from hoptrace.core.graph import GraphModel
from hoptrace.core.models import GraphSnapshot, TraceConfig, TxRecord
from hoptrace.core.progress import ProgressListener, ProgressTracker
from hoptrace.io.schemas import graph_from_dict, graph_to_dict
from hoptrace.ports.chain_data_port import ChainDataPort
from hoptrace.ports.risk_label_port import RiskLabelPort
from hoptrace.services.live_monitor import LiveMonitor
from hoptrace.services.risk_annotator import RiskAnnotator
from hoptrace.services.trace_engine import TraceEngine

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class InvestigationStatus:
    phase: RunPhase
    current_hop: int
    max_hop: int
    percentage: float
    logs: List[str]
    monitoring: bool
    monitor_refreshing: bool
    monitor_last_updated: Optional[datetime]


class Investigation:
    """
    Control surface for one investigation graph: trace, monitor, user
    edits and session export/restore all share the same GraphModel.
    """

    def __init__(
        self,
        chain: ChainDataPort,
        labels: RiskLabelPort,
        graph: Optional[GraphModel] = None,
        listener: Optional[ProgressListener] = None,
        trace_options: Optional[Dict[str, Any]] = None,
        monitor_options: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.chain = chain
        self.graph = graph or GraphModel()
        self.progress = ProgressTracker(listener=listener)
        annotator = RiskAnnotator(labels)
        self.tracer = TraceEngine(chain, annotator, self.graph, self.progress, **(trace_options or {}))
        self.monitor = LiveMonitor(chain, annotator, self.graph, self.progress, **(monitor_options or {}))
        self._trace_task: Optional[asyncio.Task] = None
        self._trace_cancel: Optional[CancelToken] = None

    # ---------- trace ----------

    def start_trace(
        self,
        seed: str,
        max_hops: int,
        per_node_limit: int = settings.TRACE_DEFAULT_TX_LIMIT,
        mode: Union[TraceMode, str] = TraceMode.RELATION,
        start_time: Optional[datetime] = None,
        min_amount=settings.MIN_TRANSFER_AMOUNT,
    ) -> asyncio.Task:
        cfg = TraceConfig(
            seed=(seed or "").strip(),
            max_hops=max_hops,
            per_address_limit=per_node_limit,
            mode=TraceMode(mode),
            start_time=start_time,
            min_amount=min_amount,
        )
        TraceEngine.validate(cfg)
        if self.trace_running:
            raise EngineBusyError("a trace is already running")
        if self.monitor.is_active:
            raise EngineBusyError("stop the live monitor before starting a new trace")

        self._trace_cancel = CancelToken()
        self._trace_task = asyncio.get_running_loop().create_task(self.tracer.run(cfg, self._trace_cancel))
        return self._trace_task

    @property
    def trace_running(self) -> bool:
        return self._trace_task is not None and not self._trace_task.done()

    def stop_trace(self) -> None:
        self.tracer.stop()
        if self._trace_cancel is not None:
            self._trace_cancel.cancel()

    async def wait_trace(self) -> RunPhase:
        if self._trace_task is None:
            return self.progress.phase
        return await self._trace_task

    # ---------- monitor ----------

    def start_monitor(self) -> asyncio.Task:
        if self.trace_running:
            raise EngineBusyError("stop the trace before starting the live monitor")
        return self.monitor.start()

    def stop_monitor(self) -> None:
        self.monitor.stop()

    # ---------- read side ----------

    def snapshot(self) -> GraphSnapshot:
        return self.graph.snapshot()

    def status(self) -> InvestigationStatus:
        p = self.progress.status()
        return InvestigationStatus(
            phase=p.phase,
            current_hop=p.current_hop,
            max_hop=p.max_hop,
            percentage=p.percentage,
            logs=p.logs,
            monitoring=self.monitor.is_active,
            monitor_refreshing=self.monitor.is_refreshing,
            monitor_last_updated=self.monitor.last_updated,
        )

    async def account_detail(self, address: str) -> Optional[AccountDetail]:
        return await self.chain.fetch_account_detail(address)

    async def recent_history(self, address: str, limit: int = settings.TRACE_DEFAULT_TX_LIMIT) -> List[TxRecord]:
        return await self.chain.fetch_transactions(address, 0, limit, settings.MIN_TRANSFER_AMOUNT)

    # ---------- user edits ----------

    def update_node(self, node_id: str, **changes):
        return self.graph.update_node(node_id, **changes)

    def remove_node(self, node_id: str) -> bool:
        return self.graph.remove_node(node_id)

    # ---------- persistence ----------

    def export(self) -> Dict[str, Any]:
        return graph_to_dict(self.graph.snapshot())

    def restore(self, data: Dict[str, Any]) -> None:
        if self.trace_running:
            raise EngineBusyError("cannot restore while a trace is running")
        self.graph.load(graph_from_dict(data))
        logger.info("restored graph with %d nodes", len(self.graph))
