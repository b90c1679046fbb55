from hoptrace.adapters.chain.fetch_queue import FetchQueue
from hoptrace.core.dto import AccountDetail
from hoptrace.core.errors import DataSourceError
from hoptrace.core.models import TxRecord
from hoptrace.ports.chain_data_port import ChainDataPort
from typing import Dict, Iterable, List, Optional, Tuple


class StaticChainAdapter(ChainDataPort):
    def __init__(self,
                 transactions: Optional[Iterable[TxRecord]] = None,
                 accounts: Optional[Dict[str, AccountDetail]] = None,
                 failing: Optional[Iterable[str]] = None,
                 queue: Optional[FetchQueue] = None,
                 ):
        self._txs: List[TxRecord] = list(transactions or [])
        self._accounts = accounts or {}
        self._failing = set(failing or [])
        self._queue = queue
        self.calls: List[Tuple[str, int, int]] = []

    def add(self, *txs: TxRecord) -> None:
        """Simulate new chain activity between polls."""
        self._txs.extend(txs)

    async def fetch_transactions(self, address, since_ms=0, limit=20, min_amount=None):
        if self._queue is not None:
            return await self._queue.submit(lambda: self._fetch(address, since_ms, limit, min_amount))
        return await self._fetch(address, since_ms, limit, min_amount)

    async def _fetch(self, address, since_ms, limit, min_amount):
        self.calls.append((address, since_ms, limit))
        if address in self._failing:
            raise DataSourceError(f"static failure for {address}")
        items = [
            t for t in self._txs
            if (t.sender == address or t.receiver == address)
            and t.timestamp >= since_ms
            and (min_amount is None or t.amount >= min_amount)
        ]
        items.sort(key=lambda x: x.timestamp, reverse=True)
        return items[:limit]

    async def fetch_account_detail(self, address):
        return self._accounts.get(address)
