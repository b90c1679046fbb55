import asyncio
import logging
import re
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

import requests

from hoptrace.config.settings import (
    FETCH_DELAY_SEC,
    SUN_PER_UNIT,
    TRONSCAN_API_KEY_HEADER,
    TRONSCAN_API_KEYS,
    TRONSCAN_BASE_URL,
    TRONSCAN_OVERFETCH_FACTOR,
    TRONSCAN_TIMEOUT_SEC,
    USDT_CONTRACT,
)

from hoptrace.adapters.chain.credential_pool import CredentialPool
from hoptrace.adapters.chain.fetch_queue import FetchQueue
from hoptrace.core.dto import AccountDetail, RawTrc20Transfer, RawTrxTransfer
from hoptrace.core.enums import TokenKind
from hoptrace.core.errors import DataSourceError, RateLimitError
from hoptrace.core.models import TxRecord
from hoptrace.ports.chain_data_port import ChainDataPort

logger = logging.getLogger(__name__)

TRANSFER_CONTRACT_TYPE = 1
_ADDRESS_RE = re.compile(r"^T[1-9A-HJ-NP-Za-km-z]{33}$")


def is_valid_address(address: str) -> bool:
    return bool(address) and bool(_ADDRESS_RE.match(address))


class TronScanChainAdapter(ChainDataPort):

    def __init__(
        self,
        base_url: str = TRONSCAN_BASE_URL,
        api_keys: Optional[List[str]] = None,
        queue: Optional[FetchQueue] = None,
        timeout_sec: int = TRONSCAN_TIMEOUT_SEC,
        session: Optional[requests.Session] = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._credentials = CredentialPool(TRONSCAN_API_KEYS if api_keys is None else api_keys)
        self._queue = queue or FetchQueue(FETCH_DELAY_SEC)
        self._timeout = timeout_sec
        self._session = session or requests.Session()

    @property
    def queue(self) -> FetchQueue:
        return self._queue

    # ---------- internal ----------

    def _call(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        headers = {"Accept": "application/json"}
        key = self._credentials.next()
        if key:
            headers[TRONSCAN_API_KEY_HEADER] = key

        url = f"{self._base_url}/{path.lstrip('/')}"
        try:
            resp = self._session.get(url, params=params, headers=headers, timeout=self._timeout)
        except requests.RequestException as e:
            raise DataSourceError(f"TronScan request failed: {e}") from e

        if resp.status_code == 429:
            raise RateLimitError(f"TronScan rate limited ({path})")
        if not resp.ok:
            raise DataSourceError(f"TronScan Error: {resp.status_code} ({path})")
        try:
            data = resp.json()
        except ValueError as e:
            raise DataSourceError(f"TronScan returned invalid JSON ({path})") from e
        if not isinstance(data, dict):
            raise DataSourceError(f"Invalid TronScan response: {data!r}")
        return data

    async def _queued_call(self, path: str, params: Dict[str, Any]) -> Dict[str, Any]:
        logger.debug("queue %s %s", path, params.get("address") or params.get("relatedAddress"))
        return await self._queue.submit(lambda: asyncio.to_thread(self._call, path, params))

    @staticmethod
    def _to_units(raw: Any) -> Decimal:
        try:
            return Decimal(str(raw)) / SUN_PER_UNIT
        except (InvalidOperation, TypeError):
            return Decimal("0")

    @staticmethod
    def _int(raw: Any) -> int:
        try:
            return int(raw)
        except (TypeError, ValueError):
            return 0

    # ---------- raw pages ----------

    async def list_trx_transfers(self, address: str, limit: int) -> List[RawTrxTransfer]:
        data = await self._queued_call("transaction", {
            "sort": "-timestamp",
            "count": "true",
            "limit": limit,
            "start": 0,
            "address": address,
        })
        rows = data.get("data") if isinstance(data.get("data"), list) else []
        return [
            RawTrxTransfer(
                tx_hash=str(r.get("hash") or ""),
                timestamp=self._int(r.get("timestamp")),
                owner_address=str(r.get("ownerAddress") or ""),
                to_address=str(r.get("toAddress") or ""),
                contract_type=self._int(r.get("contractType")),
                amount_sun=self._int(r.get("amount")),
            )
            for r in rows
            if isinstance(r, dict)
        ]

    async def list_trc20_transfers(
        self,
        address: str,
        limit: int,
        contract_address: str = USDT_CONTRACT,
    ) -> List[RawTrc20Transfer]:
        data = await self._queued_call("token_trc20/transfers", {
            "limit": limit,
            "start": 0,
            "sort": "-timestamp",
            "count": "true",
            "relatedAddress": address,
            "contract_address": contract_address,
        })
        rows = data.get("token_transfers") if isinstance(data.get("token_transfers"), list) else []
        return [
            RawTrc20Transfer(
                tx_hash=str(r.get("transaction_id") or ""),
                timestamp=self._int(r.get("block_ts")),
                from_address=str(r.get("from_address") or ""),
                to_address=str(r.get("to_address") or ""),
                contract_address=str(r.get("contract_address") or contract_address),
                quant_raw=self._int(r.get("quant")),
            )
            for r in rows
            if isinstance(r, dict)
        ]

    # ---------- port methods ----------

    async def fetch_transactions(
        self,
        address: str,
        since_ms: int = 0,
        limit: int = 20,
        min_amount: Optional[Decimal] = None,
    ) -> List[TxRecord]:
        if not is_valid_address(address):
            logger.warning("skipping invalid address %r", address)
            return []

        page = max(1, limit) * TRONSCAN_OVERFETCH_FACTOR
        out: List[TxRecord] = []
        failures: List[Exception] = []

        try:
            for t in await self.list_trx_transfers(address, page):
                if t.timestamp < since_ms or t.contract_type != TRANSFER_CONTRACT_TYPE:
                    continue
                out.append(TxRecord(
                    tx_id=t.tx_hash,
                    sender=t.owner_address,
                    receiver=t.to_address,
                    amount=self._to_units(t.amount_sun),
                    token=TokenKind.TRX,
                    timestamp=t.timestamp,
                ))
        except DataSourceError as e:
            logger.warning("TronScan TRX failed for %s: %s", address, e)
            failures.append(e)

        try:
            for t in await self.list_trc20_transfers(address, page):
                if t.timestamp < since_ms:
                    continue
                out.append(TxRecord(
                    tx_id=t.tx_hash,
                    sender=t.from_address,
                    receiver=t.to_address,
                    amount=self._to_units(t.quant_raw),
                    token=TokenKind.USDT,
                    timestamp=t.timestamp,
                ))
        except DataSourceError as e:
            logger.warning("TronScan USDT failed for %s: %s", address, e)
            failures.append(e)

        if len(failures) == 2:
            raise DataSourceError(f"TronScan unavailable for {address}: {failures[-1]}")

        # amount filter applies before the limit
        if min_amount is not None:
            out = [t for t in out if t.amount >= min_amount]
        out.sort(key=lambda t: t.timestamp, reverse=True)
        return out[:limit]

    async def fetch_account_detail(self, address: str) -> Optional[AccountDetail]:
        try:
            data = await self._queued_call("account", {"address": address})
        except DataSourceError as e:
            logger.warning("account detail failed for %s: %s", address, e)
            return None

        balances = data.get("trc20token_balances") if isinstance(data.get("trc20token_balances"), list) else []
        usdt = next((b for b in balances if isinstance(b, dict) and b.get("tokenId") == USDT_CONTRACT), None)

        return AccountDetail(
            address=str(data.get("address") or address),
            balance_trx=self._to_units(data.get("balance") or 0),
            balance_usdt=self._to_units(usdt.get("balance")) if usdt else Decimal("0"),
            tx_count=self._int(data.get("totalTransactionCount")),
        )
