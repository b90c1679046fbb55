from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Sequence

import requests

from hoptrace.config import settings
from hoptrace.core.dto import RiskLabel
from hoptrace.core.errors import RiskLookupError
from hoptrace.ports.risk_label_port import RiskLabelPort

logger = logging.getLogger(__name__)


class SupabaseLabelAdapter(RiskLabelPort):
    """
    Reads the ``address_labels`` table through Supabase's PostgREST API.
    Rows: address, label_name, category.
    """

    def __init__(
        self,
        base_url: Optional[str] = settings.SUPABASE_URL,
        api_key: Optional[str] = settings.SUPABASE_KEY,
        table: str = settings.RISK_LABEL_TABLE,
        timeout_sec: int = settings.RISK_LABEL_TIMEOUT_SEC,
        chunk_size: int = 100,
        session: Optional[requests.Session] = None,
    ) -> None:
        if not base_url:
            raise ValueError("SUPABASE_URL is required")
        self._url = f"{base_url.rstrip('/')}/rest/v1/{table}"
        self._api_key = api_key or ""
        self._timeout = timeout_sec
        self._chunk_size = max(1, chunk_size)
        self._session = session or requests.Session()

    def _call(self, addresses: Sequence[str]) -> List[Dict[str, Any]]:
        params = {
            "select": "address,label_name,category",
            "address": "in.(" + ",".join(addresses) + ")",
        }
        headers = {
            "apikey": self._api_key,
            "Authorization": f"Bearer {self._api_key}",
            "Accept": "application/json",
        }
        try:
            resp = self._session.get(self._url, params=params, headers=headers, timeout=self._timeout)
            resp.raise_for_status()
            data = resp.json()
        except (requests.RequestException, ValueError) as e:
            raise RiskLookupError(f"Supabase label lookup failed: {e}") from e
        if not isinstance(data, list):
            raise RiskLookupError(f"Invalid Supabase response: {data!r}")
        return data

    def _lookup_sync(self, addresses: Sequence[str]) -> Dict[str, RiskLabel]:
        out: Dict[str, RiskLabel] = {}
        for i in range(0, len(addresses), self._chunk_size):
            for row in self._call(addresses[i:i + self._chunk_size]):
                if not isinstance(row, dict) or not row.get("address"):
                    continue
                addr = str(row["address"]).strip()
                out[addr] = RiskLabel(
                    address=addr,
                    label=row.get("label_name"),
                    category=row.get("category"),
                )
        return out

    async def lookup(self, addresses: Sequence[str]) -> Dict[str, RiskLabel]:
        clean = sorted({a.strip() for a in addresses if a and a.strip()})
        if not clean:
            return {}
        logger.debug("label lookup for %d address(es)", len(clean))
        return await asyncio.to_thread(self._lookup_sync, clean)
