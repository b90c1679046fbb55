from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import List, Optional

from hoptrace.core.dto import AccountDetail
from hoptrace.core.models import TxRecord


class ChainDataPort(ABC):
    """
    Abstract Class for fetching per-address transfer history.
    """

    # --- TRX + USDT transfers, newest first ---

    @abstractmethod
    async def fetch_transactions(
        self,
        address: str,
        since_ms: int = 0,
        limit: int = 20,
        min_amount: Optional[Decimal] = None,
    ) -> List[TxRecord]:
        """
        Transfers touching ``address`` with timestamp >= ``since_ms`` and
        amount >= ``min_amount``, newest first, at most ``limit``. Both
        filters apply before the limit. Raises DataSourceError when the
        provider could not be reached at all.
        """
        raise NotImplementedError

    # --- balances ---

    @abstractmethod
    async def fetch_account_detail(self, address: str) -> Optional[AccountDetail]:
        raise NotImplementedError
