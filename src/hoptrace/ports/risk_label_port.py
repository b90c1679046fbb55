from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Dict, Sequence

from hoptrace.core.dto import RiskLabel


class RiskLabelPort(ABC):
    @abstractmethod
    async def lookup(self, addresses: Sequence[str]) -> Dict[str, RiskLabel]:
        """Labels for the addresses found; absent addresses are unknown."""
        raise NotImplementedError
