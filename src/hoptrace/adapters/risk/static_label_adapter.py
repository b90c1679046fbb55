from __future__ import annotations

import csv
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from hoptrace.core.dto import RiskLabel
from hoptrace.core.errors import RiskLookupError
from hoptrace.ports.risk_label_port import RiskLabelPort


class StaticLabelAdapter(RiskLabelPort):
    def __init__(self, labels: Optional[Iterable[RiskLabel]] = None, fail: bool = False) -> None:
        self._labels: Dict[str, RiskLabel] = {l.address: l for l in (labels or [])}
        self._fail = fail
        self.calls: List[List[str]] = []

    @classmethod
    def from_csv(cls, path: str) -> "StaticLabelAdapter":
        """CSV with address,label,category columns."""
        labels = []
        with Path(path).open(newline="", encoding="utf-8") as f:
            for row in csv.DictReader(f):
                addr = (row.get("address") or "").strip()
                if not addr:
                    continue
                labels.append(RiskLabel(
                    address=addr,
                    label=(row.get("label") or "").strip() or None,
                    category=(row.get("category") or "").strip() or None,
                ))
        return cls(labels)

    async def lookup(self, addresses: Sequence[str]) -> Dict[str, RiskLabel]:
        self.calls.append(list(addresses))
        if self._fail:
            raise RiskLookupError("static label source unavailable")
        return {a: self._labels[a] for a in addresses if a in self._labels}
