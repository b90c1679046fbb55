from __future__ import annotations

import json
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List

from hoptrace.config import settings

_SLOT_RE = re.compile(r"[^A-Za-z0-9_.-]+")


class FileSessionStore:
    """
    Named save slots for an investigation graph, one JSON file per slot.
    The graph payload is stored as given.
    """

    def __init__(self, base_dir: str = settings.SESSION_DIR) -> None:
        self._dir = Path(base_dir)

    def _path(self, slot: str) -> Path:
        name = _SLOT_RE.sub("_", slot.strip())
        if not name:
            raise ValueError("session slot name is required")
        return self._dir / f"{name}.json"

    def save(self, slot: str, graph_data: Dict[str, Any], mode: str = "") -> str:
        self._dir.mkdir(parents=True, exist_ok=True)
        out_path = self._path(slot)
        record = {
            "title": slot,
            "mode": mode,
            "created_at": datetime.now(timezone.utc).isoformat(),
            "graph_data": graph_data,
        }
        with out_path.open("w", encoding="utf-8") as f:
            json.dump(record, f, indent=2)
        return str(out_path)

    def load(self, slot: str) -> Dict[str, Any]:
        path = self._path(slot)
        if not path.exists():
            raise FileNotFoundError(f"no saved session named {slot!r}")
        with path.open("r", encoding="utf-8") as f:
            record = json.load(f)
        return record.get("graph_data") or {"nodes": [], "links": []}

    def list(self) -> List[Dict[str, str]]:
        if not self._dir.exists():
            return []
        out = []
        for p in sorted(self._dir.glob("*.json")):
            try:
                with p.open("r", encoding="utf-8") as f:
                    record = json.load(f)
            except (OSError, ValueError):
                continue
            out.append({
                "title": record.get("title", p.stem),
                "mode": record.get("mode", ""),
                "created_at": record.get("created_at", ""),
            })
        out.sort(key=lambda r: r["created_at"], reverse=True)
        return out
