from __future__ import annotations

from decimal import Decimal
from typing import Any, Dict

from hoptrace.core.enums import NodeCategory, TokenKind
from hoptrace.core.models import GraphSnapshot, Link, Node, TxRecord


def _dec_to_str(x: Decimal) -> str:
    # keep as string for JSON precision safety
    return format(x, "f")


def tx_to_dict(t: TxRecord) -> Dict[str, Any]:
    return {
        "tx_id": t.tx_id,
        "sender": t.sender,
        "receiver": t.receiver,
        "amount": _dec_to_str(t.amount),
        "token": t.token.value,
        "timestamp": t.timestamp,
    }


def graph_to_dict(g: GraphSnapshot) -> Dict[str, Any]:
    return {
        "nodes": [
            {
                "id": n.id,
                "group": n.category.value,
                "weight": n.weight,
                "label": n.label,
                "is_terminal": n.is_terminal,
                "is_start": n.is_start,
                "created_at": n.created_at,
                "memo": n.memo,
                "color": n.color,
                "layout": dict(n.layout),
            }
            for n in g.nodes
        ],
        "links": [
            {
                "source": l.source,
                "target": l.target,
                "value": _dec_to_str(l.value),
                "transactions": [tx_to_dict(t) for t in l.transactions],
            }
            for l in g.links
        ],
    }


def _tx_from_dict(d: Dict[str, Any]) -> TxRecord:
    return TxRecord(
        tx_id=str(d["tx_id"]),
        sender=str(d["sender"]),
        receiver=str(d["receiver"]),
        amount=Decimal(str(d.get("amount", "0"))),
        token=TokenKind(d.get("token", TokenKind.TRX.value)),
        timestamp=int(d.get("timestamp", 0)),
    )


def graph_from_dict(data: Dict[str, Any]) -> GraphSnapshot:
    nodes = tuple(
        Node(
            id=str(n["id"]),
            category=NodeCategory.parse(n.get("group")),
            weight=int(n.get("weight", 10)),
            label=n.get("label"),
            is_terminal=bool(n.get("is_terminal", False)),
            is_start=bool(n.get("is_start", False)),
            created_at=int(n.get("created_at", 0)),
            memo=n.get("memo"),
            color=n.get("color"),
            layout=dict(n.get("layout") or {}),
        )
        for n in data.get("nodes", [])
    )
    links = tuple(
        Link(
            source=str(l["source"]),
            target=str(l["target"]),
            value=Decimal(str(l.get("value", "0"))),
            transactions=tuple(_tx_from_dict(t) for t in l.get("transactions", [])),
        )
        for l in data.get("links", [])
    )
    return GraphSnapshot(nodes=nodes, links=links)
