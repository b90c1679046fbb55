from __future__ import annotations

import json
from decimal import Decimal
from pathlib import Path
from typing import Dict, Optional

from hoptrace.core.enums import NodeCategory, TokenKind
from hoptrace.core.models import GraphSnapshot
from hoptrace.io.schemas import graph_to_dict


def write_graph_json(graph: GraphSnapshot, out_dir: str, filename: str = "graph.json") -> str:
    p = Path(out_dir)
    p.mkdir(parents=True, exist_ok=True)

    out_path = p / filename
    with out_path.open("w", encoding="utf-8") as f:
        json.dump(graph_to_dict(graph), f, indent=2)

    return str(out_path)


def write_summary_md(
    graph: GraphSnapshot,
    out_dir: str,
    filename: str = "summary.md",
    seed_address: Optional[str] = None,
) -> str:
    """
    Minimal, investigator-friendly summary.
    """
    p = Path(out_dir)
    p.mkdir(parents=True, exist_ok=True)

    out_path = p / filename
    seed = (seed_address or "").strip()

    hits = [n for n in graph.nodes if n.is_terminal]
    heaviest = sorted(graph.links, key=lambda l: l.value, reverse=True)[:15]

    volume: Dict[TokenKind, Decimal] = {}
    tx_count = 0
    for l in graph.links:
        for t in l.transactions:
            volume[t.token] = volume.get(t.token, Decimal("0")) + t.amount
            tx_count += 1

    def short(addr: str) -> str:
        return addr if len(addr) <= 14 else f"{addr[:10]}..."

    lines = []
    lines.append("# Trace Summary\n")
    lines.append(f"- Nodes: **{len(graph.nodes)}**\n")
    lines.append(f"- Links: **{len(graph.links)}**\n")
    lines.append(f"- Transactions: **{tx_count}**\n")
    if seed:
        lines.append(f"- Seed: **{seed}**\n")
    for token, amount in sorted(volume.items(), key=lambda x: x[0].value):
        lines.append(f"- {token.value} volume: **{amount:.2f}**\n")
    lines.append("\n")

    lines.append("## Risk Hits\n\n")
    if not hits:
        lines.append("_No labelled addresses were reached._\n\n")
    else:
        for n in sorted(hits, key=lambda n: (n.category.value, n.id)):
            lines.append(f"- **{n.label or 'Detected Address'}** ({n.category.value}) | {n.id}\n")
        lines.append("\n")

    counts: Dict[NodeCategory, int] = {}
    for n in graph.nodes:
        counts[n.category] = counts.get(n.category, 0) + 1
    lines.append("## Nodes by Category\n\n")
    for cat, count in sorted(counts.items(), key=lambda x: x[0].value):
        lines.append(f"- **{cat.value}**: {count}\n")
    lines.append("\n")

    lines.append("## Heaviest Links\n\n")
    if not heaviest:
        lines.append("_No transfers found._\n")
    else:
        for l in heaviest:
            lines.append(
                f"- **{l.value:.2f}** | {short(l.source)} <-> {short(l.target)} "
                f"| {len(l.transactions)} tx\n"
            )
    lines.append("\n")

    lines.append("## Limitations\n\n")
    lines.append("- Only TRX and USDT (TRC-20) transfers are included.\n")
    lines.append("- Per-address history is capped; upstream results may be incomplete.\n")
    lines.append("- Risk labels come from an external source and are not verified here.\n")

    with out_path.open("w", encoding="utf-8") as f:
        f.writelines(lines)

    return str(out_path)


def write_graph_html(graph: GraphSnapshot, out_dir: str, filename: str = "index.html") -> str:
    p = Path(out_dir)
    p.mkdir(parents=True, exist_ok=True)

    out_path = p / filename

    html = """<!doctype html>
<html lang="en">
<head>
  <meta charset="utf-8" />
  <title>hoptrace</title>
  <style>
    body { margin: 0; font-family: "SF Mono", "Menlo", "Consolas", monospace; background: #0f1115; color: #e6e8ef; }
    header { padding: 12px 18px; border-bottom: 1px solid #23283a; }
    header h1 { margin: 0; font-size: 16px; }
    #stats { font-size: 12px; color: #9aa3b2; margin-top: 4px; }
    #network { width: 100%; height: calc(100vh - 60px); background: #0b0d12; }
  </style>
</head>
<body>
  <header>
    <h1>hoptrace</h1>
    <div id="stats">Loading...</div>
  </header>
  <div id="network"></div>

  <script src="https://unpkg.com/vis-network/standalone/umd/vis-network.min.js"></script>
  <script>
    const COLORS = { safe: "#7bd389", exchange: "#f7b32b", risk: "#ef4444", target: "#5bd1d7", unknown: "#9aa3b2" };
    const short = (addr) => (addr && addr.length > 12 ? addr.slice(0, 6) + "..." + addr.slice(-4) : addr || "");

    fetch("./graph.json")
      .then((r) => r.json())
      .then((data) => {
        const nodes = data.nodes.map((n) => ({
          id: n.id,
          label: n.label || short(n.id),
          title: n.id + (n.label ? " (" + n.label + ")" : ""),
          color: n.color || COLORS[n.group] || COLORS.unknown,
          shape: n.is_start ? "star" : (n.is_terminal ? "diamond" : "dot"),
          size: n.weight,
          font: { color: "#e6e8ef" },
        }));
        const edges = data.links.map((l) => ({
          from: l.source,
          to: l.target,
          arrows: "to",
          width: 1 + Math.log10(1 + parseFloat(l.value)),
          title: `${l.value} | ${l.transactions.length} tx`,
        }));
        new vis.Network(document.getElementById("network"), { nodes, edges }, {
          physics: { stabilization: { iterations: 200 } },
          interaction: { hover: true },
        });
        document.getElementById("stats").textContent = `Nodes: ${nodes.length} • Links: ${edges.length}`;
      })
      .catch(() => {
        document.getElementById("stats").textContent = "Failed to load graph.json";
      });
  </script>
</body>
</html>
"""

    with out_path.open("w", encoding="utf-8") as f:
        f.write(html)

    return str(out_path)
