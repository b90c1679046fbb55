from __future__ import annotations

import argparse
import asyncio
import datetime as dt
import logging
import sys
import time
from decimal import Decimal

from hoptrace.config import settings
from hoptrace.core.enums import RunPhase, TraceMode
from hoptrace.core.errors import TracerError
from hoptrace.services.investigation import Investigation
from hoptrace.io.output_writer import write_graph_html, write_graph_json, write_summary_md
from hoptrace.io.session_store import FileSessionStore

from hoptrace.adapters.chain.static_chain_adapter import StaticChainAdapter
from hoptrace.adapters.chain.tronscan_chain_adapter import TronScanChainAdapter
from hoptrace.adapters.risk.static_label_adapter import StaticLabelAdapter
from hoptrace.adapters.risk.supabase_label_adapter import SupabaseLabelAdapter


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="hoptrace", description="Multi-hop TRON counterparty tracer (TRX + USDT)")
    p.add_argument("--address", required=False, help="Seed address to trace")
    p.add_argument("--hops", type=int, default=2, help="Number of hops")
    p.add_argument("--limit", type=int, default=settings.TRACE_DEFAULT_TX_LIMIT, help="Transactions per address")
    p.add_argument("--mode", choices=[m.value for m in TraceMode], default=TraceMode.RELATION.value, help="Traversal mode")
    p.add_argument("--start-time", help="ISO start time (required for timeflow mode)")
    p.add_argument("--min-amount", type=str, default=str(settings.MIN_TRANSFER_AMOUNT), help="Ignore transfers below this amount")
    p.add_argument("--out", default="out", help="Output folder")
    p.add_argument("--html", action="store_true", help="Write a basic HTML visualization alongside graph.json")
    p.add_argument("--monitor", action="store_true", help="Keep polling tracked addresses after the trace")
    p.add_argument("--monitor-cycles", type=int, default=0, help="Stop monitoring after N cycles (0=until Ctrl-C)")
    p.add_argument("--account", help="Print balances for an address and exit")
    p.add_argument("--save-session", help="Save the resulting graph under this slot name")
    p.add_argument("--load-session", help="Restore a saved graph instead of tracing")
    p.add_argument("--list-sessions", action="store_true", help="List saved sessions and exit")
    p.add_argument("--labels-csv", default=settings.RISK_LABELS_CSV, help="Local CSV of address,label,category")
    p.add_argument("--use-static", action="store_true", help="Use static adapters (dev/testing)")
    return p


def _make_progress_reporter(max_hops: int):
    start_time = time.time()
    is_tty = sys.stdout.isatty()

    def _ts() -> str:
        return dt.datetime.now().strftime("%H:%M:%S")

    def _print_line(message: str) -> None:
        if is_tty:
            sys.stdout.write("\r" + message.ljust(88))
            sys.stdout.flush()
        else:
            print(message)

    def _clear_line() -> None:
        if is_tty:
            sys.stdout.write("\r" + (" " * 88) + "\r")
            sys.stdout.flush()

    def progress(event: str, data: dict) -> None:
        if event == "batch":
            _print_line(
                f"Hop {data['hop']}/{max_hops} • "
                f"batch {data['batches_done']}/{data['batches']} • "
                f"{data['percentage']:.0f}%"
            )
            return
        if event == "log":
            _clear_line()
            print(f"[{_ts()}] {data['message']}")
            return
        if event in ("done", "cancelled"):
            _clear_line()
            elapsed = time.time() - start_time
            print(f"[{_ts()}] {event} at hop {data['hop']} in {elapsed:.1f}s")

    return progress


def _build_adapters(args):
    if args.use_static:
        chain = StaticChainAdapter()
    else:
        chain = TronScanChainAdapter()

    if args.labels_csv:
        labels = StaticLabelAdapter.from_csv(args.labels_csv)
    elif settings.SUPABASE_URL and not args.use_static:
        labels = SupabaseLabelAdapter()
    else:
        labels = StaticLabelAdapter()
    return chain, labels


async def _run(args) -> int:
    chain, labels = _build_adapters(args)
    inv = Investigation(chain, labels, listener=_make_progress_reporter(args.hops))
    store = FileSessionStore()

    if args.account:
        detail = await inv.account_detail(args.account)
        if detail is None:
            print(f"No account data for {args.account}", file=sys.stderr)
            return 1
        print(f"Address: {detail.address}")
        print(f"TRX: {detail.balance_trx:.6f}")
        print(f"USDT: {detail.balance_usdt:.6f}")
        print(f"Transactions: {detail.tx_count}")
        return 0

    if args.load_session:
        inv.restore(store.load(args.load_session))
        print(f"Loaded session: {args.load_session} ({len(inv.graph)} nodes)")
    else:
        if not args.address:
            print("Missing --address for tracing", file=sys.stderr)
            return 2
        start_time = dt.datetime.fromisoformat(args.start_time) if args.start_time else None
        try:
            inv.start_trace(
                args.address,
                args.hops,
                per_node_limit=args.limit,
                mode=args.mode,
                start_time=start_time,
                min_amount=Decimal(args.min_amount),
            )
            phase = await inv.wait_trace()
        except TracerError as exc:
            print(f"Error: {exc}", file=sys.stderr)
            return 2
        if phase is RunPhase.CANCELLED:
            print("Trace cancelled.")

    if args.monitor:
        inv.start_monitor()
        try:
            while inv.monitor.is_active:
                await asyncio.sleep(1)
                if args.monitor_cycles and inv.monitor.cycles >= args.monitor_cycles:
                    break
        finally:
            inv.stop_monitor()
            await inv.monitor.wait_stopped()

    graph = inv.snapshot()
    print("Writing outputs...")
    print(f"Wrote: {write_graph_json(graph, args.out)}")
    print(f"Wrote: {write_summary_md(graph, args.out, seed_address=args.address)}")
    if args.html:
        print(f"Wrote: {write_graph_html(graph, args.out)}")
    if args.save_session:
        print(f"Saved session: {store.save(args.save_session, inv.export(), mode=args.mode)}")
    return 0


def main() -> int:
    args = build_arg_parser().parse_args()
    logging.basicConfig(
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.list_sessions:
        for s in FileSessionStore().list():
            print(f"{s['created_at']}  {s['title']}  ({s['mode'] or '-'})")
        return 0

    try:
        return asyncio.run(_run(args))
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
