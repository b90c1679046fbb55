import asyncio
import unittest
from datetime import datetime, timezone
from decimal import Decimal

from hoptrace.adapters.chain.static_chain_adapter import StaticChainAdapter
from hoptrace.adapters.risk.static_label_adapter import StaticLabelAdapter
from hoptrace.core.dto import RiskLabel
from hoptrace.core.enums import NodeCategory, RunPhase, TokenKind, TraceMode
from hoptrace.core.errors import InvalidTraceParams
from hoptrace.core.graph import GraphModel
from hoptrace.core.models import Node, TraceConfig, TxRecord
from hoptrace.core.progress import ProgressTracker
from hoptrace.services.risk_annotator import RiskAnnotator
from hoptrace.services.trace_engine import TraceEngine


def _tx(tx_id, sender, receiver, amount, ts, token=TokenKind.TRX):
    return TxRecord(
        tx_id=tx_id,
        sender=sender,
        receiver=receiver,
        amount=Decimal(str(amount)),
        token=token,
        timestamp=ts,
    )


class _GatedChain(StaticChainAdapter):
    """Blocks fetches for chosen addresses until the gate opens."""

    def __init__(self, gated, **kwargs):
        super().__init__(**kwargs)
        self._gated = set(gated)
        self.entered = asyncio.Event()
        self.gate = asyncio.Event()

    async def fetch_transactions(self, address, since_ms=0, limit=20, min_amount=None):
        if address in self._gated:
            self.entered.set()
            await self.gate.wait()
        return await super().fetch_transactions(address, since_ms, limit, min_amount)


class _BrokenLabels(StaticLabelAdapter):
    async def lookup(self, addresses):
        raise KeyError("unexpected")


class TraceEngineTests(unittest.IsolatedAsyncioTestCase):
    def _make_cfg(self, seed: str, **overrides) -> TraceConfig:
        defaults = dict(
            seed=seed,
            max_hops=1,
            per_address_limit=20,
            mode=TraceMode.RELATION,
            min_amount=Decimal("1"),
        )
        defaults.update(overrides)
        return TraceConfig(**defaults)

    def _make_engine(self, chain, labels=None, graph=None, batch_size=5, progress=None):
        engine = TraceEngine(
            chain=chain,
            annotator=RiskAnnotator(labels or StaticLabelAdapter()),
            graph=graph or GraphModel(),
            progress=progress,
            batch_size=batch_size,
            batch_pause_sec=0,
            clock=lambda: 1000,
        )
        return engine

    async def test_seed_without_transactions_finishes_early(self) -> None:
        engine = self._make_engine(StaticChainAdapter())

        phase = await engine.run(self._make_cfg("SEED", max_hops=3))

        snap = engine.graph.snapshot()
        self.assertEqual(phase, RunPhase.COMPLETED)
        self.assertEqual([n.id for n in snap.nodes], ["SEED"])
        self.assertTrue(snap.nodes[0].is_start)
        self.assertEqual(len(snap.links), 0)
        self.assertEqual(engine.progress.current_hop, 1)
        self.assertEqual(engine.progress.percentage, 100.0)
        self.assertTrue(any("finished early" in line for line in engine.progress.logs))

    async def test_hop_expansion_follows_counterparties(self) -> None:
        chain = StaticChainAdapter(transactions=[
            _tx("t1", "SEED", "MID", 10, 100),
            _tx("t2", "MID", "END", 20, 200),
        ])
        engine = self._make_engine(chain)

        await engine.run(self._make_cfg("SEED", max_hops=2))

        snap = engine.graph.snapshot()
        self.assertEqual({n.id for n in snap.nodes}, {"SEED", "MID", "END"})
        self.assertEqual(len(snap.links), 2)
        self.assertEqual(snap.node("END").category, NodeCategory.TARGET)

    async def test_hop_limit_stops_expansion(self) -> None:
        chain = StaticChainAdapter(transactions=[
            _tx("t1", "SEED", "MID", 10, 100),
            _tx("t2", "MID", "END", 20, 200),
        ])
        engine = self._make_engine(chain)

        await engine.run(self._make_cfg("SEED", max_hops=1))

        snap = engine.graph.snapshot()
        self.assertIsNone(snap.node("END"))
        self.assertEqual([c[0] for c in chain.calls], ["SEED"])

    async def test_risk_hit_is_terminal_and_never_expanded(self) -> None:
        chain = StaticChainAdapter(transactions=[
            _tx("t1", "SEED", "BAD", 10, 100),
            _tx("t2", "BAD", "BEYOND", 20, 200),
        ])
        labels = StaticLabelAdapter([RiskLabel("BAD", "Scam Wallet", "scam")])
        engine = self._make_engine(chain, labels)

        await engine.run(self._make_cfg("SEED", max_hops=3))

        snap = engine.graph.snapshot()
        bad = snap.node("BAD")
        self.assertTrue(bad.is_terminal)
        self.assertEqual(bad.category, NodeCategory.RISK)
        self.assertEqual(bad.label, "Scam Wallet")
        self.assertIsNone(snap.node("BEYOND"))
        self.assertNotIn("BAD", [c[0] for c in chain.calls])

    async def test_transaction_seen_from_both_sides_is_merged_once(self) -> None:
        chain = StaticChainAdapter(transactions=[_tx("t1", "SEED", "MID", 10, 100)])
        engine = self._make_engine(chain)

        await engine.run(self._make_cfg("SEED", max_hops=2))

        link = engine.graph.snapshot().link("SEED", "MID")
        self.assertEqual(link.value, Decimal("10"))
        self.assertEqual(len(link.transactions), 1)

    async def test_two_transactions_between_same_pair_aggregate(self) -> None:
        chain = StaticChainAdapter(transactions=[
            _tx("t1", "A", "B", 5, 100),
            _tx("t2", "B", "A", 7, 200, token=TokenKind.USDT),
        ])
        engine = self._make_engine(chain)

        await engine.run(self._make_cfg("A", max_hops=2))

        snap = engine.graph.snapshot()
        self.assertEqual(len(snap.links), 1)
        self.assertEqual(snap.links[0].value, Decimal("12"))
        self.assertEqual(len(snap.links[0].transactions), 2)

    async def test_transfers_below_min_amount_are_ignored(self) -> None:
        chain = StaticChainAdapter(transactions=[
            _tx("dust", "SEED", "DUST", "0.5", 100),
            _tx("t1", "SEED", "MID", 3, 200),
        ])
        engine = self._make_engine(chain)

        await engine.run(self._make_cfg("SEED"))

        snap = engine.graph.snapshot()
        self.assertIsNone(snap.node("DUST"))
        self.assertIsNotNone(snap.node("MID"))

    async def test_dust_ahead_of_real_transfer_does_not_hide_it(self) -> None:
        chain = StaticChainAdapter(transactions=[
            _tx("d1", "SPAM", "SEED", "0.000001", 900),
            _tx("d2", "SPAM", "SEED", "0.000001", 800),
            _tx("d3", "SPAM", "SEED", "0.000001", 700),
            _tx("real", "SEED", "MID", 50, 100),
        ])
        engine = self._make_engine(chain)

        await engine.run(self._make_cfg("SEED", per_address_limit=2))

        snap = engine.graph.snapshot()
        self.assertIsNotNone(snap.node("MID"))
        self.assertIsNone(snap.node("SPAM"))

    async def test_progress_advances_per_batch_within_a_hop(self) -> None:
        chain = StaticChainAdapter(transactions=[
            _tx("s1", "SEED", "C1", 10, 300),
            _tx("s2", "SEED", "C2", 10, 200),
            _tx("s3", "SEED", "C3", 10, 100),
        ])
        seen = []
        progress = ProgressTracker(listener=lambda event, data: seen.append(data["percentage"]) if event == "batch" else None)
        engine = self._make_engine(chain, batch_size=2, progress=progress)

        phase = await engine.run(self._make_cfg("SEED", max_hops=2))

        self.assertEqual(seen, [50.0, 75.0, 99.0])
        self.assertEqual(phase, RunPhase.COMPLETED)
        self.assertEqual(progress.percentage, 100.0)

    async def test_time_flow_follows_only_later_transactions(self) -> None:
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        t0 = int(start.timestamp() * 1000)
        chain = StaticChainAdapter(transactions=[
            _tx("old", "SEED", "OLD", 10, t0 - 5000),
            _tx("in1", "SEED", "MID", 10, t0 + 3000),
            _tx("in2", "MID", "SEED", 10, t0 + 1000),
            _tx("before", "PAST", "MID", 10, t0 + 500),
            _tx("after", "MID", "NEXT", 10, t0 + 4000),
        ])
        engine = self._make_engine(chain)

        await engine.run(self._make_cfg("SEED", max_hops=2, mode=TraceMode.TIME_FLOW, start_time=start))

        snap = engine.graph.snapshot()
        self.assertIsNone(snap.node("OLD"))
        self.assertIsNone(snap.node("PAST"))
        self.assertIsNotNone(snap.node("NEXT"))
        self.assertIn(("SEED", t0, 20), chain.calls)
        self.assertIn(("MID", t0 + 1000, 20), chain.calls)

    async def test_time_flow_cursor_is_earliest_arrival(self) -> None:
        t0 = int(datetime(2024, 1, 1, tzinfo=timezone.utc).timestamp() * 1000)
        chain = StaticChainAdapter(transactions=[
            _tx("s1", "SEED", "A", 10, t0 + 100),
            _tx("s2", "SEED", "B", 10, t0 + 200),
            _tx("late", "B", "X", 10, t0 + 5000),
            _tx("early", "A", "X", 10, t0 + 3000),
        ])
        engine = self._make_engine(chain)

        start = datetime.fromtimestamp(t0 / 1000, tz=timezone.utc)
        await engine.run(self._make_cfg("SEED", max_hops=3, mode=TraceMode.TIME_FLOW, start_time=start))

        self.assertIn(("A", t0 + 100, 20), chain.calls)
        self.assertIn(("B", t0 + 200, 20), chain.calls)
        self.assertIn(("X", t0 + 3000, 20), chain.calls)

    async def test_time_flow_requires_start_time(self) -> None:
        graph = GraphModel()
        graph.merge_nodes([Node(id="KEEP")])
        engine = self._make_engine(StaticChainAdapter(), graph=graph)

        with self.assertRaises(InvalidTraceParams):
            await engine.run(self._make_cfg("SEED", mode=TraceMode.TIME_FLOW))

        self.assertTrue(graph.has_node("KEEP"))
        self.assertEqual(engine.phase, RunPhase.IDLE)

    async def test_empty_seed_rejected(self) -> None:
        engine = self._make_engine(StaticChainAdapter())
        with self.assertRaises(InvalidTraceParams):
            await engine.run(self._make_cfg("  "))

    async def test_upstream_failure_yields_empty_result(self) -> None:
        chain = StaticChainAdapter(
            transactions=[
                _tx("t1", "SEED", "DOWN", 10, 100),
                _tx("t2", "SEED", "UP", 10, 90),
                _tx("t3", "UP", "FAR", 10, 80),
                _tx("t4", "DOWN", "HIDDEN", 10, 70),
            ],
            failing=["DOWN"],
        )
        engine = self._make_engine(chain)

        phase = await engine.run(self._make_cfg("SEED", max_hops=2))

        snap = engine.graph.snapshot()
        self.assertEqual(phase, RunPhase.COMPLETED)
        self.assertIsNotNone(snap.node("FAR"))
        self.assertIsNone(snap.node("HIDDEN"))

    async def test_risk_lookup_failure_defaults_to_non_terminal(self) -> None:
        chain = StaticChainAdapter(transactions=[_tx("t1", "SEED", "BAD", 10, 100)])
        labels = StaticLabelAdapter([RiskLabel("BAD", "Scam", "scam")], fail=True)
        engine = self._make_engine(chain, labels)

        await engine.run(self._make_cfg("SEED"))

        bad = engine.graph.get_node("BAD")
        self.assertFalse(bad.is_terminal)
        self.assertEqual(bad.category, NodeCategory.TARGET)

    async def test_one_risk_lookup_per_batch(self) -> None:
        chain = StaticChainAdapter(transactions=[
            _tx("a", "SEED", "C1", 10, 300),
            _tx("b", "SEED", "C2", 10, 200),
            _tx("c", "SEED", "C3", 10, 100),
            _tx("d", "C1", "N1", 10, 50),
            _tx("e", "C2", "N2", 10, 40),
            _tx("f", "C3", "N3", 10, 30),
        ])
        labels = StaticLabelAdapter()
        engine = self._make_engine(chain, labels, batch_size=5)

        await engine.run(self._make_cfg("SEED", max_hops=2))

        self.assertEqual(len(labels.calls), 2)
        self.assertEqual(sorted(labels.calls[1]), ["N1", "N2", "N3"])

    async def test_cancel_mid_batch_keeps_launched_results(self) -> None:
        txs = [_tx(f"s{i}", "SEED", f"C{i}", 10, 1000 - i) for i in range(1, 7)]
        txs += [_tx(f"n{i}", f"C{i}", f"N{i}", 10, 10) for i in range(1, 7)]
        chain = _GatedChain(gated={"C1", "C2"}, transactions=txs)
        engine = self._make_engine(chain, batch_size=2)

        task = asyncio.create_task(engine.run(self._make_cfg("SEED", max_hops=2)))
        await asyncio.wait_for(chain.entered.wait(), timeout=2)
        engine.stop()
        engine.stop()
        chain.gate.set()
        phase = await asyncio.wait_for(task, timeout=2)

        snap = engine.graph.snapshot()
        scanned = [c[0] for c in chain.calls]
        self.assertEqual(phase, RunPhase.CANCELLED)
        self.assertIsNotNone(snap.node("N1"))
        self.assertIsNotNone(snap.node("N2"))
        self.assertIsNone(snap.node("N3"))
        self.assertNotIn("C3", scanned)
        self.assertLess(engine.progress.percentage, 100.0)

    async def test_unexpected_error_moves_run_to_failed(self) -> None:
        chain = StaticChainAdapter(transactions=[_tx("t1", "SEED", "MID", 10, 100)])
        engine = self._make_engine(chain, _BrokenLabels())

        with self.assertRaises(KeyError):
            await engine.run(self._make_cfg("SEED"))

        self.assertEqual(engine.phase, RunPhase.FAILED)
        self.assertTrue(engine.progress.logs[0].startswith("Trace failed"))
        self.assertLess(engine.progress.percentage, 100.0)


if __name__ == "__main__":
    unittest.main()
