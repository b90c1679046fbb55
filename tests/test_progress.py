import asyncio
import unittest

from hoptrace.core.cancel import CancelToken
from hoptrace.core.enums import RunPhase
from hoptrace.core.progress import ProgressTracker


class ProgressTrackerTests(unittest.TestCase):
    def test_percentage_counts_hops_and_batches(self) -> None:
        p = ProgressTracker()
        p.begin(4)

        p.batch_done(hop=2, batches_done=1, total_batches=2)

        self.assertAlmostEqual(p.percentage, 37.5)

    def test_percentage_held_below_100_until_complete(self) -> None:
        p = ProgressTracker()
        p.begin(1)

        p.batch_done(hop=1, batches_done=3, total_batches=3)
        self.assertEqual(p.percentage, 99.0)
        self.assertEqual(p.phase, RunPhase.RUNNING)

        p.complete()
        self.assertEqual(p.percentage, 100.0)
        self.assertEqual(p.phase, RunPhase.COMPLETED)

    def test_fail_only_leaves_running(self) -> None:
        p = ProgressTracker()
        p.fail()
        self.assertEqual(p.phase, RunPhase.IDLE)

        p.begin(2)
        p.fail()
        p.cancel()
        self.assertEqual(p.phase, RunPhase.FAILED)

    def test_logs_are_newest_first_and_bounded(self) -> None:
        p = ProgressTracker(log_limit=2)
        p.log("one")
        p.log("two")
        p.log("three")
        self.assertEqual(p.logs, ["three", "two"])

    def test_cancel_only_from_running(self) -> None:
        events = []
        p = ProgressTracker(listener=lambda e, d: events.append(e))
        p.cancel()
        self.assertEqual(p.phase, RunPhase.IDLE)

        p.begin(2)
        p.cancel()
        p.cancel()
        self.assertEqual(p.phase, RunPhase.CANCELLED)
        self.assertEqual(events.count("cancelled"), 1)

    def test_listener_errors_do_not_propagate(self) -> None:
        def bad(event, data):
            raise RuntimeError("render failed")

        p = ProgressTracker(listener=bad)
        p.begin(1)
        p.log("still fine")
        self.assertEqual(p.logs, ["still fine"])


class CancelTokenTests(unittest.IsolatedAsyncioTestCase):
    async def test_sleep_wakes_on_cancel(self) -> None:
        token = CancelToken()
        loop = asyncio.get_running_loop()
        loop.call_later(0.01, token.cancel)

        started = loop.time()
        woke = await token.sleep(5)

        self.assertTrue(woke)
        self.assertLess(loop.time() - started, 1)

    async def test_sleep_times_out_without_cancel(self) -> None:
        token = CancelToken()
        self.assertFalse(await token.sleep(0.01))
        token.cancel()
        token.cancel()
        self.assertTrue(token.cancelled)
        self.assertTrue(await token.sleep(5))


if __name__ == "__main__":
    unittest.main()
