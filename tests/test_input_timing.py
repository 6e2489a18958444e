"""
Tests for wheel throttling, resize debouncing and drag-to-scroll sessions.
"""

import asyncio
import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from core.input_timing import Debounce, DragScrollSession, Throttle, fraction_to_index


class TestFractionToIndex(unittest.TestCase):

    def test_endpoints_and_middle(self):
        self.assertEqual(fraction_to_index(0.0, 10), 0)
        self.assertEqual(fraction_to_index(1.0, 10), 9)
        self.assertEqual(fraction_to_index(0.5, 10), 5)
        self.assertEqual(fraction_to_index(0.5, 3), 1)

    def test_out_of_range_is_clamped(self):
        self.assertEqual(fraction_to_index(-0.3, 10), 0)
        self.assertEqual(fraction_to_index(1.7, 10), 9)
        self.assertEqual(fraction_to_index(float("nan"), 10), 0)

    def test_empty_and_single_stacks(self):
        self.assertEqual(fraction_to_index(0.7, 0), 0)
        self.assertEqual(fraction_to_index(0.7, 1), 0)


class TestThrottle(unittest.IsolatedAsyncioTestCase):

    async def test_first_call_runs_immediately(self):
        calls = []
        throttle = Throttle(calls.append, 50)
        throttle(1)
        self.assertEqual(calls, [1])

    async def test_burst_collapses_into_trailing_call_with_latest_args(self):
        calls = []
        throttle = Throttle(calls.append, 30)
        throttle(1)
        throttle(2)
        throttle(3)
        self.assertEqual(calls, [1])
        self.assertTrue(throttle.has_pending)
        await asyncio.sleep(0.08)
        self.assertEqual(calls, [1, 3])
        self.assertFalse(throttle.has_pending)

    async def test_cancel_drops_trailing_call(self):
        calls = []
        throttle = Throttle(calls.append, 30)
        throttle(1)
        throttle(-1)
        throttle.cancel()
        await asyncio.sleep(0.08)
        self.assertEqual(calls, [1])

    async def test_calls_after_interval_run_immediately(self):
        calls = []
        throttle = Throttle(calls.append, 10)
        throttle(1)
        await asyncio.sleep(0.05)
        throttle(2)
        self.assertEqual(calls, [1, 2])


class TestDebounce(unittest.IsolatedAsyncioTestCase):

    async def test_only_last_call_runs(self):
        calls = []
        debounce = Debounce(calls.append, 30)
        for n in range(5):
            debounce(n)
        self.assertEqual(calls, [])
        self.assertTrue(debounce.is_pending)
        await asyncio.sleep(0.08)
        self.assertEqual(calls, [4])

    async def test_flush_and_cancel(self):
        calls = []
        debounce = Debounce(calls.append, 1000)
        debounce("a")
        debounce.flush()
        self.assertEqual(calls, ["a"])
        debounce("b")
        debounce.cancel()
        self.assertFalse(debounce.is_pending)
        self.assertEqual(calls, ["a"])


class TestDragScrollSession(unittest.TestCase):

    def setUp(self):
        self.attached = 0
        self.detached = 0
        self.indices = []
        self.session = DragScrollSession(self._attach, self._detach, self.indices.append)

    def _attach(self):
        self.attached += 1

    def _detach(self):
        self.detached += 1

    def test_listeners_attached_and_detached_once(self):
        self.session.start(0.0, 10)
        self.session.start(0.5, 10)
        self.assertTrue(self.session.is_active)
        self.session.finish()
        self.session.finish()
        self.session.cancel()
        self.assertEqual((self.attached, self.detached), (1, 1))
        self.assertFalse(self.session.is_active)

    def test_updates_report_changed_indices_only(self):
        self.session.start(0.0, 10)
        self.assertIsNone(self.session.update(0.01, 10))
        self.assertEqual(self.session.update(0.5, 10), 5)
        self.assertEqual(self.session.update(2.0, 10), 9)
        self.assertEqual(self.indices, [0, 5, 9])

    def test_updates_ignored_when_inactive(self):
        self.assertIsNone(self.session.update(0.5, 10))
        self.session.start()
        self.session.cancel()
        self.assertIsNone(self.session.update(0.5, 10))
        self.assertEqual(self.indices, [])

    def test_context_manager_detaches_on_error(self):
        with self.assertRaises(RuntimeError):
            with self.session:
                raise RuntimeError("pointer lost")
        self.assertEqual((self.attached, self.detached), (1, 1))


if __name__ == "__main__":
    unittest.main()
