"""
Tests for per-cell generation tokens.
"""

import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from core.request_tokens import GenerationTracker


class TestGenerationTracker(unittest.TestCase):

    def setUp(self):
        self.tracker = GenerationTracker()

    def test_latest_token_is_current(self):
        first = self.tracker.next("viewport-1")
        second = self.tracker.next("viewport-1")
        self.assertGreater(second, first)
        self.assertFalse(self.tracker.is_current("viewport-1", first))
        self.assertTrue(self.tracker.is_current("viewport-1", second))

    def test_cells_are_independent(self):
        token = self.tracker.next("viewport-1")
        self.tracker.next("viewport-2")
        self.assertTrue(self.tracker.is_current("viewport-1", token))

    def test_invalidate_drops_outstanding_token(self):
        token = self.tracker.next("viewport-1")
        self.tracker.invalidate("viewport-1")
        self.assertFalse(self.tracker.is_current("viewport-1", token))

    def test_invalidate_all(self):
        a = self.tracker.next("viewport-1")
        b = self.tracker.next("viewport-2")
        self.tracker.invalidate_all()
        self.assertFalse(self.tracker.is_current("viewport-1", a))
        self.assertFalse(self.tracker.is_current("viewport-2", b))

    def test_unknown_cell_has_no_token(self):
        self.assertEqual(self.tracker.current("viewport-9"), 0)


if __name__ == "__main__":
    unittest.main()
