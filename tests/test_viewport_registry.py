"""
Tests for ViewportRegistry.

Covers layout reconciliation (added, removed and surviving cells), the single
active cell, stack commits, index bounds and signal ordering.
"""

import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from core.layout_resolver import resolve_layout
from core.viewport_registry import ViewportRegistry


class SignalRecorder:
    """Collects registry signals in emission order."""

    def __init__(self, registry):
        self.events = []
        registry.layout_changed.connect(lambda layout: self.events.append(("layout", layout.layout_id)))
        registry.viewport_added.connect(lambda cell_id: self.events.append(("added", cell_id)))
        registry.viewport_removed.connect(lambda cell_id: self.events.append(("removed", cell_id)))
        registry.viewport_updated.connect(lambda cell_id: self.events.append(("updated", cell_id)))
        registry.active_viewport_changed.connect(lambda cell_id: self.events.append(("active", cell_id)))

    def clear(self):
        self.events = []


class TestApplyLayout(unittest.TestCase):

    def setUp(self):
        self.registry = ViewportRegistry()
        self.recorder = SignalRecorder(self.registry)

    def test_first_layout_creates_cells_and_activates_first(self):
        removed = self.registry.apply_layout(resolve_layout("2x2"))
        self.assertEqual(removed, [])
        self.assertEqual(self.registry.viewport_ids(), ["viewport-1", "viewport-2", "viewport-3", "viewport-4"])
        self.assertEqual(self.registry.get_active_viewport_id(), "viewport-1")
        actives = [s.cell_id for s in self.registry.snapshot().values() if s.is_active]
        self.assertEqual(actives, ["viewport-1"])

    def test_shrinking_layout_removes_extra_cells(self):
        self.registry.apply_layout(resolve_layout("2x2"))
        self.recorder.clear()
        removed = self.registry.apply_layout(resolve_layout("1x1"))
        self.assertEqual(removed, ["viewport-2", "viewport-3", "viewport-4"])
        self.assertEqual(self.registry.viewport_ids(), ["viewport-1"])
        self.assertIsNone(self.registry.get_viewport("viewport-2"))
        self.assertEqual(
            self.recorder.events,
            [
                ("layout", "1x1"),
                ("removed", "viewport-2"),
                ("removed", "viewport-3"),
                ("removed", "viewport-4"),
                ("updated", "viewport-1"),
                ("active", "viewport-1"),
            ],
        )

    def test_hidden_cells_get_no_state(self):
        self.registry.apply_layout(resolve_layout("mpr"))
        self.assertEqual(len(self.registry.viewport_ids()), 3)
        self.assertIsNone(self.registry.get_viewport("viewport-4"))

    def test_surviving_cell_keeps_ids_but_loses_stack(self):
        self.registry.apply_layout(resolve_layout("1x1"))
        before = self.registry.get_viewport("viewport-1")
        self.registry.commit_stack("viewport-1", ["a", "b"], "study", "series")
        self.registry.apply_layout(resolve_layout("1x2"))
        after = self.registry.get_viewport("viewport-1")
        self.assertEqual(after.engine_id, before.engine_id)
        self.assertEqual(after.surface_id, before.surface_id)
        self.assertEqual(after.image_ids, ())
        self.assertEqual(after.series_uid, "")

    def test_signals_observe_new_state(self):
        seen = []
        self.registry.layout_changed.connect(lambda layout: seen.append(self.registry.viewport_ids()))
        self.registry.apply_layout(resolve_layout("1x2"))
        self.assertEqual(seen, [["viewport-1", "viewport-2"]])


class TestViewportActions(unittest.TestCase):

    def setUp(self):
        self.registry = ViewportRegistry()
        self.registry.apply_layout(resolve_layout("1x2"))

    def test_set_active_is_exclusive(self):
        self.assertTrue(self.registry.set_active_viewport("viewport-2"))
        self.assertFalse(self.registry.get_viewport("viewport-1").is_active)
        self.assertTrue(self.registry.get_viewport("viewport-2").is_active)
        self.assertEqual(self.registry.get_active_viewport().cell_id, "viewport-2")

    def test_set_active_unknown_cell(self):
        self.assertFalse(self.registry.set_active_viewport("viewport-9"))
        self.assertEqual(self.registry.get_active_viewport_id(), "viewport-1")

    def test_commit_stack_resets_index_and_loading(self):
        self.registry.begin_loading("viewport-1")
        self.assertTrue(self.registry.get_viewport("viewport-1").is_loading)
        self.assertTrue(self.registry.commit_stack("viewport-1", ["a", "b", "c"], "st", "se"))
        state = self.registry.get_viewport("viewport-1")
        self.assertEqual(state.image_ids, ("a", "b", "c"))
        self.assertEqual(state.current_index, 0)
        self.assertFalse(state.is_loading)
        self.assertEqual(state.current_image_id, "a")

    def test_commit_empty_stack_is_rejected(self):
        self.assertFalse(self.registry.commit_stack("viewport-1", []))

    def test_set_current_index_bounds(self):
        self.registry.commit_stack("viewport-1", ["a", "b", "c"])
        self.assertTrue(self.registry.set_current_index("viewport-1", 2))
        self.assertFalse(self.registry.set_current_index("viewport-1", 3))
        self.assertFalse(self.registry.set_current_index("viewport-1", -1))
        self.assertFalse(self.registry.set_current_index("viewport-1", 2))
        self.assertEqual(self.registry.get_viewport("viewport-1").current_index, 2)

    def test_fail_loading_keeps_stack(self):
        self.registry.commit_stack("viewport-1", ["a", "b"])
        self.registry.set_current_index("viewport-1", 1)
        self.registry.begin_loading("viewport-1")
        self.registry.fail_loading("viewport-1", "boom")
        state = self.registry.get_viewport("viewport-1")
        self.assertEqual(state.image_ids, ("a", "b"))
        self.assertEqual(state.current_index, 1)
        self.assertEqual(state.error, "boom")
        self.assertFalse(state.is_loading)
        self.assertTrue(self.registry.clear_error("viewport-1"))
        self.assertIsNone(self.registry.get_viewport("viewport-1").error)

    def test_remove_active_viewport_moves_active(self):
        self.registry.remove_viewport("viewport-1")
        self.assertEqual(self.registry.get_active_viewport_id(), "viewport-2")

    def test_clear(self):
        self.registry.clear()
        self.assertEqual(self.registry.viewport_ids(), [])
        self.assertIsNone(self.registry.get_layout())
        self.assertIsNone(self.registry.get_active_viewport_id())


if __name__ == "__main__":
    unittest.main()
