"""
Tests for layout resolution.

Covers named layouts, hidden and spanning cells, custom grids, and the 1x1
fallback for unknown or malformed identifiers.
"""

import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from core.layout_resolver import (
    available_layouts,
    custom_layout_id,
    resolve_layout,
)


class TestNamedLayouts(unittest.TestCase):
    """Named layouts from the fixed table."""

    def test_one_by_one(self):
        layout = resolve_layout("1x1")
        self.assertEqual((layout.rows, layout.cols), (1, 1))
        self.assertEqual(layout.cell_ids(), ["viewport-1"])
        self.assertFalse(layout.is_fallback)

    def test_two_by_two_is_row_major(self):
        layout = resolve_layout("2x2")
        self.assertEqual(layout.visible_count, 4)
        positions = [cell.position for cell in layout.visible_cells]
        self.assertEqual(positions, [(0, 0), (0, 1), (1, 0), (1, 1)])
        self.assertEqual(layout.cell_ids(), ["viewport-1", "viewport-2", "viewport-3", "viewport-4"])

    def test_mpr_hides_fourth_cell(self):
        layout = resolve_layout("mpr")
        self.assertEqual(layout.visible_count, 3)
        self.assertEqual(len(layout.cell_ids(include_hidden=True)), 4)
        self.assertNotIn("viewport-4", layout.cell_ids())
        hidden = [cell for cell in layout.cells if cell.is_hidden]
        self.assertEqual([cell.id for cell in hidden], ["viewport-4"])

    def test_alt_layout_spans_top_row(self):
        layout = resolve_layout("2x2-alt")
        top = layout.visible_cells[0]
        self.assertEqual((top.row_span, top.col_span), (1, 2))
        self.assertEqual(layout.visible_count, 3)

    def test_every_named_layout_resolves_without_fallback(self):
        for layout_id in available_layouts():
            with self.subTest(layout_id=layout_id):
                layout = resolve_layout(layout_id)
                self.assertFalse(layout.is_fallback)
                self.assertEqual(layout.layout_id, layout_id)
                self.assertGreaterEqual(layout.visible_count, 1)

    def test_resolution_is_deterministic(self):
        self.assertEqual(resolve_layout("3d-main"), resolve_layout("3d-main"))


class TestCustomLayouts(unittest.TestCase):
    """custom-<rows>x<cols> identifiers."""

    def test_custom_grid_size_and_order(self):
        layout = resolve_layout("custom-3x4")
        self.assertEqual((layout.rows, layout.cols), (3, 4))
        self.assertEqual(layout.visible_count, 12)
        self.assertEqual(layout.visible_cells[4].position, (1, 0))
        self.assertEqual(layout.visible_cells[4].id, "viewport-5")

    def test_custom_layout_id_round_trip(self):
        layout = resolve_layout(custom_layout_id(2, 3))
        self.assertEqual(layout.layout_id, "custom-2x3")
        self.assertEqual(layout.visible_count, 6)

    def test_malformed_custom_layouts_fall_back(self):
        for layout_id in ("custom-", "custom-0x2", "custom-2x", "custom-axb", "custom-2x2x2", "custom--1x2"):
            with self.subTest(layout_id=layout_id):
                layout = resolve_layout(layout_id)
                self.assertTrue(layout.is_fallback)
                self.assertEqual(layout.layout_id, "1x1")
                self.assertEqual(layout.requested_id, layout_id)


class TestFallback(unittest.TestCase):
    """Unknown identifiers never raise."""

    def test_unknown_layout_falls_back_to_single_cell(self):
        layout = resolve_layout("5x5-bogus")
        self.assertTrue(layout.is_fallback)
        self.assertEqual(layout.cell_ids(), ["viewport-1"])
        self.assertIn("5x5-bogus", layout.fallback_reason)

    def test_empty_and_none_fall_back(self):
        self.assertTrue(resolve_layout("").is_fallback)
        self.assertTrue(resolve_layout(None).is_fallback)


if __name__ == "__main__":
    unittest.main()
