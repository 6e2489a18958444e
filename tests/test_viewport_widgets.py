"""
Tests for the viewport widgets (gui.viewport_cell_widget, gui.viewport_grid,
gui.stack_scrollbar), the main window tool and navigation actions, and the
worklist query builder.

The grid is driven through a real ViewerSession with the Qt rendering toolkit;
no study is opened, so no images are fetched.
Requires PySide6 and a QApplication.
"""

import os
import shutil
import sys
import tempfile
import unittest
from unittest import mock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from PySide6.QtCore import QEvent, QPointF, Qt
from PySide6.QtGui import QKeySequence, QMouseEvent
from PySide6.QtWidgets import QApplication

from core.dicom_models import DisplayMetadata
from core.rendering_toolkit import ANGLE_TOOL, LENGTH_TOOL, MOUSE_LEFT, WINDOW_LEVEL_TOOL
from core.viewer_session import ViewerSession
from core.viewport_registry import ViewportState
from fakes import FakeDataSource
from gui.main_window import MainWindow
from gui.qt_rendering_toolkit import QtRenderingToolkit
from gui.study_list import build_query
from gui.viewport_cell_widget import ViewportCellWidget
from gui.viewport_grid import ViewportGrid
from utils.config_manager import ConfigManager


def wheel_event(delta_y):
    event = mock.MagicMock()
    event.angleDelta.return_value.y.return_value = delta_y
    return event


class QtTestCase(unittest.IsolatedAsyncioTestCase):
    """Creates the QApplication once; timers need the running test loop."""

    @classmethod
    def setUpClass(cls):
        if QApplication.instance() is None:
            cls._app = QApplication(sys.argv)


class TestViewportCellWidget(QtTestCase):

    async def asyncSetUp(self):
        self.cell = ViewportCellWidget("viewport-0", wheel_throttle_ms=80, resize_debounce_ms=300)
        self.scrolls = []
        self.cell.scroll_requested.connect(lambda cell_id, delta: self.scrolls.append((cell_id, delta)))

    async def asyncTearDown(self):
        self.cell.detach()
        self.cell.deleteLater()

    async def test_update_state_shows_position(self):
        state = ViewportState("viewport-0", "engine-0", "surface-0", image_ids=("a", "b", "c"),
                              current_index=1, is_active=True)
        self.cell.update_state(state)
        self.assertEqual(self.cell.bottom_right_label.text(), "Frame 2 / 3")
        self.assertTrue(self.cell.is_active)
        self.assertTrue(self.cell.error_panel.isHidden())
        self.assertEqual(self.cell.scrollbar.count, 3)
        self.assertTrue(self.cell.scrollbar.up_button.isEnabled())
        self.assertTrue(self.cell.scrollbar.down_button.isEnabled())

    async def test_scrollbar_buttons_at_stack_ends(self):
        state = ViewportState("viewport-0", "engine-0", "surface-0", image_ids=("a", "b"), current_index=0)
        self.cell.update_state(state)
        self.assertFalse(self.cell.scrollbar.up_button.isEnabled())
        self.assertTrue(self.cell.scrollbar.down_button.isEnabled())

    async def test_error_state_shows_panel(self):
        state = ViewportState("viewport-0", "engine-0", "surface-0", error="Failed to load series")
        self.cell.update_state(state)
        self.assertFalse(self.cell.error_panel.isHidden())
        self.assertEqual(self.cell.error_label.text(), "Failed to load series")
        self.assertEqual(self.cell.bottom_right_label.text(), "")

    async def test_retry_button_emits_cell_id(self):
        retried = []
        self.cell.retry_requested.connect(retried.append)
        self.cell.retry_button.click()
        self.assertEqual(retried, ["viewport-0"])

    async def test_metadata_overlays(self):
        metadata = DisplayMetadata(study_date="2024-01-31", series_description="Axial",
                                   patient_name="DOE^JANE", patient_id="P1",
                                   window_width=400, window_center=40)
        self.cell.set_metadata(metadata)
        self.assertEqual(self.cell.top_left_label.text(), "2024-01-31\nAxial")
        self.assertEqual(self.cell.top_right_label.text(), "DOE^JANE\nP1")
        self.assertEqual(self.cell.bottom_left_label.text(), "W: 400 L: 40")

        self.cell.set_metadata(None)
        self.assertEqual(self.cell.top_left_label.text(), "")

    async def test_dragged_window_overrides_overlay(self):
        self.cell.set_metadata(DisplayMetadata(window_width=400, window_center=40))
        self.cell._on_window_level_dragged(512.4, 99.6)
        self.assertEqual(self.cell.bottom_left_label.text(), "W: 512 L: 100")

    async def test_wheel_down_moves_forward(self):
        self.cell.wheelEvent(wheel_event(-120))
        self.assertEqual(self.scrolls, [("viewport-0", 1)])

    async def test_wheel_burst_is_throttled(self):
        for _ in range(5):
            self.cell.wheelEvent(wheel_event(120))
        self.assertEqual(self.scrolls, [("viewport-0", -1)])
        self.assertTrue(self.cell.wheel_throttle.has_pending)

    async def test_detached_cell_ignores_input(self):
        self.cell.detach()
        self.assertFalse(self.cell.is_attached())
        self.cell.wheelEvent(wheel_event(-120))
        self.assertEqual(self.scrolls, [])

    async def test_click_on_inactive_cell_activates(self):
        activated = []
        self.cell.activated.connect(activated.append)
        event = QMouseEvent(QEvent.Type.MouseButtonPress, QPointF(5, 5), QPointF(5, 5),
                            Qt.MouseButton.LeftButton, Qt.MouseButton.LeftButton, Qt.KeyboardModifier.NoModifier)
        self.cell.mousePressEvent(event)
        self.assertEqual(activated, ["viewport-0"])


class TestStackScrollbar(QtTestCase):

    async def asyncSetUp(self):
        self.cell = ViewportCellWidget("viewport-0")
        self.scrollbar = self.cell.scrollbar
        self.scrollbar.set_stack(11, 0)
        self.indices = []
        self.cell.index_requested.connect(lambda cell_id, index: self.indices.append(index))

    async def asyncTearDown(self):
        self.cell.detach()
        self.cell.deleteLater()

    async def test_drag_reports_index_and_releases(self):
        self.scrollbar.drag.start(0.5, self.scrollbar.count)
        self.assertTrue(self.scrollbar.is_dragging())
        self.assertEqual(self.indices, [5])
        self.scrollbar.drag.update(1.0, self.scrollbar.count)
        self.assertEqual(self.indices, [5, 10])
        self.scrollbar.drag.finish()
        self.assertFalse(self.scrollbar.is_dragging())
        self.assertIsNone(self.scrollbar._filter_target)

    async def test_track_fraction_is_relative_to_track_height(self):
        track = self.scrollbar.track
        track.resize(14, 200)
        self.assertEqual(track.fraction_at(0), 0.0)
        self.assertEqual(track.fraction_at(50), 0.25)
        self.assertEqual(track.fraction_at(200), 1.0)
        self.assertEqual(track.fraction_at(-10), 0.0)
        self.assertEqual(track.fraction_at(260), 1.0)

    async def test_single_image_stack_disables_scrolling(self):
        self.scrollbar.drag.start(0.2, self.scrollbar.count)
        self.scrollbar.set_stack(1, 0)
        self.assertFalse(self.scrollbar.is_dragging())
        self.assertFalse(self.scrollbar.track.isEnabled())

    async def test_step_buttons(self):
        steps = []
        self.cell.scroll_requested.connect(lambda cell_id, delta: steps.append(delta))
        self.scrollbar.set_stack(11, 5)
        self.scrollbar.up_button.click()
        self.scrollbar.down_button.click()
        self.assertEqual(steps, [-1, 1])


class TestViewportGrid(QtTestCase):

    async def asyncSetUp(self):
        data_source = FakeDataSource()
        self.session = ViewerSession(QtRenderingToolkit(data_source), data_source)
        self.grid = ViewportGrid(self.session)

    async def asyncTearDown(self):
        self.grid.shutdown()
        self.session.close()
        self.grid.deleteLater()

    async def test_layout_creates_one_widget_per_visible_cell(self):
        layout = await self.session.select_layout("2x2")
        self.assertEqual(sorted(self.grid.cell_ids()), sorted(layout.cell_ids()))
        for cell_id in layout.cell_ids():
            self.assertIs(self.session.lifecycle.get_anchor(cell_id), self.grid.get_cell(cell_id))

    async def test_shrinking_layout_removes_widgets(self):
        big = await self.session.select_layout("2x2")
        first = self.grid.get_cell(big.cell_ids()[0])
        small = await self.session.select_layout("1x1")
        self.assertEqual(self.grid.cell_ids(), small.cell_ids())
        # The surviving cell keeps its widget
        self.assertIs(self.grid.get_cell(small.cell_ids()[0]), first)
        for cell_id in big.cell_ids()[1:]:
            self.assertIsNone(self.session.lifecycle.get_anchor(cell_id))

    async def test_first_cell_is_active(self):
        layout = await self.session.select_layout("1x2")
        active = self.grid.get_active_cell()
        self.assertIs(active, self.grid.get_cell(layout.cell_ids()[0]))
        self.assertTrue(active.is_active)

    async def test_activation_moves_highlight(self):
        layout = await self.session.select_layout("1x2")
        first, second = layout.cell_ids()
        changes = []
        self.grid.active_cell_changed.connect(changes.append)
        self.grid.get_cell(second).activated.emit(second)
        self.assertEqual(changes, [second])
        self.assertTrue(self.grid.get_cell(second).is_active)
        self.assertFalse(self.grid.get_cell(first).is_active)

    async def test_layout_applied_signal(self):
        applied = []
        self.grid.layout_applied.connect(applied.append)
        await self.session.select_layout("custom-2x3")
        self.assertEqual(applied, ["custom-2x3"])
        self.assertEqual(len(self.grid.cell_ids()), 6)


class TestMainWindowActions(QtTestCase):

    async def asyncSetUp(self):
        self.temp_dir = tempfile.mkdtemp()
        config = ConfigManager(config_filename="window_test.json", config_dir=self.temp_dir)
        data_source = FakeDataSource()
        self.toolkit = QtRenderingToolkit(data_source)
        self.session = ViewerSession(self.toolkit, data_source, config_manager=config)
        self.window = MainWindow(self.session, config)
        await self.session.select_layout("1x2")

    async def asyncTearDown(self):
        self.window.viewport_grid.shutdown()
        self.session.close()
        self.window.deleteLater()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def view_of(self, cell_id):
        engine = self.session.lifecycle.get_engine(cell_id)
        return self.toolkit.get_surface_view(engine, f"surface-{cell_id}")

    async def test_page_keys_are_navigation_shortcuts(self):
        self.assertEqual(self.window.previous_action.shortcut(), QKeySequence(Qt.Key.Key_PageUp))
        self.assertEqual(self.window.next_action.shortcut(), QKeySequence(Qt.Key.Key_PageDown))

    async def test_tool_action_binds_left_button_of_active_cell(self):
        self.window.tool_actions[LENGTH_TOOL].trigger()
        self.assertEqual(self.session.get_active_tool(), LENGTH_TOOL)
        self.assertEqual(self.view_of("viewport-1").tool_bindings[MOUSE_LEFT], LENGTH_TOOL)
        self.assertEqual(self.view_of("viewport-2").tool_bindings[MOUSE_LEFT], WINDOW_LEVEL_TOOL)

    async def test_tool_actions_follow_active_cell(self):
        self.window.tool_actions[ANGLE_TOOL].trigger()
        self.session.set_active_cell("viewport-2")
        self.assertTrue(self.window.tool_actions[WINDOW_LEVEL_TOOL].isChecked())
        self.session.set_active_cell("viewport-1")
        self.assertTrue(self.window.tool_actions[ANGLE_TOOL].isChecked())


class TestBuildQuery(unittest.TestCase):

    def test_empty_form(self):
        self.assertEqual(build_query(), {"limit": 100, "fuzzymatching": "false"})

    def test_patient_name_prefix_match(self):
        self.assertEqual(build_query(patient_name=" DOE ")["PatientName"], "DOE*")
        self.assertEqual(build_query(patient_name="DOE*")["PatientName"], "DOE*")

    def test_date_and_ids(self):
        query = build_query(patient_id="P1", study_date="2024/01/31", accession_number="ACC9")
        self.assertEqual(query["PatientID"], "P1")
        self.assertEqual(query["StudyDate"], "20240131")
        self.assertEqual(query["AccessionNumber"], "ACC9")


if __name__ == '__main__':
    unittest.main()
