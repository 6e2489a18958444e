"""
Main Application Window

This module implements the main application window: the worklist on the left,
the series panel above the viewport grid on the right, a toolbar with the
layout selector, image navigation and the active viewport's tools, and a
status bar.

Inputs:
    - User interactions (menu selections, toolbar clicks, keyboard)
    - Application configuration
    - ViewportRegistry signals (through the viewer session)

Outputs:
    - Session actions scheduled on the event loop
    - Window geometry and last layout saved on close

Requirements:
    - PySide6 for GUI components
    - ConfigManager for settings
    - ViewerSession for all viewer actions
"""

from PySide6.QtWidgets import (QComboBox, QInputDialog, QLabel, QMainWindow,
                               QSplitter, QToolBar, QVBoxLayout, QWidget)
from PySide6.QtCore import Qt
from PySide6.QtGui import QAction, QActionGroup, QKeySequence
from typing import Optional

from core.dicom_models import StudySummary
from core.layout_resolver import available_layouts, custom_layout_id
from core.rendering_toolkit import SELECTABLE_TOOLS, WINDOW_LEVEL_TOOL
from core.viewer_session import ViewerSession
from gui.series_panel import SeriesPanel
from gui.study_list import StudyListWidget
from gui.viewport_grid import ViewportGrid
from utils.async_tasks import schedule_coro
from utils.config_manager import ConfigManager


CUSTOM_LAYOUT_ENTRY = "Custom..."

MAX_CUSTOM_DIMENSION = 8

TOOL_LABELS = {
    WINDOW_LEVEL_TOOL: "Window/Level",
}


class MainWindow(QMainWindow):
    """
    Main application window for the DICOMweb viewer.

    Provides:
    - Menu bar with study, layout and navigation actions
    - Toolbar with layout selector, previous/next image buttons, tool
      selection and view reset for the active viewport
    - Status bar with study, layout and position information
    - Worklist, series panel and viewport grid
    """

    def __init__(self, session: ViewerSession, config_manager: Optional[ConfigManager] = None):
        """
        Initialize the main window.

        Args:
            session: Viewer session driving the viewport engine
            config_manager: Optional ConfigManager instance
        """
        super().__init__()

        self.session = session
        self.config_manager = config_manager or ConfigManager()

        self.setWindowTitle("DICOMweb Viewer")
        width, height = self.config_manager.get_window_size()
        self.setGeometry(100, 100, width, height)

        self._create_central_widget()
        self._create_menu_bar()
        self._create_toolbar()
        self._create_status_bar()

        registry = self.session.registry
        registry.layout_changed.connect(self._on_registry_layout_changed)
        registry.viewport_updated.connect(self._on_viewport_updated)
        registry.active_viewport_changed.connect(self._on_active_viewport_changed)

    # ------------------------------------------------------------------
    # UI construction
    # ------------------------------------------------------------------

    def _create_central_widget(self) -> None:
        """Create the central widget area."""
        self.splitter = QSplitter(Qt.Orientation.Horizontal)
        self.setCentralWidget(self.splitter)

        self.study_list = StudyListWidget(self.session, self.splitter)
        self.study_list.setMinimumWidth(260)
        self.study_list.study_opened.connect(self._on_study_opened)
        self.splitter.addWidget(self.study_list)

        self.viewer_panel = QWidget(self.splitter)
        viewer_layout = QVBoxLayout(self.viewer_panel)
        viewer_layout.setContentsMargins(0, 0, 0, 0)
        viewer_layout.setSpacing(0)

        self.series_panel = SeriesPanel(self.session, self.viewer_panel)
        self.series_panel.series_selected.connect(self._on_series_selected)
        viewer_layout.addWidget(self.series_panel)

        self.viewport_grid = ViewportGrid(self.session, self.config_manager, self.viewer_panel)
        viewer_layout.addWidget(self.viewport_grid, 1)
        self.splitter.addWidget(self.viewer_panel)

        window_width = self.config_manager.get_window_size()[0]
        self.splitter.setSizes([380, max(window_width - 380, 400)])

    def _create_menu_bar(self) -> None:
        """Create the application menu bar."""
        menu_bar = self.menuBar()

        study_menu = menu_bar.addMenu("&Study")
        search_action = QAction("&Search Studies", self)
        search_action.setShortcut(QKeySequence("Ctrl+F"))
        search_action.triggered.connect(self.study_list.search)
        study_menu.addAction(search_action)
        study_menu.addSeparator()
        exit_action = QAction("E&xit", self)
        exit_action.setShortcut(QKeySequence.StandardKey.Quit)
        exit_action.triggered.connect(self.close)
        study_menu.addAction(exit_action)

        layout_menu = menu_bar.addMenu("&Layout")
        self.layout_actions = {}
        for layout_id in available_layouts():
            action = QAction(layout_id, self)
            action.setCheckable(True)
            action.triggered.connect(lambda checked=False, lid=layout_id: self.request_layout(lid))
            layout_menu.addAction(action)
            self.layout_actions[layout_id] = action
        layout_menu.addSeparator()
        custom_action = QAction("Custom Grid...", self)
        custom_action.triggered.connect(self._ask_custom_layout)
        layout_menu.addAction(custom_action)

        navigate_menu = menu_bar.addMenu("&Navigate")
        self.previous_action = QAction("Previous Image", self)
        self.previous_action.setShortcut(QKeySequence(Qt.Key.Key_PageUp))
        self.previous_action.triggered.connect(self.previous_image)
        navigate_menu.addAction(self.previous_action)
        self.next_action = QAction("Next Image", self)
        self.next_action.setShortcut(QKeySequence(Qt.Key.Key_PageDown))
        self.next_action.triggered.connect(self.next_image)
        navigate_menu.addAction(self.next_action)
        navigate_menu.addSeparator()
        self.retry_action = QAction("Retry Active Viewport", self)
        self.retry_action.triggered.connect(self._retry_active)
        navigate_menu.addAction(self.retry_action)

        tools_menu = menu_bar.addMenu("&Tools")
        self.tool_group = QActionGroup(self)
        self.tool_group.setExclusive(True)
        self.tool_actions = {}
        for tool_name in SELECTABLE_TOOLS:
            action = QAction(TOOL_LABELS.get(tool_name, tool_name), self)
            action.setCheckable(True)
            action.triggered.connect(lambda checked=False, name=tool_name: self.select_tool(name))
            self.tool_group.addAction(action)
            tools_menu.addAction(action)
            self.tool_actions[tool_name] = action
        self.tool_actions[WINDOW_LEVEL_TOOL].setChecked(True)
        tools_menu.addSeparator()
        self.reset_view_action = QAction("&Reset View", self)
        self.reset_view_action.setShortcut(QKeySequence("R"))
        self.reset_view_action.triggered.connect(self.reset_view)
        tools_menu.addAction(self.reset_view_action)

    def _create_toolbar(self) -> None:
        """Create the application toolbar."""
        toolbar = QToolBar("Main Toolbar", self)
        toolbar.setMovable(False)
        self.addToolBar(toolbar)

        toolbar.addWidget(QLabel(" Layout: "))
        self.layout_combo = QComboBox(self)
        self.layout_combo.addItems(available_layouts())
        self.layout_combo.addItem(CUSTOM_LAYOUT_ENTRY)
        self.layout_combo.textActivated.connect(self._on_layout_combo_activated)
        toolbar.addWidget(self.layout_combo)
        toolbar.addSeparator()
        toolbar.addAction(self.previous_action)
        toolbar.addAction(self.next_action)
        toolbar.addSeparator()
        for action in self.tool_actions.values():
            toolbar.addAction(action)
        toolbar.addAction(self.reset_view_action)

    def _create_status_bar(self) -> None:
        """Create the status bar."""
        self.study_label = QLabel("Ready")
        self.study_label.setAlignment(Qt.AlignmentFlag.AlignLeft | Qt.AlignmentFlag.AlignVCenter)
        self.statusBar().addPermanentWidget(self.study_label, stretch=2)

        self.layout_label = QLabel("")
        self.layout_label.setAlignment(Qt.AlignmentFlag.AlignCenter | Qt.AlignmentFlag.AlignVCenter)
        self.statusBar().addPermanentWidget(self.layout_label, stretch=1)

        self.position_label = QLabel("")
        self.position_label.setAlignment(Qt.AlignmentFlag.AlignRight | Qt.AlignmentFlag.AlignVCenter)
        self.statusBar().addPermanentWidget(self.position_label, stretch=1)

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def request_layout(self, layout_id: str) -> None:
        """Ask the session to switch the grid layout."""
        schedule_coro(self.session.select_layout(layout_id), f"layout {layout_id}")

    def _on_layout_combo_activated(self, text: str) -> None:
        if text == CUSTOM_LAYOUT_ENTRY:
            self._ask_custom_layout()
        else:
            self.request_layout(text)

    def _ask_custom_layout(self) -> None:
        rows, ok = QInputDialog.getInt(self, "Custom Grid", "Rows:", 2, 1, MAX_CUSTOM_DIMENSION)
        if not ok:
            self._sync_layout_controls()
            return
        cols, ok = QInputDialog.getInt(self, "Custom Grid", "Columns:", 2, 1, MAX_CUSTOM_DIMENSION)
        if not ok:
            self._sync_layout_controls()
            return
        self.request_layout(custom_layout_id(rows, cols))

    def _on_registry_layout_changed(self, layout) -> None:
        self._sync_layout_controls()
        if layout.is_fallback:
            self.statusBar().showMessage(f"{layout.fallback_reason}; showing {layout.layout_id}", 5000)

    def _sync_layout_controls(self) -> None:
        layout = self.session.get_layout()
        layout_id = layout.layout_id if layout is not None else ""
        for lid, action in self.layout_actions.items():
            action.setChecked(lid == layout_id)
        self.layout_combo.blockSignals(True)
        index = self.layout_combo.findText(layout_id)
        if index < 0:
            index = self.layout_combo.findText(CUSTOM_LAYOUT_ENTRY)
        self.layout_combo.setCurrentIndex(index)
        self.layout_combo.blockSignals(False)
        if layout is not None:
            self.layout_label.setText(f"{layout.layout_id} ({layout.visible_count} viewports)")

    # ------------------------------------------------------------------
    # Studies and series
    # ------------------------------------------------------------------

    def _on_study_opened(self, study: StudySummary) -> None:
        self.study_label.setText(f"{study.patient_name}  {study.study_date}  {study.study_description}".strip())
        schedule_coro(self._open_study(study), f"open study {study.study_uid}")

    async def _open_study(self, study: StudySummary) -> None:
        self.series_panel.set_series(study.study_uid, [], "Loading series...")
        series = await self.session.open_study(study.study_uid, study)
        if self.session.current_study_uid != study.study_uid:
            return
        title = study.study_description or study.study_uid
        if not series:
            self.series_panel.set_series(study.study_uid, [], f"{title}: no series")
            return
        self.series_panel.set_series(study.study_uid, series, title)
        self.series_panel.set_current_series(self.session.current_series_uid)

    def _on_series_selected(self, series_uid: str) -> None:
        self.series_panel.set_current_series(series_uid)
        schedule_coro(self.session.select_series(series_uid), f"select series {series_uid}")

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def next_image(self) -> None:
        schedule_coro(self.session.next_image(), "next image")

    def previous_image(self) -> None:
        schedule_coro(self.session.previous_image(), "previous image")

    def select_tool(self, tool_name: str) -> None:
        """Put a tool on the left mouse button of the active viewport."""
        if not self.session.set_active_tool(tool_name):
            self._sync_tool_actions()

    def reset_view(self) -> None:
        self.session.reset_view()

    def _sync_tool_actions(self) -> None:
        tool_name = self.session.get_active_tool() or WINDOW_LEVEL_TOOL
        action = self.tool_actions.get(tool_name)
        if action is not None:
            action.setChecked(True)

    def _retry_active(self) -> None:
        active = self.session.registry.get_active_viewport_id()
        if active is not None:
            schedule_coro(self.session.retry_cell(active), f"retry {active}")

    def keyPressEvent(self, event) -> None:
        """
        Keyboard stack navigation for the active viewport.

        Args:
            event: Key event
        """
        key = event.key()
        if key in (Qt.Key.Key_Up, Qt.Key.Key_Right):
            self.next_image()
        elif key in (Qt.Key.Key_Down, Qt.Key.Key_Left):
            self.previous_image()
        elif key == Qt.Key.Key_Home:
            schedule_coro(self.session.scroll_to(0), "first image")
        elif key == Qt.Key.Key_End:
            state = self.session.registry.get_active_viewport()
            if state is not None and state.stack_size:
                schedule_coro(self.session.scroll_to(state.stack_size - 1), "last image")
        else:
            super().keyPressEvent(event)
            return
        event.accept()

    # ------------------------------------------------------------------
    # Registry updates
    # ------------------------------------------------------------------

    def _on_viewport_updated(self, cell_id: str) -> None:
        if cell_id == self.session.registry.get_active_viewport_id():
            self._update_position_label()

    def _on_active_viewport_changed(self, cell_id: str) -> None:
        self._update_position_label()
        self._sync_tool_actions()
        state = self.session.registry.get_viewport(cell_id) if cell_id else None
        if state is not None and state.series_uid:
            self.series_panel.set_current_series(state.series_uid)

    def _update_position_label(self) -> None:
        state = self.session.registry.get_active_viewport()
        if state is None or not state.stack_size:
            self.position_label.setText("")
            return
        self.position_label.setText(f"{state.cell_id}: {state.current_index + 1} / {state.stack_size}")

    def closeEvent(self, event) -> None:
        """
        Handle window close event.

        Args:
            event: Close event
        """
        geometry = self.geometry()
        self.config_manager.set_window_size(geometry.width(), geometry.height())
        self.config_manager.save_config()

        self.viewport_grid.shutdown()
        self.session.close()
        event.accept()
