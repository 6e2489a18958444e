"""
Viewport Grid

This module arranges the display cells of the current layout in a grid and
binds each cell widget to the viewer session. The grid follows the viewport
registry: when a layout is applied it reuses the widgets of surviving cells,
creates widgets for new cells and removes the widgets of dropped cells. Hidden
cells reserve no widget.

Inputs:
    - ViewportRegistry signals (layout, added, removed, updated, active)
    - User input forwarded by the cell widgets

Outputs:
    - Cell widgets registered as display anchors with the session
    - Session actions (activate, scroll, retry, resize) scheduled on the event loop
    - Overlay metadata fetched for each cell's current image

Requirements:
    - PySide6 for GUI components
    - core.viewer_session.ViewerSession
    - utils.async_tasks.schedule_coro for fire-and-forget session calls
"""

from PySide6.QtWidgets import QGridLayout, QSizePolicy, QVBoxLayout, QWidget
from PySide6.QtCore import Signal
from typing import Dict, List, Optional

from core.layout_resolver import ResolvedLayout
from core.metadata_cache import metadata_key
from core.viewer_session import ViewerSession
from gui.viewport_cell_widget import ViewportCellWidget
from utils.async_tasks import schedule_coro


class ViewportGrid(QWidget):
    """
    Grid of ViewportCellWidgets driven by the viewport registry.

    Features:
    - Row/column spans from the resolved layout
    - Widget reuse for cells that survive a layout change
    - Click-to-activate, wheel and scrollbar navigation, retry and resize
      forwarded to the session
    """

    # Signals
    layout_applied = Signal(str)  # Emitted after the grid was rearranged (layout_id)
    active_cell_changed = Signal(str)  # Emitted when the active cell changes (cell_id)

    def __init__(self, session: ViewerSession, config_manager=None, parent=None):
        """
        Initialize the grid.

        Args:
            session: Viewer session owning the registry
            config_manager: Optional ConfigManager for input timing settings
            parent: Parent widget
        """
        super().__init__(parent)
        self.session = session
        self.config_manager = config_manager
        self.cells: Dict[str, ViewportCellWidget] = {}

        if config_manager is not None:
            self.wheel_throttle_ms = config_manager.get_wheel_throttle_ms()
            self.resize_debounce_ms = config_manager.get_resize_debounce_ms()
        else:
            self.wheel_throttle_ms = 80
            self.resize_debounce_ms = 300

        self.setSizePolicy(QSizePolicy.Policy.Expanding, QSizePolicy.Policy.Expanding)
        main_layout = QVBoxLayout(self)
        main_layout.setContentsMargins(0, 0, 0, 0)
        main_layout.setSpacing(0)

        self.layout_widget = QWidget(self)
        self.layout_widget.setSizePolicy(QSizePolicy.Policy.Expanding, QSizePolicy.Policy.Expanding)
        self.layout_manager = QGridLayout(self.layout_widget)
        self.layout_manager.setContentsMargins(0, 0, 0, 0)
        self.layout_manager.setSpacing(2)
        main_layout.addWidget(self.layout_widget, 1)

        registry = session.registry
        registry.layout_changed.connect(self._on_layout_changed)
        registry.viewport_removed.connect(self._remove_cell)
        registry.viewport_added.connect(self._on_viewport_updated)
        registry.viewport_updated.connect(self._on_viewport_updated)
        registry.active_viewport_changed.connect(self._on_active_changed)

        layout = registry.get_layout()
        if layout is not None:
            self._on_layout_changed(layout)

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def _on_layout_changed(self, layout: ResolvedLayout) -> None:
        """
        Rearrange the grid for a newly applied layout.

        Args:
            layout: Layout applied by the registry
        """
        wanted = set(layout.cell_ids())
        for cell_id in [c for c in self.cells if c not in wanted]:
            self._remove_cell(cell_id)

        # Clear grid positions; widgets stay alive
        while self.layout_manager.count():
            self.layout_manager.takeAt(0)

        for cell in layout.visible_cells:
            widget = self.cells.get(cell.id)
            if widget is None:
                widget = self._create_cell(cell.id)
            row, col = cell.position
            self.layout_manager.addWidget(widget, row, col, cell.row_span, cell.col_span)
            widget.show()
            self.session.register_anchor(cell.id, widget)

        current_rows = self.layout_manager.rowCount()
        current_cols = self.layout_manager.columnCount()
        for i in range(current_rows):
            self.layout_manager.setRowStretch(i, 1 if i < layout.rows else 0)
        for i in range(current_cols):
            self.layout_manager.setColumnStretch(i, 1 if i < layout.cols else 0)
        self.layout_manager.activate()

        self.layout_applied.emit(layout.layout_id)

    def _create_cell(self, cell_id: str) -> ViewportCellWidget:
        widget = ViewportCellWidget(cell_id, self.wheel_throttle_ms, self.resize_debounce_ms, self.layout_widget)
        widget.activated.connect(self._on_cell_activated)
        widget.retry_requested.connect(self._on_retry_requested)
        widget.scroll_requested.connect(self._on_scroll_requested)
        widget.index_requested.connect(self._on_index_requested)
        widget.resized.connect(self.session.handle_resize)
        self.cells[cell_id] = widget
        return widget

    def _remove_cell(self, cell_id: str) -> None:
        widget = self.cells.pop(cell_id, None)
        if widget is None:
            return
        widget.detach()
        self.session.unregister_anchor(cell_id, widget)
        self.layout_manager.removeWidget(widget)
        widget.hide()
        widget.deleteLater()

    # ------------------------------------------------------------------
    # Registry updates
    # ------------------------------------------------------------------

    def _on_viewport_updated(self, cell_id: str) -> None:
        widget = self.cells.get(cell_id)
        state = self.session.registry.get_viewport(cell_id)
        if widget is None or state is None:
            return
        widget.update_state(state)

        image_id = state.current_image_id
        if image_id is None:
            return
        cached = self.session.cache.peek_metadata(image_id)
        if cached is not None:
            widget.set_metadata(cached)
        else:
            schedule_coro(self._load_metadata(cell_id, image_id), f"metadata {cell_id}")

    async def _load_metadata(self, cell_id: str, image_id: str) -> None:
        metadata = await self.session.get_metadata(image_id)
        widget = self.cells.get(cell_id)
        state = self.session.registry.get_viewport(cell_id)
        if widget is None or state is None or state.current_image_id is None:
            return
        # Frames of one instance share metadata
        if metadata_key(state.current_image_id) == metadata_key(image_id):
            widget.set_metadata(metadata)

    def _on_active_changed(self, cell_id: str) -> None:
        for other_id, widget in self.cells.items():
            widget.set_active(other_id == cell_id)
        self.active_cell_changed.emit(cell_id)

    # ------------------------------------------------------------------
    # Cell input
    # ------------------------------------------------------------------

    def _on_cell_activated(self, cell_id: str) -> None:
        self.session.set_active_cell(cell_id)

    def _on_retry_requested(self, cell_id: str) -> None:
        schedule_coro(self.session.retry_cell(cell_id), f"retry {cell_id}")

    def _on_scroll_requested(self, cell_id: str, delta: int) -> None:
        schedule_coro(self.session.scroll_by(delta, cell_id), f"scroll {cell_id}")

    def _on_index_requested(self, cell_id: str, index: int) -> None:
        schedule_coro(self.session.scroll_to(index, cell_id), f"drag-scroll {cell_id}")

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    def get_cell(self, cell_id: str) -> Optional[ViewportCellWidget]:
        return self.cells.get(cell_id)

    def get_active_cell(self) -> Optional[ViewportCellWidget]:
        active = self.session.registry.get_active_viewport_id()
        return self.cells.get(active) if active is not None else None

    def cell_ids(self) -> List[str]:
        return list(self.cells.keys())

    def shutdown(self) -> None:
        """Detach every cell before the session closes."""
        for widget in self.cells.values():
            widget.detach()
