"""
Viewport Cell Widget

This module implements the widget for one display cell of the viewport grid.
The widget is the cell's display anchor: the rendering toolkit places its
surface view inside it. Around the surface it shows the overlays, a loading
indicator, an error panel with a retry button and the stack scrollbar.

Overlay corners:
    - top left: study date and series description
    - top right: patient name and id
    - bottom left: window/level ("W: 400 L: 40")
    - bottom right: "Frame i / n"

Inputs:
    - ViewportState snapshots from the registry
    - DisplayMetadata for the current image
    - Mouse wheel, clicks and resizes

Outputs:
    - activated, retry_requested, scroll_requested, index_requested and
      resized signals carrying the cell id

Requirements:
    - PySide6 for GUI components
    - core.input_timing for wheel throttling and resize debouncing
"""

from PySide6.QtWidgets import (QFrame, QHBoxLayout, QLabel, QPushButton, QSizePolicy,
                               QVBoxLayout, QWidget)
from PySide6.QtCore import QEvent, Qt, Signal
from PySide6.QtGui import QColor
from typing import Optional

from core.dicom_models import DisplayMetadata
from core.input_timing import Debounce, Throttle
from core.viewport_registry import ViewportState
from gui.stack_scrollbar import StackScrollbar


OVERLAY_STYLE = (
    "QLabel { color: #ffff66; background-color: transparent; "
    "font-size: 9pt; padding: 4px; }"
)


class ViewportCellWidget(QFrame):
    """
    Display anchor and chrome of one cell.

    Features:
    - Active border highlight and click-to-activate
    - Corner overlays for study, patient, window/level and frame position
    - Loading indicator and error panel with retry
    - Wheel navigation throttled, resize notifications debounced
    """

    # Signals
    activated = Signal(str)  # Emitted when the cell is clicked (cell_id)
    retry_requested = Signal(str)  # Emitted by the retry button (cell_id)
    scroll_requested = Signal(str, int)  # Emitted for wheel and button steps (cell_id, delta)
    index_requested = Signal(str, int)  # Emitted while dragging the scrollbar (cell_id, index)
    resized = Signal(str)  # Emitted after a resize burst settles (cell_id)

    def __init__(self, cell_id: str, wheel_throttle_ms: int = 80, resize_debounce_ms: int = 300, parent=None):
        """
        Initialize the cell widget.

        Args:
            cell_id: Display cell id
            wheel_throttle_ms: Minimum interval between wheel navigations
            resize_debounce_ms: Quiet period before a resize is reported
            parent: Parent widget
        """
        super().__init__(parent)
        self.cell_id = cell_id
        self.is_active = False
        self.state: Optional[ViewportState] = None
        self.metadata: Optional[DisplayMetadata] = None
        self.surface_view: Optional[QWidget] = None
        self._attached = True
        self._window_override: Optional[str] = None

        self.active_border_color = QColor(0, 170, 255)
        self.normal_border_color = QColor(64, 64, 64)

        self.setSizePolicy(QSizePolicy.Policy.Expanding, QSizePolicy.Policy.Expanding)
        self.setMinimumSize(80, 80)

        layout = QHBoxLayout(self)
        layout.setContentsMargins(2, 2, 2, 2)
        layout.setSpacing(0)

        # Surface host: the toolkit's view goes here
        self.surface_host = QWidget(self)
        self.surface_host.setStyleSheet("background-color: black;")
        self.surface_layout = QVBoxLayout(self.surface_host)
        self.surface_layout.setContentsMargins(0, 0, 0, 0)
        self.surface_layout.setSpacing(0)
        layout.addWidget(self.surface_host, 1)

        self.scrollbar = StackScrollbar(self)
        self.scrollbar.step_requested.connect(lambda delta: self.scroll_requested.emit(self.cell_id, delta))
        self.scrollbar.index_requested.connect(lambda index: self.index_requested.emit(self.cell_id, index))
        layout.addWidget(self.scrollbar)

        # Overlays
        self.top_left_label = self._overlay_label(Qt.AlignmentFlag.AlignLeft | Qt.AlignmentFlag.AlignTop)
        self.top_right_label = self._overlay_label(Qt.AlignmentFlag.AlignRight | Qt.AlignmentFlag.AlignTop)
        self.bottom_left_label = self._overlay_label(Qt.AlignmentFlag.AlignLeft | Qt.AlignmentFlag.AlignBottom)
        self.bottom_right_label = self._overlay_label(Qt.AlignmentFlag.AlignRight | Qt.AlignmentFlag.AlignBottom)

        self.loading_label = QLabel("Loading...", self.surface_host)
        self.loading_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.loading_label.setStyleSheet("QLabel { color: white; background-color: rgba(0, 0, 0, 160); padding: 8px; }")
        self.loading_label.hide()

        self.error_panel = QFrame(self.surface_host)
        self.error_panel.setStyleSheet("QFrame { background-color: rgba(60, 0, 0, 200); border-radius: 4px; }")
        error_layout = QVBoxLayout(self.error_panel)
        self.error_label = QLabel("", self.error_panel)
        self.error_label.setWordWrap(True)
        self.error_label.setAlignment(Qt.AlignmentFlag.AlignCenter)
        self.error_label.setStyleSheet("QLabel { color: #ff8080; background-color: transparent; }")
        self.retry_button = QPushButton("Retry", self.error_panel)
        self.retry_button.clicked.connect(lambda: self.retry_requested.emit(self.cell_id))
        error_layout.addWidget(self.error_label)
        error_layout.addWidget(self.retry_button, 0, Qt.AlignmentFlag.AlignCenter)
        self.error_panel.hide()

        self.wheel_throttle = Throttle(self._emit_scroll, wheel_throttle_ms)
        self.resize_debounce = Debounce(self._emit_resized, resize_debounce_ms)

        self._update_border_style()

    def _overlay_label(self, alignment) -> QLabel:
        label = QLabel("", self.surface_host)
        label.setAlignment(alignment)
        label.setStyleSheet(OVERLAY_STYLE)
        label.setAttribute(Qt.WidgetAttribute.WA_TransparentForMouseEvents)
        return label

    # ------------------------------------------------------------------
    # Display anchor protocol
    # ------------------------------------------------------------------

    def is_attached(self) -> bool:
        """True while the cell is part of the grid."""
        return self._attached

    def detach(self) -> None:
        """Mark the cell as removed from the grid and stop pending timers."""
        self._attached = False
        self.wheel_throttle.cancel()
        self.resize_debounce.cancel()
        self.scrollbar.drag.cancel()

    def attach_surface(self, view: QWidget) -> None:
        """Place a rendering surface inside the cell."""
        if self.surface_view is view:
            return
        self.surface_view = view
        self.surface_layout.addWidget(view)
        view.installEventFilter(self)
        view.viewport().installEventFilter(self)
        if hasattr(view, "window_level_changed"):
            view.window_level_changed.connect(self._on_window_level_dragged)
        self._raise_overlays()

    def detach_surface(self, view: QWidget) -> None:
        """Remove a rendering surface from the cell."""
        if self.surface_view is view:
            self.surface_view = None
        self.surface_layout.removeWidget(view)
        view.removeEventFilter(self)
        view.viewport().removeEventFilter(self)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def update_state(self, state: ViewportState) -> None:
        """
        Show a registry snapshot: active border, loading, error and position.

        Args:
            state: Current state of this cell
        """
        previous = self.state
        self.state = state
        self.set_active(state.is_active)

        self.loading_label.setVisible(state.is_loading)
        if state.error:
            self.error_label.setText(state.error)
            self.error_panel.show()
        else:
            self.error_panel.hide()

        if state.stack_size:
            self.bottom_right_label.setText(f"Frame {state.current_index + 1} / {state.stack_size}")
        else:
            self.bottom_right_label.setText("")
            self.set_metadata(None)
        if previous is None or previous.series_uid != state.series_uid:
            self._window_override = None
        self.scrollbar.set_stack(state.stack_size, state.current_index)
        self._position_overlays()

    def set_metadata(self, metadata: Optional[DisplayMetadata]) -> None:
        """
        Fill the corner overlays from display metadata.

        Args:
            metadata: Metadata of the current image, or None to clear
        """
        self.metadata = metadata
        if metadata is None:
            self.top_left_label.setText("")
            self.top_right_label.setText("")
            self.bottom_left_label.setText(self._window_override or "")
            return
        self.top_left_label.setText("\n".join(t for t in (metadata.study_date, metadata.series_description) if t))
        self.top_right_label.setText("\n".join(t for t in (metadata.patient_name, metadata.patient_id) if t))
        self.bottom_left_label.setText(self._window_override or metadata.window_level_text())
        self._position_overlays()

    def _on_window_level_dragged(self, width: float, center: float) -> None:
        self._window_override = f"W: {int(round(width))} L: {int(round(center))}"
        self.bottom_left_label.setText(self._window_override)

    def set_active(self, active: bool) -> None:
        if self.is_active != active:
            self.is_active = active
            self._update_border_style()

    def _update_border_style(self) -> None:
        color = self.active_border_color if self.is_active else self.normal_border_color
        width = 2 if self.is_active else 1
        self.setStyleSheet(
            "ViewportCellWidget {\n"
            f"    border: {width}px solid rgb({color.red()}, {color.green()}, {color.blue()});\n"
            "}"
        )

    # ------------------------------------------------------------------
    # Geometry
    # ------------------------------------------------------------------

    def _position_overlays(self) -> None:
        rect = self.surface_host.rect()
        half_w = max(rect.width() // 2, 1)
        third_h = max(rect.height() // 3, 1)
        self.top_left_label.setGeometry(0, 0, half_w, third_h)
        self.top_right_label.setGeometry(rect.width() - half_w, 0, half_w, third_h)
        self.bottom_left_label.setGeometry(0, rect.height() - third_h, half_w, third_h)
        self.bottom_right_label.setGeometry(rect.width() - half_w, rect.height() - third_h, half_w, third_h)

        self.loading_label.adjustSize()
        self.loading_label.move(
            (rect.width() - self.loading_label.width()) // 2,
            (rect.height() - self.loading_label.height()) // 2,
        )
        panel_w = min(max(rect.width() - 20, 120), 360)
        self.error_panel.setFixedWidth(panel_w)
        self.error_panel.adjustSize()
        self.error_panel.move((rect.width() - panel_w) // 2, (rect.height() - self.error_panel.height()) // 2)
        self._raise_overlays()

    def _raise_overlays(self) -> None:
        for widget in (self.top_left_label, self.top_right_label, self.bottom_left_label,
                       self.bottom_right_label, self.loading_label, self.error_panel):
            widget.raise_()

    def resizeEvent(self, event) -> None:
        super().resizeEvent(event)
        self._position_overlays()
        if self._attached:
            self.resize_debounce()

    def _emit_resized(self) -> None:
        if self._attached:
            self.resized.emit(self.cell_id)

    # ------------------------------------------------------------------
    # Input
    # ------------------------------------------------------------------

    def wheelEvent(self, event) -> None:
        """
        Turn wheel motion into throttled stack navigation.

        Args:
            event: Wheel event
        """
        delta = event.angleDelta().y()
        if delta == 0:
            event.ignore()
            return
        event.accept()
        self.wheel_throttle(1 if delta < 0 else -1)

    def _emit_scroll(self, delta: int) -> None:
        if self._attached:
            self.scroll_requested.emit(self.cell_id, delta)

    def mousePressEvent(self, event) -> None:
        if not self.is_active:
            self.activated.emit(self.cell_id)
        super().mousePressEvent(event)

    def eventFilter(self, obj, event) -> bool:
        """
        Activate the cell on a click inside its surface.

        The first click on an inactive cell only activates it, so it does not
        start a pan or window/level drag.
        """
        if event.type() == QEvent.Type.MouseButtonPress and not self.is_active:
            self.activated.emit(self.cell_id)
            event.accept()
            return True
        return super().eventFilter(obj, event)
