"""
Stack Scrollbar

This module implements the vertical scrollbar shown at the right edge of each
display cell: an up button, a track with a thumb marking the current image, and
a down button. Dragging anywhere on the track scrolls the stack.

While a drag is in progress the pointer listeners live on the application
(an event filter on QApplication), so the drag keeps working when the pointer
leaves the track. The listeners are removed exactly once when the drag ends by
release, by window deactivation or by hiding the scrollbar.

Inputs:
    - Stack size and current index of the cell
    - Mouse events on the buttons and track

Outputs:
    - step_requested signal (-1 previous, +1 next)
    - index_requested signal while dragging

Requirements:
    - PySide6 for GUI components
    - core.input_timing.DragScrollSession
"""

from PySide6.QtWidgets import QApplication, QToolButton, QVBoxLayout, QWidget, QSizePolicy
from PySide6.QtCore import QEvent, QObject, QRect, Qt, Signal
from PySide6.QtGui import QColor, QPainter
from typing import Optional

from core.input_timing import DragScrollSession


class ScrollTrack(QWidget):
    """Track with a thumb whose position reflects the current index."""

    # Signals
    drag_started = Signal(float)  # Emitted on left press with the pointer fraction

    MIN_THUMB_HEIGHT = 12

    def __init__(self, parent=None):
        super().__init__(parent)
        self.count = 0
        self.index = 0
        self.setFixedWidth(14)
        self.setSizePolicy(QSizePolicy.Policy.Fixed, QSizePolicy.Policy.Expanding)

    def set_position(self, count: int, index: int) -> None:
        self.count = max(count, 0)
        self.index = max(0, min(index, self.count - 1)) if self.count else 0
        self.update()

    def thumb_height(self) -> int:
        if self.count <= 0:
            return self.height()
        return max(self.MIN_THUMB_HEIGHT, self.height() // self.count)

    def thumb_rect(self) -> QRect:
        thumb = self.thumb_height()
        free = max(self.height() - thumb, 0)
        top = int(round(free * self.index / (self.count - 1))) if self.count > 1 else 0
        return QRect(2, top, self.width() - 4, thumb)

    def fraction_at(self, y: float) -> float:
        """Pointer offset from the top of the track as a fraction of its height, clamped to [0, 1]."""
        height = self.height()
        if height <= 0:
            return 0.0
        return min(max(y / height, 0.0), 1.0)

    def paintEvent(self, event) -> None:
        painter = QPainter(self)
        painter.fillRect(self.rect(), QColor(40, 40, 40))
        if self.count > 1:
            painter.fillRect(self.thumb_rect(), QColor(150, 150, 150))

    def mousePressEvent(self, event) -> None:
        if event.button() == Qt.MouseButton.LeftButton and self.count > 1:
            event.accept()
            self.drag_started.emit(self.fraction_at(event.position().y()))
            return
        super().mousePressEvent(event)


class StackScrollbar(QWidget):
    """
    Per-cell stack scrollbar.

    Features:
    - Up/down buttons step one image (no wraparound; the controller clamps)
    - Thumb position follows the cell's current index
    - Drag-to-scroll with application-level pointer tracking
    """

    # Signals
    step_requested = Signal(int)  # Emitted by the buttons (-1 = previous, 1 = next)
    index_requested = Signal(int)  # Emitted while dragging with the index under the pointer

    def __init__(self, parent=None):
        """
        Initialize the scrollbar.

        Args:
            parent: Parent widget
        """
        super().__init__(parent)
        self.count = 0

        layout = QVBoxLayout(self)
        layout.setContentsMargins(0, 0, 0, 0)
        layout.setSpacing(0)

        self.up_button = QToolButton(self)
        self.up_button.setArrowType(Qt.ArrowType.UpArrow)
        self.up_button.setAutoRepeat(True)
        self.up_button.clicked.connect(lambda: self.step_requested.emit(-1))

        self.track = ScrollTrack(self)
        self.track.drag_started.connect(self._begin_drag)

        self.down_button = QToolButton(self)
        self.down_button.setArrowType(Qt.ArrowType.DownArrow)
        self.down_button.setAutoRepeat(True)
        self.down_button.clicked.connect(lambda: self.step_requested.emit(1))

        layout.addWidget(self.up_button)
        layout.addWidget(self.track, 1)
        layout.addWidget(self.down_button)

        self._filter_target: Optional[QObject] = None
        self.drag = DragScrollSession(self._attach_listeners, self._detach_listeners, self.index_requested.emit)

        self.set_stack(0, 0)

    def set_stack(self, count: int, index: int) -> None:
        """
        Show the stack size and current index.

        Args:
            count: Number of images in the stack
            index: Current index
        """
        self.count = count
        self.track.set_position(count, index)
        enabled = count > 1
        self.up_button.setEnabled(enabled and index > 0)
        self.down_button.setEnabled(enabled and index < count - 1)
        self.track.setEnabled(enabled)
        if not enabled:
            self.drag.cancel()

    # --- Drag-to-scroll ---

    def _begin_drag(self, fraction: float) -> None:
        self.drag.start(fraction, self.count)

    def _attach_listeners(self) -> None:
        app = QApplication.instance()
        if app is not None:
            app.installEventFilter(self)
            self._filter_target = app

    def _detach_listeners(self) -> None:
        if self._filter_target is not None:
            self._filter_target.removeEventFilter(self)
            self._filter_target = None

    def is_dragging(self) -> bool:
        return self.drag.is_active

    def eventFilter(self, obj, event) -> bool:
        """
        Application-wide pointer tracking while a drag is active.

        Args:
            obj: Object that received the event
            event: Event

        Returns:
            True if the event was consumed by the drag
        """
        if not self.drag.is_active:
            return False
        event_type = event.type()
        if event_type == QEvent.Type.MouseMove:
            local = self.track.mapFromGlobal(event.globalPosition().toPoint())
            self.drag.update(self.track.fraction_at(local.y()), self.count)
            return True
        if event_type == QEvent.Type.MouseButtonRelease and event.button() == Qt.MouseButton.LeftButton:
            self.drag.finish()
            return True
        if event_type in (QEvent.Type.WindowDeactivate, QEvent.Type.ApplicationDeactivate):
            # Pointer grab lost
            self.drag.cancel()
        return False

    def hideEvent(self, event) -> None:
        self.drag.cancel()
        super().hideEvent(event)

