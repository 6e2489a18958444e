"""
Series Panel Widget

This module provides a horizontal bar listing the series of the current study.
Each entry shows the server-rendered thumbnail of the series' middle instance
with the series number overlaid. A placeholder is painted while the thumbnail
is pending and when it could not be produced.

Inputs:
    - Series summaries of the current study
    - Thumbnail object URLs from the session's metadata/thumbnail cache

Outputs:
    - series_selected signal when a thumbnail is clicked

Requirements:
    - PySide6 for GUI components
    - utils.async_tasks.schedule_coro for thumbnail fetches
"""

from PySide6.QtWidgets import QFrame, QHBoxLayout, QLabel, QScrollArea, QVBoxLayout, QWidget
from PySide6.QtCore import Qt, Signal
from PySide6.QtGui import QColor, QFont, QMouseEvent, QPainter, QPixmap
from typing import Dict, List, Optional

from core.dicom_models import SeriesSummary
from core.viewer_session import ViewerSession
from utils.async_tasks import schedule_coro


THUMBNAIL_SIZE = 68

STATE_PENDING = "pending"
STATE_READY = "ready"
STATE_FAILED = "failed"


class SeriesThumbnail(QFrame):
    """
    Thumbnail entry for one series.

    Displays the thumbnail image (or a placeholder) with the series number
    overlaid.
    """

    clicked = Signal(str)  # Emitted with series_uid when clicked

    def __init__(self, series: SeriesSummary, parent=None):
        """
        Initialize series thumbnail.

        Args:
            series: Series summary shown by this entry
            parent: Parent widget
        """
        super().__init__(parent)
        self.series = series
        self.series_uid = series.series_uid
        self.pixmap: Optional[QPixmap] = None
        self.state = STATE_PENDING
        self.is_current = False

        self.setFixedSize(THUMBNAIL_SIZE, THUMBNAIL_SIZE)
        self.setFrameStyle(QFrame.Shape.Box)
        self.setLineWidth(1)
        self.setStyleSheet("QFrame { border: 1px solid #444444; }")
        tooltip = series.series_description or "(no description)"
        self.setToolTip(f"{tooltip}\n{series.modality} - {series.number_of_instances} images")

    def set_thumbnail(self, data: Optional[bytes]) -> None:
        """
        Show thumbnail bytes, or the failure placeholder for None.

        Args:
            data: Encoded JPEG bytes
        """
        pixmap = QPixmap()
        if data and pixmap.loadFromData(data):
            self.pixmap = pixmap
            self.state = STATE_READY
        else:
            self.pixmap = None
            self.state = STATE_FAILED
        self.update()

    def set_current(self, is_current: bool) -> None:
        """
        Set whether this is the series shown in the active cell.

        Args:
            is_current: True if this is the current series
        """
        self.is_current = is_current
        if is_current:
            self.setStyleSheet("QFrame { border: 2px solid #00aaff; background-color: rgba(0, 170, 255, 0.1); }")
        else:
            self.setStyleSheet("QFrame { border: 1px solid #444444; }")
        self.update()

    def mouseReleaseEvent(self, event: QMouseEvent) -> None:
        if event.button() == Qt.MouseButton.LeftButton:
            self.clicked.emit(self.series_uid)
        super().mouseReleaseEvent(event)

    def paintEvent(self, event) -> None:
        """Paint thumbnail image or placeholder with series number overlay."""
        super().paintEvent(event)
        painter = QPainter(self)
        painter.setRenderHint(QPainter.RenderHint.Antialiasing)
        inner = self.rect().adjusted(2, 2, -2, -2)

        if self.pixmap is not None:
            scaled = self.pixmap.scaled(
                inner.size(), Qt.AspectRatioMode.KeepAspectRatio, Qt.TransformationMode.SmoothTransformation
            )
            x = inner.x() + (inner.width() - scaled.width()) // 2
            y = inner.y() + (inner.height() - scaled.height()) // 2
            painter.drawPixmap(x, y, scaled)
        else:
            painter.fillRect(inner, QColor(30, 30, 30))
            painter.setPen(QColor(140, 140, 140))
            text = "..." if self.state == STATE_PENDING else "No preview"
            font = QFont()
            font.setPointSize(7)
            painter.setFont(font)
            painter.drawText(inner, Qt.AlignmentFlag.AlignCenter, text)

        # Series number overlay
        font = QFont()
        font.setPointSize(8)
        font.setBold(True)
        painter.setFont(font)
        label = str(self.series.series_number) if self.series.series_number else "-"
        painter.setPen(QColor(0, 0, 0))
        painter.drawText(inner.adjusted(4, 3, 0, 0), Qt.AlignmentFlag.AlignLeft | Qt.AlignmentFlag.AlignTop, label)
        painter.setPen(QColor(255, 255, 102))
        painter.drawText(inner.adjusted(3, 2, 0, 0), Qt.AlignmentFlag.AlignLeft | Qt.AlignmentFlag.AlignTop, label)


class SeriesPanel(QWidget):
    """
    Horizontal series bar for the current study.

    Features:
    - One thumbnail per series in series-number order
    - Thumbnails fetched asynchronously, placeholders while pending
    - Highlight of the series shown in the active cell
    """

    # Signals
    series_selected = Signal(str)  # Emitted when a series thumbnail is clicked (series_uid)

    def __init__(self, session: ViewerSession, parent=None):
        """
        Initialize the series panel.

        Args:
            session: Viewer session providing thumbnails
            parent: Parent widget
        """
        super().__init__(parent)
        self.session = session
        self.study_uid = ""
        self.thumbnails: Dict[str, SeriesThumbnail] = {}
        self._create_ui()

    def _create_ui(self) -> None:
        layout = QVBoxLayout(self)
        layout.setContentsMargins(0, 0, 0, 0)
        layout.setSpacing(0)

        self.title_label = QLabel("", self)
        self.title_label.setStyleSheet("QLabel { font-weight: bold; font-size: 9pt; padding: 2px 5px; }")
        layout.addWidget(self.title_label)

        self.scroll_area = QScrollArea(self)
        self.scroll_area.setWidgetResizable(True)
        self.scroll_area.setHorizontalScrollBarPolicy(Qt.ScrollBarPolicy.ScrollBarAsNeeded)
        self.scroll_area.setVerticalScrollBarPolicy(Qt.ScrollBarPolicy.ScrollBarAlwaysOff)
        self.scroll_area.setFixedHeight(THUMBNAIL_SIZE + 22)

        self.container = QWidget()
        self.container_layout = QHBoxLayout(self.container)
        self.container_layout.setContentsMargins(5, 2, 5, 2)
        self.container_layout.setSpacing(5)
        self.container_layout.addStretch()
        self.scroll_area.setWidget(self.container)
        layout.addWidget(self.scroll_area)

    def set_series(self, study_uid: str, series: List[SeriesSummary], title: str = "") -> None:
        """
        Show the series of a study.

        Args:
            study_uid: Study the series belong to
            series: Series summaries in display order
            title: Text shown above the thumbnails
        """
        self.clear()
        self.study_uid = study_uid
        self.title_label.setText(title)
        for summary in series:
            thumbnail = SeriesThumbnail(summary, self.container)
            thumbnail.clicked.connect(self.series_selected.emit)
            self.container_layout.insertWidget(self.container_layout.count() - 1, thumbnail)
            self.thumbnails[summary.series_uid] = thumbnail

            url = self.session.cache.peek_thumbnail(study_uid, summary.series_uid)
            if url is not None:
                thumbnail.set_thumbnail(self.session.cache.resolve_thumbnail(url))
            else:
                schedule_coro(
                    self._load_thumbnail(study_uid, summary.series_uid),
                    f"thumbnail {summary.series_uid}",
                )

    async def _load_thumbnail(self, study_uid: str, series_uid: str) -> None:
        url = await self.session.get_thumbnail(study_uid, series_uid)
        if study_uid != self.study_uid:
            return
        thumbnail = self.thumbnails.get(series_uid)
        if thumbnail is None:
            return
        thumbnail.set_thumbnail(self.session.cache.resolve_thumbnail(url) if url is not None else None)

    def set_current_series(self, series_uid: str) -> None:
        """
        Highlight the series shown in the active cell.

        Args:
            series_uid: Current series UID ("" clears the highlight)
        """
        for uid, thumbnail in self.thumbnails.items():
            thumbnail.set_current(uid == series_uid)

    def clear(self) -> None:
        """Remove all thumbnails."""
        for thumbnail in self.thumbnails.values():
            self.container_layout.removeWidget(thumbnail)
            thumbnail.deleteLater()
        self.thumbnails.clear()
        self.study_uid = ""
        self.title_label.setText("")
