"""
Measurement Items

Length and angle measurements drawn on a surface's graphics scene. Points are
in image pixel coordinates (the scene coordinates of the image item), so a
measurement stays on its anatomy while the camera pans and zooms.

Distances are shown in mm when the image carries a pixel spacing, otherwise in
pixels.

Inputs:
    - Scene points from the Length and Angle tool drags
    - Pixel spacing of the displayed image

Outputs:
    - Line and label items added to the scene
    - Formatted distance / angle text

Requirements:
    - PySide6 for graphics items
    - pydicom datasets for pixel spacing
"""

import math
from typing import List, Optional, Tuple

from PySide6.QtCore import QLineF, QPointF
from PySide6.QtGui import QColor, QFont, QPen
from PySide6.QtWidgets import QGraphicsItem, QGraphicsLineItem, QGraphicsScene, QGraphicsTextItem
from pydicom.dataset import Dataset


MEASUREMENT_COLOR = QColor(0, 255, 0)


def get_pixel_spacing(dataset: Dataset) -> Optional[Tuple[float, float]]:
    """
    Pixel spacing of a dataset as (row_spacing, column_spacing) in mm.

    Pixel Spacing is preferred; Imager Pixel Spacing is the fallback.
    """
    for keyword in ("PixelSpacing", "ImagerPixelSpacing"):
        value = getattr(dataset, keyword, None)
        if value is None:
            continue
        try:
            row_spacing, col_spacing = float(value[0]), float(value[1])
        except (TypeError, ValueError, IndexError):
            continue
        if row_spacing > 0 and col_spacing > 0:
            return row_spacing, col_spacing
    return None


def format_length(start: QPointF, end: QPointF, pixel_spacing: Optional[Tuple[float, float]] = None) -> str:
    """
    Distance between two image points as display text.

    Args:
        start: First point (image pixels)
        end: Second point (image pixels)
        pixel_spacing: (row, column) spacing in mm, or None for pixel units

    Returns:
        Text such as "12.3 mm", "4.50 mm" or "25.0 pixels"
    """
    dx = end.x() - start.x()
    dy = end.y() - start.y()
    if pixel_spacing is not None:
        # pixel_spacing[1] scales X (columns), pixel_spacing[0] scales Y (rows)
        mm = math.hypot(dx * pixel_spacing[1], dy * pixel_spacing[0])
        if mm >= 10:
            return f"{mm:.1f} mm"
        return f"{mm:.2f} mm"
    return f"{math.hypot(dx, dy):.1f} pixels"


def angle_degrees(first: QPointF, vertex: QPointF, second: QPointF) -> float:
    """Angle at vertex between the arms to first and second, in [0, 180]."""
    a = math.atan2(first.y() - vertex.y(), first.x() - vertex.x())
    b = math.atan2(second.y() - vertex.y(), second.x() - vertex.x())
    angle = abs(math.degrees(a - b)) % 360.0
    if angle > 180.0:
        angle = 360.0 - angle
    return angle


def _line_item(start: QPointF, end: QPointF) -> QGraphicsLineItem:
    item = QGraphicsLineItem(QLineF(start, end))
    pen = QPen(MEASUREMENT_COLOR, 2)
    pen.setCosmetic(True)
    item.setPen(pen)
    item.setZValue(10)
    return item


def _text_item() -> QGraphicsTextItem:
    item = QGraphicsTextItem()
    item.setDefaultTextColor(MEASUREMENT_COLOR)
    item.setFont(QFont("Arial", 10))
    # Label keeps its screen size at any zoom
    item.setFlag(QGraphicsItem.GraphicsItemFlag.ItemIgnoresTransformations, True)
    item.setZValue(11)
    return item


class LengthMeasurement:
    """A straight line with its length drawn next to the end point."""

    def __init__(self, scene: QGraphicsScene, start: QPointF,
                 pixel_spacing: Optional[Tuple[float, float]] = None):
        self.scene = scene
        self.start = QPointF(start)
        self.end = QPointF(start)
        self.pixel_spacing = pixel_spacing
        self.line_item = _line_item(self.start, self.end)
        self.text_item = _text_item()
        scene.addItem(self.line_item)
        scene.addItem(self.text_item)
        self.update(start)

    def update(self, point: QPointF) -> None:
        """Move the end point."""
        self.end = QPointF(point)
        self.line_item.setLine(QLineF(self.start, self.end))
        self.text_item.setPlainText(self.text)
        self.text_item.setPos(self.end)

    def finish(self, point: QPointF) -> bool:
        """
        Fix the end point.

        Returns:
            True when the measurement is complete
        """
        self.update(point)
        return True

    @property
    def text(self) -> str:
        return format_length(self.start, self.end, self.pixel_spacing)

    @property
    def is_empty(self) -> bool:
        return self.start == self.end

    def remove(self) -> None:
        for item in (self.line_item, self.text_item):
            if item.scene() is not None:
                self.scene.removeItem(item)


class AngleMeasurement:
    """
    Two arms meeting at a vertex, labelled with the angle between them.

    The first drag draws the first arm and ends on the vertex. The second drag
    draws the second arm out of that vertex, wherever it starts.
    """

    def __init__(self, scene: QGraphicsScene, start: QPointF):
        self.scene = scene
        self.points: List[QPointF] = [QPointF(start), QPointF(start)]
        self.first_arm = _line_item(self.points[0], self.points[1])
        self.second_arm: Optional[QGraphicsLineItem] = None
        self.text_item = _text_item()
        scene.addItem(self.first_arm)
        scene.addItem(self.text_item)

    @property
    def vertex(self) -> QPointF:
        return self.points[1]

    def begin_second_arm(self) -> None:
        """Start the second arm at the vertex."""
        if self.second_arm is not None:
            return
        self.points.append(QPointF(self.vertex))
        self.second_arm = _line_item(self.vertex, self.vertex)
        self.scene.addItem(self.second_arm)

    def update(self, point: QPointF) -> None:
        """Move the free end of the arm being drawn."""
        if self.second_arm is None:
            self.points[1] = QPointF(point)
            self.first_arm.setLine(QLineF(self.points[0], self.points[1]))
        else:
            self.points[2] = QPointF(point)
            self.second_arm.setLine(QLineF(self.vertex, self.points[2]))
            self.text_item.setPlainText(self.text)
            self.text_item.setPos(self.vertex)

    def finish(self, point: QPointF) -> bool:
        """
        End the current drag.

        Returns:
            True once both arms are drawn
        """
        self.update(point)
        return self.second_arm is not None

    @property
    def angle(self) -> Optional[float]:
        if len(self.points) < 3:
            return None
        return angle_degrees(self.points[0], self.vertex, self.points[2])

    @property
    def text(self) -> str:
        angle = self.angle
        return "" if angle is None else f"{angle:.1f}°"

    def remove(self) -> None:
        for item in (self.first_arm, self.second_arm, self.text_item):
            if item is not None and item.scene() is not None:
                self.scene.removeItem(item)
