"""
Qt Rendering Toolkit

PySide6 implementation of the RenderingToolkit boundary. Each engine owns one
or more StackSurfaceView widgets (QGraphicsView) placed inside the display
anchor of a cell. Images are fetched as Part 10 objects, decoded with pydicom,
windowed with numpy, converted through Pillow to QImage and shown as a pixmap
item; the camera maps onto the view transform.

An engine counts as destroyed once destroy_engine ran or once Qt deleted one of
its views (for example together with the parent cell widget). Calls on such an
engine raise EngineDestroyedError so the surface lifecycle can recreate it.

Inputs:
    - Image ids (decoded through the data source)
    - Raw multi-frame frames
    - Mouse drags on the views (pan, zoom, window/level, length, angle)

Outputs:
    - Displayed, windowed images
    - window_level_changed signal per view

Requirements:
    - PySide6 for the graphics view
    - numpy, Pillow, pydicom for decoding and display conversion
"""

import asyncio
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
from PIL import Image
from PySide6.QtCore import QPointF, QRectF, Qt, Signal
from PySide6.QtGui import QColor, QImage, QPainter, QPixmap, QTransform
from PySide6.QtWidgets import QFrame, QGraphicsPixmapItem, QGraphicsScene, QGraphicsView, QWidget
from pydicom.dataset import Dataset

from core.data_source import DicomDataSource
from core.dicom_models import MultiFrameSource
from core.dicom_window_level import (
    apply_color_window_level_luminance,
    apply_window_level,
    default_window,
    get_rescale_parameters,
    get_window_level_from_dataset,
)
from core.dicomweb_client import parse_image_id
from core.multiframe_handler import frame_from_bytes, get_frame_pixel_array
from core.rendering_toolkit import (
    ANGLE_TOOL,
    LENGTH_TOOL,
    MEASUREMENT_TOOLS,
    MOUSE_LEFT,
    MOUSE_MIDDLE,
    MOUSE_RIGHT,
    PAN_TOOL,
    STACK_VIEWPORT,
    WINDOW_LEVEL_TOOL,
    ZOOM_TOOL,
    Camera,
    EngineDestroyedError,
    ImageInfo,
    RenderingToolkit,
)
from gui.measurement_items import AngleMeasurement, LengthMeasurement, get_pixel_spacing
from utils.debug_log import debug_log


# Scene is much larger than any image so centerOn() can pan freely
SCENE_EXTENT = 1_000_000.0

MIN_SCALE = 0.05
MAX_SCALE = 20.0


@dataclass
class DecodedImage:
    """
    Pixel data ready for windowing.

    Grayscale pixels hold modality values (rescale applied) as float32;
    RGB pixels are kept as uint8 (rows, columns, 3).
    """

    image_id: str
    pixels: np.ndarray
    is_color: bool
    window_center: float
    window_width: float
    pixel_spacing: Optional[Tuple[float, float]] = None

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    def info(self) -> ImageInfo:
        return ImageInfo(
            image_id=self.image_id,
            width=self.width,
            height=self.height,
            window_width=self.window_width,
            window_center=self.window_center,
        )


def _decoded(
    image_id: str,
    pixels: np.ndarray,
    slope: float,
    intercept: float,
    center: Optional[float],
    width: Optional[float],
    pixel_spacing: Optional[Tuple[float, float]] = None,
) -> DecodedImage:
    is_color = pixels.ndim == 3 and pixels.shape[2] == 3
    if is_color:
        values = np.ascontiguousarray(pixels.astype(np.uint8))
        fallback = (127.5, 255.0)
    else:
        values = pixels.astype(np.float32) * slope + intercept
        fallback = default_window(values)
    if center is None or width is None or width <= 0:
        center, width = fallback
    return DecodedImage(image_id, values, is_color, float(center), float(width), pixel_spacing)


def decode_dataset(image_id: str, dataset: Dataset) -> DecodedImage:
    """
    Decode the image an id refers to from its Part 10 dataset.

    Per-frame ids (.../frames/N) select frame N of a multi-frame instance.

    Raises:
        ValueError: if the dataset has no decodable pixels for the frame
    """
    ref = parse_image_id(image_id)
    frame_index = ref.frame_number - 1 if ref is not None and ref.frame_number else 0
    pixels = get_frame_pixel_array(dataset, frame_index)
    if pixels is None:
        raise ValueError(f"No pixel data for {image_id}")
    center, width = get_window_level_from_dataset(dataset)
    slope, intercept = get_rescale_parameters(dataset)
    return _decoded(image_id, pixels, slope, intercept, center, width, get_pixel_spacing(dataset))


def decode_frame(frame: bytes, source: MultiFrameSource, frame_number: int) -> DecodedImage:
    """
    Decode one raw frame of a multi-frame instance.

    Raises:
        ValueError: if the byte count does not match the frame geometry
    """
    pixels = frame_from_bytes(
        frame,
        source.rows,
        source.columns,
        source.bits_allocated,
        source.pixel_representation,
        source.samples_per_pixel,
    )
    if pixels is None:
        raise ValueError(f"Frame {frame_number} of {source.instance_uid} does not match {source.rows}x{source.columns}")
    return _decoded(
        f"{source.instance_uid}/frames/{frame_number}",
        pixels,
        source.rescale_slope,
        source.rescale_intercept,
        source.window_center,
        source.window_width,
    )


def to_qimage(decoded: DecodedImage, window_center: float, window_width: float) -> QImage:
    """Window an image and convert it to a QImage that owns its data."""
    if decoded.is_color:
        image = Image.fromarray(apply_color_window_level_luminance(decoded.pixels, window_center, window_width))
    else:
        image = Image.fromarray(apply_window_level(decoded.pixels, window_center, window_width))

    # Keep the bytes alive until Qt has copied them
    image_bytes = image.tobytes()
    if image.mode == "L":
        qimage = QImage(image_bytes, image.width, image.height, image.width, QImage.Format.Format_Grayscale8)
    else:
        if image.mode != "RGB":
            image = image.convert("RGB")
            image_bytes = image.tobytes()
        qimage = QImage(image_bytes, image.width, image.height, image.width * 3, QImage.Format.Format_RGB888)
    return qimage.copy()


class StackSurfaceView(QGraphicsView):
    """
    One rendering surface: a graphics view showing the current image of a stack.

    Mouse drags run the tool bound to the pressed button. Wheel events are left
    to the parent cell, which turns them into stack navigation.
    """

    # Signals
    window_level_changed = Signal(float, float)  # Emitted after a window/level drag (width, center)

    def __init__(self, surface_id: str, parent: Optional[QWidget] = None):
        super().__init__(parent)
        self.surface_id = surface_id

        self._scene = QGraphicsScene(self)
        self._scene.setSceneRect(QRectF(-SCENE_EXTENT, -SCENE_EXTENT, 2 * SCENE_EXTENT, 2 * SCENE_EXTENT))
        self.setScene(self._scene)

        self.setTransformationAnchor(QGraphicsView.ViewportAnchor.AnchorViewCenter)
        self.setResizeAnchor(QGraphicsView.ViewportAnchor.AnchorViewCenter)
        self.setHorizontalScrollBarPolicy(Qt.ScrollBarPolicy.ScrollBarAlwaysOff)
        self.setVerticalScrollBarPolicy(Qt.ScrollBarPolicy.ScrollBarAlwaysOff)
        self.setRenderHint(QPainter.RenderHint.SmoothPixmapTransform)
        self.setContextMenuPolicy(Qt.ContextMenuPolicy.PreventContextMenu)
        self.setFrameShape(QFrame.Shape.NoFrame)
        self.setBackgroundBrush(QColor(0, 0, 0))

        self.image_item: Optional[QGraphicsPixmapItem] = None
        self.decoded: Optional[DecodedImage] = None
        self.camera = Camera()
        self.image_ids: List[str] = []
        self.index = 0

        # mouse button -> tool name, shared with the tool group
        self.tool_bindings: Dict[int, str] = {}
        self._drag_tool: Optional[str] = None
        self._drag_button: Optional[Qt.MouseButton] = None
        self._drag_last: Optional[QPointF] = None

        # Finished measurements on the current image, the one being drawn and
        # an angle waiting for its second arm
        self.measurements: List[Any] = []
        self._measurement: Optional[Any] = None
        self._angle_pending: Optional[AngleMeasurement] = None

    # --- Display ---

    def show_image(self, decoded: DecodedImage) -> None:
        if self.decoded is None or self.decoded.image_id != decoded.image_id:
            self.clear_measurements()
        self.decoded = decoded
        self._redraw()
        self.apply_camera()

    def window_values(self) -> Tuple[float, float]:
        """Effective (center, width): camera override or image default."""
        if self.decoded is None:
            return 128.0, 256.0
        center = self.camera.window_center if self.camera.window_center is not None else self.decoded.window_center
        width = self.camera.window_width if self.camera.window_width is not None else self.decoded.window_width
        return center, width

    def _redraw(self) -> None:
        if self.decoded is None:
            return
        center, width = self.window_values()
        pixmap = QPixmap.fromImage(to_qimage(self.decoded, center, width))
        if self.image_item is None:
            self.image_item = QGraphicsPixmapItem(pixmap)
            self.image_item.setTransformationMode(Qt.TransformationMode.SmoothTransformation)
            self._scene.addItem(self.image_item)
        else:
            self.image_item.setPixmap(pixmap)

    def set_view_camera(self, camera: Camera) -> None:
        window_changed = (
            camera.window_center != self.camera.window_center
            or camera.window_width != self.camera.window_width
        )
        self.camera = Camera(camera.scale, tuple(camera.pan), camera.window_width, camera.window_center)
        if window_changed:
            self._redraw()
        self.apply_camera()

    def apply_camera(self) -> None:
        scale = self.camera.scale if self.camera.scale > 0 else 1.0
        self.setTransform(QTransform.fromScale(scale, scale))
        if self.decoded is None:
            return
        pan_x, pan_y = self.camera.pan
        self.centerOn(QPointF(self.decoded.width / 2.0 - pan_x / scale, self.decoded.height / 2.0 - pan_y / scale))

    def canvas_size(self) -> Tuple[int, int]:
        viewport = self.viewport()
        return viewport.width(), viewport.height()

    def clear_image(self) -> None:
        self.clear_measurements()
        self.decoded = None
        if self.image_item is not None:
            self._scene.removeItem(self.image_item)
            self.image_item = None

    # --- Interaction ---

    def _tool_for(self, button: Qt.MouseButton) -> Optional[str]:
        mouse = {
            Qt.MouseButton.LeftButton: MOUSE_LEFT,
            Qt.MouseButton.MiddleButton: MOUSE_MIDDLE,
            Qt.MouseButton.RightButton: MOUSE_RIGHT,
        }.get(button)
        if mouse is None:
            return None
        return self.tool_bindings.get(mouse)

    def mousePressEvent(self, event) -> None:
        tool = self._tool_for(event.button())
        if tool is None or self.decoded is None or self._drag_tool is not None:
            super().mousePressEvent(event)
            return
        self._drag_tool = tool
        self._drag_button = event.button()
        self._drag_last = event.position()
        if tool in MEASUREMENT_TOOLS:
            self.begin_measurement(tool, self.mapToScene(event.position().toPoint()))
        event.accept()

    def mouseMoveEvent(self, event) -> None:
        if self._drag_tool is None or self._drag_last is None:
            super().mouseMoveEvent(event)
            return
        position = event.position()
        dx = position.x() - self._drag_last.x()
        dy = position.y() - self._drag_last.y()
        self._drag_last = position
        if self._drag_tool in MEASUREMENT_TOOLS:
            self.update_measurement(self.mapToScene(position.toPoint()))
        else:
            self.apply_drag(self._drag_tool, dx, dy)
        event.accept()

    def mouseReleaseEvent(self, event) -> None:
        if self._drag_tool is not None and event.button() == self._drag_button:
            if self._drag_tool in MEASUREMENT_TOOLS:
                self.finish_measurement(self.mapToScene(event.position().toPoint()))
            self._drag_tool = None
            self._drag_button = None
            self._drag_last = None
            event.accept()
            return
        super().mouseReleaseEvent(event)

    def wheelEvent(self, event) -> None:
        # Stack navigation is handled by the cell
        event.ignore()

    def apply_drag(self, tool: str, dx: float, dy: float) -> None:
        """Apply a drag of (dx, dy) display pixels with a tool."""
        if tool == PAN_TOOL:
            pan_x, pan_y = self.camera.pan
            self.camera.pan = (pan_x + dx, pan_y + dy)
            self.apply_camera()
        elif tool == ZOOM_TOOL:
            factor = 1.0 - dy * 0.01
            self.camera.scale = min(max(self.camera.scale * factor, MIN_SCALE), MAX_SCALE)
            self.apply_camera()
        elif tool == WINDOW_LEVEL_TOOL:
            center, width = self.window_values()
            sensitivity = max(width / 256.0, 0.5)
            self.camera.window_width = max(width + dx * sensitivity, 1.0)
            self.camera.window_center = center + dy * sensitivity
            self._redraw()
            self.window_level_changed.emit(self.camera.window_width, self.camera.window_center)

    # --- Measurements ---

    def begin_measurement(self, tool: str, point: QPointF) -> None:
        """Start a Length or Angle drag at an image point."""
        if self.decoded is None:
            return
        if tool == ANGLE_TOOL and self._angle_pending is not None:
            self._angle_pending.begin_second_arm()
            self._measurement = self._angle_pending
        elif tool == LENGTH_TOOL:
            self._measurement = LengthMeasurement(self._scene, point, self.decoded.pixel_spacing)
        elif tool == ANGLE_TOOL:
            self._measurement = AngleMeasurement(self._scene, point)

    def update_measurement(self, point: QPointF) -> None:
        if self._measurement is not None:
            self._measurement.update(point)

    def finish_measurement(self, point: QPointF) -> None:
        measurement = self._measurement
        self._measurement = None
        if measurement is None:
            return
        complete = measurement.finish(point)
        if isinstance(measurement, LengthMeasurement) and measurement.is_empty:
            # A click without a drag draws nothing
            measurement.remove()
            return
        if not complete:
            self._angle_pending = measurement
            return
        if measurement is self._angle_pending:
            self._angle_pending = None
        self.measurements.append(measurement)

    def clear_measurements(self) -> None:
        """Remove every measurement from the scene."""
        for measurement in self.measurements:
            measurement.remove()
        for measurement in (self._measurement, self._angle_pending):
            if measurement is not None and measurement not in self.measurements:
                measurement.remove()
        self.measurements = []
        self._measurement = None
        self._angle_pending = None


class QtEngine:
    """Rendering engine handle: the surfaces it owns and whether it was destroyed."""

    def __init__(self, engine_id: str):
        self.engine_id = engine_id
        self.destroyed = False
        self.surfaces: Dict[str, StackSurfaceView] = {}
        self.anchors: Dict[str, Any] = {}

    def __repr__(self) -> str:
        state = "destroyed" if self.destroyed else "live"
        return f"<QtEngine {self.engine_id} {state}>"


@dataclass
class ToolGroup:
    """Tools available on a set of surfaces and their mouse bindings."""

    group_id: str
    tools: List[str] = field(default_factory=list)
    bindings: Dict[int, str] = field(default_factory=dict)
    surfaces: List[Tuple[str, str]] = field(default_factory=list)


class QtRenderingToolkit(RenderingToolkit):
    """
    RenderingToolkit drawing into QGraphicsView surfaces.

    Anchors passed to enable() must provide attach_surface(widget) and
    detach_surface(widget); the cell widgets do.
    """

    def __init__(self, data_source: DicomDataSource, cache_limit: int = 512):
        """
        Initialize the toolkit.

        Args:
            data_source: Source of Part 10 instances for load_image
            cache_limit: Maximum number of decoded images kept
        """
        self.data_source = data_source
        self.cache_limit = cache_limit
        self._images: "OrderedDict[str, DecodedImage]" = OrderedDict()
        self._engines: Dict[str, QtEngine] = {}
        self._tool_groups: Dict[str, ToolGroup] = {}

    # ------------------------------------------------------------------
    # Engines and surfaces
    # ------------------------------------------------------------------

    def create_engine(self, engine_id: str) -> QtEngine:
        engine = QtEngine(engine_id)
        self._engines[engine_id] = engine
        return engine

    def is_engine_destroyed(self, engine: QtEngine) -> bool:
        return engine.destroyed

    def _check(self, engine: QtEngine) -> None:
        if engine.destroyed:
            raise EngineDestroyedError(f"Engine {engine.engine_id} has been destroyed")

    def _surface(self, engine: QtEngine, surface_id: str) -> StackSurfaceView:
        self._check(engine)
        view = engine.surfaces.get(surface_id)
        if view is None:
            raise EngineDestroyedError(f"Surface {surface_id} is not enabled on {engine.engine_id}")
        return view

    def _on_view_destroyed(self, engine: QtEngine, surface_id: str) -> None:
        # Qt deleted the view behind our back
        if engine.surfaces.pop(surface_id, None) is not None:
            engine.anchors.pop(surface_id, None)
            engine.destroyed = True
            debug_log(
                "qt_rendering_toolkit.py:_on_view_destroyed",
                "Surface deleted by Qt; engine marked destroyed",
                {"engine_id": engine.engine_id, "surface_id": surface_id},
            )

    def enable(self, engine: QtEngine, surface_id: str, anchor: Any, viewport_type: str = STACK_VIEWPORT) -> None:
        self._check(engine)
        if viewport_type != STACK_VIEWPORT:
            raise ValueError(f"Unsupported viewport type: {viewport_type}")
        if surface_id in engine.surfaces:
            return
        view = StackSurfaceView(surface_id)
        view.destroyed.connect(lambda *_: self._on_view_destroyed(engine, surface_id))
        engine.surfaces[surface_id] = view
        engine.anchors[surface_id] = anchor
        anchor.attach_surface(view)

    def disable(self, engine: QtEngine, surface_id: str) -> None:
        self._check(engine)
        view = engine.surfaces.pop(surface_id, None)
        anchor = engine.anchors.pop(surface_id, None)
        if view is None:
            return
        for group in self._tool_groups.values():
            group.surfaces = [s for s in group.surfaces if s != (engine.engine_id, surface_id)]
        if anchor is not None:
            try:
                anchor.detach_surface(view)
            except RuntimeError as e:
                # Anchor widget already deleted
                print(f"Warning: Could not detach surface {surface_id}: {e}")
        view.setParent(None)
        view.deleteLater()

    def destroy_engine(self, engine: QtEngine) -> None:
        if engine.destroyed:
            return
        for surface_id in list(engine.surfaces):
            self.disable(engine, surface_id)
        engine.destroyed = True
        if self._engines.get(engine.engine_id) is engine:
            del self._engines[engine.engine_id]

    def resize(self, engine: QtEngine, keep_camera: bool = True) -> None:
        self._check(engine)
        for view in engine.surfaces.values():
            if not keep_camera and view.decoded is not None:
                view.camera = Camera()
            view.apply_camera()

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    async def load_image(self, image_id: str) -> ImageInfo:
        cached = self._images.get(image_id)
        if cached is not None:
            self._images.move_to_end(image_id)
            return cached.info()
        dataset = await self.data_source.retrieve_instance(image_id)
        decoded = await asyncio.to_thread(decode_dataset, image_id, dataset)
        self._remember(decoded)
        return decoded.info()

    def _remember(self, decoded: DecodedImage) -> None:
        self._images[decoded.image_id] = decoded
        self._images.move_to_end(decoded.image_id)
        while len(self._images) > self.cache_limit:
            self._images.popitem(last=False)

    def _show_index(self, view: StackSurfaceView, index: int) -> None:
        image_id = view.image_ids[index]
        decoded = self._images.get(image_id)
        if decoded is None:
            raise KeyError(f"Image {image_id} has not been loaded")
        view.index = index
        view.show_image(decoded)

    def set_stack(self, engine: QtEngine, surface_id: str, image_ids: Sequence[str], index: int = 0) -> None:
        view = self._surface(engine, surface_id)
        view.image_ids = list(image_ids)
        if not view.image_ids:
            view.clear_image()
            return
        self._show_index(view, max(0, min(index, len(view.image_ids) - 1)))

    def set_image_index(self, engine: QtEngine, surface_id: str, index: int) -> None:
        view = self._surface(engine, surface_id)
        if not 0 <= index < len(view.image_ids):
            raise IndexError(f"Index {index} outside stack of {len(view.image_ids)}")
        self._show_index(view, index)

    def display_frame(
        self, engine: QtEngine, surface_id: str, frame: bytes, source: MultiFrameSource, frame_number: int
    ) -> ImageInfo:
        view = self._surface(engine, surface_id)
        decoded = decode_frame(frame, source, frame_number)
        view.index = frame_number - 1
        view.show_image(decoded)
        return decoded.info()

    def render(self, engine: QtEngine, surface_id: str) -> None:
        self._surface(engine, surface_id).viewport().update()

    def get_camera(self, engine: QtEngine, surface_id: str) -> Camera:
        camera = self._surface(engine, surface_id).camera
        return Camera(camera.scale, tuple(camera.pan), camera.window_width, camera.window_center)

    def set_camera(self, engine: QtEngine, surface_id: str, camera: Camera) -> None:
        self._surface(engine, surface_id).set_view_camera(camera)

    def get_canvas_size(self, engine: QtEngine, surface_id: str) -> Tuple[int, int]:
        return self._surface(engine, surface_id).canvas_size()

    def purge_cache(self) -> None:
        self._images.clear()

    def cached_image_count(self) -> int:
        return len(self._images)

    # ------------------------------------------------------------------
    # Tools
    # ------------------------------------------------------------------

    def create_tool_group(self, group_id: str) -> None:
        self._tool_groups[group_id] = ToolGroup(group_id)

    def add_tool(self, group_id: str, tool_name: str) -> None:
        group = self._tool_groups[group_id]
        if tool_name not in group.tools:
            group.tools.append(tool_name)

    def set_tool_active(self, group_id: str, tool_name: str, mouse_button: int) -> None:
        group = self._tool_groups[group_id]
        if tool_name not in group.tools:
            raise ValueError(f"Tool {tool_name} was not added to {group_id}")
        group.bindings[mouse_button] = tool_name

    def add_surface(self, group_id: str, engine_id: str, surface_id: str) -> None:
        group = self._tool_groups[group_id]
        engine = self._engines.get(engine_id)
        if engine is None:
            raise EngineDestroyedError(f"Unknown engine {engine_id}")
        view = self._surface(engine, surface_id)
        view.tool_bindings = group.bindings
        if (engine_id, surface_id) not in group.surfaces:
            group.surfaces.append((engine_id, surface_id))

    def destroy_tool_group(self, group_id: str) -> None:
        group = self._tool_groups.pop(group_id, None)
        if group is None:
            return
        for engine_id, surface_id in group.surfaces:
            engine = self._engines.get(engine_id)
            if engine is not None and surface_id in engine.surfaces:
                engine.surfaces[surface_id].tool_bindings = {}

    def get_surface_view(self, engine: QtEngine, surface_id: str) -> Optional[StackSurfaceView]:
        """View of a surface, or None if the engine is destroyed or the surface disabled."""
        if engine.destroyed:
            return None
        return engine.surfaces.get(surface_id)
