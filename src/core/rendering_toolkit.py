"""
Rendering Toolkit Boundary

Abstract interface between the viewport engine and whatever actually draws
pixels. The engine only talks to a RenderingToolkit; the Qt implementation
lives in gui.qt_rendering_toolkit and tests use an in-memory fake.

An "engine" is an opaque object owned by the toolkit. It can be destroyed
behind the caller's back (for example when its widget is deleted); any call on
a destroyed engine raises EngineDestroyedError.

Inputs:
    - Engine, surface and tool group ids chosen by the surface lifecycle
    - Image ids and raw multi-frame frames from the navigation controller

Outputs:
    - ImageInfo for decoded images
    - Camera state per surface

Requirements:
    - abc, dataclasses (standard library)
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional, Sequence, Tuple

from core.dicom_models import MultiFrameSource


# Interaction tools attached to every surface
PAN_TOOL = "Pan"
ZOOM_TOOL = "Zoom"
WINDOW_LEVEL_TOOL = "WindowLevel"
STACK_SCROLL_TOOL = "StackScroll"
LENGTH_TOOL = "Length"
ANGLE_TOOL = "Angle"

ALL_TOOLS = (PAN_TOOL, ZOOM_TOOL, WINDOW_LEVEL_TOOL, STACK_SCROLL_TOOL, LENGTH_TOOL, ANGLE_TOOL)

MEASUREMENT_TOOLS = (LENGTH_TOOL, ANGLE_TOOL)

# Tools the toolbar can put on the primary mouse button
SELECTABLE_TOOLS = (WINDOW_LEVEL_TOOL, PAN_TOOL, ZOOM_TOOL, LENGTH_TOOL, ANGLE_TOOL)

# Mouse bindings
MOUSE_LEFT = 1
MOUSE_MIDDLE = 2
MOUSE_RIGHT = 3

DEFAULT_TOOL_BINDINGS = (
    (WINDOW_LEVEL_TOOL, MOUSE_LEFT),
    (PAN_TOOL, MOUSE_MIDDLE),
    (ZOOM_TOOL, MOUSE_RIGHT),
)

STACK_VIEWPORT = "stack"


class EngineDestroyedError(RuntimeError):
    """Raised when an operation targets an engine that has already been destroyed."""


@dataclass
class Camera:
    """
    View transform of a surface.

    Attributes:
        scale: Display pixels per image pixel
        pan: Offset of the image centre from the surface centre, in display pixels
        window_width: Current window width (None uses the image default)
        window_center: Current window center (None uses the image default)
    """

    scale: float = 1.0
    pan: Tuple[float, float] = (0.0, 0.0)
    window_width: Optional[float] = None
    window_center: Optional[float] = None


@dataclass(frozen=True)
class ImageInfo:
    """Geometry and default display values of a decoded image."""

    image_id: str
    width: int
    height: int
    window_width: Optional[float] = None
    window_center: Optional[float] = None


class RenderingToolkit(ABC):
    """
    Abstract rendering toolkit.

    Engine lifecycle calls are synchronous. Only image loading suspends.
    """

    # --- Engines and surfaces ---

    @abstractmethod
    def create_engine(self, engine_id: str) -> Any:
        """Create a rendering engine and return its handle."""
        pass

    @abstractmethod
    def is_engine_destroyed(self, engine: Any) -> bool:
        pass

    @abstractmethod
    def enable(self, engine: Any, surface_id: str, anchor: Any, viewport_type: str = STACK_VIEWPORT) -> None:
        """Bind a surface of the engine to a display anchor."""
        pass

    @abstractmethod
    def disable(self, engine: Any, surface_id: str) -> None:
        pass

    @abstractmethod
    def destroy_engine(self, engine: Any) -> None:
        pass

    @abstractmethod
    def resize(self, engine: Any, keep_camera: bool = True) -> None:
        """Re-measure every surface of the engine after its anchor changed size."""
        pass

    # --- Images ---

    @abstractmethod
    async def load_image(self, image_id: str) -> ImageInfo:
        """
        Fetch and decode an image into the toolkit cache.

        Raises:
            Exception: on fetch or decode failure
        """
        pass

    @abstractmethod
    def set_stack(self, engine: Any, surface_id: str, image_ids: Sequence[str], index: int = 0) -> None:
        """Assign an image stack to a surface and show the (already loaded) image at index.

        An empty stack clears the surface.
        """
        pass

    @abstractmethod
    def set_image_index(self, engine: Any, surface_id: str, index: int) -> None:
        """Show the (already loaded) image at index of the surface's stack."""
        pass

    @abstractmethod
    def display_frame(
        self, engine: Any, surface_id: str, frame: bytes, source: MultiFrameSource, frame_number: int
    ) -> ImageInfo:
        """Show one raw frame of a multi-frame instance."""
        pass

    @abstractmethod
    def render(self, engine: Any, surface_id: str) -> None:
        pass

    @abstractmethod
    def get_camera(self, engine: Any, surface_id: str) -> Camera:
        pass

    @abstractmethod
    def set_camera(self, engine: Any, surface_id: str, camera: Camera) -> None:
        pass

    @abstractmethod
    def get_canvas_size(self, engine: Any, surface_id: str) -> Tuple[int, int]:
        """Surface size in display pixels as (width, height)."""
        pass

    @abstractmethod
    def purge_cache(self) -> None:
        """Drop every decoded image from the toolkit cache."""
        pass

    # --- Tools ---

    @abstractmethod
    def create_tool_group(self, group_id: str) -> None:
        pass

    @abstractmethod
    def add_tool(self, group_id: str, tool_name: str) -> None:
        pass

    @abstractmethod
    def set_tool_active(self, group_id: str, tool_name: str, mouse_button: int) -> None:
        pass

    @abstractmethod
    def add_surface(self, group_id: str, engine_id: str, surface_id: str) -> None:
        pass

    @abstractmethod
    def destroy_tool_group(self, group_id: str) -> None:
        pass


def fit_camera(
    canvas_size: Tuple[int, int],
    image_size: Tuple[int, int],
    margin: float = 0.9,
    base: Optional[Camera] = None,
) -> Camera:
    """
    Camera that fits an image inside a canvas, centred.

    scale = min(canvas_w / image_w, canvas_h / image_h) * margin

    Args:
        canvas_size: (width, height) of the surface
        image_size: (width, height) of the image
        margin: Fraction of the canvas the image may fill
        base: Camera whose window values are preserved

    Returns:
        New Camera with recentred pan
    """
    canvas_w, canvas_h = canvas_size
    image_w, image_h = image_size
    if canvas_w <= 0 or canvas_h <= 0 or image_w <= 0 or image_h <= 0:
        scale = 1.0
    else:
        scale = min(canvas_w / image_w, canvas_h / image_h) * margin
    return Camera(
        scale=scale,
        pan=(0.0, 0.0),
        window_width=base.window_width if base is not None else None,
        window_center=base.window_center if base is not None else None,
    )
