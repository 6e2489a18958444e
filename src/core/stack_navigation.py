"""
Stack Navigation Controller

Loads image stacks into display cells and moves the current image within a
stack in response to wheel, drag, keyboard and button input.

Every request takes a generation token for its cell. After each await the
request re-checks that its token is still current (otherwise the result is
stale and silently dropped) and that the cell's anchor is still attached
(otherwise the cell went away and the request aborts).

Multi-frame instances are navigated frame by frame: the stack holds
synthesized per-frame image ids and each frame is fetched from the data source
(1-based frame numbers) and handed to the toolkit as raw pixels.

Inputs:
    - ViewportRegistry (state owner)
    - RenderingSurfaceLifecycle (surfaces and engine recovery)
    - RenderingToolkit (image decode and display)
    - DicomDataSource (multi-frame frame fetches)

Outputs:
    - Committed stacks and current indices in the registry
    - Displayed, fitted images on the cell surfaces

Requirements:
    - asyncio-compatible callers (qasync loop in the application)
    - utils.debug_log for navigation tracing
"""

from typing import Any, Dict, Optional, Sequence

from core.data_source import DicomDataSource
from core.dicom_models import MultiFrameSource
from core.input_timing import fraction_to_index
from core.rendering_toolkit import EngineDestroyedError, ImageInfo, RenderingToolkit, fit_camera
from core.request_tokens import GenerationTracker
from core.surface_lifecycle import RenderingSurfaceLifecycle, SurfaceHandle, SurfaceUnavailableError
from core.viewport_registry import ViewportRegistry
from utils.debug_log import debug_log


class StackNavigationController:
    """
    Drives stack loading and frame navigation for all cells.

    Features:
    - Last-request-wins per cell via generation tokens
    - Clamped, idempotent navigation (no wraparound)
    - Destroyed-engine recovery through the surface lifecycle
    - Multi-frame fallback through raw frame fetches
    """

    def __init__(
        self,
        registry: ViewportRegistry,
        lifecycle: RenderingSurfaceLifecycle,
        toolkit: RenderingToolkit,
        data_source: DicomDataSource,
        fit_margin: float = 0.9,
        tracker: Optional[GenerationTracker] = None,
    ):
        """
        Initialize the controller.

        Args:
            registry: Viewport state owner
            lifecycle: Surface lifecycle for the cells
            toolkit: Rendering toolkit
            data_source: Source of multi-frame frames
            fit_margin: Fraction of the cell an image fills after load
            tracker: Optional shared generation tracker
        """
        self.registry = registry
        self.lifecycle = lifecycle
        self.toolkit = toolkit
        self.data_source = data_source
        self.fit_margin = fit_margin
        self.tracker = tracker if tracker is not None else GenerationTracker()
        # cell_id -> image id of the last navigation request that was issued
        self._last_requested: Dict[str, str] = {}
        # cell_id -> engine instance the current stack was assigned to
        self._stack_engines: Dict[str, Any] = {}
        # cell_id -> index and geometry of the image actually on screen
        self._shown_index: Dict[str, int] = {}
        self._shown_info: Dict[str, ImageInfo] = {}

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load_stack(
        self,
        cell_id: str,
        image_ids: Sequence[str],
        study_uid: str = "",
        series_uid: str = "",
        multiframe: Optional[MultiFrameSource] = None,
    ) -> bool:
        """
        Replace a cell's stack and show its first image, fitted to the cell.

        On failure the error is recorded on the cell and the previous stack is
        kept, with its index back on the image still displayed. A newer request
        for the same cell makes this one a silent no-op.

        Args:
            cell_id: Target cell
            image_ids: Ordered image ids
            study_uid: Study of the stack
            series_uid: Series of the stack
            multiframe: Frame source when image_ids are frames of one instance

        Returns:
            True if the stack was committed
        """
        if self.registry.get_viewport(cell_id) is None:
            return False
        image_ids = list(image_ids)
        token = self.tracker.next(cell_id)
        # Any pending navigation is superseded
        self._last_requested.pop(cell_id, None)

        if not image_ids:
            self._fail_stack(cell_id, "No images available for this series")
            return False

        self.registry.begin_loading(cell_id)
        debug_log(
            "stack_navigation.py:load_stack",
            "Loading stack",
            {"count": len(image_ids), "series_uid": series_uid, "multiframe": multiframe is not None},
            cell_id,
        )

        if self.lifecycle.ensure_surface(cell_id) is None:
            self._fail_stack(cell_id, "Viewport is not available")
            return False

        frame: Optional[bytes] = None
        info: Optional[ImageInfo] = None
        try:
            if multiframe is not None:
                frame = await self.data_source.get_frame(
                    multiframe.study_uid,
                    multiframe.series_uid,
                    multiframe.instance_uid,
                    multiframe.frame_number(0),
                )
            else:
                info = await self.toolkit.load_image(image_ids[0])
        except Exception as e:
            if self.tracker.is_current(cell_id, token):
                print(f"Error loading stack for {cell_id}: {e}")
                self._fail_stack(cell_id, f"Failed to load image: {e}")
            return False

        if not self._still_wanted(cell_id, token):
            return False

        def apply(engine: Any, handle: SurfaceHandle) -> None:
            if multiframe is not None:
                shown = self.toolkit.display_frame(
                    engine, handle.surface_id, frame, multiframe, multiframe.frame_number(0)
                )
            else:
                self.toolkit.set_stack(engine, handle.surface_id, image_ids, 0)
                shown = info
            self._stack_engines[cell_id] = engine
            self._shown_index[cell_id] = 0
            if shown is not None:
                self._shown_info[cell_id] = shown
            self._fit(engine, handle, shown)
            self.toolkit.render(engine, handle.surface_id)

        try:
            self.lifecycle.run_on_surface(cell_id, apply)
        except (EngineDestroyedError, SurfaceUnavailableError) as e:
            print(f"Error displaying stack for {cell_id}: {e}")
            self._fail_stack(cell_id, f"Failed to display image: {e}")
            return False

        self.registry.commit_stack(cell_id, image_ids, study_uid, series_uid, multiframe)
        self._last_requested[cell_id] = image_ids[0]
        return True

    def _fail_stack(self, cell_id: str, error: str) -> None:
        """Record a failed stack load; the kept stack points back at the image on screen."""
        self.registry.fail_loading(cell_id, error)
        state = self.registry.get_viewport(cell_id)
        shown = self._shown_index.get(cell_id)
        if state is None or shown is None or not state.image_ids:
            return
        if shown < len(state.image_ids):
            self.registry.set_current_index(cell_id, shown)
            self._last_requested[cell_id] = state.image_ids[shown]

    def _fit(self, engine: Any, handle: SurfaceHandle, info: Optional[ImageInfo]) -> None:
        if info is None:
            return
        canvas = self.toolkit.get_canvas_size(engine, handle.surface_id)
        camera = fit_camera(canvas, (info.width, info.height), self.fit_margin)
        self.toolkit.set_camera(engine, handle.surface_id, camera)

    def _still_wanted(self, cell_id: str, token: int) -> bool:
        """True if the request is still the latest one and its cell is still displayed."""
        if not self.tracker.is_current(cell_id, token):
            debug_log("stack_navigation.py:_still_wanted", "Stale result discarded", {"token": token}, cell_id)
            return False
        if not self.lifecycle.is_anchor_attached(cell_id):
            debug_log("stack_navigation.py:_still_wanted", "Anchor detached; aborting", {}, cell_id)
            self.registry.end_loading(cell_id)
            return False
        return True

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    async def go_to(self, cell_id: str, index: int) -> bool:
        """
        Show the image at index (clamped to the stack).

        No-op for unknown cells, empty stacks, cells with a stack load in
        flight, and when the target image is the one last requested.

        Args:
            cell_id: Target cell
            index: Requested index

        Returns:
            True if a new image was displayed
        """
        state = self.registry.get_viewport(cell_id)
        if state is None or not state.image_ids or state.is_loading:
            return False

        clamped = max(0, min(int(index), len(state.image_ids) - 1))
        target = state.image_ids[clamped]
        if self._last_requested.get(cell_id) == target:
            return False

        token = self.tracker.next(cell_id)
        self._last_requested[cell_id] = target
        self.registry.set_current_index(cell_id, clamped)
        multiframe = state.multiframe

        frame: Optional[bytes] = None
        info: Optional[ImageInfo] = None
        try:
            if multiframe is not None:
                frame = await self.data_source.get_frame(
                    multiframe.study_uid,
                    multiframe.series_uid,
                    multiframe.instance_uid,
                    multiframe.frame_number(clamped),
                )
            else:
                info = await self.toolkit.load_image(target)
        except Exception as e:
            if self.tracker.is_current(cell_id, token):
                print(f"Error loading image {clamped + 1} for {cell_id}: {e}")
                self._last_requested.pop(cell_id, None)
                self.registry.fail_loading(cell_id, f"Failed to load image {clamped + 1}: {e}")
            return False

        if not self._still_wanted(cell_id, token):
            return False

        def apply(engine: Any, handle: SurfaceHandle) -> None:
            shown = info
            if multiframe is not None:
                shown = self.toolkit.display_frame(
                    engine, handle.surface_id, frame, multiframe, multiframe.frame_number(clamped)
                )
            elif self._stack_engines.get(cell_id) is engine:
                self.toolkit.set_image_index(engine, handle.surface_id, clamped)
            else:
                # Engine was recreated since the stack was assigned
                self.toolkit.set_stack(engine, handle.surface_id, state.image_ids, clamped)
                self._stack_engines[cell_id] = engine
            self._shown_index[cell_id] = clamped
            if shown is not None:
                self._shown_info[cell_id] = shown
            self.toolkit.render(engine, handle.surface_id)

        try:
            self.lifecycle.run_on_surface(cell_id, apply)
        except (EngineDestroyedError, SurfaceUnavailableError) as e:
            print(f"Error displaying image for {cell_id}: {e}")
            self._last_requested.pop(cell_id, None)
            self.registry.fail_loading(cell_id, f"Failed to display image: {e}")
            return False

        self.registry.clear_error(cell_id)
        return True

    async def next(self, cell_id: str) -> bool:
        """Go to the following image; no wraparound."""
        state = self.registry.get_viewport(cell_id)
        if state is None:
            return False
        return await self.go_to(cell_id, state.current_index + 1)

    async def previous(self, cell_id: str) -> bool:
        """Go to the preceding image; no wraparound."""
        state = self.registry.get_viewport(cell_id)
        if state is None:
            return False
        return await self.go_to(cell_id, state.current_index - 1)

    async def scroll_by(self, cell_id: str, delta: int) -> bool:
        """Move delta images (negative scrolls back)."""
        state = self.registry.get_viewport(cell_id)
        if state is None or delta == 0:
            return False
        return await self.go_to(cell_id, state.current_index + delta)

    async def scroll_to_fraction(self, cell_id: str, fraction: float) -> bool:
        """Jump to the image at a fractional track position (drag-to-scroll)."""
        state = self.registry.get_viewport(cell_id)
        if state is None or not state.image_ids:
            return False
        return await self.go_to(cell_id, fraction_to_index(fraction, len(state.image_ids)))

    async def reload_current(self, cell_id: str) -> bool:
        """Re-request the current image even if it was the last one requested."""
        state = self.registry.get_viewport(cell_id)
        if state is None or not state.image_ids:
            return False
        self._last_requested.pop(cell_id, None)
        return await self.go_to(cell_id, state.current_index)

    # ------------------------------------------------------------------
    # Resize and bookkeeping
    # ------------------------------------------------------------------

    def handle_resize(self, cell_id: str) -> bool:
        """
        Re-measure a cell's surface after its anchor was resized.

        The camera is preserved and the stack is not reloaded.

        Returns:
            True if the surface was resized
        """
        if not self.lifecycle.has_live_surface(cell_id):
            return False

        def apply(engine: Any, handle: SurfaceHandle) -> None:
            self.toolkit.resize(engine, keep_camera=True)
            self.toolkit.render(engine, handle.surface_id)

        try:
            self.lifecycle.run_on_surface(cell_id, apply)
        except (EngineDestroyedError, SurfaceUnavailableError) as e:
            print(f"Error resizing {cell_id}: {e}")
            return False
        return True

    def reset_camera(self, cell_id: str) -> bool:
        """
        Fit the displayed image to its cell again and drop any window/level drag.

        Returns:
            True if a displayed image was reset
        """
        info = self._shown_info.get(cell_id)
        if info is None or not self.lifecycle.has_live_surface(cell_id):
            return False

        def apply(engine: Any, handle: SurfaceHandle) -> None:
            self._fit(engine, handle, info)
            self.toolkit.render(engine, handle.surface_id)

        try:
            self.lifecycle.run_on_surface(cell_id, apply)
        except (EngineDestroyedError, SurfaceUnavailableError) as e:
            print(f"Error resetting view of {cell_id}: {e}")
            return False
        debug_log("stack_navigation.py:reset_camera", "Camera reset", {"image_id": info.image_id}, cell_id)
        return True

    def reset_cell(self, cell_id: str) -> None:
        """Invalidate in-flight requests of a cell and forget its last request."""
        self.tracker.invalidate(cell_id)
        self._last_requested.pop(cell_id, None)
        self._stack_engines.pop(cell_id, None)
        self._shown_index.pop(cell_id, None)
        self._shown_info.pop(cell_id, None)

    def reset_all(self) -> None:
        """Invalidate every in-flight request."""
        self.tracker.invalidate_all()
        self._last_requested.clear()
        self._stack_engines.clear()
        self._shown_index.clear()
        self._shown_info.clear()

    def last_requested_image_id(self, cell_id: str) -> Optional[str]:
        return self._last_requested.get(cell_id)
