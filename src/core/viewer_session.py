"""
Viewer Session

Action entry points for the presentation layer. The session wires the layout
resolver, viewport registry, surface lifecycle, stack navigation controller,
metadata/thumbnail cache and data source together; every collaborator is
injected so the whole engine can run against fakes in tests.

Layout changes follow a fixed sequence:
    1. resolve the layout id (unknown ids fall back to 1x1)
    2. invalidate in-flight navigation requests
    3. reconcile the registry (removed cells, new cells, cleared survivors)
    4. tear down the surfaces of removed cells, once each
    5. purge the toolkit image cache
    6. blank the surfaces of surviving cells and enable one per visible cell
    7. re-request the current series for the newly active cell

Inputs:
    - User actions: layout selection, study/series selection, scrolling,
      active cell changes, retries, resizes
    - Display anchors from the cell widgets

Outputs:
    - State changes published by the ViewportRegistry signals
    - Thumbnail URLs and display metadata for the presentation layer

Requirements:
    - core engine modules
    - utils.config_manager (optional) to persist the selected layout
"""

from dataclasses import replace
from typing import Any, Dict, List, Optional, Tuple

from core.data_source import DicomDataSource
from core.dicom_models import DisplayMetadata, MultiFrameSource, SeriesSummary, StudySummary
from core.layout_resolver import ResolvedLayout, resolve_layout
from core.metadata_cache import MetadataThumbnailCache
from core.rendering_toolkit import RenderingToolkit
from core.stack_navigation import StackNavigationController
from core.surface_lifecycle import RenderingSurfaceLifecycle
from core.viewport_registry import ViewportRegistry
from utils.debug_log import debug_log


class ViewerSession:
    """
    Orchestrates the viewport engine for one viewer window.

    Components not passed in are created with default settings.
    """

    def __init__(
        self,
        toolkit: RenderingToolkit,
        data_source: DicomDataSource,
        registry: Optional[ViewportRegistry] = None,
        lifecycle: Optional[RenderingSurfaceLifecycle] = None,
        navigator: Optional[StackNavigationController] = None,
        cache: Optional[MetadataThumbnailCache] = None,
        config_manager: Optional[Any] = None,
        fit_margin: float = 0.9,
    ):
        """
        Initialize the session.

        Args:
            toolkit: Rendering toolkit
            data_source: DICOM data source
            registry: Viewport registry (created if None)
            lifecycle: Surface lifecycle (created if None)
            navigator: Stack navigation controller (created if None)
            cache: Metadata/thumbnail cache (created if None)
            config_manager: Optional ConfigManager used to persist the layout
            fit_margin: Fit margin for newly created navigators
        """
        self.toolkit = toolkit
        self.data_source = data_source
        self.registry = registry if registry is not None else ViewportRegistry()
        self.lifecycle = lifecycle if lifecycle is not None else RenderingSurfaceLifecycle(toolkit)
        self.navigator = navigator if navigator is not None else StackNavigationController(
            self.registry, self.lifecycle, toolkit, data_source, fit_margin=fit_margin
        )
        self.cache = cache if cache is not None else MetadataThumbnailCache(data_source)
        self.config_manager = config_manager

        self.current_study: Optional[StudySummary] = None
        self.current_study_uid: str = ""
        self.current_series_uid: str = ""
        self.series: List[SeriesSummary] = []
        # cell_id -> (study_uid, series_uid) last requested for the cell
        self._cell_series: Dict[str, Tuple[str, str]] = {}
        self._closed = False

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    async def select_layout(self, layout_id: Optional[str]) -> ResolvedLayout:
        """
        Switch the grid to a layout and reload the current series into the active cell.

        Args:
            layout_id: Layout identifier (invalid ids fall back to 1x1)

        Returns:
            The layout actually applied
        """
        layout = resolve_layout(layout_id)
        self.navigator.reset_all()
        removed = self.registry.apply_layout(layout)
        for cell_id in removed:
            self.lifecycle.teardown_surface(cell_id)
        self.lifecycle.purge_image_cache()
        # Surviving cells were cleared too
        self._cell_series.clear()

        enabled = []
        for cell_id in self.registry.viewport_ids():
            if self.lifecycle.has_live_surface(cell_id):
                self.lifecycle.clear_surface(cell_id)
            if self.lifecycle.ensure_surface(cell_id) is not None:
                enabled.append(cell_id)

        debug_log(
            "viewer_session.py:select_layout",
            "Layout selected",
            {"requested": layout.requested_id, "applied": layout.layout_id, "removed": removed,
             "enabled": enabled},
        )

        if self.config_manager is not None and not layout.is_fallback:
            self.config_manager.set_default_layout(layout.layout_id)

        active = self.registry.get_active_viewport_id()
        if active is not None and self.current_study_uid and self.current_series_uid:
            await self.select_series(self.current_series_uid, active)
        return layout

    def get_layout(self) -> Optional[ResolvedLayout]:
        return self.registry.get_layout()

    # ------------------------------------------------------------------
    # Studies and series
    # ------------------------------------------------------------------

    async def search_studies(self, params: Optional[Dict[str, Any]] = None) -> List[StudySummary]:
        """Worklist query; errors propagate to the caller (the worklist shows them)."""
        return await self.data_source.search_studies(params)

    async def open_study(self, study_uid: str, study: Optional[StudySummary] = None) -> List[SeriesSummary]:
        """
        Make a study current and load its first series into the active cell.

        Args:
            study_uid: Study to open
            study: Worklist summary of the study, if already known

        Returns:
            Series of the study (empty on failure)
        """
        previous = self.current_study_uid
        if previous and previous != study_uid:
            self.cache.release_study(previous)
        self.current_study_uid = study_uid
        self.current_study = study
        self.current_series_uid = ""
        self.series = []
        try:
            series = await self.data_source.list_series(study_uid)
        except Exception as e:
            print(f"Error loading series for study {study_uid}: {e}")
            active = self.registry.get_active_viewport_id()
            if active is not None:
                self.registry.fail_loading(active, f"Failed to load series list: {e}")
            return []
        if study_uid != self.current_study_uid:
            # Another study was opened meanwhile
            return series
        self.series = series
        if series:
            await self.select_series(series[0].series_uid)
        return series

    async def select_series(self, series_uid: str, cell_id: Optional[str] = None) -> bool:
        """
        Load a series of the current study into a cell (the active cell by default).

        A series made of a single multi-frame instance is loaded frame by frame.
        A series of several instances is stacked one image per instance, so a
        multi-frame instance among them shows its first frame only.

        Returns:
            True if the stack was loaded
        """
        target = cell_id if cell_id is not None else self.registry.get_active_viewport_id()
        if target is None or self.registry.get_viewport(target) is None:
            return False
        study_uid = self.current_study_uid
        if not study_uid:
            return False

        if target == self.registry.get_active_viewport_id():
            self.current_series_uid = series_uid
        self._cell_series[target] = (study_uid, series_uid)

        token = self.navigator.tracker.next(target)
        self.registry.begin_loading(target)
        try:
            instances = await self.data_source.list_instances(study_uid, series_uid)
            multiframe: Optional[MultiFrameSource] = None
            if len(instances) == 1 and instances[0].is_multiframe:
                instance = instances[0]
                dataset = await self.data_source.get_instance_metadata(
                    study_uid, series_uid, instance.sop_instance_uid
                )
                multiframe = MultiFrameSource.from_dataset(
                    dataset, study_uid, series_uid, instance.sop_instance_uid
                )
                if multiframe.frame_count <= 1:
                    # Metadata lacks NumberOfFrames; trust the listing
                    multiframe = replace(multiframe, frame_count=instance.number_of_frames)
                image_ids = self.data_source.frame_image_ids(
                    study_uid, series_uid, instance.sop_instance_uid, multiframe.frame_count
                )
            else:
                image_ids = [
                    self.data_source.image_id_for(study_uid, series_uid, i.sop_instance_uid)
                    for i in instances
                ]
        except Exception as e:
            if self.navigator.tracker.is_current(target, token):
                print(f"Error loading series {series_uid}: {e}")
                self.registry.fail_loading(target, f"Failed to load series: {e}")
            return False

        if not self.navigator.tracker.is_current(target, token):
            return False
        return await self.navigator.load_stack(
            target, image_ids, study_uid, series_uid, multiframe=multiframe
        )

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    def _resolve_cell(self, cell_id: Optional[str]) -> Optional[str]:
        return cell_id if cell_id is not None else self.registry.get_active_viewport_id()

    async def scroll_by(self, delta: int, cell_id: Optional[str] = None) -> bool:
        target = self._resolve_cell(cell_id)
        if target is None:
            return False
        return await self.navigator.scroll_by(target, delta)

    async def scroll_to(self, index: int, cell_id: Optional[str] = None) -> bool:
        target = self._resolve_cell(cell_id)
        if target is None:
            return False
        return await self.navigator.go_to(target, index)

    async def scroll_to_fraction(self, fraction: float, cell_id: Optional[str] = None) -> bool:
        target = self._resolve_cell(cell_id)
        if target is None:
            return False
        return await self.navigator.scroll_to_fraction(target, fraction)

    async def next_image(self, cell_id: Optional[str] = None) -> bool:
        target = self._resolve_cell(cell_id)
        if target is None:
            return False
        return await self.navigator.next(target)

    async def previous_image(self, cell_id: Optional[str] = None) -> bool:
        target = self._resolve_cell(cell_id)
        if target is None:
            return False
        return await self.navigator.previous(target)

    def set_active_cell(self, cell_id: str) -> bool:
        """Make a cell active; the series panel then follows that cell."""
        if not self.registry.set_active_viewport(cell_id):
            return False
        state = self.registry.get_viewport(cell_id)
        if state is not None and state.series_uid:
            self.current_series_uid = state.series_uid
        return True

    async def retry_cell(self, cell_id: str) -> bool:
        """
        Retry after a load or navigation error.

        A cell with a stack reloads its current image; an empty cell reloads
        the series last requested for it.
        """
        state = self.registry.get_viewport(cell_id)
        if state is None:
            return False
        self.registry.clear_error(cell_id)
        if state.image_ids:
            return await self.navigator.reload_current(cell_id)
        requested = self._cell_series.get(cell_id)
        if requested is None:
            return False
        study_uid, series_uid = requested
        if study_uid != self.current_study_uid:
            return False
        return await self.select_series(series_uid, cell_id)

    def handle_resize(self, cell_id: str) -> bool:
        return self.navigator.handle_resize(cell_id)

    # ------------------------------------------------------------------
    # Toolbar actions (routed to the active cell)
    # ------------------------------------------------------------------

    def set_active_tool(self, tool_name: str, cell_id: Optional[str] = None) -> bool:
        """
        Put a tool on the primary mouse button of a cell (the active cell by default).

        Returns:
            True if the tool was applied
        """
        target = self._resolve_cell(cell_id)
        if target is None or self.registry.get_viewport(target) is None:
            return False
        return self.lifecycle.set_primary_tool(target, tool_name)

    def get_active_tool(self, cell_id: Optional[str] = None) -> Optional[str]:
        """Tool on the primary button of a cell; None means the default binding."""
        target = self._resolve_cell(cell_id)
        if target is None:
            return None
        return self.lifecycle.get_primary_tool(target)

    def reset_view(self, cell_id: Optional[str] = None) -> bool:
        """Refit the displayed image of a cell (the active cell by default)."""
        target = self._resolve_cell(cell_id)
        if target is None:
            return False
        return self.navigator.reset_camera(target)

    # ------------------------------------------------------------------
    # Anchors
    # ------------------------------------------------------------------

    def register_anchor(self, cell_id: str, anchor: Any) -> None:
        self.lifecycle.register_anchor(cell_id, anchor)

    def unregister_anchor(self, cell_id: str, anchor: Any = None) -> None:
        """Forget a cell's anchor; in-flight requests for the cell are abandoned."""
        if anchor is None or self.lifecycle.get_anchor(cell_id) is anchor:
            self.navigator.reset_cell(cell_id)
        self.lifecycle.unregister_anchor(cell_id, anchor)

    # ------------------------------------------------------------------
    # Derived artifacts
    # ------------------------------------------------------------------

    async def get_metadata(self, image_id: str) -> Optional[DisplayMetadata]:
        return await self.cache.get_metadata(image_id)

    async def get_thumbnail(self, study_uid: str, series_uid: str) -> Optional[str]:
        return await self.cache.get_thumbnail(study_uid, series_uid)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Tear down every surface, revoke all thumbnails and clear the registry."""
        if self._closed:
            return
        self._closed = True
        self.navigator.reset_all()
        self.lifecycle.teardown_all()
        self.cache.teardown()
        self.registry.clear()
        self._cell_series.clear()
        debug_log("viewer_session.py:close", "Session closed", {})

    @property
    def is_closed(self) -> bool:
        return self._closed
