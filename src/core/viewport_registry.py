"""
Viewport Registry

This module owns the per-cell viewport state of the viewer: which layout is
applied, which cell is active, and the image stack, current index, loading and
error state of every visible cell. It is the single writer of that state;
other components call its actions and read immutable snapshots.

Inputs:
    - ResolvedLayout from the layout resolver
    - Stack commits, index changes and load failures from the navigation controller
    - Active cell selection from the presentation layer

Outputs:
    - Immutable ViewportState snapshots
    - Qt signals describing every change (layout, added, removed, updated, active)

Requirements:
    - PySide6 for QObject/Signal
    - dataclasses (standard library)
"""

from dataclasses import dataclass, replace
from typing import Dict, List, Optional, Sequence, Tuple

from PySide6.QtCore import QObject, Signal

from core.dicom_models import MultiFrameSource
from core.layout_resolver import ResolvedLayout
from utils.debug_log import debug_log


def engine_id_for(cell_id: str) -> str:
    return f"engine-{cell_id}"


def surface_id_for(cell_id: str) -> str:
    return f"surface-{cell_id}"


@dataclass(frozen=True)
class ViewportState:
    """
    Snapshot of one display cell.

    Attributes:
        cell_id: Display cell id ("viewport-1", ...)
        engine_id: Rendering engine id bound to the cell
        surface_id: Rendering surface id bound to the cell
        image_ids: Ordered image ids of the loaded stack
        current_index: Index into image_ids (0 when the stack is empty)
        is_active: True for the single active cell
        is_loading: True while a stack load is in flight
        error: Last load/navigation error message, None if healthy
        study_uid: Study of the loaded stack
        series_uid: Series of the loaded stack
        multiframe: Frame source when the stack is a single multi-frame instance
    """

    cell_id: str
    engine_id: str
    surface_id: str
    image_ids: Tuple[str, ...] = ()
    current_index: int = 0
    is_active: bool = False
    is_loading: bool = False
    error: Optional[str] = None
    study_uid: str = ""
    series_uid: str = ""
    multiframe: Optional[MultiFrameSource] = None

    @property
    def stack_size(self) -> int:
        return len(self.image_ids)

    @property
    def current_image_id(self) -> Optional[str]:
        """Image id at current_index, or None for an empty stack."""
        if not self.image_ids:
            return None
        return self.image_ids[self.current_index]


class ViewportRegistry(QObject):
    """
    Injectable state container for display cells.

    Signals are emitted after the state change they describe has been applied,
    so handlers always observe the new state.
    """

    # Signals
    layout_changed = Signal(object)  # ResolvedLayout
    viewport_added = Signal(str)  # cell_id
    viewport_removed = Signal(str)  # cell_id
    viewport_updated = Signal(str)  # cell_id
    active_viewport_changed = Signal(str)  # cell_id ("" when no cell is active)

    def __init__(self, parent: Optional[QObject] = None):
        super().__init__(parent)
        self._layout: Optional[ResolvedLayout] = None
        self._viewports: Dict[str, ViewportState] = {}
        self._order: List[str] = []
        self._active_id: Optional[str] = None

    # ------------------------------------------------------------------
    # Selectors
    # ------------------------------------------------------------------

    def get_layout(self) -> Optional[ResolvedLayout]:
        return self._layout

    def get_viewport(self, cell_id: str) -> Optional[ViewportState]:
        return self._viewports.get(cell_id)

    def viewport_ids(self) -> List[str]:
        """Visible cell ids in grid order."""
        return list(self._order)

    def get_active_viewport_id(self) -> Optional[str]:
        return self._active_id

    def get_active_viewport(self) -> Optional[ViewportState]:
        if self._active_id is None:
            return None
        return self._viewports.get(self._active_id)

    def snapshot(self) -> Dict[str, ViewportState]:
        """Copy of all viewport states keyed by cell id."""
        return dict(self._viewports)

    # ------------------------------------------------------------------
    # Actions
    # ------------------------------------------------------------------

    def apply_layout(self, layout: ResolvedLayout) -> List[str]:
        """
        Reconcile cells against a newly resolved layout.

        Cells missing from the new layout are removed, new visible cells are
        created empty, and surviving cells keep their surface but have their
        stack cleared. The first visible cell becomes active.

        Args:
            layout: Resolved layout to apply

        Returns:
            Ids of removed cells (the caller tears down their surfaces)
        """
        new_ids = layout.cell_ids()
        removed = [cell_id for cell_id in self._order if cell_id not in new_ids]
        added: List[str] = []
        survivors: List[str] = []

        for cell_id in removed:
            self._viewports.pop(cell_id, None)

        for cell_id in new_ids:
            if cell_id in self._viewports:
                self._viewports[cell_id] = replace(
                    self._viewports[cell_id],
                    image_ids=(),
                    current_index=0,
                    is_active=False,
                    is_loading=False,
                    error=None,
                    study_uid="",
                    series_uid="",
                    multiframe=None,
                )
                survivors.append(cell_id)
            else:
                self._viewports[cell_id] = ViewportState(
                    cell_id=cell_id,
                    engine_id=engine_id_for(cell_id),
                    surface_id=surface_id_for(cell_id),
                )
                added.append(cell_id)

        self._order = list(new_ids)
        self._layout = layout
        self._active_id = None
        if self._order:
            first = self._order[0]
            self._viewports[first] = replace(self._viewports[first], is_active=True)
            self._active_id = first

        debug_log(
            "viewport_registry.py:apply_layout",
            "Layout applied",
            {"layout_id": layout.layout_id, "added": added, "removed": removed, "kept": survivors},
        )

        self.layout_changed.emit(layout)
        for cell_id in removed:
            self.viewport_removed.emit(cell_id)
        for cell_id in added:
            self.viewport_added.emit(cell_id)
        for cell_id in survivors:
            self.viewport_updated.emit(cell_id)
        self.active_viewport_changed.emit(self._active_id or "")
        return removed

    def set_active_viewport(self, cell_id: str) -> bool:
        """
        Make a cell the single active cell.

        Args:
            cell_id: Cell to activate

        Returns:
            True if the cell exists (activating the active cell is a no-op)
        """
        if cell_id not in self._viewports:
            return False
        if self._active_id == cell_id:
            return True
        previous = self._active_id
        if previous is not None and previous in self._viewports:
            self._viewports[previous] = replace(self._viewports[previous], is_active=False)
        self._viewports[cell_id] = replace(self._viewports[cell_id], is_active=True)
        self._active_id = cell_id
        if previous is not None and previous in self._viewports:
            self.viewport_updated.emit(previous)
        self.viewport_updated.emit(cell_id)
        self.active_viewport_changed.emit(cell_id)
        return True

    def begin_loading(self, cell_id: str) -> bool:
        """Mark a cell as loading and clear its error."""
        return self._update(cell_id, is_loading=True, error=None)

    def commit_stack(
        self,
        cell_id: str,
        image_ids: Sequence[str],
        study_uid: str = "",
        series_uid: str = "",
        multiframe: Optional[MultiFrameSource] = None,
    ) -> bool:
        """
        Replace a cell's stack after a successful load.

        Args:
            cell_id: Target cell
            image_ids: New ordered image ids (non-empty)
            study_uid: Study the stack belongs to
            series_uid: Series the stack belongs to
            multiframe: Frame source for a single multi-frame instance

        Returns:
            True if the cell exists and the stack was non-empty
        """
        if not image_ids:
            return False
        return self._update(
            cell_id,
            image_ids=tuple(image_ids),
            current_index=0,
            is_loading=False,
            error=None,
            study_uid=study_uid,
            series_uid=series_uid,
            multiframe=multiframe,
        )

    def fail_loading(self, cell_id: str, error: str) -> bool:
        """Record a failure; the existing stack and index are left untouched."""
        return self._update(cell_id, is_loading=False, error=error)

    def end_loading(self, cell_id: str) -> bool:
        """Clear the loading flag without touching stack or error."""
        return self._update(cell_id, is_loading=False)

    def set_current_index(self, cell_id: str, index: int) -> bool:
        """
        Set a cell's current index.

        Args:
            cell_id: Target cell
            index: New index; must lie within the stack

        Returns:
            True if the index changed
        """
        state = self._viewports.get(cell_id)
        if state is None or not state.image_ids:
            return False
        if index < 0 or index >= len(state.image_ids):
            return False
        if index == state.current_index:
            return False
        return self._update(cell_id, current_index=index)

    def clear_error(self, cell_id: str) -> bool:
        state = self._viewports.get(cell_id)
        if state is None or state.error is None:
            return False
        return self._update(cell_id, error=None)

    def remove_viewport(self, cell_id: str) -> bool:
        """
        Remove a single cell. If it was active, the first remaining cell becomes active.

        Returns:
            True if the cell existed
        """
        if cell_id not in self._viewports:
            return False
        del self._viewports[cell_id]
        if cell_id in self._order:
            self._order.remove(cell_id)
        self.viewport_removed.emit(cell_id)
        if self._active_id == cell_id:
            self._active_id = None
            if self._order:
                self.set_active_viewport(self._order[0])
            else:
                self.active_viewport_changed.emit("")
        return True

    def clear(self) -> None:
        """Remove every cell and forget the layout."""
        removed = list(self._order)
        self._viewports.clear()
        self._order = []
        self._active_id = None
        self._layout = None
        for cell_id in removed:
            self.viewport_removed.emit(cell_id)
        if removed:
            self.active_viewport_changed.emit("")

    def _update(self, cell_id: str, **changes) -> bool:
        state = self._viewports.get(cell_id)
        if state is None:
            return False
        self._viewports[cell_id] = replace(state, **changes)
        self.viewport_updated.emit(cell_id)
        return True
