"""
Rendering Surface Lifecycle

This module creates, tracks and destroys the rendering surface of each display
cell. A surface is an engine plus an enabled stack surface bound to the cell's
display anchor (its widget), with one tool group carrying the interaction
bindings.

Invariants:
    - At most one engine per cell id.
    - Interaction bindings are attached once per engine instance.
    - Teardown is idempotent and never raises.
    - Operations on a destroyed engine are recovered by recreating the engine
      and retrying exactly once.

Inputs:
    - Display anchors registered by the presentation layer
    - ensure/teardown requests from the viewer session and navigation controller

Outputs:
    - SurfaceHandle per live cell
    - Toolkit calls (create_engine, enable, disable, destroy_engine, tools)

Requirements:
    - core.rendering_toolkit boundary
    - utils.debug_log for lifecycle tracing
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, TypeVar

from core.rendering_toolkit import (
    ALL_TOOLS,
    DEFAULT_TOOL_BINDINGS,
    MOUSE_LEFT,
    SELECTABLE_TOOLS,
    STACK_VIEWPORT,
    EngineDestroyedError,
    RenderingToolkit,
)
from core.viewport_registry import engine_id_for, surface_id_for
from utils.debug_log import debug_log


T = TypeVar("T")


def tool_group_id_for(cell_id: str) -> str:
    return f"toolgroup-{cell_id}"


class SurfaceUnavailableError(RuntimeError):
    """Raised when a cell has no attached anchor to render into."""


@dataclass(frozen=True)
class SurfaceHandle:
    """Ids of the rendering resources bound to one cell."""

    cell_id: str
    engine_id: str
    surface_id: str
    tool_group_id: str


def call_with_engine_recovery(operation: Callable[[], T], recover: Callable[[], None]) -> T:
    """
    Run an operation, recreating the engine and retrying once if it was destroyed.

    Args:
        operation: Callable touching the engine
        recover: Callable that recreates the engine; may raise to abort

    Returns:
        Result of operation

    Raises:
        EngineDestroyedError: if the retry also hits a destroyed engine
    """
    try:
        return operation()
    except EngineDestroyedError:
        debug_log("surface_lifecycle.py:call_with_engine_recovery", "Engine destroyed; recreating", {})
        recover()
        return operation()


class RenderingSurfaceLifecycle:
    """
    Owns engines and surfaces per display cell.

    Anchors are any objects with an is_attached() method (the cell widgets in
    the application, simple fakes in tests).
    """

    def __init__(self, toolkit: RenderingToolkit):
        """
        Initialize the lifecycle.

        Args:
            toolkit: Rendering toolkit used for every engine operation
        """
        self.toolkit = toolkit
        self._anchors: Dict[str, Any] = {}
        self._engines: Dict[str, Any] = {}
        self._handles: Dict[str, SurfaceHandle] = {}
        # cell_id -> engine instance the tool group was bound for
        self._tool_bindings: Dict[str, Any] = {}
        # cell_id -> tool chosen for the primary button, reapplied on rebinding
        self._primary_tools: Dict[str, str] = {}

    # ------------------------------------------------------------------
    # Anchors
    # ------------------------------------------------------------------

    def register_anchor(self, cell_id: str, anchor: Any) -> None:
        """
        Register the display anchor of a cell.

        A different anchor replacing a bound one tears the old surface down first.
        """
        current = self._anchors.get(cell_id)
        if current is anchor:
            return
        if current is not None and cell_id in self._handles:
            self.teardown_surface(cell_id)
        self._anchors[cell_id] = anchor

    def unregister_anchor(self, cell_id: str, anchor: Any = None) -> None:
        """
        Forget a cell's anchor and tear down its surface.

        Args:
            cell_id: Cell whose anchor went away
            anchor: If given, only unregister when it is the registered anchor
        """
        current = self._anchors.get(cell_id)
        if current is None:
            return
        if anchor is not None and current is not anchor:
            return
        self.teardown_surface(cell_id)
        self._anchors.pop(cell_id, None)

    def get_anchor(self, cell_id: str) -> Optional[Any]:
        return self._anchors.get(cell_id)

    def is_anchor_attached(self, cell_id: str) -> bool:
        """True if the cell has an anchor that is still part of the display."""
        anchor = self._anchors.get(cell_id)
        if anchor is None:
            return False
        try:
            return bool(anchor.is_attached())
        except RuntimeError:
            # Underlying widget already deleted
            return False

    # ------------------------------------------------------------------
    # Surfaces
    # ------------------------------------------------------------------

    def get_handle(self, cell_id: str) -> Optional[SurfaceHandle]:
        return self._handles.get(cell_id)

    def get_engine(self, cell_id: str) -> Optional[Any]:
        return self._engines.get(cell_id)

    def has_live_surface(self, cell_id: str) -> bool:
        engine = self._engines.get(cell_id)
        return (
            cell_id in self._handles
            and engine is not None
            and not self.toolkit.is_engine_destroyed(engine)
        )

    def ensure_surface(self, cell_id: str) -> Optional[SurfaceHandle]:
        """
        Make sure a live, enabled surface exists for a cell.

        Re-ensuring a live surface is a no-op. A destroyed engine is replaced.

        Args:
            cell_id: Cell to ensure

        Returns:
            SurfaceHandle, or None when the anchor is missing or detached
        """
        if not self.is_anchor_attached(cell_id):
            debug_log("surface_lifecycle.py:ensure_surface", "Anchor missing or detached", {}, cell_id)
            return None

        if self.has_live_surface(cell_id):
            return self._handles[cell_id]

        engine_id = engine_id_for(cell_id)
        surface_id = surface_id_for(cell_id)
        tool_group_id = tool_group_id_for(cell_id)

        engine = self._engines.get(cell_id)
        if engine is None or self.toolkit.is_engine_destroyed(engine):
            engine = self.toolkit.create_engine(engine_id)
            self._engines[cell_id] = engine
            debug_log("surface_lifecycle.py:ensure_surface", "Engine created", {"engine_id": engine_id}, cell_id)

        self.toolkit.enable(engine, surface_id, self._anchors[cell_id], STACK_VIEWPORT)

        if self._tool_bindings.get(cell_id) is not engine:
            self._bind_tools(cell_id, engine_id, surface_id, tool_group_id)
            self._tool_bindings[cell_id] = engine

        handle = SurfaceHandle(
            cell_id=cell_id,
            engine_id=engine_id,
            surface_id=surface_id,
            tool_group_id=tool_group_id,
        )
        self._handles[cell_id] = handle
        return handle

    def _bind_tools(self, cell_id: str, engine_id: str, surface_id: str, tool_group_id: str) -> None:
        if cell_id in self._tool_bindings:
            # Previous engine instance was destroyed; its group goes with it
            self.toolkit.destroy_tool_group(tool_group_id)
        self.toolkit.create_tool_group(tool_group_id)
        for tool_name in ALL_TOOLS:
            self.toolkit.add_tool(tool_group_id, tool_name)
        for tool_name, mouse_button in DEFAULT_TOOL_BINDINGS:
            self.toolkit.set_tool_active(tool_group_id, tool_name, mouse_button)
        primary = self._primary_tools.get(cell_id)
        if primary is not None:
            self.toolkit.set_tool_active(tool_group_id, primary, MOUSE_LEFT)
        self.toolkit.add_surface(tool_group_id, engine_id, surface_id)

    def run_on_surface(self, cell_id: str, operation: Callable[[Any, SurfaceHandle], T]) -> T:
        """
        Run an operation against a cell's engine with destroyed-engine recovery.

        Args:
            cell_id: Target cell
            operation: Callable receiving (engine, handle)

        Returns:
            Result of operation

        Raises:
            SurfaceUnavailableError: if the surface cannot be (re)created
            EngineDestroyedError: if the engine is destroyed again during the retry
        """
        def attempt() -> T:
            handle = self._handles.get(cell_id)
            engine = self._engines.get(cell_id)
            if handle is None or engine is None or self.toolkit.is_engine_destroyed(engine):
                raise EngineDestroyedError(f"No live engine for {cell_id}")
            return operation(engine, handle)

        def recover() -> None:
            self._handles.pop(cell_id, None)
            if self.ensure_surface(cell_id) is None:
                raise SurfaceUnavailableError(f"No attached anchor for {cell_id}")

        return call_with_engine_recovery(attempt, recover)

    def set_primary_tool(self, cell_id: str, tool_name: str) -> bool:
        """
        Bind a tool to the primary mouse button of a cell's tool group.

        The choice survives engine recreation. Without a live surface it is
        remembered and applied when the tool group is next bound.

        Returns:
            True if the tool is selectable
        """
        if tool_name not in SELECTABLE_TOOLS:
            return False
        self._primary_tools[cell_id] = tool_name
        handle = self._handles.get(cell_id)
        if handle is not None and self._tool_bindings.get(cell_id) is not None:
            self.toolkit.set_tool_active(handle.tool_group_id, tool_name, MOUSE_LEFT)
        debug_log("surface_lifecycle.py:set_primary_tool", "Primary tool set", {"tool": tool_name}, cell_id)
        return True

    def get_primary_tool(self, cell_id: str) -> Optional[str]:
        return self._primary_tools.get(cell_id)

    def clear_surface(self, cell_id: str) -> bool:
        """
        Blank a live surface so it shows no image.

        Returns:
            True if a live surface was cleared
        """
        if not self.has_live_surface(cell_id):
            return False

        def apply(engine: Any, handle: SurfaceHandle) -> None:
            self.toolkit.set_stack(engine, handle.surface_id, [], 0)
            self.toolkit.render(engine, handle.surface_id)

        try:
            self.run_on_surface(cell_id, apply)
        except (EngineDestroyedError, SurfaceUnavailableError) as e:
            print(f"Error clearing surface for {cell_id}: {e}")
            return False
        return True

    def teardown_surface(self, cell_id: str) -> None:
        """
        Disable the surface, destroy the engine and tool group of a cell.

        Idempotent; unknown cells are ignored. The anchor stays registered so
        the surface can be ensured again.
        """
        handle = self._handles.pop(cell_id, None)
        engine = self._engines.pop(cell_id, None)
        bound = self._tool_bindings.pop(cell_id, None)
        if handle is None and engine is None and bound is None:
            return

        if engine is not None and not self.toolkit.is_engine_destroyed(engine):
            try:
                if handle is not None:
                    self.toolkit.disable(engine, handle.surface_id)
                self.toolkit.destroy_engine(engine)
            except EngineDestroyedError:
                pass
            except Exception as e:
                print(f"Error tearing down surface for {cell_id}: {e}")
        if bound is not None:
            try:
                self.toolkit.destroy_tool_group(tool_group_id_for(cell_id))
            except Exception as e:
                print(f"Error destroying tool group for {cell_id}: {e}")
        debug_log("surface_lifecycle.py:teardown_surface", "Surface torn down", {}, cell_id)

    def teardown_all(self) -> None:
        """Tear down every surface and forget every anchor."""
        for cell_id in list(set(self._engines) | set(self._handles) | set(self._tool_bindings)):
            self.teardown_surface(cell_id)
        self._anchors.clear()
        self._primary_tools.clear()

    def purge_image_cache(self) -> None:
        """Drop every decoded image held by the toolkit."""
        self.toolkit.purge_cache()

    def live_cell_ids(self):
        """Cells that currently own an engine."""
        return list(self._engines.keys())
