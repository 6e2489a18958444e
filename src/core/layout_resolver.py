"""
Layout Resolver

This module maps a layout identifier ("1x1", "2x2-alt", "custom-3x4", ...) to a
concrete grid of display cells. Resolution is pure: the same identifier always
produces a structurally identical result and no external state is read.

Inputs:
    - Layout identifier string (named layout or "custom-<rows>x<cols>")

Outputs:
    - ResolvedLayout with grid dimensions and DisplayCell list
    - Observable fallback flag when the identifier is unknown or malformed

Requirements:
    - dataclasses and typing (standard library)
    - utils.debug_log for fallback diagnostics
"""

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from utils.debug_log import debug_log


DEFAULT_LAYOUT_ID = "1x1"
CUSTOM_LAYOUT_PREFIX = "custom-"


@dataclass(frozen=True)
class DisplayCell:
    """
    One cell of the viewport grid.

    A cell whose span has a zero component reserves grid space but is hidden:
    no rendering surface is created for it.
    """

    id: str
    position: Tuple[int, int]
    span: Optional[Tuple[int, int]] = None

    @property
    def is_hidden(self) -> bool:
        """True if the cell reserves space but is not displayed."""
        return self.span is not None and (self.span[0] == 0 or self.span[1] == 0)

    @property
    def row_span(self) -> int:
        return self.span[0] if self.span is not None else 1

    @property
    def col_span(self) -> int:
        return self.span[1] if self.span is not None else 1


@dataclass(frozen=True)
class ResolvedLayout:
    """
    Concrete grid produced for a layout identifier.

    Attributes:
        layout_id: Effective layout id ("1x1" when the request fell back)
        requested_id: Identifier that was passed to resolve_layout()
        rows: Number of grid rows
        cols: Number of grid columns
        cells: All cells, including hidden ones
        is_fallback: True if the request could not be honoured
        fallback_reason: Human-readable reason for the fallback
    """

    layout_id: str
    requested_id: str
    rows: int
    cols: int
    cells: Tuple[DisplayCell, ...] = field(default_factory=tuple)
    is_fallback: bool = False
    fallback_reason: str = ""

    @property
    def visible_cells(self) -> Tuple[DisplayCell, ...]:
        """Cells that get a rendering surface, in grid order."""
        return tuple(cell for cell in self.cells if not cell.is_hidden)

    @property
    def visible_count(self) -> int:
        return len(self.visible_cells)

    def cell_ids(self, include_hidden: bool = False) -> List[str]:
        """
        Get cell ids in grid order.

        Args:
            include_hidden: If True, hidden cells are included

        Returns:
            List of cell id strings
        """
        cells = self.cells if include_hidden else self.visible_cells
        return [cell.id for cell in cells]


def _cell(index: int, row: int, col: int, span: Optional[Tuple[int, int]] = None) -> DisplayCell:
    return DisplayCell(id=f"viewport-{index}", position=(row, col), span=span)


# Named layouts: layout_id -> (rows, cols, cells)
_NAMED_LAYOUTS: Dict[str, Tuple[int, int, Tuple[DisplayCell, ...]]] = {
    "1x1": (1, 1, (_cell(1, 0, 0),)),
    "1x2": (1, 2, (_cell(1, 0, 0), _cell(2, 0, 1))),
    "2x1": (2, 1, (_cell(1, 0, 0), _cell(2, 1, 0))),
    "2x2": (2, 2, (_cell(1, 0, 0), _cell(2, 0, 1), _cell(3, 1, 0), _cell(4, 1, 1))),
    # Wide top cell over two bottom cells
    "2x2-alt": (2, 2, (_cell(1, 0, 0, (1, 2)), _cell(2, 1, 0), _cell(3, 1, 1))),
    # 3-up framed inside a 2x2 grid: the fourth cell is reserved but hidden
    "mpr": (2, 2, (_cell(1, 0, 0), _cell(2, 0, 1), _cell(3, 1, 0), _cell(4, 1, 1, (0, 0)))),
    "3d-four-up": (2, 2, (_cell(1, 0, 0), _cell(2, 0, 1), _cell(3, 1, 0), _cell(4, 1, 1))),
    "3d-main": (2, 2, (_cell(1, 0, 0, (2, 1)), _cell(2, 0, 1), _cell(3, 1, 1))),
    "axial-primary": (2, 2, (_cell(1, 0, 0, (2, 1)), _cell(2, 0, 1, (2, 1)))),
    "3d-primary": (2, 2, (_cell(1, 0, 0, (2, 1)), _cell(2, 0, 1, (2, 1)))),
    "3d-only": (1, 1, (_cell(1, 0, 0),)),
    "frame-view": (1, 1, (_cell(1, 0, 0),)),
}


def available_layouts() -> List[str]:
    """
    Get the named layout identifiers, in display order.

    Returns:
        List of layout ids accepted by resolve_layout() besides custom layouts
    """
    return list(_NAMED_LAYOUTS.keys())


def custom_layout_id(rows: int, cols: int) -> str:
    """Build a custom layout identifier for a rows x cols grid."""
    return f"{CUSTOM_LAYOUT_PREFIX}{rows}x{cols}"


def _parse_custom_dimensions(layout_id: str) -> Optional[Tuple[int, int]]:
    """
    Parse "custom-<rows>x<cols>".

    Returns:
        (rows, cols) or None if the dimensions are absent, non-numeric or non-positive
    """
    parts = layout_id[len(CUSTOM_LAYOUT_PREFIX):].split("x")
    if len(parts) != 2:
        return None
    rows_text, cols_text = parts[0].strip(), parts[1].strip()
    if not rows_text.isdigit() or not cols_text.isdigit():
        return None
    rows, cols = int(rows_text), int(cols_text)
    if rows <= 0 or cols <= 0:
        return None
    return rows, cols


def _fallback(requested_id: str, reason: str) -> ResolvedLayout:
    print(f"Warning: {reason}; using {DEFAULT_LAYOUT_ID} layout")
    debug_log(
        "layout_resolver.py:_fallback",
        "Layout fell back to default",
        {"requested_id": requested_id, "reason": reason},
    )
    rows, cols, cells = _NAMED_LAYOUTS[DEFAULT_LAYOUT_ID]
    return ResolvedLayout(
        layout_id=DEFAULT_LAYOUT_ID,
        requested_id=requested_id,
        rows=rows,
        cols=cols,
        cells=cells,
        is_fallback=True,
        fallback_reason=reason,
    )


def resolve_layout(layout_id: Optional[str]) -> ResolvedLayout:
    """
    Resolve a layout identifier into a grid of display cells.

    Named layouts come from a fixed table. Custom layouts use the pattern
    "custom-<rows>x<cols>" and produce a plain rows x cols grid numbered
    row-major. Unknown or malformed identifiers fall back to a single-cell
    layout; this function never raises.

    Args:
        layout_id: Layout identifier

    Returns:
        ResolvedLayout for the identifier (or the 1x1 fallback)
    """
    requested = layout_id if isinstance(layout_id, str) else ""
    if not requested:
        return _fallback(requested, "Empty layout identifier")

    if requested in _NAMED_LAYOUTS:
        rows, cols, cells = _NAMED_LAYOUTS[requested]
        return ResolvedLayout(
            layout_id=requested,
            requested_id=requested,
            rows=rows,
            cols=cols,
            cells=cells,
        )

    if requested.startswith(CUSTOM_LAYOUT_PREFIX):
        dimensions = _parse_custom_dimensions(requested)
        if dimensions is None:
            return _fallback(requested, f"Invalid custom layout '{requested}'")
        rows, cols = dimensions
        cells = []
        index = 1
        for row in range(rows):
            for col in range(cols):
                cells.append(_cell(index, row, col))
                index += 1
        return ResolvedLayout(
            layout_id=requested,
            requested_id=requested,
            rows=rows,
            cols=cols,
            cells=tuple(cells),
        )

    return _fallback(requested, f"Unsupported layout '{requested}'")
