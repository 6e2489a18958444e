"""
Input Timing

Rate control for high-frequency input feeding stack navigation:

- Throttle: mouse wheel. The first event runs immediately; events inside the
  interval collapse into one trailing call with the latest arguments, so the
  final position is never lost.
- Debounce: cell resize. Only the last call of a burst runs, after a quiet period.
- DragScrollSession: drag-to-scroll on the stack scrollbar. Pointer listeners
  are attached when the drag starts and detached exactly once when it ends,
  whether by release, cancellation or loss of the pointer grab.

All timers run on the asyncio event loop (the qasync loop in the application).

Inputs:
    - Wheel, resize and pointer events from the cell widgets

Outputs:
    - Rate-limited callback invocations
    - Stack indices for drag positions

Requirements:
    - asyncio (standard library)
"""

import asyncio
import math
from typing import Any, Callable, Optional, Tuple


def fraction_to_index(fraction: float, length: int) -> int:
    """
    Map a track position to a stack index.

    index = round(clamp(fraction, 0, 1) * (length - 1)), halves rounding up.

    Args:
        fraction: Position along the track, 0 at the top
        length: Stack length

    Returns:
        Index in [0, length - 1] (0 for an empty stack)
    """
    if length <= 0:
        return 0
    if fraction != fraction:  # NaN
        fraction = 0.0
    clamped = min(max(fraction, 0.0), 1.0)
    return int(math.floor(clamped * (length - 1) + 0.5))


def _loop() -> asyncio.AbstractEventLoop:
    try:
        return asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.get_event_loop()


class Throttle:
    """
    Leading-edge throttle with a trailing call.

    Example:
        wheel = Throttle(lambda delta: session.scroll_by(cell, delta), 80)
        wheel(1); wheel(1); wheel(1)   # runs once now, once ~80 ms later
    """

    def __init__(self, callback: Callable[..., Any], interval_ms: int = 80):
        self.callback = callback
        self.interval = max(interval_ms, 0) / 1000.0
        self._last_run: Optional[float] = None
        self._pending_args: Optional[Tuple[Any, ...]] = None
        self._handle: Optional[asyncio.TimerHandle] = None

    def __call__(self, *args: Any) -> None:
        loop = _loop()
        now = loop.time()
        if self._handle is None and (self._last_run is None or now - self._last_run >= self.interval):
            self._last_run = now
            self.callback(*args)
            return
        self._pending_args = args
        if self._handle is None:
            wait = self.interval - (now - self._last_run) if self._last_run is not None else self.interval
            self._handle = loop.call_later(max(wait, 0.0), self._flush)

    def _flush(self) -> None:
        self._handle = None
        args = self._pending_args
        self._pending_args = None
        if args is None:
            return
        self._last_run = _loop().time()
        self.callback(*args)

    @property
    def has_pending(self) -> bool:
        return self._pending_args is not None

    def cancel(self) -> None:
        """Drop any pending trailing call."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._pending_args = None


class Debounce:
    """Runs the callback once, delay_ms after the last call of a burst."""

    def __init__(self, callback: Callable[..., Any], delay_ms: int = 300):
        self.callback = callback
        self.delay = max(delay_ms, 0) / 1000.0
        self._handle: Optional[asyncio.TimerHandle] = None
        self._args: Tuple[Any, ...] = ()

    def __call__(self, *args: Any) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._args = args
        self._handle = _loop().call_later(self.delay, self._fire)

    def _fire(self) -> None:
        self._handle = None
        args = self._args
        self._args = ()
        self.callback(*args)

    @property
    def is_pending(self) -> bool:
        return self._handle is not None

    def flush(self) -> None:
        """Run a pending call now."""
        if self._handle is not None:
            self._handle.cancel()
            self._fire()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._args = ()


class DragScrollSession:
    """
    One drag gesture on a stack scrollbar.

    Args:
        attach: Installs the pointer move/release listeners
        detach: Removes them
        on_index: Receives each new stack index while dragging
    """

    def __init__(
        self,
        attach: Callable[[], None],
        detach: Callable[[], None],
        on_index: Callable[[int], None],
    ):
        self._attach = attach
        self._detach = detach
        self._on_index = on_index
        self._active = False
        self._last_index: Optional[int] = None

    @property
    def is_active(self) -> bool:
        return self._active

    def start(self, fraction: Optional[float] = None, length: int = 0) -> None:
        """Attach listeners; optionally jump to the press position."""
        if self._active:
            return
        self._active = True
        self._last_index = None
        self._attach()
        if fraction is not None:
            self.update(fraction, length)

    def update(self, fraction: float, length: int) -> Optional[int]:
        """
        Report a pointer position.

        Returns:
            The index reported to on_index, or None if inactive or unchanged
        """
        if not self._active or length <= 0:
            return None
        index = fraction_to_index(fraction, length)
        if index == self._last_index:
            return None
        self._last_index = index
        self._on_index(index)
        return index

    def finish(self) -> None:
        """End the drag; listeners are removed exactly once."""
        if not self._active:
            return
        self._active = False
        self._detach()

    def cancel(self) -> None:
        """End the drag after losing the pointer grab."""
        self.finish()

    def __enter__(self) -> "DragScrollSession":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.finish()
