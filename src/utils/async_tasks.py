"""
Async Task Helpers

Fire-and-forget scheduling of coroutines on the running event loop (the
qasync loop in the application, a plain asyncio loop in tests). Failures of
scheduled tasks are printed and written to the debug log instead of being
lost with the task object.

Inputs:
    - Coroutines started from Qt slots and engine callbacks

Outputs:
    - asyncio.Task objects with a result-logging done callback

Requirements:
    - asyncio (standard library)
    - utils.debug_log
"""

import asyncio
import traceback
from typing import Awaitable, Set

from utils.debug_log import debug_log


# Strong references so scheduled tasks are not garbage collected mid-flight
_pending_tasks: Set[asyncio.Task] = set()


def schedule_coro(coro: Awaitable, label: str) -> asyncio.Task:
    """
    Schedule a coroutine on the current event loop and log its failure.

    Args:
        coro: Coroutine to run
        label: Short name used in log output

    Returns:
        The created task
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        loop = asyncio.get_event_loop()

    task = loop.create_task(coro)
    _pending_tasks.add(task)

    def _log_task_result(t: asyncio.Task) -> None:
        _pending_tasks.discard(t)
        if t.cancelled():
            return
        error = t.exception()
        if error is None:
            return
        print(f"Error: scheduled task '{label}' failed: {error}")
        debug_log(
            "async_tasks.py:schedule_coro",
            "Scheduled task failed",
            {
                "label": label,
                "error": repr(error),
                "traceback": "".join(traceback.format_exception(type(error), error, error.__traceback__)),
            },
        )

    task.add_done_callback(_log_task_result)
    return task


def pending_task_count() -> int:
    """Number of scheduled tasks that have not finished yet."""
    return len(_pending_tasks)
