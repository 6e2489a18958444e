"""
Debug Log Utility

Provides optional, safe file-based debug logging for the viewport engine.
Logs are written only when enabled via environment variable; failures are
swallowed so the application never crashes due to logging.

Inputs:
    - debug_log(location, message, data, cell_id) calls from application code
    - Environment: DICOMWEB_VIEWER_DEBUG_LOG (set to 1, true, or yes to enable)
    - Environment: DICOMWEB_VIEWER_DEBUG_LOG_PATH (optional override of the log file)

Outputs:
    - When enabled: appends JSON lines to <project_root>/.logs/debug.log
    - When disabled or on error: no side effects

Requirements:
    - Standard library only: pathlib, os, json, time
"""

import json
import os
import time
from pathlib import Path
from typing import Any, Dict, Optional

# Project root: this file is src/utils/debug_log.py -> parent=utils, parent.parent=src, parent.parent.parent=project root
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent

_TRUE_VALUES = ("1", "true", "yes")


def is_debug_log_enabled() -> bool:
    """True when DICOMWEB_VIEWER_DEBUG_LOG is set to 1, true, or yes (case-insensitive)."""
    return os.getenv("DICOMWEB_VIEWER_DEBUG_LOG", "0").strip().lower() in _TRUE_VALUES


def get_debug_log_path() -> Path:
    """Path of the JSON-lines debug log."""
    override = os.getenv("DICOMWEB_VIEWER_DEBUG_LOG_PATH", "").strip()
    if override:
        return Path(override)
    return _PROJECT_ROOT / ".logs" / "debug.log"


def debug_log(
    location: str,
    message: str,
    data: Dict[str, Any],
    cell_id: Optional[str] = None,
) -> None:
    """
    Append one JSON log line to the debug log when debug logging is enabled.

    Failures (missing dir, permission, disk full, non-serializable data, etc.)
    are caught and ignored so the application remains stable.

    Args:
        location: Call site identifier (e.g. "stack_navigation.py:go_to").
        message: Short description of the event.
        data: Arbitrary dict of context (non-JSON values are stringified).
        cell_id: Optional display cell the event belongs to.
    """
    if not is_debug_log_enabled():
        return
    try:
        log_path = get_debug_log_path()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        payload = {
            "location": location,
            "message": message,
            "cellId": cell_id,
            "data": data,
            "timestamp": int(time.time() * 1000),
        }
        with open(log_path, "a", encoding="utf-8") as f:
            f.write(json.dumps(payload, default=str) + "\n")
    except Exception:
        pass
