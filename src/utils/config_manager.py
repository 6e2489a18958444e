"""
Configuration Manager

Persistent viewer settings kept as a JSON document in the per-user config
directory. Unknown keys in the file are preserved; missing keys fall back to
DEFAULT_CONFIG. Typed getters validate stored values and return the default
for anything malformed, so a hand-edited file cannot break the viewer.

Inputs:
    - User preferences (DICOMweb endpoint, last layout, input timing, thumbnails, etc.)
    - Environment: DICOMWEB_VIEWER_BASE_URL (overrides the stored endpoint)

Outputs:
    - Validated configuration values
    - dicomweb_viewer_config.json

Requirements:
    - json, os, pathlib (standard library)
"""

import json
import os
from pathlib import Path
from typing import Any, Dict, Optional, Tuple


BASE_URL_ENV = "DICOMWEB_VIEWER_BASE_URL"

DEFAULT_CONFIG: Dict[str, Any] = {
    "dicomweb_base_url": "http://localhost:8042/dicom-web",
    "request_timeout": 30.0,  # Seconds per HTTP request
    "default_layout": "1x1",  # Last selected layout id
    "wheel_throttle_ms": 80,  # Minimum interval between wheel-driven frame changes
    "resize_debounce_ms": 300,  # Quiet period before a cell resize is applied
    "thumbnail_quality": 75,  # JPEG quality requested from the rendered endpoint
    "thumbnail_viewport": "128,128",  # Rendered thumbnail viewport (width,height)
    "fit_margin": 0.9,  # Fraction of the cell filled when an image is fit
    "window_width": 1400,
    "window_height": 850,
}


def default_config_dir() -> Path:
    """%APPDATA%\\DICOMwebViewer on Windows, ~/.config/DICOMwebViewer elsewhere."""
    if os.name == 'nt':
        return Path(os.getenv('APPDATA', os.path.expanduser('~'))) / "DICOMwebViewer"
    return Path.home() / ".config" / "DICOMwebViewer"


class ConfigManager:
    """
    Viewer settings backed by a JSON file.

    Covers:
    - DICOMweb base URL and request timeout
    - Last selected layout
    - Wheel throttle and resize debounce intervals
    - Thumbnail rendering parameters and fit margin
    - Main window size
    """

    def __init__(self, config_filename: str = "dicomweb_viewer_config.json",
                 config_dir: Optional[Path] = None):
        """
        Args:
            config_filename: File name inside the config directory
            config_dir: Directory holding the file (defaults to default_config_dir())
        """
        self.config_dir = Path(config_dir) if config_dir is not None else default_config_dir()
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.config_path = self.config_dir / config_filename
        self.default_config = dict(DEFAULT_CONFIG)
        self.config = self._load_config()

    def _load_config(self) -> Dict[str, Any]:
        """Defaults overlaid with the stored document; defaults alone if it is missing or unreadable."""
        config = dict(self.default_config)
        if not self.config_path.exists():
            return config
        try:
            stored = json.loads(self.config_path.read_text(encoding='utf-8'))
        except (json.JSONDecodeError, OSError) as e:
            print(f"Warning: Could not load config file {self.config_path}: {e}")
            return config
        if not isinstance(stored, dict):
            print(f"Warning: Config file {self.config_path} does not hold an object; using defaults")
            return config
        config.update(stored)
        return config

    def save_config(self) -> bool:
        """
        Write the current settings.

        Returns:
            False if the file could not be written
        """
        try:
            self.config_path.write_text(json.dumps(self.config, indent=4, ensure_ascii=False), encoding='utf-8')
        except OSError as e:
            print(f"Error saving config file {self.config_path}: {e}")
            return False
        return True

    def get(self, key: str, default: Any = None) -> Any:
        """Raw stored value of a key (unvalidated)."""
        return self.config.get(key, default)

    def set(self, key: str, value: Any) -> None:
        """Change a value in memory; call save_config() to persist."""
        self.config[key] = value

    def get_dicomweb_base_url(self) -> str:
        """
        Get the DICOMweb endpoint root.

        The DICOMWEB_VIEWER_BASE_URL environment variable takes precedence over
        the stored value. Trailing slashes are stripped.

        Returns:
            Base URL string
        """
        env_value = os.getenv(BASE_URL_ENV, "").strip()
        value = env_value or self.config.get("dicomweb_base_url", "")
        return str(value).rstrip("/")

    def set_dicomweb_base_url(self, url: str) -> None:
        """
        Set the DICOMweb endpoint root.

        Args:
            url: Base URL (e.g. "http://localhost:8042/dicom-web")
        """
        if url:
            self.config["dicomweb_base_url"] = url.rstrip("/")
            self.save_config()

    def get_request_timeout(self) -> float:
        """Get the HTTP request timeout in seconds."""
        value = self.config.get("request_timeout", 30.0)
        if isinstance(value, (int, float)) and value > 0:
            return float(value)
        return 30.0

    def get_default_layout(self) -> str:
        """
        Get the last selected layout id.

        Returns:
            Layout id (validated later by the layout resolver)
        """
        return self.config.get("default_layout", "1x1")

    def set_default_layout(self, layout_id: str) -> None:
        """
        Persist the selected layout id.

        Args:
            layout_id: Layout id ("1x1", "2x2", "custom-3x3", ...)
        """
        if isinstance(layout_id, str) and layout_id:
            self.config["default_layout"] = layout_id
            self.save_config()

    def get_wheel_throttle_ms(self) -> int:
        """Get the wheel throttle interval in milliseconds."""
        return self._positive_int("wheel_throttle_ms", 80)

    def get_resize_debounce_ms(self) -> int:
        """Get the resize debounce delay in milliseconds."""
        return self._positive_int("resize_debounce_ms", 300)

    def get_thumbnail_quality(self) -> int:
        """
        Get the JPEG quality requested for series thumbnails.

        Returns:
            Quality in 1..100 (default 75)
        """
        value = self.config.get("thumbnail_quality", 75)
        if isinstance(value, int) and 1 <= value <= 100:
            return value
        return 75

    def get_thumbnail_viewport(self) -> str:
        """Get the rendered thumbnail viewport as "width,height"."""
        value = self.config.get("thumbnail_viewport", "128,128")
        return value if isinstance(value, str) and value else "128,128"

    def get_thumbnail_size(self) -> Tuple[int, int]:
        """
        Get the thumbnail viewport as a (width, height) tuple.

        Returns:
            Parsed viewport size, (128, 128) if the stored value is malformed
        """
        parts = self.get_thumbnail_viewport().split(",")
        try:
            width, height = int(parts[0]), int(parts[1])
        except (IndexError, ValueError):
            return (128, 128)
        if width <= 0 or height <= 0:
            return (128, 128)
        return (width, height)

    def get_fit_margin(self) -> float:
        """Get the fraction of the cell an image fills when fit to the viewport."""
        value = self.config.get("fit_margin", 0.9)
        if isinstance(value, (int, float)) and 0 < value <= 1:
            return float(value)
        return 0.9

    def get_window_size(self) -> Tuple[int, int]:
        """Get the saved main window size as (width, height)."""
        return (self.config.get("window_width", 1400), self.config.get("window_height", 850))

    def set_window_size(self, width: int, height: int) -> None:
        """
        Save the main window size.

        Args:
            width: Window width in pixels
            height: Window height in pixels
        """
        if width > 0 and height > 0:
            self.config["window_width"] = width
            self.config["window_height"] = height
            self.save_config()

    def _positive_int(self, key: str, fallback: int) -> int:
        value = self.config.get(key, fallback)
        if isinstance(value, int) and value > 0:
            return value
        return fallback
