"""
DICOM window/level handling.

This module applies window/level to pixel arrays and picks the initial window
for a decoded image or a raw multi-frame frame.

Inputs:
    - pydicom Dataset, pixel arrays, rescale parameters

Outputs:
    - Windowed pixel arrays (0-255 uint8), (center, width) tuples

Requirements:
    - numpy, pydicom
"""

import numpy as np
from typing import Optional, Tuple
from pydicom.dataset import Dataset
from pydicom.multival import MultiValue


def apply_window_level(
    pixel_array: np.ndarray,
    window_center: float,
    window_width: float,
    rescale_slope: Optional[float] = None,
    rescale_intercept: Optional[float] = None,
) -> np.ndarray:
    """
    Map the window [center - width/2, center + width/2] linearly onto 0-255.

    Values outside the window saturate. A non-positive width gives a black image.
    """
    values = np.asarray(pixel_array, dtype=np.float32)
    if rescale_slope is not None and rescale_intercept is not None:
        values = values * rescale_slope + rescale_intercept
    if window_width <= 0:
        return np.zeros(values.shape, dtype=np.uint8)
    low = window_center - window_width / 2.0
    scaled = (values - low) * (255.0 / window_width)
    return np.clip(scaled, 0.0, 255.0).astype(np.uint8)


def apply_color_window_level_luminance(
    pixel_array: np.ndarray,
    window_center: float,
    window_width: float,
) -> np.ndarray:
    """Apply window/level to RGB images by scaling luminance. Returns 0-255 uint8 RGB."""
    if pixel_array.ndim != 3 or pixel_array.shape[2] != 3:
        raise ValueError(f"Expected RGB array with shape (height, width, 3), got {pixel_array.shape}")
    rgb_float = pixel_array.astype(np.float32)
    luminance = np.dot(rgb_float[..., :3], [0.299, 0.587, 0.114])
    window_min = window_center - window_width / 2.0
    window_max = window_center + window_width / 2.0
    windowed_luminance = np.clip(luminance, window_min, window_max)
    if window_max > window_min:
        normalized_luminance = (windowed_luminance - window_min) / (window_max - window_min) * 255.0
    else:
        normalized_luminance = np.zeros_like(luminance)
    epsilon = 1e-10
    scale = normalized_luminance / (luminance + epsilon)
    windowed_rgb = rgb_float * scale[..., np.newaxis]
    return np.clip(windowed_rgb, 0, 255).astype(np.uint8)


def default_window(pixel_array: np.ndarray) -> Tuple[float, float]:
    """
    Window covering the full value range of an array.

    Returns:
        (center, width); width is at least 1
    """
    if pixel_array.size == 0:
        return 128.0, 256.0
    low = float(np.min(pixel_array))
    high = float(np.max(pixel_array))
    width = max(high - low, 1.0)
    return low + width / 2.0, width


def get_window_level_from_dataset(dataset: Dataset) -> Tuple[Optional[float], Optional[float]]:
    """
    Get window center and width stored in a DICOM dataset.

    Multi-valued elements use their first value.

    Returns:
        (window_center, window_width), each None when absent or invalid
    """
    def first_float(keyword: str) -> Optional[float]:
        value = getattr(dataset, keyword, None)
        if value is None or value == "":
            return None
        if isinstance(value, (list, tuple, MultiValue)):
            if len(value) == 0:
                return None
            value = value[0]
        try:
            return float(value)
        except (TypeError, ValueError):
            return None

    return first_float("WindowCenter"), first_float("WindowWidth")


def get_rescale_parameters(dataset: Dataset) -> Tuple[float, float]:
    """(slope, intercept) of a dataset, defaulting to (1.0, 0.0)."""
    try:
        slope = float(getattr(dataset, "RescaleSlope", 1.0) or 1.0)
    except (TypeError, ValueError):
        slope = 1.0
    try:
        intercept = float(getattr(dataset, "RescaleIntercept", 0.0) or 0.0)
    except (TypeError, ValueError):
        intercept = 0.0
    return slope, intercept
