"""
Multi-Frame DICOM Handler

This module handles detection and pixel extraction for multi-frame DICOM
instances. Multi-frame instances contain multiple image frames within a single
DICOM object; the viewer pages through them like a stack of single images.

Inputs:
    - pydicom.Dataset objects
    - Frame indices
    - Raw uncompressed frame bytes from WADO-RS frame requests

Outputs:
    - Boolean flags for multi-frame detection
    - Frame counts
    - Individual frame pixel arrays

Requirements:
    - pydicom library
    - numpy for array operations
"""

import numpy as np
from typing import Optional
from pydicom.dataset import Dataset


def is_multiframe(dataset: Dataset) -> bool:
    """
    Check if a DICOM dataset contains multiple frames.

    Args:
        dataset: pydicom Dataset

    Returns:
        True if dataset contains multiple frames, False otherwise
    """
    return get_frame_count(dataset) > 1


def get_frame_count(dataset: Dataset) -> int:
    """
    Get the number of frames in a DICOM dataset.

    Args:
        dataset: pydicom Dataset

    Returns:
        Number of frames (1 for single-frame or when the tag is absent/invalid)
    """
    num_frames = getattr(dataset, 'NumberOfFrames', None)
    if num_frames is None or num_frames == "":
        return 1
    try:
        count = int(num_frames)
    except (ValueError, TypeError):
        return 1
    return count if count > 0 else 1


def get_frame_pixel_array(dataset: Dataset, frame_index: int) -> Optional[np.ndarray]:
    """
    Extract pixel array for a specific frame from a DICOM dataset.

    For single-frame datasets, returns the entire pixel array for frame 0.
    For multi-frame datasets, returns the specified frame.

    Args:
        dataset: pydicom Dataset
        frame_index: Zero-based index of the frame to extract

    Returns:
        NumPy array for the specified frame, or None if extraction fails
    """
    num_frames = get_frame_count(dataset)
    if frame_index < 0 or frame_index >= num_frames:
        return None

    try:
        # NOTE: For multi-frame, this decodes ALL frames into memory
        pixel_array = dataset.pixel_array
    except MemoryError as e:
        print(f"Memory error extracting frame {frame_index} from dataset: {e}")
        return None
    except (ValueError, AttributeError) as e:
        # Malformed pixel data, missing PixelData or unsupported transfer syntax
        print(f"Error extracting frame {frame_index} from dataset: {e}")
        return None

    if pixel_array is None:
        return None

    samples = int(getattr(dataset, 'SamplesPerPixel', 1) or 1)
    frame_axis_present = pixel_array.ndim == (4 if samples > 1 else 3)
    if num_frames > 1 and frame_axis_present:
        return pixel_array[frame_index]
    # Single frame, or NumberOfFrames disagrees with the decoded shape
    if frame_index == 0:
        return pixel_array
    return None


def frame_from_bytes(
    raw: bytes,
    rows: int,
    columns: int,
    bits_allocated: int = 16,
    pixel_representation: int = 0,
    samples_per_pixel: int = 1,
) -> Optional[np.ndarray]:
    """
    Interpret an uncompressed frame (application/octet-stream) as a pixel array.

    Args:
        raw: Frame bytes, little endian
        rows: Frame rows
        columns: Frame columns
        bits_allocated: 8 or 16 (32 for float/large data)
        pixel_representation: 0 unsigned, 1 signed
        samples_per_pixel: 1 for grayscale, 3 for RGB

    Returns:
        Array shaped (rows, columns) or (rows, columns, samples), None if the
        byte count does not match the geometry
    """
    if rows <= 0 or columns <= 0:
        return None
    signed = pixel_representation == 1
    if bits_allocated <= 8:
        dtype = np.int8 if signed else np.uint8
    elif bits_allocated <= 16:
        dtype = np.dtype('<i2') if signed else np.dtype('<u2')
    else:
        dtype = np.dtype('<i4') if signed else np.dtype('<u4')

    expected = rows * columns * samples_per_pixel
    array = np.frombuffer(raw, dtype=dtype)
    if array.size < expected:
        print(f"Frame data too short: {array.size} values for {rows}x{columns}x{samples_per_pixel}")
        return None
    array = array[:expected]
    if samples_per_pixel > 1:
        return array.reshape((rows, columns, samples_per_pixel))
    return array.reshape((rows, columns))
