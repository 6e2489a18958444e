"""
Tests for DICOM summaries, multi-frame sources and overlay metadata.
"""

import os
import sys
import unittest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import numpy as np
from pydicom.dataset import Dataset

from core.dicom_models import (
    DisplayMetadata,
    MultiFrameSource,
    SeriesSummary,
    format_study_date,
    get_int,
    get_text,
    parse_dicom_json,
)
from core.multiframe_handler import frame_from_bytes, get_frame_count, is_multiframe


class TestValueHelpers(unittest.TestCase):

    def test_format_study_date(self):
        self.assertEqual(format_study_date("20231105"), "05/11/2023")
        self.assertEqual(format_study_date("2023"), "2023")
        self.assertEqual(format_study_date(""), "")

    def test_get_text_and_int_defaults(self):
        ds = Dataset()
        ds.SeriesNumber = "7"
        self.assertEqual(get_int(ds, "SeriesNumber"), 7)
        self.assertEqual(get_int(ds, "InstanceNumber", -1), -1)
        self.assertEqual(get_text(ds, "Modality", "OT"), "OT")

    def test_parse_dicom_json_ignores_bulk_data(self):
        ds = parse_dicom_json({
            "0020000E": {"vr": "UI", "Value": ["9.8"]},
            "7FE00010": {"vr": "OW", "BulkDataURI": "http://pacs/bulk/1"},
        })
        summary = SeriesSummary.from_dataset(ds, study_uid="1.2")
        self.assertEqual(summary.series_uid, "9.8")
        self.assertEqual(summary.study_uid, "1.2")


class TestDisplayMetadata(unittest.TestCase):

    def test_multi_valued_window_uses_first_value(self):
        ds = Dataset()
        ds.WindowCenter = [40.4, 300]
        ds.WindowWidth = [399.6, 1500]
        ds.StudyDate = "20240229"
        ds.PatientName = "ROE^RICHARD"
        metadata = DisplayMetadata.from_dataset(ds)
        self.assertEqual(metadata.window_center, 40)
        self.assertEqual(metadata.window_width, 400)
        self.assertEqual(metadata.window_level_text(), "W: 400 L: 40")
        self.assertEqual(metadata.study_date, "29/02/2024")

    def test_missing_window_gives_empty_text(self):
        metadata = DisplayMetadata.from_dataset(Dataset())
        self.assertIsNone(metadata.window_width)
        self.assertEqual(metadata.window_level_text(), "")
        self.assertEqual(metadata.number_of_frames, 1)


class TestMultiFrame(unittest.TestCase):

    def test_frame_count(self):
        ds = Dataset()
        self.assertEqual(get_frame_count(ds), 1)
        ds.NumberOfFrames = 12
        self.assertEqual(get_frame_count(ds), 12)
        self.assertTrue(is_multiframe(ds))
        ds.NumberOfFrames = 0
        self.assertEqual(get_frame_count(ds), 1)

    def test_source_frame_numbers_are_one_based(self):
        ds = Dataset()
        ds.NumberOfFrames = 3
        ds.Rows = 2
        ds.Columns = 2
        ds.BitsAllocated = 16
        ds.RescaleSlope = 2
        ds.RescaleIntercept = -1024
        source = MultiFrameSource.from_dataset(ds, "st", "se", "sop")
        self.assertEqual(source.frame_count, 3)
        self.assertEqual(source.frame_number(0), 1)
        self.assertEqual(source.frame_number(2), 3)
        self.assertEqual(source.rescale_slope, 2.0)
        self.assertEqual(source.rescale_intercept, -1024.0)

    def test_frame_from_bytes(self):
        raw = np.arange(6, dtype="<u2").tobytes()
        frame = frame_from_bytes(raw, 2, 3, bits_allocated=16)
        self.assertEqual(frame.shape, (2, 3))
        self.assertEqual(int(frame[1, 2]), 5)

    def test_frame_from_bytes_signed_and_rgb(self):
        signed = frame_from_bytes(np.array([-5, 7], dtype="<i2").tobytes(), 1, 2, 16, 1)
        self.assertEqual(signed.tolist(), [[-5, 7]])
        rgb = frame_from_bytes(bytes(range(12)), 2, 2, 8, 0, 3)
        self.assertEqual(rgb.shape, (2, 2, 3))

    def test_short_frame_is_rejected(self):
        self.assertIsNone(frame_from_bytes(b"\x00\x01", 2, 2, 16))
        self.assertIsNone(frame_from_bytes(b"", 0, 2))


if __name__ == "__main__":
    unittest.main()
