"""
Tests for ConfigManager.

Covers defaults, the base URL environment override, layout persistence and
fallbacks for malformed stored values.
Uses a temporary config directory so the user's config is never touched.
"""

import json
import os
import shutil
import sys
import tempfile
import unittest
from unittest import mock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from utils.config_manager import BASE_URL_ENV, ConfigManager


TEST_CONFIG_FILENAME = "dicomweb_viewer_config_test.json"


class TestConfigManager(unittest.TestCase):
    """Tests for ConfigManager getters, setters and persistence."""

    def setUp(self):
        """Create a ConfigManager in a temporary directory."""
        self.temp_dir = tempfile.mkdtemp()
        self.config = ConfigManager(config_filename=TEST_CONFIG_FILENAME, config_dir=self.temp_dir)
        self.config_path = self.config.config_path

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def _reload(self):
        return ConfigManager(config_filename=TEST_CONFIG_FILENAME, config_dir=self.temp_dir)

    def _write(self, values):
        with open(self.config_path, "w", encoding="utf-8") as f:
            json.dump(values, f)

    def test_defaults(self):
        """A new manager without a file returns the built-in defaults."""
        with mock.patch.dict(os.environ, {BASE_URL_ENV: ""}):
            self.assertEqual(self.config.get_dicomweb_base_url(), "http://localhost:8042/dicom-web")
        self.assertEqual(self.config.get_default_layout(), "1x1")
        self.assertEqual(self.config.get_wheel_throttle_ms(), 80)
        self.assertEqual(self.config.get_resize_debounce_ms(), 300)
        self.assertEqual(self.config.get_thumbnail_quality(), 75)
        self.assertEqual(self.config.get_thumbnail_size(), (128, 128))
        self.assertEqual(self.config.get_fit_margin(), 0.9)
        self.assertEqual(self.config.get_request_timeout(), 30.0)
        self.assertFalse(self.config_path.exists())

    def test_environment_overrides_base_url(self):
        self.config.set_dicomweb_base_url("http://pacs.local/wado/")
        with mock.patch.dict(os.environ, {BASE_URL_ENV: "http://override:8080/dicom-web/"}):
            self.assertEqual(self.config.get_dicomweb_base_url(), "http://override:8080/dicom-web")
        with mock.patch.dict(os.environ, {BASE_URL_ENV: ""}):
            self.assertEqual(self.config.get_dicomweb_base_url(), "http://pacs.local/wado")

    def test_default_layout_persists(self):
        """set_default_layout writes the file; a new manager reads it back."""
        self.config.set_default_layout("custom-3x2")
        self.assertTrue(self.config_path.exists(), "Config file should exist after set")
        self.assertEqual(self._reload().get_default_layout(), "custom-3x2")

    def test_empty_layout_is_ignored(self):
        self.config.set_default_layout("")
        self.assertEqual(self.config.get_default_layout(), "1x1")

    def test_malformed_values_fall_back(self):
        self._write({
            "wheel_throttle_ms": -5,
            "resize_debounce_ms": "soon",
            "thumbnail_quality": 250,
            "thumbnail_viewport": "wide",
            "fit_margin": 1.5,
            "request_timeout": 0,
        })
        config = self._reload()
        self.assertEqual(config.get_wheel_throttle_ms(), 80)
        self.assertEqual(config.get_resize_debounce_ms(), 300)
        self.assertEqual(config.get_thumbnail_quality(), 75)
        self.assertEqual(config.get_thumbnail_size(), (128, 128))
        self.assertEqual(config.get_fit_margin(), 0.9)
        self.assertEqual(config.get_request_timeout(), 30.0)

    def test_stored_values_are_merged_with_defaults(self):
        self._write({"thumbnail_viewport": "256,192", "wheel_throttle_ms": 40})
        config = self._reload()
        self.assertEqual(config.get_thumbnail_size(), (256, 192))
        self.assertEqual(config.get_wheel_throttle_ms(), 40)
        self.assertEqual(config.get_default_layout(), "1x1")

    def test_corrupted_file_uses_defaults(self):
        with open(self.config_path, "w", encoding="utf-8") as f:
            f.write("{not json")
        self.assertEqual(self._reload().get_default_layout(), "1x1")

    def test_non_object_root_uses_defaults(self):
        self._write(["1x1"])
        self.assertEqual(self._reload().get_default_layout(), "1x1")

    def test_window_size_round_trip(self):
        self.config.set_window_size(1600, 900)
        self.assertEqual(self._reload().get_window_size(), (1600, 900))
        self.config.set_window_size(0, 900)
        self.assertEqual(self.config.get_window_size(), (1600, 900))


if __name__ == '__main__':
    unittest.main()
