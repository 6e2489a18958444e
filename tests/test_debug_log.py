"""
Tests for the debug log utility (utils.debug_log).

Logging is off unless DICOMWEB_VIEWER_DEBUG_LOG is set; when on, each call
appends one JSON line. Write failures never raise.
"""

import json
import os
import shutil
import sys
import tempfile
import unittest
from unittest import mock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

from utils.debug_log import debug_log, get_debug_log_path, is_debug_log_enabled


class TestDebugLog(unittest.TestCase):

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()
        self.log_path = os.path.join(self.temp_dir, "logs", "debug.log")

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_disabled_by_default(self):
        with mock.patch.dict(os.environ, {"DICOMWEB_VIEWER_DEBUG_LOG": "",
                                          "DICOMWEB_VIEWER_DEBUG_LOG_PATH": self.log_path}):
            self.assertFalse(is_debug_log_enabled())
            debug_log("test:disabled", "nothing", {"a": 1})
        self.assertFalse(os.path.exists(self.log_path))

    def test_enabled_values(self):
        for value in ("1", "true", "YES"):
            with mock.patch.dict(os.environ, {"DICOMWEB_VIEWER_DEBUG_LOG": value}):
                self.assertTrue(is_debug_log_enabled(), value)

    def test_path_override(self):
        with mock.patch.dict(os.environ, {"DICOMWEB_VIEWER_DEBUG_LOG_PATH": self.log_path}):
            self.assertEqual(str(get_debug_log_path()), self.log_path)

    def test_writes_json_lines(self):
        with mock.patch.dict(os.environ, {"DICOMWEB_VIEWER_DEBUG_LOG": "1",
                                          "DICOMWEB_VIEWER_DEBUG_LOG_PATH": self.log_path}):
            debug_log("stack_navigation.py:go_to", "Index changed", {"index": 3}, cell_id="viewport-0")
            debug_log("viewer_session.py:select_layout", "Layout selected", {"path": object()})

        with open(self.log_path, encoding="utf-8") as f:
            lines = [json.loads(line) for line in f]
        self.assertEqual(len(lines), 2)
        self.assertEqual(lines[0]["location"], "stack_navigation.py:go_to")
        self.assertEqual(lines[0]["message"], "Index changed")
        self.assertEqual(lines[0]["cellId"], "viewport-0")
        self.assertEqual(lines[0]["data"], {"index": 3})
        self.assertIn("timestamp", lines[0])
        # Non-JSON values are stringified
        self.assertIsInstance(lines[1]["data"]["path"], str)
        self.assertIsNone(lines[1]["cellId"])

    def test_write_failure_is_ignored(self):
        # A directory where the file should be
        os.makedirs(self.log_path)
        with mock.patch.dict(os.environ, {"DICOMWEB_VIEWER_DEBUG_LOG": "1",
                                          "DICOMWEB_VIEWER_DEBUG_LOG_PATH": self.log_path}):
            debug_log("test:failure", "ignored", {})


if __name__ == '__main__':
    unittest.main()
