"""
Pytest configuration for the DICOMweb viewer tests.

The test modules are unittest-style and also run with
  python -m unittest discover -s tests -p "test_*.py"
from the project root; under pytest this file puts src/ and tests/ on
sys.path, forces the offscreen Qt platform and marks the widget tests.
"""

import os
import sys

import pytest

# Widgets are created without a display
os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")

_TESTS_DIR = os.path.dirname(os.path.abspath(__file__))
for _path in (os.path.join(os.path.dirname(_TESTS_DIR), "src"), _TESTS_DIR):
    if _path not in sys.path:
        sys.path.insert(0, _path)

# Modules whose tests create widgets
QT_TEST_MODULES = ("test_qt_rendering_toolkit", "test_viewport_widgets")


def pytest_configure(config):
    config.addinivalue_line("markers", "qt: test needs a QApplication (PySide6)")


def pytest_collection_modifyitems(config, items):
    """Mark the widget tests so they can be deselected with -m "not qt"."""
    for item in items:
        module = getattr(item, "module", None)
        if module is not None and module.__name__ in QT_TEST_MODULES:
            item.add_marker(pytest.mark.qt)

