"""
DICOMweb Viewer - Main Application Entry Point

This module is the main entry point for the DICOMweb viewer application.
It wires the DICOMweb client, the rendering toolkit and the viewer session
together, creates the main window, and runs the Qt event loop as the asyncio
event loop (qasync) so every session operation runs on the UI thread.

Inputs:
    - Command line arguments (optional DICOMweb base URL)

Outputs:
    - Running DICOMweb viewer application

Requirements:
    - PySide6 for application framework
    - qasync for running asyncio on the Qt event loop
    - requests for DICOMweb access
    - pydicom for DICOM datasets
    - PIL/Pillow for image processing
    - numpy for array operations
    - All other application modules
"""

import asyncio
import sys
from pathlib import Path

# Add src directory to path
src_dir = Path(__file__).parent
sys.path.insert(0, str(src_dir))

import qasync
from PySide6.QtWidgets import QApplication, QMessageBox, QStyleFactory
from typing import List, Optional

from core.data_source import DicomWebDataSource
from core.dicomweb_client import DicomWebClient
from core.metadata_cache import MetadataThumbnailCache
from core.viewer_session import ViewerSession
from gui.main_window import MainWindow
from gui.qt_rendering_toolkit import QtRenderingToolkit
from utils.async_tasks import schedule_coro
from utils.config_manager import ConfigManager
from utils.debug_log import debug_log


class DICOMwebViewerApp:
    """
    Main application class for the DICOMweb viewer.

    Owns the Qt application, the qasync event loop and the viewer session.
    """

    def __init__(self, argv: Optional[List[str]] = None):
        """
        Initialize the application.

        Args:
            argv: Command line arguments; argv[1] overrides the configured base URL
        """
        argv = list(sys.argv if argv is None else argv)

        # Create Qt application first (before any widgets)
        self.app = QApplication.instance() or QApplication(argv)
        self.app.setApplicationName("DICOMweb Viewer")
        self.app.setStyle(QStyleFactory.create("Fusion"))

        # asyncio runs on the Qt event loop
        self.loop = qasync.QEventLoop(self.app)
        asyncio.set_event_loop(self.loop)

        self.config_manager = ConfigManager()
        base_url = argv[1] if len(argv) > 1 else self.config_manager.get_dicomweb_base_url()
        if len(argv) > 1:
            self.config_manager.set_dicomweb_base_url(base_url)

        self.client = DicomWebClient(base_url, timeout=self.config_manager.get_request_timeout())
        self.data_source = DicomWebDataSource(self.client)
        self.toolkit = QtRenderingToolkit(self.data_source)
        self.cache = MetadataThumbnailCache(
            self.data_source,
            thumbnail_quality=self.config_manager.get_thumbnail_quality(),
            thumbnail_viewport=self.config_manager.get_thumbnail_viewport(),
            thumbnail_size=self.config_manager.get_thumbnail_size(),
        )
        self.session = ViewerSession(
            self.toolkit,
            self.data_source,
            cache=self.cache,
            config_manager=self.config_manager,
            fit_margin=self.config_manager.get_fit_margin(),
        )

        # Create main window
        self.main_window = MainWindow(self.session, self.config_manager)

        debug_log(
            "main.py:DICOMwebViewerApp.__init__",
            "Application created",
            {"base_url": base_url, "default_layout": self.config_manager.get_default_layout()},
        )

    async def start(self) -> None:
        """Apply the last used layout and load the worklist."""
        await self.session.select_layout(self.config_manager.get_default_layout())
        self.main_window.study_list.search()

    def run(self) -> int:
        """
        Run the application.

        Returns:
            Exit code
        """
        self.main_window.show()
        schedule_coro(self.start(), "startup")
        with self.loop:
            self.loop.run_forever()
        return 0


def exception_hook(exctype, value, tb):
    """Global exception handler to catch unhandled exceptions."""
    import traceback
    error_msg = ''.join(traceback.format_exception(exctype, value, tb))
    print(f"Unhandled exception:\n{error_msg}")

    if QApplication.instance():
        QMessageBox.critical(
            None,
            "Fatal Error",
            f"An unexpected error occurred:\n\n{exctype.__name__}: {value}\n\nThe application may be unstable."
        )


def main():
    """Main entry point."""
    # Install global exception hook
    sys.excepthook = exception_hook

    try:
        app = DICOMwebViewerApp()
        return app.run()
    except Exception as e:
        print(f"Fatal error: {e}")
        import traceback
        traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
