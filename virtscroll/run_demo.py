import logging
import os
import sys
import threading
import traceback
import warnings
from datetime import datetime

from PySide6.QtCore import qInstallMessageHandler
from PySide6.QtWidgets import QApplication, QMainWindow, QMessageBox

from virtscroll.engine.engine_config import EngineConfig
from virtscroll.models.paged_collection import PagedCollection
from virtscroll.utils.settings import get_setting, settings
from virtscroll.widgets.virtual_list_widget import VirtualListWidget

DEMO_TOTAL_ITEMS = 5_000_000
CRASH_LOG_PATH = os.path.abspath('virtscroll_crash.log')


# Install a message handler to suppress QPainter warnings at Qt level
def qt_message_handler(msg_type, msg_context, msg_string):
    """Suppress Qt's QPainter debug messages."""
    if "QPainter" in msg_string or "Paint device returned engine" in msg_string:
        return
    print(f"[Qt] {msg_string}")


def _append_crash_log(title: str, exc_info=None):
    """Append a timestamped crash entry to the crash log."""
    ts = datetime.now().strftime('%Y-%m-%d %H:%M:%S')
    try:
        with open(CRASH_LOG_PATH, 'a', encoding='utf-8') as f:
            f.write("\n" + "=" * 80 + "\n")
            f.write(f"{ts} | {title}\n")
            f.write("=" * 80 + "\n")
            if exc_info is None:
                f.write(traceback.format_exc())
            else:
                f.writelines(traceback.format_exception(*exc_info))
            f.write("\n")
    except Exception as log_error:
        print(f"[CRASH] Failed to write crash log: {log_error}")
    print(f"[CRASH] Details written to: {CRASH_LOG_PATH}")


def install_crash_handlers():
    """Route unhandled main-thread and worker-thread exceptions to the crash log."""

    def _unhandled_exception(exc_type, exc_value, exc_traceback):
        _append_crash_log("UNHANDLED EXCEPTION", (exc_type, exc_value, exc_traceback))
        sys.__excepthook__(exc_type, exc_value, exc_traceback)

    def _thread_exception(args):
        thread_name = getattr(args.thread, 'name', 'unknown')
        _append_crash_log(
            f"THREAD EXCEPTION ({thread_name})",
            (args.exc_type, args.exc_value, args.exc_traceback),
        )

    sys.excepthook = _unhandled_exception
    threading.excepthook = _thread_exception


def suppress_warnings():
    """Suppress all warnings when not in a development environment."""
    environment = os.getenv('VIRTSCROLL_ENVIRONMENT')
    if environment == 'development':
        print('Running in development environment.')
        return
    logging.basicConfig(level=logging.ERROR)
    warnings.simplefilter('ignore')


def build_demo_window(total_items: int = DEMO_TOTAL_ITEMS) -> QMainWindow:
    config = EngineConfig.from_settings(settings)
    collection = PagedCollection(
        total_items,
        page_size=get_setting('virtual_scroll_page_size', int),
        max_pages=get_setting('max_pages_in_memory', int),
    )
    window = QMainWindow()
    window.setWindowTitle(f'virtscroll - {total_items:,} rows')
    list_widget = VirtualListWidget(collection, window, config=config)
    window.setCentralWidget(list_widget)
    window.resize(480, 720)
    # Keep the collection alive with the window and release its pool on exit.
    window.collection = collection
    QApplication.instance().aboutToQuit.connect(collection.cleanup)
    return window


def run_demo():
    qInstallMessageHandler(qt_message_handler)
    app = QApplication([])
    app.setApplicationName('virtscroll')
    app.setApplicationDisplayName('virtscroll')
    app.setStyle('Fusion')

    window = build_demo_window()
    window.show()
    return int(app.exec())


if __name__ == '__main__':
    suppress_warnings()
    install_crash_handlers()
    try:
        sys.exit(run_demo())
    except Exception as exception:
        _append_crash_log("TOP-LEVEL EXCEPTION", sys.exc_info())
        error_message_box = QMessageBox()
        error_message_box.setWindowTitle('Error')
        error_message_box.setIcon(QMessageBox.Icon.Critical)
        error_message_box.setText(str(exception))
        error_message_box.setDetailedText(traceback.format_exc())
        error_message_box.exec()
        sys.exit(1)
