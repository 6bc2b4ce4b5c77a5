from PySide6.QtCore import Qt, QTimer
from PySide6.QtWidgets import QHBoxLayout, QScrollBar, QVBoxLayout, QWidget

from virtscroll.engine.engine_config import EngineConfig
from virtscroll.engine.virtual_scroll_engine import VirtualScrollEngine
from virtscroll.widgets.qt_element_host import QtElementHost
from virtscroll.widgets.qt_scroll_source import QtScrollSource


class VirtualListWidget(QWidget):
    """Scrollable list that only keeps the visible window of rows alive."""

    SCROLL_STOP_DELAY_MS = 200

    def __init__(self, collection, parent=None, *, template=None, config: EngineConfig | None = None):
        super().__init__(parent)
        self.config = config or EngineConfig()
        horizontal = self.config.orientation == "horizontal"

        self.viewport_container = QWidget(self)
        self.viewport_container.setObjectName("virtualViewport")
        self.viewport_container.setAttribute(Qt.WidgetAttribute.WA_StyledBackground, True)
        self.scroll_bar = QScrollBar(
            Qt.Orientation.Horizontal if horizontal else Qt.Orientation.Vertical, self)

        layout = QVBoxLayout() if horizontal else QHBoxLayout()
        layout.setContentsMargins(0, 0, 0, 0)
        layout.setSpacing(0)
        layout.addWidget(self.viewport_container, 1)
        layout.addWidget(self.scroll_bar)
        self.setLayout(layout)

        self.host = QtElementHost(self.viewport_container, self.config.orientation)
        self.scroll_source = QtScrollSource(self.scroll_bar)
        self.engine = VirtualScrollEngine(
            collection,
            self.host,
            template=template,
            scroll_source=self.scroll_source,
            config=self.config,
        )

        # Mouse scroll detection timer (velocity back to zero when idle)
        self._scroll_stop_timer = QTimer(self)
        self._scroll_stop_timer.setSingleShot(True)
        self._scroll_stop_timer.timeout.connect(self.scroll_source.stop_tracking)
        self.scroll_bar.valueChanged.connect(lambda _value: self._scroll_stop_timer.start(self.SCROLL_STOP_DELAY_MS))

    def _viewport_extent(self) -> int:
        if self.config.orientation == "horizontal":
            return self.viewport_container.width()
        return self.viewport_container.height()

    def resizeEvent(self, event):
        super().resizeEvent(event)
        self.engine.set_viewport_size(self._viewport_extent())
        # Cross-axis size changed too; re-place rendered rows.
        self.engine.windowing.update_positions()

    def showEvent(self, event):
        super().showEvent(event)
        self.engine.set_viewport_size(self._viewport_extent())
        self.engine.render()

    def wheelEvent(self, event):
        delta = event.angleDelta().y() or event.angleDelta().x()
        steps = delta / 120.0
        self.scroll_bar.setValue(int(self.scroll_bar.value() - steps * self.scroll_bar.singleStep() * 3))
        event.accept()

    def closeEvent(self, event):
        self.engine.destroy()
        super().closeEvent(event)
