import time

from PySide6.QtCore import QObject, Signal


class QtScrollSource(QObject):
    """Adapts a QScrollBar into the engine's scroll-position source.

    The bar's range is driven by the engine's virtual coordinate space, so its
    value is directly the virtual scroll position.
    """

    position_changed = Signal(float)
    velocity_changed = Signal(float)  # px/ms

    def __init__(self, scroll_bar, clock=time.monotonic):
        super().__init__()
        self._scroll_bar = scroll_bar
        self._clock = clock
        self._last_value = scroll_bar.value()
        self._last_time = clock()
        self._velocity = 0.0
        scroll_bar.valueChanged.connect(self._on_value_changed)

    def current_scroll_position(self) -> float:
        return float(self._scroll_bar.value())

    def set_scroll_position(self, position: float):
        self._scroll_bar.setValue(int(round(position)))

    def velocity(self) -> float:
        return self._velocity

    def apply_virtual_space(self, space, viewport_size: float):
        """Resize the bar's range to the (possibly compressed) virtual size."""
        viewport_size = max(0, int(viewport_size))
        maximum = max(0, int(space.virtual_total_size) - viewport_size)
        self._scroll_bar.setRange(0, maximum)
        self._scroll_bar.setPageStep(max(1, viewport_size))
        single_step = space.item_size * space.compression_ratio
        self._scroll_bar.setSingleStep(max(1, int(single_step)))

    def _on_value_changed(self, value):
        now = self._clock()
        elapsed_ms = (now - self._last_time) * 1000.0
        if elapsed_ms > 0:
            self._velocity = (value - self._last_value) / elapsed_ms
            self.velocity_changed.emit(self._velocity)
        self._last_value = value
        self._last_time = now
        self.position_changed.emit(float(value))

    def stop_tracking(self):
        """Report zero velocity once scrolling has settled."""
        self._velocity = 0.0
        self._last_time = self._clock()
        self.velocity_changed.emit(0.0)
