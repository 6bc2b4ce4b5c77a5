"""
Measured item sizes plus a running estimate for everything unmeasured.

Measurements arrive in bursts (a whole window of freshly created elements is
measured in one deferred callback), so re-estimation is debounced onto a
single-shot timer: one recompute and at most one ``size_changed`` emission per
burst.
"""

import math
from numbers import Real

from PySide6.QtCore import QObject, QTimer, Signal

from virtscroll.engine.engine_config import (DEFAULT_CACHE_CAPACITY, DEFAULT_ITEM_SIZE,
                                             EVICTION_FRACTION, MEASUREMENT_BATCH_MS)
from virtscroll.utils.flow_log import FlowLogger


class ItemSizeCache(QObject):
    """Bounded index -> measured size map with a hysteresis-filtered estimate."""

    # Emitted once per measurement burst when the estimate moved significantly.
    size_changed = Signal(float)

    def __init__(self, initial_estimate: float = DEFAULT_ITEM_SIZE,
                 capacity: int = DEFAULT_CACHE_CAPACITY,
                 logger: FlowLogger | None = None,
                 batch_delay_ms: int = MEASUREMENT_BATCH_MS):
        super().__init__()
        self._initial_estimate = float(initial_estimate)
        self._estimate = float(initial_estimate)
        self.capacity = max(1, int(capacity))
        self._log = logger or FlowLogger()

        # Insertion order is eviction order.
        self._sizes: dict[int, float] = {}
        self._pending_measurements = 0

        self._batch_timer = QTimer()
        self._batch_timer.setSingleShot(True)
        self._batch_timer.setInterval(batch_delay_ms)
        self._batch_timer.timeout.connect(self.flush)
        self._destroyed = False

    def __len__(self) -> int:
        return len(self._sizes)

    # ========== Recording ==========

    def record(self, index, size) -> float:
        """Store a measured size. Invalid input is logged and yields the estimate."""
        if self._destroyed:
            return self._estimate
        if isinstance(index, bool) or not isinstance(index, int) or index < 0:
            self._log.warning("SIZE", f"Rejected measurement for invalid index {index!r}")
            return self._estimate
        if (isinstance(size, bool) or not isinstance(size, Real)
                or math.isnan(size) or math.isinf(size) or size <= 0):
            self._log.warning("SIZE", f"Rejected size {size!r} for index {index}; using estimate",
                              throttle_key="size_rejected", every_s=1.0)
            return self._estimate

        size = float(size)
        if index not in self._sizes and len(self._sizes) >= self.capacity:
            self._evict_oldest()
        self._sizes[index] = size

        self._pending_measurements += 1
        # Restart the debounce window; the whole burst flushes once.
        self._batch_timer.start()
        return size

    def _evict_oldest(self):
        evict_count = max(1, int(self.capacity * EVICTION_FRACTION))
        for key in list(self._sizes)[:evict_count]:
            del self._sizes[key]
        self._log.debug("SIZE", f"Evicted {evict_count} oldest measurements (capacity={self.capacity})",
                        throttle_key="size_evict", every_s=1.0)

    def flush(self) -> bool:
        """Recompute the estimate now. Returns True when size_changed was emitted."""
        self._batch_timer.stop()
        batch = self._pending_measurements
        self._pending_measurements = 0
        if not self._sizes:
            return False

        average = sum(self._sizes.values()) / len(self._sizes)
        change = abs(average - self._estimate)
        threshold = max(2.0, self._estimate * 0.05)
        if change > threshold:
            previous = self._estimate
            self._estimate = average
            self._log.info("SIZE", f"Estimate {previous:.1f} -> {average:.1f} after {batch} measurements")
            self.size_changed.emit(average)
            return True
        # Small drift: track the mean without triggering relayout.
        self._estimate = average
        return False

    # ========== Queries ==========

    def get(self, index: int) -> float:
        return self._sizes.get(index, self._estimate)

    def has(self, index: int) -> bool:
        return index in self._sizes

    def estimate(self) -> float:
        return self._estimate

    def measured_sizes(self) -> dict[int, float]:
        return dict(self._sizes)

    def total_size(self, total_items_hint: int | None = None) -> float:
        """Sum of sizes over [0, hint), or of cached sizes only without a hint."""
        if total_items_hint is None:
            return sum(self._sizes.values())
        measured_total = 0.0
        measured_count = 0
        for index, size in self._sizes.items():
            if index < total_items_hint:
                measured_total += size
                measured_count += 1
        return measured_total + (total_items_hint - measured_count) * self._estimate

    def stats(self) -> dict:
        sizes = self._sizes.values()
        return {
            'cached_items': len(self._sizes),
            'estimated_size': self._estimate,
            'capacity': self.capacity,
            'min_size': min(sizes) if self._sizes else self._estimate,
            'max_size': max(sizes) if self._sizes else self._estimate,
            'pending_measurements': self._pending_measurements,
        }

    # ========== Lifecycle ==========

    def clear(self):
        """Forget all measurements. The estimate is kept."""
        self._batch_timer.stop()
        self._sizes.clear()
        self._pending_measurements = 0

    def reset_estimate(self):
        self._estimate = self._initial_estimate

    def destroy(self):
        if self._destroyed:
            return
        self.clear()
        self._destroyed = True
