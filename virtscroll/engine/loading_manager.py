import itertools
import traceback

from PySide6.QtCore import QObject, QTimer, Signal

from virtscroll.engine.engine_config import LOAD_POLL_MS, PRIORITIES, QUEUE_PROCESS_MS
from virtscroll.engine.item_range import ItemRange
from virtscroll.utils.flow_log import FlowLogger

_PRIORITY_WEIGHT = {priority: weight for weight, priority in enumerate(PRIORITIES)}


class LoadingManager(QObject):
    """Queues range-load requests against the collection and drains their futures.

    Futures are polled on the UI thread, never via done-callbacks, so the
    engine is only ever touched from one thread. Each future resolves on its
    own; a slow early request finishing after a later overlapping one is not
    an error, the engine simply re-checks availability on every completion.
    """

    range_loaded = Signal(object)  # ItemRange
    load_failed = Signal(object, str)  # ItemRange, error text

    def __init__(self, collection, *, max_concurrent: int = 1, cancel_velocity: float = 1.0,
                 logger: FlowLogger | None = None):
        super().__init__()
        self._collection = collection
        self.max_concurrent = max(1, int(max_concurrent))
        self.cancel_velocity = float(cancel_velocity)
        self._log = logger or FlowLogger()

        self._in_flight = {}  # range key -> (ItemRange, future)
        self._queue = []  # (weight, seq, ItemRange, priority)
        self._seq = itertools.count()
        self._velocity = 0.0
        self._stats = {
            'completed': 0,
            'failed': 0,
            'cancelled': 0,
        }
        self._destroyed = False

        self._poll_timer = QTimer()
        self._poll_timer.setSingleShot(True)
        self._poll_timer.setInterval(LOAD_POLL_MS)
        self._poll_timer.timeout.connect(self.poll)

        self._queue_timer = QTimer()
        self._queue_timer.setSingleShot(True)
        self._queue_timer.setInterval(QUEUE_PROCESS_MS)
        self._queue_timer.timeout.connect(self.process_queue)

    # ========== Requests ==========

    def can_load(self) -> bool:
        if self.cancel_velocity <= 0:
            return True
        return abs(self._velocity) < self.cancel_velocity

    def is_range_loading(self, item_range: ItemRange) -> bool:
        return item_range.key in self._in_flight

    def _is_queued(self, key: str) -> bool:
        return any(entry[2].key == key for entry in self._queue)

    def _drop_superseded_high(self):
        """A newer visible range replaces queued visible ranges the user scrolled past."""
        kept = [entry for entry in self._queue if entry[3] != "high"]
        dropped = len(self._queue) - len(kept)
        if dropped:
            self._queue = kept
            self._stats['cancelled'] += dropped
            self._log.debug("LOADING", f"Dropped {dropped} superseded high-priority requests")

    def request_load(self, item_range: ItemRange, priority: str = "normal") -> bool:
        """Start or queue a load. Returns True when a load was started now."""
        if self._destroyed or item_range.is_empty:
            return False
        if priority not in _PRIORITY_WEIGHT:
            priority = "normal"
        key = item_range.key
        if key in self._in_flight or self._is_queued(key):
            return False
        if priority == "high":
            self._drop_superseded_high()

        if not self.can_load() or len(self._in_flight) >= self.max_concurrent:
            self._queue.append((_PRIORITY_WEIGHT[priority], next(self._seq), item_range, priority))
            self._queue.sort(key=lambda entry: (entry[0], entry[1]))
            self._log.debug("LOADING", f"Queued {key} ({priority}); queue={len(self._queue)}")
            return False

        self._start_load(item_range, priority)
        return True

    def _start_load(self, item_range: ItemRange, priority: str):
        key = item_range.key
        self._log.debug("LOADING", f"Loading range {key} ({priority}, velocity={self._velocity:.2f} px/ms)")
        try:
            future = self._collection.load_missing_ranges(item_range, priority)
        except Exception as e:
            self._stats['failed'] += 1
            self._log.error("LOADING", f"Failed to start load for {key}: {e}")
            traceback.print_exc()
            self.load_failed.emit(item_range, str(e))
            return

        if future is None:
            # Synchronous collection: data is already there.
            self._stats['completed'] += 1
            self.range_loaded.emit(item_range)
            return

        self._in_flight[key] = (item_range, future)
        if not self._poll_timer.isActive():
            self._poll_timer.start()

    # ========== Completion ==========

    def poll(self):
        """Resolve every finished future, then refill from the queue."""
        if self._destroyed:
            return
        finished = [(key, entry) for key, entry in self._in_flight.items() if entry[1].done()]
        for key, (item_range, future) in finished:
            del self._in_flight[key]
            if future.cancelled():
                self._stats['cancelled'] += 1
                continue
            try:
                future.result()
            except Exception as e:
                self._stats['failed'] += 1
                self._log.error("LOADING", f"Failed to load range {key}: {e}")
                self.load_failed.emit(item_range, str(e))
                continue
            self._stats['completed'] += 1
            self.range_loaded.emit(item_range)

        if finished and self._queue:
            self.process_queue()
        if self._in_flight and not self._poll_timer.isActive():
            self._poll_timer.start()

    def process_queue(self):
        self._queue_timer.stop()
        while self._queue and len(self._in_flight) < self.max_concurrent and self.can_load():
            _, _, item_range, priority = self._queue.pop(0)
            self._start_load(item_range, priority)

    # ========== Velocity / cancellation ==========

    def update_velocity(self, velocity: float):
        previous = self._velocity
        self._velocity = float(velocity)
        if self.cancel_velocity <= 0:
            return
        was_fast = abs(previous) >= self.cancel_velocity
        is_fast = abs(self._velocity) >= self.cancel_velocity
        if is_fast and not was_fast:
            self._log.debug("LOADING", f"High velocity ({velocity:.2f} px/ms), cancelling pending loads")
            self.cancel_pending()
        elif was_fast and not is_fast and self._queue:
            self._queue_timer.start()

    def cancel_pending(self) -> int:
        """Drop queued requests and forget in-flight ones. Advisory only."""
        cancelled = len(self._in_flight) + len(self._queue)
        for _, future in self._in_flight.values():
            future.cancel()
        self._in_flight.clear()
        self._queue.clear()
        self._poll_timer.stop()
        self._queue_timer.stop()
        self._stats['cancelled'] += cancelled
        if cancelled:
            self._log.debug("LOADING", f"Cancelled {cancelled} pending requests")
        return cancelled

    def stats(self) -> dict:
        return {
            'pending': len(self._in_flight),
            'queued': len(self._queue),
            'completed': self._stats['completed'],
            'failed': self._stats['failed'],
            'cancelled': self._stats['cancelled'],
            'velocity': self._velocity,
            'can_load': self.can_load(),
        }

    def destroy(self):
        if self._destroyed:
            return
        self.cancel_pending()
        self._destroyed = True
