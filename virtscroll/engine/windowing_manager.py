import traceback
from collections.abc import Mapping

from PySide6.QtCore import QObject, QTimer, Signal

from virtscroll.engine.coordinate_mapper import CoordinateMapper
from virtscroll.engine.item_range import ItemRange
from virtscroll.engine.item_size_cache import ItemSizeCache
from virtscroll.engine.loading_manager import LoadingManager
from virtscroll.utils.flow_log import FlowLogger


def default_template(item, index: int) -> str:
    """Fallback text for items when no template is supplied."""
    if isinstance(item, str):
        return item
    for key in ('label', 'name', 'title'):
        if isinstance(item, Mapping):
            value = item.get(key)
        else:
            value = getattr(item, key, None)
        if value:
            return str(value)
    return f"Item {index}"


class WindowingManager(QObject):
    """Keeps the live element pool equal to the render range and positions it."""

    range_rendered = Signal(object, int)  # ItemRange, rendered element count

    def __init__(self, collection, host, mapper: CoordinateMapper, size_cache: ItemSizeCache,
                 loading_manager: LoadingManager, *, template=None, overscan: int = 2,
                 prefetch_viewports: int = 0, measure_items: bool = True,
                 logger: FlowLogger | None = None):
        super().__init__()
        self._collection = collection
        self._host = host
        self._mapper = mapper
        self._cache = size_cache
        self._loading = loading_manager
        self._template = template or default_template
        self.overscan = max(0, int(overscan))
        self.prefetch_viewports = max(0, int(prefetch_viewports))
        self.measure_items = measure_items
        self._log = logger or FlowLogger()

        self._pool = {}  # index -> element
        self._current_range = ItemRange.empty()
        self._last_scroll_position = 0.0
        self._rendering = False
        self._destroyed = False

        # Zero-delay single shot: runs after the current pass, before the next.
        self._pending_measure = []
        self._measure_timer = QTimer()
        self._measure_timer.setSingleShot(True)
        self._measure_timer.setInterval(0)
        self._measure_timer.timeout.connect(self.measure_pending)

    # ========== Queries ==========

    @property
    def current_range(self) -> ItemRange:
        return self._current_range

    def rendered_indices(self) -> list[int]:
        return sorted(self._pool)

    def rendered_elements(self) -> dict:
        return dict(self._pool)

    def _item_at(self, index: int):
        return self._collection.item_at(index)

    def _is_loaded(self, index: int) -> bool:
        return self._item_at(index) is not None

    def _has_no_local_data(self, total_items: int) -> bool:
        loaded_count = getattr(self._collection, 'loaded_count', None)
        if loaded_count is None or total_items <= 0:
            return False
        return loaded_count() == 0

    # ========== Render pass ==========

    def render_pass(self, scroll_position: float) -> bool:
        """Bring the pool in line with the range for scroll_position.

        Returns False when the pass was skipped entirely.
        """
        if self._destroyed or self._rendering:
            return False
        total_items = self._mapper.total_items
        if self._has_no_local_data(total_items):
            self._log.debug("RENDER", f"Skipping pass: 0 of {total_items} items loaded",
                            throttle_key="render_no_data", every_s=1.0)
            return False

        self._rendering = True
        try:
            self._last_scroll_position = float(scroll_position)
            visible = self._mapper.visible_range(scroll_position)

            if visible == self._current_range and all(i in self._pool for i in visible.indices()):
                self.update_positions(scroll_position)
                return True

            self._request_missing(visible, total_items)
            self._recycle(visible)
            created = self._create_missing(visible)
            self._current_range = visible
            self.range_rendered.emit(visible, len(self._pool))

            self.update_positions(scroll_position)
            if created:
                self._pending_measure.extend(created)
                self._measure_timer.start()
            return True
        finally:
            self._rendering = False

    def _request_missing(self, visible: ItemRange, total_items: int):
        if visible.is_empty:
            return
        missing = [i for i in visible.indices() if not self._is_loaded(i)]
        if missing:
            self._loading.request_load(ItemRange(missing[0], missing[-1]), "high")

        if self.prefetch_viewports <= 0:
            return
        items_per_viewport = max(1, int(self._mapper.viewport_size // max(1.0, self._mapper.item_size)))
        extended = visible.expanded(self.prefetch_viewports * items_per_viewport, total_items)
        outside = [i for i in extended.indices() if i not in visible and not self._is_loaded(i)]
        if outside:
            self._loading.request_load(extended, "low")

    def _recycle(self, visible: ItemRange):
        keep_start = visible.start - self.overscan
        keep_end = visible.end + self.overscan
        stale = [i for i in self._pool if visible.is_empty or i < keep_start or i > keep_end]
        for index in stale:
            element = self._pool.pop(index)
            self._host.release(element)
        if stale:
            self._log.debug("RENDER", f"Recycled {len(stale)} elements outside {keep_start}-{keep_end}")

    def _create_missing(self, visible: ItemRange) -> list[int]:
        created = []
        for index in visible.indices():
            if index in self._pool:
                continue
            try:
                item = self._item_at(index)
                if item is None:
                    continue
                rendered = self._template(item, index)
                element = self._host.adopt(rendered, index)
            except Exception as e:
                self._log.error("RENDER", f"Template failed for index {index}: {e}")
                traceback.print_exc()
                continue
            if element is None:
                continue
            self._pool[index] = element
            created.append(index)
        return created

    # ========== Measurement / positioning ==========

    def measure_pending(self):
        """Measure elements created by earlier passes, then re-position."""
        self._measure_timer.stop()
        pending, self._pending_measure = self._pending_measure, []
        if self._destroyed:
            return
        if self.measure_items:
            for index in pending:
                element = self._pool.get(index)
                if element is None:
                    continue  # recycled before it could be measured
                size = self._host.measure(element)
                if size is None:
                    self._log.warning("RENDER", f"Could not measure detached element {index}",
                                      throttle_key="measure_detached", every_s=1.0)
                    continue
                self._cache.record(index, size)
        self.update_positions(self._last_scroll_position)

    def update_positions(self, scroll_position: float | None = None):
        """Lay out rendered elements back to back from the first one's anchor."""
        if not self._pool:
            return
        if scroll_position is None:
            scroll_position = self._last_scroll_position
        indices = sorted(self._pool)
        offset = self._mapper.viewport_offset_for_index(indices[0], scroll_position)
        next_index = indices[0]
        for index in indices:
            # Unrendered neighbours keep their estimated slot.
            while next_index < index:
                offset += self._cache.get(next_index)
                next_index += 1
            size = self._cache.get(index)
            self._host.place(self._pool[index], offset, size)
            offset += size
            next_index = index + 1

    # ========== Lifecycle ==========

    def clear(self):
        self._measure_timer.stop()
        self._pending_measure = []
        for element in self._pool.values():
            self._host.release(element)
        self._pool.clear()
        self._current_range = ItemRange.empty()

    def destroy(self):
        if self._destroyed:
            return
        self.clear()
        self._destroyed = True
