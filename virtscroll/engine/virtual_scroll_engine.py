"""
Virtual scrolling engine for collections far larger than the host surface.

Scroll change (or new collection data) -> CoordinateMapper computes the range -> WindowingManager
recycles/creates/positions elements and asks the LoadingManager for missing
data -> new elements are measured after the pass -> ItemSizeCache refines the
estimate -> CoordinateMapper re-derives the virtual space.
"""

from PySide6.QtCore import QObject, Signal

from virtscroll.engine.coordinate_mapper import CoordinateMapper
from virtscroll.engine.engine_config import EngineConfig
from virtscroll.engine.item_range import ItemRange
from virtscroll.engine.item_size_cache import ItemSizeCache
from virtscroll.engine.loading_manager import LoadingManager
from virtscroll.engine.windowing_manager import WindowingManager
from virtscroll.utils.flow_log import FlowLogger


class VirtualScrollEngine(QObject):
    """Owns the size cache, coordinate space, load queue and element pool."""

    virtual_size_changed = Signal(object)  # VirtualCoordinateSpace
    range_rendered = Signal(object, int)

    def __init__(self, collection, host, *, template=None, scroll_source=None,
                 config: EngineConfig | None = None, logger: FlowLogger | None = None):
        super().__init__()
        self.config = config or EngineConfig()
        self._log = logger or FlowLogger(minimal=self.config.minimal_trace_logs)
        self._collection = collection
        self._scroll_source = scroll_source
        self._destroyed = False

        self.size_cache = ItemSizeCache(
            initial_estimate=self.config.item_size,
            capacity=self.config.cache_capacity,
            logger=self._log,
        )
        self.mapper = CoordinateMapper(
            self.size_cache,
            viewport_size=self.config.viewport_size,
            overscan=self.config.overscan,
            max_virtual_size=self.config.max_virtual_size,
            logger=self._log,
        )
        self.loading = LoadingManager(
            collection,
            max_concurrent=self.config.max_concurrent_loads,
            cancel_velocity=self.config.cancel_velocity,
            logger=self._log,
        )
        self.windowing = WindowingManager(
            collection,
            host,
            self.mapper,
            self.size_cache,
            self.loading,
            template=template,
            overscan=self.config.overscan,
            prefetch_viewports=self.config.prefetch_viewports,
            measure_items=self.config.measure_items,
            logger=self._log,
        )

        self.size_cache.size_changed.connect(self._on_size_changed)
        self.mapper.virtual_size_changed.connect(self.virtual_size_changed)
        self.loading.range_loaded.connect(self._on_range_loaded)
        self.windowing.range_rendered.connect(self.range_rendered)

        if scroll_source is not None:
            if hasattr(scroll_source, 'position_changed'):
                scroll_source.position_changed.connect(self._on_scroll)
            if hasattr(scroll_source, 'velocity_changed'):
                scroll_source.velocity_changed.connect(self.loading.update_velocity)
            if hasattr(scroll_source, 'apply_virtual_space'):
                self.virtual_size_changed.connect(
                    lambda space: scroll_source.apply_virtual_space(space, self.mapper.viewport_size))

        # Collections that fetch data on their own announce it here.
        if hasattr(collection, 'page_loaded'):
            collection.page_loaded.connect(self._on_collection_loaded)
        if hasattr(collection, 'total_count_changed'):
            collection.total_count_changed.connect(self.set_total_items)

        total_items = getattr(collection, 'total_items', None)
        if total_items is not None:
            self.mapper.update_total_virtual_size(total_items())

    # ========== Engine surface ==========

    def scroll_position(self) -> float:
        if self._scroll_source is None:
            return 0.0
        return float(self._scroll_source.current_scroll_position())

    def set_total_items(self, total_items: int):
        if self._destroyed:
            return
        if self.mapper.update_total_virtual_size(total_items):
            self.render()

    def set_viewport_size(self, size: float):
        if self._destroyed:
            return
        if self.mapper.set_viewport_size(size):
            self.render()

    def render(self) -> bool:
        if self._destroyed:
            return False
        return self.windowing.render_pass(self.scroll_position())

    def get_rendered_indices(self) -> list[int]:
        if self._destroyed:
            return []
        return self.windowing.rendered_indices()

    def visible_range(self) -> ItemRange:
        if self._destroyed:
            return ItemRange.empty()
        return self.mapper.visible_range(self.scroll_position())

    def scroll_to_index(self, index: int, alignment: str = "start") -> float:
        """Move the scroll source so `index` is aligned in the viewport."""
        if self._destroyed:
            return 0.0
        position = self.mapper.scroll_position_for_index(index, alignment)
        setter = getattr(self._scroll_source, 'set_scroll_position', None)
        if setter is not None:
            setter(position)
        # A source that emits position_changed has already rendered.
        if not hasattr(self._scroll_source, 'position_changed'):
            self.windowing.render_pass(position)
        return position

    def reset_size_cache(self):
        """Drop all measurements and return to the configured estimate."""
        if self._destroyed:
            return
        self.size_cache.clear()
        self.size_cache.reset_estimate()
        self.mapper.update_total_virtual_size(self.mapper.total_items)
        self.windowing.update_positions()

    def stats(self) -> dict:
        space = self.mapper.space
        return {
            'total_items': space.total_items,
            'virtual_total_size': space.virtual_total_size,
            'compression_ratio': space.compression_ratio,
            'rendered': len(self.windowing.rendered_indices()),
            'size_cache': self.size_cache.stats(),
            'loading': self.loading.stats(),
        }

    def destroy(self):
        """Tear down synchronously. Safe to call repeatedly."""
        if self._destroyed:
            return
        self._destroyed = True
        if self._scroll_source is not None and hasattr(self._scroll_source, 'position_changed'):
            try:
                self._scroll_source.position_changed.disconnect(self._on_scroll)
            except (RuntimeError, TypeError):
                pass  # already disconnected
        if hasattr(self._collection, 'page_loaded'):
            try:
                self._collection.page_loaded.disconnect(self._on_collection_loaded)
            except (RuntimeError, TypeError):
                pass  # already disconnected
        self.windowing.destroy()
        self.loading.destroy()
        self.size_cache.destroy()
        self._log.debug("ENGINE", "Destroyed")

    # ========== Internal wiring ==========

    def _on_scroll(self, position=None):
        self.render()

    def _on_collection_loaded(self, page_num=None):
        if self._destroyed:
            return
        self._log.debug("ENGINE", f"Collection loaded page {page_num}; re-rendering")
        self.render()

    def _on_size_changed(self, estimate: float):
        if self._destroyed:
            return
        self.mapper.update_total_virtual_size(self.mapper.total_items)
        self.windowing.update_positions()

    def _on_range_loaded(self, item_range: ItemRange):
        if self._destroyed:
            return
        total_items = getattr(self._collection, 'total_items', None)
        if total_items is not None:
            self.mapper.update_total_virtual_size(total_items())
        self._log.debug("ENGINE", f"Range {item_range.key} loaded; re-rendering")
        self.render()
