"""
Index <-> scroll-position mapping for collections of any size.

Small collections map directly (``index * item_size``). Once
``total_items * item_size`` would exceed the host's safe surface size the
scroll axis is compressed to ``max_virtual_size`` and positions become a
linear ratio of the index. Plain ratio mapping stalls short of the last item
in the final viewport of scroll travel, so the visible window is blended
toward the exact last-page window across that stretch.
"""

import math
from dataclasses import dataclass

from PySide6.QtCore import QObject, Signal

from virtscroll.engine.engine_config import DEFAULT_OVERSCAN, MAX_SAFE_VIRTUAL_SIZE
from virtscroll.engine.item_range import ItemRange
from virtscroll.engine.item_size_cache import ItemSizeCache
from virtscroll.utils.flow_log import FlowLogger


@dataclass(frozen=True)
class VirtualCoordinateSpace:
    total_items: int = 0
    item_size: float = 0.0
    actual_total_size: float = 0.0
    virtual_total_size: float = 0.0
    compression_ratio: float = 1.0

    @property
    def is_compressed(self) -> bool:
        return self.compression_ratio < 1.0


def build_coordinate_space(total_items: int, item_size: float,
                           max_virtual_size: float = MAX_SAFE_VIRTUAL_SIZE) -> VirtualCoordinateSpace:
    total_items = max(0, int(total_items))
    actual = total_items * item_size
    virtual = min(actual, max_virtual_size)
    ratio = virtual / actual if actual > 0 else 1.0
    return VirtualCoordinateSpace(
        total_items=total_items,
        item_size=item_size,
        actual_total_size=actual,
        virtual_total_size=virtual,
        compression_ratio=ratio,
    )


class CoordinateMapper(QObject):
    """Owns the virtual coordinate space and answers range/position queries."""

    # Emitted with the new VirtualCoordinateSpace only when it actually changed.
    virtual_size_changed = Signal(object)

    def __init__(self, size_cache: ItemSizeCache, *, viewport_size: float = 0,
                 overscan: int = DEFAULT_OVERSCAN,
                 max_virtual_size: float = MAX_SAFE_VIRTUAL_SIZE,
                 logger: FlowLogger | None = None):
        super().__init__()
        self._cache = size_cache
        self._viewport_size = float(viewport_size)
        self.overscan = max(0, int(overscan))
        self.max_virtual_size = max_virtual_size
        self._log = logger or FlowLogger()
        self._space = build_coordinate_space(0, size_cache.estimate(), max_virtual_size)

    # ========== State ==========

    @property
    def space(self) -> VirtualCoordinateSpace:
        return self._space

    @property
    def total_items(self) -> int:
        return self._space.total_items

    @property
    def item_size(self) -> float:
        return self._space.item_size

    @property
    def viewport_size(self) -> float:
        return self._viewport_size

    @property
    def is_compressed(self) -> bool:
        return self._space.is_compressed

    @property
    def compression_ratio(self) -> float:
        return self._space.compression_ratio

    def update_total_virtual_size(self, total_items: int) -> bool:
        """Recompute the space from total_items and the current estimate."""
        new_space = build_coordinate_space(total_items, self._cache.estimate(), self.max_virtual_size)
        old_space = self._space
        self._space = new_space
        if (new_space.virtual_total_size == old_space.virtual_total_size
                and new_space.total_items == old_space.total_items):
            return False
        self._log.info(
            "VIRTUAL",
            f"Virtual size {new_space.virtual_total_size / 1_000_000:.2f}M "
            f"({new_space.item_size:.1f} x {new_space.total_items:,} items, "
            f"compressed={new_space.is_compressed})",
        )
        self.virtual_size_changed.emit(new_space)
        return True

    def set_viewport_size(self, size: float) -> bool:
        size = max(0.0, float(size))
        if size == self._viewport_size:
            return False
        self._viewport_size = size
        self.virtual_size_changed.emit(self._space)
        return True

    def max_scroll_position(self) -> float:
        return max(0.0, self._space.virtual_total_size - self._viewport_size)

    def clamp_scroll_position(self, scroll_position: float) -> float:
        return max(0.0, min(float(scroll_position), self.max_scroll_position()))

    # ========== Index <-> position ==========

    def position_for_index(self, index: int) -> float:
        space = self._space
        if space.total_items <= 0:
            return 0.0
        if not space.is_compressed:
            return index * space.item_size
        return (index / space.total_items) * space.virtual_total_size

    def index_for_position(self, position: float) -> int:
        space = self._space
        if space.total_items <= 0 or space.virtual_total_size <= 0:
            return 0
        if not space.is_compressed:
            index = math.floor(position / space.item_size)
        else:
            index = math.floor((position / space.virtual_total_size) * space.total_items)
        return max(0, min(space.total_items - 1, index))

    def _items_per_viewport(self) -> int:
        return max(1, math.ceil(self._viewport_size / self._space.item_size))

    def _last_window_start(self) -> int:
        fit_completely = math.floor(self._viewport_size / self._space.item_size)
        return max(0, self._space.total_items - fit_completely)

    def _tail_interpolation(self, scroll_position: float) -> float:
        """0 outside the final viewport of travel, rising to 1 at max scroll."""
        if not self._space.is_compressed or self._viewport_size <= 0:
            return 0.0
        distance_from_bottom = self.max_scroll_position() - scroll_position
        if distance_from_bottom > self._viewport_size:
            return 0.0
        return max(0.0, min(1.0, 1.0 - distance_from_bottom / self._viewport_size))

    # ========== Ranges ==========

    def visible_range(self, scroll_position: float) -> ItemRange:
        """Indices to render for a scroll offset, overscan included."""
        space = self._space
        total = space.total_items
        if total <= 0 or self._viewport_size <= 0 or space.item_size <= 0:
            return ItemRange.empty()

        scroll_position = self.clamp_scroll_position(scroll_position)
        visible_count = self._items_per_viewport()

        if not space.is_compressed:
            start = math.floor(scroll_position / space.item_size)
            end = start + visible_count - 1
        else:
            exact_index = (scroll_position / space.virtual_total_size) * total
            start = math.floor(exact_index)
            factor = self._tail_interpolation(scroll_position)
            if factor > 0.0:
                target = self._last_window_start()
                start = math.floor(start + (target - start) * factor)
            end = start + visible_count - 1
            if self.max_scroll_position() - scroll_position <= 1:
                end = total - 1

        start = max(0, min(total - 1, start))
        end = max(start, min(total - 1, end))
        return ItemRange(start, end).expanded(self.overscan, total)

    def viewport_offset_for_index(self, index: int, scroll_position: float) -> float:
        """Leading-edge offset of `index` relative to the viewport."""
        space = self._space
        if space.total_items <= 0:
            return 0.0
        scroll_position = self.clamp_scroll_position(scroll_position)
        if not space.is_compressed:
            return index * space.item_size - scroll_position

        exact_index = (scroll_position / space.virtual_total_size) * space.total_items
        normal = (index - exact_index) * space.item_size
        factor = self._tail_interpolation(scroll_position)
        if factor <= 0.0:
            return normal
        at_bottom = (index - self._last_window_start()) * space.item_size
        return normal + (at_bottom - normal) * factor

    def scroll_position_for_index(self, index: int, alignment: str = "start") -> float:
        """Scroll offset that brings `index` to the start/center/end of the viewport."""
        space = self._space
        if space.total_items <= 0:
            return 0.0
        index = max(0, min(space.total_items - 1, int(index)))
        if space.is_compressed and index >= self._last_window_start():
            # Only max scroll reveals the exact last page.
            return self.max_scroll_position()

        item_position = self.position_for_index(index)
        item_extent = space.item_size * space.compression_ratio
        if alignment == "center":
            position = item_position - self._viewport_size / 2 + item_extent / 2
        elif alignment == "end":
            position = item_position - self._viewport_size + item_extent
        else:
            position = item_position
        return self.clamp_scroll_position(position)
