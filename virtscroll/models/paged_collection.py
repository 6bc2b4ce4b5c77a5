"""
Paged in-memory collection for driving the engine with millions of rows.

Rows are produced by a `row_factory(index)` in pages on a background
executor, keeping only a limited number of pages in memory at a time. It
fulfils the engine's collection contract (`total_items`, `item_at`,
`loaded_count`, `load_missing_ranges`) and announces each stored page with
`page_loaded`, starting with page 0 so a fresh view has rows to show.
"""

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from PySide6.QtCore import QObject, Signal

from virtscroll.engine.item_range import ItemRange


# Page configuration
DEFAULT_PAGE_SIZE = 1000
MAX_PAGES_IN_MEMORY = 20


@dataclass
class PageInfo:
    """Metadata about a loaded page."""
    page_num: int
    rows: List[Any]
    load_time: float


def default_row_factory(index: int) -> dict:
    return {'label': f"Row {index:,}"}


class PagedCollection(QObject):
    """Sparse collection that backfills whole pages on request."""

    # Signals
    # Emitted from the loader thread; connect QObject slots so delivery is queued.
    page_loaded = Signal(int)
    total_count_changed = Signal(int)

    def __init__(self, total_count: int, row_factory: Callable[[int], Any] = default_row_factory,
                 page_size: int = DEFAULT_PAGE_SIZE, max_pages: int = MAX_PAGES_IN_MEMORY,
                 executor: Optional[ThreadPoolExecutor] = None, load_delay_s: float = 0.0,
                 preload_first_page: bool = True):
        super().__init__()
        self.page_size = max(1, int(page_size))
        self.max_pages = max(1, int(max_pages))
        self._row_factory = row_factory
        self._total_count = max(0, int(total_count))
        self._load_delay_s = load_delay_s

        # Page storage
        self._pages: Dict[int, PageInfo] = {}
        self._page_load_order: List[int] = []  # LRU tracking
        self._loading_pages: Dict[int, Future] = {}
        self._load_lock = threading.RLock()

        self._owns_executor = executor is None
        self._load_executor = executor or ThreadPoolExecutor(max_workers=2, thread_name_prefix="page_load")
        self._preload_first_page = preload_first_page
        self._preload()

    # ========== Collection contract ==========

    def total_items(self) -> int:
        return self._total_count

    def set_total_count(self, total_count: int):
        with self._load_lock:
            self._total_count = max(0, int(total_count))
            self._pages.clear()
            self._page_load_order.clear()
        self.total_count_changed.emit(self._total_count)
        self._preload()

    def loaded_count(self) -> int:
        with self._load_lock:
            return sum(len(page.rows) for page in self._pages.values())

    def item_at(self, index: int):
        """Row at index, or None when its page is not in memory."""
        if index < 0 or index >= self._total_count:
            return None
        page_num = self._get_page_for_index(index)
        with self._load_lock:
            page = self._pages.get(page_num)
            if page is None:
                return None
            self._touch_page(page_num)
        index_in_page = index % self.page_size
        if index_in_page < len(page.rows):
            return page.rows[index_in_page]
        return None

    def load_missing_ranges(self, item_range: ItemRange, priority: str = "normal") -> Future:
        """Load every page touching the range; one future covers them all."""
        del priority  # pages are cheap; everything runs in arrival order
        pages = []
        if not item_range.is_empty and self._total_count > 0:
            start = max(0, item_range.start)
            end = min(self._total_count - 1, item_range.end)
            pages = list(range(self._get_page_for_index(start), self._get_page_for_index(end) + 1))

        futures = [self._request_page_load(page_num) for page_num in pages]
        futures = [future for future in futures if future is not None]
        return self._combine(futures)

    # ========== Page management ==========

    def _preload(self):
        """Start loading the first page so a fresh view has something to show."""
        if self._preload_first_page and self._total_count > 0:
            self._request_page_load(0)

    def _get_page_for_index(self, index: int) -> int:
        return index // self.page_size

    def _touch_page(self, page_num: int):
        """Update LRU order for a page. Caller holds the lock."""
        if page_num in self._page_load_order:
            self._page_load_order.remove(page_num)
        self._page_load_order.append(page_num)

    def _request_page_load(self, page_num: int) -> Optional[Future]:
        with self._load_lock:
            if page_num in self._pages:
                return None
            existing = self._loading_pages.get(page_num)
            if existing is not None:
                return existing
            future = self._load_executor.submit(self._load_page, page_num)
            if not future.done():
                self._loading_pages[page_num] = future
        return future

    def _load_page(self, page_num: int) -> int:
        try:
            if self._load_delay_s:
                time.sleep(self._load_delay_s)
            start_idx = page_num * self.page_size
            end_idx = min(start_idx + self.page_size, self._total_count)
            rows = [self._row_factory(i) for i in range(start_idx, end_idx)]
            self._store_page(page_num, rows)
            self.page_loaded.emit(page_num)
            return page_num
        finally:
            with self._load_lock:
                self._loading_pages.pop(page_num, None)

    def _store_page(self, page_num: int, rows: List[Any]):
        """Store a loaded page and evict old pages if needed."""
        page_info = PageInfo(page_num=page_num, rows=rows, load_time=time.time())
        with self._load_lock:
            self._pages[page_num] = page_info
            self._touch_page(page_num)

            # Evict old pages if over limit
            while len(self._pages) > self.max_pages:
                oldest_page = self._page_load_order.pop(0)
                if oldest_page in self._pages:
                    del self._pages[oldest_page]
                    print(f"[PAGE] Evicted page {oldest_page}")

    @staticmethod
    def _combine(futures: List[Future]) -> Future:
        combined = Future()
        if not futures:
            combined.set_result([])
            return combined

        remaining = [len(futures)]
        lock = threading.Lock()

        def _done(_future):
            with lock:
                remaining[0] -= 1
                if remaining[0] > 0 or combined.done():
                    return
            errors = [f.exception() for f in futures if not f.cancelled() and f.exception() is not None]
            if errors:
                combined.set_exception(errors[0])
            else:
                combined.set_result([f.result() for f in futures if not f.cancelled()])

        for future in futures:
            future.add_done_callback(_done)
        return combined

    def loaded_pages(self) -> List[int]:
        with self._load_lock:
            return sorted(self._pages)

    def cleanup(self):
        """Clean up resources."""
        if self._owns_executor:
            self._load_executor.shutdown(wait=False)
