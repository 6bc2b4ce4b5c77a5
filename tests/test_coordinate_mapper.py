import pytest

from virtscroll.engine import item_size_cache as cache_module
from virtscroll.engine.coordinate_mapper import CoordinateMapper, build_coordinate_space
from virtscroll.engine.engine_config import MAX_SAFE_VIRTUAL_SIZE
from virtscroll.engine.item_range import ItemRange
from virtscroll.engine.item_size_cache import ItemSizeCache


class FakeSignal:
    def __init__(self):
        self._slots = []

    def connect(self, slot):
        self._slots.append(slot)

    def emit(self, *args):
        for slot in list(self._slots):
            slot(*args)


class FakeTimer:
    def __init__(self, *args, **kwargs):
        self.timeout = FakeSignal()
        self.active = False

    def setSingleShot(self, value):
        pass

    def setInterval(self, ms):
        pass

    def start(self, ms=None):
        self.active = True

    def stop(self):
        self.active = False

    def isActive(self):
        return self.active


class SilentLogger:
    def log(self, *args, **kwargs):
        return False

    debug = info = warning = error = log


@pytest.fixture
def make_mapper(monkeypatch):
    monkeypatch.setattr(cache_module, "QTimer", FakeTimer)

    def _make(total_items, item_size, viewport, overscan=0, max_virtual_size=MAX_SAFE_VIRTUAL_SIZE):
        cache = ItemSizeCache(initial_estimate=item_size, logger=SilentLogger())
        mapper = CoordinateMapper(
            cache,
            viewport_size=viewport,
            overscan=overscan,
            max_virtual_size=max_virtual_size,
            logger=SilentLogger(),
        )
        mapper.update_total_virtual_size(total_items)
        return mapper

    return _make


def test_build_coordinate_space_uncompressed_below_limit():
    space = build_coordinate_space(1000, 50)

    assert space.actual_total_size == 50_000
    assert space.virtual_total_size == 50_000
    assert space.compression_ratio == 1.0
    assert not space.is_compressed


def test_five_million_rows_compress_below_safe_size():
    space = build_coordinate_space(5_000_000, 40)

    assert space.actual_total_size == 200_000_000
    assert space.virtual_total_size == MAX_SAFE_VIRTUAL_SIZE
    assert space.is_compressed
    assert space.compression_ratio == pytest.approx(0.05)


def test_empty_collection_space():
    space = build_coordinate_space(0, 60)

    assert space.virtual_total_size == 0
    assert space.compression_ratio == 1.0


def test_small_list_visible_range_includes_overscan(make_mapper):
    mapper = make_mapper(total_items=10, item_size=50, viewport=200, overscan=1)

    assert mapper.visible_range(0) == ItemRange(0, 4)


def test_visible_range_mid_list_uncompressed(make_mapper):
    mapper = make_mapper(total_items=100, item_size=50, viewport=200, overscan=2)

    assert mapper.visible_range(1000) == ItemRange(18, 25)


def test_visible_range_empty_without_items_or_viewport(make_mapper):
    assert make_mapper(total_items=0, item_size=50, viewport=200).visible_range(0).is_empty
    assert make_mapper(total_items=10, item_size=50, viewport=0).visible_range(0).is_empty


def test_scroll_position_is_clamped(make_mapper):
    mapper = make_mapper(total_items=100, item_size=50, viewport=200)

    assert mapper.visible_range(-500) == mapper.visible_range(0)
    assert mapper.visible_range(10**9) == mapper.visible_range(mapper.max_scroll_position())


@pytest.mark.parametrize("total_items", [100, 5_000_000])
def test_last_item_visible_at_max_scroll(make_mapper, total_items):
    mapper = make_mapper(total_items=total_items, item_size=40, viewport=600)

    visible = mapper.visible_range(mapper.max_scroll_position())

    assert visible.end == total_items - 1
    assert visible.start <= total_items - 15


@pytest.mark.parametrize("total_items", [1000, 5_000_000])
def test_visible_start_is_monotonic_in_scroll_position(make_mapper, total_items):
    mapper = make_mapper(total_items=total_items, item_size=40, viewport=600)
    max_scroll = mapper.max_scroll_position()

    positions = [max_scroll * step / 400 for step in range(401)]
    # dense sampling through the tail interpolation zone
    positions += [max_scroll - 600 + step * 1.5 for step in range(401)]
    positions.sort()

    starts = [mapper.visible_range(position).start for position in positions]
    assert starts == sorted(starts)


def test_virtual_size_never_exceeds_safe_limit(make_mapper):
    for total_items in (1, 1000, 250_000, 5_000_000, 50_000_000):
        mapper = make_mapper(total_items=total_items, item_size=60, viewport=600)
        assert mapper.space.virtual_total_size <= MAX_SAFE_VIRTUAL_SIZE


@pytest.mark.parametrize("total_items", [1000, 5_000_000])
def test_position_index_round_trip(make_mapper, total_items):
    mapper = make_mapper(total_items=total_items, item_size=40, viewport=600)

    for index in (0, 1, 7, total_items // 3, total_items // 2, total_items - 1):
        recovered = mapper.index_for_position(mapper.position_for_index(index))
        assert abs(recovered - index) <= 1


def test_index_for_position_is_clamped(make_mapper):
    mapper = make_mapper(total_items=10, item_size=50, viewport=200)

    assert mapper.index_for_position(-100) == 0
    assert mapper.index_for_position(10_000) == 9


def test_virtual_size_changed_only_emitted_on_change(make_mapper):
    mapper = make_mapper(total_items=100, item_size=50, viewport=200)
    emitted = []
    mapper.virtual_size_changed.connect(emitted.append)

    assert mapper.update_total_virtual_size(100) is False
    assert emitted == []

    assert mapper.update_total_virtual_size(200) is True
    assert len(emitted) == 1
    assert emitted[0].virtual_total_size == 10_000


def test_estimate_change_flows_into_next_update(make_mapper):
    mapper = make_mapper(total_items=100, item_size=50, viewport=200)
    for index in range(10):
        mapper._cache.record(index, 25)
    mapper._cache.flush()

    assert mapper.item_size == 50  # snapshot until the space is recomputed
    assert mapper.update_total_virtual_size(100) is True
    assert mapper.item_size == 25
    assert mapper.space.virtual_total_size == 2500


def test_set_viewport_size_emits_on_change(make_mapper):
    mapper = make_mapper(total_items=100, item_size=50, viewport=200)
    emitted = []
    mapper.virtual_size_changed.connect(emitted.append)

    assert mapper.set_viewport_size(200) is False
    assert mapper.set_viewport_size(400) is True
    assert mapper.max_scroll_position() == 5000 - 400
    assert len(emitted) == 1


def test_scroll_position_for_index_alignments(make_mapper):
    mapper = make_mapper(total_items=100, item_size=50, viewport=200)

    assert mapper.scroll_position_for_index(10) == 500
    assert mapper.scroll_position_for_index(10, "center") == 500 - 100 + 25
    assert mapper.scroll_position_for_index(10, "end") == 500 - 200 + 50
    assert mapper.scroll_position_for_index(0, "end") == 0
    assert mapper.scroll_position_for_index(99) == mapper.max_scroll_position()


def test_scroll_to_last_items_when_compressed_reaches_max(make_mapper):
    mapper = make_mapper(total_items=5_000_000, item_size=40, viewport=600)

    position = mapper.scroll_position_for_index(4_999_999)

    assert position == mapper.max_scroll_position()
    assert mapper.visible_range(position).end == 4_999_999


def test_viewport_offsets_are_exact_at_bottom_when_compressed(make_mapper):
    mapper = make_mapper(total_items=5_000_000, item_size=40, viewport=600)
    max_scroll = mapper.max_scroll_position()

    # 600 / 40 = 15 items fill the last page exactly
    assert mapper.viewport_offset_for_index(5_000_000 - 15, max_scroll) == pytest.approx(0.0)
    assert mapper.viewport_offset_for_index(4_999_999, max_scroll) == pytest.approx(560.0)


def test_viewport_offset_uncompressed_is_direct(make_mapper):
    mapper = make_mapper(total_items=100, item_size=50, viewport=200)

    assert mapper.viewport_offset_for_index(12, 575) == 12 * 50 - 575
