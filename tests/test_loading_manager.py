import pytest

from virtscroll.engine import loading_manager as loading_module
from virtscroll.engine.item_range import ItemRange
from virtscroll.engine.loading_manager import LoadingManager


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
        self.start_calls = 0

    def setSingleShot(self, value):
        pass

    def setInterval(self, ms):
        pass

    def start(self, ms=None):
        self.active = True
        self.start_calls += 1

    def stop(self):
        self.active = False

    def isActive(self):
        return self.active

    def fire(self):
        self.active = False
        self.timeout.emit()


class FakeFuture:
    def __init__(self):
        self._done = False
        self._cancelled = False
        self._result = None
        self._exc = None
        self.cancel_calls = 0

    def finish(self, result=None):
        self._done = True
        self._result = result

    def fail(self, exc):
        self._done = True
        self._exc = exc

    def done(self):
        return self._done

    def cancelled(self):
        return self._cancelled

    def cancel(self):
        self.cancel_calls += 1
        if self._done:
            return False
        self._cancelled = True
        self._done = True
        return True

    def result(self):
        if self._exc is not None:
            raise self._exc
        return self._result


class FakeCollection:
    def __init__(self, sync=False, raise_on=None):
        self.sync = sync
        self.raise_on = raise_on
        self.calls = []
        self.futures = {}

    def load_missing_ranges(self, item_range, priority):
        self.calls.append((item_range.key, priority))
        if self.raise_on == item_range.key:
            raise RuntimeError("backend offline")
        if self.sync:
            return None
        future = FakeFuture()
        self.futures[item_range.key] = future
        return future


class SilentLogger:
    def log(self, *args, **kwargs):
        return False

    debug = info = warning = error = log


@pytest.fixture
def make_manager(monkeypatch):
    monkeypatch.setattr(loading_module, "QTimer", FakeTimer)

    def _make(collection=None, **kwargs):
        kwargs.setdefault("logger", SilentLogger())
        manager = LoadingManager(collection or FakeCollection(), **kwargs)
        loaded, failed = [], []
        manager.range_loaded.connect(loaded.append)
        manager.load_failed.connect(lambda item_range, error: failed.append((item_range, error)))
        return manager, loaded, failed

    return _make


def test_out_of_order_completions_each_resolve(make_manager):
    collection = FakeCollection()
    manager, loaded, _ = make_manager(collection, max_concurrent=2)

    assert manager.request_load(ItemRange(0, 9), "high") is True
    assert manager.request_load(ItemRange(10, 19), "high") is True
    assert manager._poll_timer.isActive()

    collection.futures["10-19"].finish()
    manager._poll_timer.fire()
    assert loaded == [ItemRange(10, 19)]
    assert manager.is_range_loading(ItemRange(0, 9))
    assert manager._poll_timer.isActive()

    collection.futures["0-9"].finish()
    manager._poll_timer.fire()
    assert loaded == [ItemRange(10, 19), ItemRange(0, 9)]
    assert manager.stats()["completed"] == 2
    assert manager.stats()["pending"] == 0
    assert not manager._poll_timer.isActive()


def test_failed_future_emits_load_failed_and_keeps_going(make_manager):
    collection = FakeCollection()
    manager, loaded, failed = make_manager(collection, max_concurrent=2)
    manager.request_load(ItemRange(0, 9))
    manager.request_load(ItemRange(10, 19))

    collection.futures["0-9"].fail(OSError("disk gone"))
    collection.futures["10-19"].finish()
    manager.poll()

    assert failed == [(ItemRange(0, 9), "disk gone")]
    assert loaded == [ItemRange(10, 19)]
    assert manager.stats()["failed"] == 1


def test_collection_raising_is_reported_not_propagated(make_manager):
    collection = FakeCollection(raise_on="0-9")
    manager, loaded, failed = make_manager(collection)

    assert manager.request_load(ItemRange(0, 9)) is True

    assert failed == [(ItemRange(0, 9), "backend offline")]
    assert loaded == []
    assert manager.stats()["pending"] == 0


def test_synchronous_collection_completes_immediately(make_manager):
    manager, loaded, _ = make_manager(FakeCollection(sync=True))

    manager.request_load(ItemRange(5, 8))

    assert loaded == [ItemRange(5, 8)]
    assert not manager._poll_timer.isActive()


def test_duplicate_requests_are_ignored(make_manager):
    collection = FakeCollection()
    manager, _, _ = make_manager(collection)

    manager.request_load(ItemRange(0, 9))
    assert manager.request_load(ItemRange(0, 9)) is False
    manager.request_load(ItemRange(10, 19))
    assert manager.request_load(ItemRange(10, 19)) is False

    assert collection.calls == [("0-9", "normal")]
    assert manager.stats()["queued"] == 1


def test_queue_drains_by_priority_when_capacity_frees(make_manager):
    collection = FakeCollection()
    manager, _, _ = make_manager(collection, max_concurrent=1)

    manager.request_load(ItemRange(0, 9), "high")
    manager.request_load(ItemRange(100, 199), "low")
    manager.request_load(ItemRange(10, 19), "normal")
    manager.request_load(ItemRange(20, 29), "high")

    collection.futures["0-9"].finish()
    manager.poll()
    assert collection.calls[-1] == ("20-29", "high")

    collection.futures["20-29"].finish()
    manager.poll()
    assert collection.calls[-1] == ("10-19", "normal")

    collection.futures["10-19"].finish()
    manager.poll()
    assert collection.calls[-1] == ("100-199", "low")


def test_unknown_priority_falls_back_to_normal(make_manager):
    collection = FakeCollection()
    manager, _, _ = make_manager(collection)

    manager.request_load(ItemRange(0, 1), "urgent")

    assert collection.calls == [("0-1", "normal")]


def test_high_velocity_defers_then_resumes(make_manager):
    collection = FakeCollection()
    manager, _, _ = make_manager(collection, cancel_velocity=1.0)

    manager.update_velocity(3.0)
    assert manager.can_load() is False
    assert manager.request_load(ItemRange(0, 9)) is False
    assert collection.calls == []
    assert manager.stats()["queued"] == 1

    manager.update_velocity(0.2)
    assert manager._queue_timer.isActive()
    manager._queue_timer.fire()

    assert collection.calls == [("0-9", "normal")]


def test_crossing_velocity_threshold_cancels_pending(make_manager):
    collection = FakeCollection()
    manager, loaded, _ = make_manager(collection, max_concurrent=1, cancel_velocity=1.0)
    manager.request_load(ItemRange(0, 9))
    manager.request_load(ItemRange(10, 19))

    manager.update_velocity(-2.5)

    assert collection.futures["0-9"].cancel_calls == 1
    stats = manager.stats()
    assert stats["pending"] == 0
    assert stats["queued"] == 0
    assert stats["cancelled"] == 2
    assert loaded == []


def test_zero_cancel_velocity_disables_gate(make_manager):
    collection = FakeCollection()
    manager, _, _ = make_manager(collection, cancel_velocity=0)

    manager.update_velocity(50.0)

    assert manager.can_load() is True
    assert manager.request_load(ItemRange(0, 9)) is True


def test_cancelled_future_is_counted_not_reported(make_manager):
    collection = FakeCollection()
    manager, loaded, failed = make_manager(collection)
    manager.request_load(ItemRange(0, 9))

    collection.futures["0-9"].cancel()
    manager.poll()

    assert loaded == []
    assert failed == []
    assert manager.stats()["cancelled"] == 1


def test_destroy_is_idempotent(make_manager):
    collection = FakeCollection()
    manager, _, _ = make_manager(collection)
    manager.request_load(ItemRange(0, 9))

    manager.destroy()
    manager.destroy()

    assert manager.request_load(ItemRange(10, 19)) is False
    assert manager.stats()["pending"] == 0


def test_new_visible_range_replaces_queued_visible_ranges(make_manager):
    collection = FakeCollection()
    manager, _, _ = make_manager(collection, max_concurrent=1)
    manager.request_load(ItemRange(0, 9), "high")
    manager.request_load(ItemRange(500, 599), "low")

    for start in range(10, 60, 10):
        manager.request_load(ItemRange(start, start + 9), "high")

    assert manager.stats()["queued"] == 2
    assert manager.stats()["cancelled"] == 4

    collection.futures["0-9"].finish()
    manager.poll()
    assert collection.calls[-1] == ("50-59", "high")

    collection.futures["50-59"].finish()
    manager.poll()
    assert collection.calls[-1] == ("500-599", "low")
