"""Tests for cache.py — classification cache and single-slot expiring values."""

import threading
import time

import pytest

from cache import ClassificationCache, ExpiringValue


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


class TestExpiringValue:
    def test_refresh_once_within_ttl(self):
        clock = FakeClock()
        calls = []
        value = ExpiringValue(lambda: calls.append(1) or len(calls), ttl_seconds=60, clock=clock)
        assert value.get() == 1
        clock.now += 30
        assert value.get() == 1
        assert len(calls) == 1

    def test_refresh_after_expiry(self):
        clock = FakeClock()
        counter = iter(range(1, 100))
        value = ExpiringValue(lambda: next(counter), ttl_seconds=60, clock=clock)
        assert value.get() == 1
        clock.now += 61
        assert value.get() == 2
        assert value.expires_at == clock.now + 60

    def test_invalidate(self):
        counter = iter(range(1, 100))
        value = ExpiringValue(lambda: next(counter), ttl_seconds=600)
        assert value.get() == 1
        value.invalidate()
        assert value.get() == 2

    def test_failed_refresh_serves_stale(self):
        clock = FakeClock()
        state = {"fail": False}

        def refresh():
            if state["fail"]:
                raise RuntimeError("upstream down")
            return ["prompt"]

        value = ExpiringValue(refresh, ttl_seconds=10, clock=clock)
        assert value.get() == ["prompt"]
        state["fail"] = True
        clock.now += 11
        assert value.get() == ["prompt"]

    def test_first_refresh_failure_raises(self):
        def refresh():
            raise RuntimeError("nothing yet")

        value = ExpiringValue(refresh, ttl_seconds=10)
        with pytest.raises(RuntimeError):
            value.get()
        assert value.expires_at is None

    def test_concurrent_callers_get_stale_value_during_refresh(self):
        clock = FakeClock()
        started = threading.Event()
        release = threading.Event()
        calls = []

        def refresh():
            calls.append(1)
            if len(calls) == 2:
                started.set()
                release.wait(5)
            return len(calls)

        value = ExpiringValue(refresh, ttl_seconds=10, clock=clock)
        assert value.get() == 1
        clock.now += 11

        results = []
        refresher = threading.Thread(target=lambda: results.append(value.get()))
        refresher.start()
        assert started.wait(5)

        # Refresh in flight: other callers are not blocked and see the old value
        assert value.get() == 1
        release.set()
        refresher.join(5)
        assert results == [2]
        assert len(calls) == 2

    def test_callers_wait_when_nothing_computed(self):
        def refresh():
            time.sleep(0.05)
            return "ready"

        value = ExpiringValue(refresh, ttl_seconds=10)
        results = []
        threads = [threading.Thread(target=lambda: results.append(value.get())) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(5)
        assert results == ["ready"] * 4


class TestClassificationCache:
    @pytest.fixture
    def cache(self, tmp_path):
        c = ClassificationCache(cache_dir=str(tmp_path / "cls"), ttl_seconds=60, use_redis=False)
        yield c
        c.close()

    def test_miss_then_hit(self, cache):
        assert cache.get("vibes only") is None
        cache.set("vibes only", {"intent": "GENERAL_INFO", "confidence": 0.7})
        assert cache.get("vibes only") == {"intent": "GENERAL_INFO", "confidence": 0.7}
        stats = cache.stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["backend"] == "diskcache"

    def test_clear(self, cache):
        cache.set("q", {"intent": "STANDINGS", "confidence": 0.9})
        cache.clear()
        assert cache.get("q") is None
        assert cache.stats()["hits"] == 0
