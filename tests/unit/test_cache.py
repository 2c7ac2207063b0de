"""Tests for the in-memory edge cache and the deferred scheduler."""

import threading

import pytest

from mediaproxy.cache import (
    CacheStore,
    MemoryCacheStore,
    Scheduler,
    ThreadPoolScheduler,
    shared_cache_lifetime,
)
from mediaproxy.models import ProxyResponse


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def _response(body: bytes = b"data", cache_control: str | None = None) -> ProxyResponse:
    headers = {"Content-Type": "image/png"}
    if cache_control is not None:
        headers["Cache-Control"] = cache_control
    return ProxyResponse(status=200, headers=headers, body=body)


class TestSharedCacheLifetime:
    @pytest.mark.parametrize(
        ("header", "expected"),
        [
            (None, None),
            ("", None),
            ("public", None),
            ("public, max-age=60", 60),
            ("public, max-age=60, s-maxage=600, stale-while-revalidate=604800", 600),
            ('max-age="30"', 30),
            ("no-store", 0),
            ("private, max-age=60", 0),
            ("max-age=0", 0),
        ],
    )
    def test_lifetimes(self, header, expected):
        assert shared_cache_lifetime(header) == expected


class TestMemoryCacheStore:
    def test_satisfies_protocol(self):
        assert isinstance(MemoryCacheStore(), CacheStore)

    def test_miss(self):
        assert MemoryCacheStore().match("k") is None

    def test_put_then_match(self):
        store = MemoryCacheStore()
        store.put("k", _response(b"abc", "max-age=60"))
        hit = store.match("k")
        assert hit is not None
        assert hit.read() == b"abc"
        assert hit.headers["content-type"] == "image/png"

    def test_match_returns_independent_copy(self):
        store = MemoryCacheStore()
        store.put("k", _response(cache_control="max-age=60"))
        first = store.match("k")
        assert first is not None
        first.headers["X-Proxy-Cache"] = "HIT"
        second = store.match("k")
        assert second is not None
        assert "X-Proxy-Cache" not in second.headers

    def test_put_buffers_streamed_body(self):
        store = MemoryCacheStore()
        store.put("k", ProxyResponse(200, {"Cache-Control": "max-age=5"}, iter([b"a", b"b"])))
        hit = store.match("k")
        assert hit is not None
        assert hit.read() == b"ab"

    def test_expiry_uses_s_maxage(self):
        clock = FakeClock()
        store = MemoryCacheStore(clock=clock)
        store.put("k", _response(cache_control="max-age=10, s-maxage=100"))
        clock.now += 99
        assert store.match("k") is not None
        clock.now += 2
        assert store.match("k") is None
        assert len(store) == 0

    def test_default_ttl_without_cache_control(self):
        clock = FakeClock()
        store = MemoryCacheStore(default_ttl=5, clock=clock)
        store.put("k", _response())
        clock.now += 4
        assert store.match("k") is not None
        clock.now += 2
        assert store.match("k") is None

    def test_uncacheable_not_stored(self):
        store = MemoryCacheStore()
        store.put("k", _response(cache_control="no-store"))
        assert store.match("k") is None

    def test_lru_eviction(self):
        store = MemoryCacheStore(max_entries=2)
        store.put("a", _response(b"a", "max-age=60"))
        store.put("b", _response(b"b", "max-age=60"))
        assert store.match("a") is not None  # refresh "a"
        store.put("c", _response(b"c", "max-age=60"))
        assert store.match("b") is None
        assert store.match("a") is not None
        assert store.match("c") is not None

    def test_invalid_size(self):
        with pytest.raises(ValueError, match="max_entries"):
            MemoryCacheStore(max_entries=0)

    def test_clear(self):
        store = MemoryCacheStore()
        store.put("k", _response(cache_control="max-age=60"))
        store.clear()
        assert len(store) == 0


class TestThreadPoolScheduler:
    def test_satisfies_protocol(self):
        scheduler = ThreadPoolScheduler(max_workers=1)
        try:
            assert isinstance(scheduler, Scheduler)
        finally:
            scheduler.shutdown()

    def test_runs_task(self):
        done = threading.Event()
        scheduler = ThreadPoolScheduler(max_workers=1)
        scheduler.schedule(done.set)
        scheduler.shutdown(wait=True)
        assert done.is_set()

    def test_failure_is_logged_not_raised(self):
        def boom() -> None:
            raise RuntimeError("disk full")

        scheduler = ThreadPoolScheduler(max_workers=1)
        scheduler.schedule(boom)
        scheduler.shutdown(wait=True)
