"""cache モジュールのユニットテスト."""

import threading
import time

import pytest

from seo_audit.cache import CacheNamespace, MemoryCache, build_cache_key


class FakeClock:
    def __init__(self):
        self.now = 100.0

    def __call__(self) -> float:
        return self.now


class TestMemoryCache:
    """MemoryCache の基本操作のテスト."""

    def test_set_and_get(self):
        cache = MemoryCache()
        cache.set("a", [1, 2, 3])
        assert cache.get("a") == [1, 2, 3]
        assert cache.has("a") is True

    def test_missing_key(self):
        assert MemoryCache().get("nope") is None

    def test_ttl_expiry(self):
        """TTL を過ぎたエントリは返らないこと."""
        clock = FakeClock()
        cache = MemoryCache(clock=clock)
        cache.set("a", "value", ttl_ms=1000)

        clock.now += 0.5
        assert cache.get("a") == "value"
        clock.now += 0.5
        assert cache.get("a") is None

    def test_lru_eviction(self):
        """上限到達時に最も長く参照されていないキーが追い出されること."""
        clock = FakeClock()
        cache = MemoryCache(max_entries=2, clock=clock)
        cache.set("a", 1)
        clock.now += 1
        cache.set("b", 2)
        clock.now += 1
        cache.get("a")
        clock.now += 1
        cache.set("c", 3)

        assert cache.get("a") == 1
        assert cache.get("b") is None
        assert cache.get("c") == 3

    def test_overwrite_does_not_evict(self):
        cache = MemoryCache(max_entries=2)
        cache.set("a", 1)
        cache.set("b", 2)
        cache.set("a", 10)

        assert cache.get("a") == 10
        assert cache.get("b") == 2

    def test_clear_pattern(self):
        """ワイルドカードに一致するキーだけが削除されること."""
        cache = MemoryCache()
        cache.set("shopify:s1:products", 1)
        cache.set("shopify:s1:pages", 2)
        cache.set("shopify:s2:products", 3)

        removed = cache.clear("shopify:s1:*")

        assert removed == 2
        assert cache.get("shopify:s2:products") == 3

    def test_clear_pattern_escapes_regex(self):
        """パターン中の * 以外は文字どおりに扱われること."""
        cache = MemoryCache()
        cache.set("audit:s.1:x", 1)
        cache.set("audit:sx1:x", 2)

        assert cache.clear("audit:s.1:*") == 1
        assert cache.get("audit:sx1:x") == 2

    def test_clear_all(self):
        cache = MemoryCache()
        cache.set("a", 1)
        cache.set("b", 2)
        assert cache.clear() == 2
        assert cache.stats()["total_entries"] == 0

    def test_cleanup_and_stats(self):
        clock = FakeClock()
        cache = MemoryCache(max_entries=10, clock=clock)
        cache.set("short", 1, ttl_ms=500)
        cache.set("long", 2, ttl_ms=60_000)
        clock.now += 1

        stats = cache.stats()
        assert stats["total_entries"] == 2
        assert stats["expired_entries"] == 1
        assert stats["utilization_percent"] == 20

        assert cache.cleanup() == 1
        assert cache.stats()["total_entries"] == 1


class TestGetOrSet:
    """get_or_set のテスト."""

    def test_populates_once(self):
        cache = MemoryCache()
        calls = []

        def fetch():
            calls.append(1)
            return "v"

        assert cache.get_or_set("k", fetch) == "v"
        assert cache.get_or_set("k", fetch) == "v"
        assert len(calls) == 1

    def test_single_flight(self):
        """同一キーへの同時呼び出しで取得関数が 1 回だけ実行されること."""
        cache = MemoryCache()
        calls = []
        lock = threading.Lock()

        def slow_fetch():
            with lock:
                calls.append(1)
            time.sleep(0.05)
            return "v"

        results = []
        threads = [
            threading.Thread(target=lambda: results.append(cache.get_or_set("k", slow_fetch)))
            for _ in range(8)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert len(calls) == 1
        assert results == ["v"] * 8
        assert cache.stats()["key_locks"] == 0

    def test_key_locks_released(self):
        """取得が終わったキーのロックが残らないこと."""
        cache = MemoryCache(max_entries=10)
        for n in range(500):
            cache.get_or_set(f"store:{n}", lambda: n)

        stats = cache.stats()
        assert stats["total_entries"] == 10
        assert stats["key_locks"] == 0

    def test_key_lock_released_on_error(self):
        cache = MemoryCache()

        def broken():
            raise RuntimeError("api down")

        with pytest.raises(RuntimeError):
            cache.get_or_set("k", broken)

        assert cache.stats()["key_locks"] == 0
        assert cache.has("k") is False


class TestBuildCacheKey:
    """build_cache_key のテスト."""

    def test_format(self):
        assert build_cache_key(CacheNamespace.SHOPIFY, "store-1", "products") == "shopify:store-1:products"
