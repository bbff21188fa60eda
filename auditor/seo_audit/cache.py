"""インメモリキャッシュ.

- TTL による自動失効
- 上限件数到達時は LRU で追い出し
- キー単位のロックで get-or-populate を直列化（single-flight）
"""

from __future__ import annotations

import logging
import re
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Callable, Iterator

from seo_audit.config import CACHE_DEFAULT_TTL_MS, CACHE_MAX_ENTRIES

logger = logging.getLogger(__name__)


class CacheNamespace:
    SHOPIFY = "shopify"
    GSC = "gsc"
    AUDIT = "audit"
    DASHBOARD = "dashboard"
    META = "meta"
    ALT = "alt"


def build_cache_key(namespace: str, *parts: str | int) -> str:
    """名前空間付きのキーを組み立てる (例: shopify:store-1:products)."""
    return ":".join([namespace, *(str(p) for p in parts)])


@dataclass
class _Entry:
    value: Any
    expires_at: float
    last_accessed: float


class MemoryCache:
    """スレッドセーフな TTL 付きキャッシュ.

    Args:
        max_entries: 保持する最大件数
        default_ttl_ms: set で TTL を省略したときの有効期間（ミリ秒）
        clock: 現在時刻（秒）を返す関数
    """

    def __init__(
        self,
        max_entries: int = CACHE_MAX_ENTRIES,
        default_ttl_ms: int = CACHE_DEFAULT_TTL_MS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._max_entries = max_entries
        self._default_ttl_ms = default_ttl_ms
        self._clock = clock
        self._store: dict[str, _Entry] = {}
        self._lock = threading.Lock()
        # key -> [ロック, 待機・保持中のスレッド数]
        self._key_locks: dict[str, list] = {}
        self._key_locks_guard = threading.Lock()

    def get(self, key: str) -> Any | None:
        """値を返す. 存在しない・失効済みなら None."""
        with self._lock:
            entry = self._store.get(key)
            if entry is None:
                return None
            now = self._clock()
            if entry.expires_at <= now:
                del self._store[key]
                return None
            entry.last_accessed = now
            return entry.value

    def set(self, key: str, value: Any, ttl_ms: int | None = None) -> None:
        ttl = ttl_ms if ttl_ms is not None else self._default_ttl_ms
        with self._lock:
            now = self._clock()
            if key not in self._store and len(self._store) >= self._max_entries:
                self._evict_lru()
            self._store[key] = _Entry(
                value=value,
                expires_at=now + ttl / 1000,
                last_accessed=now,
            )

    def delete(self, key: str) -> None:
        with self._lock:
            self._store.pop(key, None)

    def clear(self, pattern: str | None = None) -> int:
        """全件、または * を含むパターンに一致するキーを削除する.

        Returns:
            削除した件数
        """
        with self._lock:
            if pattern is None:
                removed = len(self._store)
                self._store.clear()
                return removed

            regex = re.compile(
                "^" + ".*".join(re.escape(part) for part in pattern.split("*")) + "$"
            )
            keys = [k for k in self._store if regex.match(k)]
            for k in keys:
                del self._store[k]
            return len(keys)

    def has(self, key: str) -> bool:
        return self.get(key) is not None

    @contextmanager
    def key_lock(self, key: str) -> Iterator[None]:
        """キー単位のロック. 同一キーの取得・投入を 1 本に絞るために使う.

        誰も使っていないキーのロックは解放時に破棄する。
        """
        with self._key_locks_guard:
            entry = self._key_locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        try:
            with entry[0]:
                yield
        finally:
            with self._key_locks_guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._key_locks[key]

    def get_or_set(
        self,
        key: str,
        fetch_fn: Callable[[], Any],
        ttl_ms: int | None = None,
    ) -> Any:
        """キャッシュ済みならそれを返し、なければ fetch_fn の結果を格納して返す.

        同じキーへの同時呼び出しでは fetch_fn は 1 回しか実行されない。
        """
        cached = self.get(key)
        if cached is not None:
            return cached

        with self.key_lock(key):
            cached = self.get(key)
            if cached is not None:
                return cached
            value = fetch_fn()
            self.set(key, value, ttl_ms)
            return value

    def cleanup(self) -> int:
        """失効済みエントリを削除し、削除件数を返す."""
        with self._lock:
            now = self._clock()
            expired = [k for k, e in self._store.items() if e.expires_at <= now]
            for k in expired:
                del self._store[k]
        if expired:
            logger.info("キャッシュの失効エントリを %d 件削除", len(expired))
        return len(expired)

    def stats(self) -> dict[str, int]:
        with self._lock:
            now = self._clock()
            total = len(self._store)
            expired = sum(1 for e in self._store.values() if e.expires_at <= now)
        return {
            "total_entries": total,
            "max_entries": self._max_entries,
            "expired_entries": expired,
            "key_locks": len(self._key_locks),
            "utilization_percent": round(total / self._max_entries * 100) if self._max_entries else 0,
        }

    def _evict_lru(self) -> None:
        # self._lock 保持中に呼ぶこと
        if not self._store:
            return
        oldest_key = min(self._store, key=lambda k: self._store[k].last_accessed)
        del self._store[oldest_key]
