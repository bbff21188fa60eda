"""データ変更イベントによるキャッシュ無効化."""

from __future__ import annotations

import logging
import threading
from enum import Enum
from typing import Callable

from seo_audit.cache import CacheNamespace, MemoryCache, build_cache_key

logger = logging.getLogger(__name__)


class DataChangeEvent(str, Enum):
    PRODUCT_CREATED = "PRODUCT_CREATED"
    PRODUCT_UPDATED = "PRODUCT_UPDATED"
    PRODUCT_DELETED = "PRODUCT_DELETED"
    COLLECTION_CREATED = "COLLECTION_CREATED"
    COLLECTION_UPDATED = "COLLECTION_UPDATED"
    COLLECTION_DELETED = "COLLECTION_DELETED"
    PAGE_CREATED = "PAGE_CREATED"
    PAGE_UPDATED = "PAGE_UPDATED"
    PAGE_DELETED = "PAGE_DELETED"
    AUDIT_COMPLETED = "AUDIT_COMPLETED"
    META_UPDATED = "META_UPDATED"
    ALT_UPDATED = "ALT_UPDATED"
    GSC_SYNCED = "GSC_SYNCED"


Listener = Callable[[str, DataChangeEvent], None]

_PRODUCT_EVENTS = {
    DataChangeEvent.PRODUCT_CREATED,
    DataChangeEvent.PRODUCT_UPDATED,
    DataChangeEvent.PRODUCT_DELETED,
}
_COLLECTION_EVENTS = {
    DataChangeEvent.COLLECTION_CREATED,
    DataChangeEvent.COLLECTION_UPDATED,
    DataChangeEvent.COLLECTION_DELETED,
}
_PAGE_EVENTS = {
    DataChangeEvent.PAGE_CREATED,
    DataChangeEvent.PAGE_UPDATED,
    DataChangeEvent.PAGE_DELETED,
}


class CacheInvalidator:
    """イベントに応じて対象ストアのキャッシュを消し、購読者へ通知する.

    購読者の例外はログに残して握りつぶす（後続の購読者は必ず呼ばれる）。
    """

    def __init__(self, cache: MemoryCache):
        self._cache = cache
        self._lock = threading.Lock()
        self._listeners: list[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> bool:
        with self._lock:
            try:
                self._listeners.remove(listener)
                return True
            except ValueError:
                return False

    def on_data_change(self, store_id: str, event: DataChangeEvent | str) -> None:
        """データ変更を受けてキャッシュを無効化する."""
        event = DataChangeEvent(event)

        if event in _PRODUCT_EVENTS:
            self._delete(store_id, CacheNamespace.SHOPIFY, "products")
            self._clear(store_id, CacheNamespace.DASHBOARD)
        elif event in _COLLECTION_EVENTS:
            self._delete(store_id, CacheNamespace.SHOPIFY, "collections")
            self._clear(store_id, CacheNamespace.DASHBOARD)
        elif event in _PAGE_EVENTS:
            self._delete(store_id, CacheNamespace.SHOPIFY, "pages")
            self._clear(store_id, CacheNamespace.DASHBOARD)
        elif event is DataChangeEvent.AUDIT_COMPLETED:
            self._clear(store_id, CacheNamespace.AUDIT)
            self._clear(store_id, CacheNamespace.DASHBOARD)
        elif event is DataChangeEvent.META_UPDATED:
            self._clear(store_id, CacheNamespace.META)
            self._delete(store_id, CacheNamespace.DASHBOARD, "health-score")
        elif event is DataChangeEvent.ALT_UPDATED:
            self._clear(store_id, CacheNamespace.ALT)
            self._delete(store_id, CacheNamespace.DASHBOARD, "health-score")
        elif event is DataChangeEvent.GSC_SYNCED:
            self._clear(store_id, CacheNamespace.GSC)
            self._delete(store_id, CacheNamespace.DASHBOARD, "health-score")

        self._notify(store_id, event)

    def invalidate_shopify_cache(self, store_id: str) -> None:
        """商品・コレクション・ページのキャッシュをまとめて消す."""
        self._clear(store_id, CacheNamespace.SHOPIFY)

    def invalidate_all_store_cache(self, store_id: str) -> None:
        """ストアに関する全キャッシュを消す（アンインストール時など）."""
        removed = self._cache.clear(f"*:{store_id}:*")
        logger.info("ストア %s の全キャッシュを削除 (%d 件)", store_id, removed)

    def _delete(self, store_id: str, namespace: str, name: str) -> None:
        self._cache.delete(build_cache_key(namespace, store_id, name))
        logger.info("キャッシュ削除: %s/%s store=%s", namespace, name, store_id)

    def _clear(self, store_id: str, namespace: str) -> None:
        removed = self._cache.clear(build_cache_key(namespace, store_id, "*"))
        logger.info("キャッシュ削除: %s store=%s (%d 件)", namespace, store_id, removed)

    def _notify(self, store_id: str, event: DataChangeEvent) -> None:
        with self._lock:
            snapshot = list(self._listeners)
        for listener in snapshot:
            try:
                listener(store_id, event)
            except Exception:
                logger.exception("データ変更リスナーでエラー: %r", listener)
