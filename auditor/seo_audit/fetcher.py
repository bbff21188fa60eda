"""ストアコンテンツの取得（キャッシュ・プラン上限・部分失敗の扱い）.

処理フロー（リソース種別ごと）:
  1. shopify:<store>:<type> のキャッシュがあればそれを返す
  2. なければカーソルページングでプラン上限まで取得
  3. 最後まで取得できた場合のみキャッシュに格納
  4. 途中で失敗したらその種別の取得を打ち切り、取得済み分で続行
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from seo_audit.cache import CacheNamespace, MemoryCache, build_cache_key
from seo_audit.config import CACHE_TTL, GRAPHQL_PAGE_SIZE, TierLimits, get_tier_limits
from seo_audit.exceptions import ContentApiError, ContentFetchError
from seo_audit.models import ContentSnapshot, Resource, ResourceType
from seo_audit.rate_limit import RateLimiter, build_rate_limit_key, get_rate_limit_config
from seo_audit.shopify import ContentClient, iter_resource_pages

logger = logging.getLogger(__name__)

_CACHE_NAMES = {
    ResourceType.PRODUCT: ("products", CACHE_TTL["SHOPIFY_PRODUCTS"]),
    ResourceType.COLLECTION: ("collections", CACHE_TTL["SHOPIFY_COLLECTIONS"]),
    ResourceType.PAGE: ("pages", CACHE_TTL["SHOPIFY_PAGES"]),
}


@dataclass
class _TypeFetch:
    items: list[Resource] = field(default_factory=list)
    error: str | None = None
    from_cache: bool = False


class ContentFetcher:
    """商品・コレクション・ページを取得して ContentSnapshot にまとめる.

    Args:
        cache: 取得結果を共有するキャッシュ
        rate_limiter: 外部 API 呼び出し回数の制限（ストア単位・1 日）
        tier_limits: 種別ごとの最大取得件数
        page_size: 1 リクエストあたりの件数
    """

    def __init__(
        self,
        cache: MemoryCache,
        rate_limiter: RateLimiter,
        tier_limits: TierLimits | None = None,
        page_size: int = GRAPHQL_PAGE_SIZE,
    ):
        self._cache = cache
        self._rate_limiter = rate_limiter
        self._tier_limits = tier_limits or get_tier_limits()
        self._page_size = page_size
        self._api_limit = get_rate_limit_config("SHOPIFY_API")

    def fetch_content(
        self, client: ContentClient, store_id: str, shop_domain: str
    ) -> ContentSnapshot:
        """全リソース種別を取得する.

        Raises:
            ContentFetchError: 全種別でエラーになり 1 件も取得できなかった場合
        """
        results = {
            resource_type: self._fetch_type(client, store_id, resource_type)
            for resource_type in ResourceType
        }

        errors = {t: r.error for t, r in results.items() if r.error}
        if len(errors) == len(results) and not any(r.items for r in results.values()):
            detail = "; ".join(f"{t.value}: {msg}" for t, msg in errors.items())
            raise ContentFetchError(f"コンテンツを取得できませんでした ({detail})")

        snapshot = ContentSnapshot(
            shop_domain=shop_domain,
            store_id=store_id,
            products=results[ResourceType.PRODUCT].items,
            collections=results[ResourceType.COLLECTION].items,
            pages=results[ResourceType.PAGE].items,
            fetch_errors=errors,
        )
        logger.info(
            "コンテンツ取得完了: store=%s, products=%d, collections=%d, pages=%d",
            store_id, len(snapshot.products), len(snapshot.collections), len(snapshot.pages),
        )
        return snapshot

    def _max_items(self, resource_type: ResourceType) -> int:
        if resource_type is ResourceType.PRODUCT:
            return self._tier_limits.max_products
        if resource_type is ResourceType.COLLECTION:
            return self._tier_limits.max_collections
        return self._tier_limits.max_pages

    def _fetch_type(
        self, client: ContentClient, store_id: str, resource_type: ResourceType
    ) -> _TypeFetch:
        name, ttl_ms = _CACHE_NAMES[resource_type]
        key = build_cache_key(CacheNamespace.SHOPIFY, store_id, name)

        # 同一キーの取得は 1 本に絞る（同時リクエストで二重に API を叩かない）
        with self._cache.key_lock(key):
            cached = self._cache.get(key)
            if cached is not None:
                logger.info("キャッシュ利用: %s (%d 件)", key, len(cached))
                return _TypeFetch(items=list(cached), from_cache=True)

            result = self._paginate(client, store_id, resource_type)
            if result.error is None:
                self._cache.set(key, tuple(result.items), ttl_ms)
            return result

    def _paginate(
        self, client: ContentClient, store_id: str, resource_type: ResourceType
    ) -> _TypeFetch:
        max_items = self._max_items(resource_type)
        result = _TypeFetch()
        if max_items <= 0:
            return result

        page_size = min(self._page_size, max_items)
        pages = iter_resource_pages(client, resource_type, page_size)
        rate_key = build_rate_limit_key(store_id, "SHOPIFY_API")

        while len(result.items) < max_items:
            limit = self._rate_limiter.check_rate_limit(rate_key, self._api_limit)
            if not limit.allowed:
                result.error = f"API 呼び出し上限に達しました (reset_at={limit.reset_at.isoformat()})"
                logger.warning("取得打ち切り: store=%s, type=%s, %s",
                               store_id, resource_type.value, result.error)
                break
            try:
                page = next(pages)
            except StopIteration:
                break
            except ContentApiError as e:
                result.error = str(e)
                logger.warning(
                    "ページ取得失敗のため打ち切り: store=%s, type=%s, 取得済み=%d 件, error=%s",
                    store_id, resource_type.value, len(result.items), e,
                )
                break
            result.items.extend(page.items[: max_items - len(result.items)])
            if not page.has_next_page or not page.end_cursor:
                break

        pages.close()
        return result
