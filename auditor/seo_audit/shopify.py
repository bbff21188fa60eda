"""Shopify Admin GraphQL API からのコンテンツ取得モジュール.

取得対象:
  - 商品（status:active のみ、画像は先頭 10 枚）
  - コレクション
  - ページ

1 回の呼び出しで 1 ページ分を返す。ページングは iter_resource_pages が担う。
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Iterator

import requests

from seo_audit.config import (
    GRAPHQL_URL_TEMPLATE,
    PRODUCT_IMAGES_PER_NODE,
    REQUEST_TIMEOUT,
    SHOPIFY_ACCESS_TOKEN,
    SHOPIFY_API_VERSION,
    USER_AGENT,
)
from seo_audit.exceptions import ConfigurationError, ContentApiError
from seo_audit.models import Image, Resource, ResourcePage, ResourceType

logger = logging.getLogger(__name__)

PRODUCTS_QUERY = """
query getProducts($first: Int!, $after: String) {
  products(first: $first, after: $after, query: "status:active") {
    edges {
      node {
        id
        title
        handle
        seo { title description }
        descriptionHtml
        images(first: %d) {
          edges { node { id altText url } }
        }
      }
    }
    pageInfo { hasNextPage endCursor }
  }
}
""" % PRODUCT_IMAGES_PER_NODE

COLLECTIONS_QUERY = """
query getCollections($first: Int!, $after: String) {
  collections(first: $first, after: $after) {
    edges {
      node {
        id
        title
        handle
        seo { title description }
        descriptionHtml
      }
    }
    pageInfo { hasNextPage endCursor }
  }
}
"""

PAGES_QUERY = """
query getPages($first: Int!, $after: String) {
  pages(first: $first, after: $after) {
    edges {
      node {
        id
        title
        handle
        bodySummary
        body
      }
    }
    pageInfo { hasNextPage endCursor }
  }
}
"""

# resource_type -> (クエリ, レスポンス内のルートキー)
_QUERIES = {
    ResourceType.PRODUCT: (PRODUCTS_QUERY, "products"),
    ResourceType.COLLECTION: (COLLECTIONS_QUERY, "collections"),
    ResourceType.PAGE: (PAGES_QUERY, "pages"),
}


class ContentClient(ABC):
    """ページング可能なコンテンツ API のインターフェース."""

    @abstractmethod
    def fetch_page(
        self, resource_type: ResourceType, first: int, after: str | None = None
    ) -> ResourcePage:
        """resource_type を最大 first 件、カーソル after の続きから取得する.

        Raises:
            ContentApiError: 通信・API エラー
        """


class ShopifyClient(ContentClient):
    """Shopify Admin GraphQL API クライアント.

    Args:
        shop_domain: 例 "example.myshopify.com"
        access_token: Admin API アクセストークン
        session: 差し替え用の requests.Session
    """

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        session: requests.Session | None = None,
        timeout: float = REQUEST_TIMEOUT,
    ):
        if not access_token:
            raise ConfigurationError(
                f"Shopify アクセストークンが未設定です: shop={shop_domain}"
            )
        self.shop_domain = shop_domain
        self._url = GRAPHQL_URL_TEMPLATE.format(
            shop_domain=shop_domain, version=SHOPIFY_API_VERSION
        )
        self._session = session or requests.Session()
        self._session.headers.update({
            "Content-Type": "application/json",
            "Accept": "application/json",
            "User-Agent": USER_AGENT,
            "X-Shopify-Access-Token": access_token,
        })
        self._timeout = timeout

    def fetch_page(
        self, resource_type: ResourceType, first: int, after: str | None = None
    ) -> ResourcePage:
        query, root_key = _QUERIES[resource_type]
        payload = {"query": query, "variables": {"first": first, "after": after}}

        try:
            resp = self._session.post(self._url, json=payload, timeout=self._timeout)
            resp.raise_for_status()
            data = resp.json()
        except requests.RequestException as e:
            raise ContentApiError(
                f"{root_key} の取得に失敗: shop={self.shop_domain}, error={e}"
            ) from e
        except ValueError as e:
            raise ContentApiError(f"{root_key} のレスポンスが JSON ではありません: {e}") from e

        if data.get("errors"):
            raise ContentApiError(f"{root_key} の GraphQL エラー: {data['errors']}")

        connection = _deep_get(data, "data", root_key)
        if not isinstance(connection, dict):
            raise ContentApiError(f"{root_key} がレスポンスに含まれていません")

        return parse_connection(connection, resource_type)


def parse_connection(connection: dict, resource_type: ResourceType) -> ResourcePage:
    """GraphQL の connection（edges + pageInfo）を ResourcePage に変換する."""
    items = [
        parse_node(edge.get("node") or {}, resource_type)
        for edge in connection.get("edges") or []
    ]
    page_info = connection.get("pageInfo") or {}
    return ResourcePage(
        items=items,
        end_cursor=page_info.get("endCursor"),
        has_next_page=bool(page_info.get("hasNextPage")),
    )


def parse_node(node: dict, resource_type: ResourceType) -> Resource:
    """GraphQL ノード 1 件を Resource に変換する."""
    seo = node.get("seo") or {}
    images = tuple(
        Image(
            id=img.get("id", ""),
            url=img.get("url") or "",
            alt_text=img.get("altText"),
        )
        for img in (
            (edge.get("node") or {})
            for edge in _deep_get(node, "images", "edges") or []
        )
    )

    if resource_type is ResourceType.PAGE:
        body_html = node.get("body")
    else:
        body_html = node.get("descriptionHtml")

    return Resource(
        id=node.get("id", ""),
        resource_type=resource_type,
        title=node.get("title") or "",
        handle=node.get("handle") or "",
        seo_title=seo.get("title"),
        seo_description=seo.get("description"),
        body_html=body_html,
        body_summary=node.get("bodySummary"),
        images=images,
    )


def iter_resource_pages(
    client: ContentClient, resource_type: ResourceType, page_size: int
) -> Iterator[ResourcePage]:
    """カーソルを辿って 1 ページずつ返す遅延シーケンス.

    途中のページ取得で例外が出た場合はそのまま伝播する（生成は終了する）。
    """
    cursor: str | None = None
    while True:
        page = client.fetch_page(resource_type, page_size, cursor)
        yield page
        if not page.has_next_page or not page.end_cursor:
            return
        cursor = page.end_cursor


def shopify_client_factory(store_id: str, shop_domain: str) -> ShopifyClient:
    """設定のアクセストークンでクライアントを作る（AuditService 既定）."""
    return ShopifyClient(shop_domain, SHOPIFY_ACCESS_TOKEN)


def _deep_get(d: dict, *keys: str):
    """ネストされた dict から安全に値を取得する."""
    for key in keys:
        if not isinstance(d, dict):
            return None
        d = d.get(key)
    return d
