"""shopify モジュールのテスト（HTTP はモック）."""

import json
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import requests

from seo_audit.exceptions import ConfigurationError, ContentApiError
from seo_audit.models import ResourcePage, ResourceType
from seo_audit.shopify import ContentClient, ShopifyClient, iter_resource_pages

FIXTURES_DIR = Path(__file__).parent / "fixtures"


def _load_fixture(name: str) -> dict:
    return json.loads((FIXTURES_DIR / name).read_text(encoding="utf-8"))


def _client_with_response(payload=None, side_effect=None) -> tuple[ShopifyClient, MagicMock]:
    session = MagicMock()
    session.headers = {}
    if side_effect is not None:
        session.post.side_effect = side_effect
    else:
        resp = MagicMock()
        resp.json.return_value = payload
        session.post.return_value = resp
    return ShopifyClient("example.myshopify.com", "shpat_test", session=session), session


class TestShopifyClient:
    """ShopifyClient.fetch_page のテスト."""

    def test_parse_products(self):
        """商品ページを Resource に変換できること."""
        client, _ = _client_with_response(_load_fixture("products_page.json"))
        page = client.fetch_page(ResourceType.PRODUCT, first=50)

        assert len(page.items) == 2
        assert page.has_next_page is True
        assert page.end_cursor == "eyJsYXN0X2lkIjoxMDAyfQ=="

        shoe = page.items[0]
        assert shoe.id == "gid://shopify/Product/1001"
        assert shoe.seo_title == "Blue Shoe"
        assert shoe.body_html.startswith("<p>See our")
        assert [img.alt_text for img in shoe.images] == ["Blue shoe side view", None]

        hat = page.items[1]
        assert hat.seo_title is None
        assert hat.images == ()

    def test_parse_pages(self):
        """ページは body を本文、bodySummary をサマリーとして扱うこと."""
        client, _ = _client_with_response(_load_fixture("pages_page.json"))
        page = client.fetch_page(ResourceType.PAGE, first=20)

        about = page.items[0]
        assert about.resource_type is ResourceType.PAGE
        assert about.meta_title == "About us"
        assert about.meta_description == "Family run since 1998."
        assert "http://legacy.example.com/team.jpg" in about.body_html
        assert page.has_next_page is False

    def test_request_payload(self):
        """カーソルと件数が variables で渡され、トークンがヘッダーに入ること."""
        client, session = _client_with_response(_load_fixture("products_page.json"))
        client.fetch_page(ResourceType.PRODUCT, first=10, after="cursor-1")

        url = session.post.call_args.args[0]
        body = session.post.call_args.kwargs["json"]
        assert url == "https://example.myshopify.com/admin/api/2024-01/graphql.json"
        assert body["variables"] == {"first": 10, "after": "cursor-1"}
        assert session.headers["X-Shopify-Access-Token"] == "shpat_test"

    def test_http_error(self):
        """通信エラーは ContentApiError になること."""
        client, _ = _client_with_response(side_effect=requests.ConnectionError("refused"))
        with pytest.raises(ContentApiError):
            client.fetch_page(ResourceType.PRODUCT, first=50)

    def test_graphql_errors(self):
        """GraphQL の errors は ContentApiError になること."""
        client, _ = _client_with_response({"errors": [{"message": "Throttled"}]})
        with pytest.raises(ContentApiError, match="Throttled"):
            client.fetch_page(ResourceType.COLLECTION, first=50)

    def test_missing_connection(self):
        client, _ = _client_with_response({"data": {}})
        with pytest.raises(ContentApiError):
            client.fetch_page(ResourceType.PAGE, first=50)

    def test_empty_token(self):
        """アクセストークンが空なら ConfigurationError になること."""
        with pytest.raises(ConfigurationError):
            ShopifyClient("example.myshopify.com", "", session=MagicMock())


class _ScriptedClient(ContentClient):
    def __init__(self, pages):
        self.pages = list(pages)
        self.calls = []

    def fetch_page(self, resource_type, first, after=None):
        self.calls.append(after)
        return self.pages.pop(0)


class TestIterResourcePages:
    """iter_resource_pages のテスト."""

    def test_follows_cursor(self):
        """endCursor を次のリクエストに渡し、最終ページで止まること."""
        client = _ScriptedClient([
            ResourcePage(items=[], end_cursor="c1", has_next_page=True),
            ResourcePage(items=[], end_cursor="c2", has_next_page=True),
            ResourcePage(items=[], end_cursor=None, has_next_page=False),
        ])
        pages = list(iter_resource_pages(client, ResourceType.PRODUCT, 50))

        assert len(pages) == 3
        assert client.calls == [None, "c1", "c2"]

    def test_stops_without_cursor(self):
        """hasNextPage でもカーソルがなければ止まること."""
        client = _ScriptedClient([ResourcePage(items=[], end_cursor=None, has_next_page=True)])
        assert len(list(iter_resource_pages(client, ResourceType.PAGE, 50))) == 1
