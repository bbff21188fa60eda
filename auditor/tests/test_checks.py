"""checks モジュールのユニットテスト."""

import time
from unittest.mock import MagicMock

import pytest

from seo_audit.checks import (
    ALL_CHECKS,
    check_broken_links,
    check_duplicate_meta_titles,
    check_indexing_directives,
    check_missing_alt_text,
    check_missing_meta_descriptions,
    check_missing_meta_titles,
    check_mixed_content,
    is_suspicious_link,
    normalize_title,
    run_checks,
)
from seo_audit.exceptions import AuditTimeoutError
from seo_audit.models import (
    CheckResult,
    CheckType,
    ContentSnapshot,
    Image,
    Resource,
    ResourceType,
    Severity,
)

SHOP = "example.myshopify.com"


def _product(n: int, **kwargs) -> Resource:
    defaults = {
        "title": f"Product {n}",
        "handle": f"product-{n}",
        "seo_title": f"Product {n} | Shop",
        "seo_description": "A fine product.",
        "body_html": "<p>Body</p>",
    }
    defaults.update(kwargs)
    return Resource(id=f"gid://shopify/Product/{n}", resource_type=ResourceType.PRODUCT, **defaults)


def _collection(n: int, **kwargs) -> Resource:
    defaults = {
        "title": f"Collection {n}",
        "handle": f"collection-{n}",
        "seo_title": f"Collection {n} | Shop",
        "seo_description": "A fine collection.",
    }
    defaults.update(kwargs)
    return Resource(id=f"gid://shopify/Collection/{n}", resource_type=ResourceType.COLLECTION, **defaults)


def _page(n: int, **kwargs) -> Resource:
    defaults = {
        "title": f"Page {n}",
        "handle": f"page-{n}",
        "body_summary": "Summary",
        "body_html": "<p>Summary</p>",
    }
    defaults.update(kwargs)
    return Resource(id=f"gid://shopify/Page/{n}", resource_type=ResourceType.PAGE, **defaults)


def _snapshot(products=(), collections=(), pages=(), link_checker=None) -> ContentSnapshot:
    return ContentSnapshot(
        shop_domain=SHOP,
        store_id="s1",
        products=list(products),
        collections=list(collections),
        pages=list(pages),
        link_checker=link_checker,
    )


class TestMissingMetaTitles:
    """check_missing_meta_titles のテスト."""

    def test_detects_missing(self):
        """SEO タイトルが空・空白のみのリソースを CRITICAL で検出すること."""
        snapshot = _snapshot(
            products=[_product(1, seo_title=None), _product(2, seo_title="   "), _product(3)],
            collections=[_collection(1, seo_title="")],
        )
        result = check_missing_meta_titles(snapshot)

        assert result.severity is Severity.CRITICAL
        assert [i.resource_id for i in result.issues] == [
            "gid://shopify/Product/1",
            "gid://shopify/Product/2",
            "gid://shopify/Collection/1",
        ]
        assert result.issues[0].url == f"https://{SHOP}/products/product-1"

    def test_page_uses_title(self):
        """ページはページタイトルで判定すること."""
        snapshot = _snapshot(pages=[_page(1), _page(2, title="")])
        result = check_missing_meta_titles(snapshot)

        assert len(result.issues) == 1
        assert result.issues[0].resource_title == "Untitled"


class TestDuplicateMetaTitles:
    """check_duplicate_meta_titles のテスト."""

    def test_normalized_duplicates(self):
        """大文字小文字・前後空白の違いを無視して重複を検出すること."""
        snapshot = _snapshot(products=[
            _product(1, seo_title="Blue Shoe"),
            _product(2, seo_title="blue shoe "),
            _product(3, seo_title="Red Hat"),
        ])
        result = check_duplicate_meta_titles(snapshot)

        assert result.severity is Severity.HIGH
        assert len(result.issues) == 2
        assert result.issues[0].details["duplicate_with"] == ["Product 2"]
        assert result.issues[0].details["duplicate_count"] == 2

    def test_cross_type_duplicates(self):
        """商品とコレクションの間でも重複を検出すること."""
        snapshot = _snapshot(
            products=[_product(1, seo_title="Summer Sale")],
            collections=[_collection(1, seo_title="SUMMER SALE")],
        )
        assert len(check_duplicate_meta_titles(snapshot).issues) == 2

    def test_empty_titles_ignored(self):
        """空のタイトル同士は重複とみなさないこと."""
        snapshot = _snapshot(products=[_product(1, seo_title=None), _product(2, seo_title="")])
        assert check_duplicate_meta_titles(snapshot).issues == []

    def test_normalize_title(self):
        assert normalize_title("  Blue Shoe ") == "blue shoe"
        assert normalize_title(None) == ""


class TestMissingMetaDescriptions:
    """check_missing_meta_descriptions のテスト."""

    def test_detects_missing(self):
        snapshot = _snapshot(
            products=[_product(1, seo_description=None), _product(2)],
            pages=[_page(1, body_summary="")],
        )
        result = check_missing_meta_descriptions(snapshot)

        assert result.severity is Severity.HIGH
        assert [i.resource_type for i in result.issues] == [ResourceType.PRODUCT, ResourceType.PAGE]


class TestMissingAltText:
    """check_missing_alt_text のテスト."""

    def test_one_issue_per_product(self):
        """同一商品の ALT 欠落画像は 1 件の指摘にまとめること."""
        images = (
            Image(id="img-1", url="https://cdn.example.com/1.jpg", alt_text=None),
            Image(id="img-2", url="https://cdn.example.com/2.jpg", alt_text="Front"),
            Image(id="img-3", url="https://cdn.example.com/3.jpg", alt_text="  "),
        )
        snapshot = _snapshot(products=[_product(1, images=images), _product(2)])
        result = check_missing_alt_text(snapshot)

        assert result.severity is Severity.MEDIUM
        assert len(result.issues) == 1
        issue = result.issues[0]
        assert issue.details == {
            "image_id": "img-1",
            "image_url": "https://cdn.example.com/1.jpg",
            "image_count": 2,
        }
        assert "2 images without ALT text" in issue.message


class TestBrokenLinks:
    """check_broken_links のテスト."""

    def test_suspicious_patterns(self):
        assert is_suspicious_link("https://shop.com/products/12345")
        assert is_suspicious_link("http://localhost:3000/cart")
        assert is_suspicious_link("https://staging.shop.com/")
        assert is_suspicious_link("/pages/old-about")
        assert not is_suspicious_link("https://shop.com/products/blue-shoe")

    def test_detects_suspicious_links(self):
        body = '<p><a href="/products/12345">Old</a> <a href="/products/blue-shoe">OK</a></p>'
        result = check_broken_links(_snapshot(products=[_product(1, body_html=body)]))

        assert result.severity is Severity.HIGH
        assert len(result.issues) == 1
        assert result.issues[0].details == {"link_url": "/products/12345", "link_text": "Old"}

    def test_link_checker_status(self):
        """link_checker が 400 以上を返したリンクを検出し、特殊スキームは確認しないこと."""
        body = (
            '<a href="/pages/gone">Gone</a>'
            '<a href="https://partner.example.com/ok">OK</a>'
            '<a href="mailto:hi@example.com">Mail</a>'
            '<a href="#top">Top</a>'
        )
        statuses = {
            f"https://{SHOP}/pages/gone": 404,
            "https://partner.example.com/ok": 200,
        }
        checker = MagicMock(side_effect=lambda url: statuses[url])
        snapshot = _snapshot(pages=[_page(1, body_html=body)], link_checker=checker)

        result = check_broken_links(snapshot)

        assert len(result.issues) == 1
        assert result.issues[0].details["status_code"] == 404
        assert checker.call_count == 2

    def test_unknown_status_not_broken(self):
        """確認できなかったリンクはリンク切れとしないこと."""
        body = '<a href="https://flaky.example.com/">Flaky</a>'
        snapshot = _snapshot(products=[_product(1, body_html=body)], link_checker=lambda url: None)
        assert check_broken_links(snapshot).issues == []


class TestMixedContent:
    """check_mixed_content のテスト."""

    def test_insecure_links_and_embeds(self):
        body = (
            '<a href="http://old.example.com/">Old site</a>'
            '<a href="https://new.example.com/">New site</a>'
            '<img src="http://cdn.example.com/banner.png">'
        )
        result = check_mixed_content(_snapshot(collections=[_collection(1, body_html=body)]))

        assert result.severity is Severity.MEDIUM
        assert [i.details["link_url"] for i in result.issues] == [
            "http://old.example.com/",
            "http://cdn.example.com/banner.png",
        ]
        assert result.issues[1].details["link_text"] == "(embedded resource)"

    def test_insecure_product_images(self):
        images = (Image(id="img-1", url="http://cdn.example.com/1.jpg", alt_text="x"),)
        result = check_mixed_content(_snapshot(products=[_product(1, images=images)]))

        assert len(result.issues) == 1
        assert result.issues[0].details == {"image_id": "img-1", "image_url": "http://cdn.example.com/1.jpg"}


class TestIndexingDirectives:
    """check_indexing_directives のテスト."""

    def test_empty_resources(self):
        """SEO 情報も本文もないリソースだけを LOW で検出すること."""
        empty_product = _product(1, seo_title=None, seo_description=None, body_html="")
        empty_page = _page(1, body_summary=None, body_html=None)
        snapshot = _snapshot(products=[empty_product, _product(2)], pages=[empty_page])

        result = check_indexing_directives(snapshot)

        assert result.severity is Severity.LOW
        assert len(result.issues) == 2
        assert result.issues[1].message == 'Page "Page 1" has no content'


class TestRunChecks:
    """run_checks のテスト."""

    def test_all_checks_in_order(self):
        results = run_checks(_snapshot(products=[_product(1)]))

        assert [r.check_type for r in results] == [t for t, _ in ALL_CHECKS]
        assert all(not r.failed for r in results)

    def test_failing_check_isolated(self):
        """1 つのチェックの例外が他のチェックに影響しないこと."""
        def boom(context):
            raise ValueError("bad data")

        checks = (
            (CheckType.MISSING_META_TITLE, check_missing_meta_titles),
            (CheckType.BROKEN_LINK, boom),
        )
        snapshot = _snapshot(products=[_product(1, seo_title=None)])
        results = run_checks(snapshot, checks=checks)

        assert len(results[0].issues) == 1
        assert results[1].failed
        assert results[1].issues == []
        assert results[1].error == "ValueError: bad data"

    def test_timeout(self):
        """制限時間内に終わらなければ AuditTimeoutError になること."""
        def slow(context):
            time.sleep(0.5)
            return CheckResult(check_type=CheckType.NOINDEX_PAGE, severity=Severity.LOW)

        checks = ((CheckType.NOINDEX_PAGE, slow),)
        with pytest.raises(AuditTimeoutError, match="NOINDEX_PAGE"):
            run_checks(_snapshot(), checks=checks, timeout=0.05)
