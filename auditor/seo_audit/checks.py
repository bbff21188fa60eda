"""SEO チェック 7 種とその並列実行.

各チェックは ContentSnapshot を読むだけの純粋関数で、共有状態を変更しない。
重要度はチェック種別ごとに固定（models.CHECK_SEVERITY）。
"""

from __future__ import annotations

import concurrent.futures
import logging
import re
from collections import defaultdict
from typing import Any, Callable
from urllib.parse import urljoin, urlparse

from seo_audit.config import CHECK_MAX_WORKERS, CHECK_TIMEOUT
from seo_audit.exceptions import AuditTimeoutError
from seo_audit.html_utils import extract_links, find_insecure_urls
from seo_audit.models import (
    CHECK_SEVERITY,
    CheckResult,
    CheckType,
    ContentSnapshot,
    Issue,
    Resource,
    ResourceType,
)

logger = logging.getLogger(__name__)

CheckFunction = Callable[[ContentSnapshot], CheckResult]

# リンク切れの可能性が高い URL パターン
_SUSPICIOUS_LINK_PATTERNS = [
    re.compile(r"/products/\d+$"),  # 旧形式の数値ハンドル
    re.compile(r"/collections/\d+$"),
    re.compile(r"/(test|sample|demo|deleted|removed|old)-", re.IGNORECASE),
    re.compile(r"localhost", re.IGNORECASE),
    re.compile(r"127\.0\.0\.1"),
    re.compile(r"staging\.", re.IGNORECASE),
    re.compile(r"\.test/", re.IGNORECASE),
]

_SKIP_LINK_SCHEMES = ("mailto:", "tel:", "javascript:", "#")


def _is_blank(value: str | None) -> bool:
    return not value or not value.strip()


def _issue(
    check_type: CheckType,
    context: ContentSnapshot,
    resource: Resource,
    message: str,
    suggestion: str,
    details: dict[str, Any] | None = None,
) -> Issue:
    return Issue(
        check_type=check_type,
        severity=CHECK_SEVERITY[check_type],
        resource_id=resource.id,
        resource_type=resource.resource_type,
        resource_title=resource.display_title,
        resource_handle=resource.handle,
        url=resource.url(context.shop_domain),
        message=message,
        suggestion=suggestion,
        details=details or {},
    )


def _result(check_type: CheckType, issues: list[Issue]) -> CheckResult:
    return CheckResult(check_type=check_type, severity=CHECK_SEVERITY[check_type], issues=issues)


# ---------------------------------------------------------------------------
# 1. メタタイトル欠落
# ---------------------------------------------------------------------------

_TITLE_SUGGESTIONS = {
    ResourceType.PRODUCT: (
        "Add a unique, descriptive meta title (50-60 characters) that includes your "
        "target keywords. This appears in search results and browser tabs."
    ),
    ResourceType.COLLECTION: (
        "Add a descriptive meta title that includes relevant keywords and describes "
        "the collection content."
    ),
    ResourceType.PAGE: (
        "Add a clear, descriptive title for this page that tells visitors and search "
        "engines what the page is about."
    ),
}


def check_missing_meta_titles(context: ContentSnapshot) -> CheckResult:
    """SEO タイトルが空のリソースを検出する（ページはページタイトル）."""
    check_type = CheckType.MISSING_META_TITLE
    issues = [
        _issue(
            check_type, context, r,
            f'{r.resource_type.label} "{r.display_title}" is missing a meta title',
            _TITLE_SUGGESTIONS[r.resource_type],
        )
        for r in context.all_resources()
        if not r.meta_title
    ]
    return _result(check_type, issues)


# ---------------------------------------------------------------------------
# 2. メタタイトル重複
# ---------------------------------------------------------------------------

def normalize_title(title: str | None) -> str:
    """重複判定用の正規化（前後空白除去・小文字化）."""
    return (title or "").strip().lower()


def check_duplicate_meta_titles(context: ContentSnapshot) -> CheckResult:
    """商品・コレクション間で正規化後の SEO タイトルが一致するものを検出する."""
    check_type = CheckType.DUPLICATE_META_TITLE
    groups: dict[str, list[Resource]] = defaultdict(list)
    for r in [*context.products, *context.collections]:
        normalized = normalize_title(r.seo_title)
        if normalized:
            groups[normalized].append(r)

    issues = []
    for meta_title, resources in groups.items():
        if len(resources) < 2:
            continue
        for r in resources:
            others = [o for o in resources if o is not r]
            noun = "resource" if len(others) == 1 else "resources"
            issues.append(_issue(
                check_type, context, r,
                f'{r.resource_type.label} "{r.display_title}" has a duplicate meta title: "{meta_title}"',
                f"This meta title is shared with {len(others)} other {noun}. Create a unique "
                f"meta title that distinguishes this {r.resource_type.label.lower()}.",
                {
                    "duplicate_with": [o.display_title for o in others],
                    "duplicate_count": len(resources),
                },
            ))
    return _result(check_type, issues)


# ---------------------------------------------------------------------------
# 3. メタディスクリプション欠落
# ---------------------------------------------------------------------------

_DESCRIPTION_SUGGESTIONS = {
    ResourceType.PRODUCT: (
        "Add a compelling meta description (150-160 characters) that includes keywords "
        "and encourages clicks. This appears in search results below the title."
    ),
    ResourceType.COLLECTION: (
        "Add a description that summarizes the collection content and includes relevant "
        "keywords to improve search result appearance."
    ),
    ResourceType.PAGE: (
        "Add a brief summary of the page content that entices users to click when they "
        "see it in search results."
    ),
}


def check_missing_meta_descriptions(context: ContentSnapshot) -> CheckResult:
    """SEO ディスクリプションが空のリソースを検出する（ページは本文サマリー）."""
    check_type = CheckType.MISSING_META_DESCRIPTION
    issues = [
        _issue(
            check_type, context, r,
            f'{r.resource_type.label} "{r.display_title}" is missing a meta description',
            _DESCRIPTION_SUGGESTIONS[r.resource_type],
        )
        for r in context.all_resources()
        if not r.meta_description
    ]
    return _result(check_type, issues)


# ---------------------------------------------------------------------------
# 4. ALT テキスト欠落
# ---------------------------------------------------------------------------

def check_missing_alt_text(context: ContentSnapshot) -> CheckResult:
    """ALT テキストのない商品画像を検出する. 同一商品の指摘は 1 件にまとめる."""
    check_type = CheckType.MISSING_ALT_TEXT
    issues = []
    for product in context.products:
        missing = [img for img in product.images if _is_blank(img.alt_text)]
        if not missing:
            continue

        if len(missing) == 1:
            message = f'Product "{product.display_title}" has an image without ALT text'
        else:
            message = f'Product "{product.display_title}" has {len(missing)} images without ALT text'

        issues.append(_issue(
            check_type, context, product, message,
            "Add descriptive ALT text that explains what's in the image. Include product "
            "name and key features. This helps visually impaired users and improves image SEO.",
            {
                "image_id": missing[0].id,
                "image_url": missing[0].url,
                "image_count": len(missing),
            },
        ))
    return _result(check_type, issues)


# ---------------------------------------------------------------------------
# 5. リンク切れ
# ---------------------------------------------------------------------------

def is_suspicious_link(href: str) -> bool:
    """既知の壊れやすい URL パターンに一致するか."""
    return any(p.search(href) for p in _SUSPICIOUS_LINK_PATTERNS)


def _resolve_link(href: str, shop_domain: str) -> str | None:
    if href.lower().startswith(_SKIP_LINK_SCHEMES):
        return None
    url = urljoin(f"https://{shop_domain}/", href)
    if urlparse(url).scheme not in ("http", "https"):
        return None
    return url


def check_broken_links(context: ContentSnapshot) -> CheckResult:
    """本文中のリンクのうち、壊れている（可能性が高い）ものを検出する.

    link_checker が設定されていれば HTTP ステータス 400 以上もリンク切れとみなす。
    """
    check_type = CheckType.BROKEN_LINK
    issues = []
    for r in context.all_resources():
        for link in extract_links(r.body_html):
            status = None
            broken = is_suspicious_link(link.href)
            if not broken and context.link_checker is not None:
                url = _resolve_link(link.href, context.shop_domain)
                if url:
                    status = context.link_checker(url)
                    broken = status is not None and status >= 400
            if not broken:
                continue

            details: dict[str, Any] = {"link_url": link.href, "link_text": link.text}
            if status is not None:
                details["status_code"] = status
            issues.append(_issue(
                check_type, context, r,
                f'{r.resource_type.label} "{r.display_title}" contains a potentially broken link',
                "Review and update the link in the description. Broken links harm user "
                "experience and SEO. Remove it or replace it with a valid URL.",
                details,
            ))
    return _result(check_type, issues)


# ---------------------------------------------------------------------------
# 6. 混在コンテンツ（http://）
# ---------------------------------------------------------------------------

def check_mixed_content(context: ContentSnapshot) -> CheckResult:
    """本文中の http:// リンク・埋め込みと http:// の商品画像を検出する."""
    check_type = CheckType.MIXED_CONTENT
    issues = []
    for r in context.all_resources():
        for link in find_insecure_urls(r.body_html):
            issues.append(_issue(
                check_type, context, r,
                f'{r.resource_type.label} "{r.display_title}" contains non-HTTPS link in description',
                'Update the link to use HTTPS instead of HTTP. Modern browsers may block '
                'insecure content and show security warnings. Replace "http://" with "https://".',
                {"link_url": link.href, "link_text": link.text},
            ))

    for product in context.products:
        for image in product.images:
            if image.url.lower().startswith("http://"):
                issues.append(_issue(
                    check_type, context, product,
                    f'Product "{product.display_title}" has an image with non-HTTPS URL',
                    "Replace or re-upload the image using a secure HTTPS URL. Insecure "
                    "images may be blocked by browsers.",
                    {"image_id": image.id, "image_url": image.url},
                ))
    return _result(check_type, issues)


# ---------------------------------------------------------------------------
# 7. インデックス不能の可能性（SEO 情報も本文もない）
# ---------------------------------------------------------------------------

def check_indexing_directives(context: ContentSnapshot) -> CheckResult:
    """SEO タイトル・ディスクリプション・本文のいずれも持たないリソースを検出する."""
    check_type = CheckType.NOINDEX_PAGE
    issues = []
    for r in context.all_resources():
        has_seo = not _is_blank(r.seo_title) or not _is_blank(r.seo_description)
        has_content = not _is_blank(r.body_html) or not _is_blank(r.body_summary)
        if has_seo or has_content:
            continue

        if r.resource_type is ResourceType.PAGE:
            message = f'Page "{r.display_title}" has no content'
        else:
            message = f'{r.resource_type.label} "{r.display_title}" has no SEO data or content'
        issues.append(_issue(
            check_type, context, r, message,
            "This resource has neither SEO information nor content, which may prevent "
            "proper indexing. Add a meta title, description and body content.",
            {
                "has_meta_title": not _is_blank(r.seo_title),
                "has_meta_description": not _is_blank(r.seo_description),
                "has_body": not _is_blank(r.body_html),
            },
        ))
    return _result(check_type, issues)


# ---------------------------------------------------------------------------
# 並列実行
# ---------------------------------------------------------------------------

ALL_CHECKS: tuple[tuple[CheckType, CheckFunction], ...] = (
    (CheckType.MISSING_META_TITLE, check_missing_meta_titles),
    (CheckType.DUPLICATE_META_TITLE, check_duplicate_meta_titles),
    (CheckType.MISSING_META_DESCRIPTION, check_missing_meta_descriptions),
    (CheckType.MISSING_ALT_TEXT, check_missing_alt_text),
    (CheckType.BROKEN_LINK, check_broken_links),
    (CheckType.MIXED_CONTENT, check_mixed_content),
    (CheckType.NOINDEX_PAGE, check_indexing_directives),
)


def run_checks(
    context: ContentSnapshot,
    checks: tuple[tuple[CheckType, CheckFunction], ...] = ALL_CHECKS,
    timeout: float = CHECK_TIMEOUT,
    max_workers: int = CHECK_MAX_WORKERS,
) -> list[CheckResult]:
    """全チェックを並列実行し、checks と同じ順序で結果を返す.

    1 つのチェックが例外を出しても他のチェックは止めない（error 付きの空結果になる）。

    Raises:
        AuditTimeoutError: timeout 秒以内に全チェックが終わらなかった場合
    """
    results: dict[CheckType, CheckResult] = {}
    executor = concurrent.futures.ThreadPoolExecutor(
        max_workers=max_workers, thread_name_prefix="seo-check"
    )
    try:
        future_to_type = {
            executor.submit(fn, context): check_type for check_type, fn in checks
        }
        try:
            for future in concurrent.futures.as_completed(future_to_type, timeout=timeout):
                check_type = future_to_type[future]
                try:
                    results[check_type] = future.result()
                except Exception as e:
                    logger.exception("チェック失敗: %s", check_type.value)
                    results[check_type] = CheckResult(
                        check_type=check_type,
                        severity=CHECK_SEVERITY[check_type],
                        error=f"{type(e).__name__}: {e}",
                    )
        except concurrent.futures.TimeoutError as e:
            pending = [t.value for t in future_to_type.values() if t not in results]
            raise AuditTimeoutError(
                f"チェックが {timeout} 秒以内に終わりませんでした: {', '.join(pending)}"
            ) from e
    finally:
        executor.shutdown(wait=False, cancel_futures=True)

    return [results[check_type] for check_type, _ in checks]
