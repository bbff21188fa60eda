"""本文 HTML からリンク・埋め込みリソースを抽出するユーティリティ."""

from __future__ import annotations

from dataclasses import dataclass

from bs4 import BeautifulSoup

EMBEDDED_RESOURCE_TEXT = "(embedded resource)"

# src を持ちうる埋め込み要素
_SRC_TAGS = ["img", "script", "iframe", "source", "video", "audio", "embed"]


@dataclass(frozen=True)
class Link:
    href: str
    text: str


def _soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html, "html.parser")


def extract_links(html: str | None) -> list[Link]:
    """<a href> をすべて抽出する. テキストはタグを除いて trim する."""
    if not html or not html.strip():
        return []
    links = []
    for a in _soup(html).find_all("a", href=True):
        href = a["href"].strip()
        if href:
            links.append(Link(href=href, text=a.get_text(" ", strip=True)))
    return links


def find_insecure_urls(html: str | None) -> list[Link]:
    """http:// で始まるリンクと埋め込みリソースを抽出する."""
    if not html or not html.strip():
        return []
    soup = _soup(html)
    found = [
        link for link in extract_links(html)
        if link.href.lower().startswith("http://")
    ]
    for tag in soup.find_all(_SRC_TAGS, src=True):
        src = tag["src"].strip()
        if src.lower().startswith("http://"):
            found.append(Link(href=src, text=EMBEDDED_RESOURCE_TEXT))
    return found
