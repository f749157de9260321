import re
from urllib.parse import urljoin, urlsplit

import httpx
from bs4 import BeautifulSoup

from canarywatch.core.config import get_settings
from canarywatch.services.discovery.common import (
    DiscoveredItem,
    FetchResult,
    SourceSpec,
    http_get,
    normalize_text,
)
from canarywatch.utils.network import assert_allowed_url
from canarywatch.utils.urls import canonicalize_url, url_hash

MAX_LINKS = 100
PAGE_ACCEPT = "text/html,application/xhtml+xml"

ARTICLE_PATH_PATTERNS = [
    re.compile(pattern, re.IGNORECASE)
    for pattern in (
        r"/blog/",
        r"/news/",
        r"/research/",
        r"/article",
        r"/post/",
        r"/[0-9]{4}/[0-9]{2}/",
        r"/p/\w+",
    )
]


def _path_and_query(url: str) -> str:
    parts = urlsplit(url)
    return parts.path + (f"?{parts.query}" if parts.query else "")


def looks_like_article(url: str) -> bool:
    path = _path_and_query(url)
    return any(pattern.search(path) for pattern in ARTICLE_PATH_PATTERNS)


def extract_article_links(html: str, page_url: str, selectors: list[str] | None = None) -> list[tuple[str, str]]:
    """Return ``(url, text)`` pairs for same-host links, article-like paths first."""
    soup = BeautifulSoup(html, "html.parser")
    base_host = (urlsplit(page_url).hostname or "").lower()

    anchors = []
    for selector in selectors or []:
        anchors.extend(node for node in soup.select(selector) if node.name == "a")
    if not anchors:
        anchors = soup.find_all("a", href=True)

    links: list[tuple[str, str]] = []
    for anchor in anchors:
        href = anchor.get("href")
        if not href:
            continue
        resolved = urljoin(page_url, href)
        parts = urlsplit(resolved)
        if parts.scheme not in {"http", "https"}:
            continue
        if (parts.hostname or "").lower() != base_host:
            continue
        if len(_path_and_query(resolved)) < 5:
            continue
        links.append((resolved, normalize_text(anchor.get_text(" ", strip=True))))
    # The link cap should keep article-like paths.
    links.sort(key=lambda link: not looks_like_article(link[0]))
    return links


async def fetch_curated(source: SourceSpec) -> FetchResult:
    settings = get_settings()
    try:
        assert_allowed_url(source.url)
        response = await http_get(source.url, settings.ingest_http_timeout_seconds, PAGE_ACCEPT)
    except (httpx.HTTPError, ValueError) as exc:
        return FetchResult(error=str(exc) or exc.__class__.__name__)
    if response.status_code >= 400:
        return FetchResult(error=f"HTTP {response.status_code}")

    selectors = source.query_config.get("selectors") or []
    items: list[DiscoveredItem] = []
    seen: set[str] = set()
    for href, text in extract_article_links(response.text, str(response.url), selectors):
        canonical = canonicalize_url(href)
        if not canonical.startswith("http") or canonical in seen:
            continue
        seen.add(canonical)
        items.append(
            DiscoveredItem(
                url=canonical,
                url_hash=url_hash(canonical),
                title=text or None,
                source_id=source.id,
            )
        )
        if len(items) >= MAX_LINKS:
            break
    return FetchResult(items=items)
