import logging
from datetime import datetime

import feedparser
import httpx

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

logger = logging.getLogger(__name__)

MAX_FEED_ITEMS = 500
FEED_ACCEPT = "application/rss+xml, application/atom+xml, application/xml;q=0.9, */*;q=0.8"


def _entry_published(entry: dict) -> datetime | None:
    for key in ("published_parsed", "updated_parsed", "created_parsed"):
        parsed = entry.get(key)
        if parsed:
            return datetime(*parsed[:6])
    return None


def parse_feed(text: str, source_id: int) -> list[DiscoveredItem]:
    feed = feedparser.parse(text)
    if getattr(feed, "bozo", 0) and not feed.entries:
        raise ValueError(f"Feed parse failed: {getattr(feed, 'bozo_exception', 'unknown error')}")

    items: list[DiscoveredItem] = []
    seen: set[str] = set()
    for entry in feed.entries[:MAX_FEED_ITEMS]:
        link = entry.get("link") or entry.get("id") or entry.get("guid")
        if not link or not link.startswith("http"):
            continue
        canonical = canonicalize_url(link)
        if canonical in seen:
            continue
        seen.add(canonical)
        items.append(
            DiscoveredItem(
                url=canonical,
                url_hash=url_hash(canonical),
                title=normalize_text(entry.get("title")) or None,
                published_at=_entry_published(entry),
                source_id=source_id,
            )
        )
    return items


async def fetch_rss(source: SourceSpec) -> FetchResult:
    settings = get_settings()
    feed_url = source.query_config.get("feed_url") or source.url
    try:
        assert_allowed_url(feed_url)
        response = await http_get(feed_url, settings.ingest_http_timeout_seconds, FEED_ACCEPT)
    except (httpx.HTTPError, ValueError) as exc:
        return FetchResult(error=str(exc) or exc.__class__.__name__)

    if response.status_code == 304:
        return FetchResult()
    if response.status_code >= 400:
        return FetchResult(error=f"HTTP {response.status_code}")

    try:
        items = parse_feed(response.text, source.id)
    except ValueError as exc:
        return FetchResult(error=str(exc))
    logger.debug("Feed %s yielded %s items", source.name, len(items))
    return FetchResult(items=items)
