from datetime import timedelta

import pytest

from canarywatch.core.time import now_utc
from canarywatch.models.entities import (
    Item,
    Job,
    JobType,
    PipelineRun,
    Source,
    SourceFetchLog,
    SourceTier,
    SourceType,
)
from canarywatch.schemas.payloads import DiscoverPayload
from canarywatch.services.discovery.common import DiscoveredItem, FetchResult
from canarywatch.services.discovery.curated import extract_article_links
from canarywatch.services.discovery.rss import parse_feed
from canarywatch.services.discovery.run import run_discovery
from canarywatch.utils.urls import canonicalize_url, url_hash

RSS = """<?xml version="1.0"?>
<rss version="2.0"><channel><title>METR</title>
  <item><title>Measuring long tasks</title><link>http://metr.org/blog/long-tasks?utm_source=rss</link>
    <pubDate>Mon, 02 Mar 2026 10:00:00 GMT</pubDate></item>
  <item><title>Duplicate</title><link>https://metr.org/blog/long-tasks</link></item>
  <item><title>No link</title></item>
</channel></rss>
"""


def test_parse_feed_canonicalizes_and_dedupes():
    items = parse_feed(RSS, source_id=7)
    assert len(items) == 1
    item = items[0]
    assert item.url == "https://metr.org/blog/long-tasks"
    assert item.url_hash == url_hash(item.url)
    assert item.title == "Measuring long tasks"
    assert item.published_at.year == 2026
    assert item.source_id == 7


def test_parse_feed_rejects_garbage():
    with pytest.raises(ValueError):
        parse_feed("<<<not a feed", source_id=1)


def test_extract_article_links_keeps_same_host_article_paths_first():
    html = """
    <a href="/about-us">About</a>
    <a href="/blog/new-eval">New eval</a>
    <a href="https://elsewhere.com/blog/x">Elsewhere</a>
    <a href="mailto:team@example.org">Mail</a>
    <a href="/">Home</a>
    """
    links = extract_article_links(html, "https://example.org/news")
    assert links[0] == ("https://example.org/blog/new-eval", "New eval")
    assert [url for url, _ in links] == ["https://example.org/blog/new-eval", "https://example.org/about-us"]


def _discovered(source_id: int, url: str) -> DiscoveredItem:
    canonical = canonicalize_url(url)
    return DiscoveredItem(url=canonical, url_hash=url_hash(canonical), title=url, source_id=source_id)


@pytest.fixture
def sources(db):
    rss = Source(name="METR", url="https://metr.org/blog", tier=SourceTier.TIER_0, source_type=SourceType.rss)
    curated = Source(
        name="Stanford HAI", url="https://hai.stanford.edu/news", tier=SourceTier.TIER_0, source_type=SourceType.curated
    )
    search = Source(
        name="Search", url="https://search.example.com", tier=SourceTier.DISCOVERY, source_type=SourceType.search
    )
    tier1 = Source(name="LessWrong", url="https://www.lesswrong.com/feed", tier=SourceTier.TIER_1, source_type=SourceType.rss)
    run = PipelineRun()
    db.add_all([rss, curated, search, tier1, run])
    db.commit()
    return {"rss": rss, "curated": curated, "search": search, "tier1": tier1, "run": run}


def _fetchers(sources):
    async def rss(source):
        return FetchResult(
            items=[
                _discovered(source.id, "https://metr.org/blog/a"),
                _discovered(source.id, "https://metr.org/blog/b?utm_medium=feed"),
            ]
        )

    async def curated(source):
        # Same article as the feed, found through a different source.
        return FetchResult(items=[_discovered(source.id, "https://metr.org/blog/a")], error=None)

    return {SourceType.rss: rss, SourceType.curated: curated}


def test_run_discovery_inserts_items_and_enqueues_fetch_jobs(db, settings, sources):
    run_id = sources["run"].id
    payload = DiscoverPayload(source_groups=["TIER_0", "DISCOVERY"])

    summary = run_discovery(db, run_id, payload, settings, fetchers=_fetchers(sources))
    db.commit()

    assert summary.sources_checked == 2
    assert summary.sources_skipped == 1
    assert summary.items_found == 3
    assert summary.items_new == 2

    items = db.query(Item).order_by(Item.url).all()
    assert [item.url for item in items] == ["https://metr.org/blog/a", "https://metr.org/blog/b"]
    jobs = db.query(Job).filter(Job.type == JobType.fetch).all()
    assert sorted(job.dedupe_key for job in jobs) == sorted(f"FETCH:{item.url_hash}" for item in items)
    assert db.query(SourceFetchLog).count() == 2
    assert db.get(PipelineRun, run_id).items_discovered == 2
    assert db.get(Source, sources["rss"].id).last_success_at is not None


def test_run_discovery_skips_recently_seen_urls(db, settings, sources):
    run_id = sources["run"].id
    payload = DiscoverPayload(source_groups=["TIER_0"])
    run_discovery(db, run_id, payload, settings, fetchers=_fetchers(sources))
    db.commit()

    summary = run_discovery(db, run_id, payload, settings, fetchers=_fetchers(sources))
    db.commit()
    assert summary.items_new == 0
    assert db.query(Item).count() == 2


def test_run_discovery_ignores_known_url_outside_window(db, settings, sources):
    old = now_utc() - timedelta(days=settings.discovery_dedup_days + 5)
    url = "https://metr.org/blog/a"
    db.add(
        Item(
            run_id=sources["run"].id,
            source_id=sources["rss"].id,
            url=url,
            url_hash=url_hash(url),
            discovered_at=old,
        )
    )
    db.commit()

    summary = run_discovery(db, sources["run"].id, DiscoverPayload(source_groups=["TIER_0"]), settings, fetchers=_fetchers(sources))
    db.commit()
    assert summary.items_new == 1
    assert db.query(Item).count() == 2


def test_dry_run_writes_nothing(db, settings, sources):
    payload = DiscoverPayload(source_groups=["TIER_0"], dry_run=True)
    summary = run_discovery(db, sources["run"].id, payload, settings, fetchers=_fetchers(sources))
    db.commit()

    assert summary.items_new == 2
    assert db.query(Item).count() == 0
    assert db.query(Job).count() == 0
    assert db.query(SourceFetchLog).count() == 0


def test_failing_source_is_logged_and_counted(db, settings, sources):
    async def broken(source):
        raise RuntimeError("connection reset")

    async def empty(source):
        return FetchResult()

    summary = run_discovery(
        db,
        sources["run"].id,
        DiscoverPayload(source_groups=["TIER_0", "TIER_1"]),
        settings,
        fetchers={SourceType.rss: broken, SourceType.curated: empty},
    )
    db.commit()

    assert summary.sources_failed == 2
    assert any("connection reset" in error for error in summary.errors)
    assert db.get(Source, sources["rss"].id).error_count == 1
    assert db.get(Source, sources["tier1"].id).error_count == 1
    assert db.get(Source, sources["curated"].id).error_count == 0
    logs = db.query(SourceFetchLog).filter(SourceFetchLog.status == "error").all()
    assert len(logs) == 2
