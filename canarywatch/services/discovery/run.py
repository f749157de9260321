import asyncio
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from canarywatch.core.config import Settings
from canarywatch.core.observability import SOURCE_FETCH_COUNT
from canarywatch.core.time import now_utc
from canarywatch.models.entities import (
    Item,
    ItemStatus,
    JobType,
    Source,
    SourceFetchLog,
    SourceTier,
    SourceType,
)
from canarywatch.schemas.payloads import DiscoverPayload, FetchPayload
from canarywatch.services.discovery.common import DiscoveredItem, Fetcher, FetchResult, SourceSpec
from canarywatch.services.discovery.curated import fetch_curated
from canarywatch.services.discovery.rss import fetch_rss
from canarywatch.services.queue import JobQueue
from canarywatch.services.runs import increment_run_counters

logger = logging.getLogger(__name__)

FETCH_PRIORITY = 50

DEFAULT_FETCHERS: dict[SourceType, Fetcher] = {
    SourceType.rss: fetch_rss,
    SourceType.curated: fetch_curated,
}


@dataclass
class DiscoverySummary:
    sources_checked: int = 0
    sources_failed: int = 0
    sources_skipped: int = 0
    items_found: int = 0
    items_new: int = 0
    errors: list[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {
            "sources_checked": self.sources_checked,
            "sources_failed": self.sources_failed,
            "sources_skipped": self.sources_skipped,
            "items_found": self.items_found,
            "items_new": self.items_new,
            "errors": self.errors,
        }


def load_sources(db: Session, source_groups: list[str]) -> list[SourceSpec]:
    tiers = [SourceTier(group) for group in source_groups if group in SourceTier.__members__]
    if not tiers:
        return []
    sources = (
        db.query(Source)
        .filter(Source.is_active.is_(True), Source.tier.in_(tiers))
        .order_by(Source.tier.asc(), Source.id.asc())
        .all()
    )
    return [
        SourceSpec(
            id=source.id,
            name=source.name,
            url=source.url,
            tier=source.tier,
            source_type=source.source_type,
            trust_weight=source.trust_weight,
            query_config=source.query_config or {},
        )
        for source in sources
    ]


async def fetch_sources(
    sources: list[SourceSpec],
    fetchers: Mapping[SourceType, Fetcher],
    concurrency: int,
    timeout_seconds: float,
) -> dict[int, FetchResult | None]:
    """Run fetchers with bounded concurrency. ``None`` marks a source with no fetcher."""
    semaphore = asyncio.Semaphore(max(concurrency, 1))

    async def _one(source: SourceSpec) -> tuple[int, FetchResult | None]:
        fetcher = fetchers.get(source.source_type)
        if fetcher is None:
            return source.id, None
        async with semaphore:
            try:
                result = await asyncio.wait_for(fetcher(source), timeout=timeout_seconds)
            except TimeoutError:
                result = FetchResult(error=f"Fetch timed out ({int(timeout_seconds)}s)")
            except Exception as exc:  # noqa: BLE001
                logger.exception("Fetcher crashed for source %s", source.name)
                result = FetchResult(error=str(exc) or exc.__class__.__name__)
        return source.id, result

    pairs = await asyncio.gather(*[_one(source) for source in sources])
    return dict(pairs)


def _record_source_result(
    db: Session, run_id: int, source: SourceSpec, result: FetchResult, now: datetime
) -> None:
    status = "error" if result.error else "success"
    db.add(
        SourceFetchLog(
            run_id=run_id,
            source_id=source.id,
            status=status,
            items_found=len(result.items),
            error_message=result.error,
            fetched_at=now,
        )
    )
    if result.error:
        db.execute(
            update(Source)
            .where(Source.id == source.id)
            .values(error_count=Source.error_count + 1)
            .execution_options(synchronize_session=False)
        )
    else:
        db.execute(
            update(Source)
            .where(Source.id == source.id)
            .values(error_count=0, last_success_at=now)
            .execution_options(synchronize_session=False)
        )
    SOURCE_FETCH_COUNT.labels(source.source_type.value, status).inc()


def _recently_seen_hashes(db: Session, hashes: set[str], since: datetime) -> set[str]:
    if not hashes:
        return set()
    seen: set[str] = set()
    ordered = sorted(hashes)
    for start in range(0, len(ordered), 500):
        chunk = ordered[start : start + 500]
        seen.update(
            db.scalars(select(Item.url_hash).where(Item.url_hash.in_(chunk), Item.discovered_at >= since))
        )
    return seen


def _insert_item(db: Session, run_id: int, discovered: DiscoveredItem, now: datetime) -> Item | None:
    item = Item(
        run_id=run_id,
        source_id=discovered.source_id,
        url=discovered.url,
        url_hash=discovered.url_hash,
        title=discovered.title[:1024] if discovered.title else None,
        published_at=discovered.published_at,
        discovered_at=now,
        status=ItemStatus.pending,
    )
    try:
        with db.begin_nested():
            db.add(item)
            db.flush()
    except IntegrityError:
        # URL already known from outside the dedup window.
        return None
    return item


def run_discovery(
    db: Session,
    run_id: int,
    payload: DiscoverPayload,
    settings: Settings,
    fetchers: Mapping[SourceType, Fetcher] | None = None,
    queue: JobQueue | None = None,
    now: datetime | None = None,
) -> DiscoverySummary:
    now = now or now_utc()
    fetchers = DEFAULT_FETCHERS if fetchers is None else fetchers
    queue = queue or JobQueue(db)
    summary = DiscoverySummary()

    sources = load_sources(db, payload.source_groups)
    results = asyncio.run(
        fetch_sources(
            sources,
            fetchers,
            concurrency=settings.discovery_concurrency,
            timeout_seconds=settings.source_fetch_timeout_seconds,
        )
    )

    discovered: dict[str, DiscoveredItem] = {}
    for source in sources:
        result = results.get(source.id)
        if result is None:
            summary.sources_skipped += 1
            logger.info("No fetcher for %s source %s", source.source_type.value, source.name)
            continue
        summary.sources_checked += 1
        summary.items_found += len(result.items)
        if result.error:
            summary.sources_failed += 1
            summary.errors.append(f"{source.name}: {result.error}")
            logger.warning("Source %s failed: %s", source.name, result.error, extra={"run_id": run_id})
        if not payload.dry_run:
            _record_source_result(db, run_id, source, result, now)
        for item in result.items:
            discovered.setdefault(item.url_hash, item)

    since = now - timedelta(days=settings.discovery_dedup_days)
    already_seen = _recently_seen_hashes(db, set(discovered), since)
    fresh = [item for item_hash, item in discovered.items() if item_hash not in already_seen]

    if payload.dry_run:
        summary.items_new = len(fresh)
        return summary

    for candidate in fresh:
        item = _insert_item(db, run_id, candidate, now)
        if item is None:
            continue
        summary.items_new += 1
        queue.enqueue(
            run_id,
            JobType.fetch,
            FetchPayload(item_id=item.id),
            dedupe_key=f"FETCH:{item.url_hash}",
            priority=FETCH_PRIORITY,
            group_key=str(item.source_id),
            now=now,
        )

    increment_run_counters(db, run_id, discovered=summary.items_new)
    logger.info(
        "Discovery finished: %s sources, %s found, %s new",
        summary.sources_checked,
        summary.items_found,
        summary.items_new,
        extra={"run_id": run_id},
    )
    return summary
