"""Stage processors for the discover -> fetch -> extract -> map -> aggregate chain.

Each handler consumes one typed payload, does its work inside the caller's
session and, when ``context.chain`` is set, enqueues the next stage in the
same transaction. ``process_job`` dispatches a claimed job and commits.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from sqlalchemy.orm import Session

from canarywatch.core.config import Settings
from canarywatch.core.time import now_utc, today_utc
from canarywatch.models.entities import Document, Item, Job, JobType, Source, SourceType
from canarywatch.schemas.extraction import SignalExtraction, SourceContext
from canarywatch.schemas.payloads import (
    AggregatePayload,
    DiscoverPayload,
    ExtractPayload,
    FetchPayload,
    MapPayload,
    parse_payload,
)
from canarywatch.services.acquisition.fetcher import Acquirer, acquire_url
from canarywatch.services.acquisition.run import acquire_item
from canarywatch.services.discovery.common import Fetcher
from canarywatch.services.discovery.run import DEFAULT_FETCHERS, run_discovery
from canarywatch.services.events import detect_and_record_events
from canarywatch.services.llm.client import extract_signals
from canarywatch.services.queue import JobQueue
from canarywatch.services.runs import increment_run_counters, mark_run_failed
from canarywatch.services.signals import EXTRACTION_KEY, map_document
from canarywatch.services.snapshot import create_daily_snapshot
from canarywatch.services.storage import BlobStore, FilesystemBlobStore

logger = logging.getLogger(__name__)

DISCOVER_PRIORITY = 10
FETCH_PRIORITY = 50
EXTRACT_PRIORITY = 60
MAP_PRIORITY = 70
AGGREGATE_PRIORITY = 90

Extractor = Callable[[str, SourceContext], Awaitable[tuple[SignalExtraction, dict]]]


@dataclass
class PipelineContext:
    settings: Settings
    blob_store: BlobStore
    fetchers: Mapping[SourceType, Fetcher] = field(default_factory=lambda: dict(DEFAULT_FETCHERS))
    acquirer: Acquirer = acquire_url
    extractor: Extractor = extract_signals
    confidence_threshold: float | None = None
    chain: bool = True
    today: Callable[[], date] = today_utc

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: Any) -> "PipelineContext":
        overrides.setdefault("blob_store", FilesystemBlobStore(settings.blob_storage_dir))
        return cls(settings=settings, **overrides)

    @property
    def signal_threshold(self) -> float:
        if self.confidence_threshold is not None:
            return self.confidence_threshold
        return self.settings.signal_confidence_threshold


def _queue(db: Session, context: PipelineContext) -> JobQueue:
    return JobQueue(db, fair=context.settings.queue_fair_claiming)


def handle_discover(db: Session, run_id: int, payload: DiscoverPayload, context: PipelineContext) -> dict:
    try:
        summary = run_discovery(
            db,
            run_id,
            payload,
            context.settings,
            fetchers=context.fetchers,
            queue=_queue(db, context),
        )
    except Exception as exc:
        db.rollback()
        mark_run_failed(db, run_id, f"Discovery failed: {exc}")
        db.commit()
        raise
    return summary.as_dict()


def handle_fetch(db: Session, run_id: int | None, payload: FetchPayload, context: PipelineContext) -> dict:
    outcome = acquire_item(
        db,
        payload.item_id,
        context.blob_store,
        context.settings.max_acquisition_attempts,
        acquirer=context.acquirer,
        run_id=run_id,
    )
    needs_extract = outcome.status == "acquired" or (
        outcome.status == "skipped" and _awaiting_extraction(db, outcome.document_id)
    )
    if context.chain and run_id is not None and outcome.document_id and needs_extract:
        _queue(db, context).enqueue(
            run_id,
            JobType.extract,
            ExtractPayload(document_id=outcome.document_id),
            dedupe_key=f"EXTRACT:{outcome.document_id}",
            priority=EXTRACT_PRIORITY,
            group_key=_group_for_item(db, payload.item_id),
        )
    return {"item_id": outcome.item_id, "status": outcome.status, "document_id": outcome.document_id, "error": outcome.error}


def _awaiting_extraction(db: Session, document_id: int | None) -> bool:
    if document_id is None:
        return False
    document = db.get(Document, document_id)
    return document is not None and document.processed_at is None


def _group_for_item(db: Session, item_id: int) -> str | None:
    item = db.get(Item, item_id)
    return str(item.source_id) if item else None


def _source_context(item: Item | None, source: Source | None) -> SourceContext:
    if source is None:
        return SourceContext(name="unknown", tier="DISCOVERY", url=item.url if item else None)
    return SourceContext(
        name=source.name,
        tier=source.tier.value,
        trust_weight=source.trust_weight,
        url=item.url if item else None,
        published_at=item.published_at.isoformat() if item and item.published_at else None,
    )


def handle_extract(db: Session, run_id: int | None, payload: ExtractPayload, context: PipelineContext) -> dict:
    document = db.get(Document, payload.document_id)
    if document is None:
        raise LookupError(f"Document {payload.document_id} not found")
    if document.processed_at is not None:
        return {"document_id": document.id, "skipped": True}

    blob = context.blob_store.get(document.clean_blob_key) if document.clean_blob_key else None
    if blob is None:
        raise FileNotFoundError(f"Content blob missing for document {document.id}")

    item = db.get(Item, document.item_id)
    source = db.get(Source, item.source_id) if item else None
    extraction, raw = asyncio.run(context.extractor(blob.decode("utf-8"), _source_context(item, source)))

    metadata = dict(document.extracted_metadata or {})
    metadata[EXTRACTION_KEY] = extraction.model_dump(mode="json")
    metadata["llm"] = {
        "provider": raw.get("provider"),
        "model": raw.get("model"),
        "prompt_version": raw.get("prompt_version"),
        "latency_ms": raw.get("latency_ms"),
        "errors": raw.get("errors") or [],
        "extracted_at": now_utc().isoformat(),
    }
    document.extracted_metadata = metadata
    db.flush()

    if context.chain and run_id is not None:
        _queue(db, context).enqueue(
            run_id,
            JobType.map,
            MapPayload(document_id=document.id),
            dedupe_key=f"MAP:{document.id}",
            priority=MAP_PRIORITY,
            group_key=str(item.source_id) if item else None,
        )
    return {"document_id": document.id, "claims": len(extraction.claims)}


def handle_map(db: Session, run_id: int | None, payload: MapPayload, context: PipelineContext) -> dict:
    outcome = map_document(
        db,
        payload.document_id,
        threshold=context.signal_threshold,
        scoring_version=context.settings.scoring_version,
    )
    if run_id is not None and not outcome.already_processed:
        increment_run_counters(db, run_id, processed=1)

    if context.chain and run_id is not None:
        target = context.today()
        _queue(db, context).enqueue(
            run_id,
            JobType.aggregate,
            AggregatePayload(date=target),
            dedupe_key=f"AGG:{target.isoformat()}:{context.settings.scoring_version}",
            priority=AGGREGATE_PRIORITY,
        )
    return {
        "document_id": outcome.document_id,
        "signals_created": outcome.signals_created,
        "claims_dropped": outcome.claims_dropped,
        "already_processed": outcome.already_processed,
    }


def aggregate_day(db: Session, snapshot_date: date) -> dict:
    """Rebuild the snapshot for one date and record any timeline events it triggers."""
    snapshot, previous = create_daily_snapshot(db, snapshot_date)
    events = detect_and_record_events(
        db,
        snapshot_date,
        snapshot.axis_scores,
        snapshot.canary_statuses,
        previous.axis_scores if previous else None,
        previous.canary_statuses if previous else None,
    )
    return {
        "date": snapshot_date.isoformat(),
        "signal_count": len(snapshot.signal_ids),
        "coverage_score": snapshot.coverage_score,
        "events_created": events,
    }


def handle_aggregate(db: Session, run_id: int | None, payload: AggregatePayload, context: PipelineContext) -> dict:
    return aggregate_day(db, payload.date)


HANDLERS = {
    JobType.discover: handle_discover,
    JobType.fetch: handle_fetch,
    JobType.extract: handle_extract,
    JobType.map: handle_map,
    JobType.aggregate: handle_aggregate,
}


def process_job(db: Session, job: Job, context: PipelineContext) -> dict:
    job_type = JobType(job.type)
    payload = parse_payload(job_type, job.payload)
    result = HANDLERS[job_type](db, job.run_id, payload, context)
    db.commit()
    return result
