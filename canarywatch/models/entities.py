from __future__ import annotations

from datetime import date as dt_date
from datetime import datetime
from enum import Enum

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    Date,
    DateTime,
    Enum as SAEnum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from canarywatch.core.time import now_utc
from canarywatch.db.base import Base

# SQLite only autoincrements INTEGER PRIMARY KEY.
BigIntPK = BigInteger().with_variant(Integer, "sqlite")


class SourceTier(str, Enum):
    TIER_0 = "TIER_0"
    TIER_1 = "TIER_1"
    DISCOVERY = "DISCOVERY"


class SourceType(str, Enum):
    rss = "rss"
    search = "search"
    curated = "curated"
    api = "api"
    x = "x"


class PipelineRunStatus(str, Enum):
    running = "running"
    completed = "completed"
    failed = "failed"


class ItemStatus(str, Enum):
    pending = "pending"
    acquired = "acquired"
    processed = "processed"
    failed = "failed"


class JobType(str, Enum):
    discover = "discover"
    fetch = "fetch"
    extract = "extract"
    map = "map"
    aggregate = "aggregate"


class JobStatus(str, Enum):
    pending = "pending"
    running = "running"
    retry = "retry"
    done = "done"
    dead = "dead"


CLAIMABLE_STATUSES = (JobStatus.pending, JobStatus.retry)
ACTIVE_STATUSES = (JobStatus.pending, JobStatus.running, JobStatus.retry)
TERMINAL_STATUSES = (JobStatus.done, JobStatus.dead)


class Source(Base):
    __tablename__ = "sources"
    __table_args__ = (Index("ix_sources_active_tier", "is_active", "tier"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(512), unique=True, nullable=False)
    url: Mapped[str] = mapped_column(String(2048), nullable=False)
    tier: Mapped[SourceTier] = mapped_column(SAEnum(SourceTier), nullable=False)
    trust_weight: Mapped[float] = mapped_column(Float, default=1.0, nullable=False)
    source_type: Mapped[SourceType] = mapped_column(SAEnum(SourceType), nullable=False)
    query_config: Mapped[dict | None] = mapped_column(JSON)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_success_at: Mapped[datetime | None] = mapped_column(DateTime)
    error_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=now_utc, onupdate=now_utc, nullable=False
    )


class PipelineRun(Base):
    __tablename__ = "pipeline_runs"
    __table_args__ = (Index("ix_pipeline_runs_status_started", "status", "started_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    started_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime)
    status: Mapped[PipelineRunStatus] = mapped_column(
        SAEnum(PipelineRunStatus), default=PipelineRunStatus.running, nullable=False
    )
    items_discovered: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    items_processed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    items_failed: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_log: Mapped[str | None] = mapped_column(Text)
    scoring_version: Mapped[str | None] = mapped_column(String(64))


class PipelineLock(Base):
    __tablename__ = "pipeline_locks"

    name: Mapped[str] = mapped_column(String(64), primary_key=True)
    holder: Mapped[str | None] = mapped_column(String(128))
    acquired_at: Mapped[datetime | None] = mapped_column(DateTime)


class SourceFetchLog(Base):
    __tablename__ = "source_fetch_logs"
    __table_args__ = (Index("ix_source_fetch_logs_run_source", "run_id", "source_id"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    run_id: Mapped[int] = mapped_column(ForeignKey("pipeline_runs.id"), nullable=False)
    source_id: Mapped[int] = mapped_column(ForeignKey("sources.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(16), nullable=False)
    items_found: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    error_message: Mapped[str | None] = mapped_column(Text)
    fetched_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc, nullable=False)


class Item(Base):
    __tablename__ = "items"
    __table_args__ = (
        Index("ix_items_url_hash_discovered", "url_hash", "discovered_at"),
        Index("ix_items_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    run_id: Mapped[int] = mapped_column(ForeignKey("pipeline_runs.id"), nullable=False)
    source_id: Mapped[int] = mapped_column(ForeignKey("sources.id"), nullable=False)
    url: Mapped[str] = mapped_column(String(2048), unique=True, nullable=False)
    url_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    title: Mapped[str | None] = mapped_column(String(1024))
    published_at: Mapped[datetime | None] = mapped_column(DateTime)
    discovered_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc, nullable=False)
    status: Mapped[ItemStatus] = mapped_column(
        SAEnum(ItemStatus), default=ItemStatus.pending, nullable=False
    )
    acquisition_attempt_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    acquisition_error: Mapped[str | None] = mapped_column(Text)

    source: Mapped[Source] = relationship()


class Document(Base):
    __tablename__ = "documents"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    item_id: Mapped[int] = mapped_column(ForeignKey("items.id"), index=True, nullable=False)
    clean_blob_key: Mapped[str | None] = mapped_column(String(512))
    extracted_metadata: Mapped[dict | None] = mapped_column(JSON)
    word_count: Mapped[int | None] = mapped_column(Integer)
    acquired_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc, nullable=False)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime)

    item: Mapped[Item] = relationship()


class Signal(Base):
    __tablename__ = "signals"
    __table_args__ = (Index("ix_signals_created_at", "created_at"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    document_id: Mapped[int] = mapped_column(ForeignKey("documents.id"), index=True, nullable=False)
    claim_summary: Mapped[str] = mapped_column(Text, nullable=False)
    classification: Mapped[str | None] = mapped_column(String(64))
    axes_impacted: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    metric: Mapped[dict | None] = mapped_column(JSON)
    confidence: Mapped[float] = mapped_column(Float, nullable=False)
    citations: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    source_url: Mapped[str | None] = mapped_column(String(2048))
    scoring_version: Mapped[str] = mapped_column(String(64), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc, nullable=False)

    document: Mapped[Document] = relationship()


class DailySnapshot(Base):
    __tablename__ = "daily_snapshots"
    __table_args__ = (UniqueConstraint("date", name="uq_daily_snapshots_date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    date: Mapped[dt_date] = mapped_column(Date, nullable=False)
    axis_scores: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    canary_statuses: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    coverage_score: Mapped[float | None] = mapped_column(Float)
    signal_ids: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    notes: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=now_utc, onupdate=now_utc, nullable=False
    )


class CanaryDefinition(Base):
    __tablename__ = "canary_definitions"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    name: Mapped[str] = mapped_column(String(256), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    axes_watched: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    thresholds: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class TimelineEvent(Base):
    __tablename__ = "timeline_events"
    __table_args__ = (UniqueConstraint("date", "title", name="uq_timeline_events_date_title"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    date: Mapped[dt_date] = mapped_column(Date, index=True, nullable=False)
    title: Mapped[str] = mapped_column(String(512), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    event_type: Mapped[str] = mapped_column(String(32), default="reality", nullable=False)
    category: Mapped[str] = mapped_column(String(128), nullable=False)
    source_url: Mapped[str | None] = mapped_column(String(2048))
    axes_impacted: Mapped[list] = mapped_column(JSON, default=list, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc, nullable=False)


class Job(Base):
    __tablename__ = "jobs"
    __table_args__ = (
        Index("ix_jobs_claim", "status", "available_at", "priority", "id"),
        Index("ix_jobs_type", "type"),
        Index("ix_jobs_run_id", "run_id"),
        Index(
            "uq_jobs_active_dedupe",
            "run_id",
            "type",
            "dedupe_key",
            unique=True,
            postgresql_where=text(
                "dedupe_key IS NOT NULL AND status IN ('pending', 'running', 'retry')"
            ),
            sqlite_where=text(
                "dedupe_key IS NOT NULL AND status IN ('pending', 'running', 'retry')"
            ),
        ),
    )

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    run_id: Mapped[int] = mapped_column(ForeignKey("pipeline_runs.id"), nullable=False)
    type: Mapped[JobType] = mapped_column(SAEnum(JobType), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    status: Mapped[JobStatus] = mapped_column(
        SAEnum(JobStatus), default=JobStatus.pending, nullable=False
    )
    priority: Mapped[int] = mapped_column(Integer, default=100, nullable=False)
    attempts: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    max_attempts: Mapped[int] = mapped_column(Integer, default=5, nullable=False)
    available_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc, nullable=False)
    locked_at: Mapped[datetime | None] = mapped_column(DateTime)
    locked_by: Mapped[str | None] = mapped_column(String(128))
    last_error: Mapped[str | None] = mapped_column(Text)
    dedupe_key: Mapped[str | None] = mapped_column(String(255))
    group_key: Mapped[str | None] = mapped_column(String(64))
    result: Mapped[dict | None] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=now_utc, onupdate=now_utc, nullable=False
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    actor: Mapped[str] = mapped_column(String(128), nullable=False)
    action: Mapped[str] = mapped_column(String(128), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(64), nullable=False)
    payload_json: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc, nullable=False)


class IdempotencyKey(Base):
    __tablename__ = "idempotency_keys"
    __table_args__ = (
        UniqueConstraint("key", "endpoint", name="uq_idempotency_key_endpoint"),
        Index("ix_idempotency_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    key: Mapped[str] = mapped_column(String(255), nullable=False)
    endpoint: Mapped[str] = mapped_column(String(255), nullable=False)
    request_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    response_json: Mapped[dict] = mapped_column(JSON, default=dict)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=now_utc, nullable=False)
