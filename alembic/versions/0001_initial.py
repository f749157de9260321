"""initial schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19
"""

from alembic import op
import sqlalchemy as sa

revision = "0001_initial"
down_revision = None
branch_labels = None
depends_on = None

ACTIVE_DEDUPE_WHERE = "dedupe_key IS NOT NULL AND status IN ('pending', 'running', 'retry')"


def upgrade() -> None:
    bind = op.get_bind()

    source_tier = sa.Enum("TIER_0", "TIER_1", "DISCOVERY", name="sourcetier")
    source_type = sa.Enum("rss", "search", "curated", "api", "x", name="sourcetype")
    run_status = sa.Enum("running", "completed", "failed", name="pipelinerunstatus")
    item_status = sa.Enum("pending", "acquired", "processed", "failed", name="itemstatus")
    job_type = sa.Enum("discover", "fetch", "extract", "map", "aggregate", name="jobtype")
    job_status = sa.Enum("pending", "running", "retry", "done", "dead", name="jobstatus")

    for enum_type in (source_tier, source_type, run_status, item_status, job_type, job_status):
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "sources",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("name", sa.String(length=512), nullable=False, unique=True),
        sa.Column("url", sa.String(length=2048), nullable=False),
        sa.Column("tier", source_tier, nullable=False),
        sa.Column("trust_weight", sa.Float(), nullable=False, server_default="1.0"),
        sa.Column("source_type", source_type, nullable=False),
        sa.Column("query_config", sa.JSON(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("last_success_at", sa.DateTime(), nullable=True),
        sa.Column("error_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_sources_active_tier", "sources", ["is_active", "tier"])

    op.create_table(
        "pipeline_runs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("started_at", sa.DateTime(), nullable=False),
        sa.Column("completed_at", sa.DateTime(), nullable=True),
        sa.Column("status", run_status, nullable=False, server_default="running"),
        sa.Column("items_discovered", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("items_processed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("items_failed", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_log", sa.Text(), nullable=True),
        sa.Column("scoring_version", sa.String(length=64), nullable=True),
    )
    op.create_index("ix_pipeline_runs_status_started", "pipeline_runs", ["status", "started_at"])

    op.create_table(
        "pipeline_locks",
        sa.Column("name", sa.String(length=64), primary_key=True),
        sa.Column("holder", sa.String(length=128), nullable=True),
        sa.Column("acquired_at", sa.DateTime(), nullable=True),
    )

    op.create_table(
        "source_fetch_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("run_id", sa.Integer(), sa.ForeignKey("pipeline_runs.id"), nullable=False),
        sa.Column("source_id", sa.Integer(), sa.ForeignKey("sources.id"), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False),
        sa.Column("items_found", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("fetched_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_source_fetch_logs_run_source", "source_fetch_logs", ["run_id", "source_id"])

    op.create_table(
        "items",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("run_id", sa.Integer(), sa.ForeignKey("pipeline_runs.id"), nullable=False),
        sa.Column("source_id", sa.Integer(), sa.ForeignKey("sources.id"), nullable=False),
        sa.Column("url", sa.String(length=2048), nullable=False, unique=True),
        sa.Column("url_hash", sa.String(length=64), nullable=False),
        sa.Column("title", sa.String(length=1024), nullable=True),
        sa.Column("published_at", sa.DateTime(), nullable=True),
        sa.Column("discovered_at", sa.DateTime(), nullable=False),
        sa.Column("status", item_status, nullable=False, server_default="pending"),
        sa.Column("acquisition_attempt_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("acquisition_error", sa.Text(), nullable=True),
    )
    op.create_index("ix_items_url_hash_discovered", "items", ["url_hash", "discovered_at"])
    op.create_index("ix_items_status", "items", ["status"])

    op.create_table(
        "documents",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("item_id", sa.Integer(), sa.ForeignKey("items.id"), nullable=False),
        sa.Column("clean_blob_key", sa.String(length=512), nullable=True),
        sa.Column("extracted_metadata", sa.JSON(), nullable=True),
        sa.Column("word_count", sa.Integer(), nullable=True),
        sa.Column("acquired_at", sa.DateTime(), nullable=False),
        sa.Column("processed_at", sa.DateTime(), nullable=True),
    )
    op.create_index("ix_documents_item_id", "documents", ["item_id"])

    op.create_table(
        "signals",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("document_id", sa.Integer(), sa.ForeignKey("documents.id"), nullable=False),
        sa.Column("claim_summary", sa.Text(), nullable=False),
        sa.Column("classification", sa.String(length=64), nullable=True),
        sa.Column("axes_impacted", sa.JSON(), nullable=False),
        sa.Column("metric", sa.JSON(), nullable=True),
        sa.Column("confidence", sa.Float(), nullable=False),
        sa.Column("citations", sa.JSON(), nullable=False),
        sa.Column("source_url", sa.String(length=2048), nullable=True),
        sa.Column("scoring_version", sa.String(length=64), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_signals_document_id", "signals", ["document_id"])
    op.create_index("ix_signals_created_at", "signals", ["created_at"])

    op.create_table(
        "daily_snapshots",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("axis_scores", sa.JSON(), nullable=False),
        sa.Column("canary_statuses", sa.JSON(), nullable=False),
        sa.Column("coverage_score", sa.Float(), nullable=True),
        sa.Column("signal_ids", sa.JSON(), nullable=False),
        sa.Column("notes", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("date", name="uq_daily_snapshots_date"),
    )

    op.create_table(
        "canary_definitions",
        sa.Column("id", sa.String(length=64), primary_key=True),
        sa.Column("name", sa.String(length=256), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("axes_watched", sa.JSON(), nullable=False),
        sa.Column("thresholds", sa.JSON(), nullable=False),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
    )

    op.create_table(
        "timeline_events",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("date", sa.Date(), nullable=False),
        sa.Column("title", sa.String(length=512), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("event_type", sa.String(length=32), nullable=False, server_default="reality"),
        sa.Column("category", sa.String(length=128), nullable=False),
        sa.Column("source_url", sa.String(length=2048), nullable=True),
        sa.Column("axes_impacted", sa.JSON(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("date", "title", name="uq_timeline_events_date_title"),
    )
    op.create_index("ix_timeline_events_date", "timeline_events", ["date"])

    op.create_table(
        "jobs",
        sa.Column("id", sa.BigInteger(), primary_key=True, autoincrement=True),
        sa.Column("run_id", sa.Integer(), sa.ForeignKey("pipeline_runs.id"), nullable=False),
        sa.Column("type", job_type, nullable=False),
        sa.Column("payload", sa.JSON(), nullable=False),
        sa.Column("status", job_status, nullable=False, server_default="pending"),
        sa.Column("priority", sa.Integer(), nullable=False, server_default="100"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("max_attempts", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("available_at", sa.DateTime(), nullable=False),
        sa.Column("locked_at", sa.DateTime(), nullable=True),
        sa.Column("locked_by", sa.String(length=128), nullable=True),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("dedupe_key", sa.String(length=255), nullable=True),
        sa.Column("group_key", sa.String(length=64), nullable=True),
        sa.Column("result", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
    )
    op.create_index("ix_jobs_claim", "jobs", ["status", "available_at", "priority", "id"])
    op.create_index("ix_jobs_type", "jobs", ["type"])
    op.create_index("ix_jobs_run_id", "jobs", ["run_id"])
    op.create_index(
        "uq_jobs_active_dedupe",
        "jobs",
        ["run_id", "type", "dedupe_key"],
        unique=True,
        postgresql_where=sa.text(ACTIVE_DEDUPE_WHERE),
        sqlite_where=sa.text(ACTIVE_DEDUPE_WHERE),
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("actor", sa.String(length=128), nullable=False),
        sa.Column("action", sa.String(length=128), nullable=False),
        sa.Column("entity_type", sa.String(length=64), nullable=False),
        sa.Column("entity_id", sa.String(length=64), nullable=False),
        sa.Column("payload_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
    )

    op.create_table(
        "idempotency_keys",
        sa.Column("id", sa.Integer(), primary_key=True),
        sa.Column("key", sa.String(length=255), nullable=False),
        sa.Column("endpoint", sa.String(length=255), nullable=False),
        sa.Column("request_hash", sa.String(length=64), nullable=False),
        sa.Column("response_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.UniqueConstraint("key", "endpoint", name="uq_idempotency_key_endpoint"),
    )
    op.create_index("ix_idempotency_created_at", "idempotency_keys", ["created_at"])


def downgrade() -> None:
    op.drop_index("ix_idempotency_created_at", table_name="idempotency_keys")
    op.drop_table("idempotency_keys")
    op.drop_table("audit_logs")
    op.drop_index("uq_jobs_active_dedupe", table_name="jobs")
    op.drop_index("ix_jobs_run_id", table_name="jobs")
    op.drop_index("ix_jobs_type", table_name="jobs")
    op.drop_index("ix_jobs_claim", table_name="jobs")
    op.drop_table("jobs")
    op.drop_index("ix_timeline_events_date", table_name="timeline_events")
    op.drop_table("timeline_events")
    op.drop_table("canary_definitions")
    op.drop_table("daily_snapshots")
    op.drop_index("ix_signals_created_at", table_name="signals")
    op.drop_index("ix_signals_document_id", table_name="signals")
    op.drop_table("signals")
    op.drop_index("ix_documents_item_id", table_name="documents")
    op.drop_table("documents")
    op.drop_index("ix_items_status", table_name="items")
    op.drop_index("ix_items_url_hash_discovered", table_name="items")
    op.drop_table("items")
    op.drop_index("ix_source_fetch_logs_run_source", table_name="source_fetch_logs")
    op.drop_table("source_fetch_logs")
    op.drop_table("pipeline_locks")
    op.drop_index("ix_pipeline_runs_status_started", table_name="pipeline_runs")
    op.drop_table("pipeline_runs")
    op.drop_index("ix_sources_active_tier", table_name="sources")
    op.drop_table("sources")

    bind = op.get_bind()
    for name in ("jobstatus", "jobtype", "itemstatus", "pipelinerunstatus", "sourcetype", "sourcetier"):
        sa.Enum(name=name).drop(bind, checkfirst=True)
