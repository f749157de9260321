import logging
from datetime import datetime, timedelta
from uuid import uuid4

from sqlalchemy import or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from canarywatch.core.time import now_utc
from canarywatch.models.entities import PipelineLock, PipelineRun, PipelineRunStatus, SourceTier

logger = logging.getLogger(__name__)

PIPELINE_LOCK_NAME = "pipeline"
MAX_ERROR_LOG_LENGTH = 20_000


class RunInProgressError(RuntimeError):
    pass


class PipelineConfigError(RuntimeError):
    pass


def new_lock_token() -> str:
    return f"drain-{uuid4().hex[:16]}"


def _ensure_lock_row(db: Session, name: str) -> None:
    if db.get(PipelineLock, name) is not None:
        return
    try:
        with db.begin_nested():
            db.add(PipelineLock(name=name))
            db.flush()
    except IntegrityError:
        pass


def acquire_run_lock(
    db: Session,
    holder: str,
    stale_minutes: int,
    name: str = PIPELINE_LOCK_NAME,
    now: datetime | None = None,
) -> bool:
    """Compare-and-swap the singleton lock row; a lease older than ``stale_minutes`` can be taken over."""
    now = now or now_utc()
    _ensure_lock_row(db, name)
    cutoff = now - timedelta(minutes=stale_minutes)
    result = db.execute(
        update(PipelineLock)
        .where(
            PipelineLock.name == name,
            or_(PipelineLock.holder.is_(None), PipelineLock.acquired_at < cutoff),
        )
        .values(holder=holder, acquired_at=now)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def release_run_lock(db: Session, holder: str, name: str = PIPELINE_LOCK_NAME) -> bool:
    result = db.execute(
        update(PipelineLock)
        .where(PipelineLock.name == name, PipelineLock.holder == holder)
        .values(holder=None, acquired_at=None)
        .execution_options(synchronize_session=False)
    )
    db.commit()
    return result.rowcount == 1


def fail_orphaned_runs(db: Session, now: datetime | None = None) -> int:
    """Runs still marked running when the lock is free belong to a dead coordinator."""
    now = now or now_utc()
    orphans = db.query(PipelineRun).filter(PipelineRun.status == PipelineRunStatus.running).all()
    for run in orphans:
        run.status = PipelineRunStatus.failed
        run.completed_at = now
        append_run_error(run, "Run abandoned; lock taken over by a new coordinator")
        logger.warning("Marked orphaned pipeline run %s as failed", run.id)
    return len(orphans)


def start_run(
    db: Session,
    holder: str,
    stale_minutes: int,
    scoring_version: str | None = None,
    now: datetime | None = None,
) -> PipelineRun:
    now = now or now_utc()
    if not acquire_run_lock(db, holder, stale_minutes, now=now):
        raise RunInProgressError("A pipeline run is already in progress")

    fail_orphaned_runs(db, now=now)
    run = PipelineRun(
        started_at=now,
        status=PipelineRunStatus.running,
        scoring_version=scoring_version,
    )
    db.add(run)
    db.commit()
    logger.info("Started pipeline run %s", run.id, extra={"run_id": run.id})
    return run


def finish_run(db: Session, run_id: int, error: str | None = None, now: datetime | None = None) -> PipelineRun:
    now = now or now_utc()
    run = db.get(PipelineRun, run_id, populate_existing=True)
    if run is None:
        raise LookupError(f"Pipeline run {run_id} not found")
    if error:
        append_run_error(run, error)
    if run.status == PipelineRunStatus.running:
        run.status = PipelineRunStatus.failed if error else PipelineRunStatus.completed
        run.completed_at = now
    db.commit()
    return run


def mark_run_failed(db: Session, run_id: int, error: str, now: datetime | None = None) -> None:
    run = db.get(PipelineRun, run_id)
    if run is None:
        return
    run.status = PipelineRunStatus.failed
    run.completed_at = now or now_utc()
    append_run_error(run, error)


def append_run_error(run: PipelineRun, message: str) -> None:
    combined = f"{run.error_log}\n{message}" if run.error_log else message
    run.error_log = combined[-MAX_ERROR_LOG_LENGTH:]


def increment_run_counters(
    db: Session, run_id: int, discovered: int = 0, processed: int = 0, failed: int = 0
) -> None:
    if not (discovered or processed or failed):
        return
    db.execute(
        update(PipelineRun)
        .where(PipelineRun.id == run_id)
        .values(
            items_discovered=PipelineRun.items_discovered + discovered,
            items_processed=PipelineRun.items_processed + processed,
            items_failed=PipelineRun.items_failed + failed,
        )
        .execution_options(synchronize_session=False)
    )


def validate_source_groups(groups: list[str] | None) -> list[str]:
    if not groups:
        raise PipelineConfigError("No source groups configured for discovery")
    unknown = [group for group in groups if group not in SourceTier.__members__]
    if unknown:
        raise PipelineConfigError(f"Unknown source groups: {', '.join(unknown)}")
    return list(groups)


def run_lock_holder(
    db: Session, stale_minutes: int, name: str = PIPELINE_LOCK_NAME, now: datetime | None = None
) -> str | None:
    """Current lock holder, ignoring leases older than ``stale_minutes``."""
    now = now or now_utc()
    lock = db.get(PipelineLock, name)
    if lock is None or lock.holder is None or lock.acquired_at is None:
        return None
    if lock.acquired_at < now - timedelta(minutes=stale_minutes):
        return None
    return lock.holder
