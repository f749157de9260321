from datetime import date

from celery.utils.log import get_task_logger
from sqlalchemy.orm import Session

from canarywatch.core.config import get_settings
from canarywatch.core.observability import TASK_COUNT
from canarywatch.db.session import get_session_maker
from canarywatch.pipeline.drain import drain_pipeline as run_drain
from canarywatch.pipeline.drain import process_ready_jobs
from canarywatch.pipeline.stages import PipelineContext, aggregate_day
from canarywatch.services.idempotency import cleanup_expired_keys
from canarywatch.services.runs import PipelineConfigError, RunInProgressError
from canarywatch.tasks.celery_app import celery_app

logger = get_task_logger(__name__)


def _db() -> Session:
    return get_session_maker()()


@celery_app.task(name="canarywatch.tasks.jobs.cleanup_idempotency")
def cleanup_idempotency() -> dict:
    db = _db()
    try:
        removed = cleanup_expired_keys(db)
        db.commit()
        TASK_COUNT.labels("cleanup_idempotency", "success").inc()
        return {"deleted": removed}
    except Exception:  # noqa: BLE001
        db.rollback()
        TASK_COUNT.labels("cleanup_idempotency", "failure").inc()
        raise
    finally:
        db.close()


@celery_app.task(name="canarywatch.tasks.jobs.drain_pipeline")
def drain_pipeline(source_groups: list[str] | None = None, time_budget_seconds: int | None = None) -> dict:
    context = PipelineContext.from_settings(get_settings())
    try:
        result = run_drain(
            get_session_maker(),
            context,
            source_groups=source_groups,
            time_budget_seconds=time_budget_seconds,
        )
    except RunInProgressError as exc:
        logger.warning("Skipping scheduled drain: %s", exc)
        TASK_COUNT.labels("drain_pipeline", "skipped").inc()
        return {"skipped": True, "reason": str(exc)}
    except PipelineConfigError:
        logger.exception("Pipeline misconfigured")
        TASK_COUNT.labels("drain_pipeline", "failure").inc()
        raise
    except Exception:  # noqa: BLE001
        logger.exception("Pipeline drain failed")
        TASK_COUNT.labels("drain_pipeline", "failure").inc()
        raise
    TASK_COUNT.labels("drain_pipeline", "success").inc()
    return result.model_dump()


@celery_app.task(name="canarywatch.tasks.jobs.process_queue")
def process_queue(time_budget_seconds: int | None = None) -> dict:
    context = PipelineContext.from_settings(get_settings())
    try:
        result = process_ready_jobs(get_session_maker(), context, time_budget_seconds=time_budget_seconds)
    except Exception:  # noqa: BLE001
        logger.exception("Queue worker pass failed")
        TASK_COUNT.labels("process_queue", "failure").inc()
        raise
    TASK_COUNT.labels("process_queue", "success").inc()
    return result.model_dump()


@celery_app.task(name="canarywatch.tasks.jobs.rebuild_snapshot")
def rebuild_snapshot(snapshot_date: str) -> dict:
    target = date.fromisoformat(snapshot_date)
    db = _db()
    try:
        summary = aggregate_day(db, target)
        db.commit()
        TASK_COUNT.labels("rebuild_snapshot", "success").inc()
        return summary
    except Exception:  # noqa: BLE001
        db.rollback()
        logger.exception("Snapshot rebuild failed for %s", snapshot_date)
        TASK_COUNT.labels("rebuild_snapshot", "failure").inc()
        raise
    finally:
        db.close()
