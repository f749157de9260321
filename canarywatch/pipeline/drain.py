import logging
import os
import socket
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from uuid import uuid4

from canarywatch.core.config import Settings
from canarywatch.core.observability import JOB_COUNT, JOB_LATENCY
from canarywatch.db.session import SessionFactory
from canarywatch.models.entities import Job, JobType
from canarywatch.pipeline.stages import DISCOVER_PRIORITY, PipelineContext, process_job
from canarywatch.schemas.common import DrainResult
from canarywatch.schemas.payloads import DiscoverPayload
from canarywatch.services.queue import JobNotFoundError, JobQueue, LeaseLostError
from canarywatch.services.runs import (
    finish_run,
    new_lock_token,
    release_run_lock,
    start_run,
    validate_source_groups,
)
from canarywatch.state_machine.job_status import InvalidJobTransition

logger = logging.getLogger(__name__)

MAX_REPORTED_ERRORS = 20


@dataclass
class JobOutcome:
    job_id: int
    job_type: str
    ok: bool
    error: str | None = None


def new_worker_id() -> str:
    return f"{socket.gethostname()}:{os.getpid()}:{uuid4().hex[:8]}"


def execute_job(
    session_factory: SessionFactory, job_id: int, context: PipelineContext, worker_id: str | None = None
) -> JobOutcome:
    """Run one claimed job in its own session and record done/failed on the queue."""
    db = session_factory()
    queue = JobQueue(db)
    job_type = "unknown"
    started = time.perf_counter()
    try:
        job = db.get(Job, job_id)
        if job is None:
            return JobOutcome(job_id=job_id, job_type=job_type, ok=False, error="job vanished")
        job_type = JobType(job.type).value
        try:
            result = process_job(db, job, context)
        except Exception as exc:  # noqa: BLE001
            db.rollback()
            error = f"{exc.__class__.__name__}: {exc}"
            logger.exception("Job %s (%s) failed", job_id, job_type, extra={"job_id": job_id, "run_id": job.run_id})
            try:
                queue.mark_failed(job_id, error, worker_id=worker_id)
            except (InvalidJobTransition, JobNotFoundError, LeaseLostError):
                db.rollback()
                logger.warning("Job %s lost its lease before failure could be recorded", job_id)
            JOB_COUNT.labels(job_type, "failed").inc()
            return JobOutcome(job_id=job_id, job_type=job_type, ok=False, error=error)

        try:
            queue.mark_done(job_id, result=result, worker_id=worker_id)
        except (InvalidJobTransition, JobNotFoundError, LeaseLostError):
            db.rollback()
            logger.warning("Job %s lost its lease before completion could be recorded", job_id)
        JOB_COUNT.labels(job_type, "done").inc()
        return JobOutcome(job_id=job_id, job_type=job_type, ok=True)
    finally:
        JOB_LATENCY.labels(job_type).observe(time.perf_counter() - started)
        db.close()


def _drain_loop(
    session_factory: SessionFactory,
    context: PipelineContext,
    deadline: float,
    result: DrainResult,
    clock: Callable[[], float],
    sleep: Callable[[float], None],
) -> None:
    settings = context.settings
    db = session_factory()
    queue = JobQueue(db, fair=settings.queue_fair_claiming)
    executor = (
        ThreadPoolExecutor(max_workers=settings.pipeline_job_concurrency, thread_name_prefix="canarywatch-job")
        if settings.pipeline_job_concurrency > 1
        else None
    )
    try:
        while clock() < deadline:
            queue.release_stale_locks(settings.pipeline_stale_lock_minutes)
            worker_id = new_worker_id()
            batch = queue.claim_batch(settings.pipeline_batch_size, worker_id)
            if not batch:
                if queue.count_ready() == 0:
                    break
                sleep(settings.pipeline_idle_backoff_seconds)
                continue

            job_ids = [job.id for job in batch]
            if executor is None:
                outcomes = [execute_job(session_factory, job_id, context, worker_id) for job_id in job_ids]
            else:
                outcomes = list(
                    executor.map(lambda job_id: execute_job(session_factory, job_id, context, worker_id), job_ids)
                )

            for outcome in outcomes:
                if outcome.ok:
                    result.jobs_done += 1
                    continue
                result.jobs_failed += 1
                if len(result.errors) < MAX_REPORTED_ERRORS:
                    result.errors.append(f"job {outcome.job_id} ({outcome.job_type}): {outcome.error}")
            logger.info(
                "Batch finished: %s jobs, %s done, %s failed so far",
                len(outcomes),
                result.jobs_done,
                result.jobs_failed,
                extra={"run_id": result.run_id},
            )
        else:
            logger.info("Time budget exhausted; leaving remaining jobs queued", extra={"run_id": result.run_id})
    finally:
        if executor is not None:
            executor.shutdown(wait=True)
        db.close()


def drain_pipeline(
    session_factory: SessionFactory,
    context: PipelineContext,
    source_groups: list[str] | None = None,
    time_budget_seconds: float | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> DrainResult:
    """Start a run, seed its discover job and process the queue until empty or out of time.

    Raises ``RunInProgressError`` without touching the queue when another run
    holds the pipeline lock.
    """
    settings: Settings = context.settings
    groups = validate_source_groups(source_groups or settings.source_group_list)
    budget = time_budget_seconds or settings.pipeline_time_budget_seconds
    started = clock()

    token = new_lock_token()
    db = session_factory()
    try:
        run = start_run(db, token, settings.run_lock_stale_minutes, scoring_version=settings.scoring_version)
        run_id = run.id
        JobQueue(db).enqueue(
            run_id,
            JobType.discover,
            DiscoverPayload(source_groups=groups),
            dedupe_key=f"DISCOVER:{run_id}",
            priority=DISCOVER_PRIORITY,
        )
        db.commit()

        result = DrainResult(run_id=run_id)
        error: str | None = None
        try:
            _drain_loop(session_factory, context, started + budget, result, clock, sleep)
        except Exception as exc:
            error = f"Drain loop aborted: {exc}"
            logger.exception("Drain loop aborted", extra={"run_id": run_id})
            raise
        finally:
            db.rollback()
            run = finish_run(db, run_id, error=error)
            release_run_lock(db, token)
            result.items_discovered = run.items_discovered
            result.items_processed = run.items_processed
            result.items_failed = run.items_failed
            result.duration_ms = int((clock() - started) * 1000)
    finally:
        db.close()

    logger.info(
        "Pipeline run %s finished: discovered=%s processed=%s failed=%s jobs_done=%s jobs_failed=%s",
        result.run_id,
        result.items_discovered,
        result.items_processed,
        result.items_failed,
        result.jobs_done,
        result.jobs_failed,
        extra={"run_id": result.run_id},
    )
    return result


def process_ready_jobs(
    session_factory: SessionFactory,
    context: PipelineContext,
    time_budget_seconds: float | None = None,
    clock: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
) -> DrainResult:
    """Worker mode: drain whatever is ready without starting a new run."""
    budget = time_budget_seconds or context.settings.pipeline_time_budget_seconds
    started = clock()
    result = DrainResult()
    _drain_loop(session_factory, context, started + budget, result, clock, sleep)
    result.duration_ms = int((clock() - started) * 1000)
    return result
