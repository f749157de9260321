"""Durable job queue backed by the ``jobs`` table.

Claiming is the only synchronisation point between workers. Candidates are
read with ``FOR UPDATE SKIP LOCKED`` and every candidate is then moved to
``running`` by a conditional UPDATE that only matches claimable rows, so two
claimers never both win the same job even on engines without row locks.

``enqueue`` joins the caller's transaction so a stage can insert its rows and
its follow-up job atomically. The lease transitions (claim, done, failed,
stale release, requeue) commit on their own.
"""

import logging
from datetime import datetime, timedelta

from pydantic import BaseModel
from sqlalchemy import and_, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from canarywatch.core.time import now_utc
from canarywatch.models.entities import (
    ACTIVE_STATUSES,
    CLAIMABLE_STATUSES,
    Job,
    JobStatus,
    JobType,
)
from canarywatch.state_machine.job_status import InvalidJobTransition, enforce_transition

logger = logging.getLogger(__name__)

BACKOFF_SECONDS = (60, 300, 900, 3600, 21600)
MAX_ERROR_LENGTH = 4096
FAIR_POOL_MIN = 75


class JobNotFoundError(LookupError):
    pass


class LeaseLostError(RuntimeError):
    """The job is no longer leased to the worker trying to finish it."""


def backoff_seconds(attempt: int) -> int:
    index = min(max(attempt, 1), len(BACKOFF_SECONDS)) - 1
    return BACKOFF_SECONDS[index]


class JobQueue:
    def __init__(self, db: Session, fair: bool = False):
        self.db = db
        self.fair = fair

    def enqueue(
        self,
        run_id: int,
        job_type: JobType,
        payload: BaseModel | dict,
        dedupe_key: str | None = None,
        priority: int = 100,
        max_attempts: int = 5,
        group_key: str | None = None,
        now: datetime | None = None,
    ) -> Job | None:
        """Insert a pending job, or return None when an active duplicate exists."""
        now = now or now_utc()
        if isinstance(payload, BaseModel):
            payload = payload.model_dump(mode="json")

        if dedupe_key is not None:
            existing = (
                self.db.query(Job.id)
                .filter(
                    Job.run_id == run_id,
                    Job.type == job_type,
                    Job.dedupe_key == dedupe_key,
                    Job.status.in_(ACTIVE_STATUSES),
                )
                .first()
            )
            if existing:
                logger.debug("Skipping duplicate %s job %s for run %s", job_type, dedupe_key, run_id)
                return None

        job = Job(
            run_id=run_id,
            type=job_type,
            payload=payload,
            status=JobStatus.pending,
            priority=priority,
            attempts=0,
            max_attempts=max_attempts,
            available_at=now,
            dedupe_key=dedupe_key,
            group_key=group_key,
            created_at=now,
            updated_at=now,
        )
        try:
            with self.db.begin_nested():
                self.db.add(job)
                self.db.flush()
        except IntegrityError:
            # Lost the race against a concurrent enqueue of the same key.
            logger.debug("Concurrent duplicate %s job %s for run %s", job_type, dedupe_key, run_id)
            return None
        return job

    def claim_batch(self, limit: int, worker_id: str, now: datetime | None = None) -> list[Job]:
        now = now or now_utc()
        if limit < 1:
            return []

        claimed: list[int] = []
        for job_id in self._select_candidates(limit, now):
            if len(claimed) >= limit:
                break
            result = self.db.execute(
                update(Job)
                .where(
                    Job.id == job_id,
                    Job.status.in_(CLAIMABLE_STATUSES),
                    Job.available_at <= now,
                )
                .values(
                    status=JobStatus.running,
                    locked_by=worker_id,
                    locked_at=now,
                    updated_at=now,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                claimed.append(job_id)
        self.db.commit()

        if not claimed:
            return []
        position = {job_id: index for index, job_id in enumerate(claimed)}
        jobs = self.db.query(Job).filter(Job.id.in_(claimed)).populate_existing().all()
        return sorted(jobs, key=lambda job: position[job.id])

    def _select_candidates(self, limit: int, now: datetime) -> list[int]:
        claimable = and_(Job.status.in_(CLAIMABLE_STATUSES), Job.available_at <= now)
        if not self.fair:
            stmt = (
                select(Job.id)
                .where(claimable)
                .order_by(Job.priority.asc(), Job.id.asc())
                .limit(limit)
                .with_for_update(skip_locked=True)
            )
            return list(self.db.scalars(stmt))

        stmt = (
            select(Job.id, Job.priority, Job.group_key)
            .where(claimable)
            .order_by(Job.priority.asc(), Job.id.asc())
            .limit(max(limit * 3, FAIR_POOL_MIN))
            .with_for_update(skip_locked=True)
        )
        ranks: dict[str, int] = {}
        ranked: list[tuple[int, int, int]] = []
        for job_id, priority, group_key in self.db.execute(stmt):
            group = group_key or f"job:{job_id}"
            ranks[group] = ranks.get(group, 0) + 1
            ranked.append((ranks[group], priority, job_id))
        ranked.sort()
        return [job_id for _, _, job_id in ranked[:limit]]

    def _check_lease(self, job: Job, worker_id: str | None) -> None:
        if worker_id is not None and job.locked_by != worker_id:
            raise LeaseLostError(f"Job {job.id} is leased to {job.locked_by!r}, not {worker_id!r}")

    def mark_done(
        self, job_id: int, result: dict | None = None, worker_id: str | None = None, now: datetime | None = None
    ) -> Job:
        now = now or now_utc()
        job = self._get(job_id)
        self._check_lease(job, worker_id)
        enforce_transition(job.status, JobStatus.done)
        job.status = JobStatus.done
        job.result = result
        job.locked_at = None
        job.locked_by = None
        job.updated_at = now
        self.db.commit()
        return job

    def mark_failed(self, job_id: int, error: str, worker_id: str | None = None, now: datetime | None = None) -> Job:
        now = now or now_utc()
        job = self._get(job_id)
        self._check_lease(job, worker_id)
        job.attempts += 1
        target = JobStatus.dead if job.attempts >= job.max_attempts else JobStatus.retry
        enforce_transition(job.status, target)
        job.status = target
        job.last_error = (error or "")[:MAX_ERROR_LENGTH]
        job.locked_at = None
        job.locked_by = None
        job.updated_at = now
        if target == JobStatus.retry:
            job.available_at = now + timedelta(seconds=backoff_seconds(job.attempts))
        else:
            logger.warning(
                "Job %s (%s) dead after %s attempts: %s", job.id, job.type.value, job.attempts, job.last_error
            )
        self.db.commit()
        return job

    def release_stale_locks(self, stale_minutes: int, now: datetime | None = None) -> int:
        now = now or now_utc()
        cutoff = now - timedelta(minutes=stale_minutes)
        result = self.db.execute(
            update(Job)
            .where(Job.status == JobStatus.running, Job.locked_at < cutoff)
            .values(
                status=JobStatus.retry,
                available_at=now,
                locked_at=None,
                locked_by=None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        self.db.commit()
        released = result.rowcount or 0
        if released:
            logger.warning("Released %s stale job leases older than %s minutes", released, stale_minutes)
        return released

    def count_ready(self, now: datetime | None = None) -> int:
        now = now or now_utc()
        return (
            self.db.query(func.count(Job.id))
            .filter(Job.status.in_(CLAIMABLE_STATUSES), Job.available_at <= now)
            .scalar()
            or 0
        )

    def stats(self, run_id: int | None = None) -> dict[str, int]:
        query = self.db.query(Job.status, func.count(Job.id))
        if run_id is not None:
            query = query.filter(Job.run_id == run_id)
        counts = {status.value: 0 for status in JobStatus}
        for status, count in query.group_by(Job.status).all():
            counts[JobStatus(status).value] = count
        return counts

    def requeue_dead(self, job_id: int, now: datetime | None = None) -> Job:
        now = now or now_utc()
        job = self._get(job_id)
        enforce_transition(job.status, JobStatus.pending)
        if job.dedupe_key is not None:
            duplicate = (
                self.db.query(Job.id)
                .filter(
                    Job.id != job.id,
                    Job.run_id == job.run_id,
                    Job.type == job.type,
                    Job.dedupe_key == job.dedupe_key,
                    Job.status.in_(ACTIVE_STATUSES),
                )
                .first()
            )
            if duplicate:
                raise InvalidJobTransition(f"Job {duplicate.id} already covers {job.dedupe_key}")
        job.status = JobStatus.pending
        job.attempts = 0
        job.available_at = now
        job.updated_at = now
        self.db.commit()
        return job

    def _get(self, job_id: int) -> Job:
        job = self.db.get(Job, job_id, populate_existing=True)
        if job is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return job
