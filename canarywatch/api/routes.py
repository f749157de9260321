from datetime import date

from celery.result import AsyncResult
from fastapi import APIRouter, Depends, Header, HTTPException, Query
from sqlalchemy.orm import Session

from canarywatch.core.config import get_settings
from canarywatch.core.responses import list_response, success_response
from canarywatch.db.session import get_db
from canarywatch.models.entities import DailySnapshot, Job, JobStatus, JobType, PipelineRun
from canarywatch.schemas import DailySnapshotOut, JobOut, PipelineRunOut, PipelineRunRequest, RequeueRequest
from canarywatch.services.audit import record_audit
from canarywatch.services.idempotency import resolve_cached_response, store_response
from canarywatch.services.queue import JobNotFoundError, JobQueue
from canarywatch.services.runs import PipelineConfigError, run_lock_holder, validate_source_groups
from canarywatch.state_machine.job_status import InvalidJobTransition
from canarywatch.tasks.celery_app import celery_app
from canarywatch.tasks.jobs import drain_pipeline, rebuild_snapshot

router = APIRouter(prefix="/v1", tags=["v1"])


@router.get("/jobs")
def list_jobs(
    status: JobStatus | None = Query(default=None),
    type: JobType | None = Query(default=None),
    run_id: int | None = Query(default=None),
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    query = db.query(Job)
    if status:
        query = query.filter(Job.status == status)
    if type:
        query = query.filter(Job.type == type)
    if run_id is not None:
        query = query.filter(Job.run_id == run_id)

    total = query.count()
    jobs = query.order_by(Job.id.desc()).offset(offset).limit(limit).all()
    return list_response([JobOut.model_validate(job).model_dump(mode="json") for job in jobs], total, limit, offset)


@router.get("/jobs/stats")
def job_stats(run_id: int | None = Query(default=None), db: Session = Depends(get_db)):
    return success_response(JobQueue(db).stats(run_id=run_id), meta={"run_id": run_id})


@router.post("/jobs/{job_id}/requeue")
def requeue_job(
    job_id: int,
    payload: RequeueRequest,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    db: Session = Depends(get_db),
):
    endpoint = f"/v1/jobs/{job_id}/requeue"
    cached = resolve_cached_response(db, idempotency_key, endpoint, payload.model_dump())
    if cached:
        return success_response(cached)

    queue = JobQueue(db)
    try:
        job = queue.requeue_dead(job_id)
    except JobNotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except InvalidJobTransition as exc:
        db.rollback()
        raise HTTPException(status_code=409, detail=str(exc)) from exc

    record_audit(db, payload.operator, "requeue", "job", job.id, payload.model_dump())
    response = JobOut.model_validate(job).model_dump(mode="json")
    store_response(db, idempotency_key, endpoint, payload.model_dump(), response)
    db.commit()
    return success_response(response)


@router.post("/pipeline/run")
def run_pipeline(
    payload: PipelineRunRequest,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    db: Session = Depends(get_db),
):
    cached = resolve_cached_response(db, idempotency_key, "/v1/pipeline/run", payload.model_dump())
    if cached:
        return success_response(cached)

    settings = get_settings()
    try:
        groups = validate_source_groups(payload.source_groups or settings.source_group_list)
    except PipelineConfigError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc

    holder = run_lock_holder(db, settings.run_lock_stale_minutes)
    if holder is not None:
        raise HTTPException(status_code=409, detail="A pipeline run is already in progress")

    task = drain_pipeline.delay(groups, payload.time_budget_seconds)
    response = {"task_id": task.id, "source_groups": groups}
    record_audit(db, "api", "pipeline_run", "pipeline", task.id, payload.model_dump())
    store_response(db, idempotency_key, "/v1/pipeline/run", payload.model_dump(), response)
    db.commit()
    return success_response(response)


@router.get("/runs")
def list_runs(
    limit: int = Query(default=20, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
):
    query = db.query(PipelineRun)
    total = query.count()
    runs = query.order_by(PipelineRun.started_at.desc(), PipelineRun.id.desc()).offset(offset).limit(limit).all()
    return list_response([PipelineRunOut.model_validate(run).model_dump(mode="json") for run in runs], total, limit, offset)


@router.get("/snapshots/latest")
def latest_snapshot(db: Session = Depends(get_db)):
    snapshot = db.query(DailySnapshot).order_by(DailySnapshot.date.desc()).first()
    if not snapshot:
        raise HTTPException(status_code=404, detail="No snapshots yet")
    return success_response(DailySnapshotOut.model_validate(snapshot).model_dump(mode="json"))


@router.get("/snapshots/{snapshot_date}")
def snapshot_for_date(snapshot_date: date, db: Session = Depends(get_db)):
    snapshot = db.query(DailySnapshot).filter(DailySnapshot.date == snapshot_date).one_or_none()
    if not snapshot:
        raise HTTPException(status_code=404, detail="Snapshot not found")
    return success_response(DailySnapshotOut.model_validate(snapshot).model_dump(mode="json"))


@router.post("/snapshots/{snapshot_date}/rebuild")
def rebuild_snapshot_for_date(
    snapshot_date: date,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
    db: Session = Depends(get_db),
):
    endpoint = f"/v1/snapshots/{snapshot_date.isoformat()}/rebuild"
    cached = resolve_cached_response(db, idempotency_key, endpoint, {})
    if cached:
        return success_response(cached)

    task = rebuild_snapshot.delay(snapshot_date.isoformat())
    response = {"task_id": task.id, "date": snapshot_date.isoformat()}
    record_audit(db, "api", "rebuild", "snapshot", snapshot_date.isoformat())
    store_response(db, idempotency_key, endpoint, {}, response)
    db.commit()
    return success_response(response)


@router.get("/tasks/{task_id}")
def task_status(task_id: str):
    result = AsyncResult(task_id, app=celery_app)
    return success_response({"task_id": task_id, "state": result.state, "result": result.result})
