from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field

from canarywatch.models.entities import JobStatus, JobType, PipelineRunStatus


class ApiError(BaseModel):
    code: str
    message: str
    trace_id: str
    details: dict[str, Any] = Field(default_factory=dict)


class ApiEnvelope(BaseModel):
    data: Any = None
    error: ApiError | None = None
    meta: dict[str, Any] = Field(default_factory=dict)


class JobOut(BaseModel):
    id: int
    run_id: int
    type: JobType
    payload: dict
    status: JobStatus
    priority: int
    attempts: int
    max_attempts: int
    available_at: datetime
    locked_at: datetime | None = None
    locked_by: str | None = None
    last_error: str | None = None
    dedupe_key: str | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PipelineRunOut(BaseModel):
    id: int
    started_at: datetime
    completed_at: datetime | None = None
    status: PipelineRunStatus
    items_discovered: int
    items_processed: int
    items_failed: int
    error_log: str | None = None
    scoring_version: str | None = None

    model_config = {"from_attributes": True}


class AxisScoreOut(BaseModel):
    score: float
    uncertainty: float | None = None
    delta: float
    signal_count: int
    source_count: int


class CanaryStatusOut(BaseModel):
    canary_id: str
    status: str
    last_change: str
    confidence: float
    level: float | None = None


class DailySnapshotOut(BaseModel):
    id: int
    date: date
    axis_scores: dict[str, AxisScoreOut]
    canary_statuses: list[CanaryStatusOut]
    coverage_score: float | None = None
    signal_ids: list[int]
    notes: list[str] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class PipelineRunRequest(BaseModel):
    source_groups: list[str] | None = None
    time_budget_seconds: int | None = Field(default=None, ge=1, le=6 * 3600)


class RequeueRequest(BaseModel):
    operator: str = "operator"
    reason: str | None = None


class DrainResult(BaseModel):
    run_id: int | None = None
    items_discovered: int = 0
    items_processed: int = 0
    items_failed: int = 0
    jobs_done: int = 0
    jobs_failed: int = 0
    duration_ms: int = 0
    errors: list[str] = Field(default_factory=list)
