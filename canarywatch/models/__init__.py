from canarywatch.models.entities import (
    ACTIVE_STATUSES,
    CLAIMABLE_STATUSES,
    TERMINAL_STATUSES,
    AuditLog,
    CanaryDefinition,
    DailySnapshot,
    Document,
    IdempotencyKey,
    Item,
    ItemStatus,
    Job,
    JobStatus,
    JobType,
    PipelineLock,
    PipelineRun,
    PipelineRunStatus,
    Signal,
    Source,
    SourceFetchLog,
    SourceTier,
    SourceType,
    TimelineEvent,
)

__all__ = [
    "ACTIVE_STATUSES",
    "CLAIMABLE_STATUSES",
    "TERMINAL_STATUSES",
    "AuditLog",
    "CanaryDefinition",
    "DailySnapshot",
    "Document",
    "IdempotencyKey",
    "Item",
    "ItemStatus",
    "Job",
    "JobStatus",
    "JobType",
    "PipelineLock",
    "PipelineRun",
    "PipelineRunStatus",
    "Signal",
    "Source",
    "SourceFetchLog",
    "SourceTier",
    "SourceType",
    "TimelineEvent",
]
