from canarywatch.schemas.common import (
    ApiEnvelope,
    ApiError,
    AxisScoreOut,
    CanaryStatusOut,
    DailySnapshotOut,
    DrainResult,
    JobOut,
    PipelineRunOut,
    PipelineRunRequest,
    RequeueRequest,
)
from canarywatch.schemas.extraction import (
    AXES,
    AxisImpact,
    BenchmarkMetric,
    CitationModel,
    ExtractedClaim,
    SignalExtraction,
    SourceContext,
)
from canarywatch.schemas.payloads import (
    AggregatePayload,
    DiscoverPayload,
    ExtractPayload,
    FetchPayload,
    MapPayload,
    parse_payload,
)

__all__ = [
    "AXES",
    "AggregatePayload",
    "ApiEnvelope",
    "ApiError",
    "AxisImpact",
    "AxisScoreOut",
    "BenchmarkMetric",
    "CanaryStatusOut",
    "CitationModel",
    "DailySnapshotOut",
    "DiscoverPayload",
    "DrainResult",
    "ExtractPayload",
    "ExtractedClaim",
    "FetchPayload",
    "JobOut",
    "MapPayload",
    "PipelineRunOut",
    "PipelineRunRequest",
    "RequeueRequest",
    "SignalExtraction",
    "SourceContext",
    "parse_payload",
]
