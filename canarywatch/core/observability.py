from prometheus_client import Counter, Histogram

REQUEST_COUNT = Counter(
    "canarywatch_api_requests_total",
    "Total API requests",
    ["method", "path", "status"],
)

REQUEST_LATENCY = Histogram(
    "canarywatch_api_request_latency_seconds",
    "API request latency",
    ["method", "path"],
)

TASK_COUNT = Counter(
    "canarywatch_task_total",
    "Total task executions",
    ["task", "status"],
)

JOB_COUNT = Counter(
    "canarywatch_job_total",
    "Pipeline jobs executed by the drain loop",
    ["type", "status"],
)

JOB_LATENCY = Histogram(
    "canarywatch_job_latency_seconds",
    "Pipeline job execution latency",
    ["type"],
)

SOURCE_FETCH_COUNT = Counter(
    "canarywatch_source_fetch_total",
    "Discovery fetch attempts per source type",
    ["source_type", "status"],
)

LLM_LATENCY = Histogram(
    "canarywatch_llm_latency_seconds",
    "LLM call latency",
    ["stage", "provider", "model"],
)
