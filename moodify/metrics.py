from prometheus_client import Counter, Histogram

HTTP_REQUESTS = Counter(
    "moodify_http_requests_total",
    "Outbound HTTP requests",
    ["service", "status"],
)

HTTP_RATE_LIMITED = Counter(
    "moodify_http_rate_limited_total",
    "Outbound HTTP 429 responses",
    ["service"],
)

HTTP_LATENCY = Histogram(
    "moodify_http_latency_seconds",
    "Outbound HTTP latency",
    ["service"],
)

TOKEN_REFRESH = Counter(
    "moodify_token_refresh_total",
    "Provider token refreshes",
    ["result"],
)

PIPELINE_RUNS = Counter(
    "moodify_pipeline_runs_total",
    "Playlist pipeline runs",
    ["result", "stage"],
)

PIPELINE_STAGE_SECONDS = Histogram(
    "moodify_pipeline_stage_seconds",
    "Time spent per pipeline stage",
    ["stage"],
)
