"""Prometheus metrics for the translation gateway."""

import time

from prometheus_client import Counter, Gauge, Histogram, Info, generate_latest
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

from translate_gateway import __version__

# --- HTTP metrics ---

APP_INFO = Info("translate_gateway", "Translation gateway info")
APP_INFO.info({"version": __version__})

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "path", "status"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "path"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, 30, 60, 120],
)

# --- Gateway metrics ---

PROVIDER_CALLS = Counter(
    "translate_provider_calls_total",
    "Provider calls by kind and outcome",
    ["kind", "outcome"],  # kind: batch|single, outcome: success|error|aborted
)

RETRIES = Counter(
    "translate_retries_total",
    "Retry attempts scheduled after a failure",
    ["status"],
)

THROTTLE_ACTIVATIONS = Counter(
    "translate_throttle_activations_total",
    "Scheduler-wide temporary throttles triggered by 429/5xx",
)

CACHE_LOOKUPS = Counter(
    "translate_cache_lookups_total",
    "Result cache lookups",
    ["result"],  # hit|miss
)

SKIPPED_SEGMENTS = Counter(
    "translate_skipped_segments_total",
    "Inputs passed through without translation",
)

BATCH_FALLBACKS = Counter(
    "translate_batch_fallbacks_total",
    "Batch chunks re-issued item by item after a parse failure",
)

SCHEDULER_RUNNING = Gauge("translate_scheduler_running", "Tasks currently executing")
SCHEDULER_QUEUED = Gauge("translate_scheduler_queued", "Tasks waiting for a slot")


# --- Middleware ---

# Job ids are caller-chosen; collapse them to keep label cardinality bounded
_JOB_PREFIX = "/api/v1/jobs/"


def _normalize_path(path: str) -> str:
    """Replace the job id segment with {job_id}."""
    if path.startswith(_JOB_PREFIX):
        parts = path[len(_JOB_PREFIX) :].split("/", 1)
        tail = f"/{parts[1]}" if len(parts) > 1 else ""
        return f"{_JOB_PREFIX}{{job_id}}{tail}"
    return path


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        method = request.method
        path = _normalize_path(request.url.path)

        start = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start

        REQUEST_COUNT.labels(method=method, path=path, status=response.status_code).inc()
        REQUEST_DURATION.labels(method=method, path=path).observe(duration)

        return response


def metrics_response() -> Response:
    """Generate Prometheus /metrics response."""
    return Response(
        content=generate_latest(),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
