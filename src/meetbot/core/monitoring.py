"""Prometheus metrics, Sentry integration, and LLM call tracking.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- Meeting pipeline metrics (ingestion, summarization, storage, catch-up)
- track_llm_call(): Context manager for LLM call metrics
- init_sentry(): Initialize Sentry for the FastAPI app
- get_metrics_response(): Prometheus exposition for /metrics
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger(__name__)

# ── HTTP Metrics ─────────────────────────────────────────────────────────────

http_requests_total = Counter(
    "http_requests_total",
    "Total HTTP requests",
    ["method", "endpoint", "status_code"],
)

http_request_duration_seconds = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)

http_requests_in_progress = Gauge(
    "http_requests_in_progress",
    "HTTP requests currently being handled",
)

# ── LLM Metrics ──────────────────────────────────────────────────────────────

llm_requests_total = Counter(
    "llm_requests_total",
    "Total LLM API requests",
    ["model", "status"],
)

llm_request_duration_seconds = Histogram(
    "llm_request_duration_seconds",
    "LLM API request duration in seconds",
    ["model"],
    buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
)

llm_tokens_used_total = Counter(
    "llm_tokens_used_total",
    "Total LLM tokens consumed",
    ["model", "token_type"],
)

# ── Transcript Metrics ───────────────────────────────────────────────────────

transcript_segments_total = Counter(
    "transcript_segments_total",
    "Transcript segments appended to the buffer",
    ["method"],
)

transcript_buffer_evictions_total = Counter(
    "transcript_buffer_evictions_total",
    "Oldest segments evicted because a meeting buffer was full",
)

transcript_source_errors_total = Counter(
    "transcript_source_errors_total",
    "Transcript source failures by kind",
    ["method", "kind"],
)

subscription_renewals_total = Counter(
    "subscription_renewals_total",
    "Change-notification subscription renewal attempts",
    ["status"],
)

# ── Summarization Metrics ────────────────────────────────────────────────────

summary_passes_total = Counter(
    "summary_passes_total",
    "Summarization passes by trigger and outcome",
    ["trigger", "outcome"],
)

summary_generation_seconds = Histogram(
    "summary_generation_seconds",
    "End-to-end duration of a summarization pass",
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
)

# ── Storage Metrics ──────────────────────────────────────────────────────────

summary_store_operations_total = Counter(
    "summary_store_operations_total",
    "Summary store operations by outcome",
    ["operation", "outcome"],
)

summary_overflow_queue_size = Gauge(
    "summary_overflow_queue_size",
    "Summaries waiting in memory for the durable backend to recover",
)

summary_overflow_dropped_total = Counter(
    "summary_overflow_dropped_total",
    "Summaries discarded because the overflow queue hit its hard limit",
)

# ── Platform & Lifecycle Metrics ─────────────────────────────────────────────

platform_requests_total = Counter(
    "platform_requests_total",
    "Meeting/chat platform API calls",
    ["operation", "status"],
)

meeting_events_total = Counter(
    "meeting_events_total",
    "Meeting lifecycle events handled",
    ["event"],
)

active_meetings = Gauge(
    "active_meetings",
    "Meetings currently under management",
)

catch_up_deliveries_total = Counter(
    "catch_up_deliveries_total",
    "Late-joiner catch-up outcomes",
    ["outcome"],
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """Counts and times every HTTP request except the scrape endpoint.

    Requests are labelled with the matched route template (``/api/v1/meetings/
    {meeting_id}/start``), not the raw path, so meeting ids never become label
    values. A handler that raises is counted as a 500.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        http_requests_in_progress.inc()
        started = time.perf_counter()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            http_requests_in_progress.dec()
            route = request.scope.get("route")
            endpoint = getattr(route, "path", "unmatched")
            http_requests_total.labels(
                method=request.method, endpoint=endpoint, status_code=str(status_code)
            ).inc()
            http_request_duration_seconds.labels(
                method=request.method, endpoint=endpoint
            ).observe(time.perf_counter() - started)


# ── LLM Metrics Helper ──────────────────────────────────────────────────────


@asynccontextmanager
async def track_llm_call(model: str) -> AsyncGenerator[dict[str, int], None]:
    """Time one LLM call and count it with its token usage.

    The caller fills the yielded dict with ``prompt_tokens`` and
    ``completion_tokens`` once the provider has answered.
    """
    usage: dict[str, int] = {}
    started = time.perf_counter()
    outcome = "error"
    try:
        yield usage
        outcome = "success"
    finally:
        llm_requests_total.labels(model=model, status=outcome).inc()
        llm_request_duration_seconds.labels(model=model).observe(time.perf_counter() - started)
        for token_type in ("prompt", "completion"):
            count = usage.get(f"{token_type}_tokens") or 0
            if count:
                llm_tokens_used_total.labels(model=model, token_type=token_type).inc(count)


# ── Sentry Integration ───────────────────────────────────────────────────────


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry for the FastAPI app.

    Full tracing outside production, 10% sampling in production.
    """
    import sentry_sdk
    from sentry_sdk.integrations.fastapi import FastApiIntegration
    from sentry_sdk.integrations.starlette import StarletteIntegration

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=0.1 if environment == "production" else 1.0,
        integrations=[StarletteIntegration(), FastApiIntegration()],
    )
    logger.info("sentry.initialized", environment=environment)


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Prometheus exposition of the default registry."""
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)
