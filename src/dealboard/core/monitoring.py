"""Prometheus metrics and Sentry integration.

Provides:
- MetricsMiddleware: ASGI middleware for HTTP request metrics
- Stage board metrics: commit outcomes, commit latency, side-effect failures
- track_stage_commit(): Context manager recording commit latency and outcome
- init_sentry(): Initialize Sentry with board-aware before_send callback
- get_metrics_response(): Response for the /metrics route
"""

from __future__ import annotations

import time
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any

import sentry_sdk
from prometheus_client import (
    REGISTRY,
    Counter,
    Histogram,
    generate_latest,
)
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

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

# ── Stage Board Metrics ──────────────────────────────────────────────────────

stage_commits_total = Counter(
    "stage_board_commits_total",
    "Stage commits attempted by the board, by outcome",
    ["board", "outcome"],
)

stage_commit_duration_seconds = Histogram(
    "stage_board_commit_duration_seconds",
    "Latency of stage commits against the deal store",
    ["board"],
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
)

side_effect_failures_total = Counter(
    "stage_board_side_effect_failures_total",
    "Best-effort post-commit side effects that failed",
    ["board", "effect"],
)


# ── Metrics Middleware ───────────────────────────────────────────────────────


class MetricsMiddleware(BaseHTTPMiddleware):
    """ASGI middleware that records Prometheus metrics for every HTTP request.

    Skips the /metrics endpoint itself to avoid self-referential counting.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if request.url.path == "/metrics":
            return await call_next(request)

        endpoint = request.url.path

        start_time = time.perf_counter()
        response = await call_next(request)
        duration = time.perf_counter() - start_time

        http_requests_total.labels(
            method=request.method,
            endpoint=endpoint,
            status_code=str(response.status_code),
        ).inc()

        http_request_duration_seconds.labels(
            method=request.method,
            endpoint=endpoint,
        ).observe(duration)

        return response


# ── Stage Commit Helper ──────────────────────────────────────────────────────


@asynccontextmanager
async def track_stage_commit(board: str) -> AsyncGenerator[dict[str, Any], None]:
    """Context manager that tracks stage commit metrics.

    Usage:
        async with track_stage_commit("admin") as tracker:
            deal = await store.commit_stage(deal_id, stage_id)
            tracker["outcome"] = "committed"

    The outcome defaults to "committed" and becomes "error" when the
    body raises; callers may set a more specific outcome.
    """
    tracker: dict[str, Any] = {"outcome": "committed"}
    start_time = time.perf_counter()

    try:
        yield tracker
    except Exception:
        if tracker["outcome"] == "committed":
            tracker["outcome"] = "error"
        raise
    finally:
        stage_commit_duration_seconds.labels(board=board).observe(
            time.perf_counter() - start_time
        )
        stage_commits_total.labels(board=board, outcome=tracker["outcome"]).inc()


# ── Sentry Integration ───────────────────────────────────────────────────────


def init_sentry(dsn: str, environment: str) -> None:
    """Initialize Sentry SDK.

    Args:
        dsn: Sentry DSN string.
        environment: Deployment environment (development, staging, production).
    """
    traces_sample_rate = 0.1 if environment == "production" else 1.0

    def before_send(event: dict, hint: dict) -> dict:
        """Tag events raised from board routes with the board name."""
        request = event.get("request") or {}
        url = request.get("url") or ""
        marker = "/boards/"
        if marker in url:
            board = url.split(marker, 1)[1].split("/", 1)[0]
            event.setdefault("tags", {})["board"] = board
        return event

    sentry_sdk.init(
        dsn=dsn,
        environment=environment,
        traces_sample_rate=traces_sample_rate,
        integrations=[
            StarletteIntegration(),
            FastApiIntegration(),
        ],
        before_send=before_send,
    )


# ── Metrics Endpoint ─────────────────────────────────────────────────────────


def get_metrics_response() -> Response:
    """Generate Prometheus exposition format response."""
    return Response(
        content=generate_latest(REGISTRY),
        media_type="text/plain; version=0.0.4; charset=utf-8",
    )
