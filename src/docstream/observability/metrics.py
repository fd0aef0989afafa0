from __future__ import annotations

"""Prometheus metrics for the docstream service.

Adds an HTTP middleware that records request latency per method/path/status,
plus counters for the document streaming pipeline.
"""

import time
from typing import Awaitable, Callable

from prometheus_client import Counter, Histogram
from starlette.requests import Request
from starlette.responses import Response

# Histogram buckets chosen for web latencies (seconds)
REQUEST_LATENCY = Histogram(
    "docstream_request_latency_seconds",
    "HTTP request latency in seconds",
    labelnames=("method", "path", "status"),
    buckets=(0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.0, 5.0, 10.0),
)

DOCUMENTS_TOTAL = Counter(
    "docstream_documents_total",
    "Document generation passes by kind, operation and outcome",
    labelnames=("kind", "operation", "outcome"),
)

LOCK_REJECTIONS = Counter(
    "docstream_lock_rejections_total",
    "Update requests rejected because the document was already being generated",
)

FRAGMENTS_DEDUPLICATED = Counter(
    "docstream_fragments_deduplicated_total",
    "Fragments that had a redelivered prefix stripped",
    labelnames=("kind",),
)

STREAM_SECONDS = Histogram(
    "docstream_stream_seconds",
    "Wall time of one provider stream, first request to last fragment",
    labelnames=("kind",),
    buckets=(0.5, 1.0, 2.5, 5.0, 10.0, 20.0, 40.0, 80.0, 160.0),
)


def sanitize_path(path: str) -> str:
    """Reduce high-cardinality paths (e.g., /documents/{id}) to a coarse label."""
    if not path:
        return "/"
    segs = [s for s in path.split("?")[0].split("/") if s]
    if segs and segs[0] == "api":
        segs = segs[1:]
    if not segs:
        return "/"
    return "/" + segs[0]


def metrics_middleware_factory() -> Callable[[Request, Callable[[Request], Awaitable[Response]]], Awaitable[Response]]:
    async def middleware(request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        # Avoid observing the metrics endpoint itself
        if request.url.path.startswith("/metrics"):
            return await call_next(request)
        start = time.perf_counter()
        response = await call_next(request)
        elapsed = time.perf_counter() - start
        try:
            REQUEST_LATENCY.labels(
                method=request.method,
                path=sanitize_path(request.url.path),
                status=str(response.status_code),
            ).observe(elapsed)
        except Exception:
            # metrics never fail a request
            pass
        return response

    return middleware
