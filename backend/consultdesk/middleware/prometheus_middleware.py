"""
Prometheus metrics middleware for HTTP request tracking.

Feeds ``http_request_duration_seconds`` with method, normalized path and
status code for every request except the scrape endpoint itself.
"""

import time
from typing import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from ..monitoring.prometheus_metrics import prometheus_metrics

_SCRAPE_PATH = "/metrics/prometheus"


def normalize_path(raw_path: str) -> str:
    """Collapse ULID and numeric path segments so label cardinality stays bounded."""
    segments = []
    for segment in raw_path.split("/"):
        if segment.isdigit() or (len(segment) == 26 and segment.isalnum()):
            segments.append(":id")
        else:
            segments.append(segment)
    return "/".join(segments)


class PrometheusMiddleware(BaseHTTPMiddleware):
    """Middleware to collect Prometheus metrics for HTTP requests."""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if request.url.path == _SCRAPE_PATH:
            return await call_next(request)

        method = request.method
        path = normalize_path(request.url.path)
        start_time = time.time()
        status_code = 500
        try:
            response = await call_next(request)
            status_code = response.status_code
            return response
        finally:
            prometheus_metrics.record_http_request(
                method=method,
                endpoint=path,
                duration=time.time() - start_time,
                status_code=status_code,
            )
