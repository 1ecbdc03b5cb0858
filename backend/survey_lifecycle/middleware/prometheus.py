"""ASGI middleware recording Prometheus metrics for every HTTP request."""

from __future__ import annotations

import re
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from survey_lifecycle.core.metrics import (
    http_request_duration_seconds,
    http_requests_in_progress,
    http_requests_total,
)

_SKIP_PATHS = frozenset({"/api/health", "/metrics"})

_UUID_SEGMENT = re.compile(
    r"^[0-9a-fA-F]{8}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{4}-?[0-9a-fA-F]{12}$"
)


def normalise_path(path: str) -> str:
    """Replace survey ids in the path with ``{id}`` so label cardinality stays bounded.

    /api/v1/surveys/550e8400-e29b-41d4-a716-446655440000/status -> /api/v1/surveys/{id}/status
    """
    segments = path.rstrip("/").split("/")
    return "/".join("{id}" if _UUID_SEGMENT.match(s) else s for s in segments) or "/"


class PrometheusMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        method = request.method
        if request.url.path in _SKIP_PATHS:
            return await call_next(request)

        endpoint = normalise_path(request.url.path)
        in_progress = http_requests_in_progress.labels(method=method)
        in_progress.inc()
        status = "500"
        start = time.perf_counter()
        try:
            response = await call_next(request)
            status = str(response.status_code)
            return response
        finally:
            http_requests_total.labels(method=method, endpoint=endpoint, status=status).inc()
            http_request_duration_seconds.labels(method=method, endpoint=endpoint).observe(
                time.perf_counter() - start
            )
            in_progress.dec()
