"""Request timing middleware: one log line per HTTP request."""
from __future__ import annotations

import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

SLOW_REQUEST_MS = 1000.0

# orchestrator health checks hit these every few seconds
_QUIET_PATHS = frozenset({"/healthz", "/readyz"})


def _level_for(path: str, elapsed_ms: float) -> int:
    if elapsed_ms >= SLOW_REQUEST_MS:
        return logging.WARNING
    if path in _QUIET_PATHS:
        return logging.DEBUG
    return logging.INFO


class RequestTimingMiddleware(BaseHTTPMiddleware):
    async def dispatch(
        self,
        request: Request,
        call_next: RequestResponseEndpoint,
    ) -> Response:
        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - start) * 1000
        path = request.url.path
        logger.log(
            _level_for(path, elapsed_ms),
            "%s %s -> %d in %.1fms",
            request.method,
            path,
            response.status_code,
            elapsed_ms,
        )
        response.headers["Server-Timing"] = f"app;dur={elapsed_ms:.1f}"
        return response
