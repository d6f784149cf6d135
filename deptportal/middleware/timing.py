"""
Department Portal
Request timing + request id.

Every response carries X-Request-ID (echoed from the caller or generated)
and X-Request-Duration-Ms.  API requests are logged at a level chosen by
outcome: 5xx → error, slower than SLOW_REQUEST_MS → warning, else debug.
Request id and user id are attached by the logging filter.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

SLOW_REQUEST_MS = 1000

# health checks hit these constantly
_QUIET_PATHS = frozenset({"/api/v1/health", "/api/v1/health/ready"})


def _level_for(status_code: int, duration_ms: float) -> int:
    if status_code >= 500:
        return logging.ERROR
    if duration_ms > SLOW_REQUEST_MS:
        return logging.WARNING
    return logging.DEBUG


def init_request_timing(app: Flask):
    @app.before_request
    def _start_timer():
        g.request_started = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _finish_timer(response):
        started = g.get("request_started")
        if started is None:
            return response

        duration_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = g.get("request_id", "")
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"

        if request.path.startswith("/api/") and request.path not in _QUIET_PATHS:
            logger.log(
                _level_for(response.status_code, duration_ms),
                "%s %s -> %d (%.0fms)",
                request.method, request.path, response.status_code, duration_ms,
                extra={"status": response.status_code, "duration_ms": round(duration_ms, 1),
                       "remote_addr": request.remote_addr},
            )
        return response
