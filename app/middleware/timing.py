"""
Request timing middleware.

Every response gets X-Request-Duration-Ms and X-Request-ID (echoed from
the caller when present). API requests are logged with method, path,
status, duration and acting user; requests slower than SLOW_REQUEST_MS
(default 1000) are logged as warnings, 5xx responses as errors.
"""

import logging
import time
import uuid

from flask import Flask, current_app, g, request

logger = logging.getLogger(__name__)

# Probes are polled constantly; keep them out of the request log
_QUIET_PREFIXES = ("/api/v1/health", "/static")

DEFAULT_SLOW_REQUEST_MS = 1000


def init_request_timing(app: Flask):
    """Register before/after hooks for request timing."""

    @app.before_request
    def _start_timer():
        g.request_start = time.perf_counter()
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]

    @app.after_request
    def _log_request(response):
        start = getattr(g, "request_start", None)
        if start is None:
            return response

        duration_ms = (time.perf_counter() - start) * 1000
        response.headers["X-Request-Duration-Ms"] = f"{duration_ms:.1f}"
        response.headers["X-Request-ID"] = g.request_id

        if request.path.startswith(_QUIET_PREFIXES):
            return response

        extra = {
            "method": request.method,
            "path": request.path,
            "status": response.status_code,
            "duration_ms": duration_ms,
            "remote_addr": request.remote_addr,
            "request_id": g.request_id,
            "user_id": getattr(g, "jwt_user_id", None),
        }
        slow_ms = current_app.config.get("SLOW_REQUEST_MS", DEFAULT_SLOW_REQUEST_MS)
        if response.status_code >= 500:
            level = logging.ERROR
        elif duration_ms > slow_ms:
            level = logging.WARNING
        else:
            level = logging.DEBUG
        logger.log(level, "%s %s %d (%.0fms)", request.method, request.path,
                   response.status_code, duration_ms, extra=extra)
        return response
