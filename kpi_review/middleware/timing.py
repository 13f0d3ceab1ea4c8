"""
Per-request id and duration.

Every response carries ``X-Request-ID`` (echoed from the request when the
client sent one) and ``X-Request-Duration-Ms``. API requests are logged once:
DEBUG normally, WARNING above ``SLOW_REQUEST_MS`` (config), ERROR on 5xx.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

_QUIET_PATHS = ("/api/v1/health/",)


def _request_id() -> str:
    incoming = (request.headers.get("X-Request-ID") or "").strip()
    return incoming[:64] or uuid.uuid4().hex[:12]


def init_request_timing(app: Flask):
    """Register the timing hooks on ``app``."""
    slow_ms = app.config.get("SLOW_REQUEST_MS", 1000)

    @app.before_request
    def _start_clock():
        g.request_id = _request_id()
        g.request_started = time.perf_counter()

    @app.after_request
    def _stamp_response(response):
        started = getattr(g, "request_started", None)
        if started is None:
            return response
        elapsed = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{elapsed:.1f}"

        path = request.path
        if not path.startswith("/api/") or path.startswith(_QUIET_PATHS):
            return response

        if response.status_code >= 500:
            log = logger.error
        elif elapsed > slow_ms:
            log = logger.warning
        else:
            log = logger.debug
        log(
            "%s %s -> %d", request.method, path, response.status_code,
            extra={
                "request_id": g.request_id,
                "method": request.method,
                "path": path,
                "status": response.status_code,
                "duration_ms": elapsed,
                "remote_addr": request.remote_addr,
                "caller_id": getattr(g, "jwt_user_id", None),
            },
        )
        return response
