"""
Per-request id and duration.

Every response carries ``X-Request-ID`` (echoed from the client when sent)
and ``X-Request-Duration-Ms``. Completed requests are logged at a level
chosen by outcome: ERROR for 5xx, WARNING past ``SLOW_THRESHOLD_MS``, DEBUG
otherwise. Completion calls regularly land in the slow bucket.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

SLOW_THRESHOLD_MS = 1000
QUIET_PATHS = frozenset({"/api/v1/health"})


def _level_for(status: int, elapsed_ms: float) -> tuple[int, str]:
    if status >= 500:
        return logging.ERROR, "Failed"
    if elapsed_ms > SLOW_THRESHOLD_MS:
        return logging.WARNING, "Slow"
    return logging.DEBUG, "Served"


def init_request_timing(app: Flask):
    @app.before_request
    def _stamp_request():
        g.request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12]
        g.started_at = time.perf_counter()

    @app.after_request
    def _finish_request(response):
        started = g.get("started_at")
        if started is None:
            return response

        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{elapsed_ms:.1f}"
        if request.path in QUIET_PATHS:
            return response

        ids = request.view_args or {}
        level, verb = _level_for(response.status_code, elapsed_ms)
        logger.log(
            level, "%s %s %s -> %d (%.0fms)", verb, request.method, request.path,
            response.status_code, elapsed_ms,
            extra={
                "request_id": g.request_id,
                "method": request.method,
                "path": request.path,
                "status": response.status_code,
                "duration_ms": elapsed_ms,
                "remote_addr": request.remote_addr,
                "project_id": ids.get("pid"),
                "story_id": ids.get("sid"),
            },
        )
        return response
