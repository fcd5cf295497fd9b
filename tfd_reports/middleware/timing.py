"""
Request timing and correlation ids.

Every response carries X-Request-ID (echoed from the caller or generated)
and X-Request-Duration-Ms. Report-schedule requests are logged with the
schedule id from the URL; manual runs generate a report inline, so they get
a longer slow threshold than plain CRUD calls.
"""

import logging
import time
import uuid

from flask import Flask, g, request

logger = logging.getLogger(__name__)

QUIET_PATHS = ("/api/v1/health/",)
SLOW_MS = 1000
SLOW_RUN_MS = 15000


def _slow_threshold():
    if request.endpoint in ("report_schedules.run_schedule", "report_schedules.process_due"):
        return SLOW_RUN_MS
    return SLOW_MS


def init_request_timing(app: Flask):
    """Attach the timing hooks to ``app``."""

    @app.before_request
    def _mark_start():
        g.t0 = time.perf_counter()
        g.request_id = (request.headers.get("X-Request-ID") or uuid.uuid4().hex[:12])[:64]

    @app.after_request
    def _stamp_response(response):
        t0 = g.pop("t0", None)
        if t0 is None:
            return response
        elapsed = (time.perf_counter() - t0) * 1000
        response.headers["X-Request-ID"] = g.request_id
        response.headers["X-Request-Duration-Ms"] = f"{elapsed:.1f}"

        if request.path.startswith(QUIET_PATHS):
            return response

        extra = {
            "request_id": g.request_id,
            "method": request.method,
            "path": request.path,
            "status": response.status_code,
            "remote_addr": request.remote_addr,
            "duration_ms": elapsed,
            "schedule_id": (request.view_args or {}).get("schedule_id"),
        }
        if response.status_code >= 500:
            level = logging.ERROR
        elif elapsed > _slow_threshold():
            level = logging.WARNING
        else:
            level = logging.DEBUG
        logger.log(level, "%s %s -> %d", request.method, request.path,
                   response.status_code, extra=extra)
        return response
