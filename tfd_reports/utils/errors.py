"""JSON error bodies for the report scheduling API.

Every error response has the shape::

    {"error": "<message for humans>", "code": "ERR_...", "details": {...}?}

``details`` is present only when there is something structured to add:
the offending fields of a validation error, the conflicting execution of a
409, or the failed execution of a 502.

    from tfd_reports.utils.errors import api_error, E

    return api_error(E.CONFLICT_RUNNING, "Report is already running",
                     details={"schedule_id": 7, "execution_id": 31})
"""

from __future__ import annotations

from flask import jsonify


class E:
    """Error codes understood by the admin dashboard."""

    # 422: rejected before anything was persisted
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    NOT_FOUND = "ERR_NOT_FOUND"

    # 409: a pending execution holds the schedule
    CONFLICT_RUNNING = "ERR_CONFLICT_RUNNING"

    # 502: the run was recorded, but the generator failed
    REPORT_GENERATION = "ERR_REPORT_GENERATION"

    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


HTTP_STATUS = {
    E.VALIDATION_REQUIRED: 422,
    E.VALIDATION_INVALID: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_RUNNING: 409,
    E.REPORT_GENERATION: 502,
    E.DATABASE: 503,
    E.INTERNAL: 500,
}


def api_error(code: str, message: str, *, status: int | None = None,
              details: dict | None = None):
    """Build ``(response, status)`` for ``code``; unknown codes answer 400."""
    body = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or HTTP_STATUS.get(code, 400)
