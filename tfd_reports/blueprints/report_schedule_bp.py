"""
Report Schedule blueprint.

REST API for registering report schedules, running them on demand and
browsing their execution history.

Endpoint groups:
  Schedule CRUD      GET/POST          /api/v1/report-schedules
                     GET/PUT/DELETE    /api/v1/report-schedules/<id>
  Activation         PATCH             /api/v1/report-schedules/<id>/status
  Manual run         POST              /api/v1/report-schedules/<id>/run
  History            GET               /api/v1/report-schedules/<id>/executions
  Due batch          POST              /api/v1/report-schedules/process-due
  Form metadata      GET               /api/v1/report-schedules/meta

The acting user is taken from the X-User header (set by the gateway).
Service layer owns all business logic and commits.
"""

from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException

import tfd_reports.services.schedule_service as schedule_service
from tfd_reports.blueprints import pagination_args
from tfd_reports.core.exceptions import AlreadyRunningError, NotFoundError, ValidationError
from tfd_reports.models.scheduling import (
    FREQUENCIES,
    OUTPUT_FORMATS,
    REPORT_TYPES,
    TRIGGER_SOURCES,
)
from tfd_reports.services.execution_ledger import ExecutionLedger
from tfd_reports.services.manual_trigger import trigger_now
from tfd_reports.services.report_params import describe_parameters
from tfd_reports.services.scheduler_service import SchedulerService
from tfd_reports.utils.errors import E, api_error
from tfd_reports.utils.helpers import parse_bool

logger = logging.getLogger(__name__)

report_schedule_bp = Blueprint("report_schedules", __name__, url_prefix="/api/v1/report-schedules")

DAY_OF_WEEK_LABELS = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]


def _actor() -> str:
    return (request.headers.get("X-User") or "anonymous").strip()[:150]


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


# ── Error handlers ────────────────────────────────────────────────────────────


@report_schedule_bp.errorhandler(NotFoundError)
def _handle_not_found(error: NotFoundError):
    return api_error(E.NOT_FOUND, str(error))


@report_schedule_bp.errorhandler(ValidationError)
def _handle_validation(error: ValidationError):
    missing = error.details and all(v == "required" for v in error.details.values())
    code = E.VALIDATION_REQUIRED if missing else E.VALIDATION_INVALID
    return api_error(code, str(error), details=error.details)


@report_schedule_bp.errorhandler(AlreadyRunningError)
def _handle_already_running(error: AlreadyRunningError):
    return api_error(E.CONFLICT_RUNNING, "Report is already running",
                     details={"schedule_id": error.schedule_id,
                              "execution_id": error.execution_id})


@report_schedule_bp.errorhandler(SQLAlchemyError)
def _handle_database(error: SQLAlchemyError):
    logger.exception("Database error in report_schedules endpoint=%s", request.endpoint)
    return api_error(E.DATABASE, "Database unavailable")


@report_schedule_bp.errorhandler(Exception)
def _handle_unexpected(error: Exception):
    if isinstance(error, HTTPException):
        return error
    logger.exception("Unexpected error in report_schedules endpoint=%s", request.endpoint)
    return api_error(E.INTERNAL, "Internal server error")


# ═════════════════════════════════════════════════════════════════════════
# Schedule CRUD
# ═════════════════════════════════════════════════════════════════════════


@report_schedule_bp.route("", methods=["GET"])
def list_schedules():
    """List schedules, newest first.

    Query params: report_type?, active?, created_by?, page (1), limit (10)
    """
    active = request.args.get("active")
    page = request.args.get("page", 1, type=int)
    limit = request.args.get("limit", 10, type=int)
    result = schedule_service.list_schedules(
        report_type=request.args.get("report_type") or None,
        active=parse_bool(active) if active not in (None, "") else None,
        created_by=request.args.get("created_by") or None,
        page=page,
        limit=limit,
    )
    return jsonify(result), 200


@report_schedule_bp.route("", methods=["POST"])
def create_schedule():
    """Register a schedule.

    Body: {
        name, description?, report_type, parameters?, frequency,
        day_of_week?, day_of_month?, time_of_day, output_format?,
        recipients?, active?
    }
    Returns: created schedule (201).
    """
    schedule = schedule_service.create_schedule(_json_body(), created_by=_actor())
    return jsonify(schedule.to_dict()), 201


@report_schedule_bp.route("/<int:schedule_id>", methods=["GET"])
def get_schedule(schedule_id):
    """Schedule detail with its five most recent executions."""
    schedule = schedule_service.get_schedule(schedule_id)
    recent, _total = ExecutionLedger().list_history(schedule_id, limit=5)
    data = schedule.to_dict()
    data["recent_executions"] = [r.to_dict() for r in recent]
    return jsonify(data), 200


@report_schedule_bp.route("/<int:schedule_id>", methods=["PUT"])
def update_schedule(schedule_id):
    schedule = schedule_service.update_schedule(schedule_id, _json_body())
    return jsonify(schedule.to_dict()), 200


@report_schedule_bp.route("/<int:schedule_id>/status", methods=["PATCH"])
def set_status(schedule_id):
    """Activate or deactivate a schedule. Body: {"active": bool}"""
    data = _json_body()
    if "active" not in data:
        raise ValidationError("active is required", details={"active": "required"})
    schedule = schedule_service.set_active(schedule_id, data["active"])
    return jsonify(schedule.to_dict()), 200


@report_schedule_bp.route("/<int:schedule_id>", methods=["DELETE"])
def delete_schedule(schedule_id):
    schedule_service.delete_schedule(schedule_id)
    logger.info("Schedule %s deleted by %s", schedule_id, _actor(),
                extra={"schedule_id": schedule_id})
    return jsonify({"message": "Report schedule deleted"}), 200


# ═════════════════════════════════════════════════════════════════════════
# Execution
# ═════════════════════════════════════════════════════════════════════════


@report_schedule_bp.route("/<int:schedule_id>/run", methods=["POST"])
def run_schedule(schedule_id):
    """Run a schedule now.

    Returns:
        200 with the execution on success
        409 when the schedule is already running
        502 with the failed execution when the report could not be generated
    """
    result = trigger_now(schedule_id, SchedulerService.coordinator(), actor=_actor())
    if result.outcome == "conflict":
        return api_error(E.CONFLICT_RUNNING, result.message)
    if result.outcome == "error":
        return api_error(E.REPORT_GENERATION, result.message or "Report generation failed",
                         details={"execution": result.record.to_dict()})
    return jsonify(result.to_dict()), 200


@report_schedule_bp.route("/<int:schedule_id>/executions", methods=["GET"])
def list_executions(schedule_id):
    """Execution history, newest first. Query params: limit (50), offset (0)"""
    schedule_service.get_schedule(schedule_id)
    limit, offset = pagination_args()
    items, total = ExecutionLedger().list_history(schedule_id, limit=limit, offset=offset)
    return jsonify({
        "items": [r.to_dict() for r in items],
        "total": total,
        "limit": limit,
        "offset": offset,
    }), 200


@report_schedule_bp.route("/process-due", methods=["POST"])
def process_due():
    """Run one due batch now (same path as the background scheduler)."""
    summary = SchedulerService.run_once()
    logger.info("Due batch triggered via API by %s: %d processed",
                _actor(), summary["processed"])
    return jsonify(summary), 200


@report_schedule_bp.route("/meta", methods=["GET"])
def meta():
    """Allowed values for schedule forms."""
    return jsonify({
        "report_types": sorted(REPORT_TYPES),
        "frequencies": sorted(FREQUENCIES),
        "output_formats": sorted(OUTPUT_FORMATS),
        "trigger_sources": sorted(TRIGGER_SOURCES),
        "days_of_week": [{"value": i, "label": label} for i, label in enumerate(DAY_OF_WEEK_LABELS)],
        "parameters": describe_parameters(),
    }), 200
