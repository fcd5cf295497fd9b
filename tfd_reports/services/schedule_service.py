"""
Report Schedule Service — CRUD, validation and next-run bookkeeping.

Owns the lifecycle rules for ``next_execution_at``:
    create / timing edit / reactivate  → recomputed from now (recurring + active)
    deactivate                         → cleared
    on_demand                          → always NULL
Execution-driven advancement is handled by the execution coordinator.
"""

import logging

from email_validator import EmailNotValidError, validate_email

from tfd_reports.core.exceptions import AlreadyRunningError, NotFoundError, ValidationError
from tfd_reports.models import db
from tfd_reports.models.scheduling import (
    OUTPUT_FORMATS,
    REPORT_TYPES,
    EmailLog,
    ExecutionRecord,
    ReportSchedule,
)
from tfd_reports.services.frequency import compute_next, scheduler_timezone, validate_timing
from tfd_reports.services.report_params import parse_parameters
from tfd_reports.utils.helpers import parse_bool, utcnow

logger = logging.getLogger(__name__)

NAME_MAX = 100
DESCRIPTION_MAX = 500
MAX_PAGE_SIZE = 100

TIMING_FIELDS = ("frequency", "time_of_day", "day_of_week", "day_of_month")
UPDATABLE_FIELDS = {
    "name", "description", "report_type", "parameters", "frequency", "day_of_week",
    "day_of_month", "time_of_day", "output_format", "recipients", "active",
}


# ═══════════════════════════════════════════════════════════════
# Validation helpers
# ═══════════════════════════════════════════════════════════════
def _clean_name(value):
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("name is required", details={"name": "required"})
    value = value.strip()
    if len(value) > NAME_MAX:
        raise ValidationError(f"name must be at most {NAME_MAX} characters",
                              details={"name": "too_long"})
    return value


def _clean_description(value):
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError("description must be a string", details={"description": "invalid"})
    value = value.strip()
    if len(value) > DESCRIPTION_MAX:
        raise ValidationError(f"description must be at most {DESCRIPTION_MAX} characters",
                              details={"description": "too_long"})
    return value


def _clean_report_type(value):
    if value not in REPORT_TYPES:
        raise ValidationError(
            f"report_type must be one of: {', '.join(sorted(REPORT_TYPES))}",
            details={"report_type": "invalid"},
        )
    return value


def _clean_output_format(value):
    if value not in OUTPUT_FORMATS:
        raise ValidationError(
            f"output_format must be one of: {', '.join(sorted(OUTPUT_FORMATS))}",
            details={"output_format": "invalid"},
        )
    return value


def _clean_recipients(value):
    """Validate and normalize recipient addresses, dropping duplicates."""
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError("recipients must be a list of e-mail addresses",
                              details={"recipients": "invalid"})
    cleaned = []
    for address in value:
        if not isinstance(address, str):
            raise ValidationError("recipients must be a list of e-mail addresses",
                                  details={"recipients": "invalid"})
        try:
            normalized = validate_email(address.strip(), check_deliverability=False).normalized
        except EmailNotValidError as e:
            raise ValidationError(f"Invalid email {address!r}: {e}",
                                  details={"recipients": address})
        if normalized not in cleaned:
            cleaned.append(normalized)
    return cleaned


def _clean_active(value):
    flag = parse_bool(value)
    if flag is None:
        raise ValidationError("active must be a boolean", details={"active": "invalid"})
    return flag


def _merged_timing(schedule, data):
    """Timing fields after applying ``data`` on top of ``schedule``.

    A stored day field is dropped when the new frequency does not use it.
    """
    frequency = data.get("frequency", schedule.frequency)
    day_of_week = data["day_of_week"] if "day_of_week" in data else (
        schedule.day_of_week if frequency == "weekly" else None)
    day_of_month = data["day_of_month"] if "day_of_month" in data else (
        schedule.day_of_month if frequency == "monthly" else None)
    return validate_timing(
        frequency,
        data.get("time_of_day", schedule.time_of_day),
        day_of_week,
        day_of_month,
    )


def _refresh_next_execution(schedule, now=None):
    """Recompute next_execution_at from ``now`` per the schedule lifecycle."""
    if schedule.active and schedule.is_recurring:
        schedule.next_execution_at = compute_next(schedule, now or utcnow(), scheduler_timezone())
    else:
        schedule.next_execution_at = None


def _get_or_404(schedule_id):
    schedule = db.session.get(ReportSchedule, schedule_id)
    if not schedule:
        raise NotFoundError(resource="ReportSchedule", resource_id=schedule_id)
    return schedule


# ═══════════════════════════════════════════════════════════════
# CRUD
# ═══════════════════════════════════════════════════════════════
def create_schedule(data: dict, created_by: str) -> ReportSchedule:
    """Validate ``data`` and persist a new schedule.

    Raises:
        ValidationError: Any field is invalid. Nothing is persisted.
    """
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    if not created_by:
        raise ValidationError("created_by is required", details={"created_by": "required"})

    report_type = _clean_report_type(data.get("report_type"))
    timing = validate_timing(
        data.get("frequency"),
        data.get("time_of_day"),
        data.get("day_of_week"),
        data.get("day_of_month"),
    )
    schedule = ReportSchedule(
        name=_clean_name(data.get("name")),
        description=_clean_description(data.get("description")),
        report_type=report_type,
        parameters=parse_parameters(report_type, data.get("parameters")).to_dict(),
        output_format=_clean_output_format(data.get("output_format", "pdf")),
        recipients=_clean_recipients(data.get("recipients")),
        active=_clean_active(data.get("active", True)),
        created_by=str(created_by)[:150],
        last_execution_status="none",
        **timing,
    )
    _refresh_next_execution(schedule)

    db.session.add(schedule)
    db.session.commit()
    logger.info("Report schedule created: id=%s name=%r frequency=%s by %s",
                schedule.id, schedule.name, schedule.frequency, created_by,
                extra={"schedule_id": schedule.id})
    return schedule


def get_schedule(schedule_id: int) -> ReportSchedule:
    return _get_or_404(schedule_id)


def list_schedules(report_type: str = None, active: bool = None, created_by: str = None,
                   page: int = 1, limit: int = 10) -> dict:
    """List schedules, newest first, with pagination metadata."""
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or 10), 1), MAX_PAGE_SIZE)

    q = ReportSchedule.query
    if report_type:
        q = q.filter_by(report_type=report_type)
    if active is not None:
        q = q.filter_by(active=active)
    if created_by:
        q = q.filter_by(created_by=created_by)
    q = q.order_by(ReportSchedule.created_at.desc(), ReportSchedule.id.desc())

    total = q.count()
    items = q.offset((page - 1) * limit).limit(limit).all()
    return {
        "items": [s.to_dict() for s in items],
        "pagination": {
            "total": total,
            "page": page,
            "pages": (total + limit - 1) // limit,
            "limit": limit,
        },
    }


def update_schedule(schedule_id: int, data: dict) -> ReportSchedule:
    """Apply a partial update.

    Timing or activation changes recompute ``next_execution_at`` from now;
    other edits leave it untouched.
    """
    schedule = _get_or_404(schedule_id)
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")

    unknown = set(data) - UPDATABLE_FIELDS
    if unknown:
        raise ValidationError(
            f"Fields cannot be updated: {', '.join(sorted(unknown))}",
            details={key: "not_allowed" for key in sorted(unknown)},
        )

    # Validate everything before touching the row
    changes = {}
    if "name" in data:
        changes["name"] = _clean_name(data["name"])
    if "description" in data:
        changes["description"] = _clean_description(data["description"])
    report_type = schedule.report_type
    if "report_type" in data:
        report_type = changes["report_type"] = _clean_report_type(data["report_type"])
    if "parameters" in data or "report_type" in data:
        raw = data["parameters"] if "parameters" in data else schedule.parameters
        changes["parameters"] = parse_parameters(report_type, raw).to_dict()
    if "output_format" in data:
        changes["output_format"] = _clean_output_format(data["output_format"])
    if "recipients" in data:
        changes["recipients"] = _clean_recipients(data["recipients"])
    if "active" in data:
        changes["active"] = _clean_active(data["active"])

    timing_changed = any(key in data for key in TIMING_FIELDS)
    if timing_changed:
        changes.update(_merged_timing(schedule, data))

    for key, value in changes.items():
        setattr(schedule, key, value)
    if timing_changed or "active" in changes:
        _refresh_next_execution(schedule)

    db.session.commit()
    logger.info("Report schedule updated: id=%s fields=%s",
                schedule.id, ",".join(sorted(changes)), extra={"schedule_id": schedule.id})
    return schedule


def set_active(schedule_id: int, active) -> ReportSchedule:
    """Activate or deactivate a schedule."""
    schedule = _get_or_404(schedule_id)
    schedule.active = _clean_active(active)
    _refresh_next_execution(schedule)
    db.session.commit()
    logger.info("Report schedule %s %s", schedule.id,
                "activated" if schedule.active else "deactivated",
                extra={"schedule_id": schedule.id})
    return schedule


def delete_schedule(schedule_id: int) -> None:
    """Delete a schedule together with its execution history.

    Raises:
        AlreadyRunningError: An execution is still pending.
    """
    schedule = _get_or_404(schedule_id)
    pending = ExecutionRecord.query.filter_by(schedule_id=schedule_id, status="pending").first()
    if pending:
        raise AlreadyRunningError(schedule_id, pending.id)

    ExecutionRecord.query.filter_by(schedule_id=schedule_id).delete()
    EmailLog.query.filter_by(schedule_id=schedule_id).update({"schedule_id": None})
    db.session.delete(schedule)
    db.session.commit()
    logger.info("Report schedule deleted: id=%s", schedule_id, extra={"schedule_id": schedule_id})
