"""
TFD Report Scheduling
Frequency Resolver.

Pure calendar arithmetic: given a schedule's timing fields and a reference
instant, return the next instant the schedule must run.

Rules:
    daily      reference date at time_of_day, rolled one day forward when
               that instant is not strictly after the reference
    weekly     first matching weekday (0=Sunday .. 6=Saturday) at time_of_day
               strictly after the reference; today counts if time has not passed
    monthly    day_of_month at time_of_day this month if still ahead, else next
               month; a day beyond the month's length clamps to its last day
    on_demand  never scheduled → None

time_of_day is a wall-clock value in the scheduler timezone
(SCHEDULER_TIMEZONE, default UTC). Results are always aware UTC datetimes.
"""

from __future__ import annotations

import calendar
import re
from datetime import date, datetime, timedelta, timezone, tzinfo
from typing import Any, Mapping
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from flask import current_app, has_app_context

from tfd_reports.core.exceptions import ValidationError
from tfd_reports.models.scheduling import FREQUENCIES
from tfd_reports.utils.helpers import as_utc

_TIME_RE = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)$")


def scheduler_timezone() -> tzinfo:
    """Timezone in which time_of_day is interpreted."""
    name = "UTC"
    if has_app_context():
        name = current_app.config.get("SCHEDULER_TIMEZONE") or "UTC"
    if name.upper() == "UTC":
        return timezone.utc
    try:
        return ZoneInfo(name)
    except ZoneInfoNotFoundError as exc:
        raise ValidationError(f"Unknown scheduler timezone: {name}") from exc


def parse_time_of_day(value: Any) -> tuple[int, int]:
    """Parse ``"HH:MM"`` (24h) into ``(hour, minute)``."""
    if not isinstance(value, str) or not _TIME_RE.match(value.strip()):
        raise ValidationError(
            "time_of_day must use the HH:MM format (00:00-23:59)",
            details={"time_of_day": "invalid"},
        )
    hour, minute = value.strip().split(":")
    return int(hour), int(minute)


def _as_int(value: Any, field: str, low: int, high: int) -> int:
    if isinstance(value, bool):
        value = None
    if isinstance(value, str) and value.strip().isdigit():
        value = int(value.strip())
    if not isinstance(value, int):
        raise ValidationError(
            f"{field} is required and must be an integer between {low} and {high}",
            details={field: "required"},
        )
    if not low <= value <= high:
        raise ValidationError(
            f"{field} must be between {low} and {high}",
            details={field: "out_of_range"},
        )
    return value


def validate_timing(frequency, time_of_day, day_of_week=None, day_of_month=None) -> dict:
    """Validate and normalize the timing fields of a schedule.

    Returns the normalized ``{"frequency", "time_of_day", "day_of_week",
    "day_of_month"}`` mapping. The day field that does not belong to the
    frequency must be empty.

    Raises:
        ValidationError: On the first malformed, missing or extraneous field.
    """
    if frequency not in FREQUENCIES:
        raise ValidationError(
            f"frequency must be one of: {', '.join(sorted(FREQUENCIES))}",
            details={"frequency": "invalid"},
        )
    hour, minute = parse_time_of_day(time_of_day)
    normalized = {
        "frequency": frequency,
        "time_of_day": f"{hour:02d}:{minute:02d}",
        "day_of_week": None,
        "day_of_month": None,
    }

    if frequency == "weekly":
        normalized["day_of_week"] = _as_int(day_of_week, "day_of_week", 0, 6)
    elif day_of_week is not None:
        raise ValidationError(
            "day_of_week is only allowed for weekly schedules",
            details={"day_of_week": "not_allowed"},
        )

    if frequency == "monthly":
        normalized["day_of_month"] = _as_int(day_of_month, "day_of_month", 1, 31)
    elif day_of_month is not None:
        raise ValidationError(
            "day_of_month is only allowed for monthly schedules",
            details={"day_of_month": "not_allowed"},
        )

    return normalized


def _field(definition: Any, name: str) -> Any:
    if isinstance(definition, Mapping):
        return definition.get(name)
    return getattr(definition, name, None)


def _at(day: date, hour: int, minute: int, zone: tzinfo) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=zone)


def _clamped_day(year: int, month: int, day_of_month: int) -> date:
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day_of_month, last_day))


def compute_next(definition: Any, reference_time: datetime,
                 tz: tzinfo | None = None) -> datetime | None:
    """Return the next run instant strictly after ``reference_time``.

    Args:
        definition: ReportSchedule or mapping with frequency, time_of_day,
                    day_of_week and day_of_month.
        reference_time: Instant to compute from. Naive values are read as UTC.
        tz: Zone for time_of_day; UTC when omitted.

    Returns:
        Aware UTC datetime, or None for on_demand schedules.

    Raises:
        ValidationError: If a timing field is malformed or missing when required.
    """
    frequency = _field(definition, "frequency")
    if frequency not in FREQUENCIES:
        raise ValidationError(
            f"frequency must be one of: {', '.join(sorted(FREQUENCIES))}",
            details={"frequency": "invalid"},
        )
    if frequency == "on_demand":
        return None

    hour, minute = parse_time_of_day(_field(definition, "time_of_day"))
    zone = tz or timezone.utc
    reference = as_utc(reference_time).astimezone(zone)
    today = reference.date()

    if frequency == "daily":
        candidate = _at(today, hour, minute, zone)
        if candidate <= reference:
            candidate = _at(today + timedelta(days=1), hour, minute, zone)

    elif frequency == "weekly":
        day_of_week = _as_int(_field(definition, "day_of_week"), "day_of_week", 0, 6)
        # Python weekdays start on Monday; schedules count from Sunday.
        target = (day_of_week - 1) % 7
        days_ahead = (target - reference.weekday()) % 7
        candidate = _at(today + timedelta(days=days_ahead), hour, minute, zone)
        if candidate <= reference:
            candidate = _at(today + timedelta(days=days_ahead + 7), hour, minute, zone)

    else:
        day_of_month = _as_int(_field(definition, "day_of_month"), "day_of_month", 1, 31)
        candidate = _at(_clamped_day(today.year, today.month, day_of_month), hour, minute, zone)
        if candidate <= reference:
            year, month = (today.year + 1, 1) if today.month == 12 else (today.year, today.month + 1)
            candidate = _at(_clamped_day(year, month, day_of_month), hour, minute, zone)

    return candidate.astimezone(timezone.utc)
