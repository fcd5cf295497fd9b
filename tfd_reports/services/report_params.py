"""
TFD Report Scheduling
Typed report parameters.

Each report_type owns one parameter dataclass. Incoming JSON is validated
into that dataclass at create/update time and stored back as a plain dict,
so the ``parameters`` column only ever holds shapes listed here.

Usage:
    params = parse_parameters("tfd_requests", {"status": "approved"})
    schedule.parameters = params.to_dict()
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import date
from typing import Any, ClassVar, Union

from tfd_reports.core.exceptions import ValidationError
from tfd_reports.utils.helpers import parse_date_input


PROFILE_TYPES = {
    "super_admin", "municipality_admin", "tfd_manager", "health_secretary",
    "driver", "administrative", "patient",
}
MUNICIPALITY_STATUSES = {"active", "expired", "suspended"}
TFD_REQUEST_STATUSES = {
    "requested", "under_review", "approved", "scheduled",
    "completed", "cancelled", "denied",
}
CARE_TYPES = {"consultation", "exam", "surgery", "treatment", "follow_up"}


@dataclass(frozen=True)
class _DateRangeParams:
    """Common optional reporting window."""

    report_type: ClassVar[str] = ""
    choices: ClassVar[dict[str, set[str]]] = {}

    start_date: date | None = None
    end_date: date | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is None:
                continue
            data[f.name] = value.isoformat() if isinstance(value, date) else value
        return data

    @classmethod
    def from_dict(cls, raw: dict[str, Any] | None) -> "_DateRangeParams":
        raw = dict(raw or {})
        allowed = {f.name for f in fields(cls)}
        unknown = sorted(set(raw) - allowed)
        if unknown:
            raise ValidationError(
                f"Unknown parameters for {cls.report_type} report: {', '.join(unknown)}",
                details={key: "unknown" for key in unknown},
            )

        values: dict[str, Any] = {}
        errors: dict[str, str] = {}
        for name in allowed:
            value = raw.get(name)
            if value in (None, ""):
                values[name] = None
                continue
            if name in ("start_date", "end_date"):
                try:
                    values[name] = parse_date_input(value)
                except ValueError:
                    errors[name] = "invalid_date"
                continue
            if isinstance(value, int) and not isinstance(value, bool):
                value = str(value)
            if not isinstance(value, str):
                errors[name] = "must_be_string"
                continue
            value = value.strip()
            options = cls.choices.get(name)
            if options is not None and value not in options:
                errors[name] = f"must be one of: {', '.join(sorted(options))}"
                continue
            if len(value) > 64:
                errors[name] = "too_long"
                continue
            values[name] = value

        if errors:
            raise ValidationError(
                f"Invalid parameters for {cls.report_type} report", details=errors,
            )
        start, end = values.get("start_date"), values.get("end_date")
        if start and end and start > end:
            raise ValidationError(
                "start_date must not be after end_date",
                details={"start_date": "after_end_date"},
            )
        return cls(**values)


@dataclass(frozen=True)
class UsersReportParams(_DateRangeParams):
    report_type: ClassVar[str] = "users"
    choices: ClassVar[dict[str, set[str]]] = {"profile_type": PROFILE_TYPES}

    municipality_id: str | None = None
    profile_type: str | None = None


@dataclass(frozen=True)
class MunicipalitiesReportParams(_DateRangeParams):
    report_type: ClassVar[str] = "municipalities"
    choices: ClassVar[dict[str, set[str]]] = {"status": MUNICIPALITY_STATUSES}

    status: str | None = None


@dataclass(frozen=True)
class TfdRequestsReportParams(_DateRangeParams):
    report_type: ClassVar[str] = "tfd_requests"
    choices: ClassVar[dict[str, set[str]]] = {
        "status": TFD_REQUEST_STATUSES,
        "care_type": CARE_TYPES,
    }

    municipality_id: str | None = None
    status: str | None = None
    care_type: str | None = None


@dataclass(frozen=True)
class AccessLogsReportParams(_DateRangeParams):
    report_type: ClassVar[str] = "access_logs"

    municipality_id: str | None = None


ReportParameters = Union[
    UsersReportParams,
    MunicipalitiesReportParams,
    TfdRequestsReportParams,
    AccessLogsReportParams,
]

PARAMETER_TYPES: dict[str, type[_DateRangeParams]] = {
    cls.report_type: cls
    for cls in (
        UsersReportParams,
        MunicipalitiesReportParams,
        TfdRequestsReportParams,
        AccessLogsReportParams,
    )
}


def parse_parameters(report_type: str, raw: Any) -> ReportParameters:
    """Validate ``raw`` against the parameter schema of ``report_type``.

    Raises:
        ValidationError: Unknown report_type, non-object payload, unknown
                         keys, bad enum values or an inverted date range.
    """
    cls = PARAMETER_TYPES.get(report_type)
    if cls is None:
        raise ValidationError(
            f"report_type must be one of: {', '.join(sorted(PARAMETER_TYPES))}",
            details={"report_type": "invalid"},
        )
    if raw is not None and not isinstance(raw, dict):
        raise ValidationError("parameters must be an object", details={"parameters": "invalid"})
    return cls.from_dict(raw)


def describe_parameters() -> dict[str, dict[str, Any]]:
    """Parameter fields and allowed values per report type (for UI forms)."""
    described = {}
    for report_type, cls in sorted(PARAMETER_TYPES.items()):
        fields_info = {}
        for f in fields(cls):
            if f.name in cls.choices:
                fields_info[f.name] = sorted(cls.choices[f.name])
            elif f.name.endswith("_date"):
                fields_info[f.name] = "date"
            else:
                fields_info[f.name] = "string"
        described[report_type] = fields_info
    return described
