"""
Platform-wide exception hierarchy.

Services raise these types; blueprints register handlers against them once
and map them to consistent HTTP status codes.

Usage:
    from tfd_reports.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="ReportSchedule", resource_id=42)
    raise ValidationError("time_of_day is required", details={"time_of_day": "..."})

Scheduling-specific errors:
    AlreadyRunningError   — another execution of the schedule is pending (409)
    NotDueError           — an overlapping scan already ran this occurrence
    GenerationError       — the report renderer failed; stored on the execution
    MailerError           — delivery failed; logged, never changes run status
    InvalidTransitionError — illegal execution state change (programming error)
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "ReportSchedule").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input fails business-rule validation in the service layer.

    Maps to HTTP 422 in blueprint error handlers. Nothing is persisted when
    this is raised.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
                 Keys are field names; values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class AlreadyRunningError(Exception):
    """Raised when a schedule already has a pending execution.

    Not a report failure: batches record it as ``skipped`` and the HTTP
    layer answers 409.
    """

    def __init__(self, schedule_id: int, execution_id: int | None = None) -> None:
        self.schedule_id = schedule_id
        self.execution_id = execution_id
        msg = f"ReportSchedule id={schedule_id} already has a pending execution"
        if execution_id is not None:
            msg += f" (execution id={execution_id})"
        super().__init__(msg)


class NotDueError(Exception):
    """Raised when an automatic claim finds the occurrence already handled.

    Happens when two overlapping scans both listed the schedule and the other
    one already ran it and advanced ``next_execution_at``.
    """

    def __init__(self, schedule_id: int) -> None:
        self.schedule_id = schedule_id
        super().__init__(f"ReportSchedule id={schedule_id} is no longer due")


class GenerationError(Exception):
    """Raised by a report generator when the artifact could not be produced."""

    def __init__(self, message: str, report_type: str | None = None) -> None:
        self.report_type = report_type
        super().__init__(message)


class MailerError(Exception):
    """Raised by a mailer when one or more deliveries failed.

    Args:
        message: Summary of the failure.
        recipients: Addresses that did not receive the report.
    """

    def __init__(self, message: str, recipients: list[str] | None = None) -> None:
        self.recipients = list(recipients or [])
        super().__init__(message)


class InvalidTransitionError(Exception):
    """Raised when an execution record is moved out of a terminal state."""

    def __init__(self, from_status: str, to_status: str) -> None:
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(f"Invalid execution transition {from_status!r} -> {to_status!r}")
