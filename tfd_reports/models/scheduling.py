"""
TFD Report Scheduling
Report schedule models.

Models:
    - ReportSchedule: Persisted rule describing when and how a report is generated
    - ExecutionRecord: One time-stamped attempt to run a ReportSchedule (audit ledger)
    - EmailLog: Outbound email audit trail for report deliveries
"""

from datetime import datetime, timezone

from tfd_reports.core.exceptions import InvalidTransitionError
from tfd_reports.models import db
from tfd_reports.utils.helpers import as_utc, truncate


# ── Constants ────────────────────────────────────────────────────────────────

REPORT_TYPES = {"users", "municipalities", "tfd_requests", "access_logs"}
FREQUENCIES = {"daily", "weekly", "monthly", "on_demand"}
RECURRING_FREQUENCIES = {"daily", "weekly", "monthly"}
OUTPUT_FORMATS = {"pdf", "excel", "csv"}
SCHEDULE_RUN_STATUSES = {"none", "success", "error"}

EXECUTION_STATUSES = {"pending", "success", "error"}
TRIGGER_SOURCES = {"automatic", "manual"}
EMAIL_STATUSES = {"queued", "sent", "failed"}

ERROR_MESSAGE_MAX = 1000
ERROR_SUMMARY_MAX = 200


# ── Lifecycle Transition Guards ──────────────────────────────────────────────

EXECUTION_TRANSITIONS = {
    "pending": ["success", "error"],
    "success": [],
    "error":   [],
}


def validate_execution_transition(old_status, new_status):
    """Return True if ExecutionRecord status transition is valid."""
    return new_status in EXECUTION_TRANSITIONS.get(old_status, [])


def _iso(value):
    value = as_utc(value)
    return value.isoformat() if value else None


class ReportSchedule(db.Model):
    """
    Registered report schedule.

    ``next_execution_at`` is owned by the frequency resolver: it is set for
    every active recurring schedule and NULL for on-demand or inactive ones.
    ``last_execution_*`` mirror the most recently finished ExecutionRecord.
    """

    __tablename__ = "report_schedules"
    __table_args__ = (
        db.Index("ix_report_schedules_active_next", "active", "next_execution_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.String(500), default="")
    report_type = db.Column(db.String(30), nullable=False, index=True,
                            comment="users | municipalities | tfd_requests | access_logs")
    parameters = db.Column(db.JSON, default=dict,
                           comment="Typed per report_type, see services.report_params")
    frequency = db.Column(db.String(20), nullable=False, index=True,
                          comment="daily | weekly | monthly | on_demand")
    day_of_week = db.Column(db.Integer, nullable=True,
                            comment="0=Sunday .. 6=Saturday, weekly only")
    day_of_month = db.Column(db.Integer, nullable=True,
                             comment="1..31, monthly only (clamped to month length)")
    time_of_day = db.Column(db.String(5), nullable=False, comment="HH:MM, 24h")
    output_format = db.Column(db.String(10), nullable=False, default="pdf",
                              comment="pdf | excel | csv")
    recipients = db.Column(db.JSON, default=list)
    active = db.Column(db.Boolean, nullable=False, default=True)
    created_by = db.Column(db.String(150), nullable=False, index=True)

    # Execution tracking
    last_execution_at = db.Column(db.DateTime(timezone=True), nullable=True)
    next_execution_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_execution_status = db.Column(db.String(20), nullable=False, default="none",
                                      comment="none | success | error")
    last_error_message = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    executions = db.relationship(
        "ExecutionRecord",
        backref="schedule",
        lazy="dynamic",
        passive_deletes=True,
    )

    @property
    def is_recurring(self) -> bool:
        return self.frequency in RECURRING_FREQUENCIES

    @property
    def running(self) -> bool:
        return self.executions.filter_by(status="pending").count() > 0

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "report_type": self.report_type,
            "parameters": self.parameters or {},
            "frequency": self.frequency,
            "day_of_week": self.day_of_week,
            "day_of_month": self.day_of_month,
            "time_of_day": self.time_of_day,
            "output_format": self.output_format,
            "recipients": self.recipients or [],
            "active": self.active,
            "created_by": self.created_by,
            "last_execution_at": _iso(self.last_execution_at),
            "next_execution_at": _iso(self.next_execution_at),
            "last_execution_status": self.last_execution_status,
            "last_error_message": self.last_error_message,
            "last_error_summary": truncate(self.last_error_message, ERROR_SUMMARY_MAX),
            "running": self.running,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<ReportSchedule {self.id}: {self.name} [{self.frequency}]>"


class ExecutionRecord(db.Model):
    """
    One attempt to run a ReportSchedule.

    Append-only: rows are created pending by the execution ledger and moved
    exactly once to success or error. The partial unique index allows a
    single pending row per schedule, which is what makes the claim atomic.
    """

    __tablename__ = "report_executions"
    __table_args__ = (
        db.Index("ix_report_executions_schedule_status", "schedule_id", "status"),
        db.Index("ix_report_executions_schedule_started", "schedule_id", "started_at"),
        db.Index(
            "uq_report_executions_one_pending",
            "schedule_id",
            unique=True,
            sqlite_where=db.text("status = 'pending'"),
            postgresql_where=db.text("status = 'pending'"),
        ),
        db.CheckConstraint(
            "status IN ('pending','success','error')",
            name="ck_report_execution_status",
        ),
        db.CheckConstraint(
            "triggered_by IN ('automatic','manual')",
            name="ck_report_execution_trigger",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    schedule_id = db.Column(
        db.Integer,
        db.ForeignKey("report_schedules.id", ondelete="CASCADE"),
        nullable=False,
    )
    started_at = db.Column(db.DateTime(timezone=True), nullable=False,
                           default=lambda: datetime.now(timezone.utc))
    finished_at = db.Column(db.DateTime(timezone=True), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="pending")
    error_message = db.Column(db.Text, nullable=True)
    triggered_by = db.Column(db.String(20), nullable=False, default="automatic")
    output_reference = db.Column(db.String(500), nullable=True,
                                 comment="Opaque handle to the generated artifact")

    def transition_to(self, new_status):
        """Move to ``new_status``; only pending -> success | error is allowed."""
        if not validate_execution_transition(self.status, new_status):
            raise InvalidTransitionError(self.status, new_status)
        self.status = new_status

    @property
    def duration_ms(self) -> int | None:
        if not self.finished_at or not self.started_at:
            return None
        delta = as_utc(self.finished_at) - as_utc(self.started_at)
        return int(delta.total_seconds() * 1000)

    def to_dict(self):
        return {
            "id": self.id,
            "schedule_id": self.schedule_id,
            "started_at": _iso(self.started_at),
            "finished_at": _iso(self.finished_at),
            "status": self.status,
            "error_message": self.error_message,
            "triggered_by": self.triggered_by,
            "output_reference": self.output_reference,
            "duration_ms": self.duration_ms,
        }

    def __repr__(self):
        return f"<ExecutionRecord {self.id} schedule={self.schedule_id} [{self.status}]>"


class EmailLog(db.Model):
    """
    Outbound email audit log.

    Every report delivery attempt is logged here for audit/debug.
    """

    __tablename__ = "email_logs"

    id = db.Column(db.Integer, primary_key=True)
    recipient_email = db.Column(db.String(255), nullable=False, index=True)
    subject = db.Column(db.String(500), nullable=False)
    template_name = db.Column(db.String(100), nullable=True,
                              comment="Email template used")
    attachment_name = db.Column(db.String(255), nullable=True)
    status = db.Column(db.String(20), default="queued",
                       comment="queued, sent, failed")
    error_message = db.Column(db.Text, nullable=True)

    schedule_id = db.Column(
        db.Integer,
        db.ForeignKey("report_schedules.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )

    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_email": self.recipient_email,
            "subject": self.subject,
            "template_name": self.template_name,
            "attachment_name": self.attachment_name,
            "status": self.status,
            "error_message": self.error_message,
            "schedule_id": self.schedule_id,
            "sent_at": _iso(self.sent_at),
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<EmailLog {self.id}: {self.subject[:40]} → {self.recipient_email}>"
