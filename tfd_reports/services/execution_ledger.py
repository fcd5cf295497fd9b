"""
TFD Report Scheduling
Status / Audit Ledger.

Append-only store of ExecutionRecord rows. Two consumers:
    - the execution coordinator, which claims a pending slot before running
      a report and finishes it afterwards
    - the history view, which lists a schedule's runs newest first

Atomic claim:
    ``claim()`` inserts the pending row and commits. The partial unique index
    ``uq_report_executions_one_pending`` rejects a second pending row for the
    same schedule at the database, so two concurrent claims cannot both win.
    The loser's IntegrityError is translated into AlreadyRunningError.

Stale pending rows:
    A process killed mid-run leaves its row pending forever. Rows older than
    STALE_PENDING_THRESHOLD_SECONDS are force-finished as ``error`` before a
    new claim, which frees the slot for a retry.

Finishing:
    ``finish()`` re-reads the row under a lock and only moves it out of
    ``pending``. A slow run whose row was expired in the meantime gets an
    InvalidTransitionError instead of overwriting the terminal state.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta

from flask import current_app, has_app_context
from sqlalchemy.exc import IntegrityError

from tfd_reports.core.exceptions import (
    AlreadyRunningError,
    InvalidTransitionError,
    NotDueError,
    ValidationError,
)
from tfd_reports.models import db
from tfd_reports.models.scheduling import (
    ERROR_MESSAGE_MAX,
    TRIGGER_SOURCES,
    ExecutionRecord,
    ReportSchedule,
)
from tfd_reports.utils.helpers import as_utc, truncate, utcnow

logger = logging.getLogger(__name__)

DEFAULT_STALE_PENDING_THRESHOLD_SECONDS = 3600


class ExecutionLedger:
    """Claim, finish and query ExecutionRecord rows."""

    def __init__(self, stale_threshold_seconds: int | None = None) -> None:
        self._stale_threshold_seconds = stale_threshold_seconds

    @property
    def stale_threshold_seconds(self) -> int:
        if self._stale_threshold_seconds is not None:
            return self._stale_threshold_seconds
        if has_app_context():
            return int(current_app.config.get(
                "STALE_PENDING_THRESHOLD_SECONDS",
                DEFAULT_STALE_PENDING_THRESHOLD_SECONDS,
            ))
        return DEFAULT_STALE_PENDING_THRESHOLD_SECONDS

    # ── Writes ────────────────────────────────────────────────────────────

    def claim(self, schedule: ReportSchedule, triggered_by: str,
              now: datetime | None = None, *,
              due_at: datetime | None = None) -> ExecutionRecord:
        """Create the pending ExecutionRecord for ``schedule`` and commit it.

        When ``due_at`` is given the schedule row is locked and must still be
        active with ``next_execution_at <= due_at``.

        Raises:
            AlreadyRunningError: Another pending record exists for the schedule.
            NotDueError: ``due_at`` was given and the occurrence was already run.
            ValidationError: ``triggered_by`` is not automatic/manual.
        """
        if triggered_by not in TRIGGER_SOURCES:
            raise ValidationError(
                f"triggered_by must be one of: {', '.join(sorted(TRIGGER_SOURCES))}",
                details={"triggered_by": "invalid"},
            )
        now = now or utcnow()
        schedule_id = schedule.id

        if due_at is not None:
            locked = (
                ReportSchedule.query.filter_by(id=schedule_id)
                .populate_existing()
                .with_for_update()
                .first()
            )
            next_at = as_utc(locked.next_execution_at) if locked is not None else None
            if locked is None or not locked.active or next_at is None or next_at > as_utc(due_at):
                db.session.rollback()
                raise NotDueError(schedule_id)

        self.expire_stale(now, schedule_id=schedule_id)

        record = ExecutionRecord(
            schedule_id=schedule_id,
            status="pending",
            started_at=now,
            triggered_by=triggered_by,
        )
        db.session.add(record)
        try:
            db.session.commit()
        except IntegrityError:
            db.session.rollback()
            existing = self.get_pending(schedule_id)
            if existing is None:
                raise
            logger.info(
                "Claim rejected: schedule %s already running (execution %s)",
                schedule_id, existing.id,
                extra={"schedule_id": schedule_id, "execution_id": existing.id},
            )
            raise AlreadyRunningError(schedule_id, existing.id) from None

        logger.info(
            "Claimed execution %s for schedule %s (%s)",
            record.id, schedule_id, triggered_by,
            extra={"schedule_id": schedule_id, "execution_id": record.id,
                   "triggered_by": triggered_by},
        )
        return record

    def finish(self, record: ExecutionRecord, status: str, *,
               output_reference: str | None = None,
               error_message: str | None = None,
               finished_at: datetime | None = None) -> ExecutionRecord:
        """Move a pending record to its terminal state and mirror it on the schedule.

        Flushes but does not commit: the caller commits together with any
        recomputed next occurrence.

        Raises:
            InvalidTransitionError: The stored row is no longer pending (already
                finished or expired by another process) or status is unknown.
        """
        finished_at = finished_at or utcnow()
        current = (
            ExecutionRecord.query.filter_by(id=record.id)
            .populate_existing()
            .with_for_update()
            .first()
        )
        if current is None:
            raise InvalidTransitionError("deleted", status)
        record = current
        record.transition_to(status)
        record.finished_at = finished_at
        if status == "success":
            record.output_reference = output_reference
            record.error_message = None
        else:
            record.error_message = truncate(error_message or "Report execution failed",
                                            ERROR_MESSAGE_MAX)

        schedule = db.session.get(ReportSchedule, record.schedule_id)
        if schedule is not None:
            schedule.last_execution_at = finished_at
            schedule.last_execution_status = status
            schedule.last_error_message = record.error_message

        db.session.flush()
        return record

    def expire_stale(self, now: datetime | None = None, *,
                     schedule_id: int | None = None,
                     threshold_seconds: int | None = None) -> list[ExecutionRecord]:
        """Force-finish pending records older than the staleness threshold."""
        now = now or utcnow()
        threshold = self.stale_threshold_seconds if threshold_seconds is None else threshold_seconds
        stale = self._stale_query(now, threshold, schedule_id).all()
        for record in stale:
            self.finish(
                record, "error",
                error_message=f"Execution abandoned: pending longer than {threshold}s",
                finished_at=now,
            )
            logger.warning(
                "Expired stale execution %s of schedule %s (started %s)",
                record.id, record.schedule_id, record.started_at,
                extra={"schedule_id": record.schedule_id, "execution_id": record.id},
            )
        return stale

    # ── Reads ─────────────────────────────────────────────────────────────

    def get_pending(self, schedule_id: int) -> ExecutionRecord | None:
        return ExecutionRecord.query.filter_by(
            schedule_id=schedule_id, status="pending",
        ).first()

    def list_pending(self, schedule_id: int | None = None) -> list[ExecutionRecord]:
        """All currently pending records, oldest first."""
        q = ExecutionRecord.query.filter_by(status="pending")
        if schedule_id is not None:
            q = q.filter_by(schedule_id=schedule_id)
        return q.order_by(ExecutionRecord.started_at.asc(), ExecutionRecord.id.asc()).all()

    def list_history(self, schedule_id: int, limit: int = 50,
                     offset: int = 0) -> tuple[list[ExecutionRecord], int]:
        """Execution history of one schedule, newest first, with total count."""
        q = ExecutionRecord.query.filter_by(schedule_id=schedule_id)
        total = q.count()
        items = (
            q.order_by(ExecutionRecord.started_at.desc(), ExecutionRecord.id.desc())
            .limit(limit)
            .offset(offset)
            .all()
        )
        return items, total

    def count_stale(self, now: datetime | None = None) -> int:
        return self._stale_query(now or utcnow(), self.stale_threshold_seconds, None).count()

    @staticmethod
    def _stale_query(now: datetime, threshold_seconds: int, schedule_id: int | None):
        cutoff = now - timedelta(seconds=threshold_seconds)
        q = ExecutionRecord.query.filter(
            ExecutionRecord.status == "pending",
            ExecutionRecord.started_at < cutoff,
        )
        if schedule_id is not None:
            q = q.filter(ExecutionRecord.schedule_id == schedule_id)
        return q.order_by(ExecutionRecord.id.asc())
