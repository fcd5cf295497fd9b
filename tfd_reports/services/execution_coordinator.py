"""
TFD Report Scheduling
Execution Coordinator.

Runs one schedule end to end:

    claim pending slot → generate report → finish record (success/error)
    → recompute next occurrence (automatic runs only) → commit → mail

and runs a batch of due schedules so that one failing item never stops the
rest. The generator, mailer and ledger are injected, which is how tests swap
in stubs.

Error policy:
    GenerationError            → record finished as error, batch continues
    unexpected generator error → wrapped as a generation failure
    MailerError                → logged; the record keeps its status
    AlreadyRunningError        → nothing recorded; batch outcome "skipped"
    InvalidTransitionError     → run was superseded (its pending row expired
                                 meanwhile); the stored outcome stands, no
                                 mirror update, no advance, no mail
    SQLAlchemyError            → persistence is down; propagates to the caller
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass
from datetime import datetime

from flask import current_app, has_app_context
from sqlalchemy.exc import SQLAlchemyError

from tfd_reports.core.exceptions import (
    AlreadyRunningError,
    GenerationError,
    InvalidTransitionError,
    MailerError,
    NotDueError,
    ValidationError,
)
from tfd_reports.models import db
from tfd_reports.models.scheduling import ExecutionRecord, ReportSchedule
from tfd_reports.services.due_scanner import list_due
from tfd_reports.services.email_service import Mailer, ReportMailer
from tfd_reports.services.execution_ledger import ExecutionLedger
from tfd_reports.services.frequency import compute_next, scheduler_timezone
from tfd_reports.services.report_generator import ReportGenerator, TabularReportGenerator
from tfd_reports.utils.helpers import utcnow

logger = logging.getLogger(__name__)


@dataclass
class BatchOutcome:
    """Result of one schedule inside a due batch."""

    schedule_id: int
    name: str
    outcome: str  # success | error | skipped
    execution_id: int | None = None
    message: str | None = None

    def to_dict(self):
        return asdict(self)


class ExecutionCoordinator:
    """Run report schedules through generator, ledger and mailer."""

    def __init__(self, generator: ReportGenerator | None = None,
                 mailer: Mailer | None = None,
                 ledger: ExecutionLedger | None = None,
                 max_workers: int | None = None) -> None:
        self.generator = generator or TabularReportGenerator()
        self.mailer = mailer or ReportMailer()
        self.ledger = ledger or ExecutionLedger()
        self._max_workers = max_workers

    @property
    def max_workers(self) -> int:
        if self._max_workers is not None:
            return max(1, self._max_workers)
        if has_app_context():
            return max(1, int(current_app.config.get("MAX_CONCURRENT_EXECUTIONS", 1)))
        return 1

    # ── Single execution ──────────────────────────────────────────────────

    def execute(self, schedule: ReportSchedule, triggered_by: str = "automatic", *,
                due_at: datetime | None = None) -> ExecutionRecord:
        """Run ``schedule`` once and return its finished ExecutionRecord.

        Args:
            schedule: The schedule to run.
            triggered_by: "automatic" (scanner) or "manual" (user action).
            due_at: Scan instant of an automatic batch; the claim is refused
                    when another scan already ran this occurrence.

        Raises:
            AlreadyRunningError: The schedule has a pending execution.
            NotDueError: ``due_at`` was given and the occurrence was already run.
            SQLAlchemyError: Persistence failed.
        """
        record = self.ledger.claim(schedule, triggered_by, utcnow(), due_at=due_at)
        schedule_id = schedule.id
        execution_id = record.id
        started = time.monotonic()

        report = None
        error_message = None
        try:
            report = self.generator.generate(
                schedule.report_type, schedule.parameters or {}, schedule.output_format,
            )
        except GenerationError as exc:
            error_message = str(exc)
        except Exception as exc:
            logger.exception(
                "Generator crashed for schedule %s", schedule_id,
                extra={"schedule_id": schedule_id, "execution_id": execution_id},
            )
            db.session.rollback()
            error_message = f"Report generation failed unexpectedly: {exc}"

        finished_at = utcnow()
        try:
            if report is not None:
                self.ledger.finish(record, "success", output_reference=report.reference,
                                   finished_at=finished_at)
            else:
                self.ledger.finish(record, "error", error_message=error_message,
                                   finished_at=finished_at)
        except InvalidTransitionError as exc:
            db.session.rollback()
            logger.warning(
                "Report schedule %s: execution %s was superseded before it finished (%s); "
                "result discarded",
                schedule_id, execution_id, exc,
                extra={"schedule_id": schedule_id, "execution_id": execution_id,
                       "triggered_by": triggered_by,
                       "duration_ms": int((time.monotonic() - started) * 1000)},
            )
            return record

        if triggered_by == "automatic" and schedule.is_recurring:
            self._advance(schedule, finished_at)

        db.session.commit()

        duration_ms = int((time.monotonic() - started) * 1000)
        log_extra = {"schedule_id": schedule_id, "execution_id": execution_id,
                     "triggered_by": triggered_by, "duration_ms": duration_ms}
        if report is not None:
            logger.info("Report schedule %s finished: success (%s)",
                        schedule_id, report.reference, extra=log_extra)
            self._deliver(schedule, report)
        else:
            logger.warning("Report schedule %s finished: error: %s",
                           schedule_id, record.error_message, extra=log_extra)
        return record

    def _advance(self, schedule: ReportSchedule, finished_at: datetime) -> None:
        """Recompute next_execution_at from the finish time."""
        if not schedule.active:
            schedule.next_execution_at = None
            return
        try:
            schedule.next_execution_at = compute_next(schedule, finished_at, scheduler_timezone())
        except ValidationError as exc:
            # Stored timing no longer resolves; stop scanning it until edited.
            logger.error("Cannot compute next run for schedule %s: %s", schedule.id, exc,
                         extra={"schedule_id": schedule.id})
            schedule.next_execution_at = None

    def _deliver(self, schedule: ReportSchedule, report) -> None:
        """Mail the artifact. Failures are logged and never touch the record."""
        recipients = list(schedule.recipients or [])
        if not recipients:
            return
        try:
            self.mailer.send(recipients, report, schedule)
            db.session.commit()
        except MailerError as exc:
            db.session.commit()
            logger.warning("Report delivery failed for schedule %s: %s (%s)",
                           schedule.id, exc, ", ".join(exc.recipients),
                           extra={"schedule_id": schedule.id})
        except Exception:
            db.session.rollback()
            logger.exception("Mailer crashed for schedule %s", schedule.id,
                             extra={"schedule_id": schedule.id})

    # ── Batch ─────────────────────────────────────────────────────────────

    def process_due_batch(self, now: datetime | None = None) -> list[BatchOutcome]:
        """Execute every due schedule and collect one outcome per schedule.

        Per-item failures are isolated. Only SQLAlchemyError propagates.
        """
        now = now or utcnow()
        due = [(s.id, s.name) for s in list_due(now)]
        if not due:
            logger.debug("No report schedules due at %s", now.isoformat())
            return []

        logger.info("Processing %d due report schedule(s)", len(due))
        workers = min(self.max_workers, len(due))
        if workers <= 1:
            outcomes = [self._run_due(schedule_id, name, now) for schedule_id, name in due]
        else:
            app = current_app._get_current_object()
            with ThreadPoolExecutor(max_workers=workers,
                                    thread_name_prefix="report-exec") as pool:
                futures = [
                    pool.submit(self._run_due_in_context, app, schedule_id, name, now)
                    for schedule_id, name in due
                ]
                outcomes = [future.result() for future in futures]

        counts = {}
        for outcome in outcomes:
            counts[outcome.outcome] = counts.get(outcome.outcome, 0) + 1
        logger.info(
            "Due batch finished: %d success, %d error, %d skipped",
            counts.get("success", 0), counts.get("error", 0), counts.get("skipped", 0),
        )
        return outcomes

    def _run_due_in_context(self, app, schedule_id: int, name: str,
                            now: datetime) -> BatchOutcome:
        # Each worker gets its own scoped session through its own app context.
        with app.app_context():
            return self._run_due(schedule_id, name, now)

    def _run_due(self, schedule_id: int, name: str, now: datetime) -> BatchOutcome:
        schedule = db.session.get(ReportSchedule, schedule_id)
        if schedule is None:
            return BatchOutcome(schedule_id, name, "skipped", message="Schedule was deleted")

        try:
            record = self.execute(schedule, "automatic", due_at=now)
        except (AlreadyRunningError, NotDueError) as exc:
            logger.info("Skipping schedule %s: %s", schedule_id, exc,
                        extra={"schedule_id": schedule_id})
            return BatchOutcome(schedule_id, name, "skipped", message=str(exc))
        except SQLAlchemyError:
            db.session.rollback()
            raise
        except Exception as exc:
            db.session.rollback()
            logger.exception("Report schedule %s failed", schedule_id,
                             extra={"schedule_id": schedule_id})
            return BatchOutcome(schedule_id, name, "error", message=str(exc))

        return BatchOutcome(schedule_id, name, record.status,
                            execution_id=record.id, message=record.error_message)
