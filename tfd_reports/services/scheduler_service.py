"""
TFD Report Scheduling
Scheduler Service.

Periodic driver for due report schedules. A daemon thread wakes every
SCHEDULER_SCAN_INTERVAL_SECONDS and runs one due batch inside an app context.

Deployments that prefer an external cron can leave SCHEDULER_ENABLED off and
call ``flask process-due-reports`` instead; both paths go through
``run_once()``. Overlapping runs from several processes are safe because the
execution ledger claims each schedule atomically.
"""

from __future__ import annotations

import logging
import threading
import time

import click
from flask import Flask
from sqlalchemy.exc import SQLAlchemyError

from tfd_reports.services.execution_coordinator import ExecutionCoordinator
from tfd_reports.utils.helpers import utcnow

logger = logging.getLogger(__name__)

DEFAULT_SCAN_INTERVAL_SECONDS = 60


class SchedulerService:
    """
    Lightweight scheduler service.

    Runs due report batches on a background thread, within Flask app context.
    """

    _app: Flask | None = None
    _thread: threading.Thread | None = None
    _stop_event: threading.Event | None = None
    _coordinator: ExecutionCoordinator | None = None
    _last_run_at = None
    _last_summary: dict | None = None
    _last_error: str | None = None

    @classmethod
    def init_app(cls, app: Flask, coordinator: ExecutionCoordinator | None = None) -> None:
        """Initialize scheduler with Flask app context."""
        cls._app = app
        cls._coordinator = coordinator
        app.extensions["scheduler"] = cls
        app.cli.add_command(process_due_reports_command)
        logger.info("SchedulerService initialized (interval=%ss, enabled=%s)",
                    cls.interval_seconds(), app.config.get("SCHEDULER_ENABLED", False))

    @classmethod
    def interval_seconds(cls) -> int:
        if not cls._app:
            return DEFAULT_SCAN_INTERVAL_SECONDS
        return max(1, int(cls._app.config.get(
            "SCHEDULER_SCAN_INTERVAL_SECONDS", DEFAULT_SCAN_INTERVAL_SECONDS)))

    @classmethod
    def coordinator(cls) -> ExecutionCoordinator:
        if cls._coordinator is None:
            cls._coordinator = ExecutionCoordinator()
        return cls._coordinator

    @classmethod
    def is_running(cls) -> bool:
        return cls._thread is not None and cls._thread.is_alive()

    @classmethod
    def start(cls) -> bool:
        """Start the background loop. Returns False if already running."""
        if not cls._app:
            raise RuntimeError("SchedulerService.init_app() must be called first")
        if cls.is_running():
            return False
        cls._stop_event = threading.Event()
        cls._thread = threading.Thread(
            target=cls._loop,
            args=(cls._stop_event,),
            name="report-scheduler",
            daemon=True,
        )
        cls._thread.start()
        logger.info("Report scheduler started")
        return True

    @classmethod
    def stop(cls, timeout: float | None = 10) -> None:
        """Signal the loop to stop and wait for the current batch to end."""
        if cls._stop_event is not None:
            cls._stop_event.set()
        if cls._thread is not None:
            cls._thread.join(timeout)
        cls._thread = None
        logger.info("Report scheduler stopped")

    @classmethod
    def _loop(cls, stop_event: threading.Event) -> None:
        while not stop_event.is_set():
            try:
                cls.run_once()
            except Exception:
                # run_once already recorded it; keep the loop alive for the next tick.
                logger.exception("Report scheduler tick failed")
            stop_event.wait(cls.interval_seconds())

    @classmethod
    def run_once(cls) -> dict:
        """
        Process one due batch.

        Returns:
            Dict with counts per outcome, duration_ms and the outcomes.

        Raises:
            SQLAlchemyError: Persistence is unavailable.
        """
        if not cls._app:
            raise RuntimeError("SchedulerService.init_app() must be called first")

        start = time.monotonic()
        cls._last_run_at = utcnow()
        try:
            with cls._app.app_context():
                outcomes = cls.coordinator().process_due_batch()
        except SQLAlchemyError as exc:
            cls._last_error = str(exc)
            logger.error("Due batch aborted, database unavailable: %s", exc)
            raise

        duration_ms = int((time.monotonic() - start) * 1000)
        summary = {
            "processed": len(outcomes),
            "success": sum(1 for o in outcomes if o.outcome == "success"),
            "error": sum(1 for o in outcomes if o.outcome == "error"),
            "skipped": sum(1 for o in outcomes if o.outcome == "skipped"),
            "duration_ms": duration_ms,
            "outcomes": [o.to_dict() for o in outcomes],
        }
        cls._last_summary = summary
        cls._last_error = None
        return summary

    @classmethod
    def status(cls) -> dict:
        """Scheduler state for health checks and the admin UI."""
        last = cls._last_summary or {}
        return {
            "initialized": cls._app is not None,
            "running": cls.is_running(),
            "interval_seconds": cls.interval_seconds(),
            "last_run_at": cls._last_run_at.isoformat() if cls._last_run_at else None,
            "last_processed": last.get("processed"),
            "last_error": cls._last_error,
        }


@click.command("process-due-reports")
def process_due_reports_command():
    """Run every due report schedule once."""
    summary = SchedulerService.run_once()
    click.echo(
        f"Processed {summary['processed']} schedule(s): "
        f"{summary['success']} success, {summary['error']} error, "
        f"{summary['skipped']} skipped ({summary['duration_ms']} ms)"
    )
