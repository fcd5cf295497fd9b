"""
Shared pytest fixtures for the TFD report scheduling test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - generator / mailer: in-memory stand-ins for the coordinator's collaborators
    - coordinator: ExecutionCoordinator wired to the stand-ins
    - make_schedule: factory for persisted ReportSchedule rows
"""

from datetime import timedelta

import pytest

from tfd_reports import create_app
from tfd_reports.core.exceptions import GenerationError, MailerError
from tfd_reports.models import db as _db
from tfd_reports.models.scheduling import ReportSchedule
from tfd_reports.services.email_service import Mailer
from tfd_reports.services.execution_coordinator import ExecutionCoordinator
from tfd_reports.services.execution_ledger import ExecutionLedger
from tfd_reports.services.report_generator import GeneratedReport, ReportGenerator
from tfd_reports.services.scheduler_service import SchedulerService
from tfd_reports.utils.helpers import utcnow


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db, tmp_path):
    """Per-test: open app context, rollback after test, recreate tables."""
    app.config["REPORT_OUTPUT_DIR"] = str(tmp_path / "reports")
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()
    SchedulerService._coordinator = None
    SchedulerService._last_summary = None
    SchedulerService._last_run_at = None
    SchedulerService._last_error = None


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Collaborator stand-ins ───────────────────────────────────────────────


class StubGenerator(ReportGenerator):
    """Records calls; fails on the call numbers listed in ``fail_on``."""

    def __init__(self, fail_on=(), crash_on=()):
        self.calls = []
        self.fail_on = set(fail_on)
        self.crash_on = set(crash_on)
        self.before_generate = None

    def generate(self, report_type, parameters, output_format):
        self.calls.append((report_type, parameters, output_format))
        number = len(self.calls)
        if self.before_generate is not None:
            self.before_generate()
        if number in self.fail_on:
            raise GenerationError(f"stub failure on call {number}", report_type)
        if number in self.crash_on:
            raise RuntimeError(f"stub crash on call {number}")
        return GeneratedReport(
            reference=f"report_{report_type}_{number}.csv",
            filename=f"report_{report_type}_{number}.csv",
            mimetype="text/csv",
            content=b"Name;E-mail\n",
            row_count=0,
        )


class StubMailer(Mailer):
    """Records deliveries; raises MailerError when ``fail`` is set."""

    def __init__(self, fail=False):
        self.sent = []
        self.fail = fail

    def send(self, recipients, report, schedule):
        self.sent.append((list(recipients), report.reference, schedule.id))
        if self.fail:
            raise MailerError("smtp down", recipients=list(recipients))
        return []


@pytest.fixture()
def generator():
    return StubGenerator()


@pytest.fixture()
def mailer():
    return StubMailer()


@pytest.fixture()
def coordinator(generator, mailer):
    return ExecutionCoordinator(generator=generator, mailer=mailer, ledger=ExecutionLedger(),
                                max_workers=1)


# ── Data factories ───────────────────────────────────────────────────────


@pytest.fixture()
def make_schedule():
    """Persist a ReportSchedule; due one minute ago unless overridden."""

    def _make(**overrides):
        values = {
            "name": "Monthly TFD requests",
            "description": "",
            "report_type": "tfd_requests",
            "parameters": {},
            "frequency": "daily",
            "time_of_day": "08:00",
            "output_format": "csv",
            "recipients": [],
            "active": True,
            "created_by": "tester",
            "last_execution_status": "none",
            "next_execution_at": utcnow() - timedelta(minutes=1),
        }
        values.update(overrides)
        schedule = ReportSchedule(**values)
        _db.session.add(schedule)
        _db.session.commit()
        return schedule

    return _make


@pytest.fixture()
def make_generator():
    """Factory for generators with scripted failures: make_generator(fail_on={2})."""
    return StubGenerator


@pytest.fixture()
def make_mailer():
    return StubMailer
