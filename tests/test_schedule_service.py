"""
Tests — Report Schedule Service (CRUD + lifecycle of next_execution_at).
"""

from datetime import timedelta

import pytest

from tfd_reports.core.exceptions import AlreadyRunningError, NotFoundError, ValidationError
from tfd_reports.models import db
from tfd_reports.models.scheduling import EmailLog, ExecutionRecord, ReportSchedule
from tfd_reports.services import schedule_service as svc
from tfd_reports.services.execution_ledger import ExecutionLedger
from tfd_reports.utils.helpers import as_utc, utcnow


def _payload(**overrides):
    data = {
        "name": "Weekly requests",
        "description": "Approved requests of the week",
        "report_type": "tfd_requests",
        "parameters": {"status": "approved"},
        "frequency": "weekly",
        "day_of_week": 1,
        "time_of_day": "09:00",
        "output_format": "excel",
        "recipients": ["Ops@Example.com"],
    }
    data.update(overrides)
    return data


class TestCreate:

    def test_create_weekly(self):
        before = utcnow()
        schedule = svc.create_schedule(_payload(), created_by="maria")

        assert schedule.id is not None
        assert schedule.created_by == "maria"
        assert schedule.active is True
        assert schedule.last_execution_status == "none"
        assert schedule.recipients == ["Ops@example.com"]
        assert schedule.parameters == {"status": "approved"}
        nxt = as_utc(schedule.next_execution_at)
        assert before < nxt <= before + timedelta(days=7)
        assert nxt.weekday() == 0  # Monday
        assert (nxt.hour, nxt.minute) == (9, 0)

    def test_create_on_demand_has_no_next(self):
        schedule = svc.create_schedule(
            _payload(frequency="on_demand", day_of_week=None), created_by="maria")
        assert schedule.next_execution_at is None

    def test_create_inactive_has_no_next(self):
        schedule = svc.create_schedule(_payload(active=False), created_by="maria")
        assert schedule.next_execution_at is None

    def test_defaults(self):
        schedule = svc.create_schedule(
            {"name": "Users", "report_type": "users", "frequency": "daily",
             "time_of_day": "07:00"},
            created_by="maria",
        )
        assert schedule.output_format == "pdf"
        assert schedule.recipients == []
        assert schedule.parameters == {}

    @pytest.mark.parametrize("overrides, field", [
        ({"name": ""}, "name"),
        ({"name": "x" * 101}, "name"),
        ({"description": "x" * 501}, "description"),
        ({"report_type": "payroll"}, "report_type"),
        ({"frequency": "hourly"}, "frequency"),
        ({"time_of_day": "25:00"}, "time_of_day"),
        ({"day_of_week": None}, "day_of_week"),
        ({"output_format": "docx"}, "output_format"),
        ({"recipients": ["not-an-email"]}, "recipients"),
        ({"recipients": "ops@example.com"}, "recipients"),
        ({"parameters": {"color": "red"}}, "color"),
    ])
    def test_validation_rejects_and_persists_nothing(self, overrides, field):
        with pytest.raises(ValidationError) as exc:
            svc.create_schedule(_payload(**overrides), created_by="maria")
        assert field in exc.value.details
        assert ReportSchedule.query.count() == 0

    def test_duplicate_recipients_collapsed(self):
        schedule = svc.create_schedule(
            _payload(recipients=["a@example.com", "a@example.com", "b@example.com"]),
            created_by="maria",
        )
        assert schedule.recipients == ["a@example.com", "b@example.com"]


class TestReadList:

    def test_get_missing(self):
        with pytest.raises(NotFoundError):
            svc.get_schedule(404)

    def test_list_filters_and_pagination(self):
        for i in range(3):
            svc.create_schedule(_payload(name=f"req {i}"), created_by="maria")
        svc.create_schedule(_payload(name="users", report_type="users", parameters={}),
                            created_by="joao")
        svc.create_schedule(_payload(name="off", active=False), created_by="joao")

        result = svc.list_schedules(report_type="tfd_requests", active=True)
        assert result["pagination"]["total"] == 3

        result = svc.list_schedules(created_by="joao")
        assert {s["name"] for s in result["items"]} == {"users", "off"}

        page = svc.list_schedules(page=2, limit=2)
        assert page["pagination"] == {"total": 5, "page": 2, "pages": 3, "limit": 2}
        assert len(page["items"]) == 2

    def test_list_newest_first(self):
        first = svc.create_schedule(_payload(name="first"), created_by="maria")
        second = svc.create_schedule(_payload(name="second"), created_by="maria")
        ids = [s["id"] for s in svc.list_schedules()["items"]]
        assert ids == [second.id, first.id]


class TestUpdate:

    def test_non_timing_edit_keeps_next(self):
        schedule = svc.create_schedule(_payload(), created_by="maria")
        planned = schedule.next_execution_at
        svc.update_schedule(schedule.id, {"name": "Renamed", "recipients": []})
        assert schedule.name == "Renamed"
        assert schedule.next_execution_at == planned

    def test_switch_weekly_to_monthly(self):
        schedule = svc.create_schedule(_payload(), created_by="maria")
        svc.update_schedule(schedule.id, {"frequency": "monthly", "day_of_month": 31})
        assert schedule.day_of_week is None
        assert schedule.day_of_month == 31
        assert as_utc(schedule.next_execution_at) > utcnow()

    def test_switch_to_daily_drops_day_of_week(self):
        schedule = svc.create_schedule(_payload(), created_by="maria")
        svc.update_schedule(schedule.id, {"frequency": "daily"})
        assert schedule.frequency == "daily"
        assert schedule.day_of_week is None

    def test_switch_to_on_demand_clears_next(self):
        schedule = svc.create_schedule(_payload(), created_by="maria")
        svc.update_schedule(schedule.id, {"frequency": "on_demand"})
        assert schedule.next_execution_at is None

    def test_report_type_change_revalidates_parameters(self):
        schedule = svc.create_schedule(_payload(), created_by="maria")
        with pytest.raises(ValidationError):
            svc.update_schedule(schedule.id, {"report_type": "municipalities"})
        db.session.refresh(schedule)
        assert schedule.report_type == "tfd_requests"

    def test_unknown_field_rejected(self):
        schedule = svc.create_schedule(_payload(), created_by="maria")
        with pytest.raises(ValidationError) as exc:
            svc.update_schedule(schedule.id, {"last_execution_status": "success"})
        assert exc.value.details == {"last_execution_status": "not_allowed"}


class TestActivation:

    def test_deactivate_clears_next_and_reactivate_recomputes(self):
        schedule = svc.create_schedule(_payload(), created_by="maria")
        svc.set_active(schedule.id, False)
        assert schedule.active is False
        assert schedule.next_execution_at is None

        before = utcnow()
        svc.set_active(schedule.id, "true")
        assert schedule.active is True
        assert as_utc(schedule.next_execution_at) > before

    def test_invalid_flag(self):
        schedule = svc.create_schedule(_payload(), created_by="maria")
        with pytest.raises(ValidationError):
            svc.set_active(schedule.id, "maybe")


class TestDelete:

    def test_delete_removes_history_and_keeps_email_audit(self):
        schedule = svc.create_schedule(_payload(), created_by="maria")
        ledger = ExecutionLedger()
        record = ledger.claim(schedule, "manual")
        ledger.finish(record, "success", output_reference="r.xlsx")
        db.session.add(EmailLog(recipient_email="ops@example.com", subject="s",
                                status="sent", schedule_id=schedule.id))
        db.session.commit()
        schedule_id = schedule.id

        svc.delete_schedule(schedule_id)

        assert db.session.get(ReportSchedule, schedule_id) is None
        assert ExecutionRecord.query.filter_by(schedule_id=schedule_id).count() == 0
        assert EmailLog.query.one().schedule_id is None

    def test_delete_refused_while_running(self):
        schedule = svc.create_schedule(_payload(), created_by="maria")
        ExecutionLedger().claim(schedule, "manual")
        with pytest.raises(AlreadyRunningError):
            svc.delete_schedule(schedule.id)
        assert db.session.get(ReportSchedule, schedule.id) is not None
