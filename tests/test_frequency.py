"""
Tests — Frequency Resolver.

Covers:
    1. Daily: same-day vs next-day, strictly-after boundary
    2. Weekly: weekday numbering (0=Sunday), same-day before/after time
    3. Monthly: clamping to short months, year roll-over
    4. on_demand → None
    5. Timing validation
    6. Scheduler timezone
"""

from datetime import datetime, timezone
from zoneinfo import ZoneInfo

import pytest

from tfd_reports.core.exceptions import ValidationError
from tfd_reports.services.frequency import (
    compute_next,
    parse_time_of_day,
    scheduler_timezone,
    validate_timing,
)


def _utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
#  Daily
# ═══════════════════════════════════════════════════════════════════════════

class TestDaily:

    def test_same_day_when_time_ahead(self):
        nxt = compute_next({"frequency": "daily", "time_of_day": "08:00"}, _utc(2025, 1, 1, 7, 59))
        assert nxt == _utc(2025, 1, 1, 8, 0)

    def test_next_day_when_time_passed(self):
        nxt = compute_next({"frequency": "daily", "time_of_day": "08:00"}, _utc(2025, 1, 1, 8, 1))
        assert nxt == _utc(2025, 1, 2, 8, 0)

    def test_strictly_after_reference(self):
        nxt = compute_next({"frequency": "daily", "time_of_day": "08:00"}, _utc(2025, 1, 1, 8, 0))
        assert nxt == _utc(2025, 1, 2, 8, 0)

    def test_month_and_year_rollover(self):
        nxt = compute_next({"frequency": "daily", "time_of_day": "00:30"}, _utc(2024, 12, 31, 23, 0))
        assert nxt == _utc(2025, 1, 1, 0, 30)

    def test_naive_reference_is_utc(self):
        nxt = compute_next({"frequency": "daily", "time_of_day": "08:00"}, datetime(2025, 1, 1, 7, 0))
        assert nxt == _utc(2025, 1, 1, 8, 0)
        assert nxt.tzinfo is not None


# ═══════════════════════════════════════════════════════════════════════════
#  Weekly
# ═══════════════════════════════════════════════════════════════════════════

class TestWeekly:

    def test_monday_from_wednesday(self):
        # 2025-01-01 is a Wednesday
        definition = {"frequency": "weekly", "day_of_week": 1, "time_of_day": "09:00"}
        assert compute_next(definition, _utc(2025, 1, 1, 10, 0)) == _utc(2025, 1, 6, 9, 0)

    def test_sunday_is_zero(self):
        definition = {"frequency": "weekly", "day_of_week": 0, "time_of_day": "09:00"}
        nxt = compute_next(definition, _utc(2025, 1, 1, 10, 0))
        assert nxt == _utc(2025, 1, 5, 9, 0)
        assert nxt.weekday() == 6

    def test_saturday_is_six(self):
        definition = {"frequency": "weekly", "day_of_week": 6, "time_of_day": "09:00"}
        assert compute_next(definition, _utc(2025, 1, 1, 10, 0)) == _utc(2025, 1, 4, 9, 0)

    def test_same_weekday_before_time_is_today(self):
        definition = {"frequency": "weekly", "day_of_week": 3, "time_of_day": "11:00"}
        assert compute_next(definition, _utc(2025, 1, 1, 10, 0)) == _utc(2025, 1, 1, 11, 0)

    def test_same_weekday_after_time_is_next_week(self):
        definition = {"frequency": "weekly", "day_of_week": 3, "time_of_day": "09:00"}
        assert compute_next(definition, _utc(2025, 1, 1, 10, 0)) == _utc(2025, 1, 8, 9, 0)

    @pytest.mark.parametrize("day_of_week", range(7))
    def test_result_matches_weekday(self, day_of_week):
        definition = {"frequency": "weekly", "day_of_week": day_of_week, "time_of_day": "12:00"}
        ref = _utc(2025, 3, 12, 13, 0)
        nxt = compute_next(definition, ref)
        assert (nxt.isoweekday() % 7) == day_of_week
        assert ref < nxt <= _utc(2025, 3, 19, 13, 0)

    def test_missing_day_of_week(self):
        with pytest.raises(ValidationError):
            compute_next({"frequency": "weekly", "time_of_day": "09:00"}, _utc(2025, 1, 1))


# ═══════════════════════════════════════════════════════════════════════════
#  Monthly
# ═══════════════════════════════════════════════════════════════════════════

class TestMonthly:

    def test_same_day_one_hour_ahead(self):
        definition = {"frequency": "monthly", "day_of_month": 15, "time_of_day": "23:00"}
        assert compute_next(definition, _utc(2025, 5, 15, 22, 0)) == _utc(2025, 5, 15, 23, 0)

    def test_next_month_when_passed(self):
        definition = {"frequency": "monthly", "day_of_month": 15, "time_of_day": "08:00"}
        assert compute_next(definition, _utc(2025, 5, 15, 9, 0)) == _utc(2025, 6, 15, 8, 0)

    def test_day_31_clamps_to_february(self):
        definition = {"frequency": "monthly", "day_of_month": 31, "time_of_day": "08:00"}
        assert compute_next(definition, _utc(2025, 2, 1, 0, 0)) == _utc(2025, 2, 28, 8, 0)

    def test_day_31_clamps_to_leap_february(self):
        definition = {"frequency": "monthly", "day_of_month": 31, "time_of_day": "08:00"}
        assert compute_next(definition, _utc(2024, 2, 10, 0, 0)) == _utc(2024, 2, 29, 8, 0)

    def test_clamp_is_per_month(self):
        definition = {"frequency": "monthly", "day_of_month": 31, "time_of_day": "08:00"}
        # After the clamped February run, March goes back to the 31st
        assert compute_next(definition, _utc(2025, 2, 28, 8, 0)) == _utc(2025, 3, 31, 8, 0)

    def test_december_rolls_to_january(self):
        definition = {"frequency": "monthly", "day_of_month": 5, "time_of_day": "08:00"}
        assert compute_next(definition, _utc(2025, 12, 20, 0, 0)) == _utc(2026, 1, 5, 8, 0)


# ═══════════════════════════════════════════════════════════════════════════
#  on_demand / objects / timezone
# ═══════════════════════════════════════════════════════════════════════════

class TestMisc:

    def test_on_demand_returns_none(self):
        assert compute_next({"frequency": "on_demand", "time_of_day": "08:00"}, _utc(2025, 1, 1)) is None

    def test_unknown_frequency(self):
        with pytest.raises(ValidationError):
            compute_next({"frequency": "hourly", "time_of_day": "08:00"}, _utc(2025, 1, 1))

    def test_accepts_model_like_object(self):
        class Definition:
            frequency = "daily"
            time_of_day = "06:15"
            day_of_week = None
            day_of_month = None

        assert compute_next(Definition(), _utc(2025, 1, 1, 7, 0)) == _utc(2025, 1, 2, 6, 15)

    def test_time_of_day_in_scheduler_timezone(self):
        tz = ZoneInfo("America/Sao_Paulo")  # UTC-3, no DST since 2019
        nxt = compute_next({"frequency": "daily", "time_of_day": "08:00"}, _utc(2025, 1, 1, 10, 0), tz)
        assert nxt == _utc(2025, 1, 1, 11, 0)
        assert nxt.tzinfo == timezone.utc

    def test_scheduler_timezone_from_config(self, app):
        app.config["SCHEDULER_TIMEZONE"] = "America/Sao_Paulo"
        try:
            assert scheduler_timezone() == ZoneInfo("America/Sao_Paulo")
        finally:
            app.config["SCHEDULER_TIMEZONE"] = "UTC"
        assert scheduler_timezone() == timezone.utc

    def test_unknown_scheduler_timezone(self, app):
        app.config["SCHEDULER_TIMEZONE"] = "Mars/Olympus_Mons"
        try:
            with pytest.raises(ValidationError):
                scheduler_timezone()
        finally:
            app.config["SCHEDULER_TIMEZONE"] = "UTC"


class TestValidateTiming:

    @pytest.mark.parametrize("value", ["24:00", "8:00", "08:60", "0800", "", None, 800])
    def test_rejects_bad_time(self, value):
        with pytest.raises(ValidationError):
            parse_time_of_day(value)

    def test_parses_time(self):
        assert parse_time_of_day("23:59") == (23, 59)

    def test_weekly_requires_day_of_week(self):
        with pytest.raises(ValidationError) as exc:
            validate_timing("weekly", "09:00")
        assert "day_of_week" in exc.value.details

    def test_weekly_rejects_out_of_range(self):
        with pytest.raises(ValidationError):
            validate_timing("weekly", "09:00", day_of_week=7)

    def test_monthly_rejects_zero(self):
        with pytest.raises(ValidationError):
            validate_timing("monthly", "09:00", day_of_month=0)

    def test_daily_rejects_day_fields(self):
        with pytest.raises(ValidationError):
            validate_timing("daily", "09:00", day_of_week=1)
        with pytest.raises(ValidationError):
            validate_timing("daily", "09:00", day_of_month=1)

    def test_bool_is_not_an_integer(self):
        with pytest.raises(ValidationError):
            validate_timing("weekly", "09:00", day_of_week=True)

    def test_normalizes(self):
        assert validate_timing("monthly", " 07:05 ", day_of_month="31") == {
            "frequency": "monthly",
            "time_of_day": "07:05",
            "day_of_week": None,
            "day_of_month": 31,
        }
