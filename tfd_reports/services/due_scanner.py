"""
TFD Report Scheduling
Due-Job Scanner.

Read-only query for schedules whose next occurrence has arrived. Calling it
repeatedly without an execution in between returns the same rows in the
same order.
"""

from __future__ import annotations

from datetime import datetime

from tfd_reports.models.scheduling import ReportSchedule
from tfd_reports.utils.helpers import utcnow


def _due_query(now: datetime):
    return ReportSchedule.query.filter(
        ReportSchedule.active.is_(True),
        ReportSchedule.frequency != "on_demand",
        ReportSchedule.next_execution_at.isnot(None),
        ReportSchedule.next_execution_at <= now,
    )


def list_due(now: datetime | None = None) -> list[ReportSchedule]:
    """Active recurring schedules with ``next_execution_at <= now``.

    Ordered by next_execution_at, then id, so batches are reproducible.
    """
    now = now or utcnow()
    return (
        _due_query(now)
        .order_by(ReportSchedule.next_execution_at.asc(), ReportSchedule.id.asc())
        .all()
    )


def count_due(now: datetime | None = None) -> int:
    return _due_query(now or utcnow()).count()
