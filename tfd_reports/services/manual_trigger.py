"""
TFD Report Scheduling
Manual Trigger Handler.

"Run now" for a single schedule. Goes through the same coordinator as the
scanner with triggered_by="manual", so it shares the mutual-exclusion claim,
but it never moves ``next_execution_at``. Inactive and on-demand schedules
can be run manually.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from tfd_reports.core.exceptions import AlreadyRunningError, NotFoundError
from tfd_reports.models import db
from tfd_reports.models.scheduling import ExecutionRecord, ReportSchedule
from tfd_reports.services.execution_coordinator import ExecutionCoordinator

logger = logging.getLogger(__name__)


@dataclass
class TriggerResult:
    """Outcome of a manual run: success | error | conflict."""

    outcome: str
    record: ExecutionRecord | None = None
    message: str | None = None

    def to_dict(self):
        return {
            "outcome": self.outcome,
            "execution": self.record.to_dict() if self.record else None,
            "message": self.message,
        }


def trigger_now(schedule_id: int, coordinator: ExecutionCoordinator | None = None,
                actor: str | None = None) -> TriggerResult:
    """Execute ``schedule_id`` immediately.

    Raises:
        NotFoundError: No schedule with that id.
    """
    schedule = db.session.get(ReportSchedule, schedule_id)
    if schedule is None:
        raise NotFoundError(resource="ReportSchedule", resource_id=schedule_id)

    coordinator = coordinator or ExecutionCoordinator()
    logger.info("Manual run of schedule %s requested by %s", schedule_id, actor or "unknown",
                extra={"schedule_id": schedule_id, "triggered_by": "manual"})
    try:
        record = coordinator.execute(schedule, "manual")
    except AlreadyRunningError as exc:
        return TriggerResult("conflict", None, str(exc))

    if record.status == "success":
        return TriggerResult("success", record, "Report generated successfully")
    return TriggerResult("error", record, record.error_message)
