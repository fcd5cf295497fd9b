"""
Health probes.

    GET /api/v1/health/ready   process is up (load balancer)
    GET /api/v1/health/live    database round-trip, execution backlog, scheduler

``live`` answers 503 only when the database is unreachable. A stale pending
execution or a stopped scheduler is reported as a warning, since cron-driven
deployments never run the background loop.
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy.exc import SQLAlchemyError

from tfd_reports.models import db
from tfd_reports.services.due_scanner import count_due
from tfd_reports.services.execution_ledger import ExecutionLedger
from tfd_reports.services.scheduler_service import SchedulerService

logger = logging.getLogger(__name__)

health_bp = Blueprint("health_bp", __name__, url_prefix="/api/v1/health")


def _database_check():
    started = time.perf_counter()
    try:
        db.session.execute(db.text("SELECT 1"))
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Liveness probe: database unreachable: %s", exc)
        return {"status": "error", "detail": str(exc)}
    return {"status": "ok", "latency_ms": round((time.perf_counter() - started) * 1000, 1)}


def _execution_check():
    ledger = ExecutionLedger()
    stale = ledger.count_stale()
    return {
        "status": "warning" if stale else "ok",
        "due": count_due(),
        "pending": len(ledger.list_pending()),
        "stale": stale,
        "stale_threshold_seconds": ledger.stale_threshold_seconds,
    }


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    checks = {"database": _database_check()}
    database_ok = checks["database"]["status"] == "ok"
    if database_ok:
        checks["executions"] = _execution_check()

    scheduler = SchedulerService.status()
    scheduler["enabled"] = bool(current_app.config.get("SCHEDULER_ENABLED"))
    checks["scheduler"] = scheduler

    return jsonify({
        "status": "healthy" if database_ok else "degraded",
        "service": "tfd-reports",
        "checks": checks,
    }), 200 if database_ok else 503
