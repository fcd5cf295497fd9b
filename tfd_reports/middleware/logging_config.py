"""
Logging setup for the report scheduling service.

Two output styles, picked from the app config:
    production    one JSON object per line for the log shipper
    development   short colored lines for a terminal

LOG_LEVEL sets the root level. SCHEDULER_LOG_LEVEL, when set, overrides it for
the scheduling services only, so a noisy due loop can be turned down on its own.

Scheduling code passes its context through ``extra=``:

    logger.info("...", extra={"schedule_id": s.id, "execution_id": r.id})

Request fields come from the timing middleware.
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

REQUEST_FIELDS = ("request_id", "method", "path", "status", "remote_addr")
SCHEDULING_FIELDS = ("schedule_id", "execution_id", "triggered_by")
SCHEDULER_LOGGERS = (
    "tfd_reports.services.execution_coordinator",
    "tfd_reports.services.execution_ledger",
    "tfd_reports.services.scheduler_service",
    "tfd_reports.services.due_scanner",
)


def _collect(record, names):
    found = {}
    for name in names:
        value = getattr(record, name, None)
        if value is not None:
            found[name] = value
    return found


class JSONFormatter(logging.Formatter):
    """Single-line JSON records; scheduling context is grouped under ``report``."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "thread": record.threadName,
        }
        entry.update(_collect(record, REQUEST_FIELDS))
        report = _collect(record, SCHEDULING_FIELDS)
        if report:
            entry["report"] = report
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            entry["duration_ms"] = round(float(duration), 1)
        if record.exc_info and record.exc_info[0] is not None:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


class ReadableFormatter(logging.Formatter):
    """Colored one-liners with a compact ``[s12 e34 manual]`` context tag."""

    LEVEL_COLORS = {
        logging.DEBUG: "\033[2m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[41m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, "")
        clock = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")

        tag = []
        ctx = _collect(record, SCHEDULING_FIELDS)
        if "schedule_id" in ctx:
            tag.append(f"s{ctx['schedule_id']}")
        if "execution_id" in ctx:
            tag.append(f"e{ctx['execution_id']}")
        if "triggered_by" in ctx:
            tag.append(ctx["triggered_by"])
        duration = getattr(record, "duration_ms", None)
        if duration is not None:
            tag.append(f"{float(duration):.0f}ms")

        line = f"{color}{clock} {record.levelname[:4]}{self.RESET} {record.name}: {record.getMessage()}"
        if tag:
            line += f" [{' '.join(str(t) for t in tag)}]"
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _level(name, default):
    return getattr(logging, str(name or default).upper(), default)


def configure_logging(app):
    """Install one stderr handler on the root logger for ``app``."""
    testing = app.config.get("TESTING", False)
    production = not app.config.get("DEBUG", False) and not testing

    level = _level(os.getenv("LOG_LEVEL"), logging.INFO if production else logging.DEBUG)

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if production else ReadableFormatter())

    root = logging.getLogger()
    # create_app() runs more than once under pytest
    for old in list(root.handlers):
        root.removeHandler(old)
    root.addHandler(handler)
    root.setLevel(level)
    app.logger.setLevel(level)

    scheduler_level = os.getenv("SCHEDULER_LOG_LEVEL")
    for name in SCHEDULER_LOGGERS:
        logging.getLogger(name).setLevel(_level(scheduler_level, level) if scheduler_level
                                         else logging.NOTSET)

    for name in ("werkzeug", "sqlalchemy.engine", "alembic", "flask_limiter"):
        logging.getLogger(name).setLevel(logging.WARNING)

    if not testing:
        app.logger.info("Logging ready (level=%s, %s output)",
                        logging.getLevelName(level), "json" if production else "text")
