"""
Per-blueprint rate limits (Flask-Limiter).

The Limiter is created in ``tfd_reports/__init__.py`` without default limits;
limits are attached here once the blueprints are registered. Health probes
are exempt so orchestrators never get throttled.
"""

import logging

logger = logging.getLogger(__name__)

REPORT_SCHEDULE_LIMIT = "60/minute"


def init_rate_limits(app, limiter):
    """Attach limits to the API blueprints; no-op when TESTING."""
    if app.config.get("TESTING"):
        return

    limits = {"report_schedules": REPORT_SCHEDULE_LIMIT}
    for name, limit in limits.items():
        blueprint = app.blueprints.get(name)
        if blueprint is not None:
            limiter.limit(limit)(blueprint)

    health = app.blueprints.get("health_bp")
    if health is not None:
        limiter.exempt(health)

    logger.info("Rate limits active: %s", ", ".join(f"{k}={v}" for k, v in limits.items()))
