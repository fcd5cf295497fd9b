"""
TFD Report Scheduling
Flask application factory.

    from tfd_reports import create_app
    app = create_app()            # APP_ENV, else "development"
    app = create_app("testing")

The background scheduler is started here only when SCHEDULER_ENABLED is set.
Deployments that run several web workers should leave it off and call
``flask process-due-reports`` from cron instead.
"""

import logging
import os

from flask import Flask, request
from flask_cors import CORS
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_migrate import Migrate
from sqlalchemy import engine as sa_engine
from sqlalchemy import event as sa_event

from tfd_reports.config import config
from tfd_reports.middleware.logging_config import configure_logging
from tfd_reports.middleware.rate_limiter import init_rate_limits
from tfd_reports.middleware.timing import init_request_timing
from tfd_reports.models import db

logger = logging.getLogger(__name__)

migrate = Migrate()
limiter = Limiter(
    key_func=get_remote_address,
    default_limits=[],
    storage_uri=os.getenv("RATELIMIT_STORAGE_URI", "memory://"),
)


@sa_event.listens_for(sa_engine.Engine, "connect")
def _sqlite_foreign_keys(dbapi_conn, connection_record):
    """ON DELETE rules of the execution and email tables need FK enforcement on SQLite."""
    if "sqlite" in type(dbapi_conn).__module__:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def _register_error_handlers(app):
    @app.errorhandler(404)
    def _not_found(e):
        return {"error": "Not found", "code": "ERR_NOT_FOUND", "path": request.path}, 404

    @app.errorhandler(405)
    def _method_not_allowed(e):
        return {"error": "Method not allowed", "code": "ERR_METHOD_NOT_ALLOWED"}, 405

    @app.errorhandler(429)
    def _rate_limited(e):
        return {"error": "Too many requests", "code": "ERR_RATE_LIMITED",
                "retry_after": e.description}, 429

    @app.errorhandler(500)
    def _server_error(e):
        logger.error("Unhandled error on %s %s: %s", request.method, request.path, e,
                     exc_info=True)
        return {"error": "Internal server error", "code": "ERR_INTERNAL"}, 500


def create_app(config_name=None):
    """Build the application for ``config_name`` (development | testing | production)."""
    config_name = config_name or os.getenv("APP_ENV", "development")

    app = Flask(__name__, instance_relative_config=True)
    # Instantiated so ProductionConfig can refuse a missing DATABASE_URL / SECRET_KEY
    app.config.from_object(config[config_name]())
    os.makedirs(app.instance_path, exist_ok=True)

    configure_logging(app)

    db.init_app(app)
    migrate.init_app(app, db)
    limiter.init_app(app)
    origins = [o.strip() for o in app.config.get("CORS_ORIGINS", "*").split(",") if o.strip()]
    CORS(app, origins=origins if origins and origins != ["*"] else "*")
    init_request_timing(app)

    from tfd_reports.models import scheduling  # noqa: F401  (register tables)

    with app.app_context():
        try:
            db.create_all()
        except Exception as e:
            # Migrations remain the source of truth; a read-only DB user is not fatal
            app.logger.warning("db.create_all() skipped: %s", e)

    from tfd_reports.blueprints.health_bp import health_bp
    from tfd_reports.blueprints.report_schedule_bp import report_schedule_bp

    app.register_blueprint(health_bp)
    app.register_blueprint(report_schedule_bp)
    _register_error_handlers(app)
    init_rate_limits(app, limiter)

    from tfd_reports.services.scheduler_service import SchedulerService

    SchedulerService.init_app(app)
    if app.config.get("SCHEDULER_ENABLED") and not app.testing:
        SchedulerService.start()

    return app
