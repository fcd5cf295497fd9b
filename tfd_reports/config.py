"""
TFD Report Scheduling
Configuration classes, selected in the app factory by APP_ENV:

    development  local SQLite unless DATABASE_URL is set, DEBUG on
    testing      in-memory SQLite, scheduler and rate limits off, mail log-only
    production   DATABASE_URL and SECRET_KEY required
"""

import os
import secrets

basedir = os.path.abspath(os.path.dirname(os.path.dirname(__file__)))
instance_dir = os.path.join(basedir, "instance")


def _env_bool(name, default):
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_int(name, default):
    return int(os.getenv(name, str(default)))


def _database_url(fallback=None):
    # Heroku-style postgres:// is rejected by SQLAlchemy 2.x
    url = os.getenv("DATABASE_URL", "")
    if url.startswith("postgres://"):
        url = "postgresql://" + url[len("postgres://"):]
    return url or fallback


class Config:
    """Settings shared by every environment."""

    SECRET_KEY = os.getenv("SECRET_KEY") or secrets.token_hex(32)
    DEBUG = False
    TESTING = False

    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        "pool_pre_ping": True,
        "pool_size": 5,
        "max_overflow": 10,
        "pool_recycle": 300,
    }

    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "*")

    # ── Report scheduling ───────────────────────────────────────────────
    REPORT_OUTPUT_DIR = os.getenv("REPORT_OUTPUT_DIR", os.path.join(instance_dir, "reports"))
    SCHEDULER_ENABLED = _env_bool("SCHEDULER_ENABLED", "false")
    SCHEDULER_TIMEZONE = os.getenv("SCHEDULER_TIMEZONE", "UTC")
    SCHEDULER_SCAN_INTERVAL_SECONDS = _env_int("SCHEDULER_SCAN_INTERVAL_SECONDS", 60)
    STALE_PENDING_THRESHOLD_SECONDS = _env_int("STALE_PENDING_THRESHOLD_SECONDS", 3600)
    MAX_CONCURRENT_EXECUTIONS = _env_int("MAX_CONCURRENT_EXECUTIONS", 1)

    # ── Report delivery (no MAIL_SERVER: deliveries are only logged) ────
    MAIL_SERVER = os.getenv("MAIL_SERVER")
    MAIL_PORT = _env_int("MAIL_PORT", 587)
    MAIL_USE_TLS = _env_bool("MAIL_USE_TLS", "true")
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "reports@tfd.local")


class DevelopmentConfig(Config):
    DEBUG = True
    SQLALCHEMY_DATABASE_URI = _database_url(
        f"sqlite:///{os.path.join(instance_dir, 'tfd_reports_dev.db')}"
    )


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = os.getenv("TEST_DATABASE_URL", "sqlite:///:memory:")
    # In-memory SQLite runs on a single static connection; pool sizing does not apply
    SQLALCHEMY_ENGINE_OPTIONS = {}
    RATELIMIT_ENABLED = False
    SCHEDULER_ENABLED = False
    MAIL_SERVER = None


class ProductionConfig(Config):
    SQLALCHEMY_DATABASE_URI = _database_url()
    CORS_ORIGINS = os.getenv("CORS_ORIGINS", "")
    SQLALCHEMY_ENGINE_OPTIONS = {
        **Config.SQLALCHEMY_ENGINE_OPTIONS,
        "pool_timeout": 20,
        # report queries are heavier than CRUD; cap each statement at 60s
        "connect_args": {"options": "-c statement_timeout=60000"},
    }

    def __init__(self):
        if not self.SQLALCHEMY_DATABASE_URI:
            raise RuntimeError("DATABASE_URL environment variable is required in production")
        if not os.getenv("SECRET_KEY"):
            raise RuntimeError("SECRET_KEY environment variable must be set in production")


config = {
    "development": DevelopmentConfig,
    "testing": TestingConfig,
    "production": ProductionConfig,
    "default": DevelopmentConfig,
}
