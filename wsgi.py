"""
WSGI / Flask-Migrate entry point.

Usage:
    flask --app wsgi db upgrade
    flask --app wsgi process-due-reports   # one due batch (cron-friendly)
    gunicorn wsgi:app
"""

from tfd_reports import create_app

app = create_app()
