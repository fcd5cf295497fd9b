"""
TFD Report Scheduling
SQLAlchemy models package.

The shared ``db`` handle is created here and bound in the app factory
(``db.init_app(app)``). Model modules import it with::

    from tfd_reports.models import db
"""

from flask_sqlalchemy import SQLAlchemy

db = SQLAlchemy()
