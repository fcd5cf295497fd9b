"""report_scheduling_tables

Creates the report scheduling tables:
  - report_schedules   — registered schedule definitions
  - report_executions  — append-only execution ledger (one pending row per schedule)
  - email_logs         — delivery audit of generated reports

Tables created conditionally (IF NOT EXISTS semantics) to support idempotent
execution against databases that already received these tables via db.create_all()
in a development environment.

Revision ID: 7f3a9c2e1b40
Revises:
Create Date: 2026-10-19 09:12:44.318201
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = '7f3a9c2e1b40'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    # ── ReportSchedule ────────────────────────────────────────────────────
    if "report_schedules" not in existing:
        op.create_table(
            "report_schedules",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column(
                "report_type", sa.String(length=30), nullable=False,
                comment="users | municipalities | tfd_requests | access_logs",
            ),
            sa.Column(
                "parameters", sa.JSON(), nullable=True,
                comment="Typed per report_type, see services.report_params",
            ),
            sa.Column(
                "frequency", sa.String(length=20), nullable=False,
                comment="daily | weekly | monthly | on_demand",
            ),
            sa.Column(
                "day_of_week", sa.Integer(), nullable=True,
                comment="0=Sunday .. 6=Saturday, weekly only",
            ),
            sa.Column(
                "day_of_month", sa.Integer(), nullable=True,
                comment="1..31, monthly only (clamped to month length)",
            ),
            sa.Column("time_of_day", sa.String(length=5), nullable=False, comment="HH:MM, 24h"),
            sa.Column(
                "output_format", sa.String(length=10), nullable=False,
                server_default="pdf", comment="pdf | excel | csv",
            ),
            sa.Column("recipients", sa.JSON(), nullable=True),
            sa.Column("active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_by", sa.String(length=150), nullable=False),
            sa.Column("last_execution_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("next_execution_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column(
                "last_execution_status", sa.String(length=20), nullable=False,
                server_default="none", comment="none | success | error",
            ),
            sa.Column("last_error_message", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_report_schedules_report_type", "report_schedules", ["report_type"])
        op.create_index("ix_report_schedules_frequency", "report_schedules", ["frequency"])
        op.create_index("ix_report_schedules_created_by", "report_schedules", ["created_by"])
        op.create_index(
            "ix_report_schedules_active_next", "report_schedules", ["active", "next_execution_at"]
        )

    # ── ExecutionRecord ───────────────────────────────────────────────────
    if "report_executions" not in existing:
        op.create_table(
            "report_executions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("schedule_id", sa.Integer(), nullable=False),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("finished_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column(
                "triggered_by", sa.String(length=20), nullable=False,
                server_default="automatic",
            ),
            sa.Column(
                "output_reference", sa.String(length=500), nullable=True,
                comment="Opaque handle to the generated artifact",
            ),
            sa.ForeignKeyConstraint(["schedule_id"], ["report_schedules.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint(
                "status IN ('pending','success','error')", name="ck_report_execution_status"
            ),
            sa.CheckConstraint(
                "triggered_by IN ('automatic','manual')", name="ck_report_execution_trigger"
            ),
        )
        op.create_index(
            "ix_report_executions_schedule_status", "report_executions", ["schedule_id", "status"]
        )
        op.create_index(
            "ix_report_executions_schedule_started", "report_executions",
            ["schedule_id", "started_at"],
        )
        # At most one pending execution per schedule: the atomic claim relies on it
        op.create_index(
            "uq_report_executions_one_pending", "report_executions", ["schedule_id"],
            unique=True,
            sqlite_where=sa.text("status = 'pending'"),
            postgresql_where=sa.text("status = 'pending'"),
        )

    # ── EmailLog ──────────────────────────────────────────────────────────
    if "email_logs" not in existing:
        op.create_table(
            "email_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("recipient_email", sa.String(length=255), nullable=False),
            sa.Column("subject", sa.String(length=500), nullable=False),
            sa.Column("template_name", sa.String(length=100), nullable=True,
                      comment="Email template used"),
            sa.Column("attachment_name", sa.String(length=255), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True,
                      comment="queued, sent, failed"),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("schedule_id", sa.Integer(), nullable=True),
            sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["schedule_id"], ["report_schedules.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_email_logs_recipient_email", "email_logs", ["recipient_email"])
        op.create_index("ix_email_logs_schedule_id", "email_logs", ["schedule_id"])


def downgrade():
    bind = op.get_bind()
    inspector = sa_inspect(bind)
    existing = set(inspector.get_table_names())

    if "email_logs" in existing:
        op.drop_index("ix_email_logs_schedule_id", table_name="email_logs")
        op.drop_index("ix_email_logs_recipient_email", table_name="email_logs")
        op.drop_table("email_logs")

    if "report_executions" in existing:
        op.drop_index("uq_report_executions_one_pending", table_name="report_executions")
        op.drop_index("ix_report_executions_schedule_started", table_name="report_executions")
        op.drop_index("ix_report_executions_schedule_status", table_name="report_executions")
        op.drop_table("report_executions")

    if "report_schedules" in existing:
        op.drop_index("ix_report_schedules_active_next", table_name="report_schedules")
        op.drop_index("ix_report_schedules_created_by", table_name="report_schedules")
        op.drop_index("ix_report_schedules_frequency", table_name="report_schedules")
        op.drop_index("ix_report_schedules_report_type", table_name="report_schedules")
        op.drop_table("report_schedules")
