"""
TFD Report Scheduling
Report delivery by e-mail.

``EmailService`` is the low-level sender: it renders a named template,
talks SMTP and writes one ``EmailLog`` row per message. Without MAIL_SERVER
nothing leaves the process; the message is logged and marked sent, which
is what development and the test suite run on.

``ReportMailer`` is what the execution coordinator sees (``Mailer``
interface): one message per recipient with the generated report attached.
Any failed recipient turns into a single ``MailerError`` after every
recipient has been tried.

SMTP settings: MAIL_SERVER, MAIL_PORT, MAIL_USE_TLS, MAIL_USERNAME,
MAIL_PASSWORD, MAIL_DEFAULT_SENDER (see config.py).
"""

from __future__ import annotations

import html
import logging
import smtplib
from abc import ABC, abstractmethod
from email.message import EmailMessage
from typing import Any

from flask import current_app

from tfd_reports.core.exceptions import MailerError
from tfd_reports.models import db
from tfd_reports.models.scheduling import EmailLog, ReportSchedule
from tfd_reports.services.report_generator import GeneratedReport
from tfd_reports.utils.helpers import truncate, utcnow

logger = logging.getLogger(__name__)

SMTP_TIMEOUT_SECONDS = 30

_TEMPLATES: dict[str, dict[str, str]] = {
    "scheduled_report": {
        "subject": "[TFD] Report: {name}",
        "text": (
            "{name}\n\n{description}\n\n"
            "Generated on {generated_at}. The report is attached ({filename}).\n"
        ),
        "html": """
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <div style="background: #1F3A5F; color: #fff; padding: 16px 24px;">
                <h2 style="margin: 0; font-size: 18px;">TFD scheduled report</h2>
            </div>
            <div style="padding: 24px; border: 1px solid #d9e2ec; border-top: none;">
                <h3 style="margin: 0 0 8px;">{name}</h3>
                <p style="color: #52606d;">{description}</p>
                <p style="color: #7b8794; font-size: 13px;">
                    Generated on {generated_at}. The report is attached ({filename}).
                </p>
                <p style="color: #9aa5b1; font-size: 12px;">
                    Schedules are managed in the administration dashboard.
                </p>
            </div>
        </div>
        """,
    },
}


class _KeepMissing(dict):
    """``str.format_map`` mapping that leaves unknown ``{placeholders}`` as-is."""

    def __missing__(self, key):
        return "{" + key + "}"


def _render(text: str, context: dict[str, Any]) -> str:
    return text.format_map(_KeepMissing(context))


def _escaped(context: dict[str, Any]) -> dict[str, Any]:
    """Copy of ``context`` safe to interpolate into the HTML part."""
    return {key: html.escape(str(value)) for key, value in context.items()}


class EmailService:
    """SMTP sender with templates and an EmailLog audit row per message."""

    @staticmethod
    def is_configured() -> bool:
        return bool(current_app.config.get("MAIL_SERVER"))

    @staticmethod
    def get_template(template_name: str) -> dict[str, str] | None:
        return _TEMPLATES.get(template_name)

    @classmethod
    def send(
        cls,
        *,
        to_email: str,
        subject: str,
        html_body: str,
        text_body: str | None = None,
        template_name: str | None = None,
        attachment: GeneratedReport | None = None,
        schedule_id: int | None = None,
    ) -> EmailLog:
        """
        Send one message and record it.

        SMTP and network failures are not raised: they end up as
        ``status="failed"`` on the returned EmailLog.
        """
        log = EmailLog(
            recipient_email=to_email,
            subject=subject,
            template_name=template_name,
            attachment_name=attachment.filename if attachment else None,
            status="queued",
            schedule_id=schedule_id,
        )
        db.session.add(log)
        db.session.flush()

        if not cls.is_configured():
            log.status = "sent"
            log.sent_at = utcnow()
            logger.info("Mail not sent (no MAIL_SERVER): to=%s subject=%r attachment=%s",
                        to_email, subject, log.attachment_name,
                        extra={"schedule_id": schedule_id})
            return log

        message = cls._build_message(to_email, subject, html_body, text_body, attachment)
        try:
            cls._send_smtp(message)
        except (smtplib.SMTPException, OSError) as exc:
            log.status = "failed"
            log.error_message = truncate(exc, 1000)
            logger.error("Mail to %s failed: %s", to_email, exc,
                         extra={"schedule_id": schedule_id})
            return log

        log.status = "sent"
        log.sent_at = utcnow()
        logger.info("Mail sent to %s: %r", to_email, subject, extra={"schedule_id": schedule_id})
        return log

    @classmethod
    def send_from_template(
        cls,
        *,
        to_email: str,
        template_name: str,
        context: dict[str, Any],
        attachment: GeneratedReport | None = None,
        schedule_id: int | None = None,
    ) -> EmailLog | None:
        """Render ``template_name`` with ``context`` and send it; None if the template is unknown."""
        template = cls.get_template(template_name)
        if template is None:
            logger.warning("Unknown mail template %r", template_name)
            return None

        return cls.send(
            to_email=to_email,
            subject=_render(template["subject"], context),
            html_body=_render(template["html"], _escaped(context)),
            text_body=_render(template["text"], context) if "text" in template else None,
            template_name=template_name,
            attachment=attachment,
            schedule_id=schedule_id,
        )

    @staticmethod
    def _build_message(to_email, subject, html_body, text_body, attachment) -> EmailMessage:
        cfg = current_app.config
        message = EmailMessage()
        message["Subject"] = subject
        message["From"] = cfg.get("MAIL_DEFAULT_SENDER") or f"reports@{cfg['MAIL_SERVER']}"
        message["To"] = to_email
        message.set_content(text_body or "This message requires an HTML-capable mail client.")
        message.add_alternative(html_body, subtype="html")
        if attachment is not None:
            maintype, _, subtype = attachment.mimetype.partition("/")
            message.add_attachment(
                attachment.content,
                maintype=maintype or "application",
                subtype=subtype or "octet-stream",
                filename=attachment.filename,
            )
        return message

    @staticmethod
    def _send_smtp(message: EmailMessage) -> None:
        cfg = current_app.config
        with smtplib.SMTP(cfg["MAIL_SERVER"], cfg.get("MAIL_PORT", 587),
                          timeout=SMTP_TIMEOUT_SECONDS) as smtp:
            if cfg.get("MAIL_USE_TLS", True):
                smtp.starttls()
            if cfg.get("MAIL_USERNAME") and cfg.get("MAIL_PASSWORD"):
                smtp.login(cfg["MAIL_USERNAME"], cfg["MAIL_PASSWORD"])
            smtp.send_message(message)


# ═══════════════════════════════════════════════════════════════════════════
#  Mailer (coordinator-facing interface)
# ═══════════════════════════════════════════════════════════════════════════

class Mailer(ABC):
    """Delivery interface consumed by the execution coordinator."""

    @abstractmethod
    def send(self, recipients: list[str], report: GeneratedReport,
             schedule: ReportSchedule) -> list[EmailLog]:
        """
        Deliver ``report`` to every recipient.

        Raises:
            MailerError: One or more deliveries failed.
        """
        ...


class ReportMailer(Mailer):
    """Send one templated email per recipient with the report attached."""

    template_name = "scheduled_report"

    def send(self, recipients: list[str], report: GeneratedReport,
             schedule: ReportSchedule) -> list[EmailLog]:
        context = {
            "name": schedule.name,
            "description": schedule.description or "No description",
            "generated_at": utcnow().strftime("%d/%m/%Y %H:%M UTC"),
            "filename": report.filename,
        }
        logs = []
        failed = []
        for address in recipients:
            log = EmailService.send_from_template(
                to_email=address,
                template_name=self.template_name,
                context=context,
                attachment=report,
                schedule_id=schedule.id,
            )
            if log is None or log.status == "failed":
                failed.append(address)
            if log is not None:
                logs.append(log)

        if failed:
            raise MailerError(
                f"Report delivery failed for {len(failed)} of {len(recipients)} recipients",
                recipients=failed,
            )
        return logs
