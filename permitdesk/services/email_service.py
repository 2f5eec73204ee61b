"""
PermitDesk
Email Service.

Sends notification emails from named templates.
When SMTP is not configured, emails are logged but not sent (dev/test mode).

Configuration (env vars):
    MAIL_SERVER     SMTP host (default: None → log-only mode)
    MAIL_PORT       SMTP port (default: 587)
    MAIL_USE_TLS    Use TLS (default: true)
    MAIL_USERNAME   SMTP username
    MAIL_PASSWORD   SMTP password
    MAIL_DEFAULT_SENDER  Default from address
"""

from __future__ import annotations

import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from flask import current_app

logger = logging.getLogger(__name__)


_LAYOUT = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <div style="background: #1e293b; color: white; padding: 16px 24px; border-radius: 8px 8px 0 0;">
        <h2 style="margin: 0; font-size: 18px;">PermitDesk</h2>
    </div>
    <div style="background: #f8fafc; padding: 24px; border: 1px solid #e2e8f0; border-top: none;">
        {content}
    </div>
</div>
"""

_TEMPLATES: dict[str, dict[str, str]] = {
    "party_added": {
        "subject": "You were added to permit: {permit_title}",
        "html": _LAYOUT.replace("{content}", """
        <p>{actor_name} added you to <strong>{permit_title}</strong> as {role}.</p>
        """),
    },
    "party_removed": {
        "subject": "You were removed from permit: {permit_title}",
        "html": _LAYOUT.replace("{content}", """
        <p>{actor_name} removed you from <strong>{permit_title}</strong>.</p>
        """),
    },
    "status_changed": {
        "subject": "Permit status changed: {permit_title}",
        "html": _LAYOUT.replace("{content}", """
        <p><strong>{permit_title}</strong> moved from {old_status} to {new_status}.</p>
        """),
    },
    "photo_shared": {
        "subject": "{actor_name} shared a permit photo with you",
        "html": _LAYOUT.replace("{content}", """
        <p>{actor_name} shared a photo from <strong>{permit_title}</strong>.</p>
        <p style="color: #64748b;">{message}</p>
        <p><a href="{photo_url}">View photo</a></p>
        """),
    },
}


class EmailService:
    """
    Email sending service with template support.

    Without MAIL_SERVER, messages are logged and reported as delivered.
    """

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
        to_name: str | None = None,
        subject: str,
        html_body: str,
        template_name: str | None = None,
    ) -> None:
        """
        Send one email.

        Raises:
            smtplib.SMTPException / OSError: delivery failed. The dispatcher
            records the failure on the outbox row.
        """
        if not cls.is_configured():
            logger.info(
                "Email (dev mode): to=%s subject='%s' template=%s",
                to_email, subject, template_name,
            )
            return

        cls._send_smtp(to_email=to_email, to_name=to_name,
                       subject=subject, html_body=html_body)
        logger.info("Email sent: to=%s subject='%s'", to_email, subject)

    @classmethod
    def send_from_template(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        template_name: str,
        context: dict[str, Any],
    ) -> bool:
        """Render a named template with *context* and send it."""
        template = cls.get_template(template_name)
        if not template:
            logger.warning("Email template not found: %s", template_name)
            return False

        subject = template["subject"].format_map(_SafeDict(context))
        html_body = template["html"].format_map(_SafeDict(context))

        cls.send(
            to_email=to_email,
            to_name=to_name,
            subject=subject,
            html_body=html_body,
            template_name=template_name,
        )
        return True

    @staticmethod
    def _send_smtp(*, to_email: str, to_name: str | None,
                   subject: str, html_body: str) -> None:
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")
        port = cfg.get("MAIL_PORT", 587)
        use_tls = cfg.get("MAIL_USE_TLS", True)
        username = cfg.get("MAIL_USERNAME")
        password = cfg.get("MAIL_PASSWORD")
        sender = cfg.get("MAIL_DEFAULT_SENDER") or f"noreply@{server}"

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = f"{to_name} <{to_email}>" if to_name else to_email
        msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(server, port, timeout=30) as smtp:
            if use_tls:
                smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"
