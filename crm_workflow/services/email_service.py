"""
Corporate CRM Workflow
Email Service.

Sends transactional email for status changes. Every attempt is recorded
in EmailLog for audit, delivered or not.

Providers (EMAIL_PROVIDER):
    smtp    smtplib with MAIL_SERVER / MAIL_PORT / MAIL_USE_TLS / MAIL_USERNAME / MAIL_PASSWORD
    resend  HTTP API (RESEND_API_KEY, RESEND_API_URL)
    (unset) log-only dev mode: logged, marked sent, nothing delivered
"""

from __future__ import annotations

import logging
import smtplib
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

import requests
from flask import current_app

from crm_workflow.core.exceptions import NotificationDispatchError
from crm_workflow.models import db
from crm_workflow.models.notification import EmailLog

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = 30


# ═══════════════════════════════════════════════════════════════════════════
#  Email Templates
# ═══════════════════════════════════════════════════════════════════════════

_TEMPLATES: dict[str, dict[str, str]] = {
    "status_change": {
        "subject": "Application Status Update - {status}",
        "html": """
        <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
            <div style="padding: 24px 32px; border-bottom: 3px solid {type_color};">
                <h1 style="margin: 0; color: #111827; font-size: 22px;">Application Status Updated</h1>
            </div>
            <div style="padding: 24px 32px;">
                <p style="margin: 0 0 16px; color: #374151; font-size: 14px;">
                    <strong>Customer:</strong> {customer_name}
                </p>
                <p style="margin: 0 0 16px; color: #4b5563; font-size: 16px; line-height: 1.6;">
                    Status changed from <strong>{previous_status}</strong> to <strong>{status}</strong>.
                </p>
                {comment_block}
                {action_link}
            </div>
            <div style="padding: 16px 32px; background: #f9fafb; border-top: 1px solid #e5e7eb;">
                <p style="margin: 0; color: #6b7280; font-size: 12px;">
                    You're receiving this email because you own this application.
                </p>
            </div>
        </div>
        """,
    },
}

TYPE_COLORS = {
    "info": "#3b82f6",
    "warning": "#f59e0b",
    "error": "#ef4444",
    "success": "#22c55e",
}


class EmailService:
    """
    Email sending service with template support.

    With no provider configured, emails are logged to the database but not
    delivered (dev/test mode).
    """

    @staticmethod
    def provider() -> str:
        """Return the configured provider name ('log' when none)."""
        return (current_app.config.get("EMAIL_PROVIDER") or "log").lower()

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
        application_id: str | None = None,
        transition_id: str | None = None,
    ) -> EmailLog:
        """
        Send an email and log it.

        Delivery failures are recorded on the EmailLog (status='failed')
        rather than raised.

        Returns:
            The flushed EmailLog record for this email.
        """
        provider = cls.provider()
        log = EmailLog(
            recipient_email=to_email,
            recipient_name=to_name,
            subject=subject,
            template_name=template_name,
            provider=provider,
            status="queued",
            application_id=application_id,
            transition_id=transition_id,
        )
        db.session.add(log)
        db.session.flush()

        if provider == "log":
            log.status = "sent"
            log.sent_at = datetime.now(timezone.utc)
            logger.info(
                "Email (dev mode): to=%s subject='%s' template=%s",
                to_email, subject, template_name,
            )
            return log

        try:
            if provider == "smtp":
                cls._send_smtp(to_email=to_email, to_name=to_name,
                               subject=subject, html_body=html_body)
            elif provider == "resend":
                cls._send_resend(to_email=to_email, subject=subject, html_body=html_body)
            else:
                raise NotificationDispatchError("email", f"unknown provider '{provider}'")
            log.status = "sent"
            log.sent_at = datetime.now(timezone.utc)
            logger.info("Email sent: to=%s subject='%s' provider=%s", to_email, subject, provider)
        except (smtplib.SMTPException, OSError, requests.RequestException,
                NotificationDispatchError) as exc:
            log.status = "failed"
            log.error_message = str(exc)[:1000]
            logger.error("Email failed: to=%s provider=%s error=%s", to_email, provider, exc)

        return log

    @classmethod
    def send_from_template(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        template_name: str,
        context: dict[str, Any],
        application_id: str | None = None,
        transition_id: str | None = None,
    ) -> EmailLog | None:
        """
        Send an email using a named template.

        Template variables are interpolated from the context dict.
        """
        template = cls.get_template(template_name)
        if not template:
            logger.warning("Email template not found: %s", template_name)
            return None

        subject = template["subject"].format_map(_SafeDict(context))
        html_body = template["html"].format_map(_SafeDict(context))

        return cls.send(
            to_email=to_email,
            to_name=to_name,
            subject=subject,
            html_body=html_body,
            template_name=template_name,
            application_id=application_id,
            transition_id=transition_id,
        )

    @staticmethod
    def _send_smtp(*, to_email: str, to_name: str | None,
                   subject: str, html_body: str) -> None:
        """Actually send via SMTP."""
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")
        if not server:
            raise NotificationDispatchError("email", "MAIL_SERVER is not configured")
        port = cfg.get("MAIL_PORT", 587)
        use_tls = cfg.get("MAIL_USE_TLS", True)
        username = cfg.get("MAIL_USERNAME")
        password = cfg.get("MAIL_PASSWORD")
        sender = cfg.get("EMAIL_FROM") or f"noreply@{server}"

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = f"{to_name} <{to_email}>" if to_name else to_email
        msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(server, port, timeout=_DEFAULT_TIMEOUT) as smtp:
            if use_tls:
                smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)

    @staticmethod
    def _send_resend(*, to_email: str, subject: str, html_body: str) -> None:
        """Send through the Resend HTTP API."""
        cfg = current_app.config
        api_key = cfg.get("RESEND_API_KEY")
        if not api_key:
            raise NotificationDispatchError("email", "RESEND_API_KEY is not configured")

        resp = requests.post(
            cfg.get("RESEND_API_URL"),
            json={
                "from": cfg.get("EMAIL_FROM"),
                "to": [to_email],
                "subject": subject,
                "html": html_body,
            },
            headers={"Authorization": f"Bearer {api_key}"},
            timeout=_DEFAULT_TIMEOUT,
        )
        if resp.status_code >= 300:
            raise NotificationDispatchError(
                "email", f"provider returned HTTP {resp.status_code}: {resp.text[:200]}",
            )


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"
