"""
Email service tests: log-only mode, Resend HTTP provider, SMTP provider
and template rendering. Every attempt leaves an EmailLog row.
"""

from unittest.mock import MagicMock, patch

import requests

from crm_workflow.models import db
from crm_workflow.models.notification import EmailLog
from crm_workflow.services.email_service import EmailService
from crm_workflow.services.notification import StatusNotificationDispatcher, TransitionEvent
from crm_workflow.services.status_history import StatusHistoryRecorder


def _send(**overrides):
    kwargs = {
        "to_email": "olivia@example.com",
        "to_name": "Olivia Owner",
        "subject": "Application Status Update - Complete",
        "html_body": "<p>done</p>",
        "template_name": "status_change",
    }
    kwargs.update(overrides)
    return EmailService.send(**kwargs)


class TestLogMode:
    def test_default_provider_is_log(self):
        assert EmailService.provider() == "log"

    def test_log_mode_marks_sent(self):
        log = _send(application_id="app-1", transition_id="t-1")

        assert log.status == "sent"
        assert log.provider == "log"
        assert log.sent_at is not None
        assert EmailLog.query.filter_by(transition_id="t-1").count() == 1


class TestResendProvider:
    def test_success(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "EMAIL_PROVIDER", "resend")
        monkeypatch.setitem(app.config, "RESEND_API_KEY", "re_test")

        with patch("crm_workflow.services.email_service.requests.post",
                   return_value=MagicMock(status_code=200, text="{}")) as post:
            log = _send()

        assert log.status == "sent"
        _, kwargs = post.call_args
        assert kwargs["headers"] == {"Authorization": "Bearer re_test"}
        assert kwargs["json"]["to"] == ["olivia@example.com"]

    def test_http_error_recorded(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "EMAIL_PROVIDER", "resend")
        monkeypatch.setitem(app.config, "RESEND_API_KEY", "re_test")

        with patch("crm_workflow.services.email_service.requests.post",
                   return_value=MagicMock(status_code=500, text="upstream down")):
            log = _send()

        assert log.status == "failed"
        assert "HTTP 500" in log.error_message

    def test_network_error_recorded(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "EMAIL_PROVIDER", "resend")
        monkeypatch.setitem(app.config, "RESEND_API_KEY", "re_test")

        with patch("crm_workflow.services.email_service.requests.post",
                   side_effect=requests.ConnectionError("connection refused")):
            log = _send()

        assert log.status == "failed"
        assert "connection refused" in log.error_message

    def test_missing_api_key(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "EMAIL_PROVIDER", "resend")
        monkeypatch.setitem(app.config, "RESEND_API_KEY", None)

        log = _send()
        assert log.status == "failed"
        assert "RESEND_API_KEY" in log.error_message


class TestSmtpProvider:
    def test_missing_server(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "EMAIL_PROVIDER", "smtp")
        monkeypatch.setitem(app.config, "MAIL_SERVER", None)

        log = _send()
        assert log.status == "failed"
        assert "MAIL_SERVER" in log.error_message

    def test_sends_via_smtplib(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "EMAIL_PROVIDER", "smtp")
        monkeypatch.setitem(app.config, "MAIL_SERVER", "smtp.example.com")
        monkeypatch.setitem(app.config, "MAIL_USERNAME", "mailer")
        monkeypatch.setitem(app.config, "MAIL_PASSWORD", "secret")

        with patch("crm_workflow.services.email_service.smtplib.SMTP") as smtp_cls:
            log = _send()

        smtp = smtp_cls.return_value.__enter__.return_value
        smtp.starttls.assert_called_once()
        smtp.login.assert_called_once_with("mailer", "secret")
        smtp.send_message.assert_called_once()
        assert log.status == "sent"

    def test_unknown_provider(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "EMAIL_PROVIDER", "pigeon")

        log = _send()
        assert log.status == "failed"
        assert "unknown provider" in log.error_message


class TestTemplates:
    def test_status_change_template_renders(self):
        log = EmailService.send_from_template(
            to_email="olivia@example.com",
            template_name="status_change",
            context={"status": "Returned", "previous_status": "Submitted",
                     "customer_name": "Acme", "comment_block": "", "type_color": "#f59e0b",
                     "action_link": ""},
        )
        assert log.subject == "Application Status Update - Returned"

    def test_unknown_template(self):
        assert EmailService.send_from_template(
            to_email="olivia@example.com", template_name="nope", context={},
        ) is None


class TestStatusChangeEmailEscaping:
    def test_comment_and_customer_name_are_escaped(self, app, monkeypatch, make_application, owner, admin):
        monkeypatch.setitem(app.config, "EMAIL_PROVIDER", "resend")
        monkeypatch.setitem(app.config, "RESEND_API_KEY", "re_test")
        application = make_application(owner=owner, status="Sent to Bank",
                                       customer_name="Acme <b>Bold</b> LLC")
        comment = '<img src=x onerror="alert(1)"><a href="http://evil">click</a>'
        application.status = "Rejected"
        change = StatusHistoryRecorder.append(
            application.id, "Sent to Bank", "Rejected", admin.id, admin.role, comment,
            actor_name=admin.name,
        )
        db.session.commit()

        with patch("crm_workflow.services.email_service.requests.post",
                   return_value=MagicMock(status_code=200, text="{}")) as post:
            result = StatusNotificationDispatcher.dispatch(TransitionEvent.from_change(change, application))

        assert result.email_sent is True
        html = post.call_args.kwargs["json"]["html"]
        assert "<img src=x" not in html
        assert '<a href="http://evil">' not in html
        assert "&lt;img src=x onerror=" in html
        assert "Acme &lt;b&gt;Bold&lt;/b&gt; LLC" in html
