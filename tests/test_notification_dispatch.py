"""
Notification fan-out tests:
  - Recipients: owner plus every active admin, never the actor
  - One in-app row per recipient per transition (redelivery fills gaps only)
  - Email to the owner, logged in EmailLog, failures reported not raised
  - Inbox queries and read tracking
"""

from unittest.mock import patch

from crm_workflow.models import db
from crm_workflow.models.notification import EmailLog, Notification
from crm_workflow.models.profile import ROLE_ADMIN
from crm_workflow.services.notification import (
    NotificationService,
    StatusNotificationDispatcher,
    TransitionEvent,
)
from crm_workflow.services.status_history import StatusHistoryRecorder


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════


def _committed_event(application, actor, previous, new, comment=None):
    application.status = new
    change = StatusHistoryRecorder.append(
        application.id, previous, new, actor.id, actor.role, comment, actor_name=actor.name,
    )
    db.session.commit()
    return TransitionEvent.from_change(change, application)


def _admins(make_profile, count):
    return [make_profile(f"Admin {i}", role=ROLE_ADMIN) for i in range(count)]


# ═══════════════════════════════════════════════════════════════════════════
# Fan-out
# ═══════════════════════════════════════════════════════════════════════════


class TestFanOut:
    def test_owner_and_three_admins_get_four_notifications(self, make_profile, make_application, owner):
        admins = _admins(make_profile, 3)
        actor = make_profile("Acting Admin", role=ROLE_ADMIN)
        application = make_application(owner=owner, status="Submitted")
        event = _committed_event(application, actor, "Submitted", "Sent to Bank")

        result = StatusNotificationDispatcher.dispatch(event)

        assert result.in_app_count == 4
        assert result.errors == []
        recipients = {n.user_id for n in Notification.query.filter_by(transition_id=event.transition_id)}
        assert recipients == {owner.id, *(a.id for a in admins)}
        assert actor.id not in recipients

    def test_owner_acting_is_not_notified(self, make_profile, make_application, owner):
        admins = _admins(make_profile, 2)
        application = make_application(owner=owner)
        event = _committed_event(application, owner, "Draft", "Submitted")

        assert StatusNotificationDispatcher.recipients_for(event) == [a.id for a in admins]

    def test_inactive_admin_skipped(self, make_profile, make_application, owner, admin):
        make_profile("Former Admin", role=ROLE_ADMIN, is_active=False)
        application = make_application(owner=owner, status="Submitted")
        actor = make_profile("Acting Admin", role=ROLE_ADMIN)
        event = _committed_event(application, actor, "Submitted", "Sent to Bank")

        assert StatusNotificationDispatcher.recipients_for(event) == [owner.id, admin.id]

    def test_notification_content(self, make_application, owner, admin):
        application = make_application(owner=owner, status="Submitted")
        event = _committed_event(application, admin, "Submitted", "Returned", "Missing signature")

        StatusNotificationDispatcher.dispatch(event)

        notif = Notification.query.filter_by(user_id=owner.id).one()
        assert notif.type == "warning"
        assert notif.title == "Application Returned"
        assert notif.message == "Status changed from Submitted to Returned: Missing signature"
        assert notif.action_url == f"/applications/{application.id}"
        assert notif.application_id == application.id
        assert notif.is_read is False

    def test_redispatch_does_not_duplicate(self, make_profile, make_application, owner):
        _admins(make_profile, 3)
        actor = make_profile("Acting Admin", role=ROLE_ADMIN)
        application = make_application(owner=owner, status="Submitted")
        event = _committed_event(application, actor, "Submitted", "Sent to Bank")

        StatusNotificationDispatcher.dispatch(event)
        second = StatusNotificationDispatcher.dispatch(event)

        assert second.in_app_count == 0
        assert second.email_sent is True
        assert Notification.query.filter_by(transition_id=event.transition_id).count() == 4
        assert EmailLog.query.filter_by(transition_id=event.transition_id).count() == 1

    def test_redispatch_fills_missing_recipient(self, make_profile, make_application, owner, admin):
        application = make_application(owner=owner, status="Submitted")
        actor = make_profile("Acting Admin", role=ROLE_ADMIN)
        event = _committed_event(application, actor, "Submitted", "Sent to Bank")
        StatusNotificationDispatcher.dispatch(event)

        Notification.query.filter_by(user_id=admin.id).delete()
        db.session.commit()

        result = StatusNotificationDispatcher.dispatch(event)
        assert result.in_app_count == 1
        assert Notification.query.filter_by(transition_id=event.transition_id).count() == 2


# ═══════════════════════════════════════════════════════════════════════════
# Email channel
# ═══════════════════════════════════════════════════════════════════════════


class TestEmailChannel:
    def test_email_sent_to_owner(self, make_application, owner, admin):
        application = make_application(owner=owner, status="Sent to Bank")
        event = _committed_event(application, admin, "Sent to Bank", "Complete")

        result = StatusNotificationDispatcher.dispatch(event)

        assert result.email_sent is True
        log = EmailLog.query.filter_by(transition_id=event.transition_id).one()
        assert log.recipient_email == owner.email
        assert log.subject == "Application Status Update - Complete"
        assert log.template_name == "status_change"
        assert log.status == "sent"

    def test_falls_back_to_customer_email(self, make_application, admin):
        application = make_application(status="Sent to Bank")
        event = _committed_event(application, admin, "Sent to Bank", "Complete")

        StatusNotificationDispatcher.dispatch(event)

        log = EmailLog.query.filter_by(transition_id=event.transition_id).one()
        assert log.recipient_email == "contact@acme.example.com"

    def test_email_failure_is_reported_not_raised(self, make_application, owner, admin):
        application = make_application(owner=owner, status="Sent to Bank")
        event = _committed_event(application, admin, "Sent to Bank", "Complete")

        with patch(
            "crm_workflow.services.notification.EmailService.send_from_template",
            side_effect=RuntimeError("smtp down"),
        ):
            result = StatusNotificationDispatcher.dispatch(event)

        assert result.in_app_count == 1
        assert result.email_sent is False
        assert result.errors == ["email: smtp down"]
        assert Notification.query.filter_by(transition_id=event.transition_id).count() == 1

    def test_in_app_failure_still_sends_email(self, make_application, owner, admin):
        application = make_application(owner=owner, status="Sent to Bank")
        event = _committed_event(application, admin, "Sent to Bank", "Complete")

        with patch.object(StatusNotificationDispatcher, "_notify_in_app",
                          side_effect=RuntimeError("insert failed")):
            result = StatusNotificationDispatcher.dispatch(event)

        assert result.in_app_count == 0
        assert result.email_sent is True
        assert result.errors == ["in_app: insert failed"]


# ═══════════════════════════════════════════════════════════════════════════
# Inbox
# ═══════════════════════════════════════════════════════════════════════════


class TestInbox:
    def _notify_owner(self, make_application, owner, admin, count=2):
        application = make_application(owner=owner, status="Submitted")
        statuses = ["Sent to Bank", "Need More Info", "Sent to Bank"]
        previous = "Submitted"
        for new in statuses[:count]:
            comment = "Need bank letter" if new == "Need More Info" else None
            StatusNotificationDispatcher.dispatch(
                _committed_event(application, admin, previous, new, comment),
            )
            previous = new
        return application

    def test_list_and_unread_count(self, make_application, owner, admin):
        self._notify_owner(make_application, owner, admin, count=2)

        items, total = NotificationService.list_for_recipient(owner.id)
        assert total == 2
        assert len(items) == 2
        assert NotificationService.unread_count(owner.id) == 2

    def test_mark_read_only_by_recipient(self, make_application, owner, admin):
        self._notify_owner(make_application, owner, admin, count=1)
        notif = Notification.query.filter_by(user_id=owner.id).one()

        assert NotificationService.mark_read(notif.id, admin.id) is None
        assert NotificationService.mark_read(notif.id, owner.id).is_read is True
        assert NotificationService.unread_count(owner.id) == 0

    def test_mark_all_read(self, make_application, owner, admin):
        self._notify_owner(make_application, owner, admin, count=3)

        assert NotificationService.mark_all_read(owner.id) == 3
        items, total = NotificationService.list_for_recipient(owner.id, unread_only=True)
        assert total == 0
        assert items == []


# ═══════════════════════════════════════════════════════════════════════════
# Status-change message
# ═══════════════════════════════════════════════════════════════════════════


class TestStatusMessage:
    def test_message_without_comment(self, make_application, owner, admin):
        application = make_application(owner=owner, status="Submitted")
        event = _committed_event(application, admin, "Submitted", "Sent to Bank")
        assert event.status_message == "Status changed from Submitted to Sent to Bank"

    def test_message_used_by_every_recipient(self, make_profile, make_application, owner, admin):
        actor = make_profile("Acting Admin", role=ROLE_ADMIN)
        application = make_application(owner=owner, status="Sent to Bank")
        event = _committed_event(application, actor, "Sent to Bank", "Rejected", "Bank declined")

        StatusNotificationDispatcher.dispatch(event)

        messages = {n.message for n in Notification.query.filter_by(transition_id=event.transition_id)}
        assert messages == {"Status changed from Sent to Bank to Rejected: Bank declined"}
