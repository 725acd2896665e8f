"""
Corporate CRM Workflow
Notification Service.

  - NotificationService: query / read-tracking for a recipient's inbox
  - StatusNotificationDispatcher: fan-out of one committed status
    transition to the owner, the active admins and the owner's email

Fan-out is best-effort: failures are logged and reported in the
DispatchResult, never raised, and never undo the transition.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from flask import current_app
from markupsafe import escape

from crm_workflow.core.exceptions import NotificationDispatchError
from crm_workflow.models import db
from crm_workflow.models.notification import EmailLog, Notification
from crm_workflow.models.profile import UserProfile
from crm_workflow.services.email_service import TYPE_COLORS, EmailService
from crm_workflow.services.status_rules import notification_type_for

logger = logging.getLogger(__name__)


class NotificationService:
    """Stateless service class for notification inbox operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, user_id, title, message="", type="info", action_url=None,
               application_id=None, transition_id=None):
        """
        Add a single notification record to the session.

        Returns:
            The flushed Notification instance (caller commits).
        """
        notif = Notification(
            user_id=user_id,
            type=type,
            title=title,
            message=message,
            action_url=action_url,
            application_id=application_id,
            transition_id=transition_id,
        )
        db.session.add(notif)
        db.session.flush()
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_recipient(user_id, unread_only=False, limit=50, offset=0):
        """Retrieve notifications for a recipient, newest first."""
        q = Notification.query.filter_by(user_id=user_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = q.order_by(Notification.created_at.desc()).offset(offset).limit(limit).all()
        return items, total

    @staticmethod
    def unread_count(user_id):
        return Notification.query.filter_by(user_id=user_id, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, user_id):
        """Mark a single notification as read. Only the recipient may do so."""
        notif = db.session.get(Notification, notification_id)
        if notif is None or notif.user_id != user_id:
            return None
        notif.mark_read()
        db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(user_id):
        """Mark all notifications for a recipient as read."""
        now = datetime.now(timezone.utc)
        count = (
            Notification.query
            .filter_by(user_id=user_id, is_read=False)
            .update({"is_read": True, "read_at": now}, synchronize_session="fetch")
        )
        db.session.commit()
        return count


# ═══════════════════════════════════════════════════════════════════════════
#  Status transition fan-out
# ═══════════════════════════════════════════════════════════════════════════


@dataclass
class TransitionEvent:
    """Everything the fan-out needs about one committed transition."""

    transition_id: str
    application_id: str
    customer_name: str
    previous_status: str | None
    new_status: str
    actor_id: str
    actor_name: str | None = None
    comment: str | None = None
    owner_id: str | None = None
    customer_email: str | None = None

    @classmethod
    def from_change(cls, change, application) -> "TransitionEvent":
        return cls(
            transition_id=change.id,
            application_id=application.id,
            customer_name=application.customer_name,
            previous_status=change.previous_status,
            new_status=change.new_status,
            actor_id=change.changed_by,
            actor_name=change.changed_by_name,
            comment=change.comment,
            owner_id=application.user_id,
            customer_email=application.customer_email,
        )

    @property
    def action_url(self) -> str:
        return f"/applications/{self.application_id}"

    @property
    def status_message(self) -> str:
        """Status-change text: "Status changed from X to Y[: comment]"."""
        message = f"Status changed from {self.previous_status or '-'} to {self.new_status}"
        if self.comment:
            message += f": {self.comment}"
        return message


@dataclass
class DispatchResult:
    in_app_count: int = 0
    email_sent: bool = False
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "in_app_count": self.in_app_count,
            "email_sent": self.email_sent,
            "errors": list(self.errors),
        }


class StatusNotificationDispatcher:
    """Fan a transition event out to in-app notifications and email."""

    @classmethod
    def dispatch(cls, event: TransitionEvent) -> DispatchResult:
        """
        Deliver notifications for one transition.

        Idempotent per (transition_id, recipient): re-dispatching the same
        event only fills in what is missing.

        Returns:
            DispatchResult(in_app_count, email_sent, errors)
        """
        result = DispatchResult()

        try:
            result.in_app_count = cls._notify_in_app(event)
            db.session.commit()
        except Exception as exc:
            db.session.rollback()
            result.in_app_count = 0
            err = NotificationDispatchError("in_app", str(exc))
            result.errors.append(str(err))
            logger.exception("In-app notifications failed for transition %s", event.transition_id,
                             extra={"transition_id": event.transition_id})

        try:
            log = cls._send_email(event)
            db.session.commit()
        except Exception as exc:
            db.session.rollback()
            err = NotificationDispatchError("email", str(exc))
            result.errors.append(str(err))
            logger.exception("Email notification failed for transition %s", event.transition_id,
                             extra={"transition_id": event.transition_id})
        else:
            if log is not None:
                if log.status == "sent":
                    result.email_sent = True
                else:
                    err = NotificationDispatchError("email", log.error_message or "delivery failed")
                    result.errors.append(str(err))
                    logger.warning("Email not delivered for transition %s: %s",
                                   event.transition_id, err,
                                   extra={"transition_id": event.transition_id})

        logger.info(
            "Notifications dispatched: transition=%s in_app=%d email=%s errors=%d",
            event.transition_id, result.in_app_count, result.email_sent, len(result.errors),
            extra={"transition_id": event.transition_id, "application_id": event.application_id},
        )
        return result

    # ── Internals ─────────────────────────────────────────────────────────

    @staticmethod
    def recipients_for(event: TransitionEvent) -> list[str]:
        """Owner first (unless they acted), then active admins except the actor."""
        recipients = []
        if event.owner_id and event.owner_id != event.actor_id:
            recipients.append(event.owner_id)
        for admin in UserProfile.active_admins():
            if admin.id != event.actor_id and admin.id not in recipients:
                recipients.append(admin.id)
        return recipients

    @classmethod
    def _notify_in_app(cls, event: TransitionEvent) -> int:
        already = {
            uid for (uid,) in db.session.query(Notification.user_id)
            .filter_by(transition_id=event.transition_id)
        }
        created = 0
        for user_id in cls.recipients_for(event):
            if user_id in already:
                continue
            NotificationService.create(
                user_id=user_id,
                type=notification_type_for(event.new_status),
                title=f"Application {event.new_status}",
                message=event.status_message,
                action_url=event.action_url,
                application_id=event.application_id,
                transition_id=event.transition_id,
            )
            created += 1
        return created

    @staticmethod
    def _send_email(event: TransitionEvent) -> EmailLog | None:
        previous = (
            EmailLog.query
            .filter_by(transition_id=event.transition_id, status="sent")
            .first()
        )
        if previous is not None:
            return previous

        owner = db.session.get(UserProfile, event.owner_id) if event.owner_id else None
        to_email = (owner.email if owner else None) or event.customer_email
        if not to_email:
            logger.debug("No email address for application %s, skipping email", event.application_id)
            return None

        base_url = (current_app.config.get("APP_BASE_URL") or "").rstrip("/")
        ntype = notification_type_for(event.new_status)
        # Caller-supplied text is escaped before it lands in the HTML body
        comment_block = (
            f'<p style="color: #4b5563;"><strong>Comment:</strong> {escape(event.comment)}</p>'
            if event.comment else ""
        )
        return EmailService.send_from_template(
            to_email=to_email,
            to_name=owner.name if owner else event.customer_name,
            template_name="status_change",
            context={
                "status": escape(event.new_status),
                "previous_status": escape(event.previous_status or "-"),
                "customer_name": escape(event.customer_name),
                "comment_block": comment_block,
                "type_color": TYPE_COLORS.get(ntype, TYPE_COLORS["info"]),
                "action_link": f'<a href="{base_url}{event.action_url}">View Details</a>',
            },
            application_id=event.application_id,
            transition_id=event.transition_id,
        )
