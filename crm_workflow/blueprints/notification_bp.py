"""
Corporate CRM Workflow
Notification Blueprint: a recipient's in-app inbox.

Endpoints:
  - GET   /notifications?user_id=&unread_only=&limit=&offset=
  - GET   /notifications/unread-count?user_id=
  - POST  /notifications/<id>/read      body: {user_id}
  - POST  /notifications/read-all       body: {user_id}
"""

import logging

from flask import Blueprint, jsonify, request

from crm_workflow.services.notification import NotificationService
from crm_workflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1")


def _int_arg(name, default):
    try:
        return max(int(request.args.get(name, default)), 0)
    except (ValueError, TypeError):
        return default


@notification_bp.route("/notifications", methods=["GET"])
def list_notifications():
    """List notifications for ?user_id=, newest first."""
    user_id = request.args.get("user_id")
    if not user_id:
        return api_error(E.VALIDATION_REQUIRED, "user_id is required")
    unread_only = request.args.get("unread_only", "false").lower() == "true"

    items, total = NotificationService.list_for_recipient(
        user_id,
        unread_only=unread_only,
        limit=min(_int_arg("limit", 50), 500),
        offset=_int_arg("offset", 0),
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(user_id),
    })


@notification_bp.route("/notifications/unread-count", methods=["GET"])
def unread_count():
    user_id = request.args.get("user_id")
    if not user_id:
        return api_error(E.VALIDATION_REQUIRED, "user_id is required")
    return jsonify({"unread_count": NotificationService.unread_count(user_id)})


@notification_bp.route("/notifications/<int:notification_id>/read", methods=["POST"])
def mark_read(notification_id):
    """Mark one notification read. Only its recipient may do so."""
    data = request.get_json(silent=True) or {}
    user_id = data.get("user_id")
    if not user_id:
        return api_error(E.VALIDATION_REQUIRED, "user_id is required")

    notif = NotificationService.mark_read(notification_id, user_id)
    if notif is None:
        return api_error(E.NOT_FOUND, "Notification not found")
    return jsonify(notif.to_dict())


@notification_bp.route("/notifications/read-all", methods=["POST"])
def mark_all_read():
    data = request.get_json(silent=True) or {}
    user_id = data.get("user_id")
    if not user_id:
        return api_error(E.VALIDATION_REQUIRED, "user_id is required")

    count = NotificationService.mark_all_read(user_id)
    return jsonify({"marked_read": count})
