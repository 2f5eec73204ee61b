"""
Notification Inbox Blueprint.

Every route acts on the authenticated principal's own notifications.

Routes:
  GET    /notifications?page=&page_size=&unread_only=   – newest first
  GET    /notifications/unread-count                    – unread badge count
  PATCH  /notifications/<nid>/read                      – mark one read
  POST   /notifications/mark-all-read                   – mark all read
  DELETE /notifications/<nid>                           – dismiss one
"""

from flask import Blueprint, g, jsonify, request

from permitdesk.blueprints import page_args
from permitdesk.middleware.jwt_auth import require_principal
from permitdesk.services.notification_service import NotificationService

notifications_bp = Blueprint("notifications", __name__, url_prefix="/api/v1")


@notifications_bp.route("/notifications", methods=["GET"])
@require_principal
def list_notifications():
    page, page_size = page_args(default_size=20, max_size=100)
    unread_only = request.args.get("unread_only", "false").lower() == "true"
    items, total = NotificationService.list_for_user(
        g.principal_id, unread_only=unread_only,
        limit=page_size, offset=(page - 1) * page_size,
    )
    return jsonify({
        "items": [n.to_dict() for n in items],
        "total": total,
        "unread_count": NotificationService.unread_count(g.principal_id),
        "page": page,
        "page_size": page_size,
    })


@notifications_bp.route("/notifications/unread-count", methods=["GET"])
@require_principal
def notification_unread_count():
    return jsonify({"unread_count": NotificationService.unread_count(g.principal_id)})


@notifications_bp.route("/notifications/<notification_id>/read", methods=["PATCH"])
@require_principal
def mark_notification_read(notification_id):
    notif = NotificationService.mark_read(g.principal_id, notification_id)
    return jsonify(notif.to_dict())


@notifications_bp.route("/notifications/mark-all-read", methods=["POST"])
@require_principal
def mark_all_notifications_read():
    count = NotificationService.mark_all_read(g.principal_id)
    return jsonify({"marked_read": count})


@notifications_bp.route("/notifications/<notification_id>", methods=["DELETE"])
@require_principal
def delete_notification(notification_id):
    NotificationService.delete(g.principal_id, notification_id)
    return jsonify({"deleted": True, "id": notification_id})
