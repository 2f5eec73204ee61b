"""
PermitDesk
Notification Service — the signed-in user's in-app inbox.

Rows are created only by the outbox dispatcher; this service reads them
and flips read state. Every call is scoped to one user: another user's
notification is reported as not found.
"""

from permitdesk.core.exceptions import NotFoundError
from permitdesk.models import db
from permitdesk.models.base import _utcnow
from permitdesk.models.notification import Notification


class NotificationService:
    """Stateless service class for a user's notifications."""

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def list_for_user(user_id, unread_only=False, limit=20, offset=0):
        """
        Retrieve a user's notifications, newest first.

        Returns:
            (items, total)
        """
        q = Notification.query.filter_by(user_id=user_id)
        if unread_only:
            q = q.filter_by(is_read=False)
        total = q.count()
        items = (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset).limit(limit).all()
        )
        return items, total

    @staticmethod
    def unread_count(user_id):
        return Notification.query.filter_by(user_id=user_id, is_read=False).count()

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def _get_own(user_id, notification_id):
        notif = db.session.get(Notification, notification_id)
        if notif is None or notif.user_id != user_id:
            raise NotFoundError(resource="Notification", resource_id=notification_id)
        return notif

    @staticmethod
    def mark_read(user_id, notification_id):
        """Mark one of the user's notifications as read. Idempotent."""
        notif = NotificationService._get_own(user_id, notification_id)
        if not notif.is_read:
            notif.mark_read()
            db.session.commit()
        return notif

    @staticmethod
    def mark_all_read(user_id):
        """Mark every unread notification of the user as read."""
        count = (
            Notification.query.filter_by(user_id=user_id, is_read=False)
            .update({"is_read": True, "read_at": _utcnow()}, synchronize_session="fetch")
        )
        db.session.commit()
        return count

    @staticmethod
    def delete(user_id, notification_id):
        notif = NotificationService._get_own(user_id, notification_id)
        db.session.delete(notif)
        db.session.commit()
