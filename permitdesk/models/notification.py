"""
PermitDesk
Notification domain model.

Models:
    - Notification: in-app notification record with read tracking
    - NotificationOutbox: queued side-effect message awaiting the dispatcher
"""

import json

from permitdesk.models import db
from permitdesk.models.base import _iso, _utcnow, _uuid


# ── Constants ────────────────────────────────────────────────────────────────

NOTIFICATION_TYPES = frozenset({
    "PARTY_ADDED", "PARTY_REMOVED", "STATUS_CHANGED", "PHOTO_SHARED", "NEW_MESSAGE", "SYSTEM",
})

OUTBOX_STATUSES = frozenset({"pending", "processing", "sent", "failed"})


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event.
    """

    __tablename__ = "notifications"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    title = db.Column(db.String(300), nullable=False)
    body = db.Column(db.Text, default="")
    type = db.Column(db.String(30), nullable=False, default="SYSTEM")

    # Link to source entity
    permit_id = db.Column(db.String(36), nullable=True, index=True)
    entity_type = db.Column(db.String(30), nullable=True)
    entity_id = db.Column(db.String(36), nullable=True)

    # Read tracking
    is_read = db.Column(db.Boolean, nullable=False, default=False)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def mark_read(self):
        self.is_read = True
        self.read_at = _utcnow()

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "body": self.body,
            "type": self.type,
            "permit_id": self.permit_id,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "is_read": self.is_read,
            "read_at": _iso(self.read_at),
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.title[:40]}>"


class NotificationOutbox(db.Model):
    """
    A notification side effect handed off by a request.

    Requests only insert rows here; the dispatcher worker delivers them out
    of band and records the outcome on the row, so failed deliveries stay
    visible and can be replayed.
    """

    __tablename__ = "notification_outbox"
    __table_args__ = (
        db.Index("idx_outbox_status_created", "status", "created_at"),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    kind = db.Column(db.String(30), nullable=False)
    entity_id = db.Column(db.String(36), nullable=True)
    permit_id = db.Column(db.String(36), nullable=True)
    payload_json = db.Column(db.Text, nullable=False, default="{}")
    status = db.Column(db.String(20), nullable=False, default="pending")
    attempts = db.Column(db.Integer, nullable=False, default=0)
    last_error = db.Column(db.String(1000), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    claimed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    processed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def payload(self) -> dict:
        try:
            return json.loads(self.payload_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self):
        return {
            "id": self.id,
            "kind": self.kind,
            "entity_id": self.entity_id,
            "permit_id": self.permit_id,
            "payload": self.payload,
            "status": self.status,
            "attempts": self.attempts,
            "last_error": self.last_error,
            "created_at": _iso(self.created_at),
            "claimed_at": _iso(self.claimed_at),
            "processed_at": _iso(self.processed_at),
        }

    def __repr__(self):
        return f"<NotificationOutbox {self.id}: {self.kind} [{self.status}]>"
