"""
PermitDesk
Activity domain model.

Models:
    - ActivityLog: immutable, append-only audit trail of every mutating action.
"""

import json

from permitdesk.models import db
from permitdesk.models.base import _iso, _utcnow

# ── Constants ────────────────────────────────────────────────────────────────

ACTIONS = frozenset({
    "CREATED",
    "UPDATED",
    "DELETED",
    "STATUS_CHANGED",
    "DOCUMENT_UPLOADED",
    "PHOTO_UPLOADED",
    "PHOTO_SHARED",
    "PARTY_ADDED",
    "PARTY_REMOVED",
    "MILESTONE_COMPLETED",
    "INSPECTION_SCHEDULED",
    "INSPECTION_COMPLETED",
    "WORKFLOW_APPLIED",
})

ENTITY_TYPES = frozenset({
    "PERMIT", "PARTY", "MILESTONE", "DOCUMENT", "PHOTO", "INSPECTION", "MESSAGE",
    "WORKFLOW_TEMPLATE",
})


class ActivityLog(db.Model):
    """
    One row per state-changing event.

    The integer primary key doubles as the monotonic insertion sequence:
    feeds order by ``created_at`` descending and break wall-clock ties on
    ``id`` descending. ``permit_id`` is not a foreign key so
    the trail outlives a deleted permit.
    """

    __tablename__ = "activity_logs"
    __table_args__ = (
        db.Index("idx_activity_permit_feed", "permit_id", "created_at", "id"),
        db.Index("idx_activity_entity", "entity_type", "entity_id"),
        db.Index("idx_activity_actor", "actor_user_id"),
    )

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    actor_user_id = db.Column(db.String(36), nullable=False)
    action = db.Column(db.String(40), nullable=False)
    entity_type = db.Column(db.String(30), nullable=False)
    entity_id = db.Column(db.String(64), nullable=False)
    description = db.Column(db.String(1000), nullable=False, default="")
    permit_id = db.Column(db.String(36), nullable=True)
    metadata_json = db.Column(db.Text, nullable=False, default="{}")
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    @property
    def seq(self) -> int:
        return self.id

    @property
    def metadata_dict(self) -> dict:
        try:
            return json.loads(self.metadata_json or "{}")
        except (json.JSONDecodeError, TypeError):
            return {}

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "actor_user_id": self.actor_user_id,
            "action": self.action,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "description": self.description,
            "permit_id": self.permit_id,
            "metadata": self.metadata_dict,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<ActivityLog {self.id}: {self.action} on {self.entity_type}/{self.entity_id}>"
