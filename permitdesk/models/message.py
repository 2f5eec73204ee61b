"""
PermitDesk
Permit message thread.

Models:
    - Message: a chat message posted by a party on a permit

Sender name and email are copied onto the row at post time, so the thread
still reads correctly after the sender leaves the permit.
"""

from permitdesk.models import db
from permitdesk.models.base import _iso, _utcnow, _uuid


class Message(db.Model):
    __tablename__ = "messages"
    __table_args__ = (
        db.Index("idx_message_permit_created", "permit_id", "created_at"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    permit_id = db.Column(
        db.String(36), db.ForeignKey("permits.id", ondelete="CASCADE"), nullable=False,
    )
    sender_user_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    sender_name = db.Column(db.String(200), nullable=True)
    sender_email = db.Column(db.String(255), nullable=True)
    content = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "permit_id": self.permit_id,
            "sender_user_id": self.sender_user_id,
            "sender_name": self.sender_name,
            "sender_email": self.sender_email,
            "content": self.content,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<Message {self.id}: {self.content[:40]}>"
