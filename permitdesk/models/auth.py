"""
PermitDesk
User model.

Authentication happens upstream; this table only backs display names in
activity descriptions and notifications, and lets party invitations check
that the invited user exists.
"""

from permitdesk.models import db
from permitdesk.models.base import _iso, _utcnow, _uuid


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    email = db.Column(db.String(200), nullable=False, unique=True)
    full_name = db.Column(db.String(200))
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)

    @property
    def display_name(self) -> str:
        return self.full_name or self.email

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<User {self.id}: {self.email}>"
