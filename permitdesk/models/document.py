"""
PermitDesk
File attachment models.

Models:
    - Document: uploaded file registered against a permit
    - Photo: site photo registered against a permit
    - PhotoShare: one row per external recipient a photo was shared with

Binary content lives in blob storage; these rows only carry the URL the
storage gateway returned at upload time.
"""

from permitdesk.models import db
from permitdesk.models.base import _iso, _utcnow, _uuid


class Document(db.Model):
    __tablename__ = "documents"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    permit_id = db.Column(
        db.String(36), db.ForeignKey("permits.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    name = db.Column(db.String(300), nullable=False)
    file_url = db.Column(db.String(1000), nullable=False)
    content_type = db.Column(db.String(100), nullable=True)
    size_bytes = db.Column(db.Integer, nullable=True)
    uploaded_by_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "permit_id": self.permit_id,
            "name": self.name,
            "file_url": self.file_url,
            "content_type": self.content_type,
            "size_bytes": self.size_bytes,
            "uploaded_by_id": self.uploaded_by_id,
            "created_at": _iso(self.created_at),
        }

    def __repr__(self):
        return f"<Document {self.id}: {self.name[:40]}>"


class Photo(db.Model):
    __tablename__ = "photos"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    permit_id = db.Column(
        db.String(36), db.ForeignKey("permits.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    file_url = db.Column(db.String(1000), nullable=False)
    caption = db.Column(db.String(500), nullable=True)
    uploaded_by_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    shares = db.relationship(
        "PhotoShare", back_populates="photo", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    def to_dict(self, include_shares=False):
        d = {
            "id": self.id,
            "permit_id": self.permit_id,
            "file_url": self.file_url,
            "caption": self.caption,
            "uploaded_by_id": self.uploaded_by_id,
            "created_at": _iso(self.created_at),
        }
        if include_shares:
            d["shares"] = [s.to_dict() for s in self.shares.order_by(PhotoShare.sent_at).all()]
        return d

    def __repr__(self):
        return f"<Photo {self.id} on {self.permit_id}>"


class PhotoShare(db.Model):
    __tablename__ = "photo_shares"

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    photo_id = db.Column(
        db.String(36), db.ForeignKey("photos.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    recipient_email = db.Column(db.String(200), nullable=False)
    recipient_name = db.Column(db.String(200), nullable=True)
    message = db.Column(db.Text, nullable=True)
    sent_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    photo = db.relationship("Photo", back_populates="shares")

    def to_dict(self):
        return {
            "id": self.id,
            "photo_id": self.photo_id,
            "recipient_email": self.recipient_email,
            "recipient_name": self.recipient_name,
            "message": self.message,
            "sent_at": _iso(self.sent_at),
        }
