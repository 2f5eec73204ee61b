"""
PermitDesk
Inspection domain model.

Models:
    - Inspection: a municipal inspection requested against a permit
"""

from permitdesk.models import db
from permitdesk.models.base import _iso, _utcnow, _uuid

# ── Constants ────────────────────────────────────────────────────────────────

INSPECTION_STATUSES = frozenset({
    "NOT_SCHEDULED", "SCHEDULED", "PASSED", "FAILED", "CANCELLED",
})

# Statuses that close out an inspection and stamp completed_date
INSPECTION_RESULT_STATUSES = frozenset({"PASSED", "FAILED"})


class Inspection(db.Model):
    """
    One inspection on a permit.

    Without a scheduled_date the inspection is NOT_SCHEDULED; giving it a
    date moves it to SCHEDULED. PASSED / FAILED stamp ``completed_date``.
    """

    __tablename__ = "inspections"
    __table_args__ = (
        db.Index("idx_inspection_permit_scheduled", "permit_id", "scheduled_date"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    permit_id = db.Column(
        db.String(36), db.ForeignKey("permits.id", ondelete="CASCADE"), nullable=False,
    )
    type = db.Column(db.String(100), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="NOT_SCHEDULED")
    scheduled_date = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_date = db.Column(db.DateTime(timezone=True), nullable=True)
    inspector_name = db.Column(db.String(200), nullable=True)
    inspector_phone = db.Column(db.String(50), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    result = db.Column(db.Text, nullable=True)
    created_by_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "permit_id": self.permit_id,
            "type": self.type,
            "status": self.status,
            "scheduled_date": _iso(self.scheduled_date),
            "completed_date": _iso(self.completed_date),
            "inspector_name": self.inspector_name,
            "inspector_phone": self.inspector_phone,
            "notes": self.notes,
            "result": self.result,
            "created_by_id": self.created_by_id,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Inspection {self.id}: {self.type} [{self.status}]>"
