"""
PermitDesk
Permit domain model.

Models:
    - Permit: a unit of regulatory work tied to a property
    - PermitParty: (permit, user, role) membership — unique per permit+user
    - Milestone: ordered, optionally due-dated unit of progress on a permit
"""

from enum import Enum

from permitdesk.models import db
from permitdesk.models.base import _iso, _utcnow, _uuid


# ── Constants ────────────────────────────────────────────────────────────────

class PartyRole(str, Enum):
    """Closed set of roles a party can hold on a permit."""
    OWNER = "OWNER"
    EXPEDITOR = "EXPEDITOR"
    CONTRACTOR = "CONTRACTOR"
    ARCHITECT = "ARCHITECT"
    ENGINEER = "ENGINEER"
    INSPECTOR = "INSPECTOR"
    VIEWER = "VIEWER"


PARTY_ROLES = frozenset(r.value for r in PartyRole)

SUBCODE_TYPES = frozenset({
    "BUILDING", "PLUMBING", "ELECTRICAL", "FIRE", "ZONING", "MECHANICAL",
})

PERMIT_STATUSES = frozenset({
    "DRAFT", "READY_TO_SUBMIT", "SUBMITTED", "UNDER_REVIEW",
    "CORRECTIONS_NEEDED", "RESUBMITTED", "APPROVED", "PERMIT_ISSUED",
    "INSPECTION_SCHEDULED", "INSPECTION_PASSED", "INSPECTION_FAILED",
    "CERTIFICATE_OF_OCCUPANCY", "CLOSED", "EXPIRED", "DENIED",
})

# current status → statuses reachable in one step
PERMIT_STATUS_TRANSITIONS = {
    "DRAFT": ("READY_TO_SUBMIT", "SUBMITTED"),
    "READY_TO_SUBMIT": ("DRAFT", "SUBMITTED"),
    "SUBMITTED": ("UNDER_REVIEW", "CORRECTIONS_NEEDED", "APPROVED", "DENIED"),
    "UNDER_REVIEW": ("CORRECTIONS_NEEDED", "APPROVED", "DENIED"),
    "CORRECTIONS_NEEDED": ("RESUBMITTED",),
    "RESUBMITTED": ("UNDER_REVIEW", "CORRECTIONS_NEEDED", "APPROVED", "DENIED"),
    "APPROVED": ("PERMIT_ISSUED",),
    "PERMIT_ISSUED": ("INSPECTION_SCHEDULED", "EXPIRED"),
    "INSPECTION_SCHEDULED": ("INSPECTION_PASSED", "INSPECTION_FAILED"),
    "INSPECTION_FAILED": ("INSPECTION_SCHEDULED",),
    "INSPECTION_PASSED": ("INSPECTION_SCHEDULED", "CERTIFICATE_OF_OCCUPANCY"),
    "CERTIFICATE_OF_OCCUPANCY": ("CLOSED",),
    "CLOSED": (),
    "EXPIRED": (),
    "DENIED": (),
}

TERMINAL_STATUSES = frozenset({"CLOSED", "EXPIRED", "DENIED"})


# ═════════════════════════════════════════════════════════════════════════════
# Permit
# ═════════════════════════════════════════════════════════════════════════════

class Permit(db.Model):
    """
    Permit entity.

    ``creator_id`` is written once at creation and never updated; the
    creator keeps full access regardless of any party row.
    """

    __tablename__ = "permits"
    __table_args__ = (
        db.Index("idx_permit_creator", "creator_id"),
        db.Index("idx_permit_property", "property_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    creator_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="RESTRICT"), nullable=False,
    )
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, nullable=True)
    status = db.Column(db.String(30), nullable=False, default="DRAFT")
    subcode_type = db.Column(db.String(30), nullable=False)
    property_id = db.Column(db.String(36), nullable=True)

    # Lifecycle stamps
    submitted_at = db.Column(db.DateTime(timezone=True), nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    issued_at = db.Column(db.DateTime(timezone=True), nullable=True)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)
    closed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    creator = db.relationship("User", foreign_keys=[creator_id])
    parties = db.relationship(
        "PermitParty", back_populates="permit", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )
    milestones = db.relationship(
        "Milestone", back_populates="permit", lazy="dynamic",
        cascade="all, delete-orphan", passive_deletes=True,
    )

    def to_dict(self):
        return {
            "id": self.id,
            "creator_id": self.creator_id,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "subcode_type": self.subcode_type,
            "property_id": self.property_id,
            "submitted_at": _iso(self.submitted_at),
            "approved_at": _iso(self.approved_at),
            "issued_at": _iso(self.issued_at),
            "expires_at": _iso(self.expires_at),
            "closed_at": _iso(self.closed_at),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Permit {self.id}: {self.title[:40]} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# PermitParty
# ═════════════════════════════════════════════════════════════════════════════

class PermitParty(db.Model):
    """
    Membership of a user on a permit.

    Rows are created on invite and deleted on detachment. A role change is
    a delete followed by a fresh insert, never an UPDATE, so each row's
    role is the role it was created with.
    """

    __tablename__ = "permit_parties"
    __table_args__ = (
        db.UniqueConstraint("permit_id", "user_id", name="uq_permit_party_user"),
        db.Index("idx_party_user", "user_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    permit_id = db.Column(
        db.String(36), db.ForeignKey("permits.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    user_id = db.Column(
        db.String(36), db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False,
    )
    role = db.Column(db.String(20), nullable=False)
    is_primary = db.Column(db.Boolean, nullable=False, default=False)
    added_by_id = db.Column(db.String(36), db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    added_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)

    permit = db.relationship("Permit", back_populates="parties")
    user = db.relationship("User", foreign_keys=[user_id])

    def to_dict(self):
        return {
            "id": self.id,
            "permit_id": self.permit_id,
            "user_id": self.user_id,
            "role": self.role,
            "is_primary": self.is_primary,
            "added_by_id": self.added_by_id,
            "added_at": _iso(self.added_at),
            "user": {
                "id": self.user.id,
                "full_name": self.user.full_name,
                "email": self.user.email,
            } if self.user else None,
        }

    def __repr__(self):
        return f"<PermitParty {self.user_id} on {self.permit_id} as {self.role}>"


# ═════════════════════════════════════════════════════════════════════════════
# Milestone
# ═════════════════════════════════════════════════════════════════════════════

class Milestone(db.Model):
    """
    Tracked unit of progress on a permit.

    ``sort_order`` is sparse: deletes never renumber the remaining rows and
    duplicate values are allowed (a tie, ordered by creation).
    Completion is binary — ``completed_at`` set means complete.
    """

    __tablename__ = "milestones"
    __table_args__ = (
        db.Index("idx_milestone_permit_order", "permit_id", "sort_order"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    permit_id = db.Column(
        db.String(36), db.ForeignKey("permits.id", ondelete="CASCADE"), nullable=False,
    )
    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, nullable=True)
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    sort_order = db.Column(db.Integer, nullable=False, default=0)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    permit = db.relationship("Permit", back_populates="milestones")

    @property
    def is_completed(self) -> bool:
        return self.completed_at is not None

    def to_dict(self):
        return {
            "id": self.id,
            "permit_id": self.permit_id,
            "title": self.title,
            "description": self.description,
            "due_date": _iso(self.due_date),
            "sort_order": self.sort_order,
            "completed_at": _iso(self.completed_at),
            "is_completed": self.is_completed,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }

    def __repr__(self):
        return f"<Milestone {self.id}: #{self.sort_order} {self.title[:40]}>"
