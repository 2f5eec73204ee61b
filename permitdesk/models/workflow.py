"""
PermitDesk
Workflow template model.

A template is a blueprint only: applying it copies its steps into
Milestone rows, and later edits to the template never reach those copies.

``steps`` JSON shape:
    [{"title": str, "description": str | None, "due_offset_days": int | None}, ...]
"""

from permitdesk.models import db
from permitdesk.models.base import _iso, _utcnow, _uuid


class WorkflowTemplate(db.Model):
    __tablename__ = "workflow_templates"
    __table_args__ = (
        # At most one default per permit type ("" = all types).
        db.Index(
            "uq_workflow_default_per_type",
            "permit_type",
            unique=True,
            postgresql_where=db.text("is_default IS TRUE"),
            sqlite_where=db.text("is_default = 1"),
        ),
    )

    id = db.Column(db.String(64), primary_key=True, default=_uuid)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.String(2000), nullable=True)
    permit_type = db.Column(
        db.String(30), nullable=False, default="",
        comment="Empty string = applies to all permit types",
    )
    is_default = db.Column(db.Boolean, nullable=False, default=False)
    steps = db.Column(db.JSON, nullable=False, default=list)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    def to_dict(self, include_steps=True):
        d = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "permit_type": self.permit_type or None,
            "is_default": self.is_default,
            "step_count": len(self.steps or []),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_steps:
            d["steps"] = list(self.steps or [])
        return d

    def __repr__(self):
        return f"<WorkflowTemplate {self.id}: {self.name[:40]}>"
