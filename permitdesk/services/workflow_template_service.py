"""
Workflow Template Service — reusable milestone blueprints per permit type.

Templates are never instantiated here; the milestone service copies their
steps onto a permit, so editing or deleting a template leaves milestones
already created from it untouched.

Templates created through the API are never defaults. ``is_default`` is
set only by the seeding path (``seed_default_templates`` /
``flask seed-workflow-templates``), which enforces at most one default per
permit type.
"""

from __future__ import annotations

import logging

from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError

from permitdesk.core.exceptions import ConflictError, NotFoundError, ValidationError
from permitdesk.models import db
from permitdesk.models.workflow import WorkflowTemplate
from permitdesk.services import activity_service

logger = logging.getLogger(__name__)

NAME_MAX = 200
DESCRIPTION_MAX = 2000
PERMIT_TYPE_MAX = 30
ALL_TYPES = ""


# ── Validation ───────────────────────────────────────────────────────────────

def _normalise_permit_type(permit_type) -> str:
    if permit_type is None:
        return ALL_TYPES
    if not isinstance(permit_type, str):
        raise ValidationError("permit_type must be a string", field="permit_type")
    value = permit_type.strip().upper()
    if len(value) > PERMIT_TYPE_MAX:
        raise ValidationError(
            f"permit_type must be ≤ {PERMIT_TYPE_MAX} characters", field="permit_type",
        )
    return value


def _validate_name(name) -> str:
    name = (name or "").strip() if isinstance(name, str) or name is None else None
    if name is None:
        raise ValidationError("name must be a string", field="name")
    if not name:
        raise ValidationError("Template name is required", field="name")
    if len(name) > NAME_MAX:
        raise ValidationError(f"name must be ≤ {NAME_MAX} characters", field="name")
    return name


def _validate_description(description) -> str | None:
    if description is None:
        return None
    if not isinstance(description, str):
        raise ValidationError("description must be a string", field="description")
    if len(description) > DESCRIPTION_MAX:
        raise ValidationError(
            f"description must be ≤ {DESCRIPTION_MAX} characters", field="description",
        )
    return description.strip() or None


def validate_steps(steps) -> list[dict]:
    """Normalise a steps payload, raising on the first invalid entry."""
    if not isinstance(steps, list) or not steps:
        raise ValidationError("steps must be a non-empty list", field="steps")

    normalised = []
    for i, step in enumerate(steps):
        if not isinstance(step, dict):
            raise ValidationError(f"steps[{i}] must be an object", field=f"steps[{i}]")
        title = step.get("title")
        if not isinstance(title, str) or not title.strip():
            raise ValidationError(f"steps[{i}].title is required", field=f"steps[{i}].title")
        description = step.get("description")
        if description is not None and not isinstance(description, str):
            raise ValidationError(
                f"steps[{i}].description must be a string", field=f"steps[{i}].description",
            )
        offset = step.get("due_offset_days")
        if offset is not None and (
            isinstance(offset, bool) or not isinstance(offset, int) or offset < 0
        ):
            raise ValidationError(
                f"steps[{i}].due_offset_days must be a non-negative integer",
                field=f"steps[{i}].due_offset_days",
            )
        normalised.append({
            "title": title.strip(),
            "description": (description or "").strip() or None,
            "due_offset_days": offset,
        })
    return normalised


# ── Queries ──────────────────────────────────────────────────────────────────

def list_templates(permit_type: str | None = None) -> list[WorkflowTemplate]:
    """
    List templates, defaults first, then by name.

    With *permit_type*, returns that type's templates plus the ones that
    apply to all types.
    """
    q = WorkflowTemplate.query
    if permit_type:
        pt = _normalise_permit_type(permit_type)
        q = q.filter(or_(WorkflowTemplate.permit_type == pt,
                         WorkflowTemplate.permit_type == ALL_TYPES))
    return q.order_by(WorkflowTemplate.is_default.desc(), WorkflowTemplate.name.asc()).all()


def get_template(template_id: str) -> WorkflowTemplate:
    template = db.session.get(WorkflowTemplate, template_id)
    if template is None:
        raise NotFoundError(resource="Workflow template", resource_id=template_id)
    return template


# ── Mutations ────────────────────────────────────────────────────────────────

def _template_audit(actor_id: str, action: str, template_id: str, description: str,
                    metadata: dict | None = None) -> dict:
    return {
        "actor_id": actor_id,
        "action": action,
        "entity_type": "WORKFLOW_TEMPLATE",
        "entity_id": template_id,
        "description": description,
        "permit_id": None,
        "metadata": metadata,
    }


def create_template(
    actor_id: str,
    *,
    name: str,
    steps: list,
    description: str | None = None,
    permit_type: str | None = None,
) -> WorkflowTemplate:
    """Create a non-default template and record CREATED. Commits."""
    template = WorkflowTemplate(
        name=_validate_name(name),
        description=_validate_description(description),
        permit_type=_normalise_permit_type(permit_type),
        steps=validate_steps(steps),
        is_default=False,
    )
    db.session.add(template)
    db.session.flush()
    activity_service.commit_with_record(_template_audit(
        actor_id, "CREATED", template.id, f"Created workflow template {template.name}",
        {"permit_type": template.permit_type or None, "step_count": len(template.steps)},
    ))
    logger.info("Workflow template created id=%s name=%r", template.id, template.name)
    return template


def update_template(template_id: str, actor_id: str, data: dict) -> WorkflowTemplate:
    """Partial update of name / description / permit_type / steps. Commits."""
    template = get_template(template_id)

    changes = {}
    if "name" in data:
        changes["name"] = _validate_name(data["name"])
    if "description" in data:
        changes["description"] = _validate_description(data["description"])
    if "permit_type" in data:
        changes["permit_type"] = _normalise_permit_type(data["permit_type"])
    if "steps" in data:
        changes["steps"] = validate_steps(data["steps"])

    if template.is_default and changes.get("permit_type", template.permit_type) != template.permit_type:
        _ensure_no_other_default(changes["permit_type"], exclude_id=template.id)

    for field, value in changes.items():
        setattr(template, field, value)
    _commit_or_conflict(template, _template_audit(
        actor_id, "UPDATED", template.id, f"Updated workflow template {template.name}",
        {"fields": sorted(changes)},
    ))
    return template


def delete_template(template_id: str, actor_id: str) -> None:
    template = get_template(template_id)
    name = template.name
    db.session.delete(template)
    activity_service.commit_with_record(_template_audit(
        actor_id, "DELETED", template_id, f"Deleted workflow template {name}",
    ))
    logger.info("Workflow template deleted id=%s", template_id)


# ── Privileged seeding path ──────────────────────────────────────────────────

def _ensure_no_other_default(permit_type: str, exclude_id: str | None = None) -> None:
    q = WorkflowTemplate.query.filter_by(permit_type=permit_type, is_default=True)
    if exclude_id:
        q = q.filter(WorkflowTemplate.id != exclude_id)
    if q.first() is not None:
        raise ConflictError("Default workflow template", "permit_type", permit_type or "*")


def _commit_or_conflict(template: WorkflowTemplate, audit: dict | None = None) -> None:
    try:
        activity_service.commit_with_record(audit)
    except IntegrityError as exc:
        db.session.rollback()
        raise ConflictError(
            "Default workflow template", "permit_type", template.permit_type or "*",
        ) from exc


def set_default(template_id: str) -> WorkflowTemplate:
    """Mark a template as its permit type's default. Not exposed over HTTP."""
    template = get_template(template_id)
    if template.is_default:
        return template
    _ensure_no_other_default(template.permit_type, exclude_id=template.id)
    template.is_default = True
    _commit_or_conflict(template)
    return template


BUILTIN_TEMPLATES = [
    {
        "id": "seed-workflow-simple-permit",
        "name": "Simple Permit Workflow",
        "description": "Streamlined workflow for straightforward permit applications",
        "permit_type": ALL_TYPES,
        "is_default": True,
        "steps": [
            {"title": "Gather required documents", "description": "Collect plans, licenses and supporting documents", "due_offset_days": 3},
            {"title": "Complete permit application", "description": "Fill out all required subcode application forms", "due_offset_days": 5},
            {"title": "Submit to local authority", "description": "Submit application package to the construction office", "due_offset_days": 6},
            {"title": "Await review", "description": "Plan review by subcode officials", "due_offset_days": 13},
            {"title": "Address corrections if required", "description": "Make requested changes or provide more information", "due_offset_days": 16},
            {"title": "Receive approval", "description": "Obtain approved permit and posted notice", "due_offset_days": 18},
            {"title": "Schedule inspection", "description": "Request the required inspection", "due_offset_days": 20},
            {"title": "Pass inspection", "description": "Complete work and pass the required inspection", "due_offset_days": 21},
            {"title": "Close permit", "description": "Receive final approval and close the permit", "due_offset_days": 22},
        ],
    },
    {
        "id": "seed-workflow-building-permit",
        "name": "Building Permit Workflow",
        "description": "Plans through Certificate of Occupancy for building subcode work",
        "permit_type": "BUILDING",
        "is_default": True,
        "steps": [
            {"title": "Review architectural plans", "description": "Verify all plans and drawings are complete", "due_offset_days": 3},
            {"title": "Submit application to municipality", "description": "Submit the complete application package", "due_offset_days": 6},
            {"title": "Await plan review and approval", "description": "Municipality reviews plans for code compliance", "due_offset_days": 20},
            {"title": "Schedule foundation inspection", "description": "Request inspection before pouring concrete", "due_offset_days": 25},
            {"title": "Schedule framing inspection", "description": "Request inspection after framing is complete", "due_offset_days": 30},
            {"title": "Schedule final inspection", "description": "Request final inspection after all work is complete", "due_offset_days": 45},
            {"title": "Obtain Certificate of Occupancy", "description": "Receive CO or CA from the municipality", "due_offset_days": 48},
        ],
    },
    {
        "id": "seed-workflow-plumbing-permit",
        "name": "Plumbing Permit Workflow",
        "description": "Rough and final plumbing inspections",
        "permit_type": "PLUMBING",
        "is_default": True,
        "steps": [
            {"title": "Submit plumbing application", "description": None, "due_offset_days": 2},
            {"title": "Schedule rough plumbing inspection", "description": "Request inspection before covering plumbing work", "due_offset_days": 10},
            {"title": "Schedule final plumbing inspection", "description": None, "due_offset_days": 20},
        ],
    },
]


def seed_default_templates() -> int:
    """
    Upsert the built-in templates. Does not commit.

    Existing seeded rows get their description and steps refreshed; their
    default flag is left as-is.

    Returns:
        Number of templates inserted (updates are not counted).
    """
    created = 0
    for builtin in BUILTIN_TEMPLATES:
        existing = db.session.get(WorkflowTemplate, builtin["id"])
        if existing is not None:
            existing.description = builtin["description"]
            existing.steps = validate_steps(builtin["steps"])
            continue
        if builtin["is_default"]:
            _ensure_no_other_default(builtin["permit_type"])
        db.session.add(WorkflowTemplate(
            id=builtin["id"],
            name=builtin["name"],
            description=builtin["description"],
            permit_type=builtin["permit_type"],
            is_default=builtin["is_default"],
            steps=validate_steps(builtin["steps"]),
        ))
        db.session.flush()
        created += 1
    return created
