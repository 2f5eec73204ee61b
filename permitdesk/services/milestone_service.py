"""
Milestone Sequencer — ordered, completable milestones on a permit.

Functions here are permission-agnostic and flush-only; the mutation façade
(``permit_actions``) checks access and owns the transaction.

Ordering:
    sort_order ascending, ties by created_at then id. A new milestone
    without an explicit sort_order lands after the current maximum.
    Nothing here ever renumbers existing rows.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import func

from permitdesk.core.exceptions import NotFoundError, ValidationError
from permitdesk.models import db
from permitdesk.models.base import _utcnow
from permitdesk.models.permit import Milestone
from permitdesk.models.workflow import WorkflowTemplate
from permitdesk.services import activity_service

logger = logging.getLogger(__name__)

TITLE_MAX = 300


def parse_datetime(value, field="due_date"):
    """ISO-8601 string (or datetime) to an aware datetime; naive input is UTC."""
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            raise ValidationError(f"{field} must be an ISO-8601 datetime", field=field)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    raise ValidationError(f"{field} must be an ISO-8601 datetime", field=field)


def _validate_title(title) -> str:
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("Milestone title is required", field="title")
    title = title.strip()
    if len(title) > TITLE_MAX:
        raise ValidationError(f"title must be ≤ {TITLE_MAX} characters", field="title")
    return title


def _validate_sort_order(sort_order):
    if sort_order is None:
        return None
    if isinstance(sort_order, bool) or not isinstance(sort_order, int):
        raise ValidationError("sort_order must be an integer", field="sort_order")
    return sort_order


def _max_sort_order(permit_id: str) -> int:
    current = db.session.query(func.max(Milestone.sort_order)).filter(
        Milestone.permit_id == permit_id,
    ).scalar()
    return current or 0


# ── Queries ──────────────────────────────────────────────────────────────────

def list_milestones(permit_id: str) -> list[Milestone]:
    return (
        Milestone.query.filter_by(permit_id=permit_id)
        .order_by(Milestone.sort_order.asc(), Milestone.created_at.asc(), Milestone.id.asc())
        .all()
    )


def get_milestone(milestone_id: str, permit_id: str) -> Milestone:
    """Fetch a milestone, scoped to its permit."""
    milestone = db.session.get(Milestone, milestone_id)
    if milestone is None or milestone.permit_id != permit_id:
        raise NotFoundError(resource="Milestone", resource_id=milestone_id)
    return milestone


# ── Mutations ────────────────────────────────────────────────────────────────

def create_milestone(
    permit_id: str,
    title: str,
    description: str | None = None,
    due_date=None,
    sort_order: int | None = None,
) -> Milestone:
    """Append a milestone. Omitted *sort_order* becomes max + 1."""
    title = _validate_title(title)
    due_date = parse_datetime(due_date)
    sort_order = _validate_sort_order(sort_order)
    if sort_order is None:
        sort_order = _max_sort_order(permit_id) + 1

    milestone = Milestone(
        permit_id=permit_id,
        title=title,
        description=description,
        due_date=due_date,
        sort_order=sort_order,
    )
    db.session.add(milestone)
    db.session.flush()
    return milestone


def instantiate_from_template(
    permit_id: str,
    template: WorkflowTemplate,
    start: datetime | None = None,
) -> list[Milestone]:
    """
    Copy every step of *template* onto the permit as a new milestone.

    The copies keep no link to the template. Steps with a
    ``due_offset_days`` get ``start + offset`` as their due date when
    *start* is given.
    """
    start = parse_datetime(start, field="start_date")
    next_order = _max_sort_order(permit_id) + 1

    created = []
    for offset, step in enumerate(template.steps or []):
        due = None
        if start is not None and step.get("due_offset_days") is not None:
            due = start + timedelta(days=int(step["due_offset_days"]))
        milestone = Milestone(
            permit_id=permit_id,
            title=step["title"],
            description=step.get("description"),
            due_date=due,
            sort_order=next_order + offset,
        )
        db.session.add(milestone)
        created.append(milestone)

    db.session.flush()
    logger.info(
        "Instantiated %d milestones on permit %s from template %s",
        len(created), permit_id, template.id,
        extra={"permit_id": permit_id},
    )
    return created


def complete_milestone(
    milestone_id: str,
    permit_id: str,
    actor_id: str,
    *,
    record_activity: bool = True,
) -> tuple[Milestone, bool]:
    """
    Mark a milestone complete.

    Idempotent: an already completed milestone keeps its original
    ``completed_at`` and no second activity row is written.

    Returns:
        (milestone, changed) where *changed* is False on re-completion.
    """
    milestone = get_milestone(milestone_id, permit_id)
    if milestone.completed_at is not None:
        return milestone, False

    milestone.completed_at = _utcnow()
    db.session.flush()

    if record_activity:
        activity_service.record(
            actor_id=actor_id,
            action="MILESTONE_COMPLETED",
            entity_type="MILESTONE",
            entity_id=milestone.id,
            description=f"Completed milestone '{milestone.title}'",
            permit_id=permit_id,
        )
    return milestone, True


def update_milestone(milestone_id: str, permit_id: str, data: dict) -> Milestone:
    """Partial update of title / description / due_date / sort_order."""
    milestone = get_milestone(milestone_id, permit_id)

    changes = {}
    if "title" in data:
        changes["title"] = _validate_title(data["title"])
    if "description" in data:
        changes["description"] = data["description"]
    if "due_date" in data:
        changes["due_date"] = parse_datetime(data["due_date"])
    if "sort_order" in data:
        if data["sort_order"] is None:
            raise ValidationError("sort_order must be an integer", field="sort_order")
        changes["sort_order"] = _validate_sort_order(data["sort_order"])

    for field, value in changes.items():
        setattr(milestone, field, value)
    db.session.flush()
    return milestone


def reopen_milestone(milestone_id: str, permit_id: str) -> tuple[Milestone, bool]:
    milestone = get_milestone(milestone_id, permit_id)
    if milestone.completed_at is None:
        return milestone, False
    milestone.completed_at = None
    db.session.flush()
    return milestone, True


def delete_milestone(milestone_id: str, permit_id: str) -> Milestone:
    milestone = get_milestone(milestone_id, permit_id)
    db.session.delete(milestone)
    db.session.flush()
    return milestone
