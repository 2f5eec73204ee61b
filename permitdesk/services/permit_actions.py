"""
Permit Actions — the permission-gated mutation façade.

Every mutating operation runs the same pipeline:

    1. take the authenticated principal id
    2. resolve access (``permit_access.resolve``)
    3. check the capability mapped to the operation
    4. apply the state change
    5. append exactly one activity row
    6. queue best-effort side effects on the notification outbox

A denial at 2/3 raises before anything is written, so a denied call leaves
no mutation and no activity row. Validation also runs before any state
change.

Audit transaction mode (``AUDIT_STRICT``):
    False (default) — the mutation and its outbox rows commit first; the
        activity row is then written in its own transaction and a failure
        there is logged at ERROR without failing the call.
    True — the activity row joins the mutation's transaction, so an audit
        failure rolls the whole operation back.

Datastore connectivity failures surface as ``TransientError``. Nothing here
retries.
"""

from __future__ import annotations

import logging
import math
from contextlib import contextmanager

from email_validator import EmailNotValidError, validate_email
from flask import current_app
from sqlalchemy import or_
from sqlalchemy.exc import IntegrityError, OperationalError

from permitdesk.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    TransientError,
    ValidationError,
)
from permitdesk.models import db
from permitdesk.models.auth import User
from permitdesk.models.base import _utcnow
from permitdesk.models.document import Document, Photo, PhotoShare
from permitdesk.models.inspection import INSPECTION_RESULT_STATUSES, INSPECTION_STATUSES, Inspection
from permitdesk.models.message import Message
from permitdesk.models.permit import (
    PARTY_ROLES,
    PERMIT_STATUS_TRANSITIONS,
    PERMIT_STATUSES,
    SUBCODE_TYPES,
    Milestone,
    Permit,
    PermitParty,
)
from permitdesk.services import activity_service, milestone_service, permit_access
from permitdesk.services import notification_dispatcher
from permitdesk.services import workflow_template_service

logger = logging.getLogger(__name__)

TITLE_MAX = 300
SHARE_RECIPIENTS_MAX = 20
MESSAGE_MAX = 5000
MESSAGES_PAGE_SIZE = 50
MESSAGES_PAGE_SIZE_MAX = 200

# Status → lifecycle stamp set when the permit enters it
_STATUS_STAMPS = {
    "SUBMITTED": "submitted_at",
    "RESUBMITTED": "submitted_at",
    "APPROVED": "approved_at",
    "PERMIT_ISSUED": "issued_at",
    "CLOSED": "closed_at",
}


# ═══════════════════════════════════════════════════════════════════════════
#  Unit of work
# ═══════════════════════════════════════════════════════════════════════════

@contextmanager
def _unit_of_work():
    """Roll back on any failure; map connectivity errors to TransientError."""
    try:
        yield
    except OperationalError as exc:
        db.session.rollback()
        logger.error("Datastore unavailable: %s", exc)
        raise TransientError() from exc
    except Exception:
        db.session.rollback()
        raise


def _commit(audit: dict | None) -> None:
    activity_service.commit_with_record(audit)


def _audit(actor_id, action, entity_type, entity_id, description, permit_id, metadata=None) -> dict:
    return {
        "actor_id": actor_id,
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "description": description,
        "permit_id": permit_id,
        "metadata": metadata,
    }


def _actor_name(actor_id: str) -> str:
    user = db.session.get(User, actor_id)
    return user.display_name if user else "Someone"


def _get_permit(permit_id: str) -> Permit:
    permit = db.session.get(Permit, permit_id)
    if permit is None:
        raise NotFoundError(resource="Permit", resource_id=permit_id)
    return permit


def _party_recipients(permit_id: str, exclude_user_id: str | None = None) -> list[dict]:
    parties = PermitParty.query.filter_by(permit_id=permit_id).all()
    return [
        {"user_id": p.user_id, "email": p.user.email if p.user else None,
         "name": p.user.display_name if p.user else None}
        for p in parties if p.user_id != exclude_user_id
    ]


# ═══════════════════════════════════════════════════════════════════════════
#  Validation
# ═══════════════════════════════════════════════════════════════════════════

def _validate_title(value) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("title is required", field="title")
    value = value.strip()
    if len(value) > TITLE_MAX:
        raise ValidationError(f"title must be ≤ {TITLE_MAX} characters", field="title")
    return value


def _validate_subcode(value) -> str:
    if not isinstance(value, str) or value.upper() not in SUBCODE_TYPES:
        raise ValidationError(
            f"subcode_type must be one of {sorted(SUBCODE_TYPES)}", field="subcode_type",
        )
    return value.upper()


def _validate_role(value) -> str:
    if not isinstance(value, str) or value.upper() not in PARTY_ROLES:
        raise ValidationError(f"role must be one of {sorted(PARTY_ROLES)}", field="role")
    return value.upper()


def _optional_str(data: dict, key: str, max_len: int | None = None):
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{key} must be a string", field=key)
    if max_len is not None and len(value) > max_len:
        raise ValidationError(f"{key} must be ≤ {max_len} characters", field=key)
    return value.strip() or None


def _required_str(data: dict, key: str, max_len: int) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{key} is required", field=key)
    if len(value) > max_len:
        raise ValidationError(f"{key} must be ≤ {max_len} characters", field=key)
    return value.strip()


# ═══════════════════════════════════════════════════════════════════════════
#  Permits
# ═══════════════════════════════════════════════════════════════════════════

def create_permit(actor_id: str, data: dict) -> Permit:
    """Create a permit owned by *actor_id*. Needs only an authenticated principal."""
    title = _validate_title(data.get("title"))
    subcode_type = _validate_subcode(data.get("subcode_type"))
    description = _optional_str(data, "description")
    property_id = _optional_str(data, "property_id", 36)

    with _unit_of_work():
        if db.session.get(User, actor_id) is None:
            raise NotFoundError(resource="User", resource_id=actor_id)
        permit = Permit(
            creator_id=actor_id,
            title=title,
            description=description,
            subcode_type=subcode_type,
            property_id=property_id,
            status="DRAFT",
        )
        db.session.add(permit)
        db.session.flush()
        _commit(_audit(
            actor_id, "CREATED", "PERMIT", permit.id,
            f"Created permit '{permit.title}'", permit.id,
        ))
    logger.info("Permit created id=%s by=%s", permit.id, actor_id, extra={"permit_id": permit.id})
    return permit


def list_permits(actor_id: str) -> list[Permit]:
    """Permits the principal created or is a party on, newest first."""
    with _unit_of_work():
        party_permits = db.session.query(PermitParty.permit_id).filter(
            PermitParty.user_id == actor_id,
        )
        return (
            Permit.query.filter(or_(Permit.creator_id == actor_id,
                                    Permit.id.in_(party_permits)))
            .order_by(Permit.created_at.desc())
            .all()
        )


def get_permit(permit_id: str, actor_id: str) -> tuple[Permit, permit_access.AccessDecision]:
    with _unit_of_work():
        decision = permit_access.require_operation(permit_id, actor_id, "get_permit")
        return _get_permit(permit_id), decision


def update_permit(permit_id: str, actor_id: str, data: dict) -> Permit:
    """Partial update of title / description / subcode_type / property_id."""
    changes = {}
    if "title" in data:
        changes["title"] = _validate_title(data["title"])
    if "description" in data:
        changes["description"] = _optional_str(data, "description")
    if "subcode_type" in data:
        changes["subcode_type"] = _validate_subcode(data["subcode_type"])
    if "property_id" in data:
        changes["property_id"] = _optional_str(data, "property_id", 36)
    if "status" in data:
        raise ValidationError("Use the status endpoint to change status", field="status")
    if not changes:
        raise ValidationError("No updatable fields supplied")

    with _unit_of_work():
        permit_access.require_operation(permit_id, actor_id, "update_permit")
        permit = _get_permit(permit_id)
        changes = {f: v for f, v in changes.items() if getattr(permit, f) != v}
        if not changes:
            return permit
        for field, value in changes.items():
            setattr(permit, field, value)
        db.session.flush()
        _commit(_audit(
            actor_id, "UPDATED", "PERMIT", permit.id,
            f"Updated permit '{permit.title}'", permit.id,
            metadata={"fields": sorted(changes)},
        ))
    return permit


def change_status(permit_id: str, actor_id: str, new_status: str) -> Permit:
    """
    Move the permit along its status graph and notify every party.

    Raises:
        ValidationError: unknown status, or not reachable from the current one.
    """
    if not isinstance(new_status, str) or new_status.upper() not in PERMIT_STATUSES:
        raise ValidationError(f"status must be one of {sorted(PERMIT_STATUSES)}", field="status")
    new_status = new_status.upper()

    with _unit_of_work():
        permit_access.require_operation(permit_id, actor_id, "change_status")
        permit = _get_permit(permit_id)
        old_status = permit.status
        if new_status not in PERMIT_STATUS_TRANSITIONS.get(old_status, ()):
            raise ValidationError(
                f"Cannot move permit from {old_status} to {new_status}", field="status",
            )

        permit.status = new_status
        stamp = _STATUS_STAMPS.get(new_status)
        if stamp:
            setattr(permit, stamp, _utcnow())
        db.session.flush()

        notification_dispatcher.dispatch(
            permit.id, _actor_name(actor_id), _party_recipients(permit.id, actor_id),
            kind="STATUS_CHANGED", permit_id=permit.id,
            context={"permit_title": permit.title, "old_status": old_status,
                     "new_status": new_status, "entity_type": "PERMIT"},
        )
        _commit(_audit(
            actor_id, "STATUS_CHANGED", "PERMIT", permit.id,
            f"Status changed from {old_status} to {new_status}", permit.id,
            metadata={"old_status": old_status, "new_status": new_status},
        ))
    logger.info(
        "Permit %s status %s → %s by %s", permit_id, old_status, new_status, actor_id,
        extra={"permit_id": permit_id, "action": "STATUS_CHANGED"},
    )
    return permit


def delete_permit(permit_id: str, actor_id: str) -> None:
    """Delete a permit with its parties, milestones and attachments."""
    with _unit_of_work():
        permit_access.require_operation(permit_id, actor_id, "delete_permit")
        permit = _get_permit(permit_id)
        title = permit.title

        blob_urls = [d.file_url for d in Document.query.filter_by(permit_id=permit_id)]
        photo_ids = [p.id for p in Photo.query.filter_by(permit_id=permit_id)]
        blob_urls += [p.file_url for p in Photo.query.filter_by(permit_id=permit_id)]

        if photo_ids:
            PhotoShare.query.filter(PhotoShare.photo_id.in_(photo_ids)).delete(
                synchronize_session=False)
        Photo.query.filter_by(permit_id=permit_id).delete(synchronize_session=False)
        Document.query.filter_by(permit_id=permit_id).delete(synchronize_session=False)
        Inspection.query.filter_by(permit_id=permit_id).delete(synchronize_session=False)
        Message.query.filter_by(permit_id=permit_id).delete(synchronize_session=False)
        Milestone.query.filter_by(permit_id=permit_id).delete(synchronize_session=False)
        PermitParty.query.filter_by(permit_id=permit_id).delete(synchronize_session=False)
        db.session.delete(permit)
        db.session.flush()
        notification_dispatcher.enqueue_blob_deletes(blob_urls, permit_id=permit_id, entity_id=permit_id)

        _commit(_audit(
            actor_id, "DELETED", "PERMIT", permit_id, f"Deleted permit '{title}'", permit_id,
        ))

    logger.info("Permit deleted id=%s by=%s", permit_id, actor_id, extra={"permit_id": permit_id})


# ═══════════════════════════════════════════════════════════════════════════
#  Parties
# ═══════════════════════════════════════════════════════════════════════════

def list_parties(permit_id: str, actor_id: str) -> list[PermitParty]:
    with _unit_of_work():
        permit_access.require_operation(permit_id, actor_id, "list_parties")
        return (
            PermitParty.query.filter_by(permit_id=permit_id)
            .order_by(PermitParty.added_at.asc(), PermitParty.id.asc())
            .all()
        )


def _get_party(permit_id: str, party_id: str) -> PermitParty:
    party = db.session.get(PermitParty, party_id)
    if party is None or party.permit_id != permit_id:
        raise NotFoundError(resource="Party", resource_id=party_id)
    return party


def _find_user(data: dict) -> User:
    user_id = data.get("user_id")
    email = data.get("email")
    if not user_id and not email:
        raise ValidationError("user_id or email is required", field="user_id")
    if user_id:
        user = db.session.get(User, user_id)
    else:
        user = User.query.filter(User.email == str(email).strip().lower()).first()
    if user is None:
        raise NotFoundError(resource="User", resource_id=user_id or email)
    return user


def _require_role_within_reach(decision, permit_id: str, actor_id: str, role: str) -> None:
    """Actors may only hand out, or take over, roles no stronger than their own."""
    if not permit_access.permissions_for_role(role) <= decision.permissions:
        logger.warning(
            "Role grant refused permit=%s actor=%s role=%s", permit_id, actor_id, role,
        )
        raise ForbiddenError(permit_id=permit_id, user_id=actor_id, permission="manage_parties")


def _validate_is_primary(value) -> bool:
    if value is None:
        return False
    if not isinstance(value, bool):
        raise ValidationError("is_primary must be a boolean", field="is_primary")
    return value


def add_party(permit_id: str, actor_id: str, data: dict) -> PermitParty:
    """Attach a user to the permit with a role and notify them."""
    role = _validate_role(data.get("role"))
    is_primary = _validate_is_primary(data.get("is_primary"))

    with _unit_of_work():
        decision = permit_access.require_operation(permit_id, actor_id, "add_party")
        _require_role_within_reach(decision, permit_id, actor_id, role)
        permit = _get_permit(permit_id)
        user = _find_user(data)

        if PermitParty.query.filter_by(permit_id=permit_id, user_id=user.id).first():
            raise ConflictError("Party", "user_id", user.id)

        party = PermitParty(
            permit_id=permit_id,
            user_id=user.id,
            role=role,
            is_primary=is_primary,
            added_by_id=actor_id,
        )
        db.session.add(party)
        try:
            db.session.flush()
        except IntegrityError as exc:
            raise ConflictError("Party", "user_id", user.id) from exc

        notification_dispatcher.dispatch(
            party.id, _actor_name(actor_id),
            [{"user_id": user.id, "email": user.email, "name": user.display_name}],
            kind="PARTY_ADDED", permit_id=permit_id,
            context={"permit_title": permit.title, "role": role, "entity_type": "PARTY"},
        )
        _commit(_audit(
            actor_id, "PARTY_ADDED", "PARTY", party.id,
            f"Added {user.display_name} as {role}", permit_id,
            metadata={"user_id": user.id, "role": role},
        ))
    return party


def change_party_role(permit_id: str, actor_id: str, party_id: str, role: str) -> PermitParty:
    """
    Give a party a new role.

    The membership row is deleted and re-created rather than updated, so
    the returned party has a new id.
    """
    role = _validate_role(role)

    with _unit_of_work():
        decision = permit_access.require_operation(permit_id, actor_id, "change_party_role")
        old = _get_party(permit_id, party_id)
        if old.user_id == actor_id and not decision.is_creator:
            raise ForbiddenError(permit_id=permit_id, user_id=actor_id, permission="manage_parties")
        _require_role_within_reach(decision, permit_id, actor_id, old.role)
        _require_role_within_reach(decision, permit_id, actor_id, role)
        old_role, user_id, is_primary = old.role, old.user_id, old.is_primary
        name = old.user.display_name if old.user else user_id

        db.session.delete(old)
        db.session.flush()
        party = PermitParty(
            permit_id=permit_id,
            user_id=user_id,
            role=role,
            is_primary=is_primary,
            added_by_id=actor_id,
        )
        db.session.add(party)
        db.session.flush()

        _commit(_audit(
            actor_id, "UPDATED", "PARTY", party.id,
            f"Changed {name}'s role from {old_role} to {role}", permit_id,
            metadata={"user_id": user_id, "old_role": old_role, "new_role": role,
                      "previous_party_id": party_id},
        ))
    return party


def remove_party(permit_id: str, actor_id: str, party_id: str) -> None:
    with _unit_of_work():
        decision = permit_access.require_operation(permit_id, actor_id, "remove_party")
        permit = _get_permit(permit_id)
        party = _get_party(permit_id, party_id)
        _require_role_within_reach(decision, permit_id, actor_id, party.role)
        user = party.user
        role = party.role

        db.session.delete(party)
        db.session.flush()

        if user is not None:
            notification_dispatcher.dispatch(
                party_id, _actor_name(actor_id),
                [{"user_id": user.id, "email": user.email, "name": user.display_name}],
                kind="PARTY_REMOVED", permit_id=permit_id,
                context={"permit_title": permit.title, "role": role, "entity_type": "PARTY"},
            )
        _commit(_audit(
            actor_id, "PARTY_REMOVED", "PARTY", party_id,
            f"Removed {user.display_name if user else party_id} ({role})", permit_id,
            metadata={"user_id": user.id if user else None, "role": role},
        ))


# ═══════════════════════════════════════════════════════════════════════════
#  Milestones
# ═══════════════════════════════════════════════════════════════════════════

def list_milestones(permit_id: str, actor_id: str) -> list[Milestone]:
    with _unit_of_work():
        permit_access.require_operation(permit_id, actor_id, "list_milestones")
        return milestone_service.list_milestones(permit_id)


def add_milestone(permit_id: str, actor_id: str, data: dict) -> Milestone:
    with _unit_of_work():
        permit_access.require_operation(permit_id, actor_id, "add_milestone")
        milestone = milestone_service.create_milestone(
            permit_id,
            data.get("title"),
            description=data.get("description"),
            due_date=data.get("due_date"),
            sort_order=data.get("sort_order"),
        )
        _commit(_audit(
            actor_id, "CREATED", "MILESTONE", milestone.id,
            f"Added milestone '{milestone.title}'", permit_id,
        ))
    return milestone


def update_milestone(permit_id: str, actor_id: str, milestone_id: str, data: dict) -> Milestone:
    with _unit_of_work():
        permit_access.require_operation(permit_id, actor_id, "update_milestone")
        milestone = milestone_service.update_milestone(milestone_id, permit_id, data)
        _commit(_audit(
            actor_id, "UPDATED", "MILESTONE", milestone.id,
            f"Updated milestone '{milestone.title}'", permit_id,
            metadata={"fields": sorted(k for k in data if k in
                                       ("title", "description", "due_date", "sort_order"))},
        ))
    return milestone


def complete_milestone(permit_id: str, actor_id: str, milestone_id: str) -> Milestone:
    """Complete a milestone. Completing it again changes nothing and writes no row."""
    with _unit_of_work():
        permit_access.require_operation(permit_id, actor_id, "complete_milestone")
        milestone, changed = milestone_service.complete_milestone(
            milestone_id, permit_id, actor_id, record_activity=False,
        )
        _commit(_audit(
            actor_id, "MILESTONE_COMPLETED", "MILESTONE", milestone.id,
            f"Completed milestone '{milestone.title}'", permit_id,
        ) if changed else None)
    return milestone


def reopen_milestone(permit_id: str, actor_id: str, milestone_id: str) -> Milestone:
    with _unit_of_work():
        permit_access.require_operation(permit_id, actor_id, "reopen_milestone")
        milestone, changed = milestone_service.reopen_milestone(milestone_id, permit_id)
        _commit(_audit(
            actor_id, "UPDATED", "MILESTONE", milestone.id,
            f"Reopened milestone '{milestone.title}'", permit_id,
        ) if changed else None)
    return milestone


def delete_milestone(permit_id: str, actor_id: str, milestone_id: str) -> None:
    with _unit_of_work():
        permit_access.require_operation(permit_id, actor_id, "delete_milestone")
        milestone = milestone_service.delete_milestone(milestone_id, permit_id)
        _commit(_audit(
            actor_id, "DELETED", "MILESTONE", milestone_id,
            f"Deleted milestone '{milestone.title}'", permit_id,
        ))


def apply_workflow(permit_id: str, actor_id: str, template_id: str, start=None) -> list[Milestone]:
    """Copy a workflow template's steps onto the permit as new milestones."""
    with _unit_of_work():
        permit_access.require_operation(permit_id, actor_id, "apply_workflow")
        template = workflow_template_service.get_template(template_id)
        milestones = milestone_service.instantiate_from_template(permit_id, template, start)
        _commit(_audit(
            actor_id, "WORKFLOW_APPLIED", "WORKFLOW_TEMPLATE", template.id,
            f"Applied workflow '{template.name}' ({len(milestones)} milestones)", permit_id,
            metadata={"milestone_ids": [m.id for m in milestones]},
        ))
    return milestones


# ═══════════════════════════════════════════════════════════════════════════
#  Documents & photos
# ═══════════════════════════════════════════════════════════════════════════

def list_documents(permit_id: str, actor_id: str) -> list[Document]:
    with _unit_of_work():
        permit_access.require_operation(permit_id, actor_id, "list_documents")
        return (
            Document.query.filter_by(permit_id=permit_id)
            .order_by(Document.created_at.desc(), Document.id.desc())
            .all()
        )


def upload_document(permit_id: str, actor_id: str, data: dict) -> Document:
    """Register a blob already uploaded to storage as a permit document."""
    name = _required_str(data, "name", 300)
    file_url = _required_str(data, "file_url", 1000)
    content_type = _optional_str(data, "content_type", 100)
    size_bytes = data.get("size_bytes")
    if size_bytes is not None and (
        isinstance(size_bytes, bool) or not isinstance(size_bytes, int) or size_bytes < 0
    ):
        raise ValidationError("size_bytes must be a non-negative integer", field="size_bytes")

    with _unit_of_work():
        permit_access.require_operation(permit_id, actor_id, "upload_document")
        document = Document(
            permit_id=permit_id,
            name=name,
            file_url=file_url,
            content_type=content_type,
            size_bytes=size_bytes,
            uploaded_by_id=actor_id,
        )
        db.session.add(document)
        db.session.flush()
        _commit(_audit(
            actor_id, "DOCUMENT_UPLOADED", "DOCUMENT", document.id,
            f"Uploaded document '{name}'", permit_id,
        ))
    return document


def delete_document(permit_id: str, actor_id: str, document_id: str) -> None:
    with _unit_of_work():
        permit_access.require_operation(permit_id, actor_id, "delete_document")
        document = db.session.get(Document, document_id)
        if document is None or document.permit_id != permit_id:
            raise NotFoundError(resource="Document", resource_id=document_id)
        name, file_url = document.name, document.file_url
        db.session.delete(document)
        db.session.flush()
        notification_dispatcher.enqueue_blob_deletes([file_url], permit_id=permit_id, entity_id=document_id)
        _commit(_audit(
            actor_id, "DELETED", "DOCUMENT", document_id, f"Deleted document '{name}'", permit_id,
        ))


def list_photos(permit_id: str, actor_id: str) -> list[Photo]:
    with _unit_of_work():
        permit_access.require_operation(permit_id, actor_id, "list_photos")
        return (
            Photo.query.filter_by(permit_id=permit_id)
            .order_by(Photo.created_at.desc(), Photo.id.desc())
            .all()
        )


def _get_photo(permit_id: str, photo_id: str) -> Photo:
    photo = db.session.get(Photo, photo_id)
    if photo is None or photo.permit_id != permit_id:
        raise NotFoundError(resource="Photo", resource_id=photo_id)
    return photo


def upload_photo(permit_id: str, actor_id: str, data: dict) -> Photo:
    file_url = _required_str(data, "file_url", 1000)
    caption = _optional_str(data, "caption", 500)

    with _unit_of_work():
        permit_access.require_operation(permit_id, actor_id, "upload_photo")
        photo = Photo(permit_id=permit_id, file_url=file_url, caption=caption,
                      uploaded_by_id=actor_id)
        db.session.add(photo)
        db.session.flush()
        _commit(_audit(
            actor_id, "PHOTO_UPLOADED", "PHOTO", photo.id,
            f"Uploaded photo{f' {caption!r}' if caption else ''}", permit_id,
        ))
    return photo


def delete_photo(permit_id: str, actor_id: str, photo_id: str) -> None:
    with _unit_of_work():
        permit_access.require_operation(permit_id, actor_id, "delete_photo")
        photo = _get_photo(permit_id, photo_id)
        file_url = photo.file_url
        PhotoShare.query.filter_by(photo_id=photo_id).delete(synchronize_session=False)
        db.session.delete(photo)
        db.session.flush()
        notification_dispatcher.enqueue_blob_deletes([file_url], permit_id=permit_id, entity_id=photo_id)
        _commit(_audit(
            actor_id, "DELETED", "PHOTO", photo_id, "Deleted photo", permit_id,
        ))


def _validate_recipients(recipients) -> list[dict]:
    if not isinstance(recipients, list) or not recipients:
        raise ValidationError("recipients must be a non-empty list", field="recipients")
    if len(recipients) > SHARE_RECIPIENTS_MAX:
        raise ValidationError(
            f"At most {SHARE_RECIPIENTS_MAX} recipients per share", field="recipients",
        )

    cleaned, seen = [], set()
    for i, r in enumerate(recipients):
        if isinstance(r, str):
            r = {"email": r}
        if not isinstance(r, dict):
            raise ValidationError(f"recipients[{i}] must be an object", field=f"recipients[{i}]")
        try:
            email = validate_email(str(r.get("email") or ""), check_deliverability=False).normalized
        except EmailNotValidError as exc:
            raise ValidationError(f"Invalid email: {exc}", field=f"recipients[{i}].email") from exc
        if email.lower() in seen:
            continue
        seen.add(email.lower())
        name = r.get("name")
        cleaned.append({"email": email, "name": name.strip() if isinstance(name, str) else None})
    return cleaned


def share_photo(
    permit_id: str,
    actor_id: str,
    photo_id: str,
    recipients,
    message: str | None = None,
) -> list[PhotoShare]:
    """Share a photo by email with external recipients."""
    cleaned = _validate_recipients(recipients)
    if message is not None and not isinstance(message, str):
        raise ValidationError("message must be a string", field="message")

    with _unit_of_work():
        permit_access.require_operation(permit_id, actor_id, "share_photo")
        permit = _get_permit(permit_id)
        photo = _get_photo(permit_id, photo_id)

        shares = []
        for r in cleaned:
            share = PhotoShare(
                photo_id=photo.id,
                recipient_email=r["email"],
                recipient_name=r["name"],
                message=message,
            )
            db.session.add(share)
            shares.append(share)
        db.session.flush()

        notification_dispatcher.dispatch(
            photo.id, _actor_name(actor_id), cleaned, message,
            kind="PHOTO_SHARED", permit_id=permit_id,
            context={"permit_title": permit.title, "photo_url": photo.file_url,
                     "entity_type": "PHOTO"},
        )
        _commit(_audit(
            actor_id, "PHOTO_SHARED", "PHOTO", photo.id,
            f"Shared photo with {len(cleaned)} recipient(s)", permit_id,
            metadata={"recipients": [r["email"] for r in cleaned]},
        ))
    return shares


# ═══════════════════════════════════════════════════════════════════════════
#  Inspections
# ═══════════════════════════════════════════════════════════════════════════

def list_inspections(permit_id: str, actor_id: str) -> list[Inspection]:
    """Inspections by scheduled date; unscheduled ones last."""
    with _unit_of_work():
        permit_access.require_operation(permit_id, actor_id, "list_inspections")
        return (
            Inspection.query.filter_by(permit_id=permit_id)
            .order_by(
                Inspection.scheduled_date.is_(None),
                Inspection.scheduled_date.asc(),
                Inspection.created_at.asc(),
            )
            .all()
        )


def _get_inspection(permit_id: str, inspection_id: str) -> Inspection:
    inspection = db.session.get(Inspection, inspection_id)
    if inspection is None or inspection.permit_id != permit_id:
        raise NotFoundError(resource="Inspection", resource_id=inspection_id)
    return inspection


def schedule_inspection(permit_id: str, actor_id: str, data: dict) -> Inspection:
    """
    Request an inspection. It is SCHEDULED when a date is given and
    NOT_SCHEDULED otherwise.
    """
    inspection_type = _required_str(data, "type", 100)
    scheduled_date = milestone_service.parse_datetime(
        data.get("scheduled_date"), field="scheduled_date")
    inspector_name = _optional_str(data, "inspector_name", 200)
    inspector_phone = _optional_str(data, "inspector_phone", 50)
    notes = _optional_str(data, "notes")

    with _unit_of_work():
        permit_access.require_operation(permit_id, actor_id, "schedule_inspection")
        _get_permit(permit_id)
        inspection = Inspection(
            permit_id=permit_id,
            type=inspection_type,
            status="SCHEDULED" if scheduled_date else "NOT_SCHEDULED",
            scheduled_date=scheduled_date,
            inspector_name=inspector_name,
            inspector_phone=inspector_phone,
            notes=notes,
            created_by_id=actor_id,
        )
        db.session.add(inspection)
        db.session.flush()
        _commit(_audit(
            actor_id, "INSPECTION_SCHEDULED", "INSPECTION", inspection.id,
            f"Scheduled {inspection_type} inspection", permit_id,
            metadata={"type": inspection_type, "scheduled_date": scheduled_date},
        ))
    return inspection


def update_inspection(permit_id: str, actor_id: str, inspection_id: str, data: dict) -> Inspection:
    """
    Partial update of an inspection.

    Giving a scheduled_date moves the inspection to SCHEDULED unless the
    same call sets a status. PASSED / FAILED stamp ``completed_date`` and
    are recorded as INSPECTION_COMPLETED; any other change is UPDATED.
    """
    changes = {}
    if "type" in data:
        changes["type"] = _required_str(data, "type", 100)
    if "scheduled_date" in data:
        changes["scheduled_date"] = milestone_service.parse_datetime(
            data["scheduled_date"], field="scheduled_date")
        if changes["scheduled_date"] is not None:
            changes["status"] = "SCHEDULED"
    for key, max_len in (("inspector_name", 200), ("inspector_phone", 50),
                         ("notes", None), ("result", None)):
        if key in data:
            changes[key] = _optional_str(data, key, max_len)
    if "status" in data:
        status = data["status"]
        if not isinstance(status, str) or status.upper() not in INSPECTION_STATUSES:
            raise ValidationError(
                f"status must be one of {sorted(INSPECTION_STATUSES)}", field="status",
            )
        changes["status"] = status.upper()
    if not changes:
        raise ValidationError("No updatable fields supplied")

    with _unit_of_work():
        permit_access.require_operation(permit_id, actor_id, "update_inspection")
        inspection = _get_inspection(permit_id, inspection_id)
        changes = {f: v for f, v in changes.items() if getattr(inspection, f) != v}
        if not changes:
            return inspection

        for field, value in changes.items():
            setattr(inspection, field, value)
        completed = changes.get("status") in INSPECTION_RESULT_STATUSES
        if completed:
            inspection.completed_date = _utcnow()
        elif "status" in changes:
            inspection.completed_date = None
        db.session.flush()

        if completed:
            audit = _audit(
                actor_id, "INSPECTION_COMPLETED", "INSPECTION", inspection.id,
                f"{inspection.type} inspection {inspection.status.lower()}", permit_id,
                metadata={"status": inspection.status, "result": inspection.result},
            )
        else:
            audit = _audit(
                actor_id, "UPDATED", "INSPECTION", inspection.id,
                f"Updated {inspection.type} inspection", permit_id,
                metadata={"fields": sorted(changes)},
            )
        _commit(audit)
    return inspection


# ═══════════════════════════════════════════════════════════════════════════
#  Messages
# ═══════════════════════════════════════════════════════════════════════════

def list_messages(permit_id: str, actor_id: str, page: int = 1, page_size: int | None = None) -> dict:
    """One page of the permit's message thread, oldest first."""
    with _unit_of_work():
        permit_access.require_operation(permit_id, actor_id, "list_messages")
        if page_size is None:
            page_size = current_app.config.get("MESSAGES_DEFAULT_PAGE_SIZE", MESSAGES_PAGE_SIZE)
        page = max(1, int(page or 1))
        page_size = min(MESSAGES_PAGE_SIZE_MAX, max(1, int(page_size)))

        q = Message.query.filter_by(permit_id=permit_id)
        total = q.count()
        messages = (
            q.order_by(Message.created_at.asc(), Message.id.asc())
            .offset((page - 1) * page_size)
            .limit(page_size)
            .all()
        )
        return {
            "messages": messages,
            "total": total,
            "page": page,
            "page_size": page_size,
            "pages": math.ceil(total / page_size) if total else 0,
        }


def post_message(permit_id: str, actor_id: str, data: dict) -> Message:
    """Post to the permit thread and notify everyone else on the permit."""
    content = _required_str(data, "content", MESSAGE_MAX)

    with _unit_of_work():
        permit_access.require_operation(permit_id, actor_id, "post_message")
        permit = _get_permit(permit_id)
        sender = db.session.get(User, actor_id)
        message = Message(
            permit_id=permit_id,
            sender_user_id=actor_id,
            sender_name=sender.display_name if sender else None,
            sender_email=sender.email if sender else None,
            content=content,
        )
        db.session.add(message)
        db.session.flush()

        recipients = _party_recipients(permit_id, exclude_user_id=actor_id)
        creator = permit.creator
        if creator is not None and creator.id != actor_id and all(
            r["user_id"] != creator.id for r in recipients
        ):
            recipients.append({"user_id": creator.id, "email": creator.email,
                               "name": creator.display_name})
        preview = content if len(content) <= 100 else content[:100] + "..."
        notification_dispatcher.dispatch(
            message.id, _actor_name(actor_id), recipients, preview,
            kind="NEW_MESSAGE", permit_id=permit_id,
            context={"permit_title": permit.title, "entity_type": "MESSAGE"},
        )
        _commit(_audit(
            actor_id, "CREATED", "MESSAGE", message.id, "Posted a message", permit_id,
            metadata={"length": len(content)},
        ))
    return message


# ═══════════════════════════════════════════════════════════════════════════
#  Activity feed
# ═══════════════════════════════════════════════════════════════════════════

def activity_feed(permit_id: str, actor_id: str, page: int = 1, page_size: int | None = None) -> dict:
    with _unit_of_work():
        permit_access.require_operation(permit_id, actor_id, "activity_feed")
        if page_size is None:
            page_size = current_app.config.get(
                "ACTIVITY_DEFAULT_PAGE_SIZE", activity_service.DEFAULT_PAGE_SIZE)
        return activity_service.list_for_permit(permit_id, page=page, page_size=page_size)
