"""
Permit Access Resolver — role table and per-permit access decisions.

Answers two questions for a (permit, user) pair:
  - may this user act on the permit at all?
  - exactly which capability tokens do they hold?

Evaluation is deterministic and deny-by-default:
  - the permit's creator always resolves to OWNER with the full token set,
    whatever party row may also exist for them
  - any other user needs a PermitParty row; none means no access
  - a stored role string outside the known set degrades to VIEWER

The creator id and the caller's party row are read in a single SELECT so a
concurrent role change can never be observed half-applied. Decisions are
computed per call and never cached.
"""

import logging
from dataclasses import dataclass
from types import MappingProxyType

from sqlalchemy import and_, select

from permitdesk.core.exceptions import ForbiddenError, NotFoundError
from permitdesk.models import db
from permitdesk.models.permit import PartyRole, Permit, PermitParty

logger = logging.getLogger(__name__)


# ── Capability tokens ────────────────────────────────────────────────────────

READ = "read"
EDIT = "edit"
DELETE = "delete"
MANAGE_PARTIES = "manage_parties"
UPLOAD_DOCUMENTS = "upload_documents"
MANAGE_INSPECTIONS = "manage_inspections"
SEND_MESSAGES = "send_messages"

FULL_SET = frozenset({
    READ, EDIT, DELETE, MANAGE_PARTIES, UPLOAD_DOCUMENTS, MANAGE_INSPECTIONS, SEND_MESSAGES,
})

_COLLABORATOR = frozenset({READ, UPLOAD_DOCUMENTS, SEND_MESSAGES})

ROLE_PERMISSIONS = MappingProxyType({
    PartyRole.OWNER: FULL_SET,
    PartyRole.EXPEDITOR: FULL_SET - {DELETE},
    PartyRole.CONTRACTOR: _COLLABORATOR,
    PartyRole.ARCHITECT: _COLLABORATOR,
    PartyRole.ENGINEER: _COLLABORATOR,
    PartyRole.INSPECTOR: frozenset({READ, MANAGE_INSPECTIONS, SEND_MESSAGES}),
    PartyRole.VIEWER: frozenset({READ}),
})

# Façade operation → capability it requires
OPERATION_PERMISSIONS = MappingProxyType({
    "get_permit": READ,
    "update_permit": EDIT,
    "change_status": EDIT,
    "delete_permit": DELETE,
    "list_parties": READ,
    "add_party": MANAGE_PARTIES,
    "change_party_role": MANAGE_PARTIES,
    "remove_party": MANAGE_PARTIES,
    "list_milestones": READ,
    "add_milestone": EDIT,
    "update_milestone": EDIT,
    "complete_milestone": EDIT,
    "reopen_milestone": EDIT,
    "delete_milestone": EDIT,
    "apply_workflow": EDIT,
    "list_documents": READ,
    "upload_document": UPLOAD_DOCUMENTS,
    "delete_document": DELETE,
    "list_photos": READ,
    "upload_photo": UPLOAD_DOCUMENTS,
    "delete_photo": DELETE,
    "share_photo": READ,
    "list_inspections": READ,
    "schedule_inspection": MANAGE_INSPECTIONS,
    "update_inspection": MANAGE_INSPECTIONS,
    "list_messages": READ,
    "post_message": SEND_MESSAGES,
    "activity_feed": READ,
})


# ── Decision ─────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class AccessDecision:
    """Outcome of resolving one user against one permit."""
    has_access: bool
    role: PartyRole | None
    permissions: frozenset
    is_creator: bool

    def allows(self, permission: str) -> bool:
        return self.has_access and permission in self.permissions

    def to_dict(self) -> dict:
        return {
            "has_access": self.has_access,
            "role": self.role.value if self.role else None,
            "permissions": sorted(self.permissions),
            "is_creator": self.is_creator,
        }


NO_ACCESS = AccessDecision(has_access=False, role=None, permissions=frozenset(), is_creator=False)


def parse_role(raw: str | None) -> PartyRole:
    """Map a stored role string to a PartyRole; anything unknown is VIEWER."""
    try:
        return PartyRole(raw)
    except ValueError:
        logger.warning("Unrecognised party role %r, treating as VIEWER", raw)
        return PartyRole.VIEWER


def permissions_for_role(raw: str | None) -> frozenset:
    return ROLE_PERMISSIONS[parse_role(raw)]


# ── Resolution ───────────────────────────────────────────────────────────────

def resolve(permit_id: str, user_id: str) -> AccessDecision:
    """
    Resolve *user_id*'s access to *permit_id*.

    Raises:
        NotFoundError: the permit does not exist.

    Returns:
        AccessDecision; ``has_access`` is False when the user is neither
        the creator nor a party. Callers treat that like a denial.
    """
    row = db.session.execute(
        select(Permit.creator_id, PermitParty.role)
        .outerjoin(
            PermitParty,
            and_(PermitParty.permit_id == Permit.id, PermitParty.user_id == user_id),
        )
        .where(Permit.id == permit_id)
    ).first()

    if row is None:
        raise NotFoundError(resource="Permit", resource_id=permit_id)

    creator_id, stored_role = row
    if user_id is not None and creator_id == user_id:
        return AccessDecision(
            has_access=True,
            role=PartyRole.OWNER,
            permissions=FULL_SET,
            is_creator=True,
        )

    if stored_role is None:
        return NO_ACCESS

    role = parse_role(stored_role)
    return AccessDecision(
        has_access=True,
        role=role,
        permissions=ROLE_PERMISSIONS[role],
        is_creator=False,
    )


def authorize(permit_id: str, user_id: str, permission: str) -> bool:
    """Read-only yes/no: does *user_id* hold *permission* on *permit_id*?"""
    try:
        decision = resolve(permit_id, user_id)
    except NotFoundError:
        return False
    return decision.allows(permission)


def require(permit_id: str, user_id: str, permission: str) -> AccessDecision:
    """
    Resolve and enforce *permission*.

    Raises:
        NotFoundError: the permit does not exist.
        ForbiddenError: no access, or the resolved role lacks *permission*.
    """
    decision = resolve(permit_id, user_id)
    if not decision.allows(permission):
        logger.warning(
            "User %s denied '%s' on permit %s (has_access=%s)",
            user_id, permission, permit_id, decision.has_access,
            extra={"permit_id": permit_id, "permission": permission},
        )
        raise ForbiddenError(permit_id=permit_id, user_id=user_id, permission=permission)
    return decision


def require_operation(permit_id: str, user_id: str, operation: str) -> AccessDecision:
    """Enforce the capability mapped to a named façade operation."""
    return require(permit_id, user_id, OPERATION_PERMISSIONS[operation])
