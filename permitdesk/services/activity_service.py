"""
Activity Service — append-only audit trail and per-permit activity feed.

Writes:
    record(...)              flush-only append; caller owns the transaction
    record_committed(...)    append in its own transaction; a failure is
                             logged at ERROR and swallowed so the already
                             committed mutation still succeeds
    commit_with_record(audit) commit a mutation plus its row, honouring
                             AUDIT_STRICT

Reads:
    list_for_permit(...)     newest first, ties broken by insertion sequence,
                             offset/limit pagination with a hard page cap

Rows are never updated or deleted from here.
"""

from __future__ import annotations

import json
import logging
import math

from flask import current_app, has_app_context
from sqlalchemy.exc import SQLAlchemyError

from permitdesk.models import db
from permitdesk.models.activity import ACTIONS, ActivityLog

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 200


def _max_page_size() -> int:
    if has_app_context():
        return int(current_app.config.get("ACTIVITY_MAX_PAGE_SIZE", MAX_PAGE_SIZE))
    return MAX_PAGE_SIZE


def record(
    *,
    actor_id: str,
    action: str,
    entity_type: str,
    entity_id: str,
    description: str,
    permit_id: str | None = None,
    metadata: dict | None = None,
) -> ActivityLog:
    """
    Append a single activity row.  Uses ``flush`` so callers keep
    transaction control.

    Raises:
        ValueError: *action* is not one of ``ACTIONS``.
    """
    if action not in ACTIONS:
        raise ValueError(f"Unknown activity action {action!r}")

    log = ActivityLog(
        actor_user_id=str(actor_id),
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        description=(description or "")[:1000],
        permit_id=permit_id,
        metadata_json=json.dumps(metadata or {}, default=str),
    )
    db.session.add(log)
    db.session.flush()
    return log


def record_committed(**kwargs) -> ActivityLog | None:
    """
    Append and commit an activity row in its own transaction.

    Used after the triggering mutation has already been committed. A
    datastore failure here is compliance-relevant, so it is logged with the
    full record payload, but it does not undo the mutation.
    """
    try:
        log = record(**kwargs)
        db.session.commit()
        return log
    except SQLAlchemyError:
        db.session.rollback()
        logger.error(
            "Activity record write FAILED, audit gap: %s",
            json.dumps(kwargs, default=str),
            exc_info=True,
            extra={"permit_id": kwargs.get("permit_id"), "action": kwargs.get("action")},
        )
        return None


def commit_with_record(audit: dict | None) -> None:
    """
    Commit the pending mutation together with (or followed by) its audit row.

    With ``AUDIT_STRICT`` the row joins the mutation's transaction; otherwise
    it is written afterwards through ``record_committed``.
    """
    strict = current_app.config.get("AUDIT_STRICT", False)
    if audit is not None and strict:
        record(**audit)
    db.session.commit()
    if audit is not None and not strict:
        record_committed(**audit)


def list_for_permit(permit_id: str, page: int = 1, page_size: int = DEFAULT_PAGE_SIZE) -> dict:
    """
    Return one page of a permit's activity feed, newest first.

    ``page`` and ``page_size`` are clamped to at least 1; ``page_size`` is
    capped at the configured maximum.
    """
    page = max(1, int(page or 1))
    page_size = min(_max_page_size(), max(1, int(page_size or DEFAULT_PAGE_SIZE)))

    q = ActivityLog.query.filter(ActivityLog.permit_id == permit_id)
    total = q.count()
    records = (
        q.order_by(ActivityLog.created_at.desc(), ActivityLog.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
        .all()
    )
    return {
        "records": records,
        "total": total,
        "page": page,
        "page_size": page_size,
        "pages": math.ceil(total / page_size) if total else 0,
    }
