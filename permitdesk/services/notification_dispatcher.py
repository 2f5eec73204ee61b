"""
PermitDesk
Notification Dispatcher — outbox queue and background delivery.

Requests never deliver side effects themselves. ``dispatch`` and
``enqueue_blob_deletes`` insert a NotificationOutbox row inside the caller's
transaction, so a rolled-back mutation never notifies anyone or removes a
blob. ``drain_outbox`` later turns each pending row into in-app
Notification rows, emails or storage deletes, according to its kind.

Rows are claimed (pending → processing) with a conditional UPDATE before
delivery, so concurrent drainers never deliver the same row twice.

Delivery failures are recorded on the outbox row (status="failed",
attempts, last_error) and logged; they never reach the original caller.

Architecture:
    - dispatch(...)               enqueue a notification (flush only)
    - enqueue_blob_deletes(...)   enqueue storage cleanup (flush only)
    - drain_outbox(...)           claim and deliver one batch, commit per row
    - requeue_failed(...)         retry failed rows and reclaim stale ones
    - NotificationWorker          interval loop; `flask notification-worker`
    - flask dispatch-notifications   one-shot drain from the CLI
"""

from __future__ import annotations

import json
import logging
import threading
from datetime import timedelta

from flask import Flask

from permitdesk.integrations.storage import storage_gateway
from permitdesk.models import db
from permitdesk.models.base import _utcnow
from permitdesk.models.notification import Notification, NotificationOutbox
from permitdesk.services.email_service import EmailService

logger = logging.getLogger(__name__)

BLOB_DELETE = "BLOB_DELETE"

# Outbox kind → delivery channels
KIND_CHANNELS = {
    "PARTY_ADDED": ("in_app", "email"),
    "PARTY_REMOVED": ("in_app", "email"),
    "STATUS_CHANGED": ("in_app",),
    "PHOTO_SHARED": ("email",),
    "NEW_MESSAGE": ("in_app",),
    BLOB_DELETE: ("storage",),
}

_EMAIL_TEMPLATES = {
    "PARTY_ADDED": "party_added",
    "PARTY_REMOVED": "party_removed",
    "STATUS_CHANGED": "status_changed",
    "PHOTO_SHARED": "photo_shared",
}

_IN_APP_TEXT = {
    "PARTY_ADDED": ("Added to {permit_title}", "{actor_name} added you as {role}."),
    "PARTY_REMOVED": ("Removed from {permit_title}", "{actor_name} removed you from this permit."),
    "STATUS_CHANGED": (
        "{permit_title}: {new_status}",
        "{actor_name} changed the status from {old_status} to {new_status}.",
    ),
    "PHOTO_SHARED": ("Photo shared", "{actor_name} shared a photo."),
    "NEW_MESSAGE": ("New Message", "{actor_name}: {message}"),
}


class _SafeDict(dict):
    def __missing__(self, key):
        return ""


# ═══════════════════════════════════════════════════════════════════════════
#  Enqueue
# ═══════════════════════════════════════════════════════════════════════════

def dispatch(
    entity_id: str,
    actor_name: str,
    recipients: list[dict],
    message: str | None = None,
    *,
    kind: str,
    permit_id: str | None = None,
    context: dict | None = None,
) -> NotificationOutbox | None:
    """
    Queue a notification for out-of-band delivery.

    Args:
        entity_id: The entity the event is about (party, permit, photo).
        actor_name: Display name of the user who triggered the event.
        recipients: ``[{"user_id": ..., "email": ..., "name": ...}]``;
            any key may be missing.
        message: Optional free text from the actor.
        kind: One of ``KIND_CHANNELS``.
        context: Extra template variables (permit_title, role, ...).

    Returns:
        The outbox row, or None when there is nobody to notify.
    """
    if kind not in KIND_CHANNELS or kind == BLOB_DELETE:
        raise ValueError(f"Unknown notification kind {kind!r}")
    if not recipients:
        return None

    row = NotificationOutbox(
        kind=kind,
        entity_id=entity_id,
        permit_id=permit_id,
        payload_json=json.dumps({
            "actor_name": actor_name,
            "recipients": recipients,
            "message": message,
            "context": context or {},
        }, default=str),
    )
    db.session.add(row)
    db.session.flush()
    return row


def enqueue_blob_deletes(
    file_urls: list[str],
    *,
    permit_id: str | None = None,
    entity_id: str | None = None,
) -> NotificationOutbox | None:
    """
    Queue storage cleanup for blobs whose rows are being deleted.

    Returns:
        The outbox row, or None when there is nothing to delete.
    """
    urls = [u for u in dict.fromkeys(file_urls or []) if u]
    if not urls:
        return None
    row = NotificationOutbox(
        kind=BLOB_DELETE,
        entity_id=entity_id,
        permit_id=permit_id,
        payload_json=json.dumps({"file_urls": urls}),
    )
    db.session.add(row)
    db.session.flush()
    return row


# ═══════════════════════════════════════════════════════════════════════════
#  Delivery
# ═══════════════════════════════════════════════════════════════════════════

def _delete_blobs(row: NotificationOutbox) -> None:
    failed = [
        url for url in row.payload.get("file_urls") or []
        if not storage_gateway.delete(url)
    ]
    if failed:
        raise RuntimeError(f"Storage delete failed for {len(failed)} blob(s): {', '.join(failed)}")


def _deliver(row: NotificationOutbox) -> None:
    channels = KIND_CHANNELS.get(row.kind)
    if channels is None:
        raise ValueError(f"Unknown notification kind {row.kind!r}")
    if row.kind == BLOB_DELETE:
        _delete_blobs(row)
        return

    payload = row.payload
    context = _SafeDict(payload.get("context") or {})
    context["actor_name"] = payload.get("actor_name") or "Someone"
    context["message"] = payload.get("message") or ""

    for recipient in payload.get("recipients") or []:
        if "in_app" in channels and recipient.get("user_id"):
            title, body = _IN_APP_TEXT[row.kind]
            db.session.add(Notification(
                user_id=recipient["user_id"],
                title=title.format_map(context)[:300],
                body=body.format_map(context),
                type=row.kind,
                permit_id=row.permit_id,
                entity_type=context.get("entity_type") or None,
                entity_id=row.entity_id,
            ))
        if "email" in channels and recipient.get("email"):
            EmailService.send_from_template(
                to_email=recipient["email"],
                to_name=recipient.get("name"),
                template_name=_EMAIL_TEMPLATES[row.kind],
                context=context,
            )


def _claim(row_id: int) -> bool:
    """Flip one row from pending to processing; False if another drainer won."""
    claimed = (
        NotificationOutbox.query
        .filter(NotificationOutbox.id == row_id, NotificationOutbox.status == "pending")
        .update({"status": "processing", "claimed_at": _utcnow()}, synchronize_session=False)
    )
    db.session.commit()
    return claimed == 1


def drain_outbox(batch_size: int = 50) -> dict:
    """
    Deliver up to *batch_size* pending outbox rows, oldest first.

    Each row is claimed before delivery, then delivered in a savepoint and
    committed on its own, so one failing row never blocks or undoes the
    others. Rows claimed by a concurrent drainer are skipped.

    Returns:
        ``{"processed": n, "sent": n, "failed": n}``
    """
    candidate_ids = [
        row_id for (row_id,) in
        db.session.query(NotificationOutbox.id)
        .filter(NotificationOutbox.status == "pending")
        .order_by(NotificationOutbox.id.asc())
        .limit(batch_size)
        .all()
    ]

    processed = sent = failed = 0
    for row_id in candidate_ids:
        if not _claim(row_id):
            continue
        row = db.session.get(NotificationOutbox, row_id, populate_existing=True)
        processed += 1
        row.attempts = (row.attempts or 0) + 1
        try:
            with db.session.begin_nested():
                _deliver(row)
            row.status = "sent"
            row.last_error = None
            sent += 1
        except Exception as exc:
            row.status = "failed"
            row.last_error = str(exc)[:1000]
            failed += 1
            logger.exception(
                "Outbox delivery failed outbox_id=%s kind=%s", row.id, row.kind,
                extra={"permit_id": row.permit_id, "event_type": row.kind},
            )
        row.processed_at = _utcnow()
        db.session.commit()

    if processed:
        logger.info("Outbox drained: processed=%d sent=%d failed=%d", processed, sent, failed)
    return {"processed": processed, "sent": sent, "failed": failed}


def requeue_failed(max_attempts: int = 5, stale_after: int = 300) -> int:
    """
    Move failed rows with attempts left back to pending, along with rows
    stuck in processing for more than *stale_after* seconds (a drainer died
    mid-delivery). Commits.
    """
    count = (
        NotificationOutbox.query
        .filter(NotificationOutbox.status == "failed",
                NotificationOutbox.attempts < max_attempts)
        .update({"status": "pending"}, synchronize_session=False)
    )
    cutoff = _utcnow() - timedelta(seconds=stale_after)
    count += (
        NotificationOutbox.query
        .filter(NotificationOutbox.status == "processing",
                NotificationOutbox.claimed_at < cutoff)
        .update({"status": "pending", "claimed_at": None}, synchronize_session=False)
    )
    db.session.commit()
    return count


# ═══════════════════════════════════════════════════════════════════════════
#  Background worker
# ═══════════════════════════════════════════════════════════════════════════

class NotificationWorker:
    """
    Drains the outbox every ``NOTIFICATION_WORKER_INTERVAL`` seconds inside
    an app context.

    ``create_app`` only registers an instance; it is run by the
    ``flask notification-worker`` command (``run_forever``) or started as a
    daemon thread by an embedding process (``start``).
    """

    def __init__(self, app: Flask):
        self.app = app
        self.interval = app.config.get("NOTIFICATION_WORKER_INTERVAL", 5)
        self.batch_size = app.config.get("NOTIFICATION_BATCH_SIZE", 50)
        self.max_attempts = app.config.get("NOTIFICATION_MAX_ATTEMPTS", 5)
        self.stale_after = app.config.get("NOTIFICATION_STALE_CLAIM_SECONDS", 300)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        self._stop.clear()
        self._thread = threading.Thread(
            target=self._run, name="notification-worker", daemon=True,
        )
        self._thread.start()
        logger.info("Notification worker started (interval=%ss)", self.interval)

    def stop(self, timeout: float | None = None) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
        self._thread = None

    def run_once(self) -> dict:
        with self.app.app_context():
            try:
                requeue_failed(self.max_attempts, self.stale_after)
                return drain_outbox(self.batch_size)
            finally:
                db.session.remove()

    def run_forever(self) -> None:
        """Blocking loop for a dedicated worker process."""
        self._stop.clear()
        logger.info("Notification worker running (interval=%ss)", self.interval)
        self._run()

    def _run(self) -> None:
        while not self._stop.is_set():
            try:
                self.run_once()
            except Exception:
                logger.exception("Notification worker iteration failed")
            self._stop.wait(self.interval)
