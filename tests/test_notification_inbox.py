"""
Notification inbox tests.

Tests cover:
  - Listing is scoped to the principal, newest first, unread filter
  - mark_read / mark_all_read / delete only touch the principal's rows
  - HTTP surface
"""
import pytest

from permitdesk.core.exceptions import NotFoundError
from permitdesk.models import db
from permitdesk.models.notification import Notification
from permitdesk.services.notification_service import NotificationService


@pytest.fixture()
def inbox(make_user):
    """Two users, three notifications for the first and one for the second."""
    alice, bob = make_user("Alice"), make_user("Bob")
    for title in ("first", "second", "third"):
        db.session.add(Notification(user_id=alice.id, title=title, type="STATUS_CHANGED"))
        db.session.flush()
    db.session.add(Notification(user_id=bob.id, title="bob's", type="PARTY_ADDED"))
    db.session.commit()
    return alice, bob


class TestNotificationService:
    def test_list_is_scoped_to_user(self, inbox):
        alice, bob = inbox
        items, total = NotificationService.list_for_user(alice.id)
        assert total == 3
        assert {n.user_id for n in items} == {alice.id}
        assert NotificationService.list_for_user(bob.id)[1] == 1

    def test_unread_filter_and_count(self, inbox):
        alice, _ = inbox
        first = Notification.query.filter_by(user_id=alice.id, title="first").one()
        NotificationService.mark_read(alice.id, first.id)

        items, total = NotificationService.list_for_user(alice.id, unread_only=True)
        assert total == 2
        assert first.id not in {n.id for n in items}
        assert NotificationService.unread_count(alice.id) == 2

    def test_mark_read_is_idempotent(self, inbox):
        alice, _ = inbox
        note = Notification.query.filter_by(user_id=alice.id).first()
        NotificationService.mark_read(alice.id, note.id)
        read_at = db.session.get(Notification, note.id).read_at
        NotificationService.mark_read(alice.id, note.id)
        assert db.session.get(Notification, note.id).read_at == read_at

    def test_cannot_touch_someone_elses(self, inbox):
        alice, bob = inbox
        bobs = Notification.query.filter_by(user_id=bob.id).one()
        with pytest.raises(NotFoundError):
            NotificationService.mark_read(alice.id, bobs.id)
        with pytest.raises(NotFoundError):
            NotificationService.delete(alice.id, bobs.id)
        assert db.session.get(Notification, bobs.id).is_read is False

    def test_mark_all_read_only_for_user(self, inbox):
        alice, bob = inbox
        assert NotificationService.mark_all_read(alice.id) == 3
        assert NotificationService.unread_count(alice.id) == 0
        assert NotificationService.unread_count(bob.id) == 1
        assert NotificationService.mark_all_read(alice.id) == 0

    def test_delete(self, inbox):
        alice, _ = inbox
        note = Notification.query.filter_by(user_id=alice.id).first()
        NotificationService.delete(alice.id, note.id)
        assert db.session.get(Notification, note.id) is None


class TestNotificationAPI:
    def test_requires_principal(self, client):
        assert client.get("/api/v1/notifications").status_code == 401

    def test_list_and_unread_count(self, client, inbox, auth_headers):
        alice, _ = inbox
        h = auth_headers(alice.id)
        res = client.get("/api/v1/notifications?page_size=2", headers=h)
        assert res.status_code == 200
        body = res.get_json()
        assert body["total"] == 3
        assert body["unread_count"] == 3
        assert len(body["items"]) == 2

        res = client.get("/api/v1/notifications/unread-count", headers=h)
        assert res.get_json() == {"unread_count": 3}

    def test_mark_read_routes(self, client, inbox, auth_headers):
        alice, bob = inbox
        h = auth_headers(alice.id)
        note = Notification.query.filter_by(user_id=alice.id).first()

        res = client.patch(f"/api/v1/notifications/{note.id}/read", headers=h)
        assert res.status_code == 200
        assert res.get_json()["is_read"] is True

        bobs = Notification.query.filter_by(user_id=bob.id).one()
        assert client.patch(f"/api/v1/notifications/{bobs.id}/read", headers=h).status_code == 404

        res = client.post("/api/v1/notifications/mark-all-read", headers=h)
        assert res.get_json() == {"marked_read": 2}

        res = client.get("/api/v1/notifications?unread_only=true", headers=h)
        assert res.get_json()["items"] == []

    def test_delete_route(self, client, inbox, auth_headers):
        alice, _ = inbox
        note = Notification.query.filter_by(user_id=alice.id).first()
        res = client.delete(f"/api/v1/notifications/{note.id}", headers=auth_headers(alice.id))
        assert res.status_code == 200
        assert Notification.query.filter_by(id=note.id).count() == 0
