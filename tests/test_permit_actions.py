"""
Permission-gated mutation façade tests.

Tests cover:
  - Denials short-circuit (no mutation, no activity row)
  - Exactly one activity row per successful mutation
  - Party lifecycle, status transitions, milestones, workflows
  - Documents / photos / sharing, storage cleanup
  - Audit transaction modes and datastore outages
"""
import pytest
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from permitdesk.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    TransientError,
    ValidationError,
)
from permitdesk.models import db
from permitdesk.models.activity import ActivityLog
from permitdesk.models.document import Document, PhotoShare
from permitdesk.models.notification import NotificationOutbox
from permitdesk.models.permit import Milestone, Permit, PermitParty
from permitdesk.services import activity_service, permit_access, permit_actions
from permitdesk.services import notification_dispatcher, workflow_template_service
from permitdesk.integrations import storage


def _activity(permit_id, action=None):
    q = ActivityLog.query.filter_by(permit_id=permit_id)
    if action:
        q = q.filter_by(action=action)
    return q.order_by(ActivityLog.id).all()


@pytest.fixture()
def deleted_blobs(monkeypatch):
    calls = []
    monkeypatch.setattr(storage.storage_gateway, "delete", lambda url: calls.append(url) or True)
    return calls


# ═════════════════════════════════════════════════════════════════════════
# SCENARIOS
# ═════════════════════════════════════════════════════════════════════════

class TestContractorScenario:
    def test_contractor_cannot_delete_but_can_upload(self, permit, owner, make_user, add_member):
        contractor = make_user("Casey Contractor")
        add_member(contractor, "CONTRACTOR")
        before = len(_activity(permit.id))

        with pytest.raises(ForbiddenError):
            permit_actions.delete_permit(permit.id, contractor.id)
        assert db.session.get(Permit, permit.id) is not None
        assert len(_activity(permit.id)) == before

        doc = permit_actions.upload_document(
            permit.id, contractor.id,
            {"name": "Site plan.pdf", "file_url": "https://blobs.example.com/site-plan.pdf"},
        )
        rows = _activity(permit.id)
        assert len(rows) == before + 1
        assert rows[-1].action == "DOCUMENT_UPLOADED"
        assert rows[-1].actor_user_id == contractor.id
        assert rows[-1].entity_id == doc.id

    def test_workflow_applied_then_template_edited(self, permit, owner):
        template = workflow_template_service.create_template(
            owner.id, name="Three step", permit_type="BUILDING",
            steps=[{"title": "A"}, {"title": "B"}, {"title": "C"}],
        )
        milestones = permit_actions.apply_workflow(permit.id, owner.id, template.id)
        assert [m.sort_order for m in milestones] == [1, 2, 3]
        assert all(m.completed_at is None for m in milestones)
        assert len(_activity(permit.id, "WORKFLOW_APPLIED")) == 1

        workflow_template_service.update_template(template.id, owner.id, {"steps": [{"title": "Z"}]})
        titles = [m.title for m in permit_actions.list_milestones(permit.id, owner.id)]
        assert titles == ["A", "B", "C"]


# ═════════════════════════════════════════════════════════════════════════
# PERMITS
# ═════════════════════════════════════════════════════════════════════════

class TestPermits:
    def test_create_records_created(self, permit, owner):
        rows = _activity(permit.id)
        assert [r.action for r in rows] == ["CREATED"]
        assert rows[0].actor_user_id == owner.id
        assert permit.status == "DRAFT"

    def test_create_validation(self, owner):
        with pytest.raises(ValidationError) as exc_info:
            permit_actions.create_permit(owner.id, {"title": "x", "subcode_type": "SPACE"})
        assert exc_info.value.field == "subcode_type"
        assert Permit.query.count() == 0

    def test_create_requires_known_user(self):
        with pytest.raises(NotFoundError):
            permit_actions.create_permit("ghost", {"title": "x", "subcode_type": "FIRE"})

    def test_update(self, permit, owner):
        permit_actions.update_permit(permit.id, owner.id, {"title": "Bathroom"})
        assert db.session.get(Permit, permit.id).title == "Bathroom"
        assert _activity(permit.id)[-1].action == "UPDATED"

    def test_update_with_no_known_fields_rejected(self, permit, owner):
        count = len(_activity(permit.id))
        with pytest.raises(ValidationError):
            permit_actions.update_permit(permit.id, owner.id, {})
        with pytest.raises(ValidationError):
            permit_actions.update_permit(permit.id, owner.id, {"colour": "blue"})
        assert len(_activity(permit.id)) == count

    def test_update_with_unchanged_values_not_recorded(self, permit, owner):
        count = len(_activity(permit.id))
        result = permit_actions.update_permit(
            permit.id, owner.id, {"title": "Kitchen renovation", "subcode_type": "building"})
        assert result.title == "Kitchen renovation"
        assert len(_activity(permit.id)) == count

    def test_update_records_only_changed_fields(self, permit, owner):
        permit_actions.update_permit(
            permit.id, owner.id, {"title": "Kitchen renovation", "description": "New cabinets"})
        assert _activity(permit.id)[-1].metadata_dict == {"fields": ["description"]}

    def test_viewer_cannot_update(self, permit, make_user, add_member):
        viewer = make_user()
        add_member(viewer, "VIEWER")
        count = len(_activity(permit.id))
        with pytest.raises(ForbiddenError):
            permit_actions.update_permit(permit.id, viewer.id, {"title": "Hacked"})
        assert db.session.get(Permit, permit.id).title == "Kitchen renovation"
        assert len(_activity(permit.id)) == count

    def test_stranger_cannot_read(self, permit, make_user):
        with pytest.raises(ForbiddenError):
            permit_actions.get_permit(permit.id, make_user().id)

    def test_list_permits_includes_party_permits(self, permit, owner, make_user, add_member):
        member = make_user()
        add_member(member, "VIEWER")
        permit_actions.create_permit(owner.id, {"title": "Other", "subcode_type": "FIRE"})
        assert [p.id for p in permit_actions.list_permits(member.id)] == [permit.id]
        assert len(permit_actions.list_permits(owner.id)) == 2

    def test_status_change_stamps_and_notifies(self, permit, owner, make_user, add_member):
        expeditor = make_user()
        viewer = make_user()
        add_member(expeditor, "EXPEDITOR")
        add_member(viewer, "VIEWER")
        permit_actions.change_status(permit.id, expeditor.id, "SUBMITTED")

        refreshed = db.session.get(Permit, permit.id)
        assert refreshed.status == "SUBMITTED"
        assert refreshed.submitted_at is not None

        row = _activity(permit.id, "STATUS_CHANGED")[0]
        assert row.actor_user_id == expeditor.id
        assert row.metadata_dict == {"old_status": "DRAFT", "new_status": "SUBMITTED"}

        # the actor is not notified about their own change
        outbox = NotificationOutbox.query.filter_by(kind="STATUS_CHANGED").one()
        assert [r["user_id"] for r in outbox.payload["recipients"]] == [viewer.id]

    def test_illegal_transition_rejected(self, permit, owner):
        count = len(_activity(permit.id))
        with pytest.raises(ValidationError) as exc_info:
            permit_actions.change_status(permit.id, owner.id, "PERMIT_ISSUED")
        assert exc_info.value.field == "status"
        assert db.session.get(Permit, permit.id).status == "DRAFT"
        assert len(_activity(permit.id)) == count

    def test_delete_keeps_trail_and_cleans_blobs(self, permit, owner, deleted_blobs):
        permit_actions.upload_document(
            permit.id, owner.id, {"name": "a.pdf", "file_url": "https://blobs.example.com/a.pdf"})
        permit_actions.upload_photo(
            permit.id, owner.id, {"file_url": "https://blobs.example.com/p.jpg"})
        permit_actions.add_milestone(permit.id, owner.id, {"title": "M"})
        permit_id = permit.id

        permit_actions.delete_permit(permit_id, owner.id)

        # storage cleanup waits for the outbox
        assert deleted_blobs == []
        assert NotificationOutbox.query.filter_by(kind="BLOB_DELETE").count() == 1
        notification_dispatcher.drain_outbox()

        assert db.session.get(Permit, permit_id) is None
        assert Milestone.query.filter_by(permit_id=permit_id).count() == 0
        assert Document.query.filter_by(permit_id=permit_id).count() == 0
        assert _activity(permit_id)[-1].action == "DELETED"
        assert sorted(deleted_blobs) == [
            "https://blobs.example.com/a.pdf", "https://blobs.example.com/p.jpg"]


# ═════════════════════════════════════════════════════════════════════════
# PARTIES
# ═════════════════════════════════════════════════════════════════════════

class TestParties:
    def test_add_party_notifies(self, permit, owner, make_user):
        user = make_user("Ari Architect")
        party = permit_actions.add_party(permit.id, owner.id, {"email": user.email, "role": "architect"})
        assert party.role == "ARCHITECT"
        assert party.added_by_id == owner.id

        outbox = NotificationOutbox.query.filter_by(kind="PARTY_ADDED").one()
        assert outbox.payload["recipients"][0]["user_id"] == user.id
        assert outbox.payload["context"]["role"] == "ARCHITECT"
        assert len(_activity(permit.id, "PARTY_ADDED")) == 1

    def test_duplicate_party_conflicts(self, permit, owner, make_user, add_member):
        user = make_user()
        add_member(user, "VIEWER")
        with pytest.raises(ConflictError):
            add_member(user, "CONTRACTOR")
        assert PermitParty.query.filter_by(permit_id=permit.id).count() == 1

    def test_unknown_user(self, permit, owner):
        with pytest.raises(NotFoundError):
            permit_actions.add_party(permit.id, owner.id, {"user_id": "nobody", "role": "VIEWER"})

    def test_invalid_role(self, permit, owner, make_user):
        with pytest.raises(ValidationError) as exc_info:
            permit_actions.add_party(permit.id, owner.id, {"user_id": make_user().id, "role": "KING"})
        assert exc_info.value.field == "role"

    def test_contractor_cannot_manage_parties(self, permit, make_user, add_member):
        contractor = make_user()
        add_member(contractor, "CONTRACTOR")
        with pytest.raises(ForbiddenError):
            permit_actions.add_party(permit.id, contractor.id,
                                     {"user_id": make_user().id, "role": "VIEWER"})

    def test_change_role_recreates_row(self, permit, owner, make_user, add_member):
        user = make_user()
        old = add_member(user, "VIEWER")
        old_id = old.id

        new = permit_actions.change_party_role(permit.id, owner.id, old_id, "ENGINEER")
        assert new.id != old_id
        assert new.role == "ENGINEER"
        assert db.session.get(PermitParty, old_id) is None
        assert permit_access.resolve(permit.id, user.id).role.value == "ENGINEER"

        row = _activity(permit.id)[-1]
        assert row.action == "UPDATED"
        assert row.metadata_dict["old_role"] == "VIEWER"

    def test_remove_party(self, permit, owner, make_user, add_member):
        user = make_user()
        party = add_member(user, "INSPECTOR")
        permit_actions.remove_party(permit.id, owner.id, party.id)

        assert permit_access.resolve(permit.id, user.id).has_access is False
        assert NotificationOutbox.query.filter_by(kind="PARTY_REMOVED").count() == 1
        assert len(_activity(permit.id, "PARTY_REMOVED")) == 1

    def test_expeditor_cannot_promote_self_to_owner(self, permit, make_user, add_member):
        expeditor = make_user()
        party = add_member(expeditor, "EXPEDITOR")
        before = len(_activity(permit.id))

        with pytest.raises(ForbiddenError):
            permit_actions.change_party_role(permit.id, expeditor.id, party.id, "OWNER")

        assert db.session.get(PermitParty, party.id).role == "EXPEDITOR"
        assert len(_activity(permit.id)) == before
        assert permit_access.resolve(permit.id, expeditor.id).role.value == "EXPEDITOR"

    def test_expeditor_cannot_grant_owner(self, permit, make_user, add_member):
        expeditor = make_user()
        add_member(expeditor, "EXPEDITOR")
        viewer = make_user()
        party = add_member(viewer, "VIEWER")

        with pytest.raises(ForbiddenError):
            permit_actions.change_party_role(permit.id, expeditor.id, party.id, "OWNER")
        with pytest.raises(ForbiddenError):
            permit_actions.add_party(permit.id, expeditor.id,
                                     {"user_id": make_user().id, "role": "OWNER"})
        assert PermitParty.query.filter_by(permit_id=permit.id, role="OWNER").count() == 0

    def test_expeditor_can_grant_weaker_roles(self, permit, make_user, add_member):
        expeditor = make_user()
        add_member(expeditor, "EXPEDITOR")
        party = add_member(make_user(), "CONTRACTOR")

        changed = permit_actions.change_party_role(permit.id, expeditor.id, party.id, "VIEWER")
        assert changed.role == "VIEWER"
        added = permit_actions.add_party(permit.id, expeditor.id,
                                         {"user_id": make_user().id, "role": "INSPECTOR"})
        assert added.role == "INSPECTOR"

    def test_expeditor_cannot_remove_owner_party(self, permit, make_user, add_member):
        expeditor = make_user()
        add_member(expeditor, "EXPEDITOR")
        co_owner = add_member(make_user(), "OWNER")
        with pytest.raises(ForbiddenError):
            permit_actions.remove_party(permit.id, expeditor.id, co_owner.id)
        assert db.session.get(PermitParty, co_owner.id) is not None

    @pytest.mark.parametrize("flag", ["false", "true", 1, 0])
    def test_is_primary_must_be_boolean(self, permit, owner, make_user, flag):
        with pytest.raises(ValidationError) as exc_info:
            permit_actions.add_party(permit.id, owner.id,
                                     {"user_id": make_user().id, "role": "VIEWER", "is_primary": flag})
        assert exc_info.value.field == "is_primary"
        assert PermitParty.query.filter_by(permit_id=permit.id).count() == 0

    def test_is_primary_boolean_kept(self, permit, owner, make_user):
        party = permit_actions.add_party(permit.id, owner.id,
                                         {"user_id": make_user().id, "role": "VIEWER", "is_primary": False})
        assert party.is_primary is False
        party = permit_actions.add_party(permit.id, owner.id,
                                         {"user_id": make_user().id, "role": "ENGINEER", "is_primary": True})
        assert party.is_primary is True


# ═════════════════════════════════════════════════════════════════════════
# MILESTONES
# ═════════════════════════════════════════════════════════════════════════

class TestMilestones:
    def test_complete_twice_records_once(self, permit, owner):
        m = permit_actions.add_milestone(permit.id, owner.id, {"title": "Rough framing"})
        first = permit_actions.complete_milestone(permit.id, owner.id, m.id).completed_at
        second = permit_actions.complete_milestone(permit.id, owner.id, m.id).completed_at
        assert first is not None
        assert second == first
        assert len(_activity(permit.id, "MILESTONE_COMPLETED")) == 1

    def test_every_mutation_one_record(self, permit, owner):
        base = len(_activity(permit.id))
        m = permit_actions.add_milestone(permit.id, owner.id, {"title": "One"})
        permit_actions.update_milestone(permit.id, owner.id, m.id, {"title": "Uno"})
        permit_actions.complete_milestone(permit.id, owner.id, m.id)
        permit_actions.reopen_milestone(permit.id, owner.id, m.id)
        permit_actions.delete_milestone(permit.id, owner.id, m.id)
        actions = [r.action for r in _activity(permit.id)[base:]]
        assert actions == ["CREATED", "UPDATED", "MILESTONE_COMPLETED", "UPDATED", "DELETED"]

    def test_inspector_cannot_edit_milestones(self, permit, make_user, add_member):
        inspector = make_user()
        add_member(inspector, "INSPECTOR")
        with pytest.raises(ForbiddenError):
            permit_actions.add_milestone(permit.id, inspector.id, {"title": "Nope"})
        assert Milestone.query.count() == 0


# ═════════════════════════════════════════════════════════════════════════
# DOCUMENTS & PHOTOS
# ═════════════════════════════════════════════════════════════════════════

class TestAttachments:
    def test_document_requires_file_url(self, permit, owner):
        with pytest.raises(ValidationError) as exc_info:
            permit_actions.upload_document(permit.id, owner.id, {"name": "x.pdf"})
        assert exc_info.value.field == "file_url"

    def test_delete_document_cleans_blob(self, permit, owner, deleted_blobs):
        doc = permit_actions.upload_document(
            permit.id, owner.id, {"name": "b.pdf", "file_url": "https://blobs.example.com/b.pdf"})
        permit_actions.delete_document(permit.id, owner.id, doc.id)
        assert deleted_blobs == []
        notification_dispatcher.drain_outbox()
        assert deleted_blobs == ["https://blobs.example.com/b.pdf"]
        assert _activity(permit.id)[-1].action == "DELETED"

    def test_failed_blob_delete_kept_for_retry(self, permit, owner, monkeypatch):
        monkeypatch.setattr(storage.storage_gateway, "delete", lambda url: False)
        photo = permit_actions.upload_photo(
            permit.id, owner.id, {"file_url": "https://blobs.example.com/q.jpg"})
        permit_actions.delete_photo(permit.id, owner.id, photo.id)

        result = notification_dispatcher.drain_outbox()
        assert result == {"processed": 1, "sent": 0, "failed": 1}
        row = NotificationOutbox.query.filter_by(kind="BLOB_DELETE").one()
        assert row.status == "failed"
        assert "q.jpg" in row.last_error
        # the photo row stays deleted
        assert _activity(permit.id)[-1].action == "DELETED"

    def test_denied_delete_queues_no_cleanup(self, permit, owner, make_user, add_member):
        viewer = make_user()
        add_member(viewer, "VIEWER")
        doc = permit_actions.upload_document(
            permit.id, owner.id, {"name": "d.pdf", "file_url": "https://blobs.example.com/d.pdf"})
        with pytest.raises(ForbiddenError):
            permit_actions.delete_document(permit.id, viewer.id, doc.id)
        assert NotificationOutbox.query.filter_by(kind="BLOB_DELETE").count() == 0

    def test_expeditor_cannot_delete_document(self, permit, owner, make_user, add_member):
        expeditor = make_user()
        add_member(expeditor, "EXPEDITOR")
        doc = permit_actions.upload_document(
            permit.id, expeditor.id, {"name": "c.pdf", "file_url": "https://blobs.example.com/c.pdf"})
        with pytest.raises(ForbiddenError):
            permit_actions.delete_document(permit.id, expeditor.id, doc.id)

    def test_viewer_can_share_photo(self, permit, owner, make_user, add_member):
        viewer = make_user()
        add_member(viewer, "VIEWER")
        photo = permit_actions.upload_photo(
            permit.id, owner.id, {"file_url": "https://blobs.example.com/deck.jpg", "caption": "Deck"})

        shares = permit_actions.share_photo(
            permit.id, viewer.id, photo.id,
            [{"email": "Neighbour@Example.com", "name": "Sam"}, "neighbour@example.com"],
            "Look at this",
        )
        assert len(shares) == 1
        assert _activity(permit.id)[-1].action == "PHOTO_SHARED"
        outbox = NotificationOutbox.query.filter_by(kind="PHOTO_SHARED").one()
        assert outbox.payload["message"] == "Look at this"

    def test_share_rejects_bad_email(self, permit, owner):
        photo = permit_actions.upload_photo(
            permit.id, owner.id, {"file_url": "https://blobs.example.com/x.jpg"})
        count = len(_activity(permit.id))
        with pytest.raises(ValidationError) as exc_info:
            permit_actions.share_photo(permit.id, owner.id, photo.id, [{"email": "not-an-email"}])
        assert exc_info.value.field == "recipients[0].email"
        assert PhotoShare.query.count() == 0
        assert len(_activity(permit.id)) == count


# ═════════════════════════════════════════════════════════════════════════
# AUDIT MODES & OUTAGES
# ═════════════════════════════════════════════════════════════════════════

class TestAuditModes:
    def _break_audit(self, monkeypatch):
        def _boom(**kwargs):
            raise SQLAlchemyError("audit store down")
        monkeypatch.setattr(activity_service, "record", _boom)

    def test_non_strict_keeps_mutation(self, app, permit, owner, monkeypatch):
        self._break_audit(monkeypatch)
        permit_actions.update_permit(permit.id, owner.id, {"title": "Still saved"})
        assert db.session.get(Permit, permit.id).title == "Still saved"

    def test_strict_rolls_back_mutation(self, app, permit, owner, monkeypatch):
        app.config["AUDIT_STRICT"] = True
        self._break_audit(monkeypatch)
        with pytest.raises(SQLAlchemyError):
            permit_actions.update_permit(permit.id, owner.id, {"title": "Lost"})
        assert db.session.get(Permit, permit.id).title == "Kitchen renovation"

    def test_strict_success_writes_record(self, app, permit, owner):
        app.config["AUDIT_STRICT"] = True
        permit_actions.update_permit(permit.id, owner.id, {"title": "Strict"})
        assert _activity(permit.id)[-1].action == "UPDATED"

    def test_datastore_outage_is_transient(self, permit, owner, monkeypatch):
        def _down(*args, **kwargs):
            raise OperationalError("SELECT 1", {}, Exception("connection refused"))
        monkeypatch.setattr(permit_access, "resolve", _down)
        with pytest.raises(TransientError):
            permit_actions.get_permit(permit.id, owner.id)
