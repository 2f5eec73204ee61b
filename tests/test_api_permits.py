"""
HTTP API tests — permits, parties, milestones, documents, activity feed.

Exercises the blueprints end to end: Bearer auth, status code mapping of
the typed service errors, and response envelopes.
"""
import jwt

from permitdesk.models.activity import ActivityLog
from permitdesk.services import workflow_template_service


# ═════════════════════════════════════════════════════════════════════════
# AUTH & HEALTH
# ═════════════════════════════════════════════════════════════════════════

class TestAuth:
    def test_health_needs_no_token(self, client):
        res = client.get("/api/v1/health")
        assert res.status_code == 200
        assert res.get_json()["status"] == "ok"

    def test_ready(self, client):
        res = client.get("/api/v1/health/ready")
        assert res.status_code == 200
        assert res.get_json()["database"] == "ok"

    def test_missing_token_401(self, client):
        res = client.get("/api/v1/permits")
        assert res.status_code == 401
        assert res.get_json()["code"] == "ERR_UNAUTHORIZED"

    def test_garbage_token_401(self, client):
        res = client.get("/api/v1/permits", headers={"Authorization": "Bearer nope"})
        assert res.status_code == 401

    def test_token_signed_with_other_key_401(self, client, owner):
        token = jwt.encode({"sub": owner.id, "type": "access"},
                           "some-other-secret-of-sufficient-length!", algorithm="HS256")
        res = client.get("/api/v1/permits", headers={"Authorization": f"Bearer {token}"})
        assert res.status_code == 401


# ═════════════════════════════════════════════════════════════════════════
# PERMITS
# ═════════════════════════════════════════════════════════════════════════

class TestPermitAPI:
    def test_create_and_get(self, client, owner, auth_headers):
        h = auth_headers(owner.id)
        res = client.post("/api/v1/permits", json={"title": "Deck", "subcode_type": "building"},
                          headers=h)
        assert res.status_code == 201
        body = res.get_json()
        assert body["status"] == "DRAFT"
        assert body["subcode_type"] == "BUILDING"

        res = client.get(f"/api/v1/permits/{body['id']}", headers=h)
        assert res.status_code == 200
        access = res.get_json()["access"]
        assert access["role"] == "OWNER"
        assert access["is_creator"] is True
        assert "delete" in access["permissions"]

    def test_create_validation_400(self, client, owner, auth_headers):
        res = client.post("/api/v1/permits", json={"subcode_type": "BUILDING"},
                          headers=auth_headers(owner.id))
        assert res.status_code == 400
        assert res.get_json()["details"]["field"] == "title"

    def test_unknown_permit_404(self, client, owner, auth_headers):
        res = client.get("/api/v1/permits/does-not-exist", headers=auth_headers(owner.id))
        assert res.status_code == 404

    def test_forbidden_is_generic(self, client, permit, make_user, add_member, auth_headers):
        viewer = make_user()
        add_member(viewer, "VIEWER")
        res = client.delete(f"/api/v1/permits/{permit.id}", headers=auth_headers(viewer.id))
        assert res.status_code == 403
        body = res.get_json()
        assert body["code"] == "ERR_FORBIDDEN"
        assert "VIEWER" not in body["error"]
        assert "delete" not in body["error"]

    def test_status_endpoint(self, client, permit, owner, auth_headers):
        h = auth_headers(owner.id)
        res = client.post(f"/api/v1/permits/{permit.id}/status", json={"status": "SUBMITTED"},
                          headers=h)
        assert res.status_code == 200
        assert res.get_json()["status"] == "SUBMITTED"

        res = client.post(f"/api/v1/permits/{permit.id}/status", json={"status": "CLOSED"},
                          headers=h)
        assert res.status_code == 400

    def test_delete(self, client, permit, owner, auth_headers):
        h = auth_headers(owner.id)
        res = client.delete(f"/api/v1/permits/{permit.id}", headers=h)
        assert res.status_code == 200
        assert res.get_json() == {"deleted": True, "id": permit.id}
        assert client.get(f"/api/v1/permits/{permit.id}", headers=h).status_code == 404


# ═════════════════════════════════════════════════════════════════════════
# PARTIES, MILESTONES, DOCUMENTS
# ═════════════════════════════════════════════════════════════════════════

class TestNestedAPI:
    def test_party_duplicate_409(self, client, permit, owner, make_user, auth_headers):
        user = make_user()
        h = auth_headers(owner.id)
        url = f"/api/v1/permits/{permit.id}/parties"
        assert client.post(url, json={"user_id": user.id, "role": "VIEWER"}, headers=h).status_code == 201
        res = client.post(url, json={"user_id": user.id, "role": "ENGINEER"}, headers=h)
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_DUPLICATE"

    def test_party_role_change(self, client, permit, owner, make_user, add_member, auth_headers):
        party = add_member(make_user(), "VIEWER")
        res = client.put(f"/api/v1/permits/{permit.id}/parties/{party.id}",
                         json={"role": "CONTRACTOR"}, headers=auth_headers(owner.id))
        assert res.status_code == 200
        body = res.get_json()
        assert body["role"] == "CONTRACTOR"
        assert body["id"] != party.id

    def test_milestones_and_workflow(self, client, permit, owner, auth_headers):
        template = workflow_template_service.create_template(
            owner.id, name="Short", permit_type="BUILDING",
            steps=[{"title": "Plans", "due_offset_days": 0}, {"title": "Review", "due_offset_days": 14}],
        )
        h = auth_headers(owner.id)
        res = client.post(f"/api/v1/permits/{permit.id}/apply-workflow",
                          json={"template_id": template.id, "start_date": "2026-03-01"}, headers=h)
        assert res.status_code == 201
        created = res.get_json()
        assert [m["sort_order"] for m in created] == [1, 2]
        assert created[1]["due_date"].startswith("2026-03-15")

        mid = created[0]["id"]
        res = client.post(f"/api/v1/permits/{permit.id}/milestones/{mid}/complete", headers=h)
        assert res.get_json()["is_completed"] is True

        listed = client.get(f"/api/v1/permits/{permit.id}/milestones", headers=h).get_json()
        assert [m["title"] for m in listed] == ["Plans", "Review"]

    def test_apply_workflow_requires_template(self, client, permit, owner, auth_headers):
        res = client.post(f"/api/v1/permits/{permit.id}/apply-workflow", json={},
                          headers=auth_headers(owner.id))
        assert res.status_code == 400
        assert res.get_json()["details"]["field"] == "template_id"

    def test_contractor_uploads_document(self, client, permit, make_user, add_member, auth_headers):
        contractor = make_user()
        add_member(contractor, "CONTRACTOR")
        res = client.post(f"/api/v1/permits/{permit.id}/documents",
                          json={"name": "Plan.pdf", "file_url": "https://blobs.example.com/plan.pdf",
                                "size_bytes": 2048},
                          headers=auth_headers(contractor.id))
        assert res.status_code == 201
        log = ActivityLog.query.filter_by(action="DOCUMENT_UPLOADED").one()
        assert log.actor_user_id == contractor.id

    def test_share_photo_bad_email(self, client, permit, owner, auth_headers):
        h = auth_headers(owner.id)
        photo = client.post(f"/api/v1/permits/{permit.id}/photos",
                            json={"file_url": "https://blobs.example.com/a.jpg"}, headers=h).get_json()
        res = client.post(f"/api/v1/permits/{permit.id}/photos/{photo['id']}/share",
                          json={"recipients": [{"email": "a@example.com"}, {"email": "bad"}]},
                          headers=h)
        assert res.status_code == 400
        assert res.get_json()["details"]["field"] == "recipients[1].email"


# ═════════════════════════════════════════════════════════════════════════
# ACTIVITY FEED
# ═════════════════════════════════════════════════════════════════════════

class TestActivityAPI:
    def test_feed_envelope_newest_first(self, client, permit, owner, auth_headers):
        h = auth_headers(owner.id)
        for i in range(3):
            client.post(f"/api/v1/permits/{permit.id}/milestones", json={"title": f"M{i}"}, headers=h)

        res = client.get(f"/api/v1/permits/{permit.id}/activity?page=1&page_size=2", headers=h)
        assert res.status_code == 200
        body = res.get_json()
        assert body["total"] == 4
        assert body["pages"] == 2
        assert body["page_size"] == 2
        assert [r["description"] for r in body["records"]] == [
            "Added milestone 'M2'", "Added milestone 'M1'"]

    def test_page_size_capped(self, client, permit, owner, auth_headers):
        res = client.get(f"/api/v1/permits/{permit.id}/activity?page_size=100000",
                         headers=auth_headers(owner.id))
        assert res.get_json()["page_size"] == 200

    def test_stranger_cannot_read_feed(self, client, permit, make_user, auth_headers):
        res = client.get(f"/api/v1/permits/{permit.id}/activity",
                         headers=auth_headers(make_user().id))
        assert res.status_code == 403
