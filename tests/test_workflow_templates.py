"""
Workflow template store tests.

Tests cover:
  - Create validation (first failing field) and non-default creation
  - Listing order and permit_type filtering
  - Update / delete
  - Activity rows for every template mutation
  - Seeding defaults and the one-default-per-type rule
  - HTTP surface
"""
import pytest

from permitdesk.core.exceptions import ConflictError, NotFoundError, ValidationError
from permitdesk.models import db
from permitdesk.models.activity import ActivityLog
from permitdesk.models.workflow import WorkflowTemplate
from permitdesk.services import workflow_template_service as svc

ADMIN = "user-template-admin"

STEPS = [
    {"title": "Submit plans", "due_offset_days": 2},
    {"title": "Plan review", "description": "Municipal review", "due_offset_days": 10},
    {"title": "Final inspection"},
]


class TestCreate:
    def test_create_is_never_default(self):
        t = svc.create_template(ADMIN, name="Deck", steps=STEPS, permit_type="building")
        assert t.is_default is False
        assert t.permit_type == "BUILDING"
        assert [s["title"] for s in t.steps] == ["Submit plans", "Plan review", "Final inspection"]
        assert t.steps[2]["due_offset_days"] is None

    def test_all_types_when_permit_type_omitted(self):
        t = svc.create_template(ADMIN, name="Generic", steps=STEPS)
        assert t.permit_type == ""
        assert t.to_dict()["permit_type"] is None

    def test_name_required(self):
        with pytest.raises(ValidationError) as exc_info:
            svc.create_template(ADMIN, name="  ", steps=STEPS)
        assert exc_info.value.field == "name"

    def test_steps_must_be_non_empty(self):
        with pytest.raises(ValidationError) as exc_info:
            svc.create_template(ADMIN, name="Empty", steps=[])
        assert exc_info.value.field == "steps"

    def test_first_failing_step_reported(self):
        with pytest.raises(ValidationError) as exc_info:
            svc.create_template(ADMIN, name="Bad", steps=[
                {"title": "ok"},
                {"title": ""},
                {"title": "x", "due_offset_days": -1},
            ])
        assert exc_info.value.field == "steps[1].title"

    @pytest.mark.parametrize("offset", [-1, 1.5, "3", True])
    def test_due_offset_must_be_non_negative_int(self, offset):
        with pytest.raises(ValidationError) as exc_info:
            svc.create_template(ADMIN, name="Bad", steps=[{"title": "t", "due_offset_days": offset}])
        assert exc_info.value.field == "steps[0].due_offset_days"

    def test_validation_writes_nothing(self):
        with pytest.raises(ValidationError):
            svc.create_template(ADMIN, name="", steps=STEPS)
        assert WorkflowTemplate.query.count() == 0


class TestList:
    def test_defaults_first_then_name(self):
        svc.create_template(ADMIN, name="Zoning review", steps=STEPS, permit_type="BUILDING")
        svc.create_template(ADMIN, name="Addition", steps=STEPS, permit_type="BUILDING")
        svc.seed_default_templates()
        db.session.commit()

        names = [t.name for t in svc.list_templates("BUILDING")]
        # both defaults that apply to BUILDING come first, alphabetical
        assert names[:2] == ["Building Permit Workflow", "Simple Permit Workflow"]
        assert names[2:] == ["Addition", "Zoning review"]

    def test_filter_includes_all_type_templates(self):
        svc.create_template(ADMIN, name="Generic", steps=STEPS)
        svc.create_template(ADMIN, name="Pipes", steps=STEPS, permit_type="PLUMBING")
        svc.create_template(ADMIN, name="Wires", steps=STEPS, permit_type="ELECTRICAL")

        names = {t.name for t in svc.list_templates("plumbing")}
        assert names == {"Generic", "Pipes"}

    def test_unfiltered_lists_everything(self):
        svc.create_template(ADMIN, name="A", steps=STEPS, permit_type="FIRE")
        svc.create_template(ADMIN, name="B", steps=STEPS)
        assert len(svc.list_templates()) == 2


class TestUpdateDelete:
    def test_update_fields(self):
        t = svc.create_template(ADMIN, name="Old", steps=STEPS)
        updated = svc.update_template(t.id, ADMIN, {"name": "New", "steps": [{"title": "Only"}]})
        assert updated.name == "New"
        assert len(updated.steps) == 1

    def test_update_validates(self):
        t = svc.create_template(ADMIN, name="Old", steps=STEPS)
        with pytest.raises(ValidationError):
            svc.update_template(t.id, ADMIN, {"steps": "nope"})
        db.session.rollback()
        assert svc.get_template(t.id).name == "Old"

    def test_get_missing(self):
        with pytest.raises(NotFoundError):
            svc.get_template("missing")

    def test_delete(self):
        t = svc.create_template(ADMIN, name="Gone", steps=STEPS)
        svc.delete_template(t.id, ADMIN)
        assert WorkflowTemplate.query.count() == 0


def _template_activity(template_id):
    return (ActivityLog.query
            .filter_by(entity_type="WORKFLOW_TEMPLATE", entity_id=template_id)
            .order_by(ActivityLog.id).all())


class TestTemplateActivity:
    def test_create_update_delete_each_recorded(self):
        t = svc.create_template(ADMIN, name="Porch", steps=STEPS, permit_type="BUILDING")
        svc.update_template(t.id, ADMIN, {"name": "Front porch"})
        svc.delete_template(t.id, ADMIN)

        rows = _template_activity(t.id)
        assert [r.action for r in rows] == ["CREATED", "UPDATED", "DELETED"]
        assert all(r.actor_user_id == ADMIN for r in rows)
        assert all(r.permit_id is None for r in rows)
        assert rows[1].metadata_dict == {"fields": ["name"]}

    def test_rejected_create_records_nothing(self):
        with pytest.raises(ValidationError):
            svc.create_template(ADMIN, name="Bad", steps=[])
        assert ActivityLog.query.filter_by(entity_type="WORKFLOW_TEMPLATE").count() == 0

    def test_strict_mode_rolls_back_template_on_audit_failure(self, app, monkeypatch):
        from permitdesk.services import activity_service

        app.config["AUDIT_STRICT"] = True

        def broken_record(**kwargs):
            raise RuntimeError("audit store down")

        monkeypatch.setattr(activity_service, "record", broken_record)
        with pytest.raises(RuntimeError):
            svc.create_template(ADMIN, name="Unaudited", steps=STEPS)
        db.session.rollback()
        assert WorkflowTemplate.query.filter_by(name="Unaudited").count() == 0

    def test_http_mutations_attribute_principal(self, client, owner, auth_headers):
        headers = auth_headers(owner.id)
        res = client.post("/api/v1/workflow-templates",
                          json={"name": "Shed", "steps": STEPS}, headers=headers)
        template_id = res.get_json()["id"]
        client.put(f"/api/v1/workflow-templates/{template_id}",
                   json={"description": "Garden shed"}, headers=headers)
        res = client.delete(f"/api/v1/workflow-templates/{template_id}", headers=headers)
        assert res.status_code == 200

        rows = _template_activity(template_id)
        assert [r.action for r in rows] == ["CREATED", "UPDATED", "DELETED"]
        assert {r.actor_user_id for r in rows} == {owner.id}


class TestSeeding:
    def test_seed_creates_defaults(self):
        created = svc.seed_default_templates()
        db.session.commit()
        assert created == len(svc.BUILTIN_TEMPLATES)

        defaults = WorkflowTemplate.query.filter_by(is_default=True).all()
        types = [t.permit_type for t in defaults]
        assert len(types) == len(set(types))

    def test_seed_is_idempotent(self):
        svc.seed_default_templates()
        db.session.commit()
        assert svc.seed_default_templates() == 0
        db.session.commit()
        assert WorkflowTemplate.query.count() == len(svc.BUILTIN_TEMPLATES)

    def test_second_default_for_type_conflicts(self):
        svc.seed_default_templates()
        db.session.commit()
        other = svc.create_template(ADMIN, name="Alt building", steps=STEPS, permit_type="BUILDING")
        with pytest.raises(ConflictError):
            svc.set_default(other.id)

    def test_set_default_on_free_type(self):
        t = svc.create_template(ADMIN, name="Fire", steps=STEPS, permit_type="FIRE")
        assert svc.set_default(t.id).is_default is True


class TestTemplateAPI:
    def test_requires_principal(self, client):
        res = client.get("/api/v1/workflow-templates")
        assert res.status_code == 401

    def test_create_and_list(self, client, owner, auth_headers):
        headers = auth_headers(owner.id)
        res = client.post(
            "/api/v1/workflow-templates",
            json={"name": "Fence", "steps": STEPS, "permit_type": "ZONING", "is_default": True},
            headers=headers,
        )
        assert res.status_code == 201
        body = res.get_json()
        assert body["is_default"] is False
        assert body["step_count"] == 3

        res = client.get("/api/v1/workflow-templates?permit_type=ZONING", headers=headers)
        assert res.status_code == 200
        assert [t["name"] for t in res.get_json()] == ["Fence"]

    def test_validation_error_body(self, client, owner, auth_headers):
        res = client.post(
            "/api/v1/workflow-templates",
            json={"name": "No steps"},
            headers=auth_headers(owner.id),
        )
        assert res.status_code == 400
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_INVALID"
        assert body["details"] == {"field": "steps"}

    def test_get_missing_is_404(self, client, owner, auth_headers):
        res = client.get("/api/v1/workflow-templates/nope", headers=auth_headers(owner.id))
        assert res.status_code == 404
