"""
Milestone Blueprint.

Routes:
  GET    /permits/<id>/milestones                    – ordered milestones
  POST   /permits/<id>/milestones                    – add milestone
  PUT    /permits/<id>/milestones/<mid>              – edit milestone
  POST   /permits/<id>/milestones/<mid>/complete     – mark complete (idempotent)
  POST   /permits/<id>/milestones/<mid>/reopen       – clear completion
  DELETE /permits/<id>/milestones/<mid>              – delete milestone
  POST   /permits/<id>/apply-workflow                – copy a template's steps
"""

from flask import Blueprint, g, jsonify

from permitdesk.blueprints import json_body
from permitdesk.core.exceptions import ValidationError
from permitdesk.middleware.jwt_auth import require_principal
from permitdesk.services import permit_actions

milestones_bp = Blueprint("milestones", __name__, url_prefix="/api/v1")


@milestones_bp.route("/permits/<permit_id>/milestones", methods=["GET"])
@require_principal
def list_milestones(permit_id):
    milestones = permit_actions.list_milestones(permit_id, g.principal_id)
    return jsonify([m.to_dict() for m in milestones])


@milestones_bp.route("/permits/<permit_id>/milestones", methods=["POST"])
@require_principal
def add_milestone(permit_id):
    """Body: { title, description?, due_date?, sort_order? }"""
    milestone = permit_actions.add_milestone(permit_id, g.principal_id, json_body())
    return jsonify(milestone.to_dict()), 201


@milestones_bp.route("/permits/<permit_id>/milestones/<milestone_id>", methods=["PUT"])
@require_principal
def update_milestone(permit_id, milestone_id):
    milestone = permit_actions.update_milestone(
        permit_id, g.principal_id, milestone_id, json_body(),
    )
    return jsonify(milestone.to_dict())


@milestones_bp.route("/permits/<permit_id>/milestones/<milestone_id>/complete", methods=["POST"])
@require_principal
def complete_milestone(permit_id, milestone_id):
    milestone = permit_actions.complete_milestone(permit_id, g.principal_id, milestone_id)
    return jsonify(milestone.to_dict())


@milestones_bp.route("/permits/<permit_id>/milestones/<milestone_id>/reopen", methods=["POST"])
@require_principal
def reopen_milestone(permit_id, milestone_id):
    milestone = permit_actions.reopen_milestone(permit_id, g.principal_id, milestone_id)
    return jsonify(milestone.to_dict())


@milestones_bp.route("/permits/<permit_id>/milestones/<milestone_id>", methods=["DELETE"])
@require_principal
def delete_milestone(permit_id, milestone_id):
    permit_actions.delete_milestone(permit_id, g.principal_id, milestone_id)
    return jsonify({"deleted": True, "id": milestone_id})


@milestones_bp.route("/permits/<permit_id>/apply-workflow", methods=["POST"])
@require_principal
def apply_workflow(permit_id):
    """Body: { template_id, start_date? }"""
    data = json_body()
    template_id = data.get("template_id")
    if not template_id:
        raise ValidationError("template_id is required", field="template_id")
    milestones = permit_actions.apply_workflow(
        permit_id, g.principal_id, template_id, start=data.get("start_date"),
    )
    return jsonify([m.to_dict() for m in milestones]), 201
