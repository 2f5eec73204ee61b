"""
Workflow Template Blueprint.

Templates created here are never defaults; defaults come from
``flask seed-workflow-templates``.

Routes:
  GET    /workflow-templates?permit_type=     – list (defaults first)
  GET    /workflow-templates/<tid>            – template detail
  POST   /workflow-templates                  – create template
  PUT    /workflow-templates/<tid>            – update template
  DELETE /workflow-templates/<tid>            – delete template
"""

from flask import Blueprint, g, jsonify, request

from permitdesk.blueprints import json_body
from permitdesk.middleware.jwt_auth import require_principal
from permitdesk.services import workflow_template_service as templates

workflows_bp = Blueprint("workflows", __name__, url_prefix="/api/v1")


@workflows_bp.route("/workflow-templates", methods=["GET"])
@require_principal
def list_templates():
    items = templates.list_templates(request.args.get("permit_type"))
    return jsonify([t.to_dict(include_steps=False) for t in items])


@workflows_bp.route("/workflow-templates/<template_id>", methods=["GET"])
@require_principal
def get_template(template_id):
    return jsonify(templates.get_template(template_id).to_dict())


@workflows_bp.route("/workflow-templates", methods=["POST"])
@require_principal
def create_template():
    """Body: { name, steps: [{title, description?, due_offset_days?}], description?, permit_type? }"""
    data = json_body()
    template = templates.create_template(
        g.principal_id,
        name=data.get("name"),
        steps=data.get("steps"),
        description=data.get("description"),
        permit_type=data.get("permit_type"),
    )
    return jsonify(template.to_dict()), 201


@workflows_bp.route("/workflow-templates/<template_id>", methods=["PUT"])
@require_principal
def update_template(template_id):
    data = json_body()
    data.pop("is_default", None)
    return jsonify(templates.update_template(template_id, g.principal_id, data).to_dict())


@workflows_bp.route("/workflow-templates/<template_id>", methods=["DELETE"])
@require_principal
def delete_template(template_id):
    templates.delete_template(template_id, g.principal_id)
    return jsonify({"deleted": True, "id": template_id})
