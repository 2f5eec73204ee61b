"""
Permit Blueprint.

Routes:
  GET    /permits                     – permits I created or am a party on
  POST   /permits                     – create permit (caller becomes owner)
  GET    /permits/<id>                – permit detail + caller's access
  PUT    /permits/<id>                – update permit fields
  POST   /permits/<id>/status         – move permit to a new status
  DELETE /permits/<id>                – delete permit
"""

from flask import Blueprint, g, jsonify

from permitdesk.blueprints import json_body
from permitdesk.middleware.jwt_auth import require_principal
from permitdesk.services import permit_actions

permits_bp = Blueprint("permits", __name__, url_prefix="/api/v1")


@permits_bp.route("/permits", methods=["GET"])
@require_principal
def list_permits():
    permits = permit_actions.list_permits(g.principal_id)
    return jsonify([p.to_dict() for p in permits])


@permits_bp.route("/permits", methods=["POST"])
@require_principal
def create_permit():
    """Body: { title, subcode_type, description?, property_id? }"""
    permit = permit_actions.create_permit(g.principal_id, json_body())
    return jsonify(permit.to_dict()), 201


@permits_bp.route("/permits/<permit_id>", methods=["GET"])
@require_principal
def get_permit(permit_id):
    permit, decision = permit_actions.get_permit(permit_id, g.principal_id)
    d = permit.to_dict()
    d["access"] = decision.to_dict()
    return jsonify(d)


@permits_bp.route("/permits/<permit_id>", methods=["PUT"])
@require_principal
def update_permit(permit_id):
    permit = permit_actions.update_permit(permit_id, g.principal_id, json_body())
    return jsonify(permit.to_dict())


@permits_bp.route("/permits/<permit_id>/status", methods=["POST"])
@require_principal
def change_status(permit_id):
    """Body: { status }"""
    permit = permit_actions.change_status(permit_id, g.principal_id, json_body().get("status"))
    return jsonify(permit.to_dict())


@permits_bp.route("/permits/<permit_id>", methods=["DELETE"])
@require_principal
def delete_permit(permit_id):
    permit_actions.delete_permit(permit_id, g.principal_id)
    return jsonify({"deleted": True, "id": permit_id})
