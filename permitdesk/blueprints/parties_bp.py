"""
Permit Party Blueprint.

Routes:
  GET    /permits/<id>/parties               – list parties
  POST   /permits/<id>/parties               – add a party
  PUT    /permits/<id>/parties/<party_id>    – change a party's role
  DELETE /permits/<id>/parties/<party_id>    – remove a party
"""

from flask import Blueprint, g, jsonify

from permitdesk.blueprints import json_body
from permitdesk.middleware.jwt_auth import require_principal
from permitdesk.services import permit_actions

parties_bp = Blueprint("parties", __name__, url_prefix="/api/v1")


@parties_bp.route("/permits/<permit_id>/parties", methods=["GET"])
@require_principal
def list_parties(permit_id):
    parties = permit_actions.list_parties(permit_id, g.principal_id)
    return jsonify([p.to_dict() for p in parties])


@parties_bp.route("/permits/<permit_id>/parties", methods=["POST"])
@require_principal
def add_party(permit_id):
    """Body: { user_id | email, role, is_primary? }"""
    party = permit_actions.add_party(permit_id, g.principal_id, json_body())
    return jsonify(party.to_dict()), 201


@parties_bp.route("/permits/<permit_id>/parties/<party_id>", methods=["PUT"])
@require_principal
def change_party_role(permit_id, party_id):
    """Body: { role }. The party comes back with a new id."""
    party = permit_actions.change_party_role(
        permit_id, g.principal_id, party_id, json_body().get("role"),
    )
    return jsonify(party.to_dict())


@parties_bp.route("/permits/<permit_id>/parties/<party_id>", methods=["DELETE"])
@require_principal
def remove_party(permit_id, party_id):
    permit_actions.remove_party(permit_id, g.principal_id, party_id)
    return jsonify({"deleted": True, "id": party_id})
