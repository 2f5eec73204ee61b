"""
Inspection & Message Blueprint.

Routes:
  GET    /permits/<id>/inspections                 – inspections by scheduled date
  POST   /permits/<id>/inspections                 – schedule an inspection
  PATCH  /permits/<id>/inspections/<iid>           – reschedule / record result
  GET    /permits/<id>/messages?page=&page_size=   – message thread, oldest first
  POST   /permits/<id>/messages                    – post a message
"""

from flask import Blueprint, current_app, g, jsonify

from permitdesk.blueprints import json_body, page_args
from permitdesk.middleware.jwt_auth import require_principal
from permitdesk.services import permit_actions

inspections_bp = Blueprint("inspections", __name__, url_prefix="/api/v1")


@inspections_bp.route("/permits/<permit_id>/inspections", methods=["GET"])
@require_principal
def list_inspections(permit_id):
    inspections = permit_actions.list_inspections(permit_id, g.principal_id)
    return jsonify([i.to_dict() for i in inspections])


@inspections_bp.route("/permits/<permit_id>/inspections", methods=["POST"])
@require_principal
def schedule_inspection(permit_id):
    """Body: { type, scheduled_date?, inspector_name?, inspector_phone?, notes? }"""
    inspection = permit_actions.schedule_inspection(permit_id, g.principal_id, json_body())
    return jsonify(inspection.to_dict()), 201


@inspections_bp.route("/permits/<permit_id>/inspections/<inspection_id>", methods=["PATCH"])
@require_principal
def update_inspection(permit_id, inspection_id):
    """Body: any of { type, scheduled_date, status, inspector_name, inspector_phone, notes, result }"""
    inspection = permit_actions.update_inspection(
        permit_id, g.principal_id, inspection_id, json_body(),
    )
    return jsonify(inspection.to_dict())


@inspections_bp.route("/permits/<permit_id>/messages", methods=["GET"])
@require_principal
def list_messages(permit_id):
    page, page_size = page_args(
        default_size=current_app.config.get("MESSAGES_DEFAULT_PAGE_SIZE", 50),
    )
    result = permit_actions.list_messages(permit_id, g.principal_id, page=page, page_size=page_size)
    return jsonify({
        "messages": [m.to_dict() for m in result["messages"]],
        "total": result["total"],
        "page": result["page"],
        "page_size": result["page_size"],
        "pages": result["pages"],
    })


@inspections_bp.route("/permits/<permit_id>/messages", methods=["POST"])
@require_principal
def post_message(permit_id):
    """Body: { content }"""
    message = permit_actions.post_message(permit_id, g.principal_id, json_body())
    return jsonify(message.to_dict()), 201
