"""
Activity Feed Blueprint.

Routes:
  GET /permits/<id>/activity?page=&page_size=   – newest-first activity feed
"""

from flask import Blueprint, current_app, g, jsonify

from permitdesk.blueprints import page_args
from permitdesk.middleware.jwt_auth import require_principal
from permitdesk.services import permit_actions

activity_bp = Blueprint("activity", __name__, url_prefix="/api/v1")


@activity_bp.route("/permits/<permit_id>/activity", methods=["GET"])
@require_principal
def activity_feed(permit_id):
    page, page_size = page_args(
        default_size=current_app.config.get("ACTIVITY_DEFAULT_PAGE_SIZE", 50),
        max_size=current_app.config.get("ACTIVITY_MAX_PAGE_SIZE", 200),
    )
    result = permit_actions.activity_feed(permit_id, g.principal_id, page=page, page_size=page_size)
    return jsonify({
        "records": [r.to_dict() for r in result["records"]],
        "total": result["total"],
        "page": result["page"],
        "page_size": result["page_size"],
        "pages": result["pages"],
    })
