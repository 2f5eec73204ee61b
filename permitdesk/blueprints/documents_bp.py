"""
Document & Photo Blueprint.

File bytes go straight to blob storage from the client; these routes only
register, list, delete and share the stored objects.

Routes:
  GET    /permits/<id>/documents                 – list documents
  POST   /permits/<id>/documents                 – register uploaded document
  DELETE /permits/<id>/documents/<did>           – delete document
  GET    /permits/<id>/photos                    – list photos
  POST   /permits/<id>/photos                    – register uploaded photo
  DELETE /permits/<id>/photos/<pid>              – delete photo
  POST   /permits/<id>/photos/<pid>/share        – email photo to recipients
"""

from flask import Blueprint, g, jsonify, request

from permitdesk.blueprints import json_body
from permitdesk.middleware.jwt_auth import require_principal
from permitdesk.services import permit_actions

documents_bp = Blueprint("documents", __name__, url_prefix="/api/v1")


# ═════════════════════════════════════════════════════════════════════════════
# DOCUMENTS
# ═════════════════════════════════════════════════════════════════════════════

@documents_bp.route("/permits/<permit_id>/documents", methods=["GET"])
@require_principal
def list_documents(permit_id):
    documents = permit_actions.list_documents(permit_id, g.principal_id)
    return jsonify([d.to_dict() for d in documents])


@documents_bp.route("/permits/<permit_id>/documents", methods=["POST"])
@require_principal
def upload_document(permit_id):
    """Body: { name, file_url, content_type?, size_bytes? }"""
    document = permit_actions.upload_document(permit_id, g.principal_id, json_body())
    return jsonify(document.to_dict()), 201


@documents_bp.route("/permits/<permit_id>/documents/<document_id>", methods=["DELETE"])
@require_principal
def delete_document(permit_id, document_id):
    permit_actions.delete_document(permit_id, g.principal_id, document_id)
    return jsonify({"deleted": True, "id": document_id})


# ═════════════════════════════════════════════════════════════════════════════
# PHOTOS
# ═════════════════════════════════════════════════════════════════════════════

@documents_bp.route("/permits/<permit_id>/photos", methods=["GET"])
@require_principal
def list_photos(permit_id):
    include_shares = request.args.get("include_shares") == "true"
    photos = permit_actions.list_photos(permit_id, g.principal_id)
    return jsonify([p.to_dict(include_shares=include_shares) for p in photos])


@documents_bp.route("/permits/<permit_id>/photos", methods=["POST"])
@require_principal
def upload_photo(permit_id):
    """Body: { file_url, caption? }"""
    photo = permit_actions.upload_photo(permit_id, g.principal_id, json_body())
    return jsonify(photo.to_dict()), 201


@documents_bp.route("/permits/<permit_id>/photos/<photo_id>", methods=["DELETE"])
@require_principal
def delete_photo(permit_id, photo_id):
    permit_actions.delete_photo(permit_id, g.principal_id, photo_id)
    return jsonify({"deleted": True, "id": photo_id})


@documents_bp.route("/permits/<permit_id>/photos/<photo_id>/share", methods=["POST"])
@require_principal
def share_photo(permit_id, photo_id):
    """Body: { recipients: [{email, name?}], message? }"""
    data = json_body()
    shares = permit_actions.share_photo(
        permit_id, g.principal_id, photo_id,
        data.get("recipients"), data.get("message"),
    )
    return jsonify({"shares": [s.to_dict() for s in shares]}), 201
