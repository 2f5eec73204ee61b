"""
JWT Auth Middleware — parses the Bearer token, sets ``g.principal_id``.

The middleware never rejects a request by itself: an invalid or missing
token simply leaves ``g.principal_id`` unset.  Endpoints that need a
principal are wrapped with ``@require_principal``, which answers 401.

Usage:
    @bp.route("/permits/<permit_id>/milestones", methods=["POST"])
    @require_principal
    def add_milestone(permit_id):
        permit_actions.add_milestone(permit_id, g.principal_id, request.get_json())
"""

import functools
import logging

import jwt as pyjwt
from flask import g, request

from permitdesk.services.jwt_service import decode_access_token
from permitdesk.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Paths that skip JWT parsing entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
    "/static/",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.principal_id = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]  # Strip "Bearer "

        try:
            payload = decode_access_token(token)
            g.principal_id = str(payload["sub"])
        except pyjwt.ExpiredSignatureError:
            logger.info("Expired access token on %s", path)
        except pyjwt.InvalidTokenError as exc:
            logger.warning("Invalid access token on %s: %s", path, exc)


def require_principal(f):
    """Decorator: answer 401 unless the request carries a valid principal."""

    @functools.wraps(f)
    def decorated(*args, **kwargs):
        if not getattr(g, "principal_id", None):
            return api_error(E.UNAUTHORIZED, "Unauthorized")
        return f(*args, **kwargs)

    return decorated
