"""Standardised API error responses.

Usage
-----
    from permitdesk.utils.errors import api_error, E

    return api_error(E.UNAUTHORIZED, "Unauthorized")
    return api_error(E.VALIDATION_INVALID, "title is required", details={"field": "title"})

``register_error_handlers(app)`` maps the typed service exceptions from
``permitdesk.core.exceptions`` onto these responses once for every blueprint.
"""

from __future__ import annotations

import logging

from flask import jsonify, request
from sqlalchemy.exc import OperationalError

from permitdesk.core.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    TransientError,
    ValidationError,
)
from permitdesk.models import db

logger = logging.getLogger(__name__)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants."""

    # Validation – HTTP 400
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # Auth – HTTP 401 / 403
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    FORBIDDEN = "ERR_FORBIDDEN"

    # Not-found – HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict / duplicate – HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"

    # Throttling – HTTP 429
    RATE_LIMITED = "ERR_RATE_LIMITED"

    # Server – HTTP 500 / 503
    INTERNAL = "ERR_INTERNAL"
    UNAVAILABLE = "ERR_UNAVAILABLE"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.UNAUTHORIZED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.RATE_LIMITED: 429,
    E.INTERNAL: 500,
    E.UNAVAILABLE: 503,
}


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload.

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """

    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "success": False,
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def register_error_handlers(app):
    """Register app-wide handlers for the typed service exceptions."""

    @app.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        db.session.rollback()
        logger.info("Not found: %s", error)
        return api_error(E.NOT_FOUND, f"{error.resource} not found")

    @app.errorhandler(ForbiddenError)
    def _handle_forbidden(error: ForbiddenError):
        db.session.rollback()
        return api_error(E.FORBIDDEN, ForbiddenError.public_message)

    @app.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        db.session.rollback()
        details = {"field": error.field} if error.field else None
        return api_error(E.VALIDATION_INVALID, str(error), details=details)

    @app.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        db.session.rollback()
        logger.info("Conflict: %s", error)
        return api_error(E.CONFLICT_DUPLICATE, f"{error.resource} already exists",
                         details={"field": error.field})

    @app.errorhandler(TransientError)
    def _handle_transient(error: TransientError):
        db.session.rollback()
        logger.error("Transient datastore failure on %s: %s", request.path, error)
        return api_error(E.UNAVAILABLE, "Service temporarily unavailable")

    @app.errorhandler(OperationalError)
    def _handle_operational(error: OperationalError):
        db.session.rollback()
        logger.error("Datastore unavailable on %s: %s", request.path, error)
        return api_error(E.UNAVAILABLE, "Service temporarily unavailable")

    @app.errorhandler(404)
    def _handle_404(e):
        return api_error(E.NOT_FOUND, "Not found", details={"path": request.path})

    @app.errorhandler(405)
    def _handle_405(e):
        return api_error(E.VALIDATION_INVALID, "Method not allowed", status=405)

    @app.errorhandler(500)
    def _handle_500(e):
        db.session.rollback()
        logger.error("500 error on %s: %s", request.path, e, exc_info=True)
        return api_error(E.INTERNAL, "Internal server error")
