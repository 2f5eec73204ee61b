"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in permitdesk/__init__.py with no default
limits; this module applies granular limits per route category, keyed by
principal when one is present and by remote address otherwise.

Usage:
    from permitdesk.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

WRITE_LIMIT = "60/minute"
READ_LIMIT = "200/minute"

# Blueprints whose routes are mostly mutations
_WRITE_BLUEPRINTS = (
    "permits", "parties", "milestones", "documents", "workflows", "inspections",
)
# Read-focused blueprints
_READ_BLUEPRINTS = ("activity", "notifications")


def principal_or_remote_addr():
    """Rate-limit key: authenticated principal if available, else remote IP."""
    principal_id = getattr(g, "principal_id", None)
    if principal_id:
        return f"user:{principal_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per principal / remote IP):
        - Mutation blueprints: 60/minute
        - Activity feed, notification inbox: 200/minute
        - Health check:        exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in _WRITE_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(WRITE_LIMIT, key_func=principal_or_remote_addr)(bp)

    for bp_name in _READ_BLUEPRINTS:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit(READ_LIMIT, key_func=principal_or_remote_addr)(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured: write: %s, read: %s", WRITE_LIMIT, READ_LIMIT)
