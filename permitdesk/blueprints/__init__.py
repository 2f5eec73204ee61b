"""
PermitDesk
Blueprint registry.
"""

from flask import request


def page_args(default_size=50, max_size=200):
    """Read ``page`` / ``page_size`` query params.

    Unparseable values fall back to the defaults; ``page_size`` is capped
    at *max_size*.

    Returns:
        (page, page_size)
    """
    try:
        page = max(int(request.args.get("page", 1)), 1)
    except (ValueError, TypeError):
        page = 1
    try:
        page_size = int(request.args.get("page_size", default_size))
    except (ValueError, TypeError):
        page_size = default_size
    return page, min(max(page_size, 1), max_size)


def json_body() -> dict:
    """Request JSON as a dict; anything else becomes an empty dict."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}
