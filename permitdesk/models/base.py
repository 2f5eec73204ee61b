"""
Shared column helpers for PermitDesk models.

All primary keys except the activity log's are UUID strings; every
timestamp is stored timezone-aware in UTC.
"""

import uuid
from datetime import datetime, timezone


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


def _iso(value):
    """Serialise a date/datetime column for ``to_dict`` output."""
    return value.isoformat() if value else None
