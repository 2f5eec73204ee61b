"""
Shared pytest fixtures for the PermitDesk test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user / owner / permit: pre-created entities
    - auth_headers: Bearer headers for a user id
"""

import pytest

from permitdesk import create_app
from permitdesk.models import db as _db
from permitdesk.models.auth import User
from permitdesk.services import permit_actions
from permitdesk.services.jwt_service import issue_access_token


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        app.config["AUDIT_STRICT"] = False
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    """Factory: create and commit a User."""
    counter = {"n": 0}

    def _make(full_name=None, email=None):
        counter["n"] += 1
        user = User(
            email=email or f"user{counter['n']}@example.com",
            full_name=full_name or f"User {counter['n']}",
        )
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def owner(make_user):
    return make_user("Olivia Owner", "owner@example.com")


@pytest.fixture()
def permit(owner):
    """A DRAFT building permit created by ``owner``."""
    return permit_actions.create_permit(
        owner.id, {"title": "Kitchen renovation", "subcode_type": "BUILDING"},
    )


@pytest.fixture()
def add_member(permit, owner):
    """Factory: attach a user to ``permit`` with a role, acting as ``owner``."""

    def _add(user, role):
        return permit_actions.add_party(permit.id, owner.id, {"user_id": user.id, "role": role})

    return _add


@pytest.fixture()
def auth_headers():
    """Factory: Authorization header for a user id."""

    def _headers(user_id):
        return {"Authorization": f"Bearer {issue_access_token(user_id)}"}

    return _headers
