"""
Shared pytest fixtures for the Department Portal test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse); also
      resets the in-process submission limiter and role restorer
    - client: Flask test client (function-scoped)
    - auth_headers: builds a Bearer header for a given principal
"""

import pytest

from deptportal import create_app
from deptportal.models import db as _db
from deptportal.services.jwt_service import generate_access_token
from deptportal.services.submission_limiter import build_submission_limiter


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    return create_app("testing")


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
        # the app is session-scoped, so in-process state must be reset here
        app.extensions["submission_limiter"] = build_submission_limiter(app.config)
        app.extensions.pop("role_restorer", None)
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Principal helpers ────────────────────────────────────────────────────


@pytest.fixture()
def auth_headers():
    """Factory: auth_headers(user_id, roles=(), admin=False) -> headers dict."""

    def _headers(user_id="user-1", roles=(), admin=False, name=None):
        token = generate_access_token(user_id, roles=list(roles), admin=admin, name=name)
        return {"Authorization": f"Bearer {token}"}

    return _headers
