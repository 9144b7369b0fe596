"""
Shared pytest fixtures for the PharmaTrack test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB + cache reset (autouse)
    - client: Flask test client (function-scoped)
    - make_user / auth_headers: account factory and Bearer header helper
    - admin, manager, operator, qa: one user per role
    - line: an ACTIVE production line created by the admin
"""

import uuid

import pytest

from pharmatrack import create_app
from pharmatrack.models import db as _db
from pharmatrack.models.auth import User
from pharmatrack.services import cache_events, cache_service, revocation_store
from pharmatrack.services.jwt_service import generate_access_token
from pharmatrack.utils.crypto import hash_password

DEFAULT_PASSWORD = "Sterile#Batch42"

# bcrypt at 12 rounds is slow; hash once for every fixture user.
_DEFAULT_HASH = None


def _default_hash():
    global _DEFAULT_HASH
    if _DEFAULT_HASH is None:
        _DEFAULT_HASH = hash_password(DEFAULT_PASSWORD)
    return _DEFAULT_HASH


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


def _reset_shared_state():
    cache_events.drain()
    cache_service.clear_all()
    cache_service.reset_metrics()
    revocation_store.clear()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, reset cache + blocklist, recreate tables afterwards."""
    with app.app_context():
        _reset_shared_state()
        yield _db.session
        _db.session.rollback()
        _reset_shared_state()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Users & auth ─────────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    """Factory: insert a user directly (no audit row) and return it."""

    def _make(role="OPERATOR", email=None, password=None, **kwargs):
        user = User(
            email=email or f"{role.lower()}.{uuid.uuid4().hex[:6]}@acmepharma.com",
            password_hash=hash_password(password) if password else _default_hash(),
            first_name=kwargs.pop("first_name", role.title()),
            last_name=kwargs.pop("last_name", "Tester"),
            role=role,
            **kwargs,
        )
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


def _bearer(user):
    token = generate_access_token(user.id, user.email, user.role)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def auth_headers():
    """Helper: Authorization header with a freshly minted access token for a user."""
    return _bearer


@pytest.fixture()
def admin(make_user):
    return make_user("ADMIN", email="admin@acmepharma.com")


@pytest.fixture()
def manager(make_user):
    return make_user("MANAGER", email="manager@acmepharma.com")


@pytest.fixture()
def operator(make_user):
    return make_user("OPERATOR", email="operator@acmepharma.com")


@pytest.fixture()
def qa(make_user):
    return make_user("QUALITY_ASSURANCE", email="qa@acmepharma.com")


# ── Domain fixtures ──────────────────────────────────────────────────────


@pytest.fixture()
def line(admin):
    """An ACTIVE production line created through the service layer."""
    from pharmatrack.services.production_line_service import create_production_line

    return create_production_line(
        {"name": "Tablet Line A", "reason": "Commissioned for tablet compression"},
        actor_id=admin.id,
    )
