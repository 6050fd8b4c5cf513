"""
Shared pytest fixtures for the SOP Document Manager test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user: factory for directory users of any role
    - auth_headers: Bearer header for a user
    - people: one user per role, plus a second owner and reviewer
"""

import pytest

from sop_manager import create_app
from sop_manager.core.actor import ActorContext
from sop_manager.models import db as _db
from sop_manager.models.user import User
from sop_manager.services.jwt_service import generate_access_token
from sop_manager.utils.crypto import hash_password

DEFAULT_PASSWORD = "Sup3r-secret"


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
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Users & tokens ───────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    counter = {"n": 0}

    def _make(role, name=None, email=None, password=DEFAULT_PASSWORD, department="Finance"):
        counter["n"] += 1
        name = name or f"{role.replace('-', ' ').title()} {counter['n']}"
        email = email or f"{role}.{counter['n']}@acme.com"
        user = User(
            name=name,
            email=email,
            password_hash=hash_password(password),
            role=role,
            department=department,
            is_active=True,
        )
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def auth_headers():
    def _headers(user):
        return {"Authorization": f"Bearer {generate_access_token(user)}"}
    return _headers


@pytest.fixture()
def people(make_user):
    """One user per role; keys are short role names."""
    return {
        "admin": make_user("admin", name="Ada Admin"),
        "controller": make_user("document-controller", name="Cora Controller"),
        "creator": make_user("document-creator", name="Cal Creator"),
        "owner": make_user("document-owner", name="Olive Owner"),
        "owner2": make_user("document-owner", name="Oscar Owner"),
        "reviewer": make_user("reviewer", name="Rita Reviewer"),
        "reviewer2": make_user("reviewer", name="Rob Reviewer"),
        "requester": make_user("requester", name="Remy Requester"),
    }


def actor_of(user):
    """ActorContext for a User row, as the JWT middleware would build it."""
    return ActorContext(
        user_id=user.id, role=user.role, name=user.name, email=user.email,
        department=user.department, country=user.country,
    )
