"""
Pytest configuration and fixtures

Tests run against an in-memory SQLite database (one shared connection).
Tables are created from the models before each test and dropped after it,
so nothing leaks between tests.
"""
import os
import sys

# Settings are read at import time: configure the environment first.
os.environ["SECRET_KEY"] = "test-secret-key-with-at-least-thirty-two-characters"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["EMAIL_ENABLED"] = "false"
os.environ["APP_BASE_URL"] = "http://localhost:3000"
os.environ["ENVIRONMENT"] = "test"
os.environ["LOG_FORMAT"] = "text"

# Add the parent directory to the path so we can import from services
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import pytest
from fastapi.testclient import TestClient

from core.database import Base, SessionLocal, engine
from core.guard import Actor, AuthUser
from models import Profile
from services.identity_provider import LocalIdentityProvider

ORIGIN = "http://localhost:3000"
STRONG_PASSWORD = "Str0ng!Passw0rd"


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def client():
    from main import app

    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def staff_factory(db):
    """
    Create an account + profile and return a handle with request headers.

    Usage:
        owner = staff_factory("owner")
        client.post(url, json=..., headers=owner.headers)
    """
    created = {"n": 0}

    class StaffMember:
        def __init__(self, profile, token):
            self.profile = profile
            self.id = profile.id
            self.email = profile.email
            self.token = token
            self.headers = {"Authorization": f"Bearer {token}", "Origin": ORIGIN}
            self.actor = Actor(user=AuthUser(id=profile.id, email=profile.email), profile=profile)

    def make(role, email=None, full_name=None, is_active=True, invited_by=None):
        created["n"] += 1
        email = email or f"{role}{created['n']}@staff.org"
        identity = LocalIdentityProvider(db)
        user = identity.create_account(email, STRONG_PASSWORD)
        profile = Profile(
            id=user.id,
            email=user.email,
            full_name=full_name or role.title(),
            role=role,
            is_active=is_active,
            invited_by=invited_by,
        )
        db.add(profile)
        db.commit()
        db.refresh(profile)
        return StaffMember(profile, identity.issue_session_token(user))

    return make


@pytest.fixture
def owner(staff_factory):
    return staff_factory("owner", email="owner@staff.org")


@pytest.fixture
def admin(staff_factory):
    return staff_factory("admin", email="admin@staff.org")


@pytest.fixture
def officer(staff_factory):
    return staff_factory("officer", email="officer@staff.org")
