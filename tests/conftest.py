"""
Test configuration and fixtures.

Provides:
- Flask app on in-memory SQLite with Celery running eagerly
- Scripted verification service and in-process workflow store
- JWT headers for authenticated requests
- Seeded profiles, a group and cleanup areas
"""
from dataclasses import dataclass

import pytest

from main import create_app
from models import db, Profile
from verification_service import ScriptedVerificationService, VerificationResult
from workflow_store import WorkflowStore
from area_registry import AreaRegistry
from group_membership import GroupMembershipProvider
from api.auth import create_access_token


TEST_CONFIG = {
    "TESTING": True,
    "SQLALCHEMY_DATABASE_URI": "sqlite://",
    "REDIS_URL": None,
    "RATELIMIT_STORAGE_URI": "memory://",
    "JWT_SECRET_KEY": "ecohunt-test-secret-key-0123456789abcdef",
    "GEMINI_API_KEY": None,
    "VERIFICATION_TIMEOUT_SECONDS": 2,
    "CLAIM_COMMIT_RETRY_ENABLED": False,
    "CELERY_TASK_ALWAYS_EAGER": True,
}


# =============================================================================
# Application Fixtures
# =============================================================================

@pytest.fixture
def verifier() -> ScriptedVerificationService:
    return ScriptedVerificationService([VerificationResult.passed(88)])


@pytest.fixture
def store() -> WorkflowStore:
    return WorkflowStore()


@pytest.fixture
def app(verifier, store):
    """App with its context pushed for the whole test; tables dropped afterwards."""
    app = create_app(TEST_CONFIG, verification_service=verifier, workflow_store=store)
    with app.app_context():
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


# =============================================================================
# Seed Data
# =============================================================================

@dataclass
class Seed:
    alice: Profile
    bob: Profile
    carol: Profile
    dave: Profile
    group_id: str
    invite_code: str
    high_area_id: str
    low_area_id: str


def _profile(provider, user_id, username, points=0):
    profile = provider.ensure_profile(user_id, username=username)
    profile.total_points = points
    db.session.commit()
    return profile


@pytest.fixture
def seed(app) -> Seed:
    """
    alice (admin), bob and carol share the "Beach Crew" group; dave is an
    outsider. One high-severity area belongs to the group, one low-severity
    area is public.
    """
    provider = GroupMembershipProvider()
    alice = _profile(provider, "alice", "Alice", points=100)
    bob = _profile(provider, "bob", "Bob")
    carol = _profile(provider, "carol", "Carol")
    dave = _profile(provider, "dave", "Dave")

    group = provider.create_group("alice", "Beach Crew", "Saturday beach cleanups")
    provider.join_group("bob", group.invite_code)
    provider.join_group("carol", group.invite_code)

    registry = AreaRegistry()
    high = registry.report("dave", -8.65, 115.13, "high", photos_before=["https://img.test/before-high.jpg"],
                           description="Plastic along the tide line", location_hint="Kuta Beach", group_id=group.id)
    low = registry.report("dave", -8.70, 115.20, "low", photos_before=["https://img.test/before-low.jpg"])

    return Seed(alice=alice, bob=bob, carol=carol, dave=dave, group_id=group.id,
                invite_code=group.invite_code, high_area_id=high.id, low_area_id=low.id)


@pytest.fixture
def auth_headers(app):
    """Returns a function building Authorization headers for a user id."""
    def _headers(user_id):
        return {"Authorization": f"Bearer {create_access_token(user_id)}"}
    return _headers
