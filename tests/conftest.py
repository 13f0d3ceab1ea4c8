"""
Shared pytest fixtures for the KPI review engine test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - evidence_store: Fake evidence store installed on the app (autouse)
    - client: Flask test client (function-scoped)
    - make_user / creator / assignee / outsider: User rows
    - make_kpi: KPI factory going through the authoring service
    - auth_headers: Bearer headers for a user
"""

import pytest

from kpi_review import create_app
from kpi_review.integrations.evidence_store import BaseEvidenceStore, StoreError, StoreTimeout
from kpi_review.models import db as _db
from kpi_review.models.auth import User
from kpi_review.services import kpi_service
from kpi_review.services.access import Caller
from kpi_review.services.jwt_service import generate_access_token


class FakeEvidenceStore(BaseEvidenceStore):
    """In-memory evidence store.

    ``fail_at`` / ``timeout_at`` make the n-th ``store`` call (0-based) raise
    StoreError / StoreTimeout.
    """

    def __init__(self):
        self.calls = 0
        self.stored = []
        self.discarded = []
        self.timeouts = []
        self.fail_at = None
        self.timeout_at = None

    def store(self, file, *, timeout=None):
        index = self.calls
        self.calls += 1
        self.timeouts.append(timeout)
        if self.timeout_at is not None and index >= self.timeout_at:
            raise StoreTimeout("store timed out")
        if self.fail_at is not None and index >= self.fail_at:
            raise StoreError("store unavailable")
        url = f"https://evidence.test/{len(self.stored)}-{file.filename}"
        self.stored.append(url)
        return url

    def discard(self, url):
        self.discarded.append(url)
        self.stored.remove(url)


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


@pytest.fixture(autouse=True)
def evidence_store(app):
    """Replace the configured evidence store with an in-memory fake."""
    fake = FakeEvidenceStore()
    app.extensions["evidence_store"] = fake
    yield fake
    app.extensions.pop("evidence_store", None)


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Users & KPIs ─────────────────────────────────────────────────────────


@pytest.fixture()
def make_user():
    counter = {"n": 0}

    def _make(name=None, role="staff"):
        counter["n"] += 1
        n = counter["n"]
        user = User(email=f"user{n}@uni.test", full_name=name or f"User {n}", role=role)
        _db.session.add(user)
        _db.session.commit()
        return user

    return _make


@pytest.fixture()
def creator(make_user):
    return make_user("Supervisor Sam", role="head_of_department")


@pytest.fixture()
def assignee(make_user):
    return make_user("Lecturer Lee", role="lecturer")


@pytest.fixture()
def outsider(make_user):
    return make_user("Other Olu", role="lecturer")


def _caller(user, *roles):
    return Caller(user_id=user.id, roles=tuple(roles))


@pytest.fixture()
def as_caller():
    """Build a service-layer Caller for a user."""
    return _caller


SINGLE = {
    "title": "Publish a journal article",
    "action": "Submit manuscript",
    "indicator": "Accepted paper",
    "performance_target": "1 paper",
    "priority": "High",
    "timeline": "2025-06-30",
}

RECURRING = {
    "title": "Monthly teaching report",
    "indicator": "Report filed",
    "priority": "Medium",
    "recurrence_pattern": "Monthly",
}


@pytest.fixture()
def make_kpi(creator, assignee):
    """Create a KPI via the service; returns its serialized dict."""

    def _make(deliverables=None, assignees=None, roles=None, owner=None):
        owner = owner or creator
        data = {
            "name": "Research output",
            "description": "Annual research KPI",
            "assignee_ids": [u.id for u in (assignees if assignees is not None else [assignee])],
            "assigned_roles": roles or [],
            "deliverables": deliverables if deliverables is not None else [dict(SINGLE), dict(RECURRING)],
        }
        return kpi_service.create_kpi(_caller(owner), data)

    return _make


@pytest.fixture()
def auth_headers():
    def _headers(user, *roles):
        token = generate_access_token(user.id, list(roles))
        return {"Authorization": f"Bearer {token}"}

    return _headers
