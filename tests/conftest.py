"""
Shared pytest fixtures for the CRM workflow test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_profile / make_application: factories for test entities
    - owner / admin: a pre-created owning user and administrator
"""

import pytest

from crm_workflow import create_app
from crm_workflow.models import db as _db
from crm_workflow.models.application import Application, ApplicationDocument
from crm_workflow.models.profile import ROLE_ADMIN, ROLE_USER, UserProfile


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


# ── Factories ────────────────────────────────────────────────────────────


@pytest.fixture()
def make_profile():
    """Factory: make_profile(name, role="user", email=None, is_active=True)."""

    def _make(name, role=ROLE_USER, email=None, is_active=True):
        profile = UserProfile(
            name=name,
            role=role,
            email=email or f"{name.lower().replace(' ', '.')}@example.com",
            is_active=is_active,
        )
        _db.session.add(profile)
        _db.session.commit()
        return profile

    return _make


@pytest.fixture()
def make_application():
    """Factory: make_application(owner=None, status="Draft", documents=[(name, mandatory, uploaded)])."""

    def _make(owner=None, status="Draft", documents=(), customer_name="Acme Trading LLC"):
        application = Application(
            customer_name=customer_name,
            customer_email="contact@acme.example.com",
            company="Acme Trading",
            status=status,
            user_id=owner.id if owner else None,
        )
        for name, mandatory, uploaded in documents:
            application.documents.append(ApplicationDocument(
                name=name, is_mandatory=mandatory, is_uploaded=uploaded,
            ))
        _db.session.add(application)
        _db.session.commit()
        return application

    return _make


@pytest.fixture()
def owner(make_profile):
    return make_profile("Olivia Owner", role=ROLE_USER)


@pytest.fixture()
def admin(make_profile):
    return make_profile("Adam Admin", role=ROLE_ADMIN)
