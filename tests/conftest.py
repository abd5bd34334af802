"""
Shared pytest fixtures for the Reference Portal test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - make_user / make_template: factories for workflow fixtures
"""

from datetime import datetime, timedelta, timezone

import pytest

from refportal import create_app
from refportal.models import db as _db
from refportal.models.auth import User
from refportal.models.form import FormTemplate
from refportal.services.dispatch import reset_failures


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
        reset_failures()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()
        reset_failures()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Factories ────────────────────────────────────────────────────────────


_user_seq = {"n": 0}


def _make_user(name, *, lab="Physics Lab", designation="Scientist", role="user", status="active"):
    _user_seq["n"] += 1
    user = User(
        email=f"{name.lower().replace(' ', '.')}.{_user_seq['n']}@refportal.test",
        full_name=name,
        designation=designation,
        lab_name=lab,
        role=role,
        status=status,
    )
    _db.session.add(user)
    _db.session.commit()
    return user


def _make_template(owner, *, title="Annual Lab Report", allow_delegation=True,
                   allow_multiple_submissions=False, **kwargs):
    template = FormTemplate(
        title=title,
        description="Yearly reporting form",
        fields=[{"id": "f1", "type": "text", "label": "Summary"}],
        created_by=owner.id,
        shared_with_labs=kwargs.pop("shared_with_labs", []),
        shared_with_users=kwargs.pop("shared_with_users", []),
        allow_delegation=allow_delegation,
        allow_multiple_submissions=allow_multiple_submissions,
        deadline=kwargs.pop("deadline", datetime.now(timezone.utc) + timedelta(days=14)),
        **kwargs,
    )
    _db.session.add(template)
    _db.session.commit()
    return template


@pytest.fixture()
def make_user():
    return _make_user


@pytest.fixture()
def make_template():
    return _make_template


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def distributor():
    """Template owner; distributes forms across labs."""
    return _make_user("Dana Distributor", lab="Admin Office", designation="Registrar", role="admin")


@pytest.fixture()
def director():
    """Head of Physics Lab with approval authority."""
    return _make_user("Alex Director", designation="Director")


@pytest.fixture()
def scientist():
    return _make_user("Blake Scientist")


@pytest.fixture()
def assistant():
    return _make_user("Casey Assistant", designation="Research Assistant")


@pytest.fixture()
def template(distributor):
    return _make_template(distributor)
