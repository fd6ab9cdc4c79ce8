"""
Shared pytest fixtures for the TestPilot test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - project: Pre-created Project via the API
    - local_llm / jira_settings / ado_settings: integration payloads
"""

import pytest

from testpilot import create_app
from testpilot.models import db as _db


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
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def project(client):
    """Create and return a test Project via the API."""
    res = client.post("/api/v1/projects", json={"name": "Checkout", "user": "qa-lead"})
    assert res.status_code == 201
    return res.get_json()


@pytest.fixture()
def local_llm():
    """Integration payload selecting the offline stub completion provider."""
    return {"llm": {"provider": "local"}}


@pytest.fixture()
def jira_settings():
    return {
        "jira": {
            "jiraUrl": "https://acme.atlassian.net",
            "email": "qa@acme.test",
            "apiToken": "jira-token",
            "projectKey": "SHOP",
        },
    }


@pytest.fixture()
def ado_settings():
    return {
        "azure_devops": {
            "organizationUrl": "https://dev.azure.com/acme",
            "projectName": "Shop",
            "personalAccessToken": "ado-pat",
        },
    }
