"""API test fixtures: authenticated TestClient over in-memory billing services."""

from datetime import timedelta
from unittest.mock import Mock

import pytest
from starlette.testclient import TestClient

from api.app import create_app
from auth.session import SessionManager
from auth.types import Session
from utils.timezone import now_utc


@pytest.fixture
def services(store, gateway, notification_service, invoice_service, milestone_service,
             reconciliation_service, billing):
    """Same shape build_services returns, backed by the shared test doubles."""
    return {
        "store": store,
        "gateway": gateway,
        "notification": notification_service,
        "invoice": invoice_service,
        "milestone": milestone_service,
        "reconciliation": reconciliation_service,
        "billing": billing,
    }


@pytest.fixture
def session_manager(test_user_id):
    manager = Mock(spec=SessionManager)
    now = now_utc()
    manager.validate_session.return_value = Session(
        token="test-session-token",
        user_id=test_user_id,
        created_at=now,
        expires_at=now + timedelta(hours=1),
        last_activity_at=now,
    )
    return manager


@pytest.fixture
def app(services, session_manager):
    return create_app(services, session_manager)


@pytest.fixture
def anon_client(app):
    """No session cookie."""
    return TestClient(app, raise_server_exceptions=False)


@pytest.fixture
def client(app):
    """Authenticated as the test user."""
    test_client = TestClient(app, raise_server_exceptions=False)
    test_client.cookies.set("session_token", "test-session-token")
    return test_client
