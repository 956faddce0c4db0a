"""Tests for SessionManager - session token lifecycle."""

from datetime import timedelta

import pytest

from auth.config import AuthConfig
from auth.exceptions import SessionExpiredError
from auth.session import SessionManager
from fakes import InMemoryValkey
from utils.timezone import now_utc


@pytest.fixture
def valkey():
    return InMemoryValkey()


@pytest.fixture
def auth_config():
    """Short sessions so the extension threshold is reachable."""
    return AuthConfig(session_expiry_hours=48, session_extend_threshold_hours=24)


@pytest.fixture
def session_manager(valkey, auth_config):
    return SessionManager(valkey, auth_config)


def _backdate(valkey, token, expires_in):
    key = f"session:{token}"
    data = valkey.get_json(key)
    data["expires_at"] = (now_utc() + expires_in).isoformat()
    valkey.set_json(key, data)


class TestCreateSession:

    def test_returns_session_with_token(self, session_manager, test_user_id):
        session = session_manager.create_session(test_user_id)

        assert len(session.token) > 20
        assert session.user_id == test_user_id

    def test_stored_with_ttl(self, session_manager, valkey, test_user_id):
        session = session_manager.create_session(test_user_id)

        ttl = valkey.ttls[f"session:{session.token}"]
        assert 47 * 3600 < ttl <= 48 * 3600

    def test_tokens_are_unique(self, session_manager, test_user_id):
        assert session_manager.create_session(test_user_id).token != session_manager.create_session(test_user_id).token


class TestValidateSession:
    """Test session validation."""

    def test_valid_session_returns_session(self, session_manager, test_user_id):
        created = session_manager.create_session(test_user_id)

        validated = session_manager.validate_session(created.token)

        assert validated.user_id == test_user_id
        assert validated.token == created.token

    def test_unknown_token_raises(self, session_manager):
        with pytest.raises(SessionExpiredError):
            session_manager.validate_session("nonexistent-token")

    def test_revoked_session_raises(self, session_manager, test_user_id):
        session = session_manager.create_session(test_user_id)
        session_manager.revoke_session(session.token)

        with pytest.raises(SessionExpiredError):
            session_manager.validate_session(session.token)

    def test_expired_session_is_deleted(self, session_manager, valkey, test_user_id):
        session = session_manager.create_session(test_user_id)
        _backdate(valkey, session.token, timedelta(minutes=-1))

        with pytest.raises(SessionExpiredError):
            session_manager.validate_session(session.token)

        assert f"session:{session.token}" not in valkey.values

    def test_corrupt_session_is_deleted(self, session_manager, valkey):
        valkey.set_json("session:bad", {"user_id": "not-a-uuid"})

        with pytest.raises(SessionExpiredError, match="invalid"):
            session_manager.validate_session("bad")

        assert "session:bad" not in valkey.values


class TestExtension:

    def test_near_expiry_session_is_extended(self, session_manager, valkey, test_user_id):
        session = session_manager.create_session(test_user_id)
        _backdate(valkey, session.token, timedelta(hours=2))

        validated = session_manager.validate_session(session.token)

        assert validated.expires_at > now_utc() + timedelta(hours=47)

    def test_fresh_session_is_not_extended(self, session_manager, test_user_id):
        session = session_manager.create_session(test_user_id)

        validated = session_manager.validate_session(session.token)

        assert validated.expires_at == session.expires_at

    def test_extension_can_be_disabled(self, valkey, test_user_id):
        manager = SessionManager(valkey, AuthConfig(session_expiry_hours=48, session_extend_on_activity=False))
        session = manager.create_session(test_user_id)
        _backdate(valkey, session.token, timedelta(hours=2))

        validated = manager.validate_session(session.token)

        assert validated.expires_at < now_utc() + timedelta(hours=3)


def test_revoke_unknown_token_is_safe(session_manager):
    session_manager.revoke_session("never-issued")
