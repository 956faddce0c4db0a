"""Session token lifecycle.

Sessions live in Valkey as JSON under "session:<token>" with a TTL matching
their expiry. Tokens are secrets.token_urlsafe(32).
"""

import secrets
from datetime import timedelta
from uuid import UUID

from auth.config import AuthConfig
from auth.exceptions import SessionExpiredError
from auth.types import Session
from clients.valkey_client import ValkeyClient
from utils.timezone import now_utc, parse_iso


class SessionManager:
    """Creates, validates, extends and revokes sessions."""

    KEY_PREFIX = "session:"

    def __init__(self, valkey: ValkeyClient, config: AuthConfig):
        self._valkey = valkey
        self._config = config

    def _key(self, token: str) -> str:
        return f"{self.KEY_PREFIX}{token}"

    def _store(self, session: Session) -> None:
        ttl = int((session.expires_at - now_utc()).total_seconds())
        self._valkey.set_json(
            self._key(session.token),
            {
                "user_id": str(session.user_id),
                "created_at": session.created_at.isoformat(),
                "expires_at": session.expires_at.isoformat(),
                "last_activity_at": session.last_activity_at.isoformat(),
            },
            expire_seconds=max(ttl, 1),
        )

    def create_session(self, user_id: UUID) -> Session:
        """Issue a new session for a user."""
        now = now_utc()
        session = Session(
            token=secrets.token_urlsafe(32),
            user_id=user_id,
            created_at=now,
            expires_at=now + timedelta(hours=self._config.session_expiry_hours),
            last_activity_at=now,
        )
        self._store(session)
        return session

    def validate_session(self, token: str) -> Session:
        """Return the session for a token, extending it if it is close to expiry.

        Raises SessionExpiredError if the token is unknown, expired or corrupt.
        """
        data = self._valkey.get_json(self._key(token))
        if data is None:
            raise SessionExpiredError("Session not found or expired")

        try:
            session = Session(
                token=token,
                user_id=UUID(data["user_id"]),
                created_at=parse_iso(data["created_at"]),
                expires_at=parse_iso(data["expires_at"]),
                last_activity_at=parse_iso(data["last_activity_at"]),
            )
        except (KeyError, ValueError) as exc:
            self._valkey.delete(self._key(token))
            raise SessionExpiredError("Session data is invalid") from exc

        now = now_utc()
        if now > session.expires_at:
            self._valkey.delete(self._key(token))
            raise SessionExpiredError("Session expired")

        if self._should_extend(session):
            session = session.model_copy(update={
                "expires_at": now + timedelta(hours=self._config.session_expiry_hours),
                "last_activity_at": now,
            })
            self._store(session)

        return session

    def _should_extend(self, session: Session) -> bool:
        if not self._config.session_extend_on_activity:
            return False
        remaining = session.expires_at - now_utc()
        return remaining < timedelta(hours=self._config.session_extend_threshold_hours)

    def revoke_session(self, token: str) -> None:
        """Revoke a session (logout). Safe to call with an unknown token."""
        self._valkey.delete(self._key(token))
