"""Typed exceptions for auth failures."""


class AuthError(Exception):
    """Base class for authentication errors."""


class SessionExpiredError(AuthError):
    """Session is missing, expired or malformed; the user must sign in again."""
