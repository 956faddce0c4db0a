"""Propagate the acting user's identity through the call stack using contextvars."""

from contextvars import ContextVar
from uuid import UUID
from contextlib import contextmanager

_current_user_id: ContextVar[UUID | None] = ContextVar("current_user_id", default=None)


def get_current_user_id_or_none() -> UUID | None:
    """
    Get current user ID, or None for system callers.

    Webhook reconciliation runs without a user; audit entries it writes
    are attributed to no one.
    """
    return _current_user_id.get()


def set_current_user_id(user_id: UUID) -> None:
    """Set current user ID in context. Called by auth middleware."""
    _current_user_id.set(user_id)


def clear_current_user_id() -> None:
    """
    Clear user context.

    Must be called in a finally block to prevent context leakage.
    """
    _current_user_id.set(None)


@contextmanager
def user_context(user_id: UUID):
    """
    Temporarily act as `user_id`.

    Example:
        with user_context(manager_id):
            milestone_service.complete(milestone_id)
    """
    previous = _current_user_id.get()
    set_current_user_id(user_id)
    try:
        yield
    finally:
        if previous is None:
            clear_current_user_id()
        else:
            set_current_user_id(previous)
