"""Gym users: a synchronized client store and the REST service it talks to."""

from __future__ import annotations

from typing import Any

from .models import CreateUserInput, UpdateUserInput, User, UserRole
from .repository import NotFoundError, TransportError, UsersError
from .store import UsersState, UsersStore, have_users_changed
from .validation import ValidationError


def create_app(*args: Any, **kwargs: Any):
    """Factory function that returns the users REST + event-stream application."""

    from .service import create_app as _create_app

    return _create_app(*args, **kwargs)


__all__ = [
    "CreateUserInput",
    "NotFoundError",
    "TransportError",
    "UpdateUserInput",
    "User",
    "UserRole",
    "UsersError",
    "UsersState",
    "UsersStore",
    "ValidationError",
    "create_app",
    "have_users_changed",
]
