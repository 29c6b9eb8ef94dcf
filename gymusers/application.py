"""Composition of stores and services from :class:`~gymusers.config.Settings`."""
from __future__ import annotations

import os
from typing import Optional

import httpx
from fastapi import FastAPI

from .config import Settings
from .database import UserDatabase, resolve_database_path
from .persistence import (
    AsyncFileStorage,
    AsyncStoragePersistence,
    JSONFileStorage,
    StoragePersistence,
    UsersPersistence,
)
from .repository import ApiUsersRepository, LocalUsersRepository
from .service import DEFAULT_KEEPALIVE, create_app
from .store import UsersStore
from .triggers import LifecycleSignals, build_triggers


def create_persistence(settings: Settings) -> UsersPersistence:
    """Return the local persistence adapter selected by ``storage_backend``.

    ``file`` treats ``storage_path`` as a JSON file; ``async-file`` treats it as
    a directory holding one file per key. Left unset, each backend defaults to
    its own location under ``data/``.
    """

    if settings.storage_backend == "async-file":
        directory = settings.storage_path
        return AsyncStoragePersistence(lambda: AsyncFileStorage(directory), settings.storage_key)
    return StoragePersistence(JSONFileStorage(settings.storage_path), settings.storage_key)


def create_store(
    settings: Settings,
    *,
    signals: Optional[LifecycleSignals] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> UsersStore:
    """Build the one store a session should share between its consumers."""

    if settings.api_base_url:
        repository = ApiUsersRepository(
            settings.api_base_url,
            client=client,
            timeout=settings.request_timeout,
        )
        triggers = build_triggers(
            settings.revalidation,
            settings.api_base_url,
            signals=signals,
            client=client,
            poll_interval=settings.poll_interval,
            health_interval=settings.health_interval,
        )
        return UsersStore(repository, triggers=triggers)

    persistence = create_persistence(settings)
    return UsersStore(LocalUsersRepository(persistence), persistence=persistence)


def create_application(
    *,
    database_path: Optional[str] = None,
    keepalive: float = DEFAULT_KEEPALIVE,
) -> FastAPI:
    """Create the users service backed by the JSON database on disk."""

    db_path = resolve_database_path(database_path or os.getenv("GYMUSERS_DB_PATH"))
    database = UserDatabase(db_path)
    return create_app(database=database, keepalive=keepalive)


__all__ = ["create_application", "create_persistence", "create_store"]
