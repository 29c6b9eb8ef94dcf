"""Durable local storage of the full user list.

Both adapters fail soft: a broken or missing blob loads as an empty list and a
failed write is logged and dropped. Callers never observe persistence errors.
"""

from __future__ import annotations

import inspect
import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Optional, Protocol, Sequence, Union

import anyio

from .models import User

logger = logging.getLogger("gymusers.persistence")

DEFAULT_STORAGE_KEY = "gf_users"


class UsersPersistence(Protocol):
    async def load(self) -> List[User]: ...

    async def save(self, users: Sequence[User]) -> None: ...


class KeyValueStorage(Protocol):
    """Synchronous string key-value storage, in the manner of ``localStorage``."""

    def get_item(self, key: str) -> Optional[str]: ...

    def set_item(self, key: str, value: str) -> None: ...


class AsyncKeyValueStorage(Protocol):
    """Asynchronous string key-value storage, in the manner of device storage."""

    async def get_item(self, key: str) -> Optional[str]: ...

    async def set_item(self, key: str, value: str) -> None: ...


StorageFactory = Callable[[], Union[AsyncKeyValueStorage, Awaitable[AsyncKeyValueStorage]]]


def encode_users(users: Sequence[User]) -> str:
    return json.dumps([user.to_dict() for user in users])


def decode_users(raw: Optional[str]) -> List[User]:
    if not raw:
        return []
    data = json.loads(raw)
    if not isinstance(data, list):
        raise ValueError("Stored users blob must be a JSON array")
    return [User.from_dict(item) for item in data]


class MemoryStorage:
    """Process-local storage; contents vanish with the object."""

    def __init__(self, initial: Optional[Dict[str, str]] = None) -> None:
        self._items: Dict[str, str] = dict(initial or {})

    def get_item(self, key: str) -> Optional[str]:
        return self._items.get(key)

    def set_item(self, key: str, value: str) -> None:
        self._items[key] = value


class JSONFileStorage:
    """Key-value storage backed by a single JSON object on disk."""

    def __init__(self, path: Path) -> None:
        self._path = path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> Dict[str, str]:
        if not self._path.exists():
            return {}
        with self._path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        if not isinstance(data, dict):
            raise ValueError(f"Storage file {self._path} does not contain a JSON object")
        return data

    def get_item(self, key: str) -> Optional[str]:
        with self._lock:
            value = self._read().get(key)
        return value if isinstance(value, str) else None

    def set_item(self, key: str, value: str) -> None:
        with self._lock:
            try:
                data = self._read()
            except ValueError:
                logger.warning("Discarding unreadable storage file %s", self._path)
                data = {}
            data[key] = value
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=f".{self._path.name}.")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as handle:
                    json.dump(data, handle)
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise


class AsyncFileStorage:
    """One file per key inside ``directory``, read and written asynchronously."""

    def __init__(self, directory: Path) -> None:
        self._directory = anyio.Path(directory)

    def _file_for(self, key: str) -> anyio.Path:
        safe_key = "".join(char if char.isalnum() or char in "-_." else "_" for char in key)
        return self._directory / f"{safe_key}.json"

    async def get_item(self, key: str) -> Optional[str]:
        target = self._file_for(key)
        if not await target.exists():
            return None
        return await target.read_text(encoding="utf-8")

    async def set_item(self, key: str, value: str) -> None:
        await self._directory.mkdir(parents=True, exist_ok=True)
        target = self._file_for(key)
        staging = target.with_name(f".{target.name}.tmp")
        await staging.write_text(value, encoding="utf-8")
        await staging.replace(target)


class StoragePersistence:
    """Adapter over a synchronous :class:`KeyValueStorage`."""

    def __init__(self, storage: KeyValueStorage, key: str = DEFAULT_STORAGE_KEY) -> None:
        self._storage = storage
        self._key = key

    @property
    def key(self) -> str:
        return self._key

    async def load(self) -> List[User]:
        try:
            return decode_users(self._storage.get_item(self._key))
        except Exception as exc:
            logger.warning("Failed to load users from storage key %s: %s", self._key, exc)
            return []

    async def save(self, users: Sequence[User]) -> None:
        try:
            self._storage.set_item(self._key, encode_users(users))
        except Exception as exc:
            logger.warning("Failed to save users to storage key %s: %s", self._key, exc)


class AsyncStoragePersistence:
    """Adapter over an asynchronous storage resolved lazily from ``storage_factory``.

    The factory runs on first use rather than at construction time, so a host can
    wire in a platform storage module that is only importable at runtime. A
    failing factory is retried on the next call.
    """

    def __init__(self, storage_factory: StorageFactory, key: str = DEFAULT_STORAGE_KEY) -> None:
        self._storage_factory = storage_factory
        self._storage: Optional[AsyncKeyValueStorage] = None
        self._key = key

    @property
    def key(self) -> str:
        return self._key

    async def _resolve_storage(self) -> AsyncKeyValueStorage:
        if self._storage is None:
            candidate = self._storage_factory()
            if inspect.isawaitable(candidate):
                candidate = await candidate
            self._storage = candidate
        return self._storage

    async def load(self) -> List[User]:
        try:
            storage = await self._resolve_storage()
            return decode_users(await storage.get_item(self._key))
        except Exception as exc:
            logger.warning("Failed to load users from async storage key %s: %s", self._key, exc)
            return []

    async def save(self, users: Sequence[User]) -> None:
        try:
            storage = await self._resolve_storage()
            await storage.set_item(self._key, encode_users(users))
        except Exception as exc:
            logger.warning("Failed to save users to async storage key %s: %s", self._key, exc)


__all__ = [
    "AsyncFileStorage",
    "AsyncKeyValueStorage",
    "AsyncStoragePersistence",
    "DEFAULT_STORAGE_KEY",
    "JSONFileStorage",
    "KeyValueStorage",
    "MemoryStorage",
    "StoragePersistence",
    "UsersPersistence",
    "decode_users",
    "encode_users",
]
