"""JSON-file persistence for the users service."""
from __future__ import annotations

import json
import os
import tempfile
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

from .ids import generate_id, now_iso
from .models import CreateUserInput, UpdateUserInput, User


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the users database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "db.json").resolve(strict=False)


class UserDatabase:
    """Whole-file JSON store of ``{"users": [...]}``, newest first.

    Every mutation rewrites the file atomically. Concurrent writers from other
    processes are not coordinated; the last write wins.
    """

    def __init__(self, path: Path) -> None:
        _ensure_directory(path)
        self._path = path
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def initialize(self) -> None:
        """Create an empty database file if none exists yet."""

        with self._lock:
            if not self._path.exists():
                self._write({"users": []})

    def _read(self) -> Dict[str, Any]:
        if not self._path.exists():
            return {"users": []}
        with self._path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        if not isinstance(data, dict) or not isinstance(data.get("users"), list):
            raise ValueError(f"Database file {self._path} is malformed")
        return data

    def _write(self, data: Dict[str, Any]) -> None:
        fd, tmp_name = tempfile.mkstemp(dir=self._path.parent, prefix=f".{self._path.name}.")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2)
            os.replace(tmp_name, self._path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise

    def _load_users(self) -> List[User]:
        return [User.from_dict(item) for item in self._read()["users"]]

    def _store_users(self, users: List[User]) -> None:
        self._write({"users": [user.to_dict() for user in users]})

    def list_users(self) -> List[User]:
        with self._lock:
            return self._load_users()

    def get_user(self, user_id: str) -> Optional[User]:
        with self._lock:
            return next((user for user in self._load_users() if user.id == user_id), None)

    def create_user(self, data: CreateUserInput) -> User:
        now = now_iso()
        user = User(
            id=generate_id(),
            full_name=data.full_name,
            role=data.role,
            date_of_birth=data.date_of_birth,
            created_at=now,
            updated_at=now,
        )
        with self._lock:
            users = self._load_users()
            users.insert(0, user)
            self._store_users(users)
        return user

    def update_user(self, user_id: str, changes: UpdateUserInput) -> User:
        with self._lock:
            users = self._load_users()
            for index, existing in enumerate(users):
                if existing.id == user_id:
                    updated = existing.apply(changes, updated_at=now_iso())
                    users[index] = updated
                    self._store_users(users)
                    return updated
        raise KeyError(user_id)

    def delete_user(self, user_id: str) -> None:
        """Delete ``user_id``; unknown ids are ignored."""

        with self._lock:
            users = self._load_users()
            remaining = [user for user in users if user.id != user_id]
            self._store_users(remaining)


__all__ = ["UserDatabase", "resolve_database_path"]
