from __future__ import annotations

import sys
from pathlib import Path
from typing import Iterator

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from gymusers.models import User, UserRole


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


def make_user(
    user_id: str,
    full_name: str = "John Smith",
    *,
    role: UserRole = UserRole.STAFF,
    updated_at: str = "2024-01-01T00:00:00.000Z",
    created_at: str = "2024-01-01T00:00:00.000Z",
    date_of_birth: str | None = None,
) -> User:
    return User(
        id=user_id,
        full_name=full_name,
        role=role,
        created_at=created_at,
        updated_at=updated_at,
        date_of_birth=date_of_birth,
    )


@pytest.fixture()
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[Path]:
    for name in (
        "GYMUSERS_API_URL",
        "GYMUSERS_STORAGE_PATH",
        "GYMUSERS_STORAGE_KEY",
        "GYMUSERS_STORAGE_BACKEND",
        "GYMUSERS_REVALIDATION",
        "GYMUSERS_POLL_INTERVAL",
        "GYMUSERS_HEALTH_INTERVAL",
        "GYMUSERS_REQUEST_TIMEOUT",
        "GYMUSERS_DB_PATH",
    ):
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("GYMUSERS_CONFIG", str(tmp_path / "missing-client.yaml"))
    yield tmp_path
