from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from gymusers.persistence import (
    DEFAULT_STORAGE_KEY,
    AsyncFileStorage,
    AsyncStoragePersistence,
    JSONFileStorage,
    MemoryStorage,
    StoragePersistence,
    decode_users,
    encode_users,
)

from conftest import make_user

pytestmark = pytest.mark.anyio


class ExplodingStorage:
    def get_item(self, key: str):
        raise OSError("disk on fire")

    def set_item(self, key: str, value: str) -> None:
        raise OSError("disk on fire")


async def test_memory_storage_persists_full_list_under_default_key() -> None:
    storage = MemoryStorage()
    persistence = StoragePersistence(storage)
    users = [make_user("u1"), make_user("u2", "Jane Smith")]

    await persistence.save(users)

    assert json.loads(storage.get_item(DEFAULT_STORAGE_KEY))[1]["fullName"] == "Jane Smith"
    assert await persistence.load() == users


async def test_missing_blob_loads_as_empty_list() -> None:
    assert await StoragePersistence(MemoryStorage()).load() == []


@pytest.mark.parametrize("blob", ["not json", '{"users": []}', '[{"id": "u1"}]'])
async def test_corrupt_blob_loads_as_empty_list(blob: str, caplog: pytest.LogCaptureFixture) -> None:
    persistence = StoragePersistence(MemoryStorage({DEFAULT_STORAGE_KEY: blob}))

    with caplog.at_level(logging.WARNING, logger="gymusers.persistence"):
        assert await persistence.load() == []

    assert "Failed to load users" in caplog.text


async def test_storage_errors_never_reach_the_caller() -> None:
    persistence = StoragePersistence(ExplodingStorage(), key="custom")

    assert await persistence.load() == []
    await persistence.save([make_user("u1")])


async def test_json_file_storage_keeps_other_keys(tmp_path: Path) -> None:
    path = tmp_path / "nested" / "storage.json"
    storage = JSONFileStorage(path)
    storage.set_item("other", "value")

    persistence = StoragePersistence(storage)
    await persistence.save([make_user("u1")])

    assert json.loads(path.read_text())["other"] == "value"
    assert [user.id for user in await StoragePersistence(JSONFileStorage(path)).load()] == ["u1"]
    assert list(path.parent.glob(".storage.json.*")) == []


async def test_json_file_storage_recovers_from_unreadable_file(tmp_path: Path) -> None:
    path = tmp_path / "storage.json"
    path.write_text("[1, 2, 3]")
    persistence = StoragePersistence(JSONFileStorage(path))

    assert await persistence.load() == []
    await persistence.save([make_user("u1")])

    assert [user.id for user in await persistence.load()] == ["u1"]


async def test_async_file_storage_round_trip(tmp_path: Path) -> None:
    persistence = AsyncStoragePersistence(lambda: AsyncFileStorage(tmp_path / "device"))
    users = [make_user("u1", date_of_birth="1990-05-01T00:00:00.000Z")]

    await persistence.save(users)

    assert (tmp_path / "device" / "gf_users.json").exists()
    assert await persistence.load() == users


async def test_async_storage_factory_is_lazy_and_retried(tmp_path: Path) -> None:
    calls = []

    async def factory():
        calls.append(len(calls))
        if len(calls) == 1:
            raise ImportError("storage module unavailable")
        return AsyncFileStorage(tmp_path)

    persistence = AsyncStoragePersistence(factory)
    assert calls == []

    assert await persistence.load() == []
    await persistence.save([make_user("u1")])
    assert [user.id for user in await persistence.load()] == ["u1"]
    assert len(calls) == 2


def test_encode_decode_preserve_order() -> None:
    users = [make_user("b"), make_user("a")]
    assert decode_users(encode_users(users)) == users
    assert decode_users(None) == []
