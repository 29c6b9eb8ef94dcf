"""Store against the real service over an in-process ASGI transport."""

from __future__ import annotations

import json
from pathlib import Path

import httpx
import pytest

from gymusers.database import UserDatabase
from gymusers.events import EventBroker
from gymusers.models import CreateUserInput, UpdateUserInput, UserRole
from gymusers.repository import ApiUsersRepository, NotFoundError
from gymusers.service import create_app
from gymusers.store import UsersStore
from gymusers.validation import ValidationError

pytestmark = pytest.mark.anyio


@pytest.fixture()
def database(tmp_path: Path) -> UserDatabase:
    return UserDatabase(tmp_path / "db.json")


@pytest.fixture()
def broker() -> EventBroker:
    return EventBroker()


@pytest.fixture()
async def client(database: UserDatabase, broker: EventBroker):
    app = create_app(database=database, broker=broker)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as http:
        yield http


def _store(client: httpx.AsyncClient) -> UsersStore:
    return UsersStore(ApiUsersRepository("http://testserver", client=client))


async def test_mutations_reach_the_service(client, database: UserDatabase, broker: EventBroker) -> None:
    with broker.subscribe() as events:
        async with _store(client) as store:
            await store.wait_until_hydrated()
            assert store.users == ()

            john = await store.create(CreateUserInput("John Smith", UserRole.STAFF))
            assert [user.id for user in database.list_users()] == [john.id]

            jane = await store.update(john.id, UpdateUserInput(full_name="Jane Smith"))
            assert jane.created_at == john.created_at
            assert database.get_user(john.id).full_name == "Jane Smith"
            assert store.users == (jane,)

            await store.remove(john.id)
            assert store.users == ()
            assert database.list_users() == []

        actions = [json.loads(events.receive_nowait().data)["action"] for _ in range(3)]

    assert actions == ["created", "updated", "deleted"]


async def test_service_validation_surfaces_as_validation_error(client) -> None:
    async with _store(client) as store:
        await store.wait_until_hydrated()
        before = store.state

        with pytest.raises(ValidationError) as excinfo:
            await store.create(CreateUserInput("Jo", UserRole.MEMBER))

        assert [issue["field"] for issue in excinfo.value.issues] == ["fullName"]
        assert store.state is before


async def test_unknown_user_surfaces_as_not_found(client) -> None:
    async with _store(client) as store:
        await store.wait_until_hydrated()

        with pytest.raises(NotFoundError):
            await store.update("ghost", UpdateUserInput(full_name="Jane Smith"))


async def test_second_store_catches_up_on_revalidation(client) -> None:
    async with _store(client) as first, _store(client) as second:
        await first.wait_until_hydrated()
        await second.wait_until_hydrated()

        created = await first.create(CreateUserInput("John Smith", UserRole.MEMBER))
        assert second.users == ()

        assert await second.revalidate() is True
        assert second.users == (created,)
        assert await second.revalidate() is False
