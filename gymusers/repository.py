"""Repositories mediating where the authoritative user list lives."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, List, Optional, Protocol, Sequence

import httpx

from .ids import generate_id, now_iso
from .models import CreateUserInput, UpdateUserInput, User
from .persistence import UsersPersistence
from .validation import ValidationError

logger = logging.getLogger("gymusers.repository")

DEFAULT_TIMEOUT = 10.0


class UsersError(Exception):
    """Base class for failures reported by a users repository."""


class NotFoundError(UsersError, KeyError):
    """The targeted user id does not exist."""

    def __init__(self, user_id: str) -> None:
        super().__init__(user_id)
        self.user_id = user_id

    def __str__(self) -> str:
        return f"User '{self.user_id}' not found"


class TransportError(UsersError):
    """The remote service or its transport failed."""


class UsersRepository(Protocol):
    async def hydrate(self) -> List[User]: ...

    async def create(self, data: CreateUserInput) -> User: ...

    async def update(
        self,
        user_id: str,
        changes: UpdateUserInput,
        current_users: Optional[Sequence[User]] = None,
    ) -> User: ...

    async def remove(self, user_id: str) -> None: ...


def normalize_base_url(base_url: str) -> str:
    cleaned = (base_url or "").strip()
    if not cleaned:
        raise ValueError("API base URL must not be empty")
    return cleaned.rstrip("/")


def _extract_error_message(payload: object, default: str) -> str:
    if isinstance(payload, dict):
        for key in ("message", "detail", "error"):
            value = payload.get(key)
            if isinstance(value, str) and value.strip():
                return value.strip()
    if isinstance(payload, str) and payload.strip():
        return payload.strip()
    return default


class ApiUsersRepository:
    """Talk to the users REST service at ``base_url``.

    A shared :class:`httpx.AsyncClient` may be injected; otherwise a short-lived
    client is opened per call.
    """

    def __init__(
        self,
        base_url: str,
        *,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = DEFAULT_TIMEOUT,
    ) -> None:
        self._base_url = normalize_base_url(base_url)
        self._client = client
        self._timeout = timeout

    @property
    def base_url(self) -> str:
        return self._base_url

    def _url(self, path: str) -> str:
        if not path.startswith("/"):
            path = "/" + path
        return f"{self._base_url}{path}"

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[httpx.AsyncClient]:
        if self._client is not None:
            yield self._client
            return
        async with httpx.AsyncClient(timeout=self._timeout) as client:
            yield client

    async def _request(self, method: str, path: str, *, json: Any = None) -> Any:
        try:
            async with self._session() as client:
                response = await client.request(method, self._url(path), json=json)
        except httpx.HTTPError as exc:
            raise TransportError(f"Failed to contact users API: {exc}") from exc

        try:
            parsed = response.json()
        except ValueError:
            parsed = None

        if response.status_code >= 400:
            detail = parsed.get("detail") if isinstance(parsed, dict) else parsed
            message = _extract_error_message(
                detail, f"Users API request failed with status {response.status_code}"
            )
            if response.status_code == 400:
                issues = detail.get("issues") if isinstance(detail, dict) else None
                raise ValidationError(message, issues if isinstance(issues, list) else None)
            if response.status_code == 404:
                raise NotFoundError(path.rsplit("/", 1)[-1])
            raise TransportError(message)

        if parsed is None:
            raise TransportError("Users API returned an invalid response")
        return parsed

    @staticmethod
    def _parse_user(payload: Any) -> User:
        if not isinstance(payload, dict):
            raise TransportError("Users API returned an unexpected user payload")
        try:
            return User.from_dict(payload)
        except (TypeError, ValueError) as exc:
            raise TransportError(f"Users API returned an invalid user: {exc}") from exc

    async def hydrate(self) -> List[User]:
        try:
            payload = await self._request("GET", "/users")
            if not isinstance(payload, list):
                raise TransportError("Users API returned an unexpected collection payload")
            return [self._parse_user(item) for item in payload]
        except UsersError as exc:
            logger.warning("Hydration from %s failed: %s", self._base_url, exc)
            return []

    async def create(self, data: CreateUserInput) -> User:
        payload = await self._request("POST", "/users", json=data.to_payload())
        return self._parse_user(payload)

    async def update(
        self,
        user_id: str,
        changes: UpdateUserInput,
        current_users: Optional[Sequence[User]] = None,
    ) -> User:
        payload = await self._request("PUT", f"/users/{user_id}", json=changes.to_payload())
        return self._parse_user(payload)

    async def remove(self, user_id: str) -> None:
        await self._request("DELETE", f"/users/{user_id}")


class LocalUsersRepository:
    """Manufacture records on this device; durability is the persistence adapter's job."""

    def __init__(self, persistence: UsersPersistence) -> None:
        self._persistence = persistence

    async def hydrate(self) -> List[User]:
        return await self._persistence.load()

    async def create(self, data: CreateUserInput) -> User:
        now = now_iso()
        return User(
            id=generate_id(),
            full_name=data.full_name,
            role=data.role,
            date_of_birth=data.date_of_birth,
            created_at=now,
            updated_at=now,
        )

    async def update(
        self,
        user_id: str,
        changes: UpdateUserInput,
        current_users: Optional[Sequence[User]] = None,
    ) -> User:
        existing = next((user for user in current_users or () if user.id == user_id), None)
        if existing is None:
            raise NotFoundError(user_id)
        return existing.apply(changes, updated_at=now_iso())

    async def remove(self, user_id: str) -> None:
        # Removal is realised by the store's reducer and the save that follows it.
        return None


__all__ = [
    "ApiUsersRepository",
    "LocalUsersRepository",
    "NotFoundError",
    "TransportError",
    "UsersError",
    "UsersRepository",
    "normalize_base_url",
]
