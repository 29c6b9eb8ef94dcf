"""HTTP API exposing the users collection and its change stream."""

from __future__ import annotations

import json
import logging
import os
from typing import Any, AsyncIterator, Dict, List, Optional

import anyio
from fastapi import Body, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from .database import UserDatabase, resolve_database_path
from .events import EventBroker
from .models import User, UserRole
from .sse import KEEPALIVE_COMMENT, ServerSentEvent
from .triggers import USERS_UPDATED_EVENT
from .validation import ValidationError, parse_create_user, parse_update_user

logger = logging.getLogger("gymusers.service")

DEFAULT_KEEPALIVE = 15.0


class UserResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str
    full_name: str = Field(..., alias="fullName")
    role: UserRole
    date_of_birth: Optional[str] = Field(default=None, alias="dateOfBirth")
    created_at: str = Field(..., alias="createdAt")
    updated_at: str = Field(..., alias="updatedAt")

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            full_name=user.full_name,
            role=user.role,
            date_of_birth=user.date_of_birth,
            created_at=user.created_at,
            updated_at=user.updated_at,
        )


class OkResponse(BaseModel):
    ok: bool = True


def _validation_error(exc: ValidationError) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={"message": exc.message, "issues": exc.issues},
    )


async def stream_events(broker: EventBroker, *, keepalive: float) -> AsyncIterator[str]:
    """Yield the encoded event stream for one subscriber."""

    with broker.subscribe() as events:
        yield ServerSentEvent(event="connected", data=json.dumps({"ok": True})).encode()
        while True:
            message: Optional[ServerSentEvent] = None
            with anyio.move_on_after(keepalive):
                try:
                    message = await events.receive()
                except (anyio.EndOfStream, anyio.ClosedResourceError):
                    return
            if message is None:
                yield KEEPALIVE_COMMENT
            else:
                yield message.encode()


def register_routes(
    app: FastAPI,
    database: UserDatabase,
    broker: EventBroker,
    *,
    keepalive: float,
) -> None:
    def _notify(action: str, user_id: str) -> None:
        broker.publish(USERS_UPDATED_EVENT, json.dumps({"action": action, "id": user_id}))

    @app.exception_handler(RequestValidationError)
    async def _handle_request_validation(request: Request, exc: RequestValidationError) -> JSONResponse:
        # Unparseable bodies answer like any other invalid payload.
        issues = []
        for error in exc.errors():
            field = ".".join(str(part) for part in error.get("loc", ()) if part != "body") or "body"
            issues.append({"field": field, "message": str(error.get("msg", "Invalid value"))})
        logger.debug("Rejected request to %s: %s", request.url.path, issues)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"detail": {"message": "Invalid user payload", "issues": issues}},
        )

    @app.get("/health")
    async def healthcheck() -> Dict[str, bool]:
        return {"ok": True}

    @app.get("/users", response_model=List[UserResponse], response_model_exclude_none=True)
    async def list_users() -> List[UserResponse]:
        users = await anyio.to_thread.run_sync(database.list_users)
        return [UserResponse.from_user(user) for user in users]

    @app.post("/users", response_model=UserResponse, response_model_exclude_none=True)
    async def create_user(payload: Any = Body(default=None)) -> UserResponse:
        try:
            data = parse_create_user(payload)
        except ValidationError as exc:
            raise _validation_error(exc) from exc

        user = await anyio.to_thread.run_sync(database.create_user, data)
        logger.info("Created user %s (%s)", user.id, user.role.value)
        _notify("created", user.id)
        return UserResponse.from_user(user)

    @app.put("/users/{user_id}", response_model=UserResponse, response_model_exclude_none=True)
    async def update_user(user_id: str, payload: Any = Body(default=None)) -> UserResponse:
        try:
            changes = parse_update_user(payload if payload is not None else {})
        except ValidationError as exc:
            raise _validation_error(exc) from exc

        try:
            user = await anyio.to_thread.run_sync(database.update_user, user_id, changes)
        except KeyError as exc:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail={"message": "Not found"}) from exc

        logger.info("Updated user %s", user.id)
        _notify("updated", user.id)
        return UserResponse.from_user(user)

    @app.delete("/users/{user_id}", response_model=OkResponse)
    async def delete_user(user_id: str) -> OkResponse:
        await anyio.to_thread.run_sync(database.delete_user, user_id)
        logger.info("Deleted user %s", user_id)
        _notify("deleted", user_id)
        return OkResponse()

    @app.get("/events")
    async def events() -> StreamingResponse:
        return StreamingResponse(
            stream_events(broker, keepalive=keepalive),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
        )


def create_app(
    *,
    database: UserDatabase | None = None,
    broker: EventBroker | None = None,
    keepalive: float = DEFAULT_KEEPALIVE,
) -> FastAPI:
    """Return the users REST + event-stream application."""

    if database is None:
        database = UserDatabase(resolve_database_path(os.getenv("GYMUSERS_DB_PATH")))
    database.initialize()
    app_broker = broker or EventBroker()

    app = FastAPI(
        title="Gym Users API",
        version="0.1.0",
        description="CRUD service for gym staff and members with change notifications.",
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.database = database
    app.state.broker = app_broker

    register_routes(app, database, app_broker, keepalive=keepalive)
    return app


__all__ = ["DEFAULT_KEEPALIVE", "UserResponse", "create_app", "stream_events"]
