"""Schema validation for user payloads received from clients or the CLI."""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic import ValidationError as PydanticValidationError

from .models import CreateUserInput, UpdateUserInput, UserRole

FULL_NAME_MIN_LENGTH = 3
FULL_NAME_MAX_LENGTH = 50

_ISO_DATETIME_SHAPE = re.compile(
    r"^(?P<head>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}(?::\d{2})?)"
    r"(?:\.(?P<fraction>\d+))?(?P<offset>Z|[+-]\d{2}:\d{2})$"
)


class ValidationError(ValueError):
    """Raised when user input does not satisfy the user schema."""

    def __init__(self, message: str, issues: Optional[List[Dict[str, str]]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.issues: List[Dict[str, str]] = list(issues or [])

    @classmethod
    def from_pydantic(cls, exc: PydanticValidationError) -> "ValidationError":
        issues = []
        for error in exc.errors(include_url=False):
            field = ".".join(str(part) for part in error.get("loc", ())) or "body"
            issues.append({"field": field, "message": str(error.get("msg", "Invalid value"))})
        return cls("Invalid user payload", issues)

    def __str__(self) -> str:
        if not self.issues:
            return self.message
        details = "; ".join(f"{issue['field']}: {issue['message']}" for issue in self.issues)
        return f"{self.message} ({details})"


def parse_iso_datetime(value: str) -> datetime:
    """Parse an ISO-8601 instant such as ``1990-05-01T00:00:00.000Z``.

    A date and time joined by ``T`` and an explicit offset are required.
    """

    match = _ISO_DATETIME_SHAPE.fullmatch(value.strip())
    if match is None:
        raise ValueError("must be an ISO-8601 date-time string")

    # fromisoformat wants exactly six fraction digits and no "Z" on older Pythons.
    text = match.group("head")
    fraction = match.group("fraction")
    if fraction:
        text += "." + fraction[:6].ljust(6, "0")
    offset = match.group("offset")
    text += "+00:00" if offset == "Z" else offset
    try:
        return datetime.fromisoformat(text)
    except ValueError as exc:
        raise ValueError("must be a valid ISO-8601 date-time") from exc


class CreateUserRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    full_name: str = Field(
        ..., alias="fullName", min_length=FULL_NAME_MIN_LENGTH, max_length=FULL_NAME_MAX_LENGTH
    )
    role: UserRole
    date_of_birth: Optional[str] = Field(default=None, alias="dateOfBirth")

    @field_validator("date_of_birth")
    @classmethod
    def _validate_date_of_birth(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        parse_iso_datetime(value)
        return value


class UpdateUserRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    full_name: Optional[str] = Field(
        default=None,
        alias="fullName",
        min_length=FULL_NAME_MIN_LENGTH,
        max_length=FULL_NAME_MAX_LENGTH,
    )
    role: Optional[UserRole] = None
    date_of_birth: Optional[str] = Field(default=None, alias="dateOfBirth")

    @field_validator("date_of_birth")
    @classmethod
    def _validate_date_of_birth(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        parse_iso_datetime(value)
        return value


def parse_create_user(data: Any) -> CreateUserInput:
    """Validate ``data`` (camelCase or snake_case keys) as a create payload."""

    try:
        request = CreateUserRequest.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError.from_pydantic(exc) from exc
    return CreateUserInput(
        full_name=request.full_name,
        role=request.role,
        date_of_birth=request.date_of_birth,
    )


def parse_update_user(data: Any) -> UpdateUserInput:
    """Validate ``data`` as a partial update payload."""

    try:
        request = UpdateUserRequest.model_validate(data)
    except PydanticValidationError as exc:
        raise ValidationError.from_pydantic(exc) from exc
    return UpdateUserInput(
        full_name=request.full_name,
        role=request.role,
        date_of_birth=request.date_of_birth,
    )


__all__ = [
    "CreateUserRequest",
    "UpdateUserRequest",
    "ValidationError",
    "parse_create_user",
    "parse_iso_datetime",
    "parse_update_user",
]
