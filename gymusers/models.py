"""Domain models shared by the users store, repositories and service."""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class UserRole(str, Enum):
    """Roles a gym user can hold."""

    STAFF = "STAFF"
    MEMBER = "MEMBER"


@dataclass(frozen=True)
class User:
    """A gym staff member or member as stored on disk and on the wire."""

    id: str
    full_name: str
    role: UserRole
    created_at: str
    updated_at: str
    date_of_birth: Optional[str] = None

    @staticmethod
    def from_dict(data: Mapping[str, Any]) -> "User":
        """Create a :class:`User` from its camelCase JSON representation."""

        required_fields = {"id", "fullName", "role", "createdAt", "updatedAt"}
        missing = required_fields - data.keys()
        if missing:
            raise ValueError(f"Missing required user fields: {', '.join(sorted(missing))}")

        date_of_birth = data.get("dateOfBirth")
        return User(
            id=str(data["id"]),
            full_name=str(data["fullName"]),
            role=UserRole(data["role"]),
            created_at=str(data["createdAt"]),
            updated_at=str(data["updatedAt"]),
            date_of_birth=str(date_of_birth) if date_of_birth is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "id": self.id,
            "fullName": self.full_name,
            "role": self.role.value,
        }
        if self.date_of_birth is not None:
            payload["dateOfBirth"] = self.date_of_birth
        payload["createdAt"] = self.created_at
        payload["updatedAt"] = self.updated_at
        return payload

    def apply(self, changes: "UpdateUserInput", *, updated_at: str) -> "User":
        """Return a copy with ``changes`` overlaid and ``updated_at`` refreshed.

        ``id`` and ``created_at`` are never altered.
        """

        return replace(
            self,
            full_name=changes.full_name if changes.full_name is not None else self.full_name,
            role=changes.role if changes.role is not None else self.role,
            date_of_birth=(
                changes.date_of_birth if changes.date_of_birth is not None else self.date_of_birth
            ),
            updated_at=updated_at,
        )


@dataclass(frozen=True)
class CreateUserInput:
    """Fields accepted when creating a user."""

    full_name: str
    role: UserRole
    date_of_birth: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"fullName": self.full_name, "role": self.role.value}
        if self.date_of_birth is not None:
            payload["dateOfBirth"] = self.date_of_birth
        return payload


@dataclass(frozen=True)
class UpdateUserInput:
    """Partial update; ``None`` leaves the stored value untouched."""

    full_name: Optional[str] = None
    role: Optional[UserRole] = None
    date_of_birth: Optional[str] = None

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {}
        if self.full_name is not None:
            payload["fullName"] = self.full_name
        if self.role is not None:
            payload["role"] = self.role.value
        if self.date_of_birth is not None:
            payload["dateOfBirth"] = self.date_of_birth
        return payload

    def is_empty(self) -> bool:
        return not self.to_payload()


__all__ = ["CreateUserInput", "UpdateUserInput", "User", "UserRole"]
