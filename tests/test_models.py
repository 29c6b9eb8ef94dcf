from __future__ import annotations

import pytest

from gymusers.models import CreateUserInput, UpdateUserInput, User, UserRole

from conftest import make_user


def test_user_round_trips_through_wire_format() -> None:
    payload = {
        "id": "u1",
        "fullName": "John Smith",
        "role": "STAFF",
        "dateOfBirth": "1990-05-01T00:00:00.000Z",
        "createdAt": "2024-01-01T00:00:00.000Z",
        "updatedAt": "2024-01-02T00:00:00.000Z",
    }

    user = User.from_dict(payload)

    assert user.full_name == "John Smith"
    assert user.role is UserRole.STAFF
    assert user.to_dict() == payload


def test_to_dict_omits_missing_date_of_birth() -> None:
    assert "dateOfBirth" not in make_user("u1").to_dict()


def test_from_dict_reports_missing_fields() -> None:
    with pytest.raises(ValueError, match="createdAt, updatedAt"):
        User.from_dict({"id": "u1", "fullName": "John Smith", "role": "STAFF"})


def test_from_dict_rejects_unknown_role() -> None:
    payload = make_user("u1").to_dict()
    payload["role"] = "OWNER"
    with pytest.raises(ValueError):
        User.from_dict(payload)


def test_apply_overlays_only_provided_fields() -> None:
    user = make_user("u1", date_of_birth="1990-05-01T00:00:00.000Z")

    updated = user.apply(UpdateUserInput(role=UserRole.MEMBER), updated_at="2024-02-01T00:00:00.000Z")

    assert updated.id == user.id
    assert updated.created_at == user.created_at
    assert updated.full_name == "John Smith"
    assert updated.role is UserRole.MEMBER
    assert updated.date_of_birth == "1990-05-01T00:00:00.000Z"
    assert updated.updated_at == "2024-02-01T00:00:00.000Z"


def test_input_payloads_use_camel_case() -> None:
    create = CreateUserInput("John Smith", UserRole.STAFF)
    assert create.to_payload() == {"fullName": "John Smith", "role": "STAFF"}

    update = UpdateUserInput(full_name="Jane Smith")
    assert update.to_payload() == {"fullName": "Jane Smith"}
    assert not update.is_empty()
    assert UpdateUserInput().is_empty()
