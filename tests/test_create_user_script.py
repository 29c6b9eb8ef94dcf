"""Tests for the database seeding script."""

from __future__ import annotations

from pathlib import Path

import pytest

from gymusers.database import UserDatabase
from gymusers.models import UserRole
from scripts.create_user import main, parse_args


def test_parse_args_defaults() -> None:
    args = parse_args(["John Smith"])
    assert args.role == "MEMBER"
    assert args.dob is None
    assert args.db_path is None


def test_creates_user_in_database(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    db_path = tmp_path / "db.json"

    assert main(["John Smith", "--role", "staff", "--db", str(db_path)]) == 0

    users = UserDatabase(db_path).list_users()
    assert [(user.full_name, user.role) for user in users] == [("John Smith", UserRole.STAFF)]
    assert users[0].id in capsys.readouterr().out


def test_rejects_invalid_input(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    db_path = tmp_path / "db.json"

    assert main(["Jo", "--db", str(db_path)]) == 1
    assert "fullName" in capsys.readouterr().err
    assert not db_path.exists()
