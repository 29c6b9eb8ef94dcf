from __future__ import annotations

import json
from pathlib import Path

import pytest

from main import _parse_args, main


def test_default_command_invokes_serve() -> None:
    args = _parse_args([])
    assert args.command == "serve"
    assert args.host == "0.0.0.0"


def test_default_command_accepts_options_without_subcommand() -> None:
    args = _parse_args(["--host", "127.0.0.1", "--port", "8080"])
    assert args.command == "serve"
    assert args.host == "127.0.0.1"
    assert args.port == 8080


def test_verbose_flag_does_not_hide_subcommand() -> None:
    args = _parse_args(["-v", "list", "--api-url", "http://localhost:3333"])
    assert args.verbose
    assert args.command == "list"
    assert args.api_url == "http://localhost:3333"

    assert _parse_args(["-v"]).command == "serve"


def test_client_subcommands_parse_their_arguments() -> None:
    args = _parse_args(["update", "u1", "--name", "Jane Smith", "--role", "staff"])
    assert (args.command, args.user_id, args.full_name, args.role) == ("update", "u1", "Jane Smith", "staff")

    args = _parse_args(["watch", "--strategy", "polling"])
    assert args.strategy == "polling"


@pytest.fixture()
def storage_file(clean_env: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    path = clean_env / "local-storage.json"
    monkeypatch.setenv("GYMUSERS_STORAGE_PATH", str(path))
    return path


def test_add_list_update_remove_against_local_storage(
    storage_file: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    assert main(["add", "John Smith", "--role", "staff"]) == 0
    stored = json.loads(json.loads(storage_file.read_text())["gf_users"])
    assert [user["fullName"] for user in stored] == ["John Smith"]
    user_id = stored[0]["id"]

    assert main(["list"]) == 0
    assert "John Smith" in capsys.readouterr().out

    assert main(["update", user_id, "--name", "Jane Smith"]) == 0
    assert "Updated" in capsys.readouterr().out

    assert main(["remove", user_id]) == 0
    assert main(["list"]) == 0
    assert "No users." in capsys.readouterr().out


def test_invalid_input_is_reported(storage_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["add", "Jo"]) == 1
    assert "Invalid input" in capsys.readouterr().err
    assert not storage_file.exists()

    assert main(["update", "u1"]) == 1
    assert "Nothing to update" in capsys.readouterr().err


def test_unknown_user_is_reported(storage_file: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert main(["update", "ghost", "--name", "Jane Smith"]) == 1
    assert "ghost" in capsys.readouterr().err


def test_bad_configuration_is_reported(
    clean_env: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("GYMUSERS_STORAGE_BACKEND", "sqlite")

    assert main(["list"]) == 1
    assert "Configuration error" in capsys.readouterr().err
