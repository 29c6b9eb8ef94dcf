"""Command-line interface for the gym users service and store."""

from __future__ import annotations
import argparse
import logging
import os
import sys
from dataclasses import replace
from pathlib import Path
from typing import Iterable, Sequence

import anyio

from gymusers.application import create_application, create_store
from gymusers.config import Settings, load_settings, with_api_url
from gymusers.models import User
from gymusers.repository import NotFoundError, TransportError
from gymusers.store import UsersState, UsersStore
from gymusers.triggers import RevalidationStrategy
from gymusers.validation import ValidationError, parse_create_user, parse_update_user

logger = logging.getLogger("gymusers.main")

DEFAULT_PORT = 3333
CLIENT_COMMANDS = {"list", "add", "update", "remove", "watch"}


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Gym users service and client utilities")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    serve_parser = subparsers.add_parser("serve", help="Start the users HTTP service")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address for the API")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=int(os.getenv("PORT", DEFAULT_PORT)),
        help=f"Port for the HTTP API (default: {DEFAULT_PORT})",
    )
    serve_parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the JSON database (defaults to GYMUSERS_DB_PATH or data/db.json)",
    )

    client_options = argparse.ArgumentParser(add_help=False)
    client_options.add_argument(
        "--config",
        default=None,
        help="Client configuration file (defaults to GYMUSERS_CONFIG or config/client.yaml)",
    )
    client_options.add_argument(
        "--api-url",
        default=None,
        help="Users API base URL; without one the local storage file is used",
    )

    subparsers.add_parser("list", parents=[client_options], help="List users")

    add_parser = subparsers.add_parser("add", parents=[client_options], help="Create a user")
    add_parser.add_argument("full_name", help="Full name (3-50 characters)")
    add_parser.add_argument("--role", default="MEMBER", help="STAFF or MEMBER (default: MEMBER)")
    add_parser.add_argument("--dob", default=None, help="Date of birth as an ISO-8601 date-time")

    update_parser = subparsers.add_parser("update", parents=[client_options], help="Update a user")
    update_parser.add_argument("user_id", help="Identifier of the user to update")
    update_parser.add_argument("--name", dest="full_name", default=None, help="New full name")
    update_parser.add_argument("--role", default=None, help="New role")
    update_parser.add_argument("--dob", default=None, help="New date of birth")

    remove_parser = subparsers.add_parser("remove", parents=[client_options], help="Delete a user")
    remove_parser.add_argument("user_id", help="Identifier of the user to delete")

    watch_parser = subparsers.add_parser(
        "watch", parents=[client_options], help="Print the user list whenever it changes"
    )
    watch_parser.add_argument(
        "--strategy",
        choices=[strategy.value for strategy in RevalidationStrategy],
        default=None,
        help="Revalidation strategy when following a remote API",
    )

    raw_args = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", *CLIENT_COMMANDS}

    verbose = [arg for arg in raw_args if arg in ("-v", "--verbose")][:1]
    args_list = [arg for arg in raw_args if arg not in ("-v", "--verbose")]

    if not args_list:
        args_list = ["serve"]
    else:
        first = args_list[0]
        if first in ("-h", "--help"):
            return parser.parse_args(args_list)
        if first not in known_commands:
            if any(flag in args_list for flag in ("-h", "--help")):
                return parser.parse_args(args_list)
            args_list = ["serve", *args_list]

    return parser.parse_args([*verbose, *args_list])


def _format_user(user: User) -> str:
    line = f"{user.id}  {user.role.value:<6}  {user.full_name}"
    if user.date_of_birth:
        line += f"  (born {user.date_of_birth})"
    return line


def _print_users(users: Iterable[User]) -> None:
    users = list(users)
    if not users:
        print("No users.")
        return
    for user in users:
        print(_format_user(user))


def _client_settings(args: argparse.Namespace) -> Settings:
    config_path = Path(args.config).expanduser() if args.config else None
    settings = with_api_url(load_settings(config_path), args.api_url)
    if args.command == "watch":
        if args.strategy:
            settings = replace(settings, revalidation=RevalidationStrategy(args.strategy))
        return settings
    # One-shot commands have no use for change notifications.
    return replace(settings, revalidation=RevalidationStrategy.NONE)


async def _watch(store: UsersStore) -> None:
    def _on_change(state: UsersState) -> None:
        print(f"--- {len(state.users)} user(s)")
        _print_users(state.users)

    unsubscribe = store.subscribe(_on_change)
    try:
        await store.wait_until_hydrated()
        _on_change(store.state)
        await anyio.sleep_forever()
    finally:
        unsubscribe()


async def _run_client(args: argparse.Namespace, settings: Settings) -> int:
    if args.command == "add":
        data = parse_create_user(
            {"fullName": args.full_name, "role": args.role.upper(), "dateOfBirth": args.dob}
        )
    elif args.command == "update":
        changes = parse_update_user(
            {
                "fullName": args.full_name,
                "role": args.role.upper() if args.role else None,
                "dateOfBirth": args.dob,
            }
        )
        if changes.is_empty():
            raise ValidationError("Nothing to update; pass --name, --role or --dob")

    async with create_store(settings) as store:
        if args.command == "watch":
            await _watch(store)
            return 0

        await store.wait_until_hydrated()
        if args.command == "list":
            _print_users(store.users)
        elif args.command == "add":
            created = await store.create(data)
            print(f"Created {_format_user(created)}")
        elif args.command == "update":
            updated = await store.update(args.user_id, changes)
            print(f"Updated {_format_user(updated)}")
        elif args.command == "remove":
            await store.remove(args.user_id)
            print(f"Removed {args.user_id}")
    return 0


def _serve(*, host: str, port: int, db_path: str | None) -> None:
    import uvicorn

    logger.info("Starting users API on http://%s:%s", host, port)
    app = create_application(database_path=db_path)
    uvicorn.run(app, host=host, port=port, log_level="info")


def main(argv: Sequence[str] | None = None) -> int:
    """Entry point for CLI usage."""

    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
    )

    if args.command == "serve":
        _serve(host=args.host, port=args.port, db_path=args.db_path)
        return 0

    try:
        settings = _client_settings(args)
        return anyio.run(_run_client, args, settings)
    except ValidationError as exc:
        print(f"Invalid input: {exc}", file=sys.stderr)
    except NotFoundError as exc:
        print(f"Error: {exc}", file=sys.stderr)
    except TransportError as exc:
        print(f"Users API error: {exc}", file=sys.stderr)
    except ValueError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
    except KeyboardInterrupt:
        return 0
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
