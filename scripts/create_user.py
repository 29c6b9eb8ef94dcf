import argparse
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from gymusers.database import UserDatabase, resolve_database_path
from gymusers.validation import ValidationError, parse_create_user


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Add a gym user directly to the service database")
    parser.add_argument("full_name", help="Full name of the staff member or member")
    parser.add_argument("--role", default="MEMBER", help="STAFF or MEMBER (default: MEMBER)")
    parser.add_argument("--dob", default=None, help="Date of birth as an ISO-8601 date-time")
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the JSON database (defaults to GYMUSERS_DB_PATH or data/db.json)",
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    try:
        data = parse_create_user(
            {"fullName": args.full_name.strip(), "role": args.role.strip().upper(), "dateOfBirth": args.dob}
        )
    except ValidationError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    db_env = args.db_path or os.getenv("GYMUSERS_DB_PATH")
    database = UserDatabase(resolve_database_path(db_env))
    database.initialize()

    user = database.create_user(data)
    print(f"Created user {user.id}: {user.full_name} ({user.role.value})")
    print("Running services pick this up on their next read; no change event is published.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
