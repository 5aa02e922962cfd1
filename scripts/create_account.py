import argparse
import getpass
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from portal.accounts import AccountService
from portal.config import load_config
from portal.database import PASSWORD_MIN_LENGTH, Database, resolve_database_path
from portal.errors import PortalError
from portal.models import Principal, Role
from portal.roles import role_label
from portal.sessions import SessionManager


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Create a member portal account")
    parser.add_argument("name", help="Display name for the account")
    parser.add_argument("email", help="Unique email address for login")
    parser.add_argument(
        "--role",
        default=Role.USER.value,
        choices=[role.value for role in Role if role is not Role.OWNER],
        help="Role to grant the new account (default: user)",
    )
    parser.add_argument(
        "--db",
        dest="db_path",
        default=None,
        help="Path to the SQLite database (defaults to PORTAL_DB_PATH or data/portal.sqlite3)",
    )
    return parser.parse_args()


def prompt_for_password() -> str:
    for _ in range(3):
        password = getpass.getpass("Password: ")
        confirm = getpass.getpass("Confirm password: ")
        if password != confirm:
            print("Passwords do not match. Try again.", file=sys.stderr)
            continue
        if len(password) < PASSWORD_MIN_LENGTH:
            print(f"Password must be at least {PASSWORD_MIN_LENGTH} characters long.", file=sys.stderr)
            continue
        return password
    raise SystemExit("Failed to set password after three attempts.")


def main() -> int:
    args = parse_args()
    password = prompt_for_password()

    config = load_config()
    db_env = args.db_path or os.getenv("PORTAL_DB_PATH")
    db_path = resolve_database_path(db_env) if db_env else config.database_path or resolve_database_path(None)

    database = Database(db_path)
    database.initialize()
    sessions = SessionManager(database)
    accounts = AccountService(database, sessions, owner=config.owner)

    try:
        owner = Principal.from_account(accounts.ensure_owner())
        account, _ = accounts.register(display_name=args.name, email=args.email, password=password)
        if args.role != Role.USER.value:
            account = accounts.update_role(owner, account.id, args.role)
    except PortalError as exc:
        print(f"Error: {exc.message}", file=sys.stderr)
        return 1

    print(f"Created {role_label(account.role)} account {account.id}: {account.display_name} <{account.email}>")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
