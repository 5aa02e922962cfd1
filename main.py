"""Command-line interface for the member portal service."""

from __future__ import annotations
import argparse
import logging
import os
import sys
import uuid
from datetime import datetime, timedelta, timezone
from getpass import getpass
from typing import Sequence

import httpx

from portal.config import PortalConfig, load_config
from portal.core import Portal
from portal.database import PASSWORD_MIN_LENGTH, Database, resolve_database_path
from portal.errors import PortalError
from portal.models import (
    Account,
    AccountStatus,
    ApplicationEntry,
    ApplicationStatus,
    AuthMethod,
    IntakeStatus,
    Principal,
    Role,
)
from portal.roles import role_label

logger = logging.getLogger("portal.main")

_DEFAULT_SERVICE_URL = "http://localhost:8000"


def _parse_args(argv: Sequence[str] | None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Member portal utilities")
    subparsers = parser.add_subparsers(dest="command")

    parser.set_defaults(command="serve")

    subparsers.add_parser("init-db", help="Initialise the portal database")
    subparsers.add_parser("seed-demo", help="Populate an empty database with demo applications")

    serve_parser = subparsers.add_parser("serve", help="Start the HTTP portal service")
    serve_parser.add_argument("--host", default="0.0.0.0", help="Bind address for the API")
    serve_parser.add_argument(
        "--port",
        type=int,
        default=8000,
        help="Port for the HTTP API (default: 8000)",
    )
    serve_parser.add_argument(
        "--ssl-certfile",
        default=None,
        help="Path to the TLS certificate chain in PEM format",
    )
    serve_parser.add_argument(
        "--ssl-keyfile",
        default=None,
        help="Path to the TLS private key in PEM format",
    )

    admin_parser = subparsers.add_parser(
        "admin", help="Launch the interactive administration console"
    )
    admin_parser.add_argument(
        "--service-url",
        default=None,
        help="Base URL of a running portal service (default: http://localhost:8000)",
    )

    args_list = list(argv) if argv is not None else sys.argv[1:]
    known_commands = {"serve", "admin", "init-db", "seed-demo"}

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

    return parser.parse_args(args_list)


def _initialise_portal(config: PortalConfig) -> Portal:
    db_path = config.database_path or resolve_database_path(os.getenv("PORTAL_DB_PATH"))
    database = Database(db_path)
    database.initialize()
    logger.info("Database initialised at %s", db_path)
    return Portal(database, config=config)


def _serve(
    *,
    portal: Portal,
    host: str,
    port: int,
    ssl_certfile: str | None,
    ssl_keyfile: str | None,
) -> None:
    from portal.api import create_app
    import uvicorn

    if bool(ssl_certfile) ^ bool(ssl_keyfile):
        raise SystemExit("Both --ssl-certfile and --ssl-keyfile must be provided together.")

    protocol = "https" if ssl_certfile and ssl_keyfile else "http"
    logger.info("Starting portal API on %s://%s:%s", protocol, host, port)

    app = create_app(portal=portal)
    uvicorn.run(
        app,
        host=host,
        port=port,
        log_level="info",
        ssl_certfile=ssl_certfile,
        ssl_keyfile=ssl_keyfile,
    )


def _owner_principal(portal: Portal) -> Principal:
    return Principal.from_account(portal.accounts.ensure_owner())


def _run_admin_cli(portal: Portal, *, default_service_url: str | None = None) -> None:
    """Provide an interactive console that acts with the owner's authority."""

    service_url = default_service_url or _DEFAULT_SERVICE_URL
    owner = _owner_principal(portal)

    print("Member Portal Administration Console")
    print(f"Acting as {owner.display_name} <{owner.email}>")
    print("Press Ctrl+C at any time to exit.\n")

    try:
        while True:
            print("Select an option:")
            print("  1) List all accounts")
            print("  2) Add a staff account")
            print("  3) Change an account's role")
            print("  4) Show application statistics")
            print("  5) Show intake status")
            print("  6) Set intake status")
            print("  7) Query a running service's intake status")
            print("  8) Exit")

            choice = input("Enter choice [1-8]: ").strip()

            if choice == "1":
                _list_accounts(portal, owner)
            elif choice == "2":
                _add_staff_account(portal, owner)
            elif choice == "3":
                _change_role(portal, owner)
            elif choice == "4":
                _show_stats(portal, owner)
            elif choice == "5":
                _show_intake(portal)
            elif choice == "6":
                _set_intake(portal)
            elif choice == "7":
                service_url = _query_service_intake(service_url)
            elif choice == "8":
                print("Goodbye!")
                return
            else:
                print("Invalid selection. Please choose a number from the menu.\n")

            print()
    except KeyboardInterrupt:
        print("\nExiting administration console.")


def _list_accounts(portal: Portal, owner: Principal) -> None:
    accounts = portal.accounts.list_accounts(owner)
    if not accounts:
        print("No accounts are currently registered.")
        return

    print(f"{len(accounts)} account(s) found:")
    print(f"{'ID':<32}  {'Name':<24}  {'Email':<32}  {'Role':<8}  Status")
    print("-" * 110)
    for account in accounts:
        email = account.email or account.provider_username or "<no email>"
        print(
            f"{account.id:<32}  {account.display_name:<24}  {email:<32}  "
            f"{role_label(account.role):<8}  {account.status.value}"
        )


def _prompt_for_role() -> Role | None:
    choices = [role for role in Role if role is not Role.OWNER]
    labels = ", ".join(role.value for role in choices)
    raw = input(f"Role ({labels}): ").strip().lower()
    try:
        role = Role(raw)
    except ValueError:
        print("Unknown role.")
        return None
    if role is Role.OWNER:
        print("The owner role cannot be assigned.")
        return None
    return role


def _add_staff_account(portal: Portal, owner: Principal) -> None:
    print("\nCreate a new account (leave the name blank to cancel).")
    name = input("Name: ").strip()
    if not name:
        print("Account creation cancelled.")
        return

    email = input("Email address: ").strip()
    password = _prompt_for_password()
    if password is None:
        print("Aborted creating account.")
        return
    role = _prompt_for_role()
    if role is None:
        return

    try:
        account, session = portal.accounts.register(display_name=name, email=email, password=password)
        portal.sessions.destroy(session.token)
        if role is not Role.USER:
            account = portal.accounts.update_role(owner, account.id, role)
    except PortalError as exc:
        print(f"Failed to create account: {exc.message}")
        return

    print(f"Created {role_label(account.role)} account {account.id}: {account.display_name} <{account.email}>")


def _change_role(portal: Portal, owner: Principal) -> None:
    account_id = input("Account ID: ").strip()
    if not account_id:
        return
    role = _prompt_for_role()
    if role is None:
        return
    try:
        account = portal.accounts.update_role(owner, account_id, role)
    except PortalError as exc:
        print(f"Failed to change role: {exc.message}")
        return
    print(f"{account.display_name} is now {role_label(account.role)}.")


def _show_stats(portal: Portal, owner: Principal) -> None:
    stats = portal.applications.stats(owner)
    print(f"Total applications: {stats.total}")
    print(f"  Pending:      {stats.pending}")
    print(f"  Under review: {stats.under_review}")
    print(f"  Approved:     {stats.approved}")
    print(f"  Rejected:     {stats.rejected}")


def _show_intake(portal: Portal) -> None:
    state = portal.schedule.read_schedule()
    print(f"Intake status: {state.status.value} (accepting submissions: {state.accepting_submissions})")
    print(f"  Opens:  {state.open_date.isoformat() if state.open_date else 'not scheduled'}")
    print(f"  Closes: {state.close_date.isoformat() if state.close_date else 'not scheduled'}")


def _set_intake(portal: Portal) -> None:
    labels = ", ".join(status.value for status in IntakeStatus)
    raw = input(f"New status ({labels}): ").strip().lower()
    try:
        state = portal.schedule.set_status(raw)
    except PortalError as exc:
        print(f"Failed to update intake status: {exc.message}")
        return
    print(f"Intake status is now {state.status.value}.")


def _prompt_for_password() -> str | None:
    for _ in range(3):
        password = getpass(f"Password (min {PASSWORD_MIN_LENGTH} characters): ")
        if len(password) < PASSWORD_MIN_LENGTH:
            print("Password is too short. Please try again.")
            continue
        confirmation = getpass("Confirm password: ")
        if password != confirmation:
            print("Passwords do not match. Please try again.")
            continue
        return password
    return None


def _query_service_intake(default_url: str) -> str:
    base_url = default_url or _DEFAULT_SERVICE_URL
    endpoint = base_url.rstrip("/") + "/v1/intake"

    try:
        response = httpx.get(endpoint, timeout=10.0)
    except httpx.HTTPError as exc:
        print(f"Failed to contact portal service: {exc}")
        return base_url

    if response.status_code != 200:
        print(f"Service responded with {response.status_code}: {response.text.strip()}")
        return base_url

    try:
        payload = response.json()
    except ValueError:
        print("Service returned an unexpected response format.")
        return base_url

    print(
        f"{base_url} reports intake status {payload.get('status', 'unknown')} "
        f"(accepting submissions: {payload.get('accepting_submissions', 'unknown')})"
    )
    return base_url


_DEMO_APPLICATIONS = (
    (
        ApplicationStatus.PENDING,
        {
            "username": "CraftMaster_X",
            "age": "21",
            "timezone": "UTC-07:00 to UTC-05:00 (Americas)",
            "why": "Looking for a tight-knit community that values building and collaboration.",
            "experience": "Three private SMPs over four years, mostly medieval builds and redstone farms.",
        },
        None,
        None,
    ),
    (
        ApplicationStatus.PENDING,
        {
            "username": "LunaBuilder",
            "age": "19",
            "timezone": "UTC+00:00 to UTC+03:00 (Europe/Africa)",
            "why": "I love application-only servers and building towns with others.",
            "experience": "Playing since 2016 and moderated two servers.",
        },
        None,
        None,
    ),
    (
        ApplicationStatus.APPROVED,
        {
            "username": "RedstoneKing99",
            "age": "24",
            "timezone": "UTC-07:00 to UTC-05:00 (Americas)",
            "why": "A mature community where complex redstone builds are safe from griefing.",
            "experience": "Five years of SMP experience focused on farms and game mechanics.",
        },
        "Great application! Welcome aboard.",
        "Welcome aboard! Check Discord for the server address.",
    ),
    (
        ApplicationStatus.UNDER_REVIEW,
        {
            "username": "PixelArtist_",
            "age": "17",
            "timezone": "UTC+07:00 to UTC+09:00 (East Asia)",
            "why": "The announcement and the community values resonated with me.",
            "experience": "New to SMPs but played singleplayer for years.",
        },
        None,
        None,
    ),
    (
        ApplicationStatus.REJECTED,
        {
            "username": "SurvivalPro",
            "age": "28",
            "timezone": "UTC+00:00 to UTC+03:00 (Europe/Africa)",
            "why": "I appreciate servers that prioritise quality over quantity.",
            "experience": "Veteran player who ran an SMP with 30+ members for three years.",
        },
        "Insufficient SMP experience for current season.",
        "Unfortunately we are not accepting applications from your region at this time.",
    ),
)


def _seed_demo_data(database: Database) -> int:
    """Insert demo applications, each owned by a demo member account.

    Nothing is inserted when applications already exist; returns how many were added.
    """

    if database.list_applications():
        return 0

    now = datetime.now(timezone.utc)
    for index, (status, answers, notes, message) in enumerate(_DEMO_APPLICATIONS):
        user_id = f"demo-user-{index + 1}"
        if database.get_account(user_id) is None:
            database.insert_account(
                Account(
                    id=user_id,
                    display_name=answers["username"],
                    auth_method=AuthMethod.DISCORD,
                    role=Role.USER,
                    status=AccountStatus.ACTIVE,
                    created_at=now - timedelta(days=index + 1),
                    provider_id=user_id,
                    provider_username=answers["username"],
                )
            )
        database.insert_application(
            ApplicationEntry(
                id=uuid.uuid4().hex,
                user_id=user_id,
                answers=dict(answers),
                status=status,
                submitted_at=now - timedelta(days=index, hours=3),
                reviewed_at=None if status is ApplicationStatus.PENDING else now - timedelta(hours=12 * index),
                notes=notes,
                admin_message=message,
            )
        )
    return len(_DEMO_APPLICATIONS)


def main(argv: Sequence[str] | None = None) -> None:
    """Entry point for CLI usage."""

    logging.basicConfig(level=logging.INFO, format="%(asctime)s [%(levelname)s] %(message)s")

    args = _parse_args(argv)
    config = load_config()
    portal = _initialise_portal(config)

    if args.command == "serve":
        _serve(
            portal=portal,
            host=args.host,
            port=args.port,
            ssl_certfile=args.ssl_certfile,
            ssl_keyfile=args.ssl_keyfile,
        )
    elif args.command == "admin":
        _run_admin_cli(portal, default_service_url=args.service_url)
    elif args.command == "seed-demo":
        added = _seed_demo_data(portal.database)
        if added:
            print(f"Inserted {added} demo application(s).")
        else:
            print("Applications already exist; demo data was not inserted.")
    elif args.command == "init-db":
        portal.accounts.ensure_owner()
        print("Database initialisation complete.")


if __name__ == "__main__":
    main()
