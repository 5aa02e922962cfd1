"""SQLite-backed persistence for accounts, applications and site settings."""
from __future__ import annotations

import json
import sqlite3
from contextlib import closing, contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Iterator, List, Optional

from passlib.context import CryptContext

from .errors import DuplicateIdentity, NotFound
from .models import (
    Account,
    AccountStatus,
    ApplicationEntry,
    ApplicationStatus,
    AuthMethod,
    IntakeStatus,
    Role,
    ScheduleState,
    utcnow,
)

PASSWORD_MIN_LENGTH = 8


def _ensure_directory(path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)


def resolve_database_path(env_value: Optional[str]) -> Path:
    """Resolve the on-disk path for the portal database."""

    if env_value:
        return Path(env_value).expanduser().resolve(strict=False)
    base_dir = Path(__file__).resolve().parent.parent / "data"
    return (base_dir / "portal.sqlite3").resolve(strict=False)


def _serialize_datetime(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    # Stored as UTC so text ordering matches chronological ordering.
    return value.astimezone(timezone.utc).isoformat()


def _parse_datetime(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def normalize_email(email: Optional[str]) -> Optional[str]:
    if email is None:
        return None
    cleaned = email.strip().lower()
    return cleaned or None


_pwd_context = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")


def hash_password(password: str) -> str:
    """Return a salted one-way hash for ``password``."""

    if not password:
        raise ValueError("Password must not be empty")
    return _pwd_context.hash(password)


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed or not password:
        return False
    try:
        return _pwd_context.verify(password, hashed)
    except ValueError:
        return False


AccountMutator = Callable[[Account], Account]
ApplicationMutator = Callable[[ApplicationEntry], ApplicationEntry]
ScheduleMutator = Callable[[ScheduleState], Optional[ScheduleState]]


class Database:
    """Simple wrapper around SQLite for persisting portal state.

    Every mutating helper runs as a single ``BEGIN IMMEDIATE`` transaction that
    reads the current row, hands it to a mutator and writes the result back.  A
    mutator that raises aborts the transaction and leaves the row untouched.
    """

    def __init__(self, path: Path) -> None:
        _ensure_directory(path)
        self._path = path

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._path, check_same_thread=False, timeout=30.0)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        conn.isolation_level = None
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except Exception:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def initialize(self) -> None:
        """Create the required tables if they do not already exist."""

        with closing(self._connect()) as conn, conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS accounts (
                    id TEXT PRIMARY KEY,
                    display_name TEXT NOT NULL,
                    auth_method TEXT NOT NULL,
                    email TEXT,
                    password_hash TEXT,
                    provider_id TEXT,
                    provider_username TEXT,
                    role TEXT NOT NULL,
                    status TEXT NOT NULL DEFAULT 'active',
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS applications (
                    id TEXT PRIMARY KEY,
                    user_id TEXT NOT NULL,
                    answers TEXT NOT NULL,
                    status TEXT NOT NULL,
                    submitted_at TEXT NOT NULL,
                    reviewed_at TEXT,
                    notes TEXT,
                    admin_message TEXT
                );

                CREATE TABLE IF NOT EXISTS intake_schedule (
                    id INTEGER PRIMARY KEY CHECK (id = 1),
                    status TEXT NOT NULL,
                    accepting_submissions INTEGER NOT NULL,
                    open_date TEXT,
                    close_date TEXT,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS site_content (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE UNIQUE INDEX IF NOT EXISTS idx_accounts_email
                    ON accounts(email) WHERE email IS NOT NULL;
                CREATE UNIQUE INDEX IF NOT EXISTS idx_accounts_provider_id
                    ON accounts(provider_id) WHERE provider_id IS NOT NULL;
                CREATE UNIQUE INDEX IF NOT EXISTS idx_accounts_single_owner
                    ON accounts(role) WHERE role = 'owner';
                CREATE INDEX IF NOT EXISTS idx_applications_user_id ON applications(user_id);
                """
            )
            conn.execute(
                """
                INSERT OR IGNORE INTO intake_schedule (
                    id, status, accepting_submissions, open_date, close_date, updated_at
                ) VALUES (1, ?, 1, NULL, NULL, ?)
                """,
                (IntakeStatus.OPEN.value, _serialize_datetime(utcnow())),
            )

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------
    def insert_account(self, account: Account) -> Account:
        """Persist a new account, raising :class:`DuplicateIdentity` on collisions."""

        with self._transaction() as conn:
            try:
                conn.execute(
                    """
                    INSERT INTO accounts (
                        id,
                        display_name,
                        auth_method,
                        email,
                        password_hash,
                        provider_id,
                        provider_username,
                        role,
                        status,
                        created_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        account.id,
                        account.display_name,
                        account.auth_method.value,
                        account.email,
                        account.password_hash,
                        account.provider_id,
                        account.provider_username,
                        account.role.value,
                        account.status.value,
                        _serialize_datetime(account.created_at),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise DuplicateIdentity("An account with this identity already exists") from exc
        return account

    def get_account(self, account_id: str) -> Optional[Account]:
        return self._fetch_account("SELECT * FROM accounts WHERE id = ?", (account_id,))

    def get_account_by_email(self, email: str) -> Optional[Account]:
        return self._fetch_account(
            "SELECT * FROM accounts WHERE email = ? AND auth_method = ?",
            (normalize_email(email), AuthMethod.EMAIL.value),
        )

    def get_account_by_provider_id(self, provider_id: str) -> Optional[Account]:
        return self._fetch_account(
            "SELECT * FROM accounts WHERE provider_id = ?",
            (provider_id,),
        )

    def get_owner(self) -> Optional[Account]:
        return self._fetch_account(
            "SELECT * FROM accounts WHERE role = ?",
            (Role.OWNER.value,),
        )

    def list_accounts(self) -> List[Account]:
        with closing(self._connect()) as conn:
            rows = conn.execute("SELECT * FROM accounts ORDER BY created_at, id").fetchall()
        return [self._row_to_account(row) for row in rows]

    def update_account(self, account_id: str, mutator: AccountMutator) -> Account:
        """Atomically apply ``mutator`` to the stored account and persist the result."""

        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM accounts WHERE id = ?", (account_id,)).fetchone()
            if row is None:
                raise NotFound("Account not found")
            updated = mutator(self._row_to_account(row))
            try:
                conn.execute(
                    """
                    UPDATE accounts
                       SET display_name = ?, email = ?, password_hash = ?, role = ?, status = ?
                     WHERE id = ?
                    """,
                    (
                        updated.display_name,
                        updated.email,
                        updated.password_hash,
                        updated.role.value,
                        updated.status.value,
                        account_id,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise DuplicateIdentity("An account with that email already exists") from exc
        return updated

    def delete_account(self, account_id: str, guard: Callable[[Account], None]) -> Account:
        """Delete an account after ``guard`` has accepted it."""

        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM accounts WHERE id = ?", (account_id,)).fetchone()
            if row is None:
                raise NotFound("Account not found")
            account = self._row_to_account(row)
            guard(account)
            conn.execute("DELETE FROM accounts WHERE id = ?", (account_id,))
        return account

    # ------------------------------------------------------------------
    # Applications
    # ------------------------------------------------------------------
    def insert_application(self, entry: ApplicationEntry) -> ApplicationEntry:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO applications (
                    id, user_id, answers, status, submitted_at, reviewed_at, notes, admin_message
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.id,
                    entry.user_id,
                    json.dumps(entry.answers, sort_keys=True),
                    entry.status.value,
                    _serialize_datetime(entry.submitted_at),
                    _serialize_datetime(entry.reviewed_at),
                    entry.notes,
                    entry.admin_message,
                ),
            )
        return entry

    def get_application(self, entry_id: str) -> Optional[ApplicationEntry]:
        with closing(self._connect()) as conn:
            row = conn.execute("SELECT * FROM applications WHERE id = ?", (entry_id,)).fetchone()
        if row is None:
            return None
        return self._row_to_application(row)

    def list_applications(
        self,
        *,
        user_id: Optional[str] = None,
        status: Optional[ApplicationStatus] = None,
    ) -> List[ApplicationEntry]:
        """Return applications newest first, optionally scoped by owner and status."""

        clauses: List[str] = []
        values: List[object] = []
        if user_id is not None:
            clauses.append("user_id = ?")
            values.append(user_id)
        if status is not None:
            clauses.append("status = ?")
            values.append(status.value)

        query = "SELECT * FROM applications"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        query += " ORDER BY submitted_at DESC, id"

        with closing(self._connect()) as conn:
            rows = conn.execute(query, values).fetchall()
        return [self._row_to_application(row) for row in rows]

    def update_application(self, entry_id: str, mutator: ApplicationMutator) -> ApplicationEntry:
        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM applications WHERE id = ?", (entry_id,)).fetchone()
            if row is None:
                raise NotFound("Application not found")
            updated = mutator(self._row_to_application(row))
            conn.execute(
                """
                UPDATE applications
                   SET status = ?, reviewed_at = ?, notes = ?, admin_message = ?
                 WHERE id = ?
                """,
                (
                    updated.status.value,
                    _serialize_datetime(updated.reviewed_at),
                    updated.notes,
                    updated.admin_message,
                    entry_id,
                ),
            )
        return updated

    def delete_application(self, entry_id: str) -> bool:
        with self._transaction() as conn:
            cursor = conn.execute("DELETE FROM applications WHERE id = ?", (entry_id,))
            return cursor.rowcount > 0

    # ------------------------------------------------------------------
    # Intake schedule
    # ------------------------------------------------------------------
    def get_schedule(self) -> ScheduleState:
        with closing(self._connect()) as conn:
            row = conn.execute("SELECT * FROM intake_schedule WHERE id = 1").fetchone()
        return self._row_to_schedule(row)

    def update_schedule(self, mutator: ScheduleMutator) -> ScheduleState:
        """Run ``mutator`` against the stored schedule inside one write transaction.

        The mutator returns ``None`` when nothing changed, in which case no write
        is issued.
        """

        with self._transaction() as conn:
            row = conn.execute("SELECT * FROM intake_schedule WHERE id = 1").fetchone()
            current = self._row_to_schedule(row)
            updated = mutator(current)
            if updated is None:
                return current
            conn.execute(
                """
                INSERT INTO intake_schedule (
                    id, status, accepting_submissions, open_date, close_date, updated_at
                ) VALUES (1, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    status = excluded.status,
                    accepting_submissions = excluded.accepting_submissions,
                    open_date = excluded.open_date,
                    close_date = excluded.close_date,
                    updated_at = excluded.updated_at
                """,
                (
                    updated.status.value,
                    int(updated.accepting_submissions),
                    _serialize_datetime(updated.open_date),
                    _serialize_datetime(updated.close_date),
                    _serialize_datetime(utcnow()),
                ),
            )
        return updated

    # ------------------------------------------------------------------
    # Site content
    # ------------------------------------------------------------------
    def get_content(self, key: str) -> Optional[Any]:
        with closing(self._connect()) as conn:
            row = conn.execute("SELECT value FROM site_content WHERE key = ?", (key,)).fetchone()
        if row is None:
            return None
        return json.loads(row["value"])

    def set_content(self, key: str, value: Any) -> None:
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT INTO site_content (key, value, updated_at) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at
                """,
                (key, json.dumps(value), _serialize_datetime(utcnow())),
            )

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _fetch_account(self, query: str, params: tuple) -> Optional[Account]:
        with closing(self._connect()) as conn:
            row = conn.execute(query, params).fetchone()
        if row is None:
            return None
        return self._row_to_account(row)

    def _row_to_account(self, row: sqlite3.Row) -> Account:
        return Account(
            id=str(row["id"]),
            display_name=str(row["display_name"]),
            auth_method=AuthMethod(row["auth_method"]),
            email=row["email"],
            password_hash=row["password_hash"],
            provider_id=row["provider_id"],
            provider_username=row["provider_username"],
            role=Role(row["role"]),
            status=AccountStatus(row["status"]),
            created_at=_parse_datetime(str(row["created_at"])),  # type: ignore[arg-type]
        )

    def _row_to_application(self, row: sqlite3.Row) -> ApplicationEntry:
        return ApplicationEntry(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            answers=dict(json.loads(row["answers"])),
            status=ApplicationStatus(row["status"]),
            submitted_at=_parse_datetime(str(row["submitted_at"])),  # type: ignore[arg-type]
            reviewed_at=_parse_datetime(row["reviewed_at"]),
            notes=row["notes"],
            admin_message=row["admin_message"],
        )

    def _row_to_schedule(self, row: Optional[sqlite3.Row]) -> ScheduleState:
        if row is None:
            return ScheduleState()
        raw_status = row["status"]
        if raw_status:
            status = IntakeStatus(raw_status)
        elif row["accepting_submissions"]:
            status = IntakeStatus.OPEN
        else:
            status = IntakeStatus.CLOSED
        return ScheduleState(
            status=status,
            open_date=_parse_datetime(row["open_date"]),
            close_date=_parse_datetime(row["close_date"]),
        )


__all__ = [
    "Database",
    "PASSWORD_MIN_LENGTH",
    "hash_password",
    "normalize_email",
    "resolve_database_path",
    "verify_password",
]
