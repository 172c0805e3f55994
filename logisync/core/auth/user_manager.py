"""
User Credentials
================

Minimal credential repository used by the authentication flows.

Stores one row per account: normalized email, the current password
hash, when that password was set, and whether the email is verified.
Hashing and policy checks are the credential guard's job; this module
only persists results.
"""

from __future__ import annotations

import sqlite3
import uuid
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Final, Optional

from logisync.core.auth.results import GuardStoreError


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _to_db(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


@dataclass
class UserCredentials:
    """
    Account credential record.

    Note: password_hash is never exposed in repr or str.
    """
    id: str
    email: str
    password_hash: str
    password_created_at: datetime
    created_at: datetime
    updated_at: datetime
    is_active: bool = True
    is_verified: bool = False

    def __repr__(self) -> str:
        return (
            f"UserCredentials(id={self.id!r}, email={self.email!r}, "
            f"is_active={self.is_active}, is_verified={self.is_verified})"
        )


class UserExistsError(Exception):
    """Raised when trying to create an account whose email is taken."""
    pass


class UserNotFoundError(Exception):
    """Raised when an account is not found."""
    pass


class UserManager:
    """
    Credential storage with SQLite backend.

    Usage:
        users = UserManager(db_path)
        user = users.create_user("ops@logisync.com", guard.hash_password(password))
        user = users.get_user_by_email("OPS@logisync.com")

    Security Notes:
        - Emails are stored lower-cased and compared case-insensitively
        - All operations use parameterized queries
    """

    __slots__ = ("_db_path", "_clock")

    _SCHEMA: Final[str] = """
    CREATE TABLE IF NOT EXISTS users (
        id TEXT PRIMARY KEY,
        email TEXT UNIQUE NOT NULL COLLATE NOCASE,
        password_hash TEXT NOT NULL,
        password_created_at TEXT NOT NULL,
        is_active INTEGER NOT NULL DEFAULT 1,
        is_verified INTEGER NOT NULL DEFAULT 0,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_users_email ON users(email);
    """

    def __init__(
        self,
        db_path: Path | str,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._db_path = Path(db_path)
        self._clock = clock
        self.initialize_db()

    def _get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def initialize_db(self) -> None:
        """Create the users table if it does not exist."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with closing(self._get_connection()) as conn:
                conn.executescript(self._SCHEMA)
                conn.commit()
        except sqlite3.Error as e:
            raise GuardStoreError(f"Cannot initialize user store: {e}") from e

    def create_user(self, email: str, password_hash: str) -> UserCredentials:
        """
        Create a new account.

        Args:
            email: Account email (normalized to lower case)
            password_hash: Hash produced by CredentialGuard.hash_password

        Returns:
            Created UserCredentials

        Raises:
            UserExistsError: If the email is already registered
        """
        user_id = str(uuid.uuid4())
        now = self._clock()
        email = email.strip().lower()

        try:
            with closing(self._get_connection()) as conn, conn:
                conn.execute("""
                    INSERT INTO users (
                        id, email, password_hash, password_created_at, created_at, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?)
                """, (user_id, email, password_hash, _to_db(now), _to_db(now), _to_db(now)))
        except sqlite3.IntegrityError:
            raise UserExistsError(f"User with email '{email}' already exists")
        except sqlite3.Error as e:
            raise GuardStoreError(f"Cannot create user: {e}") from e

        return UserCredentials(
            id=user_id,
            email=email,
            password_hash=password_hash,
            password_created_at=now,
            created_at=now,
            updated_at=now,
        )

    def _fetch_one(self, query: str, params: tuple) -> Optional[UserCredentials]:
        try:
            with closing(self._get_connection()) as conn:
                row = conn.execute(query, params).fetchone()
        except sqlite3.Error as e:
            raise GuardStoreError(f"Cannot read user store: {e}") from e
        return self._row_to_user(row) if row else None

    def get_user(self, user_id: str) -> Optional[UserCredentials]:
        return self._fetch_one("SELECT * FROM users WHERE id = ?", (user_id,))

    def get_user_by_email(self, email: str) -> Optional[UserCredentials]:
        return self._fetch_one(
            "SELECT * FROM users WHERE email = ? COLLATE NOCASE", (email.strip(),)
        )

    def update_password_hash(self, user_id: str, password_hash: str) -> datetime:
        """
        Replace an account's password hash.

        Returns:
            The new password_created_at timestamp

        Raises:
            UserNotFoundError: If the account does not exist
        """
        now = self._clock()
        try:
            with closing(self._get_connection()) as conn, conn:
                result = conn.execute("""
                    UPDATE users
                    SET password_hash = ?, password_created_at = ?, updated_at = ?
                    WHERE id = ?
                """, (password_hash, _to_db(now), _to_db(now), user_id))
                updated = result.rowcount
        except sqlite3.Error as e:
            raise GuardStoreError(f"Cannot update password: {e}") from e

        if updated == 0:
            raise UserNotFoundError(f"User with ID '{user_id}' not found")
        return now

    def replace_password_hash(self, user_id: str, password_hash: str) -> None:
        """
        Store a fresh hash of the same password (cost upgrade).

        password_created_at is left alone so password expiry is unaffected.
        """
        self._update(
            "UPDATE users SET password_hash = ?, updated_at = ? WHERE id = ?",
            (password_hash, _to_db(self._clock()), user_id),
            "Cannot rehash password",
        )

    def mark_verified(self, user_id: str) -> None:
        """Record that the account's email address has been verified."""
        self._update(
            "UPDATE users SET is_verified = 1, updated_at = ? WHERE id = ?",
            (_to_db(self._clock()), user_id),
            "Cannot mark user verified",
        )

    def _update(self, query: str, params: tuple, failure: str) -> None:
        try:
            with closing(self._get_connection()) as conn, conn:
                updated = conn.execute(query, params).rowcount
        except sqlite3.Error as e:
            raise GuardStoreError(f"{failure}: {e}") from e
        if updated == 0:
            raise UserNotFoundError(f"User with ID '{params[-1]}' not found")

    def deactivate_user(self, user_id: str) -> None:
        """Deactivate an account; it can no longer log in."""
        try:
            with closing(self._get_connection()) as conn, conn:
                conn.execute(
                    "UPDATE users SET is_active = 0, updated_at = ? WHERE id = ?",
                    (_to_db(self._clock()), user_id),
                )
        except sqlite3.Error as e:
            raise GuardStoreError(f"Cannot deactivate user: {e}") from e

    @staticmethod
    def _row_to_user(row: sqlite3.Row) -> UserCredentials:
        return UserCredentials(
            id=row["id"],
            email=row["email"],
            password_hash=row["password_hash"],
            password_created_at=datetime.fromisoformat(row["password_created_at"]),
            created_at=datetime.fromisoformat(row["created_at"]),
            updated_at=datetime.fromisoformat(row["updated_at"]),
            is_active=bool(row["is_active"]),
            is_verified=bool(row["is_verified"]),
        )
