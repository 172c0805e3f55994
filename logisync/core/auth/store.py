"""
Guard Store
===========

Storage for password history, failed-login counters, reset tokens and
email verification tokens.

The guard never keeps module-level state; it is handed a GuardStore
constructed once at startup. Two implementations are provided:

- MemoryGuardStore: single-process, dictionaries behind locks
- SQLiteGuardStore: file-backed, shared by every process on the host

Atomicity:
    update_login_attempt, update_reset_token and update_verification_token
    take a *mutator*, a function receiving the current record (or None)
    and returning ``(new_record_or_None, result)``. The store applies
    the mutator under a per-map lock (memory) or inside a
    ``BEGIN IMMEDIATE`` transaction (SQLite), so read-modify-write sequences such as
    increment-then-compare never interleave for the same key.
    Mutators must be fast and must not hash passwords.
"""

from __future__ import annotations

import sqlite3
import threading
from abc import ABC, abstractmethod
from contextlib import closing, contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Final, Iterator, List, Optional, Tuple, TypeVar

from logisync.core.auth.models import (
    EmailVerificationToken,
    LoginAttemptRecord,
    PasswordHistoryEntry,
    PasswordResetToken,
)
from logisync.core.auth.results import GuardStoreError


T = TypeVar("T")

AttemptMutator = Callable[
    [Optional[LoginAttemptRecord]], Tuple[Optional[LoginAttemptRecord], T]
]
TokenMutator = Callable[
    [Optional[PasswordResetToken]], Tuple[Optional[PasswordResetToken], T]
]
VerificationMutator = Callable[
    [Optional[EmailVerificationToken]], Tuple[Optional[EmailVerificationToken], T]
]


class GuardStore(ABC):
    """Interface for credential guard state."""

    @abstractmethod
    def get_history(self, owner_id: str) -> List[PasswordHistoryEntry]:
        """Return the owner's history, oldest first."""

    @abstractmethod
    def append_history(self, owner_id: str, entry: PasswordHistoryEntry, limit: int) -> None:
        """Append an entry and evict the oldest beyond ``limit``."""

    @abstractmethod
    def get_login_attempt(self, owner_id: str) -> Optional[LoginAttemptRecord]:
        ...

    @abstractmethod
    def update_login_attempt(self, owner_id: str, mutator: AttemptMutator[T]) -> T:
        ...

    @abstractmethod
    def delete_login_attempt(self, owner_id: str) -> None:
        ...

    @abstractmethod
    def add_reset_token(self, record: PasswordResetToken) -> None:
        ...

    @abstractmethod
    def get_reset_token(self, token_hash: str) -> Optional[PasswordResetToken]:
        ...

    @abstractmethod
    def update_reset_token(self, token_hash: str, mutator: TokenMutator[T]) -> T:
        ...

    @abstractmethod
    def delete_reset_token(self, token_hash: str) -> None:
        ...

    @abstractmethod
    def purge_reset_tokens(self, now: datetime) -> int:
        """Delete tokens that are used or expired at ``now``; return the count."""

    @abstractmethod
    def replace_verification_token(self, record: EmailVerificationToken) -> int:
        """Store ``record`` after deleting the owner's earlier tokens; return how many went."""

    @abstractmethod
    def get_verification_token(self, token_hash: str) -> Optional[EmailVerificationToken]:
        ...

    @abstractmethod
    def update_verification_token(
        self, token_hash: str, mutator: VerificationMutator[T]
    ) -> T:
        ...

    @abstractmethod
    def purge_verification_tokens(self, now: datetime) -> int:
        """Delete verification tokens that are used or expired at ``now``."""

    def close(self) -> None:
        """Release resources held by the store."""


class MemoryGuardStore(GuardStore):
    """
    In-process store.

    Each map has its own lock so a token sweep never blocks
    failed-login bookkeeping.
    """

    __slots__ = (
        "_history", "_attempts", "_tokens", "_verifications",
        "_history_lock", "_attempts_lock", "_tokens_lock", "_verifications_lock",
    )

    def __init__(self) -> None:
        self._history: dict[str, List[PasswordHistoryEntry]] = {}
        self._attempts: dict[str, LoginAttemptRecord] = {}
        self._tokens: dict[str, PasswordResetToken] = {}
        self._verifications: dict[str, EmailVerificationToken] = {}
        self._history_lock = threading.Lock()
        self._attempts_lock = threading.Lock()
        self._tokens_lock = threading.Lock()
        self._verifications_lock = threading.Lock()

    def get_history(self, owner_id: str) -> List[PasswordHistoryEntry]:
        with self._history_lock:
            return list(self._history.get(owner_id, ()))

    def append_history(self, owner_id: str, entry: PasswordHistoryEntry, limit: int) -> None:
        with self._history_lock:
            history = self._history.setdefault(owner_id, [])
            history.append(entry)
            excess = len(history) - limit
            if excess > 0:
                del history[:excess]
            if not history:
                del self._history[owner_id]

    def get_login_attempt(self, owner_id: str) -> Optional[LoginAttemptRecord]:
        with self._attempts_lock:
            return self._attempts.get(owner_id)

    def update_login_attempt(self, owner_id: str, mutator: AttemptMutator[T]) -> T:
        with self._attempts_lock:
            record, result = mutator(self._attempts.get(owner_id))
            if record is None:
                self._attempts.pop(owner_id, None)
            else:
                self._attempts[owner_id] = record
            return result

    def delete_login_attempt(self, owner_id: str) -> None:
        with self._attempts_lock:
            self._attempts.pop(owner_id, None)

    def add_reset_token(self, record: PasswordResetToken) -> None:
        with self._tokens_lock:
            if record.token_hash in self._tokens:
                raise GuardStoreError("Duplicate reset token")
            self._tokens[record.token_hash] = record

    def get_reset_token(self, token_hash: str) -> Optional[PasswordResetToken]:
        with self._tokens_lock:
            return self._tokens.get(token_hash)

    def update_reset_token(self, token_hash: str, mutator: TokenMutator[T]) -> T:
        with self._tokens_lock:
            record, result = mutator(self._tokens.get(token_hash))
            if record is None:
                self._tokens.pop(token_hash, None)
            else:
                self._tokens[token_hash] = record
            return result

    def delete_reset_token(self, token_hash: str) -> None:
        with self._tokens_lock:
            self._tokens.pop(token_hash, None)

    def purge_reset_tokens(self, now: datetime) -> int:
        with self._tokens_lock:
            stale = [
                key for key, record in self._tokens.items()
                if record.used or record.is_expired(now)
            ]
            for key in stale:
                del self._tokens[key]
            return len(stale)

    def replace_verification_token(self, record: EmailVerificationToken) -> int:
        with self._verifications_lock:
            earlier = [
                key for key, existing in self._verifications.items()
                if existing.owner_id == record.owner_id
            ]
            for key in earlier:
                del self._verifications[key]
            self._verifications[record.token_hash] = record
            return len(earlier)

    def get_verification_token(self, token_hash: str) -> Optional[EmailVerificationToken]:
        with self._verifications_lock:
            return self._verifications.get(token_hash)

    def update_verification_token(
        self, token_hash: str, mutator: VerificationMutator[T]
    ) -> T:
        with self._verifications_lock:
            record, result = mutator(self._verifications.get(token_hash))
            if record is None:
                self._verifications.pop(token_hash, None)
            else:
                self._verifications[token_hash] = record
            return result

    def purge_verification_tokens(self, now: datetime) -> int:
        with self._verifications_lock:
            stale = [
                key for key, record in self._verifications.items()
                if record.used or record.is_expired(now)
            ]
            for key in stale:
                del self._verifications[key]
            return len(stale)


def _to_db(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _from_db(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


class SQLiteGuardStore(GuardStore):
    """
    Guard state in SQLite.

    Usage:
        store = SQLiteGuardStore(config.paths.database_path)
        guard = CredentialGuard(config, store)

    All timestamps are stored as UTC ISO-8601 strings with microseconds,
    so lexical comparison in SQL matches chronological order.
    """

    __slots__ = ("_db_path",)

    _SCHEMA: Final[str] = """
    CREATE TABLE IF NOT EXISTS password_history (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        owner_id TEXT NOT NULL,
        password_hash TEXT NOT NULL,
        created_at TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_password_history_owner ON password_history(owner_id);

    CREATE TABLE IF NOT EXISTS login_attempts (
        owner_id TEXT PRIMARY KEY,
        attempts INTEGER NOT NULL DEFAULT 0 CHECK (attempts >= 0),
        locked_until TEXT,
        last_attempt TEXT NOT NULL
    );

    CREATE TABLE IF NOT EXISTS password_reset_tokens (
        token_hash TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        expires_at TEXT NOT NULL,
        used INTEGER NOT NULL DEFAULT 0,
        created_at TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_reset_tokens_expires ON password_reset_tokens(expires_at);

    CREATE TABLE IF NOT EXISTS email_verification_tokens (
        token_hash TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        expires_at TEXT NOT NULL,
        verified_at TEXT,
        created_at TEXT
    );

    CREATE INDEX IF NOT EXISTS idx_verification_tokens_owner ON email_verification_tokens(owner_id);
    """

    def __init__(self, db_path: Path | str) -> None:
        """
        Initialize the store and create its tables.

        Args:
            db_path: Path to SQLite database file
        """
        self._db_path = Path(db_path)
        self.initialize_db()

    def _get_connection(self) -> sqlite3.Connection:
        """Get a database connection in autocommit mode."""
        conn = sqlite3.connect(self._db_path, timeout=30, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    @contextmanager
    def _transaction(self, immediate: bool = False) -> Iterator[sqlite3.Connection]:
        """
        Run a block in one transaction.

        immediate=True takes the write lock up front so concurrent
        read-modify-write sequences serialize instead of deadlocking.
        """
        try:
            with closing(self._get_connection()) as conn:
                conn.execute("BEGIN IMMEDIATE" if immediate else "BEGIN")
                try:
                    yield conn
                except BaseException:
                    conn.execute("ROLLBACK")
                    raise
                conn.execute("COMMIT")
        except sqlite3.Error as e:
            raise GuardStoreError(f"Guard store unavailable: {e}") from e

    def initialize_db(self) -> None:
        """Initialize the database schema."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            with closing(self._get_connection()) as conn:
                conn.executescript(self._SCHEMA)
        except sqlite3.Error as e:
            raise GuardStoreError(f"Cannot initialize guard store: {e}") from e

    def get_history(self, owner_id: str) -> List[PasswordHistoryEntry]:
        with self._transaction() as conn:
            rows = conn.execute("""
                SELECT owner_id, password_hash, created_at FROM password_history
                WHERE owner_id = ?
                ORDER BY id ASC
            """, (owner_id,)).fetchall()
        return [
            PasswordHistoryEntry(
                owner_id=row["owner_id"],
                password_hash=row["password_hash"],
                created_at=_from_db(row["created_at"]),
            )
            for row in rows
        ]

    def append_history(self, owner_id: str, entry: PasswordHistoryEntry, limit: int) -> None:
        with self._transaction(immediate=True) as conn:
            conn.execute("""
                INSERT INTO password_history (owner_id, password_hash, created_at)
                VALUES (?, ?, ?)
            """, (owner_id, entry.password_hash, _to_db(entry.created_at)))
            conn.execute("""
                DELETE FROM password_history
                WHERE owner_id = ? AND id NOT IN (
                    SELECT id FROM password_history
                    WHERE owner_id = ?
                    ORDER BY id DESC
                    LIMIT ?
                )
            """, (owner_id, owner_id, max(limit, 0)))

    @staticmethod
    def _fetch_attempt(conn: sqlite3.Connection, owner_id: str) -> Optional[LoginAttemptRecord]:
        row = conn.execute(
            "SELECT * FROM login_attempts WHERE owner_id = ?", (owner_id,)
        ).fetchone()
        if not row:
            return None
        return LoginAttemptRecord(
            owner_id=row["owner_id"],
            attempts=row["attempts"],
            locked_until=_from_db(row["locked_until"]),
            last_attempt=_from_db(row["last_attempt"]),
        )

    def get_login_attempt(self, owner_id: str) -> Optional[LoginAttemptRecord]:
        with self._transaction() as conn:
            return self._fetch_attempt(conn, owner_id)

    def update_login_attempt(self, owner_id: str, mutator: AttemptMutator[T]) -> T:
        with self._transaction(immediate=True) as conn:
            record, result = mutator(self._fetch_attempt(conn, owner_id))
            if record is None:
                conn.execute("DELETE FROM login_attempts WHERE owner_id = ?", (owner_id,))
            else:
                conn.execute("""
                    INSERT INTO login_attempts (owner_id, attempts, locked_until, last_attempt)
                    VALUES (?, ?, ?, ?)
                    ON CONFLICT(owner_id) DO UPDATE SET
                        attempts = excluded.attempts,
                        locked_until = excluded.locked_until,
                        last_attempt = excluded.last_attempt
                """, (
                    owner_id,
                    record.attempts,
                    _to_db(record.locked_until),
                    _to_db(record.last_attempt),
                ))
            return result

    def delete_login_attempt(self, owner_id: str) -> None:
        with self._transaction(immediate=True) as conn:
            conn.execute("DELETE FROM login_attempts WHERE owner_id = ?", (owner_id,))

    def add_reset_token(self, record: PasswordResetToken) -> None:
        try:
            with self._transaction(immediate=True) as conn:
                conn.execute("""
                    INSERT INTO password_reset_tokens
                        (token_hash, owner_id, expires_at, used, created_at)
                    VALUES (?, ?, ?, ?, ?)
                """, (
                    record.token_hash,
                    record.owner_id,
                    _to_db(record.expires_at),
                    int(record.used),
                    _to_db(record.created_at),
                ))
        except GuardStoreError as e:
            if isinstance(e.__cause__, sqlite3.IntegrityError):
                raise GuardStoreError("Duplicate reset token") from e.__cause__
            raise

    @staticmethod
    def _fetch_token(conn: sqlite3.Connection, token_hash: str) -> Optional[PasswordResetToken]:
        row = conn.execute(
            "SELECT * FROM password_reset_tokens WHERE token_hash = ?", (token_hash,)
        ).fetchone()
        if not row:
            return None
        return PasswordResetToken(
            token_hash=row["token_hash"],
            owner_id=row["owner_id"],
            expires_at=_from_db(row["expires_at"]),
            used=bool(row["used"]),
            created_at=_from_db(row["created_at"]),
        )

    def get_reset_token(self, token_hash: str) -> Optional[PasswordResetToken]:
        with self._transaction() as conn:
            return self._fetch_token(conn, token_hash)

    def update_reset_token(self, token_hash: str, mutator: TokenMutator[T]) -> T:
        with self._transaction(immediate=True) as conn:
            record, result = mutator(self._fetch_token(conn, token_hash))
            if record is None:
                conn.execute(
                    "DELETE FROM password_reset_tokens WHERE token_hash = ?", (token_hash,)
                )
            else:
                conn.execute("""
                    UPDATE password_reset_tokens
                    SET used = ?, expires_at = ?
                    WHERE token_hash = ?
                """, (int(record.used), _to_db(record.expires_at), token_hash))
            return result

    def delete_reset_token(self, token_hash: str) -> None:
        with self._transaction(immediate=True) as conn:
            conn.execute(
                "DELETE FROM password_reset_tokens WHERE token_hash = ?", (token_hash,)
            )

    def purge_reset_tokens(self, now: datetime) -> int:
        with self._transaction(immediate=True) as conn:
            result = conn.execute("""
                DELETE FROM password_reset_tokens
                WHERE used = 1 OR expires_at <= ?
            """, (_to_db(now),))
            return result.rowcount

    def replace_verification_token(self, record: EmailVerificationToken) -> int:
        with self._transaction(immediate=True) as conn:
            removed = conn.execute(
                "DELETE FROM email_verification_tokens WHERE owner_id = ?", (record.owner_id,)
            ).rowcount
            conn.execute("""
                INSERT INTO email_verification_tokens
                    (token_hash, owner_id, expires_at, verified_at, created_at)
                VALUES (?, ?, ?, ?, ?)
            """, (
                record.token_hash,
                record.owner_id,
                _to_db(record.expires_at),
                _to_db(record.verified_at),
                _to_db(record.created_at),
            ))
            return removed

    @staticmethod
    def _fetch_verification(
        conn: sqlite3.Connection, token_hash: str
    ) -> Optional[EmailVerificationToken]:
        row = conn.execute(
            "SELECT * FROM email_verification_tokens WHERE token_hash = ?", (token_hash,)
        ).fetchone()
        if not row:
            return None
        return EmailVerificationToken(
            token_hash=row["token_hash"],
            owner_id=row["owner_id"],
            expires_at=_from_db(row["expires_at"]),
            verified_at=_from_db(row["verified_at"]),
            created_at=_from_db(row["created_at"]),
        )

    def get_verification_token(self, token_hash: str) -> Optional[EmailVerificationToken]:
        with self._transaction() as conn:
            return self._fetch_verification(conn, token_hash)

    def update_verification_token(
        self, token_hash: str, mutator: VerificationMutator[T]
    ) -> T:
        with self._transaction(immediate=True) as conn:
            record, result = mutator(self._fetch_verification(conn, token_hash))
            if record is None:
                conn.execute(
                    "DELETE FROM email_verification_tokens WHERE token_hash = ?", (token_hash,)
                )
            else:
                conn.execute("""
                    UPDATE email_verification_tokens
                    SET verified_at = ?, expires_at = ?
                    WHERE token_hash = ?
                """, (_to_db(record.verified_at), _to_db(record.expires_at), token_hash))
            return result

    def purge_verification_tokens(self, now: datetime) -> int:
        with self._transaction(immediate=True) as conn:
            result = conn.execute("""
                DELETE FROM email_verification_tokens
                WHERE verified_at IS NOT NULL OR expires_at <= ?
            """, (_to_db(now),))
            return result.rowcount
