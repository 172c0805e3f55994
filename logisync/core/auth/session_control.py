"""
Session Control
================

Login sessions issued after successful authentication.

Security Features:
- Cryptographically random opaque session tokens
- Only token hashes are stored
- Sliding expiration on activity
- Per-owner concurrent session limit
- Bulk invalidation after password change or reset
"""

from __future__ import annotations

import hashlib
import secrets
import sqlite3
import uuid
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Final, List, Optional

from logisync.core.auth.results import GuardStoreError
from logisync.core.config import SessionConfig


SESSION_TOKEN_LENGTH: Final[int] = 64  # bytes


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _to_db(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


@dataclass
class Session:
    """
    Authenticated login session.

    A session expires after a period of inactivity.
    """
    id: str
    owner_id: str
    token_hash: str
    created_at: datetime
    expires_at: datetime
    last_activity: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    is_active: bool = True

    def __repr__(self) -> str:
        """Safe representation without token."""
        return (
            f"Session(id={self.id!r}, owner_id={self.owner_id!r}, "
            f"expires_at={self.expires_at.isoformat()})"
        )

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_valid(self, now: datetime) -> bool:
        return self.is_active and not self.is_expired(now)


class SessionError(Exception):
    """Base exception for session errors."""
    pass


class SessionExpiredError(SessionError):
    """Raised when a session has expired."""
    pass


class SessionInvalidError(SessionError):
    """Raised when a session token is unknown or revoked."""
    pass


class SessionManager:
    """
    Session management with SQLite backend.

    Usage:
        manager = SessionManager(db_path)

        token = manager.create_session(owner_id)
        session = manager.validate_session(token)
        manager.invalidate_session(token)

    Security Notes:
        - Tokens carry 512 bits of entropy
        - Only token hashes are stored (tokens never hit disk)
        - When the per-owner limit is reached the oldest session is revoked
    """

    __slots__ = ("_db_path", "_config", "_clock")

    _SCHEMA: Final[str] = """
    CREATE TABLE IF NOT EXISTS sessions (
        id TEXT PRIMARY KEY,
        owner_id TEXT NOT NULL,
        token_hash TEXT UNIQUE NOT NULL,
        created_at TEXT NOT NULL,
        expires_at TEXT NOT NULL,
        last_activity TEXT NOT NULL,
        ip_address TEXT,
        user_agent TEXT,
        is_active INTEGER NOT NULL DEFAULT 1
    );

    CREATE INDEX IF NOT EXISTS idx_sessions_owner ON sessions(owner_id);
    CREATE INDEX IF NOT EXISTS idx_sessions_expires ON sessions(expires_at);
    """

    def __init__(
        self,
        db_path: Path | str,
        config: Optional[SessionConfig] = None,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        """
        Initialize the session manager.

        Args:
            db_path: Path to SQLite database
            config: Session settings (default: 15 min timeout, 5 per owner)
            clock: Returns the current aware UTC datetime
        """
        self._db_path = Path(db_path)
        self._config = config or SessionConfig()
        self._clock = clock
        self.initialize_db()

    def _get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def initialize_db(self) -> None:
        """Initialize the database schema."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            with closing(self._get_connection()) as conn:
                conn.executescript(self._SCHEMA)
                conn.commit()
        except sqlite3.Error as e:
            raise GuardStoreError(f"Cannot initialize session store: {e}") from e

    @staticmethod
    def _generate_token() -> str:
        return secrets.token_urlsafe(SESSION_TOKEN_LENGTH)

    @staticmethod
    def _hash_token(token: str) -> str:
        return hashlib.sha256(token.encode()).hexdigest()

    def create_session(
        self,
        owner_id: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> str:
        """
        Create a new session for an owner.

        Args:
            owner_id: The authenticated owner
            ip_address: Optional client IP address
            user_agent: Optional client user agent

        Returns:
            Session token (caller must securely transmit this)
        """
        now = self._clock()
        token = self._generate_token()

        try:
            with closing(self._get_connection()) as conn, conn:
                active = conn.execute("""
                    SELECT id FROM sessions
                    WHERE owner_id = ? AND is_active = 1 AND expires_at > ?
                    ORDER BY created_at ASC
                """, (owner_id, _to_db(now))).fetchall()

                overflow = len(active) - self._config.max_sessions_per_user + 1
                for row in active[:max(overflow, 0)]:
                    conn.execute("UPDATE sessions SET is_active = 0 WHERE id = ?", (row["id"],))

                conn.execute("""
                    INSERT INTO sessions (
                        id, owner_id, token_hash, created_at, expires_at,
                        last_activity, ip_address, user_agent
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """, (
                    str(uuid.uuid4()),
                    owner_id,
                    self._hash_token(token),
                    _to_db(now),
                    _to_db(now + timedelta(seconds=self._config.timeout_seconds)),
                    _to_db(now),
                    ip_address,
                    user_agent,
                ))
        except sqlite3.Error as e:
            raise GuardStoreError(f"Cannot create session: {e}") from e

        return token

    def validate_session(self, token: str, extend: bool = True) -> Session:
        """
        Validate a session token and optionally extend its lifetime.

        Raises:
            SessionInvalidError: If token is unknown or revoked
            SessionExpiredError: If session has expired
        """
        now = self._clock()

        try:
            with closing(self._get_connection()) as conn, conn:
                row = conn.execute(
                    "SELECT * FROM sessions WHERE token_hash = ?", (self._hash_token(token),)
                ).fetchone()

                if not row:
                    raise SessionInvalidError("Invalid session token")

                session = self._row_to_session(row)

                if not session.is_active:
                    raise SessionInvalidError("Session has been invalidated")

                if session.is_expired(now):
                    conn.execute("UPDATE sessions SET is_active = 0 WHERE id = ?", (session.id,))
                    conn.commit()
                    raise SessionExpiredError("Session has expired")

                if extend:
                    self._extend_session(conn, session, now)
        except sqlite3.Error as e:
            raise GuardStoreError(f"Cannot validate session: {e}") from e

        return session

    def _extend_session(self, conn: sqlite3.Connection, session: Session, now: datetime) -> None:
        """Extend expiry when less than the threshold remains."""
        remaining = (session.expires_at - now).total_seconds()

        if remaining < self._config.extend_threshold_seconds:
            session.expires_at = now + timedelta(seconds=self._config.timeout_seconds)
        session.last_activity = now

        conn.execute("""
            UPDATE sessions SET expires_at = ?, last_activity = ? WHERE id = ?
        """, (_to_db(session.expires_at), _to_db(now), session.id))

    def invalidate_session(self, token: str) -> None:
        """Invalidate a session (logout)."""
        try:
            with closing(self._get_connection()) as conn, conn:
                conn.execute(
                    "UPDATE sessions SET is_active = 0 WHERE token_hash = ?",
                    (self._hash_token(token),),
                )
        except sqlite3.Error as e:
            raise GuardStoreError(f"Cannot invalidate session: {e}") from e

    def invalidate_all_sessions(self, owner_id: str, except_token: Optional[str] = None) -> int:
        """
        Invalidate every session of an owner (logout everywhere).

        Args:
            owner_id: Owner whose sessions are revoked
            except_token: Session token to leave active, if any

        Returns:
            Number of sessions invalidated
        """
        keep_hash = self._hash_token(except_token) if except_token else ""
        try:
            with closing(self._get_connection()) as conn, conn:
                result = conn.execute("""
                    UPDATE sessions SET is_active = 0
                    WHERE owner_id = ? AND is_active = 1 AND token_hash != ?
                """, (owner_id, keep_hash))
                return result.rowcount
        except sqlite3.Error as e:
            raise GuardStoreError(f"Cannot invalidate sessions: {e}") from e

    def get_owner_sessions(self, owner_id: str) -> List[Session]:
        """Active, unexpired sessions of an owner, most recently used first."""
        try:
            with closing(self._get_connection()) as conn:
                rows = conn.execute("""
                    SELECT * FROM sessions
                    WHERE owner_id = ? AND is_active = 1 AND expires_at > ?
                    ORDER BY last_activity DESC
                """, (owner_id, _to_db(self._clock()))).fetchall()
        except sqlite3.Error as e:
            raise GuardStoreError(f"Cannot list sessions: {e}") from e

        return [self._row_to_session(row) for row in rows]

    def cleanup_expired_sessions(self, retention_days: int = 30) -> int:
        """
        Deactivate expired sessions and delete those older than the retention window.

        Returns:
            Number of sessions deleted
        """
        now = self._clock()
        cutoff = now - timedelta(days=retention_days)

        try:
            with closing(self._get_connection()) as conn, conn:
                conn.execute("""
                    UPDATE sessions SET is_active = 0
                    WHERE is_active = 1 AND expires_at <= ?
                """, (_to_db(now),))
                result = conn.execute(
                    "DELETE FROM sessions WHERE expires_at < ?", (_to_db(cutoff),)
                )
                return result.rowcount
        except sqlite3.Error as e:
            raise GuardStoreError(f"Cannot clean up sessions: {e}") from e

    @staticmethod
    def _row_to_session(row: sqlite3.Row) -> Session:
        return Session(
            id=row["id"],
            owner_id=row["owner_id"],
            token_hash=row["token_hash"],
            created_at=datetime.fromisoformat(row["created_at"]),
            expires_at=datetime.fromisoformat(row["expires_at"]),
            last_activity=datetime.fromisoformat(row["last_activity"]),
            ip_address=row["ip_address"],
            user_agent=row["user_agent"],
            is_active=bool(row["is_active"]),
        )
