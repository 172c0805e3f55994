"""
Guard state records.

Note: password hashes and token hashes are never exposed in repr.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class PasswordHistoryEntry:
    owner_id: str
    password_hash: str
    created_at: datetime

    def __repr__(self) -> str:
        return (
            f"PasswordHistoryEntry(owner_id={self.owner_id!r}, "
            f"created_at={self.created_at.isoformat()})"
        )


@dataclass(frozen=True)
class LoginAttemptRecord:
    """Failed-login counter for one owner."""
    owner_id: str
    attempts: int
    last_attempt: datetime
    locked_until: Optional[datetime] = None

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and now < self.locked_until

    def lock_expired(self, now: datetime) -> bool:
        return self.locked_until is not None and now >= self.locked_until


@dataclass(frozen=True)
class PasswordResetToken:
    """
    Stored reset token. Only the SHA-256 of the token is kept;
    the plaintext is handed to the caller once for delivery.
    """
    token_hash: str
    owner_id: str
    expires_at: datetime
    used: bool = False
    created_at: Optional[datetime] = None

    def __repr__(self) -> str:
        return (
            f"PasswordResetToken(owner_id={self.owner_id!r}, "
            f"expires_at={self.expires_at.isoformat()}, used={self.used})"
        )

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def is_valid(self, now: datetime) -> bool:
        return not self.used and not self.is_expired(now)

    def mark_used(self) -> PasswordResetToken:
        return replace(self, used=True)


@dataclass(frozen=True)
class EmailVerificationToken:
    """Stored email verification token, keyed by SHA-256 like reset tokens."""
    token_hash: str
    owner_id: str
    expires_at: datetime
    verified_at: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def __repr__(self) -> str:
        return (
            f"EmailVerificationToken(owner_id={self.owner_id!r}, "
            f"expires_at={self.expires_at.isoformat()}, used={self.used})"
        )

    @property
    def used(self) -> bool:
        return self.verified_at is not None

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at

    def mark_verified(self, now: datetime) -> EmailVerificationToken:
        return replace(self, verified_at=now)
