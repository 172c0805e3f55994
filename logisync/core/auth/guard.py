"""
Credential & Session Guard
==========================

Central authority for the password lifecycle and brute-force mitigation.

Responsibilities:
- Password hashing and verification (Argon2id)
- Password policy validation and strength scoring
- Password reuse prevention via bounded history
- Failed-login lockout with timed expiry
- Password reset token issuance, validation and expiry
- Single-use email verification tokens

Lockout state machine:
    unlocked(attempts=0) -> failing(1..max-1) -> locked(until=T)
    Failures while locked are reported as locked and do not extend T.
    The first check or failure at or after T resets the counter to 0.

Reset token state machine:
    issued -> valid (not used, now < expires_at) -> used | expired
    Both terminal states reject further use.

Verification tokens follow the same machine. Issuing one for an owner
replaces any earlier ones.

Policy violations, lockouts and invalid tokens are returned as
structured results. Storage failures raise GuardStoreError.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from logisync.core.auth import policy as password_policy
from logisync.core.auth.argon2_auth import Argon2Hasher
from logisync.core.auth.models import (
    EmailVerificationToken,
    LoginAttemptRecord,
    PasswordHistoryEntry,
    PasswordResetToken,
)
from logisync.core.auth.results import (
    FailedLoginResult,
    LockStatus,
    PolicyResult,
    StrengthResult,
    TokenError,
    TokenVerification,
)
from logisync.core.auth.store import GuardStore
from logisync.core.config import GuardConfig, PasswordPolicy


Clock = Callable[[], datetime]

logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def hash_token(token: str) -> str:
    """
    Hash a reset token for storage.

    SHA-256 keeps lookups fast while preventing token recovery
    from the store.
    """
    return hashlib.sha256(token.encode()).hexdigest()


class CredentialGuard:
    """
    Credential & Session Guard.

    Constructed once at startup and injected into request handlers.

    Usage:
        config = GuardConfig.load()
        guard = CredentialGuard(config, SQLiteGuardStore(config.paths.database_path))

        result = guard.validate_password_policy(new_password)
        if not result.valid:
            return result.messages

        status = guard.is_account_locked(user_id)
        if not status.locked and not guard.verify_password(password, stored_hash):
            guard.record_failed_login(user_id)

    Security Notes:
        - Plaintext passwords and reset tokens are never logged
        - Reset tokens are stored only as SHA-256 hashes
        - Hash verification never runs while a store lock is held
    """

    __slots__ = ("_config", "_store", "_hasher", "_clock")

    def __init__(
        self,
        config: GuardConfig,
        store: GuardStore,
        hasher: Optional[Argon2Hasher] = None,
        clock: Clock = utc_now,
    ) -> None:
        """
        Initialize the guard.

        Args:
            config: Guard configuration
            store: Backing store for history, attempts and tokens
            hasher: Password hasher (built from config.hashing if omitted)
            clock: Returns the current aware UTC datetime
        """
        self._config = config
        self._store = store
        self._hasher = hasher or Argon2Hasher.from_config(config.hashing)
        self._clock = clock

    @property
    def store(self) -> GuardStore:
        return self._store

    @property
    def policy(self) -> PasswordPolicy:
        return self._config.policy

    def now(self) -> datetime:
        return self._clock()

    def get_policy(self) -> PasswordPolicy:
        """Return the active (immutable) password policy."""
        return self._config.policy

    # ------------------------------------------------------------------
    # Hashing
    # ------------------------------------------------------------------

    def hash_password(self, password: str) -> str:
        """Produce a salted Argon2id hash of the password."""
        return self._hasher.hash(password)

    def verify_password(self, password: str, password_hash: Optional[str]) -> bool:
        """
        Compare a password with a stored hash using argon2's own verify.

        Empty passwords and unusable hashes still cost a full verification.
        """
        return self._hasher.verify(password, password_hash)

    def needs_rehash(self, password_hash: str) -> bool:
        """True when a stored hash was made with other cost parameters."""
        return self._hasher.needs_rehash(password_hash)

    # ------------------------------------------------------------------
    # Policy
    # ------------------------------------------------------------------

    def validate_password_policy(self, password: str) -> PolicyResult:
        return password_policy.validate_password(password, self._config.policy)

    def calculate_password_strength(self, password: str) -> StrengthResult:
        return password_policy.calculate_strength(password, self._config.policy)

    def is_password_expired(self, password_created_at: datetime) -> bool:
        return password_policy.is_expired(
            password_created_at, self.now(), self._config.policy.max_age_days
        )

    # ------------------------------------------------------------------
    # History
    # ------------------------------------------------------------------

    def is_password_previously_used(self, owner_id: str, password: str) -> bool:
        """
        Check the candidate against the owner's most recent passwords.

        Returns:
            True on the first history entry that matches
        """
        window = self._config.policy.prevent_reuse
        if window <= 0:
            return False

        history = self._store.get_history(owner_id)[-window:]
        for entry in reversed(history):
            if self._hasher.verify(password, entry.password_hash):
                return True
        return False

    def record_password_in_history(self, owner_id: str, password_hash: str) -> None:
        """Append a hash to the owner's history, evicting the oldest beyond the window."""
        entry = PasswordHistoryEntry(
            owner_id=owner_id,
            password_hash=password_hash,
            created_at=self.now(),
        )
        self._store.append_history(owner_id, entry, self._config.policy.prevent_reuse)

    # ------------------------------------------------------------------
    # Lockout
    # ------------------------------------------------------------------

    def record_failed_login(self, owner_id: str) -> FailedLoginResult:
        """
        Record a failed login attempt and lock the account at the limit.

        The read, increment and compare run as one atomic store mutation.
        """
        now = self.now()
        max_attempts = self._config.lockout.max_login_attempts
        lockout = timedelta(seconds=self._config.lockout.lockout_duration_seconds)

        def mutate(
            record: Optional[LoginAttemptRecord],
        ) -> tuple[Optional[LoginAttemptRecord], FailedLoginResult]:
            if record is not None and record.is_locked(now):
                return record, FailedLoginResult(
                    locked=True,
                    attempts_remaining=0,
                    locked_until=record.locked_until,
                )

            attempts = 0 if record is None or record.lock_expired(now) else record.attempts
            attempts += 1

            if attempts >= max_attempts:
                locked_until = now + lockout
                updated = LoginAttemptRecord(
                    owner_id=owner_id,
                    attempts=attempts,
                    last_attempt=now,
                    locked_until=locked_until,
                )
                return updated, FailedLoginResult(
                    locked=True,
                    attempts_remaining=0,
                    locked_until=locked_until,
                )

            updated = LoginAttemptRecord(
                owner_id=owner_id,
                attempts=attempts,
                last_attempt=now,
            )
            return updated, FailedLoginResult(
                locked=False,
                attempts_remaining=max_attempts - attempts,
            )

        result = self._store.update_login_attempt(owner_id, mutate)
        if result.locked:
            logger.warning(
                "Account %s locked until %s after failed logins",
                owner_id, result.locked_until.isoformat(),
            )
        else:
            logger.info(
                "Failed login for %s, %d attempts remaining",
                owner_id, result.attempts_remaining,
            )
        return result

    def reset_failed_logins(self, owner_id: str) -> None:
        """Clear the attempt record (successful login or explicit unlock)."""
        self._store.delete_login_attempt(owner_id)

    def is_account_locked(self, owner_id: str) -> LockStatus:
        """
        Check whether an account is locked.

        A lock that has passed its expiry is cleared as a side effect.
        """
        now = self.now()

        def mutate(
            record: Optional[LoginAttemptRecord],
        ) -> tuple[Optional[LoginAttemptRecord], LockStatus]:
            if record is None or record.locked_until is None:
                return record, LockStatus(locked=False)
            if record.is_locked(now):
                return record, LockStatus(locked=True, locked_until=record.locked_until)
            return None, LockStatus(locked=False)

        return self._store.update_login_attempt(owner_id, mutate)

    # ------------------------------------------------------------------
    # Reset tokens
    # ------------------------------------------------------------------

    def generate_password_reset_token(self, owner_id: str) -> str:
        """
        Issue a password reset token.

        Returns:
            Opaque hex token for out-of-band delivery. Only its hash is stored.
        """
        settings = self._config.reset_tokens
        now = self.now()
        token = secrets.token_hex(settings.token_bytes)
        self._store.add_reset_token(PasswordResetToken(
            token_hash=hash_token(token),
            owner_id=owner_id,
            expires_at=now + timedelta(seconds=settings.expiry_seconds),
            created_at=now,
        ))
        logger.info("Password reset token issued for %s", owner_id)
        return token

    def verify_password_reset_token(self, token: str) -> TokenVerification:
        """
        Check a reset token without consuming it.

        Expired tokens are evicted. Call consume_password_reset_token
        (or mark_reset_token_used) when committing the password change.
        """
        now = self.now()
        key = hash_token(token)

        def mutate(
            record: Optional[PasswordResetToken],
        ) -> tuple[Optional[PasswordResetToken], TokenVerification]:
            return self._check_token(record, now)

        return self._store.update_reset_token(key, mutate)

    def consume_password_reset_token(self, token: str) -> TokenVerification:
        """
        Verify a reset token and mark it used in one atomic step.

        Of two concurrent resets presenting the same token, exactly one
        receives valid=True; the other sees ALREADY_USED.
        """
        now = self.now()
        key = hash_token(token)

        def mutate(
            record: Optional[PasswordResetToken],
        ) -> tuple[Optional[PasswordResetToken], TokenVerification]:
            record, verification = self._check_token(record, now)
            if verification.valid:
                record = record.mark_used()
            return record, verification

        return self._store.update_reset_token(key, mutate)

    @staticmethod
    def _check_token(
        record: Optional[PasswordResetToken],
        now: datetime,
    ) -> tuple[Optional[PasswordResetToken], TokenVerification]:
        if record is None:
            return None, TokenVerification(valid=False, error=TokenError.NOT_FOUND)
        if record.used:
            return record, TokenVerification(valid=False, error=TokenError.ALREADY_USED)
        if record.is_expired(now):
            return None, TokenVerification(valid=False, error=TokenError.EXPIRED)
        return record, TokenVerification(valid=True, owner_id=record.owner_id)

    def mark_reset_token_used(self, token: str) -> None:
        """Mark a token consumed. Unknown or already-used tokens are left as they are."""

        def mutate(
            record: Optional[PasswordResetToken],
        ) -> tuple[Optional[PasswordResetToken], None]:
            if record is None or record.used:
                return record, None
            return record.mark_used(), None

        self._store.update_reset_token(hash_token(token), mutate)

    def release_password_reset_token(self, token: str) -> None:
        """
        Undo a consume whose password change could not be saved.

        The token becomes usable again until its original expiry.
        """

        def mutate(
            record: Optional[PasswordResetToken],
        ) -> tuple[Optional[PasswordResetToken], None]:
            if record is None or not record.used:
                return record, None
            return replace(record, used=False), None

        self._store.update_reset_token(hash_token(token), mutate)
        logger.warning("Password reset token released after a failed update")

    def cleanup_expired_reset_tokens(self) -> int:
        """Remove reset tokens that are expired or used. Returns the count removed."""
        removed = self._store.purge_reset_tokens(self.now())
        logger.info("Cleaned up %d expired reset tokens", removed)
        return removed

    # ------------------------------------------------------------------
    # Email verification tokens
    # ------------------------------------------------------------------

    def generate_email_verification_token(self, owner_id: str) -> str:
        """
        Issue an email verification token, replacing the owner's earlier ones.

        Returns:
            Opaque hex token for out-of-band delivery. Only its hash is stored.
        """
        settings = self._config.verification
        now = self.now()
        token = secrets.token_hex(settings.token_bytes)
        replaced = self._store.replace_verification_token(EmailVerificationToken(
            token_hash=hash_token(token),
            owner_id=owner_id,
            expires_at=now + timedelta(seconds=settings.expiry_seconds),
            created_at=now,
        ))
        logger.info(
            "Email verification token issued for %s (%d replaced)", owner_id, replaced
        )
        return token

    def consume_email_verification_token(self, token: str) -> TokenVerification:
        """
        Verify an email verification token and mark it used atomically.

        Unknown, used and expired tokens are all reported as
        VERIFICATION_INVALID. Expired tokens are evicted.
        """
        now = self.now()
        invalid = TokenVerification(valid=False, error=TokenError.VERIFICATION_INVALID)

        def mutate(
            record: Optional[EmailVerificationToken],
        ) -> tuple[Optional[EmailVerificationToken], TokenVerification]:
            if record is None:
                return None, invalid
            if record.used:
                return record, invalid
            if record.is_expired(now):
                return None, invalid
            return record.mark_verified(now), TokenVerification(
                valid=True, owner_id=record.owner_id
            )

        return self._store.update_verification_token(hash_token(token), mutate)

    def cleanup_expired_verification_tokens(self) -> int:
        """Remove verification tokens that are expired or used."""
        removed = self._store.purge_verification_tokens(self.now())
        logger.info("Cleaned up %d expired verification tokens", removed)
        return removed
