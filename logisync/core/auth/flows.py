"""
Authentication Flows
====================

Registration, login, password change, password reset and email
verification, wired through the credential guard in the order each
flow requires:

- Register: validate policy -> hash -> store credential -> record history
  -> issue verification token
- Login: lock check -> verify -> record failure | reset failures + session
- Change: verify current -> policy -> reuse -> hash -> store -> history
- Reset: verify token -> policy -> reuse -> consume token -> store -> history
- Verify email: consume verification token -> mark account verified

Every flow returns a FlowResult; nothing here raises for user error.
"""

from __future__ import annotations

import logging
import math
from typing import Callable, Optional

from logisync.core.auth.guard import CredentialGuard
from logisync.core.auth.results import (
    ErrorCode,
    FlowResult,
    GuardStoreError,
    PolicyResult,
    TokenError,
)
from logisync.core.auth.session_control import SessionManager
from logisync.core.auth.user_manager import (
    UserCredentials,
    UserExistsError,
    UserManager,
    UserNotFoundError,
)
from logisync.security.audit import AuditEventType, AuditSeverity, TamperAwareAuditLog
from logisync.utils.validators import (
    ValidationError,
    validate_email,
    validate_password_input,
    validate_token,
)


logger = logging.getLogger(__name__)

ResetTokenSender = Callable[[UserCredentials, str], None]
VerificationTokenSender = Callable[[UserCredentials, str], None]

RESET_REQUESTED_MESSAGE = "If an account exists, a reset link will be sent."
VERIFICATION_REQUESTED_MESSAGE = "If an account exists, a verification email will be sent"
INVALID_CREDENTIALS_MESSAGE = "Invalid email or password"


class AuthFlows:
    """
    Request-level authentication operations.

    Usage:
        flows = AuthFlows(guard, users, sessions, send_reset_token=mailer.send_reset)
        result = flows.login(email, password, ip_address=request.remote_addr)
        if result.success:
            token = result.data["token"]
    """

    def __init__(
        self,
        guard: CredentialGuard,
        users: UserManager,
        sessions: SessionManager,
        audit: Optional[TamperAwareAuditLog] = None,
        send_reset_token: Optional[ResetTokenSender] = None,
        send_verification_token: Optional[VerificationTokenSender] = None,
    ) -> None:
        self._guard = guard
        self._users = users
        self._sessions = sessions
        self._audit_log = audit
        self._send_reset_token = send_reset_token
        self._send_verification_token = send_verification_token

    @property
    def guard(self) -> CredentialGuard:
        return self._guard

    @property
    def sessions(self) -> SessionManager:
        return self._sessions

    def _audit(self, event_type: AuditEventType, description: str,
               severity: AuditSeverity = AuditSeverity.INFO, **kwargs) -> None:
        if self._audit_log is not None:
            self._audit_log.log(event_type, severity, description, **kwargs)

    @staticmethod
    def _deliver(sender: Optional[ResetTokenSender], user: UserCredentials,
                 token: str, purpose: str) -> None:
        if sender is None:
            return
        try:
            sender(user, token)
        except Exception:
            # The token stays valid; the user can ask for another email.
            logger.exception("Failed to deliver %s for %s", purpose, user.id)

    @staticmethod
    def _invalid_input(error: ValidationError) -> FlowResult:
        return FlowResult(False, str(error), ErrorCode.VALIDATION_ERROR)

    @staticmethod
    def _policy_failure(result: PolicyResult) -> FlowResult:
        return FlowResult(
            False,
            "Password does not meet requirements",
            ErrorCode.POLICY_VIOLATION,
            errors=tuple(result.messages),
        )

    def _locked_out(self, locked_until) -> FlowResult:
        remaining = (locked_until - self._guard.now()).total_seconds()
        minutes = max(1, math.ceil(remaining / 60))
        return FlowResult(
            False,
            "Account is locked due to too many failed login attempts. "
            f"Try again in {minutes} minute{'s' if minutes != 1 else ''}.",
            ErrorCode.LOCKED_OUT,
            data={"locked_until": locked_until.isoformat()},
        )

    def register(self, email: str, password: str) -> FlowResult:
        try:
            email = validate_email(email)
            validate_password_input(password)
        except ValidationError as e:
            return self._invalid_input(e)

        policy = self._guard.validate_password_policy(password)
        if not policy.valid:
            return self._policy_failure(policy)

        exists = FlowResult(False, "User with this email already exists", ErrorCode.ACCOUNT_EXISTS)
        if self._users.get_user_by_email(email) is not None:
            return exists

        password_hash = self._guard.hash_password(password)
        try:
            user = self._users.create_user(email, password_hash)
        except UserExistsError:
            return exists

        self._guard.record_password_in_history(user.id, password_hash)
        self._audit(AuditEventType.USER_REGISTERED, "Account registered", owner_id=user.id)
        logger.info("Registered account %s", user.id)

        token = self._guard.generate_email_verification_token(user.id)
        self._deliver(self._send_verification_token, user, token, "verification email")

        return FlowResult(
            True,
            "Registration successful. Please check your email to verify your account.",
            data={"user_id": user.id, "email": user.email, "email_verified": False},
        )

    def login(
        self,
        email: str,
        password: str,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> FlowResult:
        try:
            email = validate_email(email)
            validate_password_input(password)
        except ValidationError as e:
            return self._invalid_input(e)

        user = self._users.get_user_by_email(email)
        if user is None:
            # Same cost as a wrong password for an existing account
            self._guard.verify_password(password, None)
            return FlowResult(False, INVALID_CREDENTIALS_MESSAGE, ErrorCode.INVALID_CREDENTIALS)

        status = self._guard.is_account_locked(user.id)
        if status.locked:
            return self._locked_out(status.locked_until)

        if not self._guard.verify_password(password, user.password_hash):
            failure = self._guard.record_failed_login(user.id)
            self._audit(
                AuditEventType.LOGIN_FAILURE, "Invalid password",
                severity=AuditSeverity.WARNING, owner_id=user.id, ip_address=ip_address,
            )
            if failure.locked:
                self._audit(
                    AuditEventType.ACCOUNT_LOCKED, "Too many failed login attempts",
                    severity=AuditSeverity.CRITICAL, owner_id=user.id, ip_address=ip_address,
                    details={"locked_until": failure.locked_until.isoformat()},
                )
                return self._locked_out(failure.locked_until)
            return FlowResult(
                False,
                INVALID_CREDENTIALS_MESSAGE,
                ErrorCode.INVALID_CREDENTIALS,
                data={"attempts_remaining": failure.attempts_remaining},
            )

        if not user.is_active:
            return FlowResult(
                False,
                "Account is inactive. Please contact support.",
                ErrorCode.ACCOUNT_INACTIVE,
            )

        self._guard.reset_failed_logins(user.id)
        if self._guard.needs_rehash(user.password_hash):
            self._users.replace_password_hash(user.id, self._guard.hash_password(password))
            logger.info("Upgraded password hash parameters for %s", user.id)
        token = self._sessions.create_session(user.id, ip_address, user_agent)
        self._audit(AuditEventType.LOGIN_SUCCESS, "Login succeeded",
                    owner_id=user.id, ip_address=ip_address)

        return FlowResult(
            True,
            "Login successful",
            data={
                "token": token,
                "user_id": user.id,
                "email": user.email,
                "email_verified": user.is_verified,
                "password_expired": self._guard.is_password_expired(user.password_created_at),
            },
        )

    def logout(self, session_token: str, owner_id: Optional[str] = None) -> FlowResult:
        self._sessions.invalidate_session(session_token)
        self._audit(AuditEventType.LOGOUT, "Logged out", owner_id=owner_id)
        return FlowResult(True, "Logged out successfully")

    def change_password(
        self,
        owner_id: str,
        current_password: str,
        new_password: str,
        keep_session: Optional[str] = None,
    ) -> FlowResult:
        """
        Change a password for an authenticated owner.

        All of the owner's sessions except keep_session are revoked.
        """
        try:
            validate_password_input(current_password, "currentPassword")
            validate_password_input(new_password, "newPassword")
        except ValidationError as e:
            return self._invalid_input(e)

        user = self._users.get_user(owner_id)
        if user is None:
            return FlowResult(False, "User not found", ErrorCode.NOT_FOUND)

        if not self._guard.verify_password(current_password, user.password_hash):
            return FlowResult(False, "Current password is incorrect", ErrorCode.INVALID_CREDENTIALS)

        if new_password == current_password:
            return FlowResult(
                False,
                "New password must be different from current password",
                ErrorCode.POLICY_VIOLATION,
            )

        policy = self._guard.validate_password_policy(new_password)
        if not policy.valid:
            return self._policy_failure(policy)

        if self._guard.is_password_previously_used(owner_id, new_password):
            return FlowResult(
                False,
                "Password was used recently. Please choose a different password",
                ErrorCode.REUSE_VIOLATION,
            )

        password_hash = self._guard.hash_password(new_password)
        self._users.update_password_hash(owner_id, password_hash)
        self._guard.record_password_in_history(owner_id, password_hash)
        revoked = self._sessions.invalidate_all_sessions(owner_id, except_token=keep_session)
        self._audit(
            AuditEventType.PASSWORD_CHANGED, "Password changed",
            owner_id=owner_id, details={"sessions_revoked": revoked},
        )

        return FlowResult(True, "Password changed successfully", data={"sessions_revoked": revoked})

    def request_password_reset(self, email: str) -> FlowResult:
        """
        Issue a reset token for the account, if there is one.

        The response is identical whether or not the email is registered.
        """
        try:
            email = validate_email(email)
        except ValidationError as e:
            return self._invalid_input(e)

        user = self._users.get_user_by_email(email)
        if user is not None and user.is_active:
            token = self._guard.generate_password_reset_token(user.id)
            self._audit(AuditEventType.PASSWORD_RESET_REQUESTED, "Password reset requested",
                        owner_id=user.id)
            self._deliver(self._send_reset_token, user, token, "password reset")

        return FlowResult(True, RESET_REQUESTED_MESSAGE)

    def reset_password(self, token: str, new_password: str) -> FlowResult:
        try:
            token = validate_token(token)
            validate_password_input(new_password)
        except ValidationError as e:
            return self._invalid_input(e)

        verification = self._guard.verify_password_reset_token(token)
        if not verification.valid:
            return FlowResult(False, verification.message, ErrorCode.TOKEN_INVALID)

        owner_id = verification.owner_id
        if self._users.get_user(owner_id) is None:
            return FlowResult(False, "Invalid reset token", ErrorCode.TOKEN_INVALID)

        policy = self._guard.validate_password_policy(new_password)
        if not policy.valid:
            return self._policy_failure(policy)

        if self._guard.is_password_previously_used(owner_id, new_password):
            return FlowResult(
                False,
                "Password was used recently. Please choose a different password",
                ErrorCode.REUSE_VIOLATION,
            )

        password_hash = self._guard.hash_password(new_password)

        consumed = self._guard.consume_password_reset_token(token)
        if not consumed.valid:
            return FlowResult(False, consumed.message, ErrorCode.TOKEN_INVALID)

        try:
            self._users.update_password_hash(owner_id, password_hash)
        except UserNotFoundError:
            return FlowResult(False, "Invalid reset token", ErrorCode.TOKEN_INVALID)
        except GuardStoreError:
            # Password unchanged, so the token must stay usable
            self._guard.release_password_reset_token(token)
            raise

        self._guard.record_password_in_history(owner_id, password_hash)
        self._guard.reset_failed_logins(owner_id)
        revoked = self._sessions.invalidate_all_sessions(owner_id)
        self._audit(
            AuditEventType.PASSWORD_RESET_COMPLETED, "Password reset completed",
            owner_id=owner_id, details={"sessions_revoked": revoked},
        )

        return FlowResult(True, "Password has been reset successfully")

    def verify_email(self, token: str) -> FlowResult:
        """Consume a verification token and mark its account verified."""
        try:
            token = validate_token(token)
        except ValidationError as e:
            return self._invalid_input(e)

        verification = self._guard.consume_email_verification_token(token)
        if not verification.valid:
            return FlowResult(False, verification.message, ErrorCode.TOKEN_INVALID)

        user = self._users.get_user(verification.owner_id)
        if user is None:
            return FlowResult(False, TokenError.VERIFICATION_INVALID.message, ErrorCode.TOKEN_INVALID)
        if user.is_verified:
            return FlowResult(False, "Email already verified", ErrorCode.ALREADY_VERIFIED)

        self._users.mark_verified(user.id)
        self._audit(AuditEventType.EMAIL_VERIFIED, "Email verified", owner_id=user.id)
        return FlowResult(True, "Email verified successfully", data={"verified": True})

    def resend_verification(self, email: str) -> FlowResult:
        """
        Issue a fresh verification token, invalidating earlier ones.

        Unknown and inactive accounts get the same answer as a real send.
        """
        try:
            email = validate_email(email)
        except ValidationError as e:
            return self._invalid_input(e)

        user = self._users.get_user_by_email(email)
        if user is not None and user.is_verified:
            return FlowResult(False, "Email already verified", ErrorCode.ALREADY_VERIFIED)

        if user is not None and user.is_active:
            token = self._guard.generate_email_verification_token(user.id)
            self._audit(AuditEventType.VERIFICATION_REQUESTED, "Verification email requested",
                        owner_id=user.id)
            self._deliver(self._send_verification_token, user, token, "verification email")

        return FlowResult(True, VERIFICATION_REQUESTED_MESSAGE)
