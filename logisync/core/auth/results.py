"""
Guard Results
=============

Structured results returned by the credential guard and the auth flows.

Recoverable conditions (policy violations, reuse, lockout, invalid
reset tokens) are reported through these objects rather than raised,
so callers can render precise user-facing messages. Only fatal
conditions raise (see GuardStoreError).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional


class ErrorCode(Enum):
    """Error taxonomy surfaced to the API layer."""
    VALIDATION_ERROR = "VALIDATION_ERROR"
    POLICY_VIOLATION = "POLICY_VIOLATION"
    REUSE_VIOLATION = "REUSE_VIOLATION"
    LOCKED_OUT = "LOCKED_OUT"
    TOKEN_INVALID = "TOKEN_INVALID"
    NOT_FOUND = "NOT_FOUND"
    INVALID_CREDENTIALS = "INVALID_CREDENTIALS"
    ACCOUNT_EXISTS = "ACCOUNT_EXISTS"
    ACCOUNT_INACTIVE = "ACCOUNT_INACTIVE"
    ALREADY_VERIFIED = "ALREADY_VERIFIED"


class PolicyRule(Enum):
    """Individual password policy rules."""
    MIN_LENGTH = "min_length"
    UPPERCASE = "uppercase"
    LOWERCASE = "lowercase"
    NUMBER = "number"
    SPECIAL_CHARACTER = "special_character"
    COMMON_PASSWORD = "common_password"


class StrengthLevel(Enum):
    WEAK = "weak"
    FAIR = "fair"
    GOOD = "good"
    STRONG = "strong"
    VERY_STRONG = "very strong"


class TokenError(Enum):
    """Reasons a reset or verification token is rejected."""
    NOT_FOUND = "Invalid reset token"
    ALREADY_USED = "Reset token has already been used"
    EXPIRED = "Reset token has expired"
    # Verification tokens do not say which check failed
    VERIFICATION_INVALID = "Invalid or expired verification token"

    @property
    def message(self) -> str:
        return self.value


class GuardStoreError(Exception):
    """Raised when the guard's backing store is unavailable or corrupt."""
    pass


@dataclass(frozen=True)
class PolicyViolation:
    rule: PolicyRule
    message: str


@dataclass(frozen=True)
class PolicyResult:
    """Outcome of a password policy check. All violations are collected."""
    valid: bool
    violations: tuple[PolicyViolation, ...] = ()

    @property
    def messages(self) -> list[str]:
        return [v.message for v in self.violations]

    @property
    def rules(self) -> set[PolicyRule]:
        return {v.rule for v in self.violations}


@dataclass(frozen=True)
class StrengthResult:
    score: int  # 0-100
    level: StrengthLevel
    feedback: tuple[str, ...] = ()


@dataclass(frozen=True)
class FailedLoginResult:
    locked: bool
    attempts_remaining: int
    locked_until: Optional[datetime] = None


@dataclass(frozen=True)
class LockStatus:
    locked: bool
    locked_until: Optional[datetime] = None


@dataclass(frozen=True)
class TokenVerification:
    """
    Result of checking a reset or verification token.

    owner_id is only set when valid is True; error is only set
    when valid is False.
    """
    valid: bool
    owner_id: Optional[str] = None
    error: Optional[TokenError] = None

    @property
    def message(self) -> Optional[str]:
        return self.error.message if self.error else None


@dataclass(frozen=True)
class FlowResult:
    """
    Result of an authentication flow, mapped by the API layer to
    ``{success, message, code}`` response bodies.
    """
    success: bool
    message: str
    code: Optional[ErrorCode] = None
    data: dict[str, Any] = field(default_factory=dict)
    errors: tuple[str, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"success": self.success, "message": self.message}
        if self.code is not None:
            body["code"] = self.code.value
        if self.errors:
            body["errors"] = list(self.errors)
        if self.data:
            body["data"] = self.data
        return body
