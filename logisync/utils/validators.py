"""
Validation Utilities
====================

Request input validation for the authentication flows.

These checks guard against malformed input (missing fields, bad
email, wrong token shape). Password *policy* is not checked here;
see CredentialGuard.validate_password_policy.
"""

from __future__ import annotations

import re
from typing import Any, Final, Mapping, Sequence


_EMAIL_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"^[A-Za-z0-9._%+-]+@[A-Za-z0-9.-]+\.[A-Za-z]{2,}$"
)
_TOKEN_PATTERN: Final[re.Pattern[str]] = re.compile(r"^[A-Fa-f0-9]+$")

TOKEN_MIN_LENGTH: Final[int] = 32
TOKEN_MAX_LENGTH: Final[int] = 128
MAX_PASSWORD_LENGTH: Final[int] = 128


class ValidationError(ValueError):
    """Raised when validation fails."""
    pass


def require_fields(data: Mapping[str, Any], fields: Sequence[str]) -> None:
    """
    Ensure every named field is present and non-empty.

    Raises:
        ValidationError: Naming all missing fields
    """
    missing = [name for name in fields if data.get(name) in (None, "")]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


def validate_string_safe(
    value: Any,
    min_length: int = 0,
    max_length: int = 1000,
    allow_empty: bool = False,
    field_name: str = "value",
) -> str:
    """
    Validate a string value for safety.

    Raises:
        ValidationError: If validation fails
    """
    if not isinstance(value, str):
        raise ValidationError(f"{field_name} must be a string")

    if not allow_empty and not value:
        raise ValidationError(f"{field_name} cannot be empty")

    if len(value) < min_length:
        raise ValidationError(f"{field_name} must be at least {min_length} characters")

    if len(value) > max_length:
        raise ValidationError(f"{field_name} must be at most {max_length} characters")

    if "\x00" in value:
        raise ValidationError(f"{field_name} contains invalid characters")

    return value


def validate_email(value: Any) -> str:
    """Return the trimmed, lower-cased email or raise ValidationError."""
    email = validate_string_safe(value, max_length=254, field_name="email").strip().lower()
    if not _EMAIL_PATTERN.match(email):
        raise ValidationError("Invalid email format")
    return email


def validate_password_input(value: Any, field_name: str = "password") -> str:
    """Shape check only: a non-empty string of bounded length."""
    return validate_string_safe(value, max_length=MAX_PASSWORD_LENGTH, field_name=field_name)


def validate_token(value: Any) -> str:
    """Reset and verification tokens are hex strings of 32 to 128 characters."""
    token = validate_string_safe(value, field_name="token").strip()
    if not (TOKEN_MIN_LENGTH <= len(token) <= TOKEN_MAX_LENGTH) or not _TOKEN_PATTERN.match(token):
        raise ValidationError("Invalid token format")
    return token
