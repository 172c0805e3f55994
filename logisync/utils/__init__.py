"""
Utils module - Request input validation helpers.
"""

from logisync.utils.validators import (
    ValidationError,
    require_fields,
    validate_email,
    validate_password_input,
    validate_token,
)

__all__ = [
    "ValidationError",
    "require_fields",
    "validate_email",
    "validate_password_input",
    "validate_token",
]
