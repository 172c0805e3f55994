"""
Password Policy
===============

Policy validation, strength scoring and password expiry.

These are pure functions over a PasswordPolicy; the credential guard
exposes them as methods bound to its configured policy.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Final

from logisync.core.config import PasswordPolicy
from logisync.core.auth.results import (
    PolicyResult,
    PolicyRule,
    PolicyViolation,
    StrengthLevel,
    StrengthResult,
)


_UPPERCASE: Final[re.Pattern[str]] = re.compile(r"[A-Z]")
_LOWERCASE: Final[re.Pattern[str]] = re.compile(r"[a-z]")
_DIGIT: Final[re.Pattern[str]] = re.compile(r"[0-9]")

# (score threshold, level) checked in order; the first threshold above the score wins
_LEVELS: Final[tuple[tuple[int, StrengthLevel], ...]] = (
    (30, StrengthLevel.WEAK),
    (50, StrengthLevel.FAIR),
    (70, StrengthLevel.GOOD),
    (90, StrengthLevel.STRONG),
)


def validate_password(password: str, policy: PasswordPolicy) -> PolicyResult:
    """
    Validate a password against the policy.

    Every rule is evaluated; violations are collected rather than
    short-circuited so the caller can show the complete list.

    Args:
        password: Candidate plaintext password
        policy: Policy to check against

    Returns:
        PolicyResult with valid flag and all violations

    Raises:
        TypeError: If password is not a string
    """
    if not isinstance(password, str):
        raise TypeError("password must be a string")

    violations: list[PolicyViolation] = []

    if len(password) < policy.min_length:
        violations.append(PolicyViolation(
            PolicyRule.MIN_LENGTH,
            f"Password must be at least {policy.min_length} characters long",
        ))

    if policy.require_uppercase and not _UPPERCASE.search(password):
        violations.append(PolicyViolation(
            PolicyRule.UPPERCASE,
            "Password must contain at least one uppercase letter",
        ))

    if policy.require_lowercase and not _LOWERCASE.search(password):
        violations.append(PolicyViolation(
            PolicyRule.LOWERCASE,
            "Password must contain at least one lowercase letter",
        ))

    if policy.require_numbers and not _DIGIT.search(password):
        violations.append(PolicyViolation(
            PolicyRule.NUMBER,
            "Password must contain at least one number",
        ))

    if policy.require_special_chars and not any(c in policy.special_characters for c in password):
        violations.append(PolicyViolation(
            PolicyRule.SPECIAL_CHARACTER,
            f"Password must contain at least one special character ({policy.special_characters})",
        ))

    common = {p.lower() for p in policy.common_passwords}
    if password.lower() in common:
        violations.append(PolicyViolation(
            PolicyRule.COMMON_PASSWORD,
            "This password is too common. Please choose a stronger password",
        ))

    return PolicyResult(valid=not violations, violations=tuple(violations))


def calculate_strength(password: str, policy: PasswordPolicy) -> StrengthResult:
    """
    Score a password from 0 to 100.

    Length contributes up to 40 points (8/12/16/20 characters),
    character variety up to 60: lowercase, uppercase and digits 10 each,
    a policy special character 15, any other symbol 15.
    """
    score = 0
    feedback: list[str] = []
    length = len(password)

    for tier in (8, 12, 16, 20):
        if length >= tier:
            score += 10
    # Shown until the top length tier is reached
    if length < 20:
        feedback.append("Use at least 12 characters for better security")

    if _LOWERCASE.search(password):
        score += 10
    if _UPPERCASE.search(password):
        score += 10
    if _DIGIT.search(password):
        score += 10
    if any(c in policy.special_characters for c in password):
        score += 15
    if any(not c.isascii() or not c.isalnum() for c in password
           if c not in policy.special_characters):
        score += 15

    level = StrengthLevel.VERY_STRONG
    for threshold, candidate in _LEVELS:
        if score < threshold:
            level = candidate
            break

    if level is StrengthLevel.WEAK:
        feedback.append("Password is too weak")
    elif level is StrengthLevel.FAIR:
        feedback.append("Password could be stronger")

    return StrengthResult(score=score, level=level, feedback=tuple(feedback))


def is_expired(password_created_at: datetime, now: datetime, max_age_days: int) -> bool:
    """True once more than max_age_days whole days have passed since creation."""
    elapsed: timedelta = now - password_created_at
    return elapsed.days > max_age_days
