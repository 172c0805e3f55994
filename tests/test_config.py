"""Configuration defaults, validation and environment overrides."""

import dataclasses
import os
from pathlib import Path

import pytest

from logisync.core.config import (
    EmailVerificationConfig,
    GuardConfig,
    LockoutConfig,
    PasswordPolicy,
    PathConfig,
    ResetTokenConfig,
    SessionConfig,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in list(os.environ):
        if key.startswith("LOGISYNC_"):
            monkeypatch.delenv(key)


def test_defaults():
    config = GuardConfig.load()

    assert config.policy.min_length == 8
    assert config.policy.prevent_reuse == 5
    assert config.policy.max_age_days == 90
    assert config.policy.special_characters == "@$!%*?&"
    assert config.lockout.max_login_attempts == 5
    assert config.lockout.lockout_duration_seconds == 15 * 60
    assert config.reset_tokens.expiry_seconds == 60 * 60
    assert config.reset_tokens.token_bytes == 32
    assert config.verification.expiry_seconds == 24 * 60 * 60
    assert config.verification.token_bytes == 32
    assert "letmein" in config.policy.common_passwords


def test_environment_overrides(monkeypatch, tmp_path):
    monkeypatch.setenv("LOGISYNC_LOCKOUT__MAX_LOGIN_ATTEMPTS", "3")
    monkeypatch.setenv("LOGISYNC_POLICY__MIN_LENGTH", "12")
    monkeypatch.setenv("LOGISYNC_POLICY__REQUIRE_SPECIAL_CHARS", "false")
    monkeypatch.setenv("LOGISYNC_RESET_TOKENS__EXPIRY_SECONDS", "600")
    monkeypatch.setenv("LOGISYNC_VERIFICATION__TOKEN_BYTES", "48")
    monkeypatch.setenv("LOGISYNC_LOGGING__LEVEL", "DEBUG")
    monkeypatch.setenv("LOGISYNC_PATHS__DATA_DIR", str(tmp_path))

    config = GuardConfig.load()

    assert config.lockout.max_login_attempts == 3
    assert config.policy.min_length == 12
    assert config.policy.require_special_chars is False
    assert config.reset_tokens.expiry_seconds == 600
    assert config.verification.token_bytes == 48
    assert config.logging.level == "DEBUG"
    assert config.paths.data_dir == tmp_path


def test_secret_looking_keys_are_ignored(monkeypatch):
    monkeypatch.setenv("LOGISYNC_AUTH__SECRET_KEY", "hunter2")
    assert GuardConfig.load().config_hash == GuardConfig().config_hash


def test_malformed_integer_override(monkeypatch):
    monkeypatch.setenv("LOGISYNC_LOCKOUT__MAX_LOGIN_ATTEMPTS", "five")
    with pytest.raises(ValueError, match="must be an integer"):
        GuardConfig.load()


def test_hashing_minimums_cannot_be_disabled_from_env(monkeypatch):
    monkeypatch.setenv("LOGISYNC_HASHING__ENFORCE_MINIMUMS", "false")
    assert GuardConfig.load().hashing.enforce_minimums is True


@pytest.mark.parametrize(
    "factory",
    [
        lambda: PasswordPolicy(min_length=0),
        lambda: PasswordPolicy(prevent_reuse=-1),
        lambda: LockoutConfig(max_login_attempts=0),
        lambda: ResetTokenConfig(token_bytes=8),
        lambda: ResetTokenConfig(token_bytes=96),
        lambda: EmailVerificationConfig(token_bytes=65),
        lambda: EmailVerificationConfig(expiry_seconds=0),
        lambda: SessionConfig(timeout_seconds=10),
        lambda: PathConfig(data_dir=Path("relative/path")),
    ],
)
def test_unsafe_values_are_rejected(factory):
    with pytest.raises(ValueError):
        factory()


def test_config_is_immutable():
    config = GuardConfig()
    with pytest.raises(AttributeError):
        config.policy = PasswordPolicy()
    with pytest.raises(dataclasses.FrozenInstanceError):
        config.policy.min_length = 4


def test_repr_hides_values():
    assert repr(GuardConfig()).startswith("GuardConfig(hash=")


def test_oversized_token_override_fails_at_load(monkeypatch):
    monkeypatch.setenv("LOGISYNC_RESET_TOKENS__TOKEN_BYTES", "96")
    with pytest.raises(ValueError, match="at most 64"):
        GuardConfig.load()


def test_largest_token_size_is_accepted():
    assert ResetTokenConfig(token_bytes=64).token_bytes == 64
