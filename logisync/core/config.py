"""
Guard Configuration Module
==========================

Provides immutable, environment-aware configuration for the credential guard.

Security Features:
- Immutable configuration after initialization
- Environment variable override support
- No secrets in default values
- Password policy, lockout and reset-token settings validated on load
"""

from __future__ import annotations

import hashlib
import os
import platform
from dataclasses import dataclass, field
from pathlib import Path
from typing import Final, Any, Optional


# Security Constants
_SENSITIVE_KEYS: Final[frozenset[str]] = frozenset({
    "password", "secret", "key", "token", "api_key",
    "private", "credential", "auth", "salt"
})

# Keys whose names contain a sensitive word but carry no secret value
_SAFE_KEYS: Final[frozenset[str]] = frozenset({
    "reset_tokens.expiry_seconds",
    "reset_tokens.token_bytes",
    "reset_tokens.cleanup_interval_seconds",
    "verification.expiry_seconds",
    "verification.token_bytes",
})

DEFAULT_COMMON_PASSWORDS: Final[tuple[str, ...]] = (
    "password", "password123", "12345678", "qwerty",
    "abc123", "letmein", "welcome", "monkey",
)


def _is_sensitive_key(key: str) -> bool:
    """Check if a configuration key might contain sensitive data."""
    if key in _SAFE_KEYS:
        return False
    key_lower = key.lower()
    return any(sensitive in key_lower for sensitive in _SENSITIVE_KEYS)


def _get_default_data_dir() -> Path:
    """Get OS-appropriate default data directory."""
    system = platform.system().lower()

    if system == "windows":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
    elif system == "darwin":
        base = Path.home() / "Library" / "Application Support"
    else:  # Linux and others
        base = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local" / "share"))

    return base / "LogiSync"


def _get_default_log_dir() -> Path:
    """Get OS-appropriate default log directory."""
    system = platform.system().lower()

    if system == "windows":
        base = Path(os.environ.get("LOCALAPPDATA", Path.home() / "AppData" / "Local"))
        return base / "LogiSync" / "Logs"
    elif system == "darwin":
        return Path.home() / "Library" / "Logs" / "LogiSync"
    else:  # Linux and others
        return Path(os.environ.get("XDG_STATE_HOME", Path.home() / ".local" / "state")) / "LogiSync" / "logs"


@dataclass(frozen=True, slots=True)
class PathConfig:
    """Immutable path configuration with OS-aware defaults."""

    data_dir: Path = field(default_factory=_get_default_data_dir)
    log_dir: Path = field(default_factory=_get_default_log_dir)

    def __post_init__(self) -> None:
        for field_name in ["data_dir", "log_dir"]:
            path = getattr(self, field_name)
            if not path.is_absolute():
                raise ValueError(f"{field_name} must be an absolute path: {path}")

    @property
    def database_path(self) -> Path:
        """SQLite file holding credentials, guard state and sessions."""
        return self.data_dir / "logisync_auth.db"

    @property
    def audit_log_path(self) -> Path:
        return self.log_dir / "audit.log"


@dataclass(frozen=True, slots=True)
class PasswordPolicy:
    """
    Password rules applied on registration, change and reset.

    Attributes:
        min_length: Minimum number of characters
        require_*: Character classes that must be present
        special_characters: Characters that satisfy the special-character rule
        prevent_reuse: Number of previous passwords checked for reuse
        max_age_days: Days before a password is considered expired
        common_passwords: Denylist matched case-insensitively
    """

    min_length: int = 8
    require_uppercase: bool = True
    require_lowercase: bool = True
    require_numbers: bool = True
    require_special_chars: bool = True
    special_characters: str = "@$!%*?&"
    prevent_reuse: int = 5
    max_age_days: int = 90
    common_passwords: tuple[str, ...] = DEFAULT_COMMON_PASSWORDS

    def __post_init__(self) -> None:
        if self.min_length < 1:
            raise ValueError("min_length must be at least 1")
        if self.prevent_reuse < 0:
            raise ValueError("prevent_reuse cannot be negative")
        if self.max_age_days < 1:
            raise ValueError("max_age_days must be at least 1")
        if self.require_special_chars and not self.special_characters:
            raise ValueError("special_characters cannot be empty when required")


@dataclass(frozen=True, slots=True)
class LockoutConfig:
    """Failed-login lockout settings."""

    max_login_attempts: int = 5
    lockout_duration_seconds: int = 900  # 15 minutes

    def __post_init__(self) -> None:
        if self.max_login_attempts < 1:
            raise ValueError("max_login_attempts must be at least 1")
        if self.lockout_duration_seconds < 1:
            raise ValueError("lockout_duration_seconds must be positive")


MIN_TOKEN_BYTES: Final[int] = 16
# Tokens travel as hex; request validation accepts at most 128 characters
MAX_TOKEN_BYTES: Final[int] = 64


def _check_token_bytes(token_bytes: int) -> None:
    if token_bytes < MIN_TOKEN_BYTES:
        raise ValueError(f"token_bytes must be at least {MIN_TOKEN_BYTES} (128 bits)")
    if token_bytes > MAX_TOKEN_BYTES:
        raise ValueError(f"token_bytes must be at most {MAX_TOKEN_BYTES}")


@dataclass(frozen=True, slots=True)
class ResetTokenConfig:
    """Password reset token settings."""

    expiry_seconds: int = 3600  # 1 hour
    token_bytes: int = 32
    cleanup_interval_seconds: int = 3600

    def __post_init__(self) -> None:
        _check_token_bytes(self.token_bytes)
        if self.expiry_seconds < 1:
            raise ValueError("expiry_seconds must be positive")
        if self.cleanup_interval_seconds < 1:
            raise ValueError("cleanup_interval_seconds must be positive")


@dataclass(frozen=True, slots=True)
class EmailVerificationConfig:
    """Email verification token settings."""

    expiry_seconds: int = 86400  # 24 hours
    token_bytes: int = 32

    def __post_init__(self) -> None:
        _check_token_bytes(self.token_bytes)
        if self.expiry_seconds < 1:
            raise ValueError("expiry_seconds must be positive")


@dataclass(frozen=True, slots=True)
class HashingConfig:
    """
    Argon2id cost parameters (OWASP 2023 recommendations by default).

    enforce_minimums may only be disabled for test suites; production
    configuration loaded from the environment always enforces them.
    """

    memory_cost: int = 102400  # KiB
    time_cost: int = 2
    parallelism: int = 4
    hash_length: int = 32
    salt_length: int = 16
    enforce_minimums: bool = True


@dataclass(frozen=True, slots=True)
class SessionConfig:
    """Login session settings."""

    timeout_seconds: int = 900  # 15 minutes
    max_sessions_per_user: int = 5
    extend_threshold_seconds: int = 300

    def __post_init__(self) -> None:
        if self.timeout_seconds < 60:
            raise ValueError("Session timeout must be at least 60 seconds")
        if self.max_sessions_per_user < 1:
            raise ValueError("max_sessions_per_user must be at least 1")


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Immutable logging configuration."""

    level: str = "INFO"
    max_file_size_bytes: int = 10 * 1024 * 1024  # 10 MB
    backup_count: int = 5
    enable_console: bool = True
    enable_file: bool = False
    enable_json: bool = False

    def __post_init__(self) -> None:
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if self.level.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {self.level}")


_INT_FIELDS: Final[dict[str, tuple[str, ...]]] = {
    "policy": ("min_length", "prevent_reuse", "max_age_days"),
    "lockout": ("max_login_attempts", "lockout_duration_seconds"),
    "reset_tokens": ("expiry_seconds", "token_bytes", "cleanup_interval_seconds"),
    "verification": ("expiry_seconds", "token_bytes"),
    "hashing": ("memory_cost", "time_cost", "parallelism"),
    "sessions": ("timeout_seconds", "max_sessions_per_user", "extend_threshold_seconds"),
    "logging": ("max_file_size_bytes", "backup_count"),
}

_BOOL_FIELDS: Final[dict[str, tuple[str, ...]]] = {
    "policy": (
        "require_uppercase", "require_lowercase",
        "require_numbers", "require_special_chars",
    ),
    "logging": ("enable_console", "enable_file", "enable_json"),
}

_STR_FIELDS: Final[dict[str, tuple[str, ...]]] = {
    "policy": ("special_characters",),
    "logging": ("level",),
}


class GuardConfig:
    """
    Centralized, immutable configuration with environment override support.

    Usage:
        config = GuardConfig.load()
        policy = config.policy
        lockout_seconds = config.lockout.lockout_duration_seconds
    """

    __slots__ = (
        "_paths", "_policy", "_lockout", "_reset_tokens", "_verification", "_hashing",
        "_sessions", "_logging", "_frozen", "_config_hash",
    )

    def __init__(
        self,
        paths: Optional[PathConfig] = None,
        policy: Optional[PasswordPolicy] = None,
        lockout: Optional[LockoutConfig] = None,
        reset_tokens: Optional[ResetTokenConfig] = None,
        verification: Optional[EmailVerificationConfig] = None,
        hashing: Optional[HashingConfig] = None,
        sessions: Optional[SessionConfig] = None,
        logging: Optional[LoggingConfig] = None,
    ) -> None:
        """Initialize configuration. Use GuardConfig.load() for standard initialization."""
        object.__setattr__(self, "_frozen", False)
        object.__setattr__(self, "_paths", paths or PathConfig())
        object.__setattr__(self, "_policy", policy or PasswordPolicy())
        object.__setattr__(self, "_lockout", lockout or LockoutConfig())
        object.__setattr__(self, "_reset_tokens", reset_tokens or ResetTokenConfig())
        object.__setattr__(self, "_verification", verification or EmailVerificationConfig())
        object.__setattr__(self, "_hashing", hashing or HashingConfig())
        object.__setattr__(self, "_sessions", sessions or SessionConfig())
        object.__setattr__(self, "_logging", logging or LoggingConfig())
        object.__setattr__(self, "_config_hash", self._compute_hash())
        object.__setattr__(self, "_frozen", True)

    def _compute_hash(self) -> str:
        """Compute a hash of the configuration for integrity checking."""
        config_str = (
            f"{self._paths}|{self._policy}|{self._lockout}|{self._reset_tokens}|{self._verification}|"
            f"{self._hashing}|{self._sessions}|{self._logging}"
        )
        return hashlib.sha256(config_str.encode()).hexdigest()[:16]

    @property
    def paths(self) -> PathConfig:
        return self._paths

    @property
    def policy(self) -> PasswordPolicy:
        return self._policy

    @property
    def lockout(self) -> LockoutConfig:
        return self._lockout

    @property
    def reset_tokens(self) -> ResetTokenConfig:
        return self._reset_tokens

    @property
    def verification(self) -> EmailVerificationConfig:
        return self._verification

    @property
    def hashing(self) -> HashingConfig:
        return self._hashing

    @property
    def sessions(self) -> SessionConfig:
        return self._sessions

    @property
    def logging(self) -> LoggingConfig:
        return self._logging

    @property
    def config_hash(self) -> str:
        """Get configuration integrity hash."""
        return self._config_hash

    @classmethod
    def load(cls, env_prefix: str = "LOGISYNC") -> GuardConfig:
        """
        Load configuration with environment variable overrides.

        Environment variables should be prefixed with LOGISYNC_ and use
        double underscores for nested values.

        Examples:
            LOGISYNC_LOGGING__LEVEL=DEBUG
            LOGISYNC_LOCKOUT__MAX_LOGIN_ATTEMPTS=3
            LOGISYNC_POLICY__MIN_LENGTH=12
            LOGISYNC_PATHS__DATA_DIR=/srv/logisync

        Args:
            env_prefix: Prefix for environment variables (default: LOGISYNC)

        Returns:
            Configured GuardConfig instance

        Raises:
            ValueError: If an override is malformed or violates a constraint
        """
        env_overrides = cls._parse_env_overrides(env_prefix)

        paths_kwargs: dict[str, Any] = {}
        for name in ("data_dir", "log_dir"):
            if f"paths.{name}" in env_overrides:
                paths_kwargs[name] = Path(env_overrides[f"paths.{name}"])

        sections: dict[str, dict[str, Any]] = {name: {} for name in _INT_FIELDS}
        for section, names in _INT_FIELDS.items():
            for name in names:
                key = f"{section}.{name}"
                if key in env_overrides:
                    try:
                        sections[section][name] = int(env_overrides[key])
                    except ValueError as e:
                        raise ValueError(f"{key} must be an integer") from e
        for section, names in _BOOL_FIELDS.items():
            for name in names:
                key = f"{section}.{name}"
                if key in env_overrides:
                    sections[section][name] = env_overrides[key].lower() == "true"
        for section, names in _STR_FIELDS.items():
            for name in names:
                key = f"{section}.{name}"
                if key in env_overrides:
                    sections[section][name] = env_overrides[key]

        # enforce_minimums cannot be disabled via env
        return cls(
            paths=PathConfig(**paths_kwargs) if paths_kwargs else None,
            policy=PasswordPolicy(**sections["policy"]) if sections["policy"] else None,
            lockout=LockoutConfig(**sections["lockout"]) if sections["lockout"] else None,
            reset_tokens=(
                ResetTokenConfig(**sections["reset_tokens"]) if sections["reset_tokens"] else None
            ),
            verification=(
                EmailVerificationConfig(**sections["verification"])
                if sections["verification"] else None
            ),
            hashing=HashingConfig(**sections["hashing"]) if sections["hashing"] else None,
            sessions=SessionConfig(**sections["sessions"]) if sections["sessions"] else None,
            logging=LoggingConfig(**sections["logging"]) if sections["logging"] else None,
        )

    @staticmethod
    def _parse_env_overrides(prefix: str) -> dict[str, str]:
        """Parse environment variables with the given prefix."""
        overrides: dict[str, str] = {}
        prefix_upper = f"{prefix.upper()}_"

        for key, value in os.environ.items():
            if key.startswith(prefix_upper):
                # Convert LOGISYNC_SECTION__KEY to section.key
                config_key = key[len(prefix_upper):].lower().replace("__", ".")

                # SECURITY: Skip sensitive keys from environment
                if _is_sensitive_key(config_key):
                    continue

                overrides[config_key] = value

        return overrides

    def ensure_directories(self) -> None:
        """Create data and log directories with owner-only permissions."""
        import stat

        for directory in (self._paths.data_dir, self._paths.log_dir):
            directory.mkdir(parents=True, exist_ok=True)

            if platform.system().lower() != "windows":
                directory.chmod(stat.S_IRWXU)  # 700 - owner only

    def __repr__(self) -> str:
        """Safe string representation without sensitive data."""
        return f"GuardConfig(hash={self._config_hash})"

    def __setattr__(self, name: str, value: Any) -> None:
        """Prevent modification after initialization."""
        if hasattr(self, "_frozen") and self._frozen:
            raise AttributeError("GuardConfig is immutable after initialization")
        super().__setattr__(name, value)
