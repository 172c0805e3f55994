"""
Argon2id Password Hashing
=========================

Implements salted, deliberately slow password hashing using Argon2id.

Security Properties:
- Memory-hard (resistant to GPU/ASIC attacks)
- Time-hard (configurable iterations)
- Salt automatically generated per hash
- Constant-time verification via argon2-cffi

Parameters (OWASP 2023 recommendations):
- memory_cost: 102400 KiB (100 MB)
- time_cost: 2 iterations
- parallelism: 4 threads

References:
- RFC 9106: Argon2 Memory-Hard Function
- OWASP Password Storage Cheat Sheet
"""

from __future__ import annotations

from typing import Final, Optional

from argon2 import PasswordHasher, Type
from argon2.exceptions import InvalidHashError, VerificationError, VerifyMismatchError

from logisync.core.config import HashingConfig


ARGON2_MEMORY_COST: Final[int] = 102400  # 100 MB in KiB
ARGON2_TIME_COST: Final[int] = 2
ARGON2_PARALLELISM: Final[int] = 4
ARGON2_HASH_LENGTH: Final[int] = 32  # 256 bits
ARGON2_SALT_LENGTH: Final[int] = 16  # 128 bits

# Verified against when the stored hash is unusable, so that a malformed
# or missing hash costs the same as a real mismatch.
_DUMMY_PASSWORD: Final[str] = "logisync-dummy-password"


class Argon2Hasher:
    """
    Argon2id password hasher with secure defaults.

    Usage:
        hasher = Argon2Hasher()

        encoded = hasher.hash("user_password")
        store(encoded)

        is_valid = hasher.verify("user_password", encoded)

    Security Notes:
        - Plaintext passwords are never logged or stored
        - verify() never returns early on empty input or a bad hash
    """

    __slots__ = (
        "_memory_cost", "_time_cost", "_parallelism",
        "_hash_length", "_salt_length", "_hasher", "_dummy_hash",
    )

    def __init__(
        self,
        memory_cost: int = ARGON2_MEMORY_COST,
        time_cost: int = ARGON2_TIME_COST,
        parallelism: int = ARGON2_PARALLELISM,
        hash_length: int = ARGON2_HASH_LENGTH,
        salt_length: int = ARGON2_SALT_LENGTH,
        enforce_minimums: bool = True,
    ) -> None:
        """
        Initialize the Argon2id hasher.

        Args:
            memory_cost: Memory usage in KiB (default: 102400 = 100MB)
            time_cost: Number of iterations (default: 2)
            parallelism: Degree of parallelism (default: 4)
            hash_length: Output hash length in bytes (default: 32)
            salt_length: Salt length in bytes (default: 16)
            enforce_minimums: Reject parameters below production minimums.
                Only test suites should turn this off.
        """
        if enforce_minimums:
            if memory_cost < 65536:  # 64 MB minimum
                raise ValueError("memory_cost must be at least 65536 KiB (64 MB)")
            if time_cost < 2:
                raise ValueError("time_cost must be at least 2")
        if parallelism < 1:
            raise ValueError("parallelism must be at least 1")
        if hash_length < 16:
            raise ValueError("hash_length must be at least 16 bytes")
        if salt_length < 8:
            raise ValueError("salt_length must be at least 8 bytes")

        self._memory_cost = memory_cost
        self._time_cost = time_cost
        self._parallelism = parallelism
        self._hash_length = hash_length
        self._salt_length = salt_length
        self._hasher = PasswordHasher(
            time_cost=time_cost,
            memory_cost=memory_cost,
            parallelism=parallelism,
            hash_len=hash_length,
            salt_len=salt_length,
            type=Type.ID,
        )
        self._dummy_hash: Optional[str] = None

    @classmethod
    def from_config(cls, config: HashingConfig) -> Argon2Hasher:
        """Build a hasher from the hashing section of GuardConfig."""
        return cls(
            memory_cost=config.memory_cost,
            time_cost=config.time_cost,
            parallelism=config.parallelism,
            hash_length=config.hash_length,
            salt_length=config.salt_length,
            enforce_minimums=config.enforce_minimums,
        )

    @property
    def parameters(self) -> dict[str, int]:
        """Get current hashing parameters."""
        return {
            "memory_cost": self._memory_cost,
            "time_cost": self._time_cost,
            "parallelism": self._parallelism,
            "hash_length": self._hash_length,
            "salt_length": self._salt_length,
        }

    def hash(self, password: str) -> str:
        """
        Hash a password using Argon2id.

        Args:
            password: The password to hash

        Returns:
            Encoded hash string ($argon2id$v=19$m=...,t=...,p=...$salt$hash)

        Raises:
            TypeError: If password is not a string
        """
        if not isinstance(password, str):
            raise TypeError("password must be a string")
        return self._hasher.hash(password)

    def verify(self, password: str, encoded: Optional[str]) -> bool:
        """
        Verify a password against an encoded hash.

        Args:
            password: The password to verify
            encoded: The encoded hash string from storage

        Returns:
            True if password matches, False otherwise
        """
        if not isinstance(password, str):
            raise TypeError("password must be a string")

        if not encoded:
            self._burn(password)
            return False

        try:
            return self._hasher.verify(encoded, password)
        except VerifyMismatchError:
            return False
        except (InvalidHashError, VerificationError):
            self._burn(password)
            return False

    def _burn(self, password: str) -> None:
        """Spend one full verification so unusable hashes are not faster."""
        if self._dummy_hash is None:
            self._dummy_hash = self._hasher.hash(_DUMMY_PASSWORD)
        try:
            self._hasher.verify(self._dummy_hash, password)
        except VerifyMismatchError:
            pass

    def needs_rehash(self, encoded: str) -> bool:
        """
        Check if a hash needs to be rehashed with current parameters.

        Returns True if the hash uses older/weaker parameters or is unreadable.
        """
        try:
            return self._hasher.check_needs_rehash(encoded)
        except (InvalidHashError, ValueError):
            return True
