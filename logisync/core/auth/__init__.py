"""
LogiSync Authentication Module
==============================

Provides the credential guard and the flows built on it:
- Argon2id password hashing
- Password policy, strength scoring and reuse prevention
- Failed-login lockout
- Single-use password reset and email verification tokens
- Session management with expiration

Security Properties:
- Memory-hard password hashing
- Constant-time verification
- Atomic lockout counters and token consumption
"""

from logisync.core.auth.results import (
    ErrorCode,
    FlowResult,
    GuardStoreError,
    PolicyResult,
    StrengthLevel,
    TokenError,
)
from logisync.core.auth.argon2_auth import Argon2Hasher
from logisync.core.auth.store import (
    GuardStore,
    MemoryGuardStore,
    SQLiteGuardStore,
)
from logisync.core.auth.guard import CredentialGuard
from logisync.core.auth.cleanup import TokenCleanupJob
from logisync.core.auth.session_control import (
    SessionManager,
    Session,
)
from logisync.core.auth.user_manager import (
    UserManager,
    UserCredentials,
)
from logisync.core.auth.flows import AuthFlows
from logisync.core.auth.services import AuthServices, build_services

__all__ = [
    "ErrorCode",
    "FlowResult",
    "GuardStoreError",
    "PolicyResult",
    "StrengthLevel",
    "TokenError",
    "Argon2Hasher",
    "GuardStore",
    "MemoryGuardStore",
    "SQLiteGuardStore",
    "CredentialGuard",
    "TokenCleanupJob",
    "SessionManager",
    "Session",
    "UserManager",
    "UserCredentials",
    "AuthFlows",
    "AuthServices",
    "build_services",
]
