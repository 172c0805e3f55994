"""
Service wiring for the credential guard and the flows built on it.

Everything shares one SQLite database file unless a store is passed in.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from logisync.core.auth.argon2_auth import Argon2Hasher
from logisync.core.auth.cleanup import TimerFactory, TokenCleanupJob
from logisync.core.auth.flows import AuthFlows, ResetTokenSender, VerificationTokenSender
from logisync.core.auth.guard import Clock, CredentialGuard, utc_now
from logisync.core.auth.session_control import SessionManager
from logisync.core.auth.store import GuardStore, SQLiteGuardStore
from logisync.core.auth.user_manager import UserManager
from logisync.core.config import GuardConfig
from logisync.security.audit import TamperAwareAuditLog


logger = logging.getLogger(__name__)


@dataclass
class AuthServices:
    """Long-lived objects shared by every request."""
    config: GuardConfig
    guard: CredentialGuard
    users: UserManager
    sessions: SessionManager
    audit: Optional[TamperAwareAuditLog]
    flows: AuthFlows
    cleanup_job: TokenCleanupJob

    def close(self) -> None:
        self.cleanup_job.stop()
        self.guard.store.close()


def build_services(
    config: Optional[GuardConfig] = None,
    store: Optional[GuardStore] = None,
    hasher: Optional[Argon2Hasher] = None,
    clock: Clock = utc_now,
    send_reset_token: Optional[ResetTokenSender] = None,
    send_verification_token: Optional[VerificationTokenSender] = None,
    timer_factory: TimerFactory = threading.Timer,
    enable_audit: bool = True,
) -> AuthServices:
    """
    Build the guard, repositories and flows from configuration.

    The cleanup job is created but not started.
    """
    config = config or GuardConfig.load()
    config.ensure_directories()

    db_path = config.paths.database_path
    store = store or SQLiteGuardStore(db_path)
    guard = CredentialGuard(config, store, hasher=hasher, clock=clock)
    users = UserManager(db_path, clock=clock)
    sessions = SessionManager(db_path, config.sessions, clock=clock)
    audit = TamperAwareAuditLog(config.paths.audit_log_path, clock=clock) if enable_audit else None

    flows = AuthFlows(
        guard, users, sessions, audit=audit,
        send_reset_token=send_reset_token,
        send_verification_token=send_verification_token,
    )
    cleanup_job = TokenCleanupJob(
        guard,
        sessions,
        interval_seconds=config.reset_tokens.cleanup_interval_seconds,
        timer_factory=timer_factory,
    )

    logger.debug("Auth services ready (config %s)", config.config_hash)
    return AuthServices(
        config=config,
        guard=guard,
        users=users,
        sessions=sessions,
        audit=audit,
        flows=flows,
        cleanup_job=cleanup_job,
    )
