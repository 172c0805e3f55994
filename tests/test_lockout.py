"""Failed-login counting and timed lockout."""

import logging
import threading
from datetime import timedelta

from logisync.core.auth.guard import CredentialGuard
from logisync.core.auth.store import MemoryGuardStore
from logisync.core.config import GuardConfig, LockoutConfig


def test_fifth_failure_locks_for_fifteen_minutes(guard, clock):
    results = [guard.record_failed_login("42") for _ in range(4)]
    assert [r.attempts_remaining for r in results] == [4, 3, 2, 1]
    assert not any(r.locked for r in results)

    fifth = guard.record_failed_login("42")
    assert fifth.locked
    assert fifth.attempts_remaining == 0
    assert fifth.locked_until == clock() + timedelta(minutes=15)

    status = guard.is_account_locked("42")
    assert status.locked
    assert status.locked_until == fifth.locked_until


def test_lock_expires_and_counter_restarts(guard, clock):
    for _ in range(5):
        guard.record_failed_login("42")

    clock.advance(minutes=16)
    assert not guard.is_account_locked("42").locked
    assert guard.store.get_login_attempt("42") is None

    result = guard.record_failed_login("42")
    assert not result.locked
    assert result.attempts_remaining == 4


def test_failure_after_expiry_without_check_restarts_count(guard, clock):
    for _ in range(5):
        guard.record_failed_login("42")

    clock.advance(minutes=15)
    result = guard.record_failed_login("42")
    assert not result.locked
    assert result.attempts_remaining == 4


def test_lock_is_active_until_exact_expiry(guard, clock):
    for _ in range(5):
        guard.record_failed_login("42")

    clock.advance(minutes=14, seconds=59)
    assert guard.is_account_locked("42").locked
    clock.advance(seconds=1)
    assert not guard.is_account_locked("42").locked


def test_failures_while_locked_do_not_extend_lock(guard, clock):
    for _ in range(5):
        first_lock = guard.record_failed_login("42").locked_until

    clock.advance(minutes=5)
    again = guard.record_failed_login("42")
    assert again.locked
    assert again.attempts_remaining == 0
    assert again.locked_until == first_lock

    record = guard.store.get_login_attempt("42")
    assert record.attempts == 5


def test_reset_clears_counter(guard):
    for _ in range(3):
        guard.record_failed_login("42")
    guard.reset_failed_logins("42")

    assert guard.store.get_login_attempt("42") is None
    assert guard.record_failed_login("42").attempts_remaining == 4


def test_reset_unknown_owner_is_noop(guard):
    guard.reset_failed_logins("nobody")
    assert not guard.is_account_locked("nobody").locked


def test_owners_are_counted_independently(guard):
    for _ in range(5):
        guard.record_failed_login("42")
    assert guard.is_account_locked("42").locked
    assert not guard.is_account_locked("43").locked
    assert guard.record_failed_login("43").attempts_remaining == 4


def test_lockout_settings_come_from_config(config, store, hasher, clock):
    config = GuardConfig(
        paths=config.paths,
        hashing=config.hashing,
        lockout=LockoutConfig(max_login_attempts=2, lockout_duration_seconds=60),
    )
    guard = CredentialGuard(config, store, hasher=hasher, clock=clock)

    assert not guard.record_failed_login("42").locked
    result = guard.record_failed_login("42")
    assert result.locked
    assert result.locked_until == clock() + timedelta(seconds=60)


def test_lock_is_logged_as_warning(guard, caplog):
    with caplog.at_level(logging.INFO, logger="logisync.core.auth.guard"):
        for _ in range(5):
            guard.record_failed_login("42")

    warnings = [r for r in caplog.records if r.levelno == logging.WARNING]
    assert len(warnings) == 1
    assert "42" in warnings[0].getMessage()


def test_concurrent_failures_are_all_counted(config, hasher, clock):
    guard = CredentialGuard(config, MemoryGuardStore(), hasher=hasher, clock=clock)
    config_attempts = config.lockout.max_login_attempts
    barrier = threading.Barrier(config_attempts)
    results = []

    def fail():
        barrier.wait()
        results.append(guard.record_failed_login("42"))

    threads = [threading.Thread(target=fail) for _ in range(config_attempts)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(r.attempts_remaining for r in results) == [0, 1, 2, 3, 4]
    assert sum(r.locked for r in results) == 1
    assert guard.is_account_locked("42").locked
