"""Password reuse prevention."""

from logisync.core.auth.guard import CredentialGuard
from logisync.core.config import GuardConfig, PasswordPolicy


def _record(guard, owner_id, *passwords):
    for password in passwords:
        guard.record_password_in_history(owner_id, guard.hash_password(password))


def test_recent_password_is_detected(guard):
    _record(guard, "7", "Abcdef1@")
    assert guard.is_password_previously_used("7", "Abcdef1@")
    assert not guard.is_password_previously_used("7", "Abcdef2@")


def test_history_is_per_owner(guard):
    _record(guard, "7", "Abcdef1@")
    assert not guard.is_password_previously_used("8", "Abcdef1@")


def test_only_last_five_passwords_are_kept(guard):
    _record(guard, "7", *[f"Abcdef{i}@" for i in range(1, 7)])

    assert len(guard.store.get_history("7")) == 5
    assert not guard.is_password_previously_used("7", "Abcdef1@")
    for i in range(2, 7):
        assert guard.is_password_previously_used("7", f"Abcdef{i}@")


def test_history_is_oldest_first(guard, clock):
    _record(guard, "7", "Abcdef1@")
    clock.advance(days=1)
    _record(guard, "7", "Abcdef2@")

    entries = guard.store.get_history("7")
    assert entries[0].created_at < entries[1].created_at
    assert "$argon2" not in repr(entries[0])


def test_reuse_window_of_zero_disables_the_check(config, store, hasher, clock):
    config = GuardConfig(
        paths=config.paths,
        hashing=config.hashing,
        policy=PasswordPolicy(prevent_reuse=0),
    )
    guard = CredentialGuard(config, store, hasher=hasher, clock=clock)
    _record(guard, "7", "Abcdef1@")

    assert not guard.is_password_previously_used("7", "Abcdef1@")
    assert guard.store.get_history("7") == []
